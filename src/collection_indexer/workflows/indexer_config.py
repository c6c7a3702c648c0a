"""Indexer defaults (endpoints, paths, batch sizes, retry window).

Centralizes static defaults so the indexer modules have no embedded magic
values. These are baseline constants used to construct IndexerSettings;
callers can override any of them through the environment or the CLI.
"""

from __future__ import annotations

from pathlib import Path

# Endpoints
ORDINALS_HOST = "https://cdn.app.pizzapets.fun"
BLOCKHEIGHT_PATH = "/r/blockheight"
HDR_CONTENT_TYPE = "Content-Type"
JSON_CONTENT_TYPE = "application/json"

# Paths (working-directory relative)
CACHE_DIR = Path("cache")
COLLECTION_CACHE_PATH = CACHE_DIR / "collection-cache.json"
HTTP_CACHE_DIR = CACHE_DIR / "html"
STATUS_PATH = CACHE_DIR / "status.json"
SEED_PATH = Path("data") / "pizza_pets_airdrop_v3.json"

# Batching
CHUNK_SIZE = 100
CONCURRENCY = 64

# Retries: one window shared by the transport loop and the evaluation loop
MAX_ATTEMPTS = 3
BACKOFF_MIN_SECONDS = 0.6
BACKOFF_MAX_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 20.0

# Immortal pets are re-evaluated once every IMMORTAL_BUCKETS blocks
IMMORTAL_BUCKETS = 10

# Stored in place of a render hash while a pet is dead
DEAD_THUMBNAIL_HASH = "dead"

NAME_TEMPLATE = "Pizza Pet #{ordinal}"
# Placeholder layout; override with INDEXER_THUMBNAIL_URL_TEMPLATE (empty disables)
THUMBNAIL_URL_TEMPLATE = ORDINALS_HOST + "/thumbnails/{inscription_id}/{hash}.png"
DEFAULT_WEAKNESS = "immune"

EVOLUTION_STAGES = ("baby", "child", "teen", "adult")
