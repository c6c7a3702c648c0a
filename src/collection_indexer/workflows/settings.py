"""Runtime settings resolved from the environment (and an optional .env file)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .indexer_config import (
    BACKOFF_MAX_SECONDS,
    BACKOFF_MIN_SECONDS,
    BLOCKHEIGHT_PATH,
    CHUNK_SIZE,
    COLLECTION_CACHE_PATH,
    CONCURRENCY,
    HTTP_CACHE_DIR,
    IMMORTAL_BUCKETS,
    MAX_ATTEMPTS,
    NAME_TEMPLATE,
    ORDINALS_HOST,
    REQUEST_TIMEOUT_SECONDS,
    SEED_PATH,
    STATUS_PATH,
    THUMBNAIL_URL_TEMPLATE,
)


def _env_int(name: str, default: int = 0) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


def _env_path(name: str, default: Path) -> Path:
    raw = (os.getenv(name) or "").strip()
    return Path(raw) if raw else default


@dataclass(frozen=True, slots=True)
class IndexerSettings:
    host: str = ORDINALS_HOST
    blockheight_path: str = BLOCKHEIGHT_PATH
    input_path: Path = SEED_PATH
    cache_path: Path = COLLECTION_CACHE_PATH
    http_cache_dir: Path = HTTP_CACHE_DIR
    status_path: Path = STATUS_PATH
    disable_http_cache: bool = False
    chunk_size: int = CHUNK_SIZE
    concurrency: int = CONCURRENCY
    max_attempts: int = MAX_ATTEMPTS
    backoff_min: float = BACKOFF_MIN_SECONDS
    backoff_max: float = BACKOFF_MAX_SECONDS
    timeout: float = REQUEST_TIMEOUT_SECONDS
    immortal_buckets: int = IMMORTAL_BUCKETS
    name_template: str = NAME_TEMPLATE
    thumbnail_url_template: str = THUMBNAIL_URL_TEMPLATE
    simulation: Optional[str] = None

    @property
    def blockheight_url(self) -> str:
        return f"{self.host.rstrip('/')}{self.blockheight_path}"


def load_settings(*, dotenv: bool = True) -> IndexerSettings:
    """Build settings from ``INDEXER_*`` environment variables.

    A ``.env`` file in the working directory is loaded first (without
    overriding variables already exported by the shell).
    """

    if dotenv:
        load_dotenv(override=False)
    return IndexerSettings(
        host=os.getenv("INDEXER_HOST", ORDINALS_HOST).strip() or ORDINALS_HOST,
        input_path=_env_path("INDEXER_INPUT_PATH", SEED_PATH),
        cache_path=_env_path("INDEXER_CACHE_PATH", COLLECTION_CACHE_PATH),
        http_cache_dir=_env_path("INDEXER_HTTP_CACHE_DIR", HTTP_CACHE_DIR),
        status_path=_env_path("INDEXER_STATUS_PATH", STATUS_PATH),
        disable_http_cache=_env_bool("INDEXER_HTTP_CACHE_DISABLE", "0"),
        chunk_size=max(1, _env_int("INDEXER_CHUNK_SIZE", CHUNK_SIZE)),
        concurrency=max(1, _env_int("INDEXER_CONCURRENCY", CONCURRENCY)),
        max_attempts=max(1, _env_int("INDEXER_MAX_ATTEMPTS", MAX_ATTEMPTS)),
        timeout=max(0.1, _env_float("INDEXER_TIMEOUT", REQUEST_TIMEOUT_SECONDS)),
        immortal_buckets=max(1, _env_int("INDEXER_IMMORTAL_BUCKETS", IMMORTAL_BUCKETS)),
        thumbnail_url_template=os.getenv("INDEXER_THUMBNAIL_URL_TEMPLATE", THUMBNAIL_URL_TEMPLATE).strip(),
        simulation=(os.getenv("INDEXER_SIMULATION") or "").strip() or None,
    )
