"""Bootstrap and wiring for one indexing run."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import aiohttp

from ..core.errors import BootstrapFailure
from .batch import BatchRunner, RunReport
from .entity_cache import EntityCache
from .indexer import Indexer
from .indexer_config import HDR_CONTENT_TYPE, JSON_CONTENT_TYPE
from .ord_client import OrdClient
from .settings import IndexerSettings
from .simulation import SimulationFactory, load_simulation_factory
from .web_fetch import ContentCache, FetchConfig, FetchMetrics, RetryingFetcher, path_bypass

logger = logging.getLogger(__name__)


class InputFileError(BootstrapFailure):
    pass


def load_ids(path: Path) -> List[str]:
    """Read the seed list: a JSON array of inscription id strings."""

    path = Path(path)
    if not path.exists():
        raise InputFileError(f"Seed file not found at: {path}")
    try:
        ids = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise InputFileError(f"Cannot parse seed file {path}: {exc}") from exc
    if not isinstance(ids, list) or not all(isinstance(item, str) for item in ids):
        raise InputFileError(f"Seed file {path} must be a JSON array of strings")
    return ids


def fetch_config_from_settings(settings: IndexerSettings) -> FetchConfig:
    return FetchConfig(
        timeout=settings.timeout,
        max_attempts=settings.max_attempts,
        backoff_min=settings.backoff_min,
        backoff_max=settings.backoff_max,
    )


async def run_collection(
    settings: IndexerSettings,
    *,
    start_index: int = 0,
    simulation_factory: Optional[SimulationFactory] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> RunReport:
    """Load inputs, then index ``ids[start_index:]`` chunk by chunk.

    Every bootstrap step (seed list, cache file, simulation factory) runs
    before any request is made, so a BootstrapFailure never leaves a
    partially written cache behind.
    """

    if start_index < 0:
        raise BootstrapFailure(f"start index must be >= 0, got {start_index}")
    ids = load_ids(settings.input_path)
    factory = simulation_factory or load_simulation_factory(settings.simulation)
    cache = EntityCache(settings.cache_path)
    cache.load()
    logger.info("Starting from index = %d of %d", start_index, len(ids))

    metrics = FetchMetrics()
    async with RetryingFetcher(fetch_config_from_settings(settings), session=session, metrics=metrics) as fetcher:
        content = ContentCache(
            fetcher,
            settings.http_cache_dir,
            bypass=path_bypass(settings.blockheight_path),
            enabled=not settings.disable_http_cache,
        )
        client = OrdClient(
            content,
            host=settings.host,
            blockheight_path=settings.blockheight_path,
            fetch_options={"headers": {HDR_CONTENT_TYPE: JSON_CONTENT_TYPE}},
        )
        indexer = Indexer(cache, client, factory, settings)
        runner = BatchRunner(
            indexer,
            cache,
            chunk_size=settings.chunk_size,
            concurrency=settings.concurrency,
            metrics=metrics,
        )
        return await runner.run(ids, start_index)

