"""Chunked, bounded-concurrency driver for a full indexing run."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .entity_cache import EntityCache
from .indexer import Indexer, Outcome
from .indexer_config import CHUNK_SIZE, CONCURRENCY
from .web_fetch import FetchMetrics

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    epoch: int
    start_index: int
    total_ids: int
    processed: int = 0
    chunks: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)
    unknown: int = 0
    fetch_metrics: Dict[str, int] = field(default_factory=dict)
    runtime_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epoch": self.epoch,
            "start_index": self.start_index,
            "total_ids": self.total_ids,
            "processed": self.processed,
            "chunks": self.chunks,
            "outcomes": dict(self.outcomes),
            "unknown": self.unknown,
            "fetch_metrics": dict(self.fetch_metrics),
            "runtime_seconds": round(self.runtime_seconds, 3),
        }


def iter_chunks(ids: Sequence[str], start_index: int, chunk_size: int):
    """Yield ``(offset, chunk)`` pairs covering ``ids[start_index:]``."""

    if start_index < 0:
        raise ValueError(f"start_index must be >= 0, got {start_index}")
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    for offset in range(start_index, len(ids), chunk_size):
        yield offset, list(ids[offset:offset + chunk_size])


class BatchRunner:
    def __init__(
        self,
        indexer: Indexer,
        cache: EntityCache,
        *,
        chunk_size: int = CHUNK_SIZE,
        concurrency: int = CONCURRENCY,
        metrics: Optional[FetchMetrics] = None,
    ) -> None:
        self.indexer = indexer
        self.cache = cache
        self.chunk_size = chunk_size
        self.concurrency = max(1, concurrency)
        self.metrics = metrics

    async def run(self, all_ids: Sequence[str], start_index: int = 0, epoch: Optional[int] = None) -> RunReport:
        chunks = list(iter_chunks(all_ids, start_index, self.chunk_size))
        started = time.perf_counter()
        # Resolved once; every chunk of this run sees the same blockheight
        if epoch is None:
            epoch = await self.indexer.resolve_epoch()
        report = RunReport(epoch=epoch, start_index=start_index, total_ids=len(all_ids))
        outcomes: Counter = Counter()

        for offset, chunk in chunks:
            logger.info("=== Processing chunk: [%d..%d] ===", offset, offset + len(chunk) - 1)
            results = await self._process_chunk(chunk, offset + 1, epoch)
            outcomes.update(outcome.value for outcome in results)
            report.processed += len(chunk)
            report.chunks += 1
            # Flush after every chunk so a crash loses at most one chunk of work
            await self.cache.flush(epoch)

        report.outcomes = dict(outcomes)
        report.unknown = sum(1 for key in self.cache.ids() if self._is_unknown(key))
        report.fetch_metrics = self.metrics.snapshot() if self.metrics is not None else {}
        report.runtime_seconds = time.perf_counter() - started
        logger.info(
            "Run at blockheight %d completed with %d unknown entities (%d processed, %d chunks)",
            epoch,
            report.unknown,
            report.processed,
            report.chunks,
        )
        if report.fetch_metrics:
            logger.info(
                "Fetch metrics: cache hits=%d, requests=%d, failed attempts=%d",
                report.fetch_metrics.get("cache_hits", 0),
                report.fetch_metrics.get("http_requests", 0),
                report.fetch_metrics.get("http_failures", 0),
            )
        return report

    async def _process_chunk(self, chunk: List[str], first_ordinal: int, epoch: int) -> List[Outcome]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(inscription_id: str, ordinal: int) -> Outcome:
            async with semaphore:
                return await self.indexer.process_entity(inscription_id, ordinal, epoch)

        tasks = [_bounded(inscription_id, first_ordinal + idx) for idx, inscription_id in enumerate(chunk)]
        return list(await asyncio.gather(*tasks))

    def _is_unknown(self, inscription_id: str) -> bool:
        summary = self.cache.get(inscription_id)
        return summary is not None and summary.is_alive is None
