from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..core.keys import (
    K_DEATH_AT,
    K_ELEMENTAL_TYPE,
    K_HEARTS_REMAINING,
    K_LAST_EVENT_BLOCK,
    K_NAME,
    K_PINEAPPLE_WEAKNESS,
    K_STAGE_OF_EVOLUTION,
)
from .buckets import should_skip
from .entity_cache import EntityCache, EntitySummary
from .indexer_config import DEAD_THUMBNAIL_HASH, DEFAULT_WEAKNESS
from .ord_client import OrdClient
from .settings import IndexerSettings
from .simulation import PetSimulation, SimulationFactory
from .web_fetch import SleepFunc, jittered_delay

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    EVALUATED = "evaluated"
    SKIPPED_CURRENT = "skipped_current"
    SKIPPED_DEAD = "skipped_dead"
    SKIPPED_IMMORTAL = "skipped_immortal"
    FAILED = "failed"


class EvaluationFailure(Exception):
    """A whole pet evaluation failed on every attempt. Recorded, never propagated past the indexer."""

    def __init__(self, inscription_id: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Failed update after {attempts} attempts: {last_error}")
        self.inscription_id = inscription_id
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class Evaluation:
    is_alive: bool
    is_immortal: bool
    thumbnail_hash: str
    times_fed: int
    metadata: Dict[str, Any]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def render_hash(rendered: Any) -> str:
    data = rendered if isinstance(rendered, bytes) else str(rendered).encode("utf-8")
    return hashlib.sha256(data).hexdigest()


class Indexer:
    """Decides per inscription whether work is due and records the outcome in the cache."""

    def __init__(
        self,
        cache: EntityCache,
        client: OrdClient,
        simulation_factory: SimulationFactory,
        settings: Optional[IndexerSettings] = None,
        *,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self.cache = cache
        self.client = client
        self.simulation_factory = simulation_factory
        self.settings = settings or IndexerSettings()
        self._sleep = sleep
        self._clock = clock

    async def resolve_epoch(self) -> int:
        blockheight = await self.client.blockheight()
        logger.info("Current blockheight: %d", blockheight)
        return blockheight

    def decide(self, inscription_id: str, summary: Optional[EntitySummary], epoch: int) -> Optional[Outcome]:
        """Return the skip outcome for an inscription, or ``None`` when it must be evaluated."""

        if summary is None:
            return None
        if summary.last_check_epoch == epoch and summary.is_alive is not None:
            return Outcome.SKIPPED_CURRENT
        if summary.is_alive is False:
            return Outcome.SKIPPED_DEAD
        if summary.is_alive is True and summary.is_immortal:
            if should_skip(inscription_id, epoch, self.settings.immortal_buckets):
                return Outcome.SKIPPED_IMMORTAL
        return None

    async def process_entity(self, inscription_id: str, ordinal: int, epoch: int) -> Outcome:
        async with self.cache.lock:
            existing = self.cache.get(inscription_id)
        skip = self.decide(inscription_id, existing, epoch)
        if skip is not None:
            logger.debug("%s: %s", inscription_id, skip.value)
            return skip

        logger.info("Processing inscriptionId = %s (#%d)", inscription_id, ordinal)
        try:
            evaluation = await self._evaluate_with_retries(inscription_id, ordinal, epoch)
        except EvaluationFailure as exc:
            logger.error("Failed to update pet for %s after %d attempts.", inscription_id, exc.attempts)
            async with self.cache.lock:
                current = self.cache.get(inscription_id) or EntitySummary()
                self.cache.set(inscription_id, current.with_failure(str(exc), checked_at=self._clock()))
            return Outcome.FAILED

        async with self.cache.lock:
            current = self.cache.get(inscription_id) or EntitySummary()
            try:
                updated = current.with_evaluation(
                    is_alive=evaluation.is_alive,
                    is_immortal=evaluation.is_immortal,
                    thumbnail_hash=evaluation.thumbnail_hash,
                    thumbnail_url=self._thumbnail_url(inscription_id, evaluation.thumbnail_hash),
                    times_fed=evaluation.times_fed,
                    metadata=evaluation.metadata,
                    epoch=epoch,
                    checked_at=self._clock(),
                )
            except Exception as exc:
                logger.error("Failed to record evaluation for %s: %s", inscription_id, exc)
                self.cache.set(
                    inscription_id,
                    current.with_failure(f"Failed to record evaluation: {exc}", checked_at=self._clock()),
                )
                return Outcome.FAILED
            self.cache.set(inscription_id, updated)
        logger.info("  => %s isAlive? %s", inscription_id, evaluation.is_alive)
        return Outcome.EVALUATED

    async def _evaluate_with_retries(self, inscription_id: str, ordinal: int, epoch: int) -> Evaluation:
        attempts = max(1, self.settings.max_attempts)
        last_exc: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            try:
                pet = self.simulation_factory(inscription_id, self.client)
                logger.debug("  [Attempt #%d] Calling pet.update(%d) for %s", attempt, epoch, inscription_id)
                await pet.update(epoch)
                return self._summarize(pet, ordinal, epoch)
            except Exception as exc:
                last_exc = exc
                logger.warning("pet.update() attempt #%d for %s failed: %s", attempt, inscription_id, exc)
                if attempt < attempts:
                    await self._sleep(jittered_delay(self.settings.backoff_min, self.settings.backoff_max))
        if last_exc:
            raise EvaluationFailure(inscription_id, attempts, last_exc) from last_exc
        raise RuntimeError("unexpected retry state")

    def _summarize(self, pet: PetSimulation, ordinal: int, epoch: int) -> Evaluation:
        alive = bool(pet.is_alive())
        thumbnail_hash = render_hash(pet.render()) if alive else DEAD_THUMBNAIL_HASH
        metadata: Dict[str, Any] = {
            K_NAME: self.settings.name_template.format(ordinal=ordinal),
            K_HEARTS_REMAINING: pet.health,
            K_STAGE_OF_EVOLUTION: pet.state,
            K_ELEMENTAL_TYPE: pet.type,
            K_PINEAPPLE_WEAKNESS: pet.weakness if pet.weakness is not None else DEFAULT_WEAKNESS,
            K_LAST_EVENT_BLOCK: epoch,
        }
        if pet.death_at:
            metadata[K_DEATH_AT] = pet.death_at
        return Evaluation(
            is_alive=alive,
            is_immortal=bool(pet.is_immortal()),
            thumbnail_hash=thumbnail_hash,
            times_fed=max(0, int(pet.child_count())),
            metadata=metadata,
        )

    def _thumbnail_url(self, inscription_id: str, thumbnail_hash: str) -> Optional[str]:
        template = self.settings.thumbnail_url_template
        # Dead pets have no rendered image to point at
        if not template or thumbnail_hash == DEAD_THUMBNAIL_HASH:
            return None
        return template.format(inscription_id=inscription_id, hash=thumbnail_hash)
