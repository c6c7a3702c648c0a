"""Persistent per-inscription summaries.

The cache file is a single JSON object::

    {"blockHeight": 871234, "order": ["<id>", ...], "data": {"<id>": {...}}}

``order`` records first-insertion order and is part of the on-disk contract;
``data`` maps each inscription id to its summary. The file is owned by one
indexer process at a time and rewritten atomically on every flush.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.errors import BootstrapFailure
from ..core.keys import (
    ALIVE_UNKNOWN,
    K_BLOCK_HEIGHT,
    K_DATA,
    K_IS_ALIVE,
    K_IS_IMMORTAL,
    K_LAST_CHECK_AT,
    K_LAST_CHECK_EPOCH,
    K_LAST_ERROR,
    K_METADATA,
    K_ORDER,
    K_THUMBNAIL_HASHES,
    K_THUMBNAIL_URL,
    K_TIMES_FED,
)

logger = logging.getLogger(__name__)

_KNOWN_KEYS = {
    K_IS_ALIVE,
    K_IS_IMMORTAL,
    K_LAST_CHECK_EPOCH,
    K_LAST_CHECK_AT,
    K_THUMBNAIL_HASHES,
    K_THUMBNAIL_URL,
    K_TIMES_FED,
    K_METADATA,
    K_LAST_ERROR,
}


class CacheFormatError(BootstrapFailure):
    pass


def _parse_alive(value: Any) -> Optional[bool]:
    if value is True or value is False:
        return value
    return None


def _parse_count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


@dataclass
class EntitySummary:
    """Persisted state of one inscription.

    ``is_alive`` is tri-state: ``None`` means the last evaluation failed and
    the liveness is unknown (written to disk as ``"unknown"``).
    """

    is_alive: Optional[bool] = None
    is_immortal: Optional[bool] = None
    last_check_epoch: Optional[int] = None
    last_check_at: Optional[str] = None
    thumbnail_hashes: List[str] = field(default_factory=list)
    thumbnail_url: Optional[str] = None
    times_fed: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_dead(self) -> bool:
        return self.is_alive is False

    @property
    def last_hash(self) -> Optional[str]:
        return self.thumbnail_hashes[-1] if self.thumbnail_hashes else None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EntitySummary":
        hashes = payload.get(K_THUMBNAIL_HASHES)
        return cls(
            is_alive=_parse_alive(payload.get(K_IS_ALIVE)),
            is_immortal=payload.get(K_IS_IMMORTAL),
            last_check_epoch=payload.get(K_LAST_CHECK_EPOCH),
            last_check_at=payload.get(K_LAST_CHECK_AT),
            thumbnail_hashes=[str(h) for h in hashes] if isinstance(hashes, list) else [],
            thumbnail_url=payload.get(K_THUMBNAIL_URL),
            times_fed=_parse_count(payload.get(K_TIMES_FED)),
            metadata=payload.get(K_METADATA),
            last_error=payload.get(K_LAST_ERROR),
            extra={k: v for k, v in payload.items() if k not in _KNOWN_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            K_IS_ALIVE: ALIVE_UNKNOWN if self.is_alive is None else self.is_alive,
        }
        optional = (
            (K_IS_IMMORTAL, self.is_immortal),
            (K_LAST_CHECK_EPOCH, self.last_check_epoch),
            (K_LAST_CHECK_AT, self.last_check_at),
            (K_THUMBNAIL_URL, self.thumbnail_url),
            (K_TIMES_FED, self.times_fed),
            (K_METADATA, self.metadata),
            (K_LAST_ERROR, self.last_error),
        )
        for key, value in optional:
            if value is not None:
                payload[key] = value
        payload[K_THUMBNAIL_HASHES] = list(self.thumbnail_hashes)
        for key, value in self.extra.items():
            payload.setdefault(key, value)
        return payload

    def with_evaluation(
        self,
        *,
        is_alive: bool,
        is_immortal: bool,
        thumbnail_hash: str,
        thumbnail_url: Optional[str],
        times_fed: int,
        metadata: Dict[str, Any],
        epoch: int,
        checked_at: str,
    ) -> "EntitySummary":
        """Return a copy with every evaluated field replaced.

        The hash is appended only when it differs from the last stored one,
        and ``times_fed`` never decreases.
        """

        hashes = list(self.thumbnail_hashes)
        if thumbnail_hash and (not hashes or hashes[-1] != thumbnail_hash):
            hashes.append(thumbnail_hash)
        return replace(
            self,
            is_alive=is_alive,
            is_immortal=is_immortal,
            last_check_epoch=epoch,
            last_check_at=checked_at,
            thumbnail_hashes=hashes,
            thumbnail_url=thumbnail_url,
            times_fed=max(int(self.times_fed or 0), int(times_fed)),
            metadata=dict(metadata),
            last_error=None,
            extra=dict(self.extra),
        )

    def with_failure(self, error: str, *, checked_at: str) -> "EntitySummary":
        """Return a copy flagged unknown; every other known field is preserved."""

        return replace(
            self,
            is_alive=None,
            last_error=error,
            last_check_at=checked_at,
            thumbnail_hashes=list(self.thumbnail_hashes),
            extra=dict(self.extra),
        )


class EntityCache:
    """Ordered id -> EntitySummary store backed by one JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.block_height: Optional[int] = None
        self._order: List[str] = []
        self._data: Dict[str, EntitySummary] = {}
        # Guards get+set pairs and flushes across tasks sharing the event loop
        self.lock: asyncio.Lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, inscription_id: object) -> bool:
        return inscription_id in self._data

    def ids(self) -> List[str]:
        return list(self._order)

    def get(self, inscription_id: str) -> Optional[EntitySummary]:
        return self._data.get(inscription_id)

    def set(self, inscription_id: str, summary: EntitySummary) -> None:
        if inscription_id not in self._data:
            self._order.append(inscription_id)
        self._data[inscription_id] = summary

    def load(self) -> None:
        if not self.path.exists():
            logger.info("Cache file not found at %s, starting fresh.", self.path)
            return
        try:
            parsed = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise CacheFormatError(f"Cannot read cache file {self.path}: {exc}") from exc
        if not isinstance(parsed, dict):
            raise CacheFormatError(f"Cache file {self.path} must contain a JSON object")
        order = parsed.get(K_ORDER, [])
        data = parsed.get(K_DATA, {})
        if not isinstance(order, list) or not isinstance(data, dict):
            raise CacheFormatError(f"Cache file {self.path} has malformed 'order' or 'data'")

        self._order = []
        self._data = {}
        for inscription_id in order:
            key = str(inscription_id)
            entry = data.get(key)
            if key in self._data or not isinstance(entry, dict):
                continue
            self._order.append(key)
            self._data[key] = EntitySummary.from_dict(entry)
        # Entries missing from order still belong to the cache; keep them after the ordered ones
        for key, entry in data.items():
            if key not in self._data and isinstance(entry, dict):
                self._order.append(key)
                self._data[key] = EntitySummary.from_dict(entry)

        height = parsed.get(K_BLOCK_HEIGHT)
        self.block_height = height if isinstance(height, int) and not isinstance(height, bool) else None
        logger.info("Loaded cache with %d entries.", len(self._order))

    def to_document(self, block_height: Optional[int] = None) -> Dict[str, Any]:
        height = block_height if block_height is not None else self.block_height
        return {
            K_BLOCK_HEIGHT: height,
            K_ORDER: list(self._order),
            K_DATA: {key: self._data[key].to_dict() for key in self._order},
        }

    def save(self, block_height: Optional[int] = None) -> None:
        document = self.to_document(block_height)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.remove(tmp_name)
            except OSError:
                pass
            raise
        if block_height is not None:
            self.block_height = block_height
        logger.info("Cache saved to %s", self.path)

    async def flush(self, block_height: Optional[int] = None) -> None:
        async with self.lock:
            self.save(block_height)
