"""Deterministic hash buckets used to spread re-evaluation of slow-changing pets."""

from __future__ import annotations

import hashlib

# 16 hex chars = 64-bit prefix of the sha256 digest
_PREFIX_HEX_CHARS = 16


def bucket_for(inscription_id: str, total_buckets: int) -> int:
    """Return the fixed bucket of an inscription for ``total_buckets`` buckets."""

    if total_buckets < 1:
        raise ValueError(f"total_buckets must be >= 1, got {total_buckets}")
    digest = hashlib.sha256(inscription_id.encode("utf-8")).hexdigest()
    return int(digest[:_PREFIX_HEX_CHARS], 16) % total_buckets


def should_skip(inscription_id: str, epoch: int, total_buckets: int) -> bool:
    """True unless the inscription's bucket is the one due at ``epoch``."""

    if total_buckets < 1:
        raise ValueError(f"total_buckets must be >= 1, got {total_buckets}")
    if total_buckets == 1:
        return False
    return bucket_for(inscription_id, total_buckets) != epoch % total_buckets
