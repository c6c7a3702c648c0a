"""On-disk keys of the collection cache, kept in one place to avoid magic strings."""

from __future__ import annotations

# Cache document
K_BLOCK_HEIGHT = "blockHeight"
K_ORDER = "order"
K_DATA = "data"

# Entity summary
K_IS_ALIVE = "isAlive"
K_IS_IMMORTAL = "isImmortal"
K_LAST_CHECK_EPOCH = "lastCheckBlockheight"
K_LAST_CHECK_AT = "lastCheckAt"
K_THUMBNAIL_HASHES = "thumbnailHashes"
K_THUMBNAIL_URL = "thumbnailUrl"
K_TIMES_FED = "timesFed"
K_METADATA = "metadata"
K_LAST_ERROR = "lastError"

# Summary metadata block
K_NAME = "name"
K_HEARTS_REMAINING = "heartsRemaining"
K_STAGE_OF_EVOLUTION = "stageOfEvolution"
K_ELEMENTAL_TYPE = "elementalType"
K_PINEAPPLE_WEAKNESS = "pineappleWeakness"
K_LAST_EVENT_BLOCK = "lastEventBlock"
K_DEATH_AT = "deathAt"

# Tri-state liveness as written to disk
ALIVE_UNKNOWN = "unknown"
