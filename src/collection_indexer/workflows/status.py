"""Collection status derived from a saved cache file."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from ..core.keys import (
    ALIVE_UNKNOWN,
    K_BLOCK_HEIGHT,
    K_DATA,
    K_IS_ALIVE,
    K_IS_IMMORTAL,
    K_METADATA,
    K_ORDER,
    K_STAGE_OF_EVOLUTION,
    K_TIMES_FED,
)
from .entity_cache import CacheFormatError
from .indexer_config import EVOLUTION_STAGES


def load_cache_document(path: Path) -> Dict[str, Any]:
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CacheFormatError(f"Failed to read or parse {path}: {exc}") from exc
    if (
        not isinstance(document, dict)
        or not isinstance(document.get(K_ORDER), list)
        or not isinstance(document.get(K_DATA), dict)
    ):
        raise CacheFormatError(f'Invalid structure in {path}. Missing "order" or "data" keys.')
    return document


def build_status(document: Dict[str, Any]) -> Dict[str, Any]:
    order = document.get(K_ORDER) or []
    data = document.get(K_DATA) or {}
    block_height = document.get(K_BLOCK_HEIGHT)

    alive = dead = unknown = 0
    fed = 0
    times_fed_total = 0
    immortal = 0
    stages = {stage: 0 for stage in EVOLUTION_STAGES}

    for pet_id in order:
        pet = data.get(pet_id)
        if not isinstance(pet, dict):
            continue
        state = pet.get(K_IS_ALIVE)
        if state is True:
            alive += 1
            if pet.get(K_IS_IMMORTAL):
                immortal += 1
            stage = (pet.get(K_METADATA) or {}).get(K_STAGE_OF_EVOLUTION)
            if stage in stages:
                stages[stage] += 1
        elif state is None or state == ALIVE_UNKNOWN:
            unknown += 1
        else:
            dead += 1

        try:
            times_fed = int(pet.get(K_TIMES_FED) or 0)
        except (TypeError, ValueError):
            times_fed = 0
        times_fed_total += times_fed
        if times_fed > 0:
            fed += 1

    return {
        "blockHeight": block_height,
        "blockProcessing": False,
        "blockMetrics": {
            "alivePetCount": alive,
            "lastBlockStart": None,
            "lastBlockEnd": None,
            "lastBlockCompleted": block_height,
            "sync": "inSync",
            "isBlockDelayed": False,
        },
        "petMetrics": {
            "dead": dead,
            "alive": alive,
            "unknown": unknown,
            "validPetCounts": alive + dead + unknown == len(order),
            "fed": fed,
            **stages,
            "immortal": immortal,
        },
        "alivePets": alive,
        "deadPets": dead,
        "timesFed": str(times_fed_total),
        "immortalsProcessed": str(immortal),
    }


def write_status(path: Path, status: Dict[str, Any]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(status, indent=2), encoding="utf-8")
