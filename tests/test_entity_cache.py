import asyncio
import json
from pathlib import Path

import pytest

from collection_indexer.workflows.entity_cache import CacheFormatError, EntityCache, EntitySummary


def _evaluated(summary: EntitySummary, thumbnail_hash: str, *, epoch: int = 100, times_fed: int = 1) -> EntitySummary:
    return summary.with_evaluation(
        is_alive=True,
        is_immortal=False,
        thumbnail_hash=thumbnail_hash,
        thumbnail_url=f"https://cdn.example.test/thumbnails/{thumbnail_hash}.png",
        times_fed=times_fed,
        metadata={"name": "Pizza Pet #1", "stageOfEvolution": "baby"},
        epoch=epoch,
        checked_at="2026-01-01T00:00:00Z",
    )


def test_missing_file_starts_empty(tmp_path: Path) -> None:
    cache = EntityCache(tmp_path / "collection-cache.json")
    cache.load()
    assert len(cache) == 0
    assert cache.block_height is None


def test_save_then_load_round_trips_order_and_data(tmp_path: Path) -> None:
    path = tmp_path / "cache" / "collection-cache.json"
    cache = EntityCache(path)
    cache.set("c", _evaluated(EntitySummary(), "h1"))
    cache.set("a", EntitySummary().with_failure("Failed update after 3 attempts: boom", checked_at="t"))
    cache.set("b", _evaluated(EntitySummary(), "h2", times_fed=4))
    cache.save(871_000)

    reloaded = EntityCache(path)
    reloaded.load()

    assert reloaded.ids() == ["c", "a", "b"]
    assert reloaded.block_height == 871_000
    assert reloaded.to_document() == cache.to_document()
    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["order"] == ["c", "a", "b"]
    assert on_disk["data"]["a"]["isAlive"] == "unknown"
    assert on_disk["blockHeight"] == 871_000


def test_set_appends_new_ids_without_reordering(tmp_path: Path) -> None:
    cache = EntityCache(tmp_path / "c.json")
    for pet_id in ("x", "y", "z"):
        cache.set(pet_id, EntitySummary())
    cache.set("y", _evaluated(EntitySummary(), "h"))
    cache.set("w", EntitySummary())
    assert cache.ids() == ["x", "y", "z", "w"]


def test_unknown_keys_survive_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "c.json"
    path.write_text(
        json.dumps(
            {
                "blockHeight": 5,
                "order": ["p"],
                "data": {"p": {"isAlive": True, "thumbnailHashes": ["h"], "legacyField": {"k": 1}}},
            }
        ),
        encoding="utf-8",
    )
    cache = EntityCache(path)
    cache.load()
    cache.save()

    again = json.loads(path.read_text(encoding="utf-8"))
    assert again["data"]["p"]["legacyField"] == {"k": 1}
    assert again["blockHeight"] == 5


@pytest.mark.parametrize(
    "payload",
    ["not json", json.dumps([1, 2]), json.dumps({"order": {}, "data": {}}), json.dumps({"order": [], "data": []})],
)
def test_malformed_cache_raises(tmp_path: Path, payload: str) -> None:
    path = tmp_path / "c.json"
    path.write_text(payload, encoding="utf-8")
    with pytest.raises(CacheFormatError):
        EntityCache(path).load()


def test_hash_appended_only_when_changed() -> None:
    first = _evaluated(EntitySummary(), "aaa")
    same = _evaluated(first, "aaa", epoch=101)
    changed = _evaluated(same, "bbb", epoch=102)

    assert first.thumbnail_hashes == ["aaa"]
    assert same.thumbnail_hashes == ["aaa"]
    assert changed.thumbnail_hashes == ["aaa", "bbb"]


def test_failure_preserves_known_fields() -> None:
    good = _evaluated(EntitySummary(), "aaa", times_fed=3)
    failed = good.with_failure("Failed update after 3 attempts: timeout", checked_at="2026-02-02T00:00:00Z")

    assert failed.is_alive is None
    assert failed.last_error.startswith("Failed update")
    assert failed.last_check_at == "2026-02-02T00:00:00Z"
    assert failed.last_check_epoch == good.last_check_epoch
    assert failed.thumbnail_hashes == good.thumbnail_hashes
    assert failed.metadata == good.metadata
    assert failed.times_fed == 3

    recovered = _evaluated(failed, "aaa", epoch=105)
    assert recovered.last_error is None
    assert "lastError" not in recovered.to_dict()


def test_times_fed_never_decreases() -> None:
    summary = _evaluated(EntitySummary(), "h", times_fed=5)
    assert _evaluated(summary, "h", times_fed=2).times_fed == 5
    assert _evaluated(summary, "h", times_fed=7).times_fed == 7


def test_flush_writes_under_lock(tmp_path: Path) -> None:
    cache = EntityCache(tmp_path / "c.json")
    cache.set("p", EntitySummary(is_alive=False))
    asyncio.run(cache.flush(42))

    assert json.loads((tmp_path / "c.json").read_text(encoding="utf-8"))["blockHeight"] == 42
    assert not cache.lock.locked()
    assert [p.name for p in tmp_path.iterdir()] == ["c.json"]


@pytest.mark.parametrize("raw, expected", [(4, 4), ("7", 7), ("n/a", None), (True, None), (1.5, None)])
def test_times_fed_is_coerced_on_load(raw, expected) -> None:
    summary = EntitySummary.from_dict({"isAlive": True, "timesFed": raw})
    assert summary.times_fed == expected
    assert _evaluated(summary, "h", times_fed=2).times_fed == max(expected or 0, 2)
