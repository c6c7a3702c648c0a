import asyncio
import json

import pytest

from collection_indexer.workflows.batch import BatchRunner, iter_chunks
from collection_indexer.workflows.entity_cache import EntityCache
from collection_indexer.workflows.indexer import Indexer
from collection_indexer.workflows.settings import IndexerSettings

from fakes import FakeClient, FakeSimulations, PetState, SleepRecorder


def _runner(tmp_path, states, *, chunk_size=100, concurrency=64, blockheight=871_000):
    sims = FakeSimulations(states)
    client = FakeClient(blockheight)
    cache = EntityCache(tmp_path / "collection-cache.json")
    flushes = []
    original_save = cache.save

    def counting_save(block_height=None):
        flushes.append(list(cache.ids()))
        original_save(block_height)

    cache.save = counting_save
    indexer = Indexer(cache, client, sims, IndexerSettings(), sleep=SleepRecorder())
    runner = BatchRunner(indexer, cache, chunk_size=chunk_size, concurrency=concurrency)
    return runner, cache, sims, client, flushes


def test_scenario_one_chunk_with_one_failing_pet(tmp_path):
    states = {
        "a": PetState(alive=True),
        "b": PetState(always_fail=True),
        "c": PetState(alive=False),
    }
    runner, cache, sims, client, flushes = _runner(tmp_path, states)

    report = asyncio.run(runner.run(["a", "b", "c"], 0))

    assert client.blockheight_calls == 1
    assert len(flushes) == 1
    assert sims.updates == {"a": 1, "b": 3, "c": 1}
    assert report.epoch == 871_000
    assert report.chunks == 1
    assert report.processed == 3
    assert report.unknown == 1
    assert report.outcomes == {"evaluated": 2, "failed": 1}

    saved = json.loads((tmp_path / "collection-cache.json").read_text(encoding="utf-8"))
    assert saved["blockHeight"] == 871_000
    assert sorted(saved["order"]) == ["a", "b", "c"]
    assert saved["data"]["b"]["isAlive"] == "unknown"
    assert saved["data"]["a"]["isAlive"] is True
    assert saved["data"]["c"]["isAlive"] is False
    assert saved["data"]["a"]["lastCheckBlockheight"] == 871_000
    assert saved["data"]["c"]["lastCheckBlockheight"] == 871_000


def test_rerun_in_same_epoch_touches_nothing(tmp_path):
    states = {pet_id: PetState() for pet_id in "abc"}
    runner, cache, sims, client, _ = _runner(tmp_path, states)
    asyncio.run(runner.run(["a", "b", "c"]))
    first = (tmp_path / "collection-cache.json").read_text(encoding="utf-8")

    report = asyncio.run(runner.run(["a", "b", "c"]))

    assert sims.updates == {"a": 1, "b": 1, "c": 1}
    assert report.outcomes == {"skipped_current": 3}
    assert (tmp_path / "collection-cache.json").read_text(encoding="utf-8") == first


def test_chunks_start_at_index_and_flush_after_each(tmp_path):
    ids = [f"pet-{i}" for i in range(7)]
    runner, cache, sims, _, flushes = _runner(tmp_path, {pet_id: PetState() for pet_id in ids}, chunk_size=3)

    report = asyncio.run(runner.run(ids, 2))

    assert report.chunks == 2
    assert len(flushes) == 2
    assert sorted(flushes[0]) == ["pet-2", "pet-3", "pet-4"]
    assert sorted(flushes[1]) == ["pet-2", "pet-3", "pet-4", "pet-5", "pet-6"]
    assert "pet-0" not in cache and "pet-1" not in cache
    # ordinals are 1-based positions in the full seed list
    assert cache.get("pet-2").metadata["name"] == "Pizza Pet #3"
    assert cache.get("pet-6").metadata["name"] == "Pizza Pet #7"


def test_concurrency_is_bounded_within_a_chunk(tmp_path):
    ids = [f"pet-{i}" for i in range(10)]
    states = {pet_id: PetState(delay=0.01) for pet_id in ids}
    runner, _, sims, _, _ = _runner(tmp_path, states, concurrency=2)

    asyncio.run(runner.run(ids))

    assert sims.max_in_flight == 2
    assert sum(sims.updates.values()) == 10


def test_epoch_is_held_fixed_for_the_whole_run(tmp_path):
    ids = [f"pet-{i}" for i in range(5)]
    runner, cache, _, client, _ = _runner(tmp_path, {pet_id: PetState() for pet_id in ids}, chunk_size=2)

    asyncio.run(runner.run(ids))

    assert client.blockheight_calls == 1
    assert {cache.get(pet_id).last_check_epoch for pet_id in ids} == {871_000}


def test_explicit_epoch_skips_remote_lookup(tmp_path):
    runner, cache, _, client, _ = _runner(tmp_path, {"a": PetState()})

    report = asyncio.run(runner.run(["a"], epoch=5))

    assert client.blockheight_calls == 0
    assert report.epoch == 5
    assert cache.get("a").last_check_epoch == 5


def test_start_index_past_end_runs_no_chunks(tmp_path):
    runner, _, _, _, flushes = _runner(tmp_path, {"a": PetState()})
    report = asyncio.run(runner.run(["a"], 5))
    assert report.chunks == 0
    assert flushes == []


def test_iter_chunks_validates_arguments():
    assert list(iter_chunks(["a", "b", "c"], 1, 2)) == [(1, ["b", "c"])]
    with pytest.raises(ValueError):
        list(iter_chunks(["a"], -1, 2))
    with pytest.raises(ValueError):
        list(iter_chunks(["a"], 0, 0))


def test_corrupt_entry_does_not_abort_the_chunk(tmp_path):
    (tmp_path / "collection-cache.json").write_text(
        json.dumps(
            {
                "blockHeight": 1,
                "order": ["a"],
                "data": {"a": {"isAlive": True, "timesFed": "n/a", "lastCheckBlockheight": 1}},
            }
        ),
        encoding="utf-8",
    )
    states = {"a": PetState(children=1), "b": PetState(), "c": PetState()}
    runner, cache, sims, _, flushes = _runner(tmp_path, states)
    cache.load()

    report = asyncio.run(runner.run(["a", "b", "c"], 0))

    assert report.outcomes == {"evaluated": 3}
    assert len(flushes) == 1
    saved = json.loads((tmp_path / "collection-cache.json").read_text(encoding="utf-8"))
    assert saved["blockHeight"] == 871_000
    assert sorted(saved["order"]) == ["a", "b", "c"]
    assert saved["data"]["a"]["timesFed"] == 1


def test_recording_errors_are_contained_per_pet(tmp_path):
    states = {"a": PetState(), "b": PetState()}
    sims = FakeSimulations(states)
    cache = EntityCache(tmp_path / "collection-cache.json")
    settings = IndexerSettings(thumbnail_url_template="https://cdn.example.test/{missing}.png")
    indexer = Indexer(cache, FakeClient(), sims, settings, sleep=SleepRecorder())
    runner = BatchRunner(indexer, cache, chunk_size=10, concurrency=4)

    report = asyncio.run(runner.run(["a", "b"], 0))

    assert report.outcomes == {"failed": 2}
    assert report.unknown == 2
    saved = json.loads((tmp_path / "collection-cache.json").read_text(encoding="utf-8"))
    assert saved["data"]["a"]["isAlive"] == "unknown"
    assert saved["data"]["b"]["isAlive"] == "unknown"
