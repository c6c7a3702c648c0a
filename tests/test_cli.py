import json

import pytest
from typer.testing import CliRunner

from collection_indexer.cli import app

runner = CliRunner()

_ENV_VARS = (
    "INDEXER_INPUT_PATH",
    "INDEXER_CACHE_PATH",
    "INDEXER_HTTP_CACHE_DIR",
    "INDEXER_STATUS_PATH",
    "INDEXER_HTTP_CACHE_DISABLE",
    "INDEXER_SIMULATION",
)


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def _write_cache(path, document):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document), encoding="utf-8")


def test_status_writes_summary(tmp_path):
    cache = tmp_path / "cache" / "collection-cache.json"
    _write_cache(
        cache,
        {
            "blockHeight": 871_000,
            "order": ["a", "b"],
            "data": {"a": {"isAlive": True, "timesFed": 2}, "b": {"isAlive": False}},
        },
    )
    out = tmp_path / "out" / "status.json"

    result = runner.invoke(app, ["status", "--cache", str(cache), "--out", str(out)])

    assert result.exit_code == 0
    status = json.loads(out.read_text(encoding="utf-8"))
    assert status["alivePets"] == 1
    assert status["deadPets"] == 1
    assert status["timesFed"] == "2"


def test_status_uses_environment_paths(tmp_path, monkeypatch):
    cache = tmp_path / "elsewhere.json"
    _write_cache(cache, {"blockHeight": 1, "order": [], "data": {}})
    monkeypatch.setenv("INDEXER_CACHE_PATH", str(cache))
    monkeypatch.setenv("INDEXER_STATUS_PATH", str(tmp_path / "s.json"))

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert (tmp_path / "s.json").exists()


def test_status_rejects_malformed_cache(tmp_path):
    cache = tmp_path / "bad.json"
    _write_cache(cache, {"order": "nope"})

    result = runner.invoke(app, ["status", "--cache", str(cache), "--out", str(tmp_path / "s.json")])

    assert result.exit_code == 1
    assert not (tmp_path / "s.json").exists()


def test_run_exits_2_when_seed_file_missing(tmp_path):
    result = runner.invoke(
        app,
        ["run", "--input", str(tmp_path / "missing.json"), "--cache", str(tmp_path / "c.json")],
    )

    assert result.exit_code == 2
    assert not (tmp_path / "c.json").exists()


def test_doctor_flags_missing_simulation(tmp_path):
    (tmp_path / "ids.json").write_text('["a"]', encoding="utf-8")
    result = runner.invoke(app, ["doctor"], env={"INDEXER_INPUT_PATH": str(tmp_path / "ids.json")})

    assert result.exit_code == 2
    assert "INDEXER_SIMULATION: missing" in result.output
