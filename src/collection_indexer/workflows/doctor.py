from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.errors import BootstrapFailure
from .settings import IndexerSettings
from .simulation import load_simulation_factory


def _check_writable(path: Path) -> bool:
    try:
        if path.exists():
            return os.access(path, os.W_OK)
        for parent in path.parents:
            if parent.exists():
                return os.access(parent, os.W_OK)
        return False
    except OSError:
        return False


def _input_status(path: Path) -> Optional[str]:
    """Return None when the input list is usable, else a short reason."""

    if not path.exists():
        return "missing"
    try:
        ids = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        return f"unreadable: {exc}"
    if not isinstance(ids, list) or not all(isinstance(item, str) for item in ids):
        return "not a JSON array of strings"
    return None


def build_doctor_report(settings: IndexerSettings) -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    problem = _input_status(settings.input_path)
    add_check(
        "INDEXER_INPUT_PATH",
        problem is None,
        detail=str(settings.input_path) if problem is None else f"{settings.input_path} ({problem})",
        remedy="Point INDEXER_INPUT_PATH (or --input) at a JSON array of inscription ids.",
    )

    add_check(
        "INDEXER_CACHE_PATH",
        _check_writable(settings.cache_path),
        detail=str(settings.cache_path),
        remedy="Create the cache directory or set INDEXER_CACHE_PATH to a writable location.",
    )

    if settings.disable_http_cache:
        add_check("INDEXER_HTTP_CACHE_DISABLE", True, detail="HTTP content cache disabled", level="info")
    else:
        add_check(
            "INDEXER_HTTP_CACHE_DIR",
            _check_writable(settings.http_cache_dir),
            detail=str(settings.http_cache_dir),
            remedy="Create the directory or set INDEXER_HTTP_CACHE_DIR to a writable location.",
        )

    try:
        load_simulation_factory(settings.simulation)
        sim_error = None
    except BootstrapFailure as exc:
        sim_error = str(exc)
    add_check(
        "INDEXER_SIMULATION",
        sim_error is None,
        detail=settings.simulation if sim_error is None else sim_error,
        remedy="Set INDEXER_SIMULATION=module:callable to the pet simulation factory.",
    )
    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("Collection indexer doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        lines.append(f"- [{level}] {name}: {status}")
        detail = check.get("detail")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy and status != "ok":
            lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"
