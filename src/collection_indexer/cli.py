from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer

from .core.errors import BootstrapFailure
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.runner import run_collection
from .workflows.settings import IndexerSettings, load_settings
from .workflows.status import build_status, load_cache_document, write_status

app = typer.Typer(add_completion=False, no_args_is_help=True, help="Incremental pet collection indexer.")

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _apply_overrides(settings: IndexerSettings, **overrides: object) -> IndexerSettings:
    changes = {key: value for key, value in overrides.items() if value is not None}
    return replace(settings, **changes) if changes else settings


@app.command("run")
def run_cmd(
    start_index: int = typer.Option(0, "--start-index", "--startIndex", min=0, help="Index into the seed list to resume from."),
    input_path: Optional[Path] = typer.Option(None, "--input", help="JSON array of inscription ids."),
    cache_path: Optional[Path] = typer.Option(None, "--cache", help="Collection cache file."),
    http_cache_dir: Optional[Path] = typer.Option(None, "--http-cache-dir", help="Directory for cached response bodies."),
    no_http_cache: bool = typer.Option(False, "--no-http-cache", help="Disable the HTTP content cache for this run."),
    buckets: Optional[int] = typer.Option(None, "--buckets", min=1, help="Re-evaluate immortal pets once every N blocks."),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", min=1, help="Max concurrent pet evaluations."),
    chunk_size: Optional[int] = typer.Option(None, "--chunk-size", min=1, help="Pets per chunk (cache flushed after each)."),
    json_out: bool = typer.Option(False, "--json", help="Print the run report JSON to stdout."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Index the collection, resuming at --start-index."""
    _configure_logging(verbose)
    settings = _apply_overrides(
        load_settings(),
        input_path=input_path,
        cache_path=cache_path,
        http_cache_dir=http_cache_dir,
        immortal_buckets=buckets,
        concurrency=concurrency,
        chunk_size=chunk_size,
    )
    if no_http_cache:
        settings = replace(settings, disable_http_cache=True)
    try:
        report = asyncio.run(run_collection(settings, start_index=start_index))
    except BootstrapFailure as exc:
        logger.error("%s", exc)
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    except Exception as exc:
        logger.exception("Fatal error in run")
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    if json_out:
        sys.stdout.write(json.dumps(report.to_dict()) + "\n")
    else:
        typer.echo(f"Done: blockheight {report.epoch}, {report.processed} processed, {report.unknown} unknown.")
    raise typer.Exit(code=0)


@app.command("status")
def status_cmd(
    cache_path: Optional[Path] = typer.Option(None, "--cache", help="Collection cache file to summarize."),
    out: Optional[Path] = typer.Option(None, "--out", help="Where to write status.json."),
    json_out: bool = typer.Option(False, "--json", help="Also print the status JSON to stdout."),
) -> None:
    """Write status.json with alive/dead/stage/fed/immortal counts."""
    settings = load_settings()
    source = cache_path or settings.cache_path
    target = out or settings.status_path
    try:
        status = build_status(load_cache_document(source))
    except BootstrapFailure as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    try:
        write_status(target, status)
    except OSError as exc:
        typer.echo(f"error: Failed to write {target}: {exc}", err=True)
        raise typer.Exit(code=1)
    if json_out:
        sys.stdout.write(json.dumps(status) + "\n")
    else:
        typer.echo(f"Status file has been written to: {target}")


@app.command("doctor")
def doctor_cmd() -> None:
    """Print environment diagnostics."""
    report = build_doctor_report(load_settings())
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
