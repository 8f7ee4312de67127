"""CLI entry point."""

from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from repospine.analytics.queries import PullRequestMetrics
from repospine.analytics.result import QueryResult
from repospine.core.config import DurationUnit, Settings, SyncMode, get_settings
from repospine.core.exceptions import RepoSpineError, SyncError
from repospine.core.logging import configure_logging
from repospine.models.sync import SyncReport
from repospine.storage.duckdb import DuckDBStore
from repospine.sync.service import SyncService

app = typer.Typer(
    name="repospine",
    help="Incremental GitHub pull request sync and metrics",
    no_args_is_help=True,
)
console = Console()

DATE_FORMATS = ["%Y-%m-%d"]


def _settings(ctx: typer.Context, **overrides: object) -> Settings:
    base: dict[str, object] = dict(ctx.obj or {})
    base.update({k: v for k, v in overrides.items() if v is not None})
    return get_settings(**base)


def _day(value: datetime | None) -> date:
    return value.date() if value is not None else datetime.now(UTC).date()


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]Error:[/red] {message}")
    return typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    database: Optional[str] = typer.Option(None, "--database", "-d", help="DuckDB file or :memory:"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="terminal or json"),
) -> None:
    """Options shared by every command; unset options fall back to REPOSPINE_* settings."""
    ctx.obj = {k: v for k, v in {"database": database, "log_level": log_level, "log_format": log_format}.items() if v}
    settings = get_settings(**ctx.obj)
    configure_logging(settings.log_level, settings.log_format)


@app.command()
def version() -> None:
    """Show version."""
    from repospine import __version__

    console.print(f"repospine {__version__}")


@app.command()
def fetch(
    ctx: typer.Context,
    repos: Optional[list[str]] = typer.Argument(None, help="owner/name; defaults to REPOSPINE_GITHUB_REPOS"),
    mode: Optional[SyncMode] = typer.Option(None, "--mode", help="Incremental mode"),
) -> None:
    """Sync pull requests for the given repositories once."""
    settings = _settings(ctx, sync_mode=mode)
    targets = repos or settings.github_repos
    if not targets:
        raise _fail("No repositories given and REPOSPINE_GITHUB_REPOS is empty")

    async def run() -> SyncReport:
        async with SyncService.from_settings(settings) as service:
            return await service.sync_all(targets)

    try:
        report = asyncio.run(run())
    except SyncError as e:
        for resource, error in e.errors.items():
            console.print(f"[red]{resource}[/red]: {error}")
        raise _fail(str(e)) from e
    except RepoSpineError as e:
        raise _fail(str(e)) from e

    table = Table(title="Sync results")
    table.add_column("Repository", style="cyan")
    table.add_column("State")
    table.add_column("Requested", justify="right")
    table.add_column("Committed", justify="right", style="green")
    table.add_column("Discarded", justify="right")
    table.add_column("Error", style="red")
    for result in report.results.values():
        table.add_row(
            result.resource,
            result.final_state.value,
            str(result.pages_requested),
            str(result.pages_committed),
            str(result.pages_discarded),
            result.error or "",
        )
    console.print(table)
    if report.latest_watermark is not None:
        console.print(f"Latest fetch: {report.latest_watermark.isoformat()}")


def _run_query(settings: Settings, query: str, start: date, end: date, repos: list[str]) -> QueryResult:
    async def run() -> QueryResult:
        async with DuckDBStore(settings.database) as store:
            metrics = PullRequestMetrics(store, window_days=settings.window_days, unit=settings.duration_unit)
            if query == "rolling":
                return await metrics.rolling_average(start, end, repos)
            return await metrics.closed_records(start, end, repos)

    try:
        return asyncio.run(run())
    except RepoSpineError as e:
        raise _fail(str(e)) from e


def _print_result(result: QueryResult, title: str, output: Path | None) -> None:
    if output is not None:
        output.write_bytes(result.to_ipc_bytes())
        console.print(f"Wrote {result.num_rows} rows to {output}")
        return

    table = Table(title=title)
    for name in result.column_names:
        table.add_column(name)
    for row in result.to_pylist():
        table.add_row(*("" if v is None else f"{v:.4f}" if isinstance(v, float) else str(v) for v in row.values()))
    console.print(table)
    if result.stats.rejected:
        console.print(f"[yellow]{result.stats.rejected} raw document(s) failed projection and were excluded[/yellow]")


@app.command("rolling-average")
def rolling_average(
    ctx: typer.Context,
    start: Optional[datetime] = typer.Option(None, "--start", formats=DATE_FORMATS, help="First day (default today)"),
    end: Optional[datetime] = typer.Option(None, "--end", formats=DATE_FORMATS, help="Last day (default today)"),
    repo: Optional[list[str]] = typer.Option(None, "--repo", "-r", help="owner/name filter, repeatable"),
    window_days: Optional[int] = typer.Option(None, "--window-days", min=1, help="Trailing window"),
    unit: Optional[DurationUnit] = typer.Option(None, "--unit", help="Duration unit"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write an Arrow IPC file instead"),
) -> None:
    """Daily rolling average of merged pull request duration."""
    settings = _settings(ctx, window_days=window_days, duration_unit=unit)
    result = _run_query(settings, "rolling", _day(start), _day(end), repo or [])
    _print_result(result, f"Merged PR duration, {settings.window_days}-day rolling average ({settings.duration_unit.value})", output)


@app.command()
def closed(
    ctx: typer.Context,
    start: Optional[datetime] = typer.Option(None, "--start", formats=DATE_FORMATS, help="First day (default today)"),
    end: Optional[datetime] = typer.Option(None, "--end", formats=DATE_FORMATS, help="Last day (default today)"),
    repo: Optional[list[str]] = typer.Option(None, "--repo", "-r", help="owner/name filter, repeatable"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write an Arrow IPC file instead"),
) -> None:
    """Pull requests closed within a date range."""
    settings = _settings(ctx)
    result = _run_query(settings, "closed", _day(start), _day(end), repo or [])
    _print_result(result, "Closed pull requests", output)


@app.command()
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    no_fetch: bool = typer.Option(False, "--no-fetch", help="Disable the periodic background fetch"),
) -> None:
    """Run the HTTP API with periodic background fetch."""
    import uvicorn

    from repospine.api.fastapi import create_app

    settings = _settings(ctx, server_host=host, server_port=port, fetch_enabled=False if no_fetch else None)
    console.print(f"Serving on http://{settings.server_host}:{settings.server_port}")
    uvicorn.run(create_app(settings), host=settings.server_host, port=settings.server_port, log_config=None)


if __name__ == "__main__":
    app()
