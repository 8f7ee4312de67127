"""FastAPI application exposing sync and pull request metrics.

Routes:
    - ``POST /api/v1/sources/github/fetch``: sync configured repositories now
    - ``GET /api/v1/github/merged_pr_duration_rolling_daily_average[.arrow]``
    - ``GET /api/v1/github/closed_prs[.arrow]``
    - ``GET /health``

Query endpoints take ``start_date`` and ``end_date`` (ISO dates, default
today) and a repeatable ``repo`` filter. The ``.arrow`` variants return an
Arrow IPC file instead of JSON.

Example:
    >>> from repospine.api.fastapi import create_app
    >>> from repospine.core.config import get_settings
    >>> app = create_app(get_settings(database=":memory:", fetch_enabled=False))
    >>> app.title
    'RepoSpine API'

    Run with: ``repospine serve`` or ``uvicorn repospine.api.fastapi:app``
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, timedelta
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Response

from repospine import __version__
from repospine.analytics.queries import PullRequestMetrics
from repospine.analytics.result import ARROW_FILE_MEDIA_TYPE, QueryResult
from repospine.core.config import Settings, get_settings
from repospine.core.exceptions import DateRangeError, ResourceKeyError, SyncError
from repospine.scheduler import PeriodicSync
from repospine.sync.service import SyncService

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(UTC).date()


def create_app(
    settings: Settings | None = None,
    service: SyncService | None = None,
    title: str = "RepoSpine API",
) -> FastAPI:
    """Create the API application.

    Args:
        settings: Configuration; loaded from the environment when omitted.
        service: Sync service; built from ``settings`` when omitted.
        title: API title for OpenAPI docs.

    Returns:
        Configured FastAPI application. The store is opened on startup and,
        when ``fetch_enabled`` and repositories are configured, a periodic
        sync runs until shutdown.
    """
    settings = settings or get_settings()
    service = service or SyncService.from_settings(settings)
    metrics = PullRequestMetrics(
        service.store,
        window_days=settings.window_days,
        unit=settings.duration_unit,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with service:
            periodic: PeriodicSync | None = None
            if settings.fetch_enabled and settings.github_repos:
                periodic = PeriodicSync(
                    service,
                    settings.github_repos,
                    interval=timedelta(seconds=settings.fetch_interval),
                )
                periodic.start()
            app.state.periodic = periodic
            try:
                yield
            finally:
                if periodic is not None:
                    await periodic.stop()

    app = FastAPI(
        title=title,
        version=__version__,
        description="Incremental GitHub pull request sync and metrics",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service
    app.state.metrics = metrics

    # =========================================================================
    # Health & Info Endpoints
    # =========================================================================

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {"name": title, "version": __version__}

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    # =========================================================================
    # Sync Endpoints
    # =========================================================================

    @app.post("/api/v1/sources/github/fetch")
    async def fetch_github() -> dict[str, Any]:
        """Sync every configured repository and return the latest watermark."""
        if not settings.github_repos:
            raise HTTPException(status_code=400, detail="No GitHub repositories configured")
        try:
            report = await service.sync_all(settings.github_repos)
        except ResourceKeyError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except SyncError as e:
            raise HTTPException(status_code=502, detail={"errors": e.errors}) from e

        return {
            "latest_watermark": report.latest_watermark.isoformat() if report.latest_watermark else None,
            "committed": report.total_committed,
            "discarded": report.total_discarded,
            "errors": report.errors,
        }

    # =========================================================================
    # Metrics Endpoints
    # =========================================================================

    async def _rolling_average(start_date: date | None, end_date: date | None, repo: list[str]) -> QueryResult:
        try:
            return await metrics.rolling_average(start_date or _today(), end_date or _today(), repo)
        except (DateRangeError, ResourceKeyError) as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

    async def _closed(start_date: date | None, end_date: date | None, repo: list[str]) -> QueryResult:
        try:
            return await metrics.closed_records(start_date or _today(), end_date or _today(), repo)
        except (DateRangeError, ResourceKeyError) as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

    @app.get("/api/v1/github/merged_pr_duration_rolling_daily_average")
    async def rolling_average_json(
        start_date: date | None = Query(None, description="First day, inclusive"),
        end_date: date | None = Query(None, description="Last day, inclusive"),
        repo: list[str] = Query(default=[], description="owner/name filter"),
    ) -> list[dict[str, Any]]:
        """Daily trailing average of merged pull request duration."""
        result = await _rolling_average(start_date, end_date, repo)
        return result.to_pylist()

    @app.get("/api/v1/github/merged_pr_duration_rolling_daily_average.arrow")
    async def rolling_average_arrow(
        start_date: date | None = Query(None),
        end_date: date | None = Query(None),
        repo: list[str] = Query(default=[]),
    ) -> Response:
        result = await _rolling_average(start_date, end_date, repo)
        return Response(content=result.to_ipc_bytes(), media_type=ARROW_FILE_MEDIA_TYPE)

    @app.get("/api/v1/github/closed_prs")
    async def closed_prs_json(
        start_date: date | None = Query(None, description="First closure day, inclusive"),
        end_date: date | None = Query(None, description="Last closure day, inclusive"),
        repo: list[str] = Query(default=[], description="owner/name filter"),
    ) -> list[dict[str, Any]]:
        """Latest version of each pull request closed in the range."""
        result = await _closed(start_date, end_date, repo)
        return result.to_pylist()

    @app.get("/api/v1/github/closed_prs.arrow")
    async def closed_prs_arrow(
        start_date: date | None = Query(None),
        end_date: date | None = Query(None),
        repo: list[str] = Query(default=[]),
    ) -> Response:
        result = await _closed(start_date, end_date, repo)
        return Response(content=result.to_ipc_bytes(), media_type=ARROW_FILE_MEDIA_TYPE)

    return app


# Usage: uvicorn repospine.api.fastapi:app
def _create_default_app() -> FastAPI:
    """Create the app from environment settings."""
    return create_app(get_settings())


app = _create_default_app()
