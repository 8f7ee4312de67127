"""Sync entry point.

:class:`SyncService` ties the fetcher to one configured store and client and
exposes ``sync_all``. Concurrent ``sync_all`` calls are serialized by a lock,
so a slow sync never has a second one running on top of it.

Example:
    >>> from repospine.core.config import get_settings
    >>> from repospine.sync.service import SyncService
    >>> settings = get_settings(database=":memory:")
    >>> async with SyncService.from_settings(settings) as service:
    ...     report = await service.sync_all(["octocat/Hello-World"])
    ...     report.latest_watermark
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from repospine.core.config import Settings, SyncMode
from repospine.core.exceptions import ConfigurationError, SyncError
from repospine.http.client import GitHubClient
from repospine.models.resource import ResourceKey
from repospine.models.sync import SyncReport
from repospine.storage.duckdb import DuckDBStore
from repospine.sync.fetcher import PaginatedFetcher

logger = logging.getLogger(__name__)


class SyncService:
    """Incremental GitHub sync over one store.

    Args:
        store: Initialized store.
        client: GitHub client.
        api_url: API base URL; also the prefix of every watermark key.
        per_page: Page size.
        mode: Incremental mode.
        max_concurrency: Resources fetched at once.
    """

    def __init__(
        self,
        store: DuckDBStore,
        client: GitHubClient,
        *,
        api_url: str = "https://api.github.com",
        per_page: int = 100,
        mode: SyncMode = SyncMode.CONDITIONAL,
        max_concurrency: int = 3,
    ) -> None:
        if not api_url:
            raise ConfigurationError("No GitHub API URL configured")
        self._store = store
        self._client = client
        self._api_url = api_url.rstrip("/")
        self._fetcher = PaginatedFetcher(
            store,
            client,
            api_url=self._api_url,
            per_page=per_page,
            mode=mode,
            max_concurrency=max_concurrency,
        )
        self._lock = asyncio.Lock()
        self._owns_resources = False

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> SyncService:
        """Build a service that owns its store and client.

        Keyword arguments override the constructed store/client (tests pass
        ``client=GitHubClient(transport=...)``).
        """
        store = kwargs.pop("store", None) or DuckDBStore(settings.database)
        client = kwargs.pop("client", None) or GitHubClient(
            token=settings.auth_token(),
            timeout=settings.request_timeout,
        )
        service = cls(
            store,
            client,
            api_url=settings.github_api_url,
            per_page=settings.github_per_page,
            mode=settings.sync_mode,
            max_concurrency=settings.max_concurrency,
        )
        service._owns_resources = True
        return service

    @property
    def store(self) -> DuckDBStore:
        return self._store

    @property
    def is_running(self) -> bool:
        """Whether a sync currently holds the lock."""
        return self._lock.locked()

    @property
    def watermark_prefix(self) -> str:
        return f"{self._api_url}/"

    async def __aenter__(self) -> SyncService:
        await self._store.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._owns_resources:
            await self._client.close()
            await self._store.close()

    async def latest_fetch(self) -> datetime:
        """Newest watermark across every GitHub request key."""
        return await self._store.latest_watermark(self.watermark_prefix)

    async def sync_all(self, resources: Iterable[str | ResourceKey]) -> SyncReport:
        """Sync every resource once.

        Args:
            resources: ``owner/name`` strings or parsed keys.

        Returns:
            Report with per-resource results and the latest watermark.

        Raises:
            ResourceKeyError: If any resource string is malformed. Nothing is
                fetched in that case.
            SyncError: If every resource failed.
        """
        keys = ResourceKey.parse_many(resources)

        async with self._lock:
            report = SyncReport()
            logger.info("Starting sync of %d resource(s)", len(keys))

            report.results = await self._fetcher.fetch_all(keys)
            report.completed_at = datetime.now(UTC)

            for resource, error in report.errors.items():
                logger.error("Sync of %s failed: %s", resource, error)
            if report.all_failed:
                raise SyncError(report.errors)

            report.latest_watermark = await self.latest_fetch()
            logger.info(
                "Sync finished: committed=%d discarded=%d errors=%d latest=%s",
                report.total_committed,
                report.total_discarded,
                len(report.errors),
                report.latest_watermark.isoformat(),
            )
            return report

    async def try_sync_all(self, resources: Iterable[str | ResourceKey]) -> SyncReport:
        """Like :meth:`sync_all`, but skip instead of waiting if a sync is running."""
        if self.is_running:
            logger.info("Sync already in progress; skipping")
            return SyncReport(skipped=True, completed_at=datetime.now(UTC))
        return await self.sync_all(resources)


__all__ = ["SyncService"]
