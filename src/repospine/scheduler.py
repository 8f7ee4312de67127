"""Fixed-interval background sync.

Example:
    >>> periodic = PeriodicSync(service, ["octocat/Hello-World"], interval=timedelta(hours=1))
    >>> periodic.start()
    >>> ...
    >>> await periodic.stop()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from repospine.core.exceptions import RepoSpineError
from repospine.models.resource import ResourceKey
from repospine.models.sync import SyncReport
from repospine.sync.service import SyncService

logger = logging.getLogger(__name__)


class PeriodicSync:
    """Fire ``sync_all`` every ``interval``.

    A tick that finds a sync still running is skipped rather than queued, so
    a slow sync never piles up concurrent syncs behind it.

    Args:
        service: Sync service shared with any on-demand callers.
        resources: Resources to sync each tick.
        interval: Time between ticks.
    """

    def __init__(
        self,
        service: SyncService,
        resources: Iterable[str | ResourceKey],
        interval: timedelta,
    ) -> None:
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        self._service = service
        self._resources = ResourceKey.parse_many(resources)
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

        self.run_count = 0
        self.skipped_count = 0
        self.consecutive_failures = 0
        self.last_run: datetime | None = None
        self.last_report: SyncReport | None = None

    @property
    def interval(self) -> timedelta:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> SyncReport | None:
        """Run one sync now unless one is already in progress.

        Returns:
            The report, or ``None`` if the tick was skipped or failed.
        """
        if self._service.is_running:
            self.skipped_count += 1
            logger.info("Previous sync still running; skipping this tick")
            return None

        self.last_run = datetime.now(UTC)
        try:
            report = await self._service.sync_all(self._resources)
        except RepoSpineError as e:
            self.consecutive_failures += 1
            logger.error("Periodic sync failed (%d in a row): %s", self.consecutive_failures, e)
            return None

        self.run_count += 1
        self.consecutive_failures = 0
        self.last_report = report
        return report

    async def _run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self._interval.total_seconds())

    def start(self) -> None:
        """Schedule the loop on the running event loop; the first tick is immediate."""
        if self.running:
            return
        logger.info("Fetching %d resource(s) every %s", len(self._resources), self._interval)
        self._task = asyncio.create_task(self._run(), name="repospine-periodic-sync")

    async def stop(self) -> None:
        """Cancel the loop, rolling back any in-flight transaction."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


__all__ = ["PeriodicSync"]
