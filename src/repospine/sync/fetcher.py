"""Paginated Fetcher.

Drives each resource's page sequence through an explicit state machine::

    REQUESTING -> EVALUATE -> CONTINUE -> REQUESTING -> ...
                           \\-> STOP_COMMITTED | STOP_DISCARDED
                           \\-> STOP_UNMODIFIED | STOP_FAILED

Pages of one resource are strictly sequential: page N's keep/discard
decision gates the request for page N+1. Resources run concurrently up to
``max_concurrency``, and a failure in one resource never touches another.

Example:
    >>> from repospine.sync.fetcher import PaginatedFetcher
    >>> fetcher = PaginatedFetcher(store, client, api_url="https://api.github.com")
    >>> results = await fetcher.fetch_all([ResourceKey.parse("octocat/Hello-World")])
    >>> results["octocat/Hello-World"].final_state
    <PageState.STOP_COMMITTED: 'stop_committed'>
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from repospine.core.config import SyncMode
from repospine.core.exceptions import RepoSpineError
from repospine.http.client import GitHubClient, Page
from repospine.models.resource import ResourceKey
from repospine.models.sync import GateVerdict, PageState, ResourceSyncResult
from repospine.models.watermark import SAFETY_OVERLAP, Watermark, default_watermark
from repospine.storage.duckdb import DuckDBStore
from repospine.sync.gate import DedupCommitGate

logger = logging.getLogger(__name__)


def format_since(value: datetime) -> str:
    """ISO 8601 timestamp in the form the ``since`` parameter expects.

    Example:
        >>> from datetime import UTC, datetime
        >>> format_since(datetime(2024, 1, 1, 12, 30, tzinfo=UTC))
        '2024-01-01T12:30:00Z'
    """
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class PaginatedFetcher:
    """Fetch pull request pages for many resources.

    Args:
        store: Store for raw documents and watermarks.
        client: GitHub HTTP client.
        gate: Keep/discard gate; built over ``store`` when omitted.
        api_url: API base URL without trailing slash.
        per_page: Page size requested from the API.
        mode: Conditional-request or ``since``-parameter incremental mode.
        max_concurrency: Resources fetched at once.
    """

    def __init__(
        self,
        store: DuckDBStore,
        client: GitHubClient,
        gate: DedupCommitGate | None = None,
        *,
        api_url: str = "https://api.github.com",
        per_page: int = 100,
        mode: SyncMode = SyncMode.CONDITIONAL,
        max_concurrency: int = 3,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._store = store
        self._client = client
        self._gate = gate or DedupCommitGate(store)
        self._api_url = api_url.rstrip("/")
        self._per_page = per_page
        self._mode = mode
        self._max_concurrency = max_concurrency

    @property
    def mode(self) -> SyncMode:
        return self._mode

    def pulls_url(self, resource: ResourceKey) -> str:
        """Base listing URL, which is also the resource's watermark key."""
        return f"{self._api_url}/repos/{resource.owner}/{resource.name}/pulls"

    async def fetch_all(self, resources: list[ResourceKey]) -> dict[str, ResourceSyncResult]:
        """Sync every resource with bounded concurrency.

        Returns:
            Results keyed by ``owner/name``, in input order.
        """
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def bounded(resource: ResourceKey) -> ResourceSyncResult:
            async with semaphore:
                return await self.fetch_resource(resource)

        results = await asyncio.gather(*[bounded(r) for r in resources])
        return {r.resource: r for r in results}

    async def fetch_resource(self, resource: ResourceKey) -> ResourceSyncResult:
        """Run one resource's page loop to a terminal state."""
        run_started_at = datetime.now(UTC)
        request_key = self.pulls_url(resource)
        result = ResourceSyncResult(resource=str(resource))
        logger.info("Syncing %s (%s mode)", resource, self._mode.value)

        try:
            prior = await self._store.get_watermark(request_key)
        except RepoSpineError as e:
            logger.error("Unable to read watermark for %s: %s", resource, e)
            result.error = str(e)
            result.final_state = PageState.STOP_FAILED
            return result

        url: str = request_key
        params, headers = self._first_request(prior)
        page: Page | None = None
        state = PageState.REQUESTING

        while not state.is_terminal:
            if state is PageState.REQUESTING:
                try:
                    page = await self._client.get_page(url, params=params, headers=headers)
                except RepoSpineError as e:
                    logger.error("Fetch failed for %s: %s", resource, e)
                    result.error = str(e)
                    state = PageState.STOP_FAILED
                    continue
                result.pages_requested += 1
                result.last_status = page.status
                state = PageState.EVALUATE

            elif state is PageState.EVALUATE:
                assert page is not None
                if not page.ok:
                    self._log_stop_status(resource, page)
                    state = PageState.STOP_UNMODIFIED
                    continue
                try:
                    verdict = await self._decide(
                        resource,
                        page,
                        request_key,
                        run_started_at,
                        first=result.pages_requested == 1,
                    )
                except RepoSpineError as e:
                    logger.error("Commit failed for %s: %s", resource, e)
                    result.error = str(e)
                    state = PageState.STOP_FAILED
                    continue
                state = self._record(result, verdict)

            elif state is PageState.CONTINUE:
                assert page is not None and page.next_url is not None
                # A next link carries its own query string.
                url, params, headers = page.next_url, None, None
                state = PageState.REQUESTING

        result.final_state = state
        logger.info(
            "Finished %s: %s (requested=%d committed=%d discarded=%d)",
            resource,
            state.value,
            result.pages_requested,
            result.pages_committed,
            result.pages_discarded,
        )
        return result

    def _first_request(self, prior: Watermark | None) -> tuple[dict[str, str], dict[str, str]]:
        """Query parameters and conditional headers for the first page."""
        params = {"state": "all", "per_page": str(self._per_page)}
        headers: dict[str, str] = {}

        if self._mode is SyncMode.SINCE:
            since = prior.since_bound() if prior is not None else default_watermark() - SAFETY_OVERLAP
            params["since"] = format_since(since)
            return params, headers

        params.update({"sort": "updated", "direction": "desc"})
        if prior is not None:
            if prior.caching_token:
                headers["If-None-Match"] = prior.caching_token
            headers["If-Modified-Since"] = prior.if_modified_since()
        return params, headers

    async def _decide(
        self,
        resource: ResourceKey,
        page: Page,
        request_key: str,
        run_started_at: datetime,
        first: bool,
    ) -> GateVerdict:
        if self._mode is SyncMode.SINCE:
            # The watermark moves only once the listing has been read to the end.
            watermark = (
                Watermark(request_key=request_key, high_water_mark=run_started_at)
                if page.next_url is None
                else None
            )
            return await self._gate.commit(resource, page, watermark)

        # Only the first page's ETag validates the listing as a whole.
        watermark = (
            Watermark(request_key=request_key, high_water_mark=run_started_at, caching_token=page.etag)
            if first
            else None
        )
        return await self._gate.evaluate(resource, page, watermark)

    @staticmethod
    def _record(result: ResourceSyncResult, verdict: GateVerdict) -> PageState:
        if verdict.kept:
            result.pages_committed += 1
            if verdict.watermark is not None:
                result.watermark = verdict.watermark
        else:
            result.pages_discarded += 1

        if verdict.proceed:
            return PageState.CONTINUE
        return PageState.STOP_COMMITTED if verdict.kept else PageState.STOP_DISCARDED

    @staticmethod
    def _log_stop_status(resource: ResourceKey, page: Page) -> None:
        if page.status == 304:
            logger.info("%s not modified since last sync", resource)
        else:
            logger.warning("Stopping %s: unexpected status %d from %s", resource, page.status, page.request_url)


__all__ = ["PaginatedFetcher", "format_since"]
