"""Shared fixtures: a fake GitHub pulls listing behind httpx.MockTransport, an in-memory store."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from repospine.http.client import GitHubClient
from repospine.storage.duckdb import DuckDBStore

API = "https://api.github.com"


class FakeGitHub:
    """Serves ``/repos/{owner}/{name}/pulls`` pages from memory.

    Attributes:
        listings: Pages per ``owner/name``; page N links to page N+1.
        etags: ETag per resource; a matching If-None-Match on page 1 gets 304.
        failures: ``(resource, page) -> status code | "network"``.
        malformed_links: Resources whose Link header is garbage.
        requests: Every request received, in order.
        hold: When set, requests wait on this event before answering.
    """

    def __init__(self) -> None:
        self.listings: dict[str, list[list[dict[str, Any]]]] = {}
        self.etags: dict[str, str] = {}
        self.failures: dict[tuple[str, int], int | str] = {}
        self.malformed_links: set[str] = set()
        self.respect_etag = True
        self.requests: list[httpx.Request] = []
        self.hold: asyncio.Event | None = None
        self.in_flight = 0
        self.max_in_flight = 0

    @staticmethod
    def pull(
        resource: str,
        number: int,
        updated_at: str,
        created_at: str = "2020-01-01T00:00:00Z",
        merged_at: str | None = None,
        closed_at: str | None = None,
    ) -> dict[str, Any]:
        owner, name = resource.split("/")
        return {
            "url": f"{API}/repos/{resource}/pulls/{number}",
            "base": {"repo": {"name": name, "owner": {"login": owner}}},
            "state": "closed" if closed_at else "open",
            "created_at": created_at,
            "updated_at": updated_at,
            "closed_at": closed_at,
            "merged_at": merged_at,
            "draft": False,
        }

    def serve(self, resource: str, *pages: list[dict[str, Any]], etag: str | None = None) -> None:
        self.listings[resource] = list(pages)
        if etag is not None:
            self.etags[resource] = etag

    def requests_for(self, resource: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == f"/repos/{resource}/pulls"]

    def pages_requested(self, resource: str) -> list[int]:
        return [int(r.url.params.get("page", "1")) for r in self.requests_for(resource)]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if self.hold is not None:
                await self.hold.wait()
            return self._respond(request)
        finally:
            self.in_flight -= 1

    def _respond(self, request: httpx.Request) -> httpx.Response:
        _, _, owner, name, _ = request.url.path.split("/")
        resource = f"{owner}/{name}"
        page_no = int(request.url.params.get("page", "1"))

        failure = self.failures.get((resource, page_no))
        if failure == "network":
            raise httpx.ConnectError("connection refused", request=request)
        if isinstance(failure, int):
            return httpx.Response(failure, text="error")

        etag = self.etags.get(resource)
        if (
            page_no == 1
            and self.respect_etag
            and etag is not None
            and request.headers.get("if-none-match") == etag
        ):
            return httpx.Response(304)

        pages = self.listings.get(resource, [[]])
        headers: dict[str, str] = {}
        if etag is not None:
            headers["ETag"] = etag
        if page_no < len(pages):
            next_url = f"{API}/repos/{resource}/pulls?page={page_no + 1}"
            headers["Link"] = "<garbage" if resource in self.malformed_links else f'<{next_url}>; rel="next"'
        return httpx.Response(200, json=pages[page_no - 1], headers=headers)


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
async def store() -> DuckDBStore:
    s = DuckDBStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
async def client(github: FakeGitHub) -> GitHubClient:
    c = GitHubClient(token="test-token", transport=httpx.MockTransport(github.handler))
    yield c
    await c.close()
