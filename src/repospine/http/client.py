"""Async GitHub REST client.

One :class:`Page` per GET. Status handling is left to the caller: the client
never raises for a non-200 response and never retries. Transport failures
(timeouts, connection errors) surface as :class:`FetchError`.

Example:
    >>> from repospine.http import GitHubClient
    >>>
    >>> async with GitHubClient(token="ghp_...") as client:
    ...     page = await client.get_page(
    ...         "https://api.github.com/repos/octocat/Hello-World/pulls",
    ...         params={"state": "all", "per_page": "100"},
    ...     )
    ...     page.status, page.next_url
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from repospine import __version__
from repospine.core.exceptions import FetchError

logger = logging.getLogger(__name__)

GITHUB_MEDIA_TYPE = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"


@dataclass(frozen=True)
class Page:
    """One HTTP response of a paginated listing.

    Attributes:
        request_url: The URL actually requested, query string included.
        status: HTTP status code.
        body: Response body text (empty for 304).
        next_url: Target of the ``rel="next"`` link, if any.
        etag: The response's ``ETag`` header, if any.
    """

    request_url: str
    status: int
    body: str
    next_url: str | None = None
    etag: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == 200


def next_link(response: httpx.Response) -> str | None:
    """Return the ``rel="next"`` target, treating a malformed header as absent.

    Example:
        >>> import httpx
        >>> r = httpx.Response(200, headers={"Link": '<https://x/p?page=2>; rel="next"'})
        >>> next_link(r)
        'https://x/p?page=2'
        >>> next_link(httpx.Response(200, headers={"Link": "garbage"})) is None
        True
    """
    if "link" not in response.headers:
        return None
    try:
        link = response.links.get("next")
    except (ValueError, IndexError, KeyError) as e:
        logger.warning("Malformed Link header %r: %s", response.headers.get("link"), e)
        return None
    if not link:
        return None
    url = link.get("url")
    if not url or not url.startswith(("http://", "https://")):
        logger.warning("Ignoring unusable next link %r", url)
        return None
    return url


class GitHubClient:
    """Async client for the GitHub REST API.

    Args:
        token: Bearer token; ``None`` sends unauthenticated requests.
        timeout: Request timeout in seconds.
        user_agent: User-Agent header value.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).

    Example:
        >>> client = GitHubClient(token=None, timeout=5.0)
        >>> client.headers["Accept"]
        'application/vnd.github+json'
    """

    def __init__(
        self,
        token: str | None = None,
        timeout: float = 30.0,
        user_agent: str = f"RepoSpine/{__version__}",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def headers(self) -> dict[str, str]:
        """Default headers for every request."""
        headers = {
            "Accept": GITHUB_MEDIA_TYPE,
            "User-Agent": self._user_agent,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> GitHubClient:
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def get_page(
        self,
        url: str,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Page:
        """GET one page.

        Args:
            url: Absolute URL. A ``next`` link already carries its own query
                string, so callers pass ``params=None`` when following one.
            params: Query parameters.
            headers: Extra request headers (conditional-request headers).

        Returns:
            The response as a :class:`Page`, whatever its status.

        Raises:
            FetchError: On timeouts and connection failures.
        """
        client = await self._ensure_client()
        try:
            response = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e

        logger.debug("GET %s -> %d", response.request.url, response.status_code)
        return Page(
            request_url=str(response.request.url),
            status=response.status_code,
            body=response.text if response.status_code == 200 else "",
            next_url=next_link(response),
            etag=response.headers.get("etag"),
        )


__all__ = [
    "GITHUB_MEDIA_TYPE",
    "GitHubClient",
    "Page",
    "next_link",
]
