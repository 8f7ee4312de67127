"""RepoSpine HTTP client.

Example:
    >>> from repospine.http import GitHubClient
    >>> async with GitHubClient(token="ghp_...") as client:
    ...     page = await client.get_page("https://api.github.com/repos/octocat/Hello-World/pulls")
"""

from repospine.http.client import GitHubClient, Page, next_link

__all__ = ["GitHubClient", "Page", "next_link"]
