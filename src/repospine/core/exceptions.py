"""Custom exceptions.

RepoSpine uses a small hierarchy of exceptions so callers can tell input
errors apart from per-resource sync failures:

Example:
    >>> from repospine.core.exceptions import ResourceKeyError, RepoSpineError
    >>> isinstance(ResourceKeyError("bad key"), RepoSpineError)
    True
    >>> try:
    ...     raise ResourceKeyError("octocat")
    ... except RepoSpineError as e:
    ...     print(f"Caught: {type(e).__name__}")
    Caught: ResourceKeyError
"""

from __future__ import annotations


class RepoSpineError(Exception):
    """Base exception for RepoSpine.

    Example:
        >>> from repospine.core.exceptions import RepoSpineError
        >>> e = RepoSpineError("something went wrong")
        >>> str(e)
        'something went wrong'
    """


class ResourceKeyError(RepoSpineError, ValueError):
    """A resource identifier is not of the form ``owner/name``.

    Example:
        >>> from repospine.core.exceptions import ResourceKeyError
        >>> raise ResourceKeyError("octocat")  # doctest: +IGNORE_EXCEPTION_DETAIL
        Traceback (most recent call last):
        ResourceKeyError: octocat
    """


class DateRangeError(RepoSpineError, ValueError):
    """A requested date range or window is invalid."""


class ConfigurationError(RepoSpineError):
    """Configuration is invalid.

    Example:
        >>> from repospine.core.exceptions import ConfigurationError
        >>> raise ConfigurationError("missing key")  # doctest: +IGNORE_EXCEPTION_DETAIL
        Traceback (most recent call last):
        ConfigurationError: missing key
    """


class StorageError(RepoSpineError):
    """Storage operation failed.

    Example:
        >>> from repospine.core.exceptions import StorageError
        >>> raise StorageError("connection lost")  # doctest: +IGNORE_EXCEPTION_DETAIL
        Traceback (most recent call last):
        StorageError: connection lost
    """


class FetchError(RepoSpineError):
    """Requesting a page from the external API failed."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class SyncError(RepoSpineError):
    """Every resource in a sync run failed.

    Attributes:
        errors: Mapping of resource key to error message.
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        detail = "; ".join(f"{key}: {msg}" for key, msg in errors.items())
        super().__init__(f"All resources failed to sync ({detail})")
