"""Watermarks make each sync incremental.

A watermark is keyed by the base request URL of one resource endpoint (no
query string) and holds the high-water mark timestamp plus, in conditional
mode, the server's caching token (ETag).

Example:
    >>> from datetime import UTC, datetime
    >>> from repospine.models.watermark import Watermark
    >>> wm = Watermark(
    ...     request_key="https://api.github.com/repos/octocat/Hello-World/pulls",
    ...     high_water_mark=datetime(2024, 1, 1, tzinfo=UTC),
    ...     caching_token='W/"abc"',
    ... )
    >>> wm.since_bound().isoformat()
    '2023-12-31T23:55:00+00:00'
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from email.utils import format_datetime

from pydantic import Field, field_validator

from repospine.models.base import FrozenModel

logger = logging.getLogger(__name__)

#: Overlap subtracted from a stored watermark to absorb clock skew and
#: records that become visible late.
SAFETY_OVERLAP = timedelta(minutes=5)

#: Fallback lookback when the epoch itself cannot be represented.
FALLBACK_LOOKBACK = timedelta(days=3652)


def default_watermark() -> datetime:
    """Starting point for a resource that has never been synced.

    Returns the Unix epoch, or roughly ten years ago if the platform cannot
    represent the epoch.

    Example:
        >>> default_watermark().isoformat()
        '1970-01-01T00:00:00+00:00'
    """
    try:
        return datetime.fromtimestamp(0, UTC)
    except (OverflowError, OSError, ValueError):
        logger.debug("Unable to compute the epoch; defaulting to ten years ago")
        return datetime.now(UTC) - FALLBACK_LOOKBACK


class Watermark(FrozenModel):
    """Last-known progress marker for one request key."""

    request_key: str = Field(..., min_length=1)
    high_water_mark: datetime
    caching_token: str | None = None

    @field_validator("high_water_mark")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Store timestamps as aware UTC values."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)

    def since_bound(self) -> datetime:
        """Lower bound for a ``since`` query: the watermark minus the overlap."""
        return self.high_water_mark - SAFETY_OVERLAP

    def if_modified_since(self) -> str:
        """The high-water mark as an HTTP date.

        Example:
            >>> from datetime import UTC, datetime
            >>> Watermark(request_key="k", high_water_mark=datetime(2024, 1, 1, tzinfo=UTC)).if_modified_since()
            'Mon, 01 Jan 2024 00:00:00 GMT'
        """
        return format_datetime(self.high_water_mark, usegmt=True)
