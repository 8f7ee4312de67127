"""Rolling Aggregation Engine over stored pull request pages.

Raw pages are projected in Python (strict, typed) and handed to DuckDB as an
Arrow table; the window, calendar spine and as-of join run in SQL.

Pipeline for :meth:`PullRequestMetrics.rolling_average`:

1. calendar spine, one row per day in ``[start, end]``
2. typed projection of every raw page (rejected pages are excluded and counted)
3. latest version of each pull by ``url`` (``updated_at``, then raw document
   id, then position in the page decide ties)
4. merged pulls of the resources in scope
5. trailing ``window_days`` average of merge duration ordered by creation time
6. as-of join of that series onto ``calendar x resources``

Example:
    >>> from datetime import date
    >>> from repospine.analytics.queries import PullRequestMetrics
    >>> metrics = PullRequestMetrics(store)
    >>> result = await metrics.rolling_average(date(2020, 1, 7), date(2020, 1, 9))
    >>> result.to_pylist()[0]
    {'day': datetime.date(2020, 1, 7), 'resource': 'o/r', 'duration': 0.868...}
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date

import pyarrow as pa

from repospine.analytics.projection import ProjectionStats, project_documents, to_arrow
from repospine.analytics.result import QueryResult
from repospine.core.config import DurationUnit
from repospine.core.exceptions import DateRangeError
from repospine.models.base import DataSource, DataType
from repospine.models.resource import ResourceKey
from repospine.storage.duckdb import DuckDBStore

logger = logging.getLogger(__name__)

_CALENDAR = """
calendar AS (
    SELECT CAST(generate_series AS DATE) AS day
    FROM generate_series(CAST(? AS TIMESTAMP), CAST(? AS TIMESTAMP), INTERVAL 1 DAY)
)"""

_LATEST = """
latest AS (
    SELECT *
    FROM pulls
    QUALIFY row_number() OVER (
        PARTITION BY url
        ORDER BY updated_at DESC, raw_document_id DESC, ordinal DESC
    ) = 1
)"""

_ALL_RESOURCES = """
resources AS (
    SELECT DISTINCT resource FROM latest
)"""

_FILTER_RESOURCES = """
resources AS (
    SELECT DISTINCT unnest(CAST(? AS VARCHAR[])) AS resource
)"""

_ROLLING_AVERAGE_SQL = """
WITH {calendar},
{latest},
{resources},
merged AS (
    SELECT
        resource,
        created_at,
        CAST(merged_at AS DATE) AS merged_date,
        date_diff('second', created_at, merged_at) / {unit_seconds}.0 AS duration
    FROM latest
    WHERE merged_at IS NOT NULL
    AND resource IN (SELECT resource FROM resources)
),
rolling AS (
    SELECT
        resource,
        merged_date,
        avg(duration) OVER (
            PARTITION BY resource
            ORDER BY created_at
            RANGE BETWEEN INTERVAL {window_days} DAYS PRECEDING AND CURRENT ROW
        ) AS duration
    FROM merged
),
by_merge_day AS (
    SELECT resource, merged_date, avg(duration) AS duration
    FROM rolling
    GROUP BY resource, merged_date
),
spine AS (
    SELECT calendar.day, resources.resource
    FROM calendar CROSS JOIN resources
)
SELECT spine.day, spine.resource, by_merge_day.duration
FROM spine
ASOF LEFT JOIN by_merge_day
    ON spine.resource = by_merge_day.resource
    AND spine.day >= by_merge_day.merged_date
ORDER BY spine.day, spine.resource
"""

_CLOSED_RECORDS_SQL = """
WITH {latest},
{resources}
SELECT
    url,
    resource,
    state,
    created_at,
    merged_at,
    updated_at,
    CAST(closed_at AS DATE) AS closed_at,
    draft
FROM latest
WHERE closed_at IS NOT NULL
AND CAST(closed_at AS DATE) BETWEEN ? AND ?
AND resource IN (SELECT resource FROM resources)
ORDER BY closed_at, resource, url
"""


def validate_date_range(start_date: date, end_date: date) -> None:
    """Reject an inverted range.

    Raises:
        DateRangeError: If ``start_date`` is after ``end_date``.
    """
    if start_date > end_date:
        raise DateRangeError(f"start_date {start_date} is after end_date {end_date}")


class PullRequestMetrics:
    """Pull request statistics over one store.

    Args:
        store: Initialized store holding raw ``pulls`` pages.
        window_days: Default trailing window for rolling averages.
        unit: Default duration unit.
    """

    def __init__(
        self,
        store: DuckDBStore,
        window_days: int = 30,
        unit: DurationUnit = DurationUnit.DAYS,
    ) -> None:
        self._store = store
        self._window_days = window_days
        self._unit = unit

    async def _pulls(self) -> tuple[pa.Table, ProjectionStats]:
        documents = await self._store.raw_documents(DataSource.GITHUB_REST_API, DataType.PULLS)
        records, stats = project_documents(documents)
        logger.debug(
            "Projected %d pull records from %d raw documents (%d rejected)",
            stats.records,
            stats.documents,
            stats.rejected,
        )
        return to_arrow(records), stats

    @staticmethod
    def _resources(repos: Iterable[str | ResourceKey] | None) -> tuple[str, list[list[str]]]:
        """The ``resources`` CTE and its parameters."""
        keys = ResourceKey.parse_many(repos or [])
        if not keys:
            return _ALL_RESOURCES, []
        return _FILTER_RESOURCES, [[str(k) for k in keys]]

    async def rolling_average(
        self,
        start_date: date,
        end_date: date,
        repos: Iterable[str | ResourceKey] | None = None,
        window_days: int | None = None,
        unit: DurationUnit | None = None,
    ) -> QueryResult:
        """Daily trailing average of merged pull request duration.

        Args:
            start_date: First day, inclusive.
            end_date: Last day, inclusive.
            repos: ``owner/name`` filter; every observed resource when empty.
            window_days: Trailing window in days; defaults to the metric's.
            unit: Duration unit; defaults to the metric's.

        Returns:
            Rows ``(day, resource, duration)`` ordered by day then resource,
            with one row per day for every resource in scope. ``duration`` is
            null until the resource's first merge.

        Raises:
            DateRangeError: If the range is inverted or the window is not a
                positive whole number of days.
            ResourceKeyError: If a filter entry is malformed.
        """
        validate_date_range(start_date, end_date)
        window_days = self._window_days if window_days is None else window_days
        if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days < 1:
            raise DateRangeError(f"window_days must be a positive integer, got {window_days!r}")
        unit = unit or self._unit
        resources_cte, resource_params = self._resources(repos)

        pulls, stats = await self._pulls()
        sql = _ROLLING_AVERAGE_SQL.format(
            calendar=_CALENDAR.strip(),
            latest=_LATEST.strip(),
            resources=resources_cte.strip(),
            unit_seconds=unit.seconds,
            window_days=window_days,
        )
        table = await self._store.query_arrow(
            sql,
            [start_date, end_date, *resource_params],
            tables={"pulls": pulls},
        )
        return QueryResult(table, stats)

    async def closed_records(
        self,
        start_date: date,
        end_date: date,
        repos: Iterable[str | ResourceKey] | None = None,
    ) -> QueryResult:
        """Latest version of every pull closed within ``[start_date, end_date]``.

        Raises:
            DateRangeError: If the range is inverted.
            ResourceKeyError: If a filter entry is malformed.
        """
        validate_date_range(start_date, end_date)
        resources_cte, resource_params = self._resources(repos)

        pulls, stats = await self._pulls()
        sql = _CLOSED_RECORDS_SQL.format(latest=_LATEST.strip(), resources=resources_cte.strip())
        table = await self._store.query_arrow(
            sql,
            [*resource_params, start_date, end_date],
            tables={"pulls": pulls},
        )
        return QueryResult(table, stats)

    async def distinct_resources(self) -> list[str]:
        """Every ``owner/name`` seen in stored pull pages, sorted."""
        pulls, _ = await self._pulls()
        table = await self._store.query_arrow(
            "SELECT DISTINCT resource FROM pulls ORDER BY resource",
            tables={"pulls": pulls},
        )
        return table.column("resource").to_pylist()


__all__ = ["PullRequestMetrics", "validate_date_range"]
