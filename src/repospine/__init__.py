"""
RepoSpine - Incremental GitHub Pull Request Sync and Metrics.

RepoSpine keeps an append-only DuckDB store of GitHub pull request pages in
sync with the API and computes pull request statistics from it at query time.

Key Features:
- Incremental sync with ETag/If-Modified-Since or ``since`` watermarks
- Commit-or-rollback page dedup (no separate "already seen" index)
- Bounded-concurrency fetching with per-repository failure isolation
- Rolling merge-duration averages over a dense calendar spine
- Arrow IPC output for UI layers

Quick Start:
    >>> from repospine import SyncService, PullRequestMetrics, get_settings
    >>> settings = get_settings(database="repospine.duckdb")
    >>> async with SyncService.from_settings(settings) as service:
    ...     report = await service.sync_all(["octocat/Hello-World"])
    ...     metrics = PullRequestMetrics(service.store)
    ...     result = await metrics.rolling_average(start, end)
"""

__version__ = "0.1.0"

from repospine.analytics.queries import PullRequestMetrics
from repospine.analytics.result import QueryResult
from repospine.core.config import DurationUnit, Settings, SyncMode, get_settings
from repospine.core.exceptions import (
    ConfigurationError,
    DateRangeError,
    FetchError,
    RepoSpineError,
    ResourceKeyError,
    StorageError,
    SyncError,
)
from repospine.http.client import GitHubClient, Page
from repospine.models.resource import ResourceKey
from repospine.models.sync import PageState, ResourceSyncResult, SyncReport
from repospine.models.watermark import Watermark
from repospine.scheduler import PeriodicSync
from repospine.storage.duckdb import DuckDBStore
from repospine.sync.fetcher import PaginatedFetcher
from repospine.sync.gate import DedupCommitGate
from repospine.sync.service import SyncService

__all__ = [
    "__version__",
    # Config
    "DurationUnit",
    "Settings",
    "SyncMode",
    "get_settings",
    # Errors
    "ConfigurationError",
    "DateRangeError",
    "FetchError",
    "RepoSpineError",
    "ResourceKeyError",
    "StorageError",
    "SyncError",
    # Models
    "PageState",
    "ResourceKey",
    "ResourceSyncResult",
    "SyncReport",
    "Watermark",
    # Components
    "DedupCommitGate",
    "DuckDBStore",
    "GitHubClient",
    "Page",
    "PaginatedFetcher",
    "PeriodicSync",
    "PullRequestMetrics",
    "QueryResult",
    "SyncService",
]
