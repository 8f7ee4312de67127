"""Query-time projection and pull request metrics."""

from repospine.analytics.projection import PullRecord, ProjectionStats, project_documents
from repospine.analytics.queries import PullRequestMetrics
from repospine.analytics.result import QueryResult

__all__ = [
    "ProjectionStats",
    "PullRecord",
    "PullRequestMetrics",
    "QueryResult",
    "project_documents",
]
