"""Sync state machine and result models.

Each resource's page sequence is driven through :class:`PageState`:
``REQUESTING -> EVALUATE -> {CONTINUE, STOP_*}``, where ``CONTINUE`` leads back
to ``REQUESTING`` for the next page.

Example:
    >>> from repospine.models.sync import PageState, ResourceSyncResult
    >>> PageState.STOP_DISCARDED.is_terminal
    True
    >>> result = ResourceSyncResult(resource="octocat/Hello-World")
    >>> result.succeeded
    True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import Field

from repospine.models.base import RepoSpineModel
from repospine.models.watermark import Watermark


class PageState(str, Enum):
    """States of one resource's pagination."""

    REQUESTING = "requesting"
    EVALUATE = "evaluate"
    CONTINUE = "continue"
    STOP_COMMITTED = "stop_committed"  # last page kept, no next link
    STOP_DISCARDED = "stop_discarded"  # page held nothing new, rolled back
    STOP_UNMODIFIED = "stop_unmodified"  # 304 or any other non-200 status
    STOP_FAILED = "stop_failed"  # transport or store error

    @property
    def is_terminal(self) -> bool:
        return self.value.startswith("stop_")


class GateVerdict(RepoSpineModel):
    """Outcome of evaluating one page.

    Attributes:
        kept: Whether the staged document was committed.
        document_id: Id of the committed document, if kept.
        watermark: Watermark written with the commit, if kept.
        proceed: Whether the fetcher should request the next page.
    """

    kept: bool
    document_id: int | None = None
    watermark: Watermark | None = None
    proceed: bool = False


class ResourceSyncResult(RepoSpineModel):
    """Outcome of one resource's sync within a run."""

    resource: str
    final_state: PageState = PageState.REQUESTING
    pages_requested: int = Field(default=0, ge=0)
    pages_committed: int = Field(default=0, ge=0)
    pages_discarded: int = Field(default=0, ge=0)
    last_status: int | None = None
    watermark: Watermark | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class SyncReport:
    """Result of one ``sync_all`` call.

    Example:
        >>> from repospine.models.sync import SyncReport, ResourceSyncResult
        >>> report = SyncReport(results={"a/b": ResourceSyncResult(resource="a/b", pages_committed=2)})
        >>> report.total_committed
        2
    """

    results: dict[str, ResourceSyncResult] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    latest_watermark: datetime | None = None
    skipped: bool = False

    @property
    def errors(self) -> dict[str, str]:
        """Per-resource error messages."""
        return {key: r.error for key, r in self.results.items() if r.error is not None}

    @property
    def total_committed(self) -> int:
        return sum(r.pages_committed for r in self.results.values())

    @property
    def total_discarded(self) -> int:
        return sum(r.pages_discarded for r in self.results.values())

    @property
    def all_failed(self) -> bool:
        return bool(self.results) and len(self.errors) == len(self.results)
