"""Typed projection of raw pull request pages.

Each raw ``pulls`` document is a JSON array of pull requests. Projection
validates the whole page against :class:`PullPayload` in strict mode; a page
with a missing or mistyped required field is rejected as a unit and counted,
never coerced.

Example:
    >>> from repospine.analytics.projection import project_page
    >>> page = '''[{"url": "https://api.github.com/repos/o/r/pulls/1",
    ...   "state": "closed", "draft": false,
    ...   "base": {"repo": {"name": "r", "owner": {"login": "o"}}},
    ...   "created_at": "2020-01-06T14:00:00Z", "updated_at": "2020-01-07T10:50:00Z",
    ...   "closed_at": "2020-01-07T10:50:00Z", "merged_at": "2020-01-07T10:50:00Z"}]'''
    >>> [r.resource for r in project_page(7, page)]
    ['o/r']
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pyarrow as pa
from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from repospine.models.document import RawDocument

logger = logging.getLogger(__name__)


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", strict=True)


class OwnerRef(_Payload):
    login: str


class RepoRef(_Payload):
    name: str
    owner: OwnerRef


class BaseRef(_Payload):
    repo: RepoRef


class PullPayload(_Payload):
    """Fields read from one pull request object.

    ``url``, ``base.repo``, ``created_at`` and ``updated_at`` are required.
    The other timestamps may be absent or null.
    """

    url: str
    base: BaseRef
    state: str | None = None
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    merged_at: datetime | None = None
    draft: bool | None = None


_PAGE_ADAPTER = TypeAdapter(list[PullPayload])


class PullRecord(BaseModel):
    """One logical pull request record extracted from a raw document.

    Timestamps are naive UTC so DuckDB date casts do not depend on the
    session time zone.
    """

    model_config = ConfigDict(frozen=True)

    raw_document_id: int
    ordinal: int
    url: str
    owner: str
    name: str
    state: str | None
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None
    merged_at: datetime | None
    draft: bool | None

    @property
    def resource(self) -> str:
        return f"{self.owner}/{self.name}"


PULL_SCHEMA = pa.schema(
    [
        ("raw_document_id", pa.int64()),
        ("ordinal", pa.int32()),
        ("url", pa.string()),
        ("resource", pa.string()),
        ("state", pa.string()),
        ("created_at", pa.timestamp("us")),
        ("updated_at", pa.timestamp("us")),
        ("closed_at", pa.timestamp("us")),
        ("merged_at", pa.timestamp("us")),
        ("draft", pa.bool_()),
    ]
)


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def project_page(raw_document_id: int, data: str) -> list[PullRecord]:
    """Project one page into records.

    Raises:
        pydantic.ValidationError: If the page is not an array of valid pulls.
    """
    payloads = _PAGE_ADAPTER.validate_json(data)
    return [
        PullRecord(
            raw_document_id=raw_document_id,
            ordinal=ordinal,
            url=p.url,
            owner=p.base.repo.owner.login,
            name=p.base.repo.name,
            state=p.state,
            created_at=_naive_utc(p.created_at),
            updated_at=_naive_utc(p.updated_at),
            closed_at=_naive_utc(p.closed_at),
            merged_at=_naive_utc(p.merged_at),
            draft=p.draft,
        )
        for ordinal, p in enumerate(payloads)
    ]


@dataclass
class ProjectionStats:
    """Counts from one projection pass.

    Example:
        >>> stats = ProjectionStats(documents=3, rejected_ids=[2])
        >>> stats.rejected
        1
    """

    documents: int = 0
    records: int = 0
    rejected_ids: list[int] = field(default_factory=list)

    @property
    def rejected(self) -> int:
        return len(self.rejected_ids)


def project_documents(documents: Iterable[RawDocument]) -> tuple[list[PullRecord], ProjectionStats]:
    """Project many raw documents, excluding the ones that fail validation."""
    records: list[PullRecord] = []
    stats = ProjectionStats()
    for doc in documents:
        stats.documents += 1
        try:
            page = project_page(doc.id, doc.data)
        except ValidationError as e:
            stats.rejected_ids.append(doc.id)
            logger.warning(
                "Excluding raw document %s from projection (%d errors): %s",
                doc.id,
                e.error_count(),
                e.errors(include_url=False)[0]["msg"] if e.error_count() else "",
            )
            continue
        records.extend(page)
    stats.records = len(records)
    if stats.rejected:
        logger.warning("Projection rejected %d of %d raw documents", stats.rejected, stats.documents)
    return records, stats


def to_arrow(records: list[PullRecord]) -> pa.Table:
    """Build an Arrow table with :data:`PULL_SCHEMA`."""
    return pa.Table.from_pylist(
        [
            {
                "raw_document_id": r.raw_document_id,
                "ordinal": r.ordinal,
                "url": r.url,
                "resource": r.resource,
                "state": r.state,
                "created_at": r.created_at,
                "updated_at": r.updated_at,
                "closed_at": r.closed_at,
                "merged_at": r.merged_at,
                "draft": r.draft,
            }
            for r in records
        ],
        schema=PULL_SCHEMA,
    )
