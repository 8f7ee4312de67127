"""Tests for repospine.analytics.projection - strict typed projection."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import pytest
from pydantic import ValidationError

from repospine.analytics.projection import PULL_SCHEMA, project_documents, project_page, to_arrow
from repospine.models.base import DataSource, DataType
from repospine.models.document import DocumentMetadata, RawDocument
from repospine.models.resource import ResourceKey


def pull(number: int = 1, **overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "url": f"https://api.github.com/repos/o/r/pulls/{number}",
        "base": {"repo": {"name": "r", "owner": {"login": "o"}}},
        "state": "closed",
        "created_at": "2020-01-06T14:00:00Z",
        "updated_at": "2020-01-07T10:50:00Z",
        "closed_at": "2020-01-07T10:50:00Z",
        "merged_at": "2020-01-07T10:50:00Z",
        "draft": False,
    }
    data.update(overrides)
    return data


def document(doc_id: int, body: str) -> RawDocument:
    return RawDocument(
        id=doc_id,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        data_source=DataSource.GITHUB_REST_API,
        data_type=DataType.PULLS,
        metadata=DocumentMetadata.for_resource(ResourceKey.parse("o/r")),
        data=body,
    )


class TestProjectPage:
    """Tests for project_page."""

    def test_fields(self) -> None:
        (record,) = project_page(7, json.dumps([pull()]))
        assert record.raw_document_id == 7
        assert record.ordinal == 0
        assert record.resource == "o/r"
        assert record.created_at == datetime(2020, 1, 6, 14, 0)
        assert record.merged_at == datetime(2020, 1, 7, 10, 50)
        assert record.draft is False

    def test_offsets_normalized_to_utc(self) -> None:
        (record,) = project_page(1, json.dumps([pull(merged_at="2020-01-07T12:50:00+02:00")]))
        assert record.merged_at == datetime(2020, 1, 7, 10, 50)
        assert record.merged_at.tzinfo is None

    def test_optional_fields_absent(self) -> None:
        body = pull()
        for key in ("state", "closed_at", "merged_at", "draft"):
            del body[key]
        (record,) = project_page(1, json.dumps([body]))
        assert record.merged_at is None
        assert record.state is None

    def test_ordinals_follow_page_order(self) -> None:
        records = project_page(1, json.dumps([pull(1), pull(2), pull(3)]))
        assert [r.ordinal for r in records] == [0, 1, 2]

    def test_unknown_fields_ignored(self) -> None:
        (record,) = project_page(1, json.dumps([pull(title="Fix", labels=[{"name": "bug"}])]))
        assert record.url.endswith("/pulls/1")

    @pytest.mark.parametrize(
        "body",
        [
            [pull(updated_at=None)],
            [{k: v for k, v in pull().items() if k != "created_at"}],
            [pull(base={"repo": {"name": "r"}})],
            [pull(draft="false")],
            [pull(url=12)],
            {"message": "Bad credentials"},
        ],
    )
    def test_invalid_pages_rejected(self, body: Any) -> None:
        with pytest.raises(ValidationError):
            project_page(1, json.dumps(body))


class TestProjectDocuments:
    """Tests for project_documents."""

    def test_rejected_documents_counted(self) -> None:
        docs = [
            document(1, json.dumps([pull(1), pull(2)])),
            document(2, json.dumps([pull(3, created_at=None)])),
            document(3, "not json"),
            document(4, json.dumps([])),
        ]
        records, stats = project_documents(docs)

        assert len(records) == 2
        assert stats.documents == 4
        assert stats.records == 2
        assert stats.rejected_ids == [2, 3]

    def test_to_arrow_schema(self) -> None:
        records, _ = project_documents([document(1, json.dumps([pull()]))])
        table = to_arrow(records)
        assert table.schema == PULL_SCHEMA
        assert table.column("resource").to_pylist() == ["o/r"]

    def test_to_arrow_empty(self) -> None:
        assert to_arrow([]).num_rows == 0
