"""Tests for repospine.storage.duckdb - Raw Document Store and Watermark Store.

Tests cover:
- Schema migrations and reopening a file database
- Watermark get/set/upsert and latest-watermark lookups
- Transaction commit, requested rollback, and rollback on errors/cancellation
- Freshness contributors scoped to one resource
- loaded_at hook and Arrow reads
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pyarrow as pa
import pytest

from repospine.core.exceptions import StorageError
from repospine.models.base import DataSource, DataType
from repospine.models.document import DocumentMetadata
from repospine.models.resource import ResourceKey
from repospine.models.watermark import Watermark
from repospine.storage.duckdb import MIGRATIONS, DuckDBStore

# =============================================================================
# Test Fixtures and Helpers
# =============================================================================

SOURCE = DataSource.GITHUB_REST_API
PULLS = DataType.PULLS
OCTO = ResourceKey.parse("octocat/Hello-World")
OTHER = ResourceKey.parse("other/repo")


def pull(number: int, updated_at: str, key: ResourceKey = OCTO) -> dict[str, Any]:
    return {
        "url": f"https://api.github.com/repos/{key}/pulls/{number}",
        "base": {"repo": {"name": key.name, "owner": {"login": key.owner}}},
        "state": "open",
        "created_at": "2020-01-01T00:00:00Z",
        "updated_at": updated_at,
        "closed_at": None,
        "merged_at": None,
        "draft": False,
    }


def page(*pulls: dict[str, Any]) -> str:
    return json.dumps(list(pulls))


async def insert(store: DuckDBStore, key: ResourceKey, data: str) -> int:
    return await store.insert_raw_document(SOURCE, PULLS, DocumentMetadata.for_resource(key), data)


# =============================================================================
# Initialization and Migrations
# =============================================================================


class TestInitialization:
    """Opening the store and applying migrations."""

    async def test_migrations_applied(self, store: DuckDBStore) -> None:
        assert await store.migration_index() == len(MIGRATIONS)
        assert await store.count_documents() == 0

    async def test_initialize_is_idempotent(self, store: DuckDBStore) -> None:
        await store.initialize()
        assert await store.migration_index() == len(MIGRATIONS)

    async def test_reopen_file_database(self, tmp_path: Path) -> None:
        """Data survives a reopen and migrations are not re-run."""
        path = str(tmp_path / "test.duckdb")
        async with DuckDBStore(path) as s:
            await insert(s, OCTO, page(pull(1, "2020-01-01T00:00:00Z")))

        async with DuckDBStore(path) as s:
            assert await s.migration_index() == len(MIGRATIONS)
            assert await s.count_documents() == 1

    async def test_unopenable_path_raises(self, tmp_path: Path) -> None:
        """A path that cannot be opened is a StorageError."""
        bad = tmp_path / "missing-dir" / "nested" / "db.duckdb"
        with pytest.raises(StorageError):
            await DuckDBStore(str(bad)).initialize()


# =============================================================================
# Watermark Store
# =============================================================================


class TestWatermarks:
    """Watermark get/set."""

    async def test_missing_is_none(self, store: DuckDBStore) -> None:
        """An unsynced key is 'not found', not an error."""
        assert await store.get_watermark("https://api.github.com/repos/a/b/pulls") is None

    async def test_set_then_get(self, store: DuckDBStore) -> None:
        wm = Watermark(
            request_key="https://api.github.com/repos/a/b/pulls",
            high_water_mark=datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
            caching_token='W/"abc"',
        )
        await store.set_watermark(wm)
        assert await store.get_watermark(wm.request_key) == wm

    async def test_upsert_replaces(self, store: DuckDBStore) -> None:
        """At most one record per key; the newest write wins."""
        key = "https://api.github.com/repos/a/b/pulls"
        await store.set_watermark(Watermark(request_key=key, high_water_mark=datetime(2024, 1, 1, tzinfo=UTC)))
        await store.set_watermark(
            Watermark(request_key=key, high_water_mark=datetime(2024, 2, 1, tzinfo=UTC), caching_token='"x"')
        )
        got = await store.get_watermark(key)
        assert got is not None
        assert got.high_water_mark == datetime(2024, 2, 1, tzinfo=UTC)
        assert got.caching_token == '"x"'

    async def test_latest_defaults_to_epoch(self, store: DuckDBStore) -> None:
        assert await store.latest_watermark("https://api.github.com/") == datetime(1970, 1, 1, tzinfo=UTC)

    async def test_latest_respects_prefix(self, store: DuckDBStore) -> None:
        await store.set_watermark(
            Watermark(request_key="https://api.github.com/repos/a/b/pulls", high_water_mark=datetime(2024, 1, 1, tzinfo=UTC))
        )
        await store.set_watermark(
            Watermark(request_key="https://api.github.com/repos/c/d/pulls", high_water_mark=datetime(2024, 3, 1, tzinfo=UTC))
        )
        await store.set_watermark(
            Watermark(request_key="https://ghe.example.com/repos/e/f/pulls", high_water_mark=datetime(2025, 1, 1, tzinfo=UTC))
        )
        assert await store.latest_watermark("https://api.github.com/") == datetime(2024, 3, 1, tzinfo=UTC)


# =============================================================================
# Raw Documents and Transactions
# =============================================================================


class TestRawDocuments:
    """Append-only raw documents."""

    async def test_ids_increase(self, store: DuckDBStore) -> None:
        first = await insert(store, OCTO, page())
        second = await insert(store, OCTO, page())
        assert second > first

    async def test_round_trip(self, store: DuckDBStore) -> None:
        body = page(pull(1, "2020-01-01T00:00:00Z"))
        doc_id = await insert(store, OCTO, body)
        docs = await store.raw_documents(SOURCE, PULLS)
        assert len(docs) == 1
        doc = docs[0]
        assert doc.id == doc_id
        assert doc.data == body
        assert doc.metadata.resource == OCTO
        assert doc.loaded_at is None
        assert doc.created_at.tzinfo == UTC

    async def test_filter_by_resource(self, store: DuckDBStore) -> None:
        await insert(store, OCTO, page())
        await insert(store, OTHER, page())
        assert [d.metadata.resource for d in await store.raw_documents(SOURCE, PULLS, OTHER)] == [OTHER]
        assert await store.count_documents(SOURCE, PULLS, OCTO) == 1
        assert await store.count_documents() == 2

    async def test_mark_loaded(self, store: DuckDBStore) -> None:
        """loaded_at is set once and never overwritten."""
        a = await insert(store, OCTO, page())
        b = await insert(store, OCTO, page())
        assert await store.mark_loaded([a]) == 1
        assert await store.mark_loaded([a, b]) == 1
        assert await store.mark_loaded([]) == 0
        docs = await store.raw_documents(SOURCE, PULLS)
        assert all(d.loaded_at is not None for d in docs)


class TestTransactions:
    """Commit and rollback behavior."""

    async def test_commit(self, store: DuckDBStore) -> None:
        async with store.transaction() as tx:
            tx.insert_raw_document(SOURCE, PULLS, DocumentMetadata.for_resource(OCTO), page())
        assert await store.count_documents() == 1

    async def test_requested_rollback(self, store: DuckDBStore) -> None:
        """Staged rows and watermarks vanish on rollback."""
        async with store.transaction() as tx:
            tx.insert_raw_document(SOURCE, PULLS, DocumentMetadata.for_resource(OCTO), page())
            tx.set_watermark(Watermark(request_key="k", high_water_mark=datetime(2024, 1, 1, tzinfo=UTC)))
            tx.rollback()
        assert await store.count_documents() == 0
        assert await store.get_watermark("k") is None

    async def test_exception_rolls_back(self, store: DuckDBStore) -> None:
        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                tx.insert_raw_document(SOURCE, PULLS, DocumentMetadata.for_resource(OCTO), page())
                raise RuntimeError("boom")
        assert await store.count_documents() == 0

    async def test_cancellation_rolls_back(self, store: DuckDBStore) -> None:
        """A cancelled sync never leaves a partial commit."""
        staged = asyncio.Event()

        async def body() -> None:
            async with store.transaction() as tx:
                tx.insert_raw_document(SOURCE, PULLS, DocumentMetadata.for_resource(OCTO), page())
                staged.set()
                await asyncio.sleep(10)

        task = asyncio.create_task(body())
        await staged.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert await store.count_documents() == 0

    async def test_bad_sql_is_storage_error(self, store: DuckDBStore) -> None:
        with pytest.raises(StorageError):
            await store.query_arrow("SELECT * FROM no_such_table")


class TestFreshestContributors:
    """The gate's freshness query."""

    async def test_staged_row_visible(self, store: DuckDBStore) -> None:
        async with store.transaction() as tx:
            doc_id = tx.insert_raw_document(
                SOURCE, PULLS, DocumentMetadata.for_resource(OCTO), page(pull(1, "2020-01-02T00:00:00Z"))
            )
            assert tx.freshest_contributors(SOURCE, PULLS, OCTO) == {doc_id}
            tx.rollback()

    async def test_ties_return_every_holder(self, store: DuckDBStore) -> None:
        a = await insert(store, OCTO, page(pull(1, "2020-01-02T00:00:00Z")))
        b = await insert(store, OCTO, page(pull(2, "2020-01-02T00:00:00Z"), pull(3, "2020-01-01T00:00:00Z")))
        async with store.transaction() as tx:
            assert tx.freshest_contributors(SOURCE, PULLS, OCTO) == {a, b}

    async def test_scoped_to_resource(self, store: DuckDBStore) -> None:
        """Another resource's newer pulls never count."""
        own = await insert(store, OCTO, page(pull(1, "2020-01-01T00:00:00Z")))
        await insert(store, OTHER, page(pull(1, "2030-01-01T00:00:00Z", OTHER)))
        async with store.transaction() as tx:
            assert tx.freshest_contributors(SOURCE, PULLS, OCTO) == {own}

    async def test_non_array_bodies_ignored(self, store: DuckDBStore) -> None:
        good = await insert(store, OCTO, page(pull(1, "2020-01-01T00:00:00Z")))
        await insert(store, OCTO, '{"message": "Bad credentials"}')
        await insert(store, OCTO, "not json")
        async with store.transaction() as tx:
            assert tx.freshest_contributors(SOURCE, PULLS, OCTO) == {good}

    async def test_bad_timestamps_ignored(self, store: DuckDBStore) -> None:
        """A stored page with unusable updated_at values never blocks the resource."""
        await insert(store, OCTO, page(pull(1, "not a date")))
        await insert(store, OCTO, json.dumps([{"url": "x", "updated_at": 12}, "just a string", None]))
        good = await insert(store, OCTO, page(pull(2, "2020-01-01T00:00:00Z")))
        async with store.transaction() as tx:
            assert tx.freshest_contributors(SOURCE, PULLS, OCTO) == {good}

    async def test_offsets_compared_as_instants(self, store: DuckDBStore) -> None:
        utc = await insert(store, OCTO, page(pull(1, "2020-01-01T10:00:00Z")))
        await insert(store, OCTO, page(pull(2, "2020-01-01T11:00:00+02:00")))
        async with store.transaction() as tx:
            assert tx.freshest_contributors(SOURCE, PULLS, OCTO) == {utc}


class TestQueryArrow:
    """Arrow reads with registered tables."""

    async def test_registered_table(self, store: DuckDBStore) -> None:
        table = pa.table({"x": [1, 2, 3]})
        result = await store.query_arrow("SELECT count(*) AS n FROM t WHERE x > ?", [1], tables={"t": table})
        assert result.to_pylist() == [{"n": 2}]
