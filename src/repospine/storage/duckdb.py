"""DuckDB storage for raw documents and watermarks.

DuckDB is an embeddable OLAP database, which suits an append-only raw table
queried with window functions and as-of joins. The store owns one root
connection; every transaction and read runs on its own cursor (a separate
DuckDB connection to the same database), so concurrent resource syncs and
analytical reads never share transaction state.

Example:
    >>> import asyncio
    >>> from repospine.storage.duckdb import DuckDBStore
    >>> store = DuckDBStore(":memory:")
    >>> asyncio.run(store.initialize())
    >>> asyncio.run(store.count_documents())
    0
    >>> asyncio.run(store.close())
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import UTC, datetime
from typing import Any

import duckdb
import pyarrow as pa

from repospine.core.exceptions import StorageError
from repospine.models.base import DataSource, DataType
from repospine.models.document import DocumentMetadata, RawDocument
from repospine.models.resource import ResourceKey
from repospine.models.watermark import Watermark, default_watermark

logger = logging.getLogger(__name__)

SETTING_TABLE = "repospine_setting"
MIGRATION_INDEX = "migration_index"

# Append new migrations to the end; never edit or reorder existing entries.
MIGRATIONS: list[str] = [
    f"""
    CREATE TABLE IF NOT EXISTS {SETTING_TABLE} (
        "name" VARCHAR PRIMARY KEY,
        "value" JSON
    );
    """,
    """
    CREATE SEQUENCE IF NOT EXISTS seq_raw_document;
    CREATE TABLE IF NOT EXISTS raw_document (
        id BIGINT PRIMARY KEY DEFAULT nextval('seq_raw_document'),
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
        loaded_at TIMESTAMP WITH TIME ZONE,
        data_source VARCHAR NOT NULL,
        data_type VARCHAR NOT NULL,
        metadata JSON NOT NULL,
        "data" VARCHAR NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS watermark (
        request_key VARCHAR PRIMARY KEY,
        high_water_mark TIMESTAMP WITH TIME ZONE NOT NULL,
        caching_token VARCHAR,
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now()
    );
    """,
]

# Freshness of every pull in one resource's pages. Bodies that are not a JSON
# array, and updated_at values that are not timestamps, contribute nothing
# rather than failing the gate.
_FRESHEST_CONTRIBUTORS_SQL = """
WITH pages AS (
    SELECT
        id,
        CASE WHEN json_valid("data") AND json_type("data") = 'ARRAY'
            THEN json_extract_string("data", '$[*].updated_at')
        END AS stamps
    FROM raw_document
    WHERE data_source = ?
    AND data_type = ?
    AND metadata->>'$.owner' = ?
    AND metadata->>'$.name' = ?
),
stamp_rows AS (
    SELECT id, unnest(stamps) AS stamp
    FROM pages
    WHERE stamps IS NOT NULL
),
freshness AS (
    SELECT id, TRY_CAST(stamp AS TIMESTAMPTZ) AS updated_at
    FROM stamp_rows
)
SELECT DISTINCT id
FROM freshness
WHERE updated_at = (SELECT max(updated_at) FROM freshness)
ORDER BY id
"""


def _aware(value: Any) -> datetime | None:
    """Normalize a DuckDB timestamp to an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Transaction:
    """One open transaction on a dedicated cursor.

    Obtained from :meth:`DuckDBStore.transaction`; committed when the context
    exits normally unless :meth:`rollback` was requested.
    """

    def __init__(self, cursor: duckdb.DuckDBPyConnection) -> None:
        self._cursor = cursor
        self.rollback_requested = False

    def rollback(self) -> None:
        """Discard everything staged in this transaction on exit."""
        self.rollback_requested = True

    def insert_raw_document(
        self,
        data_source: DataSource,
        data_type: DataType,
        metadata: DocumentMetadata,
        data: str,
    ) -> int:
        """Stage a raw document and return its assigned id."""
        row = self._cursor.execute(
            """
            INSERT INTO raw_document (data_source, data_type, metadata, "data")
            VALUES (?, ?, ?, ?)
            RETURNING id
            """,
            [
                data_source.value,
                data_type.value,
                metadata.model_dump_json(exclude_none=True),
                data,
            ],
        ).fetchone()
        assert row is not None
        return int(row[0])

    def freshest_contributors(
        self,
        data_source: DataSource,
        data_type: DataType,
        resource: ResourceKey,
    ) -> set[int]:
        """Ids of documents holding the newest ``updated_at`` for a resource.

        Only documents tagged with ``resource`` are considered, and staged
        rows of this transaction are visible.
        """
        rows = self._cursor.execute(
            _FRESHEST_CONTRIBUTORS_SQL,
            [data_source.value, data_type.value, resource.owner, resource.name],
        ).fetchall()
        return {int(r[0]) for r in rows}

    def mark_loaded(self, document_ids: list[int]) -> int:
        placeholders = ",".join("?" for _ in document_ids)
        rows = self._cursor.execute(
            f"""
            UPDATE raw_document SET loaded_at = now()
            WHERE loaded_at IS NULL AND id IN ({placeholders})
            RETURNING id
            """,
            document_ids,
        ).fetchall()
        return len(rows)

    def set_watermark(self, watermark: Watermark) -> None:
        """Upsert the watermark for its request key."""
        self._cursor.execute(
            """
            INSERT OR REPLACE INTO watermark (request_key, high_water_mark, caching_token, updated_at)
            VALUES (?, ?, ?, now())
            """,
            [watermark.request_key, watermark.high_water_mark, watermark.caching_token],
        )


def _select_watermark(cursor: duckdb.DuckDBPyConnection, request_key: str) -> Watermark | None:
    row = cursor.execute(
        "SELECT CAST(high_water_mark AS TIMESTAMP), caching_token FROM watermark WHERE request_key = ?",
        [request_key],
    ).fetchone()
    if row is None:
        return None
    return Watermark(request_key=request_key, high_water_mark=_aware(row[0]), caching_token=row[1])


class DuckDBStore:
    """Raw Document Store and Watermark Store backed by DuckDB.

    Args:
        path: Database file path, or ":memory:" for in-memory mode.

    Example:
        >>> import asyncio
        >>> from repospine.storage.duckdb import DuckDBStore
        >>> async def example():
        ...     async with DuckDBStore(":memory:") as store:
        ...         return await store.get_watermark("https://api.github.com/repos/a/b/pulls")
        >>> asyncio.run(example()) is None
        True
    """

    def __init__(self, path: str = ":memory:") -> None:
        self._path = path
        self._conn: duckdb.DuckDBPyConnection | None = None

    @property
    def path(self) -> str:
        return self._path

    async def initialize(self) -> None:
        """Open the database and apply pending migrations.

        Raises:
            StorageError: If the database cannot be opened or migrated.
        """
        if self._conn is not None:
            return
        logger.debug("Opening database at '%s'", self._path)
        try:
            self._conn = duckdb.connect(self._path)
            self._conn.execute("SET TimeZone = 'UTC'")
            self._run_migrations()
        except duckdb.Error as e:
            raise StorageError(f"Unable to open database '{self._path}': {e}") from e

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def __aenter__(self) -> DuckDBStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def cursor(self) -> duckdb.DuckDBPyConnection:
        """A new cursor on the shared database."""
        assert self._conn is not None, "Store not initialized"
        cursor = self._conn.cursor()
        cursor.execute("SET TimeZone = 'UTC'")
        return cursor

    def _run_migrations(self) -> None:
        assert self._conn is not None
        cursor = self._conn.cursor()
        try:
            cursor.begin()
            exists = cursor.execute(
                "SELECT count(*) FROM information_schema.tables WHERE table_name = ?",
                [SETTING_TABLE],
            ).fetchone()
            index = 0
            if exists and exists[0]:
                row = cursor.execute(
                    f'SELECT CAST("value" AS INTEGER) FROM {SETTING_TABLE} WHERE "name" = ?',
                    [MIGRATION_INDEX],
                ).fetchone()
                index = int(row[0]) if row else 0

            if index > len(MIGRATIONS):
                logger.error(
                    "Database migration index %d is newer than this version supports (%d)",
                    index,
                    len(MIGRATIONS),
                )
            for migration in MIGRATIONS[index:]:
                logger.debug("Running migration: %s", migration.strip().splitlines()[0])
                cursor.execute(migration)

            if index < len(MIGRATIONS):
                cursor.execute(
                    f'INSERT OR REPLACE INTO {SETTING_TABLE} ("name", "value") VALUES (?, ?)',
                    [MIGRATION_INDEX, json.dumps(len(MIGRATIONS))],
                )
            cursor.commit()
        except duckdb.Error:
            cursor.rollback()
            raise
        finally:
            cursor.close()

    async def migration_index(self) -> int:
        """Number of migrations applied to this database."""
        with self._reading() as cursor:
            row = cursor.execute(
                f'SELECT CAST("value" AS INTEGER) FROM {SETTING_TABLE} WHERE "name" = ?',
                [MIGRATION_INDEX],
            ).fetchone()
        return int(row[0]) if row else 0

    # --- Transactions ---

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Run a block in one transaction on a dedicated cursor.

        Commits on normal exit unless the block called
        :meth:`Transaction.rollback`. Any exception, including task
        cancellation, rolls back before propagating.

        Raises:
            StorageError: If DuckDB rejects a statement or the commit.
        """
        cursor = self.cursor()
        tx = Transaction(cursor)
        try:
            cursor.begin()
            try:
                yield tx
            except BaseException:
                cursor.rollback()
                raise
            if tx.rollback_requested:
                cursor.rollback()
            else:
                cursor.commit()
        except duckdb.Error as e:
            raise StorageError(f"Transaction failed: {e}") from e
        finally:
            cursor.close()

    # --- Watermark Store ---

    async def get_watermark(self, request_key: str) -> Watermark | None:
        """Look up a watermark; ``None`` means the key has never been synced."""
        with self._reading() as cursor:
            return _select_watermark(cursor, request_key)

    async def set_watermark(self, watermark: Watermark) -> None:
        """Upsert a watermark in its own transaction."""
        async with self.transaction() as tx:
            tx.set_watermark(watermark)

    async def latest_watermark(self, prefix: str = "") -> datetime:
        """Newest high-water mark among keys starting with ``prefix``.

        Returns the default watermark (the epoch) when nothing has been synced.
        """
        with self._reading() as cursor:
            row = cursor.execute(
                """
                SELECT CAST(high_water_mark AS TIMESTAMP) FROM watermark
                WHERE starts_with(request_key, ?)
                ORDER BY high_water_mark DESC
                LIMIT 1
                """,
                [prefix],
            ).fetchone()
        if row is None:
            return default_watermark()
        return _aware(row[0])

    # --- Raw Document Store ---

    async def insert_raw_document(
        self,
        data_source: DataSource,
        data_type: DataType,
        metadata: DocumentMetadata,
        data: str,
    ) -> int:
        """Append one raw document in its own transaction."""
        async with self.transaction() as tx:
            return tx.insert_raw_document(data_source, data_type, metadata, data)

    async def raw_documents(
        self,
        data_source: DataSource,
        data_type: DataType,
        resource: ResourceKey | None = None,
    ) -> list[RawDocument]:
        """All committed documents of one source and type, oldest first."""
        sql = """
            SELECT id, CAST(created_at AS TIMESTAMP), CAST(loaded_at AS TIMESTAMP),
                data_source, data_type, metadata, "data"
            FROM raw_document
            WHERE data_source = ? AND data_type = ?
        """
        params: list[Any] = [data_source.value, data_type.value]
        if resource is not None:
            sql += " AND metadata->>'$.owner' = ? AND metadata->>'$.name' = ?"
            params.extend([resource.owner, resource.name])
        sql += " ORDER BY id"

        with self._reading() as cursor:
            rows = cursor.execute(sql, params).fetchall()
        return [self._row_to_document(row) for row in rows]

    async def count_documents(
        self,
        data_source: DataSource | None = None,
        data_type: DataType | None = None,
        resource: ResourceKey | None = None,
    ) -> int:
        """Count committed documents matching the filters."""
        sql = "SELECT count(*) FROM raw_document WHERE 1=1"
        params: list[Any] = []
        if data_source is not None:
            sql += " AND data_source = ?"
            params.append(data_source.value)
        if data_type is not None:
            sql += " AND data_type = ?"
            params.append(data_type.value)
        if resource is not None:
            sql += " AND metadata->>'$.owner' = ? AND metadata->>'$.name' = ?"
            params.extend([resource.owner, resource.name])

        with self._reading() as cursor:
            row = cursor.execute(sql, params).fetchone()
        return int(row[0]) if row else 0

    async def mark_loaded(self, document_ids: list[int]) -> int:
        """Set ``loaded_at`` on documents a downstream step has consumed.

        Documents already marked keep their original timestamp.

        Returns:
            Number of documents newly marked.
        """
        if not document_ids:
            return 0
        async with self.transaction() as tx:
            return tx.mark_loaded(document_ids)

    # --- Analytics ---

    async def query_arrow(
        self,
        sql: str,
        params: list[Any] | None = None,
        tables: dict[str, pa.Table] | None = None,
    ) -> pa.Table:
        """Run a read query and return an Arrow table.

        Args:
            sql: Query text with ``?`` placeholders.
            params: Positional parameters.
            tables: Arrow tables registered as views for this query only.
        """
        with self._reading() as cursor:
            for name, table in (tables or {}).items():
                cursor.register(name, table)
            try:
                result = cursor.execute(sql, params or [])
                return result.fetch_arrow_table()
            finally:
                for name in tables or {}:
                    cursor.unregister(name)

    # --- Private Helpers ---

    @staticmethod
    def _row_to_document(row: tuple[Any, ...]) -> RawDocument:
        # Columns: id, created_at, loaded_at, data_source, data_type, metadata, data
        metadata = row[5] if isinstance(row[5], dict) else json.loads(row[5])
        return RawDocument(
            id=row[0],
            created_at=_aware(row[1]),
            loaded_at=_aware(row[2]),
            data_source=DataSource(row[3]),
            data_type=DataType(row[4]),
            metadata=DocumentMetadata(**metadata),
            data=row[6],
        )

    @contextmanager
    def _reading(self) -> Iterator[duckdb.DuckDBPyConnection]:
        cursor = self.cursor()
        try:
            yield cursor
        except duckdb.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        finally:
            cursor.close()
