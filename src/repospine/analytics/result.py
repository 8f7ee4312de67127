"""Columnar query results.

Example:
    >>> import pyarrow as pa
    >>> from repospine.analytics.result import QueryResult
    >>> result = QueryResult(pa.table({"day": ["2020-01-07"], "value": [0.87]}))
    >>> result.to_pylist()
    [{'day': '2020-01-07', 'value': 0.87}]
    >>> result.to_ipc_bytes()[:6]
    b'ARROW1'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pyarrow as pa

from repospine.analytics.projection import ProjectionStats

ARROW_FILE_MEDIA_TYPE = "application/vnd.apache.arrow.file"


@dataclass(frozen=True)
class QueryResult:
    """An Arrow table plus the projection counts behind it."""

    table: pa.Table
    stats: ProjectionStats = field(default_factory=ProjectionStats)

    @property
    def num_rows(self) -> int:
        return self.table.num_rows

    @property
    def column_names(self) -> list[str]:
        return list(self.table.column_names)

    def to_pylist(self) -> list[dict[str, Any]]:
        """Rows as dictionaries, in result order."""
        return self.table.to_pylist()

    def to_ipc_bytes(self) -> bytes:
        """Serialize as an Arrow IPC file."""
        sink = pa.BufferOutputStream()
        with pa.ipc.new_file(sink, self.table.schema) as writer:
            writer.write_table(self.table)
        return sink.getvalue().to_pybytes()

    @classmethod
    def from_ipc_bytes(cls, data: bytes) -> QueryResult:
        with pa.ipc.open_file(pa.BufferReader(data)) as reader:
            return cls(reader.read_all())


__all__ = ["ARROW_FILE_MEDIA_TYPE", "QueryResult"]
