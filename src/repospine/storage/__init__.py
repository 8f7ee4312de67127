"""DuckDB-backed Raw Document Store and Watermark Store."""

from repospine.storage.duckdb import DuckDBStore, Transaction

__all__ = ["DuckDBStore", "Transaction"]
