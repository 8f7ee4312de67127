"""Incremental sync: paginated fetcher, dedup commit gate and entry point."""

from repospine.sync.fetcher import PaginatedFetcher
from repospine.sync.gate import DedupCommitGate
from repospine.sync.service import SyncService

__all__ = ["DedupCommitGate", "PaginatedFetcher", "SyncService"]
