"""Configuration, errors and logging."""

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

__all__ = [
    "ConfigurationError",
    "DateRangeError",
    "DurationUnit",
    "FetchError",
    "RepoSpineError",
    "ResourceKeyError",
    "Settings",
    "StorageError",
    "SyncError",
    "SyncMode",
    "get_settings",
]
