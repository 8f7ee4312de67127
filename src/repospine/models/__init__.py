"""Pydantic models for resources, watermarks, raw documents and sync results."""

from repospine.models.base import DataSource, DataType, FrozenModel, RepoSpineModel
from repospine.models.document import DocumentMetadata, RawDocument
from repospine.models.resource import ResourceKey
from repospine.models.sync import GateVerdict, PageState, ResourceSyncResult, SyncReport
from repospine.models.watermark import Watermark, default_watermark

__all__ = [
    "DataSource",
    "DataType",
    "DocumentMetadata",
    "FrozenModel",
    "GateVerdict",
    "PageState",
    "RawDocument",
    "RepoSpineModel",
    "ResourceKey",
    "ResourceSyncResult",
    "SyncReport",
    "Watermark",
    "default_watermark",
]
