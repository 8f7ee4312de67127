"""Raw documents: immutable stored copies of fetched API pages.

Example:
    >>> from repospine.models.document import DocumentMetadata
    >>> meta = DocumentMetadata(owner="octocat", name="Hello-World", caching_token='"abc"')
    >>> meta.model_dump(exclude_none=True)
    {'owner': 'octocat', 'name': 'Hello-World', 'caching_token': '"abc"'}
"""

from __future__ import annotations

from datetime import datetime

from pydantic import ConfigDict, Field

from repospine.models.base import DataSource, DataType, FrozenModel
from repospine.models.resource import ResourceKey


class DocumentMetadata(FrozenModel):
    """Small tag set stored next to each payload."""

    owner: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    caching_token: str | None = None

    @classmethod
    def for_resource(cls, key: ResourceKey, caching_token: str | None = None) -> DocumentMetadata:
        return cls(owner=key.owner, name=key.name, caching_token=caching_token)

    @property
    def resource(self) -> ResourceKey:
        return ResourceKey(owner=self.owner, name=self.name)


class RawDocument(FrozenModel):
    """One committed row of the raw document table.

    ``data`` is the verbatim response body. It stays an opaque string until a
    query projects it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=False)

    id: int
    created_at: datetime
    loaded_at: datetime | None = None
    data_source: DataSource
    data_type: DataType
    metadata: DocumentMetadata
    data: str
