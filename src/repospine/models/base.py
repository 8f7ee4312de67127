"""Base models and shared constants.

Example:
    >>> from repospine.models.base import DataSource, DataType
    >>> DataSource.GITHUB_REST_API.value
    'github_rest_api'
    >>> DataType.PULLS.value
    'pulls'
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class DataSource(str, Enum):
    """External system a raw document was fetched from."""

    GITHUB_REST_API = "github_rest_api"


class DataType(str, Enum):
    """Payload shape of a raw document."""

    PULLS = "pulls"  # JSON array of pull requests


class RepoSpineModel(BaseModel):
    """Base model with standard configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )


class FrozenModel(RepoSpineModel):
    """Immutable value object."""

    model_config = ConfigDict(frozen=True, extra="forbid")
