"""Resource keys identify one repository on the external API.

Example:
    >>> from repospine.models.resource import ResourceKey
    >>> key = ResourceKey.parse("octocat/Hello-World")
    >>> key.owner, key.name
    ('octocat', 'Hello-World')
    >>> str(key)
    'octocat/Hello-World'
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import Field

from repospine.core.exceptions import ResourceKeyError
from repospine.models.base import FrozenModel


class ResourceKey(FrozenModel):
    """An ``{owner, name}`` pair parsed from ``owner/name``."""

    owner: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)

    @classmethod
    def parse(cls, value: str) -> ResourceKey:
        """Split ``owner/name`` into a key.

        Anything other than exactly one separator with non-empty parts is
        rejected; the string is never truncated or repaired.

        Raises:
            ResourceKeyError: If the string is malformed.

        Example:
            >>> ResourceKey.parse("a/b/c")  # doctest: +IGNORE_EXCEPTION_DETAIL
            Traceback (most recent call last):
            ResourceKeyError: Resource key must be of the form owner/name: 'a/b/c'
        """
        parts = value.split("/")
        if len(parts) != 2 or not all(part and part == part.strip() for part in parts):
            raise ResourceKeyError(f"Resource key must be of the form owner/name: {value!r}")
        return cls(owner=parts[0], name=parts[1])

    @classmethod
    def parse_many(cls, values: Iterable[str | ResourceKey]) -> list[ResourceKey]:
        """Parse a list of keys, failing on the first malformed one.

        Already parsed keys pass through. Duplicates are dropped while keeping
        first-seen order.
        """
        keys: list[ResourceKey] = []
        for value in values:
            key = value if isinstance(value, ResourceKey) else cls.parse(value)
            if key not in keys:
                keys.append(key)
        return keys

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}"
