"""
Storage layer interface for harvested documents.

Collections are addressed by name (`candidate_urls`, `listing_records`) and
documents by a key unique within the collection. Filters map field names to
values; a `__<lookup>` suffix selects the comparison:

- `field=value` equality (`None` matches missing/null)
- `field__ne=value` inequality (null counts as different)
- `field__in=[...]` membership
- `field__isnull=True|False`
- `field__lt=value`, `field__gt=value`
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

LOOKUPS = {"eq", "ne", "in", "isnull", "lt", "gt"}


def parse_lookup(name: str) -> tuple[str, str]:
    """
    Split `field__lookup` into its parts; a bare field name means equality.
    """

    field_name, separator, lookup = name.rpartition("__")
    if not separator:
        return name, "eq"
    if lookup not in LOOKUPS:
        raise ValueError(f"Unsupported filter lookup '{lookup}' in '{name}'.")
    return field_name, lookup


class DocumentStore(ABC):
    """
    Key-unique document persistence shared by every stage.

    Implementations must make `upsert` atomic per key so concurrent workers can
    write without in-process locking.
    """

    @abstractmethod
    def upsert(
        self,
        collection: str,
        *,
        key: Mapping[str, Any],
        set_on_insert: Mapping[str, Any],
        always_set: Mapping[str, Any],
    ) -> bool:
        """
        Insert the document when `key` is new, otherwise overwrite only the
        `always_set` fields. `set_on_insert` fields are never overwritten.

        Returns True when a new document was inserted.
        """

    @abstractmethod
    def find_batch(
        self,
        collection: str,
        *,
        filters: Mapping[str, Any],
        limit: int,
        after: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        Return up to `limit` matching documents ordered by `url`, starting
        strictly after the `after` url when given.
        """

    @abstractmethod
    def update(
        self,
        collection: str,
        *,
        key: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> bool:
        """
        Overwrite `fields` on an existing document; False when none matched.
        """

    @abstractmethod
    def count(self, collection: str, *, filters: Mapping[str, Any]) -> int:
        """
        Number of documents matching `filters`.
        """
