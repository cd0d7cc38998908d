"""Record store interface and document query helpers.

Queries and updates are MongoDB-style documents restricted to the subset
the queue engine needs:

    filter:  {"field": value}
             {"field": {"$in": [...]}}
             {"field": {"$lte": value}}
             {"$or": [filter, ...]}
    update:  {"$set": {...}, "$unset": {...}, "$inc": {...}}
    sort:    [("field", 1), ("other", -1)]

MongoDB consumes these natively; the other backends evaluate or translate
them with the helpers below.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import Any

Document = dict[str, Any]
Filter = dict[str, Any]
Update = dict[str, Any]
SortSpec = Sequence[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1

SUPPORTED_FIELD_OPERATORS = frozenset({"$in", "$lte"})
SUPPORTED_UPDATE_OPERATORS = frozenset({"$set", "$unset", "$inc"})


class UnsupportedQueryError(ValueError):
    """Raised when a filter or update uses an operator a backend cannot evaluate."""


class RecordStore(ABC):
    """Persistence for a single queue collection.

    Every single-document update must be atomic. Implementations raise their
    driver's own exceptions on connectivity problems; the engine lets them
    propagate unchanged.
    """

    @abstractmethod
    async def insert_one(self, document: Document) -> Document:
        """Insert a document and return it with its assigned ``_id``."""

    @abstractmethod
    async def find(
        self,
        query: Filter,
        sort: SortSpec = (),
        limit: int = 0,
    ) -> list[Document]:
        """Return matching documents in sort order. limit=0 means no limit."""

    @abstractmethod
    async def update_one(self, query: Filter, update: Update) -> int:
        """Atomically update the first matching document. Returns matched count."""

    @abstractmethod
    async def update_many(self, query: Filter, update: Update) -> int:
        """Update every matching document. Returns matched count."""

    @abstractmethod
    async def delete_many(self, query: Filter) -> int:
        """Delete every matching document. Returns deleted count."""

    @abstractmethod
    def coerce_id(self, value: Any) -> Any | None:
        """Convert a native or string identifier to the store's id type.

        Returns None when the value cannot be an id of this store.
        """

    async def close(self) -> None:
        """Release connections held by the store."""
        return None


def coerce_ids(store: RecordStore, values: Iterable[Any]) -> list[Any]:
    """Coerce identifiers, silently dropping the ones the store cannot parse."""
    ids = []
    for value in values:
        coerced = store.coerce_id(value)
        if coerced is not None:
            ids.append(coerced)
    return ids


# =============================================================================
# In-process evaluation
# =============================================================================


def matches(document: Document, query: Filter) -> bool:
    """Evaluate a filter against a document."""
    for key, condition in query.items():
        if key == "$or":
            if not any(matches(document, sub) for sub in condition):
                return False
            continue
        if key.startswith("$"):
            raise UnsupportedQueryError(f"Unsupported filter operator: {key}")
        if not _field_matches(document, key, condition):
            return False
    return True


def _field_matches(document: Document, field: str, condition: Any) -> bool:
    present = field in document and document[field] is not None
    value = document.get(field)

    if not isinstance(condition, dict):
        return present and value == condition

    for operator, operand in condition.items():
        if operator not in SUPPORTED_FIELD_OPERATORS:
            raise UnsupportedQueryError(f"Unsupported field operator: {operator}")
        if not present:
            return False
        if operator == "$in" and value not in operand:
            return False
        if operator == "$lte" and not value <= operand:
            return False
    return True


def apply_update(document: Document, update: Update) -> None:
    """Apply an update document in place."""
    for operator in update:
        if operator not in SUPPORTED_UPDATE_OPERATORS:
            raise UnsupportedQueryError(f"Unsupported update operator: {operator}")

    for field, value in update.get("$set", {}).items():
        document[field] = value
    for field in update.get("$unset", {}):
        document.pop(field, None)
    for field, amount in update.get("$inc", {}).items():
        document[field] = (document.get(field) or 0) + amount


def sort_documents(documents: list[Document], sort: SortSpec) -> list[Document]:
    """Stable multi-key sort. Missing values sort first, as in MongoDB."""
    ordered = list(documents)
    for field, direction in reversed(list(sort)):
        ordered.sort(
            key=lambda doc, f=field: (doc.get(f) is not None, doc.get(f)),
            reverse=direction == DESCENDING,
        )
    return ordered
