"""
Document store interface.

The core never talks to a database client directly. Backends implement
``DocumentStore`` structurally (typing.Protocol); they don't need to inherit.

Documents are JSON-compatible dicts. Every document returned by a store
carries its identifier under ``"id"``.
"""

import operator
from typing import Any, Callable, ContextManager, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from ..errors import ValidationError

# Collection names
DETECTIONS = "detections"
VERIFICATIONS = "verifications"
VERIFICATION_HISTORY = "verification_history"
USERS = "users"

COLLECTIONS = (DETECTIONS, VERIFICATIONS, VERIFICATION_HISTORY, USERS)

# Stable sort field per collection (descending, ties broken by id)
SORT_FIELDS = {
    DETECTIONS: "timestamp",
    VERIFICATIONS: "timestamp",
    VERIFICATION_HISTORY: "changed_at",
    USERS: "name",
}

Filter = Tuple[str, str, Any]

OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def check_filters(filters: Sequence[Filter]) -> None:
    """Reject filters with unsupported operators."""
    for flt in filters:
        if len(flt) != 3 or flt[1] not in OPERATORS:
            raise ValidationError(f"Unsupported filter: {flt!r}")


def matches(document: Dict[str, Any], filters: Sequence[Filter]) -> bool:
    """Evaluate filters against a document.

    A missing field only matches ``(field, "==", None)``; a value of an
    incomparable type never matches.
    """
    for field_name, op, value in filters:
        current = document.get(field_name)
        if current is None:
            if op == "==" and value is None:
                continue
            return False
        try:
            if not OPERATORS[op](current, value):
                return False
        except TypeError:
            return False
    return True


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends."""

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Get a document by id, or None if it does not exist."""
        ...

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Query documents.

        Results are ordered by ``order_by`` then id, both in the requested
        direction. ``start_after`` names a document id; only documents strictly
        after it in that ordering are returned (NotFoundError if it is absent).
        """
        ...

    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        """Insert a document with a fresh id and return the id."""
        ...

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Merge ``data`` into an existing document (NotFoundError if absent)."""
        ...

    def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        ...

    def transaction(self) -> ContextManager[None]:
        """Group writes so that they all apply or none do."""
        ...

    def close(self) -> None:
        ...


__all__ = [
    "DETECTIONS",
    "VERIFICATIONS",
    "VERIFICATION_HISTORY",
    "USERS",
    "COLLECTIONS",
    "SORT_FIELDS",
    "Filter",
    "OPERATORS",
    "check_filters",
    "matches",
    "DocumentStore",
]
