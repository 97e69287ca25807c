"""
Cursor pagination over document collections.

A cursor is the id of the last record of the previous page. Records are
ordered by the collection's sort field descending, ties broken by id, so
consecutive pages neither skip nor repeat records while the data is unchanged.
Concurrent inserts or deletes between calls may cause one duplicate or
omission at a page boundary; the store offers no snapshot across calls.
"""

import logging
from typing import Any, Dict, Optional, Sequence

from .errors import NotFoundError, StoreError, ValidationError
from .models import Page
from .storage.base import SORT_FIELDS, DocumentStore, Filter

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


def validate_limit(limit: Any) -> int:
    """Page size must be a positive integer."""
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(f"Limit must be a positive integer, got {limit!r}")
    if limit <= 0:
        raise ValidationError(f"Limit must be a positive integer, got {limit}")
    return limit


class CursorPaginator:
    """Turns a last-seen record id into the next page of a collection."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def paginate(
        self,
        collection: str,
        limit: int = DEFAULT_LIMIT,
        cursor: Optional[str] = None,
        filters: Sequence[Filter] = (),
    ) -> Page[Dict[str, Any]]:
        """
        Get the page of records after ``cursor``.

        Args:
            collection: Collection name
            limit: Page size (positive integer)
            cursor: Id of the last record seen, or None for the first page
            filters: Extra equality/range filters

        Returns:
            Page whose ``next_cursor`` is the last item's id, or None at the end
        """
        limit = validate_limit(limit)
        if collection not in SORT_FIELDS:
            raise ValidationError(f"Unknown collection: {collection}")
        if cursor == "":
            cursor = None

        try:
            # One extra record tells whether another page exists
            documents = self.store.query(
                collection,
                filters=filters,
                order_by=SORT_FIELDS[collection],
                descending=True,
                limit=limit + 1,
                start_after=cursor,
            )
        except NotFoundError:
            raise ValidationError(f"Unknown cursor: {cursor}") from None
        except StoreError:
            logger.error(f"Pagination query failed for {collection}", exc_info=True)
            raise

        items = documents[:limit]
        has_more = len(documents) > limit
        next_cursor = items[-1]["id"] if has_more else None

        logger.debug(
            f"Paginated {collection}: {len(items)} items, cursor={cursor}, next={next_cursor}"
        )
        return Page(items=items, next_cursor=next_cursor, limit=limit)


def paginate(
    store: DocumentStore,
    collection: str,
    limit: int = DEFAULT_LIMIT,
    cursor: Optional[str] = None,
) -> Page[Dict[str, Any]]:
    """Convenience wrapper around ``CursorPaginator.paginate``."""
    return CursorPaginator(store).paginate(collection, limit=limit, cursor=cursor)
