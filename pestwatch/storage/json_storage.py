"""
JSON file-based document store.

Keeps every collection in memory and optionally persists the whole state to a
single JSON file after each committed write.

Suitable for development, tests and single-user scenarios.
"""

import copy
import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..errors import NotFoundError, StoreError, ValidationError
from ..models import new_id
from .base import Filter, check_filters, matches

logger = logging.getLogger(__name__)


def _sort_key(document: Dict[str, Any], order_by: Optional[str]):
    if order_by is None:
        return (True, "", document["id"])
    value = document.get(order_by)
    return (value is not None, value if value is not None else "", document["id"])


class JSONDocumentStore:
    """In-memory document store with optional JSON file persistence.

    Implements the DocumentStore protocol.

    Transactions take a snapshot of the in-memory state and restore it if the
    block raises; the state file is written once when the outermost
    transaction commits.
    """

    def __init__(self, state_file: Optional[Path] = None):
        """Initialize JSON store.

        Args:
            state_file: Path to the JSON state file (None keeps data in memory only)
        """
        self.state_file = Path(state_file) if state_file else None
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._tx_depth = 0

        if self.state_file:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            self._load()

    def _load(self) -> None:
        """Load state from disk."""
        if not self.state_file.exists():
            return
        try:
            self._collections = json.loads(self.state_file.read_text())
        except (json.JSONDecodeError, OSError) as e:
            raise StoreError(f"Failed to load document state from {self.state_file}: {e}")

        total = sum(len(docs) for docs in self._collections.values())
        logger.info(f"Loaded {total} documents from {self.state_file}")

    def _save(self) -> None:
        """Save state to disk (atomic write)."""
        if not self.state_file or self._tx_depth:
            return
        temp_file = self.state_file.with_suffix(".tmp")
        try:
            temp_file.write_text(json.dumps(self._collections, indent=2))
            temp_file.replace(self.state_file)
        except OSError as e:
            raise StoreError(f"Failed to persist document state: {e}")

    def _collection(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Get document by ID."""
        document = self._collection(collection).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Query documents with filters, ordering and a start-after cursor."""
        check_filters(filters)
        documents = self._collection(collection)

        results = [d for d in documents.values() if matches(d, filters)]
        results.sort(key=lambda d: _sort_key(d, order_by), reverse=descending)

        if start_after is not None:
            cursor_doc = documents.get(start_after)
            if cursor_doc is None:
                raise NotFoundError(f"Cursor document not found: {start_after}")
            cursor_key = _sort_key(cursor_doc, order_by)
            if descending:
                results = [d for d in results if _sort_key(d, order_by) < cursor_key]
            else:
                results = [d for d in results if _sort_key(d, order_by) > cursor_key]

        if limit is not None:
            results = results[:limit]

        return copy.deepcopy(results)

    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        """Insert document; a caller-supplied ``id`` is kept if unused."""
        documents = self._collection(collection)
        doc_id = data.get("id") or new_id()
        if doc_id in documents:
            raise ValidationError(f"Document already exists in {collection}: {doc_id}")

        documents[doc_id] = {**copy.deepcopy(data), "id": doc_id}
        self._save()
        return doc_id

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Merge fields into an existing document."""
        documents = self._collection(collection)
        if doc_id not in documents:
            raise NotFoundError(f"Document not found in {collection}: {doc_id}")

        documents[doc_id].update(copy.deepcopy(data))
        documents[doc_id]["id"] = doc_id
        self._save()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Apply all writes in the block or none of them."""
        snapshot = copy.deepcopy(self._collections)
        self._tx_depth += 1
        try:
            yield
        except Exception:
            self._collections = snapshot
            raise
        finally:
            self._tx_depth -= 1

        self._save()

    def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        return len(self._collection(collection))

    def close(self) -> None:
        """Flush state (no-op for memory-only stores)."""
        self._save()
