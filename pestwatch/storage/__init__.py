"""
Document store backends for detection and verification records.

Provides pluggable storage implementations:
- JSONDocumentStore: In-memory with optional JSON file persistence (development/tests)
- SQLDocumentStore: SQLAlchemy-backed (SQLite or PostgreSQL)

All backends implement the DocumentStore protocol; RecordStore adds typed
access to the four collections on top of any backend.

Usage:
    from pestwatch.storage import RecordStore, create_store

    store = create_store("sql", {"database_url": "sqlite:///./data/pestwatch.db"})
    records = RecordStore(store)
"""

import json
import logging
from pathlib import Path
from typing import Union

from ..errors import ValidationError
from ..models import parse_timestamp, to_iso
from .base import (
    COLLECTIONS,
    DETECTIONS,
    USERS,
    VERIFICATION_HISTORY,
    VERIFICATIONS,
    DocumentStore,
)
from .json_storage import JSONDocumentStore
from .records import RecordStore
from .sql_storage import SQLDocumentStore

logger = logging.getLogger(__name__)

# Fields rewritten to UTC ISO strings on load so that stored values sort correctly
TIMESTAMP_FIELDS = ("timestamp", "changed_at")

__all__ = [
    "COLLECTIONS",
    "DETECTIONS",
    "USERS",
    "VERIFICATION_HISTORY",
    "VERIFICATIONS",
    "DocumentStore",
    "JSONDocumentStore",
    "SQLDocumentStore",
    "RecordStore",
    "create_store",
    "load_jsonl",
]


def create_store(backend: str, config: dict) -> DocumentStore:
    """Factory function to create a document store.

    Args:
        backend: Store type ("json", "sql")
        config: Backend-specific configuration

    Returns:
        Store instance implementing the DocumentStore protocol

    Raises:
        ValueError: If backend type is unknown
    """
    if backend == "json":
        state_file = config.get("state_file")
        return JSONDocumentStore(state_file=Path(state_file) if state_file else None)
    elif backend == "sql":
        return SQLDocumentStore(
            database_url=config.get("database_url", "sqlite:///./data/pestwatch.db"),
            echo=config.get("echo", False),
        )
    else:
        raise ValueError(f"Unknown store backend: {backend}")


def load_jsonl(store: DocumentStore, collection: str, path: Union[str, Path]) -> int:
    """Seed a collection from a JSON Lines export.

    ``timestamp`` and ``changed_at`` values (ISO strings with any offset, or
    epoch seconds) are stored as UTC ISO strings; unparseable values reject
    the whole file.

    Args:
        store: Target store
        collection: Collection name
        path: File with one JSON object per line

    Returns:
        Number of documents inserted
    """
    if collection not in COLLECTIONS:
        raise ValidationError(f"Unknown collection: {collection}")

    logger.info(f"Loading {collection} from {path}")

    count = 0
    with open(path) as f, store.transaction():
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                document = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValidationError(f"{path}:{line_number}: invalid JSON ({e.msg})") from e
            if not isinstance(document, dict):
                raise ValidationError(f"{path}:{line_number}: expected a JSON object")
            for field_name in TIMESTAMP_FIELDS:
                if document.get(field_name) is None:
                    continue
                moment = parse_timestamp(document[field_name])
                if moment is None:
                    raise ValidationError(
                        f"{path}:{line_number}: invalid {field_name}: {document[field_name]!r}"
                    )
                document[field_name] = to_iso(moment)
            store.insert(collection, document)
            count += 1

    logger.info(f"Loaded {count} {collection} documents")
    return count
