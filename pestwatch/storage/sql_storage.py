"""
SQL document store backend.

Stores every collection in a single ``documents`` table with a JSON column,
through SQLAlchemy. Works with SQLite (single file, offline) and PostgreSQL.

Each call runs in its own session unless it happens inside ``transaction()``,
in which case all calls on that thread share one session and commit together.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import JSON, String, and_, create_engine, func, or_, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import NotFoundError, StoreError, ValidationError
from ..models import new_id
from .base import Filter, check_filters

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class Document(Base):
    """One JSON document in a named collection."""

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON)
    updated_at: Mapped[Optional[str]] = mapped_column(String, nullable=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_value(field_name: str, sample: Any):
    """JSON field accessor typed after the value it is compared with."""
    element = Document.data[field_name]
    if isinstance(sample, bool):
        return element.as_boolean()
    if isinstance(sample, (int, float)):
        return element.as_float()
    return element.as_string()


class SQLDocumentStore:
    """SQLAlchemy-backed document store.

    Implements the DocumentStore protocol.
    """

    def __init__(self, database_url: str = "sqlite:///./data/pestwatch.db", echo: bool = False):
        """Initialize SQL store and create the schema if needed.

        Args:
            database_url: SQLAlchemy database URL
            echo: Log emitted SQL
        """
        self.database_url = database_url
        engine_kwargs: Dict[str, Any] = {"echo": echo}
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                engine_kwargs["poolclass"] = StaticPool
            else:
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._engine = create_engine(database_url, **engine_kwargs)
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to open document database: {e}") from e

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._local = threading.local()

    @property
    def _active_session(self) -> Optional[Session]:
        return getattr(self._local, "session", None)

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Use the transaction's session, or a short-lived one that commits."""
        active = self._active_session
        if active is not None:
            yield active
            return

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Document store operation failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Apply all writes in the block or none of them."""
        if self._active_session is not None:
            # Nested blocks join the outer transaction
            yield
            return

        session = self._session_factory()
        self._local.session = session
        try:
            yield
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Transaction failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            self._local.session = None
            session.close()

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Get document by ID."""
        with self._session_scope() as session:
            row = session.get(Document, (collection, doc_id))
            if row is None:
                return None
            return {**row.data, "id": row.doc_id}

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
        stmt = select(Document).where(Document.collection == collection)

        for field_name, op, value in filters:
            stmt = stmt.where(self._filter_clause(field_name, op, value))

        with self._session_scope() as session:
            if order_by is not None:
                key = Document.data[order_by].as_string()
                if descending:
                    stmt = stmt.order_by(key.desc().nulls_last(), Document.doc_id.desc())
                else:
                    stmt = stmt.order_by(key.asc().nulls_first(), Document.doc_id.asc())
            else:
                stmt = stmt.order_by(
                    Document.doc_id.desc() if descending else Document.doc_id.asc()
                )

            if start_after is not None:
                cursor_row = session.get(Document, (collection, start_after))
                if cursor_row is None:
                    raise NotFoundError(f"Cursor document not found: {start_after}")
                stmt = stmt.where(
                    self._after_clause(order_by, descending, cursor_row)
                )

            if limit is not None:
                stmt = stmt.limit(limit)

            rows = session.scalars(stmt).all()
            return [{**row.data, "id": row.doc_id} for row in rows]

    def _filter_clause(self, field_name: str, op: str, value: Any):
        if value is None:
            element = Document.data[field_name].as_string()
            return element.is_(None) if op == "==" else element.is_not(None)

        element = _json_value(field_name, value)
        if op == "==":
            return element == value
        if op == "!=":
            return element != value
        if op == "<":
            return element < value
        if op == "<=":
            return element <= value
        if op == ">":
            return element > value
        return element >= value

    def _after_clause(self, order_by: Optional[str], descending: bool, cursor_row: Document):
        """Rows strictly after the cursor row in (order_by, doc_id) order."""
        cursor_id = cursor_row.doc_id
        if order_by is None:
            return Document.doc_id < cursor_id if descending else Document.doc_id > cursor_id

        key = Document.data[order_by].as_string()
        cursor_value = cursor_row.data.get(order_by)

        if cursor_value is None:
            # NULL keys sort last when descending, first when ascending
            if descending:
                return and_(key.is_(None), Document.doc_id < cursor_id)
            return or_(key.is_not(None), and_(key.is_(None), Document.doc_id > cursor_id))

        if descending:
            return or_(
                key < cursor_value,
                and_(key == cursor_value, Document.doc_id < cursor_id),
                key.is_(None),
            )
        return or_(key > cursor_value, and_(key == cursor_value, Document.doc_id > cursor_id))

    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        """Insert document; a caller-supplied ``id`` is kept if unused."""
        doc_id = data.get("id") or new_id()
        payload = {k: v for k, v in data.items() if k != "id"}

        with self._session_scope() as session:
            if session.get(Document, (collection, doc_id)) is not None:
                raise ValidationError(f"Document already exists in {collection}: {doc_id}")
            session.add(
                Document(collection=collection, doc_id=doc_id, data=payload, updated_at=_now())
            )
            session.flush()
        return doc_id

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Merge fields into an existing document."""
        with self._session_scope() as session:
            row = session.get(Document, (collection, doc_id))
            if row is None:
                raise NotFoundError(f"Document not found in {collection}: {doc_id}")
            # Reassign so the JSON column is flagged dirty
            row.data = {**row.data, **{k: v for k, v in data.items() if k != "id"}}
            row.updated_at = _now()
            session.flush()

    def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        with self._session_scope() as session:
            stmt = select(func.count()).select_from(Document).where(
                Document.collection == collection
            )
            return session.scalar(stmt)

    def close(self) -> None:
        """Dispose of the connection pool."""
        self._engine.dispose()
