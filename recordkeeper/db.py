"""
Record store abstraction for SQL databases and an in-memory test implementation.

Documents are plain JSON-compatible dicts keyed by ``(collection, id)``. The
store validates documents against the collection registry and keeps a folded
copy of the distinguishing field so case-insensitive lookups and the
uniqueness backstop agree with the Uniqueness Guard.
"""

from __future__ import annotations

import copy
import threading
import time
import uuid
from contextlib import contextmanager, nullcontext
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol

from sqlalchemy import JSON, Column, Float, String, UniqueConstraint, create_engine, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from recordkeeper.documents import (
    COLLECTIONS,
    CollectionSpec,
    field_matches,
    fold_name,
    is_list_field,
    unique_key_for,
    validate_document,
)
from recordkeeper.errors import DuplicateError, InfrastructureError, ValidationError


class RecordStore(Protocol):
    """Interface for record document storage."""

    def find_by_id(self, collection: str, record_id: str) -> Optional[dict]:
        ...

    def find_one_case_insensitive(
        self,
        collection: str,
        field: str,
        value: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[dict]:
        ...

    def find_one(self, collection: str, field: str, value: Any) -> Optional[dict]:
        ...

    def find_many(self, collection: str, field: str, value: Any) -> List[dict]:
        ...

    def list_documents(self, collection: str) -> List[dict]:
        ...

    def create(self, collection: str, doc: dict) -> dict:
        ...

    def update_by_id(
        self, collection: str, record_id: str, patch: dict, validate: bool = True
    ) -> Optional[dict]:
        ...

    def delete_by_id(self, collection: str, record_id: str) -> bool:
        ...

    def delete_many(self, collection: str, foreign_key: str, value: Any) -> int:
        ...


def _new_record_id() -> str:
    return uuid.uuid4().hex


def _spec_for(collections: Mapping[str, CollectionSpec], collection: str) -> CollectionSpec:
    spec = collections.get(collection)
    if spec is None:
        raise ValidationError(f"Unknown collection: {collection}")
    return spec


def _duplicate_message(spec: CollectionSpec) -> str:
    return f"Duplicate {spec.unique_field or 'value'} in {spec.name}"


class InMemoryRecordStore:
    """Simple in-memory record store for development and tests."""

    def __init__(self, collections: Mapping[str, CollectionSpec] = COLLECTIONS):
        self.collections = collections
        self.documents: Dict[str, Dict[str, dict]] = {name: {} for name in collections}
        self._lock = threading.Lock()

    def _bucket(self, collection: str) -> Dict[str, dict]:
        _spec_for(self.collections, collection)
        return self.documents.setdefault(collection, {})

    def _assert_unique(
        self, spec: CollectionSpec, bucket: Dict[str, dict], doc: dict, record_id: str
    ) -> None:
        key = unique_key_for(spec, doc)
        if key is None:
            return
        for other_id, other in bucket.items():
            if other_id != record_id and unique_key_for(spec, other) == key:
                raise DuplicateError(_duplicate_message(spec))

    def find_by_id(self, collection: str, record_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._bucket(collection).get(record_id)
            return copy.deepcopy(doc) if doc else None

    def find_one_case_insensitive(
        self,
        collection: str,
        field: str,
        value: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[dict]:
        target = fold_name(value)
        with self._lock:
            for record_id, doc in self._bucket(collection).items():
                if record_id == exclude_id:
                    continue
                candidate = doc.get(field)
                if isinstance(candidate, str) and fold_name(candidate) == target:
                    return copy.deepcopy(doc)
        return None

    def find_one(self, collection: str, field: str, value: Any) -> Optional[dict]:
        with self._lock:
            for doc in self._bucket(collection).values():
                if field_matches(doc.get(field), value):
                    return copy.deepcopy(doc)
        return None

    def find_many(self, collection: str, field: str, value: Any) -> List[dict]:
        with self._lock:
            return [
                copy.deepcopy(doc)
                for doc in self._bucket(collection).values()
                if field_matches(doc.get(field), value)
            ]

    def list_documents(self, collection: str) -> List[dict]:
        with self._lock:
            docs = [copy.deepcopy(doc) for doc in self._bucket(collection).values()]
        return sorted(docs, key=lambda doc: doc["created_at"], reverse=True)

    def create(self, collection: str, doc: dict) -> dict:
        spec = _spec_for(self.collections, collection)
        body = validate_document(spec, doc)
        now = time.time()
        record_id = _new_record_id()
        body.update({"id": record_id, "created_at": now, "updated_at": now})
        with self._lock:
            bucket = self._bucket(collection)
            self._assert_unique(spec, bucket, body, record_id)
            bucket[record_id] = body
            return copy.deepcopy(body)

    def update_by_id(
        self, collection: str, record_id: str, patch: dict, validate: bool = True
    ) -> Optional[dict]:
        spec = _spec_for(self.collections, collection)
        with self._lock:
            bucket = self._bucket(collection)
            existing = bucket.get(record_id)
            if existing is None:
                return None
            merged = {**existing, **patch}
            if validate:
                merged = validate_document(spec, merged)
            merged.update(
                {
                    "id": record_id,
                    "created_at": existing["created_at"],
                    "updated_at": time.time(),
                }
            )
            self._assert_unique(spec, bucket, merged, record_id)
            bucket[record_id] = merged
            return copy.deepcopy(merged)

    def delete_by_id(self, collection: str, record_id: str) -> bool:
        with self._lock:
            return self._bucket(collection).pop(record_id, None) is not None

    def delete_many(self, collection: str, foreign_key: str, value: Any) -> int:
        with self._lock:
            bucket = self._bucket(collection)
            doomed = [
                rid for rid, doc in bucket.items() if field_matches(doc.get(foreign_key), value)
            ]
            for record_id in doomed:
                del bucket[record_id]
            return len(doomed)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            for bucket in self.documents.values():
                bucket.clear()


Base = declarative_base()


class DocumentRow(Base):
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("collection", "unique_key", name="uq_documents_unique_key"),
    )

    collection = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    # Folded distinguishing field; NULL for collections without one.
    unique_key = Column(String, nullable=True, index=True)
    data = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)


class SqlRecordStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(
        self,
        database_url: str,
        collections: Mapping[str, CollectionSpec] = COLLECTIONS,
    ):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlRecordStore")
        self.collections = collections
        engine_kwargs: Dict[str, Any] = {"future": True, "pool_pre_ping": True}
        self._connection_lock: Optional[threading.RLock] = None
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection so worker threads see the same database.
            engine_kwargs.update(
                poolclass=StaticPool, connect_args={"check_same_thread": False}
            )
            # A single DBAPI connection cannot carry interleaved transactions.
            self._connection_lock = threading.RLock()
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        guard = self._connection_lock if self._connection_lock is not None else nullcontext()
        with guard:
            with self.Session() as session:
                yield session

    def _to_doc(self, row: DocumentRow) -> dict:
        doc = copy.deepcopy(row.data)
        doc.update({"id": row.id, "created_at": row.created_at, "updated_at": row.updated_at})
        return doc

    def _field_equals(self, field: str, value: Any):
        if isinstance(value, str):
            return DocumentRow.data[field].as_string() == value
        if isinstance(value, bool):
            return DocumentRow.data[field].as_boolean() == value
        if isinstance(value, int):
            return DocumentRow.data[field].as_integer() == value
        if isinstance(value, float):
            return DocumentRow.data[field].as_float() == value
        raise ValidationError(f"Unsupported lookup value for {field}: {value!r}")

    def find_by_id(self, collection: str, record_id: str) -> Optional[dict]:
        try:
            with self._session() as session:
                row = session.get(DocumentRow, (collection, record_id))
                return self._to_doc(row) if row else None
        except SQLAlchemyError as exc:
            raise InfrastructureError(f"Record store unavailable: {exc}") from exc

    def find_one_case_insensitive(
        self,
        collection: str,
        field: str,
        value: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[dict]:
        spec = _spec_for(self.collections, collection)
        target = fold_name(value)
        try:
            with self._session() as session:
                stmt = select(DocumentRow).where(DocumentRow.collection == collection)
                if exclude_id:
                    stmt = stmt.where(DocumentRow.id != exclude_id)
                if field == spec.unique_field:
                    row = session.execute(
                        stmt.where(DocumentRow.unique_key == target).limit(1)
                    ).scalar_one_or_none()
                    return self._to_doc(row) if row else None
                # Unindexed fields fall back to folding in Python.
                for row in session.execute(stmt).scalars():
                    candidate = row.data.get(field)
                    if isinstance(candidate, str) and fold_name(candidate) == target:
                        return self._to_doc(row)
                return None
        except SQLAlchemyError as exc:
            raise InfrastructureError(f"Record store unavailable: {exc}") from exc

    def find_one(self, collection: str, field: str, value: Any) -> Optional[dict]:
        matches = self._select_where(collection, field, value, limit=1)
        return matches[0] if matches else None

    def find_many(self, collection: str, field: str, value: Any) -> List[dict]:
        return self._select_where(collection, field, value)

    def _matching_rows(
        self, session: Session, collection: str, field: str, value: Any, limit: Optional[int] = None
    ) -> List[DocumentRow]:
        stmt = select(DocumentRow).where(DocumentRow.collection == collection)
        spec = self.collections.get(collection)
        if spec is not None and is_list_field(spec, field):
            # JSON array membership has no portable SQL form; filter in Python.
            rows = [
                row
                for row in session.execute(stmt).scalars()
                if field_matches(row.data.get(field), value)
            ]
            return rows[:limit] if limit else rows
        stmt = stmt.where(self._field_equals(field, value))
        if limit:
            stmt = stmt.limit(limit)
        return list(session.execute(stmt).scalars())

    def _select_where(
        self, collection: str, field: str, value: Any, limit: Optional[int] = None
    ) -> List[dict]:
        try:
            with self._session() as session:
                return [
                    self._to_doc(row)
                    for row in self._matching_rows(session, collection, field, value, limit)
                ]
        except SQLAlchemyError as exc:
            raise InfrastructureError(f"Record store unavailable: {exc}") from exc

    def list_documents(self, collection: str) -> List[dict]:
        stmt = (
            select(DocumentRow)
            .where(DocumentRow.collection == collection)
            .order_by(DocumentRow.created_at.desc())
        )
        try:
            with self._session() as session:
                return [self._to_doc(row) for row in session.execute(stmt).scalars()]
        except SQLAlchemyError as exc:
            raise InfrastructureError(f"Record store unavailable: {exc}") from exc

    def create(self, collection: str, doc: dict) -> dict:
        spec = _spec_for(self.collections, collection)
        body = validate_document(spec, doc)
        now = time.time()
        row = DocumentRow(
            collection=collection,
            id=_new_record_id(),
            unique_key=unique_key_for(spec, body),
            data=body,
            created_at=now,
            updated_at=now,
        )
        try:
            with self._session() as session:
                session.add(row)
                session.commit()
                session.refresh(row)
                return self._to_doc(row)
        except IntegrityError as exc:
            raise DuplicateError(_duplicate_message(spec)) from exc
        except SQLAlchemyError as exc:
            raise InfrastructureError(f"Record store unavailable: {exc}") from exc

    def update_by_id(
        self, collection: str, record_id: str, patch: dict, validate: bool = True
    ) -> Optional[dict]:
        spec = _spec_for(self.collections, collection)
        try:
            with self._session() as session:
                row = session.get(DocumentRow, (collection, record_id))
                if not row:
                    return None
                merged = {**row.data, **patch}
                for key in ("id", "created_at", "updated_at"):
                    merged.pop(key, None)
                if validate:
                    merged = validate_document(spec, merged)
                # Assign a fresh dict so the JSON column is flagged dirty.
                row.data = merged
                row.unique_key = unique_key_for(spec, merged)
                row.updated_at = time.time()
                session.commit()
                session.refresh(row)
                return self._to_doc(row)
        except IntegrityError as exc:
            raise DuplicateError(_duplicate_message(spec)) from exc
        except SQLAlchemyError as exc:
            raise InfrastructureError(f"Record store unavailable: {exc}") from exc

    def delete_by_id(self, collection: str, record_id: str) -> bool:
        try:
            with self._session() as session:
                row = session.get(DocumentRow, (collection, record_id))
                if not row:
                    return False
                session.delete(row)
                session.commit()
                return True
        except SQLAlchemyError as exc:
            raise InfrastructureError(f"Record store unavailable: {exc}") from exc

    def delete_many(self, collection: str, foreign_key: str, value: Any) -> int:
        try:
            with self._session() as session:
                rows = self._matching_rows(session, collection, foreign_key, value)
                for row in rows:
                    session.delete(row)
                session.commit()
                return len(rows)
        except SQLAlchemyError as exc:
            raise InfrastructureError(f"Record store unavailable: {exc}") from exc
