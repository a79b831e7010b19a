"""Document store backed by SQLite (stdlib, WAL).

Collections of JSON documents keyed by (collection, id).

batch():
- create / set / update / increment / delete are queued
- commit() applies them inside one BEGIN IMMEDIATE transaction
- any failure -> ROLLBACK, nothing applied
- update/increment on a missing document aborts the whole batch

Money fields are decimal strings; increment() is relative (read-modify-write under the
write lock), so concurrent increments compose.
"""

from __future__ import annotations

import json
import os
import sqlite3
import threading
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

import deal

from core import money
from core.errors import InfrastructureError, LedgerError
from infra.logging_config import get_logger

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (collection, id)
);
"""


class StoreError(LedgerError):
    """Base error for the document store."""


class CommitError(StoreError, InfrastructureError):
    """Batch failed to commit and was rolled back. Safe to retry."""


class DocumentNotFoundError(StoreError):
    """update/increment targeted a document that does not exist. Batch rolled back."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} does not exist")
        self.collection = collection
        self.doc_id = doc_id


class DocumentExistsError(StoreError):
    """create targeted an id that already exists. Batch rolled back."""


@dataclass(frozen=True, slots=True)
class _Op:
    kind: str  # create | set | update | increment | delete
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None
    field: str = ""
    delta: Optional[Decimal] = None


def _json_dumps(x: Any) -> str:
    return json.dumps(x, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _ensure_name(value: str) -> bool:
    return isinstance(value, str) and value.strip() != ""


class DocumentStore:
    """SQLite-backed document collections with atomic multi-document batches."""

    @deal.pre(lambda self, db_path=":memory:": _ensure_name(db_path), message="db_path required")
    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        if db_path != ":memory:":
            d = os.path.dirname(db_path)
            if d:
                os.makedirs(d, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = self._connect()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        c = sqlite3.connect(self._db_path, timeout=30, isolation_level=None, check_same_thread=False)
        try:
            if self._db_path != ":memory:":
                c.execute("PRAGMA journal_mode=WAL")
                c.execute("PRAGMA synchronous=NORMAL")
            c.execute(_SCHEMA)
        except sqlite3.Error:
            c.close()
            raise
        return c

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def new_id() -> str:
        return uuid4().hex

    def batch(self) -> "WriteBatch":
        return WriteBatch(self)

    # ----------------------
    # READS
    # ----------------------

    def _row(self, c: sqlite3.Connection, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        row = c.execute(
            "SELECT data FROM documents WHERE collection=? AND id=?",
            (collection, doc_id),
        ).fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            data = self._row(self._conn, collection, doc_id)
        if data is None:
            return None
        data["id"] = doc_id
        return data

    def exists(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM documents WHERE collection=? AND id=?",
                (collection, doc_id),
            ).fetchone()
        return row is not None

    @deal.pre(lambda self, collection, **equals: all(k.isidentifier() for k in equals), message="field names must be identifiers")
    def query(self, collection: str, **equals: Any) -> List[Dict[str, Any]]:
        """Documents whose top-level fields equal the given values. None matches null or missing."""
        sql = "SELECT id, data FROM documents WHERE collection=?"
        params: List[Any] = [collection]
        for name, value in sorted(equals.items()):
            path = f"$.{name}"
            if value is None:
                sql += " AND json_extract(data, ?) IS NULL"
                params.append(path)
            else:
                if isinstance(value, bool):
                    value = int(value)
                elif isinstance(value, Enum):
                    value = value.value
                sql += " AND json_extract(data, ?) = ?"
                params.extend([path, value])
        sql += " ORDER BY rowid"
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        out: List[Dict[str, Any]] = []
        for doc_id, raw in rows:
            d = json.loads(raw)
            d["id"] = doc_id
            out.append(d)
        return out

    def all(self, collection: str) -> List[Dict[str, Any]]:
        return self.query(collection)

    def count(self, collection: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM documents WHERE collection=?",
                (collection,),
            ).fetchone()
        return int(row[0])

    # ----------------------
    # WRITES
    # ----------------------

    def _apply(self, c: sqlite3.Connection, op: _Op) -> None:
        if op.kind == "create":
            if self._row(c, op.collection, op.doc_id) is not None:
                raise DocumentExistsError(f"{op.collection}/{op.doc_id} already exists")
            c.execute(
                "INSERT INTO documents(collection,id,data) VALUES (?,?,?)",
                (op.collection, op.doc_id, _json_dumps(op.data or {})),
            )
        elif op.kind == "set":
            c.execute(
                "INSERT OR REPLACE INTO documents(collection,id,data) VALUES (?,?,?)",
                (op.collection, op.doc_id, _json_dumps(op.data or {})),
            )
        elif op.kind in ("update", "increment"):
            current = self._row(c, op.collection, op.doc_id)
            if current is None:
                raise DocumentNotFoundError(op.collection, op.doc_id)
            if op.kind == "update":
                current.update(op.data or {})
            else:
                assert op.delta is not None
                current[op.field] = money.to_doc(money.from_doc(current.get(op.field)) + op.delta)
            c.execute(
                "UPDATE documents SET data=? WHERE collection=? AND id=?",
                (_json_dumps(current), op.collection, op.doc_id),
            )
        elif op.kind == "delete":
            c.execute(
                "DELETE FROM documents WHERE collection=? AND id=?",
                (op.collection, op.doc_id),
            )
        else:
            raise StoreError(f"unknown op kind: {op.kind}")

    def _commit(self, ops: List[_Op]) -> None:
        with self._lock:
            c = self._conn
            try:
                c.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise CommitError(f"cannot open transaction: {exc}") from exc
            try:
                for op in ops:
                    self._apply(c, op)
                c.execute("COMMIT")
            except Exception as exc:
                c.execute("ROLLBACK")
                if not isinstance(exc, sqlite3.Error):
                    raise
                logger.error(
                    "Batch commit failed, rolled back",
                    extra={"extra_data": {"ops": len(ops), "error": str(exc)}},
                )
                raise CommitError(f"batch commit failed: {exc}") from exc


class WriteBatch:
    """Queued writes applied all-or-nothing by commit()."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._ops: List[_Op] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._ops)

    def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteBatch":
        self._ops.append(_Op("create", collection, doc_id, data=dict(data)))
        return self

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteBatch":
        self._ops.append(_Op("set", collection, doc_id, data=dict(data)))
        return self

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> "WriteBatch":
        self._ops.append(_Op("update", collection, doc_id, data=dict(fields)))
        return self

    @deal.pre(
        lambda self, collection, doc_id, field, delta: isinstance(delta, Decimal) and delta.is_finite(),
        message="delta must be a finite Decimal",
    )
    def increment(self, collection: str, doc_id: str, field: str, delta: Decimal) -> "WriteBatch":
        self._ops.append(_Op("increment", collection, doc_id, field=field, delta=delta))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self._ops.append(_Op("delete", collection, doc_id))
        return self

    def commit(self) -> int:
        if self._committed:
            raise StoreError("batch already committed")
        if self._ops:
            self._store._commit(self._ops)
        self._committed = True
        return len(self._ops)
