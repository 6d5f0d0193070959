"""
SQLite Entity Store: durable implementation of the EntityStore contract.

One table holds every kind. Updates are compare-and-swap on the version
column, so a stale write is rejected instead of overwriting a newer one.
"""

import logging
import sqlite3
import threading
from typing import List, Optional, Type
from uuid import uuid4

from disruption_kernel.entity_store.store import (
    AlreadyExistsError,
    ConflictError,
    EntityStore,
    NotFoundError,
    StoreUnavailableError,
    T,
)
from disruption_kernel.models.meta import ObjectKey

logger = logging.getLogger(__name__)


def connect(db_path: str = ":memory:") -> sqlite3.Connection:
    """Open a connection that several kind-specific stores can share."""
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


class SQLiteEntityStore(EntityStore[T]):
    """
    Prototype: SQLite. The schema is created on first use and is shared by
    all kinds bound to the same connection.
    """

    def __init__(
        self,
        model_cls: Type[T],
        kind: Optional[str] = None,
        db_path: str = ":memory:",
        conn: Optional[sqlite3.Connection] = None,
    ):
        super().__init__(model_cls, kind)
        self.db_path = db_path
        self._conn = conn or connect(db_path)
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the entities table if it doesn't exist."""
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS entities (
                    kind TEXT NOT NULL,
                    namespace TEXT NOT NULL,
                    name TEXT NOT NULL,
                    uid TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    body_json TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT (datetime('now')),
                    PRIMARY KEY (kind, namespace, name)
                )
            """)
            self._conn.commit()

    def _deserialize(self, row: sqlite3.Row) -> T:
        obj = self.model_cls.model_validate_json(row["body_json"])
        obj.metadata.version = row["version"]
        obj.metadata.uid = row["uid"]
        return obj

    def _fetch_row(self, key: ObjectKey) -> Optional[sqlite3.Row]:
        return self._conn.execute(
            "SELECT uid, version, body_json FROM entities "
            "WHERE kind = ? AND namespace = ? AND name = ?",
            (self.kind, key.namespace, key.name),
        ).fetchone()

    def get(self, key: ObjectKey) -> T:
        try:
            with self._lock:
                row = self._fetch_row(key)
        except sqlite3.Error as e:
            raise StoreUnavailableError(self.kind, key, str(e)) from e
        if row is None:
            raise NotFoundError(self.kind, key)
        return self._deserialize(row)

    def create(self, obj: T) -> T:
        key = obj.metadata.key
        stored = obj.model_copy(deep=True)
        stored.metadata.version = 1
        if not stored.metadata.uid:
            stored.metadata.uid = uuid4().hex
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT INTO entities (kind, namespace, name, uid, version, body_json) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        self.kind,
                        key.namespace,
                        key.name,
                        stored.metadata.uid,
                        1,
                        stored.model_dump_json(),
                    ),
                )
                self._conn.commit()
        except sqlite3.IntegrityError as e:
            raise AlreadyExistsError(self.kind, key) from e
        except sqlite3.Error as e:
            raise StoreUnavailableError(self.kind, key, str(e)) from e
        logger.debug("created %s %s", self.kind, key)
        return stored

    def update(self, obj: T) -> T:
        key = obj.metadata.key
        expected = obj.metadata.version
        stored = obj.model_copy(deep=True)
        stored.metadata.version = (expected or 0) + 1
        try:
            with self._lock:
                cursor = self._conn.execute(
                    "UPDATE entities SET version = version + 1, body_json = ? "
                    "WHERE kind = ? AND namespace = ? AND name = ? AND version = ?",
                    (stored.model_dump_json(), self.kind, key.namespace, key.name, expected),
                )
                self._conn.commit()
                if cursor.rowcount == 1:
                    row = self._fetch_row(key)
                    return self._deserialize(row)
                row = self._fetch_row(key)
        except sqlite3.Error as e:
            raise StoreUnavailableError(self.kind, key, str(e)) from e
        if row is None:
            raise NotFoundError(self.kind, key)
        raise ConflictError(self.kind, key, expected, row["version"])

    def delete(self, key: ObjectKey) -> None:
        try:
            with self._lock:
                cursor = self._conn.execute(
                    "DELETE FROM entities WHERE kind = ? AND namespace = ? AND name = ?",
                    (self.kind, key.namespace, key.name),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailableError(self.kind, key, str(e)) from e
        if cursor.rowcount == 0:
            raise NotFoundError(self.kind, key)

    def list(self, namespace: Optional[str] = None) -> List[T]:
        try:
            with self._lock:
                if namespace is None:
                    rows = self._conn.execute(
                        "SELECT uid, version, body_json FROM entities WHERE kind = ? "
                        "ORDER BY namespace, name",
                        (self.kind,),
                    ).fetchall()
                else:
                    rows = self._conn.execute(
                        "SELECT uid, version, body_json FROM entities "
                        "WHERE kind = ? AND namespace = ? ORDER BY name",
                        (self.kind, namespace),
                    ).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailableError(
                self.kind, ObjectKey(namespace=namespace or "", name=""), str(e)
            ) from e
        return [self._deserialize(r) for r in rows]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
