from __future__ import annotations

import json
import logging
import re
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generator

from touchbase import config
from touchbase.errors import StoreError
from touchbase.models import format_timestamp, utc_now

logger = logging.getLogger(__name__)

SCHEMA = """\
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (collection, id)
);

CREATE INDEX IF NOT EXISTS idx_documents_owner
    ON documents (collection, json_extract(data, '$.userId'));
"""

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

Listener = Callable[[list[dict]], None]


def _connect(db_path: Path | None = None) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path or config.db_path()))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path | None = None) -> None:
    target = db_path or config.db_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(target)
    conn.executescript(SCHEMA)
    conn.close()


@contextmanager
def get_db(db_path: Path | None = None) -> Generator[sqlite3.Connection, None, None]:
    conn = _connect(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _check_field(name: str) -> str:
    if not _FIELD_RE.match(name):
        raise ValueError(f"Invalid document field name: {name!r}")
    return name


def _row_to_doc(row: sqlite3.Row) -> dict:
    doc = json.loads(row["data"])
    doc["id"] = row["id"]
    doc["createdAt"] = row["created_at"]
    doc["updatedAt"] = row["updated_at"]
    return doc


class DocumentStore:
    """Schemaless JSON documents grouped by collection, persisted in SQLite.

    Documents are plain dicts. ``id``, ``createdAt`` and ``updatedAt`` are
    owned by the store and never written into the JSON body. Subscribers
    are called with a fresh query result after every write to their
    collection.
    """

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or config.db_path()
        init_db(self.db_path)
        self._listeners: list[tuple[str, dict, str | None, bool, Listener]] = []

    @contextmanager
    def _session(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            with get_db(self.db_path) as db:
                yield db
        except sqlite3.Error as exc:
            raise StoreError(f"Document store failure: {exc}") from exc

    async def create(self, collection: str, data: dict, doc_id: str | None = None) -> dict:
        doc_id = doc_id or uuid.uuid4().hex
        now = format_timestamp(utc_now())
        body = {k: v for k, v in data.items() if k not in ("id", "createdAt", "updatedAt")}
        with self._session() as db:
            db.execute(
                "INSERT INTO documents (collection, id, data, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (collection, doc_id, json.dumps(body), now, now),
            )
        self._notify(collection)
        return {**body, "id": doc_id, "createdAt": now, "updatedAt": now}

    async def get(self, collection: str, doc_id: str) -> dict | None:
        with self._session() as db:
            row = db.execute(
                "SELECT * FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
            ).fetchone()
        return _row_to_doc(row) if row else None

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict]:
        return self._query(collection, filters or {}, order_by, descending)

    def _query(self, collection: str, filters: dict, order_by: str | None, descending: bool) -> list[dict]:
        sql = "SELECT * FROM documents WHERE collection = ?"
        params: list[Any] = [collection]
        for name, value in filters.items():
            path = f"$.{_check_field(name)}"
            if value is None:
                sql += " AND json_extract(data, ?) IS NULL"
                params.append(path)
            else:
                sql += " AND json_extract(data, ?) = ?"
                params.extend([path, value])
        if order_by in ("createdAt", "updatedAt"):
            sql += f" ORDER BY {'created_at' if order_by == 'createdAt' else 'updated_at'}"
        elif order_by:
            sql += " ORDER BY json_extract(data, ?)"
            params.append(f"$.{_check_field(order_by)}")
        if order_by:
            sql += " DESC" if descending else " ASC"
            sql += ", id"
        with self._session() as db:
            rows = db.execute(sql, params).fetchall()
        return [_row_to_doc(r) for r in rows]

    async def update(self, collection: str, doc_id: str, patch: dict) -> dict | None:
        """Shallow-merge ``patch`` into the document. Returns None if it is missing."""
        now = format_timestamp(utc_now())
        with self._session() as db:
            row = db.execute(
                "SELECT * FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
            ).fetchone()
            if not row:
                return None
            body = json.loads(row["data"])
            body.update({k: v for k, v in patch.items() if k not in ("id", "createdAt", "updatedAt")})
            db.execute(
                "UPDATE documents SET data = ?, updated_at = ? WHERE collection = ? AND id = ?",
                (json.dumps(body), now, collection, doc_id),
            )
            created_at = row["created_at"]
        self._notify(collection)
        return {**body, "id": doc_id, "createdAt": created_at, "updatedAt": now}

    async def delete(self, collection: str, doc_id: str) -> bool:
        with self._session() as db:
            cur = db.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
            )
            deleted = cur.rowcount > 0
        if deleted:
            self._notify(collection)
        return deleted

    def subscribe(
        self,
        collection: str,
        filters: dict[str, Any],
        callback: Listener,
        order_by: str | None = None,
        descending: bool = False,
    ) -> Callable[[], None]:
        """Listen to a query. The callback fires now and after every write."""
        entry = (collection, dict(filters), order_by, descending, callback)
        self._listeners.append(entry)
        self._deliver(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _notify(self, collection: str) -> None:
        for entry in list(self._listeners):
            if entry[0] == collection:
                self._deliver(entry)

    def _deliver(self, entry) -> None:
        collection, filters, order_by, descending, callback = entry
        try:
            callback(self._query(collection, filters, order_by, descending))
        except Exception:
            logger.exception("Subscriber for %s failed", collection)
