"""Local document store - keyed collections backed by SQLite.

Each collection stores the full pydantic document as JSON alongside the
indexed columns needed for lookups and range queries. The store is a pure
CRUD surface: no validation beyond what the schema enforces (primary keys,
unique folder names) and no business rules.

All public coroutines push the blocking sqlite work to a worker thread with
``asyncio.to_thread`` so the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..models.chat import ChatMessage
from ..models.note import Connection, Folder, Note, NoteVersion, utcnow
from ..models.settings import AiSettings
from ..models.studio import AuditLogEntry, FeatureFlag, PatchProposal
from .database import DatabaseService

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")


class LocalStoreError(Exception):
    """Raised when the store cannot read or write a document."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConstraintViolation(LocalStoreError):
    """Raised when a write breaks a primary key or unique index."""


@dataclass(frozen=True)
class CollectionSpec:
    """Static description of one collection table."""

    table: str
    model: Type[BaseModel]
    key: str = "id"
    autoincrement: bool = False
    columns: tuple[str, ...] = ()
    order_by: str = "rowid"


NOTES = CollectionSpec(
    "notes", Note, columns=("title", "folder_id", "created_at", "updated_at"), order_by="updated_at DESC"
)
FOLDERS = CollectionSpec("folders", Folder, columns=("name", "created_at"))
CONNECTIONS = CollectionSpec("connections", Connection, autoincrement=True, columns=("source", "target"))
PATCHES = CollectionSpec("patches", PatchProposal, columns=("status", "created_at"), order_by="created_at DESC")
FEATURE_FLAGS = CollectionSpec("feature_flags", FeatureFlag, columns=("is_enabled",))
AUDIT_LOG = CollectionSpec("audit_log", AuditLogEntry, columns=("patch_id", "timestamp"), order_by="timestamp DESC")
NOTE_VERSIONS = CollectionSpec("note_versions", NoteVersion, autoincrement=True, columns=("note_id", "timestamp"))
CHAT_MESSAGES = CollectionSpec("chat_messages", ChatMessage, autoincrement=True, columns=("thread_id", "timestamp"))


def _column_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _translate(exc: sqlite3.Error, table: str) -> LocalStoreError:
    if isinstance(exc, sqlite3.IntegrityError):
        return ConstraintViolation(f"Constraint violated on {table}: {exc}", {"table": table})
    return LocalStoreError(f"Store operation on {table} failed: {exc}", {"table": table})


class Collection(Generic[M]):
    """Async CRUD over a single table.

    The ``_``-prefixed methods take an open connection and are reused by
    :class:`StoreTransaction` to group writes atomically.
    """

    def __init__(self, db: DatabaseService, spec: CollectionSpec):
        self._db = db
        self.spec = spec

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _encode(self, doc: M) -> Dict[str, Any]:
        data = doc.model_dump(mode="json")
        values = {column: _column_value(getattr(doc, column)) for column in self.spec.columns}
        values["doc"] = json.dumps(data)
        key_value = getattr(doc, self.spec.key)
        if key_value is not None or not self.spec.autoincrement:
            values[self.spec.key] = key_value
        return values

    def _decode(self, row: sqlite3.Row) -> M:
        data = json.loads(row["doc"])
        data[self.spec.key] = row[self.spec.key]
        try:
            return self.spec.model.model_validate(data)  # type: ignore[return-value]
        except ValidationError as exc:
            raise LocalStoreError(
                f"Corrupt document in {self.spec.table}: {exc}",
                {"table": self.spec.table, "key": row[self.spec.key]},
            ) from exc

    # ------------------------------------------------------------------
    # Connection-bound operations
    # ------------------------------------------------------------------

    def _select(self, conn: sqlite3.Connection, where: str = "", params: Sequence[Any] = (), order_by: Optional[str] = None) -> List[M]:
        sql = f"SELECT * FROM {self.spec.table}"
        if where:
            sql += f" WHERE {where}"
        sql += f" ORDER BY {order_by or self.spec.order_by}"
        return [self._decode(row) for row in conn.execute(sql, tuple(params)).fetchall()]

    def _get(self, conn: sqlite3.Connection, key: Any) -> Optional[M]:
        row = conn.execute(
            f"SELECT * FROM {self.spec.table} WHERE {self.spec.key} = ?", (key,)
        ).fetchone()
        return self._decode(row) if row else None

    def _insert(self, conn: sqlite3.Connection, doc: M, replace: bool = False) -> Any:
        values = self._encode(doc)
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        verb = "INSERT OR REPLACE" if replace else "INSERT"
        cursor = conn.execute(
            f"{verb} INTO {self.spec.table} ({columns}) VALUES ({placeholders})",
            tuple(values.values()),
        )
        key_value = getattr(doc, self.spec.key)
        if key_value is None:
            key_value = cursor.lastrowid
            setattr(doc, self.spec.key, key_value)
        return key_value

    def _delete(self, conn: sqlite3.Connection, key: Any) -> None:
        conn.execute(f"DELETE FROM {self.spec.table} WHERE {self.spec.key} = ?", (key,))

    def _clear(self, conn: sqlite3.Connection) -> None:
        conn.execute(f"DELETE FROM {self.spec.table}")

    def _count(self, conn: sqlite3.Connection) -> int:
        return int(conn.execute(f"SELECT COUNT(*) FROM {self.spec.table}").fetchone()[0])

    # ------------------------------------------------------------------
    # Async surface
    # ------------------------------------------------------------------

    def _call(self, fn: Callable[..., T], *args: Any) -> T:
        conn = self._db.connect()
        try:
            with conn:
                return fn(conn, *args)
        except sqlite3.Error as exc:
            raise _translate(exc, self.spec.table) from exc
        finally:
            conn.close()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._call, fn, *args)

    async def get_all(self) -> List[M]:
        return await self._run(self._select)

    async def get(self, key: Any) -> Optional[M]:
        return await self._run(self._get, key)

    async def add(self, doc: M) -> Any:
        """Insert a new document; fails with ConstraintViolation if the key exists."""
        return await self._run(self._insert, doc)

    async def put(self, doc: M) -> Any:
        """Insert or replace a document by key."""
        return await self._run(self._insert, doc, True)

    async def delete(self, key: Any) -> None:
        await self._run(self._delete, key)

    async def bulk_add(self, docs: Sequence[M]) -> None:
        def _bulk(conn: sqlite3.Connection) -> None:
            for doc in docs:
                self._insert(conn, doc)

        await self._run(_bulk)

    async def count(self) -> int:
        return await self._run(self._count)

    async def clear(self) -> None:
        await self._run(self._clear)


class NoteCollection(Collection[Note]):
    """Notes with folder and recency range queries."""

    async def by_folder(self, folder_id: Optional[str]) -> List[Note]:
        """Notes in a folder (None = uncategorized), most recently updated first."""
        if folder_id is None:
            return await self._run(self._select, "folder_id IS NULL")
        return await self._run(self._select, "folder_id = ?", (folder_id,))

    async def updated_since(self, since: datetime) -> List[Note]:
        return await self._run(self._select, "updated_at >= ?", (since.isoformat(),))


class VersionCollection(Collection[NoteVersion]):
    """Append-only note snapshots."""

    async def for_note(self, note_id: str) -> List[NoteVersion]:
        """Snapshots for a note in timestamp order (oldest first)."""
        return await self._run(self._select, "note_id = ?", (note_id,), "timestamp ASC, id ASC")

    async def latest_for_note(self, note_id: str) -> Optional[NoteVersion]:
        def _latest(conn: sqlite3.Connection) -> Optional[NoteVersion]:
            row = conn.execute(
                "SELECT * FROM note_versions WHERE note_id = ? ORDER BY timestamp DESC, id DESC LIMIT 1",
                (note_id,),
            ).fetchone()
            return self._decode(row) if row else None

        return await self._run(_latest)


class ChatCollection(Collection[ChatMessage]):
    """Chat history grouped by thread."""

    async def for_thread(self, thread_id: str) -> List[ChatMessage]:
        return await self._run(self._select, "thread_id = ?", (thread_id,), "id ASC")

    async def delete_thread(self, thread_id: str) -> None:
        def _delete_thread(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM chat_messages WHERE thread_id = ?", (thread_id,))

        await self._run(_delete_thread)

    async def delete_after(self, thread_id: str, message_id: int) -> None:
        def _delete_after(conn: sqlite3.Connection) -> None:
            conn.execute(
                "DELETE FROM chat_messages WHERE thread_id = ? AND id > ?",
                (thread_id, message_id),
            )

        await self._run(_delete_after)


class BoundCollection(Generic[M]):
    """Synchronous view of a collection inside an open transaction."""

    def __init__(self, collection: Collection[M], conn: sqlite3.Connection):
        self._collection = collection
        self._conn = conn

    def get_all(self) -> List[M]:
        return self._collection._select(self._conn)

    def get(self, key: Any) -> Optional[M]:
        return self._collection._get(self._conn, key)

    def add(self, doc: M) -> Any:
        return self._collection._insert(self._conn, doc)

    def put(self, doc: M) -> Any:
        return self._collection._insert(self._conn, doc, True)

    def delete(self, key: Any) -> None:
        self._collection._delete(self._conn, key)

    def clear(self) -> None:
        self._collection._clear(self._conn)

    def count(self) -> int:
        return self._collection._count(self._conn)


class StoreTransaction:
    """Handle passed to :meth:`LocalStore.transaction` work functions."""

    def __init__(self, store: "LocalStore", conn: sqlite3.Connection):
        self.conn = conn
        self.notes = BoundCollection(store.notes, conn)
        self.folders = BoundCollection(store.folders, conn)
        self.connections = BoundCollection(store.connections, conn)
        self.patches = BoundCollection(store.patches, conn)
        self.feature_flags = BoundCollection(store.feature_flags, conn)
        self.audit_log = BoundCollection(store.audit_log, conn)
        self.versions = BoundCollection(store.versions, conn)
        self._store = store

    def reassign_folder(
        self, folder_id: str, new_folder_id: Optional[str], updated_at: Optional[datetime] = None
    ) -> int:
        """Move every note in ``folder_id`` to ``new_folder_id``; returns the count."""
        moved = 0
        for note in self.notes.get_all():
            if note.folder_id == folder_id:
                note.folder_id = new_folder_id
                note.updated_at = updated_at or utcnow()
                self.notes.put(note)
                moved += 1
        return moved

    def put_settings(self, settings: AiSettings) -> None:
        self._store._write_settings(self.conn, settings)


class LocalStore:
    """Embedded, schema-indexed document store for the whole workspace."""

    SETTINGS_KEY = "ai"

    def __init__(self, db_service: Optional[DatabaseService] = None):
        self.db = db_service or DatabaseService()
        self.notes = NoteCollection(self.db, NOTES)
        self.folders: Collection[Folder] = Collection(self.db, FOLDERS)
        self.connections: Collection[Connection] = Collection(self.db, CONNECTIONS)
        self.patches: Collection[PatchProposal] = Collection(self.db, PATCHES)
        self.feature_flags: Collection[FeatureFlag] = Collection(self.db, FEATURE_FLAGS)
        self.audit_log: Collection[AuditLogEntry] = Collection(self.db, AUDIT_LOG)
        self.versions = VersionCollection(self.db, NOTE_VERSIONS)
        self.chat_messages = ChatCollection(self.db, CHAT_MESSAGES)

    @classmethod
    def at_path(cls, db_path: str | Path) -> "LocalStore":
        store = cls(DatabaseService(db_path))
        store.initialize()
        return store

    def initialize(self) -> Path:
        """Create tables and indexes (idempotent)."""
        return self.db.initialize()

    async def transaction(self, work: Callable[[StoreTransaction], T]) -> T:
        """Run ``work`` on one connection; commit on success, roll back on any error."""

        def _run() -> T:
            conn = self.db.connect()
            try:
                with conn:
                    return work(StoreTransaction(self, conn))
            except sqlite3.Error as exc:
                raise _translate(exc, "transaction") from exc
            finally:
                conn.close()

        return await asyncio.to_thread(_run)

    async def is_empty(self) -> bool:
        """True when there are no notes and no folders."""
        return (await self.notes.count()) == 0 and (await self.folders.count()) == 0

    def _call_settings(self, fn: Callable[..., T], *args: Any) -> T:
        conn = self.db.connect()
        try:
            with conn:
                return fn(conn, *args)
        except sqlite3.Error as exc:
            raise _translate(exc, "app_settings") from exc
        finally:
            conn.close()

    def _write_settings(self, conn: sqlite3.Connection, settings: AiSettings) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO app_settings (id, doc) VALUES (?, ?)",
            (self.SETTINGS_KEY, settings.model_dump_json()),
        )

    async def get_settings(self) -> AiSettings:
        def _read(conn: sqlite3.Connection) -> AiSettings:
            row = conn.execute(
                "SELECT doc FROM app_settings WHERE id = ?", (self.SETTINGS_KEY,)
            ).fetchone()
            return AiSettings.model_validate_json(row["doc"]) if row else AiSettings()

        return await asyncio.to_thread(self._call_settings, _read)

    async def put_settings(self, settings: AiSettings) -> None:
        await asyncio.to_thread(self._call_settings, self._write_settings, settings)


__all__ = [
    "Collection",
    "ConstraintViolation",
    "LocalStore",
    "LocalStoreError",
    "NoteCollection",
    "StoreTransaction",
    "VersionCollection",
]
