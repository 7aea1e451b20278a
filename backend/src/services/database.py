"""SQLite database helpers for the local document store schema."""

from __future__ import annotations

from pathlib import Path
import sqlite3
from typing import Iterable

from .config import DEFAULT_DB_PATH

# Every collection keeps its full document as JSON in ``doc``; the other
# columns exist only to back primary keys, uniqueness and range indexes.
DDL_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS notes (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        folder_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        doc TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_notes_folder_updated ON notes(folder_id, updated_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_notes_folder_created ON notes(folder_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_notes_updated ON notes(updated_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS folders (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        created_at TEXT NOT NULL,
        doc TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS connections (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source TEXT NOT NULL,
        target TEXT NOT NULL,
        doc TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_connections_pair ON connections(source, target)",
    """
    CREATE TABLE IF NOT EXISTS patches (
        id TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        doc TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_patches_status ON patches(status, created_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS feature_flags (
        id TEXT PRIMARY KEY,
        is_enabled INTEGER NOT NULL DEFAULT 0,
        doc TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id TEXT PRIMARY KEY,
        patch_id TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        doc TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_patch ON audit_log(patch_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS note_versions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        note_id TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        doc TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_versions_note ON note_versions(note_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS chat_messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        thread_id TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        doc TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chat_thread ON chat_messages(thread_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS app_settings (
        id TEXT PRIMARY KEY,
        doc TEXT NOT NULL
    )
    """,
)


class DatabaseService:
    """Manage SQLite connections and schema initialization."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH

    def _ensure_directory(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        """Return a sqlite3 connection with the proper data directory created."""
        self._ensure_directory()
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self, statements: Iterable[str] | None = None) -> Path:
        """Create all schema artifacts required by the local store."""
        conn = self.connect()
        try:
            with conn:  # Transactional apply of DDL
                for statement in statements or DDL_STATEMENTS:
                    conn.execute(statement)
        finally:
            conn.close()
        return self.db_path


def init_database(db_path: str | Path | None = None) -> Path:
    """Convenience wrapper used at startup."""
    return DatabaseService(db_path).initialize()


__all__ = ["DatabaseService", "init_database", "DDL_STATEMENTS", "DEFAULT_DB_PATH"]
