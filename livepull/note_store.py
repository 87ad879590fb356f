"""
Note repository using SQLite.

Stores reconstructed notes in a single table keyed by LiveSync document id.
Useful when the notes feed another program rather than an editor: queries
and counts do not touch the filesystem tree.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .errors import PersistenceError
from .repositories import search_notes
from .types import AssembledNote, isoformat, parse_timestamp

logger = logging.getLogger(__name__)


class SqliteNoteRepository:
    """
    SQLite-backed store for assembled notes.

    One connection shared across threads, serialized by a lock.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        try:
            self._init_db()
        except (OSError, sqlite3.Error) as e:
            raise PersistenceError(f"Cannot open note database {self._db_path}: {e}") from e

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        # WAL so readers (other tools) don't block sync writes
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS notes (
                id TEXT PRIMARY KEY,
                path TEXT NOT NULL,
                content TEXT NOT NULL,
                modified_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                size INTEGER NOT NULL DEFAULT 0,
                synced_at TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_notes_path
            ON notes(path)
        """)
        self._conn.commit()

    def _now(self) -> str:
        """Current timestamp in ISO format."""
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> AssembledNote:
        return AssembledNote(
            id=row["id"],
            path=row["path"],
            content=row["content"],
            modified_at=parse_timestamp(row["modified_at"]),
            created_at=parse_timestamp(row["created_at"]),
            size=row["size"],
        )

    def _execute(self, sql: str, params=(), *, many: bool = False):
        with self._lock:
            try:
                if many:
                    cursor = self._conn.executemany(sql, params)
                else:
                    cursor = self._conn.execute(sql, params)
                self._conn.commit()
                return cursor
            except sqlite3.Error as e:
                self._conn.rollback()
                raise PersistenceError(f"Note database error: {e}") from e

    def _query(self, sql: str, params=()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"Note database error: {e}") from e

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    _UPSERT = """
        INSERT INTO notes (id, path, content, modified_at, created_at, size, synced_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            path = excluded.path,
            content = excluded.content,
            modified_at = excluded.modified_at,
            created_at = excluded.created_at,
            size = excluded.size,
            synced_at = excluded.synced_at
    """

    def _params(self, note: AssembledNote, now: str) -> tuple:
        return (
            note.id, note.path, note.content,
            isoformat(note.modified_at), isoformat(note.created_at),
            note.size, now,
        )

    def upsert(self, note: AssembledNote) -> None:
        self._execute(self._UPSERT, self._params(note, self._now()))

    def upsert_many(self, notes: list[AssembledNote]) -> None:
        """Insert or update all notes in one transaction."""
        if not notes:
            return
        now = self._now()
        self._execute(self._UPSERT, [self._params(n, now) for n in notes], many=True)

    def delete(self, id: str) -> None:
        self._execute("DELETE FROM notes WHERE id = ?", (id,))

    def delete_many(self, ids: list[str]) -> None:
        if not ids:
            return
        self._execute("DELETE FROM notes WHERE id = ?", [(i,) for i in ids], many=True)

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, id: str) -> Optional[AssembledNote]:
        rows = self._query("""
            SELECT id, path, content, modified_at, created_at, size
            FROM notes WHERE id = ?
        """, (id,))
        return self._row_to_note(rows[0]) if rows else None

    def list(self) -> list[AssembledNote]:
        rows = self._query("""
            SELECT id, path, content, modified_at, created_at, size
            FROM notes ORDER BY path
        """)
        return [self._row_to_note(r) for r in rows]

    def search(self, query: str) -> list[AssembledNote]:
        if not query or not query.strip():
            return []
        # SQL LIKE folds ASCII only; match in Python for full case-insensitivity
        return search_notes(self.list(), query)

    def count(self) -> int:
        return self._query("SELECT COUNT(*) FROM notes")[0][0]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
