"""
Note repositories backed by memory and by a vault directory.

The disk repository mirrors the LiveSync vault as plain files, so the output
can be read by any editor or indexed by other tools. An id -> path index in
``<vault>/.livepull/index.json`` lets notes be found and deleted by id.
"""

from __future__ import annotations

import json
import logging
import os
import posixpath
import re
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .errors import InvalidNotePathError, PersistenceError
from .types import AssembledNote, isoformat, parse_timestamp

logger = logging.getLogger(__name__)

INDEX_DIRNAME = ".livepull"
INDEX_FILENAME = "index.json"

# Bounded fan-out for bulk file writes
MAX_PARALLEL_WRITES = 8

_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")


def _matches(note: AssembledNote, lowered: str) -> bool:
    return lowered in note.path.lower() or lowered in note.content.lower()


def search_notes(notes: Iterable[AssembledNote], query: str) -> list[AssembledNote]:
    """Case-insensitive substring match over path and content; blank query -> []."""
    if not query or not query.strip():
        return []
    lowered = query.lower()
    return [n for n in notes if _matches(n, lowered)]


class MemoryNoteRepository:
    """In-process note storage. Contents are lost on exit."""

    def __init__(self):
        self._notes: dict[str, AssembledNote] = {}
        self._lock = threading.Lock()

    def upsert(self, note: AssembledNote) -> None:
        with self._lock:
            self._notes[note.id] = note

    def upsert_many(self, notes: list[AssembledNote]) -> None:
        with self._lock:
            for note in notes:
                self._notes[note.id] = note

    def delete(self, id: str) -> None:
        with self._lock:
            self._notes.pop(id, None)

    def delete_many(self, ids: list[str]) -> None:
        with self._lock:
            for id in ids:
                self._notes.pop(id, None)

    def get(self, id: str) -> Optional[AssembledNote]:
        with self._lock:
            return self._notes.get(id)

    def list(self) -> list[AssembledNote]:
        with self._lock:
            return list(self._notes.values())

    def search(self, query: str) -> list[AssembledNote]:
        return search_notes(self.list(), query)

    def count(self) -> int:
        with self._lock:
            return len(self._notes)

    def close(self) -> None:
        pass


def sanitize_relative_path(raw_path: str) -> str:
    """
    Normalize a vault-relative path, rejecting anything that escapes the vault.

    Raises:
        InvalidNotePathError: empty, absolute, drive-letter or ``..`` paths
    """
    if not raw_path or not raw_path.strip():
        raise InvalidNotePathError(raw_path)
    unix_like = raw_path.replace("\\", "/")
    if _DRIVE_LETTER.match(unix_like) or unix_like.startswith("/"):
        raise InvalidNotePathError(raw_path)
    normalized = posixpath.normpath(unix_like)
    if normalized in ("", ".", "..") or normalized.startswith("../"):
        raise InvalidNotePathError(raw_path)
    if normalized.split("/")[0] == INDEX_DIRNAME:
        raise InvalidNotePathError(raw_path)
    return normalized


class DiskNoteRepository:
    """
    Notes as plaintext files under a vault directory.

    Each note is written to ``<vault>/<note.path>``. Metadata that a file
    cannot carry (note id, LiveSync timestamps, size) lives in the index.
    """

    def __init__(self, vault_path: Path, *, max_parallel: int = MAX_PARALLEL_WRITES):
        self._root = Path(vault_path).expanduser().resolve()
        self._max_parallel = max_parallel
        self._lock = threading.Lock()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create vault directory {self._root}: {e}") from e
        self._index = self._load_index()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def _index_path(self) -> Path:
        return self._root / INDEX_DIRNAME / INDEX_FILENAME

    # -------------------------------------------------------------------------
    # Index
    # -------------------------------------------------------------------------

    def _load_index(self) -> dict[str, dict]:
        try:
            with open(self._index_path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to read vault index {self._index_path}: {e}") from e
        return data.get("notes", {}) if isinstance(data, dict) else {}

    def _save_index(self) -> None:
        path = self._index_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".index-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump({"notes": self._index}, f, ensure_ascii=False)
                os.replace(tmp, path)
            except BaseException:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to write vault index {path}: {e}") from e

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def _resolve(self, relative: str) -> Path:
        target = (self._root / sanitize_relative_path(relative)).resolve()
        if target != self._root and self._root not in target.parents:
            raise InvalidNotePathError(relative)
        return target

    def _target(self, note: AssembledNote) -> tuple[str, Path]:
        relative = sanitize_relative_path(note.path or note.id)
        return relative, self._resolve(relative)

    def _write_file(self, note: AssembledNote) -> dict:
        relative, target = self._target(note)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(note.content, encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to write note {relative}: {e}") from e
        return {
            "path": relative,
            "modified_at": isoformat(note.modified_at),
            "created_at": isoformat(note.created_at),
            "size": note.size,
        }

    def _remove_file(self, relative: str) -> None:
        try:
            self._resolve(relative).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Failed to delete note {relative}: {e}") from e

    def _run_parallel(self, func, items: list) -> list:
        if not items:
            return []
        workers = min(self._max_parallel, len(items))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="livepull-vault") as pool:
            return list(pool.map(func, items))

    def _owned_paths(self) -> set[str]:
        return {entry["path"] for entry in self._index.values()}

    def _apply_entries(self, notes: list[AssembledNote], entries: list[dict]) -> None:
        # Caller holds the lock
        previous = [self._index.get(note.id) for note in notes]
        for note, entry in zip(notes, entries):
            self._index[note.id] = entry
        # A moved note's old file goes only if no other note now lives there
        owned = self._owned_paths()
        for before in previous:
            if before and before["path"] not in owned:
                self._remove_file(before["path"])

    # -------------------------------------------------------------------------
    # Repository
    # -------------------------------------------------------------------------

    def upsert(self, note: AssembledNote) -> None:
        self.upsert_many([note])

    def upsert_many(self, notes: list[AssembledNote]) -> None:
        """
        Write notes to the vault and index them.

        Raises:
            InvalidNotePathError: a note's path escapes the vault; nothing is written
        """
        if not notes:
            return
        with self._lock:
            for note in notes:
                self._target(note)
            entries = self._run_parallel(self._write_file, notes)
            self._apply_entries(notes, entries)
            self._save_index()

    def delete(self, id: str) -> None:
        self.delete_many([id])

    def delete_many(self, ids: list[str]) -> None:
        with self._lock:
            doomed = {i for i in ids if i in self._index}
            if not doomed:
                return
            # Keep files another note has since been written to
            kept = {e["path"] for i, e in self._index.items() if i not in doomed}
            paths = sorted({self._index[i]["path"] for i in doomed} - kept)
            self._run_parallel(self._remove_file, paths)
            for i in doomed:
                del self._index[i]
            self._save_index()

    def _read_note(self, id: str, entry: dict) -> Optional[AssembledNote]:
        try:
            content = self._resolve(entry["path"]).read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Indexed note %s is missing from the vault: %s", id, entry["path"])
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read note {entry['path']}: {e}") from e
        now = datetime.now(timezone.utc)
        return AssembledNote(
            id=id,
            path=entry["path"],
            content=content,
            modified_at=parse_timestamp(entry.get("modified_at")) or now,
            created_at=parse_timestamp(entry.get("created_at")) or now,
            size=entry.get("size") or 0,
        )

    def get(self, id: str) -> Optional[AssembledNote]:
        with self._lock:
            entry = self._index.get(id)
            if entry is None:
                return None
            return self._read_note(id, entry)

    def list(self) -> list[AssembledNote]:
        with self._lock:
            notes = (self._read_note(id, entry) for id, entry in self._index.items())
            return [n for n in notes if n is not None]

    def search(self, query: str) -> list[AssembledNote]:
        if not query or not query.strip():
            return []
        return search_notes(self.list(), query)

    def count(self) -> int:
        with self._lock:
            return len(self._index)

    def close(self) -> None:
        pass
