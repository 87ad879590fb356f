"""
Protocol definitions for the collaborators of the sync engine.

Defines interface contracts for:
- DocumentStoreProtocol: the remote LiveSync database (read-only)
- StateStoreProtocol: durable storage for the sync cursor
- NoteRepositoryProtocol: local storage for reconstructed notes
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from .types import AssembledNote, ChangesPage, MetadataRecord, SyncCursor


@runtime_checkable
class DocumentStoreProtocol(Protocol):
    """
    Read access to a LiveSync document database.

    Implemented by:
    - CouchDBClient (CouchDB HTTP API)
    - In-memory fakes in tests
    """

    def get_by_id(self, id: str) -> Optional[MetadataRecord]: ...

    def get_raw(self, id: str) -> Optional[dict[str, Any]]: ...

    def get_by_ids(self, ids: list[str]) -> dict[str, MetadataRecord]: ...

    def get_all(self) -> list[MetadataRecord]: ...

    def get_changes_since(self, since: str) -> ChangesPage: ...

    def get_current_sequence(self) -> str: ...


@runtime_checkable
class StateStoreProtocol(Protocol):
    """
    Durable key/value storage for the sync cursor.

    Implemented by:
    - JsonStateStore (JSON file)
    """

    def load(self) -> Optional[SyncCursor]: ...

    def save(self, cursor: SyncCursor) -> None: ...

    def merge(self, **fields: Any) -> None: ...

    def clear(self) -> None: ...


@runtime_checkable
class NoteRepositoryProtocol(Protocol):
    """
    Storage for assembled notes.

    Implemented by:
    - MemoryNoteRepository (in-process dict)
    - DiskNoteRepository (plaintext files in a vault directory)
    - SqliteNoteRepository (local SQLite)
    - External backends registered under ``livepull.repositories``
    """

    # -- Write --

    def upsert(self, note: AssembledNote) -> None: ...

    def upsert_many(self, notes: list[AssembledNote]) -> None: ...

    def delete(self, id: str) -> None: ...

    def delete_many(self, ids: list[str]) -> None: ...

    # -- Read --

    def get(self, id: str) -> Optional[AssembledNote]: ...

    def list(self) -> list[AssembledNote]: ...

    def search(self, query: str) -> list[AssembledNote]: ...

    def count(self) -> int: ...

    def close(self) -> None: ...
