"""
LivePull

Pulls notes from an Obsidian LiveSync CouchDB database into plaintext,
keeping a cursor so repeated runs only process what changed.

Quick Start:
    from pathlib import Path
    from livepull import CouchDBClient, JsonStateStore, DiskNoteRepository, SyncCoordinator

    store = CouchDBClient("https://couch.example.com", "obsidian-livesync",
                          username="admin", password="...")
    coordinator = SyncCoordinator(
        store,
        JsonStateStore(Path("~/.livepull/sync-state.json").expanduser()),
        DiskNoteRepository(Path("~/vault")),
        passphrase="...",  # only if end-to-end encryption is enabled
    )
    coordinator.initialize()
    coordinator.sync()

CLI Usage:
    livepull sync
    livepull watch --interval 60000
    livepull search "meeting notes"

Environment Variables:
    LIVEPULL_HOME        - Config, cursor and logs (default ~/.livepull)
    COUCHDB_URL, COUCHDB_DATABASE, COUCHDB_USERNAME, COUCHDB_PASSWORD
    COUCHDB_PASSPHRASE   - LiveSync end-to-end encryption passphrase
    VAULT_PATH           - Where notes are written (disk backend)
"""

from .assembler import ChunkAssembler
from .couchdb import CouchDBClient
from .crypto import LiveSyncCrypto
from .errors import (
    AssemblyError,
    ChunkDataMissingError,
    ChunkNotFoundError,
    DecryptionError,
    InvalidNotePathError,
    LivePullError,
    PersistenceError,
    SaltUnavailableError,
    TransportError,
)
from .note_store import SqliteNoteRepository
from .repositories import DiskNoteRepository, MemoryNoteRepository
from .state_store import JsonStateStore
from .sync import SyncCoordinator
from .types import AssembledNote, MetadataRecord, SyncCursor, SyncReport, SyncStatus

__version__ = "0.1.0"
__all__ = [
    "ChunkAssembler",
    "CouchDBClient",
    "LiveSyncCrypto",
    "SyncCoordinator",
    "JsonStateStore",
    "DiskNoteRepository",
    "MemoryNoteRepository",
    "SqliteNoteRepository",
    "AssembledNote",
    "MetadataRecord",
    "SyncCursor",
    "SyncReport",
    "SyncStatus",
    "LivePullError",
    "TransportError",
    "PersistenceError",
    "AssemblyError",
    "ChunkNotFoundError",
    "ChunkDataMissingError",
    "InvalidNotePathError",
    "DecryptionError",
    "SaltUnavailableError",
]
