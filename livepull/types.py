"""
Data types for LiveSync note synchronization.

LiveSync stores each note as a metadata document in CouchDB. The note body
lives in one of three places:

1. Direct data: small notes keep their (base64, possibly encrypted) body in ``data``
2. Chunks: large notes reference content-addressed chunk documents via ``children``
3. Eden: recently written chunks cached inside the metadata document itself

Internal documents (chunks ``h:...``, path indexes ``ps:...``, etc.) share the
database with note metadata and are told apart by the ``:`` namespace separator
in their ids.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# Ids containing this separator are internal LiveSync records (h:, ps:, ix:, leaf:)
NAMESPACE_SEPARATOR = ":"

# Content-addressed chunk ids; "h:+" marks chunks whose id was derived with encryption
CHUNK_ID_PREFIX = "h:"


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def from_epoch_millis(value: Optional[int]) -> Optional[datetime]:
    """Convert epoch milliseconds to an aware UTC datetime (None passes through)."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO timestamp; naive values are taken as UTC."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_internal_id(doc_id: str) -> bool:
    """True for ids in a LiveSync namespace (chunks, path indexes, ...)."""
    return NAMESPACE_SEPARATOR in doc_id


def is_chunk_id(doc_id: str) -> bool:
    return doc_id.startswith(CHUNK_ID_PREFIX)


class RecordKind(str, Enum):
    """LiveSync document ``type`` values."""
    CONTENT_NOTE = "newnote"
    PLAIN_NOTE = "plain"
    CHUNK = "leaf"
    CHUNK_PACK = "chunkpack"

    @classmethod
    def parse(cls, value: Any) -> Optional["RecordKind"]:
        try:
            return cls(value)
        except ValueError:
            return None


NOTE_KINDS = frozenset({RecordKind.CONTENT_NOTE, RecordKind.PLAIN_NOTE})


@dataclass(frozen=True)
class RecentCacheEntry:
    """One chunk held in a metadata record's eden cache."""
    data: str
    epoch: int


@dataclass(frozen=True)
class MetadataRecord:
    """
    A LiveSync document as stored in CouchDB.

    Used both for note metadata and for chunk documents; a chunk carries its
    payload in ``inline_data`` and has ``kind == RecordKind.CHUNK``.

    Attributes:
        id: Document id (``_id``)
        revision: CouchDB revision, advisory only
        kind: Parsed ``type``; None when absent or unrecognized
        path: Vault-relative path of the note
        inline_data: Base64 body, possibly encrypted ("direct" storage)
        chunk_refs: Ordered chunk ids ("children" storage)
        recent_cache: chunk id -> RecentCacheEntry ("eden" storage)
        modified_at / created_at: epoch milliseconds
        size: Size in bytes as reported by LiveSync
        tombstoned: Either ``deleted`` or ``_deleted`` was set
    """
    id: str
    revision: Optional[str] = None
    kind: Optional[RecordKind] = None
    path: Optional[str] = None
    inline_data: Optional[str] = None
    chunk_refs: tuple[str, ...] = ()
    recent_cache: dict[str, RecentCacheEntry] = field(default_factory=dict)
    modified_at: Optional[int] = None
    created_at: Optional[int] = None
    size: Optional[int] = None
    tombstoned: bool = False

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "MetadataRecord":
        """Build a record from a raw CouchDB JSON document."""
        eden = doc.get("eden") or {}
        recent_cache = {}
        if isinstance(eden, dict):
            for chunk_id, entry in eden.items():
                if not isinstance(entry, dict):
                    continue
                try:
                    epoch = int(entry.get("epoch") or 0)
                except (TypeError, ValueError):
                    # Dropping the entry falls back to the chunk document
                    continue
                recent_cache[chunk_id] = RecentCacheEntry(
                    data=entry.get("data") or "",
                    epoch=epoch,
                )
        children = doc.get("children") or ()
        return cls(
            id=doc["_id"],
            revision=doc.get("_rev"),
            kind=RecordKind.parse(doc.get("type")),
            path=doc.get("path"),
            inline_data=doc.get("data"),
            chunk_refs=tuple(children),
            recent_cache=recent_cache,
            modified_at=doc.get("mtime"),
            created_at=doc.get("ctime"),
            size=doc.get("size"),
            tombstoned=bool(doc.get("deleted") or doc.get("_deleted")),
        )


def skip_reason(record: MetadataRecord) -> Optional[str]:
    """
    Why a record must not be surfaced as a note, or None if it is a note.

    Payload fields are irrelevant here: an internal or tombstoned record is
    never a note even if it carries data.
    """
    if is_chunk_id(record.id):
        return "chunk"
    if is_internal_id(record.id):
        return "internal"
    if record.tombstoned:
        return "deleted"
    if not record.path:
        return "no path"
    if record.kind not in NOTE_KINDS:
        return "not a note"
    return None


def is_surfaceable(record: MetadataRecord) -> bool:
    return skip_reason(record) is None


@dataclass(frozen=True)
class ChangeEntry:
    """One row of the CouchDB changes feed."""
    id: str
    is_deleted: bool = False
    record: Optional[MetadataRecord] = None


@dataclass(frozen=True)
class ChangesPage:
    """Result of a changes-feed read: the rows plus the feed's own end sequence."""
    changes: list[ChangeEntry]
    end_sequence: str


@dataclass(frozen=True)
class AssembledNote:
    """A note reconstructed to plaintext, ready for a note repository."""
    id: str
    path: str
    content: str
    modified_at: datetime
    created_at: datetime
    size: int = 0

    @classmethod
    def from_record(cls, record: MetadataRecord, content: str) -> "AssembledNote":
        now = utc_now()
        return cls(
            id=record.id,
            path=record.path or record.id,
            content=content,
            modified_at=from_epoch_millis(record.modified_at) or now,
            created_at=from_epoch_millis(record.created_at) or now,
            size=record.size or 0,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "path": self.path,
            "content": self.content,
            "modified_at": isoformat(self.modified_at),
            "created_at": isoformat(self.created_at),
            "size": self.size,
        }


@dataclass(frozen=True)
class SyncCursor:
    """Position in the remote changes feed, persisted between runs."""
    last_sequence: str
    last_sync_timestamp: Optional[datetime] = None


@dataclass
class SyncStatus:
    """Process-local view of synchronization progress."""
    is_running: bool = False
    last_sync_time: Optional[datetime] = None
    last_sync_success: bool = False
    documents_processed: int = 0
    last_sequence: Optional[str] = None
    last_error: Optional[str] = None

    def copy(self) -> "SyncStatus":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "is_running": self.is_running,
            "last_sync_time": isoformat(self.last_sync_time),
            "last_sync_success": self.last_sync_success,
            "documents_processed": self.documents_processed,
            "last_sequence": self.last_sequence,
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class SyncReport:
    """Outcome of one completed pass."""
    mode: str  # "full" or "incremental"
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    deleted: int = 0
    end_sequence: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "deleted": self.deleted,
            "end_sequence": self.end_sequence,
        }
