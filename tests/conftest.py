"""
Shared pytest fixtures for livepull tests.

Provides an in-memory document store so sync and assembly can be tested
without a CouchDB server.
"""

import base64
import threading
from typing import Any, Optional

import pytest

from livepull.types import ChangeEntry, ChangesPage, MetadataRecord


def b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def note_doc(id: str, path: Optional[str] = None, **fields) -> dict[str, Any]:
    """A LiveSync note metadata document."""
    doc = {
        "_id": id,
        "_rev": "1-abc",
        "type": "plain",
        "path": path if path is not None else f"{id}.md",
        "mtime": 1_700_000_000_000,
        "ctime": 1_690_000_000_000,
        "size": 0,
    }
    doc.update(fields)
    return doc


def chunk_doc(id: str, data: str) -> dict[str, Any]:
    return {"_id": id, "_rev": "1-def", "type": "leaf", "data": data}


class FakeDocumentStore:
    """
    Dict-backed DocumentStoreProtocol.

    Changes are appended to a feed by ``put``/``remove``; sequences are the
    feed position as a string. Set ``block`` to hold get_all/get_changes_since
    until the event is released.
    """

    def __init__(self):
        self.docs: dict[str, dict[str, Any]] = {}
        self.feed: list[tuple[str, bool]] = []
        self.calls: dict[str, int] = {}
        self.block: Optional[threading.Event] = None
        self.entered = threading.Event()
        self.fail_with: Optional[Exception] = None

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def _maybe_block(self) -> None:
        self.entered.set()
        if self.block is not None:
            self.block.wait(5)
        if self.fail_with is not None:
            raise self.fail_with

    # Test setup

    def put(self, doc: dict[str, Any]) -> None:
        self.docs[doc["_id"]] = doc
        self.feed.append((doc["_id"], False))

    def remove(self, id: str) -> None:
        self.docs.pop(id, None)
        self.feed.append((id, True))

    # DocumentStoreProtocol

    def get_raw(self, id: str) -> Optional[dict[str, Any]]:
        self._count("get_raw")
        return self.docs.get(id)

    def get_by_id(self, id: str) -> Optional[MetadataRecord]:
        doc = self.docs.get(id)
        return MetadataRecord.from_doc(doc) if doc else None

    def get_by_ids(self, ids: list[str]) -> dict[str, MetadataRecord]:
        self._count("get_by_ids")
        return {i: MetadataRecord.from_doc(self.docs[i]) for i in ids if i in self.docs}

    def get_all(self) -> list[MetadataRecord]:
        self._count("get_all")
        self._maybe_block()
        return [
            MetadataRecord.from_doc(doc)
            for id, doc in self.docs.items()
            if not id.startswith("_")
        ]

    def get_changes_since(self, since: str) -> ChangesPage:
        self._count("get_changes_since")
        self._maybe_block()
        start = int(since)
        latest: dict[str, bool] = {}
        for id, deleted in self.feed[start:]:
            latest.pop(id, None)
            latest[id] = deleted
        changes = []
        for id, deleted in latest.items():
            doc = self.docs.get(id)
            record = MetadataRecord.from_doc(doc) if doc and not deleted else None
            changes.append(ChangeEntry(id=id, is_deleted=deleted, record=record))
        return ChangesPage(changes=changes, end_sequence=str(len(self.feed)))

    def get_current_sequence(self) -> str:
        self._count("get_current_sequence")
        return str(len(self.feed))

    def close(self) -> None:
        self._count("close")


class MemoryStateStore:
    """StateStoreProtocol held in memory."""

    def __init__(self, cursor=None):
        self.cursor = cursor
        self.saves = 0

    def load(self):
        return self.cursor

    def save(self, cursor):
        self.saves += 1
        self.cursor = cursor

    def merge(self, **fields):
        raise NotImplementedError

    def clear(self):
        self.cursor = None


@pytest.fixture
def store():
    return FakeDocumentStore()


@pytest.fixture
def state():
    return MemoryStateStore()


@pytest.fixture
def livepull_home(tmp_path, monkeypatch):
    """Isolated LIVEPULL_HOME with no CouchDB env leaking in."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("LIVEPULL_HOME", str(home))
    for var in (
        "COUCHDB_URL", "COUCHDB_DATABASE", "COUCHDB_USERNAME", "COUCHDB_PASSWORD",
        "COUCHDB_PASSPHRASE", "SYNC_INTERVAL", "AUTO_SYNC_ENABLED",
        "LIVEPULL_BACKEND", "VAULT_PATH",
    ):
        monkeypatch.delenv(var, raising=False)
    return home
