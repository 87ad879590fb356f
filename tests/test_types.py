"""Tests for livepull.types: record parsing and note classification."""

from datetime import datetime, timezone

import pytest

from conftest import note_doc
from livepull.types import (
    AssembledNote,
    MetadataRecord,
    RecordKind,
    SyncReport,
    SyncStatus,
    from_epoch_millis,
    is_chunk_id,
    is_internal_id,
    is_surfaceable,
    parse_timestamp,
    skip_reason,
)


class TestIds:
    @pytest.mark.parametrize("doc_id,internal,chunk", [
        ("notes/a.md", False, False),
        ("h:abc", True, True),
        ("h:+abc", True, True),
        ("ps:notes/a.md", True, False),
        ("ix:1", True, False),
    ])
    def test_classification(self, doc_id, internal, chunk):
        assert is_internal_id(doc_id) is internal
        assert is_chunk_id(doc_id) is chunk


class TestRecordKind:
    def test_known(self):
        assert RecordKind.parse("newnote") is RecordKind.CONTENT_NOTE
        assert RecordKind.parse("plain") is RecordKind.PLAIN_NOTE
        assert RecordKind.parse("leaf") is RecordKind.CHUNK

    def test_unknown(self):
        assert RecordKind.parse("versioninfo") is None
        assert RecordKind.parse(None) is None


class TestFromDoc:
    def test_full_document(self):
        record = MetadataRecord.from_doc({
            "_id": "a.md",
            "_rev": "2-x",
            "type": "newnote",
            "path": "a.md",
            "children": ["h:1", "h:2"],
            "eden": {"h:3": {"data": "YQ==", "epoch": 7}},
            "mtime": 1_700_000_000_000,
            "ctime": 1_600_000_000_000,
            "size": 42,
        })
        assert record.revision == "2-x"
        assert record.kind is RecordKind.CONTENT_NOTE
        assert record.chunk_refs == ("h:1", "h:2")
        assert record.recent_cache["h:3"].data == "YQ=="
        assert record.recent_cache["h:3"].epoch == 7
        assert record.size == 42
        assert record.tombstoned is False

    def test_minimal_document(self):
        record = MetadataRecord.from_doc({"_id": "x"})
        assert record.kind is None
        assert record.path is None
        assert record.chunk_refs == ()
        assert record.recent_cache == {}

    @pytest.mark.parametrize("field", ["deleted", "_deleted"])
    def test_tombstone_flags(self, field):
        assert MetadataRecord.from_doc({"_id": "x", field: True}).tombstoned

    def test_malformed_eden_entries_ignored(self):
        record = MetadataRecord.from_doc({"_id": "x", "eden": {"h:1": "junk"}})
        assert record.recent_cache == {}

    def test_non_numeric_epoch_drops_only_that_entry(self):
        record = MetadataRecord.from_doc({"_id": "x", "eden": {
            "h:1": {"data": "YQ==", "epoch": "yesterday"},
            "h:2": {"data": "Yg==", "epoch": [1]},
            "h:3": {"data": "Yw==", "epoch": "4"},
        }})
        assert list(record.recent_cache) == ["h:3"]
        assert record.recent_cache["h:3"].epoch == 4


class TestSkipReason:
    def test_note(self):
        record = MetadataRecord.from_doc(note_doc("a"))
        assert skip_reason(record) is None
        assert is_surfaceable(record)

    def test_content_note(self):
        assert is_surfaceable(MetadataRecord.from_doc(note_doc("a", type="newnote")))

    @pytest.mark.parametrize("doc,reason", [
        (note_doc("h:abc", data="YQ=="), "chunk"),
        (note_doc("ps:a.md", data="YQ=="), "internal"),
        (note_doc("a", deleted=True), "deleted"),
        (note_doc("a", path=""), "no path"),
        (note_doc("a", type="leaf"), "not a note"),
        (note_doc("a", type="versioninfo"), "not a note"),
    ])
    def test_reasons(self, doc, reason):
        assert skip_reason(MetadataRecord.from_doc(doc)) == reason


class TestTimestamps:
    def test_epoch_millis(self):
        assert from_epoch_millis(1_700_000_000_000) == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
        assert from_epoch_millis(None) is None

    def test_parse_naive_as_utc(self):
        assert parse_timestamp("2024-01-02T03:04:05") == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert parse_timestamp("2024-01-02T03:04:05Z").tzinfo is not None
        assert parse_timestamp(None) is None


class TestAssembledNote:
    def test_from_record(self):
        record = MetadataRecord.from_doc(note_doc("a", "dir/a.md", size=3))
        note = AssembledNote.from_record(record, "abc")
        assert note.path == "dir/a.md"
        assert note.content == "abc"
        assert note.size == 3
        assert note.modified_at == from_epoch_millis(1_700_000_000_000)

    def test_missing_times_default_to_now(self):
        record = MetadataRecord.from_doc({"_id": "a", "type": "plain", "path": "a.md"})
        before = datetime.now(timezone.utc)
        note = AssembledNote.from_record(record, "")
        assert note.modified_at >= before
        assert note.size == 0

    def test_to_dict(self):
        record = MetadataRecord.from_doc(note_doc("a"))
        data = AssembledNote.from_record(record, "x").to_dict()
        assert data["id"] == "a"
        assert data["modified_at"].startswith("2023-11-14")


class TestStatus:
    def test_defaults(self):
        status = SyncStatus()
        assert status.is_running is False
        assert status.last_sync_success is False
        assert status.documents_processed == 0
        assert status.to_dict()["last_sync_time"] is None

    def test_report_dict(self):
        report = SyncReport(mode="full", processed=2, end_sequence="9")
        assert report.to_dict() == {
            "mode": "full", "processed": 2, "skipped": 0,
            "failed": 0, "deleted": 0, "end_sequence": "9",
        }
