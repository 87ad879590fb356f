"""
Synchronization of a LiveSync database into a local note repository.

The first run (or any run without a cursor) lists every document; later runs
read the changes feed from the persisted sequence. Per-note failures are
logged and counted without stopping the pass. Anything structural (store
unreachable, local storage failing, no encryption salt) aborts the pass,
is recorded in the status, and propagates.

The cursor is written only after the note writes for the pass have
completed, so a crash in between replays changes rather than losing them.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Iterator, Optional

from .assembler import ChunkAssembler
from .crypto import LiveSyncCrypto
from .errors import AssemblyError, InvalidNotePathError
from .protocol import DocumentStoreProtocol, NoteRepositoryProtocol, StateStoreProtocol
from .repositories import sanitize_relative_path
from .types import (
    AssembledNote,
    MetadataRecord,
    SyncCursor,
    SyncReport,
    SyncStatus,
    is_internal_id,
    skip_reason,
    utc_now,
)

logger = logging.getLogger(__name__)

# Records assembled in parallel within one pass
DEFAULT_MAX_WORKERS = 4


class SyncCoordinator:
    """
    Runs full and incremental passes, one at a time.

    Args:
        store: Remote LiveSync document store
        state_store: Where the cursor is persisted
        notes: Where assembled notes are written
        passphrase: LiveSync end-to-end encryption passphrase, if enabled
        assembler: Override the default ChunkAssembler
        max_workers: Bound on concurrent record assembly
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        state_store: StateStoreProtocol,
        notes: NoteRepositoryProtocol,
        *,
        passphrase: Optional[str] = None,
        assembler: Optional[ChunkAssembler] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self._store = store
        self._state_store = state_store
        self._notes = notes
        if assembler is None:
            crypto = LiveSyncCrypto(store, passphrase) if passphrase else None
            assembler = ChunkAssembler(store, crypto)
        self._assembler = assembler
        self._max_workers = max(1, max_workers)

        self._status = SyncStatus()
        self._cursor: Optional[SyncCursor] = None

        # Held for the whole of a pass; never waited on
        self._run_lock = threading.Lock()

        self._auto_lock = threading.Lock()
        self._auto_thread: Optional[threading.Thread] = None
        self._auto_stop: Optional[threading.Event] = None

    @property
    def cursor(self) -> Optional[SyncCursor]:
        return self._cursor

    def get_status(self) -> SyncStatus:
        """Snapshot of the current status (a copy)."""
        return self._status.copy()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """Load the persisted cursor and check it against local state."""
        cursor = self._state_store.load()
        if cursor is not None and self._notes.count() == 0:
            logger.warning(
                "Sync cursor %s found but no notes are stored locally; "
                "discarding it and running a full sync",
                cursor.last_sequence,
            )
            cursor = None
        elif cursor is None:
            logger.info("No persisted sync state found, will perform full sync")
        else:
            logger.info("Loaded persisted sync state: last_seq=%s", cursor.last_sequence)

        self._cursor = cursor
        self._status.last_sequence = cursor.last_sequence if cursor else None

    @contextmanager
    def _exclusive(self) -> Iterator[bool]:
        """Try to take the run guard; yields whether it was taken."""
        if not self._run_lock.acquire(blocking=False):
            yield False
            return
        self._status.is_running = True
        try:
            yield True
        finally:
            self._status.is_running = False
            self._run_lock.release()

    def reset(self) -> None:
        """Forget the cursor so the next pass is a full sync."""
        with self._exclusive() as acquired:
            if not acquired:
                raise RuntimeError("Cannot reset while a sync is running")
            self._state_store.clear()
            self._cursor = None
            self._status.last_sequence = None
            logger.info("Sync state reset; next sync will be a full sync")

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    def sync(self) -> Optional[SyncReport]:
        """
        Run one pass: full without a cursor, incremental with one.

        Returns None without doing anything if a pass is already running.

        Raises:
            TransportError, PersistenceError, SaltUnavailableError: the pass
                was aborted; the message is also in ``get_status().last_error``
        """
        with self._exclusive() as acquired:
            if not acquired:
                logger.info("Sync already in progress, skipping")
                return None

            mode = "full" if self._cursor is None else "incremental"
            try:
                if self._cursor is None:
                    report = self._full_sync()
                else:
                    report = self._incremental_sync(self._cursor)
            except Exception as e:
                self._status.last_sync_success = False
                self._status.last_error = str(e)
                logger.error("%s sync failed: %s", mode.capitalize(), e)
                raise
            return report

    def _full_sync(self) -> SyncReport:
        logger.info("Starting full sync")

        # Read the sequence before listing: writes landing during the listing
        # are replayed by the next incremental pass instead of being skipped
        sequence = self._store.get_current_sequence()
        records = self._store.get_all()

        notes, skipped, failed = self._assemble_records(records)
        self._notes.upsert_many(notes)

        self._commit(sequence, processed=len(notes))
        logger.info(
            "Full sync completed: %d documents, %d notes written, %d skipped, %d failed, last_seq=%s",
            len(records), len(notes), skipped, failed, sequence,
        )
        return SyncReport(
            mode="full",
            processed=len(notes),
            skipped=skipped,
            failed=failed,
            end_sequence=sequence,
        )

    def _incremental_sync(self, cursor: SyncCursor) -> SyncReport:
        logger.info("Starting incremental sync from %s", cursor.last_sequence)

        page = self._store.get_changes_since(cursor.last_sequence)
        end_sequence = page.end_sequence or cursor.last_sequence

        if not page.changes:
            logger.info("No changes detected")
            self._commit(end_sequence, processed=0)
            return SyncReport(mode="incremental", end_sequence=end_sequence)

        logger.info("Processing %d changes", len(page.changes))
        changed: list[MetadataRecord] = []
        deleted_ids: list[str] = []
        skipped = 0
        missing = 0

        for change in page.changes:
            if is_internal_id(change.id):
                skipped += 1
                continue
            if change.is_deleted or (change.record is not None and change.record.tombstoned):
                deleted_ids.append(change.id)
                logger.debug("Document marked for deletion: %s", change.id)
                continue
            if change.record is None:
                logger.warning("Change for %s carries no document, skipping", change.id)
                missing += 1
                continue
            changed.append(change.record)

        notes, not_notes, failed = self._assemble_records(changed)
        if notes:
            self._notes.upsert_many(notes)
            logger.info("Processed %d changed documents", len(notes))
        if deleted_ids:
            self._notes.delete_many(deleted_ids)
            logger.info("Removed %d deleted documents", len(deleted_ids))

        self._commit(end_sequence, processed=len(notes))
        logger.info(
            "Incremental sync completed: %d changed, %d deleted, %d failed, last_seq=%s",
            len(notes), len(deleted_ids), failed + missing, end_sequence,
        )
        return SyncReport(
            mode="incremental",
            processed=len(notes),
            skipped=skipped + not_notes,
            failed=failed + missing,
            deleted=len(deleted_ids),
            end_sequence=end_sequence,
        )

    def _commit(self, sequence: str, processed: int) -> None:
        """Persist the cursor, then publish success."""
        now = utc_now()
        cursor = SyncCursor(last_sequence=sequence, last_sync_timestamp=now)
        self._state_store.save(cursor)
        self._cursor = cursor

        self._status.last_sync_time = now
        self._status.last_sync_success = True
        self._status.documents_processed = processed
        self._status.last_sequence = sequence
        self._status.last_error = None

    # -------------------------------------------------------------------------
    # Assembly
    # -------------------------------------------------------------------------

    def _assemble_records(
        self, records: list[MetadataRecord]
    ) -> tuple[list[AssembledNote], int, int]:
        """Assemble the note records; returns (notes, skipped, failed)."""
        candidates = []
        skipped = 0
        for record in records:
            reason = skip_reason(record)
            if reason is not None:
                logger.debug("Skipping %s: %s", record.id, reason)
                skipped += 1
                continue
            candidates.append(record)

        if not candidates:
            return [], skipped, 0

        workers = min(self._max_workers, len(candidates))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="livepull-assemble") as pool:
            futures = [pool.submit(self._assemble_one, r) for r in candidates]
            try:
                results = [f.result() for f in futures]
            except BaseException:
                for f in futures:
                    f.cancel()
                raise

        notes = [n for n in results if n is not None]
        failed = len(results) - len(notes)
        logger.info(
            "Document processing summary: total=%d processed=%d skipped=%d errors=%d",
            len(records), len(notes), skipped, failed,
        )
        return notes, skipped, failed

    def _assemble_one(self, record: MetadataRecord) -> Optional[AssembledNote]:
        try:
            sanitize_relative_path(record.path)
        except InvalidNotePathError as e:
            logger.error("Failed to process %s: %s", record.id, e)
            return None
        try:
            content = self._assembler.assemble(record)
        except AssemblyError as e:
            logger.error("Failed to process %s (%s): %s", record.id, record.path, e)
            return None
        if content is None:
            logger.warning("No content source for %s (%s)", record.id, record.path)
            return None
        logger.debug("Note processed: %s (%d chars)", record.path, len(content))
        return AssembledNote.from_record(record, content)

    # -------------------------------------------------------------------------
    # Auto-sync
    # -------------------------------------------------------------------------

    def start_auto_sync(self, interval_ms: int) -> None:
        """Sync now, then every ``interval_ms`` on a background thread."""
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        with self._auto_lock:
            if self._auto_thread is not None and self._auto_thread.is_alive():
                logger.warning("Auto-sync already running")
                return
            stop = threading.Event()
            thread = threading.Thread(
                target=self._auto_sync_loop,
                args=(interval_ms / 1000.0, stop),
                name="livepull-auto-sync",
                daemon=True,
            )
            self._auto_stop = stop
            self._auto_thread = thread
        logger.info("Starting auto-sync every %d ms", interval_ms)
        thread.start()

    def stop_auto_sync(self, wait: bool = False) -> None:
        """
        Stop scheduling passes. A pass already running is not interrupted.

        Args:
            wait: Block until the background thread (and any running pass) ends
        """
        with self._auto_lock:
            thread, stop = self._auto_thread, self._auto_stop
            self._auto_thread = None
            self._auto_stop = None
        if stop is None:
            return
        stop.set()
        logger.info("Auto-sync stopped")
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join()

    @property
    def auto_sync_running(self) -> bool:
        thread = self._auto_thread
        return thread is not None and thread.is_alive()

    def _auto_sync_loop(self, interval: float, stop: threading.Event) -> None:
        next_run = time.monotonic()
        while not stop.is_set():
            self._sync_logged()
            next_run += interval
            now = time.monotonic()
            # A pass that overran its slot skips the missed ticks
            while next_run <= now:
                next_run += interval
            if stop.wait(next_run - now):
                break

    def _sync_logged(self) -> None:
        """Scheduled passes log failures rather than killing the scheduler."""
        try:
            self.sync()
        except Exception as e:
            logger.error("Auto-sync failed: %s", e)
