"""
Reassembles note content from LiveSync metadata records.

Strategies are tried in fixed priority order and the first applicable one
wins; they are never combined:

1. direct   - ``data`` holds the whole body
2. eden     - recent chunks cached in the record, ordered by epoch
3. children - chunk ids, bulk-fetched and joined in list order

Each strategy is a plain function of (record, chunk fetcher, decoder).
"""

import base64
import binascii
import logging
from typing import Callable, Optional

from .crypto import LiveSyncCrypto
from .errors import (
    AssemblyError,
    ChunkDataMissingError,
    ChunkNotFoundError,
    DecryptionError,
)
from .types import MetadataRecord, RecordKind

logger = logging.getLogger(__name__)

# Decodes a list of payloads, order preserved, all-or-nothing
BatchDecoder = Callable[[list[str]], list[str]]
ChunkFetcher = Callable[[list[str]], dict[str, MetadataRecord]]


def decode_base64(payload: str) -> str:
    try:
        return base64.b64decode(payload).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Payload is not valid base64 text") from e


def _decode_all(payloads: list[str]) -> list[str]:
    return [decode_base64(p) for p in payloads]


def assemble_direct(
    record: MetadataRecord, fetch: ChunkFetcher, decode: BatchDecoder
) -> Optional[str]:
    # An empty string is no content source at all
    if not record.inline_data:
        return None
    logger.debug("Using direct data for %s", record.id)
    return decode([record.inline_data])[0]


def assemble_eden(
    record: MetadataRecord, fetch: ChunkFetcher, decode: BatchDecoder
) -> Optional[str]:
    if not record.recent_cache:
        return None
    entries = sorted(record.recent_cache.values(), key=lambda e: e.epoch)
    logger.debug("Using eden cache for %s (%d chunks)", record.id, len(entries))
    return "".join(decode([e.data for e in entries]))


def assemble_children(
    record: MetadataRecord, fetch: ChunkFetcher, decode: BatchDecoder
) -> Optional[str]:
    if not record.chunk_refs:
        return None
    chunk_ids = list(record.chunk_refs)
    logger.debug("Using children chunks for %s (%d chunks)", record.id, len(chunk_ids))

    chunks = fetch(chunk_ids)

    # Walk the declared order, not the fetch result order
    payloads = []
    for chunk_id in chunk_ids:
        chunk = chunks.get(chunk_id)
        if chunk is None:
            raise ChunkNotFoundError(chunk_id)
        if chunk.kind is not RecordKind.CHUNK:
            logger.warning("Unexpected chunk type %r for %s", chunk.kind, chunk_id)
        if not chunk.inline_data:
            raise ChunkDataMissingError(chunk_id)
        payloads.append(chunk.inline_data)

    return "".join(decode(payloads))


STRATEGIES: tuple[tuple[str, Callable[..., Optional[str]]], ...] = (
    ("direct", assemble_direct),
    ("eden", assemble_eden),
    ("children", assemble_children),
)


class ChunkAssembler:
    """
    Reconstructs plaintext for metadata records.

    Args:
        store: Document store used for bulk chunk fetches
        crypto: Decryptor when the database is encrypted; without one,
            payloads are plain base64
    """

    def __init__(self, store, crypto: Optional[LiveSyncCrypto] = None):
        self._store = store
        self._crypto = crypto

    @property
    def encrypted(self) -> bool:
        return self._crypto is not None

    def _decode(self, payloads: list[str]) -> list[str]:
        if self._crypto is not None:
            return self._crypto.decrypt_batch(payloads)
        return _decode_all(payloads)

    def assemble(self, record: MetadataRecord) -> Optional[str]:
        """
        Return the note's plaintext, or None if it has no content source.

        Raises:
            AssemblyError: a chunk is missing, empty, or fails to decrypt
            SaltUnavailableError, TransportError: structural, not per-note
        """
        for name, strategy in STRATEGIES:
            try:
                content = strategy(record, self._store.get_by_ids, self._decode)
            except AssemblyError as e:
                logger.warning("Failed to assemble %s via %s: %s", record.id, name, e)
                raise
            except DecryptionError as e:
                logger.warning("Failed to decrypt %s via %s: %s", record.id, name, e)
                raise AssemblyError(f"{record.id}: {e}") from e
            if content is not None:
                return content

        logger.warning("Document %s has no data, children, or eden", record.id)
        return None
