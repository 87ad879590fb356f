"""
Errors for livepull, and error logging for the CLI.

Structural errors (TransportError, PersistenceError, SaltUnavailableError)
abort a sync pass. AssemblyError, its subclasses and InvalidNotePathError
are per-note: the pass records them and moves on.

Error messages never carry passphrases, credentials, or ciphertext.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path

from .config import get_home


class LivePullError(Exception):
    """Base class for livepull errors."""


class TransportError(LivePullError):
    """The remote document store could not be reached or answered with an error."""


class PersistenceError(LivePullError):
    """Local state or note storage failed."""


class CryptoError(LivePullError):
    """Base class for decryption errors."""


class DecryptionError(CryptoError):
    """A payload could not be decrypted (corrupt data or wrong passphrase)."""


class SaltUnavailableError(CryptoError):
    """The sync parameters record or its salt is missing. Fatal until restart."""


class AssemblyError(LivePullError):
    """A note's content could not be reconstructed."""


class ChunkNotFoundError(AssemblyError):
    def __init__(self, chunk_id: str):
        super().__init__(f"chunk not found: {chunk_id}")
        self.chunk_id = chunk_id


class ChunkDataMissingError(AssemblyError):
    def __init__(self, chunk_id: str):
        super().__init__(f"chunk has no data: {chunk_id}")
        self.chunk_id = chunk_id


class InvalidNotePathError(LivePullError):
    """A note's path is empty, absolute, or points outside the vault."""

    def __init__(self, path: str):
        super().__init__(f"invalid note path: {path!r}")
        self.path = path


ERROR_LOG_NAME = "livepull-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Append a timestamped traceback for ``exc`` to the error log.

    The log lives in the livepull home and is created owner-only. Failing
    to write it is ignored so the caller still sees the real error.

    Returns:
        Where the traceback was (or would have been) written
    """
    log_path = get_home() / ERROR_LOG_NAME
    header = datetime.now(timezone.utc).isoformat()
    if context:
        header = f"{header} {context}"
    entry = "\n".join([
        "",
        "=" * 60,
        f"[{header}]",
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    ])
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(entry)
    except OSError:
        pass
    return log_path
