"""
Decryption of LiveSync's HKDF-encrypted payloads.

Encrypted payloads are ``"%=" + base64(iv || hkdf_salt || ciphertext)``.
The per-payload AES-256-GCM key is derived with HKDF-SHA256 from a master key,
which is PBKDF2-HMAC-SHA256 of the passphrase and a database-wide salt. That
salt lives in the ``_local/obsidian_livesync_sync_parameters`` record and is
fetched once per process.

Payloads without the marker are plaintext and pass through untouched.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionError, SaltUnavailableError

logger = logging.getLogger(__name__)

SYNC_PARAMS_DOC_ID = "_local/obsidian_livesync_sync_parameters"
SALT_FIELD = "pbkdf2salt"
ENCRYPTED_MARKER = "%="

IV_LENGTH = 12
HKDF_SALT_LENGTH = 32
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 310_000

# Fan-out for decrypt_batch
MAX_DECRYPT_WORKERS = 8


class _RawDocumentSource(Protocol):
    def get_raw(self, id: str) -> Optional[dict[str, Any]]: ...


def is_encrypted(payload: str) -> bool:
    """True if payload carries the HKDF encryption marker."""
    return payload.startswith(ENCRYPTED_MARKER)


def derive_master_key(passphrase: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def _derive_chunk_key(master_key: bytes, hkdf_salt: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=hkdf_salt,
        info=b"",
    )
    return hkdf.derive(master_key)


def encrypt(
    plaintext: str,
    passphrase: str,
    salt: bytes,
    *,
    iterations: int = PBKDF2_ITERATIONS,
    master_key: Optional[bytes] = None,
) -> str:
    """Encrypt text into the marked payload format read by LiveSyncCrypto."""
    if master_key is None:
        master_key = derive_master_key(passphrase, salt, iterations)
    iv = os.urandom(IV_LENGTH)
    hkdf_salt = os.urandom(HKDF_SALT_LENGTH)
    key = _derive_chunk_key(master_key, hkdf_salt)
    ciphertext = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    return ENCRYPTED_MARKER + base64.b64encode(iv + hkdf_salt + ciphertext).decode("ascii")


class LiveSyncCrypto:
    """
    Decrypts chunk payloads for one LiveSync database.

    One instance per process: it owns the cached salt and master key.
    Concurrent first fetches of the salt are coalesced behind a lock.
    A missing salt is remembered, so every later decrypt fails fast
    without another round trip.
    """

    def __init__(
        self,
        store: _RawDocumentSource,
        passphrase: str,
        *,
        iterations: int = PBKDF2_ITERATIONS,
        max_workers: int = MAX_DECRYPT_WORKERS,
    ):
        self._store = store
        self._passphrase = passphrase
        self._iterations = iterations
        self._max_workers = max_workers
        self._salt: Optional[bytes] = None
        self._master_key: Optional[bytes] = None
        self._salt_error: Optional[SaltUnavailableError] = None
        self._salt_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"LiveSyncCrypto(salt_loaded={self._salt is not None})"

    def is_encrypted(self, payload: str) -> bool:
        return is_encrypted(payload)

    def get_salt(self) -> bytes:
        """
        PBKDF2 salt from the sync parameters record, cached after first fetch.

        Raises:
            SaltUnavailableError: record or field missing (cached, not retried)
            TransportError: the store could not be reached (not cached)
        """
        self._load_keys()
        return self._salt

    def _load_keys(self) -> bytes:
        if self._master_key is not None:
            return self._master_key
        if self._salt_error is not None:
            raise self._salt_error
        with self._salt_lock:
            if self._master_key is not None:
                return self._master_key
            if self._salt_error is not None:
                raise self._salt_error

            doc = self._store.get_raw(SYNC_PARAMS_DOC_ID)
            if doc is None:
                self._salt_error = SaltUnavailableError(
                    "Sync parameters document not found. Make sure the database "
                    "is a LiveSync database with encryption enabled."
                )
            elif not doc.get(SALT_FIELD):
                self._salt_error = SaltUnavailableError(
                    f"{SALT_FIELD} not found in sync parameters document"
                )
            if self._salt_error is not None:
                logger.error("Failed to load encryption salt: %s", self._salt_error)
                raise self._salt_error

            try:
                salt = base64.b64decode(doc[SALT_FIELD], validate=True)
            except (binascii.Error, ValueError, TypeError):
                self._salt_error = SaltUnavailableError(
                    f"{SALT_FIELD} in sync parameters document is not valid base64"
                )
                raise self._salt_error

            master_key = derive_master_key(self._passphrase, salt, self._iterations)
            self._salt = salt
            self._master_key = master_key
            logger.info("PBKDF2 salt loaded from sync parameters (%d bytes)", len(salt))
            return master_key

    def decrypt(self, payload: str) -> str:
        """
        Decrypt a marked payload; return unmarked payloads unchanged.

        Raises:
            DecryptionError: corrupt payload or wrong passphrase
            SaltUnavailableError: no salt for this database
        """
        if not is_encrypted(payload):
            return payload

        master_key = self._load_keys()
        try:
            raw = base64.b64decode(payload[len(ENCRYPTED_MARKER):], validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Decryption failed: payload is not valid base64") from e

        header = IV_LENGTH + HKDF_SALT_LENGTH
        if len(raw) <= header:
            raise DecryptionError("Decryption failed: payload too short")

        iv = raw[:IV_LENGTH]
        hkdf_salt = raw[IV_LENGTH:header]
        key = _derive_chunk_key(master_key, hkdf_salt)
        try:
            plaintext = AESGCM(key).decrypt(iv, raw[header:], None)
        except InvalidTag as e:
            logger.debug("Chunk failed authentication (%d bytes)", len(raw))
            raise DecryptionError(
                "Decryption failed: wrong passphrase or corrupt data"
            ) from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decryption failed: content is not UTF-8") from e

    def decrypt_batch(self, payloads: list[str]) -> list[str]:
        """
        Decrypt payloads concurrently, preserving order.

        The first failure propagates and no partial result is returned.
        """
        if not payloads:
            return []
        if len(payloads) == 1:
            return [self.decrypt(payloads[0])]
        workers = min(self._max_workers, len(payloads))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="livepull-decrypt") as pool:
            return list(pool.map(self.decrypt, payloads))
