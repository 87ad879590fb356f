"""
HTTP client for a CouchDB database holding an Obsidian LiveSync vault.

Read-only: fetches metadata and chunk documents, the changes feed, and the
database update sequence. Implements DocumentStoreProtocol.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional
from urllib.parse import quote, urlparse

import httpx

from .errors import TransportError
from .types import ChangeEntry, ChangesPage, MetadataRecord

logger = logging.getLogger(__name__)

# Retry config for reads
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 1.0  # seconds
MAX_RETRY_AFTER = 60.0

DEFAULT_TIMEOUT = 30.0

_LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")


def _quote_id(doc_id: str) -> str:
    # _local/ and _design/ ids keep their slash
    for prefix in ("_local/", "_design/"):
        if doc_id.startswith(prefix):
            return prefix + quote(doc_id[len(prefix):], safe="")
    return quote(doc_id, safe="")


def _retry_after(value: Optional[str], default: float) -> float:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            logger.debug("Unparseable Retry-After header: %r", value)
            return default
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
    return min(max(seconds, 0.0), MAX_RETRY_AFTER)


class CouchDBClient:
    """Read-only client for one CouchDB database."""

    def __init__(
        self,
        url: str,
        database: str,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._url = url.rstrip("/")
        self._database = database

        # Basic auth over plain HTTP leaks credentials; allow it for LAN setups but say so
        if not self._url.startswith("https://"):
            host = urlparse(self._url).hostname or ""
            if host not in _LOOPBACK_HOSTS:
                logger.warning(
                    "CouchDB URL %s is not HTTPS; credentials are sent in cleartext",
                    self._url,
                )

        auth = (username, password or "") if username else None
        self._client = httpx.Client(
            base_url=self._url,
            auth=auth,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )

    def __repr__(self) -> str:
        return f"CouchDBClient({self._url!r}, {self._database!r})"

    @property
    def database(self) -> str:
        return self._database

    def _db_path(self, suffix: str = "") -> str:
        return f"/{quote(self._database, safe='')}{suffix}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
        allow_404: bool = False,
    ) -> Optional[Any]:
        """Issue a request, retrying transient failures; returns parsed JSON.

        Returns None for a 404 when ``allow_404`` is set.
        """
        last_error: Exception | None = None
        for attempt in range(MAX_RETRIES):
            try:
                resp = self._client.request(method, path, params=params, json=json)
                if resp.status_code == 429:
                    retry_after = _retry_after(
                        resp.headers.get("Retry-After"),
                        RETRY_BACKOFF_BASE * (2 ** attempt),
                    )
                    logger.info("Rate limited, retrying after %.1fs", retry_after)
                    last_error = TransportError(f"{method} {path}: 429 Too Many Requests")
                    time.sleep(retry_after)
                    continue
                if resp.status_code == 404 and allow_404:
                    return None
                resp.raise_for_status()
                return resp.json()
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    raise TransportError(
                        f"{method} {path} rejected: {e.response.status_code}"
                    ) from e
                last_error = e
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = e
            except ValueError as e:
                raise TransportError(f"{method} {path}: invalid JSON response") from e

            if attempt < MAX_RETRIES - 1:
                delay = RETRY_BACKOFF_BASE * (2 ** attempt)
                logger.info(
                    "%s %s attempt %d failed, retrying in %.1fs: %s",
                    method, path, attempt + 1, delay, last_error,
                )
                time.sleep(delay)

        raise TransportError(
            f"{method} {path} failed after {MAX_RETRIES} attempts: {last_error}"
        ) from last_error

    # -------------------------------------------------------------------------
    # Document Store
    # -------------------------------------------------------------------------

    def get_raw(self, id: str) -> Optional[dict[str, Any]]:
        """GET /{db}/{id} -> raw document, or None if missing."""
        return self._request("GET", self._db_path(f"/{_quote_id(id)}"), allow_404=True)

    def get_by_id(self, id: str) -> Optional[MetadataRecord]:
        doc = self.get_raw(id)
        return MetadataRecord.from_doc(doc) if doc is not None else None

    def get_by_ids(self, ids: list[str]) -> dict[str, MetadataRecord]:
        """POST /{db}/_all_docs with keys -> id -> record (missing ids omitted)."""
        if not ids:
            return {}
        data = self._request(
            "POST",
            self._db_path("/_all_docs"),
            params={"include_docs": "true"},
            json={"keys": list(ids)},
        )
        docs: dict[str, MetadataRecord] = {}
        for row in data.get("rows", []):
            doc = row.get("doc")
            if doc and "error" not in row:
                docs[row["id"]] = MetadataRecord.from_doc(doc)
            else:
                logger.debug("Document not found in bulk fetch: %s (%s)", row.get("key"), row.get("error"))
        logger.debug("Bulk fetch completed: requested %d, found %d", len(ids), len(docs))
        return docs

    def get_all(self) -> list[MetadataRecord]:
        """GET /{db}/_all_docs?include_docs=true, without design documents."""
        data = self._request("GET", self._db_path("/_all_docs"), params={"include_docs": "true"})
        return [
            MetadataRecord.from_doc(row["doc"])
            for row in data.get("rows", [])
            if row.get("doc") and not row["id"].startswith("_design")
        ]

    def get_changes_since(self, since: str) -> ChangesPage:
        """GET /{db}/_changes since a sequence, with documents."""
        data = self._request(
            "GET",
            self._db_path("/_changes"),
            params={"since": since, "include_docs": "true"},
        )
        changes = []
        for row in data.get("results", []):
            doc = row.get("doc")
            deleted = bool(
                row.get("deleted")
                or (doc and (doc.get("deleted") or doc.get("_deleted")))
            )
            record = None
            if doc and not deleted:
                record = MetadataRecord.from_doc(doc)
            changes.append(ChangeEntry(id=row["id"], is_deleted=deleted, record=record))
        return ChangesPage(changes=changes, end_sequence=str(data.get("last_seq", since)))

    def get_current_sequence(self) -> str:
        return str(self.info()["update_seq"])

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def info(self) -> dict[str, Any]:
        """GET /{db} -> db_name, doc_count, update_seq, ..."""
        return self._request("GET", self._db_path())

    def test_connection(self) -> bool:
        """True if the database answers."""
        try:
            self.info()
            logger.info("CouchDB connection successful")
            return True
        except TransportError as e:
            logger.error("Failed to connect to CouchDB: %s", e)
            return False

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
