"""
Sync cursor persistence in a JSON file.

Writes go to a temporary file that is then renamed over the target, so a
crash mid-write leaves the previous cursor intact.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from .errors import PersistenceError
from .types import SyncCursor, isoformat, parse_timestamp

logger = logging.getLogger(__name__)

STATE_FILENAME = "sync-state.json"


class JsonStateStore:
    """JSON file holding the last processed sequence and sync time."""

    def __init__(self, path: Path):
        """
        Args:
            path: State file, or a directory to hold ``sync-state.json``
        """
        path = Path(path)
        self._path = path / STATE_FILENAME if path.is_dir() else path

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.debug("State file not found: %s", self._path)
            return {}
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to load sync state from {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"Sync state in {self._path} is not an object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".sync-state-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self._path)
            except BaseException:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to save sync state to {self._path}: {e}") from e

    def load(self) -> Optional[SyncCursor]:
        """Return the stored cursor, or None if there is none."""
        data = self._read()
        last_sequence = data.get("last_sequence")
        if not last_sequence:
            return None
        try:
            timestamp = parse_timestamp(data.get("last_sync_timestamp"))
        except ValueError:
            timestamp = None
        return SyncCursor(last_sequence=str(last_sequence), last_sync_timestamp=timestamp)

    def save(self, cursor: SyncCursor) -> None:
        self._write({
            "last_sequence": cursor.last_sequence,
            "last_sync_timestamp": isoformat(cursor.last_sync_timestamp),
        })
        logger.debug("Sync state saved: %s", cursor.last_sequence)

    def merge(self, **fields: Any) -> None:
        """Update some fields, keeping the rest."""
        data = self._read()
        for key, value in fields.items():
            data[key] = isoformat(value) if hasattr(value, "isoformat") else value
        self._write(data)

    def clear(self) -> None:
        try:
            self._path.unlink()
            logger.debug("Sync state reset: %s", self._path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Failed to reset sync state at {self._path}: {e}") from e
