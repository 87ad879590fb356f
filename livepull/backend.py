"""
Pluggable note repository factory.

Creates the note repository named by ``[storage] backend``. Built-in
backends are ``disk`` (vault directory), ``sqlite`` and ``memory``. External
backends register via the ``livepull.repositories`` entry point group.

External backend packages provide a factory function::

    def create_repository(config: AppConfig) -> NoteRepositoryProtocol:
        ...

and register it in their pyproject.toml::

    [project.entry-points."livepull.repositories"]
    my-backend = "my_package.backend:create_repository"
"""

import logging

from .config import AppConfig
from .protocol import NoteRepositoryProtocol

logger = logging.getLogger(__name__)

BUILTIN_BACKENDS = ("disk", "sqlite", "memory")


def create_note_repository(config: AppConfig) -> NoteRepositoryProtocol:
    """Create the configured note repository."""
    backend = config.storage.backend
    if backend == "disk":
        from .repositories import DiskNoteRepository
        return DiskNoteRepository(config.vault_path)
    if backend == "sqlite":
        from .note_store import SqliteNoteRepository
        db_path = config.storage.params.get("db_path") or (config.home / "notes.db")
        return SqliteNoteRepository(db_path)
    if backend == "memory":
        from .repositories import MemoryNoteRepository
        logger.warning("Using in-memory note repository; notes are lost on exit")
        return MemoryNoteRepository()
    return _load_backend(backend, config)


def _load_backend(name: str, config: AppConfig) -> NoteRepositoryProtocol:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="livepull.repositories")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = list(BUILTIN_BACKENDS) + [ep.name for ep in eps]
    raise ValueError(
        f"Unknown storage backend: {name!r}. Available: {available}"
    )
