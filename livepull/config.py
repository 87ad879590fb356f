"""
Configuration management for livepull.

The configuration is stored as a TOML file in the livepull home directory
(``$LIVEPULL_HOME``, default ``~/.livepull``). Environment variables override
the file, so containers can run without one.
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "livepull.toml"
CONFIG_VERSION = 1

DEFAULT_COUCHDB_URL = "http://localhost:5984"
DEFAULT_DATABASE = "obsidian-livesync"
DEFAULT_INTERVAL_MS = 60_000
DEFAULT_BACKEND = "disk"


def get_home() -> Path:
    """Resolve the livepull home directory."""
    home = os.environ.get("LIVEPULL_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".livepull"


@dataclass
class CouchDBConfig:
    """Connection settings for the remote LiveSync database."""
    url: str = DEFAULT_COUCHDB_URL
    database: str = DEFAULT_DATABASE
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    passphrase: Optional[str] = field(default=None, repr=False)


@dataclass
class SyncSettings:
    """Auto-sync schedule. With ``auto_sync`` on, ``livepull sync`` keeps running."""
    interval_ms: int = DEFAULT_INTERVAL_MS
    auto_sync: bool = False


@dataclass
class StorageConfig:
    """Where reconstructed notes go."""
    backend: str = DEFAULT_BACKEND
    vault_path: Optional[Path] = None
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class AppConfig:
    """Complete livepull configuration."""
    home: Path
    version: int = CONFIG_VERSION
    couchdb: CouchDBConfig = field(default_factory=CouchDBConfig)
    sync: SyncSettings = field(default_factory=SyncSettings)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.home / CONFIG_FILENAME

    @property
    def state_path(self) -> Path:
        """Path to the sync cursor file."""
        return self.home / "sync-state.json"

    @property
    def vault_path(self) -> Path:
        return self.storage.vault_path or (self.home / "vault")

    def to_display_dict(self) -> dict:
        """Effective configuration with secrets masked."""
        def mask(value: Optional[str]) -> Optional[str]:
            return "********" if value else None

        return {
            "home": str(self.home),
            "couchdb": {
                "url": self.couchdb.url,
                "database": self.couchdb.database,
                "username": self.couchdb.username,
                "password": mask(self.couchdb.password),
                "passphrase": mask(self.couchdb.passphrase),
            },
            "sync": {
                "interval_ms": self.sync.interval_ms,
                "auto_sync": self.sync.auto_sync,
            },
            "storage": {
                "backend": self.storage.backend,
                "vault_path": str(self.vault_path),
            },
        }


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def apply_env_overrides(config: AppConfig, environ: Optional[dict[str, str]] = None) -> AppConfig:
    """
    Overlay environment variables on a config (in place).

    COUCHDB_URL, COUCHDB_DATABASE, COUCHDB_USERNAME, COUCHDB_PASSWORD,
    COUCHDB_PASSPHRASE, SYNC_INTERVAL, AUTO_SYNC_ENABLED, LIVEPULL_BACKEND,
    VAULT_PATH.
    """
    env = os.environ if environ is None else environ
    couch = config.couchdb
    couch.url = env.get("COUCHDB_URL") or couch.url
    couch.database = env.get("COUCHDB_DATABASE") or couch.database
    couch.username = env.get("COUCHDB_USERNAME") or couch.username
    couch.password = env.get("COUCHDB_PASSWORD") or couch.password
    couch.passphrase = env.get("COUCHDB_PASSPHRASE") or couch.passphrase

    interval = env.get("SYNC_INTERVAL")
    if interval:
        try:
            config.sync.interval_ms = int(interval)
        except ValueError:
            raise ValueError(f"SYNC_INTERVAL must be an integer (milliseconds), got {interval!r}")
    if env.get("AUTO_SYNC_ENABLED"):
        config.sync.auto_sync = _parse_bool(env["AUTO_SYNC_ENABLED"])

    config.storage.backend = env.get("LIVEPULL_BACKEND") or config.storage.backend
    if env.get("VAULT_PATH"):
        config.storage.vault_path = Path(env["VAULT_PATH"]).expanduser()
    return config


def load_config(home: Path) -> AppConfig:
    """
    Load configuration from a home directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = home / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    # Validate version
    version = data.get("livepull", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    couch = data.get("couchdb", {})
    sync = data.get("sync", {})
    storage = dict(data.get("storage", {}))
    vault = storage.pop("vault_path", None)
    backend = storage.pop("backend", DEFAULT_BACKEND)

    return AppConfig(
        home=home,
        version=version,
        couchdb=CouchDBConfig(
            url=couch.get("url", DEFAULT_COUCHDB_URL),
            database=couch.get("database", DEFAULT_DATABASE),
            username=couch.get("username"),
            password=couch.get("password"),
            passphrase=couch.get("passphrase"),
        ),
        sync=SyncSettings(
            interval_ms=int(sync.get("interval_ms", DEFAULT_INTERVAL_MS)),
            auto_sync=bool(sync.get("auto_sync", False)),
        ),
        storage=StorageConfig(
            backend=backend,
            vault_path=Path(vault).expanduser() if vault else None,
            params=storage,
        ),
    )


def save_config(config: AppConfig) -> None:
    """
    Save configuration to the home directory.

    Creates the directory if it doesn't exist. The file may hold
    credentials, so it is created owner-readable only.
    """
    config.home.mkdir(parents=True, exist_ok=True)

    # TOML has no null; leave unset values out
    couch = {
        k: v for k, v in {
            "url": config.couchdb.url,
            "database": config.couchdb.database,
            "username": config.couchdb.username,
            "password": config.couchdb.password,
            "passphrase": config.couchdb.passphrase,
        }.items() if v is not None
    }
    storage: dict[str, Any] = {"backend": config.storage.backend}
    if config.storage.vault_path is not None:
        storage["vault_path"] = str(config.storage.vault_path)
    storage.update(config.storage.params)

    data = {
        "livepull": {"version": config.version},
        "couchdb": couch,
        "sync": {
            "interval_ms": config.sync.interval_ms,
            "auto_sync": config.sync.auto_sync,
        },
        "storage": storage,
    }

    fd = os.open(config.config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        tomli_w.dump(data, f)


def load_or_default_config(home: Optional[Path] = None) -> AppConfig:
    """
    Load the config file if present, otherwise defaults; then apply env overrides.

    This is the main entry point for config management.
    """
    home = home or get_home()
    if (home / CONFIG_FILENAME).exists():
        config = load_config(home)
    else:
        config = AppConfig(home=home)
    return apply_env_overrides(config)
