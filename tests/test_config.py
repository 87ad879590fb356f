"""Tests for livepull.config and livepull.backend."""

from pathlib import Path

import pytest

from livepull.backend import create_note_repository
from livepull.config import (
    CONFIG_FILENAME,
    AppConfig,
    apply_env_overrides,
    get_home,
    load_config,
    load_or_default_config,
    save_config,
)
from livepull.note_store import SqliteNoteRepository
from livepull.repositories import DiskNoteRepository, MemoryNoteRepository


class TestHome:
    def test_env(self, livepull_home):
        assert get_home() == livepull_home

    def test_default(self, monkeypatch):
        monkeypatch.delenv("LIVEPULL_HOME", raising=False)
        assert get_home() == Path.home() / ".livepull"


class TestLoadConfig:
    def test_defaults_without_file(self, livepull_home):
        config = load_or_default_config()
        assert config.home == livepull_home
        assert config.couchdb.url == "http://localhost:5984"
        assert config.couchdb.database == "obsidian-livesync"
        assert config.sync.interval_ms == 60_000
        assert config.sync.auto_sync is False
        assert config.storage.backend == "disk"
        assert config.vault_path == livepull_home / "vault"
        assert config.state_path == livepull_home / "sync-state.json"

    def test_reads_toml(self, livepull_home):
        (livepull_home / CONFIG_FILENAME).write_text(
            '[couchdb]\n'
            'url = "https://couch.example.com"\n'
            'database = "vault-db"\n'
            'username = "admin"\n'
            '[sync]\n'
            'interval_ms = 5000\n'
            'auto_sync = true\n'
            '[storage]\n'
            'backend = "sqlite"\n'
            'db_path = "/tmp/n.db"\n'
        )
        config = load_config(livepull_home)
        assert config.couchdb.url == "https://couch.example.com"
        assert config.couchdb.database == "vault-db"
        assert config.couchdb.username == "admin"
        assert config.sync.interval_ms == 5000
        assert config.sync.auto_sync is True
        assert config.storage.backend == "sqlite"
        assert config.storage.params == {"db_path": "/tmp/n.db"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_invalid_toml(self, livepull_home):
        (livepull_home / CONFIG_FILENAME).write_text("[couchdb\n")
        with pytest.raises(ValueError, match="Invalid config"):
            load_config(livepull_home)

    def test_newer_version_rejected(self, livepull_home):
        (livepull_home / CONFIG_FILENAME).write_text("[livepull]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(livepull_home)


class TestEnvOverrides:
    def test_overrides_file_values(self, tmp_path):
        config = AppConfig(home=tmp_path)
        apply_env_overrides(config, {
            "COUCHDB_URL": "https://env.example.com",
            "COUCHDB_DATABASE": "envdb",
            "COUCHDB_USERNAME": "u",
            "COUCHDB_PASSWORD": "p",
            "COUCHDB_PASSPHRASE": "pp",
            "SYNC_INTERVAL": "1500",
            "AUTO_SYNC_ENABLED": "true",
            "LIVEPULL_BACKEND": "memory",
            "VAULT_PATH": str(tmp_path / "v"),
        })
        assert config.couchdb.url == "https://env.example.com"
        assert config.couchdb.database == "envdb"
        assert config.couchdb.username == "u"
        assert config.couchdb.password == "p"
        assert config.couchdb.passphrase == "pp"
        assert config.sync.interval_ms == 1500
        assert config.sync.auto_sync is True
        assert config.storage.backend == "memory"
        assert config.vault_path == tmp_path / "v"

    def test_empty_environment_changes_nothing(self, tmp_path):
        config = AppConfig(home=tmp_path)
        apply_env_overrides(config, {})
        assert config == AppConfig(home=tmp_path)

    def test_auto_sync_false(self, tmp_path):
        config = AppConfig(home=tmp_path)
        config.sync.auto_sync = True
        apply_env_overrides(config, {"AUTO_SYNC_ENABLED": "false"})
        assert config.sync.auto_sync is False

    def test_bad_interval(self, tmp_path):
        with pytest.raises(ValueError, match="SYNC_INTERVAL"):
            apply_env_overrides(AppConfig(home=tmp_path), {"SYNC_INTERVAL": "soon"})


class TestSaveConfig:
    def test_roundtrip_and_permissions(self, livepull_home):
        config = AppConfig(home=livepull_home)
        config.couchdb.username = "admin"
        config.couchdb.passphrase = "secret"
        config.storage.vault_path = livepull_home / "notes"
        save_config(config)

        path = livepull_home / CONFIG_FILENAME
        assert path.stat().st_mode & 0o777 == 0o600
        loaded = load_config(livepull_home)
        assert loaded.couchdb.username == "admin"
        assert loaded.couchdb.passphrase == "secret"
        assert loaded.couchdb.password is None
        assert loaded.vault_path == livepull_home / "notes"


class TestDisplay:
    def test_secrets_masked(self, tmp_path):
        config = AppConfig(home=tmp_path)
        config.couchdb.password = "pw-secret-1"
        config.couchdb.passphrase = "pp-secret-2"
        shown = config.to_display_dict()
        assert shown["couchdb"]["password"] == "********"
        assert shown["couchdb"]["passphrase"] == "********"
        assert "pw-secret-1" not in repr(config)
        assert "pp-secret-2" not in repr(config.couchdb)

    def test_unset_secrets_shown_as_none(self, tmp_path):
        shown = AppConfig(home=tmp_path).to_display_dict()
        assert shown["couchdb"]["password"] is None


class TestBackend:
    def test_disk(self, tmp_path):
        repo = create_note_repository(AppConfig(home=tmp_path))
        assert isinstance(repo, DiskNoteRepository)
        assert repo.root == (tmp_path / "vault").resolve()

    def test_sqlite_default_path(self, tmp_path):
        config = AppConfig(home=tmp_path)
        config.storage.backend = "sqlite"
        repo = create_note_repository(config)
        assert isinstance(repo, SqliteNoteRepository)
        repo.close()
        assert (tmp_path / "notes.db").exists()

    def test_sqlite_param_path(self, tmp_path):
        config = AppConfig(home=tmp_path)
        config.storage.backend = "sqlite"
        config.storage.params["db_path"] = str(tmp_path / "other.db")
        create_note_repository(config).close()
        assert (tmp_path / "other.db").exists()

    def test_memory(self, tmp_path):
        config = AppConfig(home=tmp_path)
        config.storage.backend = "memory"
        assert isinstance(create_note_repository(config), MemoryNoteRepository)

    def test_unknown(self, tmp_path):
        config = AppConfig(home=tmp_path)
        config.storage.backend = "nosuch"
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_note_repository(config)
