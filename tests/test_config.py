"""Tests for store configuration."""

import os
import stat
import tomllib
from pathlib import Path

import pytest

from tiddlykeep.config import (
    CONFIG_FILENAME,
    StoreConfig,
    get_store_path,
    load_config,
    load_or_create_config,
    save_config,
)


class TestStorePath:

    def test_explicit_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TIDDLYKEEP_STORE_PATH", str(tmp_path / "env"))
        assert get_store_path(tmp_path / "explicit") == tmp_path / "explicit"

    def test_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TIDDLYKEEP_STORE_PATH", str(tmp_path / "env"))
        assert get_store_path() == tmp_path / "env"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("TIDDLYKEEP_STORE_PATH", raising=False)
        assert get_store_path() == Path.home() / ".tiddlykeep"


class TestStoreConfig:

    def test_defaults(self, tmp_path):
        config = StoreConfig(path=tmp_path)
        assert config.backend == "local"
        assert config.default_bag == "default"
        assert config.hide_nodes == "system"
        assert config.embed == "system"
        assert config.listen == "localhost:8080"
        assert config.recipe == "all"
        assert config.username
        assert len(bytes.fromhex(config.signing_key)) == 32
        assert config.blob_db_path == tmp_path / "blobs.db"

    def test_invalid_visibility(self, tmp_path):
        with pytest.raises(ValueError, match="hide_nodes"):
            StoreConfig(path=tmp_path, hide_nodes="some")
        with pytest.raises(ValueError, match="embed"):
            StoreConfig(path=tmp_path, embed="everything")


class TestPersistence:

    def test_save_and_load(self, tmp_path):
        config = StoreConfig(
            path=tmp_path, default_bag="notes", hide_nodes="all", embed="none",
            listen="0.0.0.0:9000", username="bob", index_ref="sha224-abc",
        )
        save_config(config)
        loaded = load_config(tmp_path)
        assert loaded == config

    def test_sections(self, tmp_path):
        save_config(StoreConfig(path=tmp_path))
        with open(tmp_path / CONFIG_FILENAME, "rb") as f:
            data = tomllib.load(f)
        assert set(data) == {"store", "tiddlers", "server", "signing"}
        assert data["signing"]["key"]

    @pytest.mark.skipif(os.name != "posix", reason="file modes are POSIX only")
    def test_owner_only(self, tmp_path):
        save_config(StoreConfig(path=tmp_path))
        mode = stat.S_IMODE((tmp_path / CONFIG_FILENAME).stat().st_mode)
        assert mode == 0o600

    def test_load_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[store]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_invalid_value_in_file(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[tiddlers]\nembed = "lots"\n')
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_load_or_create(self, tmp_path):
        store = tmp_path / "new"
        created = load_or_create_config(store)
        assert (store / CONFIG_FILENAME).exists()
        again = load_or_create_config(store)
        assert again.signing_key == created.signing_key
        assert again.created == created.created
