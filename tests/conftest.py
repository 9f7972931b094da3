"""
Shared pytest fixtures for tiddlykeep tests.

Every store lives in tmp_path; nothing touches ~/.tiddlykeep or the network.
"""

import pytest

from tiddlykeep.api import TiddlyKeep
from tiddlykeep.blob_store import SqliteContentStore


EMPTY_WIKI = (
    b"<!doctype html>\n<html><head><title>wiki</title></head><body>\n"
    b"<div id='store'></div>\n"
    b"<!--~~ Boot kernel ~~-->\n<script>boot()</script>\n</body></html>\n"
)

SIGNING_KEY = "00" * 32


class RecordingStore:
    """Content store wrapper counting the writes the core issues."""

    def __init__(self, real_store):
        self._real = real_store
        self.claims: list[tuple] = []
        self.tombstones: list[str] = []
        self.allocations = 0

    def __getattr__(self, name):
        return getattr(self._real, name)

    def allocate_node(self):
        self.allocations += 1
        return self._real.allocate_node()

    def append_claim(self, node, attr, op, value=None):
        self.claims.append((node, attr, op, value))
        return self._real.append_claim(node, attr, op, value)

    def append_tombstone(self, node):
        self.tombstones.append(node)
        return self._real.append_tombstone(node)

    def reset(self):
        self.claims.clear()
        self.tombstones.clear()
        self.allocations = 0


@pytest.fixture
def content_store(tmp_path):
    """Fresh SQLite content store."""
    store = SqliteContentStore(tmp_path / "blobs.db", signer="tester", signing_key=SIGNING_KEY)
    yield store
    store.close()


@pytest.fixture
def recording_store(content_store):
    return RecordingStore(content_store)


@pytest.fixture
def keep(recording_store):
    """TiddlyKeep over a recording store, system nodes hidden."""
    return TiddlyKeep(recording_store, hide_nodes="system", embed="system")


@pytest.fixture
def installed_keep(keep):
    """TiddlyKeep with the bootstrap document installed."""
    from tiddlykeep.bootstrap import install_index
    install_index(keep.store, EMPTY_WIKI, "https://example.invalid/empty.html")
    keep.store.reset()
    return keep


@pytest.fixture
def empty_wiki():
    return EMPTY_WIKI


@pytest.fixture
def client(installed_keep):
    """Flask test client for the TiddlyWeb server."""
    from tiddlykeep.web import create_app
    app = create_app(installed_keep, username="alice", recipe="all")
    app.testing = True
    return app.test_client()


@pytest.fixture
def store_dir(tmp_path, monkeypatch):
    """Empty store directory, also exported as TIDDLYKEEP_STORE_PATH."""
    path = tmp_path / "store"
    monkeypatch.setenv("TIDDLYKEEP_STORE_PATH", str(path))
    return path


@pytest.fixture
def cli_runner():
    from typer.testing import CliRunner
    return CliRunner()
