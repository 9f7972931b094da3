"""Tests for the SQLite content store."""

import json
import threading

import pytest

from tiddlykeep.blob_store import SqliteContentStore, blob_ref, sign_schema, verify_schema
from tiddlykeep.errors import NotFound, StoreError
from tiddlykeep.query import AttrCount, AttrEquals
from tiddlykeep.types import ClaimOp, is_valid_blob_ref


class TestContent:

    def test_upload_is_content_addressed(self, content_store):
        ref = content_store.upload_content(b"hello")
        assert ref == blob_ref(b"hello")
        assert ref.startswith("sha224-")
        assert is_valid_blob_ref(ref)

    def test_upload_idempotent(self, content_store):
        assert content_store.upload_content(b"x") == content_store.upload_content(b"x")

    def test_fetch_round_trip(self, content_store):
        ref = content_store.upload_content(b"\x00\x01binary")
        assert content_store.fetch_content(ref) == b"\x00\x01binary"

    def test_fetch_missing(self, content_store):
        with pytest.raises(NotFound):
            content_store.fetch_content(blob_ref(b"never stored"))


class TestClaims:

    def test_new_node_has_no_attributes(self, content_store):
        node = content_store.allocate_node()
        desc = content_store.describe(node)
        assert desc.attrs == {}
        assert desc.mod_time is None

    def test_nodes_are_distinct(self, content_store):
        assert content_store.allocate_node() != content_store.allocate_node()

    def test_set_replaces(self, content_store):
        node = content_store.allocate_node()
        content_store.append_claim(node, "title", ClaimOp.SET, "a")
        content_store.append_claim(node, "title", ClaimOp.SET, "b")
        assert content_store.describe(node).attrs["title"] == ["b"]

    def test_add_appends_once(self, content_store):
        node = content_store.allocate_node()
        for value in ("x", "y", "x"):
            content_store.append_claim(node, "tag", ClaimOp.ADD, value)
        assert content_store.describe(node).attrs["tag"] == ["x", "y"]

    def test_delete_value(self, content_store):
        node = content_store.allocate_node()
        content_store.append_claim(node, "tag", ClaimOp.ADD, "x")
        content_store.append_claim(node, "tag", ClaimOp.ADD, "y")
        content_store.append_claim(node, "tag", ClaimOp.DELETE, "x")
        assert content_store.describe(node).attrs["tag"] == ["y"]

    def test_delete_whole_attribute(self, content_store):
        node = content_store.allocate_node()
        content_store.append_claim(node, "tag", ClaimOp.ADD, "x")
        content_store.append_claim(node, "tag", ClaimOp.DELETE)
        assert "tag" not in content_store.describe(node).attrs

    def test_set_requires_value(self, content_store):
        node = content_store.allocate_node()
        with pytest.raises(ValueError):
            content_store.append_claim(node, "title", ClaimOp.SET)

    def test_claim_on_unknown_node(self, content_store):
        with pytest.raises(StoreError):
            content_store.append_claim(blob_ref(b"nope"), "title", ClaimOp.SET, "x")

    def test_mod_time_never_goes_backwards(self, content_store):
        node = content_store.allocate_node()
        times = []
        for i in range(5):
            content_store.append_claim(node, "n", ClaimOp.SET, str(i))
            times.append(content_store.describe(node).mod_time)
        assert times == sorted(times)

    def test_describe_selects_attrs(self, content_store):
        node = content_store.allocate_node()
        content_store.append_claim(node, "title", ClaimOp.SET, "t")
        content_store.append_claim(node, "other", ClaimOp.SET, "o")
        assert content_store.describe(node, ["title", "absent"]).attrs == {"title": ["t"]}

    def test_claims_are_signed_blobs(self, content_store):
        node = content_store.allocate_node()
        claim = content_store.append_claim(node, "title", ClaimOp.SET, "t")
        schema = json.loads(content_store.fetch_content(claim))
        assert schema["camliType"] == "claim"
        assert schema["camliSigner"] == "tester"
        assert schema["permaNode"] == node
        assert schema["claimType"] == "set-attribute"
        assert content_store.verify(claim)
        assert content_store.verify(node)


class TestTombstone:

    def test_tombstone_hides_node(self, content_store):
        node = content_store.allocate_node()
        content_store.append_claim(node, "title", ClaimOp.SET, "t")
        content_store.append_tombstone(node)
        assert content_store.describe(node) is None
        assert content_store.query(AttrEquals("title", "t")).blobs == []

    def test_tombstone_keeps_blobs(self, content_store):
        ref = content_store.upload_content(b"body")
        node = content_store.allocate_node()
        content_store.append_claim(node, "camliContent", ClaimOp.SET, ref)
        content_store.append_tombstone(node)
        assert content_store.fetch_content(ref) == b"body"


class TestQuery:

    def test_matches_and_describes(self, content_store):
        a = content_store.allocate_node()
        content_store.append_claim(a, "title", ClaimOp.SET, "a")
        b = content_store.allocate_node()
        content_store.append_claim(b, "other", ClaimOp.SET, "b")

        res = content_store.query(AttrCount("title"), describe=["title"])
        assert res.blobs == [a]
        assert res.describe[a].attrs == {"title": ["a"]}

    def test_no_describe_requested(self, content_store):
        node = content_store.allocate_node()
        content_store.append_claim(node, "title", ClaimOp.SET, "a")
        assert content_store.query(AttrCount("title")).describe == {}

    def test_most_recent_first(self, content_store):
        first = content_store.allocate_node()
        content_store.append_claim(first, "title", ClaimOp.SET, "x")
        second = content_store.allocate_node()
        content_store.append_claim(second, "title", ClaimOp.SET, "x")
        # Touch the first again so it becomes the most recent
        content_store.append_claim(first, "tag", ClaimOp.ADD, "t")
        content_store.append_claim(first, "tag", ClaimOp.ADD, "u")

        blobs = content_store.query(AttrEquals("title", "x")).blobs
        assert set(blobs) == {first, second}
        assert blobs[0] == first or (
            content_store.describe(first).mod_time == content_store.describe(second).mod_time
        )


class TestPersistence:

    def test_reopen_sees_data(self, tmp_path):
        path = tmp_path / "blobs.db"
        with SqliteContentStore(path, signing_key="11" * 32) as store:
            node = store.allocate_node()
            store.append_claim(node, "title", ClaimOp.SET, "kept")
        with SqliteContentStore(path, signing_key="11" * 32) as store:
            assert store.describe(node).attrs["title"] == ["kept"]
            assert store.verify(node)

    def test_closed_store_raises(self, tmp_path):
        store = SqliteContentStore(tmp_path / "blobs.db")
        store.close()
        with pytest.raises(StoreError):
            store.upload_content(b"x")

    def test_concurrent_uploads(self, content_store):
        errors = []

        def worker(i):
            try:
                for j in range(20):
                    content_store.upload_content(f"{i}-{j}".encode())
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
        assert content_store.fetch_content(blob_ref(b"3-19")) == b"3-19"


class TestSigning:

    def test_wrong_key_fails_verification(self):
        data = sign_schema({"camliType": "claim", "x": 1}, b"k1")
        assert verify_schema(data, b"k1")
        assert not verify_schema(data, b"k2")

    def test_tampered_blob_fails(self):
        data = sign_schema({"camliType": "claim", "x": 1}, b"k1")
        assert not verify_schema(data.replace(b'"x":1', b'"x":2'), b"k1")

    def test_unsigned_blob_fails(self):
        assert not verify_schema(b"plain bytes", b"k1")
