"""Tests for bootstrap document assembly."""

import io
import json

import pytest

from tiddlykeep.bootstrap import install_index
from tiddlykeep.errors import AssemblyError, NotFound, UnsupportedRecipe
from tiddlykeep.index import BOOT_KERNEL_MARKER, IndexAssembler
from tiddlykeep.types import ATTR_CONTENT, ClaimOp, Tiddler


def _generate(keep) -> bytes:
    buf = io.BytesIO()
    keep.generate_index(buf)
    return buf.getvalue()


def _preloaded(doc: bytes) -> list[dict]:
    start = doc.index(b"$tw.preloadTiddlerArray(\n") + len(b"$tw.preloadTiddlerArray(\n")
    end = doc.index(b"\n);\n</script>", start)
    return json.loads(doc[start:end])


class TestIndexFileNode:

    def test_missing_index(self, keep):
        with pytest.raises(NotFound):
            keep.index_file_node()

    def test_locates_and_caches(self, installed_keep, empty_wiki):
        content = installed_keep.index_file_node()
        assert installed_keep.store.fetch_content(content) == empty_wiki
        node = installed_keep.index.index_ref
        assert node is not None
        assert installed_keep.index_file_node() == content
        assert installed_keep.index.index_ref == node

    def test_known_index_ref(self, keep, empty_wiki):
        node = install_index(keep.store, empty_wiki, "test")
        assembler = IndexAssembler(keep.store, keep.list_recipe, index_ref=node)
        assert keep.store.fetch_content(assembler.index_file_node()) == empty_wiki

    def test_index_without_content(self, keep, empty_wiki):
        node = install_index(keep.store, empty_wiki, "test")
        keep.store.append_claim(node, ATTR_CONTENT, ClaimOp.DELETE)
        assembler = IndexAssembler(keep.store, keep.list_recipe, index_ref=node)
        with pytest.raises(NotFound):
            assembler.index_file_node()


class TestGenerateIndex:

    def test_embed_none_is_verbatim(self, installed_keep, empty_wiki):
        installed_keep.index.embed = "none"
        installed_keep.put(Tiddler(title="$:/S", text="s"))
        assert _generate(installed_keep) == empty_wiki

    def test_preload_inserted_before_boot_kernel(self, installed_keep, empty_wiki):
        installed_keep.put(Tiddler(title="$:/S", text="system text"))
        installed_keep.put(Tiddler(title="Plain", text="plain text"))

        doc = _generate(installed_keep)

        prefix, suffix = empty_wiki.split(BOOT_KERNEL_MARKER)
        assert doc.startswith(prefix + b"\n<!--~~ Preloaded Tiddlers ~~-->\n")
        assert doc.endswith(BOOT_KERNEL_MARKER + suffix)
        preloaded = _preloaded(doc)
        assert [t["title"] for t in preloaded] == ["$:/S"]
        assert preloaded[0]["text"] == "system text"

    def test_embed_all(self, installed_keep):
        installed_keep.index.embed = "all"
        installed_keep.put(Tiddler(title="$:/S", text="s"))
        installed_keep.put(Tiddler(title="Plain", text="p"))
        titles = {t["title"] for t in _preloaded(_generate(installed_keep))}
        assert titles == {"$:/S", "Plain"}

    def test_markup_in_text_stays_inside_script(self, installed_keep, empty_wiki):
        text = "<script>x()</script><b>hi</b> & \u2028 done"
        installed_keep.put(Tiddler(title="$:/S", text=text))

        doc = _generate(installed_keep)

        assert doc.count(b"</script>") == empty_wiki.count(b"</script>") + 1
        assert b"<b>" not in doc
        assert "\u2028".encode("utf-8") not in doc
        assert _preloaded(doc)[0]["text"] == text

    def test_empty_preload(self, installed_keep):
        assert _preloaded(_generate(installed_keep)) == []

    def test_missing_boot_kernel(self, keep):
        install_index(keep.store, b"<html>no kernel</html>", "test")
        with pytest.raises(AssemblyError):
            _generate(keep)

    def test_listing_failure_writes_nothing(self, installed_keep):
        def failing_lister(recipe, text_filter):
            raise UnsupportedRecipe(recipe)

        assembler = IndexAssembler(installed_keep.store, failing_lister)
        buf = io.BytesIO()
        with pytest.raises(UnsupportedRecipe):
            assembler.generate_index(buf)
        assert buf.getvalue() == b""
