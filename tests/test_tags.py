"""Tests for tag set reconciliation."""

from tiddlykeep.tags import TagMutation, apply_tag_mutations, reconcile
from tiddlykeep.types import ATTR_TAG, ClaimOp


def add(tag):
    return TagMutation(ClaimOp.ADD, tag)


def delete(tag):
    return TagMutation(ClaimOp.DELETE, tag)


def set_(tag):
    return TagMutation(ClaimOp.SET, tag)


class TestReconcile:

    def test_equal_sets_need_nothing(self):
        assert reconcile(["a", "b"], ["b", "a"]) == []

    def test_both_empty(self):
        assert reconcile([], []) == []

    def test_adds_before_deletes(self):
        assert reconcile(["a", "b"], ["b", "c"]) == [add("c"), delete("a")]

    def test_single_wanted_tag_is_one_set(self):
        assert reconcile(["a", "b"], ["c"]) == [set_("c")]

    def test_single_tag_from_empty(self):
        assert reconcile([], ["x"]) == [set_("x")]

    def test_clear_all_tags(self):
        assert reconcile(["a", "b"], []) == [delete("a"), delete("b")]

    def test_adds_follow_wanted_order(self):
        assert reconcile([], ["z", "a", "m"]) == [add("z"), add("a"), add("m")]

    def test_duplicates_ignored(self):
        assert reconcile(["a", "a"], ["a", "b", "b"]) == [add("b")]

    def test_shared_tags_untouched(self):
        mutations = reconcile(["keep", "old"], ["keep", "new", "other"])
        assert all(m.value != "keep" for m in mutations)


class TestApplyTagMutations:

    def test_applies_in_order(self, recording_store):
        node = recording_store.allocate_node()
        for tag in ("a", "b"):
            recording_store.append_claim(node, ATTR_TAG, ClaimOp.ADD, tag)
        recording_store.reset()

        apply_tag_mutations(recording_store, node, reconcile(["a", "b"], ["b", "c"]))

        assert recording_store.claims == [
            (node, ATTR_TAG, ClaimOp.ADD, "c"),
            (node, ATTR_TAG, ClaimOp.DELETE, "a"),
        ]
        assert recording_store.describe(node).attrs[ATTR_TAG] == ["b", "c"]

    def test_set_overwrites(self, recording_store):
        node = recording_store.allocate_node()
        for tag in ("a", "b"):
            recording_store.append_claim(node, ATTR_TAG, ClaimOp.ADD, tag)

        apply_tag_mutations(recording_store, node, reconcile(["a", "b"], ["c"]))

        assert recording_store.describe(node).attrs[ATTR_TAG] == ["c"]
