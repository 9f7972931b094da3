"""Tests for query constraints."""

from tiddlykeep.query import And, AttrCount, AttrEquals, AttrHasPrefix


ATTRS = {"title": ["$:/config/x"], "tiddlerBag": ["default"], "tag": ["a", "b"]}


def test_attr_equals():
    assert AttrEquals("tag", "b").matches(ATTRS)
    assert not AttrEquals("tag", "c").matches(ATTRS)
    assert not AttrEquals("missing", "x").matches(ATTRS)


def test_attr_count():
    assert AttrCount("tag", 2).matches(ATTRS)
    assert not AttrCount("tag", 3).matches(ATTRS)
    assert not AttrCount("tiddlerMeta").matches(ATTRS)


def test_attr_has_prefix():
    assert AttrHasPrefix("title", "$:/").matches(ATTRS)
    assert not AttrHasPrefix("tiddlerBag", "$:/").matches(ATTRS)


def test_and():
    both = And(AttrCount("tiddlerBag"), AttrHasPrefix("title", "$:/"))
    assert both.matches(ATTRS)
    assert not And(both, AttrEquals("tag", "z")).matches(ATTRS)


def test_to_dict_shape():
    c = And(AttrEquals("title", "x"), AttrCount("tiddlerBag", 1))
    assert c.to_dict() == {
        "logical": {
            "op": "and",
            "a": {"permanode": {"attr": "title", "value": "x"}},
            "b": {"permanode": {"attr": "tiddlerBag", "numValue": {"min": 1}}},
        }
    }
    assert AttrHasPrefix("title", "$:/").to_dict() == {
        "permanode": {"attr": "title", "valueMatches": {"hasPrefix": "$:/"}}
    }


def test_constraints_are_hashable():
    assert AttrEquals("a", "b") == AttrEquals("a", "b")
    assert len({AttrEquals("a", "b"), AttrEquals("a", "b")}) == 1
