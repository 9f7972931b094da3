"""
Permanode query constraints.

Only the fixed shapes the core issues are supported: exact attribute
match, attribute value-count threshold, string prefix match, and AND.
Each constraint can evaluate itself against an attribute snapshot
(local backends) and render itself in Perkeep search JSON (remote
backends).
"""

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class AttrEquals:
    """Node has ``attr`` with exactly ``value`` among its values."""
    attr: str
    value: str

    def matches(self, attrs: dict[str, list[str]]) -> bool:
        return self.value in attrs.get(self.attr, ())

    def to_dict(self) -> dict:
        return {"permanode": {"attr": self.attr, "value": self.value}}


@dataclass(frozen=True)
class AttrCount:
    """Node has at least ``min`` values for ``attr``."""
    attr: str
    min: int = 1

    def matches(self, attrs: dict[str, list[str]]) -> bool:
        return len(attrs.get(self.attr, ())) >= self.min

    def to_dict(self) -> dict:
        return {"permanode": {"attr": self.attr, "numValue": {"min": self.min}}}


@dataclass(frozen=True)
class AttrHasPrefix:
    """Node has a value of ``attr`` starting with ``prefix``."""
    attr: str
    prefix: str

    def matches(self, attrs: dict[str, list[str]]) -> bool:
        return any(v.startswith(self.prefix) for v in attrs.get(self.attr, ()))

    def to_dict(self) -> dict:
        return {"permanode": {"attr": self.attr,
                              "valueMatches": {"hasPrefix": self.prefix}}}


@dataclass(frozen=True)
class And:
    a: "Constraint"
    b: "Constraint"

    def matches(self, attrs: dict[str, list[str]]) -> bool:
        return self.a.matches(attrs) and self.b.matches(attrs)

    def to_dict(self) -> dict:
        return {"logical": {"op": "and", "a": self.a.to_dict(), "b": self.b.to_dict()}}


Constraint = Union[AttrEquals, AttrCount, AttrHasPrefix, And]
