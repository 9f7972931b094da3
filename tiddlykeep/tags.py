"""
Tag set reconciliation.

Computes the minimal list of ``tag`` attribute claims that turn a node's
existing tag set into the wanted one.
"""

from dataclasses import dataclass
from typing import Iterable

from .protocol import ContentStoreProtocol
from .types import ATTR_TAG, ClaimOp


@dataclass(frozen=True)
class TagMutation:
    op: ClaimOp
    value: str


def _unique(tags: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for tag in tags:
        if tag not in seen:
            seen.add(tag)
            out.append(tag)
    return out


def reconcile(existing: Iterable[str], wanted: Iterable[str]) -> list[TagMutation]:
    """
    Mutations taking ``existing`` to ``wanted``, to be applied in order.

    - Equal sets: nothing.
    - A single wanted tag: one SET, which overwrites every existing value.
    - Otherwise: ADD for each tag only in wanted, then DELETE for each tag
      only in existing.  Shared tags are never touched.
    """
    existing = _unique(existing)
    wanted = _unique(wanted)
    existing_set, wanted_set = set(existing), set(wanted)

    if existing_set == wanted_set:
        return []
    if len(wanted) == 1:
        return [TagMutation(ClaimOp.SET, wanted[0])]

    mutations = [TagMutation(ClaimOp.ADD, tag) for tag in wanted if tag not in existing_set]
    mutations += [TagMutation(ClaimOp.DELETE, tag) for tag in existing if tag not in wanted_set]
    return mutations


def apply_tag_mutations(
    store: ContentStoreProtocol,
    node: str,
    mutations: Iterable[TagMutation],
) -> None:
    """Append one claim per mutation against ``node``, in order."""
    for m in mutations:
        store.append_claim(node, ATTR_TAG, m.op, m.value)
