"""
Resolution of tiddler refs onto permanodes.

A (bag, title) pair owns exactly one permanode.  Resolution always looks
for the existing node before creating one, and a freshly created node is
visible to the next query, so repeated resolution converges on one node.
"""

import logging
from typing import Optional

from .errors import InvalidReference, NotFound, StoreError, UnsupportedRecipe
from .protocol import ContentStoreProtocol
from .query import And, AttrCount, AttrEquals, AttrHasPrefix, Constraint
from .types import (
    ATTR_BAG,
    ATTR_META,
    ATTR_TITLE,
    ATTR_VISIBILITY,
    DEFAULT_BAG,
    RECIPE_ALL,
    RECIPE_SYSTEM,
    SYSTEM_TIDDLER_PREFIX,
    TIDDLER_NODE_ATTRS,
    ClaimOp,
    NodeDescription,
    TiddlerRef,
    construct_tiddler_ref,
    is_system_title,
    is_valid_blob_ref,
)

logger = logging.getLogger(__name__)

# Any node filed in some bag
ANY_BAG = AttrCount(ATTR_BAG, 1)

# Nodes whose tiddler metadata has been written at least once
HAS_META = AttrCount(ATTR_META, 1)


def bag_constraint(bag: str) -> Constraint:
    return AttrEquals(ATTR_BAG, bag)


def recipe_constraint(recipe: str) -> Constraint:
    """
    Constraint selecting the bags a recipe is made of.

    Raises:
        UnsupportedRecipe: for recipes other than ``all`` and ``system``
    """
    if recipe == RECIPE_ALL:
        return ANY_BAG
    if recipe == RECIPE_SYSTEM:
        return And(ANY_BAG, AttrHasPrefix(ATTR_TITLE, SYSTEM_TIDDLER_PREFIX))
    raise UnsupportedRecipe(recipe)


def with_meta(constraint: Constraint) -> Constraint:
    return And(HAS_META, constraint)


class RefResolver:
    """
    Maps TiddlerRefs onto permanodes, creating nodes on demand.

    Args:
        store: Content store holding the permanodes
        hide_nodes: ``none``, ``system`` or ``all``; which newly created
            nodes get ``camliDefVis=hide``
    """

    def __init__(self, store: ContentStoreProtocol, hide_nodes: str = "system"):
        self._store = store
        self.hide_nodes = hide_nodes

    def _should_hide(self, title: str) -> bool:
        if self.hide_nodes == "all":
            return True
        return self.hide_nodes == "system" and is_system_title(title)

    def resolve(
        self,
        ref: TiddlerRef,
        create_missing: bool = False,
    ) -> tuple[TiddlerRef, Optional[NodeDescription]]:
        """
        Resolve ``ref`` to its permanode.

        A valid node identity in ``ref.ref`` is described directly and
        title/bag are ignored.  Otherwise the node is looked up by title
        within the bag (or the recipe's bags).  With ``create_missing`` a
        missing node is created; the result then has no content handles
        and no description.

        Returns:
            (resolved ref, node description or None)

        Raises:
            InvalidReference: no title, or neither bag nor recipe
            UnsupportedRecipe: recipe other than all/system
            NotFound: no such node and ``create_missing`` is false
        """
        if is_valid_blob_ref(ref.ref):
            desc = self._store.describe(ref.ref, TIDDLER_NODE_ATTRS)
            if desc is None:
                raise NotFound(f"tiddler node not found: {ref.ref}")
            return construct_tiddler_ref(ref.ref, desc), desc

        if not ref.title:
            raise InvalidReference("missing tiddler title")
        if not ref.bag and not ref.recipe:
            raise InvalidReference(f"tiddler ref missing bag/recipe: {ref.title!r}")

        if ref.bag:
            scope = bag_constraint(ref.bag)
        else:
            scope = recipe_constraint(ref.recipe)

        # Nodes from an interrupted create carry no metadata yet; only the
        # create path may pick them up again.
        constraint: Constraint = And(AttrEquals(ATTR_TITLE, ref.title), scope)
        if not create_missing:
            constraint = with_meta(constraint)

        res = self._store.query(constraint, describe=TIDDLER_NODE_ATTRS)
        if res.blobs:
            node = res.blobs[0]
            desc = res.describe.get(node)
            return construct_tiddler_ref(node, desc), desc
        if not create_missing:
            raise NotFound(f"tiddler not found: {ref.title!r}")

        return self._create(ref), None

    def _create(self, ref: TiddlerRef) -> TiddlerRef:
        bag = ref.bag or DEFAULT_BAG
        node = self._store.allocate_node()
        for attr, value in ((ATTR_TITLE, ref.title), (ATTR_BAG, bag)):
            try:
                self._store.append_claim(node, attr, ClaimOp.SET, value)
            except StoreError as e:
                raise StoreError(f"error setting {attr} on {node}: {e}") from e
        if self._should_hide(ref.title):
            try:
                self._store.append_claim(node, ATTR_VISIBILITY, ClaimOp.SET, "hide")
            except StoreError as e:
                raise StoreError(f"error setting {ATTR_VISIBILITY} on {node}: {e}") from e
        logger.info("Created node %s for %s/%s", node, bag, ref.title)
        return TiddlerRef(title=ref.title, bag=bag, recipe=ref.recipe, ref=node)
