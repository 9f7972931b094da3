"""
Core API for tiddlykeep.

TiddlyKeep stores tiddlers in a content store:
- put(): upload body + metadata blobs → resolve/create node → claim
  changed handles → reconcile tags
- get(): resolve node → fetch metadata → optionally fetch body
- delete(): resolve node → tombstone
- list_bag()/list_recipe(): one batched query, then get() per match
"""

import base64
import binascii
import logging
from pathlib import Path
from typing import BinaryIO, Optional, Union

from . import codec
from .errors import InvalidReference, MalformedInput, NotFound
from .index import IndexAssembler
from .protocol import ContentStoreProtocol, TextFilter
from .resolver import RefResolver, bag_constraint, recipe_constraint, with_meta
from .tags import apply_tag_mutations, reconcile
from .types import (
    ATTR_CONTENT,
    ATTR_META,
    DEFAULT_BAG,
    TIDDLER_NODE_ATTRS,
    ClaimOp,
    SearchResult,
    Tiddler,
    TiddlerRef,
    construct_tiddler_ref,
    is_base64_type,
    is_valid_blob_ref,
)

logger = logging.getLogger(__name__)

# JSON keys that are stored on the node (or nowhere) rather than in the
# metadata blob
_NON_META_KEYS = ("bag", "recipe", "revision", "tags", "text", codec.REF_KEY)


def always_include_text(_: Tiddler) -> bool:
    return True


def never_include_text(_: Tiddler) -> bool:
    return False


def _encode_body(t: Tiddler) -> bytes:
    """Body bytes as stored: base64 types are decoded, others are UTF-8."""
    if is_base64_type(t.type):
        try:
            return base64.b64decode("".join(t.text.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedInput(f"{t.title!r}: invalid base64 text: {e}") from e
    return t.text.encode("utf-8")


def _decode_body(tiddler_type: str, data: bytes) -> str:
    if is_base64_type(tiddler_type):
        return base64.b64encode(data).decode("ascii")
    return data.decode("utf-8", errors="replace")


class TiddlyKeep:
    """
    Tiddler storage on a content-addressed store.

    Args:
        store: Content store backend
        hide_nodes: Which created nodes are hidden (``none``/``system``/``all``)
        embed: Recipe preloaded into the index (``none``/``system``/``all``)
        index_ref: Known node identity of the TiddlyWiki index
        store_path: Store directory; when given, operations are logged to
            its tiddlykeep-ops.log until close()
    """

    def __init__(
        self,
        store: ContentStoreProtocol,
        *,
        hide_nodes: str = "system",
        embed: str = "system",
        index_ref: Optional[str] = None,
        store_path: Optional[Union[str, Path]] = None,
    ):
        self.store = store
        self._ops_log_handler = None
        if store_path is not None:
            from .logging_config import configure_ops_log
            self._ops_log_handler = configure_ops_log(store_path)
        self.resolver = RefResolver(store, hide_nodes=hide_nodes)
        self.index = IndexAssembler(store, self.list_recipe, embed=embed, index_ref=index_ref)

    @classmethod
    def from_config(cls, config) -> "TiddlyKeep":
        """Open the content store named by a StoreConfig."""
        from .backend import create_content_store
        return cls(
            create_content_store(config),
            hide_nodes=config.hide_nodes,
            embed=config.embed,
            index_ref=config.index_ref or None,
            store_path=config.path,
        )

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve_ref(self, ref: TiddlerRef, create_missing: bool = False) -> TiddlerRef:
        """Fully resolve ``ref``; a resolved ref is returned unchanged."""
        if ref.is_resolved:
            return ref
        resolved, _ = self.resolver.resolve(ref, create_missing)
        return resolved

    # -------------------------------------------------------------------------
    # Write
    # -------------------------------------------------------------------------

    def put(self, t: Tiddler) -> str:
        """
        Store a tiddler, creating its node on first write.

        The bag defaults to ``default`` (and is set on ``t``).  Content
        claims are only appended for handles that changed, so writing an
        identical tiddler again appends nothing.

        Returns:
            Node identity of the tiddler
        """
        if not t.bag:
            t.bag = DEFAULT_BAG
        if not t.title:
            if not is_valid_blob_ref(t.ref):
                raise InvalidReference("missing tiddler title")
            # Writing by node ref keeps the node's title
            t.title = self.resolve_ref(TiddlerRef(ref=t.ref)).title
        elif t.ref:
            current = self.resolve_ref(TiddlerRef(ref=t.ref)).title
            if current and current != t.title:
                raise InvalidReference(
                    f"node {t.ref} is titled {current!r}, not {t.title!r}")

        obj = codec.to_json_object(t)
        for key in _NON_META_KEYS:
            obj.pop(key, None)
        meta = codec.dumps_object(obj).encode("utf-8")
        body = _encode_body(t)

        text_ref = self.store.upload_content(body)
        meta_ref = self.store.upload_content(meta)

        existing = self.resolve_ref(
            TiddlerRef(ref=t.ref, title=t.title, bag=t.bag, recipe=t.recipe),
            create_missing=True,
        )
        node = existing.ref

        if text_ref != existing.text_ref:
            self.store.append_claim(node, ATTR_CONTENT, ClaimOp.SET, text_ref)
        else:
            logger.debug("Body unchanged for %s", t.title)
        if meta_ref != existing.meta_ref:
            self.store.append_claim(node, ATTR_META, ClaimOp.SET, meta_ref)
        else:
            logger.debug("Metadata unchanged for %s", t.title)

        apply_tag_mutations(self.store, node, reconcile(existing.tags, t.tags))
        logger.debug("Put %s/%s -> %s", t.bag, t.title, node)
        return node

    def delete(self, ref: TiddlerRef) -> None:
        """Tombstone the tiddler's node.  Storage is never reclaimed."""
        resolved = self.resolve_ref(ref, create_missing=False)
        self.store.append_tombstone(resolved.ref)
        logger.info("Deleted %s (%s)", resolved, resolved.ref)

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    def get(self, ref: TiddlerRef, text_filter: TextFilter = never_include_text) -> Tiddler:
        """
        Fetch a tiddler.

        The body is only fetched when ``text_filter`` accepts the tiddler
        built from its metadata (a "fat" rather than "skinny" read).

        Raises:
            NotFound: no node, or the node has no metadata/title yet
        """
        ref = self.resolve_ref(ref, create_missing=False)
        if not is_valid_blob_ref(ref.meta_ref) or not ref.title:
            raise NotFound(f"{ref} tiddler not found")

        tiddler = Tiddler.from_ref(ref)
        meta = self.store.fetch_content(ref.meta_ref)
        try:
            codec.merge_from(tiddler, codec.loads_object(meta))
        except MalformedInput as e:
            raise MalformedInput(f"{ref}: corrupt metadata blob {ref.meta_ref}: {e}") from e

        if text_filter(tiddler) and is_valid_blob_ref(ref.text_ref):
            tiddler.text = _decode_body(tiddler.type, self.store.fetch_content(ref.text_ref))
        return tiddler

    def _list_refs(self, res: SearchResult, text_filter: TextFilter) -> list[Tiddler]:
        tiddlers = []
        for node in res.blobs:
            ref = construct_tiddler_ref(node, res.describe.get(node))
            tiddlers.append(self.get(ref, text_filter))
        return tiddlers

    def list_bag(self, bag: str, text_filter: TextFilter = never_include_text) -> list[Tiddler]:
        """All tiddlers filed in ``bag``."""
        res = self.store.query(with_meta(bag_constraint(bag)), describe=TIDDLER_NODE_ATTRS)
        return self._list_refs(res, text_filter)

    def list_recipe(self, recipe: str, text_filter: TextFilter = never_include_text) -> list[Tiddler]:
        """
        All tiddlers visible through ``recipe``.

        Raises:
            UnsupportedRecipe: recipe other than all/system
        """
        res = self.store.query(with_meta(recipe_constraint(recipe)), describe=TIDDLER_NODE_ATTRS)
        return self._list_refs(res, text_filter)

    # -------------------------------------------------------------------------
    # Index
    # -------------------------------------------------------------------------

    def index_file_node(self) -> str:
        return self.index.index_file_node()

    def generate_index(self, writer: BinaryIO) -> None:
        self.index.generate_index(writer)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        self.store.close()

        # Remove ops log handler to avoid handler accumulation
        if self._ops_log_handler is not None:
            logging.getLogger("tiddlykeep").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
