"""
Assembly of the TiddlyWiki bootstrap document.

The empty TiddlyWiki HTML lives in the content store on a node titled
``tiddlywiki.html``.  When embedding is enabled, the tiddlers of the embed
recipe are spliced in as a ``$tw.preloadTiddlerArray`` script just before
the boot kernel, so the wiki starts with them already loaded.
"""

import logging
import time
from typing import BinaryIO, Callable, Optional

from .codec import encode_json_list
from .errors import AssemblyError, NotFound
from .protocol import ContentStoreProtocol, TextFilter
from .query import And, AttrCount, AttrEquals
from .types import ATTR_CONTENT, ATTR_TITLE, TIDDLYWIKI_INDEX, Tiddler, is_valid_blob_ref

logger = logging.getLogger(__name__)

BOOT_KERNEL_MARKER = b"<!--~~ Boot kernel ~~-->"
PRELOAD_HEADER = b"\n<!--~~ Preloaded Tiddlers ~~-->\n"
PRELOAD_OPEN = b"<script type='text/javascript'>\n$tw.preloadTiddlerArray(\n"
PRELOAD_CLOSE = b"\n);\n</script>\n\n"

Lister = Callable[[str, TextFilter], list[Tiddler]]

# Characters that must not appear raw inside an inline <script> block
_SCRIPT_ESCAPES = (
    (b"<", b"\\u003c"),
    (b">", b"\\u003e"),
    (b"&", b"\\u0026"),
    ("\u2028".encode("utf-8"), b"\\u2028"),
    ("\u2029".encode("utf-8"), b"\\u2029"),
)


def script_safe(payload: bytes) -> bytes:
    """Escape JSON so it can be embedded verbatim in a <script> element."""
    for raw, escaped in _SCRIPT_ESCAPES:
        payload = payload.replace(raw, escaped)
    return payload


def _always(_: Tiddler) -> bool:
    return True


class IndexAssembler:
    """
    Builds the bootstrap document.

    Args:
        store: Content store holding the index node
        lister: ``list_recipe``-shaped callable used for preloading
        embed: Recipe to preload (``none``, ``system`` or ``all``)
        index_ref: Known index node identity; looked up lazily otherwise
    """

    def __init__(
        self,
        store: ContentStoreProtocol,
        lister: Lister,
        embed: str = "system",
        index_ref: Optional[str] = None,
    ):
        self._store = store
        self._lister = lister
        self.embed = embed
        # Cached for the process lifetime.  Concurrent lookups converge on
        # the same node, so a racing write is harmless.
        self.index_ref = index_ref or None

    def index_file_node(self) -> str:
        """
        Content ref of the bootstrap document.

        Raises:
            NotFound: no index node, or it has no content
        """
        if self.index_ref is None:
            res = self._store.query(And(
                AttrEquals(ATTR_TITLE, TIDDLYWIKI_INDEX),
                AttrCount(ATTR_CONTENT, 1),
            ))
            if not res.blobs:
                raise NotFound(f"could not find {TIDDLYWIKI_INDEX}")
            self.index_ref = res.blobs[0]
            logger.info("Located %s: %s", TIDDLYWIKI_INDEX, self.index_ref)

        desc = self._store.describe(self.index_ref, [ATTR_CONTENT])
        content = desc.first(ATTR_CONTENT) if desc is not None else ""
        if not is_valid_blob_ref(content):
            raise NotFound(f"could not parse {ATTR_CONTENT} for permanode {self.index_ref}")
        return content

    def generate_index(self, writer: BinaryIO) -> None:
        """
        Write the bootstrap document to ``writer``.

        With embedding enabled the output is written in three parts:
        the document up to the boot kernel, the preload script, the rest.

        Raises:
            NotFound: index document missing
            AssemblyError: boot kernel marker absent
        """
        data = self._store.fetch_content(self.index_file_node())

        if self.embed not in ("all", "system"):
            writer.write(data)
            return

        split = data.find(BOOT_KERNEL_MARKER)
        if split < 0:
            raise AssemblyError("could not find boot kernel")

        start = time.monotonic()
        preloaded = self._lister(self.embed, _always)
        payload = script_safe(encode_json_list(preloaded))

        writer.write(data[:split])
        writer.write(PRELOAD_HEADER + PRELOAD_OPEN + payload + PRELOAD_CLOSE)
        writer.write(data[split:])
        logger.info("Wrote %d preloaded tiddlers in %.3fs",
                    len(preloaded), time.monotonic() - start)
