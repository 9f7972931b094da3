"""
First-run setup of a tiddlykeep store.

Installs the empty TiddlyWiki document as the index node and loads the
TiddlyWeb plugin, which makes the wiki sync through the server routes.
"""

from __future__ import annotations

import logging
from typing import Callable
from urllib.parse import quote_plus

import httpx

from . import codec
from .errors import NotFound, StoreError
from .protocol import ContentStoreProtocol
from .types import (
    ATTR_CONTENT,
    ATTR_DESCRIPTION,
    ATTR_TITLE,
    RECIPE_SYSTEM,
    TIDDLYWIKI_INDEX,
    ClaimOp,
    TiddlerRef,
)

logger = logging.getLogger(__name__)

EMPTY_HTML = "https://tiddlywiki.com/empty.html"
PLUGIN_LIBRARY = "https://tiddlywiki.com/library/v5.1.17/recipes/library/tiddlers/"
TIDDLYWEB_PLUGIN = "$:/plugins/tiddlywiki/tiddlyweb"

DEFAULT_TIMEOUT = 30.0

Fetcher = Callable[[str], bytes]


def plugin_url(title: str) -> str:
    """Library URL of a plugin tiddler (the title is escaped twice)."""
    return PLUGIN_LIBRARY + quote_plus(quote_plus(title)) + ".json"


def fetch(url: str) -> bytes:
    """GET ``url`` and return the body.

    Raises:
        StoreError: transport failure or non-2xx response
    """
    try:
        resp = httpx.get(url, timeout=DEFAULT_TIMEOUT, follow_redirects=True)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise StoreError(f"Fetching {url} failed: {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise StoreError(f"Fetching {url} failed: {e}") from e
    return resp.content


def install_index(store: ContentStoreProtocol, data: bytes, source: str) -> str:
    """
    Store ``data`` as the TiddlyWiki index document.

    Returns:
        Node identity of the new index node
    """
    content = store.upload_content(data)
    node = store.allocate_node()
    store.append_claim(node, ATTR_CONTENT, ClaimOp.SET, content)
    store.append_claim(node, ATTR_DESCRIPTION, ClaimOp.SET, source)
    store.append_claim(node, ATTR_TITLE, ClaimOp.SET, TIDDLYWIKI_INDEX)
    logger.info("Installed %s from %s: %s", TIDDLYWIKI_INDEX, source, node)
    return node


def initialize(keep, fetch: Fetcher = fetch) -> None:
    """
    Make sure the store has an index document and the TiddlyWeb plugin.

    Both steps are skipped when already done, so running this twice is
    harmless.
    """
    try:
        keep.index_file_node()
    except NotFound:
        logger.info("Fetching %s", EMPTY_HTML)
        install_index(keep.store, fetch(EMPTY_HTML), EMPTY_HTML)

    try:
        t = keep.get(TiddlerRef(title=TIDDLYWEB_PLUGIN, recipe=RECIPE_SYSTEM))
        logger.info("TiddlyWeb plugin found: %s", t.ref)
        return
    except NotFound as e:
        logger.info("TiddlyWeb plugin not found (%s); loading", e)

    url = plugin_url(TIDDLYWEB_PLUGIN)
    logger.info("Fetching TiddlyWeb plugin from %s", url)
    keep.put(codec.decode_json(fetch(url)))
