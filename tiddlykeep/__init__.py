"""
TiddlyKeep

A TiddlyWeb-compatible tiddler store on a content-addressed blob store.
Each (bag, title) pair owns one permanode; tiddler bodies and metadata are
immutable blobs, and every change is a signed, append-only claim.

Quick Start:
    from tiddlykeep import TiddlyKeep, Tiddler, TiddlerRef
    from tiddlykeep.config import get_store_path, load_or_create_config

    keep = TiddlyKeep.from_config(load_or_create_config(get_store_path()))
    keep.put(Tiddler(title="Hello", text="world", tags=["greeting"]))
    t = keep.get(TiddlerRef(title="Hello", bag="default"), always_include_text)

CLI Usage:
    tiddlykeep init
    tiddlykeep serve --listen localhost:8080
    tiddlykeep ls --recipe system

Default Store:
    ~/.tiddlykeep/ (created automatically).
    Override with TIDDLYKEEP_STORE_PATH or --store.

Environment Variables:
    TIDDLYKEEP_STORE_PATH  - Override default store location
    TIDDLYKEEP_VERBOSE     - Set to 1 for debug logging to stderr
"""

from .api import TiddlyKeep, always_include_text, never_include_text
from .errors import (
    AssemblyError,
    InvalidReference,
    MalformedInput,
    NotFound,
    StoreError,
    TiddlyKeepError,
    UnsupportedRecipe,
)
from .types import Tiddler, TiddlerRef

__version__ = "0.1.0"
__all__ = [
    "TiddlyKeep",
    "Tiddler",
    "TiddlerRef",
    "always_include_text",
    "never_include_text",
    "TiddlyKeepError",
    "InvalidReference",
    "UnsupportedRecipe",
    "NotFound",
    "MalformedInput",
    "AssemblyError",
    "StoreError",
]
