"""
Protocol definitions for TiddlyKeep and its content store backends.

Defines interface contracts at two levels:
- TiddlyServerProtocol: the operations the web app and CLI drive
- ContentStoreProtocol: the content-addressed blob store underneath
  (SQLite locally, a Perkeep-style server via a registered backend)
"""

from typing import BinaryIO, Callable, Optional, Protocol, Sequence, runtime_checkable

from .query import Constraint
from .types import ClaimOp, NodeDescription, SearchResult, Tiddler, TiddlerRef

TextFilter = Callable[[Tiddler], bool]


@runtime_checkable
class TiddlyServerProtocol(Protocol):
    """
    The operations behind the TiddlyWeb routes.

    Implemented by:
    - TiddlyKeep (any ContentStoreProtocol backend)
    """

    def generate_index(self, writer: BinaryIO) -> None: ...

    def put(self, tiddler: Tiddler) -> str: ...

    def get(self, ref: TiddlerRef, text_filter: TextFilter = ...) -> Tiddler: ...

    def delete(self, ref: TiddlerRef) -> None: ...

    def list_bag(self, bag: str, text_filter: TextFilter = ...) -> list[Tiddler]: ...

    def list_recipe(self, recipe: str, text_filter: TextFilter = ...) -> list[Tiddler]: ...

    def resolve_ref(self, ref: TiddlerRef, create_missing: bool = False) -> TiddlerRef: ...


# ---------------------------------------------------------------------------
# Storage backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ContentStoreProtocol(Protocol):
    """
    Abstract content-addressed blob store with permanodes.

    Implemented by:
    - SqliteContentStore (local append-only SQLite)
    - External backends registered under ``tiddlykeep.backends``

    Failures other than a missing blob are raised as StoreError.
    """

    # -- Content --

    def upload_content(self, data: bytes) -> str: ...

    def fetch_content(self, ref: str) -> bytes: ...

    # -- Permanodes and claims --

    def allocate_node(self) -> str: ...

    def append_claim(
        self,
        node: str,
        attr: str,
        op: ClaimOp,
        value: Optional[str] = None,
    ) -> str: ...

    def append_tombstone(self, node: str) -> str: ...

    # -- Search --

    def query(
        self,
        constraint: Constraint,
        describe: Optional[Sequence[str]] = None,
    ) -> SearchResult: ...

    def describe(
        self,
        node: str,
        attrs: Optional[Sequence[str]] = None,
    ) -> Optional[NodeDescription]: ...

    def close(self) -> None: ...
