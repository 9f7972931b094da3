"""
Data types for tiddlykeep.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from .errors import MalformedInput


# Titles starting with this prefix are TiddlyWiki system tiddlers
SYSTEM_TIDDLER_PREFIX = "$:/"

# Title of the node holding the bootstrap TiddlyWiki document
TIDDLYWIKI_INDEX = "tiddlywiki.html"

DEFAULT_BAG = "default"

# Recipes are fixed views over bags
RECIPE_ALL = "all"
RECIPE_SYSTEM = "system"
SUPPORTED_RECIPES = (RECIPE_ALL, RECIPE_SYSTEM)

# Which tiddlers to hide (--hide-nodes) or preload into the index (--embed)
VISIBILITY_CHOICES = ("none", "system", "all")

# Permanode attributes
ATTR_TITLE = "title"
ATTR_BAG = "tiddlerBag"
ATTR_META = "tiddlerMeta"
ATTR_CONTENT = "camliContent"
ATTR_TAG = "tag"
ATTR_VISIBILITY = "camliDefVis"
ATTR_DESCRIPTION = "description"

TIDDLER_NODE_ATTRS = (ATTR_TITLE, ATTR_BAG, ATTR_META, ATTR_CONTENT, ATTR_TAG)

# Body encoding by tiddler type.  Only "base64" changes how text is stored;
# unknown types are treated as raw UTF-8.
TEXT_ENCODING = {
    "text/vnd.tiddlywiki": "utf8",
    "application/x-tiddler": "utf8",
    "application/x-tiddlers": "utf8",
    "application/x-tiddler-html-div": "utf8",
    "text/vnd.tiddlywiki2-recipe": "utf8",
    "text/plain": "utf8",
    "text/css": "utf8",
    "text/html": "utf8",
    "application/hta": "utf16le",
    "application/javascript": "utf8",
    "application/json": "utf8",
    "application/pdf": "base64",
    "application/zip": "base64",
    "image/jpeg": "base64",
    "image/png": "base64",
    "image/gif": "base64",
    "image/svg+xml": "utf8",
    "image/x-icon": "base64",
    "application/font-woff": "base64",
    "application/x-font-ttf": "base64",
    "audio/ogg": "base64",
    "video/mp4": "base64",
    "audio/mp3": "base64",
    "audio/mp4": "base64",
    "text/markdown": "utf8",
    "text/x-markdown": "utf8",
    "application/enex+xml": "utf8",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "base64",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "base64",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "base64",
    "text/x-bibtex": "utf8",
    "application/x-bibtex": "utf8",
    "application/epub+zip": "base64",
    "application/octet-stream": "base64",
}


def is_base64_type(tiddler_type: str) -> bool:
    """True if bodies of this type travel base64-encoded."""
    return TEXT_ENCODING.get(tiddler_type) == "base64"


def is_system_title(title: str) -> bool:
    return title.startswith(SYSTEM_TIDDLER_PREFIX)


# Blob refs look like "sha224-<hex>"
_BLOB_REF_RE = re.compile(r'^[a-z][a-z0-9]*-[0-9a-f]+$')


def is_valid_blob_ref(ref: Optional[str]) -> bool:
    """Check that a string has the shape of a blob ref."""
    return bool(ref) and bool(_BLOB_REF_RE.match(ref))


# ---------------------------------------------------------------------------
# Revisions
# ---------------------------------------------------------------------------

# Serialized form of "no revision yet"
ZERO_REVISION = "0001-01-01T00:00:00Z"

_FRACTION_RE = re.compile(r'\.(\d+)')


def format_revision(revision: Optional[datetime]) -> str:
    """Format a revision as RFC 3339 in UTC, trimming trailing zeros."""
    if revision is None:
        return ZERO_REVISION
    if revision.tzinfo is None:
        revision = revision.replace(tzinfo=timezone.utc)
    revision = revision.astimezone(timezone.utc)
    text = revision.strftime("%Y-%m-%dT%H:%M:%S")
    if revision.microsecond:
        text += f".{revision.microsecond:06d}".rstrip("0")
    return text + "Z"


def parse_revision(text: str) -> Optional[datetime]:
    """Parse an RFC 3339 revision.

    Accepts up to nanosecond precision (truncated to microseconds).
    The zero revision parses to None.

    Raises:
        ValueError: if the text is not a timestamp
    """
    if not isinstance(text, str) or not text:
        raise ValueError(f"invalid revision: {text!r}")
    if text == ZERO_REVISION:
        return None
    ts = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    ts = ts.replace("Z", "+00:00").replace("z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Field values
# ---------------------------------------------------------------------------

Scalar = Union[str, int, float, bool]
FieldValue = Union[Scalar, list[Scalar]]


def coerce_field_value(name: str, value) -> Optional[FieldValue]:
    """Validate a decoded free-form field value.

    Returns None for null (the field is dropped).

    Raises:
        MalformedInput: for objects or nested arrays
    """
    if value is None:
        return None
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            if not isinstance(item, (str, bool, int, float)):
                raise MalformedInput(
                    f"field {name!r}: arrays may only hold scalars, got {type(item).__name__}"
                )
            items.append(item)
        return items
    raise MalformedInput(f"field {name!r}: unsupported value type {type(value).__name__}")


# ---------------------------------------------------------------------------
# Tiddlers
# ---------------------------------------------------------------------------


@dataclass
class TiddlerRef:
    """
    Identity and storage location of a tiddler.

    Unresolved refs carry only title + bag/recipe (or just a node ref).
    Resolved refs also carry the node ref and both content handles.
    """
    title: str = ""
    bag: str = ""
    recipe: str = ""
    ref: Optional[str] = None
    text_ref: Optional[str] = None
    meta_ref: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    revision: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        return (is_valid_blob_ref(self.ref)
                and is_valid_blob_ref(self.text_ref)
                and is_valid_blob_ref(self.meta_ref))

    def __str__(self) -> str:
        if self.title:
            return f"{self.bag or self.recipe}/{self.title}"
        return self.ref or "<empty ref>"


@dataclass
class Tiddler:
    """
    A single wiki document: title, body and metadata.

    ``fields`` holds free-form fields; reserved names live in their own
    attributes.  ``text_ref``/``meta_ref`` are storage handles and do not
    take part in equality.
    """
    title: str = ""
    bag: str = ""
    recipe: str = ""
    ref: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    revision: Optional[datetime] = None

    fields: dict[str, FieldValue] = field(default_factory=dict)
    type: str = ""
    permissions: str = ""
    created: str = ""
    creator: str = ""
    modified: str = ""
    modifier: str = ""

    text: str = ""

    text_ref: Optional[str] = field(default=None, compare=False)
    meta_ref: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_ref(cls, ref: TiddlerRef) -> "Tiddler":
        return cls(
            title=ref.title,
            bag=ref.bag,
            recipe=ref.recipe,
            ref=ref.ref,
            tags=list(ref.tags),
            revision=ref.revision,
            text_ref=ref.text_ref,
            meta_ref=ref.meta_ref,
        )

    @property
    def tiddler_ref(self) -> TiddlerRef:
        return TiddlerRef(
            title=self.title,
            bag=self.bag,
            recipe=self.recipe,
            ref=self.ref,
            text_ref=self.text_ref,
            meta_ref=self.meta_ref,
            tags=list(self.tags),
            revision=self.revision,
        )


# ---------------------------------------------------------------------------
# Content store values
# ---------------------------------------------------------------------------


class ClaimOp(str, Enum):
    """Attribute claim operations."""
    SET = "set-attribute"
    ADD = "add-attribute"
    DELETE = "del-attribute"


@dataclass
class NodeDescription:
    """Attribute snapshot of a permanode."""
    ref: str
    attrs: dict[str, list[str]] = field(default_factory=dict)
    mod_time: Optional[datetime] = None

    def first(self, attr: str) -> str:
        """First value of an attribute, or empty string."""
        values = self.attrs.get(attr)
        return values[0] if values else ""


@dataclass
class SearchResult:
    """Query result: matching node refs in store order plus descriptions."""
    blobs: list[str] = field(default_factory=list)
    describe: dict[str, NodeDescription] = field(default_factory=dict)


def construct_tiddler_ref(ref: str, desc: Optional[NodeDescription]) -> TiddlerRef:
    """Build a TiddlerRef from a node identity and its description."""
    t = TiddlerRef(ref=ref)
    if desc is not None:
        t.revision = desc.mod_time
        t.title = desc.first(ATTR_TITLE)
        t.bag = desc.first(ATTR_BAG)
        meta = desc.first(ATTR_META)
        t.meta_ref = meta if is_valid_blob_ref(meta) else None
        text = desc.first(ATTR_CONTENT)
        t.text_ref = text if is_valid_blob_ref(text) else None
        t.tags = list(desc.attrs.get(ATTR_TAG, []))
    return t
