"""
Tiddler serialization.

Three forms are supported:
- JSON object (``to_json_object``/``merge_from``): the TiddlyWeb shape,
  free-form fields flattened into the top level.
- JSON bytes (``encode_json``/``decode_json``), plus arrays of tiddlers.
- ``.tid`` text (``encode_text``/``decode_text``): ``field: value`` header
  lines, a blank line, then the raw body.  Used by interactive editing.
"""

import json
import logging
from typing import Any, Iterable, Union

from .errors import MalformedInput
from .types import (
    Tiddler,
    coerce_field_value,
    format_revision,
    is_valid_blob_ref,
    parse_revision,
)

logger = logging.getLogger(__name__)

REF_KEY = "tiddlykeep-ref"

# Keys that map onto Tiddler attributes and never land in Tiddler.fields
RESERVED_KEYS = frozenset({
    "title", "revision", "tags", "type", "bag", "recipe", "permissions",
    "creator", "created", "modifier", "modified", "text", "fields", REF_KEY,
})


def to_string(value: Any) -> str:
    """Render a decoded scalar the way it would appear in JSON."""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def dumps_object(obj: Any) -> str:
    """Deterministic JSON: sorted keys so equal objects give equal bytes."""
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def _add_if_non_empty(obj: dict, key: str, value: str) -> None:
    if value:
        obj[key] = value


# -----------------------------------------------------------------------------
# JSON
# -----------------------------------------------------------------------------

def to_json_object(t: Tiddler) -> dict[str, Any]:
    """Flatten a tiddler into its TiddlyWeb JSON object.

    ``title`` and ``revision`` are always present; everything else only
    when non-empty.
    """
    obj: dict[str, Any] = {}
    for name, value in t.fields.items():
        if name in RESERVED_KEYS:
            continue
        obj[name] = list(value) if isinstance(value, list) else value
    obj["title"] = t.title
    obj["revision"] = format_revision(t.revision)

    _add_if_non_empty(obj, REF_KEY, t.ref or "")
    _add_if_non_empty(obj, "bag", t.bag)
    _add_if_non_empty(obj, "recipe", t.recipe)
    _add_if_non_empty(obj, "type", t.type)
    _add_if_non_empty(obj, "text", t.text)
    _add_if_non_empty(obj, "permissions", t.permissions)
    _add_if_non_empty(obj, "created", t.created)
    _add_if_non_empty(obj, "creator", t.creator)
    _add_if_non_empty(obj, "modified", t.modified)
    _add_if_non_empty(obj, "modifier", t.modifier)

    if t.tags:
        obj["tags"] = list(t.tags)
    return obj


def _decode_tags(value: Any) -> list[str] | None:
    """Tags arrive as an array of strings or scalars; None otherwise."""
    if not isinstance(value, list):
        return None
    tags = []
    for tag in value:
        if isinstance(tag, (dict, list)) or tag is None:
            return None
        tags.append(to_string(tag))
    return tags


def merge_from(t: Tiddler, obj: dict[str, Any]) -> Tiddler:
    """
    Fold a decoded JSON object into a tiddler.

    A nested ``fields`` object seeds ``t.fields``; unknown top-level keys
    are added to it.  Reserved keys set their attribute.

    Raises:
        MalformedInput: unparseable revision or unsupported field values
    """
    fields: dict[str, Any] = {}
    nested = obj.get("fields")
    if isinstance(nested, dict):
        for name, value in nested.items():
            if name in RESERVED_KEYS:
                continue
            value = coerce_field_value(name, value)
            if value is not None:
                fields[name] = value
    t.fields = fields

    for key, value in obj.items():
        if key == "title":
            t.title = to_string(value)
        elif key == "revision":
            try:
                t.revision = parse_revision(to_string(value))
            except ValueError as e:
                raise MalformedInput(f"invalid revision {value!r}: {e}") from e
        elif key == "tags":
            tags = _decode_tags(value)
            if tags is None:
                logger.warning("Unknown tags type for %r: %s", t.title, type(value).__name__)
            else:
                t.tags = tags
        elif key == "type":
            t.type = to_string(value)
        elif key == "bag":
            t.bag = to_string(value)
        elif key == "recipe":
            t.recipe = to_string(value)
        elif key == "permissions":
            t.permissions = to_string(value)
        elif key == "creator":
            t.creator = to_string(value)
        elif key == "created":
            t.created = to_string(value)
        elif key == "modifier":
            t.modifier = to_string(value)
        elif key == "modified":
            t.modified = to_string(value)
        elif key == "text":
            t.text = to_string(value)
        elif key == REF_KEY:
            ref = to_string(value)
            if is_valid_blob_ref(ref):
                t.ref = ref
        elif key == "fields":
            pass  # handled above
        else:
            value = coerce_field_value(key, value)
            if value is not None:
                t.fields[key] = value
    return t


def _loads(data: Union[bytes, str]) -> Any:
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedInput(f"invalid JSON: {e}") from e


def loads_object(data: Union[bytes, str]) -> dict[str, Any]:
    """Parse JSON that must be an object."""
    obj = _loads(data)
    if not isinstance(obj, dict):
        raise MalformedInput(f"expected a JSON object, got {type(obj).__name__}")
    return obj


def encode_json(t: Tiddler) -> bytes:
    return dumps_object(to_json_object(t)).encode("utf-8")


def decode_json(data: Union[bytes, str]) -> Tiddler:
    """Decode a single tiddler from JSON.

    Raises:
        MalformedInput: invalid JSON, a non-object value, or a bad revision
    """
    return merge_from(Tiddler(), loads_object(data))


def encode_json_list(tiddlers: Iterable[Tiddler]) -> bytes:
    return dumps_object([to_json_object(t) for t in tiddlers]).encode("utf-8")


def decode_json_list(data: Union[bytes, str]) -> list[Tiddler]:
    """Decode a JSON array of tiddler objects."""
    items = _loads(data)
    if not isinstance(items, list):
        raise MalformedInput(f"expected a JSON array, got {type(items).__name__}")
    tiddlers = []
    for obj in items:
        if not isinstance(obj, dict):
            raise MalformedInput(f"expected a JSON object, got {type(obj).__name__}")
        tiddlers.append(merge_from(Tiddler(), obj))
    return tiddlers


# -----------------------------------------------------------------------------
# .tid text
# -----------------------------------------------------------------------------

def format_tag_list(tags: Iterable[Any]) -> str:
    """Join tags with spaces, bracket-quoting any tag containing a space."""
    out = []
    for tag in tags:
        s = to_string(tag)
        out.append(f"[[{s}]]" if " " in s else s)
    return " ".join(out)


def parse_tag_list(value: str) -> list[str]:
    """Parse a space-separated tag list honoring ``[[multi word]]`` tags.

    Tokens are accumulated into a quoted span until one ends with ``]]``.
    A span still open at the end of the line becomes a tag as-is.
    """
    tags: list[str] = []
    span = ""
    for token in value.split(" "):
        trimmed = token.strip()
        if not span and not trimmed.startswith("[["):
            if trimmed:
                tags.append(trimmed)
            continue
        span += " " + token
        if trimmed.endswith("]]"):
            tags.append(span.strip().removeprefix("[[").removesuffix("]]"))
            span = ""
    if span:
        tags.append(span.strip().removeprefix("[["))
    return tags


def encode_text(t: Tiddler) -> bytes:
    """Render the ``.tid`` form: headers, blank line, body."""
    obj = to_json_object(t)
    keys = ["title"] + sorted(k for k in obj if k not in ("title", "text"))
    lines = []
    for key in keys:
        value = obj[key]
        if isinstance(value, list):
            lines.append(f"{key}: {format_tag_list(value)}")
        else:
            lines.append(f"{key}: {to_string(value)}")
    return ("\n".join(lines) + "\n\n" + obj.get("text", "")).encode("utf-8")


def decode_text(data: Union[bytes, str]) -> Tiddler:
    """
    Parse the ``.tid`` form.

    Headers end at the first blank line; everything after it is the body.
    Without a blank line the whole document is headers.

    Raises:
        MalformedInput: a header line without ``": "``, or a bad revision
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedInput(f"tiddler text is not UTF-8: {e}") from e

    obj: dict[str, Any] = {}
    body = ""
    pos = 0
    while pos < len(data):
        nl = data.find("\n", pos)
        end = len(data) if nl < 0 else nl
        line = data[pos:end].rstrip("\r")
        pos = end + 1
        if not line:
            body = data[pos:]
            break
        key, sep, value = line.partition(": ")
        if not sep:
            raise MalformedInput(f"malformed field: {line}")
        if key == "tags":
            obj["tags"] = parse_tag_list(value)
        else:
            obj[key] = value
    obj["text"] = body
    return merge_from(Tiddler(), obj)
