"""Deserialize the front end's JSON tree into Node objects."""

from __future__ import annotations

import json
from typing import Any

from rbfmt.ast import (
    Comment,
    CommentPosition,
    CommentType,
    Formatting,
    Node,
    parse_kind,
)
from rbfmt.errors import PayloadError
from rbfmt.span import Span

_LOCATION_FIELDS = (
    "start_line",
    "start_column",
    "end_line",
    "end_column",
    "start_offset",
    "end_offset",
)

_COMMENT_TYPES = {
    "line": CommentType.LINE,
    "block": CommentType.BLOCK,
    "embdoc": CommentType.BLOCK,
}


def load_tree(text: str | bytes) -> Node:
    """Parse a serialized tree (bare node or ``{ast, comments}`` wrapper)."""
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PayloadError(f"payload is not valid UTF-8: {exc.reason}") from None

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PayloadError(
            f"invalid JSON: {exc.msg}", line=exc.lineno, column=exc.colno, text=text
        ) from None
    except RecursionError:
        raise PayloadError("tree is nested too deeply") from None

    try:
        return _load_root(data)
    except RecursionError:
        raise PayloadError("tree is nested too deeply") from None


def _load_root(data: Any) -> Node:
    if isinstance(data, dict) and "ast" in data:
        root = _load_node(data["ast"], "ast")
        extra = _load_comments(data.get("comments") or [], "comments")
        if extra:
            return Node(
                kind=root.kind,
                span=root.span,
                children=root.children,
                metadata=root.metadata,
                comments=root.comments + extra,
                formatting=root.formatting,
            )
        return root
    return _load_node(data, "")


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _expect_dict(value: Any, path: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise PayloadError(f"expected an object, got {_type_name(value)}", path=path or "<root>")
    return value


def _expect_list(value: Any, path: str) -> list[Any]:
    if not isinstance(value, list):
        raise PayloadError(f"expected an array, got {_type_name(value)}", path=path)
    return value


def _expect_str(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise PayloadError(f"expected a string, got {_type_name(value)}", path=path)
    return value


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def _load_location(value: Any, path: str) -> Span:
    loc = _expect_dict(value, path)
    nums: list[int] = []
    for name in _LOCATION_FIELDS:
        field_path = _join(path, name)
        if name not in loc:
            raise PayloadError("missing field", path=field_path)
        raw = loc[name]
        if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
            raise PayloadError(f"expected a non-negative integer, got {raw!r}", path=field_path)
        nums.append(raw)
    return Span(*nums)


def _load_comment(value: Any, path: str) -> Comment:
    data = _expect_dict(value, path)
    text = _expect_str(data.get("text"), _join(path, "text"))
    if "location" not in data:
        raise PayloadError("missing field", path=_join(path, "location"))
    span = _load_location(data["location"], _join(path, "location"))

    type_key = "type" if "type" in data else "comment_type"
    raw_type = data.get(type_key, "line")
    ctype = _COMMENT_TYPES.get(raw_type) if isinstance(raw_type, str) else None
    if ctype is None:
        raise PayloadError(f"unknown comment type {raw_type!r}", path=_join(path, type_key))

    raw_pos = data.get("position", "leading")
    try:
        position = CommentPosition(raw_pos)
    except ValueError:
        raise PayloadError(
            f"unknown comment position {raw_pos!r}", path=_join(path, "position")
        ) from None

    if ctype is CommentType.BLOCK:
        text, span = _trim_block_comment(text, span)
    return Comment(text=text, span=span, type=ctype, position=position)


def _trim_block_comment(text: str, span: Span) -> tuple[str, Span]:
    """End a ``=begin``/``=end`` comment on its ``=end`` line.

    The front end's location for these includes the newline after ``=end``,
    which would otherwise place the comment's end on the following line.
    """
    trimmed = text.rstrip("\r\n")
    if trimmed == text or span.end_column != 0 or span.end_line <= span.start_line:
        return text, span
    removed = len(text.encode("utf-8")) - len(trimmed.encode("utf-8"))
    last_line = trimmed.rsplit("\n", 1)[-1]
    return trimmed, Span(
        span.start_line,
        span.start_column,
        span.end_line - 1,
        len(last_line.encode("utf-8")),
        span.start_offset,
        max(span.start_offset, span.end_offset - removed),
    )


def _load_comments(value: Any, path: str) -> tuple[Comment, ...]:
    items = _expect_list(value, path)
    return tuple(_load_comment(item, f"{path}[{i}]") for i, item in enumerate(items))


def _load_metadata(value: Any, path: str) -> dict[str, str]:
    data = _expect_dict(value, path)
    metadata: dict[str, str] = {}
    for key, raw in data.items():
        if raw is None:
            continue
        if isinstance(raw, bool):
            metadata[key] = "true" if raw else "false"
        elif isinstance(raw, (str, int, float)):
            metadata[key] = str(raw)
        else:
            raise PayloadError(
                f"expected a scalar, got {_type_name(raw)}", path=_join(path, key)
            )
    return metadata


def _load_formatting(value: Any, path: str) -> Formatting:
    data = _expect_dict(value, path)
    original = data.get("original_formatting")
    if original is not None:
        original = _expect_str(original, _join(path, "original_formatting"))
    indent = data.get("indent_level", 0)
    if isinstance(indent, bool) or not isinstance(indent, int):
        raise PayloadError(f"expected an integer, got {indent!r}", path=_join(path, "indent_level"))
    return Formatting(
        indent_level=indent,
        needs_blank_line_before=bool(data.get("needs_blank_line_before", False)),
        needs_blank_line_after=bool(data.get("needs_blank_line_after", False)),
        preserve_newlines=bool(data.get("preserve_newlines", False)),
        multiline=bool(data.get("multiline", False)),
        original_formatting=original,
    )


def _load_node(value: Any, path: str) -> Node:
    data = _expect_dict(value, path)

    node_type = _expect_str(data.get("node_type"), _join(path, "node_type"))
    if "location" not in data:
        raise PayloadError("missing field", path=_join(path, "location"))
    span = _load_location(data["location"], _join(path, "location"))

    children_path = _join(path, "children")
    children = tuple(
        _load_node(child, f"{children_path}[{i}]")
        for i, child in enumerate(_expect_list(data.get("children") or [], children_path))
    )

    metadata = _load_metadata(data.get("metadata") or {}, _join(path, "metadata"))
    comments = _load_comments(data.get("comments") or [], _join(path, "comments"))
    formatting = (
        _load_formatting(data["formatting"], _join(path, "formatting"))
        if data.get("formatting") is not None
        else Formatting()
    )

    return Node(
        kind=parse_kind(node_type),
        span=span,
        children=children,
        metadata=metadata,
        comments=comments,
        formatting=formatting,
    )
