"""--debug tree dump to stderr."""

from __future__ import annotations

import sys
from typing import TextIO

from rbfmt.ast import Comment, Node


def dump_tree(root: Node, *, file: TextIO = sys.stderr) -> None:
    """Print a human-readable syntax tree to *file*."""
    _dump_node(root, 0, file)


def _indent(depth: int) -> str:
    return "  " * depth


def _lines(node: Node) -> str:
    span = node.span
    if span.start_line == span.end_line:
        return f"{span.start_line}"
    return f"{span.start_line}-{span.end_line}"


def _dump_node(node: Node, depth: int, f: TextIO) -> None:
    marker = "?" if node.is_unknown else ""
    f.write(f"{_indent(depth)}{marker}{node.kind_name} [{_lines(node)}]")
    if node.metadata:
        pairs = " ".join(f"{k}={v!r}" for k, v in sorted(node.metadata.items()))
        f.write(f" {pairs}")
    f.write("\n")
    for comment in node.comments:
        _dump_comment(comment, depth + 1, f)
    for child in node.children:
        _dump_node(child, depth + 1, f)


def _dump_comment(comment: Comment, depth: int, f: TextIO) -> None:
    text = comment.text.rstrip("\r\n")
    if "\n" in text:
        text = text.split("\n", 1)[0] + " ..."
    f.write(
        f"{_indent(depth)}Comment {comment.type.value} {comment.position.value}"
        f" [{comment.span.start_line}] {text!r}\n"
    )
