"""Shared test fixtures and helpers."""

from __future__ import annotations

import json
from bisect import bisect_right

import pytest

from rbfmt.ast import Comment, CommentType, Node, NodeKind, parse_kind
from rbfmt.emitter import emit
from rbfmt.span import Span
from rbfmt.style import Style


class TreeBuilder:
    """Builds front-end-shaped trees over a fixed Ruby source.

    Nodes are located by searching the source for their text, so tests can
    describe a tree without spelling out byte offsets by hand.
    """

    def __init__(self, source: str) -> None:
        self.source = source
        self.data = source.encode("utf-8")
        starts = [0]
        for i, byte in enumerate(self.data):
            if byte == 0x0A:
                starts.append(i + 1)
        self._starts = starts

    def offset(self, text: str, nth: int = 0) -> int:
        """Byte offset of the *nth* occurrence of *text*."""
        needle = text.encode("utf-8")
        pos = -1
        for _ in range(nth + 1):
            pos = self.data.find(needle, pos + 1)
            assert pos != -1, f"{text!r} (occurrence {nth}) not in source"
        return pos

    def span(self, start: int, end: int) -> Span:
        start_line = bisect_right(self._starts, start)
        end_line = bisect_right(self._starts, end)
        return Span(
            start_line,
            start - self._starts[start_line - 1],
            end_line,
            end - self._starts[end_line - 1],
            start,
            end,
        )

    def node(
        self,
        kind: str,
        text: str,
        *children: Node,
        nth: int = 0,
        to: str | None = None,
        last: bool = False,
        **metadata: str,
    ) -> Node:
        """A node starting at *text*.

        Without *to* the node covers exactly *text*.  With *to* it extends
        to the end of the next occurrence of *to*, or of the final one in
        the source when *last* is set.
        """
        start = self.offset(text, nth)
        if to is None:
            end = start + len(text.encode("utf-8"))
        else:
            needle = to.encode("utf-8")
            if last:
                found = self.data.rfind(needle)
            else:
                found = self.data.find(needle, start + len(text.encode("utf-8")))
            assert found >= start, f"{to!r} not found after {text!r}"
            end = found + len(needle)
        return Node(parse_kind(kind), self.span(start, end), children, dict(metadata))

    def wrap(self, kind: str, *children: Node, **metadata: str) -> Node:
        """A node spanning from its first child to its last."""
        start = children[0].span.start_offset
        end = children[-1].span.end_offset
        return Node(parse_kind(kind), self.span(start, end), children, dict(metadata))

    def at(
        self, kind: str, start: int, end: int, *children: Node, line: int = 1, **metadata: str
    ) -> Node:
        """A node with explicit byte offsets; they are not checked against the source."""
        span = Span(line, start, line, end, start, end)
        return Node(parse_kind(kind), span, children, dict(metadata))

    def comments(self) -> tuple[Comment, ...]:
        """Every ``#`` and ``=begin``/``=end`` comment in the source.

        Sources used with this helper must not contain ``#`` inside strings.
        """
        found: list[Comment] = []
        lines = self.data.split(b"\n")
        block_start: int | None = None
        for i, line in enumerate(lines):
            line_start = self._starts[i]
            if block_start is not None:
                if line.startswith(b"=end"):
                    end = line_start + len(line.rstrip(b"\r"))
                    text = self.data[block_start:end].decode("utf-8")
                    found.append(Comment(text, self.span(block_start, end), CommentType.BLOCK))
                    block_start = None
                continue
            if line.startswith(b"=begin"):
                block_start = line_start
                continue
            hash_pos = line.find(b"#")
            if hash_pos != -1:
                start = line_start + hash_pos
                end = line_start + len(line.rstrip(b"\r"))
                text = self.data[start:end].decode("utf-8")
                found.append(Comment(text, self.span(start, end)))
        return tuple(found)

    def program(self, *children: Node, scan_comments: bool = True) -> Node:
        """The root node, carrying every comment in the source."""
        if children:
            span = self.span(children[0].span.start_offset, children[-1].span.end_offset)
        else:
            span = self.span(0, 0)
        comments = self.comments() if scan_comments else ()
        return Node(NodeKind.PROGRAM, span, children, comments=comments)

    def format(self, root: Node, style: Style | None = None) -> str:
        return emit(root, self.source, style)


@pytest.fixture
def ruby():
    """Return a factory building a TreeBuilder over a Ruby source string."""

    def _ruby(source: str) -> TreeBuilder:
        return TreeBuilder(source)

    return _ruby


def _span_dict(span: Span) -> dict:
    return {
        "start_line": span.start_line,
        "start_column": span.start_column,
        "end_line": span.end_line,
        "end_column": span.end_column,
        "start_offset": span.start_offset,
        "end_offset": span.end_offset,
    }


def node_dict(node: Node) -> dict:
    """The front end's JSON shape for *node* (comments stay on their node)."""
    return {
        "node_type": node.kind_name,
        "location": _span_dict(node.span),
        "children": [node_dict(c) for c in node.children],
        "metadata": dict(node.metadata),
        "comments": [
            {
                "text": c.text,
                "location": _span_dict(c.span),
                "type": c.type.value,
                "position": c.position.value,
            }
            for c in node.comments
        ],
    }


@pytest.fixture
def serialize():
    """Return a helper turning a Node into a front-end JSON payload string."""

    def _serialize(node: Node) -> str:
        return json.dumps({"ast": node_dict(node), "comments": []})

    return _serialize
