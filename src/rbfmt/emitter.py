"""Emitter: regenerates formatted Ruby source from a tree and its source text.

Structural constructs (definitions, conditionals, loops, calls with blocks,
begin/rescue/ensure) are rebuilt with normalized indentation; everything
else is copied verbatim from the original source bytes.  Comments are
re-attached as the walk passes their lines.

Every ``_emit_*`` method starts writing at the beginning of a line and
leaves the buffer without a trailing newline.
"""

from __future__ import annotations

import logging
import re
from bisect import bisect_right
from collections.abc import Callable, Sequence

from rbfmt.ast import (
    DECLARATION_KINDS,
    PARAMETER_KINDS,
    Comment,
    CommentType,
    Kind,
    Node,
    NodeKind,
    collect_comments,
)
from rbfmt.comments import CommentIndex
from rbfmt.style import Style

log = logging.getLogger(__name__)

_BODY_KINDS = frozenset({NodeKind.STATEMENTS, NodeKind.BEGIN})
_CLAUSE_KINDS = frozenset({NodeKind.WHEN, NodeKind.IN, NodeKind.ELSE})
_WORD_BYTES = frozenset(b"abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_")

_HEREDOC_OPENER = re.compile(rb"<<([~-]?)([\"'`]?)([A-Za-z_][A-Za-z0-9_]*)\2")

_STRUCTURAL_KINDS = frozenset(
    {
        NodeKind.PROGRAM,
        NodeKind.STATEMENTS,
        NodeKind.CLASS,
        NodeKind.MODULE,
        NodeKind.SINGLETON_CLASS,
        NodeKind.DEF,
        NodeKind.IF,
        NodeKind.UNLESS,
        NodeKind.CASE,
        NodeKind.WHEN,
        NodeKind.CASE_MATCH,
        NodeKind.IN,
        NodeKind.WHILE,
        NodeKind.UNTIL,
        NodeKind.FOR,
        NodeKind.CALL,
        NodeKind.SUPER,
        NodeKind.FORWARDING_SUPER,
        NodeKind.BEGIN,
        NodeKind.RESCUE,
        NodeKind.ENSURE,
        NodeKind.LAMBDA,
    }
)


def has_structural_rule(kind: Kind) -> bool:
    """Return True if *kind* is rebuilt structurally rather than copied verbatim."""
    return kind in _STRUCTURAL_KINDS


def emit(
    root: Node,
    source: str | bytes,
    style: Style | None = None,
    logger: logging.Logger | None = None,
) -> str:
    """Format *root* against *source*. See :class:`Emitter`."""
    return Emitter(style or Style(), source, logger).emit(root)


def _first(children: Sequence[Node], *kinds: NodeKind) -> Node | None:
    for child in children:
        if child.kind in kinds:
            return child
    return None


def _extent(node: Node) -> tuple[int, int]:
    return node.span.start_offset, node.span.end_offset


def _chain_predicates(node: Node) -> list[Node]:
    """Predicates of an if/elsif chain, outermost first."""
    predicates = []
    current: Node | None = node
    while current is not None and current.kind in (NodeKind.IF, NodeKind.UNLESS):
        if not current.children:
            break
        predicates.append(current.children[0])
        current = _first(current.children[1:], NodeKind.IF, NodeKind.ELSE)
    return predicates


def _ends_with_end_keyword(text: bytes) -> bool:
    text = text.rstrip()
    if not text.endswith(b"end"):
        return False
    if len(text) == 3:
        return True
    # `.end`, `@end`, `append` and friends are not the keyword
    return text[-4] not in _WORD_BYTES and text[-4:-3] not in b".@$:"


class Emitter:
    """Single-pass tree-to-text emitter.

    One instance formats one input at a time; ``emit`` resets all state, so
    an instance may be reused sequentially but never shared across threads.
    """

    def __init__(
        self,
        style: Style,
        source: str | bytes,
        logger: logging.Logger | None = None,
    ) -> None:
        self.style = style
        self.source = source.encode("utf-8") if isinstance(source, str) else source
        self.log = logger if logger is not None else log

        starts = [0]
        pos = self.source.find(b"\n")
        while pos != -1:
            starts.append(pos + 1)
            pos = self.source.find(b"\n", pos + 1)
        self._line_starts = starts

        self._indents: list[str] = []
        self._parts: list[str] = []
        self._tail = ""
        self._last_line = 0
        self._comments = CommentIndex(())

        self._rules: dict[Kind, Callable[[Node, int], None]] = {
            NodeKind.PROGRAM: self._emit_sequence_node,
            NodeKind.STATEMENTS: self._emit_sequence_node,
            NodeKind.CLASS: self._emit_class,
            NodeKind.MODULE: self._emit_module,
            NodeKind.SINGLETON_CLASS: self._emit_singleton_class,
            NodeKind.DEF: self._emit_def,
            NodeKind.IF: self._emit_if,
            NodeKind.UNLESS: self._emit_if,
            NodeKind.CASE: self._emit_case,
            NodeKind.CASE_MATCH: self._emit_case,
            NodeKind.WHEN: self._emit_pattern_clause,
            NodeKind.IN: self._emit_pattern_clause,
            NodeKind.WHILE: self._emit_loop,
            NodeKind.UNTIL: self._emit_loop,
            NodeKind.FOR: self._emit_for,
            NodeKind.CALL: self._emit_call,
            NodeKind.SUPER: self._emit_call,
            NodeKind.FORWARDING_SUPER: self._emit_call,
            NodeKind.BEGIN: self._emit_begin,
            NodeKind.RESCUE: self._emit_rescue_node,
            NodeKind.ENSURE: self._emit_ensure_node,
            NodeKind.LAMBDA: self._emit_lambda,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def emit(self, root: Node) -> str:
        """Return the formatted text for *root*, ending in exactly one newline."""
        self._parts = []
        self._tail = ""
        self._last_line = 0
        self._comments = CommentIndex(collect_comments(root))

        self._emit_node(root, 0)
        self._flush_remaining(max(root.last_line(), self._last_line))

        return "".join(self._parts).rstrip("\n") + "\n"

    def _emit_node(self, node: Node, level: int) -> None:
        rule = self._rules.get(node.kind)
        if rule is None or not node.span.is_ordered():
            self._emit_verbatim(node, level)
        else:
            rule(node, level)

    # ------------------------------------------------------------------
    # Output buffer
    # ------------------------------------------------------------------

    def _write(self, text: str) -> None:
        if text:
            self._parts.append(text)
            self._tail = (self._tail + text)[-2:]

    def _ensure_newline(self) -> None:
        if self._parts and not self._tail.endswith("\n"):
            self._write("\n")

    def _ensure_blank_line(self) -> None:
        if not self._parts:
            return
        self._ensure_newline()
        if self._tail != "\n\n":
            self._write("\n")

    def _indent(self, level: int) -> str:
        while len(self._indents) <= level:
            self._indents.append(self.style.indent_for(len(self._indents)))
        return self._indents[level]

    def _write_line(self, level: int, text: str) -> None:
        self._write(self._indent(level) + text)

    # ------------------------------------------------------------------
    # Source access
    # ------------------------------------------------------------------

    def _line_at(self, offset: int) -> int:
        return bisect_right(self._line_starts, offset)

    def _slice(self, start: int, end: int) -> str | None:
        """Decode source bytes [start, end), or None if the range is unusable."""
        if not 0 <= start <= end <= len(self.source):
            self.log.warning(
                "skipping fragment: span %d..%d is outside the source (%d bytes)",
                start,
                end,
                len(self.source),
            )
            return None
        try:
            return self.source[start:end].decode("utf-8")
        except UnicodeDecodeError:
            self.log.warning(
                "skipping fragment: span %d..%d does not fall on UTF-8 boundaries",
                start,
                end,
            )
            return None

    def _take(self, start: int, end: int) -> str | None:
        """Slice the source and mark every comment inside the slice as emitted."""
        text = self._slice(start, end)
        if text is None:
            return None
        first, last = self._line_at(start), self._line_at(end)
        for pos in self._comments.in_range(first, last + 1):
            span = self._comments.comment(pos).span
            if start <= span.start_offset and span.end_offset <= end:
                self._comments.mark_emitted(pos)
        self._last_line = max(self._last_line, last)
        return text

    def _take_node(self, node: Node) -> str | None:
        return self._take(node.span.start_offset, node.span.end_offset)

    def _heredoc_end(self, start: int, end: int) -> int:
        """Extend *end* past the bodies of heredocs opened on the slice's last line."""
        src = self.source
        if not 0 <= start <= end <= len(src):
            return end
        line_start = src.rfind(b"\n", start, end) + 1 or start
        openers = list(_HEREDOC_OPENER.finditer(src, line_start, end))
        if not openers:
            return end

        newline = src.find(b"\n", end)
        result = end
        for match in openers:
            squiggly = match.group(1) != b""
            ident = match.group(3)
            while True:
                if newline == -1:
                    return end
                line_end = src.find(b"\n", newline + 1)
                if line_end == -1:
                    line_end = len(src)
                line = src[newline + 1 : line_end].rstrip(b"\r")
                newline = line_end if line_end < len(src) else -1
                if (line.strip() if squiggly else line) == ident:
                    result = line_end - (1 if src[line_end - 1 : line_end] == b"\r" else 0)
                    break
        return result

    def _opens_heredoc(self, *ranges: tuple[int, int]) -> bool:
        """True if a heredoc opened in one of *ranges* has its body past that range.

        Header text is sliced piece by piece, so such a body would fall
        outside every slice; callers copy the whole construct instead.
        """
        return any(self._heredoc_end(start, end) > end for start, end in ranges)

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def _write_comment_line(self, comment: Comment, level: int) -> None:
        text = comment.text.rstrip("\r\n")
        if comment.type is CommentType.BLOCK:
            self._write(text + "\n")
        else:
            self._write(self._indent(level) + text + "\n")

    def _flush_leading(self, line: int, level: int) -> None:
        """Write every pending comment that ends before *line* as its own line."""
        positions = self._comments.before(line)
        if not positions:
            return
        self._ensure_newline()
        prev_end: int | None = None
        for pos in positions:
            comment = self._comments.comment(pos)
            if prev_end is not None and comment.span.start_line - prev_end > 1:
                self._write("\n")
            self._write_comment_line(comment, level)
            self._comments.mark_emitted(pos)
            prev_end = comment.span.end_line
        if prev_end is not None and line > prev_end + 1:
            self._write("\n")

    def _flush_trailing(self, line: int) -> None:
        for pos in self._comments.on(line):
            comment = self._comments.comment(pos)
            if comment.type is CommentType.BLOCK:
                continue
            self._write(" " + comment.text.rstrip("\r\n"))
            self._comments.mark_emitted(pos)

    def _is_standalone(self, comment: Comment) -> bool:
        src = self.source
        offset = comment.span.start_offset
        if offset < len(src) and src[offset : offset + 1] in (b"#", b"="):
            line_start = src.rfind(b"\n", 0, offset) + 1
            return not src[line_start:offset].strip()

        # Offsets disagree with the source; locate the marker on the line.
        line_no = comment.span.start_line
        if not 0 < line_no <= len(self._line_starts):
            return False
        line_start = self._line_starts[line_no - 1]
        line_end = src.find(b"\n", line_start)
        physical = src[line_start : line_end if line_end != -1 else len(src)]
        hash_pos = physical.find(b"#")
        if hash_pos == -1:
            return False
        rest = physical[hash_pos:].rstrip().decode("utf-8", errors="replace")
        return not physical[:hash_pos].strip() and rest == comment.text.rstrip()

    def _flush_before_closer(self, node: Node, level: int, after_line: int | None) -> None:
        """Write standalone comments between a construct's body and its closer."""
        start, end = node.span.start_line, node.span.end_line
        positions = [
            pos
            for pos in self._comments.in_range(start + 1, end)
            if self._is_standalone(self._comments.comment(pos))
        ]
        if not positions:
            return
        self._ensure_newline()
        prev_end = after_line
        for pos in positions:
            comment = self._comments.comment(pos)
            if prev_end is not None and comment.span.start_line - prev_end > 1:
                self._write("\n")
            self._write_comment_line(comment, level)
            self._comments.mark_emitted(pos)
            prev_end = comment.span.end_line

    def _flush_remaining(self, last_code_line: int) -> None:
        prev_end = last_code_line
        for pos in self._comments.remaining():
            comment = self._comments.comment(pos)
            if self._parts:
                self._ensure_newline()
                if comment.span.start_line - prev_end > 1:
                    self._ensure_blank_line()
            self._write(comment.text.rstrip("\r\n") + "\n")
            self._comments.mark_emitted(pos)
            prev_end = comment.span.end_line

    def _close(self, node: Node, level: int, after_line: int | None, closer: str = "end") -> None:
        self._flush_before_closer(node, level + 1, after_line)
        self._ensure_newline()
        self._write_line(level, closer)
        self._flush_trailing(node.span.end_line)

    # ------------------------------------------------------------------
    # Verbatim
    # ------------------------------------------------------------------

    def _emit_verbatim(self, node: Node, level: int, *, leading: bool = True) -> None:
        if leading:
            self._flush_leading(node.span.start_line, level)
        if has_structural_rule(node.kind):
            self.log.debug("copying %s at line %d verbatim", node.kind_name, node.span.start_line)
        start = node.span.start_offset
        end = self._heredoc_end(start, node.span.end_offset)
        text = self._take(start, end)
        if text is None:
            return
        self._write_line(level, text)
        self._flush_trailing(node.span.end_line)

    def _emit_lambda(self, node: Node, level: int) -> None:
        self._emit_verbatim(node, level)

    # ------------------------------------------------------------------
    # Sequences
    # ------------------------------------------------------------------

    def _emit_sequence_node(self, node: Node, level: int) -> None:
        self._emit_sequence(node.children, level)

    def _emit_sequence(self, children: Sequence[Node], level: int) -> None:
        prev: Node | None = None
        for child in children:
            if prev is not None:
                self._separate(prev, child)
            self._emit_node(child, level)
            prev = child

    def _separate(self, prev: Node, nxt: Node) -> None:
        """Newline between siblings, plus one blank line if the source had any."""
        self._ensure_newline()
        current_end = max(prev.span.end_line, self._last_line)
        next_start = nxt.span.start_line
        comment_line = self._comments.first_line_between(current_end + 1, next_start)
        target = comment_line if comment_line is not None else next_start
        if target - current_end > 1:
            self._ensure_blank_line()

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def _body_children(self, node: Node, skip: Sequence[Node] = ()) -> list[Node]:
        header_line = node.span.start_line
        body = []
        for child in node.children:
            if child.kind in DECLARATION_KINDS or any(child is s for s in skip):
                continue
            if child.kind not in _BODY_KINDS and child.span.start_line == header_line:
                continue
            body.append(child)
        return body

    def _emit_definition(
        self,
        node: Node,
        level: int,
        header: str,
        body: Sequence[Node],
        header_line: int | None = None,
    ) -> None:
        self._flush_leading(node.span.start_line, level)
        self._write_line(level, header)
        self._flush_trailing(node.span.start_line)
        if header_line is not None and header_line != node.span.start_line:
            self._flush_trailing(header_line)
        self._write("\n")

        self._emit_sequence(body, level + 1)
        after_line = body[-1].span.end_line if body else None
        self._close(node, level, after_line)

    def _emit_class(self, node: Node, level: int) -> None:
        name = node.metadata.get("name")
        if name is None or not node.is_multiline:
            self._emit_verbatim(node, level)
            return

        header = f"class {name}"
        skip: list[Node] = []
        superclass = node.metadata.get("superclass")
        if superclass is not None:
            header += f" < {superclass}"
            if len(node.children) > 1 and node.children[1].kind not in _BODY_KINDS:
                skip.append(node.children[1])
        self._emit_definition(node, level, header, self._body_children(node, skip))

    def _emit_module(self, node: Node, level: int) -> None:
        name = node.metadata.get("name")
        if name is None or not node.is_multiline:
            self._emit_verbatim(node, level)
            return
        self._emit_definition(node, level, f"module {name}", self._body_children(node))

    def _emit_singleton_class(self, node: Node, level: int) -> None:
        if not node.is_multiline or not node.children:
            self._emit_verbatim(node, level)
            return
        target = node.children[0]
        text = self._slice(target.span.start_offset, target.span.end_offset)
        if text is None:
            self._emit_verbatim(node, level)
            return
        self._take_node(target)
        body = [c for c in node.children[1:] if c.kind not in DECLARATION_KINDS]
        self._emit_definition(node, level, f"class << {text}", body)

    def _emit_def(self, node: Node, level: int) -> None:
        name = node.metadata.get("name")
        span = node.span
        if (
            name is None
            or not node.is_multiline
            or not _ends_with_end_keyword(self.source[span.start_offset : span.end_offset])
        ):
            # one-liners and endless definitions keep their shape
            self._emit_verbatim(node, level)
            return
        if self._opens_heredoc(
            *(_extent(c) for c in node.children if c.kind in DECLARATION_KINDS)
        ):
            self._emit_verbatim(node, level)
            return

        header = "def "
        receiver = node.metadata.get("receiver")
        if receiver:
            header += f"{receiver}."
        header += name

        params, header_line = self._def_parameters(node)
        header += params
        self._emit_definition(node, level, header, self._body_children(node), header_line)

    def _def_parameters(self, node: Node) -> tuple[str, int]:
        """Return the parameter list text and the line the declaration ends on."""
        start_line = node.span.start_line
        text = node.metadata.get("parameters_text")
        if text is not None:
            if not text:
                return "", start_line
            if node.metadata.get("has_parens") == "true":
                return f"({text})", start_line
            return f" {text}", start_line

        params = [
            c for c in node.children if c.kind in PARAMETER_KINDS or c.kind is NodeKind.PARAMETERS
        ]
        if not params:
            return "", start_line
        start = min(p.span.start_offset for p in params)
        end = max(p.span.end_offset for p in params)

        before = self.source[node.span.start_offset : start].rstrip()
        if not before.endswith(b"("):
            sliced = self._take(start, end)
            if sliced is None:
                return "", start_line
            return f" {sliced}", self._line_at(end)

        opening = node.span.start_offset + len(before) - 1
        close = self._closing_paren(end, node.span.end_offset)
        if close != -1 and self._line_at(opening) != self._line_at(close):
            # multi-line lists keep their layout, comments included
            text = self._take(opening, close + 1)
            if text is not None:
                return text, self._line_at(close)
        sliced = self._take(start, end)
        if sliced is None:
            return "", start_line
        return f"({sliced})", self._line_at(close if close != -1 else end)

    def _closing_paren(self, pos: int, limit: int) -> int:
        """Offset of the ``)`` at or after *pos*, past blanks and comments; -1 if none."""
        src = self.source
        limit = min(limit, len(src))
        while pos < limit:
            byte = src[pos : pos + 1]
            if byte == b")":
                return pos
            if byte == b"#":
                newline = src.find(b"\n", pos, limit)
                if newline == -1:
                    return -1
                pos = newline
            elif byte not in (b" ", b"\t", b"\r", b"\n", b","):
                return -1
            pos += 1
        return -1

    # ------------------------------------------------------------------
    # Conditionals
    # ------------------------------------------------------------------

    def _emit_if(self, node: Node, level: int) -> None:
        keyword = "unless" if node.kind is NodeKind.UNLESS else "if"
        if not node.children:
            self._emit_verbatim(node, level)
            return

        predicate = node.children[0]
        rest = node.children[1:]
        statements = _first(rest, NodeKind.STATEMENTS)
        consequent = _first(rest, NodeKind.IF, NodeKind.ELSE)

        if statements is not None and statements.span.start_offset < predicate.span.start_offset:
            self._emit_modifier(node, level, keyword, predicate, statements)
            return
        if node.metadata.get("is_ternary") == "true":
            self._emit_ternary(node, level, predicate, statements, consequent)
            return
        if not node.is_multiline:
            if consequent is None and statements is not None:
                self._emit_inline_then(node, level, keyword, predicate, statements)
            else:
                self._emit_verbatim(node, level)
            return
        if self._opens_heredoc(*(_extent(p) for p in _chain_predicates(node))):
            self._emit_verbatim(node, level)
            return

        self._flush_leading(node.span.start_line, level)
        last = self._emit_conditional_clauses(node, level, keyword + " ")
        self._close(node, level, last)

    def _emit_conditional_clauses(self, node: Node, level: int, keyword: str) -> int | None:
        """Write an if/elsif chain without its ``end``; return the last body line."""
        predicate = node.children[0]
        rest = node.children[1:]
        statements = _first(rest, NodeKind.STATEMENTS)
        consequent = _first(rest, NodeKind.IF, NodeKind.ELSE)

        condition = self._take_node(predicate) or ""
        self._write_line(level, (keyword + condition).rstrip())
        self._flush_trailing(predicate.span.end_line)
        self._write("\n")

        last: int | None = None
        if statements is not None:
            self._emit_node(statements, level + 1)
            last = statements.span.end_line

        if consequent is None:
            return last
        self._ensure_newline()
        if consequent.kind is NodeKind.IF and consequent.children:
            self._flush_leading(consequent.span.start_line, level + 1)
            return self._emit_conditional_clauses(consequent, level, "elsif ")
        return self._emit_clause(consequent, "else", level, level + 1, level + 1) or last

    def _emit_modifier(
        self, node: Node, level: int, keyword: str, predicate: Node, statements: Node
    ) -> None:
        self._flush_leading(node.span.start_line, level)
        body = self._slice(statements.span.start_offset, statements.span.end_offset)
        condition = self._slice(predicate.span.start_offset, predicate.span.end_offset)
        if (
            body is None
            or condition is None
            or self._opens_heredoc(_extent(node), _extent(statements), _extent(predicate))
        ):
            self._emit_verbatim(node, level, leading=False)
            return
        self._take_node(statements)
        self._take_node(predicate)
        self._write_line(level, f"{body.strip()} {keyword} {condition}")
        self._flush_trailing(node.span.end_line)

    def _emit_ternary(
        self,
        node: Node,
        level: int,
        predicate: Node,
        statements: Node | None,
        consequent: Node | None,
    ) -> None:
        alternative = None
        if consequent is not None and consequent.kind is NodeKind.ELSE:
            alternative = _first(consequent.children, NodeKind.STATEMENTS)
        if statements is None or alternative is None:
            self._emit_verbatim(node, level)
            return

        self._flush_leading(node.span.start_line, level)
        nodes = (predicate, statements, alternative)
        parts = [self._slice(n.span.start_offset, n.span.end_offset) for n in nodes]
        if any(p is None for p in parts) or self._opens_heredoc(
            _extent(node), *(_extent(n) for n in nodes)
        ):
            self._emit_verbatim(node, level, leading=False)
            return
        for n in nodes:
            self._take_node(n)
        condition, then, otherwise = (p.strip() for p in parts if p is not None)
        self._write_line(level, f"{condition} ? {then} : {otherwise}")
        self._flush_trailing(node.span.end_line)

    def _emit_inline_then(
        self, node: Node, level: int, keyword: str, predicate: Node, statements: Node
    ) -> None:
        self._flush_leading(node.span.start_line, level)
        condition = self._slice(predicate.span.start_offset, predicate.span.end_offset)
        body = self._slice(statements.span.start_offset, statements.span.end_offset)
        if (
            condition is None
            or body is None
            or self._opens_heredoc(_extent(node), _extent(predicate), _extent(statements))
        ):
            self._emit_verbatim(node, level, leading=False)
            return
        self._take_node(predicate)
        self._take_node(statements)
        self._write_line(level, f"{keyword} {condition} then {body.strip()} end")
        self._flush_trailing(node.span.end_line)

    def _emit_clause(
        self,
        node: Node,
        keyword: str,
        keyword_level: int,
        body_level: int,
        comment_level: int,
    ) -> int | None:
        """Write ``keyword`` and the clause's statements; return the last body line."""
        self._flush_leading(node.span.start_line, comment_level)
        self._write_line(keyword_level, keyword)
        self._flush_trailing(node.span.start_line)
        statements = _first(node.children, NodeKind.STATEMENTS)
        if statements is None:
            return None
        self._write("\n")
        self._emit_node(statements, body_level)
        return statements.span.end_line

    # ------------------------------------------------------------------
    # case / when, case / in
    # ------------------------------------------------------------------

    def _emit_case(self, node: Node, level: int) -> None:
        if not node.is_multiline:
            self._emit_verbatim(node, level)
            return
        headers = []
        for i, child in enumerate(node.children):
            if child.kind in (NodeKind.WHEN, NodeKind.IN):
                headers.extend(self._pattern_header_ranges(child))
            elif i == 0 and child.kind not in _CLAUSE_KINDS:
                headers.append(_extent(child))
        if self._opens_heredoc(*headers):
            self._emit_verbatim(node, level)
            return

        self._flush_leading(node.span.start_line, level)
        header = "case"
        header_line = node.span.start_line
        clauses = list(node.children)
        if clauses and clauses[0].kind not in _CLAUSE_KINDS:
            predicate = clauses.pop(0)
            text = self._take_node(predicate)
            if text is not None:
                header += f" {text}"
            header_line = predicate.span.end_line
        self._write_line(level, header)
        self._flush_trailing(header_line)

        last: int | None = None
        for clause in clauses:
            self._ensure_newline()
            if clause.kind is NodeKind.ELSE:
                last = self._emit_clause(clause, "else", level, level + 1, level) or last
            elif clause.kind in (NodeKind.WHEN, NodeKind.IN):
                last = self._emit_pattern_clause_lines(clause, level)
            else:
                self._emit_node(clause, level + 1)
                last = clause.span.end_line
        self._close(node, level, last)

    def _emit_pattern_clause(self, node: Node, level: int) -> None:
        if self._opens_heredoc(*self._pattern_header_ranges(node)):
            self._emit_verbatim(node, level)
            return
        self._emit_pattern_clause_lines(node, level)

    @staticmethod
    def _pattern_conditions(node: Node) -> list[Node]:
        conditions = [c for c in node.children if c.kind is not NodeKind.STATEMENTS]
        if node.kind is NodeKind.IN:
            return conditions[:1]
        return conditions

    def _pattern_header_ranges(self, node: Node) -> list[tuple[int, int]]:
        if not node.is_multiline:
            return [_extent(node)]
        return [_extent(c) for c in self._pattern_conditions(node)]

    def _emit_pattern_clause_lines(self, node: Node, level: int) -> int:
        keyword = "in" if node.kind is NodeKind.IN else "when"
        statements = _first(node.children, NodeKind.STATEMENTS)
        conditions = self._pattern_conditions(node)

        self._flush_leading(node.span.start_line, level)
        header = keyword
        if conditions and conditions[0].span.start_line != conditions[-1].span.end_line:
            # conditions split over lines keep their layout, comments included
            text = self._take(conditions[0].span.start_offset, conditions[-1].span.end_offset)
            joined = text.strip() if text is not None else ""
        else:
            texts = [self._take_node(c) for c in conditions]
            joined = ", ".join(t for t in texts if t is not None)
        if joined:
            header += f" {joined}"

        if not node.is_multiline:
            if statements is not None:
                body = self._take_node(statements)
                if body is not None:
                    header += f" then {body.strip()}"
            self._write_line(level, header)
            self._flush_trailing(node.span.end_line)
            return node.span.end_line

        header_line = conditions[-1].span.end_line if conditions else node.span.start_line
        self._write_line(level, header)
        self._flush_trailing(header_line)
        if statements is None:
            return header_line
        self._write("\n")
        self._emit_node(statements, level + 1)
        return statements.span.end_line

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _emit_loop(self, node: Node, level: int) -> None:
        keyword = "until" if node.kind is NodeKind.UNTIL else "while"
        if not node.children or not node.is_multiline:
            self._emit_verbatim(node, level)
            return
        predicate = node.children[0]
        body = _first(node.children[1:], NodeKind.STATEMENTS)
        if (
            body is not None and body.span.start_offset < predicate.span.start_offset
        ) or self._opens_heredoc(_extent(predicate)):
            # modifier form (including begin ... end while) or heredoc predicate
            self._emit_verbatim(node, level)
            return

        self._flush_leading(node.span.start_line, level)
        condition = self._take_node(predicate) or ""
        self._write_line(level, f"{keyword} {condition}")
        self._flush_trailing(predicate.span.end_line)
        self._write("\n")
        if body is not None:
            self._emit_node(body, level + 1)
        self._close(node, level, body.span.end_line if body is not None else None)

    def _emit_for(self, node: Node, level: int) -> None:
        if len(node.children) < 2 or not node.is_multiline:
            self._emit_verbatim(node, level)
            return
        index, collection = node.children[0], node.children[1]
        body = _first(node.children[2:], NodeKind.STATEMENTS)
        if self._opens_heredoc(_extent(collection)):
            self._emit_verbatim(node, level)
            return

        self._flush_leading(node.span.start_line, level)
        index_text = self._take_node(index) or ""
        collection_text = self._take_node(collection) or ""
        self._write_line(level, f"for {index_text} in {collection_text}")
        self._flush_trailing(collection.span.end_line)
        self._write("\n")
        if body is not None:
            self._emit_node(body, level + 1)
        self._close(node, level, body.span.end_line if body is not None else None)

    # ------------------------------------------------------------------
    # Calls and blocks
    # ------------------------------------------------------------------

    def _is_brace_block(self, block: Node) -> bool:
        src = self.source
        i = block.span.start_offset
        while i < len(src) and src[i] in b" \t\r\n":
            i += 1
        return src[i : i + 1] == b"{"

    def _emit_call(self, node: Node, level: int) -> None:
        self._flush_leading(node.span.start_line, level)
        block = node.children[-1] if node.children else None
        if block is None or block.kind is not NodeKind.BLOCK:
            self._emit_verbatim(node, level, leading=False)
            return

        head = self._slice(node.span.start_offset, block.span.start_offset)
        if head is None or self._slice(block.span.start_offset, block.span.end_offset) is None:
            self._emit_verbatim(node, level, leading=False)
            return
        headers = [(node.span.start_offset, block.span.start_offset)]
        if not block.is_multiline:
            headers.append(_extent(block))
        if self._opens_heredoc(*headers):
            self._emit_verbatim(node, level, leading=False)
            return
        self._take(node.span.start_offset, block.span.start_offset)
        self._write_line(level, head.rstrip())

        if not block.is_multiline:
            text = self._take_node(block) or ""
            self._write(f" {text}")
            self._flush_trailing(block.span.end_line)
            return

        brace = self._is_brace_block(block)
        self._write(" {" if brace else " do")
        header_line = block.span.start_line
        params = self._block_parameters(block)
        if params is not None:
            self._write(f" {params}")
            header_line += params.count("\n")
        self._flush_trailing(block.span.start_line)
        if header_line != block.span.start_line:
            self._flush_trailing(header_line)
        self._write("\n")

        body = _first(block.children, NodeKind.STATEMENTS, NodeKind.BEGIN)
        if body is not None:
            self._emit_node(body, level + 1)
        body_end = body.span.end_line if body is not None else None
        self._close(block, level, body_end, "}" if brace else "end")

    def _block_parameters(self, block: Node) -> str | None:
        """The ``|...|`` parameter list opened on the block's first line, if any."""
        src = self.source
        start, end = block.span.start_offset, block.span.end_offset
        line_end = src.find(b"\n", start, end)
        if line_end == -1:
            line_end = end
        opening = src.find(b"|", start, line_end)
        if opening == -1:
            return None
        if src[start:opening].strip() not in (b"do", b"{"):
            return None
        closing = src.find(b"|", opening + 1, end)
        if closing == -1:
            return None
        return self._take(opening, closing + 1)

    # ------------------------------------------------------------------
    # begin / rescue / ensure
    # ------------------------------------------------------------------

    def _is_explicit_begin(self, node: Node) -> bool:
        start = node.span.start_offset
        if node.children and node.children[0].span.start_offset == start:
            # implicit bodies start at their first statement, which may be a begin
            return False
        if not self.source.startswith(b"begin", start):
            return False
        follow = self.source[start + 5 : start + 6]
        return not follow or follow[0] not in _WORD_BYTES

    def _emit_begin(self, node: Node, level: int) -> None:
        if not self._is_explicit_begin(node):
            # implicit body of a def or block: clauses outdent one level
            self._emit_begin_clauses(node, level)
            return
        if not node.is_multiline:
            self._emit_verbatim(node, level)
            return

        self._flush_leading(node.span.start_line, level)
        self._write_line(level, "begin")
        self._flush_trailing(node.span.start_line)
        self._write("\n")
        last = self._emit_begin_clauses(node, level + 1)
        self._close(node, level, last)

    def _emit_begin_clauses(self, node: Node, level: int) -> int | None:
        keyword_level = max(level - 1, 0)
        last: int | None = None
        for i, child in enumerate(node.children):
            if i:
                self._ensure_newline()
            if child.kind is NodeKind.RESCUE:
                last = self._emit_rescue(child, level)
            elif child.kind is NodeKind.ELSE:
                last = self._emit_clause(child, "else", keyword_level, level, level) or last
            elif child.kind is NodeKind.ENSURE:
                last = self._emit_clause(child, "ensure", keyword_level, level, level) or last
            else:
                self._emit_node(child, level)
                last = child.span.end_line
        return last

    def _emit_rescue_node(self, node: Node, level: int) -> None:
        self._emit_rescue(node, level)

    def _emit_ensure_node(self, node: Node, level: int) -> None:
        self._emit_clause(node, "ensure", max(level - 1, 0), level, level)

    def _emit_rescue(self, node: Node, level: int) -> int:
        """Write a rescue clause chain at body *level*; return the last body line."""
        self._flush_leading(node.span.start_line, level)
        statements = _first(node.children, NodeKind.STATEMENTS)
        subsequent = _first(node.children, NodeKind.RESCUE)

        decl_start = node.span.start_offset + len("rescue")
        decl_end = min(
            (c.span.start_offset for c in (statements, subsequent) if c is not None),
            default=node.span.end_offset,
        )
        declaration, comments = self._rescue_declaration(node, decl_start, decl_end)

        header = "rescue"
        if declaration:
            header += f" {declaration}"
        self._write_line(max(level - 1, 0), header)
        for text in comments:
            self._write(f" {text}")
        self._flush_trailing(node.span.start_line)

        last = node.span.start_line
        if statements is not None:
            self._write("\n")
            self._emit_node(statements, level)
            last = statements.span.end_line
        if subsequent is not None:
            self._ensure_newline()
            last = self._emit_rescue(subsequent, level)
        return last

    def _rescue_declaration(self, node: Node, start: int, end: int) -> tuple[str, list[str]]:
        """Normalize exception classes and binding; lift comments on its lines."""
        if not self.source.startswith(b"rescue", node.span.start_offset) or not (
            0 <= start <= end <= len(self.source)
        ):
            return "", []
        raw = bytearray(self.source[start:end])
        inside = []
        for pos in self._comments.in_range(self._line_at(start), self._line_at(end) + 1):
            span = self._comments.comment(pos).span
            if start <= span.start_offset and span.end_offset <= end:
                inside.append(pos)
                raw[span.start_offset - start : span.end_offset - start] = b" " * (
                    span.end_offset - span.start_offset
                )

        content = raw.rstrip()
        last_line = self._line_at(start + len(content)) if content.strip() else node.span.start_line
        texts = []
        for pos in inside:
            comment = self._comments.comment(pos)
            if comment.span.start_line <= last_line:
                texts.append(comment.text.rstrip("\r\n"))
                self._comments.mark_emitted(pos)

        try:
            decoded = bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            self.log.warning(
                "skipping rescue declaration at line %d: invalid UTF-8", node.span.start_line
            )
            return "", texts
        pieces = [line.strip().removesuffix("\\").strip() for line in decoded.splitlines()]
        declaration = " ".join(p for p in pieces if p)
        declaration = declaration.removesuffix(";").rstrip()
        if declaration == "then":
            declaration = ""
        declaration = declaration.removesuffix(" then").rstrip()
        return declaration, texts
