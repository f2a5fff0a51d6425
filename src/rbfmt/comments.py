"""Line-keyed comment index with emitted-comment tracking."""

from __future__ import annotations

from bisect import bisect_left
from collections.abc import Iterator, Sequence

from rbfmt.ast import Comment


class CommentIndex:
    """Comments keyed by start line, queried in O(log n + k).

    Queries return positions into the flat comment list, ordered by start
    line then start offset, and skip comments already marked as emitted.
    """

    def __init__(self, comments: Sequence[Comment]) -> None:
        self._comments = list(comments)
        self._emitted = bytearray(len(self._comments))

        by_line: dict[int, list[int]] = {}
        for pos, comment in enumerate(self._comments):
            by_line.setdefault(comment.span.start_line, []).append(pos)

        self._lines = sorted(by_line)
        # buckets before this one are fully emitted
        self._floor = 0
        self._buckets = [
            sorted(by_line[line], key=lambda p: self._comments[p].span.start_offset)
            for line in self._lines
        ]

    def __len__(self) -> int:
        return len(self._comments)

    # ------------------------------------------------------------------
    # Emitted markers
    # ------------------------------------------------------------------

    def comment(self, pos: int) -> Comment:
        return self._comments[pos]

    def is_emitted(self, pos: int) -> bool:
        return bool(self._emitted[pos])

    def mark_emitted(self, pos: int) -> None:
        self._emitted[pos] = 1

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _starting_in(self, start: int | None, end: int | None) -> Iterator[int]:
        """Unemitted positions whose start line is in [start, end)."""
        if start is None:
            lo = self._advance_floor()
        else:
            lo = bisect_left(self._lines, start)
        hi = len(self._lines) if end is None else bisect_left(self._lines, end)
        for bucket in self._buckets[lo:hi]:
            for pos in bucket:
                if not self._emitted[pos]:
                    yield pos

    def _advance_floor(self) -> int:
        buckets = self._buckets
        while self._floor < len(buckets) and all(self._emitted[p] for p in buckets[self._floor]):
            self._floor += 1
        return self._floor

    def in_range(self, start: int, end: int) -> list[int]:
        """Comments lying fully inside the half-open line interval [start, end)."""
        if start >= end:
            return []
        return [
            pos
            for pos in self._starting_in(start, end)
            if self._comments[pos].span.end_line < end
        ]

    def before(self, line: int) -> list[int]:
        """Comments ending strictly before *line*."""
        return [
            pos
            for pos in self._starting_in(None, line)
            if self._comments[pos].span.end_line < line
        ]

    def on(self, line: int) -> list[int]:
        """Comments starting exactly on *line*."""
        return list(self._starting_in(line, line + 1))

    def first_line_between(self, start: int, end: int) -> int | None:
        """Start line of the first unemitted comment in [start, end), if any."""
        if start >= end:
            return None
        for pos in self._starting_in(start, end):
            return self._comments[pos].span.start_line
        return None

    def remaining(self) -> list[int]:
        """Every unemitted comment, in source order."""
        return list(self._starting_in(None, None))
