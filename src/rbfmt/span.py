"""Source extents shared by tree nodes and comments."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Span:
    """Source range: 1-based lines, 0-based byte columns and byte offsets."""

    start_line: int
    start_column: int
    end_line: int
    end_column: int
    start_offset: int
    end_offset: int

    def is_ordered(self) -> bool:
        """Return True if start <= end by both line order and byte offset."""
        return self.start_line <= self.end_line and self.start_offset <= self.end_offset

    def is_multiline(self) -> bool:
        return self.start_line != self.end_line

    def line_count(self) -> int:
        return self.end_line - self.start_line + 1
