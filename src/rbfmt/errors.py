"""Error types with formatted context."""

from __future__ import annotations


def _gutter_snippet(message: str, location: str, line: int, column: int, text: str) -> str:
    """Render an ``error:`` block with the offending line and a caret."""
    lines = text.splitlines()
    line_idx = line - 1

    if 0 <= line_idx < len(lines):
        source_line = lines[line_idx].rstrip("\r")
    else:
        source_line = ""

    pad = " " * max(0, column - 1)

    line_num = str(line)
    gutter_width = len(line_num) + 1

    blank_gutter = " " * gutter_width + "|"
    line_gutter = f"{line_num:>{gutter_width - 1}} |"

    return (
        f"error: {message}\n"
        f"{' ' * gutter_width}--> {location}:{line}:{column}\n"
        f"{blank_gutter}\n"
        f"{line_gutter} {source_line}\n"
        f"{blank_gutter} {pad}^"
    )


class PayloadError(Exception):
    """Raised when the serialized tree cannot be deserialized.

    JSON syntax errors carry a 1-based line/column into the payload text;
    structural errors carry the path of the offending field instead.
    """

    def __init__(
        self,
        message: str,
        *,
        line: int = 0,
        column: int = 0,
        text: str = "",
        path: str = "",
        filename: str = "<payload>",
    ) -> None:
        self.message = message
        self.filename = filename
        self.line = line
        self.column = column
        self.text = text
        self.path = path
        super().__init__(self.format())

    def format(self, filename: str | None = None) -> str:
        if filename is None:
            filename = self.filename
        if self.line > 0:
            return _gutter_snippet(self.message, filename, self.line, self.column, self.text)
        where = f" (at {self.path})" if self.path else ""
        return f"error: {self.message}{where}\n  --> {filename}"


class ConfigError(Exception):
    """Raised on an invalid configuration value."""

    def __init__(self, message: str, key: str = "", file: str = "") -> None:
        self.message = message
        self.key = key
        self.file = file
        super().__init__(self.format())

    def format(self) -> str:
        result = f"error: {self.message}"
        if self.key:
            result += f"\n  key: {self.key}"
        if self.file:
            result += f"\n  --> {self.file}"
        return result


class FrontendError(Exception):
    """Raised when the external front-end parser cannot produce a tree."""

    def __init__(self, message: str, filename: str = "<input>", stderr: str = "") -> None:
        self.message = message
        self.filename = filename
        self.stderr = stderr
        super().__init__(self.format())

    def format(self) -> str:
        result = f"error: {self.message}\n  --> {self.filename}"
        if self.stderr:
            detail = "\n".join(f"  | {line}" for line in self.stderr.splitlines())
            result += f"\n{detail}"
        return result


class EmitError(Exception):
    """Raised when a whole input cannot be reconstructed."""

    def __init__(self, message: str, filename: str = "<input>") -> None:
        self.message = message
        self.filename = filename
        super().__init__(self.format())

    def format(self) -> str:
        return f"error: {self.message}\n  --> {self.filename}"
