"""Style options and their validation."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from rbfmt.errors import ConfigError


class IndentStyle(Enum):
    SPACES = "spaces"
    TABS = "tabs"


class QuoteStyle(Enum):
    DOUBLE = "double"
    SINGLE = "single"
    CONSISTENT = "consistent"


class HashSyntax(Enum):
    RUBY19 = "ruby19"
    HASH_ROCKETS = "hash_rockets"
    CONSISTENT = "consistent"


class TrailingComma(Enum):
    ALWAYS = "always"
    NEVER = "never"
    MULTILINE = "multiline"


LINE_LENGTH_RANGE = (40, 500)
INDENT_WIDTH_RANGE = (1, 8)


@dataclass(frozen=True, slots=True)
class Style:
    """Read-only style configuration for one formatting run.

    Only the indent options are consumed by the emitter; the others are
    validated and carried for constructs formatted outside it.
    """

    line_length: int = 100
    indent_style: IndentStyle = IndentStyle.SPACES
    indent_width: int = 2
    quote_style: QuoteStyle = QuoteStyle.DOUBLE
    hash_syntax: HashSyntax = HashSyntax.RUBY19
    trailing_comma: TrailingComma = TrailingComma.MULTILINE

    def indent_unit(self) -> str:
        if self.indent_style is IndentStyle.TABS:
            return "\t"
        return " " * self.indent_width

    def indent_for(self, level: int) -> str:
        return self.indent_unit() * level

    def with_overrides(self, **changes: Any) -> Style:
        """Return a validated copy with *changes* applied (``None`` values ignored)."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            return self
        style = replace(self, **changes)
        validate_style(style)
        return style


def validate_style(style: Style, file: str = "") -> None:
    """Raise ConfigError if any numeric option is out of range."""
    lo, hi = LINE_LENGTH_RANGE
    if not lo <= style.line_length <= hi:
        raise ConfigError(
            f"line_length must be between {lo} and {hi}, got {style.line_length}",
            "formatting.line_length",
            file,
        )
    lo, hi = INDENT_WIDTH_RANGE
    if not lo <= style.indent_width <= hi:
        raise ConfigError(
            f"indent_width must be between {lo} and {hi}, got {style.indent_width}",
            "formatting.indent_width",
            file,
        )


def _enum_value(enum_cls: type[Enum], raw: Any, key: str, file: str) -> Any:
    try:
        return enum_cls(raw)
    except ValueError:
        choices = ", ".join(repr(m.value) for m in enum_cls)
        raise ConfigError(f"invalid value {raw!r} (expected one of {choices})", key, file) from None


def _int_value(raw: Any, key: str, file: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"expected an integer, got {raw!r}", key, file)
    return raw


def style_from_config(config: dict[str, Any], file: str = "") -> Style:
    """Build a Style from the ``[formatting]`` and ``[style]`` config tables."""
    fields: dict[str, Any] = {}

    formatting = config.get("formatting", {})
    if not isinstance(formatting, dict):
        raise ConfigError("[formatting] must be a table", "formatting", file)
    if "line_length" in formatting:
        fields["line_length"] = _int_value(
            formatting["line_length"], "formatting.line_length", file
        )
    if "indent_width" in formatting:
        fields["indent_width"] = _int_value(
            formatting["indent_width"], "formatting.indent_width", file
        )
    if "indent_style" in formatting:
        fields["indent_style"] = _enum_value(
            IndentStyle, formatting["indent_style"], "formatting.indent_style", file
        )
    if "quote_style" in formatting:
        fields["quote_style"] = _enum_value(
            QuoteStyle, formatting["quote_style"], "formatting.quote_style", file
        )

    style_table = config.get("style", {})
    if not isinstance(style_table, dict):
        raise ConfigError("[style] must be a table", "style", file)
    if "quotes" in style_table:
        fields["quote_style"] = _enum_value(QuoteStyle, style_table["quotes"], "style.quotes", file)
    if "hash_syntax" in style_table:
        fields["hash_syntax"] = _enum_value(
            HashSyntax, style_table["hash_syntax"], "style.hash_syntax", file
        )
    if "trailing_comma" in style_table:
        fields["trailing_comma"] = _enum_value(
            TrailingComma, style_table["trailing_comma"], "style.trailing_comma", file
        )

    style = Style(**fields)
    validate_style(style, file)
    return style
