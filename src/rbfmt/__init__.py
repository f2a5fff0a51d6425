"""Ruby source formatter driven by a front-end syntax tree."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import logging

    from rbfmt.ast import Node
    from rbfmt.style import Style

__version__ = "0.1.0"


def format_code(
    source: str,
    tree: str | bytes | Node,
    style: Style | None = None,
    *,
    logger: logging.Logger | None = None,
    filename: str = "<input>",
) -> str:
    """Format Ruby *source* using its serialized (or already loaded) *tree*."""
    from rbfmt.ast import Node
    from rbfmt.emitter import emit
    from rbfmt.errors import EmitError
    from rbfmt.payload import load_tree

    root = tree if isinstance(tree, Node) else load_tree(tree)
    try:
        return emit(root, source, style, logger)
    except RecursionError:
        raise EmitError("syntax tree is nested too deeply to format", filename) from None
