"""Minimal LSP server for rbfmt: document formatting plus tree diagnostics."""

from __future__ import annotations

import logging
from typing import Protocol

from lsprotocol.types import (
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_FORMATTING,
    Diagnostic,
    DiagnosticSeverity,
    DidChangeTextDocumentParams,
    DidOpenTextDocumentParams,
    DocumentFormattingParams,
    FormattingOptions,
    Position,
    PublishDiagnosticsParams,
    Range,
    TextDocumentSyncKind,
    TextEdit,
)
from pygls.lsp.server import LanguageServer

from rbfmt import __version__, format_code
from rbfmt.errors import ConfigError, EmitError, FrontendError, PayloadError
from rbfmt.frontend import Frontend
from rbfmt.payload import load_tree
from rbfmt.style import IndentStyle, Style

log = logging.getLogger(__name__)

server = LanguageServer("rbfmt-lsp", __version__, text_document_sync_kind=TextDocumentSyncKind.Full)

_frontend = Frontend()


class TreeSource(Protocol):
    def run(self, source: str, filename: str = ...) -> str: ...


def _filename(uri: str) -> str:
    return uri.rsplit("/", 1)[-1] if "/" in uri else uri


def style_for(options: FormattingOptions | None) -> Style:
    """Map the client's formatting options onto a Style (defaults when invalid)."""
    if options is None:
        return Style()
    try:
        return Style().with_overrides(
            indent_width=options.tab_size,
            indent_style=IndentStyle.SPACES if options.insert_spaces else IndentStyle.TABS,
        )
    except ConfigError:
        return Style()


def _format_document(
    ls: LanguageServer,
    uri: str,
    frontend: TreeSource | None = None,
    style: Style | None = None,
) -> list[TextEdit] | None:
    """Format the whole document; None on failure, no edits when already formatted."""
    doc = ls.workspace.get_text_document(uri)
    source = doc.source
    filename = _filename(uri)
    runner = frontend if frontend is not None else _frontend

    try:
        formatted = format_code(source, runner.run(source, filename), style, filename=filename)
    except (FrontendError, PayloadError, EmitError) as exc:
        log.warning("cannot format %s: %s", uri, exc.message)
        return None

    if formatted == source:
        return []

    # Ranges past the last line are clamped by clients to the document end
    end = Position(line=source.count("\n") + 1, character=0)
    return [TextEdit(range=Range(start=Position(line=0, character=0), end=end), new_text=formatted)]


def _validate(ls: LanguageServer, uri: str, frontend: TreeSource | None = None) -> None:
    """Run the front end over the document and publish any failure as a diagnostic."""
    doc = ls.workspace.get_text_document(uri)
    source = doc.source
    filename = _filename(uri)
    runner = frontend if frontend is not None else _frontend
    diagnostics: list[Diagnostic] = []

    message = None
    try:
        load_tree(runner.run(source, filename))
    except FrontendError as exc:
        message = exc.message
        if exc.stderr:
            message += f": {exc.stderr.splitlines()[0]}"
    except PayloadError as exc:
        message = f"front end produced an invalid tree: {exc.message}"

    if message is not None:
        diagnostics.append(
            Diagnostic(
                range=Range(
                    start=Position(line=0, character=0),
                    end=Position(line=0, character=0),
                ),
                message=message,
                severity=DiagnosticSeverity.Error,
                source="rbfmt",
            )
        )

    ls.text_document_publish_diagnostics(
        PublishDiagnosticsParams(uri=uri, diagnostics=diagnostics)
    )


@server.feature(TEXT_DOCUMENT_FORMATTING)
def formatting(ls: LanguageServer, params: DocumentFormattingParams) -> list[TextEdit] | None:
    return _format_document(ls, params.text_document.uri, style=style_for(params.options))


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LanguageServer, params: DidOpenTextDocumentParams) -> None:
    _validate(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: LanguageServer, params: DidChangeTextDocumentParams) -> None:
    _validate(ls, params.text_document.uri)


def main() -> None:
    server.start_io()
