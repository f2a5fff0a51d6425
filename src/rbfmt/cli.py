"""Command-line interface for rbfmt."""

from __future__ import annotations

import argparse
import difflib
import logging
import shlex
import sys
import tomllib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rbfmt.cache import DEFAULT_CACHE_DIR
from rbfmt.errors import ConfigError, EmitError, FrontendError, PayloadError
from rbfmt.style import IndentStyle, Style, style_from_config

if TYPE_CHECKING:
    from rbfmt.frontend import Frontend

log = logging.getLogger(__name__)

CONFIG_NAME = "rbfmt.toml"
DEFAULT_INCLUDE = ["**/*.rb", "**/*.rake", "**/Rakefile", "**/Gemfile"]
DEFAULT_EXCLUDE = ["vendor/**/*", "tmp/**/*", "node_modules/**/*"]
CACHE_ACTIONS = ("clear", "stats", "prune")


@dataclass(frozen=True, slots=True)
class CliOptions:
    """Parsed CLI options."""

    inputs: list[Path]
    output_file: Path | None
    write: bool
    check: bool
    diff: bool
    tree_file: Path | None
    style: Style
    frontend_command: list[str] | None
    frontend_timeout: float
    use_cache: bool
    cache_dir: Path
    jobs: int
    debug: bool
    cache_action: str | None = None


@dataclass(frozen=True, slots=True)
class FileResult:
    """Outcome of formatting one input."""

    path: Path
    original: str = ""
    formatted: str = ""
    error: str | None = None

    @property
    def changed(self) -> bool:
        return self.error is None and self.original != self.formatted


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser (separate function for testability)."""
    p = argparse.ArgumentParser(
        prog="rbfmt",
        description="Ruby source formatter",
    )
    p.add_argument(
        "files",
        nargs="*",
        help="Ruby files to format (default: discover from config include/exclude)",
    )
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("-o", "--output", help="Output file for a single input (default: stdout)")
    mode.add_argument("-w", "--write", action="store_true", help="Rewrite files in place")
    mode.add_argument(
        "--check",
        action="store_true",
        help="Exit with status 1 if any file would change; write nothing",
    )
    p.add_argument("--diff", action="store_true", help="Print a unified diff instead of the output")
    p.add_argument(
        "--tree",
        metavar="FILE",
        help="Pre-serialized syntax tree for a single input (skips the front end)",
    )
    p.add_argument(
        "--config",
        metavar="FILE",
        help=f"Config file (default: auto-discover {CONFIG_NAME})",
    )
    p.add_argument("--indent-width", type=int, default=None, metavar="N", help="Spaces per level")
    p.add_argument(
        "--indent-style",
        choices=[s.value for s in IndentStyle],
        default=None,
        help="Indent with spaces or tabs",
    )
    p.add_argument(
        "--frontend",
        metavar="CMD",
        help="Front-end command that prints the syntax tree (default: rbfmt-frontend)",
    )
    p.add_argument(
        "--frontend-timeout",
        type=float,
        default=None,
        metavar="SECS",
        help="Front-end timeout in seconds (default: 10.0)",
    )
    p.add_argument("--no-cache", action="store_true", help="Do not skip files cached as formatted")
    p.add_argument(
        "--cache-dir", metavar="DIR", help=f"Cache directory (default: {DEFAULT_CACHE_DIR})"
    )
    p.add_argument(
        "--cache",
        choices=CACHE_ACTIONS,
        dest="cache_action",
        help="Run a cache maintenance action instead of formatting",
    )
    p.add_argument(
        "-j", "--jobs", type=int, default=None, metavar="N", help="Format N files at once"
    )
    p.add_argument("--debug", action="store_true", help="Dump the syntax tree to stderr")
    p.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")
    return p


def load_config(config_path: Path | None, input_dir: Path) -> tuple[dict[str, Any], Path | None]:
    """Load a TOML config file; return it with its path (empty dict when absent)."""
    path = config_path if config_path is not None else input_dir / CONFIG_NAME

    if not path.is_file():
        if config_path is not None:
            raise ConfigError("config file not found", file=str(path))
        return {}, None

    try:
        with open(path, "rb") as f:
            return tomllib.load(f), path
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML: {exc}", file=str(path)) from None


def _table(config: dict[str, Any], name: str, file: str) -> dict[str, Any]:
    value = config.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table", name, file)
    return value


def _patterns(config: dict[str, Any], key: str, default: list[str], file: str) -> list[str]:
    value = config.get(key, default)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError("expected a list of glob strings", key, file)
    return value


def discover_files(base_dir: Path, include: list[str], exclude: list[str]) -> list[Path]:
    """Files under *base_dir* matching any include glob and no exclude glob."""
    found: set[Path] = set()
    for pattern in include:
        for path in base_dir.glob(pattern):
            if not path.is_file():
                continue
            rel = path.relative_to(base_dir).as_posix()
            if any(fnmatch(rel, ex) for ex in exclude):
                continue
            found.add(path)
    return sorted(found)


def resolve_options(args: argparse.Namespace) -> CliOptions:
    """Merge config file and CLI args into CliOptions.

    Precedence: defaults < config file < CLI flags.
    """
    inputs = [Path(f) for f in args.files]
    input_dir = inputs[0].parent if inputs else Path(".")
    if not input_dir.parts:
        input_dir = Path(".")

    config_path = Path(args.config) if args.config else None
    config, found = load_config(config_path, input_dir)
    config_file = str(found) if found is not None else ""
    config_dir = found.parent if found is not None else input_dir

    # Style: config < CLI
    style = style_from_config(config, config_file)
    try:
        style = style.with_overrides(
            indent_width=args.indent_width,
            indent_style=IndentStyle(args.indent_style) if args.indent_style else None,
        )
    except ConfigError as exc:
        raise argparse.ArgumentTypeError(exc.message) from None

    # Inputs: CLI, else discovered from config globs
    if not inputs:
        include = _patterns(config, "include", DEFAULT_INCLUDE, config_file)
        exclude = _patterns(config, "exclude", DEFAULT_EXCLUDE, config_file)
        inputs = discover_files(config_dir, include, exclude)

    if args.output and len(inputs) != 1:
        raise argparse.ArgumentTypeError("--output requires exactly one input file")
    if args.tree and len(inputs) != 1:
        raise argparse.ArgumentTypeError("--tree requires exactly one input file")

    # Front end: config < CLI
    frontend = _table(config, "frontend", config_file)
    command: list[str] | None = None
    raw_command = frontend.get("command")
    if raw_command is not None:
        from rbfmt.frontend import frontend_command

        if not isinstance(raw_command, (str, list)):
            raise ConfigError(
                "expected a string or list of strings", "frontend.command", config_file
            )
        command = frontend_command(raw_command, config_dir)
    if args.frontend:
        command = shlex.split(args.frontend)

    timeout = 10.0
    cfg_timeout = frontend.get("timeout")
    if isinstance(cfg_timeout, (int, float)) and not isinstance(cfg_timeout, bool):
        timeout = float(cfg_timeout)
    elif cfg_timeout is not None:
        raise ConfigError(
            f"expected a number, got {cfg_timeout!r}", "frontend.timeout", config_file
        )
    if args.frontend_timeout is not None:
        timeout = args.frontend_timeout

    # Cache: config < CLI
    cache = _table(config, "cache", config_file)
    use_cache = bool(cache.get("enabled", True)) and not args.no_cache
    cache_dir = Path(args.cache_dir or cache.get("dir") or DEFAULT_CACHE_DIR).expanduser()

    jobs = args.jobs if args.jobs is not None else 1
    if jobs < 1:
        raise argparse.ArgumentTypeError(f"--jobs must be at least 1, got {jobs}")

    return CliOptions(
        inputs=inputs,
        output_file=Path(args.output) if args.output else None,
        write=args.write,
        check=args.check,
        diff=args.diff,
        tree_file=Path(args.tree) if args.tree else None,
        style=style,
        frontend_command=command,
        frontend_timeout=timeout,
        use_cache=use_cache,
        cache_dir=cache_dir,
        jobs=jobs,
        debug=args.debug,
        cache_action=args.cache_action,
    )


def format_source(source: str, filename: str, options: CliOptions, frontend: Frontend) -> str:
    """Obtain the tree for *source* and format it."""
    from rbfmt import format_code
    from rbfmt.debug import dump_tree
    from rbfmt.payload import load_tree

    if options.tree_file is not None:
        payload = options.tree_file.read_bytes()
    else:
        payload = frontend.run(source, filename)

    try:
        root = load_tree(payload)
    except PayloadError as exc:
        if options.tree_file is not None:
            exc.filename = str(options.tree_file)
        else:
            exc.filename = f"{filename} (tree)"
        raise

    if options.debug:
        dump_tree(root, file=sys.stderr)

    return format_code(source, root, options.style, filename=filename)


def format_file(path: Path, options: CliOptions, frontend: Frontend) -> FileResult:
    """Read and format one file; errors are captured in the result."""
    log.debug("formatting %s", path)
    try:
        source = path.read_bytes().decode("utf-8")
    except OSError as exc:
        return FileResult(path, error=f"error: cannot read {path}: {exc.strerror}")
    except UnicodeDecodeError:
        return FileResult(path, error=f"error: {path} is not valid UTF-8")

    try:
        formatted = format_source(source, str(path), options, frontend)
    except (PayloadError, FrontendError, EmitError) as exc:
        return FileResult(path, source, error=exc.format())
    except OSError as exc:
        return FileResult(path, source, error=f"error: cannot read tree: {exc.strerror}")

    return FileResult(path, source, formatted)


def unified_diff(result: FileResult) -> str:
    name = result.path.as_posix()
    return "".join(
        difflib.unified_diff(
            result.original.splitlines(keepends=True),
            result.formatted.splitlines(keepends=True),
            fromfile=f"a/{name}",
            tofile=f"b/{name}",
        )
    )


def run_cache_action(action: str, cache_dir: Path) -> int:
    """Run a ``--cache`` maintenance action and report on stdout."""
    from rbfmt.cache import FormatCache

    cache = FormatCache(cache_dir)
    try:
        if action == "clear":
            cache.clear()
            print("cache cleared")
        elif action == "prune":
            print(f"pruned {cache.prune()} stale cache entries")
        else:
            stats = cache.stats()
            print(f"cache directory: {stats['cache_dir']}")
            print(f"files in cache: {stats['total_files']}")
            print(f"cache size: {stats['cache_size_bytes'] / 1024:.2f} KB")
    except OSError as exc:
        print(f"error: cannot update cache in {cache_dir}: {exc.strerror}", file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns exit code (0/1/2). Does not call sys.exit()."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        options = resolve_options(args)
    except argparse.ArgumentTypeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except ConfigError as exc:
        print(exc.format(), file=sys.stderr)
        return 2

    if options.cache_action is not None:
        return run_cache_action(options.cache_action, options.cache_dir)

    if not options.inputs:
        print("no files to format", file=sys.stderr)
        return 0

    from rbfmt.cache import FormatCache
    from rbfmt.frontend import Frontend

    frontend = Frontend(options.frontend_command, options.frontend_timeout)
    frontend.find()

    cache = FormatCache(options.cache_dir) if options.use_cache and options.write else None
    paths = options.inputs
    if cache is not None:
        paths = [p for p in paths if cache.needs_formatting(p)]
        log.info("skipping %d unchanged file(s)", len(options.inputs) - len(paths))

    if options.jobs > 1 and len(paths) > 1:
        with ThreadPoolExecutor(max_workers=options.jobs) as pool:
            results = list(pool.map(lambda p: format_file(p, options, frontend), paths))
    else:
        results = [format_file(p, options, frontend) for p in paths]

    status = 0
    for result in results:
        if result.error is not None:
            print(result.error, file=sys.stderr)
            if cache is not None:
                cache.invalidate(result.path)
            status = 1
            continue

        if options.diff and result.changed:
            sys.stdout.write(unified_diff(result))

        if options.check:
            if result.changed:
                print(f"would reformat {result.path}", file=sys.stderr)
                status = 1
            continue

        if options.write:
            if result.changed:
                try:
                    result.path.write_text(result.formatted, encoding="utf-8", newline="")
                except OSError as exc:
                    print(f"error: cannot write {result.path}: {exc.strerror}", file=sys.stderr)
                    status = 1
                    continue
                log.info("reformatted %s", result.path)
            if cache is not None:
                cache.mark_formatted(result.path)
            continue

        if options.diff:
            continue
        if options.output_file is not None:
            try:
                options.output_file.write_text(result.formatted, encoding="utf-8", newline="")
            except OSError as exc:
                print(f"error: cannot write {options.output_file}: {exc.strerror}", file=sys.stderr)
                status = 1
        else:
            sys.stdout.write(result.formatted)

    if cache is not None:
        try:
            cache.save()
        except OSError as exc:
            log.warning("cannot save cache to %s: %s", cache.cache_dir, exc.strerror)

    return status
