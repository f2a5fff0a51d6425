"""Tests for config loading and option resolution."""

from __future__ import annotations

import argparse
from pathlib import Path

import pytest

from rbfmt.cli import build_parser, discover_files, load_config, resolve_options
from rbfmt.errors import ConfigError
from rbfmt.style import IndentStyle


def resolve(argv: list[str]):
    return resolve_options(build_parser().parse_args(argv))


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_absent_is_empty(self, tmp_path: Path) -> None:
        assert load_config(None, tmp_path) == ({}, None)

    def test_discovered_next_to_input(self, tmp_path: Path) -> None:
        cfg = tmp_path / "rbfmt.toml"
        cfg.write_text("[formatting]\nindent_width = 4\n")
        config, found = load_config(None, tmp_path)
        assert config == {"formatting": {"indent_width": 4}}
        assert found == cfg

    def test_explicit_missing_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="config file not found"):
            load_config(tmp_path / "nope.toml", tmp_path)

    def test_invalid_toml(self, tmp_path: Path) -> None:
        cfg = tmp_path / "rbfmt.toml"
        cfg.write_text("[formatting\n")
        with pytest.raises(ConfigError, match="invalid TOML") as exc_info:
            load_config(None, tmp_path)
        assert exc_info.value.file == str(cfg)


# ---------------------------------------------------------------------------
# resolve_options: precedence
# ---------------------------------------------------------------------------


class TestResolve:
    def test_defaults(self, tmp_path: Path) -> None:
        src = tmp_path / "a.rb"
        src.write_text("")
        opts = resolve([str(src)])
        assert opts.inputs == [src]
        assert opts.style.indent_width == 2
        assert opts.frontend_command is None
        assert opts.frontend_timeout == 10.0
        assert opts.use_cache
        assert opts.jobs == 1

    def test_config_then_cli(self, tmp_path: Path) -> None:
        (tmp_path / "rbfmt.toml").write_text(
            "[formatting]\nindent_width = 4\nindent_style = \"spaces\"\n"
        )
        src = tmp_path / "a.rb"
        src.write_text("")
        assert resolve([str(src)]).style.indent_width == 4
        opts = resolve([str(src), "--indent-width", "3", "--indent-style", "tabs"])
        assert opts.style.indent_width == 3
        assert opts.style.indent_style is IndentStyle.TABS

    def test_cli_style_out_of_range(self, tmp_path: Path) -> None:
        src = tmp_path / "a.rb"
        src.write_text("")
        with pytest.raises(argparse.ArgumentTypeError, match="indent_width"):
            resolve([str(src), "--indent-width", "20"])

    def test_frontend_from_config_relative_to_config(self, tmp_path: Path) -> None:
        (tmp_path / "bin").mkdir()
        (tmp_path / "bin" / "parse").write_text("")
        (tmp_path / "rbfmt.toml").write_text(
            '[frontend]\ncommand = ["bin/parse", "--json"]\ntimeout = 3\n'
        )
        src = tmp_path / "a.rb"
        src.write_text("")
        opts = resolve([str(src)])
        assert opts.frontend_command == [str(tmp_path / "bin" / "parse"), "--json"]
        assert opts.frontend_timeout == 3.0

    def test_frontend_cli_overrides(self, tmp_path: Path) -> None:
        (tmp_path / "rbfmt.toml").write_text('[frontend]\ncommand = "parse-a"\n')
        src = tmp_path / "a.rb"
        src.write_text("")
        opts = resolve([str(src), "--frontend", "parse-b --flag 'two words'"])
        assert opts.frontend_command == ["parse-b", "--flag", "two words"]

    def test_bad_timeout(self, tmp_path: Path) -> None:
        (tmp_path / "rbfmt.toml").write_text('[frontend]\ntimeout = "soon"\n')
        src = tmp_path / "a.rb"
        src.write_text("")
        with pytest.raises(ConfigError) as exc_info:
            resolve([str(src)])
        assert exc_info.value.key == "frontend.timeout"

    def test_cache_settings(self, tmp_path: Path) -> None:
        cache_dir = tmp_path / "c"
        (tmp_path / "rbfmt.toml").write_text(f'[cache]\nenabled = false\ndir = "{cache_dir}"\n')
        src = tmp_path / "a.rb"
        src.write_text("")
        opts = resolve([str(src)])
        assert not opts.use_cache
        assert opts.cache_dir == tmp_path / "c"
        assert resolve([str(src), "--cache-dir", str(tmp_path / "d")]).cache_dir == tmp_path / "d"

    def test_no_cache_flag(self, tmp_path: Path) -> None:
        src = tmp_path / "a.rb"
        src.write_text("")
        assert not resolve([str(src), "--no-cache"]).use_cache

    def test_output_needs_single_input(self, tmp_path: Path) -> None:
        a, b = tmp_path / "a.rb", tmp_path / "b.rb"
        a.write_text("")
        b.write_text("")
        with pytest.raises(argparse.ArgumentTypeError, match="exactly one input"):
            resolve([str(a), str(b), "-o", str(tmp_path / "out.rb")])

    def test_jobs_must_be_positive(self, tmp_path: Path) -> None:
        src = tmp_path / "a.rb"
        src.write_text("")
        with pytest.raises(argparse.ArgumentTypeError, match="--jobs"):
            resolve([str(src), "-j", "0"])

    def test_check_and_write_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["a.rb", "--check", "--write"])


# ---------------------------------------------------------------------------
# File discovery
# ---------------------------------------------------------------------------


class TestDiscovery:
    def test_include_exclude(self, tmp_path: Path) -> None:
        for rel in ("app/a.rb", "lib/b.rb", "Rakefile", "vendor/gems/c.rb", "README.md"):
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("")
        found = discover_files(tmp_path, ["**/*.rb", "**/Rakefile"], ["vendor/**/*"])
        assert [p.relative_to(tmp_path).as_posix() for p in found] == [
            "Rakefile",
            "app/a.rb",
            "lib/b.rb",
        ]

    def test_inputs_discovered_from_config(self, tmp_path: Path, monkeypatch) -> None:
        (tmp_path / "rbfmt.toml").write_text('include = ["src/*.rb"]\n')
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "x.rb").write_text("")
        (tmp_path / "y.rb").write_text("")
        monkeypatch.chdir(tmp_path)
        opts = resolve([])
        assert [p.name for p in opts.inputs] == ["x.rb"]

    def test_include_must_be_list(self, tmp_path: Path, monkeypatch) -> None:
        (tmp_path / "rbfmt.toml").write_text('include = "*.rb"\n')
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigError, match="list of glob strings"):
            resolve([])
