"""Content-hash cache of files already in formatted form."""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rbfmt import __version__

log = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path("~/.cache/rbfmt")
CACHE_FILE = "cache.json"
CACHE_VERSION = "1"


def file_hash(path: Path) -> str:
    """SHA-256 hex digest of the file's bytes."""
    return hashlib.sha256(path.read_bytes()).hexdigest()


@dataclass
class FormatCache:
    """Maps absolute file paths to the hash of their last formatted content.

    Entries are only trusted when both the cache format version and the
    formatter version match.
    """

    cache_dir: Path = DEFAULT_CACHE_DIR
    _entries: dict[str, dict[str, Any]] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        self.cache_dir = Path(self.cache_dir).expanduser()
        self._load()

    @property
    def cache_file(self) -> Path:
        return self.cache_dir / CACHE_FILE

    def _load(self) -> None:
        path = self.cache_file
        if not path.is_file():
            return
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            log.warning("discarding unreadable cache %s: %s", path, exc)
            return
        if not isinstance(data, dict):
            log.warning("discarding malformed cache %s", path)
            return
        self._entries = {k: v for k, v in data.items() if isinstance(v, dict)}

    @staticmethod
    def _key(path: Path) -> str:
        return str(Path(path).resolve())

    def needs_formatting(self, path: Path) -> bool:
        """True unless *path* is unchanged since it was last marked formatted."""
        path = Path(path)
        if not path.is_file():
            return True
        entry = self._entries.get(self._key(path))
        if entry is None:
            return True
        if entry.get("version") != CACHE_VERSION or entry.get("formatter") != __version__:
            return True
        return entry.get("hash") != file_hash(path)

    def mark_formatted(self, path: Path) -> None:
        path = Path(path)
        if not path.is_file():
            return
        self._entries[self._key(path)] = {
            "hash": file_hash(path),
            "formatted_at": int(time.time()),
            "version": CACHE_VERSION,
            "formatter": __version__,
        }

    def invalidate(self, path: Path) -> None:
        self._entries.pop(self._key(path), None)

    def save(self) -> None:
        """Write the cache to disk, creating the cache directory if needed."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        text = json.dumps(self._entries, indent=2, sort_keys=True)
        self.cache_file.write_text(text, encoding="utf-8")

    def clear(self) -> None:
        self._entries = {}
        self.save()

    def prune(self) -> int:
        """Drop entries for files that no longer exist; return how many were removed."""
        stale = [key for key in self._entries if not Path(key).is_file()]
        for key in stale:
            del self._entries[key]
        if stale:
            self.save()
        return len(stale)

    def stats(self) -> dict[str, Any]:
        size = self.cache_file.stat().st_size if self.cache_file.is_file() else 0
        return {
            "total_files": len(self._entries),
            "cache_dir": str(self.cache_dir),
            "cache_size_bytes": size,
        }
