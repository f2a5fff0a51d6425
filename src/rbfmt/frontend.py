"""External front-end discovery and invocation (source on stdin, JSON tree on stdout)."""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from rbfmt.errors import FrontendError

FRONTEND_NAME = "rbfmt-frontend"


@dataclass
class Frontend:
    """Runs the parser process that turns Ruby source into a serialized tree.

    *command* is an argv list; when absent, ``rbfmt-frontend`` is looked up
    on ``$PATH``.  The process receives the source on stdin, the file name
    in ``RBFMT_FILENAME``, and must print the tree payload on stdout.
    """

    command: list[str] | None = None
    timeout: float = 10.0
    _found: list[str] | None = field(default=None, init=False)
    _searched: bool = field(default=False, init=False)

    def find(self) -> list[str] | None:
        """Return the argv to run, or None if no front end is available. Cached."""
        if self._searched:
            return self._found
        self._searched = True
        if self.command:
            self._found = list(self.command)
        else:
            on_path = shutil.which(FRONTEND_NAME)
            self._found = [on_path] if on_path is not None else None
        return self._found

    def run(self, source: str, filename: str = "<input>") -> str:
        """Run the front end over *source* and return its stdout (the payload)."""
        argv = self.find()
        if argv is None:
            raise FrontendError(
                f"no front end configured and '{FRONTEND_NAME}' not found on PATH",
                filename,
            )

        env = dict(os.environ)
        env["RBFMT_FILENAME"] = filename

        try:
            result = subprocess.run(
                argv,
                input=source,
                capture_output=True,
                text=True,
                encoding="utf-8",
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            raise FrontendError(
                f"front end timed out after {self.timeout}s", filename
            ) from None
        except OSError as exc:
            msg = f"cannot run front end '{argv[0]}': {exc.strerror}"
            raise FrontendError(msg, filename) from None

        if result.returncode != 0:
            raise FrontendError(
                f"front end failed (exit {result.returncode})",
                filename,
                result.stderr.strip(),
            )

        return result.stdout


def frontend_command(raw: str | list[str] | None, base_dir: Path | None = None) -> list[str] | None:
    """Normalize a configured command (string or argv list) into an argv list.

    A relative program path is resolved against *base_dir* when that file exists.
    """
    if raw is None:
        return None
    argv = raw.split() if isinstance(raw, str) else [str(a) for a in raw]
    if not argv:
        return None
    program = Path(argv[0])
    if base_dir is not None and "/" in argv[0] and not program.is_absolute():
        if (base_dir / program).is_file():
            argv[0] = str(base_dir / program)
    return argv
