"""
Path expansion: resolve ``~``, ``$NAME`` and ``${NAME}`` in paths.

Work tree aliases and the store directory are written by users with
variables in them (``$HOME/.config``). An undefined variable is an
error: leaving ``$FOO`` in a path would deploy files into a directory
literally named ``$FOO``.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path

_VAR_RE = re.compile(
    r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<plain>[A-Za-z_][A-Za-z0-9_]*))"
)


class ExpansionError(Exception):
    """Raised when a path references an undefined variable."""

    def __init__(self, path: str, variable: str):
        self.path = path
        self.variable = variable
        super().__init__(f"undefined variable ${variable} in path {path!r}")


def expand_path(raw: str, env: Mapping[str, str] | None = None) -> str:
    """Expand a leading ``~`` and every ``$VAR`` reference.

    Args:
        raw: Path as written by the user.
        env: Variables to resolve against (default: ``os.environ``).

    Returns:
        The expanded path string.

    Raises:
        ExpansionError: If a referenced variable is not defined.
    """
    env = os.environ if env is None else env

    path = raw.strip()
    if path == "~" or path.startswith("~/"):
        home = env.get("HOME") or str(Path.home())
        path = home + path[1:]

    def _substitute(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("plain")
        if name not in env:
            raise ExpansionError(raw, name)
        return env[name]

    return _VAR_RE.sub(_substitute, path)


def resolve_alias(raw: str, env: Mapping[str, str] | None = None) -> str:
    """Expand a work tree alias and anchor a relative result at ``$HOME``.

    The result is absolute, so the same definition means the same
    directory whatever the current directory is.
    """
    env = os.environ if env is None else env
    path = expand_path(raw, env)
    if not os.path.isabs(path):
        path = os.path.join(env.get("HOME") or str(Path.home()), path)
    return os.path.normpath(path)
