"""
Repository backend: the protocol contract between the core and git.

The core never runs git itself. It asks a backend whether a directory
is a bare-alias repository, what files it tracks, and to add or remove
paths from a work tree alias. Swapping the backend (see ``mock.py``)
is how the core is tested without touching real repositories.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

from dotcluster.core.models.receipt import Receipt


class RepositoryBackend(ABC):
    """Abstract base class for repository backends.

    Backends NEVER raise from their public methods. Mutating operations
    return a Receipt; queries return False / None / an empty list when
    the repository cannot be read.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The backend identifier (e.g., 'git', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tool is installed. Never raises."""

    @abstractmethod
    def is_bare_alias(self, git_dir: Path) -> bool:
        """Whether ``git_dir`` is a bare repository usable with a work tree alias."""

    @abstractmethod
    def read_file(self, git_dir: Path, path: str) -> bytes | None:
        """Contents of a tracked file at HEAD, or None if it is not tracked."""

    @abstractmethod
    def tracked_files(self, git_dir: Path) -> list[str]:
        """All tracked paths at HEAD, POSIX-style, sorted. Empty for an empty repo."""

    @abstractmethod
    def checkout_paths(
        self, git_dir: Path, work_tree: Path, paths: Iterable[str]
    ) -> Receipt:
        """Materialize tracked paths into the work tree alias."""

    @abstractmethod
    def remove_paths(
        self, git_dir: Path, work_tree: Path, paths: Iterable[str]
    ) -> Receipt:
        """Remove previously materialized paths from the work tree alias."""

    @abstractmethod
    def clone(self, url: str, destination: Path, branch: str | None = None) -> Receipt:
        """Clone a remote as a bare-alias repository at ``destination``.

        On failure nothing is left behind at ``destination``.
        """

    @abstractmethod
    def init(
        self, destination: Path, definition: bytes, branch: str | None = None
    ) -> Receipt:
        """Create a bare-alias repository whose first commit holds ``definition``.

        On failure nothing is left behind at ``destination``.
        """

    @abstractmethod
    def run_git(self, git_dir: Path, work_tree: Path, args: Iterable[str]) -> int:
        """Run git with the user's own arguments on a cluster and its alias.

        Output goes straight to the terminal. Returns git's exit code.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
