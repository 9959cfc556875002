"""
Mock backend: in-memory test double for the repository backend.

Holds clusters as plain dicts of tracked files instead of git
repositories. Checkout and remove write to and delete from the real
work tree directory so tests can assert on the filesystem. Any
operation can be configured to fail per target.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.core.models.definition import DEFINITION_FILE
from dotcluster.core.models.receipt import Receipt


@dataclass
class MockRepository:
    """One fake repository: tracked files and what is checked out."""

    files: dict[str, bytes] = field(default_factory=dict)
    bare: bool = True
    deployed: set[str] = field(default_factory=set)


@dataclass
class MockCall:
    operation: str
    target: str
    paths: tuple[str, ...] = ()


class MockBackend(RepositoryBackend):
    """In-memory backend for testing.

    Repositories are keyed by their git dir, remotes by URL. A clone
    copies a remote's files into a new repository at the destination.
    """

    def __init__(self, available: bool = True):
        self._available = available
        self._repos: dict[str, MockRepository] = {}
        self._remotes: dict[str, dict[str, bytes]] = {}
        self._failures: dict[tuple[str, str], str] = {}
        self._call_log: list[MockCall] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def call_log(self) -> list[MockCall]:
        """All mutating calls this mock has received."""
        return self._call_log

    def calls(self, operation: str) -> list[MockCall]:
        return [c for c in self._call_log if c.operation == operation]

    def is_available(self) -> bool:
        return self._available

    # ── Fixture builders ────────────────────────────────────────

    def add_cluster(
        self,
        store_root: Path,
        name: str,
        definition: str | None = None,
        files: dict[str, str] | None = None,
        bare: bool = True,
    ) -> Path:
        """Create a fake cluster ``<store_root>/<name>.git``.

        ``definition`` becomes the tracked ``cluster.toml`` (omit it to
        simulate a missing definition).
        """
        git_dir = store_root / f"{name}.git"
        git_dir.mkdir(parents=True, exist_ok=True)
        self._repos[str(git_dir)] = MockRepository(
            files=_encode(definition, files), bare=bare
        )
        return git_dir

    def add_remote(
        self,
        url: str,
        definition: str | None = None,
        files: dict[str, str] | None = None,
    ) -> None:
        """Register a remote that ``clone`` can copy from."""
        self._remotes[url] = _encode(definition, files)

    def write_file(self, git_dir: Path, path: str, text: str) -> None:
        """Replace a tracked file, as a new commit would."""
        self._repos[str(git_dir)].files[path] = text.encode("utf-8")

    def set_failure(self, operation: str, target: str, error: str = "Mock failure") -> None:
        """Make ``operation`` (checkout, remove, clone, init, git) fail for ``target``.

        ``target`` is a URL for clone and a git dir for everything else.
        """
        self._failures[(operation, target)] = error

    def clear_failure(self, operation: str, target: str) -> None:
        self._failures.pop((operation, target), None)

    def deployed(self, git_dir: Path) -> set[str]:
        """Paths currently checked out from a repository."""
        repo = self._repos.get(str(git_dir))
        return set(repo.deployed) if repo else set()

    # ── Queries ─────────────────────────────────────────────────

    def is_bare_alias(self, git_dir: Path) -> bool:
        repo = self._repos.get(str(git_dir))
        return repo is not None and repo.bare and git_dir.is_dir()

    def read_file(self, git_dir: Path, path: str) -> bytes | None:
        repo = self._repos.get(str(git_dir))
        if repo is None:
            return None
        return repo.files.get(path)

    def tracked_files(self, git_dir: Path) -> list[str]:
        repo = self._repos.get(str(git_dir))
        return sorted(repo.files) if repo else []

    # ── Operations ──────────────────────────────────────────────

    def checkout_paths(
        self, git_dir: Path, work_tree: Path, paths: Iterable[str]
    ) -> Receipt:
        wanted = tuple(sorted(set(paths)))
        target = str(git_dir)
        self._call_log.append(MockCall("checkout", target, wanted))

        if ("checkout", target) in self._failures:
            return Receipt.failure(
                operation="checkout", target=target, error=self._failures[("checkout", target)]
            )
        repo = self._repos.get(target)
        if repo is None:
            return Receipt.failure(operation="checkout", target=target, error="no such repository")

        for path in wanted:
            if path not in repo.files:
                return Receipt.failure(
                    operation="checkout", target=target, error=f"not tracked: {path}"
                )
            dest = work_tree / path
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(repo.files[path])
            repo.deployed.add(path)

        return Receipt.success(
            operation="checkout",
            target=target,
            output=f"[mock] checked out {len(wanted)} path(s)",
            metadata={"mock": True, "paths": list(wanted)},
        )

    def remove_paths(
        self, git_dir: Path, work_tree: Path, paths: Iterable[str]
    ) -> Receipt:
        unwanted = tuple(sorted(set(paths)))
        target = str(git_dir)
        self._call_log.append(MockCall("remove", target, unwanted))

        if ("remove", target) in self._failures:
            return Receipt.failure(
                operation="remove", target=target, error=self._failures[("remove", target)]
            )
        repo = self._repos.get(target)
        if repo is None:
            return Receipt.failure(operation="remove", target=target, error="no such repository")

        for path in unwanted:
            (work_tree / path).unlink(missing_ok=True)
            repo.deployed.discard(path)

        return Receipt.success(
            operation="remove",
            target=target,
            output=f"[mock] removed {len(unwanted)} path(s)",
            metadata={"mock": True, "paths": list(unwanted)},
        )

    def clone(self, url: str, destination: Path, branch: str | None = None) -> Receipt:
        target = str(destination)
        self._call_log.append(MockCall("clone", url))

        if ("clone", url) in self._failures:
            return Receipt.failure(
                operation="clone", target=target, error=self._failures[("clone", url)]
            )
        if url not in self._remotes:
            return Receipt.failure(
                operation="clone", target=target, error=f"remote not found: {url}"
            )
        if destination.exists():
            return Receipt.failure(
                operation="clone", target=target, error=f"Destination already exists: {destination}"
            )

        destination.mkdir(parents=True)
        self._repos[target] = MockRepository(files=dict(self._remotes[url]))
        return Receipt.success(
            operation="clone",
            target=target,
            output=f"[mock] cloned {url}",
            metadata={"mock": True, "url": url},
        )

    def init(
        self, destination: Path, definition: bytes, branch: str | None = None
    ) -> Receipt:
        target = str(destination)
        self._call_log.append(MockCall("init", target))

        if ("init", target) in self._failures:
            return Receipt.failure(
                operation="init", target=target, error=self._failures[("init", target)]
            )
        if destination.exists():
            return Receipt.failure(
                operation="init", target=target, error=f"Destination already exists: {destination}"
            )

        destination.mkdir(parents=True)
        self._repos[target] = MockRepository(files={DEFINITION_FILE: definition})
        return Receipt.success(
            operation="init",
            target=target,
            output="[mock] initialized",
            metadata={"mock": True, "branch": branch},
        )

    def run_git(self, git_dir: Path, work_tree: Path, args: Iterable[str]) -> int:
        target = str(git_dir)
        self._call_log.append(MockCall("git", target, tuple(args)))
        if ("git", target) in self._failures:
            return 1
        return 0 if target in self._repos else 128

    def reset(self) -> None:
        """Clear call log and configured failures."""
        self._call_log.clear()
        self._failures.clear()


def _encode(definition: str | None, files: dict[str, str] | None) -> dict[str, bytes]:
    encoded = {path: text.encode("utf-8") for path, text in (files or {}).items()}
    if definition is not None:
        encoded[DEFINITION_FILE] = definition.encode("utf-8")
    return encoded
