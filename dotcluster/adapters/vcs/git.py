"""
Git backend: bare-alias repositories driven through the git CLI.

Every cluster is a bare repository. Its tracked files are materialized
into the work tree alias with git's sparse checkout: the backend keeps
``<git_dir>/info/sparse-checkout`` listing exactly the deployed paths
and runs ``read-tree -mu HEAD`` so git adds or removes only the entries
whose membership changed. Uses the git CLI, never libgit bindings.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import time
from collections.abc import Iterable
from pathlib import Path

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.core.models.definition import DEFINITION_FILE
from dotcluster.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

_SPARSE_SPECIALS = re.compile(r"([\\*?\[\]])")

_FALLBACK_NAME = "dotcluster"
_FALLBACK_EMAIL = "dotcluster@localhost"

# Config every cluster repository is kept at
_REPO_CONFIG = {
    "status.showUntrackedFiles": "no",
    "core.sparseCheckout": "true",
    "core.sparseCheckoutCone": "false",
    "advice.updateSparsePath": "false",
}


def sparse_line(path: str) -> str:
    """Anchored, escaped sparse-checkout line matching exactly ``path``."""
    escaped = _SPARSE_SPECIALS.sub(r"\\\1", path)
    if escaped.endswith(" "):
        escaped = escaped[:-1] + "\\ "
    return "/" + escaped


class GitBackend(RepositoryBackend):
    """Repository operations through the git binary.

    Args:
        binary: git executable name or path.
        timeout: Timeout in seconds for local operations.
        clone_timeout: Timeout in seconds for clones.
    """

    def __init__(self, binary: str = "git", timeout: int = 30, clone_timeout: int = 600):
        self._binary = binary
        self._timeout = timeout
        self._clone_timeout = clone_timeout

    @property
    def name(self) -> str:
        return "git"

    def is_available(self) -> bool:
        return shutil.which(self._binary) is not None

    # ── Queries ─────────────────────────────────────────────────

    def is_bare_alias(self, git_dir: Path) -> bool:
        if not git_dir.is_dir():
            return False
        try:
            out = self._git(["rev-parse", "--is-bare-repository"], git_dir)
        except (RuntimeError, OSError, subprocess.TimeoutExpired) as e:
            logger.debug("Not a repository: %s (%s)", git_dir, e)
            return False
        return out.strip() == "true"

    def read_file(self, git_dir: Path, path: str) -> bytes | None:
        try:
            result = self._run(
                self._base(git_dir) + ["show", f"HEAD:{path}"],
                cwd=git_dir,
                timeout=self._timeout,
                text=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Cannot read %s from %s: %s", path, git_dir, e)
            return None
        if result.returncode != 0:
            return None
        return result.stdout

    def tracked_files(self, git_dir: Path) -> list[str]:
        try:
            result = self._run(
                self._base(git_dir) + ["ls-tree", "-r", "-z", "--name-only", "HEAD"],
                cwd=git_dir,
                timeout=self._timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Cannot list tracked files of %s: %s", git_dir, e)
            return []
        if result.returncode != 0:
            # No HEAD yet: an empty cluster tracks nothing.
            return []
        return sorted(p for p in result.stdout.split("\0") if p)

    # ── Operations ──────────────────────────────────────────────

    def checkout_paths(
        self, git_dir: Path, work_tree: Path, paths: Iterable[str]
    ) -> Receipt:
        wanted = sorted(set(paths))
        target = str(git_dir)
        if not wanted:
            return Receipt.skip(operation="checkout", target=target, reason="no paths")

        start = time.monotonic()
        try:
            self._configure(git_dir)
            lines = self._read_sparse(git_dir)
            present = set(lines)
            for path in wanted:
                line = sparse_line(path)
                if line not in present:
                    lines.append(line)
                    present.add(line)
            self._write_sparse(git_dir, lines)
            output = self._git(["read-tree", "-mu", "HEAD"], git_dir, work_tree=work_tree)
        except (RuntimeError, OSError, subprocess.TimeoutExpired) as e:
            return Receipt.failure(
                operation="checkout",
                target=target,
                error=f"Git error: {e}",
                duration_ms=int((time.monotonic() - start) * 1000),
                metadata={"paths": wanted},
            )

        return Receipt.success(
            operation="checkout",
            target=target,
            output=output.strip(),
            duration_ms=int((time.monotonic() - start) * 1000),
            metadata={"paths": wanted, "work_tree": str(work_tree)},
        )

    def remove_paths(
        self, git_dir: Path, work_tree: Path, paths: Iterable[str]
    ) -> Receipt:
        unwanted = sorted(set(paths))
        target = str(git_dir)
        if not unwanted:
            return Receipt.skip(operation="remove", target=target, reason="no paths")

        start = time.monotonic()
        try:
            self._configure(git_dir)
            drop = {sparse_line(p) for p in unwanted}
            lines = [line for line in self._read_sparse(git_dir) if line not in drop]
            self._write_sparse(git_dir, lines)
            output = self._git(["read-tree", "-mu", "HEAD"], git_dir, work_tree=work_tree)
        except (RuntimeError, OSError, subprocess.TimeoutExpired) as e:
            return Receipt.failure(
                operation="remove",
                target=target,
                error=f"Git error: {e}",
                duration_ms=int((time.monotonic() - start) * 1000),
                metadata={"paths": unwanted},
            )

        return Receipt.success(
            operation="remove",
            target=target,
            output=output.strip(),
            duration_ms=int((time.monotonic() - start) * 1000),
            metadata={"paths": unwanted, "work_tree": str(work_tree)},
        )

    def clone(self, url: str, destination: Path, branch: str | None = None) -> Receipt:
        target = str(destination)
        if destination.exists():
            return Receipt.failure(
                operation="clone",
                target=target,
                error=f"Destination already exists: {destination}",
            )

        cmd = [self._binary, "clone", "--bare", "--quiet"]
        if branch:
            cmd += ["--branch", branch]
        cmd += [url, str(destination)]

        logger.info("Cloning %s into %s", url, destination)
        start = time.monotonic()
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            result = self._run(cmd, cwd=destination.parent, timeout=self._clone_timeout)
            if result.returncode != 0:
                raise RuntimeError(result.stderr.strip() or f"git clone exited {result.returncode}")
            self._configure(destination)
        except (RuntimeError, OSError, subprocess.TimeoutExpired) as e:
            shutil.rmtree(destination, ignore_errors=True)
            return Receipt.failure(
                operation="clone",
                target=target,
                error=f"Clone of {url} failed: {e}",
                duration_ms=int((time.monotonic() - start) * 1000),
                metadata={"url": url},
            )

        return Receipt.success(
            operation="clone",
            target=target,
            output=f"cloned {url}",
            duration_ms=int((time.monotonic() - start) * 1000),
            metadata={"url": url, "branch": branch},
        )

    def init(
        self, destination: Path, definition: bytes, branch: str | None = None
    ) -> Receipt:
        """Create a bare repository and commit the definition with plumbing only.

        hash-object + mktree + commit-tree + update-ref, so no index or
        work tree is ever needed.
        """
        target = str(destination)
        if destination.exists():
            return Receipt.failure(
                operation="init",
                target=target,
                error=f"Destination already exists: {destination}",
            )

        cmd = [self._binary, "init", "--bare", "--quiet"]
        if branch:
            cmd.append(f"--initial-branch={branch}")
        cmd.append(str(destination))

        logger.info("Initializing cluster repository %s", destination)
        start = time.monotonic()
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            result = self._run(cmd, cwd=destination.parent, timeout=self._timeout)
            if result.returncode != 0:
                raise RuntimeError(result.stderr.strip() or f"git init exited {result.returncode}")
            self._configure(destination)

            blob = self._git(
                ["hash-object", "-w", "--stdin"], destination,
                input=definition.decode("utf-8"),
            ).strip()
            tree = self._git(
                ["mktree"], destination, input=f"100644 blob {blob}\t{DEFINITION_FILE}\n"
            ).strip()
            commit = self._git(
                ["commit-tree", tree, "-m", f"Initialize {destination.stem} cluster"],
                destination,
                env=self._identity(destination),
            ).strip()
            self._git(["update-ref", "HEAD", commit], destination)
        except (RuntimeError, OSError, UnicodeDecodeError, subprocess.TimeoutExpired) as e:
            shutil.rmtree(destination, ignore_errors=True)
            return Receipt.failure(
                operation="init",
                target=target,
                error=f"Init of {destination} failed: {e}",
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        return Receipt.success(
            operation="init",
            target=target,
            output=f"initialized {destination.name} at {commit[:12]}",
            duration_ms=int((time.monotonic() - start) * 1000),
            metadata={"commit": commit, "branch": branch},
        )

    def run_git(self, git_dir: Path, work_tree: Path, args: Iterable[str]) -> int:
        cmd = self._base(git_dir, work_tree) + list(args)
        logger.debug("Executing: %s (cwd=%s)", " ".join(cmd), work_tree)
        try:
            return subprocess.run(cmd, cwd=work_tree).returncode
        except OSError as e:
            logger.error("Cannot run %s: %s", self._binary, e)
            return 127

    # ── Helpers ─────────────────────────────────────────────────

    def _base(self, git_dir: Path, work_tree: Path | None = None) -> list[str]:
        cmd = [self._binary, f"--git-dir={git_dir}"]
        if work_tree is not None:
            cmd.append(f"--work-tree={work_tree}")
        return cmd

    def _run(
        self,
        cmd: list[str],
        cwd: Path,
        timeout: int,
        text: bool = True,
        input: str | None = None,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess:
        logger.debug("Executing: %s (cwd=%s)", " ".join(cmd), cwd)
        return subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=text,
            input=input,
            timeout=timeout,
            env={**os.environ, **env} if env else None,
        )

    def _git(
        self,
        args: list[str],
        git_dir: Path,
        work_tree: Path | None = None,
        input: str | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        """Run a git command against a repository and return stdout."""
        result = self._run(
            self._base(git_dir, work_tree) + args,
            cwd=work_tree or git_dir,
            timeout=self._timeout,
            input=input,
            env=env,
        )
        if result.returncode != 0:
            raise RuntimeError(result.stderr.strip() or f"git {args[0]} failed")
        return result.stdout

    def _identity(self, git_dir: Path) -> dict[str, str] | None:
        """Fallback author for commits when git cannot work one out itself."""
        result = self._run(
            self._base(git_dir) + ["var", "GIT_COMMITTER_IDENT"],
            cwd=git_dir,
            timeout=self._timeout,
        )
        if result.returncode == 0:
            return None
        return {
            "GIT_AUTHOR_NAME": _FALLBACK_NAME,
            "GIT_AUTHOR_EMAIL": _FALLBACK_EMAIL,
            "GIT_COMMITTER_NAME": _FALLBACK_NAME,
            "GIT_COMMITTER_EMAIL": _FALLBACK_EMAIL,
        }

    def _configure(self, git_dir: Path) -> None:
        for key, value in _REPO_CONFIG.items():
            self._git(["config", key, value], git_dir)

    def _sparse_file(self, git_dir: Path) -> Path:
        return git_dir / "info" / "sparse-checkout"

    def _read_sparse(self, git_dir: Path) -> list[str]:
        path = self._sparse_file(git_dir)
        if not path.is_file():
            return []
        lines: list[str] = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if line and line not in lines:
                lines.append(line)
        return lines

    def _write_sparse(self, git_dir: Path, lines: list[str]) -> None:
        path = self._sparse_file(git_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        content = "\n".join(lines) + "\n" if lines else ""
        path.write_text(content, encoding="utf-8")
