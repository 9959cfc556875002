"""
Manage use case: add clusters to the store, run git on them, remove them.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.core.config.definition_parser import render_definition
from dotcluster.core.config.expansion import ExpansionError, resolve_alias
from dotcluster.core.engine.orchestrator import apply_plan, generate_operation_id, plan_undeploy
from dotcluster.core.models.definition import Definition, Remote, validate_cluster_name
from dotcluster.core.models.plan import ApplyReport
from dotcluster.core.models.receipt import Receipt
from dotcluster.core.models.record import ClusterRecord
from dotcluster.core.models.settings import Settings
from dotcluster.core.persistence.audit import AuditEntry
from dotcluster.core.persistence.state_file import default_state_path, load_state, save_state
from dotcluster.core.reliability.retry import run_with_retry
from dotcluster.core.services.fetch import FetchReport, fetch_missing
from dotcluster.core.services.graph import build_graph, closure
from dotcluster.core.services.store_loader import cluster_dir
from dotcluster.core.use_cases.common import (
    audit_writer,
    check_store,
    default_backend,
    open_snapshot,
    retry_policy,
)

logger = logging.getLogger(__name__)


# ── Clone ───────────────────────────────────────────────────────


@dataclass
class CloneResult:
    """Result of cloning a cluster into the store."""

    name: str = ""
    url: str = ""
    receipt: Receipt | None = None
    record: ClusterRecord | None = None
    fetch: FetchReport | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        if self.error or self.record is None or not self.record.valid:
            return False
        return self.fetch is None or self.fetch.ok

    def to_dict(self) -> dict:
        result: dict = {"name": self.name, "url": self.url, "ok": self.ok}
        if self.error:
            result["error"] = self.error
        if self.record:
            result["record"] = self.record.to_dict()
        if self.fetch:
            result["fetch"] = self.fetch.to_dict()
        return result


def clone_cluster(
    store_root: Path,
    name: str,
    url: str,
    backend: RepositoryBackend | None = None,
    settings: Settings | None = None,
    branch: str | None = None,
    fetch: bool = True,
) -> CloneResult:
    """Clone a remote into the store, then fetch its missing dependencies.

    Args:
        store_root: Store directory (created if missing).
        name: Cluster name in the store.
        url: Remote to clone.
        backend: Repository backend (default: git).
        settings: Tool settings.
        branch: Branch to clone instead of the remote's HEAD.
        fetch: Also clone the cluster's missing dependencies.

    Returns:
        CloneResult with the new cluster's record.
    """
    backend = default_backend(backend)
    settings = settings or Settings()
    result = CloneResult(name=name, url=url)

    try:
        validate_cluster_name(name)
    except ValueError as e:
        result.error = str(e)
        return result

    store_root.mkdir(parents=True, exist_ok=True)
    result.error = check_store(store_root, backend)
    if result.error:
        return result

    destination = cluster_dir(store_root, name)
    if destination.exists():
        result.error = f"Cluster already exists: {name}"
        return result

    receipt = run_with_retry(
        lambda: backend.clone(url, destination, branch=branch),
        retry_policy(settings),
    )
    result.receipt = receipt
    _audit_receipt(store_root, "clone", name, receipt, {"url": url})
    if receipt.failed:
        result.error = receipt.error
        return result

    snapshot = open_snapshot(store_root, backend, settings)
    result.record = snapshot.get(name)
    if result.record is not None and not result.record.valid:
        result.error = f"Cloned {name}, but it is {result.record.state}: {result.record.reason}"
        return result

    if fetch:
        snapshot, result.fetch = fetch_missing(
            snapshot,
            [name],
            backend,
            default_alias=settings.default_work_tree_alias,
            jobs=settings.jobs,
            retry=retry_policy(settings),
        )
    return result


# ── Init ────────────────────────────────────────────────────────


@dataclass
class InitResult:
    """Result of creating a new, empty cluster in the store."""

    name: str = ""
    receipt: Receipt | None = None
    record: ClusterRecord | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None and self.record.valid

    def to_dict(self) -> dict:
        result: dict = {"name": self.name, "ok": self.ok}
        if self.error:
            result["error"] = self.error
        if self.record:
            result["record"] = self.record.to_dict()
        return result


def init_cluster(
    store_root: Path,
    name: str,
    backend: RepositoryBackend | None = None,
    settings: Settings | None = None,
    description: str | None = None,
    url: str | None = None,
    branch: str | None = None,
    work_tree_alias: str | None = None,
) -> InitResult:
    """Create cluster ``name`` with a first commit holding its ``cluster.toml``.

    The alias is written as given (default: the configured default), so
    ``~`` and ``$VAR`` stay portable across machines.
    """
    backend = default_backend(backend)
    settings = settings or Settings()
    result = InitResult(name=name)

    try:
        validate_cluster_name(name)
    except ValueError as e:
        result.error = str(e)
        return result

    store_root.mkdir(parents=True, exist_ok=True)
    result.error = check_store(store_root, backend)
    if result.error:
        return result

    destination = cluster_dir(store_root, name)
    if destination.exists():
        result.error = f"Cluster already exists: {name}"
        return result

    definition = Definition(
        description=description,
        work_tree_alias=work_tree_alias or settings.default_work_tree_alias,
        remote=Remote(url=url, branch=branch) if url else None,
    )
    receipt = backend.init(destination, render_definition(definition).encode(), branch=branch)
    result.receipt = receipt
    _audit_receipt(store_root, "init", name, receipt, {"url": url} if url else {})
    if receipt.failed:
        result.error = receipt.error
        return result

    result.record = open_snapshot(store_root, backend, settings).get(name)
    if result.record is not None and not result.record.valid:
        result.error = f"Created {name}, but it is {result.record.state}: {result.record.reason}"
    logger.info("Initialized cluster %s", name)
    return result


# ── Git passthrough ─────────────────────────────────────────────


@dataclass
class GitCallResult:
    """Exit code of a git command run on one cluster."""

    name: str = ""
    args: list[str] = field(default_factory=list)
    exit_code: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.exit_code == 0


def run_git(
    store_root: Path,
    name: str,
    args: list[str],
    backend: RepositoryBackend | None = None,
    settings: Settings | None = None,
) -> GitCallResult:
    """Run git on a cluster with its work tree alias as the work tree.

    A cluster whose definition is broken still gets the configured
    default alias, so its ``cluster.toml`` can be repaired through git.
    """
    backend = default_backend(backend)
    settings = settings or Settings()
    result = GitCallResult(name=name, args=list(args))

    result.error = check_store(store_root, backend)
    if result.error:
        return result

    git_dir = cluster_dir(store_root, name)
    if not git_dir.is_dir() or not backend.is_bare_alias(git_dir):
        result.error = f"Cluster not found: {name}"
        return result

    record = open_snapshot(store_root, backend, settings).get(name)
    alias = record.work_tree_alias if record is not None else None
    if alias is None:
        try:
            alias = resolve_alias(settings.default_work_tree_alias)
        except ExpansionError as e:
            result.error = str(e)
            return result

    logger.debug("git %s on %s (work tree %s)", " ".join(args), name, alias)
    result.exit_code = backend.run_git(git_dir, Path(alias), args)
    return result


# ── Remove ──────────────────────────────────────────────────────


@dataclass
class RemoveResult:
    """Result of removing clusters from the store."""

    targets: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    refused: dict[str, str] = field(default_factory=dict)
    report: ApplyReport | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.refused

    def to_dict(self) -> dict:
        result: dict = {
            "targets": self.targets,
            "removed": self.removed,
            "refused": self.refused,
            "ok": self.ok,
        }
        if self.error:
            result["error"] = self.error
        if self.report:
            result["undeploy"] = self.report.to_dict()
        return result


def remove_cluster(
    store_root: Path,
    names: list[str],
    backend: RepositoryBackend | None = None,
    settings: Settings | None = None,
    force: bool = False,
) -> RemoveResult:
    """Undeploy clusters and delete them from the store.

    A cluster another deployed cluster depends on is refused unless
    ``force`` is set. A cluster with a broken definition is undeployed
    from the recorded baseline. A cluster whose undeploy fails is kept,
    unless ``force`` is set, in which case its files are left behind.
    """
    backend = default_backend(backend)
    settings = settings or Settings()
    result = RemoveResult(targets=list(names))

    result.error = check_store(store_root, backend)
    if result.error:
        return result

    snapshot = open_snapshot(store_root, backend, settings)
    unknown = [name for name in names if name not in snapshot.records]
    if unknown:
        result.error = f"Cluster not found: {', '.join(unknown)}"
        return result

    state_path = default_state_path(store_root)
    state = load_state(state_path)
    graph = build_graph(snapshot)

    if not force:
        for other in state.deployed_clusters():
            if other in names or other not in graph:
                continue
            for member, _ in closure(graph, other):
                if member in names and member not in result.refused:
                    result.refused[member] = f"required by deployed cluster {other!r}"

    candidates = [name for name in names if name not in result.refused]
    deployed = [
        name for name in candidates
        if snapshot.records[name].valid or state.is_deployed(name)
    ]

    operation_id = generate_operation_id()
    if deployed:
        plan = plan_undeploy(snapshot, deployed, backend, state, operation_id=operation_id)
        result.report = apply_plan(plan, backend, state)
        for name in deployed:
            if not state.is_deployed(name):
                continue
            receipt = result.report.results.get(name)
            if receipt is not None:
                reason = receipt.error or receipt.output
            else:
                reason = plan.rejected.get(name, "not planned")
            if force:
                logger.warning("Removing %s with files still deployed: %s", name, reason)
            else:
                result.refused[name] = f"undeploy failed: {reason}"

    for name in candidates:
        if name in result.refused:
            continue
        try:
            shutil.rmtree(cluster_dir(store_root, name))
        except OSError as e:
            result.refused[name] = f"cannot delete: {e}"
            continue
        state.clear_deployment(name)
        result.removed.append(name)
        logger.info("Removed cluster %s", name)

    try:
        save_state(state, state_path)
    except OSError as e:
        result.error = f"Could not save state: {e}"

    audit_writer(store_root).write(
        AuditEntry(
            operation_id=operation_id,
            operation_type="remove",
            targets=list(names),
            clusters_affected=result.removed,
            status="ok" if result.ok else "partial" if result.removed else "failed",
            clusters_total=len(names),
            clusters_succeeded=len(result.removed),
            clusters_failed=len(result.refused),
            errors=[f"{n}: {r}" for n, r in result.refused.items()],
        )
    )
    return result


def _audit_receipt(
    store_root: Path, operation: str, name: str, receipt: Receipt, context: dict
) -> None:
    audit_writer(store_root).write(
        AuditEntry(
            operation_id=generate_operation_id(),
            operation_type=operation,
            targets=[name],
            clusters_affected=[name] if receipt.ok else [],
            status="ok" if receipt.ok else "failed",
            clusters_total=1,
            clusters_succeeded=1 if receipt.ok else 0,
            clusters_failed=1 if receipt.failed else 0,
            duration_ms=receipt.duration_ms,
            errors=[receipt.error] if receipt.error else [],
            context=context,
        )
    )
