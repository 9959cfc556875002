"""
Deploy use case: deploy or undeploy clusters and persist the result.

The full vertical slice: scan the store, fetch missing dependencies,
plan against the persisted baseline, apply, save the new baseline and
append to the audit ledger.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.core.engine.orchestrator import (
    apply_plan,
    plan_deploy,
    plan_undeploy,
    plan_undeploy_rules,
    write_audit_entry,
)
from dotcluster.core.models.plan import ApplyReport, DeploymentPlan
from dotcluster.core.models.settings import Settings
from dotcluster.core.persistence.state_file import default_state_path, load_state, save_state
from dotcluster.core.services.fetch import FetchReport, fetch_missing
from dotcluster.core.use_cases.common import (
    audit_writer,
    check_store,
    default_backend,
    open_snapshot,
    retry_policy,
)

logger = logging.getLogger(__name__)


@dataclass
class DeployResult:
    """Result of a deploy or undeploy."""

    targets: list[str] = field(default_factory=list)
    plan: DeploymentPlan | None = None
    report: ApplyReport | None = None
    fetch: FetchReport | None = None
    dry_run: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        if self.error or self.plan is None or self.plan.rejected:
            return False
        return self.report is None or self.report.all_ok

    def to_dict(self) -> dict:
        result: dict = {"targets": self.targets, "ok": self.ok, "dry_run": self.dry_run}
        if self.error:
            result["error"] = self.error
        if self.fetch:
            result["fetch"] = self.fetch.to_dict()
        if self.plan:
            result["plan"] = self.plan.to_dict()
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def run_deploy(
    store_root: Path,
    targets: list[str],
    backend: RepositoryBackend | None = None,
    settings: Settings | None = None,
    extra_rules: list[str] | None = None,
    deploy_all: bool = False,
    dry_run: bool = False,
    fetch: bool = True,
) -> DeployResult:
    """Deploy clusters and their dependencies.

    Args:
        store_root: Store directory.
        targets: Clusters to deploy.
        backend: Repository backend (default: git).
        settings: Tool settings.
        extra_rules: Include rules added to the targets' own rules.
        deploy_all: Deploy every tracked file of the targets.
        dry_run: Plan only; nothing is changed.
        fetch: Clone missing dependencies first.

    Returns:
        DeployResult with the plan and, unless dry-run, the apply report.
    """
    backend = default_backend(backend)
    settings = settings or Settings()
    result = DeployResult(targets=list(targets), dry_run=dry_run)

    result.error = check_store(store_root, backend)
    if result.error:
        return result

    snapshot = open_snapshot(store_root, backend, settings)
    if fetch and not dry_run:
        snapshot, result.fetch = fetch_missing(
            snapshot,
            targets,
            backend,
            default_alias=settings.default_work_tree_alias,
            jobs=settings.jobs,
            retry=retry_policy(settings),
        )

    state_path = default_state_path(store_root)
    state = load_state(state_path)
    result.plan = plan_deploy(
        snapshot,
        targets,
        backend,
        state,
        extra_rules=extra_rules or (),
        deploy_all=deploy_all,
    )
    if dry_run:
        return result

    return _apply(result, store_root, backend, state, state_path)


def run_undeploy(
    store_root: Path,
    targets: list[str],
    backend: RepositoryBackend | None = None,
    settings: Settings | None = None,
    dry_run: bool = False,
    rules: list[str] | None = None,
    use_default: bool = False,
) -> DeployResult:
    """Undeploy clusters and the dependencies nothing else still needs.

    With ``rules`` (or ``use_default``) only the matching paths of a
    single target are removed and its dependencies are left alone.
    """
    backend = default_backend(backend)
    settings = settings or Settings()
    result = DeployResult(targets=list(targets), dry_run=dry_run)

    result.error = check_store(store_root, backend)
    if result.error:
        return result

    partial = bool(rules) or use_default
    if partial and len(targets) != 1:
        result.error = "Undeploying by rules takes exactly one cluster"
        return result

    snapshot = open_snapshot(store_root, backend, settings)
    state_path = default_state_path(store_root)
    state = load_state(state_path)
    if partial:
        result.plan = plan_undeploy_rules(
            snapshot, targets[0], state, rules or (), use_default=use_default
        )
    else:
        result.plan = plan_undeploy(snapshot, targets, backend, state)
    if dry_run:
        return result

    return _apply(result, store_root, backend, state, state_path)


def _apply(result, store_root, backend, state, state_path) -> DeployResult:
    """Apply the planned operation, then persist baseline and audit entry."""
    plan = result.plan
    for name, reason in plan.rejected.items():
        logger.warning("Skipping %s: %s", name, reason)

    start = time.monotonic()
    result.report = apply_plan(plan, backend, state)
    duration_ms = int((time.monotonic() - start) * 1000)

    try:
        save_state(state, state_path)
    except OSError as e:
        result.error = f"Applied, but could not save state: {e}"

    write_audit_entry(result.report, audit_writer(store_root), plan.targets, duration_ms)
    return result
