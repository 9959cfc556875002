"""
Deployment orchestrator: plan and apply deploy/undeploy operations.

Planning composes the resolver's order with the sparsity engine's
deltas: one entry per cluster, dependencies first for deploy and last
for undeploy. Applying runs the entries strictly in plan order. When an
entry fails, every later entry that requires it (directly or through
another halted entry) is skipped; independent entries still run.

Flow:
    snapshot → resolve → rules per root → union of root paths → delta → apply → baseline
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.core.models.plan import ApplyReport, DeploymentPlan, PlanEntry
from dotcluster.core.models.receipt import Receipt
from dotcluster.core.models.record import StoreSnapshot
from dotcluster.core.models.state import (
    DeploymentRecord,
    OperationRecord,
    RootRequest,
    StoreState,
)
from dotcluster.core.persistence.audit import AuditEntry, AuditWriter
from dotcluster.core.services.graph import build_graph, resolve_order
from dotcluster.core.services.sparsity import (
    RuleSet,
    compute_delta,
    desired_paths,
    normalize_rules,
)

logger = logging.getLogger(__name__)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"


# ── Planning ────────────────────────────────────────────────────


def _tracked_lookup(
    snapshot: StoreSnapshot, backend: RepositoryBackend
) -> Callable[[str], list[str]]:
    """Tracked files by cluster name, listed at most once per plan."""
    cache: dict[str, list[str]] = {}

    def _tracked(name: str) -> list[str]:
        if name not in cache:
            cache[name] = backend.tracked_files(snapshot.records[name].git_dir)
        return cache[name]

    return _tracked


def plan_deploy(
    snapshot: StoreSnapshot,
    targets: Iterable[str],
    backend: RepositoryBackend,
    state: StoreState,
    *,
    extra_rules: Iterable[str] = (),
    deploy_all: bool = False,
    operation_id: str | None = None,
) -> DeploymentPlan:
    """Plan deploying ``targets`` and their dependencies.

    Clusters already deployed by name keep contributing their paths to
    the dependencies they share with the targets, so deploying one
    cluster never narrows what another deployed cluster put in place.

    Args:
        snapshot: Current store snapshot.
        targets: Clusters to deploy.
        backend: Used to list each cluster's tracked files.
        state: Deployment baseline the deltas are computed against.
        extra_rules: Additional include rules for the targets only.
        deploy_all: Deploy every tracked file of the targets.
        operation_id: Reuse an ID (default: a new one).

    Returns:
        DeploymentPlan. Targets that cannot be resolved are listed in
        ``rejected`` and contribute no entries.
    """
    graph = build_graph(snapshot)
    resolution = resolve_order(graph, targets)
    plan = DeploymentPlan(
        operation="deploy",
        operation_id=operation_id or generate_operation_id(),
        targets=resolution.roots,
        rejected=resolution.failed_roots,
    )

    request = RootRequest(include=normalize_rules(extra_rules), deploy_all=deploy_all)
    requests = {root: request for root in resolution.roots if root not in plan.rejected}
    for name, previous in state.requests().items():
        requests.setdefault(name, previous)
    desired = desired_paths(
        graph, snapshot, requests.items(), _tracked_lookup(snapshot, backend)
    )

    for name in resolution.order:
        record = snapshot.records[name]
        alias = record.work_tree_alias
        want = desired[name]
        baseline = state.get_record(name, alias)
        if name in plan.targets:
            entry_request = request
        else:
            entry_request = baseline.request if baseline else None
        plan.entries.append(
            PlanEntry(
                cluster=name,
                git_dir=str(record.git_dir),
                work_tree_alias=alias,
                delta=compute_delta(state.deployed_paths(name, alias), want.paths),
                paths=want.paths,
                include=want.rules.include,
                exclude=want.rules.exclude,
                requires=graph.edges[name],
                request=entry_request,
            )
        )

    logger.debug(
        "Planned deploy %s: order=%s rejected=%s",
        plan.operation_id, plan.order, sorted(plan.rejected),
    )
    return plan


def plan_undeploy(
    snapshot: StoreSnapshot,
    targets: Iterable[str],
    backend: RepositoryBackend,
    state: StoreState,
    *,
    operation_id: str | None = None,
) -> DeploymentPlan:
    """Plan undeploying ``targets`` and the dependencies nothing else needs.

    A dependency still wanted by another cluster deployed by name (or
    deployed by name itself) stays, listed in ``kept``, and shrinks back
    to the paths those clusters give it. Missing or invalid dependencies
    are left alone and never block their parents. A target whose own
    definition is broken is undeployed from the baseline. Entries run
    dependents first, so a cluster is never left referencing a removed
    dependency. Only a cycle rejects a target.
    """
    graph = build_graph(snapshot)
    requested = list(dict.fromkeys(targets))
    plan = DeploymentPlan(
        operation="undeploy",
        operation_id=operation_id or generate_operation_id(),
        targets=requested,
    )

    broken: list[str] = []
    walkable: list[str] = []
    for name in requested:
        record = snapshot.get(name)
        if record is None:
            plan.rejected[name] = f"cluster {name!r} is not in the store"
        elif record.valid:
            walkable.append(name)
        elif state.is_deployed(name):
            broken.append(name)
        else:
            plan.rejected[name] = f"cluster {name!r} is invalid: {record.reason}"

    resolution = resolve_order(graph, walkable, allow_unresolved=True)
    plan.rejected.update(resolution.failed_roots)
    for dep in resolution.missing + resolution.invalid:
        if state.is_deployed(dep.name) and dep.name not in requested:
            reason = graph.invalid.get(dep.name, "not in the store")
            plan.kept.setdefault(dep.name, f"cannot be resolved: {reason}")

    remaining = [(name, req) for name, req in state.requests().items() if name not in requested]
    desired = desired_paths(graph, snapshot, remaining, _tracked_lookup(snapshot, backend))

    planned: set[str] = set()
    for name in reversed(resolution.order):
        record = snapshot.records[name]
        alias = record.work_tree_alias
        baseline = state.get_record(name, alias)
        keep = desired.get(name) if name not in requested else None

        if keep is None:
            paths: frozenset[str] = frozenset()
            include, exclude, _ = _recorded_rules(baseline)
            request = None
        else:
            by = [root for root in keep.roots if root != name]
            plan.kept[name] = f"still required by {by[0]!r}" if by else "deployed by request"
            paths = keep.paths
            include, exclude = keep.rules.include, keep.rules.exclude
            request = baseline.request if baseline else None

        delta = compute_delta(state.deployed_paths(name, alias), paths)
        if keep is not None and delta.empty:
            continue
        plan.entries.append(
            PlanEntry(
                cluster=name,
                git_dir=str(record.git_dir),
                work_tree_alias=alias,
                delta=delta,
                paths=paths,
                include=include,
                exclude=exclude,
                requires=tuple(p for p in graph.dependents(name) if p in planned),
                request=request,
            )
        )
        planned.add(name)

    for name in broken:
        baseline = state.records_of(name)[0]
        plan.entries.append(
            PlanEntry(
                cluster=name,
                git_dir=str(snapshot.records[name].git_dir),
                work_tree_alias=baseline.work_tree_alias,
                delta=compute_delta(baseline.paths, ()),
                include=tuple(baseline.include),
                exclude=tuple(baseline.exclude),
            )
        )

    logger.debug(
        "Planned undeploy %s: order=%s kept=%s",
        plan.operation_id, plan.order, sorted(plan.kept),
    )
    return plan


def plan_undeploy_rules(
    snapshot: StoreSnapshot,
    target: str,
    state: StoreState,
    rules: Iterable[str] = (),
    *,
    use_default: bool = False,
    operation_id: str | None = None,
) -> DeploymentPlan:
    """Plan removing the deployed paths of one cluster that match ``rules``.

    Dependencies are not touched. ``use_default`` matches against the
    cluster's own include rules instead. The rules are appended to the
    recorded excludes so ``status --rules`` shows what was taken out;
    the next deploy recomputes from the definitions.
    """
    plan = DeploymentPlan(
        operation="undeploy",
        operation_id=operation_id or generate_operation_id(),
        targets=[target],
    )
    record = snapshot.get(target)
    if record is None:
        plan.rejected[target] = f"cluster {target!r} is not in the store"
        return plan

    if use_default:
        if record.definition is None:
            plan.rejected[target] = f"cluster {target!r} is invalid: {record.reason}"
            return plan
        rules = record.definition.include
    rule_set = RuleSet.from_rules(rules)

    alias = record.work_tree_alias if record.valid else None
    baseline = state.get_record(target, alias) if alias else None
    if baseline is None and state.records_of(target):
        baseline = state.records_of(target)[0]
    if baseline is None:
        alias = alias or ""
        previous: frozenset[str] = frozenset()
    else:
        alias = baseline.work_tree_alias
        previous = frozenset(baseline.paths)

    paths = frozenset(path for path in previous if not rule_set.matches(path))
    include, exclude, request = _recorded_rules(baseline)
    plan.entries.append(
        PlanEntry(
            cluster=target,
            git_dir=str(record.git_dir),
            work_tree_alias=alias,
            delta=compute_delta(previous, paths),
            paths=paths,
            include=include,
            exclude=tuple(dict.fromkeys(exclude + rule_set.include)),
            request=request,
        )
    )
    return plan


def _recorded_rules(
    baseline: DeploymentRecord | None,
) -> tuple[tuple[str, ...], tuple[str, ...], RootRequest | None]:
    if baseline is None:
        return (), (), None
    return tuple(baseline.include), tuple(baseline.exclude), baseline.request


# ── Applying ────────────────────────────────────────────────────


def apply_plan(
    plan: DeploymentPlan,
    backend: RepositoryBackend,
    state: StoreState,
) -> ApplyReport:
    """Execute a plan's entries in order and update the baseline in place.

    Args:
        plan: The plan to apply.
        backend: Repository backend that adds and removes paths.
        state: Baseline; updated to what is actually deployed afterwards.

    Returns:
        ApplyReport with one receipt per entry.
    """
    report = ApplyReport(operation=plan.operation, operation_id=plan.operation_id)
    started_at = datetime.now(UTC).isoformat()
    halted: set[str] = set()

    for entry in plan.entries:
        blockers = [name for name in entry.requires if name in halted]
        if blockers:
            receipt = Receipt.skip(
                operation=plan.operation,
                target=entry.cluster,
                reason=f"halted: {blockers[0]!r} did not complete",
            )
            halted.add(entry.cluster)
        elif entry.delta.empty:
            if entry.paths:
                # Nothing to move on disk, but the rules or request may have changed.
                _record_entry(entry, state)
            reason = "up to date" if plan.operation == "deploy" else "not deployed"
            receipt = Receipt.skip(operation=plan.operation, target=entry.cluster, reason=reason)
        else:
            receipt = _apply_entry(plan.operation, entry, backend, state)
            if receipt.failed:
                halted.add(entry.cluster)

        report.results[entry.cluster] = receipt

        status_marker = "✓" if receipt.ok else "✗" if receipt.failed else "⊘"
        logger.info(
            "%s %s:%s → %s",
            status_marker,
            entry.cluster,
            plan.operation,
            receipt.status,
        )

    state.last_operation = OperationRecord(
        operation_id=plan.operation_id,
        operation=plan.operation,
        started_at=started_at,
        ended_at=datetime.now(UTC).isoformat(),
        status=report.status,
        clusters_total=report.total,
        clusters_succeeded=report.succeeded,
        clusters_failed=report.failed,
    )
    return report


def _apply_entry(
    operation: str,
    entry: PlanEntry,
    backend: RepositoryBackend,
    state: StoreState,
) -> Receipt:
    """Remove then check out one entry's delta, recording what stuck."""
    git_dir = Path(entry.git_dir)
    work_tree = Path(entry.work_tree_alias)
    previous = state.deployed_paths(entry.cluster, entry.work_tree_alias)
    baseline = state.get_record(entry.cluster, entry.work_tree_alias)
    delta = entry.delta

    if delta.paths_to_remove:
        removed = backend.remove_paths(git_dir, work_tree, delta.paths_to_remove)
        if removed.failed:
            return Receipt.failure(
                operation=operation,
                target=entry.cluster,
                error=f"remove failed: {removed.error}",
            )

    if delta.paths_to_checkout:
        checked_out = backend.checkout_paths(git_dir, work_tree, delta.paths_to_checkout)
        if checked_out.failed:
            state.set_deployment(
                entry.cluster,
                entry.work_tree_alias,
                previous - delta.paths_to_remove,
                include=baseline.include if baseline else (),
                exclude=baseline.exclude if baseline else (),
                request=baseline.request if baseline else None,
            )
            return Receipt.failure(
                operation=operation,
                target=entry.cluster,
                error=f"checkout failed: {checked_out.error}",
            )

    _record_entry(entry, state)
    return Receipt.success(
        operation=operation,
        target=entry.cluster,
        output=(
            f"+{len(delta.paths_to_checkout)} -{len(delta.paths_to_remove)} "
            f"in {entry.work_tree_alias}"
        ),
        metadata={
            "added": sorted(delta.paths_to_checkout),
            "removed": sorted(delta.paths_to_remove),
        },
    )


def write_audit_entry(
    report: ApplyReport,
    audit_writer: AuditWriter,
    targets: list[str],
    duration_ms: int = 0,
) -> None:
    """Write an apply report to the audit ledger."""
    entry = AuditEntry(
        operation_id=report.operation_id,
        operation_type=report.operation,
        targets=targets,
        clusters_affected=[name for name, r in report.results.items() if r.ok],
        status=report.status,
        clusters_total=report.total,
        clusters_succeeded=report.succeeded,
        clusters_failed=report.failed,
        duration_ms=duration_ms,
        errors=[f"{name}: {r.error}" for name, r in report.results.items() if r.failed],
    )
    audit_writer.write(entry)


def _record_entry(entry: PlanEntry, state: StoreState) -> None:
    state.set_deployment(
        entry.cluster,
        entry.work_tree_alias,
        entry.paths,
        include=entry.include,
        exclude=entry.exclude,
        request=entry.request,
    )
