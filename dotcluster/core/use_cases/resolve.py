"""
Resolve use case: dependency order for a set of clusters.

Missing dependencies are cloned first (unless fetching is disabled),
then the order is computed once from the final snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.core.engine.orchestrator import plan_deploy
from dotcluster.core.models.plan import DeploymentPlan
from dotcluster.core.models.settings import Settings
from dotcluster.core.persistence.state_file import default_state_path, load_state
from dotcluster.core.services.fetch import FetchReport, fetch_missing
from dotcluster.core.services.graph import (
    Resolution,
    ResolutionError,
    build_graph,
    resolve_order,
)
from dotcluster.core.use_cases.common import (
    check_store,
    default_backend,
    open_snapshot,
    retry_policy,
)


@dataclass
class ResolveResult:
    """Result of resolving clusters."""

    targets: list[str] = field(default_factory=list)
    resolution: Resolution | None = None
    plan: DeploymentPlan | None = None
    fetch: FetchReport | None = None
    error: str | None = None

    @property
    def order(self) -> list[str]:
        return self.resolution.order if self.resolution else []

    @property
    def ok(self) -> bool:
        return self.error is None and self.resolution is not None and self.resolution.ok

    def to_dict(self) -> dict:
        result: dict = {"targets": self.targets, "ok": self.ok}
        if self.error:
            result["error"] = self.error
        if self.resolution:
            result.update(self.resolution.to_dict())
        if self.plan:
            result["plan"] = self.plan.to_dict()
        if self.fetch:
            result["fetch"] = self.fetch.to_dict()
        return result


def resolve(
    store_root: Path,
    targets: list[str],
    backend: RepositoryBackend | None = None,
    settings: Settings | None = None,
    fetch: bool = True,
) -> ResolveResult:
    """Resolve ``targets`` into a dependency-first order and deploy plan.

    Args:
        store_root: Store directory.
        targets: Requested clusters.
        backend: Repository backend (default: git).
        settings: Tool settings.
        fetch: Clone missing dependencies before resolving.

    Returns:
        ResolveResult. ``error`` is set when a target is part of a
        cycle or cannot be resolved.
    """
    backend = default_backend(backend)
    settings = settings or Settings()
    result = ResolveResult(targets=list(targets))

    result.error = check_store(store_root, backend)
    if result.error:
        return result

    snapshot = open_snapshot(store_root, backend, settings)
    if fetch:
        snapshot, result.fetch = fetch_missing(
            snapshot,
            targets,
            backend,
            default_alias=settings.default_work_tree_alias,
            jobs=settings.jobs,
            retry=retry_policy(settings),
        )

    resolution = resolve_order(build_graph(snapshot), targets)
    result.resolution = resolution
    try:
        resolution.raise_for_cycles()
    except ResolutionError as e:
        result.error = str(e)
        return result

    if resolution.blocked:
        result.error = "; ".join(resolution.blocked.values())
        return result

    state = load_state(default_state_path(store_root))
    result.plan = plan_deploy(snapshot, targets, backend, state)
    return result
