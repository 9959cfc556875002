"""
Plan models: what a deploy or undeploy will do, and what it did.

A DeploymentPlan is an ordered list of entries, one per cluster, each
carrying the minimal RuleDelta for that cluster. An ApplyReport holds
one Receipt per cluster touched by the plan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from dotcluster.core.models.receipt import Receipt
from dotcluster.core.models.state import RootRequest

Operation = Literal["deploy", "undeploy"]


@dataclass(frozen=True)
class RuleDelta:
    """The minimal transition between two deployed path sets."""

    paths_to_checkout: frozenset[str] = frozenset()
    paths_to_remove: frozenset[str] = frozenset()

    @property
    def empty(self) -> bool:
        return not self.paths_to_checkout and not self.paths_to_remove

    def to_dict(self) -> dict:
        return {
            "checkout": sorted(self.paths_to_checkout),
            "remove": sorted(self.paths_to_remove),
        }


@dataclass(frozen=True)
class PlanEntry:
    """One cluster's step in a plan.

    ``paths`` is the full set of paths that will be deployed once the
    entry is applied. ``requires`` names earlier entries that must
    succeed before this one may run. ``request`` is stored with the
    new baseline so later operations know the cluster was asked for.
    """

    cluster: str
    git_dir: str
    work_tree_alias: str
    delta: RuleDelta
    paths: frozenset[str] = frozenset()
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()
    request: RootRequest | None = None

    def to_dict(self) -> dict:
        return {
            "cluster": self.cluster,
            "work_tree_alias": self.work_tree_alias,
            "delta": self.delta.to_dict(),
            "requires": list(self.requires),
            "requested": self.request is not None,
        }


@dataclass
class DeploymentPlan:
    """An ordered set of per-cluster deltas.

    ``rejected`` holds clusters that could not be planned at all
    (cycles, missing or broken dependencies), keyed by name with the
    reason. ``kept`` holds clusters left alone on purpose.
    """

    operation: Operation
    operation_id: str = ""
    targets: list[str] = field(default_factory=list)
    entries: list[PlanEntry] = field(default_factory=list)
    rejected: dict[str, str] = field(default_factory=dict)
    kept: dict[str, str] = field(default_factory=dict)

    @property
    def order(self) -> list[str]:
        return [entry.cluster for entry in self.entries]

    @property
    def empty(self) -> bool:
        return all(entry.delta.empty for entry in self.entries)

    def get(self, cluster: str) -> PlanEntry | None:
        for entry in self.entries:
            if entry.cluster == cluster:
                return entry
        return None

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "operation_id": self.operation_id,
            "targets": self.targets,
            "entries": [entry.to_dict() for entry in self.entries],
            "rejected": self.rejected,
            "kept": self.kept,
        }


@dataclass
class ApplyReport:
    """Result of applying a plan."""

    operation: Operation
    operation_id: str = ""
    results: dict[str, Receipt] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results.values() if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results.values() if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results.values() if r.skipped)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "operation_id": self.operation_id,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": {
                name: receipt.model_dump(mode="json")
                for name, receipt in self.results.items()
            },
        }
