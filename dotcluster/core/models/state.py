"""
StoreState: the persisted deployment baseline.

Records, per cluster and work tree alias, the rules and the concrete
set of paths that were last deployed. Rule deltas are computed against
this baseline. Serialized to ``<store>/.dotcluster/state.json``.

A cluster deployed by name also records how it was asked for (its
RootRequest). Clusters deployed only as someone's dependency carry
none, so an undeploy can tell which of them are still wanted.

The state is disposable: delete it and the next deploy treats every
cluster as undeployed.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class RootRequest(BaseModel):
    """How a cluster was deployed by name: extra include rules, or everything."""

    model_config = ConfigDict(frozen=True)

    include: tuple[str, ...] = ()
    deploy_all: bool = False


class DeploymentRecord(BaseModel):
    """What is deployed for one cluster into one work tree alias."""

    cluster: str
    work_tree_alias: str
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    paths: list[str] = Field(default_factory=list)
    request: RootRequest | None = None   # None = deployed as a dependency only
    updated_at: str = Field(default_factory=_now_iso)

    @property
    def requested(self) -> bool:
        return self.request is not None


class OperationRecord(BaseModel):
    """Summary of the last operation."""

    operation_id: str = ""
    operation: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""  # ok, partial, failed
    clusters_total: int = 0
    clusters_succeeded: int = 0
    clusters_failed: int = 0


class StoreState(BaseModel):
    """Root state model, serialized to .dotcluster/state.json."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Baseline: cluster → alias → record ───────────────────────
    deployments: dict[str, dict[str, DeploymentRecord]] = Field(default_factory=dict)

    # ── Last operation ───────────────────────────────────────────
    last_operation: OperationRecord = Field(default_factory=OperationRecord)

    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def get_record(self, cluster: str, alias: str) -> DeploymentRecord | None:
        return self.deployments.get(cluster, {}).get(alias)

    def records_of(self, cluster: str) -> list[DeploymentRecord]:
        """Every alias record of a cluster, sorted by alias."""
        aliases = self.deployments.get(cluster, {})
        return [aliases[alias] for alias in sorted(aliases)]

    def deployed_paths(self, cluster: str, alias: str) -> frozenset[str]:
        """The baseline path set for a cluster/alias pair (empty if none)."""
        record = self.get_record(cluster, alias)
        return frozenset(record.paths) if record else frozenset()

    def is_deployed(self, cluster: str) -> bool:
        """Whether any path of the cluster is deployed anywhere."""
        return any(rec.paths for rec in self.deployments.get(cluster, {}).values())

    def deployed_clusters(self) -> list[str]:
        return sorted(name for name in self.deployments if self.is_deployed(name))

    def requests(self) -> dict[str, RootRequest]:
        """Deployed clusters that were asked for by name, sorted by name."""
        found: dict[str, RootRequest] = {}
        for name in self.deployed_clusters():
            for record in self.records_of(name):
                if record.request is not None:
                    found[name] = record.request
                    break
        return found

    def set_deployment(
        self,
        cluster: str,
        alias: str,
        paths: frozenset[str] | set[str],
        include: tuple[str, ...] | list[str] = (),
        exclude: tuple[str, ...] | list[str] = (),
        request: RootRequest | None = None,
    ) -> None:
        """Replace the baseline for a cluster/alias pair.

        An empty path set removes the entry entirely.
        """
        if not paths:
            self.clear_deployment(cluster, alias)
            return
        self.deployments.setdefault(cluster, {})[alias] = DeploymentRecord(
            cluster=cluster,
            work_tree_alias=alias,
            include=list(include),
            exclude=list(exclude),
            paths=sorted(paths),
            request=request,
        )

    def clear_deployment(self, cluster: str, alias: str | None = None) -> None:
        """Forget one alias of a cluster, or the whole cluster."""
        if alias is None:
            self.deployments.pop(cluster, None)
            return
        aliases = self.deployments.get(cluster)
        if aliases is None:
            return
        aliases.pop(alias, None)
        if not aliases:
            self.deployments.pop(cluster, None)
