"""
Status use case: what is in the store and what is deployed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.core.models.settings import Settings
from dotcluster.core.persistence.state_file import default_state_path, load_state
from dotcluster.core.use_cases.common import check_store, default_backend, open_snapshot


@dataclass
class ClusterStatus:
    """One line of status output."""

    name: str
    state: str
    deployed: bool = False
    work_tree_alias: str | None = None
    description: str | None = None
    dependencies: list[str] = field(default_factory=list)
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "state": self.state,
            "deployed": self.deployed,
            "work_tree_alias": self.work_tree_alias,
            "description": self.description,
            "dependencies": self.dependencies,
            "reason": self.reason,
        }


@dataclass
class StatusResult:
    """Result of a status query."""

    store_root: Path | None = None
    clusters: list[ClusterStatus] = field(default_factory=list)
    rules: dict[str, dict] | None = None
    files: list[str] | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        result: dict = {
            "store_root": str(self.store_root),
            "clusters": [c.to_dict() for c in self.clusters],
        }
        if self.rules is not None:
            result["rules"] = self.rules
        if self.files is not None:
            result["files"] = self.files
        return result


def get_status(
    store_root: Path,
    backend: RepositoryBackend | None = None,
    settings: Settings | None = None,
    deployed_only: bool = False,
    undeployed_only: bool = False,
    rules_of: str | None = None,
    files_of: str | None = None,
) -> StatusResult:
    """Report clusters in the store and their deployment status.

    Args:
        store_root: Store directory.
        backend: Repository backend (default: git).
        settings: Tool settings.
        deployed_only: Only list deployed clusters.
        undeployed_only: Only list undeployed clusters.
        rules_of: Also report the recorded rules and paths of this cluster.
        files_of: Also report the tracked files of this cluster.

    Returns:
        StatusResult.
    """
    backend = default_backend(backend)
    settings = settings or Settings()
    result = StatusResult(store_root=store_root)

    result.error = check_store(store_root, backend)
    if result.error:
        return result

    snapshot = open_snapshot(store_root, backend, settings)
    state = load_state(default_state_path(store_root))

    for name in snapshot.names:
        record = snapshot.records[name]
        deployed = state.is_deployed(name)
        if deployed_only and not deployed:
            continue
        if undeployed_only and deployed:
            continue
        definition = record.definition
        result.clusters.append(
            ClusterStatus(
                name=name,
                state=record.state,
                deployed=deployed,
                work_tree_alias=record.work_tree_alias,
                description=definition.description if definition else None,
                dependencies=definition.dependency_names if definition else [],
                reason=record.reason,
            )
        )

    for wanted in (rules_of, files_of):
        if wanted is not None and wanted not in snapshot.records:
            result.error = f"Cluster not found: {wanted}"
            return result

    if rules_of is not None:
        result.rules = {
            alias: record.model_dump(mode="json")
            for alias, record in state.deployments.get(rules_of, {}).items()
        }

    if files_of is not None:
        result.files = backend.tracked_files(snapshot.records[files_of].git_dir)

    return result
