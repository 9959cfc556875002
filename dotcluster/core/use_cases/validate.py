"""
Validate use case: check every cluster in the store.

Structural problems (not a bare repository, missing or malformed
definition) and graph problems (cycles, missing or invalid
dependencies) are all reported; none of them stops the check.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.core.models.record import StoreSnapshot
from dotcluster.core.models.settings import Settings
from dotcluster.core.services.graph import Resolution, build_graph, resolve_order
from dotcluster.core.use_cases.common import check_store, default_backend, open_snapshot


@dataclass
class ValidateResult:
    """Result of whole-store validation."""

    store_root: Path | None = None
    snapshot: StoreSnapshot | None = None
    resolution: Resolution | None = None
    error: str | None = None

    @property
    def valid(self) -> bool:
        if self.error or self.snapshot is None or self.resolution is None:
            return False
        return not self.snapshot.errors and self.resolution.ok

    def to_dict(self) -> dict:
        if self.error:
            return {"valid": False, "error": self.error}
        assert self.snapshot is not None and self.resolution is not None
        return {
            "valid": self.valid,
            "store_root": str(self.store_root),
            "records": [self.snapshot.records[n].to_dict() for n in self.snapshot.names],
            "errors": [{"name": n, "reason": r} for n, r in self.snapshot.errors],
            "cycles": {root: err.path for root, err in self.resolution.cycles.items()},
            "missing": [dep.to_dict() for dep in self.resolution.missing],
            "invalid": [dep.to_dict() for dep in self.resolution.invalid],
        }


def validate_store(
    store_root: Path,
    backend: RepositoryBackend | None = None,
    settings: Settings | None = None,
) -> ValidateResult:
    """Validate every cluster in the store and the graph between them.

    Args:
        store_root: Store directory.
        backend: Repository backend (default: git).
        settings: Tool settings (default: built-in defaults).

    Returns:
        ValidateResult with per-cluster records and graph problems.
    """
    backend = default_backend(backend)
    settings = settings or Settings()
    result = ValidateResult(store_root=store_root)

    result.error = check_store(store_root, backend)
    if result.error:
        return result

    result.snapshot = open_snapshot(store_root, backend, settings)
    result.resolution = resolve_order(build_graph(result.snapshot))
    return result
