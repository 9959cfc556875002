"""
Fetch: clone missing dependencies into the store, in waves.

Each wave resolves the requested roots against the current snapshot,
clones every missing dependency found, in parallel, then re-validates
only the newly cloned clusters. A freshly cloned cluster may declare
dependencies of its own, which the next wave picks up. The loop ends
when a wave finds nothing new to clone.

A dependency whose clone fails is never retried in a later wave of the
same run; it stays missing and blocks only the roots that need it.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.core.models.receipt import Receipt
from dotcluster.core.models.record import StoreSnapshot
from dotcluster.core.reliability.retry import RetryPolicy, run_with_retry
from dotcluster.core.services.graph import UnresolvedDependency, build_graph, resolve_order
from dotcluster.core.services.store_loader import cluster_dir, load_records

logger = logging.getLogger(__name__)


@dataclass
class FetchReport:
    """What a fetch did."""

    cloned: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    waves: int = 0
    results: dict[str, Receipt] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "cloned": self.cloned,
            "failed": self.failed,
            "waves": self.waves,
        }


def fetch_missing(
    snapshot: StoreSnapshot,
    roots: Iterable[str] | None,
    backend: RepositoryBackend,
    *,
    default_alias: str,
    jobs: int = 4,
    retry: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[StoreSnapshot, FetchReport]:
    """Clone every missing dependency reachable from ``roots``.

    Args:
        snapshot: Current store snapshot.
        roots: Requested clusters (None = every cluster in the store).
        backend: Repository backend used to clone.
        default_alias: Work tree alias for definitions that set none.
        jobs: Maximum parallel clones.
        retry: Retry policy for each clone.
        sleep: Sleep function used between retries.

    Returns:
        (new snapshot, report). The input snapshot is not modified.
    """
    roots = None if roots is None else list(roots)
    retry = retry or RetryPolicy()
    report = FetchReport()
    attempted: set[str] = set()

    while True:
        resolution = resolve_order(build_graph(snapshot), roots)
        wanted: dict[str, UnresolvedDependency] = {}
        for dep in resolution.missing:
            if dep.name not in attempted and dep.name not in wanted:
                wanted[dep.name] = dep
        if not wanted:
            break

        report.waves += 1
        logger.info("Fetch wave %d: %s", report.waves, ", ".join(sorted(wanted)))
        receipts = _clone_wave(snapshot, wanted, backend, jobs, retry, sleep)
        attempted.update(wanted)

        cloned = []
        for name in sorted(wanted):
            receipt = receipts[name]
            report.results[name] = receipt
            if receipt.ok:
                cloned.append(name)
                logger.info("  ✓ %s", name)
            else:
                report.failed[name] = receipt.error or "clone failed"
                logger.warning("  ✗ %s: %s", name, receipt.error)

        report.cloned.extend(cloned)
        if cloned:
            snapshot = snapshot.with_records(
                load_records(snapshot.store_root, cloned, backend, default_alias=default_alias)
            )

    return snapshot, report


def _clone_wave(
    snapshot: StoreSnapshot,
    wanted: dict[str, UnresolvedDependency],
    backend: RepositoryBackend,
    jobs: int,
    retry: RetryPolicy,
    sleep: Callable[[float], None],
) -> dict[str, Receipt]:
    """Clone one wave of independent dependencies in parallel."""

    def _clone(dep: UnresolvedDependency) -> tuple[str, Receipt]:
        destination = cluster_dir(snapshot.store_root, dep.name)
        remote = dep.ref.remote
        if remote is None:
            return dep.name, Receipt.failure(
                operation="clone",
                target=str(destination),
                error=f"{dep.parent!r} declares no url for dependency {dep.name!r}",
            )
        return dep.name, run_with_retry(
            lambda: backend.clone(remote.url, destination, branch=remote.branch),
            retry,
            sleep=sleep,
        )

    receipts: dict[str, Receipt] = {}
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=max(1, min(jobs, len(wanted))),
    ) as pool:
        futures = [pool.submit(_clone, dep) for dep in wanted.values()]
        for future in concurrent.futures.as_completed(futures):
            name, receipt = future.result()
            receipts[name] = receipt
    return receipts
