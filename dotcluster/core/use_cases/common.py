"""
Shared plumbing for use cases: backend defaults, store checks, audit.
"""

from __future__ import annotations

from pathlib import Path

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.core.models.record import StoreSnapshot
from dotcluster.core.models.settings import Settings
from dotcluster.core.persistence.audit import AuditWriter
from dotcluster.core.reliability.retry import RetryPolicy
from dotcluster.core.services.store_loader import scan_store


def default_backend(backend: RepositoryBackend | None) -> RepositoryBackend:
    """The given backend, or the git backend."""
    if backend is not None:
        return backend
    from dotcluster.adapters.vcs.git import GitBackend

    return GitBackend()


def check_store(store_root: Path, backend: RepositoryBackend) -> str | None:
    """Error message if the store cannot be used, else None."""
    if not store_root.is_dir():
        return f"Store not found: {store_root}"
    if not backend.is_available():
        return f"Repository backend '{backend.name}' is not available"
    return None


def open_snapshot(
    store_root: Path, backend: RepositoryBackend, settings: Settings
) -> StoreSnapshot:
    return scan_store(store_root, backend, default_alias=settings.default_work_tree_alias)


def retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.clone_attempts,
        base_delay=settings.clone_retry_delay,
    )


def audit_writer(store_root: Path) -> AuditWriter:
    return AuditWriter(store_root=store_root)
