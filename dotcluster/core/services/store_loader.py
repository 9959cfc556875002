"""
Store loader: scan a store and validate every candidate cluster.

A store is a directory of ``<name>.git`` bare repositories. Each one is
checked in order (bare repository, definition present, definition well
formed, work tree alias reachable) and the first failing check decides
its validation state. One bad cluster never stops the scan.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.core.config.definition_parser import DefinitionError, parse_definition
from dotcluster.core.config.expansion import ExpansionError, resolve_alias
from dotcluster.core.models.definition import DEFINITION_FILE, Definition
from dotcluster.core.models.record import ClusterRecord, StoreSnapshot

logger = logging.getLogger(__name__)

GIT_DIR_SUFFIX = ".git"


def cluster_dir(store_root: Path, name: str) -> Path:
    """Where the bare repository of cluster ``name`` lives."""
    return store_root / f"{name}{GIT_DIR_SUFFIX}"


def list_candidates(store_root: Path) -> list[str]:
    """Names of every ``<name>.git`` directory in the store, sorted."""
    if not store_root.is_dir():
        return []
    return sorted(
        entry.name[: -len(GIT_DIR_SUFFIX)]
        for entry in store_root.iterdir()
        if entry.is_dir()
        and entry.name.endswith(GIT_DIR_SUFFIX)
        and len(entry.name) > len(GIT_DIR_SUFFIX)
    )


def load_record(
    store_root: Path,
    name: str,
    backend: RepositoryBackend,
    *,
    default_alias: str,
    parse: Callable[[bytes], Definition] = parse_definition,
    expand: Callable[[str], str] = resolve_alias,
) -> ClusterRecord:
    """Validate a single candidate and return its record."""
    git_dir = cluster_dir(store_root, name)

    if not backend.is_bare_alias(git_dir):
        return ClusterRecord.broken(
            name, git_dir, "not_bare_alias", f"{git_dir} is not a bare repository"
        )

    raw = backend.read_file(git_dir, DEFINITION_FILE)
    if raw is None:
        return ClusterRecord.broken(
            name, git_dir, "missing_definition", f"no {DEFINITION_FILE} at HEAD"
        )

    try:
        definition = parse(raw)
    except DefinitionError as e:
        return ClusterRecord.broken(name, git_dir, "malformed_definition", str(e))

    try:
        alias = expand(definition.work_tree_alias or default_alias)
    except ExpansionError as e:
        return ClusterRecord.broken(
            name, git_dir, "malformed_definition", str(e), definition=definition
        )

    definition = definition.with_work_tree_alias(alias)
    if not Path(alias).is_dir():
        return ClusterRecord.broken(
            name,
            git_dir,
            "not_bare_alias",
            f"work tree alias {alias} is not a directory",
            definition=definition,
        )

    return ClusterRecord.ok(name, git_dir, definition)


def load_records(
    store_root: Path,
    names: Iterable[str],
    backend: RepositoryBackend,
    *,
    default_alias: str,
) -> list[ClusterRecord]:
    """Validate the given candidates. Never raises for a single cluster."""
    records = []
    for name in names:
        try:
            record = load_record(store_root, name, backend, default_alias=default_alias)
        except Exception as e:
            logger.warning("Unexpected error loading cluster %s: %s", name, e, exc_info=True)
            record = ClusterRecord.broken(
                name, cluster_dir(store_root, name), "malformed_definition", str(e)
            )
        if not record.valid:
            logger.info("Cluster %s is %s: %s", name, record.state, record.reason)
        records.append(record)
    return records


def scan_store(
    store_root: Path,
    backend: RepositoryBackend,
    *,
    default_alias: str,
    candidates: Iterable[str] | None = None,
) -> StoreSnapshot:
    """Scan the whole store (or the given candidates) into a snapshot.

    Args:
        store_root: Store directory.
        backend: Repository backend used to inspect each cluster.
        default_alias: Work tree alias for definitions that set none.
        candidates: Names to check instead of listing the store.

    Returns:
        StoreSnapshot with one record per candidate.
    """
    names = list_candidates(store_root) if candidates is None else list(candidates)
    records = load_records(store_root, names, backend, default_alias=default_alias)
    snapshot = StoreSnapshot(
        store_root=store_root, records={record.name: record for record in records}
    )
    logger.debug(
        "Scanned %s: %d cluster(s), %d invalid",
        store_root, len(snapshot.records), len(snapshot.errors),
    )
    return snapshot
