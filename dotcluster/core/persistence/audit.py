"""
Audit ledger: what each deploy, undeploy, clone and remove did.

One JSON object per line in ``<store>/.dotcluster/audit.ndjson``.
The ledger is only ever appended to. It is informational: deltas are
computed from the state file, never from here, so a ledger that cannot
be written is logged and ignored.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from dotcluster.core.config.loader import state_dir

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """One operation in the ledger."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    operation_type: str = ""       # deploy, undeploy, clone, remove

    targets: list[str] = Field(default_factory=list)
    clusters_affected: list[str] = Field(default_factory=list)

    status: str = ""               # ok, partial, failed
    clusters_total: int = 0
    clusters_succeeded: int = 0
    clusters_failed: int = 0
    duration_ms: int = 0

    errors: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Appends entries to, and reads them back from, one ledger file.

    Args:
        path: Ledger file.
        store_root: Store whose default ledger to use when no path is given.
    """

    def __init__(self, path: Path | None = None, store_root: Path | None = None):
        if path is None:
            if store_root is None:
                raise ValueError("AuditWriter needs a path or a store_root")
            path = state_dir(store_root) / DEFAULT_AUDIT_FILE
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        record = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(record + "\n")
        except OSError as e:
            logger.error("Failed to write audit entry to %s: %s", self._path, e)
            return
        logger.debug("Audit: %s %s → %s", entry.operation_type, entry.operation_id, entry.status)

    def read_all(self) -> list[AuditEntry]:
        """Every readable entry, oldest first. Corrupt lines are skipped."""
        entries = []
        for line_num, line in self._lines():
            try:
                entries.append(AuditEntry.model_validate_json(line))
            except ValidationError as e:
                logger.warning("Skipping corrupt audit line %d: %s", line_num, e)
        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.read_all()[-n:]

    def entry_count(self) -> int:
        """Number of non-blank lines, without parsing them."""
        return sum(1 for _ in self._lines())

    def _lines(self) -> Iterator[tuple[int, str]]:
        if not self._path.is_file():
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    if line.strip():
                        yield line_num, line.strip()
        except OSError as e:
            logger.error("Failed to read audit ledger %s: %s", self._path, e)
