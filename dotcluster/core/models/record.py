"""
ClusterRecord and StoreSnapshot: the result of scanning a store.

A record is an immutable snapshot of one candidate cluster for the
duration of one command. Re-validation never mutates a record; it
produces a new one. A snapshot is the full set of records from one
scan, and is the only input the resolver and planner look at.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from dotcluster.core.models.definition import Definition

ValidationState = Literal[
    "valid",
    "missing_definition",
    "malformed_definition",
    "not_bare_alias",
]


class ClusterRecord(BaseModel):
    """One candidate cluster and whether it is usable."""

    model_config = ConfigDict(frozen=True)

    name: str
    git_dir: Path
    state: ValidationState = "valid"
    definition: Definition | None = None
    reason: str = ""

    @property
    def valid(self) -> bool:
        return self.state == "valid"

    @property
    def work_tree_alias(self) -> str | None:
        return self.definition.work_tree_alias if self.definition else None

    @classmethod
    def ok(cls, name: str, git_dir: Path, definition: Definition) -> ClusterRecord:
        """Create a valid record."""
        return cls(name=name, git_dir=git_dir, state="valid", definition=definition)

    @classmethod
    def broken(
        cls,
        name: str,
        git_dir: Path,
        state: ValidationState,
        reason: str,
        definition: Definition | None = None,
    ) -> ClusterRecord:
        """Create a record in an error state."""
        return cls(
            name=name,
            git_dir=git_dir,
            state=state,
            reason=reason,
            definition=definition,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "git_dir": str(self.git_dir),
            "state": self.state,
            "reason": self.reason,
            "work_tree_alias": self.work_tree_alias,
            "dependencies": self.definition.dependency_names if self.definition else [],
        }


class StoreSnapshot(BaseModel):
    """All records from one scan of a store, keyed by cluster name."""

    model_config = ConfigDict(frozen=True)

    store_root: Path
    records: dict[str, ClusterRecord] = Field(default_factory=dict)

    @property
    def names(self) -> list[str]:
        return sorted(self.records)

    @property
    def valid(self) -> dict[str, ClusterRecord]:
        """Only the records marked valid."""
        return {name: rec for name, rec in self.records.items() if rec.valid}

    @property
    def errors(self) -> list[tuple[str, str]]:
        """(name, reason) for every record in an error state, sorted by name."""
        return [
            (name, self.records[name].reason or self.records[name].state)
            for name in self.names
            if not self.records[name].valid
        ]

    def get(self, name: str) -> ClusterRecord | None:
        return self.records.get(name)

    def with_records(self, records: list[ClusterRecord]) -> StoreSnapshot:
        """Return a new snapshot with the given records added or replaced."""
        merged = dict(self.records)
        for record in records:
            merged[record.name] = record
        return StoreSnapshot(store_root=self.store_root, records=merged)

    def to_dict(self) -> dict:
        return {
            "store_root": str(self.store_root),
            "records": [self.records[name].to_dict() for name in self.names],
            "errors": [{"name": n, "reason": r} for n, r in self.errors],
        }
