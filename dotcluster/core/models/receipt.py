"""
Receipt model: what happened to one cluster or repository.

Backends hand one back from every mutating git call, and the
orchestrator reports one per plan entry. A failed cluster is a failed
receipt, never an exception, so the rest of the plan keeps going.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class Receipt(BaseModel):
    """``target`` is a cluster name from the orchestrator, a git dir from a backend."""

    operation: str                  # deploy, undeploy, checkout, remove, clone, init
    target: str
    status: Literal["ok", "skipped", "failed"] = "ok"
    duration_ms: int = 0
    output: str = ""                # for skips, the reason
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(cls, operation: str, target: str, output: str = "", **kwargs: Any) -> Receipt:
        return cls(operation=operation, target=target, output=output, **kwargs)

    @classmethod
    def failure(cls, operation: str, target: str, error: str, **kwargs: Any) -> Receipt:
        return cls(operation=operation, target=target, status="failed", error=error, **kwargs)

    @classmethod
    def skip(cls, operation: str, target: str, reason: str = "", **kwargs: Any) -> Receipt:
        return cls(operation=operation, target=target, status="skipped", output=reason, **kwargs)
