"""
Settings model: tool configuration loaded from config.yml.

Every field has a default, so a missing config file is not an error.
Paths may contain ``~`` and ``$VAR`` references; they are expanded by
the loader, not here.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Tool-wide settings."""

    store_dir: str | None = None          # None = XDG data dir default
    default_work_tree_alias: str = "~"

    # Clone-on-resolve behavior
    jobs: int = Field(default=4, ge=1)
    clone_attempts: int = Field(default=3, ge=1)
    clone_retry_delay: float = Field(default=1.0, ge=0.0)
