"""Adapters: repository backends the core talks to.

Public re-exports for convenient access.
"""

from dotcluster.adapters.base import RepositoryBackend
from dotcluster.adapters.mock import MockBackend
from dotcluster.adapters.vcs.git import GitBackend

__all__ = [
    "GitBackend",
    "MockBackend",
    "RepositoryBackend",
]
