"""
Definition model: the parsed contents of a cluster's ``cluster.toml``.

A definition says what a cluster is: a short description, the work tree
alias its tracked files are deployed into, the include/exclude rules that
select which tracked files get deployed by default, an optional remote,
and the other clusters it depends on.

Definitions are immutable once built. The loader produces a new copy
(via ``model_copy``) when it resolves the work tree alias.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

# Name of the definition file at the top level of every cluster.
DEFINITION_FILE = "cluster.toml"

_SEPARATORS = ("/", "\\")


def validate_cluster_name(name: str) -> str:
    """Reject empty names, path separators, ``.`` and ``..``."""
    if not name or not name.strip():
        raise ValueError("cluster name must not be empty")
    if any(sep in name for sep in _SEPARATORS):
        raise ValueError(f"cluster name {name!r} must not contain path separators")
    if name in (".", ".."):
        raise ValueError(f"cluster name {name!r} is not allowed")
    return name


ClusterName = Annotated[str, AfterValidator(validate_cluster_name)]


class Remote(BaseModel):
    """Where a cluster can be cloned from."""

    model_config = ConfigDict(frozen=True)

    url: str
    branch: str | None = None


class DependencyRef(BaseModel):
    """A declared dependency on another cluster.

    ``remote`` is only consulted when the dependency is not yet in the
    store. ``include`` optionally overrides the dependency's own default
    include rules when it is deployed on behalf of this parent.
    """

    model_config = ConfigDict(frozen=True)

    name: ClusterName
    remote: Remote | None = None
    include: tuple[str, ...] | None = None


class Definition(BaseModel):
    """A single cluster's settings and dependencies."""

    model_config = ConfigDict(frozen=True)

    description: str | None = None
    work_tree_alias: str | None = None   # None = caller-supplied default
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    remote: Remote | None = None
    dependencies: tuple[DependencyRef, ...] = Field(default_factory=tuple)

    @field_validator("dependencies")
    @classmethod
    def _unique_dependencies(
        cls, deps: tuple[DependencyRef, ...]
    ) -> tuple[DependencyRef, ...]:
        seen: set[str] = set()
        for dep in deps:
            if dep.name in seen:
                raise ValueError(f"dependency {dep.name!r} declared more than once")
            seen.add(dep.name)
        return deps

    @property
    def dependency_names(self) -> list[str]:
        """Dependency names in declaration order."""
        return [dep.name for dep in self.dependencies]

    def get_dependency(self, name: str) -> DependencyRef | None:
        """Look up a dependency reference by name."""
        for dep in self.dependencies:
            if dep.name == name:
                return dep
        return None

    def with_work_tree_alias(self, alias: str) -> Definition:
        """Return a copy with the work tree alias replaced."""
        return self.model_copy(update={"work_tree_alias": alias})
