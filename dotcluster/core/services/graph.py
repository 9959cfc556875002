"""
Dependency graph: build and resolve cluster dependencies (pure).

The graph is an adjacency map keyed by cluster name, built fresh from a
StoreSnapshot. Only valid clusters contribute edges. An edge to a name
that is not a valid cluster is kept and classified as either missing
(not in the store) or invalid (in the store but broken).

Resolution is a depth-first traversal per requested root:

- a name already on the visit stack is a cycle, fatal for that root only;
- missing and invalid dependencies are reported, and block the root;
- the order is postorder, dependencies first, ties broken by
  declaration order; a cluster appears at most once.

No I/O.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from dotcluster.core.models.definition import DependencyRef
from dotcluster.core.models.record import StoreSnapshot


class ResolutionError(Exception):
    """Raised when no valid processing order exists."""


class CyclicDependencyError(ResolutionError):
    """A dependency cycle. ``path`` starts and ends with the same cluster."""

    def __init__(self, path: list[str]):
        self.path = list(path)
        super().__init__("cyclic dependency: " + " -> ".join(self.path))

    @property
    def clusters(self) -> list[str]:
        """Distinct clusters on the cycle, sorted."""
        return sorted(set(self.path))


@dataclass(frozen=True)
class UnresolvedDependency:
    """An edge whose target is not a valid cluster."""

    parent: str
    name: str
    ref: DependencyRef

    @property
    def url(self) -> str | None:
        return self.ref.remote.url if self.ref.remote else None

    def to_dict(self) -> dict:
        return {"parent": self.parent, "name": self.name, "url": self.url}


@dataclass(frozen=True)
class DependencyGraph:
    """Adjacency map of valid clusters.

    ``edges`` maps each valid cluster to its dependency names in
    declaration order. ``invalid`` maps broken clusters present in the
    store to their reason.
    """

    edges: dict[str, tuple[str, ...]] = field(default_factory=dict)
    refs: dict[str, dict[str, DependencyRef]] = field(default_factory=dict)
    invalid: dict[str, str] = field(default_factory=dict)

    def __contains__(self, name: str) -> bool:
        return name in self.edges

    def state_of(self, name: str) -> str:
        """``valid``, ``invalid`` or ``missing``."""
        if name in self.edges:
            return "valid"
        if name in self.invalid:
            return "invalid"
        return "missing"

    def ref(self, parent: str, name: str) -> DependencyRef:
        return self.refs[parent][name]

    def dependents(self, name: str) -> list[str]:
        """Valid clusters that declare ``name`` as a direct dependency."""
        return sorted(parent for parent, deps in self.edges.items() if name in deps)

    def unresolved_edges(self) -> list[UnresolvedDependency]:
        """Every edge to a missing cluster, sorted by parent then declaration."""
        found = []
        for parent in sorted(self.edges):
            for dep in self.edges[parent]:
                if self.state_of(dep) == "missing":
                    found.append(UnresolvedDependency(parent, dep, self.ref(parent, dep)))
        return found


def build_graph(snapshot: StoreSnapshot) -> DependencyGraph:
    """Build the dependency graph from a snapshot's records."""
    edges: dict[str, tuple[str, ...]] = {}
    refs: dict[str, dict[str, DependencyRef]] = {}
    invalid: dict[str, str] = {}

    for name, record in snapshot.records.items():
        if not record.valid or record.definition is None:
            invalid[name] = record.reason or record.state
            continue
        deps = record.definition.dependencies
        edges[name] = tuple(dep.name for dep in deps)
        refs[name] = {dep.name: dep for dep in deps}

    return DependencyGraph(edges=edges, refs=refs, invalid=invalid)


@dataclass
class Resolution:
    """Outcome of resolving a set of roots.

    ``order`` only holds clusters of roots that resolved completely.
    ``blocked`` and ``cycles`` hold the roots that did not.
    """

    roots: list[str] = field(default_factory=list)
    order: list[str] = field(default_factory=list)
    missing: list[UnresolvedDependency] = field(default_factory=list)
    invalid: list[UnresolvedDependency] = field(default_factory=list)
    cycles: dict[str, CyclicDependencyError] = field(default_factory=dict)
    blocked: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not (self.missing or self.invalid or self.cycles or self.blocked)

    @property
    def failed_roots(self) -> dict[str, str]:
        """Every root that has no order, with the reason."""
        failed = {root: str(err) for root, err in self.cycles.items()}
        failed.update(self.blocked)
        return {root: failed[root] for root in self.roots if root in failed}

    def raise_for_cycles(self) -> None:
        """Raise the first cycle found, in root order."""
        for root in self.roots:
            if root in self.cycles:
                raise self.cycles[root]

    def to_dict(self) -> dict:
        return {
            "roots": self.roots,
            "order": self.order,
            "missing": [dep.to_dict() for dep in self.missing],
            "invalid": [dep.to_dict() for dep in self.invalid],
            "cycles": {root: err.path for root, err in self.cycles.items()},
            "blocked": self.blocked,
        }


class _Walk:
    """Depth-first traversal from one root."""

    def __init__(self, graph: DependencyGraph, done: set[str]):
        self.graph = graph
        self.done = done
        self.stack: list[str] = []
        self.visited: set[str] = set()
        self.order: list[str] = []
        self.missing: list[UnresolvedDependency] = []
        self.invalid: list[UnresolvedDependency] = []

    def visit(self, name: str) -> None:
        if name in self.stack:
            raise CyclicDependencyError(self.stack[self.stack.index(name):] + [name])
        if name in self.done or name in self.visited:
            return

        self.stack.append(name)
        for dep in self.graph.edges[name]:
            state = self.graph.state_of(dep)
            if state == "valid":
                self.visit(dep)
                continue
            unresolved = UnresolvedDependency(name, dep, self.graph.ref(name, dep))
            if state == "missing":
                self.missing.append(unresolved)
            else:
                self.invalid.append(unresolved)
        self.stack.pop()

        self.visited.add(name)
        self.order.append(name)

    def problem(self) -> str | None:
        if self.missing:
            dep = self.missing[0]
            return f"missing dependency {dep.name!r} (required by {dep.parent!r})"
        if self.invalid:
            dep = self.invalid[0]
            reason = self.graph.invalid.get(dep.name, "invalid")
            return f"invalid dependency {dep.name!r} (required by {dep.parent!r}): {reason}"
        return None


def resolve_order(
    graph: DependencyGraph,
    roots: Iterable[str] | None = None,
    *,
    allow_unresolved: bool = False,
) -> Resolution:
    """Compute the dependency-first processing order for ``roots``.

    Args:
        graph: Graph built from the current snapshot.
        roots: Requested clusters, in request order. None resolves every
            valid cluster in the store, sorted by name.
        allow_unresolved: Order what can be reached and only report
            missing or invalid dependencies. Used for teardown, where a
            broken dependency must not keep its parent deployed.

    Returns:
        Resolution. A root that hits a cycle, or (unless
        ``allow_unresolved``) reaches a missing or invalid cluster,
        contributes nothing to ``order`` and does not affect the other
        roots.
    """
    requested = sorted(graph.edges) if roots is None else list(dict.fromkeys(roots))
    result = Resolution(roots=requested)
    done: set[str] = set()

    for root in requested:
        state = graph.state_of(root)
        if state == "missing":
            result.blocked[root] = f"cluster {root!r} is not in the store"
            continue
        if state == "invalid":
            result.blocked[root] = f"cluster {root!r} is invalid: {graph.invalid[root]}"
            continue
        if root in done:
            continue

        walk = _Walk(graph, done)
        try:
            walk.visit(root)
        except CyclicDependencyError as e:
            result.cycles[root] = e
            continue
        finally:
            _extend_unique(result.missing, walk.missing)
            _extend_unique(result.invalid, walk.invalid)

        problem = None if allow_unresolved else walk.problem()
        if problem:
            result.blocked[root] = problem
            continue

        result.order.extend(walk.order)
        done.update(walk.order)

    return result


def closure(graph: DependencyGraph, root: str) -> list[tuple[str, DependencyRef | None]]:
    """Valid clusters reachable from ``root`` in dependency-first order.

    Each entry carries the DependencyRef through which the cluster was
    first reached (None for the root). Assumes the root resolved.
    """
    order: list[tuple[str, DependencyRef | None]] = []
    seen: set[str] = set()

    def _visit(name: str, via: DependencyRef | None) -> None:
        if name in seen:
            return
        seen.add(name)
        for dep in graph.edges[name]:
            if dep in graph.edges:
                _visit(dep, graph.ref(name, dep))
        order.append((name, via))

    if root in graph.edges:
        _visit(root, None)
    return order


def _extend_unique(
    target: list[UnresolvedDependency], items: list[UnresolvedDependency]
) -> None:
    for item in items:
        if item not in target:
            target.append(item)
