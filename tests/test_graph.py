"""
Tests for the dependency graph: ordering, cycles, missing vs invalid.
"""

import itertools
import random
from pathlib import Path

import pytest

from dotcluster.core.models import ClusterRecord, Definition, DependencyRef, StoreSnapshot
from dotcluster.core.services.graph import (
    CyclicDependencyError,
    ResolutionError,
    build_graph,
    closure,
    resolve_order,
)


def _snapshot(deps: dict[str, list[str]], invalid: tuple[str, ...] = ()) -> StoreSnapshot:
    root = Path("/store")
    records = {
        name: ClusterRecord.ok(
            name,
            root / f"{name}.git",
            Definition(
                work_tree_alias="/home",
                dependencies=[DependencyRef(name=d) for d in children],
            ),
        )
        for name, children in deps.items()
    }
    for name in invalid:
        records[name] = ClusterRecord.broken(
            name, root / f"{name}.git", "malformed_definition", "bad toml"
        )
    return StoreSnapshot(store_root=root, records=records)


def _graph(deps, invalid=()):
    return build_graph(_snapshot(deps, invalid))


def _assert_dependencies_first(deps: dict[str, list[str]], order: list[str]) -> None:
    assert len(order) == len(set(order))
    position = {name: i for i, name in enumerate(order)}
    for name in order:
        for dep in deps[name]:
            assert position[dep] < position[name], f"{dep} must precede {name}"


class TestBuildGraph:
    """Graph construction."""

    def test_edges_in_declaration_order(self):
        g = _graph({"a": ["c", "b"], "b": [], "c": []})
        assert g.edges["a"] == ("c", "b")

    def test_invalid_records_contribute_no_edges(self):
        g = _graph({"a": ["x"]}, invalid=("x",))
        assert "x" not in g.edges
        assert g.state_of("x") == "invalid"
        assert g.state_of("nope") == "missing"
        assert g.state_of("a") == "valid"

    def test_unresolved_edges(self):
        g = _graph({"a": ["m1", "b"], "b": ["m2"]})
        found = [(u.parent, u.name) for u in g.unresolved_edges()]
        assert found == [("a", "m1"), ("b", "m2")]

    def test_dependents(self):
        g = _graph({"a": ["c"], "b": ["c"], "c": []})
        assert g.dependents("c") == ["a", "b"]


class TestResolveOrder:
    """Topological order."""

    def test_bash_scenario(self):
        result = resolve_order(_graph({"bash": ["bash_ps1"], "bash_ps1": []}), ["bash"])
        assert result.ok
        assert result.order == ["bash_ps1", "bash"]

    def test_ties_broken_by_declaration_order(self):
        g = _graph({"top": ["zeta", "alpha", "mid"], "zeta": [], "alpha": [], "mid": []})
        assert resolve_order(g, ["top"]).order == ["zeta", "alpha", "mid", "top"]

    def test_diamond_appears_once(self):
        deps = {"a": ["b", "c"], "b": ["d"], "c": ["d"], "d": []}
        result = resolve_order(_graph(deps), ["a"])
        assert result.order == ["d", "b", "c", "a"]

    def test_multiple_roots_share_dependencies(self):
        deps = {"x": ["shared"], "y": ["shared"], "shared": []}
        result = resolve_order(_graph(deps), ["x", "y"])
        assert result.order == ["shared", "x", "y"]

    def test_root_already_placed(self):
        deps = {"x": ["y"], "y": []}
        assert resolve_order(_graph(deps), ["x", "y"]).order == ["y", "x"]

    def test_whole_store(self):
        deps = {"b": ["a"], "a": [], "c": []}
        result = resolve_order(_graph(deps))
        assert result.roots == ["a", "b", "c"]
        assert result.order == ["a", "b", "c"]

    def test_deterministic(self):
        deps = {"r": ["p", "q"], "p": ["s"], "q": ["s"], "s": []}
        orders = {tuple(resolve_order(_graph(deps), ["r"]).order) for _ in range(5)}
        assert len(orders) == 1

    @pytest.mark.parametrize("seed", range(10))
    def test_random_acyclic_graphs(self, seed: int):
        rng = random.Random(seed)
        names = [f"n{i}" for i in range(12)]
        # Edges only point to lower indices, so the graph is acyclic.
        deps = {
            name: rng.sample(names[:i], k=rng.randint(0, min(i, 3)))
            for i, name in enumerate(names)
        }
        result = resolve_order(_graph(deps))
        assert result.ok
        assert sorted(result.order) == sorted(names)
        _assert_dependencies_first(deps, result.order)


class TestCycles:
    """Cycle detection."""

    def test_self_cycle(self):
        result = resolve_order(_graph({"bash": ["bash"]}), ["bash"])
        assert result.order == []
        err = result.cycles["bash"]
        assert isinstance(err, CyclicDependencyError)
        assert err.path == ["bash", "bash"]

    def test_two_node_cycle_path(self):
        result = resolve_order(_graph({"a": ["b"], "b": ["a"]}), ["a"])
        assert result.cycles["a"].path == ["a", "b", "a"]

    def test_cycle_below_root(self):
        deps = {"root": ["x"], "x": ["y"], "y": ["z"], "z": ["x"]}
        err = resolve_order(_graph(deps), ["root"]).cycles["root"]
        assert err.path == ["x", "y", "z", "x"]
        assert err.clusters == ["x", "y", "z"]

    def test_cycle_path_is_a_cycle(self):
        deps = {"a": ["b", "c"], "b": ["d"], "c": [], "d": ["e"], "e": ["b"]}
        path = resolve_order(_graph(deps), ["a"]).cycles["a"].path
        assert path[0] == path[-1]
        for parent, child in itertools.pairwise(path):
            assert child in deps[parent]

    def test_cycle_isolated_to_affected_root(self):
        deps = {"bad": ["loop"], "loop": ["loop"], "good": ["leaf"], "leaf": []}
        result = resolve_order(_graph(deps), ["bad", "good"])
        assert set(result.cycles) == {"bad"}
        assert result.order == ["leaf", "good"]

    def test_failed_root_is_rolled_back(self):
        """Clusters visited before the cycle was hit are not left in the order."""
        deps = {"a": ["ok", "loop"], "ok": [], "loop": ["loop"]}
        result = resolve_order(_graph(deps), ["a"])
        assert result.order == []

    def test_raise_for_cycles(self):
        result = resolve_order(_graph({"a": ["a"]}), ["a"])
        with pytest.raises(ResolutionError, match="a -> a"):
            result.raise_for_cycles()


class TestUnresolved:
    """Missing and invalid dependencies."""

    def test_missing_dependency_reported(self):
        result = resolve_order(_graph({"bash": ["ps1"]}), ["bash"])
        assert [(u.parent, u.name) for u in result.missing] == [("bash", "ps1")]
        assert result.invalid == []
        assert "missing dependency 'ps1'" in result.blocked["bash"]
        assert result.order == []

    def test_invalid_dependency_distinguished(self):
        result = resolve_order(_graph({"bash": ["ps1"]}, invalid=("ps1",)), ["bash"])
        assert result.missing == []
        assert [(u.parent, u.name) for u in result.invalid] == [("bash", "ps1")]
        assert "invalid dependency 'ps1'" in result.blocked["bash"]

    def test_missing_root(self):
        result = resolve_order(_graph({"a": []}), ["ghost"])
        assert "not in the store" in result.blocked["ghost"]

    def test_invalid_root(self):
        result = resolve_order(_graph({}, invalid=("broken",)), ["broken"])
        assert "invalid" in result.blocked["broken"]

    def test_unrelated_roots_unaffected(self):
        deps = {"needs": ["ghost"], "fine": []}
        result = resolve_order(_graph(deps), ["needs", "fine"])
        assert result.order == ["fine"]
        assert list(result.failed_roots) == ["needs"]


class TestClosure:
    """Closure with first-reaching DependencyRef."""

    def test_first_ref_wins(self):
        snapshot = StoreSnapshot(
            store_root=Path("/s"),
            records={
                "top": ClusterRecord.ok(
                    "top",
                    Path("/s/top.git"),
                    Definition(
                        dependencies=[
                            DependencyRef(name="left"),
                            DependencyRef(name="shared", include=("from-top",)),
                        ]
                    ),
                ),
                "left": ClusterRecord.ok(
                    "left",
                    Path("/s/left.git"),
                    Definition(dependencies=[DependencyRef(name="shared", include=("from-left",))]),
                ),
                "shared": ClusterRecord.ok("shared", Path("/s/shared.git"), Definition()),
            },
        )
        members = closure(build_graph(snapshot), "top")
        assert [name for name, _ in members] == ["shared", "left", "top"]
        via = dict(members)
        assert via["shared"].include == ("from-left",)
        assert via["top"] is None
