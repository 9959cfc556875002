"""
Sparsity rules: decide which tracked paths are deployed (pure).

Rules are gitignore-like patterns matched against tracked paths:

    /name     anchored to the cluster root
    name      matches the basename at any depth
    dir/      a directory and everything under it
    * ? [..]  never cross ``/``
    **        crosses directories

A pattern that matches a directory matches everything under it.
Excludes always win over includes, whatever the declaration order,
and an empty include list deploys nothing.

Rule sets are turned into concrete path sets against a cluster's
tracked files; deltas are computed between path sets, so a path that
is deployed both before and after is never touched.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from functools import lru_cache

from dotcluster.core.models.plan import RuleDelta
from dotcluster.core.models.record import StoreSnapshot
from dotcluster.core.models.state import RootRequest
from dotcluster.core.services.graph import DependencyGraph, closure

EVERYTHING = "**"

_SLASHES = re.compile(r"/{2,}")


def normalize_pattern(raw: str) -> str | None:
    """Canonical form of a rule, or None for blanks and comments."""
    pattern = raw.strip()
    if not pattern or pattern.startswith("#"):
        return None
    pattern = _SLASHES.sub("/", pattern.replace("\\", "/"))
    anchored = pattern.startswith("/")
    body = pattern.lstrip("/")
    while body.startswith("./"):
        body = body[2:]
    if not body or body in ("/", "."):
        return None
    return ("/" if anchored else "") + body


def normalize_rules(rules: Iterable[str]) -> tuple[str, ...]:
    """Normalize rules, drop blanks, keep the first of any duplicates."""
    seen: dict[str, None] = {}
    for raw in rules:
        pattern = normalize_pattern(raw)
        if pattern is not None:
            seen.setdefault(pattern, None)
    return tuple(seen)


def _translate(glob: str) -> str:
    out: list[str] = []
    i, n = 0, len(glob)
    while i < n:
        c = glob[i]
        if c == "*":
            if glob.startswith("**", i):
                i += 2
                if i < n and glob[i] == "/":
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = glob.find("]", i + 2 if glob.startswith("[!", i) else i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = glob[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append("[" + body.replace("\\", "\\\\") + "]")
                i = end
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a normalized pattern into a regex matched with fullmatch."""
    anchored = pattern.startswith("/")
    directory = pattern.endswith("/")
    body = pattern.strip("/")

    prefix = "" if anchored or "/" in body else "(?:.*/)?"
    suffix = "/.*" if directory else "(?:/.*)?"
    return re.compile(prefix + _translate(body) + suffix, re.DOTALL)


def matches(pattern: str, path: str) -> bool:
    """Whether a normalized pattern matches a tracked path."""
    return compile_pattern(pattern).fullmatch(path) is not None


@dataclass(frozen=True)
class RuleSet:
    """Ordered include and exclude rules for one deployment."""

    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()

    @classmethod
    def from_rules(
        cls, include: Iterable[str] = (), exclude: Iterable[str] = ()
    ) -> RuleSet:
        return cls(include=normalize_rules(include), exclude=normalize_rules(exclude))

    @classmethod
    def everything(cls) -> RuleSet:
        return cls(include=(EVERYTHING,))

    @property
    def empty(self) -> bool:
        return not self.include

    def merge(self, other: RuleSet) -> RuleSet:
        """Union of both rule sets, keeping declaration order."""
        return RuleSet(
            include=tuple(dict.fromkeys(self.include + other.include)),
            exclude=tuple(dict.fromkeys(self.exclude + other.exclude)),
        )

    def matches(self, path: str) -> bool:
        if any(matches(p, path) for p in self.exclude):
            return False
        return any(matches(p, path) for p in self.include)

    def materialize(self, tracked: Iterable[str]) -> frozenset[str]:
        """The tracked paths this rule set deploys."""
        if self.empty:
            return frozenset()
        return frozenset(path for path in tracked if self.matches(path))

    def to_dict(self) -> dict:
        return {"include": list(self.include), "exclude": list(self.exclude)}


def merge_rule_sets(rule_sets: Iterable[RuleSet]) -> RuleSet:
    merged = RuleSet()
    for rule_set in rule_sets:
        merged = merged.merge(rule_set)
    return merged


def compute_delta(previous: Iterable[str], target: Iterable[str]) -> RuleDelta:
    """Minimal transition from the previously deployed paths to the target."""
    before = frozenset(previous)
    after = frozenset(target)
    return RuleDelta(
        paths_to_checkout=after - before,
        paths_to_remove=before - after,
    )


def root_rule_sets(
    graph: DependencyGraph,
    snapshot: StoreSnapshot,
    root: str,
    request: RootRequest | None = None,
) -> dict[str, RuleSet]:
    """Effective rule set of every cluster in one root's closure.

    The rules of all clusters targeting the same work tree alias are
    merged, and each of those clusters uses the merged set. A
    dependency's include rules are replaced by the include override of
    the DependencyRef that first reached it. The request's extra rules
    (or ``deploy_all``) apply to the root only.
    """
    members = closure(graph, root)
    by_alias: dict[str, list[RuleSet]] = {}
    for name, via in members:
        definition = snapshot.records[name].definition
        include = definition.include
        if via is not None and via.include is not None:
            include = via.include
        by_alias.setdefault(definition.work_tree_alias, []).append(
            RuleSet.from_rules(include, definition.exclude)
        )

    merged = {alias: merge_rule_sets(sets) for alias, sets in by_alias.items()}
    rules = {
        name: merged[snapshot.records[name].definition.work_tree_alias]
        for name, _ in members
    }

    if root in rules and request is not None:
        if request.deploy_all:
            rules[root] = RuleSet.everything()
        elif request.include:
            rules[root] = rules[root].merge(RuleSet.from_rules(request.include))
    return rules


@dataclass(frozen=True)
class DesiredPaths:
    """What one cluster should have deployed, and which roots want it."""

    rules: RuleSet
    paths: frozenset[str]
    roots: tuple[str, ...]


def desired_paths(
    graph: DependencyGraph,
    snapshot: StoreSnapshot,
    requests: Iterable[tuple[str, RootRequest | None]],
    tracked_files: Callable[[str], Iterable[str]],
) -> dict[str, DesiredPaths]:
    """Paths every cluster reachable from the requested roots should deploy.

    Each root's closure is materialized on its own. A cluster reached
    from several roots deploys the union of what each root gives it, so
    deploying or undeploying one root never narrows what another root
    still needs. The recorded rules are the merge of those rule sets.

    Args:
        graph: Graph built from the current snapshot.
        snapshot: Current store snapshot.
        requests: ``(root, request)`` pairs, in priority order.
        tracked_files: Tracked paths of a cluster, by name.
    """
    rules: dict[str, list[RuleSet]] = {}
    paths: dict[str, set[str]] = {}
    roots: dict[str, list[str]] = {}

    for root, request in requests:
        for name, rule_set in root_rule_sets(graph, snapshot, root, request).items():
            rules.setdefault(name, []).append(rule_set)
            paths.setdefault(name, set()).update(rule_set.materialize(tracked_files(name)))
            roots.setdefault(name, []).append(root)

    return {
        name: DesiredPaths(
            rules=merge_rule_sets(rules[name]),
            paths=frozenset(paths[name]),
            roots=tuple(roots[name]),
        )
        for name in rules
    }
