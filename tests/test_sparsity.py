"""
Tests for sparsity rules: pattern matching, exclude-wins, deltas, merging.
"""

from pathlib import Path

import pytest

from dotcluster.core.models import (
    ClusterRecord,
    Definition,
    DependencyRef,
    RootRequest,
    StoreSnapshot,
)
from dotcluster.core.services.graph import build_graph
from dotcluster.core.services.sparsity import (
    RuleSet,
    compute_delta,
    desired_paths,
    matches,
    merge_rule_sets,
    normalize_pattern,
    normalize_rules,
    root_rule_sets,
)

TRACKED = [
    ".bashrc",
    ".config/bash/aliases.sh",
    ".config/bash/secret.sh",
    ".config/nvim/init.lua",
    "app.conf",
    "etc/app.conf",
    "etc/secret.conf",
    "secret.conf",
    "cluster.toml",
]


class TestNormalize:
    """Pattern normalization."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("  .bashrc  ", ".bashrc"),
            ("./.bashrc", ".bashrc"),
            (".config//bash/", ".config/bash/"),
            ("\\etc\\app.conf", "/etc/app.conf"),
            ("/anchored", "/anchored"),
            ("# comment", None),
            ("", None),
            ("   ", None),
            ("/", None),
        ],
    )
    def test_normalize_pattern(self, raw, expected):
        assert normalize_pattern(raw) == expected

    def test_duplicates_keep_first(self):
        assert normalize_rules(["b", "a", "./b", "", "a"]) == ("b", "a")


class TestMatching:
    """gitignore-like semantics."""

    @pytest.mark.parametrize(
        "pattern, path, expected",
        [
            ("*.conf", "app.conf", True),
            ("*.conf", "etc/app.conf", True),
            ("/*.conf", "etc/app.conf", False),
            ("/*.conf", "app.conf", True),
            ("etc/*.conf", "etc/app.conf", True),
            ("etc/*.conf", "x/etc/app.conf", False),
            (".config/bash/", ".config/bash/aliases.sh", True),
            (".config/bash/", ".config/bashrc", False),
            (".config", ".config/nvim/init.lua", True),
            ("bash/", "bash", False),
            ("**/init.lua", ".config/nvim/init.lua", True),
            ("**/init.lua", "init.lua", True),
            (".config/**", ".config/nvim/init.lua", True),
            ("*", "etc/app.conf", True),
            ("?pp.conf", "app.conf", True),
            ("?pp.conf", "apps.conf", False),
            ("[as]*.conf", "secret.conf", True),
            ("[!s]*.conf", "secret.conf", False),
            ("a*b", "a/b", False),
        ],
    )
    def test_matches(self, pattern, path, expected):
        assert matches(normalize_pattern(pattern), path) is expected


class TestRuleSet:
    """Rule sets and materialization."""

    def test_exclude_wins(self):
        rules = RuleSet.from_rules(include=["*.conf"], exclude=["secret.conf"])
        deployed = rules.materialize(TRACKED)
        assert "secret.conf" not in deployed
        assert "etc/secret.conf" not in deployed
        assert deployed == {"app.conf", "etc/app.conf"}

    def test_exclude_wins_regardless_of_order(self):
        a = RuleSet.from_rules(include=["secret.conf", "*.conf"], exclude=["secret.conf"])
        b = RuleSet.from_rules(include=["*.conf", "secret.conf"], exclude=["secret.conf"])
        assert a.materialize(TRACKED) == b.materialize(TRACKED)
        assert "secret.conf" not in a.materialize(TRACKED)

    def test_exclude_wins_after_merge(self):
        merged = RuleSet.from_rules(exclude=["secret.conf"]).merge(
            RuleSet.from_rules(include=["secret.conf"])
        )
        assert merged.materialize(TRACKED) == frozenset()

    def test_empty_include_deploys_nothing(self):
        assert RuleSet().materialize(TRACKED) == frozenset()
        assert RuleSet.from_rules(exclude=["x"]).materialize(TRACKED) == frozenset()

    def test_everything(self):
        assert RuleSet.everything().materialize(TRACKED) == frozenset(TRACKED)

    def test_directory_rule(self):
        rules = RuleSet.from_rules(include=[".config/bash/"], exclude=["secret.sh"])
        assert rules.materialize(TRACKED) == {".config/bash/aliases.sh"}

    def test_merge_keeps_order_and_dedupes(self):
        merged = merge_rule_sets(
            [RuleSet.from_rules(["a", "b"]), RuleSet.from_rules(["b", "c"], ["x"])]
        )
        assert merged.include == ("a", "b", "c")
        assert merged.exclude == ("x",)


class TestDelta:
    """Minimal deltas between path sets."""

    def test_delta(self):
        delta = compute_delta({"a", "b"}, {"b", "c"})
        assert delta.paths_to_checkout == {"c"}
        assert delta.paths_to_remove == {"a"}

    def test_unchanged_paths_untouched(self):
        delta = compute_delta({"a", "b"}, {"a", "b"})
        assert delta.empty

    def test_from_nothing(self):
        delta = compute_delta(set(), {"a"})
        assert delta.paths_to_checkout == {"a"}
        assert delta.paths_to_remove == frozenset()


def _record(name, include=(), exclude=(), deps=(), alias="/home"):
    return ClusterRecord.ok(
        name,
        Path(f"/s/{name}.git"),
        Definition(
            work_tree_alias=alias,
            include=tuple(include),
            exclude=tuple(exclude),
            dependencies=[
                d if isinstance(d, DependencyRef) else DependencyRef(name=d) for d in deps
            ],
        ),
    )


def _snapshot(records):
    return StoreSnapshot(store_root=Path("/s"), records={r.name: r for r in records})


def _root_rules(records, root, request=None):
    snapshot = _snapshot(records)
    return root_rule_sets(build_graph(snapshot), snapshot, root, request)


class TestRootRuleSets:
    """Per-alias merging across one root's closure."""

    def test_same_alias_merged(self):
        rules = _root_rules(
            [
                _record("bash", include=[".bashrc"], exclude=["secret.sh"], deps=["ps1"]),
                _record("ps1", include=["ps1.sh", "secret.sh"]),
            ],
            "bash",
        )
        assert rules["bash"] == rules["ps1"]
        assert rules["ps1"].include == ("ps1.sh", "secret.sh", ".bashrc")
        assert not rules["ps1"].matches("secret.sh")

    def test_different_alias_independent(self):
        rules = _root_rules(
            [
                _record("bash", include=[".bashrc"], exclude=["*.sh"], deps=["sys"]),
                _record("sys", include=["profile.sh"], alias="/etc"),
            ],
            "bash",
        )
        assert rules["sys"].include == ("profile.sh",)
        assert rules["sys"].matches("profile.sh")

    def test_dependency_include_override(self):
        rules = _root_rules(
            [
                _record("vim", deps=[DependencyRef(name="colors", include=("dark/",))], alias="/a"),
                _record("colors", include=["*"], alias="/b"),
            ],
            "vim",
        )
        assert rules["colors"].include == ("dark/",)

    def test_override_ignored_when_dependency_is_the_root(self):
        rules = _root_rules(
            [
                _record("vim", deps=[DependencyRef(name="colors", include=("dark/",))], alias="/a"),
                _record("colors", include=["*"], alias="/b"),
            ],
            "colors",
        )
        assert rules == {"colors": RuleSet(include=("*",))}

    def test_extra_rules_apply_to_root_only(self):
        rules = _root_rules(
            [_record("top", include=["a"], deps=["dep"], alias="/x"), _record("dep", include=["d"])],
            "top",
            RootRequest(include=("extra/",)),
        )
        assert rules["top"].include == ("a", "extra/")
        assert rules["dep"].include == ("d",)

    def test_deploy_all(self):
        rules = _root_rules([_record("top", include=["a"])], "top", RootRequest(deploy_all=True))
        assert rules["top"] == RuleSet.everything()

    def test_invalid_root_has_no_rules(self):
        broken = ClusterRecord.broken(
            "top", Path("/s/top.git"), "malformed_definition", "bad toml"
        )
        assert _root_rules([broken], "top") == {}


FILES = {
    "one": ["one", "cluster.toml"],
    "two": ["two", "cluster.toml"],
    "shared": ["s", "one", "two", "cluster.toml"],
}


def _desired(records, requests):
    snapshot = _snapshot(records)
    return desired_paths(build_graph(snapshot), snapshot, requests, FILES.__getitem__)


class TestDesiredPaths:
    """Union of what every requested root gives each cluster."""

    RECORDS = [
        _record("one", include=["one"], deps=["shared"]),
        _record("two", include=["two"], deps=["shared"]),
        _record("shared", include=["s"]),
    ]

    def test_shared_dependency_gets_the_union(self):
        desired = _desired(self.RECORDS, [("one", None), ("two", None)])

        shared = desired["shared"]
        assert shared.paths == {"s", "one", "two"}
        assert shared.roots == ("one", "two")
        assert shared.rules.include == ("s", "one", "two")

    def test_single_root(self):
        desired = _desired(self.RECORDS, [("two", None)])
        assert desired["shared"].paths == {"s", "two"}
        assert desired["shared"].roots == ("two",)
        assert "one" not in desired

    def test_dependency_requested_by_name(self):
        desired = _desired(self.RECORDS, [("shared", RootRequest()), ("one", None)])
        assert desired["shared"].paths == {"s", "one"}
        assert desired["shared"].roots == ("shared", "one")

    def test_no_requests(self):
        assert _desired(self.RECORDS, []) == {}
