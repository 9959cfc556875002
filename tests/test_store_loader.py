"""
Tests for the store loader: candidate listing and per-cluster validation.
"""

from pathlib import Path

from conftest import definition_toml

from dotcluster.core.services.store_loader import (
    cluster_dir,
    list_candidates,
    load_record,
    scan_store,
)


class TestListCandidates:
    """Candidate discovery."""

    def test_lists_git_dirs_sorted(self, store_root: Path):
        for name in ("zsh.git", "bash.git", "notes", ".git"):
            (store_root / name).mkdir()
        (store_root / "plain.git.txt").write_text("")
        assert list_candidates(store_root) == ["bash", "zsh"]

    def test_missing_store(self, tmp_path: Path):
        assert list_candidates(tmp_path / "nope") == []


class TestLoadRecord:
    """Validation states of a single candidate."""

    def test_valid(self, store_root, home, backend, add_cluster):
        add_cluster("bash", include=[".bashrc"])
        rec = load_record(store_root, "bash", backend, default_alias="~")
        assert rec.valid
        assert rec.git_dir == cluster_dir(store_root, "bash")
        assert rec.work_tree_alias == str(home)

    def test_not_bare(self, store_root, backend):
        backend.add_cluster(store_root, "x", definition=definition_toml(), bare=False)
        rec = load_record(store_root, "x", backend, default_alias="~")
        assert rec.state == "not_bare_alias"

    def test_missing_definition(self, store_root, backend):
        backend.add_cluster(store_root, "x", definition=None, files={"a": "1"})
        rec = load_record(store_root, "x", backend, default_alias="~")
        assert rec.state == "missing_definition"
        assert "cluster.toml" in rec.reason

    def test_malformed_definition(self, store_root, backend):
        backend.add_cluster(store_root, "x", definition="[settings\n")
        rec = load_record(store_root, "x", backend, default_alias="~")
        assert rec.state == "malformed_definition"

    def test_undefined_alias_variable(self, store_root, backend, monkeypatch):
        monkeypatch.delenv("DOTCLUSTER_TEST_UNSET", raising=False)
        text = definition_toml(alias="$DOTCLUSTER_TEST_UNSET/x")
        backend.add_cluster(store_root, "x", definition=text)
        rec = load_record(store_root, "x", backend, default_alias="~")
        assert rec.state == "malformed_definition"
        assert "DOTCLUSTER_TEST_UNSET" in rec.reason

    def test_alias_not_a_directory(self, store_root, tmp_path, backend):
        text = definition_toml(alias=tmp_path / "does-not-exist")
        backend.add_cluster(store_root, "x", definition=text)
        rec = load_record(store_root, "x", backend, default_alias="~")
        assert rec.state == "not_bare_alias"
        assert rec.definition is not None

    def test_default_alias_used(self, store_root, home, backend):
        backend.add_cluster(store_root, "x", definition=definition_toml())
        rec = load_record(store_root, "x", backend, default_alias=str(home))
        assert rec.valid
        assert rec.work_tree_alias == str(home)

    def test_alias_expanded(self, store_root, home, backend, monkeypatch):
        monkeypatch.setenv("DOTCLUSTER_TEST_HOME", str(home))
        backend.add_cluster(
            store_root, "x", definition=definition_toml(alias="$DOTCLUSTER_TEST_HOME")
        )
        rec = load_record(store_root, "x", backend, default_alias="~")
        assert rec.work_tree_alias == str(home)

    def test_relative_alias_anchored_at_home(self, store_root, tmp_path, backend, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / "dots").mkdir()
        backend.add_cluster(store_root, "x", definition=definition_toml(alias="dots"))
        monkeypatch.chdir(store_root)

        rec = load_record(store_root, "x", backend, default_alias="~")

        assert rec.valid, rec.reason
        assert rec.work_tree_alias == str(tmp_path / "dots")


class TestScanStore:
    """Whole-store scans."""

    def test_partial_failure_isolated(self, store_root, backend, add_cluster):
        """One broken cluster out of five leaves the other four valid."""
        for name in ("a", "c", "d", "e"):
            add_cluster(name, include=["*"])
        backend.add_cluster(store_root, "b", definition="not toml at all [[[")

        snapshot = scan_store(store_root, backend, default_alias="~")

        assert snapshot.names == ["a", "b", "c", "d", "e"]
        assert sorted(snapshot.valid) == ["a", "c", "d", "e"]
        assert [name for name, _ in snapshot.errors] == ["b"]

    def test_non_repository_dir(self, store_root, backend, add_cluster):
        add_cluster("good")
        (store_root / "stray.git").mkdir()
        snapshot = scan_store(store_root, backend, default_alias="~")
        assert snapshot.get("stray").state == "not_bare_alias"
        assert snapshot.get("good").valid

    def test_explicit_candidates(self, store_root, backend, add_cluster):
        add_cluster("a")
        add_cluster("b")
        snapshot = scan_store(store_root, backend, default_alias="~", candidates=["b"])
        assert snapshot.names == ["b"]

    def test_empty_store(self, store_root, backend):
        snapshot = scan_store(store_root, backend, default_alias="~")
        assert snapshot.records == {}
        assert snapshot.errors == []
