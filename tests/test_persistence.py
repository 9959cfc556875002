"""
Tests for persistence: state file and audit ledger.
"""

import json
import time
from pathlib import Path

import pytest

from dotcluster.core.models.state import RootRequest, StoreState
from dotcluster.core.persistence.audit import AuditEntry, AuditWriter
from dotcluster.core.persistence.state_file import (
    default_state_path,
    load_state,
    save_state,
)


class TestStateFile:
    """Tests for state file persistence."""

    def test_save_and_load(self, tmp_path: Path):
        """State roundtrips through save/load."""
        path = tmp_path / ".dotcluster" / "state.json"
        state = StoreState()
        state.set_deployment("bash", "/home/me", {".bashrc"}, include=[".bashrc"])

        save_state(state, path)
        assert path.is_file()

        loaded = load_state(path)
        assert loaded.deployed_paths("bash", "/home/me") == frozenset({".bashrc"})
        assert loaded.get_record("bash", "/home/me").include == [".bashrc"]

    def test_request_survives_reload(self, tmp_path: Path):
        path = tmp_path / "state.json"
        state = StoreState()
        state.set_deployment("bash", "/h", {"a"}, request=RootRequest(deploy_all=True))
        save_state(state, path)
        assert load_state(path).requests() == {"bash": RootRequest(deploy_all=True)}

    def test_state_without_requests_still_loads(self, tmp_path: Path):
        path = tmp_path / "state.json"
        state = StoreState()
        state.set_deployment("bash", "/h", {"a"})
        data = json.loads(state.model_dump_json())
        del data["deployments"]["bash"]["/h"]["request"]
        path.write_text(json.dumps(data))

        loaded = load_state(path)

        assert loaded.is_deployed("bash")
        assert loaded.requests() == {}

    def test_default_path(self, tmp_path: Path):
        assert default_state_path(tmp_path) == tmp_path / ".dotcluster" / "state.json"

    def test_load_missing_returns_fresh(self, tmp_path: Path):
        """Missing state file returns a fresh state."""
        state = load_state(tmp_path / "nonexistent.json")
        assert state.deployments == {}

    def test_load_corrupt_returns_fresh(self, tmp_path: Path):
        """Corrupt JSON returns a fresh state."""
        path = tmp_path / "corrupt.json"
        path.write_text("not json at all {{{")
        assert load_state(path).deployments == {}

    def test_load_wrong_shape_returns_fresh(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text('{"deployments": "nope"}')
        assert load_state(path).deployments == {}

    def test_save_creates_directories(self, tmp_path: Path):
        """Save creates parent directories automatically."""
        path = tmp_path / "deep" / "nested" / "state.json"
        save_state(StoreState(), path)
        assert path.is_file()

    def test_save_is_valid_json(self, tmp_path: Path):
        """Saved file is valid, human-readable JSON."""
        path = tmp_path / "state.json"
        state = StoreState()
        state.set_deployment("vim", "/h", {".vimrc"})
        save_state(state, path)

        data = json.loads(path.read_text())
        assert data["schema_version"] == 1
        assert data["deployments"]["vim"]["/h"]["paths"] == [".vimrc"]

    def test_save_atomic_no_partial(self, tmp_path: Path):
        """No temp files are left behind."""
        save_state(StoreState(), tmp_path / "state.json")
        assert list(tmp_path.glob(".state_*.tmp")) == []

    def test_save_failure_raises(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(OSError):
            save_state(StoreState(), blocker / "state.json")

    def test_save_updates_timestamp(self, tmp_path: Path):
        """Save calls touch(), updating updated_at."""
        path = tmp_path / "state.json"
        state = StoreState()
        old_ts = state.updated_at
        time.sleep(0.01)
        save_state(state, path)
        assert load_state(path).updated_at != old_ts

    def test_sequential_saves(self, tmp_path: Path):
        """Multiple saves to the same file work correctly."""
        path = tmp_path / "state.json"
        state = StoreState()
        state.set_deployment("a", "/h", {"x"})
        save_state(state, path)

        state.clear_deployment("a")
        state.set_deployment("b", "/h", {"y"})
        save_state(state, path)

        loaded = load_state(path)
        assert loaded.deployed_clusters() == ["b"]


class TestAuditWriter:
    """Tests for the audit ledger."""

    def test_write_and_read(self, tmp_path: Path):
        writer = AuditWriter(path=tmp_path / "audit.ndjson")
        writer.write(AuditEntry(
            operation_id="op-001",
            operation_type="deploy",
            status="ok",
            clusters_total=3,
            clusters_succeeded=3,
        ))

        entries = writer.read_all()
        assert len(entries) == 1
        assert entries[0].operation_id == "op-001"
        assert entries[0].clusters_succeeded == 3

    def test_store_root_location(self, tmp_path: Path):
        writer = AuditWriter(store_root=tmp_path)
        assert writer.path == tmp_path / ".dotcluster" / "audit.ndjson"

    def test_needs_a_location(self):
        with pytest.raises(ValueError):
            AuditWriter()

    def test_append_multiple(self, tmp_path: Path):
        writer = AuditWriter(path=tmp_path / "audit.ndjson")
        for i in range(5):
            writer.write(AuditEntry(operation_id=f"op-{i:03d}", operation_type="clone"))

        entries = writer.read_all()
        assert len(entries) == 5
        assert entries[0].operation_id == "op-000"
        assert entries[4].operation_id == "op-004"

    def test_read_recent(self, tmp_path: Path):
        writer = AuditWriter(path=tmp_path / "audit.ndjson")
        for i in range(10):
            writer.write(AuditEntry(operation_id=f"op-{i:03d}"))

        recent = writer.read_recent(3)
        assert [e.operation_id for e in recent] == ["op-007", "op-008", "op-009"]

    def test_entry_count(self, tmp_path: Path):
        writer = AuditWriter(path=tmp_path / "audit.ndjson")
        assert writer.entry_count() == 0
        for i in range(7):
            writer.write(AuditEntry(operation_id=f"op-{i}"))
        assert writer.entry_count() == 7

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        """Corrupt lines in the ledger are skipped gracefully."""
        path = tmp_path / "audit.ndjson"
        path.write_text(
            '{"operation_id": "good-1", "operation_type": "deploy"}\n'
            "this is not json\n"
            '{"operation_id": "good-2", "operation_type": "undeploy"}\n'
        )
        entries = AuditWriter(path=path).read_all()
        assert [e.operation_id for e in entries] == ["good-1", "good-2"]

    def test_ndjson_format(self, tmp_path: Path):
        """Each entry is a single line of valid JSON."""
        path = tmp_path / "audit.ndjson"
        writer = AuditWriter(path=path)
        writer.write(AuditEntry(operation_id="op-1", errors=["a\nb"]))
        writer.write(AuditEntry(operation_id="op-2"))

        lines = path.read_text().strip().split("\n")
        assert len(lines) == 2
        for line in lines:
            assert "operation_id" in json.loads(line)

    def test_write_failure_is_logged_not_raised(self, tmp_path: Path, caplog):
        blocker = tmp_path / "file"
        blocker.write_text("")
        AuditWriter(path=blocker / "audit.ndjson").write(AuditEntry(operation_id="x"))
        assert "Failed to write audit entry" in caplog.text
