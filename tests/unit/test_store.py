"""Unit tests for the on-disk state store."""

import json
import os

import pytest

from claude_state_sync.errors import CorruptRecordError, StoreUnavailableError, StoreWriteError
from claude_state_sync.models import SessionState
from claude_state_sync.store import (
    DEFAULT_SESSION_KEY,
    StateStore,
    classify_filename,
    parse_record,
    resolve_state_dir,
    session_key_for,
)


class TestSessionKeys:
    """Test session key derivation and filename classification."""

    def test_no_session_id_is_default_key(self):
        assert session_key_for(None) == DEFAULT_SESSION_KEY
        assert session_key_for("") == DEFAULT_SESSION_KEY

    def test_unsafe_characters_replaced(self):
        assert session_key_for("a/b c:d") == "a_b_c_d"
        assert session_key_for("abc-123.x_y") == "abc-123.x_y"

    @pytest.mark.parametrize("name, expected", [
        ("state.json", ("state", "")),
        ("state-abc.json", ("state", "abc")),
        ("refresh", ("refresh", "")),
        ("refresh-abc", ("refresh", "abc")),
        ("status-abc.json", ("status", "abc")),
        ("settings.json", None),
        (".tmp_state_x1y2", None),
        ("state-abc.json.bak", None),
    ])
    def test_classify_filename(self, name, expected):
        assert classify_filename(name) == expected

    def test_resolve_state_dir_override(self, tmp_path):
        env = {"CLAUDE_STATE_SYNC_DIR": str(tmp_path / "x"), "CLAUDE_PROJECT_DIR": "/nope"}
        assert resolve_state_dir(env) == tmp_path / "x"

    def test_resolve_state_dir_project(self, tmp_path):
        assert resolve_state_dir({"CLAUDE_PROJECT_DIR": str(tmp_path)}) == tmp_path / ".claude"


class TestWrites:
    """Test hook-side writes."""

    def test_write_state_creates_directory(self, tmp_path):
        store = StateStore(tmp_path / "new" / ".claude")
        path = store.write_state(SessionState.PROCESSING, "s1")

        assert path.name == "state-s1.json"
        data = json.loads(path.read_text())
        assert data["state"] == "processing"
        assert data["session_id"] == "s1"

    def test_write_state_without_session(self, store):
        path = store.write_state(SessionState.IDLE)
        assert path.name == "state.json"

    def test_write_overwrites(self, store):
        store.write_state(SessionState.PROCESSING, "s1")
        store.write_state(SessionState.DONE, "s1")

        assert store.read_record("s1").state == SessionState.DONE
        # No temp files left behind
        assert sorted(os.listdir(store.directory)) == ["state-s1.json"]

    def test_write_refresh(self, store):
        path = store.write_refresh("s1")

        assert path.name == "refresh-s1"
        assert store.refresh_mtime("s1") is not None

    def test_write_into_file_path_fails(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = StateStore(blocker / ".claude")

        with pytest.raises(StoreWriteError):
            store.write_state(SessionState.DONE, "s1")

    def test_ensure_directory_unavailable(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        with pytest.raises(StoreUnavailableError) as exc_info:
            StateStore(blocker / ".claude").ensure_directory()
        assert "reason" in exc_info.value.details

    def test_delete_session(self, store):
        store.write_state(SessionState.DONE, "s1")
        store.write_refresh("s1")
        store.write_status({"model": {}}, "s1")

        assert store.delete_session("s1") == 3
        assert os.listdir(store.directory) == []

    def test_delete_missing_session(self, store):
        assert store.delete_session("ghost") == 0


class TestReads:
    """Test consumer-side reads."""

    def test_parse_record_invalid_json(self):
        with pytest.raises(CorruptRecordError):
            parse_record("{not json")

    def test_parse_record_not_object(self):
        with pytest.raises(CorruptRecordError):
            parse_record("[1, 2]")

    def test_read_corrupt_record_returns_none(self, store, state_dir):
        (state_dir / "state-s1.json").write_text('{"state": ')
        assert store.read_record("s1") is None

    def test_read_missing_record(self, store):
        assert store.read_record("nope") is None

    def test_state_stamps_and_read_all(self, store, write_record):
        write_record(SessionState.DONE, "a")
        write_record(SessionState.WAITING, "b")
        write_record(SessionState.IDLE)

        stamps = store.state_stamps()
        assert set(stamps) == {"a", "b", ""}
        assert stamps["b"].mtime_ns > stamps["a"].mtime_ns

        records = store.read_all()
        assert records["a"].state == SessionState.DONE
        assert records[""].state == SessionState.IDLE

    def test_missing_directory_reads_empty(self, tmp_path):
        store = StateStore(tmp_path / "absent")

        assert store.state_stamps() == {}
        assert store.read_all() == {}

    def test_read_status(self, store):
        store.write_status({"model": {"display_name": "Opus"}, "cost": {"total_lines_added": 3}}, "s1")
        snapshot = store.read_status("s1")

        assert snapshot.model.display_name == "Opus"
        assert snapshot.cost.total_lines_added == 3

    def test_read_status_invalid(self, store, state_dir):
        (state_dir / "status-s1.json").write_text("garbage")
        assert store.read_status("s1") is None
