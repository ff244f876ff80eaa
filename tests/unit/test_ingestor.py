"""Unit tests for the hook-side event ingestor."""

import io
import os

import pytest

from claude_state_sync.errors import MalformedPayloadError
from claude_state_sync.ingestor import (
    EXIT_OK,
    EXIT_STORE_FAILURE,
    ActionKind,
    EventIngestor,
    map_event,
    parse_payload,
)
from claude_state_sync.models import HookEvent, SessionState
from claude_state_sync.store import StateStore


def event(name, **fields):
    return HookEvent.model_validate({"hook_event_name": name, **fields})


class TestEventTable:
    """Test the event -> action mapping."""

    @pytest.mark.parametrize("name, state", [
        ("SessionStart", SessionState.IDLE),
        ("UserPromptSubmit", SessionState.PROCESSING),
        ("PreToolUse", SessionState.PROCESSING),
        ("PermissionRequest", SessionState.WAITING),
        ("PostToolUse", SessionState.PROCESSING),
        ("Stop", SessionState.DONE),
    ])
    def test_state_events(self, name, state):
        action = map_event(event(name))

        assert action.kind == ActionKind.WRITE_STATE
        assert action.state == state
        assert action.refresh is False

    def test_permission_notification_waits(self):
        action = map_event(event("Notification", notification_type="permission_prompt"))
        assert action.state == SessionState.WAITING

    def test_other_notifications_ignored(self):
        assert map_event(event("Notification", notification_type="idle_prompt")).kind == ActionKind.NONE
        assert map_event(event("Notification")).kind == ActionKind.NONE

    @pytest.mark.parametrize("tool", ["Write", "Edit", "MultiEdit", "NotebookEdit"])
    def test_file_writing_tools_signal_refresh(self, tool):
        action = map_event(event("PostToolUse", tool_name=tool))

        assert action.state == SessionState.PROCESSING
        assert action.refresh is True

    def test_read_only_tool_no_refresh(self):
        assert map_event(event("PostToolUse", tool_name="Read")).refresh is False

    def test_subagent_stop_ignored(self):
        assert map_event(event("SubagentStop")).kind == ActionKind.NONE

    def test_session_end_deletes(self):
        assert map_event(event("SessionEnd")).kind == ActionKind.DELETE_SESSION

    def test_unknown_event_ignored(self):
        assert map_event(event("PreCompact")).kind == ActionKind.NONE


class TestParsePayload:
    """Test stdin payload parsing."""

    @pytest.mark.parametrize("text", ["", "   ", "not json", "[1,2]", '"Stop"', '{"session_id": "x"}'])
    def test_malformed(self, text):
        with pytest.raises(MalformedPayloadError):
            parse_payload(text)

    def test_valid(self):
        parsed = parse_payload('{"hook_event_name": "Stop", "session_id": "s1"}')
        assert parsed.event_name == "Stop"


class TestEventIngestor:
    """Test applying events to the store."""

    def test_writes_state(self, store):
        EventIngestor(store).ingest(event("UserPromptSubmit", session_id="s1"))
        assert store.read_record("s1").state == SessionState.PROCESSING

    def test_post_tool_use_writes_refresh(self, store):
        EventIngestor(store).ingest(event("PostToolUse", session_id="s1", tool_name="Write"))

        assert store.read_record("s1").state == SessionState.PROCESSING
        assert store.refresh_mtime("s1") is not None

    def test_ignored_event_writes_nothing(self, store, state_dir):
        EventIngestor(store).ingest(event("SubagentStop", session_id="s1"))
        assert os.listdir(state_dir) == []

    def test_session_end_removes_files(self, store, state_dir):
        ingestor = EventIngestor(store)
        ingestor.ingest(event("PostToolUse", session_id="s1", tool_name="Edit"))
        ingestor.ingest(event("SessionEnd", session_id="s1"))

        assert os.listdir(state_dir) == []

    def test_sessions_are_independent(self, store):
        ingestor = EventIngestor(store)
        ingestor.ingest(event("Stop", session_id="a"))
        ingestor.ingest(event("UserPromptSubmit", session_id="b"))

        assert store.read_record("a").state == SessionState.DONE
        assert store.read_record("b").state == SessionState.PROCESSING

    def test_replay_is_last_write_wins(self, store):
        ingestor = EventIngestor(store)
        for name in ("UserPromptSubmit", "PreToolUse", "PostToolUse", "Stop"):
            ingestor.ingest(event(name, session_id="s1"))

        assert store.read_record("s1").state == SessionState.DONE

    def test_run_malformed_exits_zero(self, store, state_dir):
        assert EventIngestor(store).run(io.StringIO("{oops")) == EXIT_OK
        assert os.listdir(state_dir) == []

    def test_run_ok(self, store):
        code = EventIngestor(store).run(io.StringIO('{"hook_event_name": "Stop"}'))

        assert code == EXIT_OK
        assert store.read_record("").state == SessionState.DONE

    def test_run_unwritable_store_exits_one(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        ingestor = EventIngestor(StateStore(blocker / ".claude"))

        assert ingestor.run(io.StringIO('{"hook_event_name": "Stop"}')) == EXIT_STORE_FAILURE
