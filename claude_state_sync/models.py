"""Pydantic models for claude-state-sync.

This module defines the on-disk records written by the hook, the hook payload
itself, the in-memory observed state per session, and the NDJSON events the
watch command emits.
"""

import time
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from .timers import TimerHandle


class SessionState(str, Enum):
    """Session state machine states."""

    IDLE = "idle"
    PROCESSING = "processing"
    WAITING = "waiting"
    DONE = "done"


class HookEventNames:
    """Lifecycle event names emitted by Claude Code hooks."""

    SESSION_START = "SessionStart"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    PRE_TOOL_USE = "PreToolUse"
    PERMISSION_REQUEST = "PermissionRequest"
    NOTIFICATION = "Notification"
    POST_TOOL_USE = "PostToolUse"
    STOP = "Stop"
    SUBAGENT_STOP = "SubagentStop"
    SESSION_END = "SessionEnd"

    # Notification sub-type that means "needs user approval"; the others
    # (idle_prompt, auth_success, ...) do not change state
    PERMISSION_PROMPT = "permission_prompt"

    # Tools whose PostToolUse means files on disk changed
    FILE_WRITE_TOOLS = frozenset({"Write", "Edit", "MultiEdit", "NotebookEdit"})

    # Every event the installer registers the hook for
    ALL = (
        SESSION_START,
        USER_PROMPT_SUBMIT,
        PRE_TOOL_USE,
        PERMISSION_REQUEST,
        NOTIFICATION,
        POST_TOOL_USE,
        STOP,
        SUBAGENT_STOP,
        SESSION_END,
    )


class HookEvent(BaseModel):
    """Payload Claude Code passes to a hook on stdin.

    Only the fields used for state mapping are modelled; everything else in
    the payload (transcript_path, cwd, tool_input, ...) is ignored.
    """

    event_name: str = Field(
        validation_alias=AliasChoices("hook_event_name", "event", "event_name"),
        min_length=1,
        description="Lifecycle event name (UserPromptSubmit, Stop, ...)",
    )
    session_id: Optional[str] = Field(
        default=None, description="Claude Code session identifier"
    )
    notification_type: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("notification_type", "qualifier"),
        description="Notification sub-type qualifier",
    )
    tool_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("tool_name", "tool"),
        description="Tool name for PreToolUse/PostToolUse",
    )

    @field_validator("session_id", "notification_type", "tool_name", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class StateRecord(BaseModel):
    """Current lifecycle state of one session, as stored on disk.

    One file per session key, overwritten on every event. Unknown fields are
    ignored so newer writers stay readable.
    """

    state: SessionState = Field(description="Lifecycle state")
    session_id: str = Field(default="", description="Session identifier, empty if unknown")
    timestamp: int = Field(default=0, description="Unix timestamp in seconds")

    @field_validator("state", mode="before")
    @classmethod
    def _unknown_state_is_idle(cls, value: Any) -> Any:
        if isinstance(value, SessionState):
            return value
        # Older writers emitted states this engine no longer models (error)
        if isinstance(value, str) and value not in {s.value for s in SessionState}:
            return SessionState.IDLE
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> Any:
        if isinstance(value, float):
            return int(value)
        if value is None:
            return 0
        return value

    @classmethod
    def now(cls, state: SessionState, session_id: Optional[str] = None) -> "StateRecord":
        """Build a record stamped with the current time."""
        return cls(state=state, session_id=session_id or "", timestamp=int(time.time()))


class ObservedState(BaseModel):
    """In-memory state of one session in the consuming process.

    Derived from the latest StateRecord; never written back to disk.
    """

    session_key: str = Field(description="Session key this state belongs to")
    state: SessionState = Field(default=SessionState.IDLE, description="Current state")
    last_transition_time: float = Field(
        default=0.0, description="Scheduler time of the last transition"
    )
    record_mtime_ns: Optional[int] = Field(
        default=None, description="mtime of the record last applied"
    )
    completion_timer: Optional[TimerHandle] = Field(
        default=None, description="Armed while DONE; forces IDLE on expiry"
    )
    recovery_timer: Optional[TimerHandle] = Field(
        default=None, description="Armed while WAITING; forces IDLE on expiry"
    )

    class Config:
        """Pydantic configuration."""

        arbitrary_types_allowed = True


# ---------------------------------------------------------------------------
# Claude Code statusLine payload
# ---------------------------------------------------------------------------


class StatusModelInfo(BaseModel):
    """Model section of the statusLine payload."""

    display_name: str = Field(default="Claude")


class StatusContextWindow(BaseModel):
    """Context window section of the statusLine payload."""

    total_input_tokens: int = Field(default=0)


class StatusCost(BaseModel):
    """Cost section of the statusLine payload."""

    total_cost_usd: float = Field(default=0.0)
    total_lines_added: int = Field(default=0)
    total_lines_removed: int = Field(default=0)


class StatusSnapshot(BaseModel):
    """JSON Claude Code sends to its statusLine command.

    Stored verbatim by the bridge; only the parts the status line renders are
    modelled here.
    """

    session_id: Optional[str] = Field(default=None)
    model: Optional[StatusModelInfo] = Field(default=None)
    context_window: Optional[StatusContextWindow] = Field(default=None)
    cost: Optional[StatusCost] = Field(default=None)


# ---------------------------------------------------------------------------
# NDJSON output
# ---------------------------------------------------------------------------


class StatusUpdate(BaseModel):
    """Emitted by the watch command whenever the displayed status changes."""

    type: str = Field(default="status", description="Event type for consumer routing")
    session_key: Optional[str] = Field(default=None, description="Current session key")
    state: str = Field(description="Current session state")
    icon: str = Field(description="Nerd Font icon for the state")
    color: str = Field(description="Hex colour for the state")
    text: str = Field(default="", description="Formatted status line")
    pending_refresh: bool = Field(default=False, description="Buffers need re-reading")
    timestamp: int = Field(description="Unix timestamp in seconds")

    class Config:
        """Pydantic configuration."""

        use_enum_values = True


class ReconcileSignal(BaseModel):
    """Emitted when the consumer should re-read files from disk."""

    type: str = Field(default="reconcile", description="Event type for consumer routing")
    session_key: Optional[str] = Field(default=None, description="Session that wrote files")
    forced: bool = Field(default=False, description="True for a manual reconciliation")
    timestamp: int = Field(description="Unix timestamp in seconds")
