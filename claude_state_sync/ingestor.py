"""Hook-side event ingestion.

Claude Code runs `claude-state-sync hook` once per lifecycle event with a JSON
payload on stdin. Each invocation maps the event to one store operation and
exits; there is no in-memory state between invocations.

Event -> action:
    SessionStart        -> idle
    UserPromptSubmit    -> processing
    PreToolUse          -> processing
    PermissionRequest   -> waiting
    Notification        -> waiting (permission_prompt only)
    PostToolUse         -> processing (+ refresh signal after file writes)
    Stop                -> done
    SubagentStop        -> no change (main agent still active)
    SessionEnd          -> delete session files
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, TextIO

from pydantic import ValidationError

from .errors import MalformedPayloadError, StoreWriteError
from .models import HookEvent, HookEventNames, SessionState
from .store import StateStore

logger = logging.getLogger(__name__)

# Exit codes understood by Claude Code: 0 ok, 2 blocks the action, anything
# else is a non-blocking error. 2 is never used here.
EXIT_OK = 0
EXIT_STORE_FAILURE = 1


class ActionKind(str, Enum):
    WRITE_STATE = "write_state"
    DELETE_SESSION = "delete_session"
    NONE = "none"


@dataclass(frozen=True)
class IngestAction:
    """What a single event does to the store."""

    kind: ActionKind
    state: Optional[SessionState] = None
    refresh: bool = False


NO_ACTION = IngestAction(ActionKind.NONE)

_STATE_EVENTS = {
    HookEventNames.SESSION_START: SessionState.IDLE,
    HookEventNames.USER_PROMPT_SUBMIT: SessionState.PROCESSING,
    HookEventNames.PRE_TOOL_USE: SessionState.PROCESSING,
    HookEventNames.PERMISSION_REQUEST: SessionState.WAITING,
    HookEventNames.STOP: SessionState.DONE,
}


def map_event(event: HookEvent) -> IngestAction:
    """Decide the store action for one hook event."""
    name = event.event_name

    if name in _STATE_EVENTS:
        return IngestAction(ActionKind.WRITE_STATE, _STATE_EVENTS[name])

    if name == HookEventNames.NOTIFICATION:
        if event.notification_type == HookEventNames.PERMISSION_PROMPT:
            return IngestAction(ActionKind.WRITE_STATE, SessionState.WAITING)
        return NO_ACTION

    if name == HookEventNames.POST_TOOL_USE:
        return IngestAction(
            ActionKind.WRITE_STATE,
            SessionState.PROCESSING,
            refresh=event.tool_name in HookEventNames.FILE_WRITE_TOOLS,
        )

    if name == HookEventNames.SESSION_END:
        return IngestAction(ActionKind.DELETE_SESSION)

    # SubagentStop and unknown events leave the state alone
    return NO_ACTION


def parse_payload(text: str) -> HookEvent:
    """Parse hook stdin into a HookEvent.

    Raises:
        MalformedPayloadError: not JSON, not an object, or no event name
    """
    if not text or not text.strip():
        raise MalformedPayloadError("Empty hook payload")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedPayloadError(f"Hook payload is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedPayloadError("Hook payload must be a JSON object")
    try:
        return HookEvent.model_validate(data)
    except ValidationError as e:
        raise MalformedPayloadError(
            "Hook payload has no usable event name",
            details={"errors": e.error_count()},
        ) from e


class EventIngestor:
    """Applies hook events to a StateStore."""

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def ingest(self, event: HookEvent) -> IngestAction:
        """Apply one event.

        Raises:
            StoreWriteError: the state directory or file could not be written
        """
        action = map_event(event)

        if action.kind == ActionKind.WRITE_STATE:
            self.store.write_state(action.state, event.session_id)
            if action.refresh:
                self.store.write_refresh(event.session_id)
        elif action.kind == ActionKind.DELETE_SESSION:
            self.store.delete_session(event.session_id)
        else:
            logger.debug(f"Event {event.event_name} does not change state")
            return action

        logger.debug(
            f"{event.event_name} (session={event.session_id or '-'}) -> "
            f"{action.kind.value}{' ' + action.state.value if action.state else ''}"
            f"{' +refresh' if action.refresh else ''}"
        )
        return action

    def run(self, stdin: TextIO) -> int:
        """Read one payload from stdin and apply it.

        Returns:
            Process exit code
        """
        try:
            event = parse_payload(stdin.read())
        except MalformedPayloadError as e:
            # Events are frequent; the next one re-attempts the write
            logger.warning(f"Skipping hook event: {e.message}")
            return EXIT_OK

        try:
            self.ingest(event)
        except StoreWriteError as e:
            logger.error(f"Dropping {event.event_name} event: {e.message}")
            return EXIT_STORE_FAILURE
        return EXIT_OK
