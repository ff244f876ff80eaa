"""Session state machine for the consuming process.

Each session key observed in the state directory gets a SessionStateMachine.
State is driven only by the records the hook writes; the machine adds two
timers on top:

State Machine:
    IDLE → PROCESSING (UserPromptSubmit, PreToolUse)
    PROCESSING → WAITING (permission prompt)
    WAITING → PROCESSING (approval granted, tool runs)
    PROCESSING → DONE (Stop)
    DONE → IDLE (completion timer, default 2s)
    WAITING → IDLE (recovery timer, default 60s; a declined prompt fires no event)
    Any → IDLE (session files removed)

SessionRegistry owns every machine and fans transitions out to listeners.
"""

import logging
from typing import Callable, Dict, Iterator, List, Optional

from .models import ObservedState, SessionState, StateRecord
from .timers import Scheduler

logger = logging.getLogger(__name__)

DEFAULT_COMPLETION_SEC = 2.0
DEFAULT_RECOVERY_SEC = 60.0

COMPLETION_TIMER = "completion"
RECOVERY_TIMER = "recovery"

# Nominal cycle; records outside it are still applied
EXPECTED_TRANSITIONS = {
    SessionState.IDLE: {SessionState.PROCESSING},
    SessionState.PROCESSING: {SessionState.WAITING, SessionState.DONE},
    SessionState.WAITING: {SessionState.PROCESSING, SessionState.DONE},
    SessionState.DONE: {SessionState.IDLE, SessionState.PROCESSING},
}

TransitionListener = Callable[[str, SessionState, SessionState], None]


class SessionStateMachine:
    """State and timers for one session key."""

    def __init__(
        self,
        session_key: str,
        scheduler: Scheduler,
        on_transition: TransitionListener,
        completion_sec: float = DEFAULT_COMPLETION_SEC,
        recovery_sec: float = DEFAULT_RECOVERY_SEC,
    ) -> None:
        self.scheduler = scheduler
        self.completion_sec = completion_sec
        self.recovery_sec = recovery_sec
        self._on_transition = on_transition
        self.observed = ObservedState(
            session_key=session_key,
            last_transition_time=scheduler.time(),
        )
        self._closed = False

    @property
    def session_key(self) -> str:
        return self.observed.session_key

    @property
    def state(self) -> SessionState:
        return self.observed.state

    def apply_record(self, record: StateRecord, mtime_ns: Optional[int] = None) -> bool:
        """Apply a newly observed record.

        Re-observing DONE or WAITING re-arms its timer even when the state is
        unchanged, since a fresh write means a fresh event.

        Returns:
            True if the state changed
        """
        if self._closed:
            return False
        self.observed.record_mtime_ns = mtime_ns
        new_state = record.state
        if new_state == self.observed.state:
            self._arm_for(new_state)
            return False
        self._transition(new_state, reason="record")
        return True

    def reset(self, reason: str = "reset") -> bool:
        """Force IDLE, cancelling any timers.

        Returns:
            True if the state changed
        """
        if self.observed.state == SessionState.IDLE:
            self._cancel_timers()
            return False
        self._transition(SessionState.IDLE, reason=reason)
        return True

    def close(self) -> None:
        """Cancel timers for good; the machine ignores everything afterwards."""
        self._cancel_timers()
        self._closed = True

    def _transition(self, new_state: SessionState, reason: str) -> None:
        old_state = self.observed.state
        if new_state not in EXPECTED_TRANSITIONS.get(old_state, set()) and new_state != SessionState.IDLE:
            logger.debug(
                f"Session {self.session_key or '<default>'}: off-cycle transition "
                f"{old_state.value} → {new_state.value}"
            )
        self.observed.state = new_state
        self.observed.last_transition_time = self.scheduler.time()
        self._arm_for(new_state)
        logger.info(
            f"Session {self.session_key or '<default>'}: "
            f"{old_state.value} → {new_state.value} ({reason})"
        )
        self._on_transition(self.session_key, old_state, new_state)

    def _arm_for(self, state: SessionState) -> None:
        """Keep exactly the timer that belongs to the current state."""
        if state == SessionState.DONE:
            self._cancel_recovery()
            self._arm_completion()
        elif state == SessionState.WAITING:
            self._cancel_completion()
            self._arm_recovery()
        else:
            self._cancel_timers()

    def _arm_completion(self) -> None:
        self._cancel_completion()
        self.observed.completion_timer = self.scheduler.call_later(
            self.completion_sec,
            lambda: self._on_timer(COMPLETION_TIMER, SessionState.DONE),
            purpose=f"{COMPLETION_TIMER}:{self.session_key}",
        )

    def _arm_recovery(self) -> None:
        self._cancel_recovery()
        self.observed.recovery_timer = self.scheduler.call_later(
            self.recovery_sec,
            lambda: self._on_timer(RECOVERY_TIMER, SessionState.WAITING),
            purpose=f"{RECOVERY_TIMER}:{self.session_key}",
        )

    def _on_timer(self, purpose: str, expected: SessionState) -> None:
        if purpose == COMPLETION_TIMER:
            self.observed.completion_timer = None
        else:
            self.observed.recovery_timer = None
        if self._closed or self.observed.state != expected:
            return
        self._transition(SessionState.IDLE, reason=f"{purpose} timeout")

    def _cancel_completion(self) -> None:
        if self.observed.completion_timer is not None:
            self.observed.completion_timer.cancel()
            self.observed.completion_timer = None

    def _cancel_recovery(self) -> None:
        if self.observed.recovery_timer is not None:
            self.observed.recovery_timer.cancel()
            self.observed.recovery_timer = None

    def _cancel_timers(self) -> None:
        self._cancel_completion()
        self._cancel_recovery()


class SessionRegistry:
    """All session state machines of one consumer.

    Passed by reference to the observer and engine; there is no module-level
    session table.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        completion_sec: float = DEFAULT_COMPLETION_SEC,
        recovery_sec: float = DEFAULT_RECOVERY_SEC,
    ) -> None:
        self.scheduler = scheduler
        self.completion_sec = completion_sec
        self.recovery_sec = recovery_sec
        self._machines: Dict[str, SessionStateMachine] = {}
        self._listeners: List[TransitionListener] = []

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def _emit(self, key: str, old: SessionState, new: SessionState) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, old, new)
            except Exception as e:
                logger.error(f"Transition listener failed for {key!r}: {e}")

    def get(self, key: str) -> Optional[SessionStateMachine]:
        return self._machines.get(key)

    def get_or_create(self, key: str) -> SessionStateMachine:
        machine = self._machines.get(key)
        if machine is None:
            machine = SessionStateMachine(
                key,
                self.scheduler,
                self._emit,
                completion_sec=self.completion_sec,
                recovery_sec=self.recovery_sec,
            )
            self._machines[key] = machine
            logger.debug(f"Tracking session {key or '<default>'}")
        return machine

    def apply(self, key: str, record: StateRecord, mtime_ns: Optional[int] = None) -> bool:
        """Apply a record to its session, creating the machine on first sight."""
        return self.get_or_create(key).apply_record(record, mtime_ns)

    def remove(self, key: str) -> bool:
        """Drop a session whose files are gone.

        Listeners see a final transition to IDLE if the session was not idle.
        Returns True if the session existed.
        """
        machine = self._machines.pop(key, None)
        if machine is None:
            return False
        machine.reset(reason="session removed")
        machine.close()
        logger.debug(f"Stopped tracking session {key or '<default>'}")
        return True

    def state_of(self, key: Optional[str]) -> SessionState:
        """State of a session; unknown sessions are IDLE."""
        if key is None:
            return SessionState.IDLE
        machine = self._machines.get(key)
        return machine.state if machine else SessionState.IDLE

    def keys(self) -> List[str]:
        return list(self._machines)

    def __iter__(self) -> Iterator[SessionStateMachine]:
        return iter(list(self._machines.values()))

    def __len__(self) -> int:
        return len(self._machines)

    def close(self) -> None:
        """Cancel every timer; used on shutdown."""
        for machine in self._machines.values():
            machine.close()
        self._machines.clear()
