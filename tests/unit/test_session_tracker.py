"""Unit tests for the session state machine and registry.

Timers run on the manual scheduler, so every timeout is exact.
"""

from claude_state_sync.models import SessionState, StateRecord
from claude_state_sync.session_tracker import SessionRegistry, SessionStateMachine


def record(state):
    return StateRecord(state=state)


class Recorder:
    def __init__(self):
        self.transitions = []

    def __call__(self, key, old, new):
        self.transitions.append((key, old, new))


class TestSessionStateMachine:
    """Test transitions and timers of one session."""

    def make(self, scheduler, **kwargs):
        recorder = Recorder()
        machine = SessionStateMachine("s1", scheduler, recorder, **kwargs)
        return machine, recorder

    def test_starts_idle(self, scheduler):
        machine, _ = self.make(scheduler)
        assert machine.state == SessionState.IDLE

    def test_record_drives_transition(self, scheduler):
        machine, recorder = self.make(scheduler)

        assert machine.apply_record(record(SessionState.PROCESSING)) is True
        assert recorder.transitions == [("s1", SessionState.IDLE, SessionState.PROCESSING)]

    def test_same_state_is_not_a_transition(self, scheduler):
        machine, recorder = self.make(scheduler)
        machine.apply_record(record(SessionState.PROCESSING))

        assert machine.apply_record(record(SessionState.PROCESSING)) is False
        assert len(recorder.transitions) == 1

    def test_done_returns_to_idle_after_completion_timer(self, scheduler):
        machine, recorder = self.make(scheduler)
        machine.apply_record(record(SessionState.DONE))

        scheduler.advance(1.5)
        assert machine.state == SessionState.DONE

        scheduler.advance(0.5)
        assert machine.state == SessionState.IDLE
        assert recorder.transitions[-1] == ("s1", SessionState.DONE, SessionState.IDLE)

    def test_waiting_returns_to_idle_after_recovery_timer(self, scheduler):
        machine, _ = self.make(scheduler)
        machine.apply_record(record(SessionState.WAITING))

        scheduler.advance(59.0)
        assert machine.state == SessionState.WAITING

        scheduler.advance(1.0)
        assert machine.state == SessionState.IDLE

    def test_leaving_done_cancels_completion_timer(self, scheduler):
        machine, _ = self.make(scheduler)
        machine.apply_record(record(SessionState.DONE))
        machine.apply_record(record(SessionState.PROCESSING))

        scheduler.advance(10)
        assert machine.state == SessionState.PROCESSING
        assert scheduler.active() == []

    def test_approval_cancels_recovery_timer(self, scheduler):
        machine, _ = self.make(scheduler)
        machine.apply_record(record(SessionState.WAITING))
        scheduler.advance(30)
        machine.apply_record(record(SessionState.PROCESSING))

        scheduler.advance(60)
        assert machine.state == SessionState.PROCESSING

    def test_rearming_replaces_timer(self, scheduler):
        """Re-observing DONE restarts the window instead of adding a second timer."""
        machine, _ = self.make(scheduler)
        machine.apply_record(record(SessionState.DONE))
        scheduler.advance(1.5)
        machine.apply_record(record(SessionState.DONE))

        assert len(scheduler.active("completion")) == 1
        scheduler.advance(1.0)
        assert machine.state == SessionState.DONE
        scheduler.advance(1.0)
        assert machine.state == SessionState.IDLE

    def test_at_most_one_timer_per_purpose(self, scheduler):
        machine, _ = self.make(scheduler)
        for state in (SessionState.WAITING, SessionState.DONE, SessionState.WAITING, SessionState.WAITING):
            machine.apply_record(record(state))

        assert len(scheduler.active("recovery")) == 1
        assert scheduler.active("completion") == []

    def test_custom_durations(self, scheduler):
        machine, _ = self.make(scheduler, completion_sec=0.5)
        machine.apply_record(record(SessionState.DONE))

        scheduler.advance(0.5)
        assert machine.state == SessionState.IDLE

    def test_closed_machine_ignores_timers(self, scheduler):
        machine, recorder = self.make(scheduler)
        machine.apply_record(record(SessionState.DONE))
        machine.close()

        scheduler.advance(5)
        assert machine.state == SessionState.DONE
        assert len(recorder.transitions) == 1
        assert machine.apply_record(record(SessionState.PROCESSING)) is False

    def test_off_cycle_record_still_applied(self, scheduler):
        machine, _ = self.make(scheduler)
        machine.apply_record(record(SessionState.WAITING))
        assert machine.state == SessionState.WAITING


class TestSessionRegistry:
    """Test the registry of session machines."""

    def test_unknown_session_is_idle(self, scheduler):
        registry = SessionRegistry(scheduler)

        assert registry.state_of("ghost") == SessionState.IDLE
        assert registry.state_of(None) == SessionState.IDLE

    def test_apply_creates_machine(self, scheduler):
        registry = SessionRegistry(scheduler)
        recorder = Recorder()
        registry.add_listener(recorder)

        registry.apply("a", record(SessionState.PROCESSING))

        assert registry.keys() == ["a"]
        assert recorder.transitions == [("a", SessionState.IDLE, SessionState.PROCESSING)]

    def test_sessions_isolated(self, scheduler):
        registry = SessionRegistry(scheduler)
        registry.apply("a", record(SessionState.DONE))
        registry.apply("b", record(SessionState.WAITING))

        scheduler.advance(2)
        assert registry.state_of("a") == SessionState.IDLE
        assert registry.state_of("b") == SessionState.WAITING

    def test_remove_resets_and_cancels(self, scheduler):
        registry = SessionRegistry(scheduler)
        recorder = Recorder()
        registry.add_listener(recorder)
        registry.apply("a", record(SessionState.WAITING))

        assert registry.remove("a") is True
        assert recorder.transitions[-1] == ("a", SessionState.WAITING, SessionState.IDLE)
        assert scheduler.active() == []
        assert len(registry) == 0

        scheduler.advance(120)
        assert len(recorder.transitions) == 2

    def test_remove_unknown(self, scheduler):
        assert SessionRegistry(scheduler).remove("nope") is False

    def test_failing_listener_does_not_block_others(self, scheduler):
        registry = SessionRegistry(scheduler)
        recorder = Recorder()

        def broken(key, old, new):
            raise RuntimeError("boom")

        registry.add_listener(broken)
        registry.add_listener(recorder)
        registry.apply("a", record(SessionState.PROCESSING))

        assert len(recorder.transitions) == 1

    def test_registry_durations(self, scheduler):
        registry = SessionRegistry(scheduler, completion_sec=1.0, recovery_sec=5.0)
        registry.apply("a", record(SessionState.DONE))
        registry.apply("b", record(SessionState.WAITING))

        scheduler.advance(1.0)
        assert registry.state_of("a") == SessionState.IDLE
        scheduler.advance(4.0)
        assert registry.state_of("b") == SessionState.IDLE

    def test_close_cancels_everything(self, scheduler):
        registry = SessionRegistry(scheduler)
        registry.apply("a", record(SessionState.DONE))
        registry.close()

        assert scheduler.active() == []
        assert len(registry) == 0
