"""Unit tests for the buffer reconciler."""

from claude_state_sync.reconciler import BufferReconciler


class Calls:
    def __init__(self):
        self.calls = []

    def __call__(self, key, forced):
        self.calls.append((key, forced))


class TestBufferReconciler:
    """Test refresh signal tracking and reconciliation."""

    def test_missing_signal_is_nothing(self):
        calls = Calls()
        reconciler = BufferReconciler(calls)

        assert reconciler.observe_signal("s1", None) is False
        assert not reconciler.pending_refresh()
        assert calls.calls == []

    def test_signal_outside_processing_reconciles_immediately(self):
        calls = Calls()
        reconciler = BufferReconciler(calls)

        assert reconciler.observe_signal("s1", 100) is True
        assert calls.calls == [("s1", False)]
        assert not reconciler.pending_refresh("s1")

    def test_signal_while_processing_is_deferred(self):
        calls = Calls()
        reconciler = BufferReconciler(calls)
        reconciler.begin_tracking("s1")

        reconciler.observe_signal("s1", 100)
        reconciler.observe_signal("s1", 200)

        assert reconciler.pending_refresh("s1")
        assert calls.calls == []

        reconciler.end_tracking("s1")
        assert calls.calls == [("s1", False)]
        assert not reconciler.pending_refresh("s1")

    def test_end_tracking_without_signal_is_noop(self):
        calls = Calls()
        reconciler = BufferReconciler(calls)
        reconciler.begin_tracking("s1")
        reconciler.end_tracking("s1")

        assert calls.calls == []

    def test_same_mtime_is_not_new(self):
        calls = Calls()
        reconciler = BufferReconciler(calls)
        reconciler.observe_signal("s1", 100)

        assert reconciler.observe_signal("s1", 100) is False
        assert reconciler.observe_signal("s1", 50) is False
        assert len(calls.calls) == 1

    def test_primed_mtime_is_not_new(self):
        calls = Calls()
        reconciler = BufferReconciler(calls)
        reconciler.prime("s1", 100)

        assert reconciler.observe_signal("s1", 100) is False
        assert reconciler.observe_signal("s1", 101) is True

    def test_reconcile_without_pending_is_noop(self):
        calls = Calls()
        assert BufferReconciler(calls).reconcile() is False
        assert calls.calls == []

    def test_forced_reconcile_always_runs(self):
        calls = Calls()
        reconciler = BufferReconciler(calls)

        assert reconciler.reconcile(force=True) is True
        assert calls.calls == [(None, True)]

    def test_reconcile_all_clears_every_session(self):
        calls = Calls()
        reconciler = BufferReconciler(calls)
        for key in ("a", "b"):
            reconciler.begin_tracking(key)
            reconciler.observe_signal(key, 10)

        assert reconciler.reconcile() is True
        assert not reconciler.pending_refresh()
        assert calls.calls == [(None, False)]

    def test_sessions_tracked_separately(self):
        calls = Calls()
        reconciler = BufferReconciler(calls)
        reconciler.begin_tracking("a")
        reconciler.observe_signal("a", 10)
        reconciler.observe_signal("b", 10)

        assert calls.calls == [("b", False)]
        assert reconciler.pending_refresh("a")

    def test_forget_drops_state(self):
        reconciler = BufferReconciler()
        reconciler.begin_tracking("a")
        reconciler.observe_signal("a", 10)
        reconciler.forget("a")

        assert not reconciler.pending_refresh("a")
        assert not reconciler.is_tracking("a")
        # Signal history is gone too, so the same mtime counts again
        assert reconciler.observe_signal("a", 10) is True

    def test_no_callback(self):
        reconciler = BufferReconciler()
        reconciler.observe_signal("a", 10)
        assert reconciler.reconcile(force=True) is True
