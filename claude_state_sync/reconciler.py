"""Buffer reconciliation driven by the refresh signal.

The hook touches refresh-<key> after Write/Edit tools. The reconciler turns an
advancing mtime into a pending flag and runs the consumer's "re-read files
from disk" callback at state boundaries instead of on every write, so the
editor does not flicker while Claude is still processing.
"""

import logging
from typing import Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

ReconcileCallback = Callable[[Optional[str], bool], None]


class BufferReconciler:
    """Tracks refresh signals per session key."""

    def __init__(self, on_reconcile: Optional[ReconcileCallback] = None) -> None:
        """Initialize the reconciler.

        Args:
            on_reconcile: Called with (session_key, forced) whenever buffers
                should be re-read. None makes reconciliation a no-op.
        """
        self.on_reconcile = on_reconcile
        self._last_seen: Dict[str, int] = {}
        self._pending: Set[str] = set()
        self._tracking: Set[str] = set()

    def pending_refresh(self, key: Optional[str] = None) -> bool:
        """True if a refresh signal has not been reconciled yet.

        With key=None, any session counts.
        """
        if key is None:
            return bool(self._pending)
        return key in self._pending

    def is_tracking(self, key: str) -> bool:
        return key in self._tracking

    def prime(self, key: str, mtime_ns: Optional[int]) -> None:
        """Record the current signal mtime as already seen (cold start)."""
        if mtime_ns is not None:
            self._last_seen[key] = max(self._last_seen.get(key, 0), mtime_ns)

    def begin_tracking(self, key: str) -> None:
        """Session entered PROCESSING; defer reconciliation until it leaves."""
        self._tracking.add(key)
        logger.debug(f"Tracking refresh signals for {key or '<default>'}")

    def observe_signal(self, key: str, mtime_ns: Optional[int]) -> bool:
        """Feed the current refresh file mtime for a session.

        A missing file or an mtime not newer than the last one seen is no
        signal. A signal for a session that is not being tracked reconciles
        immediately.

        Returns:
            True if this was a new signal
        """
        if mtime_ns is None:
            return False
        last = self._last_seen.get(key)
        if last is not None and mtime_ns <= last:
            return False
        self._last_seen[key] = mtime_ns
        self._pending.add(key)
        logger.debug(f"Refresh signal for {key or '<default>'}")
        if key not in self._tracking:
            self.reconcile(key)
        return True

    def end_tracking(self, key: str) -> None:
        """Session left PROCESSING; run one reconciliation pass."""
        self._tracking.discard(key)
        self.reconcile(key)

    def reconcile(self, key: Optional[str] = None, force: bool = False) -> bool:
        """Re-read buffers if a refresh is pending.

        Args:
            key: Session to reconcile; None reconciles all pending sessions
            force: Run the callback even when nothing is pending (manual trigger)

        Returns:
            True if the callback ran
        """
        if key is None:
            due = bool(self._pending)
            self._pending.clear()
        else:
            due = key in self._pending
            self._pending.discard(key)

        if not (due or force):
            return False

        if self.on_reconcile is not None:
            self.on_reconcile(key, force)
        label = "<all>" if key is None else (key or "<default>")
        logger.debug(f"Reconciled buffers for {label} (forced={force})")
        return True

    def forget(self, key: str) -> None:
        """Drop all bookkeeping for a removed session."""
        self._last_seen.pop(key, None)
        self._pending.discard(key)
        self._tracking.discard(key)
