"""Wiring for the consuming process.

SyncEngine owns one store, registry, reconciler, propagator and observer and
connects them:

    ChangeObserver scan → SessionRegistry → transition listener
        → BufferReconciler (begin/end tracking around PROCESSING)
        → AlertPropagator (current session only)
        → status listeners (NDJSON, editor UI)

UI code talks to the engine only through icon(), color(), status_line() and
force_reconcile().
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from .alerts import AlertPropagator
from .config import SyncConfig
from .models import ReconcileSignal, SessionState, StatusSnapshot, StatusUpdate
from .observer import CHANGE_CURRENT, ChangeObserver
from .reconciler import BufferReconciler
from .session_tracker import SessionRegistry
from .statusline import StatusDisplay
from .store import StateStore
from .timers import LoopScheduler, Scheduler
from .tmux_helper import TmuxHelper

logger = logging.getLogger(__name__)

StatusListener = Callable[[StatusUpdate], None]
ReconcileListener = Callable[[ReconcileSignal], None]


class SyncEngine:
    """Session state synchronization for one state directory."""

    def __init__(
        self,
        config: SyncConfig,
        scheduler: Optional[Scheduler] = None,
        tmux: Optional[TmuxHelper] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Resolved configuration
            scheduler: Timer source; defaults to the running asyncio loop
            tmux: tmux boundary; defaults to the real tmux CLI
        """
        self.config = config
        self.scheduler = scheduler or LoopScheduler()
        self.store = StateStore(config.state_dir)
        self.registry = SessionRegistry(
            self.scheduler,
            completion_sec=config.completion_sec,
            recovery_sec=config.recovery_sec,
        )
        self.reconciler = BufferReconciler(self._on_reconcile)
        self.propagator = AlertPropagator(tmux or TmuxHelper(), enabled=config.tmux_alerts)
        self.observer = ChangeObserver(
            self.store,
            self.registry,
            self.reconciler,
            self.scheduler,
            strategy=config.watch_strategy,
            poll_interval_sec=config.poll_interval_sec,
            debounce_sec=config.debounce_sec,
            session_key=config.session_key,
            on_change=self._on_observer_change,
        )
        self.display = StatusDisplay(self.current_state, self.snapshot, config.status_options())

        self._status_listeners: List[StatusListener] = []
        self._reconcile_listeners: List[ReconcileListener] = []
        self.registry.add_listener(self._on_transition)
        self._loaded = False

    # -- subscriptions -------------------------------------------------------

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def add_reconcile_listener(self, listener: ReconcileListener) -> None:
        """Register the consumer's "re-read buffers from disk" action."""
        self._reconcile_listeners.append(listener)

    # -- UI queries ----------------------------------------------------------

    @property
    def current_key(self) -> Optional[str]:
        return self.observer.current_key

    def current_state(self) -> SessionState:
        return self.registry.state_of(self.observer.current_key)

    def snapshot(self) -> Optional[StatusSnapshot]:
        return self.observer.snapshot()

    def icon(self) -> str:
        return self.display.icon()

    def color(self) -> str:
        return self.display.color()

    def status_line(self) -> str:
        return self.display.status_line()

    def pending_refresh(self) -> bool:
        return self.reconciler.pending_refresh()

    def sessions(self) -> Dict[str, SessionState]:
        """State of every tracked session."""
        return {machine.session_key: machine.state for machine in self.registry}

    def force_reconcile(self) -> bool:
        """Manual trigger: re-read buffers even if no refresh is pending."""
        return self.reconciler.reconcile(None, force=True)

    def status_update(self) -> StatusUpdate:
        """Snapshot of what the UI currently shows."""
        return StatusUpdate(
            session_key=self.current_key,
            state=self.current_state().value,
            icon=self.icon(),
            color=self.color(),
            text=self.status_line(),
            pending_refresh=self.pending_refresh(),
            timestamp=int(time.time()),
        )

    # -- lifecycle -----------------------------------------------------------

    def load(self, create: bool = True) -> None:
        """Cold start: read everything already on disk.

        Raises:
            StoreUnavailableError: create is set and the directory cannot be made
        """
        if create:
            self.store.ensure_directory()
        self.observer.cold_start()
        self._loaded = True

    async def start(self) -> None:
        """Cold start, then begin watching.

        Raises:
            StoreUnavailableError: the state directory cannot be created
        """
        if isinstance(self.scheduler, LoopScheduler):
            self.scheduler.attach(asyncio.get_running_loop())
        if not self._loaded:
            self.load(create=True)
        if self.config.tmux_alerts:
            self.propagator.register_focus_hooks()
        self.observer.start()
        self._publish()
        logger.info(f"Engine started for {self.store.directory}")

    async def stop(self) -> None:
        self.observer.stop()
        self.registry.close()
        logger.info("Engine stopped")

    # -- internal wiring -----------------------------------------------------

    def _on_transition(self, key: str, old: SessionState, new: SessionState) -> None:
        if new == SessionState.PROCESSING and old != SessionState.PROCESSING:
            self.reconciler.begin_tracking(key)
        elif old == SessionState.PROCESSING and new != SessionState.PROCESSING:
            self.reconciler.end_tracking(key)

        if key == self.current_key:
            self.propagator.on_state_change(new)
            self._publish()

    def _on_observer_change(self, reason: str) -> None:
        if reason == CHANGE_CURRENT:
            self.propagator.on_state_change(self.current_state())
        self._publish()

    def _on_reconcile(self, key: Optional[str], forced: bool) -> None:
        signal = ReconcileSignal(session_key=key, forced=forced, timestamp=int(time.time()))
        for listener in list(self._reconcile_listeners):
            try:
                listener(signal)
            except Exception as e:
                logger.error(f"Reconcile listener failed: {e}")

    def _publish(self) -> None:
        if not self._status_listeners:
            return
        update = self.status_update()
        for listener in list(self._status_listeners):
            try:
                listener(update)
            except Exception as e:
                logger.error(f"Status listener failed: {e}")
