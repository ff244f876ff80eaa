"""Change observer for the state directory.

Watches the state directory with watchdog and turns bursts of filesystem
events into single, debounced scans. A scan re-reads the state records whose
file stamp changed, feeds them to the SessionRegistry, drops sessions whose
files disappeared, picks the current session and forwards refresh signals to the
BufferReconciler.

Two strategies share the handler and debouncer:
    native  - watchdog Observer (inotify, FSEvents, ...)
    polling - watchdog PollingObserver, for filesystems without notification
"""

import logging
import os
from pathlib import Path
from typing import Callable, Dict, Optional

from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from .models import StatusSnapshot
from .reconciler import BufferReconciler
from .session_tracker import SessionRegistry
from .store import (
    REFRESH_PREFIX,
    STATUS_PREFIX,
    TEMP_PREFIX,
    FileStamp,
    StateStore,
    classify_filename,
)
from .timers import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

STRATEGY_NATIVE = "native"
STRATEGY_POLLING = "polling"
STRATEGIES = (STRATEGY_NATIVE, STRATEGY_POLLING)

DEFAULT_DEBOUNCE_SEC = 0.05
DEFAULT_POLL_INTERVAL_SEC = 0.2
# A continuous burst is scanned at least once per this many debounce windows
MAX_WAIT_WINDOWS = 10

# Reads performed by a scan produce opened/closed_no_write events; only
# events that can change content are relevant
RELEVANT_EVENT_TYPES = frozenset({
    EVENT_TYPE_CREATED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_CLOSED,
})

# reason passed to the change callback
CHANGE_CURRENT = "current"
CHANGE_STATUS = "status"


class Debouncer:
    """Trailing-edge debounce on top of a Scheduler.

    Every trigger() restarts the window; the callback runs once, window
    seconds after the last trigger. A burst that never pauses still runs the
    callback max_wait_sec after its first trigger.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        window_sec: float,
        callback: Callable[[], None],
        max_wait_sec: Optional[float] = None,
    ) -> None:
        self.scheduler = scheduler
        self.window_sec = window_sec
        self.max_wait_sec = window_sec * MAX_WAIT_WINDOWS if max_wait_sec is None else max_wait_sec
        self.callback = callback
        self._timer: Optional[TimerHandle] = None
        self._first_trigger: Optional[float] = None

    @property
    def pending(self) -> bool:
        return self._timer is not None and self._timer.active

    def trigger(self) -> None:
        now = self.scheduler.time()
        if not self.pending:
            self._first_trigger = now
        deadline = min(now + self.window_sec, self._first_trigger + self.max_wait_sec)
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self.scheduler.call_later(max(0.0, deadline - now), self._fire, purpose="debounce")

    def flush(self) -> bool:
        """Run a pending callback now. Returns True if one was pending."""
        if not self.pending:
            return False
        self.cancel()
        self.callback()
        return True

    def cancel(self) -> None:
        self._first_trigger = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        self._first_trigger = None
        self.callback()


def is_relevant_path(path: str) -> bool:
    """True for state, refresh and status files; temp files never count."""
    name = os.path.basename(path)
    if not name or name.startswith(TEMP_PREFIX):
        return False
    return classify_filename(name) is not None


class StateDirHandler(FileSystemEventHandler):
    """Filters watchdog events and posts relevant paths.

    Runs on the watchdog thread; post must be thread-safe.
    """

    def __init__(self, post: Callable[[str], None]) -> None:
        super().__init__()
        self.post = post

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in RELEVANT_EVENT_TYPES:
            return
        # Atomic writes arrive as a move from the temp file onto the target
        for raw in (getattr(event, "dest_path", ""), event.src_path):
            if not raw:
                continue
            path = os.fsdecode(raw)
            if is_relevant_path(path):
                self.post(path)
                return


class ChangeObserver:
    """Debounced scanner for one state directory."""

    def __init__(
        self,
        store: StateStore,
        registry: SessionRegistry,
        reconciler: BufferReconciler,
        scheduler: Scheduler,
        strategy: str = STRATEGY_NATIVE,
        poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
        debounce_sec: float = DEFAULT_DEBOUNCE_SEC,
        session_key: Optional[str] = None,
        on_change: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Initialize the observer.

        Args:
            store: State store to scan
            registry: Receives records for every session key
            reconciler: Receives refresh signal mtimes
            scheduler: Source of debounce timers and loop hand-off
            strategy: "native" or "polling"
            poll_interval_sec: Poll interval for the polling strategy
            debounce_sec: Trailing-edge debounce window
            session_key: Pin the current session; None follows the newest
            on_change: Called with CHANGE_CURRENT or CHANGE_STATUS when the
                current session or its status snapshot changes
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown watch strategy: {strategy}")
        self.store = store
        self.registry = registry
        self.reconciler = reconciler
        self.scheduler = scheduler
        self.strategy = strategy
        self.poll_interval_sec = poll_interval_sec
        self.session_key = session_key
        self.on_change = on_change
        self.current_key: Optional[str] = session_key
        self.scan_count = 0

        self._debouncer = Debouncer(scheduler, debounce_sec, self._debounced_scan)
        self._seen_state: Dict[str, FileStamp] = {}
        self._seen_status: Dict[str, FileStamp] = {}
        self._snapshots: Dict[str, StatusSnapshot] = {}
        self._observer = None
        self.running = False

    # -- queries -------------------------------------------------------------

    def snapshot(self, key: Optional[str] = None) -> Optional[StatusSnapshot]:
        """Last statusLine payload for a session (default: current)."""
        key = self.current_key if key is None else key
        if key is None:
            return None
        return self._snapshots.get(key)

    @property
    def debounce_pending(self) -> bool:
        return self._debouncer.pending

    # -- scanning ------------------------------------------------------------

    def notify(self, path: Optional[str] = None) -> None:
        """Record a raw change; the scan runs after the debounce window."""
        if path is not None:
            logger.debug(f"Change: {path}")
        self._debouncer.trigger()

    def flush(self) -> bool:
        """Run a pending debounced scan immediately."""
        return self._debouncer.flush()

    def _debounced_scan(self) -> None:
        try:
            self.scan()
        except Exception as e:
            logger.error(f"Scan of {self.store.directory} failed: {e}")

    def cold_start(self) -> None:
        """Initial synchronous scan; existing refresh signals count as seen."""
        for key, _path in self.store.iter_files(REFRESH_PREFIX):
            self.reconciler.prime(key, self.store.refresh_mtime(key))
        self.scan()
        logger.info(
            f"Cold start: {len(self.registry)} session(s), "
            f"current {self._label(self.current_key)}"
        )

    def scan(self) -> None:
        """Bring the registry in line with the directory contents."""
        self.scan_count += 1
        stamps = self.store.state_stamps()

        # Current session first, so transitions of a new session are
        # already attributed to it
        previous_key = self.current_key
        self.current_key = self._select_current(stamps)

        for key, stamp in sorted(stamps.items(), key=lambda item: item[1]):
            if self._seen_state.get(key) == stamp:
                continue
            self._seen_state[key] = stamp
            record = self.store.read_record(key)
            if record is None:
                # Corrupt or vanished mid-read: keep the previous state
                continue
            self.registry.apply(key, record, stamp.mtime_ns)

        for key in list(self._seen_state):
            if key not in stamps:
                self._drop(key)

        for key, _path in self.store.iter_files(REFRESH_PREFIX):
            self.reconciler.observe_signal(key, self.store.refresh_mtime(key))

        status_changed = self._scan_status()

        if self.current_key != previous_key:
            logger.info(
                f"Current session: {self._label(previous_key)} → {self._label(self.current_key)}"
            )
            self._emit(CHANGE_CURRENT)
        elif status_changed:
            self._emit(CHANGE_STATUS)

    def _select_current(self, stamps: Dict[str, FileStamp]) -> Optional[str]:
        if self.session_key is not None:
            return self.session_key
        if not stamps:
            return None
        # Newest mtime wins; ties resolve to the larger key for determinism
        return max(stamps.items(), key=lambda item: (item[1].mtime_ns, item[0]))[0]

    def _scan_status(self) -> bool:
        """Re-read changed status files. Returns True if the current one changed."""
        current_changed = False
        present = set()
        for key, path in self.store.iter_files(STATUS_PREFIX):
            present.add(key)
            stamp = self.store.status_stamp(key)
            if stamp is None or self._seen_status.get(key) == stamp:
                continue
            self._seen_status[key] = stamp
            snapshot = self.store.read_status(key)
            if snapshot is None:
                continue
            self._snapshots[key] = snapshot
            if key == self.current_key:
                current_changed = True
        for key in list(self._seen_status):
            if key not in present:
                self._seen_status.pop(key, None)
                if self._snapshots.pop(key, None) is not None and key == self.current_key:
                    current_changed = True
        return current_changed

    def _drop(self, key: str) -> None:
        self._seen_state.pop(key, None)
        self.registry.remove(key)
        self.reconciler.forget(key)
        logger.info(f"Session {self._label(key)} ended")

    def _emit(self, reason: str) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(reason)
        except Exception as e:
            logger.error(f"Change callback failed ({reason}): {e}")

    @staticmethod
    def _label(key: Optional[str]) -> str:
        if key is None:
            return "<none>"
        return key or "<default>"

    # -- watchdog lifecycle --------------------------------------------------

    def start(self) -> None:
        """Start watching; the state directory must exist."""
        if self.running:
            logger.warning("Change observer already running")
            return

        handler = StateDirHandler(
            lambda path: self.scheduler.call_soon_threadsafe(self.notify, path)
        )
        directory = str(Path(self.store.directory))
        try:
            self._observer = self._build_observer(self.strategy)
            self._observer.schedule(handler, path=directory, recursive=False)
            self._observer.start()
        except OSError as e:
            if self.strategy != STRATEGY_NATIVE:
                raise
            # inotify watch limits and similar; polling always works
            logger.warning(f"Native watching unavailable ({e}), falling back to polling")
            self.strategy = STRATEGY_POLLING
            self._observer = self._build_observer(self.strategy)
            self._observer.schedule(handler, path=directory, recursive=False)
            self._observer.start()

        self.running = True
        logger.info(f"Watching {directory} ({self.strategy})")

    def _build_observer(self, strategy: str):
        if strategy == STRATEGY_POLLING:
            return PollingObserver(timeout=self.poll_interval_sec)
        return Observer()

    def stop(self) -> None:
        """Stop watching and cancel any pending scan."""
        self._debouncer.cancel()
        if not self.running:
            return
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=2.0)
            self._observer = None
        self.running = False
        logger.info("Change observer stopped")
