"""Cancellable timers for the consumer's event loop.

Debounce, completion and recovery timers are all TimerHandle objects created
through a Scheduler. The asyncio implementation wraps loop.call_later; tests
substitute a manual scheduler to advance a simulated clock.
"""

import asyncio
import logging
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle:
    """A single armed timer.

    The callback runs at most once. cancel() is safe to call repeatedly and
    after the timer has fired.
    """

    def __init__(self, purpose: str, deadline: float) -> None:
        self.purpose = purpose
        self.deadline = deadline
        self._cancel_fn: Optional[Callable[[], None]] = None
        self._cancelled = False
        self._fired = False

    def bind(self, cancel_fn: Callable[[], None]) -> None:
        """Attach the scheduler-specific cancel function."""
        self._cancel_fn = cancel_fn

    @property
    def active(self) -> bool:
        """True until the timer fires or is cancelled."""
        return not (self._cancelled or self._fired)

    def cancel(self) -> None:
        if not self.active:
            return
        self._cancelled = True
        if self._cancel_fn is not None:
            self._cancel_fn()
            self._cancel_fn = None

    def fire(self, callback: Callable[[], None]) -> None:
        """Run callback unless the timer was cancelled first."""
        if not self.active:
            return
        self._fired = True
        self._cancel_fn = None
        callback()

    def __repr__(self) -> str:
        status = "active" if self.active else ("cancelled" if self._cancelled else "fired")
        return f"TimerHandle({self.purpose!r}, deadline={self.deadline:.3f}, {status})"


class Scheduler(Protocol):
    """Source of time and delayed callbacks."""

    def time(self) -> float:
        ...

    def call_later(self, delay: float, callback: Callable[[], None], purpose: str = "") -> TimerHandle:
        ...

    def call_soon_threadsafe(self, callback: Callable[..., None], *args) -> None:
        ...


class LoopScheduler:
    """Scheduler backed by an asyncio event loop.

    All callbacks run on the loop thread, so state touched by them needs no
    locking.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def attach(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> asyncio.AbstractEventLoop:
        """Bind to a loop now, from the loop thread.

        Must happen before another thread calls call_soon_threadsafe, since
        only the loop thread can look up the running loop.
        """
        if self._loop is None:
            self._loop = loop or asyncio.get_running_loop()
        return self._loop

    def time(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], None], purpose: str = "") -> TimerHandle:
        handle = TimerHandle(purpose, self.time() + delay)
        loop_handle = self.loop.call_later(delay, handle.fire, _guarded(callback, purpose))
        handle.bind(loop_handle.cancel)
        return handle

    def call_soon_threadsafe(self, callback: Callable[..., None], *args) -> None:
        """Hand work from another thread (watchdog) to the loop."""
        self.loop.call_soon_threadsafe(callback, *args)


def _guarded(callback: Callable[[], None], purpose: str) -> Callable[[], None]:
    """Keep a failing timer callback from surfacing as an unhandled loop error."""

    def run() -> None:
        try:
            callback()
        except Exception as e:
            logger.error(f"Timer {purpose or 'callback'} failed: {e}")

    return run
