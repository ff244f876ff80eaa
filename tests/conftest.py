"""Pytest configuration for claude-state-sync tests.

Shared fixtures: a state directory under tmp_path, a manual scheduler that
acts as a simulated clock, and a fake tmux server.
"""

import heapq
import itertools
import json
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from claude_state_sync.config import SyncConfig
from claude_state_sync.models import SessionState
from claude_state_sync.store import StateStore, session_key_for
from claude_state_sync.timers import TimerHandle
from claude_state_sync.tmux_helper import TmuxHelper


class ManualScheduler:
    """Scheduler whose clock only moves when a test calls advance()."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self._queue: list = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[[], None], purpose: str = "") -> TimerHandle:
        handle = TimerHandle(purpose, self.now + delay)
        heapq.heappush(self._queue, (self.now + delay, next(self._seq), handle, callback))
        return handle

    def call_soon_threadsafe(self, callback: Callable[..., None], *args) -> None:
        callback(*args)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in deadline order."""
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            deadline, _seq, handle, callback = heapq.heappop(self._queue)
            self.now = deadline
            handle.fire(callback)
        self.now = target

    def active(self, purpose_prefix: str = "") -> List[TimerHandle]:
        return [
            entry[2]
            for entry in self._queue
            if entry[2].active and entry[2].purpose.startswith(purpose_prefix)
        ]


class FakeTmux:
    """In-memory tmux server answering the commands TmuxHelper issues."""

    def __init__(self, window_id: str = "@1") -> None:
        self.window_id = window_id
        self.global_options: Dict[str, str] = {
            "window-status-format": "#I:#W#F",
            "window-status-current-format": "#[fg=#89b4fa]#I:#W#F",
        }
        self.session_options: Dict[str, str] = {}
        self.window_options: Dict[str, Dict[str, str]] = {}
        self.hooks: List[str] = []
        self.calls: List[List[str]] = []
        self.down = False

    def options(self, window_id: Optional[str] = None) -> Dict[str, str]:
        return self.window_options.setdefault(window_id or self.window_id, {})

    def __call__(self, args) -> tuple:
        args = list(args)
        self.calls.append(args)
        if self.down:
            return -1, ""

        command, rest = args[0], args[1:]
        target = None
        if rest[:1] == ["-t"]:
            target, rest = rest[1], rest[2:]

        if command == "display-message":
            return 0, f"{self.window_id}\n"

        if command == "show-window-options":
            option = rest[-1]
            return 0, self.options(target).get(option, "") + "\n"

        if command == "show-options":
            flags, option = rest[0], rest[1]
            source = self.global_options if "g" in flags else self.session_options
            return 0, source.get(option, "") + "\n"

        if command == "set-window-option":
            if rest[0] == "-u":
                self.options(target).pop(rest[1], None)
            else:
                self.options(target)[rest[0]] = rest[1]
            return 0, ""

        if command == "show-hooks":
            return 0, "".join(f"{line}\n" for line in self.hooks)

        if command == "set-hook":
            hook, cmd = rest[1], rest[2]
            index = sum(1 for line in self.hooks if line.startswith(hook))
            self.hooks.append(f"{hook}[{index}] {cmd}")
            return 0, ""

        return 1, ""


TMUX_ENV = {"TMUX": "/tmp/tmux-1000/default,4242,0", "TMUX_PANE": "%3"}


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def state_dir(tmp_path):
    path = tmp_path / "project" / ".claude"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def store(state_dir):
    return StateStore(state_dir)


@pytest.fixture
def fake_tmux():
    return FakeTmux()


@pytest.fixture
def tmux(fake_tmux):
    return TmuxHelper(runner=fake_tmux, environ=TMUX_ENV)


@pytest.fixture
def config(state_dir):
    return SyncConfig.load(environ={"CLAUDE_STATE_SYNC_DIR": str(state_dir)})


@pytest.fixture
def write_record(state_dir):
    """Write a state file directly, with an explicit mtime to fix ordering."""
    counter = itertools.count(1)

    def write(state, session_id: Optional[str] = None, mtime_ns: Optional[int] = None) -> Path:
        key = session_key_for(session_id)
        path = state_dir / (f"state-{key}.json" if key else "state.json")
        value = state.value if isinstance(state, SessionState) else state
        path.write_text(json.dumps({"state": value, "session_id": session_id or "", "timestamp": 0}))
        if mtime_ns is None:
            mtime_ns = 1_700_000_000_000_000_000 + next(counter) * 1_000_000_000
        os.utime(path, ns=(mtime_ns, mtime_ns))
        return path

    return write


@pytest.fixture
def touch_refresh(state_dir):
    counter = itertools.count(1)

    def touch(session_id: Optional[str] = None, mtime_ns: Optional[int] = None) -> Path:
        key = session_key_for(session_id)
        path = state_dir / (f"refresh-{key}" if key else "refresh")
        path.write_text("0\n")
        if mtime_ns is None:
            mtime_ns = 1_700_000_100_000_000_000 + next(counter) * 1_000_000_000
        os.utime(path, ns=(mtime_ns, mtime_ns))
        return path

    return touch
