"""tmux CLI helper for window alerts.

This module wraps the handful of tmux commands the alert protocol needs:
reading and writing per-window options, resolving the window that owns this
process's pane, and registering global hooks.

Every call is short and bounded by a subprocess timeout. When tmux is not
running or a command fails, helpers return None/False and log at debug level;
callers never see an exception.
"""

import logging
import os
import shutil
import subprocess
from typing import Callable, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

TMUX_TIMEOUT_SEC = 2.0

# Runner signature: argv (without the "tmux" prefix) -> (returncode, stdout)
TmuxRunner = Callable[[Sequence[str]], tuple[int, str]]


def run_tmux(args: Sequence[str]) -> tuple[int, str]:
    """Run one tmux command.

    Returns:
        (returncode, stdout); returncode is -1 if tmux could not be executed
    """
    try:
        result = subprocess.run(
            ["tmux", *args],
            capture_output=True,
            text=True,
            timeout=TMUX_TIMEOUT_SEC,
        )
        return result.returncode, result.stdout
    except FileNotFoundError:
        logger.debug("tmux binary not found")
        return -1, ""
    except subprocess.TimeoutExpired:
        logger.debug(f"tmux {' '.join(args[:2])} timed out")
        return -1, ""
    except OSError as e:
        logger.debug(f"tmux {' '.join(args[:2])} failed: {e}")
        return -1, ""


class TmuxHelper:
    """Per-window option access for the pane this process runs in."""

    def __init__(
        self,
        runner: Optional[TmuxRunner] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._runner = runner or run_tmux
        self._environ = os.environ if environ is None else environ

    def is_tmux(self) -> bool:
        """True when running inside a tmux client."""
        return bool(self._environ.get("TMUX"))

    def available(self) -> bool:
        """True when inside tmux and (for the real runner) the binary exists."""
        if not self.is_tmux():
            return False
        if self._runner is run_tmux and shutil.which("tmux") is None:
            return False
        return True

    def _run(self, *args: str) -> Optional[str]:
        returncode, stdout = self._runner(list(args))
        if returncode != 0:
            logger.debug(f"tmux {' '.join(args)} exited {returncode}")
            return None
        return stdout

    def _ok(self, *args: str) -> bool:
        return self._run(*args) is not None

    def get_window_id(self) -> Optional[str]:
        """Window id (@N) of the window containing this process's pane.

        Uses $TMUX_PANE so the answer is this pane's window, not whichever
        window currently has focus.
        """
        if not self.is_tmux():
            return None
        pane_id = self._environ.get("TMUX_PANE")
        if pane_id:
            output = self._run("display-message", "-p", "-t", pane_id, "#{window_id}")
        else:
            output = self._run("display-message", "-p", "#{window_id}")
        if output is None:
            return None
        window_id = output.strip()
        return window_id or None

    def show_window_option(self, window_id: Optional[str], option: str) -> Optional[str]:
        """Value of a window option set on this window only.

        window_id None targets the current window (hook context).
        """
        if window_id:
            output = self._run("show-window-options", "-t", window_id, "-v", option)
        else:
            output = self._run("show-window-options", "-v", option)
        return _clean(output)

    def resolve_option(self, window_id: str, option: str) -> list[str]:
        """Candidate values for a window option, most specific first.

        Order: the window itself, the session's window default, the global
        window default. Empty values are skipped.
        """
        candidates = []
        for output in (
            self._run("show-window-options", "-t", window_id, "-v", option),
            self._run("show-options", "-wv", option),
            self._run("show-options", "-gwv", option),
        ):
            value = _clean(output)
            if value:
                candidates.append(value)
        return candidates

    def set_window_option(self, window_id: Optional[str], option: str, value: str) -> bool:
        # Arguments go to tmux as argv, so the value needs no shell quoting
        if window_id:
            return self._ok("set-window-option", "-t", window_id, option, value)
        return self._ok("set-window-option", option, value)

    def unset_window_option(self, window_id: Optional[str], option: str) -> bool:
        if window_id:
            return self._ok("set-window-option", "-t", window_id, "-u", option)
        return self._ok("set-window-option", "-u", option)

    def show_global_hooks(self) -> str:
        return self._run("show-hooks", "-g") or ""

    def append_global_hook(self, hook: str, command: str) -> bool:
        return self._ok("set-hook", "-ga", hook, command)


def _clean(output: Optional[str]) -> Optional[str]:
    if output is None:
        return None
    value = output.rstrip("\n").rstrip()
    return value or None
