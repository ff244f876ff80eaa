"""tmux window alerts driven by session state.

Protocol per window:
    alert  - capture the baseline window-status formats once, mirror them in
             @original_format/@original_current_format, set @alert 1 and a
             coloured copy of the baseline as the window's formats
    clear  - set @alert 0 and unset the window-level formats and mirrors so
             the window falls back to the global default

Clearing never re-applies the captured baseline string; the baseline may hold
#[...] style sequences that do not survive another trip through tmux.
"""

import logging
import re
from typing import Dict, Optional

from .models import SessionState
from .tmux_helper import TmuxHelper

logger = logging.getLogger(__name__)

# Catppuccin Mocha
ALERT_COLORS = {
    "high": "#f38ba8",        # red - errors
    "medium": "#fab387",      # peach - needs attention
    "low": "#a6e3a1",         # green - complete
    "processing": "#f9e2af",  # yellow - working
}
ALERT_BG = "#45475a"          # surface1

STATE_ALERT_LEVEL = {
    SessionState.DONE: "low",
    SessionState.WAITING: "medium",
    SessionState.PROCESSING: "processing",
}

DEFAULT_WINDOW_FORMAT = "#I:#W#F"

FORMAT_OPTIONS = ("window-status-format", "window-status-current-format")
BASELINE_OPTIONS = {
    "window-status-format": "@original_format",
    "window-status-current-format": "@original_current_format",
}
ALERT_FLAG = "@alert"

FOCUS_HOOKS = ("after-select-window", "session-window-changed")

# Runs inside tmux on focus change; no process spawn needed
CLEAR_ALERT_COMMAND = (
    'if-shell -F "#{@alert}" '
    '"set-window-option @alert 0 ; '
    "set-window-option -u window-status-format ; "
    "set-window-option -u window-status-current-format ; "
    "set-window-option -u @original_format ; "
    'set-window-option -u @original_current_format"'
)

_STYLE_CODE = re.compile(r"#\[[^\]]*\]")


def strip_style_codes(fmt: str) -> str:
    """Remove every #[...] style sequence from a tmux format."""
    return _STYLE_CODE.sub("", fmt)


def is_alert_format(fmt: Optional[str]) -> bool:
    """True if fmt carries any colour from the alert palette.

    Such a value was produced by a previous alert and must never be treated
    as a baseline.
    """
    if not fmt:
        return False
    lowered = fmt.lower()
    return any(color in lowered for color in ALERT_COLORS.values())


def colorize(baseline: str, color: str) -> str:
    return f"#[fg={color},bold,bg={ALERT_BG}]{strip_style_codes(baseline)}#[default]"


class AlertPropagator:
    """Applies and clears alerts on the tmux window owning this pane."""

    def __init__(self, tmux: TmuxHelper, enabled: bool = True) -> None:
        self.tmux = tmux
        self.enabled = enabled
        # window_id -> {format option -> baseline}
        self._baselines: Dict[str, Dict[str, str]] = {}

    def baseline_for(self, window_id: str) -> Optional[Dict[str, str]]:
        """Cached baseline formats for a window (copy)."""
        cached = self._baselines.get(window_id)
        return dict(cached) if cached else None

    def on_state_change(self, state: SessionState) -> None:
        """Reflect a session state on the window."""
        if not self.enabled:
            return
        if state == SessionState.IDLE:
            self.clear()
            return
        level = STATE_ALERT_LEVEL.get(state)
        if level:
            self.alert(ALERT_COLORS[level])

    def alert(self, color: Optional[str] = None) -> bool:
        """Colour this pane's window.

        Returns:
            True if the window was updated
        """
        if not self.tmux.available():
            return False
        window_id = self.tmux.get_window_id()
        if not window_id:
            return False

        baseline = self._capture_baseline(window_id)
        color = color or ALERT_COLORS["low"]

        self.tmux.set_window_option(window_id, ALERT_FLAG, "1")
        for option in FORMAT_OPTIONS:
            self.tmux.set_window_option(window_id, BASELINE_OPTIONS[option], baseline[option])
        for option in FORMAT_OPTIONS:
            self.tmux.set_window_option(window_id, option, colorize(baseline[option], color))
        logger.debug(f"Alert {color} on tmux window {window_id}")
        return True

    def clear(self, window_id: Optional[str] = None) -> bool:
        """Remove the alert from this pane's window (or the given one).

        Returns:
            True if tmux was reachable
        """
        if not self.tmux.available():
            return False
        window_id = window_id or self.tmux.get_window_id()
        if not window_id:
            return False

        self.tmux.set_window_option(window_id, ALERT_FLAG, "0")
        for option in FORMAT_OPTIONS:
            self.tmux.unset_window_option(window_id, option)
        for option in FORMAT_OPTIONS:
            self.tmux.unset_window_option(window_id, BASELINE_OPTIONS[option])
        # Next alert re-reads the formats, picking up any change made meanwhile
        self._baselines.pop(window_id, None)
        logger.debug(f"Cleared alert on tmux window {window_id}")
        return True

    def _capture_baseline(self, window_id: str) -> Dict[str, str]:
        """Baseline formats for a window, captured once.

        Lookup order per option: in-memory cache, the @original_* mirror left
        by an earlier process, then window/session/global option values.
        Anything that looks like an alert format is skipped.
        """
        cached = self._baselines.get(window_id, {})
        baseline: Dict[str, str] = {}
        for option in FORMAT_OPTIONS:
            value = cached.get(option)
            if value is None or is_alert_format(value):
                value = self._lookup_baseline(window_id, option)
            baseline[option] = value
        self._baselines[window_id] = baseline
        return baseline

    def _lookup_baseline(self, window_id: str, option: str) -> str:
        mirrored = self.tmux.show_window_option(window_id, BASELINE_OPTIONS[option])
        if mirrored and not is_alert_format(mirrored):
            return mirrored
        if mirrored:
            logger.debug(f"Discarding corrupted {BASELINE_OPTIONS[option]} on {window_id}")

        for candidate in self.tmux.resolve_option(window_id, option):
            if not is_alert_format(candidate):
                return candidate
        return DEFAULT_WINDOW_FORMAT

    def register_focus_hooks(self) -> int:
        """Install global hooks that clear the alert when a window is selected.

        Safe to call repeatedly; hooks already present are left alone.

        Returns:
            Number of hooks added
        """
        if not self.tmux.available():
            return 0
        existing = self.tmux.show_global_hooks()
        added = 0
        for hook in FOCUS_HOOKS:
            if _hook_registered(existing, hook):
                continue
            if self.tmux.append_global_hook(hook, CLEAR_ALERT_COMMAND):
                added += 1
        if added:
            logger.info(f"Registered {added} tmux focus hook(s)")
        return added

    def clear_if_alerted(self) -> bool:
        """Clear the current tmux window if it carries an alert.

        This is what the focus hooks do; exposed for the clear-alert command,
        which tmux may run via run-shell where $TMUX is not set.
        """
        if self.tmux.show_window_option(None, ALERT_FLAG) != "1":
            return False
        self.tmux.set_window_option(None, ALERT_FLAG, "0")
        for option in FORMAT_OPTIONS:
            self.tmux.unset_window_option(None, option)
        for option in FORMAT_OPTIONS:
            self.tmux.unset_window_option(None, BASELINE_OPTIONS[option])
        return True


def _hook_registered(show_hooks_output: str, hook: str) -> bool:
    for line in show_hooks_output.splitlines():
        if line.startswith(hook) and "@alert" in line:
            return True
    return False
