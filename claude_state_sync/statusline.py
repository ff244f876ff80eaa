"""Status line rendering for editor UIs and the statusLine bridge.

StatusDisplay answers the three queries a UI needs (icon, colour, status
line) from the engine's current state and the last statusLine payload Claude
Code sent through the bridge.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .models import SessionState, StatusSnapshot

logger = logging.getLogger(__name__)

# Nerd Font icons
ICONS = {
    SessionState.IDLE: "󰚩",        # nf-md-robot_outline
    SessionState.PROCESSING: "󰦖",  # nf-md-progress_clock
    SessionState.WAITING: "󰋗",     # nf-md-help_circle
    SessionState.DONE: "󰄬",        # nf-md-check
}

# Catppuccin Mocha
COLORS = {
    SessionState.IDLE: "#6c7086",
    SessionState.PROCESSING: "#f9e2af",
    SessionState.WAITING: "#fab387",
    SessionState.DONE: "#a6e3a1",
}


def format_tokens(n: Optional[int]) -> str:
    """Format a token count with k/M suffix."""
    if not n:
        return "0"
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1000:
        return f"{n / 1000:.1f}k"
    return str(n)


@dataclass
class StatusLineOptions:
    """Which parts of the statusLine payload to render."""

    show_model: bool = True
    show_tokens: bool = True
    show_lines: bool = True
    show_cost: bool = False
    formatter: Optional[Callable[[StatusSnapshot], str]] = None


def render_status(
    state: SessionState,
    snapshot: Optional[StatusSnapshot],
    options: Optional[StatusLineOptions] = None,
) -> str:
    """Build "icon | Model | 12.5k | +50/-10" for a state and payload.

    Returns "" when no payload has been seen yet.
    """
    if snapshot is None:
        return ""
    options = options or StatusLineOptions()

    if options.formatter is not None:
        try:
            return options.formatter(snapshot)
        except Exception as e:
            logger.warning(f"Custom status formatter failed, using default: {e}")

    parts = [ICONS.get(state, ICONS[SessionState.IDLE])]

    if options.show_model and snapshot.model:
        parts.append(snapshot.model.display_name or "Claude")

    if options.show_tokens and snapshot.context_window:
        parts.append(format_tokens(snapshot.context_window.total_input_tokens))

    if options.show_lines and snapshot.cost:
        added = snapshot.cost.total_lines_added
        removed = snapshot.cost.total_lines_removed
        if added > 0 or removed > 0:
            parts.append(f"+{added}/-{removed}")

    if options.show_cost and snapshot.cost:
        parts.append(f"${snapshot.cost.total_cost_usd:.4f}")

    return " | ".join(parts)


def render_bridge_line(snapshot: StatusSnapshot) -> str:
    """Line Claude Code shows in its own status bar.

    Format: [Model] tokens | +add/-del | $cost
    """
    model = snapshot.model.display_name if snapshot.model else "Claude"
    tokens = snapshot.context_window.total_input_tokens if snapshot.context_window else 0
    cost = snapshot.cost.total_cost_usd if snapshot.cost else 0.0
    added = snapshot.cost.total_lines_added if snapshot.cost else 0
    removed = snapshot.cost.total_lines_removed if snapshot.cost else 0
    return f"[{model}] {format_tokens(tokens)} tokens | +{added}/-{removed} | ${cost:.4f}"


class StatusDisplay:
    """Pure queries over a state source and a snapshot source."""

    def __init__(
        self,
        state_source: Callable[[], SessionState],
        snapshot_source: Callable[[], Optional[StatusSnapshot]],
        options: Optional[StatusLineOptions] = None,
    ) -> None:
        self._state_source = state_source
        self._snapshot_source = snapshot_source
        self.options = options or StatusLineOptions()

    def state(self) -> SessionState:
        return self._state_source()

    def icon(self) -> str:
        return ICONS.get(self.state(), ICONS[SessionState.IDLE])

    def color(self) -> str:
        return COLORS.get(self.state(), COLORS[SessionState.IDLE])

    def status_line(self) -> str:
        return render_status(self.state(), self._snapshot_source(), self.options)
