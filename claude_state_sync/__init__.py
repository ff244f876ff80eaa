"""Claude Code session state synchronization.

Hooks invoked by Claude Code write per-session state files into the project's
.claude directory; a long-running consumer watches that directory, runs a
per-session state machine, and drives a status line and tmux window alerts.
"""

__version__ = "0.3.0"
