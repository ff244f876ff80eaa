#!/usr/bin/env python3
"""CLI entry point for claude-state-sync.

Usage:
    claude-state-sync hook            (Claude Code hook, JSON on stdin)
    claude-state-sync watch [OPTIONS] (long-running consumer, NDJSON on stdout)
    claude-state-sync status [--json]
    claude-state-sync clear-alert
    claude-state-sync tmux-hooks
    claude-state-sync bridge          (Claude Code statusLine command)
    claude-state-sync install [--dry-run] [--force]
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import __version__

logger = logging.getLogger("claude-state-sync")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claude-state-sync",
        description="Synchronize Claude Code session state with editors and tmux",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Follow the newest session in this project, NDJSON on stdout
    claude-state-sync watch

    # Poll instead of inotify (network filesystems), pin one session
    claude-state-sync watch --strategy polling --session abc123

    # Output to named pipe for a status bar
    claude-state-sync watch --pipe $XDG_RUNTIME_DIR/claude-state.pipe

Environment Variables:
    CLAUDE_STATE_SYNC_DIR            State directory (default: $CLAUDE_PROJECT_DIR/.claude)
    CLAUDE_STATE_SYNC_SESSION        Pin the current session key
    CLAUDE_STATE_SYNC_STRATEGY       native or polling
    CLAUDE_STATE_SYNC_POLL_MS        Poll interval (default: 200)
    CLAUDE_STATE_SYNC_DEBOUNCE_MS    Debounce window (default: 50)
    CLAUDE_STATE_SYNC_COMPLETION_MS  done -> idle delay (default: 2000)
    CLAUDE_STATE_SYNC_RECOVERY_MS    waiting -> idle delay (default: 60000)
    CLAUDE_STATE_SYNC_TMUX_ALERTS    Enable tmux window alerts (default: 1)
    CLAUDE_STATE_SYNC_NOTIFY         Desktop notifications (default: 0)
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    sub.add_parser("hook", help="Apply one hook event read from stdin")

    watch = sub.add_parser("watch", help="Watch the state directory and stream status as NDJSON")
    _add_engine_arguments(watch)
    watch.add_argument(
        "--pipe",
        type=Path,
        default=None,
        help="Write JSON stream to named pipe (default: stdout)",
    )
    watch.add_argument(
        "--notify",
        dest="notifications",
        action="store_true",
        default=None,
        help="Desktop notification when the current session finishes or waits",
    )

    status = sub.add_parser("status", help="Print the current session status once")
    _add_engine_arguments(status)
    status.add_argument("--json", action="store_true", help="Print JSON instead of text")

    sub.add_parser("clear-alert", help="Clear the alert on the current tmux window")
    sub.add_parser("tmux-hooks", help="Register tmux focus hooks that clear alerts")
    sub.add_parser("bridge", help="Claude Code statusLine command (JSON on stdin)")

    install = sub.add_parser("install", help="Add hooks to ~/.claude/settings.json")
    install.add_argument("--settings", type=Path, default=None, help="settings.json to edit")
    install.add_argument("--dry-run", action="store_true", help="Print the merged settings only")
    install.add_argument("--force", action="store_true", help="Replace an existing statusLine")
    install.add_argument(
        "--no-status-line", action="store_true", help="Do not install the statusLine bridge"
    )

    return parser


def _add_engine_arguments(parser: argparse.ArgumentParser) -> None:
    # Defaults are None so environment values survive unless overridden
    parser.add_argument("--state-dir", type=Path, default=None, help="State directory")
    parser.add_argument("--session", dest="session_key", default=None, help="Pin the session key")
    parser.add_argument(
        "--strategy",
        dest="watch_strategy",
        choices=("native", "polling"),
        default=None,
        help="Change detection strategy (default: native)",
    )
    parser.add_argument("--poll-ms", dest="poll_interval_ms", type=int, default=None)
    parser.add_argument("--debounce-ms", type=int, default=None)
    parser.add_argument("--completion-ms", type=int, default=None)
    parser.add_argument("--recovery-ms", type=int, default=None)
    parser.add_argument(
        "--no-tmux",
        dest="tmux_alerts",
        action="store_false",
        default=None,
        help="Disable tmux window alerts",
    )
    parser.add_argument("--show-cost", action="store_true", default=None)


def setup_logging(verbose: bool, default_level: int = logging.INFO) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else default_level
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,  # stdout carries hook/bridge/NDJSON output
    )


def _config_overrides(args: argparse.Namespace) -> dict:
    fields = (
        "state_dir",
        "session_key",
        "watch_strategy",
        "poll_interval_ms",
        "debounce_ms",
        "completion_ms",
        "recovery_ms",
        "tmux_alerts",
        "notifications",
        "show_cost",
    )
    return {name: getattr(args, name, None) for name in fields}


# -- hook side ---------------------------------------------------------------


def cmd_hook(args: argparse.Namespace) -> int:
    from .ingestor import EventIngestor
    from .store import StateStore, resolve_state_dir

    return EventIngestor(StateStore(resolve_state_dir())).run(sys.stdin)


def cmd_bridge(args: argparse.Namespace) -> int:
    """Store the statusLine payload and print Claude Code's own status line."""
    from pydantic import ValidationError

    from .errors import StoreWriteError
    from .models import StatusSnapshot
    from .statusline import render_bridge_line
    from .store import StateStore, resolve_state_dir

    text = sys.stdin.read()
    try:
        payload = json.loads(text)
        if not isinstance(payload, dict):
            raise ValueError("statusLine payload must be a JSON object")
        snapshot = StatusSnapshot.model_validate(payload)
    except (ValueError, ValidationError) as e:
        logger.warning(f"Ignoring statusLine payload: {e}")
        print(render_bridge_line(StatusSnapshot()), end="")
        return 0

    try:
        StateStore(resolve_state_dir()).write_status(payload, snapshot.session_id)
    except StoreWriteError as e:
        logger.error(e.message)
    print(render_bridge_line(snapshot), end="")
    return 0


# -- tmux --------------------------------------------------------------------


def cmd_clear_alert(args: argparse.Namespace) -> int:
    from .alerts import AlertPropagator
    from .tmux_helper import TmuxHelper

    AlertPropagator(TmuxHelper()).clear_if_alerted()
    return 0


def cmd_tmux_hooks(args: argparse.Namespace) -> int:
    from .alerts import AlertPropagator
    from .tmux_helper import TmuxHelper

    propagator = AlertPropagator(TmuxHelper())
    if not propagator.tmux.available():
        logger.warning("Not running inside tmux")
        return 1
    added = propagator.register_focus_hooks()
    print(f"Registered {added} hook(s)")
    return 0


# -- consumer side -----------------------------------------------------------


async def status_async(args: argparse.Namespace) -> int:
    from .config import SyncConfig
    from .engine import SyncEngine

    config = SyncConfig.load(overrides=_config_overrides(args))
    # One-shot query; never touch tmux
    engine = SyncEngine(config.model_copy(update={"tmux_alerts": False}))
    engine.load(create=False)
    try:
        update = engine.status_update()
        if args.json:
            data = update.model_dump(mode="json")
            data["sessions"] = {key: state.value for key, state in engine.sessions().items()}
            print(json.dumps(data))
        else:
            label = update.session_key if update.session_key else "-"
            print(f"{update.icon} {update.state} ({label})")
            if update.text:
                print(update.text)
    finally:
        await engine.stop()
    return 0


async def watch_async(args: argparse.Namespace) -> int:
    """Run the engine until SIGINT/SIGTERM."""
    from .config import SyncConfig
    from .engine import SyncEngine
    from .errors import StoreUnavailableError
    from .models import SessionState
    from .notifier import send_state_notification, send_store_failure
    from .output import OutputWriter

    config = SyncConfig.load(overrides=_config_overrides(args))
    logger.info(f"Starting claude-state-sync v{__version__} in {config.state_dir}")

    engine = SyncEngine(config)
    output = OutputWriter(pipe_path=args.pipe)
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()
    tasks: set = set()

    def spawn(coro) -> None:
        task = loop.create_task(coro)
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    try:
        engine.load(create=True)
    except StoreUnavailableError as e:
        logger.error(e.message)
        await send_store_failure(e.directory, e.details.get("reason", ""))
        return 1

    last_state: Optional[str] = None

    def on_status(update) -> None:
        nonlocal last_state
        spawn(output.write_update(update))
        if config.notifications and update.state != last_state:
            state = SessionState(update.state)
            if state in (SessionState.WAITING, SessionState.DONE):
                spawn(send_state_notification(state, config.state_dir.parent))
        last_state = update.state

    engine.add_status_listener(on_status)
    engine.add_reconcile_listener(lambda sig: spawn(output.write_reconcile(sig)))

    def handle_signal(signum: int) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
    # Manual reconciliation from outside (pkill -USR1 -f claude-state-sync)
    loop.add_signal_handler(signal.SIGUSR1, engine.force_reconcile)

    try:
        await output.start()
        await engine.start()
        logger.info("Service started successfully")
        await shutdown_event.wait()
    except Exception as e:
        logger.error(f"Service error: {e}")
        return 1
    finally:
        logger.info("Shutting down...")
        await engine.stop()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await output.stop()

    return 0


# -- install -----------------------------------------------------------------


def cmd_install(args: argparse.Namespace) -> int:
    from .installer import SettingsInstaller

    installer = SettingsInstaller(args.settings)
    result = installer.install(
        dry_run=args.dry_run,
        force=args.force,
        with_status_line=not args.no_status_line,
    )
    if args.dry_run:
        print(json.dumps(result.document, indent=2))
        return 0
    if result.written:
        print(f"Updated {result.settings_path}")
        if result.backup_path:
            print(f"Backup: {result.backup_path}")
        if result.added_events:
            print(f"Hooked events: {', '.join(result.added_events)}")
    else:
        print(f"{result.settings_path} already up to date")
    return 0


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Parse arguments and dispatch; returns the exit code."""
    from .errors import ConfigError

    args = build_parser().parse_args(argv)
    # Hook and bridge output lands in Claude Code; only problems belong there
    quiet = args.command in ("hook", "bridge", "clear-alert", "status")
    setup_logging(args.verbose, logging.WARNING if quiet else logging.INFO)

    try:
        if args.command == "hook":
            return cmd_hook(args)
        if args.command == "bridge":
            return cmd_bridge(args)
        if args.command == "clear-alert":
            return cmd_clear_alert(args)
        if args.command == "tmux-hooks":
            return cmd_tmux_hooks(args)
        if args.command == "install":
            return cmd_install(args)
        if args.command == "status":
            return asyncio.run(status_async(args))
        if args.command == "watch":
            return asyncio.run(watch_async(args))
    except ConfigError as e:
        logger.error(e.message)
        return 2
    return 2


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point."""
    try:
        sys.exit(run(argv))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
