"""
Claude Code settings installer.

Merges the hook and statusLine entries into ~/.claude/settings.json so every
lifecycle event runs `claude-state-sync hook`. Existing settings and
unrelated hooks are kept; running it twice changes nothing.
"""

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigError
from .models import HookEventNames

logger = logging.getLogger(__name__)

HOOK_COMMAND = "claude-state-sync hook"
BRIDGE_COMMAND = "claude-state-sync bridge"

# Events whose hook entries take a tool matcher
MATCHER_EVENTS = frozenset({
    HookEventNames.PRE_TOOL_USE,
    HookEventNames.PERMISSION_REQUEST,
    HookEventNames.POST_TOOL_USE,
})


def default_settings_path() -> Path:
    return Path.home() / ".claude" / "settings.json"


@dataclass
class InstallResult:
    """Outcome of an install run"""

    settings_path: Path
    added_events: List[str] = field(default_factory=list)
    status_line_set: bool = False
    backup_path: Optional[Path] = None
    written: bool = False
    document: Dict[str, Any] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.added_events) or self.status_line_set


def _has_command(entries: List[Any], command: str) -> bool:
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        for hook in entry.get("hooks", []):
            if isinstance(hook, dict) and hook.get("command") == command:
                return True
    return False


def merge_settings(
    settings: Dict[str, Any],
    hook_command: str = HOOK_COMMAND,
    bridge_command: Optional[str] = BRIDGE_COMMAND,
    force_status_line: bool = False,
) -> tuple[Dict[str, Any], List[str], bool]:
    """Merge hook and statusLine entries into a settings document.

    Returns:
        (merged document, events that gained the hook, whether statusLine was set)

    Raises:
        ConfigError: the existing document has a non-object "hooks" section
    """
    merged = json.loads(json.dumps(settings))
    hooks = merged.setdefault("hooks", {})
    if not isinstance(hooks, dict):
        raise ConfigError('settings.json "hooks" must be an object')

    added = []
    for event in HookEventNames.ALL:
        entries = hooks.setdefault(event, [])
        if not isinstance(entries, list):
            raise ConfigError(f'settings.json hooks "{event}" must be a list')
        if _has_command(entries, hook_command):
            continue
        entry: Dict[str, Any] = {"hooks": [{"type": "command", "command": hook_command}]}
        if event in MATCHER_EVENTS:
            entry = {"matcher": "", **entry}
        entries.append(entry)
        added.append(event)

    status_line_set = False
    if bridge_command:
        existing = merged.get("statusLine")
        if existing is None or force_status_line:
            if not (isinstance(existing, dict) and existing.get("command") == bridge_command):
                merged["statusLine"] = {"type": "command", "command": bridge_command, "padding": 0}
                status_line_set = True
        elif isinstance(existing, dict) and existing.get("command") != bridge_command:
            logger.warning(
                f"Keeping existing statusLine command {existing.get('command')!r} "
                "(use --force to replace it)"
            )

    return merged, added, status_line_set


class SettingsInstaller:
    """Reads, merges and writes Claude Code's settings.json"""

    def __init__(self, settings_path: Optional[Path] = None):
        self.settings_path = settings_path or default_settings_path()

    def load(self) -> Dict[str, Any]:
        """Current settings, {} if the file does not exist

        Raises:
            ConfigError: the file is not a JSON object
        """
        if not self.settings_path.exists():
            return {}
        try:
            with open(self.settings_path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{self.settings_path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{self.settings_path} must hold a JSON object")
        return data

    def create_backup(self) -> Optional[Path]:
        """Copy settings.json next to itself; None if there is nothing to back up"""
        if not self.settings_path.exists():
            return None
        backup_path = self.settings_path.with_suffix(".json.backup")
        shutil.copy2(self.settings_path, backup_path)
        return backup_path

    def install(
        self,
        dry_run: bool = False,
        force: bool = False,
        with_status_line: bool = True,
    ) -> InstallResult:
        """Merge our entries into settings.json

        Args:
            dry_run: Compute the merged document without writing anything
            force: Replace an existing statusLine command
            with_status_line: Also install the statusLine bridge

        Raises:
            ConfigError: existing settings cannot be merged
        """
        current = self.load()
        merged, added, status_line_set = merge_settings(
            current,
            bridge_command=BRIDGE_COMMAND if with_status_line else None,
            force_status_line=force,
        )
        result = InstallResult(
            settings_path=self.settings_path,
            added_events=added,
            status_line_set=status_line_set,
            document=merged,
        )

        if dry_run or not result.changed:
            if not result.changed:
                logger.info(f"{self.settings_path} already up to date")
            return result

        result.backup_path = self.create_backup()
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.settings_path, "w") as f:
            json.dump(merged, f, indent=2)
            f.write("\n")
        result.written = True
        logger.info(f"Added hook for {len(added)} event(s) to {self.settings_path}")
        return result
