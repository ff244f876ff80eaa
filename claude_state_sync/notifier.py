"""Desktop notifications via notify-send.

Used by the watch command for the one failure the user must see (the state
directory cannot be created) and, when enabled, for sessions that finished
or need input.

Note: no --action flag; it blocks waiting for user interaction.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional

from .models import SessionState

logger = logging.getLogger(__name__)

APP_NAME = "Claude State Sync"

STATE_NOTIFICATIONS = {
    SessionState.WAITING: ("Claude Code needs input", "normal"),
    SessionState.DONE: ("Claude Code finished", "normal"),
}


async def send_notification(title: str, body: str, urgency: str = "normal") -> bool:
    """Send one notification.

    Returns:
        True if notify-send ran and exited 0
    """
    notify_send = shutil.which("notify-send")
    if not notify_send:
        logger.warning("notify-send not found, skipping notification")
        return False

    cmd = [
        notify_send,
        f"--app-name={APP_NAME}",
        f"--urgency={urgency}",
        title,
        body,
    ]

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        returncode = await asyncio.wait_for(process.wait(), timeout=5.0)
        logger.debug(f"Sent notification: {title}")
        return returncode == 0
    except asyncio.TimeoutError:
        logger.warning(f"notify-send timed out for: {title}")
        return False
    except OSError as e:
        logger.error(f"Error sending notification: {e}")
        return False


async def send_state_notification(state: SessionState, project: Optional[Path] = None) -> bool:
    """Notify that the current session finished or is waiting for approval."""
    entry = STATE_NOTIFICATIONS.get(state)
    if entry is None:
        return False
    title, urgency = entry
    body = f"Session in {project.name}" if project and project.name else "Session update"
    return await send_notification(title, body, urgency)


async def send_store_failure(directory: Path, reason: str) -> bool:
    """Report that the session store cannot be created."""
    return await send_notification(
        "Claude state sync unavailable",
        f"Cannot create {directory}: {reason}",
        urgency="critical",
    )
