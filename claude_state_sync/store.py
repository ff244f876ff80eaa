"""On-disk state store shared by the hook and the consumer.

Layout inside the state directory (normally <project>/.claude):

    state-<key>.json    current StateRecord for one session
    refresh-<key>       refresh signal; only its mtime matters
    status-<key>.json   last statusLine payload from Claude Code

Without a session id the files are state.json, refresh and status.json.
Writers replace whole files atomically, so readers never see partial JSON
and concurrent hooks resolve as last write wins.
"""

import json
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Dict, Iterator, NamedTuple, Optional

from pydantic import ValidationError

from .errors import CorruptRecordError, StoreUnavailableError, StoreWriteError
from .models import SessionState, StateRecord, StatusSnapshot

logger = logging.getLogger(__name__)

# Key used when the hook payload carries no session id
DEFAULT_SESSION_KEY = ""

STATE_PREFIX = "state"
REFRESH_PREFIX = "refresh"
STATUS_PREFIX = "status"
TEMP_PREFIX = ".tmp_state_"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_STATE_FILE = re.compile(r"^state(?:-(?P<key>[A-Za-z0-9._-]+))?\.json$")
_REFRESH_FILE = re.compile(r"^refresh(?:-(?P<key>[A-Za-z0-9._-]+))?$")
_STATUS_FILE = re.compile(r"^status(?:-(?P<key>[A-Za-z0-9._-]+))?\.json$")


class FileStamp(NamedTuple):
    """Identity of one version of a store file.

    Atomic replaces give every write a new inode, so a rewrite is detected
    even when the filesystem clock leaves the mtime unchanged. Ordering is by
    mtime first.
    """

    mtime_ns: int
    inode: int
    size: int


def session_key_for(session_id: Optional[str]) -> str:
    """Derive the filename-safe session key for a session id."""
    if not session_id:
        return DEFAULT_SESSION_KEY
    return _UNSAFE_KEY_CHARS.sub("_", session_id.strip())


def resolve_state_dir(environ: Optional[Dict[str, str]] = None) -> Path:
    """Locate the state directory from the environment.

    CLAUDE_STATE_SYNC_DIR wins; otherwise <CLAUDE_PROJECT_DIR or cwd>/.claude.
    """
    env = os.environ if environ is None else environ
    override = env.get("CLAUDE_STATE_SYNC_DIR")
    if override:
        return Path(override).expanduser()
    project_dir = env.get("CLAUDE_PROJECT_DIR") or os.getcwd()
    return Path(project_dir) / ".claude"


def classify_filename(name: str) -> Optional[tuple[str, str]]:
    """Return (kind, session_key) for a store filename, None if unrelated.

    kind is one of "state", "refresh" or "status".
    """
    for kind, pattern in (
        (STATE_PREFIX, _STATE_FILE),
        (REFRESH_PREFIX, _REFRESH_FILE),
        (STATUS_PREFIX, _STATUS_FILE),
    ):
        match = pattern.match(name)
        if match:
            return kind, match.group("key") or DEFAULT_SESSION_KEY
    return None


def parse_record(text: str) -> StateRecord:
    """Parse state file content.

    Raises:
        CorruptRecordError: content is not a JSON object holding a valid state
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CorruptRecordError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise CorruptRecordError("State record must be a JSON object")
    try:
        return StateRecord.model_validate(data)
    except ValidationError as e:
        raise CorruptRecordError(f"Invalid state record: {e.error_count()} error(s)") from e


class StateStore:
    """Filesystem-backed store for one state directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    # -- paths ---------------------------------------------------------------

    def _path(self, prefix: str, key: str, suffix: str = "") -> Path:
        name = f"{prefix}-{key}{suffix}" if key else f"{prefix}{suffix}"
        return self.directory / name

    def state_path(self, key: str) -> Path:
        return self._path(STATE_PREFIX, key, ".json")

    def refresh_path(self, key: str) -> Path:
        return self._path(REFRESH_PREFIX, key)

    def status_path(self, key: str) -> Path:
        return self._path(STATUS_PREFIX, key, ".json")

    def ensure_directory(self) -> Path:
        """Create the state directory if needed.

        Raises:
            StoreUnavailableError: directory cannot be created
        """
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(self.directory, str(e)) from e
        return self.directory

    # -- writes (hook side) --------------------------------------------------

    def _atomic_write(self, target: Path, content: str) -> None:
        """Replace target with content via temp file + rename."""
        try:
            self.ensure_directory()
        except StoreUnavailableError as e:
            raise StoreWriteError(target, e.details["reason"]) from e

        try:
            fd, temp_path = tempfile.mkstemp(dir=str(target.parent), prefix=TEMP_PREFIX)
        except OSError as e:
            raise StoreWriteError(target, str(e)) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(temp_path, target)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise StoreWriteError(target, str(e)) from e

    def write_state(self, state: SessionState, session_id: Optional[str] = None) -> Path:
        """Overwrite the session's state record.

        Raises:
            StoreWriteError: directory or file could not be written
        """
        key = session_key_for(session_id)
        record = StateRecord.now(state, session_id)
        target = self.state_path(key)
        self._atomic_write(target, json.dumps(record.model_dump(mode="json")) + "\n")
        logger.debug(f"Wrote {record.state.value} to {target}")
        return target

    def write_refresh(self, session_id: Optional[str] = None) -> Path:
        """Touch the session's refresh signal.

        Raises:
            StoreWriteError: directory or file could not be written
        """
        target = self.refresh_path(session_key_for(session_id))
        self._atomic_write(target, f"{int(time.time())}\n")
        logger.debug(f"Wrote refresh signal {target}")
        return target

    def write_status(self, payload: dict, session_id: Optional[str] = None) -> Path:
        """Store the raw statusLine payload.

        Raises:
            StoreWriteError: directory or file could not be written
        """
        target = self.status_path(session_key_for(session_id))
        self._atomic_write(target, json.dumps(payload, separators=(",", ":")) + "\n")
        return target

    def delete_session(self, session_id: Optional[str] = None) -> int:
        """Remove all files of a session. Missing files are not an error.

        Returns:
            Number of files removed
        """
        key = session_key_for(session_id)
        removed = 0
        for path in (self.state_path(key), self.refresh_path(key), self.status_path(key)):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to remove {path}: {e}")
        logger.debug(f"Removed {removed} file(s) for session key {key!r}")
        return removed

    # -- reads (consumer side) -----------------------------------------------

    def iter_files(self, kind: str) -> Iterator[tuple[str, Path]]:
        """Yield (session_key, path) for every file of one kind."""
        try:
            entries = list(os.scandir(self.directory))
        except (FileNotFoundError, NotADirectoryError):
            return
        for entry in entries:
            classified = classify_filename(entry.name)
            if classified and classified[0] == kind:
                yield classified[1], Path(entry.path)

    def state_stamps(self) -> Dict[str, FileStamp]:
        """Map session key to the stamp of its state file for all sessions on disk."""
        stamps: Dict[str, FileStamp] = {}
        for key, path in self.iter_files(STATE_PREFIX):
            stamp = _stamp(path)
            if stamp is not None:
                stamps[key] = stamp
        return stamps

    def read_record(self, key: str) -> Optional[StateRecord]:
        """Read one session's record.

        Returns:
            StateRecord, or None if the file is missing, unreadable or corrupt
        """
        path = self.state_path(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Failed to read state file {path}: {e}")
            return None
        try:
            return parse_record(text)
        except CorruptRecordError as e:
            logger.warning(f"Ignoring corrupt state file {path}: {e.message}")
            return None

    def read_all(self) -> Dict[str, StateRecord]:
        """Read every valid state record in the directory."""
        records: Dict[str, StateRecord] = {}
        for key, _path in self.iter_files(STATE_PREFIX):
            record = self.read_record(key)
            if record is not None:
                records[key] = record
        return records

    def refresh_mtime(self, key: str) -> Optional[int]:
        """mtime (ns) of the session's refresh signal, None if absent."""
        return _mtime_ns(self.refresh_path(key))

    def status_stamp(self, key: str) -> Optional[FileStamp]:
        return _stamp(self.status_path(key))

    def read_status(self, key: str) -> Optional[StatusSnapshot]:
        """Read the stored statusLine payload, None if missing or invalid."""
        path = self.status_path(key)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return StatusSnapshot.model_validate(data)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.debug(f"Ignoring status file {path}: {e}")
            return None


def _mtime_ns(path: Path) -> Optional[int]:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return None


def _stamp(path: Path) -> Optional[FileStamp]:
    try:
        st = path.stat()
    except OSError:
        return None
    return FileStamp(st.st_mtime_ns, st.st_ino, st.st_size)
