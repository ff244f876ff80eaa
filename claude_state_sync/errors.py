"""
Error types for claude-state-sync.

Every failure the engine can hit maps to one ErrorCode so hook exit paths and
log lines stay consistent.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """
    Error codes.

    - 1000-1099: Hook payload errors
    - 1200-1299: File system errors
    - 1400-1499: Multiplexer errors
    - 1500-1599: Configuration errors
    """

    MALFORMED_PAYLOAD = 1000
    MISSING_EVENT_NAME = 1001

    STORE_UNAVAILABLE = 1200
    STORE_WRITE_FAILED = 1201
    CORRUPT_RECORD = 1202

    TMUX_NOT_RUNNING = 1400
    TMUX_COMMAND_FAILED = 1401

    INVALID_CONFIG = 1500


class StateSyncError(Exception):
    """Base class for all claude-state-sync errors."""

    code: ErrorCode = ErrorCode.MALFORMED_PAYLOAD

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for NDJSON output."""
        return {
            "code": self.code.value,
            "name": self.code.name,
            "message": self.message,
            "details": self.details,
        }


class MalformedPayloadError(StateSyncError):
    """Hook stdin could not be parsed into an event."""

    code = ErrorCode.MALFORMED_PAYLOAD


class StoreWriteError(StateSyncError):
    """A state or refresh file could not be written."""

    code = ErrorCode.STORE_WRITE_FAILED

    def __init__(self, path: Path, reason: str):
        super().__init__(
            f"Cannot write {path}: {reason}",
            details={"path": str(path), "reason": reason},
        )
        self.path = path


class StoreUnavailableError(StateSyncError):
    """The state directory does not exist and cannot be created."""

    code = ErrorCode.STORE_UNAVAILABLE

    def __init__(self, directory: Path, reason: str):
        super().__init__(
            f"State directory {directory} is unavailable: {reason}",
            details={"directory": str(directory), "reason": reason},
        )
        self.directory = directory


class CorruptRecordError(StateSyncError):
    """A state file exists but does not hold a valid record."""

    code = ErrorCode.CORRUPT_RECORD


class ConfigError(StateSyncError):
    """Configuration values failed validation."""

    code = ErrorCode.INVALID_CONFIG
