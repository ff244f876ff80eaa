"""Configuration for the consuming process.

Precedence: built-in defaults < environment variables < CLI flags.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError
from .observer import STRATEGIES, STRATEGY_NATIVE
from .statusline import StatusLineOptions
from .store import resolve_state_dir, session_key_for

logger = logging.getLogger(__name__)

# env var -> field
ENV_FIELDS = {
    "CLAUDE_STATE_SYNC_SESSION": "session_key",
    "CLAUDE_STATE_SYNC_STRATEGY": "watch_strategy",
    "CLAUDE_STATE_SYNC_POLL_MS": "poll_interval_ms",
    "CLAUDE_STATE_SYNC_DEBOUNCE_MS": "debounce_ms",
    "CLAUDE_STATE_SYNC_COMPLETION_MS": "completion_ms",
    "CLAUDE_STATE_SYNC_RECOVERY_MS": "recovery_ms",
    "CLAUDE_STATE_SYNC_TMUX_ALERTS": "tmux_alerts",
    "CLAUDE_STATE_SYNC_NOTIFY": "notifications",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


class SyncConfig(BaseModel):
    """Settings for watch/status and the engine."""

    state_dir: Path = Field(description="Directory holding state/refresh/status files")
    session_key: Optional[str] = Field(
        default=None, description="Pin the current session; None follows the newest"
    )
    watch_strategy: str = Field(default=STRATEGY_NATIVE, description="native or polling")
    poll_interval_ms: int = Field(default=200, gt=0)
    debounce_ms: int = Field(default=50, ge=0)
    completion_ms: int = Field(default=2000, ge=0)
    recovery_ms: int = Field(default=60000, ge=0)
    tmux_alerts: bool = Field(default=True)
    notifications: bool = Field(default=False)
    show_model: bool = Field(default=True)
    show_tokens: bool = Field(default=True)
    show_lines: bool = Field(default=True)
    show_cost: bool = Field(default=False)

    @field_validator("session_key")
    @classmethod
    def _safe_session_key(cls, value: Optional[str]) -> Optional[str]:
        # Must match the key the ingestor derives for state-<key>.json
        if value is None or not value.strip():
            return None
        return session_key_for(value)

    @field_validator("watch_strategy")
    @classmethod
    def _known_strategy(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in STRATEGIES:
            raise ValueError(f"must be one of {', '.join(STRATEGIES)}")
        return value

    @field_validator("tmux_alerts", "notifications", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
        return value

    @property
    def poll_interval_sec(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def debounce_sec(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def completion_sec(self) -> float:
        return self.completion_ms / 1000.0

    @property
    def recovery_sec(self) -> float:
        return self.recovery_ms / 1000.0

    def status_options(self) -> StatusLineOptions:
        return StatusLineOptions(
            show_model=self.show_model,
            show_tokens=self.show_tokens,
            show_lines=self.show_lines,
            show_cost=self.show_cost,
        )

    @classmethod
    def load(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "SyncConfig":
        """Build a config from the environment plus explicit overrides.

        Overrides whose value is None are ignored, so argparse namespaces can
        be passed straight through.

        Raises:
            ConfigError: a value fails validation
        """
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {"state_dir": resolve_state_dir(dict(env))}
        for var, field in ENV_FIELDS.items():
            if var in env:
                data[field] = env[var]
        for field, value in (overrides or {}).items():
            if value is not None:
                data[field] = value

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigError(f"Invalid configuration: {problems}") from e
        logger.debug(f"Loaded config: {config.model_dump()}")
        return config
