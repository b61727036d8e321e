"""Runtime settings for ProcAgent, read from the environment."""

from __future__ import annotations

import logging
import math
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_PREFIX = "PROCAGENT_"

DEFAULT_TIMEOUT = 30.0  # seconds
MAX_TIMEOUT = 7 * 24 * 3600.0  # seconds; longer waits are clamped
DEFAULT_OUTPUT_CAPACITY = 50_000  # characters per stream
DEFAULT_KILL_GRACE_PERIOD = 2.0  # seconds
DEFAULT_MAX_RETAINED_SESSIONS = 100
DEFAULT_BROKER_URL = "http://127.0.0.1:8000"
DEFAULT_LOG_LEVEL = "INFO"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def default_shell() -> str:
    """Pick the shell used to run commands on this platform."""
    if sys.platform == "win32":
        return "cmd.exe"
    return shutil.which("bash") or "/bin/sh"


def _env(name: str) -> str | None:
    value = os.environ.get(f"{ENV_PREFIX}{name}")
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {ENV_PREFIX}{name}={raw!r}, using {default}")
        return default
    if not math.isfinite(value) or value < minimum:
        logger.warning(f"Ignoring out-of-range {ENV_PREFIX}{name}={raw!r}, using {default}")
        return default
    return value


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {ENV_PREFIX}{name}={raw!r}, using {default}")
        return default
    if value < minimum:
        logger.warning(f"Ignoring out-of-range {ENV_PREFIX}{name}={raw!r}, using {default}")
        return default
    return value


@dataclass(frozen=True)
class Settings:
    """Process-control settings."""

    working_dir: Path
    shell: str
    default_timeout: float = DEFAULT_TIMEOUT
    output_capacity: int = DEFAULT_OUTPUT_CAPACITY
    kill_grace_period: float = DEFAULT_KILL_GRACE_PERIOD
    max_retained_sessions: int = DEFAULT_MAX_RETAINED_SESSIONS
    broker_url: str = DEFAULT_BROKER_URL
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from PROCAGENT_* environment variables.

        The working directory also honours the plain ``WORKING_DIR`` variable
        so existing agent host configurations keep working.
        """
        working_dir = _env("WORKING_DIR") or os.environ.get("WORKING_DIR") or os.getcwd()

        return cls(
            working_dir=Path(working_dir).expanduser().resolve(),
            shell=_env("SHELL") or default_shell(),
            default_timeout=_env_float("DEFAULT_TIMEOUT", DEFAULT_TIMEOUT, minimum=0.001),
            output_capacity=_env_int("OUTPUT_CAPACITY", DEFAULT_OUTPUT_CAPACITY),
            kill_grace_period=_env_float("KILL_GRACE_PERIOD", DEFAULT_KILL_GRACE_PERIOD),
            max_retained_sessions=_env_int("MAX_RETAINED_SESSIONS", DEFAULT_MAX_RETAINED_SESSIONS),
            broker_url=(_env("BROKER_URL") or DEFAULT_BROKER_URL).rstrip("/"),
            log_level=(_env("LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
        )


# Global settings instance
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get or load the global settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_env()
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings_instance
    _settings_instance = None


def configure_logging(level: str | None = None) -> None:
    """Configure root logging the same way for every entry point."""
    logging.basicConfig(
        level=(level or get_settings().log_level),
        format=LOG_FORMAT,
    )
