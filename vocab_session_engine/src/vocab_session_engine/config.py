"""
Engine Configuration

Settings are read from the environment (and a .env file when present).
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from vocab_session_engine.phase_controller import DEFAULT_SETTLE_DELAY_SECONDS
from vocab_session_engine.remote_gateway import DEFAULT_MASTERY_STREAK
from vocab_session_engine.session_manager import DEFAULT_PARKED_RETENTION_DAYS
from vocab_session_engine.snapshot_store import DEFAULT_STORAGE_PREFIX

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"⚠️ [Config] {name}={value!r} is not a number, using {default}")
        return default


def _positive_float_env(name: str, default: float) -> float:
    value = _float_env(name, default)
    if value <= 0:
        logger.warning(f"⚠️ [Config] {name}={value!r} must be positive, using {default}")
        return default
    return value


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"⚠️ [Config] {name}={value!r} is not an integer, using {default}")
        return default


@dataclass
class EngineSettings:
    """Runtime settings for sessions, storage and the remote store."""
    settle_delay_seconds: float = DEFAULT_SETTLE_DELAY_SECONDS
    tick_seconds: float = 1.0
    snapshot_dir: Optional[str] = None  # None = in-memory snapshots
    storage_prefix: str = DEFAULT_STORAGE_PREFIX
    mastery_streak: int = DEFAULT_MASTERY_STREAK
    parked_retention_days: int = DEFAULT_PARKED_RETENTION_DAYS
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    log_level: str = "INFO"
    log_colors: bool = True

    def __post_init__(self):
        if self.tick_seconds <= 0:
            raise ValueError(f"tick_seconds must be positive, got {self.tick_seconds}")

    @property
    def remote_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level.upper(), logging.INFO)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "EngineSettings":
        """
        Build settings from environment variables.

        Args:
            dotenv_path: Explicit .env file; the default search is used if None

        Returns:
            EngineSettings
        """
        load_dotenv(dotenv_path)
        return cls(
            settle_delay_seconds=_float_env("SESSION_SETTLE_DELAY_SECONDS", DEFAULT_SETTLE_DELAY_SECONDS),
            tick_seconds=_positive_float_env("SESSION_TICK_SECONDS", 1.0),
            snapshot_dir=os.getenv("SESSION_SNAPSHOT_DIR") or None,
            storage_prefix=os.getenv("SESSION_STORAGE_PREFIX") or DEFAULT_STORAGE_PREFIX,
            mastery_streak=_int_env("MASTERY_STREAK", DEFAULT_MASTERY_STREAK),
            parked_retention_days=_int_env("PARKED_RETENTION_DAYS", DEFAULT_PARKED_RETENTION_DAYS),
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_key=os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_SERVICE_KEY") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_colors=os.getenv("LOG_COLORS", "true").strip().lower() in TRUTHY,
        )
