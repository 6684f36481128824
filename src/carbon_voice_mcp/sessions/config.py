"""Session layer configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_TTL_SECONDS = 60 * 60
DEFAULT_MAX_SESSIONS = 2000
DEFAULT_CLEANUP_INTERVAL_SECONDS = 5 * 60


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class SessionConfig:
    """Limits and timings for HTTP sessions.

    Attributes:
        ttl: Seconds a session lives without being extended
        max_sessions: Upper bound on concurrently stored sessions
        cleanup_interval: Seconds between expiry reaper sweeps
        enforce_owner: Reject reuse of a session by a different user
    """

    ttl: float = DEFAULT_TTL_SECONDS
    max_sessions: int = DEFAULT_MAX_SESSIONS
    cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS
    enforce_owner: bool = True

    @classmethod
    def from_env(cls) -> SessionConfig:
        """Build a config from SESSION_* environment variables."""
        return cls(
            ttl=_env_float("SESSION_TTL_SECONDS", DEFAULT_TTL_SECONDS),
            max_sessions=int(_env_float("SESSION_MAX", DEFAULT_MAX_SESSIONS)),
            cleanup_interval=_env_float(
                "SESSION_CLEANUP_INTERVAL_SECONDS", DEFAULT_CLEANUP_INTERVAL_SECONDS
            ),
            enforce_owner=_env_bool("SESSION_ENFORCE_OWNER", True),
        )

    def validate(self) -> None:
        """Raise ValueError if any limit is not positive."""
        if self.ttl <= 0:
            raise ValueError("Session TTL must be positive")
        if self.max_sessions <= 0:
            raise ValueError("Max sessions must be positive")
        if self.cleanup_interval <= 0:
            raise ValueError("Cleanup interval must be positive")
