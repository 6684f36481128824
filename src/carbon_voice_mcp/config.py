"""Process configuration read from the environment.

Values come from ``os.environ``; a ``.env`` file in the working directory is
loaded first if present.
"""

from __future__ import annotations

import os
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from .sessions.config import SessionConfig
from .utils import remove_last_chars

DEFAULT_API_BASE_URL = "https://api.carbonvoice.app"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3005
DEFAULT_REQUIRED_SCOPES = ("mcp:read", "mcp:write")
# Per client address; "off" disables throttling
DEFAULT_RATE_LIMIT = "100/minute"
DEFAULT_MAX_BODY_BYTES = 1024 * 1024

LogLevel = Literal["debug", "info", "warning", "error"]


class Settings(BaseModel):
    """Runtime settings for both transports."""

    carbon_voice_base_url: str = DEFAULT_API_BASE_URL
    carbon_voice_api_key: str | None = None
    log_level: LogLevel = "info"
    log_dir: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    required_scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_REQUIRED_SCOPES))
    json_response: bool = True
    rate_limit: str = DEFAULT_RATE_LIMIT
    max_body_bytes: int = Field(default=DEFAULT_MAX_BODY_BYTES, gt=0)
    session: SessionConfig = Field(default_factory=SessionConfig)

    @field_validator("carbon_voice_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("rate_limit")
    @classmethod
    def _disable_rate_limit(cls, value: str) -> str:
        value = value.strip()
        return "" if value.lower() in ("off", "none", "0") else value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return "warning" if value == "warn" else value
        return value

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> Settings:
        """Build settings from environment variables.

        Raises:
            pydantic.ValidationError: If a value has the wrong type
            ValueError: If the session limits are invalid
        """
        if load_env_file:
            load_dotenv()

        values: dict[str, Any] = {}
        env_map = {
            "CARBON_VOICE_BASE_URL": "carbon_voice_base_url",
            "CARBON_VOICE_API_KEY": "carbon_voice_api_key",
            "LOG_LEVEL": "log_level",
            "LOG_DIR": "log_dir",
            "HOST": "host",
            "PORT": "port",
            "MCP_JSON_RESPONSE": "json_response",
            "MCP_RATE_LIMIT": "rate_limit",
            "MCP_MAX_BODY_BYTES": "max_body_bytes",
        }
        for env_var, field_name in env_map.items():
            value = os.getenv(env_var)
            if value:
                values[field_name] = value

        scopes = os.getenv("MCP_REQUIRED_SCOPES")
        if scopes is not None:
            values["required_scopes"] = scopes.split()

        session = SessionConfig.from_env()
        session.validate()
        values["session"] = session
        return cls(**values)

    def redacted(self) -> dict[str, Any]:
        """Settings as a dict with secrets obfuscated, for display."""
        data = self.model_dump()
        data["carbon_voice_api_key"] = (
            remove_last_chars(self.carbon_voice_api_key) if self.carbon_voice_api_key else None
        )
        data["session"] = {
            "ttl": self.session.ttl,
            "max_sessions": self.session.max_sessions,
            "cleanup_interval": self.session.cleanup_interval,
            "enforce_owner": self.session.enforce_owner,
        }
        return data
