"""Small shared helpers."""

from __future__ import annotations

import time
from collections.abc import Mapping

AUTH_HEADERS = ("authorization", "x-api-key")

_PROCESS_START = time.monotonic()


def remove_last_chars(value: str | None, count: int = 5) -> str:
    """Drop the tail of a secret so it can be logged."""
    if not value:
        return "<empty>"
    return value[:-count] + "<omitted>" if len(value) > count else "<omitted>"


def obfuscate_auth_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy of headers with credential values truncated."""
    return {
        key: remove_last_chars(str(value)) if key.lower() in AUTH_HEADERS else value
        for key, value in headers.items()
    }


def format_duration(seconds: float) -> str:
    """Human readable duration, e.g. ``1d 2h 3m 4s``."""
    seconds = int(max(seconds, 0))
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)


def process_uptime() -> str:
    return format_duration(time.monotonic() - _PROCESS_START)
