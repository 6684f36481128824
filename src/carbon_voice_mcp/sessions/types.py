"""Session data model."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..transport.base import SessionTransport


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class SessionMetrics:
    """Usage counters and timestamps for one session."""

    session_id: str
    user_id: str
    created_at: datetime = field(default_factory=utc_now)
    expires_at: datetime = field(default_factory=utc_now)
    total_interactions: int = 0
    total_tool_calls: int = 0
    error_count: int = 0
    last_activity_at: datetime = field(default_factory=utc_now)
    average_response_time: float = 0.0
    # Number of interactions that contributed to average_response_time
    timed_interactions: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("created_at", "expires_at", "last_activity_at"):
            data[key] = data[key].isoformat()
        return data


@dataclass
class SessionRecord:
    """In-memory state of one active client session.

    The record exclusively owns its transport and expiry timer. Only the
    lifecycle manager writes ``destroying``, ``expiry_timer`` and
    ``metrics.expires_at``.
    """

    session_id: str
    transport: SessionTransport
    owner_user_id: str
    metrics: SessionMetrics
    expiry_timer: asyncio.TimerHandle | None = None
    destroying: bool = False

    @property
    def created_at(self) -> datetime:
        return self.metrics.created_at

    @property
    def expires_at(self) -> datetime:
        return self.metrics.expires_at

    def is_expired(self, now: datetime) -> bool:
        return self.metrics.expires_at < now

    def cancel_timer(self) -> None:
        if self.expiry_timer is not None:
            self.expiry_timer.cancel()
            self.expiry_timer = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "owner_user_id": self.owner_user_id,
            "destroying": self.destroying,
            "metrics": self.metrics.to_dict(),
        }
