"""Session lifecycle layer for the streamable HTTP transport.

Components:
- SessionStore: id -> SessionRecord mapping
- SessionLifecycleManager: create / extend / destroy, expiry timers
- SessionMetricsRecorder: interaction, tool call and error counters
- ExpiryReaper: periodic sweep of expired sessions
- RequestRouter: REUSE / CREATE / REJECT decision per request

Use build_session_layer() to wire them together; the layer is passed to the
HTTP app explicitly rather than held in a module global.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from .config import SessionConfig
from .errors import (
    CapacityExceededError,
    DuplicateSessionError,
    InvalidArgumentError,
    SessionError,
    SessionNotFoundError,
    SessionOwnershipError,
    UserNotFoundError,
)
from .lifecycle import SessionLifecycleManager
from .logger import SessionLogger
from .metrics import SessionMetricsRecorder
from .reaper import ExpiryReaper
from .router import (
    MCP_SESSION_ID_HEADER,
    RequestRouter,
    RouteAction,
    RouteDecision,
    generate_session_id,
    is_initialize_request,
)
from .store import SessionStore
from .types import SessionMetrics, SessionRecord, utc_now


@dataclass
class SessionLayer:
    """All session components sharing one store."""

    config: SessionConfig
    store: SessionStore
    lifecycle: SessionLifecycleManager
    metrics: SessionMetricsRecorder
    reaper: ExpiryReaper
    router: RequestRouter

    async def start(self) -> None:
        self.reaper.start()

    async def shutdown(self) -> int:
        """Stop the reaper and destroy every live session."""
        await self.reaper.stop()
        return await self.lifecycle.shutdown_all()


def build_session_layer(
    config: SessionConfig | None = None,
    session_logger: SessionLogger | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> SessionLayer:
    config = config or SessionConfig()
    config.validate()
    session_logger = session_logger or SessionLogger()
    store = SessionStore()
    lifecycle = SessionLifecycleManager(store, config, session_logger, clock)
    return SessionLayer(
        config=config,
        store=store,
        lifecycle=lifecycle,
        metrics=SessionMetricsRecorder(store, session_logger, clock),
        reaper=ExpiryReaper(lifecycle, config.cleanup_interval, session_logger, clock),
        router=RequestRouter(lifecycle, session_logger),
    )


__all__ = [
    "MCP_SESSION_ID_HEADER",
    "CapacityExceededError",
    "DuplicateSessionError",
    "ExpiryReaper",
    "InvalidArgumentError",
    "RequestRouter",
    "RouteAction",
    "RouteDecision",
    "SessionConfig",
    "SessionError",
    "SessionLayer",
    "SessionLifecycleManager",
    "SessionLogger",
    "SessionMetrics",
    "SessionMetricsRecorder",
    "SessionNotFoundError",
    "SessionOwnershipError",
    "SessionRecord",
    "SessionStore",
    "UserNotFoundError",
    "build_session_layer",
    "generate_session_id",
    "is_initialize_request",
]
