"""Structured session event logging.

Each event is logged through stdlib logging with an ``event`` name and its
fields in ``extra``, so handlers that emit JSON can pick them up. Emission
never raises into the caller.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

from .types import SessionMetrics, utc_now

logger = logging.getLogger("carbon_voice_mcp.sessions")


class SessionLogger:
    """Observability sink for session lifecycle events."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def _emit(self, level: int, message: str, event: str, **fields: Any) -> None:
        try:
            extra = {"event": event, "timestamp": utc_now().isoformat(), **fields}
            self._log.log(level, message, extra=extra)
        except Exception as e:
            sys.stderr.write(f"session logging failed for {event}: {e}\n")

    def log_session_created(self, session_id: str, user_id: str) -> None:
        self._emit(
            logging.INFO,
            f"Session created: {session_id} (user {user_id})",
            "SESSION_CREATED",
            session_id=session_id,
            user_id=user_id,
        )

    def log_session_destroyed(
        self, session_id: str, duration: float, metrics: SessionMetrics
    ) -> None:
        self._emit(
            logging.INFO,
            f"Session destroyed: {session_id} after {duration:.1f}s "
            f"({metrics.total_interactions} interactions, "
            f"{metrics.total_tool_calls} tool calls, {metrics.error_count} errors)",
            "SESSION_DESTROYED",
            session_id=session_id,
            duration=duration,
            metrics=metrics.to_dict(),
        )

    def log_session_timeout(self, session_id: str | None = None) -> None:
        self._emit(
            logging.INFO,
            f"Session timeout triggered: {session_id or 'N/A'}",
            "SESSION_TIMEOUT",
            session_id=session_id,
        )

    def log_session_reused(self, session_id: str, total_interactions: int) -> None:
        self._emit(
            logging.DEBUG,
            f"Session reused: {session_id} ({total_interactions} interactions)",
            "SESSION_REUSED",
            session_id=session_id,
            total_interactions=total_interactions,
        )

    def log_session_error(
        self,
        session_id: str | None,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> None:
        self._emit(
            logging.ERROR,
            f"Session error ({session_id or 'N/A'}): {type(error).__name__}: {error}",
            "SESSION_ERROR",
            session_id=session_id,
            error={"name": type(error).__name__, "message": str(error)},
            context=context or {},
        )

    def log_session_debug(
        self, session_id: str, message: str, context: dict[str, Any] | None = None
    ) -> None:
        self._emit(
            logging.DEBUG,
            f"Session debug ({session_id}): {message}",
            "SESSION_DEBUG",
            session_id=session_id,
            context=context or {},
        )

    def log_session_metrics(self, session_id: str, metrics: SessionMetrics) -> None:
        self._emit(
            logging.DEBUG,
            f"Session metrics: {session_id} "
            f"interactions={metrics.total_interactions} "
            f"tool_calls={metrics.total_tool_calls} errors={metrics.error_count}",
            "SESSION_METRICS",
            session_id=session_id,
            metrics=metrics.to_dict(),
        )

    def log_cleanup_started(self, total_sessions: int) -> None:
        self._emit(
            logging.INFO,
            f"Session cleanup started ({total_sessions} sessions)",
            "SESSION_CLEANUP_STARTED",
            total_sessions=total_sessions,
        )

    def log_cleanup_completed(self, cleaned_sessions: int, remaining_sessions: int) -> None:
        self._emit(
            logging.INFO,
            f"Session cleanup completed: removed {cleaned_sessions}, "
            f"{remaining_sessions} remaining",
            "SESSION_CLEANUP_COMPLETED",
            cleaned_sessions=cleaned_sessions,
            remaining_sessions=remaining_sessions,
        )
