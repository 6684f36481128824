"""Per-session usage attribution.

The recorder only ever touches a record's metrics. It never reads or writes
the destroying latch or the expiry timer, so recording can interleave with a
pending destroy; at worst metrics are recorded for a session about to vanish.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from .logger import SessionLogger
from .store import SessionStore
from .types import utc_now

# Generic interactions are frequent; only every Nth one is logged
INTERACTION_LOG_EVERY = 10


class SessionMetricsRecorder:
    """Increments session counters. Unknown session ids are ignored."""

    def __init__(
        self,
        store: SessionStore,
        session_logger: SessionLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._logger = session_logger or SessionLogger()
        self._clock = clock

    def record_interaction(self, session_id: str, response_time: float | None = None) -> None:
        """Count one routed request.

        Args:
            session_id: Session the request was routed to
            response_time: Optional handling time in seconds, folded into
                the running average
        """
        record = self._store.get(session_id)
        if record is None:
            return

        metrics = record.metrics
        metrics.total_interactions += 1
        metrics.last_activity_at = self._clock()
        if response_time is not None and response_time >= 0:
            metrics.timed_interactions += 1
            metrics.average_response_time += (
                response_time - metrics.average_response_time
            ) / metrics.timed_interactions

        if metrics.total_interactions % INTERACTION_LOG_EVERY == 0:
            self._logger.log_session_metrics(session_id, metrics)

    def record_tool_call(self, session_id: str) -> None:
        """Count a tool call. A tool call is also an interaction."""
        record = self._store.get(session_id)
        if record is None:
            return

        metrics = record.metrics
        metrics.total_tool_calls += 1
        metrics.total_interactions += 1
        metrics.last_activity_at = self._clock()
        self._logger.log_session_metrics(session_id, metrics)

    def record_error(self, session_id: str) -> None:
        record = self._store.get(session_id)
        if record is None:
            return

        record.metrics.error_count += 1
        self._logger.log_session_metrics(session_id, record.metrics)
