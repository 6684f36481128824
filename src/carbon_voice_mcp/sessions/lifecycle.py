"""Session lifecycle management.

Owns every policy decision about when a session may be created, extended or
destroyed. This is the only component that writes a record's ``destroying``
latch, its expiry timer and its ``expires_at``.

Per session id the state machine is::

    ABSENT --create--> ACTIVE --extend--> ACTIVE --destroy--> DESTROYING --> ABSENT

All bookkeeping that guards against races (duplicate check, capacity check,
setting the latch, cancelling the timer) happens synchronously before the
first await, so a concurrent caller observes it immediately.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from .config import SessionConfig
from .errors import (
    CapacityExceededError,
    DuplicateSessionError,
    InvalidArgumentError,
    UserNotFoundError,
)
from .logger import SessionLogger
from .store import SessionStore
from .types import SessionMetrics, SessionRecord, utc_now

if TYPE_CHECKING:
    from ..auth import AuthInfo
    from ..transport.base import SessionTransport

logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """Creates, extends and destroys sessions held in a SessionStore.

    Args:
        store: Backing session store
        config: TTL and capacity limits
        session_logger: Observability sink for lifecycle events
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        store: SessionStore,
        config: SessionConfig | None = None,
        session_logger: SessionLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._config = config or SessionConfig()
        self._config.validate()
        self._logger = session_logger or SessionLogger()
        self._clock = clock
        # Destroy tasks started from timers and transport close hooks
        self._pending: set[asyncio.Task[bool]] = set()

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def store(self) -> SessionStore:
        return self._store

    # =========================================================================
    # Creation
    # =========================================================================

    def create(
        self,
        transport: SessionTransport,
        identity: AuthInfo | None,
        session_id: str,
        ttl: float | None = None,
    ) -> str:
        """Register a new session bound to a transport.

        Args:
            transport: Transport handle; ownership passes to the session
            identity: Authenticated identity of the creating request
            session_id: Identifier for the new session
            ttl: Lifetime in seconds (defaults to the configured TTL)

        Returns:
            The session id

        Raises:
            UserNotFoundError: If the identity carries no user id
            InvalidArgumentError: If session_id is empty or transport is None
            DuplicateSessionError: If the id is already registered
            CapacityExceededError: If max_sessions has been reached
        """
        user_id = getattr(identity, "user_id", None)
        if not user_id:
            raise UserNotFoundError()
        if not session_id:
            raise InvalidArgumentError("Session ID cannot be empty")
        if transport is None:
            raise InvalidArgumentError("Transport cannot be None")
        if self._store.has(session_id):
            raise DuplicateSessionError(session_id)
        if self._store.count() >= self._config.max_sessions:
            raise CapacityExceededError(self._config.max_sessions)

        ttl = self._config.ttl if ttl is None else ttl
        if ttl <= 0:
            raise InvalidArgumentError("Session TTL must be positive")

        now = self._clock()
        metrics = SessionMetrics(
            session_id=session_id,
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
            last_activity_at=now,
        )
        record = SessionRecord(
            session_id=session_id,
            transport=transport,
            owner_user_id=user_id,
            metrics=metrics,
        )
        record.expiry_timer = self._schedule_expiry(session_id, ttl)

        if hasattr(transport, "on_close"):
            transport.on_close = lambda: self.destroy_later(session_id)
        if hasattr(transport, "on_error"):
            transport.on_error = lambda error: self._on_transport_error(session_id, error)

        self._store.set(session_id, record)
        self._logger.log_session_created(session_id, user_id)
        return session_id

    # =========================================================================
    # Destruction
    # =========================================================================

    async def destroy(self, session_id: str) -> bool:
        """Destroy a session. Idempotent and never raises.

        Order: latch, timer cancel, transport close, store removal, event.
        A failing close is logged and the record is still removed.

        Returns:
            True if this call tore the session down, False if it was absent
            or already being destroyed
        """
        record = self._store.get(session_id)
        if record is None:
            return False

        if record.destroying:
            self._logger.log_session_debug(
                session_id, f"Session already being destroyed: {session_id}"
            )
            return False

        record.destroying = True
        record.cancel_timer()

        try:
            await record.transport.close()
        except Exception as e:
            self._logger.log_session_error(session_id, e, {"operation": "destroy_session"})
        finally:
            duration = (self._clock() - record.created_at).total_seconds()
            if self._store.get(session_id) is record:
                self._store.delete(session_id)
            self._logger.log_session_destroyed(session_id, duration, record.metrics)
        return True

    def destroy_later(self, session_id: str) -> asyncio.Task[bool] | None:
        """Schedule destroy() as a tracked task. Used from callbacks."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running loop, cannot schedule destroy of {session_id}")
            return None
        task = loop.create_task(self.destroy(session_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def shutdown_all(self) -> int:
        """Destroy every session concurrently.

        Every destroy is started before any is awaited, so a transport that
        blocks in close() does not hold back the others.

        Returns:
            Number of sessions torn down by this call. Sessions already being
            destroyed elsewhere are not counted.
        """
        session_ids = self._store.ids()
        if session_ids:
            logger.info(f"Shutting down {len(session_ids)} sessions")

        results = await asyncio.gather(
            *(self.destroy(session_id) for session_id in session_ids), return_exceptions=True
        )
        destroyed = 0
        for session_id, result in zip(session_ids, results):
            if isinstance(result, BaseException):
                self._logger.log_session_error(session_id, result, {"operation": "shutdown_all"})
            elif result:
                destroyed += 1

        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

        return destroyed

    # =========================================================================
    # Expiry
    # =========================================================================

    def extend(self, session_id: str, additional_ttl: float | None = None) -> bool:
        """Push a session's expiry to now + additional_ttl.

        The new expiry never precedes the current one. Counters and
        created_at are untouched.

        Returns:
            False if the session does not exist or is being destroyed
        """
        record = self._store.get(session_id)
        if record is None or record.destroying:
            return False

        additional_ttl = self._config.ttl if additional_ttl is None else additional_ttl
        if additional_ttl <= 0:
            raise InvalidArgumentError("Additional TTL must be positive")

        record.cancel_timer()
        now = self._clock()
        new_expires_at = now + timedelta(seconds=additional_ttl)
        if new_expires_at > record.metrics.expires_at:
            record.metrics.expires_at = new_expires_at

        delay = (record.metrics.expires_at - now).total_seconds()
        record.expiry_timer = self._schedule_expiry(session_id, delay)
        self._logger.log_session_metrics(session_id, record.metrics)
        return True

    def is_expired(self, session_id: str) -> bool:
        record = self._store.get(session_id)
        if record is None:
            return True
        return record.is_expired(self._clock())

    def _schedule_expiry(self, session_id: str, delay: float) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, self._on_expiry, session_id)

    def _on_expiry(self, session_id: str) -> None:
        self._logger.log_session_timeout(session_id)
        self.destroy_later(session_id)

    # =========================================================================
    # Lookup
    # =========================================================================

    def _on_transport_error(self, session_id: str, error: Exception) -> None:
        record = self._store.get(session_id)
        if record is not None:
            record.metrics.error_count += 1
        self._logger.log_session_error(session_id, error, {"operation": "transport"})

    def get(self, session_id: str) -> SessionRecord | None:
        return self._store.get(session_id)

    def has(self, session_id: str) -> bool:
        return self._store.has(session_id)

    def count(self) -> int:
        return self._store.count()

    def ids(self) -> list[str]:
        return self._store.ids()

    def get_metrics(self, session_id: str) -> SessionMetrics | None:
        record = self._store.get(session_id)
        return record.metrics if record else None

    def summary(self) -> dict[str, Any]:
        """Counts for health and admin endpoints."""
        return {
            "active": self._store.count(),
            "max": self._config.max_sessions,
            "ttl_seconds": self._config.ttl,
        }
