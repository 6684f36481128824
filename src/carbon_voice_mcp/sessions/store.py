"""In-memory session storage.

Every operation is synchronous and runs to completion without yielding to the
event loop, so each call is atomic with respect to other store calls. The
lifecycle manager relies on this for its duplicate-create and re-entrant
destroy guards.
"""

from __future__ import annotations

import logging
from datetime import datetime

from .errors import InvalidArgumentError
from .types import SessionRecord, utc_now

logger = logging.getLogger(__name__)


class SessionStore:
    """Mapping from session id to SessionRecord. Pure storage, no policy."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionRecord] = {}

    def get(self, session_id: str) -> SessionRecord | None:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def set(self, session_id: str, record: SessionRecord) -> None:
        """Store a record, overwriting any existing entry for the id.

        Raises:
            InvalidArgumentError: If session_id is empty or record is None
        """
        if not session_id:
            raise InvalidArgumentError("Session ID cannot be empty")
        if record is None:
            raise InvalidArgumentError("Session cannot be None")
        self._sessions[session_id] = record

    def delete(self, session_id: str) -> bool:
        """Remove a record. Returns True if one was present."""
        if not session_id:
            return False
        return self._sessions.pop(session_id, None) is not None

    def has(self, session_id: str) -> bool:
        if not session_id:
            return False
        return session_id in self._sessions

    def all(self) -> dict[str, SessionRecord]:
        """Return a snapshot copy, safe to iterate while the store mutates."""
        return dict(self._sessions)

    def ids(self) -> list[str]:
        return list(self._sessions)

    def count(self) -> int:
        return len(self._sessions)

    def clear(self) -> None:
        """Drop every record without closing transports.

        Callers that need resources released must destroy sessions through
        the lifecycle manager instead.
        """
        if self._sessions:
            logger.debug(f"Clearing {len(self._sessions)} sessions from store")
        self._sessions.clear()

    def by_user(self, user_id: str) -> list[SessionRecord]:
        return [r for r in self._sessions.values() if r.owner_user_id == user_id]

    def expired(self, now: datetime | None = None) -> list[SessionRecord]:
        now = now or utc_now()
        return [r for r in self._sessions.values() if r.is_expired(now)]
