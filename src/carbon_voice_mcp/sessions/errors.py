"""Session error taxonomy.

Validation errors indicate caller misuse, conflict errors indicate legitimate
concurrent use. Each carries a stable ``code`` and the HTTP status the route
layer maps it to.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base class for session layer errors."""

    code: str = "SESSION_ERROR"
    status_code: int = 500

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class InvalidArgumentError(SessionError, ValueError):
    """Empty session id, missing transport or record."""

    code = "INVALID_ARGUMENT"
    status_code = 400


class UserNotFoundError(SessionError):
    """The authenticated context carries no user identity."""

    code = "USER_NOT_FOUND"
    status_code = 401

    def __init__(self) -> None:
        super().__init__("User not found in session creation")


class DuplicateSessionError(SessionError):
    """A session with the same id already exists."""

    code = "SESSION_ALREADY_EXISTS"
    status_code = 409

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session already exists: {session_id}")
        self.session_id = session_id


class CapacityExceededError(SessionError):
    """The store has reached the configured maximum number of sessions."""

    code = "MAX_SESSIONS_REACHED"
    status_code = 503

    def __init__(self, max_sessions: int) -> None:
        super().__init__(f"Maximum sessions limit reached: {max_sessions}")
        self.max_sessions = max_sessions


class SessionNotFoundError(SessionError):
    code = "SESSION_NOT_FOUND"
    status_code = 404

    def __init__(self, session_id: str | None, message: str | None = None) -> None:
        super().__init__(message or f"Session not found: {session_id}")
        self.session_id = session_id


class SessionOwnershipError(SessionError):
    """A request tried to reuse a session created by another user."""

    code = "SESSION_FORBIDDEN"
    status_code = 403

    def __init__(self, session_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Session {session_id} belongs to another user")
        self.session_id = session_id
