"""Per-request session routing decisions.

Decides whether an inbound MCP request reuses an existing session, creates a
new one, or is rejected. Protocol decoding is left to the session transport.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import SessionError, SessionNotFoundError, SessionOwnershipError
from .lifecycle import SessionLifecycleManager
from .logger import SessionLogger

if TYPE_CHECKING:
    from ..auth import AuthInfo

MCP_SESSION_ID_HEADER = "mcp-session-id"

SESSION_NOT_FOUND_MESSAGE = (
    "Session Not Found or Expired. Please reinitialize with a new session ID."
)
SESSION_FORBIDDEN_MESSAGE = "Session belongs to another user."


class RouteAction(str, Enum):
    """What to do with an inbound request."""

    REUSE = "reuse"
    CREATE = "create"
    REJECT = "reject"


@dataclass(frozen=True)
class RouteDecision:
    action: RouteAction
    session_id: str
    reason: str | None = None
    status_code: int = 200

    @property
    def rejected(self) -> bool:
        return self.action is RouteAction.REJECT

    def to_error(self) -> SessionError | None:
        """The error a rejected decision maps to, None otherwise."""
        if not self.rejected:
            return None
        if self.status_code == 403:
            return SessionOwnershipError(self.session_id, self.reason)
        return SessionNotFoundError(self.session_id, self.reason)


def generate_session_id() -> str:
    """Fresh opaque session id (128 random bits)."""
    return uuid.uuid4().hex


def get_session_id(headers: Mapping[str, str]) -> str | None:
    """Session id sent by the client, if any."""
    value = headers.get(MCP_SESSION_ID_HEADER)
    if value is None:
        return None
    value = value.strip()
    return value or None


def is_initialize_request(body: Any) -> bool:
    """True if the JSON-RPC payload is (or contains) an initialize request."""
    if isinstance(body, list):
        return any(is_initialize_request(item) for item in body)
    if not isinstance(body, dict):
        return False
    return body.get("method") == "initialize" and "id" in body


class RequestRouter:
    """Resolves each request to REUSE, CREATE or REJECT."""

    def __init__(
        self,
        lifecycle: SessionLifecycleManager,
        session_logger: SessionLogger | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._logger = session_logger or SessionLogger()

    def resolve_session_id(self, headers: Mapping[str, str]) -> str:
        """Client-supplied session id, or a newly generated one."""
        return get_session_id(headers) or generate_session_id()

    def resolve_or_reject(
        self,
        headers: Mapping[str, str],
        body: Any = None,
        identity: AuthInfo | None = None,
    ) -> RouteDecision:
        """Decide how to handle a request. Never mutates the store.

        Args:
            headers: Request headers (case-insensitive mapping)
            body: Parsed JSON body, None for GET/DELETE
            identity: Authenticated identity of the requester
        """
        session_id = self.resolve_session_id(headers)
        record = self._lifecycle.get(session_id)

        if record is not None and not record.destroying:
            requester = getattr(identity, "user_id", None)
            if (
                self._lifecycle.config.enforce_owner
                and requester is not None
                and requester != record.owner_user_id
            ):
                return RouteDecision(
                    RouteAction.REJECT, session_id, SESSION_FORBIDDEN_MESSAGE, 403
                )
            self._logger.log_session_reused(session_id, record.metrics.total_interactions)
            return RouteDecision(RouteAction.REUSE, session_id)

        if record is None and is_initialize_request(body):
            return RouteDecision(RouteAction.CREATE, session_id)

        return RouteDecision(RouteAction.REJECT, session_id, SESSION_NOT_FOUND_MESSAGE, 404)
