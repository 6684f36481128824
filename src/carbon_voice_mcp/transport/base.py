"""Transport abstraction for HTTP sessions.

A SessionTransport is the long-lived protocol endpoint bound to one MCP
session. The session layer owns it and closes it exactly once.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from starlette.types import Receive, Scope, Send

if TYPE_CHECKING:
    from ..auth import AuthInfo


class SessionTransport(ABC):
    """Per-session protocol transport.

    ``on_close`` is installed by the session layer and must be invoked when
    the transport shuts itself down (e.g. on client termination), but not
    when close() was called by the session layer. ``on_error`` is installed
    the same way and receives failures the transport cannot report through
    an HTTP response.
    """

    on_close: Callable[[], object] | None = None
    on_error: Callable[[Exception], object] | None = None

    @abstractmethod
    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Serve one HTTP request for this session."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the transport. Must tolerate being called more than once."""
        ...


# (session_id, identity) -> started transport
TransportFactory = Callable[[str, "AuthInfo"], Awaitable[SessionTransport]]
