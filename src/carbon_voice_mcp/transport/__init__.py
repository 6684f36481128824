"""Transports for the MCP gateway.

- StreamableSessionTransport: one per HTTP session, owned by the session layer
- run_stdio_server: single implicit session over stdin/stdout
"""

from .base import SessionTransport, TransportFactory
from .stdio import run_stdio_server
from .streamable import StreamableSessionTransport, StreamableTransportFactory

__all__ = [
    "SessionTransport",
    "TransportFactory",
    "StreamableSessionTransport",
    "StreamableTransportFactory",
    "run_stdio_server",
]
