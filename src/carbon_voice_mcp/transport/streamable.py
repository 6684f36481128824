"""Streamable HTTP session transport.

Each session gets its own ``StreamableHTTPServerTransport`` from the mcp SDK
and a dedicated MCP server instance running in a background task, connected
to the transport's in-memory streams. The server is bound to the creating
user's bearer token so tool calls hit the API as that user.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from mcp.server.lowlevel import Server
from mcp.server.streamable_http import StreamableHTTPServerTransport
from starlette.types import Receive, Scope, Send

from ..api_client import CarbonVoiceClient
from ..tools import ToolCallHooks, ToolRegistry, build_server
from .base import SessionTransport

if TYPE_CHECKING:
    from ..auth import AuthInfo
    from ..config import Settings
    from ..sessions import SessionMetricsRecorder

logger = logging.getLogger(__name__)


class StreamableSessionTransport(SessionTransport):
    """SessionTransport over the mcp SDK streamable HTTP transport.

    Args:
        session_id: Session id announced in the ``mcp-session-id`` header
        server: MCP server to run for this session
        json_response: Answer POSTs with JSON instead of an SSE stream
        client: API client owned by this session, closed with it
    """

    def __init__(
        self,
        session_id: str,
        server: Server,
        json_response: bool = True,
        client: CarbonVoiceClient | None = None,
    ) -> None:
        self.session_id = session_id
        self.on_close = None
        self._server = server
        self._client = client
        self._http = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=json_response,
            event_store=None,
        )
        self._task: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """Start the server task and wait until its streams are connected."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name=f"mcp-session-{self.session_id}")
        await self._ready.wait()

    async def _run(self) -> None:
        try:
            async with self._http.connect() as (read_stream, write_stream):
                self._ready.set()
                await self._server.run(
                    read_stream,
                    write_stream,
                    self._server.create_initialization_options(),
                    stateless=False,
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"MCP server for session {self.session_id} crashed: {e}")
            if self.on_error is not None:
                self.on_error(e)
        finally:
            self._ready.set()
            if not self._closed:
                # Ended on its own (client DELETE or stream failure)
                logger.debug(f"Transport for session {self.session_id} closed by peer")
                if self.on_close is not None:
                    self.on_close()

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self._http.handle_request(scope, receive, send)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        try:
            if not self._http.is_terminated:
                await self._http.terminate()
        finally:
            if self._client is not None:
                await self._client.aclose()

            task = self._task
            # close() may run inside the server task itself via on_close
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task


class StreamableTransportFactory:
    """Builds and starts a StreamableSessionTransport for a new session.

    Tool calls and tool errors are attributed to the session through the
    metrics recorder.
    """

    def __init__(
        self,
        settings: Settings,
        metrics: SessionMetricsRecorder,
        registry: ToolRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._metrics = metrics
        self._registry = registry

    async def __call__(self, session_id: str, auth: AuthInfo) -> StreamableSessionTransport:
        client = CarbonVoiceClient(self._settings.carbon_voice_base_url, access_token=auth.token)
        hooks = ToolCallHooks(
            on_tool_call=lambda name: self._metrics.record_tool_call(session_id),
            on_error=lambda name, error: self._metrics.record_error(session_id),
        )
        server = build_server(client, self._registry, hooks)
        transport = StreamableSessionTransport(
            session_id,
            server,
            json_response=self._settings.json_response,
            client=client,
        )
        await transport.start()
        return transport
