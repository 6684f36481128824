"""MCP streamable HTTP endpoint.

POST /mcp, GET /mcp and DELETE /mcp are all served here:

1. Authenticate the bearer token and check the required scopes
2. Ask the RequestRouter whether to REUSE, CREATE or REJECT
3. On CREATE, build a transport and register the session
4. Hand the raw request to the session's transport
5. Record the interaction; after DELETE, destroy the session

The endpoint is a raw ASGI app because the transport writes the response
itself (JSON or an SSE stream).
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.types import Message, Receive, Scope, Send

from ..auth import (
    AuthInfo,
    InsufficientScopeError,
    InvalidTokenError,
    extract_bearer_token,
    require_scopes,
)
from ..sessions import (
    CapacityExceededError,
    RouteAction,
    SessionError,
    SessionLayer,
    SessionNotFoundError,
)
from ..sessions.router import SESSION_NOT_FOUND_MESSAGE
from .well_known import PROTECTED_RESOURCE_PATH, WELL_KNOWN_CORS_HEADERS, resource_base_url

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"


def jsonrpc_error(status_code: int, message: str, data: dict[str, Any] | None = None) -> dict:
    error: dict[str, Any] = {"code": status_code, "message": message}
    if data:
        error["data"] = data
    return {"jsonrpc": "2.0", "error": error, "id": None}


def session_error_response(error: SessionError, retry_after: float | None = None) -> JSONResponse:
    """Map a session layer error onto its HTTP status with a JSON-RPC body."""
    headers = {}
    if isinstance(error, CapacityExceededError) and retry_after:
        headers["Retry-After"] = str(int(retry_after))
    return JSONResponse(
        jsonrpc_error(error.status_code, error.message, {"code": error.code}),
        status_code=error.status_code,
        headers=headers,
    )


async def read_limited_body(request: Request, limit: int) -> bytes | None:
    """Read the request body, or return None as soon as it exceeds ``limit`` bytes."""
    content_length = request.headers.get("content-length", "")
    if content_length.isdigit() and int(content_length) > limit:
        return None

    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


def replay_body(body: bytes, receive: Receive) -> Receive:
    """Receive callable that yields an already read body once, then delegates."""
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class McpEndpoint:
    """ASGI app for the /mcp route. Collaborators are read from app.state."""

    def __init__(self) -> None:
        # slowapi keys limits by the endpoint's module and name
        self.__name__ = type(self).__name__

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        state = request.app.state
        layer: SessionLayer = state.session_layer

        auth_or_response = await self._authenticate(request)
        if isinstance(auth_or_response, JSONResponse):
            await auth_or_response(scope, receive, send)
            return
        auth = auth_or_response

        body: Any = None
        if request.method == "POST":
            limit = state.settings.max_body_bytes
            raw = await read_limited_body(request, limit)
            if raw is None:
                logger.warning(f"Rejected {MCP_PATH} body over {limit} bytes")
                response = JSONResponse(
                    jsonrpc_error(413, "Request body too large"), status_code=413
                )
                await response(scope, receive, send)
                return
            receive = replay_body(raw, receive)
            try:
                body = json.loads(raw) if raw else None
            except ValueError:
                body = None

        decision = layer.router.resolve_or_reject(request.headers, body, auth)
        error = decision.to_error()
        if error is not None:
            logger.info(
                f"Rejected {request.method} {MCP_PATH} for session {decision.session_id}: "
                f"{decision.reason}"
            )
            await session_error_response(error)(scope, receive, send)
            return

        session_id = decision.session_id
        if decision.action is RouteAction.CREATE:
            response = await self._create_session(layer, state.transport_factory, session_id, auth)
            if response is not None:
                await response(scope, receive, send)
                return

        record = layer.lifecycle.get(session_id)
        if record is None or record.destroying:
            error = SessionNotFoundError(session_id, SESSION_NOT_FOUND_MESSAGE)
            await session_error_response(error)(scope, receive, send)
            return

        await self._dispatch(layer, record.transport, session_id, scope, receive, send)

        if request.method == "DELETE":
            await layer.lifecycle.destroy(session_id)

    async def _authenticate(self, request: Request) -> AuthInfo | JSONResponse:
        settings = request.app.state.settings
        verifier = request.app.state.verifier
        try:
            token = extract_bearer_token(request.headers)
            auth = await verifier.verify_access_token(token)
            require_scopes(auth, settings.required_scopes)
            return auth
        except InvalidTokenError as e:
            return self._auth_error(request, 401, e.code, str(e))
        except InsufficientScopeError as e:
            return self._auth_error(request, 403, e.code, str(e))

    def _auth_error(
        self, request: Request, status_code: int, code: str, message: str
    ) -> JSONResponse:
        metadata_url = f"{resource_base_url(request)}{PROTECTED_RESOURCE_PATH}"
        www_authenticate = (
            f'Bearer error="{code}", error_description="{message}", '
            f'resource_metadata="{metadata_url}"'
        )
        logger.warning(f"Auth error on {request.method} {MCP_PATH}: {status_code} {message}")
        return JSONResponse(
            {"error": code, "error_description": message},
            status_code=status_code,
            headers={
                "WWW-Authenticate": www_authenticate,
                "Access-Control-Expose-Headers": WELL_KNOWN_CORS_HEADERS[
                    "Access-Control-Expose-Headers"
                ],
            },
        )

    async def _create_session(
        self,
        layer: SessionLayer,
        transport_factory: Any,
        session_id: str,
        auth: AuthInfo,
    ) -> JSONResponse | None:
        """Build a transport and register it. Returns an error response on failure."""
        try:
            transport = await transport_factory(session_id, auth)
        except Exception as e:
            logger.error(f"Failed to create transport for session {session_id}: {e}")
            return JSONResponse(
                jsonrpc_error(500, "Failed to create session transport"), status_code=500
            )

        try:
            layer.lifecycle.create(transport, auth, session_id)
        except SessionError as e:
            # The transport never became part of a session, so it is ours to close
            try:
                await transport.close()
            except Exception as close_error:
                logger.error(f"Error closing orphaned transport {session_id}: {close_error}")
            logger.warning(f"Session create failed for {session_id}: {e.code} {e.message}")
            return session_error_response(e, retry_after=layer.config.cleanup_interval)
        return None

    async def _dispatch(
        self,
        layer: SessionLayer,
        transport: Any,
        session_id: str,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        started = time.monotonic()
        try:
            await transport.handle_request(scope, receive, tracking_send)
        except Exception as e:
            logger.error(f"Error handling MCP request for session {session_id}: {e}")
            layer.metrics.record_error(session_id)
            if not response_started:
                response = JSONResponse(
                    jsonrpc_error(500, "Internal server error"), status_code=500
                )
                await response(scope, receive, send)
            return

        # Streams (GET) stay open for the life of the connection, only time POSTs
        response_time = time.monotonic() - started if scope["method"] == "POST" else None
        layer.metrics.record_interaction(session_id, response_time)


mcp_routes = [
    Route(MCP_PATH, McpEndpoint(), methods=["GET", "POST", "DELETE"]),
]
