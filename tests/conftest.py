"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import Receive, Scope, Send

from carbon_voice_mcp.auth import AuthInfo
from carbon_voice_mcp.sessions import SessionLogger
from carbon_voice_mcp.transport.base import SessionTransport


class FakeTransport(SessionTransport):
    """In-memory transport that answers every request itself."""

    def __init__(self, session_id: str = "", fail_close: bool = False) -> None:
        self.session_id = session_id
        self.on_close = None
        self.fail_close = fail_close
        self.close_calls = 0
        self.requests: list[tuple[str, object]] = []
        # When set, close() waits on it, giving other tasks a chance to run
        self.close_gate: asyncio.Event | None = None

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        body = await request.json() if scope["method"] == "POST" else None
        self.requests.append((scope["method"], body))

        headers = {"mcp-session-id": self.session_id}
        if scope["method"] == "DELETE":
            response: Response = Response(status_code=200, headers=headers)
        else:
            request_id = body.get("id") if isinstance(body, dict) else None
            response = JSONResponse(
                {"jsonrpc": "2.0", "result": {}, "id": request_id}, headers=headers
            )
        await response(scope, receive, send)

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_gate is not None:
            await self.close_gate.wait()
        if self.fail_close:
            raise RuntimeError("close failed")


class VirtualClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def fake_transport_cls() -> type[FakeTransport]:
    return FakeTransport


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def session_logger() -> MagicMock:
    """SessionLogger double that records every event call."""
    return MagicMock(spec=SessionLogger)


@pytest.fixture
def identity() -> AuthInfo:
    return AuthInfo(
        token="token-user-1",
        client_id="client-1",
        scopes=["mcp:read", "mcp:write"],
        user_id="user-1",
    )


@pytest.fixture
def other_identity() -> AuthInfo:
    return AuthInfo(
        token="token-user-2",
        client_id="client-2",
        scopes=["mcp:read", "mcp:write"],
        user_id="user-2",
    )
