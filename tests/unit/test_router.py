"""Tests for RequestRouter - REUSE / CREATE / REJECT decisions."""

from __future__ import annotations

import asyncio

import pytest

from carbon_voice_mcp.sessions import (
    MCP_SESSION_ID_HEADER,
    RouteAction,
    SessionConfig,
    SessionNotFoundError,
    SessionOwnershipError,
    build_session_layer,
    is_initialize_request,
)
from carbon_voice_mcp.sessions.router import SESSION_NOT_FOUND_MESSAGE, get_session_id

INITIALIZE = {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}
TOOLS_LIST = {"jsonrpc": "2.0", "id": 2, "method": "tools/list"}


@pytest.fixture
def layer(session_logger, clock):
    return build_session_layer(SessionConfig(), session_logger, clock)


def _headers(session_id: str | None = None) -> dict[str, str]:
    return {MCP_SESSION_ID_HEADER: session_id} if session_id else {}


class TestSessionIdResolution:
    """Tests for session id extraction and generation."""

    def test_uses_header_value(self, layer):
        assert layer.router.resolve_session_id(_headers("abc")) == "abc"

    def test_generates_when_absent(self, layer):
        first = layer.router.resolve_session_id({})
        second = layer.router.resolve_session_id({})

        assert len(first) == 32
        assert first != second

    def test_blank_header_ignored(self):
        assert get_session_id({MCP_SESSION_ID_HEADER: "  "}) is None


class TestInitializeDetection:
    """Tests for is_initialize_request."""

    def test_single_request(self):
        assert is_initialize_request(INITIALIZE)
        assert not is_initialize_request(TOOLS_LIST)

    def test_batch(self):
        assert is_initialize_request([TOOLS_LIST, INITIALIZE])
        assert not is_initialize_request([TOOLS_LIST])

    def test_notification_is_not_a_request(self):
        assert not is_initialize_request({"jsonrpc": "2.0", "method": "initialize"})

    def test_non_json_payloads(self):
        assert not is_initialize_request(None)
        assert not is_initialize_request("initialize")


class TestResolveOrReject:
    """Tests for per-request routing decisions."""

    def test_unknown_session_rejected(self, layer, identity):
        """A non-initialize request for an unknown id is rejected without side effects."""
        decision = layer.router.resolve_or_reject(_headers("ghost"), TOOLS_LIST, identity)

        assert decision.action is RouteAction.REJECT
        assert decision.status_code == 404
        assert decision.reason == SESSION_NOT_FOUND_MESSAGE
        assert isinstance(decision.to_error(), SessionNotFoundError)
        assert layer.store.count() == 0

    def test_initialize_without_session_creates(self, layer, identity):
        decision = layer.router.resolve_or_reject({}, INITIALIZE, identity)

        assert decision.action is RouteAction.CREATE
        assert decision.session_id
        assert decision.to_error() is None
        assert layer.store.count() == 0

    def test_get_without_session_rejected(self, layer, identity):
        decision = layer.router.resolve_or_reject({}, None, identity)

        assert decision.rejected

    @pytest.mark.asyncio
    async def test_existing_session_reused(
        self, layer, identity, session_logger, fake_transport_cls
    ):
        layer.lifecycle.create(fake_transport_cls(), identity, "s1")

        decision = layer.router.resolve_or_reject(_headers("s1"), TOOLS_LIST, identity)

        assert decision.action is RouteAction.REUSE
        assert decision.session_id == "s1"
        session_logger.log_session_reused.assert_called_once_with("s1", 0)

    @pytest.mark.asyncio
    async def test_other_user_rejected(self, layer, identity, other_identity, fake_transport_cls):
        layer.lifecycle.create(fake_transport_cls(), identity, "s1")

        decision = layer.router.resolve_or_reject(_headers("s1"), TOOLS_LIST, other_identity)

        assert decision.action is RouteAction.REJECT
        assert decision.status_code == 403
        assert isinstance(decision.to_error(), SessionOwnershipError)

    @pytest.mark.asyncio
    async def test_owner_check_can_be_disabled(
        self, session_logger, clock, identity, other_identity, fake_transport_cls
    ):
        layer = build_session_layer(SessionConfig(enforce_owner=False), session_logger, clock)
        layer.lifecycle.create(fake_transport_cls(), identity, "s1")

        decision = layer.router.resolve_or_reject(_headers("s1"), TOOLS_LIST, other_identity)

        assert decision.action is RouteAction.REUSE

    @pytest.mark.asyncio
    async def test_destroying_session_rejected(self, layer, identity, fake_transport_cls):
        """A session being torn down is neither reused nor recreated."""
        transport = fake_transport_cls()
        transport.close_gate = asyncio.Event()
        layer.lifecycle.create(transport, identity, "s1")
        task = asyncio.create_task(layer.lifecycle.destroy("s1"))
        await asyncio.sleep(0)

        decision = layer.router.resolve_or_reject(_headers("s1"), INITIALIZE, identity)

        assert decision.rejected
        transport.close_gate.set()
        await task


class TestRequestFlow:
    """End-to-end flow through router, lifecycle and metrics."""

    @pytest.mark.asyncio
    async def test_create_reuse_and_tool_call(self, layer, identity, fake_transport_cls):
        """Initialize creates a session; a later tool call is attributed to it."""
        decision = layer.router.resolve_or_reject({}, INITIALIZE, identity)
        assert decision.action is RouteAction.CREATE
        session_id = layer.lifecycle.create(fake_transport_cls(), identity, decision.session_id)

        follow_up = layer.router.resolve_or_reject(
            _headers(session_id),
            {"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": {"name": "x"}},
            identity,
        )
        assert follow_up.action is RouteAction.REUSE
        layer.metrics.record_tool_call(session_id)

        metrics = layer.lifecycle.get_metrics(session_id)
        assert metrics.total_tool_calls == 1
        assert metrics.total_interactions == 1

    @pytest.mark.asyncio
    async def test_layer_shutdown_destroys_all(self, layer, identity, fake_transport_cls):
        transports = [fake_transport_cls() for _ in range(3)]
        for index, transport in enumerate(transports):
            layer.lifecycle.create(transport, identity, f"s{index}")
        await layer.start()

        destroyed = await layer.shutdown()

        assert destroyed == 3
        assert layer.store.count() == 0
        assert not layer.reaper.is_running
        assert all(t.close_calls == 1 for t in transports)
