"""Integration tests for the HTTP application.

Runs the real Starlette app, session layer and routing with a fake token
verifier and an in-memory transport in place of the MCP SDK transport.
"""

from __future__ import annotations

import pytest
from starlette.testclient import TestClient

from carbon_voice_mcp.app import create_app
from carbon_voice_mcp.auth import AuthInfo, InvalidTokenError
from carbon_voice_mcp.config import Settings
from carbon_voice_mcp.sessions import SessionConfig, build_session_layer
from carbon_voice_mcp.sessions.router import SESSION_NOT_FOUND_MESSAGE

INITIALIZE = {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}
TOOLS_LIST = {"jsonrpc": "2.0", "id": 2, "method": "tools/list"}

USERS = {
    "token-1": ("user-1", ["mcp:read", "mcp:write"]),
    "token-2": ("user-2", ["mcp:read", "mcp:write"]),
    "read-only": ("user-3", ["mcp:read"]),
}


class FakeVerifier:
    async def verify_access_token(self, token: str) -> AuthInfo:
        if token not in USERS:
            raise InvalidTokenError("Invalid token")
        user_id, scopes = USERS[token]
        return AuthInfo(token=token, client_id="client", scopes=scopes, user_id=user_id)


def auth(token: str = "token-1", session_id: str | None = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {token}"}
    if session_id:
        headers["mcp-session-id"] = session_id
    return headers


@pytest.fixture
def transports() -> list:
    return []


@pytest.fixture
def make_app(transports, fake_transport_cls):
    def _make(config: SessionConfig | None = None, transport_factory=None, settings=None):
        layer = build_session_layer(config or SessionConfig())

        async def factory(session_id: str, identity: AuthInfo):
            transport = fake_transport_cls(session_id)
            transports.append(transport)
            return transport

        app = create_app(
            settings=settings or Settings(),
            session_layer=layer,
            verifier=FakeVerifier(),
            transport_factory=transport_factory or factory,
        )
        return app, layer

    return _make


# =============================================================================
# Tests: Health and discovery
# =============================================================================


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_returns_ok(self, make_app):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["sessions"] == {"active": 0, "max": 2000, "ttl_seconds": 3600}
        assert "uptime" in data


class TestWellKnownEndpoints:
    """Test OAuth discovery metadata."""

    def test_protected_resource(self, make_app):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.get("/.well-known/oauth-protected-resource")

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        data = response.json()
        assert data["resource"] == "http://testserver"
        assert data["authorization_servers"] == ["https://api.carbonvoice.app"]
        assert data["scopes_supported"] == ["mcp:read", "mcp:write"]

    def test_authorization_server(self, make_app):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.get("/.well-known/oauth-authorization-server")

        data = response.json()
        assert data["issuer"] == "https://api.carbonvoice.app"
        assert data["token_endpoint"] == "https://api.carbonvoice.app/oauth/token"
        assert data["code_challenge_methods_supported"] == ["S256"]


# =============================================================================
# Tests: Authentication
# =============================================================================


class TestAuthentication:
    """Test bearer authentication on /mcp."""

    def test_missing_token(self, make_app):
        app, layer = make_app()
        with TestClient(app) as client:
            response = client.post("/mcp", json=INITIALIZE)

        assert response.status_code == 401
        assert "resource_metadata=" in response.headers["www-authenticate"]
        assert response.json()["error"] == "invalid_token"
        assert layer.store.count() == 0

    def test_invalid_token(self, make_app):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.post("/mcp", json=INITIALIZE, headers=auth("bogus"))

        assert response.status_code == 401

    def test_insufficient_scope(self, make_app):
        app, layer = make_app()
        with TestClient(app) as client:
            response = client.post("/mcp", json=INITIALIZE, headers=auth("read-only"))

        assert response.status_code == 403
        assert response.json()["error"] == "insufficient_scope"
        assert layer.store.count() == 0


# =============================================================================
# Tests: Session routing
# =============================================================================


class TestSessionRouting:
    """Test create, reuse, reject and delete over HTTP."""

    def test_initialize_creates_session(self, make_app, transports):
        app, layer = make_app()
        with TestClient(app) as client:
            response = client.post("/mcp", json=INITIALIZE, headers=auth())

            assert response.status_code == 200
            session_id = response.headers["mcp-session-id"]
            assert layer.store.has(session_id)
            assert layer.store.get(session_id).owner_user_id == "user-1"
            # Body was replayed to the transport intact
            assert transports[0].requests == [("POST", INITIALIZE)]

    def test_reuse_records_interactions(self, make_app, transports):
        app, layer = make_app()
        with TestClient(app) as client:
            session_id = client.post("/mcp", json=INITIALIZE, headers=auth()).headers[
                "mcp-session-id"
            ]
            response = client.post("/mcp", json=TOOLS_LIST, headers=auth(session_id=session_id))

            assert response.status_code == 200
            assert response.json()["id"] == 2
            assert len(transports) == 1
            metrics = layer.lifecycle.get_metrics(session_id)
            assert metrics.total_interactions == 2
            assert metrics.timed_interactions == 2

    def test_unknown_session_rejected(self, make_app, transports):
        """A non-initialize request for an unknown session gets a JSON-RPC 404."""
        app, layer = make_app()
        with TestClient(app) as client:
            response = client.post("/mcp", json=TOOLS_LIST, headers=auth(session_id="ghost"))

        assert response.status_code == 404
        body = response.json()
        assert body["jsonrpc"] == "2.0"
        assert body["id"] is None
        assert body["error"]["code"] == 404
        assert body["error"]["message"] == SESSION_NOT_FOUND_MESSAGE
        assert transports == []
        assert layer.store.count() == 0

    def test_get_without_session_rejected(self, make_app):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.get("/mcp", headers=auth())

        assert response.status_code == 404

    def test_other_user_forbidden(self, make_app):
        app, layer = make_app()
        with TestClient(app) as client:
            session_id = client.post("/mcp", json=INITIALIZE, headers=auth()).headers[
                "mcp-session-id"
            ]
            response = client.post(
                "/mcp", json=TOOLS_LIST, headers=auth("token-2", session_id=session_id)
            )

            assert response.status_code == 403
            assert response.json()["error"]["data"]["code"] == "SESSION_FORBIDDEN"
            assert layer.lifecycle.get_metrics(session_id).total_interactions == 1

    def test_delete_destroys_session(self, make_app, transports):
        app, layer = make_app()
        with TestClient(app) as client:
            session_id = client.post("/mcp", json=INITIALIZE, headers=auth()).headers[
                "mcp-session-id"
            ]
            response = client.delete("/mcp", headers=auth(session_id=session_id))

            assert response.status_code == 200
            assert not layer.store.has(session_id)
            assert transports[0].close_calls == 1

            again = client.post("/mcp", json=TOOLS_LIST, headers=auth(session_id=session_id))
            assert again.status_code == 404

    def test_shutdown_destroys_sessions(self, make_app, transports):
        app, layer = make_app()
        with TestClient(app) as client:
            client.post("/mcp", json=INITIALIZE, headers=auth())
            client.post("/mcp", json=INITIALIZE, headers=auth("token-2"))
            assert layer.store.count() == 2

        assert layer.store.count() == 0
        assert [t.close_calls for t in transports] == [1, 1]
        assert not layer.reaper.is_running


# =============================================================================
# Tests: Create failures
# =============================================================================


class TestCreateFailures:
    """Test error mapping when a session cannot be created."""

    def test_capacity_exceeded(self, make_app, transports):
        app, layer = make_app(SessionConfig(max_sessions=1, cleanup_interval=30))
        with TestClient(app) as client:
            client.post("/mcp", json=INITIALIZE, headers=auth())
            response = client.post("/mcp", json=INITIALIZE, headers=auth())

            assert response.status_code == 503
            assert response.headers["retry-after"] == "30"
            assert response.json()["error"]["data"]["code"] == "MAX_SESSIONS_REACHED"
            assert layer.store.count() == 1
            # The transport built for the rejected session was released
            assert transports[1].close_calls == 1

    def test_duplicate_create_conflict(self, make_app, fake_transport_cls, identity):
        """Losing a create race for the same id is a 409."""
        winner = fake_transport_cls("fixed")
        loser = fake_transport_cls("fixed")
        holder: dict = {}

        async def racing_factory(session_id: str, auth_info: AuthInfo):
            # Another request registers the same id while this transport is built
            holder["layer"].lifecycle.create(winner, identity, session_id)
            return loser

        app, layer = make_app(transport_factory=racing_factory)
        holder["layer"] = layer
        with TestClient(app) as client:
            response = client.post("/mcp", json=INITIALIZE, headers=auth(session_id="fixed"))

            assert response.status_code == 409
            assert layer.store.get("fixed").transport is winner
            assert loser.close_calls == 1
            assert winner.close_calls == 0

    def test_transport_factory_failure(self, make_app):
        async def failing_factory(session_id: str, auth_info: AuthInfo):
            raise RuntimeError("cannot build transport")

        app, layer = make_app(transport_factory=failing_factory)
        with TestClient(app) as client:
            response = client.post("/mcp", json=INITIALIZE, headers=auth())

        assert response.status_code == 500
        assert layer.store.count() == 0

    def test_transport_error_counted(self, make_app, transports):
        app, layer = make_app()
        with TestClient(app) as client:
            session_id = client.post("/mcp", json=INITIALIZE, headers=auth()).headers[
                "mcp-session-id"
            ]

            async def broken(scope, receive, send):
                raise RuntimeError("transport exploded")

            transports[0].handle_request = broken
            response = client.post("/mcp", json=TOOLS_LIST, headers=auth(session_id=session_id))

            assert response.status_code == 500
            assert layer.lifecycle.get_metrics(session_id).error_count == 1


# =============================================================================
# Tests: Request limits
# =============================================================================


class TestRequestLimits:
    """Test body size limits and per-client throttling."""

    def test_oversized_body_rejected(self, make_app, transports):
        app, layer = make_app(settings=Settings(max_body_bytes=256))
        payload = {**INITIALIZE, "params": {"padding": "x" * 512}}
        with TestClient(app) as client:
            response = client.post("/mcp", json=payload, headers=auth())

        assert response.status_code == 413
        assert response.json()["error"]["code"] == 413
        assert transports == []
        assert layer.store.count() == 0

    def test_body_within_limit_accepted(self, make_app):
        app, layer = make_app(settings=Settings(max_body_bytes=256))
        with TestClient(app) as client:
            response = client.post("/mcp", json=INITIALIZE, headers=auth())

            assert response.status_code == 200
            assert layer.store.count() == 1

    def test_rate_limit_exceeded(self, make_app):
        app, layer = make_app(settings=Settings(rate_limit="2/minute"))
        with TestClient(app) as client:
            first = client.post("/mcp", json=INITIALIZE, headers=auth())
            client.post("/mcp", json=INITIALIZE, headers=auth())
            response = client.post("/mcp", json=INITIALIZE, headers=auth())

            assert first.headers["x-ratelimit-limit"] == "2"
            assert response.status_code == 429
            assert "retry-after" in response.headers
            assert response.json()["error"]["code"] == 429
            assert layer.store.count() == 2

    def test_health_not_throttled(self, make_app):
        app, _ = make_app(settings=Settings(rate_limit="1/minute"))
        with TestClient(app) as client:
            responses = [client.get("/health") for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 200]

    def test_rate_limit_disabled(self, make_app):
        app, _ = make_app(settings=Settings(rate_limit="off"))
        with TestClient(app) as client:
            responses = [client.post("/mcp", json=INITIALIZE, headers=auth()) for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 200]
