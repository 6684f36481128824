"""Carbon Voice MCP HTTP application.

Creates the Starlette ASGI application with all routes.

Route organization:
- /health - Health check with session counts
- /mcp - Streamable HTTP MCP endpoint (GET, POST, DELETE)
- /.well-known/oauth-* - OAuth discovery metadata

Every route but /health is throttled per client address.

The session layer is constructed here and handed to the routes through
``app.state``; the lifespan starts its reaper and destroys every session on
shutdown.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import AsyncIterator

from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.applications import Starlette
from starlette.datastructures import Headers
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Mount, Route
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from . import SERVICE_NAME, __version__
from .auth import TokenVerifier
from .config import Settings
from .rate_limit import build_limiter, rate_limit_exceeded_handler
from .routes import health_routes, mcp_routes, well_known_routes
from .routes.health import health_check
from .sessions import SessionLayer, build_session_layer
from .transport import StreamableTransportFactory, TransportFactory
from .utils import obfuscate_auth_headers

logger = logging.getLogger(__name__)

# Paths excluded from access logging
NOT_LOGGED_PATHS = ("/health",)


class AccessLogMiddleware:
    """Logs one line per HTTP request with status and duration."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in NOT_LOGGED_PATHS:
            await self.app(scope, receive, send)
            return

        started = time.monotonic()
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        headers = Headers(scope=scope)
        logger.debug(
            f"Request {scope['method']} {scope['path']} "
            f"headers={obfuscate_auth_headers(dict(headers))}"
        )
        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = int((time.monotonic() - started) * 1000)
            session_id = headers.get("mcp-session-id", "-")
            logger.info(
                f"{scope['method']} {scope['path']} {status_code} {duration_ms}ms "
                f"session={session_id}"
            )


def create_app(
    settings: Settings | None = None,
    session_layer: SessionLayer | None = None,
    verifier: TokenVerifier | None = None,
    transport_factory: TransportFactory | None = None,
) -> Starlette:
    """Create the MCP gateway application.

    Args:
        settings: Runtime settings (read from the environment when omitted)
        session_layer: Session components (built from settings when omitted)
        verifier: Bearer token verifier
        transport_factory: Builds the transport for a new session

    Returns:
        Configured Starlette application
    """
    settings = settings or Settings.from_env()
    session_layer = session_layer or build_session_layer(settings.session)
    verifier = verifier or TokenVerifier(issuer=settings.carbon_voice_base_url)
    transport_factory = transport_factory or StreamableTransportFactory(
        settings, session_layer.metrics
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info(f"{SERVICE_NAME} v{__version__} starting")
        await session_layer.start()
        try:
            yield
        finally:
            destroyed = await session_layer.shutdown()
            logger.info(f"{SERVICE_NAME} stopped, {destroyed} sessions closed")

    routes: list[Route | Mount] = []
    routes.extend(health_routes)
    routes.extend(well_known_routes)
    routes.extend(mcp_routes)

    middleware = [
        Middleware(AccessLogMiddleware),
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=[
                "mcp-session-id",
                "WWW-Authenticate",
                "Retry-After",
                "X-RateLimit-Limit",
                "X-RateLimit-Remaining",
                "X-RateLimit-Reset",
            ],
        ),
        Middleware(SlowAPIMiddleware),
    ]

    limiter = build_limiter(settings)
    limiter.exempt(health_check)

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.state.settings = settings
    app.state.session_layer = session_layer
    app.state.verifier = verifier
    app.state.transport_factory = transport_factory
    return app
