"""Per-client request throttling.

Uses slowapi with in-memory storage. Limits are keyed by client address and
applied to every route except /health by ``SlowAPIMiddleware``.

Usage:
    limiter = build_limiter(settings)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
"""

from __future__ import annotations

import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from .config import Settings

logger = logging.getLogger(__name__)


def build_limiter(settings: Settings) -> Limiter:
    """Create a limiter for one application instance.

    An empty ``rate_limit`` setting disables throttling.
    """
    limits = [settings.rate_limit] if settings.rate_limit else []
    return Limiter(
        key_func=get_remote_address,
        application_limits=limits,
        headers_enabled=True,
        enabled=bool(limits),
    )


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return a JSON-RPC style 429 with rate limit headers."""
    client = request.client.host if request.client else "unknown"
    logger.warning(f"Rate limit exceeded for {request.method} {request.url.path} from {client}")

    response = JSONResponse(
        {
            "jsonrpc": "2.0",
            "error": {"code": 429, "message": f"Too many requests: {exc.detail}"},
            "id": None,
        },
        status_code=429,
    )
    limiter: Limiter = request.app.state.limiter
    response = limiter._inject_headers(response, getattr(request.state, "view_rate_limit", None))
    if "Retry-After" not in response.headers:
        response.headers["Retry-After"] = str(int(exc.limit.limit.get_expiry()))
    return response
