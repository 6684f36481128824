"""Health check endpoint."""

import logging
from datetime import datetime, timezone

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..utils import process_uptime

logger = logging.getLogger(__name__)


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    response = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": process_uptime(),
    }

    session_layer = getattr(request.app.state, "session_layer", None)
    if session_layer is not None:
        response["sessions"] = session_layer.lifecycle.summary()

    logger.debug(f"Health check: {response}")
    return JSONResponse(response)


health_routes = [
    Route("/health", health_check, methods=["GET"]),
]
