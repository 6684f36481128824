"""HTTP route modules."""

from .health import health_routes
from .mcp import mcp_routes
from .well_known import well_known_routes

__all__ = [
    "health_routes",
    "mcp_routes",
    "well_known_routes",
]
