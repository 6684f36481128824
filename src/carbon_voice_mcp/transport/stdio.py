"""stdio transport.

Serves the tool catalogue over stdin/stdout for subprocess integration. One
implicit session per process, authenticated with the configured API key.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mcp.server.stdio import stdio_server

from .. import SERVICE_NAME, __version__
from ..api_client import CarbonVoiceClient
from ..tools import ToolRegistry, build_server

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


async def run_stdio_server(settings: Settings, registry: ToolRegistry | None = None) -> None:
    """Run the MCP server on stdin/stdout until the client disconnects.

    Raises:
        ValueError: If no API key is configured
    """
    if not settings.carbon_voice_api_key:
        raise ValueError("CARBON_VOICE_API_KEY is required in stdio mode")

    async with CarbonVoiceClient(
        settings.carbon_voice_base_url, api_key=settings.carbon_voice_api_key
    ) as client:
        server = build_server(client, registry)
        logger.info(f"{SERVICE_NAME} v{__version__} running on stdio")

        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    logger.info("stdio server stopped")
