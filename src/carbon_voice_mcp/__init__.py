"""Carbon Voice MCP gateway.

Exposes the Carbon Voice REST API as Model Context Protocol tools over a
stateful streamable HTTP transport and a stdio transport.
"""

__version__ = "1.0.0"

SERVICE_NAME = "Carbon Voice MCP Server"
