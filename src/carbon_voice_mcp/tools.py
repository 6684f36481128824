"""MCP tool catalogue backed by the Carbon Voice REST API.

Architecture:
- ToolDefinition: name, description, JSON Schema parameters, async handler
- ToolRegistry: the catalogue served by every MCP server instance
- ToolCallHooks: callbacks used to attribute tool calls and errors to a session
- build_server(): binds a registry and an API client to an mcp low-level Server

The same catalogue is served over both the HTTP and stdio transports.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import mcp.types as types
from mcp.server.lowlevel import Server

from . import SERVICE_NAME, __version__
from .api_client import CarbonVoiceClient

logger = logging.getLogger(__name__)

# Signature: (client, arguments) -> JSON-serialisable result
ToolHandler = Callable[[CarbonVoiceClient, dict[str, Any]], Awaitable[Any]]


@dataclass
class ToolDefinition:
    """Definition of one MCP tool.

    Attributes:
        name: Unique identifier for the tool
        description: Human-readable description for the model
        parameters: JSON Schema for the tool's input
        handler: Async function that performs the call
    """

    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Tool name cannot be empty")
        if not self.description:
            raise ValueError("Tool description cannot be empty")
        if not callable(self.handler):
            raise ValueError("Tool handler must be callable")

    def to_mcp_tool(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.parameters,
        )


class ToolRegistry:
    """Named collection of tool definitions."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition) -> None:
        """Register a tool.

        Raises:
            ValueError: If a tool with the same name is already registered
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' already registered")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def list_tools(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def list_names(self) -> list[str]:
        return list(self._tools.keys())

    @property
    def count(self) -> int:
        return len(self._tools)


@dataclass
class ToolCallHooks:
    """Callbacks invoked around each tool call."""

    on_tool_call: Callable[[str], None] | None = None
    on_error: Callable[[str, Exception], None] | None = None


def format_tool_response(data: Any) -> list[types.TextContent]:
    """Render a tool result as a single JSON text block."""
    return [types.TextContent(type="text", text=json.dumps(data, indent=2, default=str))]


async def invoke_tool(
    registry: ToolRegistry,
    client: CarbonVoiceClient,
    name: str,
    arguments: dict[str, Any] | None,
    hooks: ToolCallHooks | None = None,
) -> list[types.TextContent]:
    """Run one tool and report it to the hooks.

    Raises:
        ValueError: If the tool is unknown
        Exception: Whatever the handler raised, after on_error has run
    """
    hooks = hooks or ToolCallHooks()
    definition = registry.get(name)
    if definition is None:
        raise ValueError(f"Unknown tool: {name}")

    if hooks.on_tool_call:
        hooks.on_tool_call(name)

    try:
        result = await definition.handler(client, arguments or {})
    except Exception as e:
        logger.error(f"Tool '{name}' failed: {e}")
        if hooks.on_error:
            hooks.on_error(name, e)
        raise
    return format_tool_response(result)


def build_server(
    client: CarbonVoiceClient,
    registry: ToolRegistry | None = None,
    hooks: ToolCallHooks | None = None,
) -> Server:
    """Create an MCP server exposing the registry through the given client."""
    registry = registry or default_registry()
    server: Server = Server(SERVICE_NAME, version=__version__)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [tool.to_mcp_tool() for tool in registry.list_tools()]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
        return await invoke_tool(registry, client, name, arguments, hooks)

    return server


# =============================================================================
# Default catalogue
# =============================================================================


async def _get_user_info(client: CarbonVoiceClient, arguments: dict[str, Any]) -> Any:
    return await client.get_whoami()


async def _list_conversations(client: CarbonVoiceClient, arguments: dict[str, Any]) -> Any:
    return await client.list_conversations(workspace_id=arguments.get("workspace_id"))


async def _get_conversation(client: CarbonVoiceClient, arguments: dict[str, Any]) -> Any:
    return await client.get_conversation(arguments["conversation_id"])


async def _get_message(client: CarbonVoiceClient, arguments: dict[str, Any]) -> Any:
    return await client.get_message(arguments["message_id"])


async def _list_conversation_messages(
    client: CarbonVoiceClient, arguments: dict[str, Any]
) -> Any:
    return await client.list_conversation_messages(
        arguments["conversation_id"],
        limit=arguments.get("limit"),
        start_date=arguments.get("start_date"),
        end_date=arguments.get("end_date"),
    )


def _object_schema(properties: dict[str, Any], required: list[str] | None = None) -> dict:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def default_registry() -> ToolRegistry:
    """Registry holding the standard Carbon Voice tools."""
    registry = ToolRegistry()
    registry.register(
        ToolDefinition(
            name="get_user_info",
            description="Get the profile of the authenticated Carbon Voice user",
            parameters=_object_schema({}),
            handler=_get_user_info,
        )
    )
    registry.register(
        ToolDefinition(
            name="list_conversations",
            description="List conversations",
            parameters=_object_schema(
                {"workspace_id": {"type": "string", "description": "Carbon Voice workspace ID"}}
            ),
            handler=_list_conversations,
        )
    )
    registry.register(
        ToolDefinition(
            name="get_conversation",
            description="Get a conversation by ID",
            parameters=_object_schema(
                {"conversation_id": {"type": "string", "minLength": 1}},
                required=["conversation_id"],
            ),
            handler=_get_conversation,
        )
    )
    registry.register(
        ToolDefinition(
            name="get_message",
            description="Get a message by ID",
            parameters=_object_schema(
                {"message_id": {"type": "string", "minLength": 1}},
                required=["message_id"],
            ),
            handler=_get_message,
        )
    )
    registry.register(
        ToolDefinition(
            name="list_conversation_messages",
            description="List messages in a conversation, optionally within a date range",
            parameters=_object_schema(
                {
                    "conversation_id": {"type": "string", "minLength": 1},
                    "limit": {"type": "integer", "minimum": 1, "default": 50},
                    "start_date": {"type": "string", "format": "date-time"},
                    "end_date": {"type": "string", "format": "date-time"},
                },
                required=["conversation_id"],
            ),
            handler=_list_conversation_messages,
        )
    )
    return registry
