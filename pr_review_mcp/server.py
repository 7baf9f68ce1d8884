"""MCP stdio server exposing the tool registry."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.shared.exceptions import McpError
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    CallToolRequest,
    CallToolResult,
    ErrorData,
    ServerResult,
    TextContent,
    Tool,
)

from pr_review_mcp.config import Settings
from pr_review_mcp.dispatcher import ToolDispatcher
from pr_review_mcp.errors import InvalidArgumentsError, ToolError, UnknownToolError
from pr_review_mcp.runtime import open_runtime
from pr_review_mcp.tools import ToolDefinition

SERVER_NAME = "pr-review-mcp"

logger = structlog.get_logger(__name__)


def to_mcp_tools(definitions: Sequence[ToolDefinition]) -> list[Tool]:
    """Advertise registry definitions as MCP tools."""
    return [
        Tool(name=definition.name, description=definition.description, inputSchema=definition.input_schema)
        for definition in definitions
    ]


def tool_error_data(error: ToolError) -> ErrorData:
    """Map a dispatch failure onto a protocol error code."""
    if isinstance(error, UnknownToolError):
        return ErrorData(code=METHOD_NOT_FOUND, message=str(error))
    if isinstance(error, InvalidArgumentsError):
        return ErrorData(code=INVALID_PARAMS, message=str(error))
    return ErrorData(code=INTERNAL_ERROR, message=f"Tool execution failed: {error}")


async def handle_call_tool(
    dispatcher: ToolDispatcher,
    name: str,
    arguments: dict[str, Any] | None,
) -> list[TextContent]:
    """Dispatch one MCP tool call, raising McpError with the mapped error code."""
    try:
        result = await dispatcher.invoke(name, arguments or {})
    except ToolError as error:
        raise McpError(tool_error_data(error)) from error
    return [TextContent(type="text", text=block.text) for block in result.content]


def build_server(dispatcher: ToolDispatcher) -> Server:
    """Build a low-level MCP server over the dispatcher.

    CallTool is registered without ``Server.call_tool()`` so a raised
    ``McpError`` reaches the client as a JSON-RPC error.
    """
    server: Server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return to_mcp_tools(dispatcher.list_tools())

    async def call_tool(request: CallToolRequest) -> ServerResult:
        content = await handle_call_tool(dispatcher, request.params.name, request.params.arguments)
        return ServerResult(CallToolResult(content=content))

    server.request_handlers[CallToolRequest] = call_tool
    return server


async def run_stdio(settings: Settings) -> None:
    """Serve tools over stdin/stdout until the client disconnects."""
    async with open_runtime(settings, with_backend=False) as runtime:
        server = build_server(runtime.dispatcher)
        logger.info("mcp_server_starting", tools=len(runtime.dispatcher.list_tools()))
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    logger.info("mcp_server_stopped")
