"""Unit tests for the MCP stdio surface."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from conftest import PR_URL, FakeGitHubService
from mcp.shared.exceptions import McpError
from mcp.shared.memory import create_connected_server_and_client_session
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, METHOD_NOT_FOUND
from pr_review_mcp.dispatcher import ToolDispatcher
from pr_review_mcp.errors import InvalidArgumentsError, ToolExecutionError, UnknownToolError
from pr_review_mcp.server import SERVER_NAME, build_server, handle_call_tool, to_mcp_tools, tool_error_data


@pytest.mark.unit
def test_tool_error_data_maps_error_kinds() -> None:
    unknown = tool_error_data(UnknownToolError("nope"))
    invalid = tool_error_data(InvalidArgumentsError("Missing required argument: pr_url", tool_name="x"))
    failed = tool_error_data(ToolExecutionError("upstream 502", tool_name="x"))

    assert (unknown.code, unknown.message) == (METHOD_NOT_FOUND, "Unknown tool: nope")
    assert (invalid.code, invalid.message) == (INVALID_PARAMS, "Missing required argument: pr_url")
    assert (failed.code, failed.message) == (INTERNAL_ERROR, "Tool execution failed: upstream 502")


@pytest.mark.unit
def test_handle_call_tool_returns_text_content(dispatcher: ToolDispatcher) -> None:
    content = asyncio.run(handle_call_tool(dispatcher, "get_pr_commits", {"pr_url": PR_URL}))

    assert len(content) == 1
    assert content[0].type == "text"
    assert json.loads(content[0].text)["total_commits"] == 1


@pytest.mark.unit
def test_handle_call_tool_accepts_missing_arguments(dispatcher: ToolDispatcher) -> None:
    content = asyncio.run(handle_call_tool(dispatcher, "get_review_prompts", None))

    assert json.loads(content[0].text)["title"] == "PR Review Guidelines - START HERE!"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("name", "arguments", "code"),
    [
        ("Get_PR_Details", {"pr_url": PR_URL}, METHOD_NOT_FOUND),
        ("get_pr_details", {}, INVALID_PARAMS),
        ("get_pr_details", {"pr_url": "https://github.com/acme"}, INVALID_PARAMS),
    ],
)
def test_handle_call_tool_raises_protocol_errors(
    dispatcher: ToolDispatcher, name: str, arguments: dict[str, object], code: int
) -> None:
    with pytest.raises(McpError) as error_info:
        asyncio.run(handle_call_tool(dispatcher, name, arguments))

    assert error_info.value.error.code == code


@pytest.mark.unit
def test_handle_call_tool_reports_upstream_failures(
    dispatcher: ToolDispatcher, fake_github: FakeGitHubService
) -> None:
    fake_github.failure = RuntimeError("connection reset")

    with pytest.raises(McpError) as error_info:
        asyncio.run(handle_call_tool(dispatcher, "get_pr_details", {"pr_url": PR_URL}))

    assert error_info.value.error.code == INTERNAL_ERROR
    assert error_info.value.error.message == "Tool execution failed: connection reset"


@pytest.mark.unit
def test_to_mcp_tools_preserves_definitions(dispatcher: ToolDispatcher) -> None:
    tools = to_mcp_tools(dispatcher.list_tools())

    assert [tool.name for tool in tools] == [definition.name for definition in dispatcher.list_tools()]
    assert tools[0].inputSchema["required"] == ["pr_url"]


@pytest.mark.unit
def test_build_server_uses_project_name(dispatcher: ToolDispatcher) -> None:
    assert build_server(dispatcher).name == SERVER_NAME


def call_over_session(dispatcher: ToolDispatcher, name: str, arguments: dict[str, Any]) -> Any:
    """Call a tool through an in-memory MCP client connected to the server."""

    async def scenario() -> Any:
        async with create_connected_server_and_client_session(build_server(dispatcher)) as client:
            return await client.call_tool(name, arguments)

    return asyncio.run(scenario())


@pytest.mark.unit
def test_session_returns_tool_payload(dispatcher: ToolDispatcher) -> None:
    result = call_over_session(dispatcher, "get_pr_commits", {"pr_url": PR_URL})

    assert result.isError is False
    assert json.loads(result.content[0].text)["total_commits"] == 1


@pytest.mark.unit
@pytest.mark.parametrize(
    ("name", "arguments", "code"),
    [
        ("not_a_tool", {"pr_url": PR_URL}, METHOD_NOT_FOUND),
        ("Get_PR_Details", {"pr_url": PR_URL}, METHOD_NOT_FOUND),
        ("get_pr_details", {}, INVALID_PARAMS),
    ],
)
def test_session_surfaces_protocol_error_codes(
    dispatcher: ToolDispatcher, fake_github: FakeGitHubService, name: str, arguments: dict[str, Any], code: int
) -> None:
    with pytest.raises(McpError) as error_info:
        call_over_session(dispatcher, name, arguments)

    assert error_info.value.error.code == code
    assert fake_github.calls == []


@pytest.mark.unit
def test_session_surfaces_upstream_failure_as_internal_error(
    dispatcher: ToolDispatcher, fake_github: FakeGitHubService
) -> None:
    fake_github.failure = RuntimeError("connection reset")

    with pytest.raises(McpError) as error_info:
        call_over_session(dispatcher, "get_pr_details", {"pr_url": PR_URL})

    assert error_info.value.error.code == INTERNAL_ERROR
    assert error_info.value.error.message == "Tool execution failed: connection reset"
