"""Resolve tool invocations to handlers and normalize their failures."""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any

import structlog

from pr_review_mcp.analysis import AnalysisService
from pr_review_mcp.errors import (
    InvalidArgumentsError,
    ToolExecutionError,
    UnknownToolError,
)
from pr_review_mcp.github_client import GitHubInputError, GitHubService
from pr_review_mcp.tools import ToolDefinition, ToolRegistry, ToolResult

logger = structlog.get_logger(__name__)


class ToolDispatcher:
    """Shared, read-only entry point for executing registered tools.

    Collaborators are chosen from each definition's ``needs_analysis`` tag:
    platform-only handlers receive ``github``; analysis handlers also
    receive ``analysis``. The dispatcher never retries a handler.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        github: GitHubService,
        analysis: AnalysisService,
    ) -> None:
        self._registry = registry
        self._github = github
        self._analysis = analysis

    def list_tools(self) -> tuple[ToolDefinition, ...]:
        """Return every registered tool definition in registration order."""
        return self._registry.definitions()

    def is_registered(self, name: str) -> bool:
        return name in self._registry

    async def invoke(self, name: str, arguments: Mapping[str, Any] | None = None) -> ToolResult:
        """Run one tool and return its JSON result; raise a ToolError subclass on failure."""
        tool = self._registry.get(name)
        if tool is None:
            logger.warning("tool_unknown", tool=name)
            raise UnknownToolError(name)

        started = time.perf_counter()
        try:
            if tool.definition.needs_analysis:
                payload = await tool.handler(
                    arguments or {}, github=self._github, analysis=self._analysis
                )
            else:
                payload = await tool.handler(arguments or {}, github=self._github)
        except InvalidArgumentsError:
            logger.info("tool_invalid_arguments", tool=name)
            raise
        except GitHubInputError as error:
            logger.info("tool_invalid_arguments", tool=name, error=str(error))
            raise InvalidArgumentsError(str(error), tool_name=name) from error
        except Exception as error:
            logger.warning(
                "tool_upstream_failure",
                tool=name,
                error_type=type(error).__name__,
                error=str(error),
            )
            raise ToolExecutionError(str(error), tool_name=name) from error

        logger.debug(
            "tool_invoked",
            tool=name,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return ToolResult.from_payload(payload)
