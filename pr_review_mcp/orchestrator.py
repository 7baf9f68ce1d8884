"""Multi-turn tool-calling review session against a generative backend.

A session moves through INIT -> AWAITING_MODEL -> EXECUTING_TOOLS or
HAVE_ANSWER -> ... -> DONE. Tool calls requested in one backend turn run
sequentially in request order so the transcript is deterministic. A text
answer is accepted only after ``min_distinct_tools`` registered tools have
been used. When the very first reply has no tool request and almost no
text, the session enters FORCING and retries with increasingly explicit
single-shot prompts; if none of them elicits a tool call the session ends
DEGRADED instead of raising.

Tool failures are recorded as ``{"error": message}`` and the session goes
on. Backend failures outside FORCING propagate to the caller.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum

import structlog

from pr_review_mcp.backend import ModelBackend, ModelReply, ToolInvocation
from pr_review_mcp.config import Settings
from pr_review_mcp.conversation import (
    ConversationLog,
    ModelText,
    ToolRequest,
    ToolResponse,
    UserText,
)
from pr_review_mcp.dispatcher import ToolDispatcher
from pr_review_mcp.errors import ToolError
from pr_review_mcp.github_client import parse_pr_url
from pr_review_mcp.observability import SessionTelemetry
from pr_review_mcp.prompts import (
    DEGRADED_MESSAGE,
    FINAL_REVIEW_PROMPT,
    FORCING_STRATEGIES,
    build_continue_prompt,
    build_initial_prompt,
)
from pr_review_mcp.schema import ReviewOutcome, ReviewStatus
from pr_review_mcp.tools import ToolDefinition

logger = structlog.get_logger(__name__)


class SessionState(StrEnum):
    INIT = "INIT"
    AWAITING_MODEL = "AWAITING_MODEL"
    EXECUTING_TOOLS = "EXECUTING_TOOLS"
    HAVE_ANSWER = "HAVE_ANSWER"
    FORCING = "FORCING"
    DONE = "DONE"


class ReviewOrchestrator:
    """Runs one independent review session per ``review`` call."""

    def __init__(
        self,
        dispatcher: ToolDispatcher,
        backend: ModelBackend,
        settings: Settings,
    ) -> None:
        self._dispatcher = dispatcher
        self._backend = backend
        self._min_distinct_tools = settings.min_distinct_tools
        self._short_answer_chars = settings.short_answer_chars
        self._forcing_attempts = min(settings.forcing_attempts, len(FORCING_STRATEGIES))
        self._max_model_turns = settings.max_model_turns

    async def review(self, pr_url: str) -> ReviewOutcome:
        pr_url = pr_url.strip()
        parse_pr_url(pr_url)

        telemetry = SessionTelemetry(pr_url=pr_url)
        tools = self._dispatcher.list_tools()
        tools_used: set[str] = set()
        log = ConversationLog()
        self._transition(telemetry, SessionState.INIT)
        log.append(UserText(build_initial_prompt(pr_url)))

        reply = await self._ask_backend(log, tools, telemetry)
        if not reply.has_tool_calls and self._is_short(reply.text):
            forced = await self._force_tool_use(pr_url, tools, telemetry)
            if forced is None:
                telemetry.warnings.append(
                    f"Backend produced no tool request after {telemetry.forcing_attempts} "
                    "forcing attempt(s)."
                )
                return self._finish(
                    telemetry, tools_used, DEGRADED_MESSAGE, status=ReviewStatus.DEGRADED
                )
            log, reply = forced

        final_requested = False
        while True:
            if reply.has_tool_calls:
                self._transition(telemetry, SessionState.EXECUTING_TOOLS, calls=len(reply.tool_calls))
                if reply.text:
                    log.append(ModelText(reply.text))
                for call in reply.tool_calls:
                    log.append(ToolRequest(name=call.name, arguments=dict(call.arguments)))
                for call in reply.tool_calls:
                    log.append(await self._execute(call, tools_used, telemetry))
            else:
                self._transition(telemetry, SessionState.HAVE_ANSWER, tools_used=len(tools_used))
                log.append(ModelText(reply.text))
                if len(tools_used) < self._min_distinct_tools:
                    telemetry.gate_nudges += 1
                    log.append(
                        UserText(build_continue_prompt(pr_url, tools_used, self._min_distinct_tools))
                    )
                elif self._is_short(reply.text) and not final_requested:
                    final_requested = True
                    log.append(UserText(FINAL_REVIEW_PROMPT))
                else:
                    return self._finish(telemetry, tools_used, reply.text, status=ReviewStatus.OK)

            if telemetry.model_turns >= self._max_model_turns:
                telemetry.warnings.append(
                    f"Stopped after {telemetry.model_turns} model turns without an accepted answer."
                )
                message = reply.text.strip() or DEGRADED_MESSAGE
                return self._finish(telemetry, tools_used, message, status=ReviewStatus.DEGRADED)

            reply = await self._ask_backend(log, tools, telemetry)

    async def _force_tool_use(
        self,
        pr_url: str,
        tools: Sequence[ToolDefinition],
        telemetry: SessionTelemetry,
    ) -> tuple[ConversationLog, ModelReply] | None:
        """Try each rephrasing as a fresh single-shot request; never raises."""
        self._transition(telemetry, SessionState.FORCING)
        for attempt, strategy in enumerate(FORCING_STRATEGIES[: self._forcing_attempts], start=1):
            telemetry.forcing_attempts += 1
            forced_log = ConversationLog((UserText(strategy(pr_url)),))
            try:
                reply = await self._ask_backend(forced_log, tools, telemetry)
            except Exception as error:
                logger.warning(
                    "forcing_attempt_failed",
                    pr_url=pr_url,
                    attempt=attempt,
                    error_type=type(error).__name__,
                    error=str(error),
                )
                continue
            if reply.has_tool_calls:
                logger.info("forcing_succeeded", pr_url=pr_url, attempt=attempt)
                return forced_log, reply
            logger.info("forcing_attempt_no_tool_call", pr_url=pr_url, attempt=attempt)
        return None

    async def _ask_backend(
        self,
        log: ConversationLog,
        tools: Sequence[ToolDefinition],
        telemetry: SessionTelemetry,
    ) -> ModelReply:
        self._transition(telemetry, SessionState.AWAITING_MODEL, turns=len(log))
        telemetry.model_turns += 1
        return await self._backend.generate(log.turns, tools)

    async def _execute(
        self,
        call: ToolInvocation,
        tools_used: set[str],
        telemetry: SessionTelemetry,
    ) -> ToolResponse:
        telemetry.tool_calls += 1
        if self._dispatcher.is_registered(call.name):
            tools_used.add(call.name)
        try:
            result = await self._dispatcher.invoke(call.name, call.arguments)
        except ToolError as error:
            telemetry.tool_errors += 1
            logger.info(
                "session_tool_failed",
                pr_url=telemetry.pr_url,
                tool=call.name,
                error_type=type(error).__name__,
                error=str(error),
            )
            return ToolResponse(name=call.name, payload={"error": str(error)}, is_error=True)
        logger.info("session_tool_ok", pr_url=telemetry.pr_url, tool=call.name)
        return ToolResponse(name=call.name, payload=result.payload())

    def _is_short(self, text: str) -> bool:
        return len(text.strip()) < self._short_answer_chars

    def _finish(
        self,
        telemetry: SessionTelemetry,
        tools_used: set[str],
        message: str,
        *,
        status: ReviewStatus,
    ) -> ReviewOutcome:
        self._transition(telemetry, SessionState.DONE, status=str(status))
        outcome = ReviewOutcome(
            pr_url=telemetry.pr_url,
            status=status,
            message=message,
            model_used=self._backend.model_name,
            tools_used=sorted(tools_used),
            warnings=list(telemetry.warnings),
            stats=telemetry.to_stats(),
        )
        logger.info(
            "session_summary",
            pr_url=telemetry.pr_url,
            status=str(status),
            tools_used=outcome.tools_used,
            **outcome.stats.model_dump(),
        )
        return outcome

    @staticmethod
    def _transition(telemetry: SessionTelemetry, state: SessionState, **details: object) -> None:
        logger.debug("session_state", pr_url=telemetry.pr_url, state=str(state), **details)
