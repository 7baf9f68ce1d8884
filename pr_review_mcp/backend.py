"""Generative backend protocol and the Gemini REST implementation."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import structlog

from pr_review_mcp.config import Settings
from pr_review_mcp.conversation import (
    ConversationTurn,
    ModelText,
    ToolRequest,
    ToolResponse,
    UserText,
)
from pr_review_mcp.errors import BackendAuthError, BackendCommunicationError
from pr_review_mcp.tools import ToolDefinition

logger = structlog.get_logger(__name__)

# Gemini function declarations accept an OpenAPI subset; anything else is rejected.
ALLOWED_SCHEMA_KEYS = frozenset(
    {"type", "description", "enum", "properties", "required", "items", "format", "nullable"}
)


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ModelReply:
    """One backend turn: tool requests, a text answer, or both."""

    text: str = ""
    tool_calls: tuple[ToolInvocation, ...] = ()

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class ModelBackend(Protocol):
    model_name: str

    async def generate(
        self,
        turns: Sequence[ConversationTurn],
        tools: Sequence[ToolDefinition],
    ) -> ModelReply: ...


def to_gemini_schema(schema: Any) -> Any:
    """Strip keys Gemini does not accept, recursing into properties and items."""
    if isinstance(schema, list):
        return [to_gemini_schema(item) for item in schema]
    if not isinstance(schema, dict):
        return schema
    converted: dict[str, Any] = {}
    for key, value in schema.items():
        if key not in ALLOWED_SCHEMA_KEYS:
            continue
        if key == "properties" and isinstance(value, dict):
            converted[key] = {name: to_gemini_schema(prop) for name, prop in value.items()}
        elif key == "items":
            converted[key] = to_gemini_schema(value)
        else:
            converted[key] = value
    return converted


def function_declarations(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    """Convert tool definitions into Gemini function declarations."""
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "parameters": to_gemini_schema(tool.input_schema),
        }
        for tool in tools
    ]


def _turn_part(turn: ConversationTurn) -> tuple[str, str, dict[str, Any]] | None:
    """Return (role, kind, part) for a turn, or None when it carries nothing."""
    if isinstance(turn, UserText):
        return ("user", "text", {"text": turn.text}) if turn.text else None
    if isinstance(turn, ModelText):
        return ("model", "text", {"text": turn.text}) if turn.text else None
    if isinstance(turn, ToolRequest):
        return "model", "call", {"functionCall": {"name": turn.name, "args": turn.arguments}}
    response = turn.payload if isinstance(turn.payload, dict) else {"result": turn.payload}
    return "user", "response", {"functionResponse": {"name": turn.name, "response": response}}


def build_contents(turns: Sequence[ConversationTurn]) -> list[dict[str, Any]]:
    """Map turns to Gemini contents, grouping consecutive calls and responses."""
    contents: list[dict[str, Any]] = []
    previous_kind: str | None = None
    for turn in turns:
        mapped = _turn_part(turn)
        if mapped is None:
            continue
        role, kind, part = mapped
        if contents and kind in {"call", "response"} and kind == previous_kind:
            contents[-1]["parts"].append(part)
        else:
            contents.append({"role": role, "parts": [part]})
        previous_kind = kind
    return contents


def parse_reply(payload: Any) -> ModelReply:
    """Extract text and function calls from a generateContent response body."""
    if not isinstance(payload, dict):
        raise BackendCommunicationError("Gemini response was not a JSON object.")
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        feedback = payload.get("promptFeedback") or {}
        reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        raise BackendCommunicationError(
            f"Gemini returned no candidates{f' (blocked: {reason})' if reason else ''}."
        )

    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts", []) if isinstance(content, dict) else []
    texts: list[str] = []
    calls: list[ToolInvocation] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        if isinstance(part.get("text"), str):
            texts.append(part["text"])
        function_call = part.get("functionCall")
        if isinstance(function_call, dict) and isinstance(function_call.get("name"), str):
            arguments = function_call.get("args")
            calls.append(
                ToolInvocation(
                    name=function_call["name"],
                    arguments=arguments if isinstance(arguments, dict) else {},
                )
            )
    return ModelReply(text="".join(texts), tool_calls=tuple(calls))


class GeminiBackend:
    """Gemini ``generateContent`` over httpx with function calling enabled."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._api_key = settings.require_gemini_api_key()
        self.model_name = settings.gemini_model

    @property
    def endpoint(self) -> str:
        return f"/v1beta/models/{self.model_name}:generateContent"

    def build_request_body(
        self,
        turns: Sequence[ConversationTurn],
        tools: Sequence[ToolDefinition],
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"contents": build_contents(turns)}
        if tools:
            body["tools"] = [{"functionDeclarations": function_declarations(tools)}]
        return body

    async def generate(
        self,
        turns: Sequence[ConversationTurn],
        tools: Sequence[ToolDefinition],
    ) -> ModelReply:
        body = self.build_request_body(turns, tools)
        try:
            response = await self._client.post(
                self.endpoint,
                json=body,
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.HTTPError as error:
            raise BackendCommunicationError(f"Gemini request failed: {error}") from error

        if response.status_code in {401, 403}:
            raise BackendAuthError(
                f"Gemini rejected the API key (status {response.status_code}).",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise BackendCommunicationError(
                f"Gemini request failed with status {response.status_code}.",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as error:
            raise BackendCommunicationError("Gemini response was not valid JSON.") from error

        reply = parse_reply(payload)
        logger.debug(
            "backend_reply",
            model=self.model_name,
            tool_calls=[call.name for call in reply.tool_calls],
            text_chars=len(reply.text),
        )
        return reply


def build_gemini_client(settings: Settings) -> httpx.AsyncClient:
    """Build the async HTTP client for the Gemini REST API."""
    return httpx.AsyncClient(
        base_url=settings.gemini_base_url,
        headers={"Content-Type": "application/json"},
        timeout=settings.gemini_timeout_seconds,
    )
