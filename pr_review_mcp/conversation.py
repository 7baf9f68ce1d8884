"""Append-only transcript of one review session."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class UserText:
    text: str


@dataclass(frozen=True, slots=True)
class ModelText:
    text: str


@dataclass(frozen=True, slots=True)
class ToolRequest:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResponse:
    """Result of one requested tool; failures carry ``{"error": message}``."""

    name: str
    payload: Any
    is_error: bool = False


ConversationTurn = UserText | ModelText | ToolRequest | ToolResponse


class ConversationLog:
    """Ordered turns for one session; the orchestrator is the only writer."""

    def __init__(self, turns: tuple[ConversationTurn, ...] = ()) -> None:
        self._turns: list[ConversationTurn] = list(turns)

    def append(self, turn: ConversationTurn) -> None:
        self._turns.append(turn)

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)
