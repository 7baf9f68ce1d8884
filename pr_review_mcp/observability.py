"""Logging setup and per-session telemetry."""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass, field

import structlog

from pr_review_mcp.schema import ReviewStats


def configure_logging(level: str = "info") -> None:
    """Render structlog events to stderr; stdout carries the MCP stdio channel."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


@dataclass(slots=True)
class SessionTelemetry:
    """Counters for one review session."""

    pr_url: str
    model_turns: int = 0
    tool_calls: int = 0
    tool_errors: int = 0
    forcing_attempts: int = 0
    gate_nudges: int = 0
    warnings: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)

    def to_stats(self) -> ReviewStats:
        return ReviewStats(
            model_turns=self.model_turns,
            tool_calls=self.tool_calls,
            tool_errors=self.tool_errors,
            forcing_attempts=self.forcing_attempts,
            gate_nudges=self.gate_nudges,
            duration_seconds=round(time.monotonic() - self.started_at, 3),
        )
