"""Schema contract for review session results and hosted requests."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pr_review_mcp.github_client import GitHubInputError, parse_pr_url

SCHEMA_VERSION = "1.0"


class ReviewStatus(StrEnum):
    """Review session completion status."""

    OK = "ok"
    DEGRADED = "degraded"


class ReviewStats(BaseModel):
    """Per-session counters reported alongside the answer."""

    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    model_turns: int = Field(default=0, ge=0)
    tool_calls: int = Field(default=0, ge=0)
    tool_errors: int = Field(default=0, ge=0)
    forcing_attempts: int = Field(default=0, ge=0)
    gate_nudges: int = Field(default=0, ge=0)
    duration_seconds: float = Field(default=0.0, ge=0.0)


class ReviewOutcome(BaseModel):
    """Final result of one review session."""

    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    schema_version: str = SCHEMA_VERSION
    pr_url: str = Field(min_length=1)
    status: ReviewStatus
    message: str
    model_used: str
    tools_used: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    stats: ReviewStats = Field(default_factory=ReviewStats)

    @field_validator("tools_used")
    @classmethod
    def sort_tools_used(cls, value: list[str]) -> list[str]:
        """Report distinct tool names in a stable order."""
        return sorted(set(value))


class ReviewRequest(BaseModel):
    """Body of the hosted ``POST /review`` endpoint."""

    model_config = ConfigDict(extra="ignore")

    pr: str = Field(min_length=1)

    @field_validator("pr")
    @classmethod
    def validate_pr_url(cls, value: str) -> str:
        try:
            parse_pr_url(value)
        except GitHubInputError as error:
            raise ValueError(str(error)) from error
        return value.strip()
