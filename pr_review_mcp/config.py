"""Process configuration loaded once from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from pr_review_mcp.errors import BackendAuthError
from pr_review_mcp.github_client import GITHUB_API_BASE_URL, GitHubAuthError

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""


@dataclass(frozen=True, slots=True)
class Settings:
    """Runtime settings passed explicitly to every component."""

    github_token: str | None = None
    github_token_source: str | None = None
    github_api_url: str = GITHUB_API_BASE_URL
    github_timeout_seconds: float = 20.0
    gemini_api_key: str | None = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL
    gemini_timeout_seconds: float = 60.0
    min_distinct_tools: int = 3
    short_answer_chars: int = 50
    forcing_attempts: int = 3
    max_model_turns: int = 25
    review_timeout_seconds: float = 300.0
    host: str = "0.0.0.0"
    port: int = 3000
    valid_api_keys: tuple[str, ...] = ()
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: float = 900.0
    log_level: str = "info"

    def require_github_token(self) -> str:
        if not self.github_token:
            raise GitHubAuthError("Missing GitHub token. Set GITHUB_TOKEN (preferred) or GH_TOKEN.")
        return self.github_token

    def require_gemini_api_key(self) -> str:
        if not self.gemini_api_key:
            raise BackendAuthError("GEMINI_API_KEY environment variable is required.")
        return self.gemini_api_key

    def redacted(self) -> dict[str, object]:
        """Return a loggable view with secrets masked."""
        return {
            "github_token": "[SET]" if self.github_token else "[NOT SET]",
            "github_token_source": self.github_token_source,
            "github_api_url": self.github_api_url,
            "gemini_api_key": "[SET]" if self.gemini_api_key else "[NOT SET]",
            "gemini_model": self.gemini_model,
            "min_distinct_tools": self.min_distinct_tools,
            "short_answer_chars": self.short_answer_chars,
            "forcing_attempts": self.forcing_attempts,
            "max_model_turns": self.max_model_turns,
            "review_timeout_seconds": self.review_timeout_seconds,
            "host": self.host,
            "port": self.port,
            "valid_api_keys": f"[{len(self.valid_api_keys)} configured]",
            "rate_limit_max_requests": self.rate_limit_max_requests,
            "rate_limit_window_seconds": self.rate_limit_window_seconds,
            "log_level": self.log_level,
        }


def _read_int(environ: Mapping[str, str], key: str, default: int, *, minimum: int = 0) -> int:
    raw_value = environ.get(key)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = int(raw_value.strip())
    except ValueError as error:
        raise ConfigError(f"Invalid integer for {key}: '{raw_value}'.") from error
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {value}.")
    return value


def _read_float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw_value = environ.get(key)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = float(raw_value.strip())
    except ValueError as error:
        raise ConfigError(f"Invalid number for {key}: '{raw_value}'.") from error
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {value}.")
    return value


def _read_csv(environ: Mapping[str, str], key: str) -> tuple[str, ...]:
    raw_value = environ.get(key, "")
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


def settings_from_mapping(environ: Mapping[str, str]) -> Settings:
    """Build settings from an explicit environment mapping."""
    github_token: str | None = None
    github_token_source: str | None = None
    for key in ("GITHUB_TOKEN", "GH_TOKEN"):
        if environ.get(key):
            github_token = environ[key]
            github_token_source = key
            break

    return Settings(
        github_token=github_token,
        github_token_source=github_token_source,
        github_api_url=environ.get("GITHUB_API_URL") or GITHUB_API_BASE_URL,
        github_timeout_seconds=_read_float(environ, "GITHUB_TIMEOUT_SECONDS", 20.0),
        gemini_api_key=environ.get("GEMINI_API_KEY") or None,
        gemini_model=environ.get("GEMINI_MODEL") or DEFAULT_GEMINI_MODEL,
        gemini_base_url=environ.get("GEMINI_BASE_URL") or DEFAULT_GEMINI_BASE_URL,
        gemini_timeout_seconds=_read_float(environ, "GEMINI_TIMEOUT_SECONDS", 60.0),
        min_distinct_tools=_read_int(environ, "REVIEW_MIN_DISTINCT_TOOLS", 3),
        short_answer_chars=_read_int(environ, "REVIEW_SHORT_ANSWER_CHARS", 50),
        forcing_attempts=_read_int(environ, "REVIEW_FORCING_ATTEMPTS", 3),
        max_model_turns=_read_int(environ, "REVIEW_MAX_MODEL_TURNS", 25, minimum=1),
        review_timeout_seconds=_read_float(environ, "REVIEW_TIMEOUT_SECONDS", 300.0),
        host=environ.get("HOST") or "0.0.0.0",
        port=_read_int(environ, "PORT", 3000, minimum=1),
        valid_api_keys=_read_csv(environ, "VALID_API_KEYS"),
        rate_limit_max_requests=_read_int(environ, "RATE_LIMIT_MAX_REQUESTS", 100, minimum=1),
        rate_limit_window_seconds=_read_float(environ, "RATE_LIMIT_WINDOW_SECONDS", 900.0),
        log_level=(environ.get("LOG_LEVEL") or "info").lower(),
    )


def load_settings() -> Settings:
    """Load `.env` from the working directory, then read the process environment."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    return settings_from_mapping(os.environ)
