"""Tests for the Typer CLI commands."""

from __future__ import annotations

import json

import httpx
import pytest
from pr_review_mcp import cli
from pr_review_mcp.config import ConfigError, Settings
from pr_review_mcp.errors import BackendCommunicationError
from pr_review_mcp.schema import ReviewOutcome, ReviewStats, ReviewStatus
from typer.testing import CliRunner

runner = CliRunner()

PR_URL = "https://github.com/acme/widget/pull/42"


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)


def use_settings(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> None:
    monkeypatch.setattr(cli, "load_settings", lambda: settings)


def use_github(monkeypatch: pytest.MonkeyPatch, handler) -> None:  # type: ignore[no-untyped-def]
    """Route the CLI's GitHub client through a mock transport."""

    def fake_build_github_client(token: str | None, **kwargs: object) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url="https://api.github.com", transport=httpx.MockTransport(handler))

    monkeypatch.setattr(cli, "build_github_client", fake_build_github_client)


def make_outcome(status: ReviewStatus = ReviewStatus.OK) -> ReviewOutcome:
    return ReviewOutcome(
        pr_url=PR_URL,
        status=status,
        message="Solid change; add a regression test for the retry path.",
        model_used="gemini-2.0-flash",
        tools_used=["get_review_prompts", "get_pr_details", "analyze_code_quality"],
        warnings=["1 file(s) missing patch content (binary or truncated): logo.png"],
        stats=ReviewStats(model_turns=4, tool_calls=3),
    )


@pytest.mark.unit
def test_auth_check_fails_when_token_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    use_settings(monkeypatch, Settings())

    result = runner.invoke(cli.app, ["auth-check"])

    assert result.exit_code == 1
    assert "GitHub auth check failed" in result.output


@pytest.mark.unit
def test_auth_check_succeeds_with_pr(monkeypatch: pytest.MonkeyPatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/user":
            return httpx.Response(200, json={"login": "octocat"})
        assert request.url.path == "/repos/acme/widget/pulls/42"
        return httpx.Response(
            200,
            json={
                "id": 1,
                "number": 42,
                "title": "Title",
                "body": None,
                "state": "open",
                "html_url": PR_URL,
                "user": {"login": "octocat"},
                "base": {"ref": "main", "sha": "base-sha"},
                "head": {"ref": "branch", "sha": "head-sha"},
            },
        )

    use_settings(monkeypatch, Settings(github_token="token", github_token_source="GITHUB_TOKEN"))
    use_github(monkeypatch, handler)

    result = runner.invoke(cli.app, ["auth-check", "--pr-url", PR_URL])

    assert result.exit_code == 0
    assert "Token detected in GITHUB_TOKEN." in result.output
    assert "Authenticated as GitHub user 'octocat'." in result.output
    assert f"Pull request access check passed for {PR_URL}." in result.output
    assert "GitHub token setup is valid." in result.output


@pytest.mark.unit
def test_auth_check_reports_api_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    use_settings(monkeypatch, Settings(github_token="bad", github_token_source="GH_TOKEN"))
    use_github(monkeypatch, lambda request: httpx.Response(401, json={"message": "Bad credentials"}))

    result = runner.invoke(cli.app, ["auth-check"])

    assert result.exit_code == 1
    assert "status=401 endpoint=/user." in result.output


@pytest.mark.unit
def test_auth_check_rejects_malformed_pr_url(monkeypatch: pytest.MonkeyPatch) -> None:
    use_settings(monkeypatch, Settings(github_token="token"))

    result = runner.invoke(cli.app, ["auth-check", "--pr-url", "https://github.com/acme/widget"])

    assert result.exit_code == 2


@pytest.mark.unit
def test_config_errors_exit_with_usage_code(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_settings() -> Settings:
        raise ConfigError("Invalid integer for PORT: 'http'.")

    monkeypatch.setattr(cli, "load_settings", broken_settings)

    result = runner.invoke(cli.app, ["auth-check"])

    assert result.exit_code == 2
    assert "Configuration error: Invalid integer for PORT" in result.output


@pytest.mark.unit
def test_tools_lists_every_registered_tool() -> None:
    result = runner.invoke(cli.app, ["tools"])

    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert len(lines) == 14
    assert lines[0].startswith("get_pr_details: ")
    assert any(line.startswith("analyze_code_quality [analysis]: ") for line in lines)


@pytest.mark.unit
def test_review_prints_markdown(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_run_review(settings: Settings, pr_url: str) -> ReviewOutcome:
        return make_outcome()

    use_settings(monkeypatch, Settings())
    monkeypatch.setattr(cli, "_run_review", fake_run_review)

    result = runner.invoke(cli.app, ["review", "--pr-url", PR_URL])

    assert result.exit_code == 0
    assert f"# Review of {PR_URL}" in result.output
    assert "## Warnings" in result.output


@pytest.mark.unit
def test_review_prints_json(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_run_review(settings: Settings, pr_url: str) -> ReviewOutcome:
        return make_outcome(ReviewStatus.DEGRADED)

    use_settings(monkeypatch, Settings())
    monkeypatch.setattr(cli, "_run_review", fake_run_review)

    result = runner.invoke(cli.app, ["review", "--pr-url", PR_URL, "--format", "json"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["status"] == "degraded"
    assert payload["tools_used"] == ["analyze_code_quality", "get_pr_details", "get_review_prompts"]


@pytest.mark.unit
def test_review_reports_backend_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_run_review(settings: Settings, pr_url: str) -> ReviewOutcome:
        raise BackendCommunicationError("Gemini request failed with status 503.")

    use_settings(monkeypatch, Settings())
    monkeypatch.setattr(cli, "_run_review", fake_run_review)

    result = runner.invoke(cli.app, ["review", "--pr-url", PR_URL])

    assert result.exit_code == 1
    assert "Review failed: Gemini request failed with status 503." in result.output


@pytest.mark.unit
def test_review_requires_tokens(monkeypatch: pytest.MonkeyPatch) -> None:
    use_settings(monkeypatch, Settings())

    result = runner.invoke(cli.app, ["review", "--pr-url", PR_URL])

    assert result.exit_code == 1
    assert "Review failed: Missing GitHub token" in result.output


@pytest.mark.unit
@pytest.mark.parametrize(
    "arguments",
    [
        ["review", "--pr-url", "https://github.com/acme/widget/pull/x"],
        ["review", "--pr-url", PR_URL, "--format", "xml"],
    ],
)
def test_review_rejects_bad_options(arguments: list[str]) -> None:
    result = runner.invoke(cli.app, arguments)

    assert result.exit_code == 2
