"""Typer CLI for the PR review MCP server."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Annotated

import httpx
import typer

from pr_review_mcp.config import ConfigError, Settings, load_settings
from pr_review_mcp.errors import BackendCommunicationError
from pr_review_mcp.github_client import (
    GitHubApiError,
    GitHubAuthError,
    GitHubInputError,
    GitHubService,
    build_github_client,
    fetch_pull_request_metadata,
    parse_pr_url,
)
from pr_review_mcp.hosted import run_hosted
from pr_review_mcp.observability import configure_logging
from pr_review_mcp.output import render_review_markdown
from pr_review_mcp.runtime import open_runtime
from pr_review_mcp.schema import ReviewOutcome
from pr_review_mcp.server import run_stdio
from pr_review_mcp.tools import build_default_registry

app = typer.Typer(help="MCP tool server and tool-calling reviewer for GitHub pull requests.")


def _settings() -> Settings:
    try:
        settings = load_settings()
    except ConfigError as error:
        typer.echo(f"Configuration error: {error}", err=True)
        raise typer.Exit(code=2) from error
    configure_logging(settings.log_level)
    return settings


@app.command("serve")
def serve_command() -> None:
    """Serve the tools to an MCP client over stdio."""
    settings = _settings()
    asyncio.run(run_stdio(settings))


@app.command("hosted")
def hosted_command(
    host: Annotated[str | None, typer.Option(help="Bind address (defaults to HOST).")] = None,
    port: Annotated[int | None, typer.Option(help="Bind port (defaults to PORT).")] = None,
) -> None:
    """Run the hosted HTTP review endpoint."""
    settings = _settings()
    overrides: dict[str, object] = {}
    if host is not None:
        overrides["host"] = host
    if port is not None:
        overrides["port"] = port
    if overrides:
        settings = replace(settings, **overrides)
    if not settings.valid_api_keys:
        typer.echo("Warning: VALID_API_KEYS is empty; every /review request will be rejected.", err=True)
    run_hosted(settings)


async def _run_review(settings: Settings, pr_url: str) -> ReviewOutcome:
    async with open_runtime(settings) as runtime:
        return await asyncio.wait_for(
            runtime.require_orchestrator().review(pr_url),
            timeout=settings.review_timeout_seconds,
        )


@app.command("review")
def review_command(
    pr_url: Annotated[str, typer.Option(help="Pull request URL, e.g. https://github.com/o/r/pull/1.")],
    output_format: Annotated[
        str, typer.Option("--format", help="Output format: md|json.")
    ] = "md",
) -> None:
    """Run one tool-calling review session and print the result."""
    if output_format not in {"md", "json"}:
        raise typer.BadParameter("Expected md or json.", param_hint="--format")
    try:
        parse_pr_url(pr_url)
    except GitHubInputError as error:
        raise typer.BadParameter(str(error), param_hint="--pr-url") from error

    settings = _settings()
    try:
        outcome = asyncio.run(_run_review(settings, pr_url))
    except (GitHubAuthError, BackendCommunicationError) as error:
        typer.echo(f"Review failed: {error}", err=True)
        raise typer.Exit(code=1) from error
    except TimeoutError as error:
        typer.echo(
            f"Review failed: session exceeded {settings.review_timeout_seconds:g}s.", err=True
        )
        raise typer.Exit(code=1) from error

    if output_format == "json":
        typer.echo(outcome.model_dump_json(indent=2))
    else:
        typer.echo(render_review_markdown(outcome))


@app.command("tools")
def tools_command() -> None:
    """List the registered tools."""
    for definition in build_default_registry().definitions():
        marker = " [analysis]" if definition.needs_analysis else ""
        typer.echo(f"{definition.name}{marker}: {definition.description}")


async def _check_access(settings: Settings, token: str, pr_url: str | None) -> str:
    async with build_github_client(
        token,
        base_url=settings.github_api_url,
        timeout_seconds=settings.github_timeout_seconds,
    ) as client:
        login = await GitHubService(client).get_authenticated_login()
        if pr_url is not None:
            await fetch_pull_request_metadata(client=client, ref=parse_pr_url(pr_url))
        return login


@app.command("auth-check")
def auth_check_command(
    pr_url: Annotated[
        str | None,
        typer.Option(help="Optional pull request URL used for a read-access check."),
    ] = None,
) -> None:
    """Validate GitHub token setup and optional PR read access."""
    if pr_url is not None:
        try:
            parse_pr_url(pr_url)
        except GitHubInputError as error:
            raise typer.BadParameter(str(error), param_hint="--pr-url") from error

    settings = _settings()
    try:
        token = settings.require_github_token()
    except GitHubAuthError as error:
        typer.echo(f"GitHub auth check failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f"Token detected in {settings.github_token_source}.")

    try:
        login = asyncio.run(_check_access(settings, token, pr_url))
    except GitHubApiError as error:
        typer.echo(
            "GitHub auth check failed: "
            f"status={error.status_code} endpoint={error.endpoint}."
        )
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"GitHub auth check failed: network error ({error}).")
        raise typer.Exit(code=1) from error

    typer.echo(f"Authenticated as GitHub user '{login}'.")
    if pr_url is not None:
        typer.echo(f"Pull request access check passed for {pr_url}.")
    typer.echo("GitHub token setup is valid.")
