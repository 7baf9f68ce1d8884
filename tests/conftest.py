"""Shared pytest fixtures and test-run configuration."""

from __future__ import annotations

import os
from typing import Any

import pytest
from pr_review_mcp.analysis import AnalysisService
from pr_review_mcp.dispatcher import ToolDispatcher
from pr_review_mcp.github_client import (
    PullRequestCommit,
    PullRequestDetails,
    PullRequestFile,
    PullRequestMeta,
    PullRequestRef,
    parse_head_changed_ranges_from_patch,
    parse_pr_url,
)
from pr_review_mcp.tools import build_default_registry


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom pytest options for integration test execution."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked as integration (external dependencies).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly enabled."""
    run_integration = config.getoption("--run-integration")
    env_enabled = os.getenv("RUN_INTEGRATION_TESTS") == "1"
    if run_integration or env_enabled:
        return

    skip_marker = pytest.mark.skip(
        reason=(
            "Integration tests are disabled by default. "
            "Use --run-integration or set RUN_INTEGRATION_TESTS=1."
        )
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_marker)


PR_URL = "https://github.com/acme/widget/pull/42"


def build_pull_file(
    filename: str,
    patch: str | None = "@@ -1,1 +1,2 @@\n context\n+added line",
    *,
    status: str = "modified",
    previous_filename: str | None = None,
) -> PullRequestFile:
    """Build a changed file with counts derived from its patch."""
    lines = (patch or "").splitlines()
    additions = sum(1 for line in lines if line.startswith("+") and not line.startswith("+++"))
    deletions = sum(1 for line in lines if line.startswith("-") and not line.startswith("---"))
    return PullRequestFile(
        filename=filename,
        status=status,
        additions=additions,
        deletions=deletions,
        changes=additions + deletions,
        patch=patch,
        blob_url=f"https://github.com/acme/widget/blob/head-sha/{filename}",
        previous_filename=previous_filename,
        changed_ranges=parse_head_changed_ranges_from_patch(patch) if patch else (),
    )


def build_pr_details(*files: PullRequestFile, pr_url: str = PR_URL) -> PullRequestDetails:
    """Build a pull request aggregate around the given files."""
    ref = parse_pr_url(pr_url)
    metadata = PullRequestMeta(
        id=1001,
        number=ref.number,
        title="Fix race condition",
        body="Details",
        state="open",
        author="octocat",
        html_url=pr_url,
        created_at="2024-05-01T10:00:00Z",
        updated_at="2024-05-02T10:00:00Z",
        base_branch="main",
        base_sha="base-sha",
        head_branch="feature/race-fix",
        head_sha="head-sha",
        mergeable=True,
        additions=sum(pull_file.additions for pull_file in files),
        deletions=sum(pull_file.deletions for pull_file in files),
        changed_files=len(files),
    )
    return PullRequestDetails(
        ref=ref,
        metadata=metadata,
        files=tuple(files),
        commits=(
            PullRequestCommit(sha="abc123", message="Fix race", author="Octo Cat", date=None),
        ),
    )


class FakeGitHubService:
    """In-memory stand-in for GitHubService that records every call."""

    def __init__(self, details: PullRequestDetails | None = None) -> None:
        self.details = details or build_pr_details(build_pull_file("src/app.py"))
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.failure: Exception | None = None

    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))
        if self.failure is not None:
            raise self.failure

    async def get_pr_details(self, pr_url: str) -> PullRequestDetails:
        self._record("get_pr_details", pr_url)
        return self.details

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str) -> str | None:
        self._record("get_file_content", owner, repo, path, ref)
        return "print('hi')\n"

    async def create_review(
        self,
        ref: PullRequestRef,
        *,
        body: str,
        event: str = "COMMENT",
        comments: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        self._record("create_review", ref, body=body, event=event, comments=comments)
        return {"id": 77, "html_url": f"{PR_URL}#pullrequestreview-77"}

    async def get_repo_languages(self, owner: str, repo: str) -> dict[str, int]:
        self._record("get_repo_languages", owner, repo)
        return {"Python": 9000, "Shell": 120}

    async def get_repo_readme(self, owner: str, repo: str) -> str | None:
        self._record("get_repo_readme", owner, repo)
        return "# widget\n"


@pytest.fixture
def fake_github() -> FakeGitHubService:
    return FakeGitHubService()


@pytest.fixture
def dispatcher(fake_github: FakeGitHubService) -> ToolDispatcher:
    """Dispatcher over the built-in registry with an in-memory GitHub collaborator."""
    return ToolDispatcher(
        build_default_registry(),
        github=fake_github,  # type: ignore[arg-type]
        analysis=AnalysisService(),
    )
