"""Wire settings into HTTP clients, collaborators, the dispatcher, and the orchestrator."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog

from pr_review_mcp.analysis import AnalysisService
from pr_review_mcp.backend import GeminiBackend, build_gemini_client
from pr_review_mcp.config import Settings
from pr_review_mcp.dispatcher import ToolDispatcher
from pr_review_mcp.errors import BackendCommunicationError
from pr_review_mcp.github_client import GitHubService, build_github_client
from pr_review_mcp.orchestrator import ReviewOrchestrator
from pr_review_mcp.tools import build_default_registry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Runtime:
    dispatcher: ToolDispatcher
    orchestrator: ReviewOrchestrator | None = None

    def require_orchestrator(self) -> ReviewOrchestrator:
        """Return the review orchestrator or fail if no backend was opened."""
        if self.orchestrator is None:
            raise BackendCommunicationError("Runtime was opened without a generative backend.")
        return self.orchestrator


@asynccontextmanager
async def open_runtime(settings: Settings, *, with_backend: bool = True) -> AsyncIterator[Runtime]:
    """Open the HTTP clients for one process and close them on exit.

    ``with_backend=False`` skips the generative backend (stdio tool serving).
    A missing GitHub token is tolerated there and enforced otherwise.
    """
    token = settings.require_github_token() if with_backend else settings.github_token
    if token is None:
        logger.warning("github_token_missing", detail="GitHub tools will be unauthenticated")

    async with build_github_client(
        token,
        base_url=settings.github_api_url,
        timeout_seconds=settings.github_timeout_seconds,
    ) as github_http:
        dispatcher = ToolDispatcher(
            build_default_registry(),
            github=GitHubService(github_http),
            analysis=AnalysisService(),
        )
        if not with_backend:
            yield Runtime(dispatcher=dispatcher)
            return

        async with build_gemini_client(settings) as gemini_http:
            backend = GeminiBackend(gemini_http, settings)
            yield Runtime(
                dispatcher=dispatcher,
                orchestrator=ReviewOrchestrator(dispatcher, backend, settings),
            )
