"""Hosted HTTP mode: one-shot review endpoint with auth and rate limiting."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict, deque
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
import uvicorn
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from pr_review_mcp.config import Settings
from pr_review_mcp.orchestrator import ReviewOrchestrator
from pr_review_mcp.runtime import open_runtime
from pr_review_mcp.schema import ReviewRequest

SERVICE_NAME = "PR Review MCP Server (Hosted Mode)"

logger = structlog.get_logger(__name__)


class SlidingWindowRateLimiter:
    """Per-client request log trimmed to the trailing window."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._hits: defaultdict[str, deque[float]] = defaultdict(deque)

    def allow(self, client_id: str) -> bool:
        now = self._clock()
        hits = self._hits[client_id]
        while hits and hits[0] <= now - self._window_seconds:
            hits.popleft()
        if len(hits) >= self._max_requests:
            return False
        hits.append(now)
        return True


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(settings: Settings, *, orchestrator: ReviewOrchestrator | None = None) -> Starlette:
    """Build the hosted app; clients are opened in the lifespan unless an orchestrator is given."""
    limiter = SlidingWindowRateLimiter(
        settings.rate_limit_max_requests, settings.rate_limit_window_seconds
    )
    valid_api_keys = frozenset(settings.valid_api_keys)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if getattr(app.state, "orchestrator", None) is not None:
            yield
            return
        async with open_runtime(settings) as runtime:
            app.state.orchestrator = runtime.require_orchestrator()
            logger.info("hosted_started", host=settings.host, port=settings.port, **settings.redacted())
            yield
        logger.info("hosted_stopped")

    async def health(request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "healthy",
                "timestamp": datetime.now(UTC).isoformat(),
                "service": SERVICE_NAME,
            }
        )

    async def review(request: Request) -> JSONResponse:
        client_ip = request.client.host if request.client else "unknown"
        if not limiter.allow(client_ip):
            logger.info("review_rate_limited", client_ip=client_ip)
            return _error("Too many requests from this IP", 429)

        api_key = _bearer_token(request)
        if api_key is None or api_key not in valid_api_keys:
            return _error("Invalid or missing API key", 401)

        try:
            body = await request.json()
        except ValueError:
            return _error("Request body must be JSON", 400)
        if not isinstance(body, dict) or not body.get("pr"):
            return _error("PR URL is required", 400)
        try:
            review_request = ReviewRequest.model_validate(body)
        except ValidationError as error:
            return _error(error.errors()[0]["msg"], 400)

        session_orchestrator: ReviewOrchestrator = request.app.state.orchestrator
        try:
            outcome = await asyncio.wait_for(
                session_orchestrator.review(review_request.pr),
                timeout=settings.review_timeout_seconds,
            )
        except TimeoutError:
            logger.warning("review_timed_out", pr_url=review_request.pr)
            return _error("Failed to review PR", 500)
        except Exception:
            logger.exception("review_failed", pr_url=review_request.pr)
            return _error("Failed to review PR", 500)
        return JSONResponse(outcome.model_dump(mode="json"))

    async def not_found(request: Request, exc: HTTPException) -> JSONResponse:
        return _error("Endpoint not found", 404)

    app = Starlette(
        routes=[
            Route("/health", health, methods=["GET"]),
            Route("/review", review, methods=["POST"]),
        ],
        exception_handlers={404: not_found},
        lifespan=lifespan,
    )
    if orchestrator is not None:
        app.state.orchestrator = orchestrator
    return app


def run_hosted(settings: Settings) -> None:
    """Serve the hosted app with uvicorn."""
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )
