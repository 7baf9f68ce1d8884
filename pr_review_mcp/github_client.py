"""GitHub API wrapper, PR URL parsing, and auth helpers."""

from __future__ import annotations

import asyncio
import base64
import binascii
import re
from dataclasses import asdict, dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

GITHUB_API_BASE_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
PR_URL_PATTERN = re.compile(
    r"^(?:https?://)?(?P<host>[^/\s]+)/(?P<owner>[^/\s]+)/(?P<repo>[^/\s]+)"
    r"/pull/(?P<number>[1-9]\d*)(?:[/?#]\S*)?$"
)
HUNK_HEADER_PATTERN = re.compile(
    r"^@@ -(?P<base_start>\d+)(?:,(?P<base_count>\d+))? "
    r"\+(?P<head_start>\d+)(?:,(?P<head_count>\d+))? @@"
)
GITHUB_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
PER_PAGE = 100
REVIEW_EVENTS = ("APPROVE", "REQUEST_CHANGES", "COMMENT")


class GitHubAuthError(RuntimeError):
    """Raised when required GitHub authentication is missing."""


class GitHubInputError(ValueError):
    """Raised when PR URL, repository, or PR number inputs are invalid."""


class GitHubApiError(RuntimeError):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class GitHubRateLimitError(GitHubApiError):
    """Raised when GitHub API rate limiting prevents request completion."""


@dataclass(frozen=True, slots=True)
class PullRequestRef:
    """Owner, repository, and number parsed out of a pull request URL."""

    host: str
    owner: str
    repo: str
    number: int

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def path(self) -> str:
        return f"/{self.owner}/{self.repo}/pull/{self.number}"


@dataclass(frozen=True, slots=True)
class ChangedRange:
    """Span of changed line numbers in the PR head revision."""

    line_start: int
    line_end: int


@dataclass(frozen=True, slots=True)
class PullRequestMeta:
    """Normalized PR metadata."""

    id: int
    number: int
    title: str
    body: str
    state: str
    author: str
    html_url: str
    created_at: str | None
    updated_at: str | None
    base_branch: str
    base_sha: str
    head_branch: str
    head_sha: str
    mergeable: bool | None
    additions: int
    deletions: int
    changed_files: int


@dataclass(frozen=True, slots=True)
class PullRequestFile:
    """Changed file details from GitHub pull request files API."""

    filename: str
    status: str
    additions: int
    deletions: int
    changes: int
    patch: str | None
    blob_url: str | None = None
    previous_filename: str | None = None
    changed_ranges: tuple[ChangedRange, ...] = ()

    def to_dict(self, *, include_patch: bool = True) -> dict[str, Any]:
        """Return the tool payload entry for this file."""
        entry: dict[str, Any] = {
            "filename": self.filename,
            "status": self.status,
            "additions": self.additions,
            "deletions": self.deletions,
            "changes": self.changes,
            "blob_url": self.blob_url,
            "changed_ranges": [asdict(changed) for changed in self.changed_ranges],
        }
        if self.previous_filename is not None:
            entry["previous_filename"] = self.previous_filename
        if include_patch and self.patch:
            entry["patch"] = self.patch
        return entry


@dataclass(frozen=True, slots=True)
class PullRequestCommit:
    """One commit on a pull request branch."""

    sha: str
    message: str
    author: str
    date: str | None


@dataclass(frozen=True, slots=True)
class PullRequestReview:
    """A review already submitted on the pull request."""

    id: int
    user: str
    state: str
    body: str
    submitted_at: str | None


@dataclass(frozen=True, slots=True)
class PullRequestDetails:
    """Aggregate payload consumed by tool handlers and the analysis provider."""

    ref: PullRequestRef
    metadata: PullRequestMeta
    files: tuple[PullRequestFile, ...]
    commits: tuple[PullRequestCommit, ...] = ()
    existing_reviews: tuple[PullRequestReview, ...] = ()
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable view of the pull request."""
        return {
            "pr": asdict(self.metadata),
            "files": [pull_file.to_dict() for pull_file in self.files],
            "commits": [asdict(commit) for commit in self.commits],
            "existing_reviews": [asdict(review) for review in self.existing_reviews],
            "repository": {
                "owner": self.ref.owner,
                "repo": self.ref.repo,
                "full_name": self.ref.full_name,
            },
            "warnings": list(self.warnings),
        }


def parse_pr_url(pr_url: str) -> PullRequestRef:
    """Parse a `<host>/<owner>/<repo>/pull/<number>` URL."""
    match = PR_URL_PATTERN.match(pr_url.strip()) if isinstance(pr_url, str) else None
    if match is None:
        raise GitHubInputError(
            f"Invalid PR URL '{pr_url}'. Expected format is https://<host>/<owner>/<repo>/pull/<number>."
        )
    return PullRequestRef(
        host=match.group("host"),
        owner=match.group("owner"),
        repo=match.group("repo"),
        number=validate_pr_number(int(match.group("number"))),
    )


def validate_pr_number(pr_number: int) -> int:
    """Validate and normalize pull request number input."""
    if pr_number <= 0:
        raise GitHubInputError(f"Invalid PR number '{pr_number}'. Expected a positive integer.")
    return pr_number


def parse_head_changed_ranges_from_patch(patch: str) -> tuple[ChangedRange, ...]:
    """Group added lines of a unified diff into contiguous head-side spans."""
    added: list[int] = []
    head_line: int | None = None
    for line in patch.splitlines():
        header_match = HUNK_HEADER_PATTERN.match(line)
        if header_match is not None:
            head_line = int(header_match.group("head_start"))
        elif head_line is None:
            continue
        elif line.startswith("+"):
            added.append(head_line)
            head_line += 1
        elif line.startswith(" "):
            head_line += 1

    ranges: list[ChangedRange] = []
    for number in added:
        if ranges and ranges[-1].line_end == number - 1:
            ranges[-1] = ChangedRange(line_start=ranges[-1].line_start, line_end=number)
        else:
            ranges.append(ChangedRange(line_start=number, line_end=number))
    return tuple(ranges)


def _ensure_mapping(value: object, *, context: str) -> dict[str, Any]:
    """Ensure a response fragment is a JSON object."""
    if not isinstance(value, dict):
        raise GitHubApiError(
            f"Expected JSON object for {context}.",
            status_code=500,
            endpoint=context,
        )
    return value


def _require_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str:
    """Read a required string field from payload."""
    value = payload.get(key)
    if not isinstance(value, str):
        raise GitHubApiError(
            f"Expected string field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_int(payload: dict[str, Any], *, key: str, endpoint: str) -> int:
    """Read a required integer field from payload."""
    value = payload.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise GitHubApiError(
            f"Expected integer field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_object(payload: dict[str, Any], *, key: str, endpoint: str) -> dict[str, Any]:
    """Read a required object field from payload."""
    value = payload.get(key)
    if not isinstance(value, dict):
        raise GitHubApiError(
            f"Expected object field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _optional_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str | None:
    """Read a string-or-null field from payload."""
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise GitHubApiError(
            f"Expected '{key}' to be a string or null in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _optional_int(payload: dict[str, Any], *, key: str, default: int = 0) -> int:
    """Read a counter that GitHub omits on some list endpoints."""
    value = payload.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


def _user_login(payload: dict[str, Any], *, key: str = "user") -> str:
    """Read a login from a possibly-null user object (deleted accounts)."""
    user = payload.get(key)
    if isinstance(user, dict) and isinstance(user.get("login"), str):
        return user["login"]
    return "ghost"


def _is_retryable_status(status_code: int) -> bool:
    """Return whether a status code is retryable under policy."""
    return status_code == 429 or 500 <= status_code < 600


def _parse_retry_after_seconds(response: httpx.Response) -> float | None:
    """Parse Retry-After header as seconds if present and valid."""
    retry_after = response.headers.get("Retry-After")
    if retry_after is None:
        return None
    try:
        parsed_value = float(retry_after)
    except ValueError:
        return None
    if parsed_value < 0:
        return None
    return parsed_value


def _compute_retry_delay_seconds(response: httpx.Response, *, attempt_number: int) -> float:
    """Compute retry delay from Retry-After header or exponential backoff."""
    retry_after_seconds = _parse_retry_after_seconds(response)
    if retry_after_seconds is not None:
        return retry_after_seconds
    return DEFAULT_RETRY_BACKOFF_SECONDS * (2 ** (attempt_number - 1))


async def _sleep_for_retry(seconds: float) -> None:
    """Sleep helper for retry delays (wrapped for deterministic tests)."""
    await asyncio.sleep(seconds)


def _raise_http_error(response: httpx.Response, endpoint: str) -> None:
    """Raise a typed error for a non-success GitHub API response."""
    message = f"GitHub API request failed with status {response.status_code} for '{endpoint}'."
    if response.status_code == 429:
        raise GitHubRateLimitError(
            message,
            status_code=response.status_code,
            endpoint=endpoint,
        )
    raise GitHubApiError(
        message,
        status_code=response.status_code,
        endpoint=endpoint,
    )


async def _request_with_retries(
    client: httpx.AsyncClient,
    endpoint: str,
    *,
    accept_header: str | None = None,
    max_attempts: int = GITHUB_MAX_RETRIES,
    allow_not_found: bool = False,
) -> httpx.Response:
    """Perform a GET request with retry handling for 429/5xx responses."""
    headers = {"Accept": accept_header} if accept_header else None
    for attempt_number in range(1, max_attempts + 1):
        response = await client.get(endpoint, headers=headers)
        if response.status_code < 400:
            return response
        if allow_not_found and response.status_code == 404:
            return response

        should_retry = _is_retryable_status(response.status_code) and attempt_number < max_attempts
        if not should_retry:
            _raise_http_error(response, endpoint)

        delay_seconds = _compute_retry_delay_seconds(response, attempt_number=attempt_number)
        await _sleep_for_retry(delay_seconds)

    raise RuntimeError("Unexpected retry loop exit without a response.")


async def _request_json(client: httpx.AsyncClient, endpoint: str) -> dict[str, Any]:
    """Perform a JSON request against GitHub API."""
    response = await _request_with_retries(
        client,
        endpoint,
        accept_header="application/vnd.github+json",
    )
    return _ensure_mapping(response.json(), context=endpoint)


async def _request_json_pages(client: httpx.AsyncClient, base_endpoint: str) -> list[dict[str, Any]]:
    """Fetch every page of a list endpoint that returns JSON arrays of objects."""
    rows: list[dict[str, Any]] = []
    page = 1
    while True:
        endpoint = f"{base_endpoint}?per_page={PER_PAGE}&page={page}"
        response = await _request_with_retries(
            client,
            endpoint,
            accept_header="application/vnd.github+json",
        )
        payload = response.json()
        if not isinstance(payload, list):
            raise GitHubApiError(
                "Expected JSON array in GitHub response.",
                status_code=500,
                endpoint=endpoint,
            )
        for item in payload:
            if not isinstance(item, dict):
                raise GitHubApiError(
                    "Expected all array items to be JSON objects in GitHub response.",
                    status_code=500,
                    endpoint=endpoint,
                )
            rows.append(item)
        if len(payload) < PER_PAGE:
            break
        page += 1
    return rows


def _decode_content_payload(payload: dict[str, Any], *, endpoint: str) -> str | None:
    """Decode a contents API payload to text, or None for non-file/binary content."""
    content_type = _optional_str(payload, key="type", endpoint=endpoint)
    if content_type is not None and content_type != "file":
        return None
    content = _optional_str(payload, key="content", endpoint=endpoint)
    if content is None:
        return None
    encoding = _optional_str(payload, key="encoding", endpoint=endpoint)
    if encoding in {"utf-8", "utf8"}:
        return content
    if encoding != "base64":
        return None
    try:
        decoded_bytes = base64.b64decode(content, validate=False)
    except (binascii.Error, ValueError):
        return None
    try:
        return decoded_bytes.decode("utf-8")
    except UnicodeDecodeError:
        return None


async def fetch_pull_request_metadata(
    *,
    client: httpx.AsyncClient,
    ref: PullRequestRef,
) -> PullRequestMeta:
    """Fetch pull request metadata from GitHub."""
    endpoint = f"/repos/{ref.owner}/{ref.repo}/pulls/{ref.number}"

    payload = await _request_json(client, endpoint)
    base_payload = _require_object(payload, key="base", endpoint=endpoint)
    head_payload = _require_object(payload, key="head", endpoint=endpoint)
    mergeable = payload.get("mergeable")

    return PullRequestMeta(
        id=_require_int(payload, key="id", endpoint=endpoint),
        number=_require_int(payload, key="number", endpoint=endpoint),
        title=_require_str(payload, key="title", endpoint=endpoint),
        body=_optional_str(payload, key="body", endpoint=endpoint) or "",
        state=_require_str(payload, key="state", endpoint=endpoint),
        author=_user_login(payload),
        html_url=_require_str(payload, key="html_url", endpoint=endpoint),
        created_at=_optional_str(payload, key="created_at", endpoint=endpoint),
        updated_at=_optional_str(payload, key="updated_at", endpoint=endpoint),
        base_branch=_require_str(base_payload, key="ref", endpoint=endpoint),
        base_sha=_require_str(base_payload, key="sha", endpoint=endpoint),
        head_branch=_require_str(head_payload, key="ref", endpoint=endpoint),
        head_sha=_require_str(head_payload, key="sha", endpoint=endpoint),
        mergeable=mergeable if isinstance(mergeable, bool) else None,
        additions=_optional_int(payload, key="additions"),
        deletions=_optional_int(payload, key="deletions"),
        changed_files=_optional_int(payload, key="changed_files"),
    )


async def fetch_pull_request_files(
    *,
    client: httpx.AsyncClient,
    ref: PullRequestRef,
) -> tuple[PullRequestFile, ...]:
    """Fetch all changed files for a pull request with pagination."""
    endpoint = f"/repos/{ref.owner}/{ref.repo}/pulls/{ref.number}/files"
    files: list[PullRequestFile] = []
    for row in await _request_json_pages(client, endpoint):
        patch_value = _optional_str(row, key="patch", endpoint=endpoint)
        files.append(
            PullRequestFile(
                filename=_require_str(row, key="filename", endpoint=endpoint),
                status=_require_str(row, key="status", endpoint=endpoint),
                additions=_require_int(row, key="additions", endpoint=endpoint),
                deletions=_require_int(row, key="deletions", endpoint=endpoint),
                changes=_require_int(row, key="changes", endpoint=endpoint),
                patch=patch_value,
                blob_url=_optional_str(row, key="blob_url", endpoint=endpoint),
                previous_filename=_optional_str(row, key="previous_filename", endpoint=endpoint),
                changed_ranges=(
                    parse_head_changed_ranges_from_patch(patch_value)
                    if patch_value is not None
                    else ()
                ),
            )
        )
    return tuple(files)


async def fetch_pull_request_commits(
    *,
    client: httpx.AsyncClient,
    ref: PullRequestRef,
) -> tuple[PullRequestCommit, ...]:
    """Fetch the commits on a pull request branch."""
    endpoint = f"/repos/{ref.owner}/{ref.repo}/pulls/{ref.number}/commits"
    commits: list[PullRequestCommit] = []
    for row in await _request_json_pages(client, endpoint):
        commit_payload = _require_object(row, key="commit", endpoint=endpoint)
        author_payload = commit_payload.get("author")
        if not isinstance(author_payload, dict):
            author_payload = {}
        commits.append(
            PullRequestCommit(
                sha=_require_str(row, key="sha", endpoint=endpoint),
                message=_require_str(commit_payload, key="message", endpoint=endpoint),
                author=str(author_payload.get("name") or "unknown"),
                date=_optional_str(author_payload, key="date", endpoint=endpoint),
            )
        )
    return tuple(commits)


async def fetch_pull_request_reviews(
    *,
    client: httpx.AsyncClient,
    ref: PullRequestRef,
) -> tuple[PullRequestReview, ...]:
    """Fetch reviews already submitted on a pull request."""
    endpoint = f"/repos/{ref.owner}/{ref.repo}/pulls/{ref.number}/reviews"
    return tuple(
        PullRequestReview(
            id=_require_int(row, key="id", endpoint=endpoint),
            user=_user_login(row),
            state=_require_str(row, key="state", endpoint=endpoint),
            body=_optional_str(row, key="body", endpoint=endpoint) or "",
            submitted_at=_optional_str(row, key="submitted_at", endpoint=endpoint),
        )
        for row in await _request_json_pages(client, endpoint)
    )


async def fetch_pull_request_details(
    *,
    client: httpx.AsyncClient,
    ref: PullRequestRef,
) -> PullRequestDetails:
    """Fetch PR metadata, files, commits, and reviews into one aggregate."""
    metadata = await fetch_pull_request_metadata(client=client, ref=ref)
    files = await fetch_pull_request_files(client=client, ref=ref)
    commits = await fetch_pull_request_commits(client=client, ref=ref)
    reviews = await fetch_pull_request_reviews(client=client, ref=ref)

    files_without_patch = [pull_file.filename for pull_file in files if pull_file.patch is None]
    warnings: list[str] = []
    if files_without_patch:
        displayed_files = ", ".join(files_without_patch[:5])
        if len(files_without_patch) > 5:
            displayed_files = f"{displayed_files}, ..."
        warnings.append(
            f"{len(files_without_patch)} file(s) missing patch content "
            f"(binary or truncated): {displayed_files}"
        )

    return PullRequestDetails(
        ref=ref,
        metadata=metadata,
        files=files,
        commits=commits,
        existing_reviews=reviews,
        warnings=tuple(warnings),
    )


async def fetch_file_content(
    *,
    client: httpx.AsyncClient,
    owner: str,
    repo: str,
    path: str,
    ref: str,
) -> str | None:
    """Fetch one file's decoded text at a git ref, or None when unavailable."""
    normalized_path = path.lstrip("/")
    if not normalized_path:
        raise GitHubInputError("Invalid file path ''. Expected a non-empty repository path.")
    if not ref:
        raise GitHubInputError("Invalid ref ''. Expected a non-empty git ref.")

    endpoint = (
        f"/repos/{owner}/{repo}/contents/{quote(normalized_path, safe='/')}"
        f"?ref={quote(ref, safe='')}"
    )
    response = await _request_with_retries(client, endpoint, allow_not_found=True)
    if response.status_code == 404:
        return None
    return _decode_content_payload(_ensure_mapping(response.json(), context=endpoint), endpoint=endpoint)


async def fetch_repo_languages(*, client: httpx.AsyncClient, owner: str, repo: str) -> dict[str, int]:
    """Fetch the language byte counts GitHub reports for a repository."""
    endpoint = f"/repos/{owner}/{repo}/languages"
    payload = await _request_json(client, endpoint)
    return {
        language: byte_count
        for language, byte_count in payload.items()
        if isinstance(byte_count, int) and not isinstance(byte_count, bool)
    }


async def fetch_repo_readme(*, client: httpx.AsyncClient, owner: str, repo: str) -> str | None:
    """Fetch a repository README as text, or None when the repo has none."""
    endpoint = f"/repos/{owner}/{repo}/readme"
    response = await _request_with_retries(client, endpoint, allow_not_found=True)
    if response.status_code == 404:
        return None
    return _decode_content_payload(_ensure_mapping(response.json(), context=endpoint), endpoint=endpoint)


async def create_pull_request_review(
    *,
    client: httpx.AsyncClient,
    ref: PullRequestRef,
    body: str,
    event: str = "COMMENT",
    comments: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Submit a review on a pull request. Not retried: it mutates remote state."""
    if event not in REVIEW_EVENTS:
        raise GitHubInputError(
            f"Invalid review event '{event}'. Expected one of {', '.join(REVIEW_EVENTS)}."
        )
    endpoint = f"/repos/{ref.owner}/{ref.repo}/pulls/{ref.number}/reviews"
    request_body: dict[str, Any] = {"body": body, "event": event}
    if comments:
        request_body["comments"] = [
            {"path": comment["path"], "line": comment["line"], "body": comment["body"]}
            for comment in comments
        ]

    response = await client.post(endpoint, json=request_body)
    if response.status_code >= 400:
        _raise_http_error(response, endpoint)
    payload = _ensure_mapping(response.json(), context=endpoint)
    return {
        "id": _require_int(payload, key="id", endpoint=endpoint),
        "html_url": _optional_str(payload, key="html_url", endpoint=endpoint),
    }


async def fetch_authenticated_user_login(*, client: httpx.AsyncClient) -> str:
    """Fetch authenticated GitHub user login for token validation."""
    endpoint = "/user"
    payload = await _request_json(client, endpoint)
    return _require_str(payload, key="login", endpoint=endpoint)


class GitHubService:
    """Source-platform collaborator handed to tool handlers."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def get_pr_details(self, pr_url: str) -> PullRequestDetails:
        return await fetch_pull_request_details(client=self._client, ref=parse_pr_url(pr_url))

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str) -> str | None:
        return await fetch_file_content(
            client=self._client, owner=owner, repo=repo, path=path, ref=ref
        )

    async def create_review(
        self,
        ref: PullRequestRef,
        *,
        body: str,
        event: str = "COMMENT",
        comments: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        return await create_pull_request_review(
            client=self._client, ref=ref, body=body, event=event, comments=comments
        )

    async def get_repo_languages(self, owner: str, repo: str) -> dict[str, int]:
        return await fetch_repo_languages(client=self._client, owner=owner, repo=repo)

    async def get_repo_readme(self, owner: str, repo: str) -> str | None:
        return await fetch_repo_readme(client=self._client, owner=owner, repo=repo)

    async def get_authenticated_login(self) -> str:
        return await fetch_authenticated_user_login(client=self._client)


def build_github_client(
    token: str | None,
    *,
    base_url: str = GITHUB_API_BASE_URL,
    timeout_seconds: float = 20,
    trust_env: bool = True,
) -> httpx.AsyncClient:
    """Build a GitHub HTTP client, authenticated when a token is given."""
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        timeout=timeout_seconds,
        trust_env=trust_env,
    )
