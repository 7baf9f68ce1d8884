"""Tool definitions, argument models, handlers, and the name-keyed registry."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pr_review_mcp.analysis import AnalysisService
from pr_review_mcp.errors import InvalidArgumentsError
from pr_review_mcp.github_client import GitHubService, parse_pr_url
from pr_review_mcp.prompts import GUIDELINES_TITLE, REVIEW_GUIDELINES

PR_URL_DESCRIPTION = "GitHub PR URL (e.g., https://github.com/owner/repo/pull/123)"
GUIDELINES_REMINDER = (
    "For comprehensive PR analysis, consider calling 'get_review_prompts' "
    "to get detailed review guidelines and best practices."
)
FILES_REMINDER = (
    "For thorough code review analysis, make sure to call 'get_review_prompts' "
    "for comprehensive guidelines on evaluating these file changes."
)

FocusArea = Literal["performance", "security", "maintainability", "readability", "testing"]
ReviewEvent = Literal["APPROVE", "REQUEST_CHANGES", "COMMENT"]


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Advertised tool: name, description, JSON schema, and collaborator needs."""

    name: str
    description: str
    input_schema: dict[str, Any]
    needs_analysis: bool = False


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str
    type: str = "text"


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Ordered content blocks returned by a tool; currently one JSON text block."""

    content: tuple[TextBlock, ...]

    @classmethod
    def from_payload(cls, payload: Any) -> ToolResult:
        return cls(content=(TextBlock(text=json.dumps(payload, indent=2)),))

    def payload(self) -> Any:
        """Decode the JSON text block back into a Python value."""
        return json.loads(self.content[0].text)


ToolHandler = Callable[..., Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class RegisteredTool:
    definition: ToolDefinition
    handler: ToolHandler


class ToolRegistry:
    """Name-keyed registry; each definition is paired with exactly one handler."""

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, definition: ToolDefinition, handler: ToolHandler) -> None:
        if definition.name in self._tools:
            raise ValueError(f"Tool '{definition.name}' is already registered.")
        if not callable(handler):
            raise TypeError(f"Handler for tool '{definition.name}' is not callable.")
        self._tools[definition.name] = RegisteredTool(definition=definition, handler=handler)

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def definitions(self) -> tuple[ToolDefinition, ...]:
        return tuple(tool.definition for tool in self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[str]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)


class _ToolArguments(BaseModel):
    model_config = ConfigDict(extra="ignore")


ArgumentsT = TypeVar("ArgumentsT", bound=_ToolArguments)


class PullRequestArguments(_ToolArguments):
    pr_url: str = Field(min_length=1)


class PullRequestFilesArguments(PullRequestArguments):
    include_patch: bool = True


class FileContentArguments(_ToolArguments):
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    path: str = Field(min_length=1)
    ref: str = Field(default="main", min_length=1)


class ReviewComment(_ToolArguments):
    path: str = Field(min_length=1)
    line: int = Field(ge=1)
    body: str = Field(min_length=1)


class PostReviewArguments(PullRequestArguments):
    body: str = Field(min_length=1)
    event: ReviewEvent = "COMMENT"
    comments: list[ReviewComment] = Field(default_factory=list)


class RepoArguments(_ToolArguments):
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)


class CodeQualityArguments(PullRequestArguments):
    file_paths: list[str] | None = None


class CodePatternArguments(PullRequestArguments):
    language: str | None = None


class SuggestionArguments(PullRequestArguments):
    file_path: str = Field(min_length=1)
    focus_areas: list[FocusArea] = Field(default_factory=list)


def parse_arguments(
    model: type[ArgumentsT],
    arguments: Mapping[str, Any] | None,
    *,
    tool_name: str,
) -> ArgumentsT:
    """Validate raw tool arguments, mapping the first failure to InvalidArgumentsError."""
    raw = {key: value for key, value in (arguments or {}).items() if value is not None}
    try:
        return model.model_validate(raw)
    except ValidationError as error:
        first = error.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        if first["type"] == "missing" or (
            first["type"] == "string_too_short" and len(first["loc"]) == 1
        ):
            message = f"Missing required argument: {location}"
        else:
            message = f"Invalid argument '{location}': {first['msg']}"
        raise InvalidArgumentsError(message, tool_name=tool_name) from error


async def get_review_prompts(arguments: Mapping[str, Any], *, github: GitHubService) -> dict[str, Any]:
    """Return the static review guideline document."""
    return {"title": GUIDELINES_TITLE, "guidelines": REVIEW_GUIDELINES}


async def get_pr_details(arguments: Mapping[str, Any], *, github: GitHubService) -> dict[str, Any]:
    """Return PR metadata, files, commits and existing reviews."""
    args = parse_arguments(PullRequestArguments, arguments, tool_name="get_pr_details")
    parse_pr_url(args.pr_url)
    details = await github.get_pr_details(args.pr_url)
    return {"reminder": GUIDELINES_REMINDER, "pr_details": details.to_dict()}


async def get_pr_files(arguments: Mapping[str, Any], *, github: GitHubService) -> dict[str, Any]:
    """Return changed files, with patches unless include_patch is false."""
    args = parse_arguments(PullRequestFilesArguments, arguments, tool_name="get_pr_files")
    parse_pr_url(args.pr_url)
    details = await github.get_pr_details(args.pr_url)
    files = [pull_file.to_dict(include_patch=args.include_patch) for pull_file in details.files]
    return {"reminder": FILES_REMINDER, "files": files, "total_files": len(files)}


async def get_pr_commits(arguments: Mapping[str, Any], *, github: GitHubService) -> dict[str, Any]:
    """Return the commits on the PR branch."""
    args = parse_arguments(PullRequestArguments, arguments, tool_name="get_pr_commits")
    parse_pr_url(args.pr_url)
    details = await github.get_pr_details(args.pr_url)
    commits = [
        {"sha": commit.sha, "message": commit.message, "author": commit.author, "date": commit.date}
        for commit in details.commits
    ]
    return {"commits": commits, "total_commits": len(commits)}


async def get_file_content(arguments: Mapping[str, Any], *, github: GitHubService) -> dict[str, Any]:
    """Return one file's decoded content at ``ref``."""
    args = parse_arguments(FileContentArguments, arguments, tool_name="get_file_content")
    content = await github.get_file_content(args.owner, args.repo, args.path, args.ref)
    return {
        "owner": args.owner,
        "repo": args.repo,
        "path": args.path,
        "ref": args.ref,
        "content": content or None,
    }


async def post_pr_review(arguments: Mapping[str, Any], *, github: GitHubService) -> dict[str, Any]:
    """Submit a review with optional line comments."""
    args = parse_arguments(PostReviewArguments, arguments, tool_name="post_pr_review")
    ref = parse_pr_url(args.pr_url)
    result = await github.create_review(
        ref,
        body=args.body,
        event=args.event,
        comments=[comment.model_dump() for comment in args.comments],
    )
    return {"success": True, "review_id": result["id"], "review_url": result["html_url"]}


async def get_repo_info(arguments: Mapping[str, Any], *, github: GitHubService) -> dict[str, Any]:
    """Return repository languages and README."""
    args = parse_arguments(RepoArguments, arguments, tool_name="get_repo_info")
    languages = await github.get_repo_languages(args.owner, args.repo)
    readme = await github.get_repo_readme(args.owner, args.repo)
    primary_language = max(languages, key=languages.__getitem__) if languages else "Unknown"
    return {
        "owner": args.owner,
        "repo": args.repo,
        "full_name": f"{args.owner}/{args.repo}",
        "languages": languages,
        "primary_language": primary_language,
        "has_readme": bool(readme),
        "readme_content": readme,
    }


async def analyze_code_quality(
    arguments: Mapping[str, Any], *, github: GitHubService, analysis: AnalysisService
) -> dict[str, Any]:
    """Score complexity, maintainability and debt of changed files."""
    args = parse_arguments(CodeQualityArguments, arguments, tool_name="analyze_code_quality")
    parse_pr_url(args.pr_url)
    details = await github.get_pr_details(args.pr_url)
    result = analysis.analyze_code_quality(details, args.file_paths)
    return {"analysis_type": "code_quality", "pr_url": args.pr_url, **result}


async def analyze_diff_impact(
    arguments: Mapping[str, Any], *, github: GitHubService, analysis: AnalysisService
) -> dict[str, Any]:
    """Categorize change risk across the PR."""
    args = parse_arguments(PullRequestArguments, arguments, tool_name="analyze_diff_impact")
    parse_pr_url(args.pr_url)
    details = await github.get_pr_details(args.pr_url)
    return {"analysis_type": "diff_impact", "pr_url": args.pr_url, **analysis.analyze_diff_impact(details)}


async def detect_security_issues(
    arguments: Mapping[str, Any], *, github: GitHubService, analysis: AnalysisService
) -> dict[str, Any]:
    """Scan added lines for common vulnerability patterns."""
    args = parse_arguments(PullRequestArguments, arguments, tool_name="detect_security_issues")
    parse_pr_url(args.pr_url)
    details = await github.get_pr_details(args.pr_url)
    return {
        "analysis_type": "security_analysis",
        "pr_url": args.pr_url,
        **analysis.detect_security_issues(details),
    }


async def detect_code_patterns(
    arguments: Mapping[str, Any], *, github: GitHubService, analysis: AnalysisService
) -> dict[str, Any]:
    """Report good patterns and anti-patterns in added lines."""
    args = parse_arguments(CodePatternArguments, arguments, tool_name="detect_code_patterns")
    parse_pr_url(args.pr_url)
    details = await github.get_pr_details(args.pr_url)
    return {
        "analysis_type": "pattern_detection",
        "pr_url": args.pr_url,
        **analysis.detect_code_patterns(details, args.language),
    }


async def analyze_dependencies(
    arguments: Mapping[str, Any], *, github: GitHubService, analysis: AnalysisService
) -> dict[str, Any]:
    """Diff dependency manifests touched by the PR."""
    args = parse_arguments(PullRequestArguments, arguments, tool_name="analyze_dependencies")
    parse_pr_url(args.pr_url)
    details = await github.get_pr_details(args.pr_url)
    return {
        "analysis_type": "dependency_analysis",
        "pr_url": args.pr_url,
        **analysis.analyze_dependencies(details),
    }


async def analyze_test_coverage(
    arguments: Mapping[str, Any], *, github: GitHubService, analysis: AnalysisService
) -> dict[str, Any]:
    """Estimate test coverage of changed production files."""
    args = parse_arguments(PullRequestArguments, arguments, tool_name="analyze_test_coverage")
    parse_pr_url(args.pr_url)
    details = await github.get_pr_details(args.pr_url)
    return {
        "analysis_type": "test_coverage",
        "pr_url": args.pr_url,
        **analysis.analyze_test_coverage(details),
    }


async def generate_suggestions(
    arguments: Mapping[str, Any], *, github: GitHubService, analysis: AnalysisService
) -> dict[str, Any]:
    """Suggest improvements for one changed file."""
    args = parse_arguments(SuggestionArguments, arguments, tool_name="generate_suggestions")
    parse_pr_url(args.pr_url)
    details = await github.get_pr_details(args.pr_url)
    suggestions = analysis.generate_suggestions(details, args.file_path, args.focus_areas)
    return {
        "analysis_type": "code_suggestions",
        "pr_url": args.pr_url,
        "file_path": args.file_path,
        "focus_areas": list(args.focus_areas),
        **suggestions,
    }


def _object_schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_PR_URL_PROPERTY = {"type": "string", "description": PR_URL_DESCRIPTION}
_OWNER_PROPERTY = {"type": "string", "description": "Repository owner"}
_REPO_PROPERTY = {"type": "string", "description": "Repository name"}

TOOL_SPECS: tuple[tuple[ToolDefinition, ToolHandler], ...] = (
    (
        ToolDefinition(
            name="get_pr_details",
            description=(
                "Get detailed information about a GitHub Pull Request. "
                "TIP: Call get_review_prompts first for comprehensive review guidelines."
            ),
            input_schema=_object_schema({"pr_url": _PR_URL_PROPERTY}, ["pr_url"]),
        ),
        get_pr_details,
    ),
    (
        ToolDefinition(
            name="get_pr_files",
            description=(
                "Get list of files changed in a GitHub Pull Request. "
                "TIP: Use get_review_prompts first for analysis guidelines."
            ),
            input_schema=_object_schema(
                {
                    "pr_url": _PR_URL_PROPERTY,
                    "include_patch": {
                        "type": "boolean",
                        "description": "Include diff patches for each file",
                        "default": True,
                    },
                },
                ["pr_url"],
            ),
        ),
        get_pr_files,
    ),
    (
        ToolDefinition(
            name="get_pr_commits",
            description="Get commits in a GitHub Pull Request",
            input_schema=_object_schema({"pr_url": _PR_URL_PROPERTY}, ["pr_url"]),
        ),
        get_pr_commits,
    ),
    (
        ToolDefinition(
            name="get_file_content",
            description="Get content of a specific file from a GitHub repository",
            input_schema=_object_schema(
                {
                    "owner": _OWNER_PROPERTY,
                    "repo": _REPO_PROPERTY,
                    "path": {"type": "string", "description": "File path in the repository"},
                    "ref": {
                        "type": "string",
                        "description": "Git reference (branch, tag, or commit SHA)",
                        "default": "main",
                    },
                },
                ["owner", "repo", "path"],
            ),
        ),
        get_file_content,
    ),
    (
        ToolDefinition(
            name="post_pr_review",
            description=(
                "Post a review comment on a GitHub Pull Request. "
                "BEST PRACTICE: Use get_review_prompts first to ensure comprehensive analysis."
            ),
            input_schema=_object_schema(
                {
                    "pr_url": _PR_URL_PROPERTY,
                    "body": {"type": "string", "description": "Review comment body"},
                    "event": {
                        "type": "string",
                        "description": "Review event type",
                        "enum": ["APPROVE", "REQUEST_CHANGES", "COMMENT"],
                        "default": "COMMENT",
                    },
                    "comments": {
                        "type": "array",
                        "description": "Line-specific comments",
                        "items": _object_schema(
                            {
                                "path": {"type": "string"},
                                "line": {"type": "number"},
                                "body": {"type": "string"},
                            },
                            ["path", "line", "body"],
                        ),
                        "default": [],
                    },
                },
                ["pr_url", "body"],
            ),
        ),
        post_pr_review,
    ),
    (
        ToolDefinition(
            name="get_repo_info",
            description="Get repository information including languages and README",
            input_schema=_object_schema(
                {"owner": _OWNER_PROPERTY, "repo": _REPO_PROPERTY}, ["owner", "repo"]
            ),
        ),
        get_repo_info,
    ),
    (
        ToolDefinition(
            name="get_review_prompts",
            description=(
                "CALL THIS FIRST! Get comprehensive review guidelines and prompts to perform "
                "thorough PR analysis. Essential for high-quality code reviews."
            ),
            input_schema=_object_schema(
                {
                    "random_string": {
                        "type": "string",
                        "description": "Optional dummy parameter for compatibility",
                    }
                },
                [],
            ),
        ),
        get_review_prompts,
    ),
    (
        ToolDefinition(
            name="analyze_code_quality",
            description=(
                "Analyze code quality metrics for changed files including complexity, "
                "maintainability, and potential issues."
            ),
            input_schema=_object_schema(
                {
                    "pr_url": _PR_URL_PROPERTY,
                    "file_paths": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": (
                            "Optional: Specific file paths to analyze. "
                            "If not provided, analyzes all changed files."
                        ),
                    },
                },
                ["pr_url"],
            ),
            needs_analysis=True,
        ),
        analyze_code_quality,
    ),
    (
        ToolDefinition(
            name="analyze_diff_impact",
            description=(
                "Analyze the impact and risk level of code changes in a diff, categorizing "
                "changes by type and potential consequences."
            ),
            input_schema=_object_schema({"pr_url": _PR_URL_PROPERTY}, ["pr_url"]),
            needs_analysis=True,
        ),
        analyze_diff_impact,
    ),
    (
        ToolDefinition(
            name="detect_security_issues",
            description="Scan code changes for potential security vulnerabilities and patterns.",
            input_schema=_object_schema({"pr_url": _PR_URL_PROPERTY}, ["pr_url"]),
            needs_analysis=True,
        ),
        detect_security_issues,
    ),
    (
        ToolDefinition(
            name="detect_code_patterns",
            description=(
                "Detect anti-patterns, best practices violations, and architectural issues "
                "in code changes."
            ),
            input_schema=_object_schema(
                {
                    "pr_url": _PR_URL_PROPERTY,
                    "language": {
                        "type": "string",
                        "description": (
                            "Programming language to focus pattern detection on "
                            "(auto-detected if not provided)"
                        ),
                    },
                },
                ["pr_url"],
            ),
            needs_analysis=True,
        ),
        detect_code_patterns,
    ),
    (
        ToolDefinition(
            name="analyze_dependencies",
            description=(
                "Analyze dependency changes and their impact, including new packages, "
                "version updates, and security implications."
            ),
            input_schema=_object_schema({"pr_url": _PR_URL_PROPERTY}, ["pr_url"]),
            needs_analysis=True,
        ),
        analyze_dependencies,
    ),
    (
        ToolDefinition(
            name="analyze_test_coverage",
            description="Analyze test coverage for changed code and suggest testing improvements.",
            input_schema=_object_schema({"pr_url": _PR_URL_PROPERTY}, ["pr_url"]),
            needs_analysis=True,
        ),
        analyze_test_coverage,
    ),
    (
        ToolDefinition(
            name="generate_suggestions",
            description=(
                "Generate specific code improvement suggestions based on best practices "
                "and patterns."
            ),
            input_schema=_object_schema(
                {
                    "pr_url": _PR_URL_PROPERTY,
                    "file_path": {
                        "type": "string",
                        "description": "Specific file to generate suggestions for",
                    },
                    "focus_areas": {
                        "type": "array",
                        "items": {
                            "type": "string",
                            "enum": [
                                "performance",
                                "security",
                                "maintainability",
                                "readability",
                                "testing",
                            ],
                        },
                        "description": "Specific areas to focus suggestions on",
                    },
                },
                ["pr_url", "file_path"],
            ),
            needs_analysis=True,
        ),
        generate_suggestions,
    ),
)


def build_default_registry() -> ToolRegistry:
    """Register every built-in tool in advertisement order."""
    registry = ToolRegistry()
    for definition, handler in TOOL_SPECS:
        registry.register(definition, handler)
    return registry
