"""Unit tests for the tool registry, handlers, and dispatcher error mapping."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from conftest import PR_URL, FakeGitHubService, build_pr_details, build_pull_file
from pr_review_mcp.analysis import AnalysisError
from pr_review_mcp.dispatcher import ToolDispatcher
from pr_review_mcp.errors import InvalidArgumentsError, ToolExecutionError, UnknownToolError
from pr_review_mcp.github_client import GitHubApiError, parse_pr_url
from pr_review_mcp.tools import (
    ToolDefinition,
    ToolRegistry,
    build_default_registry,
    get_review_prompts,
)

VALID_ARGUMENTS: dict[str, dict[str, Any]] = {
    "get_pr_details": {"pr_url": PR_URL},
    "get_pr_files": {"pr_url": PR_URL},
    "get_pr_commits": {"pr_url": PR_URL},
    "get_file_content": {"owner": "acme", "repo": "widget", "path": "src/app.py"},
    "post_pr_review": {"pr_url": PR_URL, "body": "Looks good"},
    "get_repo_info": {"owner": "acme", "repo": "widget"},
    "get_review_prompts": {},
    "analyze_code_quality": {"pr_url": PR_URL},
    "analyze_diff_impact": {"pr_url": PR_URL},
    "detect_security_issues": {"pr_url": PR_URL},
    "detect_code_patterns": {"pr_url": PR_URL},
    "analyze_dependencies": {"pr_url": PR_URL},
    "analyze_test_coverage": {"pr_url": PR_URL},
    "generate_suggestions": {"pr_url": PR_URL, "file_path": "src/app.py"},
}


def invoke(dispatcher: ToolDispatcher, name: str, arguments: dict[str, Any] | None = None) -> Any:
    """Invoke a tool and decode its JSON payload."""
    return asyncio.run(dispatcher.invoke(name, arguments)).payload()


@pytest.mark.unit
def test_list_tools_advertises_fourteen_unique_tools(dispatcher: ToolDispatcher) -> None:
    definitions = dispatcher.list_tools()
    names = [definition.name for definition in definitions]

    assert len(names) == 14
    assert len(set(names)) == 14
    assert set(names) == set(VALID_ARGUMENTS)
    assert names[0] == "get_pr_details"
    assert {definition.name for definition in definitions if definition.needs_analysis} == {
        "analyze_code_quality",
        "analyze_diff_impact",
        "detect_security_issues",
        "detect_code_patterns",
        "analyze_dependencies",
        "analyze_test_coverage",
        "generate_suggestions",
    }
    for definition in definitions:
        assert definition.input_schema["type"] == "object"
        assert set(definition.input_schema["required"]) <= set(definition.input_schema["properties"])


@pytest.mark.unit
@pytest.mark.parametrize("name", sorted(VALID_ARGUMENTS))
def test_every_advertised_tool_is_dispatchable(dispatcher: ToolDispatcher, name: str) -> None:
    result = asyncio.run(dispatcher.invoke(name, VALID_ARGUMENTS[name]))

    assert len(result.content) == 1
    assert result.content[0].type == "text"
    assert isinstance(result.payload(), dict)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("name", "arguments", "missing"),
    [
        ("get_pr_details", {}, "pr_url"),
        ("get_pr_files", {"include_patch": False}, "pr_url"),
        ("get_pr_commits", {"pr_url": ""}, "pr_url"),
        ("get_file_content", {"owner": "acme", "repo": "widget"}, "path"),
        ("post_pr_review", {"pr_url": PR_URL}, "body"),
        ("get_repo_info", {"owner": "acme"}, "repo"),
        ("analyze_code_quality", {"pr_url": None}, "pr_url"),
        ("generate_suggestions", {"pr_url": PR_URL}, "file_path"),
    ],
)
def test_missing_required_argument_never_reaches_collaborators(
    dispatcher: ToolDispatcher,
    fake_github: FakeGitHubService,
    name: str,
    arguments: dict[str, Any],
    missing: str,
) -> None:
    with pytest.raises(InvalidArgumentsError) as error_info:
        asyncio.run(dispatcher.invoke(name, arguments))

    assert str(error_info.value) == f"Missing required argument: {missing}"
    assert error_info.value.tool_name == name
    assert fake_github.calls == []


@pytest.mark.unit
def test_malformed_pr_url_is_invalid_arguments(
    dispatcher: ToolDispatcher, fake_github: FakeGitHubService
) -> None:
    with pytest.raises(InvalidArgumentsError) as error_info:
        asyncio.run(dispatcher.invoke("get_pr_details", {"pr_url": "https://github.com/acme/widget"}))

    assert "Invalid PR URL" in str(error_info.value)
    assert fake_github.calls == []


@pytest.mark.unit
def test_invalid_enum_value_is_reported_with_location(
    dispatcher: ToolDispatcher, fake_github: FakeGitHubService
) -> None:
    with pytest.raises(InvalidArgumentsError) as error_info:
        asyncio.run(
            dispatcher.invoke("post_pr_review", {"pr_url": PR_URL, "body": "x", "event": "MERGE"})
        )

    assert str(error_info.value).startswith("Invalid argument 'event'")
    assert fake_github.calls == []


@pytest.mark.unit
@pytest.mark.parametrize("name", ["get_PR_details", "GET_PR_DETAILS", "Get_Pr_Details", "review_everything"])
def test_unregistered_and_case_variant_names_are_unknown(
    dispatcher: ToolDispatcher, fake_github: FakeGitHubService, name: str
) -> None:
    with pytest.raises(UnknownToolError) as error_info:
        asyncio.run(dispatcher.invoke(name, {"pr_url": PR_URL}))

    assert str(error_info.value) == f"Unknown tool: {name}"
    assert not dispatcher.is_registered(name)
    assert fake_github.calls == []


@pytest.mark.unit
def test_get_pr_files_without_patches(dispatcher: ToolDispatcher, fake_github: FakeGitHubService) -> None:
    fake_github.details = build_pr_details(
        build_pull_file("src/app.py"),
        build_pull_file("assets/logo.png", patch=None, status="added"),
    )

    payload = invoke(dispatcher, "get_pr_files", {"pr_url": PR_URL, "include_patch": False})

    assert payload["total_files"] == 2
    assert [entry["filename"] for entry in payload["files"]] == ["src/app.py", "assets/logo.png"]
    assert all("patch" not in entry for entry in payload["files"])
    assert "get_review_prompts" in payload["reminder"]
    assert fake_github.calls == [("get_pr_details", (PR_URL,), {})]


@pytest.mark.unit
def test_get_pr_files_includes_patch_only_when_present(dispatcher: ToolDispatcher, fake_github: FakeGitHubService) -> None:
    fake_github.details = build_pr_details(
        build_pull_file("src/app.py"),
        build_pull_file("assets/logo.png", patch=None, status="added"),
    )

    payload = invoke(dispatcher, "get_pr_files", {"pr_url": PR_URL})

    assert payload["files"][0]["patch"].startswith("@@")
    assert "patch" not in payload["files"][1]


@pytest.mark.unit
def test_file_entries_carry_renames_and_changed_ranges(
    dispatcher: ToolDispatcher, fake_github: FakeGitHubService
) -> None:
    fake_github.details = build_pr_details(
        build_pull_file(
            "src/core.py",
            "@@ -4,2 +4,3 @@\n context\n+first\n+second\n@@ -30,1 +31,1 @@\n+tail",
            status="renamed",
            previous_filename="src/legacy.py",
        ),
        build_pull_file("assets/logo.png", patch=None, status="added"),
    )

    files = invoke(dispatcher, "get_pr_files", {"pr_url": PR_URL, "include_patch": False})["files"]
    details_files = invoke(dispatcher, "get_pr_details", {"pr_url": PR_URL})["pr_details"]["files"]

    expected_ranges = [{"line_start": 5, "line_end": 6}, {"line_start": 31, "line_end": 31}]
    for entries in (files, details_files):
        assert entries[0]["previous_filename"] == "src/legacy.py"
        assert entries[0]["changed_ranges"] == expected_ranges
        assert entries[1]["changed_ranges"] == []
        assert "previous_filename" not in entries[1]


@pytest.mark.unit
def test_get_pr_details_wraps_aggregate_with_reminder(dispatcher: ToolDispatcher) -> None:
    payload = invoke(dispatcher, "get_pr_details", {"pr_url": PR_URL})

    assert "get_review_prompts" in payload["reminder"]
    assert payload["pr_details"]["pr"]["title"] == "Fix race condition"
    assert payload["pr_details"]["repository"]["full_name"] == "acme/widget"
    assert payload["pr_details"]["commits"][0]["sha"] == "abc123"


@pytest.mark.unit
def test_post_pr_review_approve_without_comments(
    dispatcher: ToolDispatcher, fake_github: FakeGitHubService
) -> None:
    payload = invoke(
        dispatcher,
        "post_pr_review",
        {"pr_url": PR_URL, "body": "Ship it", "event": "APPROVE"},
    )

    assert payload == {
        "success": True,
        "review_id": 77,
        "review_url": f"{PR_URL}#pullrequestreview-77",
    }
    assert fake_github.calls == [
        (
            "create_review",
            (parse_pr_url(PR_URL),),
            {"body": "Ship it", "event": "APPROVE", "comments": []},
        )
    ]


@pytest.mark.unit
def test_post_pr_review_defaults_to_comment_and_forwards_line_comments(
    dispatcher: ToolDispatcher, fake_github: FakeGitHubService
) -> None:
    invoke(
        dispatcher,
        "post_pr_review",
        {
            "pr_url": PR_URL,
            "body": "A few notes",
            "comments": [{"path": "src/app.py", "line": 2, "body": "Handle None here"}],
        },
    )

    (_, _, kwargs), = fake_github.calls
    assert kwargs["event"] == "COMMENT"
    assert kwargs["comments"] == [{"path": "src/app.py", "line": 2, "body": "Handle None here"}]


@pytest.mark.unit
def test_get_review_prompts_is_static(dispatcher: ToolDispatcher, fake_github: FakeGitHubService) -> None:
    first = asyncio.run(dispatcher.invoke("get_review_prompts", {}))
    second = asyncio.run(dispatcher.invoke("get_review_prompts", {"random_string": "x"}))
    direct = asyncio.run(get_review_prompts({}, github=fake_github))  # type: ignore[arg-type]

    assert first.content[0].text == second.content[0].text
    assert first.payload() == direct
    assert direct["title"] == "PR Review Guidelines - START HERE!"
    assert "Maximum 3 comments" in direct["guidelines"]
    assert fake_github.calls == []


@pytest.mark.unit
def test_get_file_content_defaults_ref_to_main(
    dispatcher: ToolDispatcher, fake_github: FakeGitHubService
) -> None:
    payload = invoke(dispatcher, "get_file_content", VALID_ARGUMENTS["get_file_content"])

    assert payload["content"] == "print('hi')\n"
    assert fake_github.calls == [("get_file_content", ("acme", "widget", "src/app.py", "main"), {})]


@pytest.mark.unit
def test_get_repo_info_reports_primary_language(dispatcher: ToolDispatcher) -> None:
    payload = invoke(dispatcher, "get_repo_info", {"owner": "acme", "repo": "widget"})

    assert payload["full_name"] == "acme/widget"
    assert payload["primary_language"] == "Python"
    assert payload["has_readme"] is True


@pytest.mark.unit
def test_analysis_tools_receive_analysis_collaborator(dispatcher: ToolDispatcher) -> None:
    quality = invoke(dispatcher, "analyze_code_quality", {"pr_url": PR_URL, "file_paths": []})
    coverage = invoke(dispatcher, "analyze_test_coverage", {"pr_url": PR_URL})

    assert quality["analysis_type"] == "code_quality"
    assert [entry["filename"] for entry in quality["files"]] == ["src/app.py"]
    assert coverage["analysis_type"] == "test_coverage"
    assert coverage["production_files"] == ["src/app.py"]


@pytest.mark.unit
def test_upstream_failure_is_wrapped_with_cause(
    dispatcher: ToolDispatcher, fake_github: FakeGitHubService
) -> None:
    upstream = GitHubApiError(
        "GitHub API request failed with status 502.",
        status_code=502,
        endpoint="/repos/acme/widget/pulls/42",
    )
    fake_github.failure = upstream

    with pytest.raises(ToolExecutionError) as error_info:
        asyncio.run(dispatcher.invoke("get_pr_commits", {"pr_url": PR_URL}))

    assert error_info.value.__cause__ is upstream
    assert error_info.value.tool_name == "get_pr_commits"


@pytest.mark.unit
def test_analysis_failure_is_wrapped_with_cause(dispatcher: ToolDispatcher) -> None:
    with pytest.raises(ToolExecutionError) as error_info:
        asyncio.run(
            dispatcher.invoke("generate_suggestions", {"pr_url": PR_URL, "file_path": "src/missing.py"})
        )

    assert isinstance(error_info.value.__cause__, AnalysisError)
    assert str(error_info.value) == "File src/missing.py not found in PR changes"


@pytest.mark.unit
def test_registry_rejects_duplicate_names() -> None:
    registry = build_default_registry()
    definition = ToolDefinition(name="get_pr_details", description="dup", input_schema={"type": "object"})

    with pytest.raises(ValueError):
        registry.register(definition, get_review_prompts)
    assert len(registry) == 14


@pytest.mark.unit
def test_registry_rejects_non_callable_handler() -> None:
    registry = ToolRegistry()
    definition = ToolDefinition(name="noop", description="noop", input_schema={"type": "object"})

    with pytest.raises(TypeError):
        registry.register(definition, "not callable")  # type: ignore[arg-type]
    assert "noop" not in registry
