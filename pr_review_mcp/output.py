"""Local report rendering for review outcomes."""

from __future__ import annotations

from pr_review_mcp.schema import ReviewOutcome


def render_review_markdown(outcome: ReviewOutcome) -> str:
    """Render a markdown report from a review outcome."""
    lines = [f"# Review of {outcome.pr_url}", "", f"Status: `{outcome.status}`", ""]
    lines.append(f"Model: `{outcome.model_used}`")
    if outcome.tools_used:
        lines.append("Tools used: " + ", ".join(f"`{name}`" for name in outcome.tools_used))
    else:
        lines.append("Tools used: none")
    lines.append("")
    lines.append("## Review")
    lines.append(outcome.message or "No review text provided.")

    if outcome.warnings:
        lines.append("")
        lines.append("## Warnings")
        lines.extend(f"- {warning}" for warning in outcome.warnings)

    stats = outcome.stats
    lines.append("")
    lines.append("## Stats")
    lines.append(
        f"- model turns: {stats.model_turns}, tool calls: {stats.tool_calls}, "
        f"tool errors: {stats.tool_errors}"
    )
    lines.append(
        f"- forcing attempts: {stats.forcing_attempts}, gate nudges: {stats.gate_nudges}, "
        f"duration: {stats.duration_seconds:.1f}s"
    )
    return "\n".join(lines)
