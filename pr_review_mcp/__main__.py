"""Allow `python -m pr_review_mcp`."""

from pr_review_mcp.cli import app

app()
