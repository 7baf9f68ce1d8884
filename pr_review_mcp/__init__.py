"""MCP tool server and tool-calling review loop for GitHub pull requests."""
