"""Error taxonomy shared by the dispatcher, the backend, and the process surfaces."""

from __future__ import annotations


class ToolError(RuntimeError):
    """Base class for failures raised by tool dispatch."""

    def __init__(self, message: str, *, tool_name: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class UnknownToolError(ToolError):
    """Raised when a tool name is not registered (exact, case-sensitive match)."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}", tool_name=tool_name)


class InvalidArgumentsError(ToolError):
    """Raised when a required argument is absent or malformed."""


class ToolExecutionError(ToolError):
    """Raised when the platform client or analysis provider fails; wraps the cause."""


class BackendCommunicationError(RuntimeError):
    """Raised when the generative backend is unreachable or returns an unusable reply."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendAuthError(BackendCommunicationError):
    """Raised when the backend credential is missing or rejected."""
