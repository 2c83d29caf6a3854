from __future__ import annotations


class ToolError(RuntimeError):
    """Base class for tooling-related failures."""


class ToolServerUnavailableError(ToolError):
    """Raised when a tool server cannot be reached or answers with a non-success status."""

    def __init__(self, server_id: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.server_id = server_id
        self.status_code = status_code


class ToolProtocolError(ToolError):
    """Raised when a tool server replies with a malformed JSON-RPC payload or a JSON-RPC error."""

    def __init__(self, server_id: str, message: str, *, code: int | None = None, data: object | None = None) -> None:
        super().__init__(message)
        self.server_id = server_id
        self.code = code
        self.data = data


class ToolExecutionError(ToolError):
    """Raised when a specific tool invocation returns an error."""

    def __init__(self, tool: str, message: str, *, code: int | None = None, server_id: str | None = None) -> None:
        super().__init__(message)
        self.tool = tool
        self.code = code
        self.server_id = server_id


class ToolNotFoundError(ToolError):
    """Raised when no configured server exposes the requested tool."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"Tool '{tool}' not found on any configured server")
        self.tool = tool


class ToolArgumentsError(ToolError):
    """Raised when model-provided tool arguments cannot be decoded into an object."""

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(message)
        self.tool = tool
