from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

JSONRPC_VERSION = "2.0"
MCP_PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class JsonRpcRequest(BaseModel):
    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: int | str
    method: str = Field(..., min_length=1)
    params: dict[str, Any] | None = None


class JsonRpcError(BaseModel):
    code: int
    message: str = ""
    data: Any | None = None


class JsonRpcResponse(BaseModel):
    jsonrpc: str = JSONRPC_VERSION
    id: int | str | None = None
    result: Any | None = None
    error: JsonRpcError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class ToolListEntry(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    model_config = {"populate_by_name": True}


class ToolListResult(BaseModel):
    tools: list[ToolListEntry] = Field(default_factory=list)


class ContentItem(BaseModel):
    type: str = "text"
    text: str | None = None

    model_config = {"extra": "allow"}


class ToolCallResult(BaseModel):
    content: list[ContentItem] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    model_config = {"populate_by_name": True, "extra": "allow"}


class InitializeResult(BaseModel):
    protocol_version: str = Field(MCP_PROTOCOL_VERSION, alias="protocolVersion")
    capabilities: dict[str, Any] = Field(default_factory=dict)
    server_info: dict[str, Any] = Field(default_factory=dict, alias="serverInfo")

    model_config = {"populate_by_name": True}
