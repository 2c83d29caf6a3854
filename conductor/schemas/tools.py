from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field

from conductor.schemas.base import CamelModel


def normalize_input_schema(schema: dict[str, Any] | None) -> dict[str, Any]:
    """Coerce a server-provided input schema into an object schema with properties and required."""
    schema = dict(schema or {})
    properties = schema.get("properties")
    required = schema.get("required")
    normalized = {
        **schema,
        "type": "object",
        "properties": dict(properties) if isinstance(properties, dict) else {},
        "required": [item for item in required if isinstance(item, str)] if isinstance(required, list) else [],
    }
    return normalized


class ToolDescriptor(CamelModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=lambda: normalize_input_schema(None))
    owner_server_id: str | None = None

    def to_function_schema(self) -> dict[str, Any]:
        parameters = normalize_input_schema(self.input_schema)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": parameters["properties"],
                    "required": parameters["required"],
                },
            },
        }


class ToolCall(CamelModel):
    id: str = ""
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolCallRecord(CamelModel):
    tool_call: ToolCall
    result: Any = None

    @property
    def failed(self) -> bool:
        return isinstance(self.result, dict) and "error" in self.result and len(self.result) == 1
