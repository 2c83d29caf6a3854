from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable

from conductor.schemas.tools import ToolCall
from conductor.tools.exceptions import ToolArgumentsError

__all__ = ["ParsedToolCall", "decode_tool_arguments", "parse_tool_calls"]

# Models occasionally JSON-encode an already encoded argument string.
_MAX_DECODE_DEPTH = 2


@dataclass(slots=True)
class ParsedToolCall:
    call: ToolCall
    error: ToolArgumentsError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def decode_tool_arguments(raw: Any, *, tool: str = "") -> dict[str, Any]:
    """Decode model-provided tool arguments into a JSON object.

    Accepts a mapping, a JSON string, or a JSON string wrapping another JSON
    string. Empty input decodes to ``{}``. Anything else raises
    ``ToolArgumentsError``.
    """
    value = raw
    for _ in range(_MAX_DECODE_DEPTH):
        if not isinstance(value, str):
            break
        text = value.strip()
        if not text:
            return {}
        try:
            value = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ToolArgumentsError(tool, f"Invalid JSON arguments for tool '{tool}': {exc.msg}") from exc

    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    raise ToolArgumentsError(
        tool,
        f"Arguments for tool '{tool}' must decode to an object, got {type(value).__name__}",
    )


def parse_tool_calls(raw_calls: Iterable[Any] | None) -> list[ParsedToolCall]:
    """Turn raw function-calling entries into typed calls, keeping decode failures as data."""
    parsed: list[ParsedToolCall] = []
    for index, raw in enumerate(raw_calls or ()):
        if not isinstance(raw, dict):
            call = ToolCall(id=f"call_{index}", name="unknown")
            parsed.append(ParsedToolCall(call, ToolArgumentsError("unknown", "Tool call entry is not an object")))
            continue

        function = raw.get("function") if isinstance(raw.get("function"), dict) else {}
        name = str(function.get("name") or raw.get("name") or "").strip()
        call_id = str(raw.get("id") or f"call_{index}")
        raw_arguments = function.get("arguments") if "arguments" in function else raw.get("args", raw.get("arguments"))

        if not name:
            call = ToolCall(id=call_id, name="unknown")
            parsed.append(ParsedToolCall(call, ToolArgumentsError("unknown", "Tool call is missing a function name")))
            continue

        try:
            arguments = decode_tool_arguments(raw_arguments, tool=name)
        except ToolArgumentsError as exc:
            parsed.append(ParsedToolCall(ToolCall(id=call_id, name=name), exc))
            continue
        parsed.append(ParsedToolCall(ToolCall(id=call_id, name=name, arguments=arguments)))
    return parsed
