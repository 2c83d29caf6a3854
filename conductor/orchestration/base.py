from __future__ import annotations

import json
from typing import Any, Protocol, Sequence

from langchain_core.messages import BaseMessage

from ..schemas.execution import SamplingParams
from ..schemas.tools import ToolDescriptor
from ..services.llm import ModelResponse, serialize_message


class ChatModel(Protocol):
    """Anything that turns a conversation into one assistant turn."""

    async def complete(
        self,
        messages: Sequence[BaseMessage],
        *,
        tools: Sequence[ToolDescriptor] | None = None,
        params: SamplingParams | None = None,
    ) -> ModelResponse: ...


def capture_prompt_data(
    messages: Sequence[BaseMessage],
    response_text: str,
    *,
    params: SamplingParams | None,
    model: str | None = None,
) -> dict[str, Any]:
    """Snapshot of the exchanged prompt and reply, returned to clients that ask for it."""
    params = params or SamplingParams()
    request: dict[str, Any] = {
        "model": model or params.model,
        "messages": [serialize_message(message) for message in messages],
        "temperature": params.temperature,
        "max_tokens": params.max_tokens,
    }
    if params.seed is not None:
        request["seed"] = params.seed
    return {
        "llmRequest": {"model": request["model"], "content": json.dumps(request, indent=2)},
        "llmResponse": {"model": request["model"], "content": response_text},
    }


def render_payload(value: Any) -> str:
    """Strings verbatim, anything else as indented JSON."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2, default=str)
    except (TypeError, ValueError):
        return str(value)
