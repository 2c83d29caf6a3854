from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Sequence

import httpx
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from ..core import metrics
from ..core.config import LLMSettings, Settings
from ..core.logging import get_logger
from ..schemas.execution import SamplingParams
from ..schemas.tools import ToolDescriptor

logger = get_logger(name=__name__)

NO_RESPONSE_TEXT = "Sorry, I could not generate a response."
RATE_LIMITED_MESSAGE = "This model is rate limited, please choose a different model"


class ModelInvocationError(RuntimeError):
    """Base class for failures of the chat completion endpoint."""

    code = "model_error"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ModelRateLimitedError(ModelInvocationError):
    code = "model_rate_limited"


class ModelAuthenticationError(ModelInvocationError):
    code = "model_auth_failed"


class ModelProviderError(ModelInvocationError):
    code = "model_provider_error"


def messages_from_text(prompt: str, system_prompt: str | None = None) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))
    messages.append(HumanMessage(content=prompt))
    return messages


def serialize_message(message: BaseMessage) -> dict[str, Any]:
    """Render a langchain message in the OpenAI chat completions wire format."""
    content = _content_text(message.content)
    if isinstance(message, SystemMessage):
        return {"role": "system", "content": content}
    if isinstance(message, HumanMessage):
        return {"role": "user", "content": content}
    if isinstance(message, ToolMessage):
        return {"role": "tool", "content": content, "tool_call_id": message.tool_call_id}
    if isinstance(message, AIMessage):
        payload: dict[str, Any] = {"role": "assistant", "content": content}
        raw_calls = message.additional_kwargs.get("tool_calls")
        if raw_calls:
            payload["tool_calls"] = raw_calls
        return payload
    return {"role": "user", "content": content}


@dataclass(slots=True)
class ModelResponse:
    """Assistant turn returned by the model; raw tool calls keep their string-encoded arguments."""

    message: AIMessage
    model: str
    raw_tool_calls: list[dict[str, Any]] = field(default_factory=list)

    @property
    def content(self) -> str:
        return _content_text(self.message.content)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.raw_tool_calls)


class LLMService:
    """Client for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(self, settings: LLMSettings, *, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(settings.timeout_seconds))

    @classmethod
    def from_settings(cls, settings: Settings, *, client: httpx.AsyncClient | None = None) -> "LLMService":
        return cls(settings.llm, client=client)

    @property
    def endpoint(self) -> str:
        return f"{self.settings.base_url.rstrip('/')}/chat/completions"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def build_request(
        self,
        messages: Sequence[BaseMessage],
        *,
        tools: Sequence[ToolDescriptor] | None = None,
        params: SamplingParams | None = None,
    ) -> dict[str, Any]:
        params = params or SamplingParams(temperature=self.settings.temperature, max_tokens=self.settings.max_tokens)
        body: dict[str, Any] = {
            "model": params.model or self.settings.model,
            "messages": [serialize_message(message) for message in messages],
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
        }
        if params.seed is not None and params.seed != -1:
            body["seed"] = params.seed
        if tools:
            body["tools"] = [tool.to_function_schema() for tool in tools]
            body["tool_choice"] = "auto"
        return body

    async def complete(
        self,
        messages: Sequence[BaseMessage],
        *,
        tools: Sequence[ToolDescriptor] | None = None,
        params: SamplingParams | None = None,
    ) -> ModelResponse:
        body = self.build_request(messages, tools=tools, params=params)
        model = body["model"]
        logger.info(
            "llm_request",
            model=model,
            message_count=len(body["messages"]),
            tools=len(body.get("tools", [])),
        )

        start = time.perf_counter()
        try:
            response = await self._client.post(self.endpoint, json=body, headers=self._headers())
        except httpx.TimeoutException as exc:
            metrics.observe_model_request(model=model, outcome="timeout", latency=time.perf_counter() - start)
            raise ModelProviderError(f"LLM request timed out: {exc}") from exc
        except httpx.RequestError as exc:
            metrics.observe_model_request(model=model, outcome="unreachable", latency=time.perf_counter() - start)
            raise ModelProviderError(f"LLM provider unreachable: {exc}") from exc

        latency = time.perf_counter() - start
        if not response.is_success:
            error = _error_for_status(response.status_code, response.text)
            metrics.observe_model_request(model=model, outcome=error.code, latency=latency)
            logger.error("llm_request_failed", model=model, status=response.status_code, error=str(error))
            raise error

        try:
            payload = response.json()
            message = payload["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            metrics.observe_model_request(model=model, outcome="invalid_response", latency=latency)
            raise ModelProviderError("LLM provider returned an unreadable response") from exc

        metrics.observe_model_request(model=model, outcome="success", latency=latency)
        result = _response_from_message(message if isinstance(message, dict) else {}, model)
        logger.info(
            "llm_response",
            model=model,
            latency=latency,
            answer_length=len(result.content),
            tool_calls=len(result.raw_tool_calls),
        )
        return result

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.api_key is not None:
            headers["Authorization"] = f"Bearer {self.settings.api_key.get_secret_value()}"
        if self.settings.referer:
            headers["HTTP-Referer"] = self.settings.referer
        if self.settings.title:
            headers["X-Title"] = self.settings.title
        return headers


def _response_from_message(message: dict[str, Any], model: str) -> ModelResponse:
    raw_calls = [call for call in message.get("tool_calls") or [] if isinstance(call, dict)]
    content = message.get("content")
    if not content and not raw_calls:
        content = NO_RESPONSE_TEXT
    additional: dict[str, Any] = {"tool_calls": raw_calls} if raw_calls else {}
    ai_message = AIMessage(content=_content_text(content), additional_kwargs=additional)
    return ModelResponse(message=ai_message, model=model, raw_tool_calls=raw_calls)


def _error_for_status(status: int, text: str) -> ModelInvocationError:
    if status == 429:
        return ModelRateLimitedError(RATE_LIMITED_MESSAGE, status_code=status)
    if status == 401:
        return ModelAuthenticationError("Authentication failed - check API key", status_code=status)
    if status == 403:
        return ModelAuthenticationError("Access forbidden - insufficient permissions", status_code=status)
    if status >= 500:
        return ModelProviderError(f"LLM provider error: {text}", status_code=status)
    return ModelProviderError(f"LLM API error ({status}): {text}", status_code=status)


def _content_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict):
                parts.append(str(item.get("text", "")) if "text" in item else json.dumps(item))
            else:
                parts.append(str(item))
        return " ".join(part for part in parts if part)
    return str(content)


__all__ = [
    "LLMService",
    "ModelResponse",
    "ModelInvocationError",
    "ModelRateLimitedError",
    "ModelAuthenticationError",
    "ModelProviderError",
    "messages_from_text",
    "serialize_message",
]
