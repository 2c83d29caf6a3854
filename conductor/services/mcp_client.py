from __future__ import annotations

import asyncio
import random
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from conductor.core import metrics
from conductor.core.config import Settings
from conductor.core.logging import get_logger
from conductor.schemas.jsonrpc import PARSE_ERROR, JsonRpcRequest, JsonRpcResponse
from conductor.tools.exceptions import ToolProtocolError, ToolServerUnavailableError

logger = get_logger(name=__name__)


InstrumentationHook = Callable[[dict[str, Any]], None]


@dataclass(slots=True, frozen=True)
class ToolServerConfig:
    id: str
    url: str
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or self.id


@dataclass(slots=True)
class ToolServerClientConfig:
    timeout_seconds: float = 15.0
    max_retries: int = 1
    retry_backoff_seconds: float = 0.5
    retry_jitter_seconds: float = 0.25
    verify_ssl: bool = True
    route_by_method: bool = True
    default_headers: dict[str, str] = field(default_factory=dict)
    instrumentation_hooks: tuple[InstrumentationHook, ...] = ()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ToolServerClientConfig":
        tools = settings.tools
        return cls(
            timeout_seconds=tools.timeout_seconds,
            max_retries=tools.discovery_retries,
            retry_backoff_seconds=tools.retry_backoff_seconds,
            retry_jitter_seconds=tools.retry_jitter_seconds,
            verify_ssl=tools.verify_ssl,
            route_by_method=tools.route_by_method,
            default_headers=dict(tools.extra_headers),
        )


class ToolServerClient:
    """JSON-RPC 2.0 over HTTP POST against independently deployed tool servers.

    Only idempotent methods (``initialize`` and ``tools/list``) are retried.
    ``tools/call`` is sent exactly once because a retried invocation may run
    the tool twice.
    """

    RETRY_STATUS_RANGES = ((500, 599),)
    RETRY_STATUS_CODES = {408, 425, 429, 502, 503, 504}
    IDEMPOTENT_METHODS = frozenset({"initialize", "tools/list"})

    def __init__(self, config: ToolServerClientConfig | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        self._config = config or ToolServerClientConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout_seconds),
            headers=self._config.default_headers,
            verify=self._config.verify_ssl,
        )
        self._hooks = tuple(self._config.instrumentation_hooks or ())

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(self, server: ToolServerConfig, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send one JSON-RPC request and return its ``result`` member.

        Raises ``ToolServerUnavailableError`` for transport failures and
        non-success HTTP statuses, ``ToolProtocolError`` for malformed
        envelopes and JSON-RPC error responses.
        """
        envelope = JsonRpcRequest(id=uuid.uuid4().hex, method=method, params=params)
        payload = envelope.model_dump(exclude_none=True)
        url = self._endpoint(server, method)
        max_retries = self._config.max_retries if method in self.IDEMPOTENT_METHODS else 0

        attempt = 0
        backoff = self._config.retry_backoff_seconds
        while True:
            attempt += 1
            attempt_context = {
                "server": server.id,
                "method": method,
                "url": url,
                "attempt": attempt,
                "max_retries": max_retries,
            }
            self._emit_instrumentation("request.start", attempt_context)
            start = time.perf_counter()
            try:
                response = await self._client.post(url, json=payload)
            except httpx.RequestError as exc:
                latency = time.perf_counter() - start
                metrics.observe_tool_server_request(server=server.id, method=method, success=False)
                error_context = {**attempt_context, "error": str(exc) or type(exc).__name__, "latency": latency}
                if attempt <= max_retries:
                    metrics.increment_tool_server_retry(server=server.id, method=method, reason="exception")
                    self._emit_instrumentation("request.retry", {**error_context, "retry_in": backoff})
                    await asyncio.sleep(self._backoff_with_jitter(backoff))
                    backoff *= 2
                    continue
                self._emit_instrumentation("request.failed", error_context)
                raise ToolServerUnavailableError(
                    server.id,
                    f"Tool server '{server.label}' unreachable: {error_context['error']}",
                ) from exc

            latency = time.perf_counter() - start
            if self._should_retry_response(response) and attempt <= max_retries:
                metrics.observe_tool_server_request(server=server.id, method=method, success=False)
                metrics.increment_tool_server_retry(
                    server=server.id,
                    method=method,
                    reason=f"status_{response.status_code}",
                )
                self._emit_instrumentation(
                    "request.retry",
                    {**attempt_context, "status": response.status_code, "latency": latency, "retry_in": backoff},
                )
                await asyncio.sleep(self._backoff_with_jitter(backoff))
                backoff *= 2
                continue

            metrics.observe_tool_server_request(server=server.id, method=method, success=response.is_success)
            self._emit_instrumentation(
                "request.complete",
                {**attempt_context, "status": response.status_code, "latency": latency},
            )
            return self._unwrap(server, method, response)

    def _unwrap(self, server: ToolServerConfig, method: str, response: httpx.Response) -> Any:
        if not response.is_success:
            raise ToolServerUnavailableError(
                server.id,
                f"Tool server '{server.label}' answered {method} with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ToolProtocolError(server.id, f"Invalid JSON from '{server.label}' for {method}", code=PARSE_ERROR) from exc
        if not isinstance(body, dict):
            raise ToolProtocolError(server.id, f"Expected a JSON-RPC object from '{server.label}' for {method}")
        try:
            envelope = JsonRpcResponse.model_validate(body)
        except ValidationError as exc:
            raise ToolProtocolError(server.id, f"Malformed JSON-RPC response from '{server.label}': {exc}") from exc
        if envelope.is_error:
            raise ToolProtocolError(
                server.id,
                envelope.error.message or f"JSON-RPC error {envelope.error.code}",
                code=envelope.error.code,
                data=envelope.error.data,
            )
        return envelope.result

    def _endpoint(self, server: ToolServerConfig, method: str) -> str:
        base = server.url.rstrip("/")
        if self._config.route_by_method:
            return f"{base}/{method}"
        return base

    def _should_retry_response(self, response: httpx.Response) -> bool:
        if response.status_code in self.RETRY_STATUS_CODES:
            return True
        for lower, upper in self.RETRY_STATUS_RANGES:
            if lower <= response.status_code <= upper:
                return True
        return False

    def _backoff_with_jitter(self, base_backoff: float) -> float:
        jitter = random.uniform(0.0, self._config.retry_jitter_seconds)
        return max(0.0, base_backoff + jitter)

    def _emit_instrumentation(self, event: str, payload: dict[str, Any]) -> None:
        data = dict(payload)
        data["event"] = event
        for hook in self._hooks:
            try:
                hook(dict(data))
            except Exception as exc:  # pragma: no cover - hook failures must not break requests
                logger.warning("tool_server_instrumentation_hook_failed", hook_event=event, error=str(exc))
        log_payload = dict(data)
        log_payload["rpc_event"] = log_payload.pop("event")
        logger.debug("tool_server_client_event", **log_payload)


__all__ = ["ToolServerClient", "ToolServerClientConfig", "ToolServerConfig", "InstrumentationHook"]
