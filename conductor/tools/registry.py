from __future__ import annotations

import asyncio
import time
from typing import Any, Iterable, Sequence

from pydantic import ValidationError

from conductor.core import metrics
from conductor.core.config import Settings
from conductor.core.logging import get_logger
from conductor.schemas.jsonrpc import MCP_PROTOCOL_VERSION, InitializeResult, ToolCallResult, ToolListResult
from conductor.schemas.tools import ToolDescriptor, normalize_input_schema
from conductor.services.mcp_client import ToolServerClient, ToolServerClientConfig, ToolServerConfig
from conductor.tools.exceptions import (
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolProtocolError,
    ToolServerUnavailableError,
)

__all__ = ["ToolRegistry"]

logger = get_logger(name=__name__)


class ToolRegistry:
    """Discovers tools across configured servers and routes invocations to their owner.

    Nothing is cached: every discovery or routing decision is a fresh round-trip
    so servers may appear or disappear between invocations.
    """

    def __init__(self, servers: Iterable[ToolServerConfig], *, client: ToolServerClient | None = None) -> None:
        self._servers: tuple[ToolServerConfig, ...] = tuple(servers)
        ids = [server.id for server in self._servers]
        if len(ids) != len(set(ids)):
            raise ValueError("Tool server ids must be unique")
        self._owns_client = client is None
        self._client = client or ToolServerClient()

    @classmethod
    def from_settings(cls, settings: Settings, *, client: ToolServerClient | None = None) -> "ToolRegistry":
        servers = [ToolServerConfig(id=item.id, name=item.name, url=item.url) for item in settings.tool_servers]
        return cls(servers, client=client or ToolServerClient(ToolServerClientConfig.from_settings(settings)))

    @property
    def servers(self) -> tuple[ToolServerConfig, ...]:
        return self._servers

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def discover(self) -> list[ToolDescriptor]:
        """Return the union of every reachable server's tools in configured server order."""
        listings = await asyncio.gather(*(self._list_tools(server) for server in self._servers))

        catalog: list[ToolDescriptor] = []
        owners: dict[str, str] = {}
        for server, tools in zip(self._servers, listings):
            for tool in tools or ():
                if tool.name in owners:
                    logger.warning(
                        "tool_name_collision",
                        tool=tool.name,
                        kept_server=owners[tool.name],
                        dropped_server=server.id,
                    )
                    continue
                owners[tool.name] = server.id
                catalog.append(tool)

        metrics.observe_discovery_size(count=len(catalog))
        logger.info(
            "tool_discovery_completed",
            servers=len(self._servers),
            reachable=sum(1 for tools in listings if tools is not None),
            tools=len(catalog),
        )
        return catalog

    async def owner_of(self, name: str, *, catalog: Sequence[ToolDescriptor] | None = None) -> str | None:
        server = await self._resolve_owner(name, catalog)
        return server.id if server else None

    async def call(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        catalog: Sequence[ToolDescriptor] | None = None,
    ) -> Any:
        server = await self._resolve_owner(name, catalog)
        if server is None:
            metrics.observe_tool_call(tool=name, outcome="not_found", latency=0.0)
            raise ToolNotFoundError(name)

        start = time.perf_counter()
        try:
            result = await self._client.request(
                server,
                "tools/call",
                {"name": name, "arguments": dict(arguments or {})},
            )
        except ToolProtocolError as exc:
            metrics.observe_tool_call(tool=name, outcome="error", latency=time.perf_counter() - start)
            raise ToolExecutionError(name, str(exc), code=exc.code, server_id=server.id) from exc
        except ToolServerUnavailableError as exc:
            metrics.observe_tool_call(tool=name, outcome="unavailable", latency=time.perf_counter() - start)
            raise ToolExecutionError(name, str(exc), server_id=server.id) from exc

        latency = time.perf_counter() - start
        failure = _reported_failure(result)
        if failure is not None:
            metrics.observe_tool_call(tool=name, outcome="error", latency=latency)
            raise ToolExecutionError(name, failure, server_id=server.id)

        metrics.observe_tool_call(tool=name, outcome="success", latency=latency)
        logger.info("tool_call_completed", tool=name, server=server.id, latency=latency)
        return result

    async def initialize(self, server_id: str) -> dict[str, Any]:
        server = self._server_by_id(server_id)
        if server is None:
            raise ToolError(f"Unknown tool server '{server_id}'")
        result = await self._client.request(
            server,
            "initialize",
            {"protocolVersion": MCP_PROTOCOL_VERSION, "capabilities": {}},
        )
        try:
            parsed = InitializeResult.model_validate(result if isinstance(result, dict) else {})
        except ValidationError as exc:
            raise ToolProtocolError(server.id, f"Malformed initialize result: {exc}") from exc
        return parsed.model_dump(by_alias=True)

    async def _resolve_owner(
        self,
        name: str,
        catalog: Sequence[ToolDescriptor] | None,
    ) -> ToolServerConfig | None:
        if catalog:
            for descriptor in catalog:
                if descriptor.name != name or not descriptor.owner_server_id:
                    continue
                server = self._server_by_id(descriptor.owner_server_id)
                if server is not None:
                    return server
                logger.warning("catalog_owner_unknown", tool=name, server=descriptor.owner_server_id)
                break

        for server in self._servers:
            tools = await self._list_tools(server)
            if tools and any(tool.name == name for tool in tools):
                return server
        return None

    async def _list_tools(self, server: ToolServerConfig) -> list[ToolDescriptor] | None:
        try:
            result = await self._client.request(server, "tools/list")
            listing = ToolListResult.model_validate(result if isinstance(result, dict) else {"tools": result})
        except ToolServerUnavailableError as exc:
            metrics.record_discovery(server=server.id, outcome="unavailable")
            logger.warning("tool_server_unavailable", server=server.id, status=exc.status_code, error=str(exc))
            return None
        except ToolProtocolError as exc:
            metrics.record_discovery(server=server.id, outcome="protocol_error")
            logger.warning("tool_server_protocol_error", server=server.id, code=exc.code, error=str(exc))
            return None
        except ValidationError as exc:
            metrics.record_discovery(server=server.id, outcome="malformed")
            logger.warning("tool_listing_malformed", server=server.id, error=str(exc))
            return None

        metrics.record_discovery(server=server.id, outcome="success")
        return [
            ToolDescriptor(
                name=entry.name,
                description=entry.description,
                input_schema=normalize_input_schema(entry.input_schema),
                owner_server_id=server.id,
            )
            for entry in listing.tools
        ]

    def _server_by_id(self, server_id: str) -> ToolServerConfig | None:
        for server in self._servers:
            if server.id == server_id:
                return server
        return None


def _reported_failure(result: Any) -> str | None:
    """Return the error text when a tools/call result flags itself as failed."""
    if not isinstance(result, dict) or not result.get("isError"):
        return None
    try:
        parsed = ToolCallResult.model_validate(result)
    except ValidationError:
        return "Tool reported an error"
    texts = [item.text for item in parsed.content if item.text]
    return "\n".join(texts) or "Tool reported an error"
