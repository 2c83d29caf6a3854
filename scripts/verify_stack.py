#!/usr/bin/env python3
"""Check that a running Conductor deployment is healthy end-to-end.

Exercises the health endpoint, tool discovery across the configured tool
servers, the planner stage and the Prometheus endpoint so operators can
confirm a deployment from a single command.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from typing import Iterable, Optional

import httpx

DEFAULT_QUERY = "What is the weather in Tokyo?"
DEFAULT_TIMEOUT = 60.0


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str

    def format(self) -> str:
        status = "PASS" if self.ok else "FAIL"
        return f"[{status}] {self.name}: {self.detail}"


def _normalize_base(url: str) -> str:
    return url.strip().rstrip("/")


async def check_health(client: httpx.AsyncClient, prefix: str) -> CheckResult:
    try:
        response = await client.get(f"{prefix}/health", timeout=DEFAULT_TIMEOUT)
        response.raise_for_status()
        payload = response.json()
        if isinstance(payload, dict) and payload.get("status") == "ok":
            return CheckResult("Health", True, f"{payload.get('toolServers', 0)} tool server(s) configured")
        return CheckResult("Health", False, f"Unexpected payload: {payload!r}")
    except Exception as exc:  # pragma: no cover - network dependent
        return CheckResult("Health", False, str(exc))


async def check_tools(client: httpx.AsyncClient, prefix: str) -> CheckResult:
    try:
        response = await client.get(f"{prefix}/tools", timeout=DEFAULT_TIMEOUT)
        response.raise_for_status()
        tools = response.json().get("tools", [])
    except httpx.HTTPStatusError as exc:
        return CheckResult("Tool discovery", False, f"HTTP {exc.response.status_code}: {exc.response.text}")
    except Exception as exc:  # pragma: no cover - network dependent
        return CheckResult("Tool discovery", False, str(exc))
    if not tools:
        return CheckResult("Tool discovery", False, "No tools discovered; are the tool servers running?")
    owners = sorted({tool.get("ownerServerId") or "unknown" for tool in tools})
    return CheckResult("Tool discovery", True, f"{len(tools)} tool(s) from {', '.join(owners)}")


async def check_planner(client: httpx.AsyncClient, prefix: str, query: str, model: Optional[str]) -> CheckResult:
    body: dict = {"query": query}
    if model:
        body["params"] = {"model": model}
    try:
        response = await client.post(f"{prefix}/planner", json=body, timeout=DEFAULT_TIMEOUT)
        response.raise_for_status()
        plan = response.json()
    except httpx.HTTPStatusError as exc:
        return CheckResult("Planner", False, f"HTTP {exc.response.status_code}: {exc.response.text}")
    except Exception as exc:  # pragma: no cover - network dependent
        return CheckResult("Planner", False, str(exc))
    tasks = plan.get("tasks", [])
    if plan.get("reasoning", "").startswith("Fallback plan"):
        return CheckResult("Planner", False, "Model response could not be parsed; fallback plan returned")
    return CheckResult("Planner", True, f"{len(tasks)} task(s) planned")


async def check_metrics(client: httpx.AsyncClient) -> CheckResult:
    try:
        response = await client.get("/metrics", timeout=DEFAULT_TIMEOUT)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        return CheckResult("Prometheus", False, f"HTTP {exc.response.status_code}")
    except Exception as exc:  # pragma: no cover - network dependent
        return CheckResult("Prometheus", False, str(exc))
    if "conductor_tool_discovery_total" in response.text:
        return CheckResult("Prometheus", True, "Conductor series exported")
    return CheckResult("Prometheus", False, "Conductor series missing from /metrics")


async def run_checks(args: argparse.Namespace) -> list[CheckResult]:
    prefix = "/" + args.api_prefix.strip("/")
    async with httpx.AsyncClient(base_url=_normalize_base(args.backend_url)) as client:
        results = [await check_health(client, prefix), await check_tools(client, prefix)]
        if not args.skip_planner:
            results.append(await check_planner(client, prefix, args.query, args.model))
        results.append(await check_metrics(client))
    return results


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Verify that a Conductor deployment is running and healthy.")
    parser.add_argument(
        "--backend-url",
        default="http://localhost:8000",
        help="Base URL of the Conductor API (default: %(default)s)",
    )
    parser.add_argument("--api-prefix", default="/api/v1", help="API route prefix (default: %(default)s)")
    parser.add_argument("--query", default=DEFAULT_QUERY, help="Query sent to the planner stage.")
    parser.add_argument("--model", default=None, help="Model override for the planner check.")
    parser.add_argument(
        "--skip-planner",
        action="store_true",
        help="Skip the planner check, which calls the language model.",
    )
    return parser


def _print_summary(results: Iterable[CheckResult]) -> None:
    print("\nVerification summary:\n" + "-" * 80)
    for result in results:
        print(result.format())


def main() -> int:
    args = _build_parser().parse_args()
    try:
        results = asyncio.run(run_checks(args))
    except KeyboardInterrupt:  # pragma: no cover - operator convenience
        print("Verification aborted by user", file=sys.stderr)
        return 130

    _print_summary(results)
    return 1 if any(not result.ok for result in results) else 0


if __name__ == "__main__":
    sys.exit(main())
