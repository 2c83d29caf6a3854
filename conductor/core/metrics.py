from __future__ import annotations

from prometheus_client import Counter, Histogram

TOOL_DISCOVERY_TOTAL = Counter(
    "conductor_tool_discovery_total",
    "tools/list outcomes per tool server",
    labelnames=("server", "outcome"),
)

TOOL_DISCOVERED_GAUGE_HISTOGRAM = Histogram(
    "conductor_tool_discovery_tool_count",
    "Number of tools returned by a full discovery cycle",
    buckets=(0, 1, 2, 4, 8, 16, 32, 64, float("inf")),
)

TOOL_CALLS_TOTAL = Counter(
    "conductor_tool_calls_total",
    "Tool invocations grouped by outcome",
    labelnames=("tool", "outcome"),
)

TOOL_CALL_LATENCY_SECONDS = Histogram(
    "conductor_tool_call_latency_seconds",
    "Latency distribution for tool invocations",
    labelnames=("tool",),
)

TOOL_SERVER_REQUEST_TOTAL = Counter(
    "conductor_tool_server_requests_total",
    "JSON-RPC requests sent to tool servers",
    labelnames=("server", "method", "outcome"),
)

TOOL_SERVER_RETRY_TOTAL = Counter(
    "conductor_tool_server_retries_total",
    "JSON-RPC request retries grouped by reason",
    labelnames=("server", "method", "reason"),
)

MODEL_REQUEST_TOTAL = Counter(
    "conductor_model_requests_total",
    "Chat completion requests grouped by outcome",
    labelnames=("model", "outcome"),
)

MODEL_REQUEST_LATENCY_SECONDS = Histogram(
    "conductor_model_request_latency_seconds",
    "Chat completion latency",
    labelnames=("model",),
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, float("inf")),
)

STAGE_FALLBACK_TOTAL = Counter(
    "conductor_stage_fallback_total",
    "Deterministic fallbacks taken by pipeline stages",
    labelnames=("stage", "reason"),
)

PLAN_TASKS = Histogram(
    "conductor_plan_tasks",
    "Number of tasks per generated plan",
    labelnames=("source",),
    buckets=(0, 1, 2, 3, 4, 5, 8, 13, 21),
)

VERIFICATION_CONFIDENCE = Histogram(
    "conductor_verification_confidence",
    "Overall confidence reported by the verifier",
    buckets=(10, 20, 30, 40, 50, 60, 70, 80, 90, 100),
)


def record_discovery(*, server: str, outcome: str) -> None:
    TOOL_DISCOVERY_TOTAL.labels(server=server, outcome=outcome).inc()


def observe_discovery_size(*, count: int) -> None:
    TOOL_DISCOVERED_GAUGE_HISTOGRAM.observe(count)


def observe_tool_call(*, tool: str, outcome: str, latency: float) -> None:
    TOOL_CALLS_TOTAL.labels(tool=tool, outcome=outcome).inc()
    TOOL_CALL_LATENCY_SECONDS.labels(tool=tool).observe(latency)


def observe_tool_server_request(*, server: str, method: str, success: bool) -> None:
    outcome = "success" if success else "failure"
    TOOL_SERVER_REQUEST_TOTAL.labels(server=server, method=method, outcome=outcome).inc()


def increment_tool_server_retry(*, server: str, method: str, reason: str) -> None:
    TOOL_SERVER_RETRY_TOTAL.labels(server=server, method=method, reason=reason).inc()


def observe_model_request(*, model: str, outcome: str, latency: float) -> None:
    MODEL_REQUEST_TOTAL.labels(model=model, outcome=outcome).inc()
    MODEL_REQUEST_LATENCY_SECONDS.labels(model=model).observe(latency)


def increment_stage_fallback(*, stage: str, reason: str) -> None:
    STAGE_FALLBACK_TOTAL.labels(stage=stage, reason=reason).inc()


def record_plan_size(*, source: str, tasks: int) -> None:
    PLAN_TASKS.labels(source=source).observe(tasks)


def observe_verification_confidence(*, confidence: float) -> None:
    VERIFICATION_CONFIDENCE.observe(confidence)
