from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from conductor.dependencies import get_llm_service, get_tool_registry
from conductor.main import app
from conductor.services.llm import ModelRateLimitedError, RATE_LIMITED_MESSAGE
from tests.helpers.stubs import StubChatModel, StubToolInvoker, tool_call_response, weather_catalog

PLAN = {
    "reasoning": "one tool each",
    "tasks": [
        {"id": "task_1", "description": "Weather in Tokyo", "tools": ["get_weather"]},
        {"id": "task_2", "description": "Convert 100 USD to EUR", "tools": ["convert_currency"]},
    ],
}


@pytest.fixture
def stubs() -> Iterator[tuple[StubChatModel, StubToolInvoker]]:
    model = StubChatModel([])
    tools = StubToolInvoker(
        {"get_weather": lambda args: {"content": [{"type": "text", "text": f"Sunny in {args['city']}"}]}},
        catalog=weather_catalog(),
    )
    app.dependency_overrides[get_llm_service] = lambda: model
    app.dependency_overrides[get_tool_registry] = lambda: tools
    try:
        yield model, tools
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def client(stubs) -> TestClient:
    return TestClient(app)


def test_health_and_root(client: TestClient) -> None:
    assert client.get("/").status_code == 200
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_tools_endpoint_lists_discovered_catalog(client: TestClient) -> None:
    response = client.get("/api/v1/tools")

    assert response.status_code == 200
    tools = response.json()["tools"]
    assert [tool["name"] for tool in tools] == ["get_weather", "convert_currency"]
    assert tools[0]["ownerServerId"] == "weather"
    assert tools[0]["inputSchema"]["type"] == "object"


def test_planner_returns_camel_case_plan(client: TestClient, stubs) -> None:
    model, _ = stubs
    model.queue(json.dumps(PLAN))

    response = client.post(
        "/api/v1/planner",
        json={"query": "Weather in Tokyo and convert 100 USD to EUR", "params": {"model": "m1", "seed": -1}},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["totalSteps"] == 2
    assert [task["tools"] for task in payload["tasks"]] == [["get_weather"], ["convert_currency"]]
    assert "promptData" not in payload
    assert model.calls[0]["params"].model == "m1"
    assert model.calls[0]["params"].seed is None


def test_planner_uses_supplied_catalog(client: TestClient, stubs) -> None:
    model, _ = stubs
    model.queue(json.dumps(PLAN))

    response = client.post(
        "/api/v1/planner",
        json={"query": "weather", "tools": [{"name": "get_weather", "ownerServerId": "weather"}]},
    )

    assert response.status_code == 200
    assert [task["tools"] for task in response.json()["tasks"]] == [["get_weather"], []]


def test_planner_rejects_missing_query(client: TestClient, stubs) -> None:
    model, _ = stubs

    response = client.post("/api/v1/planner", json={"params": {}})

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "validation_error"
    assert detail["field"] == "query"
    assert model.calls == []


def test_planner_surfaces_rate_limit(client: TestClient, stubs) -> None:
    model, _ = stubs
    model.queue(ModelRateLimitedError(RATE_LIMITED_MESSAGE, status_code=429))

    response = client.post("/api/v1/planner", json={"query": "weather"})

    assert response.status_code == 429
    assert response.json()["detail"] == {"error": RATE_LIMITED_MESSAGE, "code": "model_rate_limited"}


def test_executor_runs_tool_round_trip(client: TestClient, stubs) -> None:
    model, tools = stubs
    model.queue(tool_call_response(("get_weather", {"city": "Tokyo"})), "It is sunny in Tokyo.")

    response = client.post(
        "/api/v1/executor",
        json={
            "task": {"id": "task_1", "description": "Weather in Tokyo", "tools": ["get_weather"]},
            "availableTools": [{"name": "get_weather", "ownerServerId": "weather"}],
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["taskId"] == "task_1"
    assert payload["toolCalls"][0]["toolCall"]["arguments"] == {"city": "Tokyo"}
    assert "error" not in payload
    assert tools.calls == [("get_weather", {"city": "Tokyo"})]


def test_executor_rejects_missing_task(client: TestClient) -> None:
    response = client.post("/api/v1/executor", json={})

    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "task"


def test_executor_batch_returns_one_result_per_task(client: TestClient, stubs) -> None:
    model, _ = stubs
    model.queue(json.dumps({"task_1": "Paris", "task_2": "Berlin"}))

    response = client.post(
        "/api/v1/executor/batch",
        json={
            "tasks": [
                {"task": {"id": "task_1", "description": "Capital of France"}},
                {"task": {"id": "task_2", "description": "Capital of Germany"}},
            ]
        },
    )

    assert response.status_code == 200
    assert [(item["taskId"], item["result"]) for item in response.json()["results"]] == [
        ("task_1", "Paris"),
        ("task_2", "Berlin"),
    ]


def test_verifier_falls_back_on_invalid_json(client: TestClient, stubs) -> None:
    model, _ = stubs
    model.queue("not json at all")

    response = client.post(
        "/api/v1/verifier",
        json={"query": "weather", "taskResults": [{"id": "task_1", "description": "Weather", "result": "Sunny"}]},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["confidence"] == 60
    assert payload["finalAnswer"] == "Sunny"


def test_critic_rejects_missing_verification(client: TestClient) -> None:
    response = client.post("/api/v1/critic", json={"query": "weather"})

    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "verification"


def test_critic_formats_answer(client: TestClient, stubs) -> None:
    model, _ = stubs
    model.queue("It is sunny in Tokyo.")

    response = client.post(
        "/api/v1/critic",
        json={"query": "weather", "verification": {"overallCorrect": True, "confidence": 40, "finalAnswer": "Sunny"}},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["presentation"]["tone"] == "cautious"
    assert "errorCode" not in payload


def test_metrics_endpoint_exposes_conductor_series(client: TestClient) -> None:
    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "conductor_model_requests_total" in response.text


def test_verifier_rejects_empty_task_results(client: TestClient, stubs) -> None:
    model, _ = stubs

    response = client.post("/api/v1/verifier", json={"query": "weather", "taskResults": []})

    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "task_results"
    assert model.calls == []
