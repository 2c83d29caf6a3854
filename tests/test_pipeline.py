from __future__ import annotations

import json
from typing import Any, Sequence

import pytest
from langchain_core.messages import BaseMessage

from conductor.orchestration import (
    Critic,
    OrchestrationPipeline,
    PlanGenerator,
    PlanValidationError,
    TaskExecutor,
    Verifier,
    execution_layers,
)
from conductor.orchestration.critic import CRITIC_SYSTEM_PROMPT
from conductor.orchestration.pipeline import DEPENDENCY_FAILED, tools_for_task
from conductor.orchestration.planner import PLANNER_SYSTEM_PROMPT
from conductor.orchestration.verifier import VERIFIER_SYSTEM_PROMPT
from conductor.schemas.plans import Plan, Task
from conductor.services.llm import ModelProviderError, ModelResponse
from tests.helpers.stubs import StubToolInvoker, text_response, weather_catalog


class RoutingChatModel:
    """Answers each stage by its system prompt; executor turns are keyed by task id."""

    def __init__(self, plan: dict[str, Any], task_answers: dict[str, str | Exception]) -> None:
        self.plan = plan
        self.task_answers = task_answers
        self.executed: list[str] = []
        self.verifier_prompt = ""

    async def complete(
        self,
        messages: Sequence[BaseMessage],
        *,
        tools=None,
        params=None,
    ) -> ModelResponse:
        system, prompt = messages[0].content, messages[1].content
        if system == PLANNER_SYSTEM_PROMPT:
            return text_response(json.dumps(self.plan))
        if system == VERIFIER_SYSTEM_PROMPT:
            self.verifier_prompt = prompt
            return text_response(json.dumps({"finalAnswer": "All done", "reasoning": "ok"}))
        if system == CRITIC_SYSTEM_PROMPT:
            return text_response("Here is your answer.")
        task_id = prompt.split("\nID: ", 1)[1].split("\n", 1)[0]
        self.executed.append(task_id)
        answer = self.task_answers[task_id]
        if isinstance(answer, Exception):
            raise answer
        return text_response(answer)


def _pipeline(model: RoutingChatModel) -> OrchestrationPipeline:
    tools = StubToolInvoker(catalog=weather_catalog())
    return OrchestrationPipeline(
        tools,
        PlanGenerator(model),
        TaskExecutor(model, tools),
        Verifier(model),
        Critic(model),
    )


def _task(task_id: str, *dependencies: str) -> Task:
    return Task(id=task_id, description=f"do {task_id}", dependencies=list(dependencies))


def test_execution_layers_groups_independent_tasks() -> None:
    plan = Plan(tasks=[_task("a"), _task("b"), _task("c", "a", "b"), _task("d", "c"), _task("e", "a")])

    layers = execution_layers(plan)

    assert [[task.id for task in layer] for layer in layers] == [["a", "b"], ["c", "e"], ["d"]]


def test_execution_layers_rejects_cycles() -> None:
    plan = Plan(tasks=[_task("a", "c"), _task("b", "a"), _task("c", "b"), _task("d")])

    with pytest.raises(PlanValidationError) as excinfo:
        execution_layers(plan)
    assert "a, b, c" in str(excinfo.value)


def test_execution_layers_rejects_unknown_dependency() -> None:
    with pytest.raises(PlanValidationError):
        execution_layers(Plan(tasks=[_task("a", "ghost")]))


def test_tools_for_task_filters_catalog() -> None:
    task = Task(id="t", description="x", tools=["convert_currency", "missing"])

    assert [tool.name for tool in tools_for_task(task, weather_catalog())] == ["convert_currency"]


@pytest.mark.asyncio
async def test_pipeline_runs_stages_in_dependency_order() -> None:
    plan = {
        "reasoning": "weather then summary",
        "tasks": [
            {"id": "task_1", "description": "Weather in Tokyo", "tools": ["get_weather"]},
            {"id": "task_2", "description": "Convert 100 USD", "tools": ["convert_currency"]},
            {"id": "task_3", "description": "Summarize", "dependencies": ["task_1", "task_2"]},
        ],
    }
    model = RoutingChatModel(plan, {"task_1": "Sunny", "task_2": "92 EUR", "task_3": "Sunny and 92 EUR"})

    response = await _pipeline(model).run("Weather in Tokyo and convert 100 USD to EUR")

    assert model.executed.index("task_3") == 2
    assert [result.task_id for result in response.results] == ["task_1", "task_2", "task_3"]
    assert all(result.success for result in response.results)
    assert response.verification.final_answer == "All done"
    assert response.verification.confidence == 70
    assert response.critic.final_answer == "Here is your answer."
    wire = response.to_wire()
    assert set(wire) == {"plan", "results", "verification", "critic"}
    assert wire["results"][0]["taskId"] == "task_1"


@pytest.mark.asyncio
async def test_failed_dependency_skips_dependents() -> None:
    plan = {
        "tasks": [
            {"id": "task_1", "description": "Fetch data"},
            {"id": "task_2", "description": "Analyse data", "dependencies": ["task_1"]},
            {"id": "task_3", "description": "Independent work"},
        ],
    }
    model = RoutingChatModel(
        plan,
        {"task_1": ModelProviderError("LLM provider error: down"), "task_2": "never", "task_3": "fine"},
    )

    response = await _pipeline(model).run("query")

    by_id = {result.task_id: result for result in response.results}
    assert by_id["task_1"].success is False
    assert by_id["task_1"].error_code == "model_provider_error"
    assert by_id["task_2"].success is False
    assert by_id["task_2"].error == DEPENDENCY_FAILED
    assert by_id["task_3"].success is True
    assert "task_2" not in model.executed
    assert '"error": "Dependency task failed"' in model.verifier_prompt
