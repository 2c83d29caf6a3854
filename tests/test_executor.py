from __future__ import annotations

import json

import pytest
from langchain_core.messages import AIMessage, ToolMessage

from conductor.orchestration.exceptions import RequestValidationError
from conductor.orchestration.executor import (
    BATCH_RESULT_INSTRUCTION,
    EXECUTOR_SYSTEM_PROMPT,
    EXECUTOR_SYSTEM_PROMPT_NO_TOOLS,
    TASK_TAG_ARGUMENT,
    TaskExecutor,
    build_execution_prompt,
    extract_reasoning,
)
from conductor.schemas.execution import SamplingParams, TaskAssignment
from conductor.schemas.plans import Task
from conductor.services.llm import ModelRateLimitedError
from conductor.tools.exceptions import ToolExecutionError
from conductor.tools.registry import ToolRegistry
from tests.helpers.stubs import (
    FakeToolServer,
    StubChatModel,
    StubToolInvoker,
    tool_call_response,
    tool_server_client,
    weather_catalog,
)


def _weather_task() -> Task:
    return Task(id="task_1", description="Get the weather in Tokyo", tools=["get_weather"])


def _divide(args):
    if args["b"] == 0:
        raise ToolExecutionError("divide", "Division by zero", code=-32603, server_id="calculator")
    return {"content": [{"type": "text", "text": str(args["a"] / args["b"])}]}


@pytest.mark.asyncio
async def test_single_tool_call_round_trip() -> None:
    model = StubChatModel(
        [
            tool_call_response(("get_weather", {"city": "Tokyo"})),
            "My approach: look up the weather.\nIt is sunny in Tokyo, 24C.",
        ]
    )
    tools = StubToolInvoker({"get_weather": lambda args: {"content": [{"type": "text", "text": "Sunny, 24C"}]}})
    catalog = weather_catalog()

    result = await TaskExecutor(model, tools).run(_weather_task(), catalog)

    assert result.success is True
    assert result.error is None
    assert result.task_id == "task_1"
    assert result.result.endswith("It is sunny in Tokyo, 24C.")
    assert result.reasoning == "My approach: look up the weather."
    assert len(result.tool_calls) == 1
    record = result.tool_calls[0]
    assert record.tool_call.name == "get_weather"
    assert record.tool_call.arguments == {"city": "Tokyo"}
    assert record.result["content"][0]["text"] == "Sunny, 24C"
    assert tools.calls == [("get_weather", {"city": "Tokyo"})]
    assert tools.catalogs == [catalog]

    first, second = model.calls
    assert first["messages"][0].content == EXECUTOR_SYSTEM_PROMPT
    assert [tool.name for tool in first["tools"]] == ["get_weather", "convert_currency"]
    assert second["tools"] == []
    follow_up = second["messages"]
    assert isinstance(follow_up[2], AIMessage)
    assert follow_up[2].additional_kwargs["tool_calls"][0]["id"] == "call_0"
    assert isinstance(follow_up[3], ToolMessage)
    assert follow_up[3].tool_call_id == "call_0"


@pytest.mark.asyncio
async def test_tool_failure_is_recorded_and_task_still_succeeds() -> None:
    model = StubChatModel([tool_call_response(("divide", {"a": 1, "b": 0})), "The division is undefined."])
    tools = StubToolInvoker({"divide": _divide})

    result = await TaskExecutor(model, tools).run(
        Task(id="task_1", description="Divide 1 by 0"),
        weather_catalog(),
    )

    assert result.success is True
    assert result.tool_calls[0].failed
    assert "Division by zero" in result.tool_calls[0].result["error"]
    tool_turn = model.calls[1]["messages"][-1]
    assert json.loads(tool_turn.content) == {"error": "Division by zero"}


@pytest.mark.asyncio
async def test_malformed_arguments_are_not_invoked() -> None:
    model = StubChatModel([tool_call_response(("get_weather", "{city: Tokyo")), "Could not check the weather."])
    tools = StubToolInvoker({"get_weather": lambda args: "never"})

    result = await TaskExecutor(model, tools).run(_weather_task(), weather_catalog())

    assert tools.calls == []
    assert result.tool_calls[0].failed
    assert "Invalid JSON arguments" in result.tool_calls[0].result["error"]


@pytest.mark.asyncio
async def test_unknown_tool_error_is_captured() -> None:
    model = StubChatModel([tool_call_response(("launch_rocket", {})), "No rocket for you."])

    result = await TaskExecutor(model, StubToolInvoker()).run(_weather_task(), weather_catalog())

    assert result.success is True
    assert result.tool_calls[0].result == {"error": "Tool 'launch_rocket' not found on any configured server"}


@pytest.mark.asyncio
async def test_no_tools_uses_knowledge_prompt_and_single_call() -> None:
    model = StubChatModel(["Paris is the capital of France."])
    tools = StubToolInvoker()

    result = await TaskExecutor(model, tools).run(
        Task(id="task_2", description="Name the capital of France"),
        dependency_results={"task_1": {"country": "France"}},
    )

    assert result.result == "Paris is the capital of France."
    assert result.tool_calls == []
    assert len(model.calls) == 1
    call = model.calls[0]
    assert call["messages"][0].content == EXECUTOR_SYSTEM_PROMPT_NO_TOOLS
    assert call["tools"] == []
    prompt = call["messages"][1].content
    assert "DEPENDENCY RESULTS:" in prompt
    assert '"country": "France"' in prompt


@pytest.mark.asyncio
async def test_model_failure_becomes_unsuccessful_result() -> None:
    model = StubChatModel([ModelRateLimitedError("Rate limit exceeded", status_code=429)])

    result = await TaskExecutor(model, StubToolInvoker()).run(
        _weather_task(),
        weather_catalog(),
        params=SamplingParams(model="tiny-model"),
    )

    assert result.success is False
    assert result.result is None
    assert result.error == "Rate limit exceeded"
    assert result.error_code == "model_rate_limited"
    assert model.calls[0]["params"].model == "tiny-model"


@pytest.mark.asyncio
async def test_second_round_of_tool_calls_is_ignored() -> None:
    model = StubChatModel(
        [
            tool_call_response(("get_weather", {"city": "Tokyo"})),
            tool_call_response(("get_weather", {"city": "Osaka"}), content="Tokyo is sunny."),
        ]
    )
    tools = StubToolInvoker({"get_weather": lambda args: "Sunny"})

    result = await TaskExecutor(model, tools).run(_weather_task(), weather_catalog())

    assert result.result == "Tokyo is sunny."
    assert tools.calls == [("get_weather", {"city": "Tokyo"})]


@pytest.mark.asyncio
async def test_missing_task_fields_are_rejected() -> None:
    executor = TaskExecutor(StubChatModel([]), StubToolInvoker())

    with pytest.raises(RequestValidationError):
        await executor.run(None)
    with pytest.raises(RequestValidationError) as excinfo:
        await executor.run(Task(id="task_1", description=""))
    assert excinfo.value.field == "task.description"


def test_extract_reasoning_prefers_reasoning_lines() -> None:
    assert extract_reasoning("Result: 42\nMy strategy was to add.") == "My strategy was to add."
    assert extract_reasoning("ok\nThe answer is forty-two.") == "The answer is forty-two."
    assert extract_reasoning("ok") == "Task completed successfully"
    assert extract_reasoning(None) == "Task completed successfully"


def test_build_execution_prompt_lists_tools_and_dependencies() -> None:
    prompt = build_execution_prompt(_weather_task(), {"task_0": "Tokyo"})

    assert prompt.startswith("TASK TO EXECUTE:\nID: task_1\nDescription: Get the weather in Tokyo")
    assert "Required Tools: get_weather" in prompt
    assert "task_0: Tokyo" in prompt


@pytest.mark.asyncio
async def test_batch_maps_tool_calls_by_task_tag() -> None:
    model = StubChatModel(
        [
            tool_call_response(
                ("convert_currency", {"amount": 100, TASK_TAG_ARGUMENT: "task_2"}),
                ("get_weather", {"city": "Tokyo", TASK_TAG_ARGUMENT: "task_1"}),
            ),
            json.dumps({"task_1": "Sunny in Tokyo", "task_2": "100 USD = 92 EUR"}),
        ]
    )
    tools = StubToolInvoker({"get_weather": lambda args: "Sunny", "convert_currency": lambda args: "92 EUR"})
    assignments = [
        TaskAssignment(task=_weather_task()),
        TaskAssignment(task=Task(id="task_2", description="Convert 100 USD to EUR", tools=["convert_currency"])),
    ]

    results = await TaskExecutor(model, tools).run_batch(assignments, weather_catalog())

    by_id = {result.task_id: result for result in results}
    assert [result.task_id for result in results] == ["task_1", "task_2"]
    assert by_id["task_1"].result == "Sunny in Tokyo"
    assert by_id["task_2"].result == "100 USD = 92 EUR"
    assert [record.tool_call.name for record in by_id["task_1"].tool_calls] == ["get_weather"]
    assert [record.tool_call.name for record in by_id["task_2"].tool_calls] == ["convert_currency"]
    # the tag is stripped before the tool sees the arguments
    assert tools.calls == [("convert_currency", {"amount": 100}), ("get_weather", {"city": "Tokyo"})]
    advertised = model.calls[0]["tools"][0].input_schema["properties"]
    assert TASK_TAG_ARGUMENT in advertised
    assert model.calls[1]["messages"][-1].content == BATCH_RESULT_INSTRUCTION


@pytest.mark.asyncio
async def test_batch_falls_back_to_positional_mapping_and_whole_text() -> None:
    model = StubChatModel(
        [
            tool_call_response(
                ("get_weather", {"city": "Tokyo"}),
                ("convert_currency", {"amount": 1}),
                ("convert_currency", {"amount": 2}),
            ),
            "Everything is done.",
        ]
    )
    tools = StubToolInvoker({"get_weather": lambda args: "Sunny", "convert_currency": lambda args: "ok"})
    assignments = [
        TaskAssignment(task=_weather_task()),
        TaskAssignment(task=Task(id="task_2", description="Convert currencies")),
    ]

    first, second = await TaskExecutor(model, tools).run_batch(assignments, weather_catalog())

    assert len(first.tool_calls) == 1
    assert len(second.tool_calls) == 2
    assert first.result == second.result == "Everything is done."


@pytest.mark.asyncio
async def test_batch_rejects_duplicate_ids_and_empty_input() -> None:
    executor = TaskExecutor(StubChatModel([]), StubToolInvoker())

    with pytest.raises(RequestValidationError):
        await executor.run_batch([])
    duplicate = [TaskAssignment(task=_weather_task()), TaskAssignment(task=_weather_task())]
    with pytest.raises(RequestValidationError):
        await executor.run_batch(duplicate)


@pytest.mark.asyncio
async def test_run_against_live_tool_servers() -> None:
    weather = FakeToolServer("weather", {"get_weather": lambda args: f"Sunny in {args['city']}"})
    calculator = FakeToolServer("calculator", {"divide": lambda args: str(args["a"] / args["b"])})
    registry = ToolRegistry(
        [weather.config(), calculator.config()],
        client=tool_server_client(weather, calculator),
    )
    catalog = await registry.discover()
    executor = TaskExecutor(
        StubChatModel(
            [
                tool_call_response(("get_weather", {"city": "Tokyo"})),
                "It is sunny in Tokyo.",
                tool_call_response(("divide", {"a": 1, "b": 0})),
                "Division by zero is undefined.",
            ]
        ),
        registry,
    )

    healthy = await executor.run(_weather_task(), catalog)
    failing = await executor.run(Task(id="task_2", description="Divide 1 by 0", tools=["divide"]), catalog)

    assert healthy.success is True
    assert healthy.error is None
    assert len(healthy.tool_calls) == 1
    assert not healthy.tool_calls[0].failed
    assert healthy.tool_calls[0].result == {"content": [{"type": "text", "text": "Sunny in Tokyo"}]}
    assert weather.methods() == ["tools/list", "tools/call"]
    assert weather.paths[-1] == "/tools/call"

    assert failing.success is True
    assert failing.tool_calls[0].failed
    assert "division by zero" in failing.tool_calls[0].result["error"]
    assert calculator.methods() == ["tools/list", "tools/call"]
