from __future__ import annotations

import json
from typing import Any, Mapping, Protocol, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from ..core import metrics
from ..core.logging import get_logger, truncate_for_log
from ..schemas.execution import ExecutionResult, SamplingParams, TaskAssignment
from ..schemas.plans import Task
from ..schemas.tools import ToolCall, ToolCallRecord, ToolDescriptor
from ..services.llm import ModelInvocationError, ModelResponse
from ..tools.arguments import ParsedToolCall, parse_tool_calls
from ..tools.exceptions import ToolError
from .base import ChatModel, capture_prompt_data, render_payload
from .exceptions import RequestValidationError, UpstreamProtocolError
from .parsing import decode_json_object

logger = get_logger(name=__name__)

TASK_TAG_ARGUMENT = "_task_id"
DEFAULT_REASONING = "Task completed successfully"
_REASONING_KEYWORDS = ("reasoning", "approach", "strategy")

EXECUTOR_SYSTEM_PROMPT = """You are a multi-agent task executor. Complete the specific task you are given using the available tools.

EXECUTION GUIDELINES:
1. Read the task description carefully
2. Use dependency results from previous tasks if provided
3. Call the appropriate tools to gather information or perform actions
4. Provide clear reasoning for your approach
5. Return structured results that dependent tasks can use

RESPONSE FORMAT:
- Start with your reasoning approach
- Use tools as needed to complete the task
- Provide a clear summary of results
- Include any data dependent tasks will need

You are executing ONE task. Focus on that task and use the tools efficiently."""

EXECUTOR_SYSTEM_PROMPT_NO_TOOLS = """You are a multi-agent task executor. Complete the specific task you are given using your knowledge and reasoning.

EXECUTION GUIDELINES:
1. Read the task description carefully
2. Use dependency results from previous tasks if provided
3. Apply your knowledge and reasoning to complete the task
4. Provide clear reasoning for your approach
5. Return structured results that dependent tasks can use

RESPONSE FORMAT:
- Start with your reasoning approach
- Complete the task using the available information
- Provide a clear summary of results
- Include any data dependent tasks will need

You are executing ONE task. Focus on that task and give the best possible answer from the available information."""

BATCH_SYSTEM_PROMPT = """You are a multi-agent task executor handling several independent tasks at once.

GUIDELINES:
1. Treat every task separately; do not mix their results
2. When you call a tool, set its "_task_id" argument to the id of the task the call serves
3. Provide clear reasoning and a summary of results for each task"""

BATCH_RESULT_INSTRUCTION = (
    "Respond with a single JSON object that maps each task id to that task's final result, "
    'for example {"task_1": "...", "task_2": "..."}. Do not include any other text.'
)


class ToolInvoker(Protocol):
    async def call(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        catalog: Sequence[ToolDescriptor] | None = None,
    ) -> Any: ...


def extract_reasoning(text: Any) -> str:
    """One-line summary: a line that talks about reasoning, else the first substantive line."""
    if not isinstance(text, str):
        return DEFAULT_REASONING
    lines = text.split("\n")
    for line in lines:
        lowered = line.lower()
        if any(keyword in lowered for keyword in _REASONING_KEYWORDS):
            return line[:200]
    for line in lines:
        if len(line.strip()) > 10 and "```" not in line:
            return line[:200]
    return DEFAULT_REASONING


def build_execution_prompt(task: Task, dependency_results: Mapping[str, Any] | None = None) -> str:
    prompt = f"TASK TO EXECUTE:\nID: {task.id}\nDescription: {task.description}"
    if task.tools:
        prompt += f"\nRequired Tools: {', '.join(task.tools)}"
    if dependency_results:
        prompt += "\n\nDEPENDENCY RESULTS:"
        for dependency_id, result in dependency_results.items():
            prompt += f"\n{dependency_id}: {render_payload(result)}"
    prompt += (
        "\n\nPlease execute this task. Use the available tools if needed and provide clear results "
        "that can be used by dependent tasks."
    )
    return prompt


def _require_task(task: Task | None) -> Task:
    if task is None:
        raise RequestValidationError("task")
    if not task.id or not task.id.strip():
        raise RequestValidationError("task.id", "Task with id and description is required")
    if not task.description or not task.description.strip():
        raise RequestValidationError("task.description", "Task with id and description is required")
    return task


def _assistant_turn(response: ModelResponse, calls: Sequence[ToolCall]) -> AIMessage:
    wire_calls = [
        {
            "id": call.id,
            "type": "function",
            "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
        }
        for call in calls
    ]
    return AIMessage(content=response.content, additional_kwargs={"tool_calls": wire_calls})


def _tool_turns(records: Sequence[ToolCallRecord]) -> list[ToolMessage]:
    return [
        ToolMessage(content=json.dumps(record.result, default=str), tool_call_id=record.tool_call.id)
        for record in records
    ]


def _with_task_tag(tool: ToolDescriptor) -> ToolDescriptor:
    schema = dict(tool.input_schema)
    properties = dict(schema.get("properties") or {})
    properties[TASK_TAG_ARGUMENT] = {
        "type": "string",
        "description": "Id of the task this call serves.",
    }
    schema["properties"] = properties
    return tool.model_copy(update={"input_schema": schema})


class TaskExecutor:
    """Runs a task through one tool-calling round-trip with the model."""

    def __init__(self, model: ChatModel, tools: ToolInvoker) -> None:
        self._model = model
        self._tools = tools

    async def run(
        self,
        task: Task | None,
        available_tools: Sequence[ToolDescriptor] = (),
        dependency_results: Mapping[str, Any] | None = None,
        params: SamplingParams | None = None,
        *,
        include_prompt_data: bool = False,
    ) -> ExecutionResult:
        task = _require_task(task)
        available_tools = list(available_tools or ())
        prompt = build_execution_prompt(task, dependency_results)
        system_prompt = EXECUTOR_SYSTEM_PROMPT if available_tools else EXECUTOR_SYSTEM_PROMPT_NO_TOOLS
        messages: list[BaseMessage] = [SystemMessage(content=system_prompt), HumanMessage(content=prompt)]

        logger.info(
            "task_execution_started",
            task_id=task.id,
            description=truncate_for_log(task.description),
            tool_count=len(available_tools),
            dependency_count=len(dependency_results or {}),
        )

        records: list[ToolCallRecord] = []
        try:
            response = await self._model.complete(messages, tools=available_tools or None, params=params)
            result_text = response.content
            if available_tools and response.has_tool_calls:
                parsed = parse_tool_calls(response.raw_tool_calls)
                records = await self._invoke(parsed, available_tools, task_id=task.id)
                follow_up = [*messages, _assistant_turn(response, [item.call for item in parsed]), *_tool_turns(records)]
                final = await self._model.complete(follow_up, params=params)
                if final.has_tool_calls:
                    logger.warning("executor_second_tool_round_ignored", task_id=task.id, calls=len(final.raw_tool_calls))
                result_text = final.content
        except ModelInvocationError as exc:
            logger.error("task_execution_failed", task_id=task.id, error=str(exc), error_code=exc.code)
            return ExecutionResult(
                task_id=task.id,
                result=None,
                reasoning="Task execution failed",
                tool_calls=records,
                success=False,
                error=str(exc),
                error_code=exc.code,
            )

        result = ExecutionResult(
            task_id=task.id,
            result=result_text,
            reasoning=extract_reasoning(result_text),
            tool_calls=records,
            success=True,
        )
        if include_prompt_data:
            result.prompt_data = capture_prompt_data(messages, result_text, params=params)
        logger.info("task_execution_completed", task_id=task.id, tool_calls=len(records), success=True)
        return result

    async def run_batch(
        self,
        assignments: Sequence[TaskAssignment],
        available_tools: Sequence[ToolDescriptor] = (),
        params: SamplingParams | None = None,
    ) -> list[ExecutionResult]:
        """Execute independent tasks in one model conversation over a shared catalog.

        Tool calls are attributed to tasks through their ``_task_id`` argument
        when it names a task of the batch, otherwise by position (call i to
        task i, surplus calls to the last task).
        """
        if not assignments:
            raise RequestValidationError("tasks", "At least one task is required")
        tasks = [_require_task(assignment.task) for assignment in assignments]
        task_ids = [task.id for task in tasks]
        if len(set(task_ids)) != len(task_ids):
            raise RequestValidationError("tasks", "Task ids in a batch must be unique")

        available_tools = list(available_tools or ())
        sections = [
            build_execution_prompt(assignment.task, assignment.dependency_results) for assignment in assignments
        ]
        prompt = "\n\n---\n\n".join(sections)
        if not available_tools:
            prompt += f"\n\n{BATCH_RESULT_INSTRUCTION}"
        system_prompt = BATCH_SYSTEM_PROMPT if available_tools else EXECUTOR_SYSTEM_PROMPT_NO_TOOLS
        messages: list[BaseMessage] = [SystemMessage(content=system_prompt), HumanMessage(content=prompt)]
        tagged_tools = [_with_task_tag(tool) for tool in available_tools]

        logger.info("batch_execution_started", task_ids=task_ids, tool_count=len(available_tools))

        per_task: dict[str, list[ToolCallRecord]] = {task_id: [] for task_id in task_ids}
        try:
            response = await self._model.complete(messages, tools=tagged_tools or None, params=params)
            final_text = response.content
            if available_tools and response.has_tool_calls:
                parsed = parse_tool_calls(response.raw_tool_calls)
                owners = [self._owning_task(item, index, task_ids) for index, item in enumerate(parsed)]
                records = await self._invoke(parsed, available_tools, task_id=",".join(task_ids))
                for owner, record in zip(owners, records):
                    per_task[owner].append(record)
                follow_up = [
                    *messages,
                    _assistant_turn(response, [item.call for item in parsed]),
                    *_tool_turns(records),
                    HumanMessage(content=BATCH_RESULT_INSTRUCTION),
                ]
                final = await self._model.complete(follow_up, params=params)
                if final.has_tool_calls:
                    logger.warning("executor_second_tool_round_ignored", task_ids=task_ids)
                final_text = final.content
        except ModelInvocationError as exc:
            logger.error("batch_execution_failed", task_ids=task_ids, error=str(exc), error_code=exc.code)
            return [
                ExecutionResult(
                    task_id=task_id,
                    result=None,
                    reasoning="Task execution failed",
                    tool_calls=per_task[task_id],
                    success=False,
                    error=str(exc),
                    error_code=exc.code,
                )
                for task_id in task_ids
            ]

        split = self._split_batch_output(final_text, task_ids)
        results = []
        for task_id in task_ids:
            text = split.get(task_id, final_text)
            results.append(
                ExecutionResult(
                    task_id=task_id,
                    result=text,
                    reasoning=extract_reasoning(text),
                    tool_calls=per_task[task_id],
                    success=True,
                )
            )
        logger.info("batch_execution_completed", task_ids=task_ids, mapped=sorted(split))
        return results

    async def _invoke(
        self,
        parsed: Sequence[ParsedToolCall],
        catalog: Sequence[ToolDescriptor],
        *,
        task_id: str,
    ) -> list[ToolCallRecord]:
        records: list[ToolCallRecord] = []
        for item in parsed:
            if item.error is not None:
                logger.warning("tool_arguments_invalid", task_id=task_id, tool=item.call.name, error=str(item.error))
                metrics.observe_tool_call(tool=item.call.name, outcome="invalid_arguments", latency=0.0)
                records.append(ToolCallRecord(tool_call=item.call, result={"error": str(item.error)}))
                continue
            try:
                result = await self._tools.call(item.call.name, item.call.arguments, catalog=catalog)
            except ToolError as exc:
                logger.error("tool_call_failed", task_id=task_id, tool=item.call.name, error=str(exc))
                result = {"error": str(exc)}
            records.append(ToolCallRecord(tool_call=item.call, result=result))
        return records

    @staticmethod
    def _owning_task(item: ParsedToolCall, index: int, task_ids: Sequence[str]) -> str:
        tag = item.call.arguments.pop(TASK_TAG_ARGUMENT, None)
        if isinstance(tag, str) and tag in task_ids:
            return tag
        if tag is not None:
            logger.warning("tool_call_task_tag_unknown", tool=item.call.name, tag=tag)
        return task_ids[min(index, len(task_ids) - 1)]

    @staticmethod
    def _split_batch_output(text: str, task_ids: Sequence[str]) -> dict[str, str]:
        try:
            payload = decode_json_object(text)
        except UpstreamProtocolError:
            logger.warning("batch_output_not_keyed", response=truncate_for_log(text, 300))
            metrics.increment_stage_fallback(stage="executor_batch", reason="unkeyed_output")
            return {}
        return {task_id: render_payload(payload[task_id]) for task_id in task_ids if task_id in payload}


__all__ = ["TaskExecutor", "extract_reasoning", "build_execution_prompt", "ToolInvoker"]
