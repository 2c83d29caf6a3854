from __future__ import annotations

from typing import Any, Sequence

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictStr, field_validator

from ..core import metrics
from ..core.logging import get_logger, truncate_for_log
from ..schemas.execution import SamplingParams
from ..schemas.plans import Plan, Task
from ..schemas.tools import ToolDescriptor
from ..services.llm import messages_from_text
from .base import ChatModel, capture_prompt_data
from .exceptions import PlanValidationError, RequestValidationError, UpstreamProtocolError
from .parsing import decode_model_output

logger = get_logger(name=__name__)

PLANNER_SYSTEM_PROMPT = """You are a multi-agent task planner. Break complex user queries into executable tasks that can be performed with the available tools.

REQUIREMENTS:
1. Create a step-by-step plan with clear dependencies
2. Optimize for parallel execution where possible
3. Use ONLY the tools provided in the available tools list
4. Return valid JSON in the exact format specified
5. Each task must be atomic and executable in a single model call
6. Keep dependencies minimal to maximize parallelization

RESPONSE FORMAT:
{
  "reasoning": "Brief explanation of your planning strategy",
  "tasks": [
    {
      "id": "task_1",
      "description": "Clear, actionable task description",
      "dependencies": [],
      "tools": ["tool_name"],
      "reasoning": "Why this task is needed"
    }
  ],
  "totalSteps": 1
}

GUIDELINES:
- Task ids are sequential: task_1, task_2, ...
- Dependencies are ids of tasks that must complete first
- The tools array contains only tool names from the available tools
- Each task has a single, focused objective"""

FALLBACK_TASK_DESCRIPTION = "Execute the user query using available tools"


class _TaskPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    description: StrictStr
    dependencies: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    reasoning: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("dependencies", "tools", mode="before")
    @classmethod
    def _coerce_names(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if isinstance(item, (str, int)) and not isinstance(item, bool)]

    @field_validator("reasoning", mode="before")
    @classmethod
    def _coerce_reasoning(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""


class _PlanPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reasoning: str = "Plan created"
    tasks: list[_TaskPayload]
    total_steps: int | None = Field(default=None, validation_alias=AliasChoices("totalSteps", "total_steps"))

    @field_validator("tasks")
    @classmethod
    def _require_tasks(cls, value: list[_TaskPayload]) -> list[_TaskPayload]:
        if not value:
            raise ValueError("plan contains no tasks")
        return value

    @field_validator("reasoning", mode="before")
    @classmethod
    def _coerce_plan_reasoning(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            return "Plan created"
        return value

    @field_validator("total_steps", mode="before")
    @classmethod
    def _coerce_total(cls, value: Any) -> int | None:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 1:
            return None
        return int(value)


def fallback_plan() -> Plan:
    return Plan(
        tasks=[
            Task(
                id="task_1",
                description=FALLBACK_TASK_DESCRIPTION,
                dependencies=[],
                tools=[],
                reasoning="Fallback plan due to parsing error",
            )
        ],
        total_steps=1,
        reasoning="Fallback plan created due to response parsing error",
    )


def build_planning_prompt(query: str, catalog: Sequence[ToolDescriptor]) -> str:
    tools_list = "\n".join(
        f"- {tool.name}: {tool.description} (Server: {tool.owner_server_id or 'unknown'})" for tool in catalog
    )
    return (
        f"USER QUERY: {query}\n\n"
        f"AVAILABLE TOOLS:\n{tools_list or '- (none)'}\n\n"
        "Create an execution plan that breaks the user query into executable tasks. Focus on:\n"
        "1. Task decomposition with clear, minimal dependencies\n"
        "2. Using only the available tools listed above\n"
        "3. Parallel execution opportunities\n"
        "4. Clear, actionable task descriptions\n\n"
        "Return your response as valid JSON following the specified format."
    )


def parse_plan(text: str) -> Plan:
    """Decode a planner response; raises ``UpstreamProtocolError`` on any contract violation."""
    payload = decode_model_output(text, _PlanPayload)
    tasks = [
        Task(
            id=item.id or f"task_{index}",
            description=item.description,
            dependencies=item.dependencies,
            tools=item.tools,
            reasoning=item.reasoning,
        )
        for index, item in enumerate(payload.tasks, start=1)
    ]
    return Plan(
        tasks=tasks,
        total_steps=payload.total_steps or len(tasks),
        reasoning=payload.reasoning or "Plan created",
    )


def validate_plan(plan: Plan, catalog: Sequence[ToolDescriptor] | None = None) -> Plan:
    """Repair recoverable plan defects in place and reject the unrecoverable ones."""
    seen: set[str] = set()
    for task_id in plan.task_ids():
        if task_id in seen:
            raise PlanValidationError(f"Duplicate task id '{task_id}' in plan", task_id=task_id)
        seen.add(task_id)

    known_tools = {tool.name for tool in catalog} if catalog is not None else None
    for task in plan.tasks:
        kept: list[str] = []
        for dependency in task.dependencies:
            if dependency == task.id:
                logger.warning("plan_self_dependency_removed", task_id=task.id)
            elif dependency not in seen:
                logger.warning("plan_unknown_dependency_removed", task_id=task.id, dependency=dependency)
            elif dependency not in kept:
                kept.append(dependency)
        task.dependencies = kept

        if known_tools is not None:
            unknown = [name for name in task.tools if name not in known_tools]
            if unknown:
                logger.warning("plan_unknown_tools_removed", task_id=task.id, tools=unknown)
                task.tools = [name for name in task.tools if name in known_tools]

        if not task.description or not task.description.strip():
            raise PlanValidationError(f"Task {task.id} has empty description", task_id=task.id)

    logger.info(
        "plan_validated",
        task_count=len(plan.tasks),
        total_dependencies=sum(len(task.dependencies) for task in plan.tasks),
    )
    return plan


class PlanGenerator:
    """Decomposes a query into a task graph over the discovered tool catalog."""

    def __init__(self, model: ChatModel) -> None:
        self._model = model

    async def plan(
        self,
        query: str | None,
        catalog: Sequence[ToolDescriptor],
        *,
        params: SamplingParams | None = None,
        include_prompt_data: bool = False,
    ) -> Plan:
        if not query or not query.strip():
            raise RequestValidationError("query")

        messages = messages_from_text(build_planning_prompt(query, catalog), PLANNER_SYSTEM_PROMPT)
        logger.info("planning_started", query=truncate_for_log(query), tool_count=len(catalog))

        # Model errors propagate so the caller can react (e.g. switch model).
        response = await self._model.complete(messages, params=params)

        try:
            plan = parse_plan(response.content)
            source = "model"
        except UpstreamProtocolError as exc:
            logger.error("planner_response_unparseable", error=str(exc), response=truncate_for_log(response.content, 500))
            metrics.increment_stage_fallback(stage="planner", reason="unparseable")
            plan = fallback_plan()
            source = "fallback"

        validate_plan(plan, catalog)
        metrics.record_plan_size(source=source, tasks=len(plan.tasks))
        if include_prompt_data:
            plan.prompt_data = capture_prompt_data(messages, response.content, params=params, model=response.model)
        logger.info("plan_created", task_count=len(plan.tasks), total_steps=plan.total_steps, source=source)
        return plan


__all__ = ["PlanGenerator", "validate_plan", "parse_plan", "fallback_plan", "build_planning_prompt"]
