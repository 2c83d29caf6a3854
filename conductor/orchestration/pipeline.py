"""Reference caller wiring the stages together.

Stages never order or schedule tasks themselves; this module resolves the
dependency layers of a plan, runs each layer concurrently and hands every
task its prerequisites' results.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, Sequence

from ..core.logging import get_logger, truncate_for_log
from ..schemas.api import PipelineResponse
from ..schemas.execution import ExecutionResult, SamplingParams
from ..schemas.plans import Plan, Task
from ..schemas.tools import ToolDescriptor
from ..schemas.verification import TaskResultInput
from .critic import Critic
from .exceptions import PlanValidationError, RequestValidationError
from .executor import TaskExecutor, ToolInvoker
from .planner import PlanGenerator
from .verifier import Verifier

logger = get_logger(name=__name__)

DEPENDENCY_FAILED = "Dependency task failed"


class ToolCatalogSource(ToolInvoker, Protocol):
    async def discover(self) -> list[ToolDescriptor]: ...


def execution_layers(plan: Plan) -> list[list[Task]]:
    """Group tasks into layers whose members depend only on earlier layers (Kahn's algorithm)."""
    tasks = {task.id: task for task in plan.tasks}
    indegree = {task.id: 0 for task in plan.tasks}
    dependents: dict[str, list[str]] = {task.id: [] for task in plan.tasks}
    for task in plan.tasks:
        for dependency in dict.fromkeys(task.dependencies):
            if dependency not in tasks:
                raise PlanValidationError(f"Task {task.id} depends on unknown task '{dependency}'", task_id=task.id)
            indegree[task.id] += 1
            dependents[dependency].append(task.id)

    layers: list[list[Task]] = []
    ready = [task.id for task in plan.tasks if indegree[task.id] == 0]
    placed = 0
    while ready:
        layers.append([tasks[task_id] for task_id in ready])
        placed += len(ready)
        following: list[str] = []
        for task_id in ready:
            for dependent in dependents[task_id]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    following.append(dependent)
        order = {task.id: index for index, task in enumerate(plan.tasks)}
        ready = sorted(following, key=order.__getitem__)

    if placed != len(plan.tasks):
        blocked = sorted(task_id for task_id, degree in indegree.items() if degree > 0)
        raise PlanValidationError(f"Plan contains a dependency cycle involving {', '.join(blocked)}")
    return layers


def tools_for_task(task: Task, catalog: Sequence[ToolDescriptor]) -> list[ToolDescriptor]:
    wanted = set(task.tools)
    return [tool for tool in catalog if tool.name in wanted]


class OrchestrationPipeline:
    def __init__(
        self,
        tools: ToolCatalogSource,
        planner: PlanGenerator,
        executor: TaskExecutor,
        verifier: Verifier,
        critic: Critic,
    ) -> None:
        self._tools = tools
        self._planner = planner
        self._executor = executor
        self._verifier = verifier
        self._critic = critic

    async def run(self, query: str | None, params: SamplingParams | None = None) -> PipelineResponse:
        if not query or not query.strip():
            raise RequestValidationError("query")

        catalog = await self._tools.discover()
        plan = await self._planner.plan(query, catalog, params=params)
        layers = execution_layers(plan)
        logger.info("pipeline_plan_ready", query=truncate_for_log(query), layers=len(layers), tasks=len(plan.tasks))

        results: dict[str, ExecutionResult] = {}
        for depth, layer in enumerate(layers):
            runnable: list[Task] = []
            for task in layer:
                if all(results[dependency].success for dependency in task.dependencies):
                    runnable.append(task)
                    continue
                logger.warning("pipeline_task_skipped", task_id=task.id, dependencies=task.dependencies)
                results[task.id] = ExecutionResult(
                    task_id=task.id,
                    result=None,
                    reasoning=DEPENDENCY_FAILED,
                    success=False,
                    error=DEPENDENCY_FAILED,
                )

            executed = await asyncio.gather(
                *(
                    self._executor.run(
                        task,
                        tools_for_task(task, catalog),
                        {dependency: results[dependency].result for dependency in task.dependencies},
                        params,
                    )
                    for task in runnable
                )
            )
            for result in executed:
                results[result.task_id] = result
            logger.info(
                "pipeline_layer_completed",
                depth=depth,
                executed=len(runnable),
                failed=sum(1 for result in executed if not result.success),
            )

        ordered = [results[task.id] for task in plan.tasks]
        task_results = [
            TaskResultInput(id=task.id, description=task.description, result=_verifiable(result))
            for task, result in zip(plan.tasks, ordered)
        ]
        verification = await self._verifier.verify(query, task_results, params=params)
        critic = await self._critic.format(
            query,
            verification,
            [item.result for item in task_results],
            params=params,
        )
        logger.info(
            "pipeline_completed",
            tasks=len(ordered),
            failed=sum(1 for result in ordered if not result.success),
            confidence=verification.confidence,
        )
        return PipelineResponse(plan=plan, results=ordered, verification=verification, critic=critic)


def _verifiable(result: ExecutionResult) -> Any:
    if result.success:
        return result.result
    return {"error": result.error or "Task execution failed"}


__all__ = ["OrchestrationPipeline", "execution_layers", "tools_for_task", "DEPENDENCY_FAILED"]
