from __future__ import annotations

from typing import Any

from pydantic import Field

from conductor.schemas.base import CamelModel
from conductor.schemas.critic import CriticOutput
from conductor.schemas.execution import ExecutionResult, SamplingParams, TaskAssignment
from conductor.schemas.plans import Plan, Task
from conductor.schemas.tools import ToolDescriptor
from conductor.schemas.verification import TaskResultInput, VerificationReport


class PlannerRequest(CamelModel):
    query: str | None = None
    params: SamplingParams = Field(default_factory=SamplingParams)
    enable_prompt_logging: bool = False
    tools: list[ToolDescriptor] | None = Field(
        default=None,
        description="Tool catalog to plan against; discovered from the configured servers when omitted.",
    )


class ExecutorRequest(CamelModel):
    task: Task | None = None
    available_tools: list[ToolDescriptor] = Field(default_factory=list)
    dependency_results: dict[str, Any] = Field(default_factory=dict)
    params: SamplingParams = Field(default_factory=SamplingParams)
    enable_prompt_logging: bool = False


class BatchExecutorRequest(CamelModel):
    tasks: list[TaskAssignment] = Field(default_factory=list)
    available_tools: list[ToolDescriptor] = Field(default_factory=list)
    params: SamplingParams = Field(default_factory=SamplingParams)


class BatchExecutorResponse(CamelModel):
    results: list[ExecutionResult] = Field(default_factory=list)


class VerifierRequest(CamelModel):
    query: str | None = None
    task_results: list[TaskResultInput] = Field(default_factory=list)
    params: SamplingParams = Field(default_factory=SamplingParams)
    enable_prompt_logging: bool = False


class CriticRequest(CamelModel):
    query: str | None = None
    verification: VerificationReport | None = None
    raw_task_results: list[Any] | None = None
    params: SamplingParams = Field(default_factory=SamplingParams)


class PipelineRequest(CamelModel):
    query: str | None = None
    params: SamplingParams = Field(default_factory=SamplingParams)


class PipelineResponse(CamelModel):
    plan: Plan
    results: list[ExecutionResult] = Field(default_factory=list)
    verification: VerificationReport
    critic: CriticOutput


class ToolCatalogResponse(CamelModel):
    tools: list[ToolDescriptor] = Field(default_factory=list)


class HealthResponse(CamelModel):
    status: str = "ok"
    environment: str
    tool_servers: int = 0
