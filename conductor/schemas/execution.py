from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from conductor.schemas.base import CamelModel
from conductor.schemas.plans import Task
from conductor.schemas.tools import ToolCallRecord

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4000


class SamplingParams(CamelModel):
    model: str | None = None
    temperature: float = Field(DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    seed: int | None = None
    max_tokens: int = Field(DEFAULT_MAX_TOKENS, ge=1)

    @field_validator("seed")
    @classmethod
    def _unset_sentinel_seed(cls, value: int | None) -> int | None:
        # -1 is the "no seed" sentinel used by clients
        if value == -1:
            return None
        return value


class TaskAssignment(CamelModel):
    task: Task
    dependency_results: dict[str, Any] = Field(default_factory=dict)


class ExecutionResult(CamelModel):
    task_id: str
    result: Any = ""
    reasoning: str = ""
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    success: bool = True
    error: str | None = None
    error_code: str | None = None
    prompt_data: dict[str, Any] | None = None
