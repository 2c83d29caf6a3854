from __future__ import annotations

from typing import Any

from pydantic import Field

from conductor.schemas.base import CamelModel


class Task(CamelModel):
    id: str = ""
    description: str = ""
    dependencies: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    reasoning: str = ""


class Plan(CamelModel):
    tasks: list[Task] = Field(default_factory=list)
    total_steps: int = Field(0, ge=0)
    reasoning: str = ""
    prompt_data: dict[str, Any] | None = None

    def task_ids(self) -> list[str]:
        return [task.id for task in self.tasks]
