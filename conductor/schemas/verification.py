from __future__ import annotations

from typing import Any

from pydantic import Field

from conductor.schemas.base import CamelModel


class TaskResultInput(CamelModel):
    id: str = ""
    description: str = ""
    result: Any = None


class TaskVerification(CamelModel):
    task_id: str
    is_correct: bool = True
    reasoning: str = ""
    confidence: float = Field(50, ge=0, le=100)
    issues: list[str] = Field(default_factory=list)


class VerificationReport(CamelModel):
    overall_correct: bool = True
    confidence: int = Field(0, ge=0, le=100)
    task_verifications: list[TaskVerification] = Field(default_factory=list)
    final_answer: str = ""
    reasoning: str = ""
    recommendations: list[str] = Field(default_factory=list)
    prompt_data: dict[str, Any] | None = None
