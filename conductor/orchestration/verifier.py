from __future__ import annotations

import json
import math
from typing import Any, Sequence

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..core import metrics
from ..core.logging import get_logger, truncate_for_log
from ..schemas.execution import SamplingParams
from ..schemas.verification import TaskResultInput, TaskVerification, VerificationReport
from ..services.llm import messages_from_text
from .base import ChatModel, capture_prompt_data, render_payload
from .exceptions import RequestValidationError, UpstreamProtocolError
from .parsing import decode_model_output

logger = get_logger(name=__name__)

TRUNCATION_MARKER = "\n... [TRUNCATED - Result was longer]"
DEFAULT_MAX_RESULT_CHARS = 1000

VERIFIER_SYSTEM_PROMPT = """You are a multi-agent verification specialist. Verify that task results correctly answer the original user query.

RESPONSIBILITIES:
1. Analyze whether each task result is accurate and relevant
2. Check whether the combined results answer the original query
3. Identify inconsistencies or errors between results
4. Assess overall quality and completeness
5. Provide confidence ratings and specific feedback

RESPONSE FORMAT:
Respond with valid JSON in exactly this structure. Keep every text field concise:
{
  "overallCorrect": boolean,
  "confidence": number (0-100),
  "reasoning": "Brief overall assessment",
  "taskVerifications": [
    {
      "taskId": "task_1",
      "isCorrect": boolean,
      "reasoning": "Concise task assessment",
      "confidence": number (0-100),
      "issues": ["brief issue descriptions"]
    }
  ],
  "finalAnswer": "Concise synthesized answer",
  "recommendations": ["brief suggestions"]
}

CRITERIA: accuracy, relevance, completeness, consistency between results, quality."""


class _TaskVerificationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    task_id: str = Field(default="unknown", validation_alias=AliasChoices("taskId", "task_id"))
    is_correct: bool = Field(default=False, validation_alias=AliasChoices("isCorrect", "is_correct"))
    reasoning: str = "No reasoning provided"
    confidence: float = 50
    issues: list[str] = Field(default_factory=list)

    @field_validator("task_id", mode="before")
    @classmethod
    def _coerce_task_id(cls, value: Any) -> str:
        if value is None or value == "":
            return "unknown"
        return str(value)

    @field_validator("is_correct", mode="before")
    @classmethod
    def _truthy(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in {"true", "yes", "1"}
        return bool(value)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _coerce_reasoning(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            return "No reasoning provided"
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 50.0
        if math.isnan(number):
            return 50.0
        return max(0.0, min(100.0, number))

    @field_validator("issues", mode="before")
    @classmethod
    def _coerce_issues(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item is not None]


class _VerificationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    task_verifications: list[_TaskVerificationPayload] | None = Field(
        default=None,
        validation_alias=AliasChoices("taskVerifications", "task_verifications"),
    )
    final_answer: str | None = Field(default=None, validation_alias=AliasChoices("finalAnswer", "final_answer"))
    reasoning: str | None = None
    recommendations: list[str] = Field(default_factory=list)

    @field_validator("task_verifications", mode="before")
    @classmethod
    def _non_list_is_missing(cls, value: Any) -> Any:
        if not isinstance(value, list) or not value:
            return None
        return value

    @field_validator("final_answer", "reasoning", mode="before")
    @classmethod
    def _text_or_none(cls, value: Any) -> str | None:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value if isinstance(value, str) else render_payload(value)

    @field_validator("recommendations", mode="before")
    @classmethod
    def _coerce_recommendations(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item is not None]


def _rounded_mean(values: Sequence[float]) -> int:
    if not values:
        return 0
    # Half-up rounding so 84.5 reports as 85
    return int(math.floor(sum(values) / len(values) + 0.5))


def _result_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def fallback_answer(task_results: Sequence[TaskResultInput]) -> str:
    """Verbatim concatenation of task results, used when the model gives no final answer."""
    if not task_results:
        return "No task results available to synthesize an answer."
    if len(task_results) == 1:
        return _result_text(task_results[0].result)
    lines = ["Based on the completed tasks:", ""]
    for index, item in enumerate(task_results, start=1):
        lines.append(f"{index}. {item.description}: {_result_text(item.result)}")
    return "\n".join(lines) + "\n"


def fallback_report(task_results: Sequence[TaskResultInput]) -> VerificationReport:
    verifications = [
        TaskVerification(
            task_id=item.id,
            is_correct=True,
            reasoning="Fallback verification due to parsing error",
            confidence=60,
            issues=["Could not properly verify due to response parsing error"],
        )
        for item in task_results
    ]
    return VerificationReport(
        overall_correct=True,
        confidence=60,
        task_verifications=verifications,
        final_answer=fallback_answer(task_results),
        reasoning="Fallback verification completed due to parsing error",
        recommendations=["Review task execution for potential improvements"],
    )


def build_verification_prompt(
    query: str,
    task_results: Sequence[TaskResultInput],
    *,
    max_result_chars: int = DEFAULT_MAX_RESULT_CHARS,
) -> str:
    sections = [f"ORIGINAL USER QUERY: {query}", "", "TASK RESULTS TO VERIFY:"]
    for item in task_results:
        text = render_payload(item.result)
        if len(text) > max_result_chars:
            text = text[:max_result_chars] + TRUNCATION_MARKER
        sections.append(f"\nTask ID: {item.id}\nDescription: {item.description}\nResult: {text}\n---")
    sections.append(
        "\nVerify these task results against the original query. Assess:\n"
        "1. Individual task accuracy and relevance\n"
        "2. Overall completeness in answering the query\n"
        "3. Inconsistencies or gaps between results\n"
        "4. Quality of the information provided\n\n"
        "Return your verification in the specified JSON format."
    )
    return "\n".join(sections)


def parse_verification(text: str, task_results: Sequence[TaskResultInput]) -> VerificationReport:
    """Decode a verifier response; raises ``UpstreamProtocolError`` on contract violations."""
    payload = decode_model_output(text, _VerificationPayload)

    if payload.task_verifications is None:
        verifications = [
            TaskVerification(
                task_id=item.id,
                is_correct=True,
                reasoning="Default verification - task appears complete",
                confidence=70,
                issues=[],
            )
            for item in task_results
        ]
    else:
        verifications = []
        for entry in payload.task_verifications:
            issues = list(entry.issues)
            if not entry.is_correct and not issues:
                issues.append(entry.reasoning)
            verifications.append(
                TaskVerification(
                    task_id=entry.task_id,
                    is_correct=entry.is_correct,
                    reasoning=entry.reasoning,
                    confidence=entry.confidence,
                    issues=issues,
                )
            )

    return VerificationReport(
        overall_correct=all(item.is_correct for item in verifications),
        confidence=_rounded_mean([item.confidence for item in verifications]),
        task_verifications=verifications,
        final_answer=payload.final_answer or fallback_answer(task_results),
        reasoning=payload.reasoning or "Verification completed with mixed results",
        recommendations=payload.recommendations,
    )


class Verifier:
    """Scores task results for correctness and consistency against the query."""

    def __init__(self, model: ChatModel, *, max_result_chars: int = DEFAULT_MAX_RESULT_CHARS) -> None:
        self._model = model
        self._max_result_chars = max_result_chars

    async def verify(
        self,
        query: str | None,
        task_results: Sequence[TaskResultInput],
        *,
        params: SamplingParams | None = None,
        include_prompt_data: bool = False,
    ) -> VerificationReport:
        if not query or not query.strip():
            raise RequestValidationError("query")
        task_results = list(task_results or ())
        if not task_results:
            raise RequestValidationError("task_results", "At least one task result is required")

        prompt = build_verification_prompt(query, task_results, max_result_chars=self._max_result_chars)
        messages = messages_from_text(prompt, VERIFIER_SYSTEM_PROMPT)
        logger.info("verification_started", query=truncate_for_log(query), task_count=len(task_results))

        response = await self._model.complete(messages, params=params)

        try:
            report = parse_verification(response.content, task_results)
        except UpstreamProtocolError as exc:
            logger.error(
                "verifier_response_unparseable",
                error=str(exc),
                response=truncate_for_log(response.content, 500),
            )
            metrics.increment_stage_fallback(stage="verifier", reason="unparseable")
            report = fallback_report(task_results)

        if include_prompt_data:
            report.prompt_data = capture_prompt_data(messages, response.content, params=params, model=response.model)
        metrics.observe_verification_confidence(confidence=report.confidence)
        logger.info(
            "verification_completed",
            overall_correct=report.overall_correct,
            confidence=report.confidence,
            tasks_verified=len(report.task_verifications),
        )
        return report


__all__ = ["Verifier", "parse_verification", "fallback_report", "fallback_answer", "build_verification_prompt"]
