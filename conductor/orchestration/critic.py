from __future__ import annotations

import json
from typing import Any, Sequence

from ..core import metrics
from ..core.logging import get_logger, truncate_for_log
from ..schemas.critic import CriticOutput, Presentation, Structure, Tone
from ..schemas.execution import SamplingParams
from ..schemas.verification import TaskResultInput, VerificationReport
from ..services.llm import ModelInvocationError, messages_from_text
from .base import ChatModel
from .exceptions import RequestValidationError

logger = get_logger(name=__name__)

ERROR_FALLBACK_ANSWER = "I apologize, but I encountered an error while formatting the final response."

CRITIC_SYSTEM_PROMPT = """You are a multi-agent response critic and formatter. Create the final, user-friendly response from verified task results.

RESPONSIBILITIES:
1. Turn verified technical results into clear, user-friendly language
2. Address the original query directly
3. Structure information logically
4. Match the confidence of the response to the verification results
5. Highlight key insights and actionable information

GUIDELINES:
- Write in clear, conversational language
- Use Markdown formatting (headers, bullet points) where it helps
- Be concise but complete
- Include relevant details without overwhelming the reader"""


def build_critic_prompt(
    query: str,
    verification: VerificationReport,
    raw_task_results: Sequence[Any] | None = None,
) -> str:
    prompt = (
        f"ORIGINAL USER QUERY: {query}\n\n"
        "VERIFICATION RESULTS:\n"
        f"- Overall Correct: {str(verification.overall_correct).lower()}\n"
        f"- Confidence: {verification.confidence}%\n"
        f"- Verified Answer: {verification.final_answer}\n"
        f"- Reasoning: {verification.reasoning}"
    )

    if verification.task_verifications:
        prompt += "\n\nTASK VERIFICATION DETAILS:"
        for item in verification.task_verifications:
            verdict = "CORRECT" if item.is_correct else "INCORRECT"
            prompt += f"\n- Task {item.task_id}: {verdict} ({item.confidence:g}% confidence)"
            prompt += f"\n  Reasoning: {item.reasoning}"
            if item.issues:
                prompt += f"\n  Issues: {', '.join(item.issues)}"

    if verification.recommendations:
        prompt += "\n\nRECOMMENDATIONS:"
        for recommendation in verification.recommendations:
            prompt += f"\n- {recommendation}"

    if raw_task_results:
        prompt += "\n\nDETAILED TASK RESULTS:"
        for index, result in enumerate(raw_task_results, start=1):
            if isinstance(result, TaskResultInput):
                result = result.result
            text = result if isinstance(result, str) else json.dumps(result, default=str)
            prompt += f"\n{index}. {text}"

    prompt += (
        "\n\nCreate a final, user-friendly response that:\n"
        "1. Directly answers the original query\n"
        "2. Is clear and well-structured\n"
        "3. Reflects the appropriate confidence level\n"
        "4. Uses good formatting for readability\n"
        "5. Keeps a helpful, professional tone"
    )
    return prompt


def _lines(text: str) -> list[str]:
    return [line.lstrip() for line in text.split("\n")]


def detect_structure(text: str) -> Structure:
    lines = _lines(text)
    if any(line.startswith("#") for line in lines):
        return "sectioned"
    if any(line.startswith(("-", "*")) for line in lines):
        return "bulleted"
    if "\n\n" in text:
        return "multi_paragraph"
    return "paragraph"


def detect_tone(text: str, confidence: float) -> Tone:
    lowered = text.lower()
    if "sorry" in lowered or "unfortunately" in lowered:
        return "apologetic"
    if "!" in text or "great" in lowered:
        return "enthusiastic"
    if confidence < 70:
        return "cautious"
    return "professional"


def _has_formatting(text: str) -> bool:
    return any(marker in text for marker in ("#", "*", "-"))


def _has_structure(text: str) -> bool:
    return any(marker in text for marker in ("\n\n", "\n#", "\n-"))


def score_completeness(text: str) -> int:
    words = len(text.split())
    score = 70
    if words > 50:
        score += 10
    if words > 100:
        score += 10
    if _has_formatting(text):
        score += 5
    if _has_structure(text):
        score += 5
    return min(100, score)


def suggest_improvements(text: str, confidence: float, completeness: int) -> list[str]:
    improvements: list[str] = []
    if confidence < 80:
        improvements.append("Consider gathering additional information for higher confidence")
    if completeness < 80:
        improvements.append("Response could be more comprehensive")
    if not _has_formatting(text) and len(text.split()) > 100:
        improvements.append("Consider using formatting for better readability")
    return improvements


def assess_answer(answer: str, confidence: float) -> CriticOutput:
    """Deterministic post-pass deriving presentation metadata from free text."""
    final_answer = answer.strip()
    completeness = score_completeness(final_answer)
    return CriticOutput(
        final_answer=final_answer,
        confidence=confidence,
        presentation=Presentation(
            structure=detect_structure(final_answer),
            tone=detect_tone(final_answer, confidence),
            completeness=completeness,
        ),
        improvements=suggest_improvements(final_answer, confidence, completeness),
    )


def error_fallback(verification: VerificationReport, error: ModelInvocationError) -> CriticOutput:
    return CriticOutput(
        final_answer=verification.final_answer or ERROR_FALLBACK_ANSWER,
        confidence=verification.confidence,
        presentation=Presentation(structure="error_fallback", tone="apologetic", completeness=50),
        improvements=["Address the error that occurred in response formatting"],
        error_code=error.code,
    )


class Critic:
    """Renders the user-facing answer from a verification report."""

    def __init__(self, model: ChatModel) -> None:
        self._model = model

    async def format(
        self,
        query: str | None,
        verification: VerificationReport | None,
        raw_task_results: Sequence[Any] | None = None,
        *,
        params: SamplingParams | None = None,
    ) -> CriticOutput:
        if not query or not query.strip():
            raise RequestValidationError("query", "Original query and verification are required")
        if verification is None:
            raise RequestValidationError("verification", "Original query and verification are required")

        messages = messages_from_text(build_critic_prompt(query, verification, raw_task_results), CRITIC_SYSTEM_PROMPT)
        logger.info(
            "critic_started",
            query=truncate_for_log(query),
            verification_confidence=verification.confidence,
            overall_correct=verification.overall_correct,
        )

        try:
            response = await self._model.complete(messages, params=params)
        except ModelInvocationError as exc:
            logger.error("critic_failed", error=str(exc), error_code=exc.code)
            metrics.increment_stage_fallback(stage="critic", reason=exc.code)
            return error_fallback(verification, exc)

        output = assess_answer(response.content, verification.confidence)
        logger.info(
            "critic_completed",
            answer_length=len(output.final_answer),
            structure=output.presentation.structure,
            tone=output.presentation.tone,
            completeness=output.presentation.completeness,
        )
        return output


__all__ = ["Critic", "assess_answer", "build_critic_prompt", "detect_structure", "detect_tone", "score_completeness"]
