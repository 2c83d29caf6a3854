from __future__ import annotations

import pytest

from conductor.orchestration.critic import (
    ERROR_FALLBACK_ANSWER,
    Critic,
    assess_answer,
    build_critic_prompt,
    detect_structure,
    detect_tone,
    score_completeness,
)
from conductor.orchestration.exceptions import RequestValidationError
from conductor.schemas.verification import TaskVerification, VerificationReport
from conductor.services.llm import ModelAuthenticationError
from tests.helpers.stubs import StubChatModel

GATHER_MORE = "Consider gathering additional information for higher confidence"


def _report(confidence: int = 90, **overrides) -> VerificationReport:
    fields = {
        "overall_correct": True,
        "confidence": confidence,
        "task_verifications": [
            TaskVerification(task_id="task_1", is_correct=True, reasoning="ok", confidence=confidence)
        ],
        "final_answer": "Tokyo is sunny.",
        "reasoning": "Looks right",
        "recommendations": ["Double-check the forecast source"],
    }
    fields.update(overrides)
    return VerificationReport(**fields)


@pytest.mark.asyncio
async def test_low_confidence_report_gets_cautious_tone() -> None:
    model = StubChatModel(["Tokyo appears to be sunny today, though the data may be incomplete."])

    output = await Critic(model).format("Weather in Tokyo?", _report(confidence=40))

    assert output.confidence == 40
    assert output.presentation.tone == "cautious"
    assert GATHER_MORE in output.improvements
    assert output.error_code is None


@pytest.mark.asyncio
async def test_prompt_carries_verification_details_and_raw_results() -> None:
    model = StubChatModel(["Answer"])

    await Critic(model).format("Weather in Tokyo?", _report(), raw_task_results=["Sunny", {"temp": 24}])

    prompt = model.calls[0]["messages"][1].content
    assert "- Overall Correct: true" in prompt
    assert "- Confidence: 90%" in prompt
    assert "- Task task_1: CORRECT (90% confidence)" in prompt
    assert "RECOMMENDATIONS:\n- Double-check the forecast source" in prompt
    assert "DETAILED TASK RESULTS:\n1. Sunny\n2. {\"temp\": 24}" in prompt


@pytest.mark.asyncio
async def test_model_failure_falls_back_to_verified_answer() -> None:
    model = StubChatModel([ModelAuthenticationError("Authentication failed - check API key", status_code=401)])

    output = await Critic(model).format("Weather in Tokyo?", _report(confidence=75))

    assert output.final_answer == "Tokyo is sunny."
    assert output.confidence == 75
    assert output.presentation.structure == "error_fallback"
    assert output.presentation.tone == "apologetic"
    assert output.presentation.completeness == 50
    assert output.error_code == "model_auth_failed"


@pytest.mark.asyncio
async def test_model_failure_without_verified_answer_uses_apology() -> None:
    model = StubChatModel([ModelAuthenticationError("nope")])

    output = await Critic(model).format("q", _report(final_answer=""))

    assert output.final_answer == ERROR_FALLBACK_ANSWER


@pytest.mark.asyncio
async def test_missing_inputs_are_rejected() -> None:
    critic = Critic(StubChatModel([]))

    with pytest.raises(RequestValidationError):
        await critic.format("", _report())
    with pytest.raises(RequestValidationError) as excinfo:
        await critic.format("query", None)
    assert excinfo.value.field == "verification"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("# Weather\nSunny", "sectioned"),
        ("Summary:\n- Sunny\n- 24C", "bulleted"),
        ("  * indented bullet", "bulleted"),
        ("First part.\n\nSecond part.", "multi_paragraph"),
        ("Just one line.", "paragraph"),
    ],
)
def test_detect_structure(text: str, expected: str) -> None:
    assert detect_structure(text) == expected


@pytest.mark.parametrize(
    ("text", "confidence", "expected"),
    [
        ("Sorry, the service failed.", 95, "apologetic"),
        ("Great news, it is sunny!", 95, "enthusiastic"),
        ("It is sunny.", 69, "cautious"),
        ("It is sunny.", 70, "professional"),
    ],
)
def test_detect_tone(text: str, confidence: int, expected: str) -> None:
    assert detect_tone(text, confidence) == expected


def test_completeness_rewards_length_and_formatting() -> None:
    short = "It is sunny."
    long_formatted = "# Forecast\n\n" + "- " + " ".join(["word"] * 120)

    assert score_completeness(short) == 70
    assert score_completeness(long_formatted) == 100


def test_assess_answer_suggests_formatting_for_long_plain_text() -> None:
    output = assess_answer(" ".join(["plain"] * 120), 95)

    assert output.presentation.completeness == 90
    assert output.improvements == ["Consider using formatting for better readability"]


def test_build_critic_prompt_marks_incorrect_tasks() -> None:
    report = _report(
        task_verifications=[
            TaskVerification(task_id="task_2", is_correct=False, reasoning="bad", confidence=30, issues=["stale"])
        ]
    )

    prompt = build_critic_prompt("q", report)

    assert "- Task task_2: INCORRECT (30% confidence)" in prompt
    assert "Issues: stale" in prompt
