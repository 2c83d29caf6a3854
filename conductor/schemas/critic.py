from __future__ import annotations

from typing import Literal

from pydantic import Field

from conductor.schemas.base import CamelModel

Structure = Literal["sectioned", "bulleted", "multi_paragraph", "paragraph", "error_fallback"]
Tone = Literal["apologetic", "enthusiastic", "cautious", "professional"]


class Presentation(CamelModel):
    structure: Structure = "paragraph"
    tone: Tone = "professional"
    completeness: int = Field(70, ge=0, le=100)


class CriticOutput(CamelModel):
    final_answer: str
    confidence: float = Field(0, ge=0, le=100)
    presentation: Presentation = Field(default_factory=Presentation)
    improvements: list[str] = Field(default_factory=list)
    error_code: str | None = None
