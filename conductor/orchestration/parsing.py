from __future__ import annotations

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .exceptions import UpstreamProtocolError

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_PATTERN = re.compile(r"^\s*```[A-Za-z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence (```json ... ```), if present."""
    trimmed = (text or "").strip()
    match = _FENCE_PATTERN.match(trimmed)
    if match:
        return match.group(1).strip()
    return trimmed


def decode_json_object(text: str) -> dict[str, Any]:
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise UpstreamProtocolError("Model returned an empty response", raw=text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end <= start:
            raise UpstreamProtocolError("Model response did not contain JSON", raw=text) from None
        try:
            payload = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as exc:
            raise UpstreamProtocolError(f"Model response is not valid JSON: {exc.msg}", raw=text) from exc
    if not isinstance(payload, dict):
        raise UpstreamProtocolError("Model response must be a JSON object", raw=text)
    return payload


def decode_model_output(text: str, model: type[ModelT]) -> ModelT:
    """Decode ``text`` against ``model``; any violation raises ``UpstreamProtocolError``."""
    payload = decode_json_object(text)
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise UpstreamProtocolError(f"Model response does not match {model.__name__}: {exc}", raw=text) from exc


__all__ = ["strip_code_fences", "decode_json_object", "decode_model_output"]
