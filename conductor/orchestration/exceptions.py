from __future__ import annotations


class OrchestrationError(RuntimeError):
    """Base class for pipeline stage failures."""


class RequestValidationError(OrchestrationError):
    """Raised when a stage is invoked without a required field."""

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"'{field}' is required")
        self.field = field


class PlanValidationError(OrchestrationError):
    """Raised for plans that cannot be repaired: duplicate ids, blank descriptions, cycles."""

    def __init__(self, message: str, *, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class UpstreamProtocolError(OrchestrationError):
    """Raised while decoding model output that does not match the expected contract."""

    def __init__(self, message: str, *, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw
