"""
Orchestration stages.

- Plan generation over a discovered tool catalog
- Task execution through a single tool-calling round-trip
- Verification of task results against the query
- Critique and formatting of the final answer
- A reference pipeline that orders tasks by dependency layer
"""

from .critic import Critic
from .exceptions import OrchestrationError, PlanValidationError, RequestValidationError, UpstreamProtocolError
from .executor import TaskExecutor, extract_reasoning
from .pipeline import OrchestrationPipeline, execution_layers
from .planner import PlanGenerator, validate_plan
from .verifier import Verifier

__all__ = [
    "Critic",
    "OrchestrationError",
    "OrchestrationPipeline",
    "PlanGenerator",
    "PlanValidationError",
    "RequestValidationError",
    "TaskExecutor",
    "UpstreamProtocolError",
    "Verifier",
    "execution_layers",
    "extract_reasoning",
    "validate_plan",
]
