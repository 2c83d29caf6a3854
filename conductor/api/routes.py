from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, status

from ..core.config import Settings
from ..core.logging import get_logger
from ..dependencies import (
    get_app_settings,
    get_critic,
    get_executor,
    get_pipeline,
    get_planner,
    get_tool_registry,
    get_verifier,
)
from ..orchestration.critic import Critic
from ..orchestration.exceptions import PlanValidationError, RequestValidationError
from ..orchestration.executor import TaskExecutor
from ..orchestration.pipeline import OrchestrationPipeline
from ..orchestration.planner import PlanGenerator
from ..orchestration.verifier import Verifier
from ..schemas.api import (
    BatchExecutorRequest,
    BatchExecutorResponse,
    CriticRequest,
    ExecutorRequest,
    HealthResponse,
    PipelineRequest,
    PipelineResponse,
    PlannerRequest,
    ToolCatalogResponse,
    VerifierRequest,
)
from ..schemas.critic import CriticOutput
from ..schemas.execution import ExecutionResult
from ..schemas.plans import Plan
from ..schemas.verification import VerificationReport
from ..services.llm import ModelInvocationError, ModelRateLimitedError
from ..tools.registry import ToolRegistry

router = APIRouter()
logger = get_logger(name=__name__)


def _raise_http(exc: Exception, *, stage: str) -> NoReturn:
    if isinstance(exc, RequestValidationError):
        logger.warning("request_rejected", stage=stage, field=exc.field, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(exc), "code": "validation_error", "field": exc.field},
        ) from exc
    if isinstance(exc, PlanValidationError):
        logger.warning("plan_rejected", stage=stage, task_id=exc.task_id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": str(exc), "code": "invalid_plan", "taskId": exc.task_id},
        ) from exc
    if isinstance(exc, ModelInvocationError):
        code = (
            status.HTTP_429_TOO_MANY_REQUESTS
            if isinstance(exc, ModelRateLimitedError)
            else status.HTTP_502_BAD_GATEWAY
        )
        logger.error("model_invocation_failed", stage=stage, error=str(exc), error_code=exc.code)
        raise HTTPException(status_code=code, detail={"error": str(exc), "code": exc.code}) from exc
    raise exc


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    return HealthResponse(environment=settings.environment, tool_servers=len(settings.tool_servers))


@router.get("/tools", response_model=ToolCatalogResponse, tags=["tools"])
async def list_tools(registry: ToolRegistry = Depends(get_tool_registry)) -> ToolCatalogResponse:
    return ToolCatalogResponse(tools=await registry.discover())


@router.post("/planner", response_model=Plan, response_model_exclude_none=True, tags=["pipeline"])
async def create_plan(
    payload: PlannerRequest,
    planner: PlanGenerator = Depends(get_planner),
    registry: ToolRegistry = Depends(get_tool_registry),
) -> Plan:
    try:
        if not payload.query or not payload.query.strip():
            raise RequestValidationError("query", "Query is required")
        catalog = payload.tools if payload.tools is not None else await registry.discover()
        return await planner.plan(
            payload.query,
            catalog,
            params=payload.params,
            include_prompt_data=payload.enable_prompt_logging,
        )
    except (RequestValidationError, PlanValidationError, ModelInvocationError) as exc:
        _raise_http(exc, stage="planner")


@router.post("/executor", response_model=ExecutionResult, response_model_exclude_none=True, tags=["pipeline"])
async def execute_task(
    payload: ExecutorRequest,
    executor: TaskExecutor = Depends(get_executor),
) -> ExecutionResult:
    try:
        return await executor.run(
            payload.task,
            payload.available_tools,
            payload.dependency_results,
            payload.params,
            include_prompt_data=payload.enable_prompt_logging,
        )
    except RequestValidationError as exc:
        _raise_http(exc, stage="executor")


@router.post("/executor/batch", response_model=BatchExecutorResponse, response_model_exclude_none=True, tags=["pipeline"])
async def execute_batch(
    payload: BatchExecutorRequest,
    executor: TaskExecutor = Depends(get_executor),
) -> BatchExecutorResponse:
    try:
        results = await executor.run_batch(payload.tasks, payload.available_tools, payload.params)
    except RequestValidationError as exc:
        _raise_http(exc, stage="executor_batch")
    return BatchExecutorResponse(results=results)


@router.post("/verifier", response_model=VerificationReport, response_model_exclude_none=True, tags=["pipeline"])
async def verify_results(
    payload: VerifierRequest,
    verifier: Verifier = Depends(get_verifier),
) -> VerificationReport:
    try:
        return await verifier.verify(
            payload.query,
            payload.task_results,
            params=payload.params,
            include_prompt_data=payload.enable_prompt_logging,
        )
    except (RequestValidationError, ModelInvocationError) as exc:
        _raise_http(exc, stage="verifier")


@router.post("/critic", response_model=CriticOutput, response_model_exclude_none=True, tags=["pipeline"])
async def critique(
    payload: CriticRequest,
    critic: Critic = Depends(get_critic),
) -> CriticOutput:
    try:
        return await critic.format(payload.query, payload.verification, payload.raw_task_results, params=payload.params)
    except RequestValidationError as exc:
        _raise_http(exc, stage="critic")


@router.post("/pipeline", response_model=PipelineResponse, response_model_exclude_none=True, tags=["pipeline"])
async def run_pipeline(
    payload: PipelineRequest,
    pipeline: OrchestrationPipeline = Depends(get_pipeline),
) -> PipelineResponse:
    try:
        return await pipeline.run(payload.query, payload.params)
    except (RequestValidationError, PlanValidationError, ModelInvocationError) as exc:
        _raise_http(exc, stage="pipeline")
