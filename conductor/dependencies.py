from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends

from .core.config import Settings, get_settings
from .orchestration.critic import Critic
from .orchestration.executor import TaskExecutor
from .orchestration.pipeline import OrchestrationPipeline
from .orchestration.planner import PlanGenerator
from .orchestration.verifier import Verifier
from .services.llm import LLMService
from .tools.registry import ToolRegistry


async def get_app_settings() -> Settings:
    return get_settings()


async def get_llm_service(
    settings: Settings = Depends(get_app_settings),
) -> AsyncIterator[LLMService]:
    service = LLMService.from_settings(settings)
    try:
        yield service
    finally:
        await service.aclose()


async def get_tool_registry(
    settings: Settings = Depends(get_app_settings),
) -> AsyncIterator[ToolRegistry]:
    registry = ToolRegistry.from_settings(settings)
    try:
        yield registry
    finally:
        await registry.aclose()


async def get_planner(llm: LLMService = Depends(get_llm_service)) -> PlanGenerator:
    return PlanGenerator(llm)


async def get_executor(
    llm: LLMService = Depends(get_llm_service),
    registry: ToolRegistry = Depends(get_tool_registry),
) -> TaskExecutor:
    return TaskExecutor(llm, registry)


async def get_verifier(
    llm: LLMService = Depends(get_llm_service),
    settings: Settings = Depends(get_app_settings),
) -> Verifier:
    return Verifier(llm, max_result_chars=settings.verifier.max_result_chars)


async def get_critic(llm: LLMService = Depends(get_llm_service)) -> Critic:
    return Critic(llm)


async def get_pipeline(
    registry: ToolRegistry = Depends(get_tool_registry),
    planner: PlanGenerator = Depends(get_planner),
    executor: TaskExecutor = Depends(get_executor),
    verifier: Verifier = Depends(get_verifier),
    critic: Critic = Depends(get_critic),
) -> OrchestrationPipeline:
    return OrchestrationPipeline(registry, planner, executor, verifier, critic)
