"""Application runtime composition helpers."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from release_agent.adapters.distribution import DistributionAdapter
from release_agent.adapters.generation import GenerationAdapter
from release_agent.config import Config
from release_agent.jobs.tracker import AsyncJobTracker
from release_agent.orchestration.loop import OrchestrationLoop
from release_agent.orchestration.workflow import ReleaseWorkflow
from release_agent.services.accounts import AccountService
from release_agent.services.llm_pool import LLMPool
from release_agent.services.rate_limit import RateLimiter
from release_agent.services.reasoning import ReasoningEngine
from release_agent.tools.catalog import Toolbox
from release_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

REASONING_MODEL = "reasoning"


@lru_cache
def get_config() -> Config:
    return Config.from_env()


@lru_cache
def get_llm_pool() -> LLMPool:
    pool = LLMPool()

    # Register the reasoning model if configured
    reasoning = get_config().reasoning
    if reasoning:
        pool.register(REASONING_MODEL, reasoning)

    return pool


@lru_cache
def get_distribution_adapter() -> Optional[DistributionAdapter]:
    config = get_config().distribution
    if config is None:
        logger.warning("Distribution backend not configured (DITTO_EMAIL / DITTO_PASSWORD missing)")
        return None
    return DistributionAdapter(config)


@lru_cache
def get_generation_adapter() -> Optional[GenerationAdapter]:
    config = get_config().generation
    if config is None:
        logger.warning("Generation backend not configured (SUNO_API_KEY missing)")
        return None
    return GenerationAdapter(config)


@lru_cache
def get_job_tracker() -> Optional[AsyncJobTracker]:
    adapter = get_generation_adapter()
    if adapter is None:
        return None
    return AsyncJobTracker(adapter, config=get_config().tracker)


@lru_cache
def get_rate_limiter() -> RateLimiter:
    return RateLimiter(get_config().rate_limits)


@lru_cache
def get_accounts() -> AccountService:
    config = get_config()
    return AccountService(config.api_keys, require_api_key=config.require_api_key)


@lru_cache
def get_workflow() -> Optional[ReleaseWorkflow]:
    tracker = get_job_tracker()
    distribution = get_distribution_adapter()
    if tracker is None or distribution is None:
        return None
    return ReleaseWorkflow(tracker, distribution)


@lru_cache
def get_registry() -> ToolRegistry:
    toolbox = Toolbox(
        distribution=get_distribution_adapter(),
        tracker=get_job_tracker(),
        workflow=get_workflow(),
        rate_limiter=get_rate_limiter(),
        accounts=get_accounts(),
    )
    return ToolRegistry(toolbox.specs())


@lru_cache
def get_loop() -> Optional[OrchestrationLoop]:
    config = get_config()
    if config.reasoning is None:
        logger.warning("Reasoning engine not configured (OPENAI_API_KEY or AZURE_OPENAI_* missing)")
        return None
    engine = ReasoningEngine(get_llm_pool(), REASONING_MODEL, config.reasoning)
    return OrchestrationLoop(engine, get_registry(), max_iterations=config.max_iterations)


async def shutdown() -> None:
    """Close every HTTP client created by the getters above."""
    for adapter in (get_distribution_adapter(), get_generation_adapter()):
        if adapter is not None:
            await adapter.aclose()
    await get_llm_pool().aclose()
