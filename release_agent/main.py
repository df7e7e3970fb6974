"""FastAPI entry-point for the release assistant."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from release_agent.api.chat import router as chat_router
from release_agent.api.routes import account_router, jobs_router, tools_router
from release_agent.runtime import get_config, get_loop, get_registry, shutdown

logging.basicConfig(
    level=get_config().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    # Startup: build the catalogue so misconfiguration shows up in the logs
    registry = get_registry()
    get_loop()
    logger.info(f"Release assistant ready with {len(registry)} tools")
    yield
    # Shutdown: close backend HTTP clients
    await shutdown()


app = FastAPI(title="Release Assistant", lifespan=lifespan)
app.include_router(chat_router)
app.include_router(tools_router)
app.include_router(jobs_router)
app.include_router(account_router)


@app.get("/health")
async def health() -> dict:
    config = get_config()
    return {
        "status": "ok",
        "environment": config.environment,
        "backends": {
            "reasoning": config.reasoning is not None,
            "distribution": config.distribution is not None,
            "generation": config.generation is not None,
        },
    }
