"""
API Gateway -- FastAPI application factory.

    uvicorn archon.api.gateway:create_app --factory --host 0.0.0.0 --port 8000

The agent manager is started in the lifespan: either the one passed to
create_app(), or one built from the settings file by archon.runtime.

Security:
  - CORS restricted to configured origins (default: localhost only)
  - Production auth check on startup
  - All external input validated at the boundary by the request models
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..agents.manager import AgentManager
from ..runtime import build_runtime
from .middleware.auth import check_production_auth
from .routes import agents, health

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
    "http://localhost:8080",
]


def _get_cors_origins() -> list[str]:
    origins_env = os.environ.get("CORS_ORIGINS", "")
    if origins_env.strip():
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return DEFAULT_CORS_ORIGINS


def create_app(manager: AgentManager | None = None) -> FastAPI:
    """
    Application factory.

    Args:
        manager: Pre-built agent manager (built from the settings file if None).
    """
    check_production_auth()

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        runtime = None
        if manager is None:
            runtime = build_runtime()
            await runtime.start()
            application.state.manager = runtime.manager
        else:
            await manager.initialize()
            application.state.manager = manager
        application.state.start_time = time.time()
        logger.info("[Gateway] Agent manager ready")
        try:
            yield
        finally:
            if runtime is not None:
                await runtime.stop()
            logger.info("[Gateway] Shut down")

    application = FastAPI(
        title="Archon API",
        description="Multi-agent orchestration over a retrieval-augmented knowledge base",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=_get_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )

    application.state.metrics = {
        "executions_completed": 0,
        "executions_failed": 0,
        "total_execution_ms": 0.0,
    }

    application.include_router(health.router, tags=["Health"])
    application.include_router(agents.router, prefix="/api/v1", tags=["Agents"])

    logger.info("[Gateway] API gateway created")
    return application
