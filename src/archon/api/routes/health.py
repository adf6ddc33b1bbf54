"""
Health, readiness, and metrics endpoints.

  GET /health       -- Liveness check (200 while the process is alive)
  GET /health/ready -- Readiness check (master agent live, a model binding up)
  GET /metrics      -- Roster and execution counters
"""

import time

from fastapi import APIRouter, Request

from ..models.responses import HealthResponse, MetricsResponse, ReadinessResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def liveness(request: Request) -> HealthResponse:
    stats = request.app.state.manager.get_stats()
    start_time = getattr(request.app.state, "start_time", time.time())
    return HealthResponse(
        status="healthy",
        agents_total=stats["total_agents"],
        agents_enabled=stats["enabled_agents"],
        uptime_seconds=round(time.time() - start_time, 1),
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness(request: Request) -> ReadinessResponse:
    manager = request.app.state.manager
    master = manager.get_master_agent()
    checks = {
        "manager_initialized": manager.is_ready(),
        "master_agent_live": master is not None and manager.get_executor(master.id) is not None,
        "model_available": master is not None and manager.models.is_ready(master.model_binding_id or ""),
    }
    return ReadinessResponse(ready=all(checks.values()), checks=checks)


@router.get("/metrics", response_model=MetricsResponse)
async def metrics(request: Request) -> MetricsResponse:
    stats = request.app.state.manager.get_stats()
    m = request.app.state.metrics
    completed = m["executions_completed"]
    average = m["total_execution_ms"] / completed if completed > 0 else 0.0
    return MetricsResponse(
        **stats,
        executions_completed=completed,
        executions_failed=m["executions_failed"],
        average_execution_ms=round(average, 2),
    )
