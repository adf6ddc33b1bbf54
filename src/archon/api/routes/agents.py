"""
Agent API -- roster management and execution.

  GET    /api/v1/agents               -- List agents
  GET    /api/v1/agents/{id}          -- One agent's config
  POST   /api/v1/agents               -- Create an agent (explicit fields or from a template)
  PATCH  /api/v1/agents/{id}          -- Partial update
  DELETE /api/v1/agents/{id}          -- Delete (master and permanent agents refuse)
  POST   /api/v1/agents/{id}/toggle   -- Enable / disable
  POST   /api/v1/agents/{id}/execute  -- Run a query through the agent
  POST   /api/v1/agents/{id}/test     -- Smoke test, records test_status
  GET    /api/v1/templates            -- Built-in agent templates

Mutating and executing routes require the API key.
"""

import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from ...agents.manager import AgentManager
from ...agents.models import (
    AgentConfig,
    AgentExecutionContext,
    NoteContext,
    PromptTemplate,
    RetrievalSettings,
    normalize_set,
)
from ...agents.templates import config_from_template, list_templates
from ...errors import (
    AgentNotFoundError,
    ArchonError,
    ModelCallError,
    SettingsError,
    ValidationError,
)
from ...llm.types import Message
from ..middleware.auth import AuthContext, verify_api_key
from ..models.requests import AgentCreateRequest, AgentUpdateRequest, ExecuteRequest, ToggleRequest
from ..models.responses import (
    AgentInfo,
    AgentListResponse,
    AgentTestResponse,
    ExecuteResponse,
    TemplateInfo,
    TemplateListResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _manager(request: Request) -> AgentManager:
    return request.app.state.manager


def _http_error(e: ArchonError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, AgentNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ModelCallError):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, SettingsError):
        logger.error(f"[AgentsAPI] Settings failure: {e}")
        return HTTPException(status_code=500, detail="Could not persist settings")
    return HTTPException(status_code=500, detail=str(e))


def _coerce_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Request field values to the types AgentConfig holds."""
    if isinstance(data.get("system_prompt"), str):
        data["system_prompt"] = PromptTemplate(data["system_prompt"])
    if isinstance(data.get("retrieval"), dict):
        data["retrieval"] = RetrievalSettings.from_dict(data["retrieval"])
    for key in ("folder_scope", "capabilities"):
        if key in data:
            data[key] = normalize_set(data[key])
    return data


def _build_config(body: AgentCreateRequest, manager: AgentManager) -> AgentConfig:
    binding_id = body.model_binding_id
    if binding_id is None:
        default = manager.models.default_binding()
        binding_id = default.id if default else None

    fields = body.model_dump(exclude_unset=True, exclude={"id", "template_id", "model_binding_id"})
    fields = _coerce_fields({k: v for k, v in fields.items() if v is not None})

    if body.template_id:
        return config_from_template(body.template_id, body.id, binding_id, **fields)

    if not body.name or not body.system_prompt:
        raise ValidationError("name and system_prompt are required without a template_id")
    now = time.time()
    return AgentConfig(id=body.id, model_binding_id=binding_id, created_at=now, updated_at=now, **fields)


# =============================================================================
# ROSTER
# =============================================================================


@router.get("/agents", response_model=AgentListResponse)
async def list_agents(request: Request) -> AgentListResponse:
    manager = _manager(request)
    agents = [AgentInfo(**manager.get_agent(s.id).to_dict()) for s in manager.list_agents()]
    master = manager.get_master_agent()
    default = manager.get_default_agent()
    return AgentListResponse(
        agents=agents,
        total=len(agents),
        master_agent_id=master.id if master else None,
        default_agent_id=default.id if default else None,
    )


@router.get("/agents/{agent_id}", response_model=AgentInfo)
async def get_agent(agent_id: str, request: Request) -> AgentInfo:
    config = _manager(request).get_agent(agent_id)
    if config is None:
        raise HTTPException(status_code=404, detail=f"Agent '{agent_id}' not found")
    return AgentInfo(**config.to_dict())


@router.post("/agents", response_model=AgentInfo, status_code=201)
async def create_agent(
    body: AgentCreateRequest,
    request: Request,
    _auth: AuthContext = Depends(verify_api_key),
) -> AgentInfo:
    manager = _manager(request)
    try:
        config = await manager.add_agent(_build_config(body, manager))
    except ArchonError as e:
        raise _http_error(e)
    logger.info(f"[AgentsAPI] Created: {config.id}")
    return AgentInfo(**config.to_dict())


@router.patch("/agents/{agent_id}", response_model=AgentInfo)
async def update_agent(
    agent_id: str,
    body: AgentUpdateRequest,
    request: Request,
    _auth: AuthContext = Depends(verify_api_key),
) -> AgentInfo:
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        config = await _manager(request).update_agent(agent_id, changes)
    except ArchonError as e:
        raise _http_error(e)
    return AgentInfo(**config.to_dict())


@router.delete("/agents/{agent_id}")
async def delete_agent(
    agent_id: str,
    request: Request,
    _auth: AuthContext = Depends(verify_api_key),
) -> dict:
    try:
        await _manager(request).delete_agent(agent_id)
    except ArchonError as e:
        raise _http_error(e)
    logger.info(f"[AgentsAPI] Deleted: {agent_id}")
    return {"status": "deleted", "agent": agent_id}


@router.post("/agents/{agent_id}/toggle", response_model=AgentInfo)
async def toggle_agent(
    agent_id: str,
    body: ToggleRequest,
    request: Request,
    _auth: AuthContext = Depends(verify_api_key),
) -> AgentInfo:
    try:
        config = await _manager(request).toggle_agent(agent_id, body.enabled)
    except ArchonError as e:
        raise _http_error(e)
    return AgentInfo(**config.to_dict())


# =============================================================================
# EXECUTION
# =============================================================================


@router.post("/agents/{agent_id}/execute", response_model=ExecuteResponse)
async def execute_agent(
    agent_id: str,
    body: ExecuteRequest,
    request: Request,
    _auth: AuthContext = Depends(verify_api_key),
) -> ExecuteResponse:
    context = AgentExecutionContext(
        conversation_history=[Message(role=m.role, content=m.content) for m in body.conversation_history],
        note_context=NoteContext(**body.note_context.model_dump()) if body.note_context else None,
        additional_context=body.additional_context,
    )
    metrics = request.app.state.metrics
    try:
        response = await _manager(request).execute_agent(agent_id, body.query, context)
    except ArchonError as e:
        metrics["executions_failed"] += 1
        raise _http_error(e)

    metrics["executions_completed"] += 1
    metrics["total_execution_ms"] += response.execution_time_ms
    return ExecuteResponse(**response.to_dict())


@router.post("/agents/{agent_id}/test", response_model=AgentTestResponse)
async def test_agent(
    agent_id: str,
    request: Request,
    _auth: AuthContext = Depends(verify_api_key),
) -> AgentTestResponse:
    manager = _manager(request)
    if manager.get_agent(agent_id) is None:
        raise HTTPException(status_code=404, detail=f"Agent '{agent_id}' not found")
    passed = await manager.test_agent(agent_id)
    config = manager.get_agent(agent_id)
    return AgentTestResponse(
        agent_id=agent_id,
        passed=passed,
        test_status=config.test_status,
        last_tested_at=config.last_tested_at,
    )


@router.get("/templates", response_model=TemplateListResponse)
async def templates() -> TemplateListResponse:
    items = [TemplateInfo(**t.to_dict()) for t in list_templates()]
    return TemplateListResponse(templates=items, total=len(items))
