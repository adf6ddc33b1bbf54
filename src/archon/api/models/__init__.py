"""Pydantic models for API request/response contracts."""
from .requests import (
    AgentCreateRequest,
    AgentUpdateRequest,
    ExecuteRequest,
    HistoryMessage,
    NoteContextModel,
    RetrievalSettingsModel,
    ToggleRequest,
)
from .responses import (
    AgentInfo,
    AgentListResponse,
    ExecuteResponse,
    HealthResponse,
    MetricsResponse,
    ReadinessResponse,
    TemplateInfo,
    TemplateListResponse,
    AgentTestResponse,
)
