"""
Pydantic response models -- what the gateway returns.
"""

from typing import Any

from pydantic import BaseModel, Field


# =============================================================================
# AGENTS
# =============================================================================


class AgentInfo(BaseModel):
    id: str
    name: str
    description: str = ""
    system_prompt: str
    model_binding_id: str | None = None
    retrieval: dict[str, Any] = Field(default_factory=dict)
    metadata_filters: dict[str, list[str]] = Field(default_factory=dict)
    enable_tools: bool = False
    allow_dangerous_operations: bool = False
    folder_scope: list[str] = Field(default_factory=list)
    capabilities: list[str] = Field(default_factory=list)
    category: str = "general"
    enabled: bool = True
    is_permanent: bool = False
    is_master: bool = False
    temperature: float | None = None
    max_tokens: int | None = None
    created_at: float
    updated_at: float
    test_status: str = "never"
    last_tested_at: float | None = None


class AgentListResponse(BaseModel):
    agents: list[AgentInfo]
    total: int
    master_agent_id: str | None = None
    default_agent_id: str | None = None


class ExecuteResponse(BaseModel):
    answer: str
    agent_used: str
    model_provider: str
    model: str
    sources: list[dict[str, Any]] = Field(default_factory=list)
    usage: dict[str, int] | None = None
    execution_time_ms: float = 0.0
    tool_results: list[dict[str, Any]] = Field(default_factory=list)


class AgentTestResponse(BaseModel):
    agent_id: str
    passed: bool
    test_status: str
    last_tested_at: float | None = None


class TemplateInfo(BaseModel):
    id: str
    name: str
    description: str
    category: str
    capabilities: list[str] = Field(default_factory=list)
    retrieval: dict[str, Any] = Field(default_factory=dict)
    enable_tools: bool = False


class TemplateListResponse(BaseModel):
    templates: list[TemplateInfo]
    total: int


# =============================================================================
# HEALTH
# =============================================================================


class HealthResponse(BaseModel):
    status: str = "healthy"
    agents_total: int = 0
    agents_enabled: int = 0
    uptime_seconds: float = 0.0


class ReadinessResponse(BaseModel):
    ready: bool
    checks: dict[str, bool] = Field(default_factory=dict)


class MetricsResponse(BaseModel):
    total_agents: int
    enabled_agents: int
    disabled_agents: int
    tool_enabled_agents: int
    live_executors: int
    master_agent_id: str | None = None
    default_agent_id: str | None = None
    retriever_ready: bool = False
    by_category: dict[str, int] = Field(default_factory=dict)
    executions_completed: int = 0
    executions_failed: int = 0
    average_execution_ms: float = 0.0
