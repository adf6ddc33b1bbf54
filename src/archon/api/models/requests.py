"""
Pydantic request models -- what clients send to the gateway.
"""

from typing import Any

from pydantic import BaseModel, Field

MAX_QUERY_LENGTH = 10_000


# =============================================================================
# AGENT ROSTER
# =============================================================================


class RetrievalSettingsModel(BaseModel):
    top_k: int = Field(5, ge=1, le=20)
    score_threshold: float = Field(0.7, ge=0.0, le=1.0)
    strategy: str = "hybrid"


class AgentCreateRequest(BaseModel):
    """Create an agent from explicit fields, or seed it from a template."""

    id: str = Field(..., min_length=1, max_length=64)
    name: str | None = Field(None, description="Required unless template_id is given")
    system_prompt: str | None = Field(None, description="Must contain {context}")
    model_binding_id: str | None = Field(None, description="Defaults to the default binding")
    template_id: str | None = None
    description: str = ""
    retrieval: RetrievalSettingsModel | None = None
    metadata_filters: dict[str, list[str]] = Field(default_factory=dict)
    enable_tools: bool | None = None
    allow_dangerous_operations: bool = False
    folder_scope: list[str] = Field(default_factory=list)
    capabilities: list[str] = Field(default_factory=list)
    category: str | None = None
    enabled: bool = True
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, ge=1)


class AgentUpdateRequest(BaseModel):
    """Partial update: only the fields that are set are applied."""

    name: str | None = None
    description: str | None = None
    system_prompt: str | None = None
    model_binding_id: str | None = None
    retrieval: dict[str, Any] | None = None
    metadata_filters: dict[str, list[str]] | None = None
    enable_tools: bool | None = None
    allow_dangerous_operations: bool | None = None
    folder_scope: list[str] | None = None
    capabilities: list[str] | None = None
    category: str | None = None
    enabled: bool | None = None
    is_permanent: bool | None = None
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, ge=1)


class ToggleRequest(BaseModel):
    enabled: bool


# =============================================================================
# EXECUTION
# =============================================================================


class HistoryMessage(BaseModel):
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str


class NoteContextModel(BaseModel):
    note_path: str
    note_content: str = ""
    frontmatter: dict[str, Any] = Field(default_factory=dict)


class ExecuteRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=MAX_QUERY_LENGTH)
    conversation_history: list[HistoryMessage] = Field(default_factory=list, max_length=100)
    note_context: NoteContextModel | None = None
    additional_context: dict[str, Any] | None = None
