"""
Agent data model.

AgentConfig is frozen: the manager replaces configs, it never mutates them,
so an executor's snapshot cannot change underneath a running call.

PromptTemplate carries a named {context} slot that is checked when the
template is built. Rendering is plain substitution of that one slot, so
other braces in a prompt (JSON examples, code) are left alone.
"""

import time
from dataclasses import dataclass, field, replace
from typing import Any

from ..errors import ValidationError
from ..llm.types import Message, TokenUsage
from ..rag.models import ChunkMetadata, RetrievedChunk
from ..tools.types import ToolResult

CONTEXT_SLOT = "{context}"

TEST_STATUS_NEVER = "never"
TEST_STATUS_PASSED = "passed"
TEST_STATUS_FAILED = "failed"

DEFAULT_TOP_K = 5
DEFAULT_SCORE_THRESHOLD = 0.7
SEARCH_STRATEGIES = ("semantic", "keyword", "hybrid")


@dataclass(frozen=True)
class PromptTemplate:
    """A system prompt with a {context} slot for retrieved knowledge."""

    text: str

    def __post_init__(self):
        if not isinstance(self.text, str) or CONTEXT_SLOT not in self.text:
            raise ValidationError(
                f"System prompt must contain the {CONTEXT_SLOT} placeholder",
                field="system_prompt",
            )

    def render(self, context: str) -> str:
        return self.text.replace(CONTEXT_SLOT, context)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class RetrievalSettings:
    top_k: int = DEFAULT_TOP_K
    score_threshold: float = DEFAULT_SCORE_THRESHOLD
    strategy: str = "hybrid"

    def to_dict(self) -> dict[str, Any]:
        return {"top_k": self.top_k, "score_threshold": self.score_threshold, "strategy": self.strategy}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RetrievalSettings":
        data = data or {}
        return cls(
            top_k=data.get("top_k", DEFAULT_TOP_K),
            score_threshold=data.get("score_threshold", DEFAULT_SCORE_THRESHOLD),
            strategy=data.get("strategy", "hybrid"),
        )


@dataclass(frozen=True)
class AgentConfig:
    """One agent: identity, prompt, model binding, retrieval and tool permissions."""

    id: str
    name: str
    system_prompt: PromptTemplate
    model_binding_id: str | None
    description: str = ""
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)
    metadata_filters: dict[str, list[str]] = field(default_factory=dict)
    enable_tools: bool = False
    allow_dangerous_operations: bool = False
    folder_scope: tuple[str, ...] = ()
    capabilities: tuple[str, ...] = ()
    category: str = "general"
    enabled: bool = True
    is_permanent: bool = False
    is_master: bool = False
    temperature: float | None = None
    max_tokens: int | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    test_status: str = TEST_STATUS_NEVER
    last_tested_at: float | None = None

    def with_changes(self, **changes: Any) -> "AgentConfig":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "system_prompt": self.system_prompt.text,
            "model_binding_id": self.model_binding_id,
            "retrieval": self.retrieval.to_dict(),
            "metadata_filters": {k: list(v) for k, v in self.metadata_filters.items()},
            "enable_tools": self.enable_tools,
            "allow_dangerous_operations": self.allow_dangerous_operations,
            "folder_scope": list(self.folder_scope),
            "capabilities": list(self.capabilities),
            "category": self.category,
            "enabled": self.enabled,
            "is_permanent": self.is_permanent,
            "is_master": self.is_master,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "test_status": self.test_status,
            "last_tested_at": self.last_tested_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentConfig":
        now = time.time()
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            system_prompt=PromptTemplate(data.get("system_prompt", "")),
            model_binding_id=data.get("model_binding_id"),
            retrieval=RetrievalSettings.from_dict(data.get("retrieval")),
            metadata_filters={k: list(v) for k, v in (data.get("metadata_filters") or {}).items()},
            enable_tools=bool(data.get("enable_tools", False)),
            allow_dangerous_operations=bool(data.get("allow_dangerous_operations", False)),
            folder_scope=normalize_set(data.get("folder_scope")),
            capabilities=normalize_set(data.get("capabilities")),
            category=data.get("category", "general"),
            enabled=bool(data.get("enabled", True)),
            is_permanent=bool(data.get("is_permanent", False)),
            is_master=bool(data.get("is_master", False)),
            temperature=data.get("temperature"),
            max_tokens=data.get("max_tokens"),
            created_at=data.get("created_at") or now,
            updated_at=data.get("updated_at") or now,
            test_status=data.get("test_status", TEST_STATUS_NEVER),
            last_tested_at=data.get("last_tested_at"),
        )


def normalize_set(values: Any) -> tuple[str, ...]:
    """De-duplicate while keeping first-seen order."""
    if not values:
        return ()
    seen: dict[str, None] = {}
    for value in values:
        value = str(value).strip()
        if value:
            seen.setdefault(value, None)
    return tuple(seen)


@dataclass
class NoteContext:
    """The note the user is looking at when they ask."""

    note_path: str
    note_content: str = ""
    frontmatter: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentExecutionContext:
    """Optional per-call context for AgentExecutor.execute()."""

    conversation_history: list[Message] = field(default_factory=list)
    note_context: NoteContext | None = None
    additional_context: dict[str, Any] | None = None
    call_depth: int = 0


@dataclass
class AgentResponse:
    """Result of one execute() call."""

    answer: str
    agent_used: str
    model_provider: str
    model: str
    sources: list[ChunkMetadata] = field(default_factory=list)
    retrieved_chunks: list[RetrievedChunk] = field(default_factory=list)
    usage: TokenUsage | None = None
    execution_time_ms: float = 0.0
    tool_results: list[ToolResult] = field(default_factory=list)
    context_text: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "agent_used": self.agent_used,
            "model_provider": self.model_provider,
            "model": self.model,
            "sources": [s.to_dict() for s in self.sources],
            "retrieved_chunks": [c.to_dict() for c in self.retrieved_chunks],
            "usage": self.usage.to_dict() if self.usage else None,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "tool_results": [r.to_dict() for r in self.tool_results],
        }
