"""
Built-in agent templates -- ready-made specialists to seed a roster.

    config = config_from_template("research-assistant", agent_id="research", model_binding_id="claude")
    await manager.add_agent(config)
"""

import time
from dataclasses import dataclass, field
from typing import Any

from ..errors import ValidationError
from .models import AgentConfig, PromptTemplate, RetrievalSettings


@dataclass(frozen=True)
class AgentTemplate:
    id: str
    name: str
    description: str
    category: str
    system_prompt: str
    capabilities: tuple[str, ...] = ()
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)
    enable_tools: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "capabilities": list(self.capabilities),
            "retrieval": self.retrieval.to_dict(),
            "enable_tools": self.enable_tools,
        }


AGENT_TEMPLATES: tuple[AgentTemplate, ...] = (
    AgentTemplate(
        id="general-assistant",
        name="General Knowledge Assistant",
        description="Answers questions from the knowledge base with clear citations.",
        category="general",
        capabilities=("question answering", "summarisation"),
        retrieval=RetrievalSettings(top_k=8, score_threshold=0.7),
        system_prompt="""You are a knowledgeable assistant with access to the user's knowledge base.

Answer using the context below. Cite the source number for every claim you take from it.
If the context does not contain the answer, say so plainly instead of guessing.

## Context

{context}""",
    ),
    AgentTemplate(
        id="research-assistant",
        name="Research Assistant",
        description="Connects ideas across documents and surfaces supporting and conflicting evidence.",
        category="research",
        capabilities=("literature review", "cross-referencing", "evidence synthesis"),
        retrieval=RetrievalSettings(top_k=15, score_threshold=0.6),
        enable_tools=True,
        system_prompt="""You are a meticulous research assistant.

For each question:
- Gather every relevant source from the context and the vault
- Note where sources agree, where they conflict, and what is missing
- Separate what the sources state from your own inference

## Context

{context}""",
    ),
    AgentTemplate(
        id="writing-assistant",
        name="Writing Assistant",
        description="Drafts and edits prose in the user's own voice and terminology.",
        category="writing",
        capabilities=("drafting", "editing", "tone matching"),
        retrieval=RetrievalSettings(top_k=8, score_threshold=0.72),
        system_prompt="""You are a writing assistant who adapts to the user's voice.

Use the context to match their terminology and style. When editing, explain
the main changes in a short list after the revised text.

## Context

{context}""",
    ),
    AgentTemplate(
        id="code-mentor",
        name="Code Mentor",
        description="Explains code and technical notes, and suggests improvements with examples.",
        category="technical",
        capabilities=("code explanation", "debugging", "best practices"),
        retrieval=RetrievalSettings(top_k=12, score_threshold=0.75),
        system_prompt="""You are a patient senior engineer mentoring the user.

Ground explanations in the user's own notes and snippets from the context.
Prefer small, runnable examples. Point out trade-offs, not just the answer.

## Context

{context}""",
    ),
    AgentTemplate(
        id="project-coordinator",
        name="Project Coordinator",
        description="Tracks tasks, deadlines and decisions across project notes.",
        category="productivity",
        capabilities=("task tracking", "status summaries", "decision logs"),
        retrieval=RetrievalSettings(top_k=10, score_threshold=0.7),
        enable_tools=True,
        system_prompt="""You are a project coordinator.

From the context and the vault, extract open tasks, owners, deadlines and
decisions. Flag anything overdue or blocked. Keep summaries short and actionable.

## Context

{context}""",
    ),
)


def list_templates() -> list[AgentTemplate]:
    return list(AGENT_TEMPLATES)


def get_template(template_id: str) -> AgentTemplate | None:
    for template in AGENT_TEMPLATES:
        if template.id == template_id:
            return template
    return None


def search_templates(text: str) -> list[AgentTemplate]:
    needle = text.lower()
    return [
        t for t in AGENT_TEMPLATES
        if needle in t.name.lower()
        or needle in t.description.lower()
        or needle in t.category.lower()
        or any(needle in c for c in t.capabilities)
    ]


def config_from_template(
    template_id: str,
    agent_id: str,
    model_binding_id: str,
    **overrides: Any,
) -> AgentConfig:
    """A new AgentConfig seeded from a template; keyword overrides win."""
    template = get_template(template_id)
    if template is None:
        raise ValidationError(f"Unknown agent template: {template_id}", field="template_id")

    now = time.time()
    config = AgentConfig(
        id=agent_id,
        name=template.name,
        description=template.description,
        system_prompt=PromptTemplate(template.system_prompt),
        model_binding_id=model_binding_id,
        retrieval=template.retrieval,
        enable_tools=template.enable_tools,
        capabilities=template.capabilities,
        category=template.category,
        created_at=now,
        updated_at=now,
    )
    return config.with_changes(**overrides) if overrides else config
