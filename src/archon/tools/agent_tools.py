"""
Agent-call tools: how one agent (usually the master) delegates to another.

Every enabled, non-master agent gets a call_<id> tool taking a query and
optional context. list_agents() returns the roster the caller can reach.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from .types import CATEGORY_AGENT, ToolDefinition, ToolParameter

AGENT_TOOL_PREFIX = "call_"
LIST_AGENTS_TOOL = "list_agents"


@dataclass
class AgentSummary:
    """What a delegating agent sees about another agent."""

    id: str
    name: str
    description: str = ""
    enabled: bool = True
    capabilities: list[str] = field(default_factory=list)
    category: str = "general"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "capabilities": list(self.capabilities),
            "category": self.category,
            "tool": agent_tool_name(self.id),
        }


def agent_tool_name(agent_id: str) -> str:
    """call_ + the id lowercased, with anything outside [a-z0-9_] replaced by underscores."""
    return AGENT_TOOL_PREFIX + re.sub(r"[^a-zA-Z0-9_]", "_", agent_id).lower()


def is_agent_tool(tool_name: str) -> bool:
    return tool_name.startswith(AGENT_TOOL_PREFIX)


def agent_tool_definition(agent: AgentSummary) -> ToolDefinition:
    description = f"Call the {agent.name} agent. {agent.description}".strip()
    if agent.capabilities:
        description += f" Capabilities: {', '.join(agent.capabilities)}."
    return ToolDefinition(
        name=agent_tool_name(agent.id),
        description=description,
        category=CATEGORY_AGENT,
        parameters=[
            ToolParameter(
                name="query",
                description="The question or task for this agent",
                required=True,
            ),
            ToolParameter(
                name="context",
                description="Optional extra context to pass along (findings from other agents, constraints)",
            ),
        ],
        returns="The agent's answer with sources and model metadata",
        examples=[f'{agent_tool_name(agent.id)}(query="Summarise the key points")'],
    )


def list_agents_definition() -> ToolDefinition:
    return ToolDefinition(
        name=LIST_AGENTS_TOOL,
        description="List the agents available for delegation with their descriptions and capabilities",
        category=CATEGORY_AGENT,
        returns="A list of agents with id, name, description, capabilities, category and tool name",
        examples=["list_agents()"],
    )
