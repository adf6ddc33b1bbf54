"""
ToolRegistry -- the catalog of tools an executor can offer a model.

Built-ins (vault tools, list_agents) are registered at construction.
Agent-call tools are replaced wholesale by update_agent_tools() whenever
the roster changes, so the catalog never advertises a deleted agent.
"""

import logging

from .agent_tools import (
    AgentSummary,
    agent_tool_definition,
    is_agent_tool,
    list_agents_definition,
)
from .types import ToolDefinition
from .vault_tools import VaultTools

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name -> ToolDefinition catalog, plus the call_<id> -> agent id map."""

    def __init__(self, include_vault_tools: bool = True):
        self._tools: dict[str, ToolDefinition] = {}
        self._agent_targets: dict[str, str] = {}

        if include_vault_tools:
            for definition in VaultTools.definitions():
                self.register(definition)
        self.register(list_agents_definition())

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            logger.debug(f"[ToolRegistry] Replacing tool '{definition.name}'")
        self._tools[definition.name] = definition

    def unregister(self, name: str) -> bool:
        self._agent_targets.pop(name, None)
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def all(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def by_category(self, category: str) -> list[ToolDefinition]:
        return [t for t in self._tools.values() if t.category == category]

    def search(self, text: str) -> list[ToolDefinition]:
        needle = text.lower()
        return [
            t for t in self._tools.values()
            if needle in t.name.lower() or needle in t.description.lower()
        ]

    def agent_for_tool(self, tool_name: str) -> str | None:
        """Agent id behind a call_<id> tool."""
        return self._agent_targets.get(tool_name)

    def update_agent_tools(self, agents: list[AgentSummary]) -> None:
        """Drop every call_* tool and add one per enabled agent."""
        for name in [n for n in self._tools if is_agent_tool(n)]:
            del self._tools[name]
        self._agent_targets.clear()

        for agent in agents:
            if not agent.enabled:
                continue
            definition = agent_tool_definition(agent)
            self._tools[definition.name] = definition
            self._agent_targets[definition.name] = agent.id

        logger.debug(f"[ToolRegistry] {len(self._agent_targets)} agent tool(s) registered")
