"""
The master agent -- the entry point that delegates to specialist agents.

Its system prompt is generated from the live roster of enabled agents and
regenerated by the manager whenever that roster changes. It reaches the
specialists through call_<agent_id> tools and can list them with list_agents().
"""

import time

from ..tools.agent_tools import LIST_AGENTS_TOOL, AgentSummary, agent_tool_name
from .models import CONTEXT_SLOT, AgentConfig, PromptTemplate, RetrievalSettings

MASTER_AGENT_ID = "archon-master"
MASTER_AGENT_NAME = "Archon (Master Agent)"
MASTER_DESCRIPTION = (
    "Master orchestrator that routes requests to the specialist agents. "
    "This is the main entry point for all interactions."
)


def _defuse(text: str) -> str:
    """Roster text must not carry a context slot of its own; render() fills every one."""
    return text.replace(CONTEXT_SLOT, "(context)")


def _format_agent(agent: AgentSummary) -> str:
    lines = [f"- **{_defuse(agent.name)}** (ID: {agent.id})"]
    if agent.description:
        lines.append(f"  {_defuse(agent.description)}")
    if agent.capabilities:
        lines.append(f"  Capabilities: {_defuse(', '.join(agent.capabilities))}")
    if agent.category:
        lines.append(f"  Category: {_defuse(agent.category)}")
    lines.append(f"  Tool: `{agent_tool_name(agent.id)}`")
    return "\n".join(lines)


def generate_master_prompt(agents: list[AgentSummary]) -> PromptTemplate:
    """Build the master's prompt from the agents it may call (the master itself excluded)."""
    callable_agents = [a for a in agents if a.id != MASTER_AGENT_ID and a.enabled]
    if callable_agents:
        catalog = "\n\n".join(_format_agent(a) for a in callable_agents)
    else:
        catalog = "_No specialist agents are enabled yet. Answer directly from the knowledge base context._"

    return PromptTemplate(f"""You are Archon, an orchestrator who coordinates specialist agents to fulfil user requests.

## Your Role

1. **Understand the request**: work out what the user actually needs
2. **Select the right agent(s)**: pick the specialist(s) best suited to it
3. **Call the agents**: use the agent tools to hand them the work
4. **Synthesize results**: combine answers when several agents contributed
5. **Answer clearly**: give the user a complete, well-sourced response

## Available Specialist Agents

{catalog}

## Agent Calling Tools

1. **{LIST_AGENTS_TOOL}()**: the current list of agents with their capabilities
2. **call_<agent_id>(query, context?)**: call one agent
   - Each agent has its own tool, listed next to it above
   - Pass a clear query, plus optional context such as findings from another agent
   - The agent returns an answer with its sources

## Guidelines

- Use a single agent when the request clearly matches its capabilities
- Chain agents when one agent's output should inform the next
- If the request is too vague to route, ask the user to clarify
- Tell the user which agents you consulted and why
- If an agent call fails, explain it and offer an alternative

## Knowledge Base Context

{{context}}""")


def create_master_config(model_binding_id: str | None) -> AgentConfig:
    now = time.time()
    return AgentConfig(
        id=MASTER_AGENT_ID,
        name=MASTER_AGENT_NAME,
        description=MASTER_DESCRIPTION,
        system_prompt=generate_master_prompt([]),
        model_binding_id=model_binding_id,
        retrieval=RetrievalSettings(top_k=10, score_threshold=0.3, strategy="hybrid"),
        enable_tools=True,
        allow_dangerous_operations=False,
        capabilities=("orchestration", "delegation"),
        category="orchestration",
        enabled=True,
        is_permanent=True,
        is_master=True,
        created_at=now,
        updated_at=now,
    )


def refresh_master_config(master: AgentConfig, agents: list[AgentSummary]) -> AgentConfig:
    """Same master, prompt regenerated from the given roster."""
    return master.with_changes(
        system_prompt=generate_master_prompt(agents),
        updated_at=max(time.time(), master.updated_at + 1e-6),
    )
