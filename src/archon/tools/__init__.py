"""
Tools agents can call mid-conversation.

  - types.py: definitions, invocations, results, execution context
  - registry.py: the tool catalog (built-ins + one call_<id> tool per agent)
  - agent_tools.py: agent-call and list_agents tool definitions
  - vault_tools.py: note read/write/search/list over a Markdown directory
  - executor.py: validated, permission-checked, audited execution
"""

from .agent_tools import AgentSummary, agent_tool_name
from .executor import MAX_DELEGATION_DEPTH, ToolExecutor
from .registry import ToolRegistry
from .types import ToolDefinition, ToolExecutionContext, ToolInvocation, ToolParameter, ToolResult
from .vault_tools import VaultTools
