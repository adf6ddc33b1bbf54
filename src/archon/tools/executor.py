"""
ToolExecutor -- runs one tool invocation safely under an execution context.

execute() never raises (cancellation aside): unknown tools, bad parameters,
permission refusals, handler failures and timeouts all come back as a
failed ToolResult, so the calling agent can read the error and adapt.

Agent-call tools re-enter the agent manager through a callback. The call
depth travels in the context; past MAX_DELEGATION_DEPTH the call is refused
so master -> specialist -> master cycles terminate.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable

from ..errors import ToolExecutionError, ToolValidationError
from .agent_tools import LIST_AGENTS_TOOL, AgentSummary, is_agent_tool
from .registry import ToolRegistry
from .types import (
    TOOL_ERROR_AGENT_FAILED,
    TOOL_ERROR_DANGEROUS_OPERATION,
    TOOL_ERROR_DELEGATION_DEPTH,
    TOOL_ERROR_NOT_IMPLEMENTED,
    TOOL_ERROR_TIMEOUT,
    TOOL_ERROR_UNKNOWN,
    TOOL_ERROR_UNKNOWN_TOOL,
    ToolAuditEntry,
    ToolDefinition,
    ToolExecutionContext,
    ToolInvocation,
    ToolResult,
)
from .vault_tools import VaultTools

logger = logging.getLogger(__name__)

MAX_AUDIT_ENTRIES = 1000
MAX_DELEGATION_DEPTH = 3

PYTHON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}

# (agent_id, query, extra_context, call_depth) -> response dict
ExecuteAgentCallback = Callable[[str, str, str | None, int], Awaitable[dict[str, Any]]]
ListAgentsCallback = Callable[[], list[AgentSummary]]


def _type_matches(value: Any, expected: str) -> bool:
    types = PYTHON_TYPES.get(expected)
    if types is None:
        return True
    if isinstance(value, bool) and expected != "boolean":
        return False
    return isinstance(value, types)


def validate_parameters(parameters: dict[str, Any], definition: ToolDefinition) -> None:
    """Required, type, and enum checks. Raises ToolValidationError."""
    for param in definition.parameters:
        if param.required and parameters.get(param.name) is None:
            raise ToolValidationError(
                f"Missing required parameter: {param.name}",
                definition.name,
                {"required_parameters": definition.required_parameters},
            )
        if param.name not in parameters or parameters[param.name] is None:
            continue

        value = parameters[param.name]
        if not _type_matches(value, param.type):
            raise ToolValidationError(
                f"Invalid type for parameter {param.name}: expected {param.type}, "
                f"got {type(value).__name__}",
                definition.name,
                {"parameter": param.name, "expected": param.type},
            )
        if param.enum and str(value) not in param.enum:
            raise ToolValidationError(
                f"Invalid value for parameter {param.name}: must be one of {', '.join(param.enum)}",
                definition.name,
                {"parameter": param.name, "allowed_values": param.enum},
            )


class ToolExecutor:
    """
    Validates, permission-checks, dispatches and audits tool invocations.

    Usage:
        executor = ToolExecutor(ToolRegistry(), VaultTools(Path("vault")))
        result = await executor.execute(
            ToolInvocation("read_note", {"path": "Ideas.md"}),
            ToolExecutionContext(agent_id="writer", agent_name="Writer"),
        )
    """

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        vault: VaultTools | None = None,
        max_audit_entries: int = MAX_AUDIT_ENTRIES,
    ):
        self._registry = registry or ToolRegistry(include_vault_tools=vault is not None)
        self._vault = vault
        self._audit: deque[ToolAuditEntry] = deque(maxlen=max_audit_entries)
        self._execute_agent: ExecuteAgentCallback | None = None
        self._list_agents: ListAgentsCallback | None = None

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def vault_root(self):
        return self._vault.root if self._vault else None

    def set_agent_callbacks(
        self,
        execute_agent: ExecuteAgentCallback,
        list_agents: ListAgentsCallback,
    ) -> None:
        self._execute_agent = execute_agent
        self._list_agents = list_agents

    def update_agent_tools(self, agents: list[AgentSummary]) -> None:
        self._registry.update_agent_tools(agents)

    def available_tools(self) -> list[ToolDefinition]:
        return self._registry.all()

    def tools_for(self, allow_dangerous: bool) -> list[ToolDefinition]:
        """The catalog as an agent with these permissions may see it."""
        return [t for t in self._registry.all() if allow_dangerous or not t.dangerous]

    def audit_log(self, limit: int | None = None) -> list[ToolAuditEntry]:
        entries = list(self._audit)
        return entries[-limit:] if limit else entries

    def clear_audit_log(self) -> None:
        self._audit.clear()

    async def execute(
        self,
        invocation: ToolInvocation,
        context: ToolExecutionContext,
        timeout: float | None = None,
    ) -> ToolResult:
        start = time.time()
        name = invocation.tool_name

        try:
            definition = self._registry.get(name)
            if definition is None:
                raise ToolExecutionError(f"Unknown tool: {name}", TOOL_ERROR_UNKNOWN_TOOL, name)

            validate_parameters(invocation.parameters, definition)

            if definition.dangerous and not context.allow_dangerous_operations:
                raise ToolExecutionError(
                    f"Dangerous operation not allowed: {name}",
                    TOOL_ERROR_DANGEROUS_OPERATION,
                    name,
                )

            data = await asyncio.wait_for(
                self._dispatch(definition, invocation.parameters, context), timeout
            )
            result = ToolResult.ok(
                name, data, operation_type="write" if definition.dangerous else "read"
            )

        except ToolExecutionError as e:
            result = ToolResult.fail(name, e.code, e.message, e.details or None)
        except TimeoutError:
            result = ToolResult.fail(name, TOOL_ERROR_TIMEOUT, f"Tool timed out after {timeout}s")
        except Exception as e:
            logger.exception(f"[ToolExecutor] Unexpected failure in {name}")
            result = ToolResult.fail(name, TOOL_ERROR_UNKNOWN, f"{type(e).__name__}: {e}")

        result.execution_time_ms = (time.time() - start) * 1000
        self._record(invocation, context, result)

        if result.success:
            logger.debug(
                f"[ToolExecutor] {context.agent_name} -> {name} ok ({result.execution_time_ms:.0f}ms)"
            )
        else:
            logger.warning(
                f"[ToolExecutor] {context.agent_name} -> {name} failed: "
                f"{result.error.code if result.error else '?'}"
            )
        return result

    async def _dispatch(
        self,
        definition: ToolDefinition,
        parameters: dict[str, Any],
        context: ToolExecutionContext,
    ) -> Any:
        name = definition.name

        if name == LIST_AGENTS_TOOL:
            if self._list_agents is None:
                raise ToolExecutionError("Agent listing is not wired", TOOL_ERROR_NOT_IMPLEMENTED, name)
            agents = [a.to_dict() for a in self._list_agents() if a.id != context.agent_id]
            return {"agents": agents, "count": len(agents)}

        if is_agent_tool(name):
            return await self._call_agent(name, parameters, context)

        if self._vault is not None and name in VaultTools.tool_names():
            return await asyncio.to_thread(self._vault.handle, name, parameters, context)

        raise ToolExecutionError(f"Tool handler not implemented: {name}", TOOL_ERROR_NOT_IMPLEMENTED, name)

    async def _call_agent(
        self, tool_name: str, parameters: dict[str, Any], context: ToolExecutionContext
    ) -> dict[str, Any]:
        agent_id = self._registry.agent_for_tool(tool_name)
        if agent_id is None or self._execute_agent is None:
            raise ToolExecutionError(f"No agent behind tool: {tool_name}", TOOL_ERROR_UNKNOWN_TOOL, tool_name)

        depth = context.call_depth + 1
        if depth > MAX_DELEGATION_DEPTH:
            raise ToolExecutionError(
                f"Delegation depth limit reached ({MAX_DELEGATION_DEPTH})",
                TOOL_ERROR_DELEGATION_DEPTH,
                tool_name,
                {"call_depth": context.call_depth},
            )

        logger.info(f"[ToolExecutor] {context.agent_name} delegating to {agent_id} (depth {depth})")
        try:
            return await self._execute_agent(
                agent_id, parameters["query"], parameters.get("context"), depth
            )
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(
                f"Agent {agent_id} failed: {e}",
                TOOL_ERROR_AGENT_FAILED,
                tool_name,
                {"agent_id": agent_id},
            ) from e

    def _record(
        self, invocation: ToolInvocation, context: ToolExecutionContext, result: ToolResult
    ) -> None:
        self._audit.append(ToolAuditEntry(
            invocation_id=invocation.invocation_id,
            tool_name=invocation.tool_name,
            agent_id=context.agent_id,
            parameters=dict(invocation.parameters),
            success=result.success,
            error_code=result.error.code if result.error else None,
            execution_time_ms=result.execution_time_ms,
        ))
