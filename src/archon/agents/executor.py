"""
AgentExecutor -- runs one agent end-to-end for one query.

Pipeline (strictly sequential, one outstanding call at a time):
  1. reject empty queries
  2. retrieve knowledge-base context (best-effort; failures become a sentinel)
  3. assemble messages: system prompt (+ tool instructions), history,
     note context, additional context, query
  4. tool-calling loop if tools are enabled and the model supports
     function calling, otherwise a single plain chat call
  5. package an AgentResponse

Tool-calling loop states:
  AWAITING_MODEL -> (TOOL_REQUESTED -> TOOL_EXECUTED -> AWAITING_MODEL)* -> DONE
                                                     or ITERATION_LIMIT_REACHED

Model failures raise ModelCallError. Retrieval and tool failures never do.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Protocol

from ..config import ExecutionTimeouts
from ..errors import ModelCallError
from ..llm.client import ModelClient
from ..llm.manager import ModelManager
from ..llm.types import ROLE_USER, ChatOptions, ChatResult, Message, TokenUsage
from ..rag.models import RetrievedChunk
from ..security import detect_injection_attempt, sanitize_for_prompt, validate_not_empty
from ..tools.executor import ToolExecutor
from ..tools.types import ToolDefinition, ToolExecutionContext, ToolInvocation, ToolResult
from .models import AgentConfig, AgentExecutionContext, AgentResponse, NoteContext

logger = logging.getLogger(__name__)

MAX_TOOL_ITERATIONS = 5
HISTORY_TURNS_FOR_SEARCH = 3
NOTE_CONTEXT_MAX_CHARS = 2000
NOTE_TRUNCATION_MARKER = "...\n[Content truncated]"
TEST_QUERY = "Hello, can you help me?"

CONTEXT_UNAVAILABLE = "[Knowledge base retrieval failed - answering without knowledge base context]"
NO_RELEVANT_CONTEXT = "[No relevant context found in knowledge base]"
RETRIEVAL_NOT_READY = "[Knowledge base not configured - answering without knowledge base context]"

ITERATION_LIMIT_MESSAGE = (
    "I apologize, but I exceeded the maximum number of tool calls while processing "
    "your request. Please try rephrasing your question or breaking it into smaller requests."
)


class KnowledgeRetriever(Protocol):
    def is_ready(self) -> bool: ...

    async def retrieve(
        self,
        query: str,
        top_k: int = 5,
        filters: dict[str, list[str]] | None = None,
        score_threshold: float = 0.7,
    ) -> list[RetrievedChunk]: ...


class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    TOOL_REQUESTED = "tool_requested"
    TOOL_EXECUTED = "tool_executed"
    DONE = "done"
    ITERATION_LIMIT_REACHED = "iteration_limit_reached"


@dataclass
class ToolLoopOutcome:
    content: str
    state: LoopState
    iterations: int
    usage: TokenUsage | None = None
    tool_results: list[ToolResult] = field(default_factory=list)


def format_context(chunks: list[RetrievedChunk]) -> str:
    """Render chunks as numbered source paragraphs, highest score first."""
    if not chunks:
        return NO_RELEVANT_CONTEXT

    parts = []
    for index, chunk in enumerate(sorted(chunks, key=lambda c: c.score, reverse=True), start=1):
        meta = chunk.metadata
        section = meta.section + (f" - {meta.section_title}" if meta.section_title else "")
        lines = [
            f"**Source {index}** (Relevance: {chunk.score * 100:.1f}%)",
            f"Document: {meta.document_title}",
            f"Section: {section}",
        ]
        if meta.content_type:
            lines.append(f"Type: {meta.content_type}")
        if meta.page_reference:
            lines.append(f"Page: {meta.page_reference}")
        parts.append("\n".join(lines) + f"\n\n{chunk.content}\n\n---")

    return "\n\n".join(parts)


def build_search_query(query: str, history: list[Message]) -> str:
    """The last few user turns plus the current query."""
    recent = [m.content for m in history if m.role == ROLE_USER][-HISTORY_TURNS_FOR_SEARCH:]
    return " ".join([*recent, query]) if recent else query


def build_note_context_message(note: NoteContext) -> Message:
    parts = ["**Current Note Context:**", f"Path: {note.note_path}"]

    if note.frontmatter:
        parts.append("\n**Frontmatter:**")
        parts.append(json.dumps(note.frontmatter, indent=2, default=str))

    if note.note_content and note.note_content.strip():
        detect_injection_attempt(note.note_content, source=f"note {note.note_path}")
        parts.append("\n**Note Content:**")
        parts.append(sanitize_for_prompt(
            note.note_content,
            max_length=NOTE_CONTEXT_MAX_CHARS,
            marker=NOTE_TRUNCATION_MARKER,
        ))

    return Message.user("\n".join(parts))


def build_additional_context_message(additional: dict) -> Message:
    return Message.user("**Additional Context:**\n" + json.dumps(additional, indent=2, default=str))


def _add_usage(total: TokenUsage | None, usage: TokenUsage | None) -> TokenUsage | None:
    if usage is None:
        return total
    return usage if total is None else total + usage


class AgentExecutor:
    """
    Executes a single agent configuration.

    Usage:
        executor = AgentExecutor(config, retriever, models, tools)
        response = await executor.execute("What did we decide about pricing?")
        print(response.answer)
    """

    def __init__(
        self,
        config: AgentConfig,
        retriever: KnowledgeRetriever | None,
        models: ModelManager,
        tools: ToolExecutor | None = None,
        timeouts: ExecutionTimeouts | None = None,
    ):
        self._config = config
        self._retriever = retriever
        self._models = models
        self._tools = tools
        self._timeouts = timeouts or ExecutionTimeouts()

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def tool_executor(self) -> ToolExecutor | None:
        return self._tools

    async def execute(
        self, query: str, context: AgentExecutionContext | None = None
    ) -> AgentResponse:
        start = time.time()
        query = validate_not_empty(query, "query")
        context = context or AgentExecutionContext()

        context_text, chunks = await self._retrieve_context(query, context)
        messages = self.build_messages(query, context_text, context)

        client = self._resolve_client()
        options = ChatOptions(temperature=self._config.temperature, max_tokens=self._config.max_tokens)
        tools = self._visible_tools()

        if self._config.enable_tools and tools and client.supports_function_calling:
            outcome = await self._run_tool_loop(client, messages, tools, options, context)
        else:
            result = await self._call_model(client, client.chat(messages, options))
            outcome = ToolLoopOutcome(
                content=result.content, state=LoopState.DONE, iterations=0, usage=result.usage
            )

        elapsed_ms = (time.time() - start) * 1000
        logger.info(
            f"[AgentExecutor] {self._config.name}: {len(chunks)} chunk(s), "
            f"{len(outcome.tool_results)} tool call(s), {outcome.state.value} ({elapsed_ms:.0f}ms)"
        )
        return AgentResponse(
            answer=outcome.content,
            agent_used=self._config.name,
            model_provider=client.provider,
            model=client.model,
            sources=[c.metadata for c in chunks],
            retrieved_chunks=chunks,
            usage=outcome.usage,
            execution_time_ms=elapsed_ms,
            tool_results=outcome.tool_results,
            context_text=context_text,
        )

    async def test(self) -> bool:
        """Smoke test with a canned query. Never raises."""
        try:
            response = await self.execute(TEST_QUERY)
        except Exception as e:
            logger.warning(f"[AgentExecutor] Test failed for {self._config.name}: {e}")
            return False
        return bool(response.answer and response.answer.strip())

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    async def _retrieve_context(
        self, query: str, context: AgentExecutionContext
    ) -> tuple[str, list[RetrievedChunk]]:
        if self._retriever is None or not self._retriever.is_ready():
            return RETRIEVAL_NOT_READY, []

        search_query = build_search_query(query, context.conversation_history)
        settings = self._config.retrieval
        try:
            chunks = await asyncio.wait_for(
                self._retriever.retrieve(
                    search_query,
                    settings.top_k,
                    self._config.metadata_filters,
                    settings.score_threshold,
                ),
                self._timeouts.retrieval,
            )
        except Exception as e:
            logger.warning(
                f"[AgentExecutor] Retrieval failed for {self._config.name}, "
                f"continuing without context: {type(e).__name__}: {e}"
            )
            return CONTEXT_UNAVAILABLE, []

        return format_context(chunks), chunks

    # -------------------------------------------------------------------------
    # Prompt assembly
    # -------------------------------------------------------------------------

    def build_messages(
        self, query: str, context_text: str, context: AgentExecutionContext
    ) -> list[Message]:
        system_prompt = self._config.system_prompt.render(context_text)
        if self._config.enable_tools:
            instructions = self.build_tool_instructions()
            if instructions:
                system_prompt = f"{system_prompt}\n\n{instructions}"

        messages = [Message.system(system_prompt)]
        messages.extend(context.conversation_history)
        if context.note_context:
            messages.append(build_note_context_message(context.note_context))
        if context.additional_context:
            messages.append(build_additional_context_message(context.additional_context))
        messages.append(Message.user(query))
        return messages

    def build_tool_instructions(self) -> str:
        tools = self._visible_tools()
        if not tools:
            return ""

        lines = [
            "---",
            "",
            "## Available Tools",
            "",
            "You can call the following tools:",
            "",
        ]

        by_category: dict[str, list[ToolDefinition]] = {}
        for tool in tools:
            by_category.setdefault(tool.category or "other", []).append(tool)

        for category, category_tools in by_category.items():
            lines.append(f"**{category.capitalize()} Tools:**")
            lines.append("")
            for tool in category_tools:
                lines.append(f"- **{tool.name}**: {tool.description}")
                if tool.required_parameters:
                    lines.append(f"  - Parameters: {', '.join(tool.required_parameters)}")
                if tool.examples:
                    lines.append(f"  - Example: `{tool.examples[0]}`")
                lines.append("")

        lines.append("**Tool Usage Guidelines:**")
        lines.append("")
        lines.append("- Use tools when the provided context is not enough to answer")
        if self._config.allow_dangerous_operations:
            lines.append("- You can create and modify notes using `write_note`; use this responsibly")
        else:
            lines.append("- You have read-only access (cannot create or modify notes)")
        if self._config.folder_scope:
            lines.append(
                f"- **Folder restrictions**: You can only access notes in: "
                f"{', '.join(self._config.folder_scope)}"
            )
        else:
            lines.append("- You have access to the entire vault")
        lines.append("")

        return "\n".join(lines)

    def _visible_tools(self) -> list[ToolDefinition]:
        """Catalog filtered by the dangerous flag, minus the agent's own call tool."""
        if self._tools is None:
            return []
        registry = self._tools.registry
        return [
            t for t in self._tools.tools_for(self._config.allow_dangerous_operations)
            if registry.agent_for_tool(t.name) != self._config.id
        ]

    # -------------------------------------------------------------------------
    # Model calls
    # -------------------------------------------------------------------------

    def _resolve_client(self) -> ModelClient:
        client = self._models.get(self._config.model_binding_id or "")
        if client is None:
            binding = self._models.binding(self._config.model_binding_id)
            raise ModelCallError(
                f"Model binding '{self._config.model_binding_id}' is not available",
                provider=binding.provider if binding else "unknown",
                model=binding.model if binding else "unknown",
            )
        return client

    async def _call_model(self, client: ModelClient, call: Awaitable[ChatResult]) -> ChatResult:
        try:
            return await asyncio.wait_for(call, self._timeouts.model)
        except ModelCallError:
            raise
        except TimeoutError as e:
            raise ModelCallError(
                f"Model call timed out after {self._timeouts.model}s",
                provider=client.provider,
                model=client.model,
                cause=e,
            ) from e
        except Exception as e:
            raise ModelCallError(
                f"Model call failed: {type(e).__name__}: {e}",
                provider=client.provider,
                model=client.model,
                cause=e,
            ) from e

    async def _run_tool_loop(
        self,
        client: ModelClient,
        messages: list[Message],
        tools: list[ToolDefinition],
        options: ChatOptions,
        context: AgentExecutionContext,
    ) -> ToolLoopOutcome:
        state = LoopState.AWAITING_MODEL
        iterations = 0
        usage: TokenUsage | None = None
        tool_results: list[ToolResult] = []
        tool_context = self._tool_context(context)

        while iterations < MAX_TOOL_ITERATIONS:
            result = await self._call_model(
                client, client.chat_with_functions(messages, tools, options)
            )
            usage = _add_usage(usage, result.usage)

            if result.tool_call is None:
                state = LoopState.DONE
                return ToolLoopOutcome(result.content, state, iterations, usage, tool_results)

            state = LoopState.TOOL_REQUESTED
            call = result.tool_call
            logger.debug(f"[AgentExecutor] {self._config.name} iteration {iterations + 1}: {call.name}")
            messages.append(Message.assistant(result.content or f"[Calling tool: {call.name}]", tool_call=call))

            invocation = ToolInvocation(tool_name=call.name, parameters=dict(call.arguments))
            if call.call_id:
                invocation.invocation_id = call.call_id
            tool_result = await self._tools.execute(invocation, tool_context, timeout=self._timeouts.tool)
            tool_results.append(tool_result)
            messages.append(Message.function(
                call.name,
                json.dumps(tool_result.to_dict(), default=str),
                tool_call_id=call.call_id or None,
            ))

            state = LoopState.TOOL_EXECUTED
            iterations += 1

        state = LoopState.ITERATION_LIMIT_REACHED
        logger.warning(
            f"[AgentExecutor] {self._config.name} hit the tool iteration limit ({MAX_TOOL_ITERATIONS})"
        )
        return ToolLoopOutcome(ITERATION_LIMIT_MESSAGE, state, iterations, usage, tool_results)

    def _tool_context(self, context: AgentExecutionContext) -> ToolExecutionContext:
        return ToolExecutionContext(
            agent_id=self._config.id,
            agent_name=self._config.name,
            vault_root=self._tools.vault_root if self._tools else None,
            restrict_to_folders=list(self._config.folder_scope),
            read_only=not self._config.allow_dangerous_operations,
            allow_dangerous_operations=self._config.allow_dangerous_operations,
            call_depth=context.call_depth,
        )
