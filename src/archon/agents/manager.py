"""
AgentManager -- the single source of truth for the agent roster.

Owns the persisted agent configs and the map of live executors. Every
structural change (initialize, add, update, delete, toggle) runs under one
asyncio.Lock, persists first, then reconciles the one affected executor.
When a non-master agent changes, every executor's agent-call tools are
resynced and the master's prompt is regenerated, so the master never
advertises an agent that no longer exists.

execute_agent() takes no lock: it reads the executor map, whose entries are
replaced (never mutated) by the writers.

Usage:
    manager = AgentManager(SettingsStore(path), models, retriever, tool_factory)
    await manager.initialize()
    await manager.add_agent(config)
    response = await manager.execute_agent(MASTER_AGENT_ID, "Plan my week")
"""

import asyncio
import logging
import time
from dataclasses import fields
from typing import Any, Callable

from ..config import ArchonSettings, ExecutionTimeouts, SettingsStore
from ..errors import AgentNotFoundError, SettingsError, ValidationError
from ..llm.manager import ModelManager
from ..security import validate_identifier, validate_in_choices, validate_not_empty, validate_range
from ..tools.agent_tools import AgentSummary, agent_tool_name
from ..tools.executor import ToolExecutor
from .executor import AgentExecutor, KnowledgeRetriever
from .master import create_master_config, refresh_master_config
from .models import (
    CONTEXT_SLOT,
    SEARCH_STRATEGIES,
    TEST_STATUS_FAILED,
    TEST_STATUS_PASSED,
    AgentConfig,
    AgentExecutionContext,
    AgentResponse,
    PromptTemplate,
    RetrievalSettings,
    normalize_set,
)

logger = logging.getLogger(__name__)

MIN_TOP_K = 1
MAX_TOP_K = 20
IMMUTABLE_FIELDS = frozenset({"id", "is_master", "created_at"})

ToolExecutorFactory = Callable[[], ToolExecutor]


def _bump(previous: float) -> float:
    """A timestamp strictly later than the previous one."""
    return max(time.time(), previous + 1e-6)


class AgentManager:
    """Registry and lifecycle for agents and their executors."""

    def __init__(
        self,
        store: SettingsStore,
        models: ModelManager,
        retriever: KnowledgeRetriever | None = None,
        tool_factory: ToolExecutorFactory | None = None,
        timeouts: ExecutionTimeouts | None = None,
    ):
        self._store = store
        self._models = models
        self._retriever = retriever
        self._tool_factory = tool_factory or ToolExecutor
        self._timeouts = timeouts
        self._executors: dict[str, AgentExecutor] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def _settings(self) -> ArchonSettings:
        return self._store.settings

    @property
    def models(self) -> ModelManager:
        return self._models

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """(Re)build every executor from the persisted configs. Safe to call repeatedly."""
        async with self._lock:
            self._ensure_master_exists()

            executors: dict[str, AgentExecutor] = {}
            for config in self._settings.agents:
                if config.enabled:
                    executors[config.id] = self._create_executor(config)
            self._executors = executors

            self._sync_agent_tools()
            self._refresh_master_prompt()
            self._initialized = True

        logger.info(
            f"[AgentManager] Initialized {len(self._executors)} executor(s) "
            f"from {len(self._settings.agents)} agent config(s)"
        )

    async def reload_all(self) -> None:
        await self.initialize()

    async def reload_agent(self, agent_id: str) -> None:
        """Recreate one executor from its persisted config."""
        async with self._lock:
            config = self._require_config(agent_id)
            if config.enabled:
                self._executors[agent_id] = self._create_executor(config)
            else:
                self._executors.pop(agent_id, None)
        logger.info(f"[AgentManager] Reloaded agent {agent_id}")

    def is_ready(self) -> bool:
        return self._initialized and bool(self._executors)

    async def cleanup(self) -> None:
        async with self._lock:
            self._executors = {}
            self._initialized = False
        logger.info("[AgentManager] Cleaned up")

    # =========================================================================
    # ROSTER MUTATIONS
    # =========================================================================

    async def add_agent(self, config: AgentConfig) -> AgentConfig:
        async with self._lock:
            validate_identifier(config.id, "agent id")
            self.validate_agent_config(config)
            if self._find_config(config.id) is not None:
                raise ValidationError(f"Agent id already exists: {config.id}", field="id")
            tool_name = agent_tool_name(config.id)
            for existing in self._settings.agents:
                if agent_tool_name(existing.id) == tool_name:
                    raise ValidationError(
                        f"Agent id '{config.id}' clashes with '{existing.id}' (both map to tool {tool_name})",
                        field="id",
                    )
            if config.is_master:
                raise ValidationError("A master agent already exists", field="is_master")

            settings = self._settings.copy()
            settings.agents.append(config)
            self._store.save(settings)

            if config.enabled:
                self._executors[config.id] = self._create_executor(config)
            self._after_roster_change(config)

        logger.info(f"[AgentManager] Added agent {config.id} ({config.name})")
        return config

    async def update_agent(self, agent_id: str, changes: dict[str, Any]) -> AgentConfig:
        """Apply a partial update. updated_at always moves forward."""
        async with self._lock:
            current = self._require_config(agent_id)

            forbidden = IMMUTABLE_FIELDS & changes.keys()
            if forbidden:
                raise ValidationError(f"Cannot change {', '.join(sorted(forbidden))}")
            if current.is_master and changes.get("enabled") is False:
                raise ValidationError("The master agent cannot be disabled", field="enabled")

            updated = self._apply_changes(current, changes)
            self.validate_agent_config(updated)
            self._commit(updated)

        logger.info(f"[AgentManager] Updated agent {agent_id}: {', '.join(sorted(changes))}")
        return updated

    async def delete_agent(self, agent_id: str) -> None:
        async with self._lock:
            current = self._require_config(agent_id)
            if current.is_master or current.is_permanent:
                raise ValidationError(f"Agent {agent_id} is permanent and cannot be deleted")

            settings = self._settings.copy(
                agents=[a for a in self._settings.agents if a.id != agent_id]
            )
            if settings.default_agent_id == agent_id:
                settings.default_agent_id = None
            self._store.save(settings)

            self._executors.pop(agent_id, None)
            self._after_roster_change(current)

        logger.info(f"[AgentManager] Deleted agent {agent_id}")

    async def toggle_agent(self, agent_id: str, enabled: bool) -> AgentConfig:
        async with self._lock:
            current = self._require_config(agent_id)
            if current.is_master and not enabled:
                raise ValidationError("The master agent cannot be disabled", field="enabled")

            updated = current.with_changes(enabled=enabled, updated_at=_bump(current.updated_at))
            if enabled:
                self.validate_agent_config(updated)
            self._commit(updated)

        logger.info(f"[AgentManager] {'Enabled' if enabled else 'Disabled'} agent {agent_id}")
        return updated

    def validate_agent_config(self, config: AgentConfig) -> None:
        """Raise ValidationError unless the config is runnable."""
        validate_not_empty(config.name, "name")

        if not config.model_binding_id:
            raise ValidationError("A model binding is required", field="model_binding_id")
        binding = self._models.binding(config.model_binding_id)
        if binding is None:
            raise ValidationError(
                f"Unknown model binding: {config.model_binding_id}", field="model_binding_id"
            )
        if not binding.enabled:
            raise ValidationError(
                f"Model binding is disabled: {config.model_binding_id}", field="model_binding_id"
            )

        if not isinstance(config.system_prompt, PromptTemplate) or CONTEXT_SLOT not in config.system_prompt.text:
            raise ValidationError(
                f"System prompt must contain the {CONTEXT_SLOT} placeholder", field="system_prompt"
            )

        top_k = config.retrieval.top_k
        if not isinstance(top_k, int) or isinstance(top_k, bool):
            raise ValidationError("top_k must be an integer", field="top_k")
        validate_range(top_k, MIN_TOP_K, MAX_TOP_K, "top_k")
        validate_range(config.retrieval.score_threshold, 0.0, 1.0, "score_threshold")
        validate_in_choices(config.retrieval.strategy, list(SEARCH_STRATEGIES), "strategy")

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def execute_agent(
        self,
        agent_id: str,
        query: str,
        context: AgentExecutionContext | None = None,
    ) -> AgentResponse:
        executor = self._executors.get(agent_id)
        if executor is None:
            raise AgentNotFoundError(agent_id)
        return await executor.execute(query, context)

    async def execute_agent_by_name(
        self,
        name: str,
        query: str,
        context: AgentExecutionContext | None = None,
    ) -> AgentResponse:
        config = self.get_agent_by_name(name)
        if config is None:
            raise AgentNotFoundError(name)
        return await self.execute_agent(config.id, query, context)

    async def test_agent(self, agent_id: str) -> bool:
        """Run the canned smoke test and record the outcome. Never raises."""
        executor = self._executors.get(agent_id)
        if executor is None:
            logger.warning(f"[AgentManager] Cannot test {agent_id}: no live executor")
            return False

        passed = await executor.test()

        async with self._lock:
            current = self._find_config(agent_id)
            if current is not None:
                recorded = current.with_changes(
                    test_status=TEST_STATUS_PASSED if passed else TEST_STATUS_FAILED,
                    last_tested_at=time.time(),
                )
                try:
                    self._save_config(recorded)
                except SettingsError as e:
                    logger.warning(f"[AgentManager] Could not record test result for {agent_id}: {e}")

        logger.info(f"[AgentManager] Test {agent_id}: {'passed' if passed else 'failed'}")
        return passed

    async def test_all_agents(self) -> dict[str, bool]:
        results = {}
        for agent_id in list(self._executors):
            results[agent_id] = await self.test_agent(agent_id)
        return results

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_agent(self, agent_id: str) -> AgentConfig | None:
        return self._find_config(agent_id)

    def get_executor(self, agent_id: str) -> AgentExecutor | None:
        return self._executors.get(agent_id)

    def get_agent_by_name(self, name: str) -> AgentConfig | None:
        wanted = name.strip().lower()
        for config in self._settings.agents:
            if config.name.lower() == wanted:
                return config
        return None

    def list_agents(self) -> list[AgentSummary]:
        return [_summary(c) for c in self._settings.agents]

    def list_callable_agents(self) -> list[AgentSummary]:
        """Enabled agents other than the master: the delegation targets."""
        return [_summary(c) for c in self._settings.agents if c.enabled and not c.is_master]

    def get_master_agent(self) -> AgentConfig | None:
        for config in self._settings.agents:
            if config.is_master:
                return config
        return None

    def get_default_agent(self) -> AgentConfig | None:
        """The configured default agent, falling back to the master."""
        default_id = self._settings.default_agent_id
        if default_id:
            config = self._find_config(default_id)
            if config is not None and config.enabled:
                return config
        return self.get_master_agent()

    async def set_default_agent(self, agent_id: str) -> None:
        async with self._lock:
            self._require_config(agent_id)
            self._store.save(self._settings.copy(default_agent_id=agent_id))
        logger.info(f"[AgentManager] Default agent set to {agent_id}")

    def get_stats(self) -> dict[str, Any]:
        agents = self._settings.agents
        by_category: dict[str, int] = {}
        for config in agents:
            by_category[config.category] = by_category.get(config.category, 0) + 1
        master = self.get_master_agent()
        default = self.get_default_agent()
        return {
            "total_agents": len(agents),
            "enabled_agents": sum(1 for a in agents if a.enabled),
            "disabled_agents": sum(1 for a in agents if not a.enabled),
            "tool_enabled_agents": sum(1 for a in agents if a.enable_tools),
            "live_executors": len(self._executors),
            "master_agent_id": master.id if master else None,
            "default_agent_id": default.id if default else None,
            "retriever_ready": bool(self._retriever and self._retriever.is_ready()),
            "by_category": by_category,
        }

    # =========================================================================
    # INTERNALS (callers hold the lock)
    # =========================================================================

    def _find_config(self, agent_id: str) -> AgentConfig | None:
        for config in self._settings.agents:
            if config.id == agent_id:
                return config
        return None

    def _require_config(self, agent_id: str) -> AgentConfig:
        config = self._find_config(agent_id)
        if config is None:
            raise AgentNotFoundError(agent_id)
        return config

    def _save_config(self, config: AgentConfig) -> None:
        agents = [config if a.id == config.id else a for a in self._settings.agents]
        self._store.save(self._settings.copy(agents=agents))

    def _commit(self, updated: AgentConfig) -> None:
        """Persist an updated config, then reconcile its executor and the roster views."""
        self._save_config(updated)
        if updated.enabled:
            self._executors[updated.id] = self._create_executor(updated)
        else:
            self._executors.pop(updated.id, None)
        self._after_roster_change(updated)

    def _apply_changes(self, current: AgentConfig, changes: dict[str, Any]) -> AgentConfig:
        known = {f.name for f in fields(AgentConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValidationError(f"Unknown agent field(s): {', '.join(sorted(unknown))}")

        coerced = dict(changes)
        if isinstance(coerced.get("system_prompt"), str):
            coerced["system_prompt"] = PromptTemplate(coerced["system_prompt"])
        if isinstance(coerced.get("retrieval"), dict):
            merged = {**current.retrieval.to_dict(), **coerced["retrieval"]}
            coerced["retrieval"] = RetrievalSettings.from_dict(merged)
        for key in ("folder_scope", "capabilities"):
            if key in coerced:
                coerced[key] = normalize_set(coerced[key])
        coerced["updated_at"] = _bump(current.updated_at)
        return current.with_changes(**coerced)

    def _after_roster_change(self, config: AgentConfig) -> None:
        if config.is_master:
            return
        self._sync_agent_tools()
        self._refresh_master_prompt()

    def _create_executor(self, config: AgentConfig) -> AgentExecutor:
        tools = self._tool_factory()
        tools.set_agent_callbacks(self._delegate, self.list_callable_agents)
        tools.update_agent_tools(self.list_callable_agents())
        return AgentExecutor(
            config,
            self._retriever,
            self._models,
            tools,
            self._timeouts or self._settings.timeouts,
        )

    def _sync_agent_tools(self) -> None:
        callable_agents = self.list_callable_agents()
        for executor in self._executors.values():
            if executor.tool_executor is not None:
                executor.tool_executor.update_agent_tools(callable_agents)

    def _refresh_master_prompt(self) -> None:
        master = self.get_master_agent()
        if master is None:
            return
        refreshed = refresh_master_config(master, self.list_callable_agents())
        if refreshed.system_prompt != master.system_prompt:
            self._save_config(refreshed)
            master = refreshed
        if master.enabled:
            self._executors[master.id] = self._create_executor(master)
        logger.debug(f"[AgentManager] Master prompt refreshed ({len(self.list_callable_agents())} agents)")

    def _ensure_master_exists(self) -> None:
        settings = self._settings
        masters = [a for a in settings.agents if a.is_master]

        if len(masters) > 1:
            keep = masters[0]
            logger.warning(
                f"[AgentManager] {len(masters)} master agents found; keeping {keep.id}"
            )
            agents = [a if not a.is_master or a.id == keep.id else a.with_changes(is_master=False)
                      for a in settings.agents]
            self._store.save(settings.copy(agents=agents, master_agent_id=keep.id))
            return

        if masters:
            if settings.master_agent_id != masters[0].id:
                self._store.save(settings.copy(master_agent_id=masters[0].id))
            return

        binding = self._models.default_binding()
        if binding is None:
            logger.error("[AgentManager] No enabled model binding; master agent not created")
            return
        master = create_master_config(binding.id)
        self._store.save(settings.copy(agents=[master, *settings.agents], master_agent_id=master.id))
        logger.info(f"[AgentManager] Created master agent bound to {binding.id}")

    async def _delegate(
        self, agent_id: str, query: str, extra_context: str | None, call_depth: int
    ) -> dict[str, Any]:
        """Agent-call tool callback: run another agent and hand back a compact result."""
        context = AgentExecutionContext(
            additional_context={"context": extra_context} if extra_context else None,
            call_depth=call_depth,
        )
        response = await self.execute_agent(agent_id, query, context)
        return {
            "agent": response.agent_used,
            "answer": response.answer,
            "sources": sorted({s.document_title for s in response.sources}),
            "model": f"{response.model_provider}/{response.model}",
        }


def _summary(config: AgentConfig) -> AgentSummary:
    return AgentSummary(
        id=config.id,
        name=config.name,
        description=config.description,
        enabled=config.enabled,
        capabilities=list(config.capabilities),
        category=config.category,
    )
