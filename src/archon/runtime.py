"""
Runtime wiring -- builds the object graph from a settings file.

    runtime = build_runtime()          # ARCHON_SETTINGS_PATH or .archon/settings.json
    await runtime.start()
    response = await runtime.manager.execute_agent(MASTER_AGENT_ID, "What's next?")

The CLI and the HTTP gateway both go through here, so they see the same roster.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from .agents.manager import AgentManager
from .config import SettingsStore, bindings_from_env, settings_path_from_env
from .llm.manager import ClientFactory, ModelManager
from .rag.embedding_service import EmbeddingService
from .rag.retriever import Retriever
from .rag.vector_store import VectorStore
from .tools.executor import ToolExecutor
from .tools.vault_tools import VaultTools

logger = logging.getLogger(__name__)


@dataclass
class ArchonRuntime:
    store: SettingsStore
    models: ModelManager
    retriever: Retriever
    vault: VaultTools
    manager: AgentManager

    async def start(self) -> None:
        """Start the retriever (ingesting chunks_dir if configured), then the agents."""
        await self.retriever.initialize()

        chunks_dir = self.store.settings.chunks_dir
        if chunks_dir and Path(chunks_dir).is_dir() and not self.retriever.is_ready():
            await self.retriever.ingest_directory(Path(chunks_dir))

        await self.manager.initialize()

    async def stop(self) -> None:
        await self.manager.cleanup()


def build_runtime(
    settings_path: Path | None = None,
    client_factory: ClientFactory | None = None,
) -> ArchonRuntime:
    """Load settings and assemble every component. Nothing is started yet."""
    store = SettingsStore(settings_path or settings_path_from_env())
    settings = store.load()

    bindings = settings.model_bindings
    if not bindings:
        bindings = bindings_from_env()
        if bindings:
            logger.info(
                f"[Runtime] No model bindings configured; using {len(bindings)} from environment"
            )
            store.save(settings.copy(model_bindings=bindings))
        else:
            logger.warning("[Runtime] No model bindings configured and no provider API key found")

    models = ModelManager(bindings, client_factory)
    models.initialize()

    retriever = Retriever(
        VectorStore(backend=settings.vector_backend),
        EmbeddingService(settings.embedding_provider),
    )
    vault = VaultTools(Path(settings.vault_root))

    manager = AgentManager(
        store,
        models,
        retriever,
        tool_factory=lambda: ToolExecutor(vault=vault),
        timeouts=settings.timeouts,
    )
    return ArchonRuntime(store=store, models=models, retriever=retriever, vault=vault, manager=manager)
