"""Shared fixtures -- scripted model client, stub retriever, in-memory settings, temp vault."""

from pathlib import Path

import pytest

from archon.agents.manager import AgentManager
from archon.agents.models import AgentConfig, PromptTemplate, RetrievalSettings
from archon.config import ArchonSettings, SettingsStore
from archon.llm.manager import ModelBindingConfig, ModelManager
from archon.llm.types import ChatResult, TokenUsage, ToolCall
from archon.rag.models import ChunkMetadata, RetrievedChunk
from archon.tools.executor import ToolExecutor
from archon.tools.vault_tools import VaultTools

BINDING_ID = "test-model"


class FakeModelClient:
    """ModelClient that replays scripted ChatResults and records every request."""

    def __init__(self, responses=None, supports_function_calling=True, error=None, provider="fake"):
        self.provider = provider
        self.model = "fake-model"
        self.supports_function_calling = supports_function_calling
        self.responses = list(responses or [])
        self.error = error
        self.requests = []
        self.tool_names = []

    def script(self, *responses):
        self.responses.extend(responses)

    async def chat(self, messages, options=None):
        return self._next(messages, None)

    async def chat_with_functions(self, messages, tools, options=None):
        return self._next(messages, tools)

    def _next(self, messages, tools):
        self.requests.append(list(messages))
        self.tool_names.append([t.name for t in tools] if tools else [])
        if self.error is not None:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        return answer("Default answer")


class StubRetriever:
    """KnowledgeRetriever returning fixed chunks and recording the queries it saw."""

    def __init__(self, chunks=None, ready=True, error=None):
        self.chunks = list(chunks or [])
        self.ready = ready
        self.error = error
        self.queries = []

    def is_ready(self):
        return self.ready

    async def retrieve(self, query, top_k=5, filters=None, score_threshold=0.7):
        self.queries.append({"query": query, "top_k": top_k, "filters": filters, "threshold": score_threshold})
        if self.error is not None:
            raise self.error
        return list(self.chunks)


def answer(content, prompt_tokens=10, completion_tokens=5):
    return ChatResult(content=content, usage=TokenUsage(prompt_tokens, completion_tokens), model="fake-model", provider="fake")


def tool_request(name, arguments=None, call_id="", content=""):
    return ChatResult(
        content=content,
        usage=TokenUsage(10, 5),
        model="fake-model",
        provider="fake",
        finish_reason="tool_use",
        tool_call=ToolCall(name=name, arguments=arguments or {}, call_id=call_id),
    )


def chunk(chunk_id, score, title="Handbook", section="1", content=None, **metadata):
    return RetrievedChunk(
        chunk_id=chunk_id,
        content=content or f"Content of {chunk_id}",
        metadata=ChunkMetadata(document_title=title, section=section, **metadata),
        score=score,
    )


def make_agent(agent_id, binding_id=BINDING_ID, **overrides):
    fields = {
        "id": agent_id,
        "name": overrides.pop("name", agent_id.replace("-", " ").title()),
        "system_prompt": PromptTemplate(f"You are {agent_id}.\n\n## Context\n\n{{context}}"),
        "model_binding_id": binding_id,
        "description": f"Specialist {agent_id}",
        "retrieval": RetrievalSettings(top_k=5, score_threshold=0.5),
        "capabilities": ("analysis",),
    }
    fields.update(overrides)
    return AgentConfig(**fields)


@pytest.fixture
def binding():
    return ModelBindingConfig(
        id=BINDING_ID, name="Test Model", provider="anthropic", model="fake-model", is_default=True
    )


@pytest.fixture
def fake_client():
    return FakeModelClient()


@pytest.fixture
def models(binding, fake_client):
    manager = ModelManager([binding], client_factory=lambda b: fake_client)
    manager.initialize()
    return manager


@pytest.fixture
def retriever():
    return StubRetriever(chunks=[chunk("c1", 0.9), chunk("c2", 0.8, title="Roadmap", section="2")])


@pytest.fixture
def store(binding):
    return SettingsStore(None, ArchonSettings(model_bindings=[binding]))


@pytest.fixture
def vault_dir(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    (root / "Projects").mkdir(parents=True)
    (root / "Private").mkdir()
    (root / "Projects" / "Roadmap.md").write_text("# Roadmap\n\nShip the beta in Q3. #planning #beta\n", encoding="utf-8")
    (root / "Projects" / "Budget.md").write_text("# Budget\n\nMarketing spend is capped. #finance\n", encoding="utf-8")
    (root / "Private" / "Diary.md").write_text("Dear diary, the beta slipped again.\n", encoding="utf-8")
    (root / "Inbox.md").write_text("Inbox note #planning\n", encoding="utf-8")
    return root


@pytest.fixture
def vault(vault_dir):
    return VaultTools(vault_dir)


@pytest.fixture
def manager(store, models, retriever, vault):
    return AgentManager(store, models, retriever, tool_factory=lambda: ToolExecutor(vault=vault))
