"""Tool registry, vault tools, and the ToolExecutor's validation, permissions and delegation."""

import asyncio

import pytest

from archon.tools.agent_tools import AgentSummary, agent_tool_name
from archon.tools.executor import MAX_DELEGATION_DEPTH, ToolExecutor
from archon.tools.registry import ToolRegistry
from archon.tools.types import (
    TOOL_ERROR_AGENT_FAILED,
    TOOL_ERROR_DANGEROUS_OPERATION,
    TOOL_ERROR_DELEGATION_DEPTH,
    TOOL_ERROR_NOTE_NOT_FOUND,
    TOOL_ERROR_PERMISSION_DENIED,
    TOOL_ERROR_TIMEOUT,
    TOOL_ERROR_UNKNOWN_TOOL,
    TOOL_ERROR_VALIDATION_FAILED,
    ToolExecutionContext,
    ToolInvocation,
)
from archon.tools.vault_tools import extract_tags, in_folder_scope


def _context(**overrides):
    fields = {"agent_id": "caller", "agent_name": "Caller"}
    fields.update(overrides)
    return ToolExecutionContext(**fields)


async def _run(executor, name, context=None, /, timeout=None, **parameters):
    return await executor.execute(ToolInvocation(name, parameters), context or _context(), timeout=timeout)


class TestAgentTools:

    def test_tool_name_sanitised(self):
        assert agent_tool_name("Research-Bot.v2") == "call_research_bot_v2"

    def test_update_replaces_agent_tools(self):
        registry = ToolRegistry()
        registry.update_agent_tools([AgentSummary("alpha", "Alpha"), AgentSummary("beta", "Beta")])
        assert registry.agent_for_tool("call_alpha") == "alpha"

        registry.update_agent_tools([AgentSummary("beta", "Beta"), AgentSummary("gamma", "Gamma", enabled=False)])
        assert not registry.has("call_alpha")
        assert not registry.has("call_gamma")
        assert registry.agent_for_tool("call_beta") == "beta"
        assert registry.has("list_agents")

    def test_schema_lists_required(self):
        registry = ToolRegistry()
        registry.update_agent_tools([AgentSummary("alpha", "Alpha")])
        schema = registry.get("call_alpha").json_schema()
        assert schema["required"] == ["query"]
        assert set(schema["properties"]) == {"query", "context"}

    def test_search_and_category(self):
        registry = ToolRegistry()
        assert {t.name for t in registry.by_category("vault")} == {"read_note", "write_note", "list_notes"}
        assert [t.name for t in registry.search("search notes")] == ["search_notes"]


class TestVaultHelpers:

    def test_extract_tags(self):
        assert extract_tags("Plan #beta and #finance/q3, not an#anchor, #beta again") == ["#beta", "#finance/q3"]

    @pytest.mark.parametrize("path,folders,expected", [
        ("Projects/Roadmap.md", [], True),
        ("Projects/Roadmap.md", ["Projects"], True),
        ("Projects", ["Projects/"], True),
        ("ProjectsOld/Roadmap.md", ["Projects"], False),
        ("Private/Diary.md", ["Projects", "Inbox"], False),
    ])
    def test_folder_scope(self, path, folders, expected):
        assert in_folder_scope(path, folders) is expected


class TestValidation:

    @pytest.mark.asyncio
    async def test_unknown_tool(self, vault):
        result = await _run(ToolExecutor(vault=vault), "format_disk")
        assert result.error.code == TOOL_ERROR_UNKNOWN_TOOL

    @pytest.mark.asyncio
    async def test_missing_required(self, vault):
        result = await _run(ToolExecutor(vault=vault), "read_note")
        assert result.error.code == TOOL_ERROR_VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_wrong_type(self, vault):
        result = await _run(ToolExecutor(vault=vault), "list_notes", recursive="yes")
        assert result.error.code == TOOL_ERROR_VALIDATION_FAILED


class TestVaultOperations:

    @pytest.mark.asyncio
    async def test_read_note_without_suffix(self, vault):
        result = await _run(ToolExecutor(vault=vault), "read_note", path="Projects/Roadmap")
        assert result.success
        assert result.data["path"] == "Projects/Roadmap.md"
        assert result.data["tags"] == ["#planning", "#beta"]

    @pytest.mark.asyncio
    async def test_read_missing_note(self, vault):
        result = await _run(ToolExecutor(vault=vault), "read_note", path="Nope.md")
        assert result.error.code == TOOL_ERROR_NOTE_NOT_FOUND

    @pytest.mark.asyncio
    async def test_path_escape_refused(self, vault):
        result = await _run(ToolExecutor(vault=vault), "read_note", path="../../etc/passwd")
        assert result.error.code == TOOL_ERROR_PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_folder_scope_enforced(self, vault):
        context = _context(restrict_to_folders=["Projects"])
        result = await _run(ToolExecutor(vault=vault), "read_note", context, path="Private/Diary.md")
        assert result.error.code == TOOL_ERROR_PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_scope_checked_before_existence(self, vault):
        context = _context(restrict_to_folders=["Projects"])
        result = await _run(ToolExecutor(vault=vault), "read_note", context, path="Private/Missing.md")
        assert result.error.code == TOOL_ERROR_PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_undecodable_note_skipped(self, vault, vault_dir):
        (vault_dir / "Legacy.md").write_bytes(b"caf\xe9 latin-1 note about beta")
        executor = ToolExecutor(vault=vault)

        found = await _run(executor, "search_notes", query="beta")
        assert found.success
        assert {r["path"] for r in found.data["results"]} == {"Projects/Roadmap.md", "Private/Diary.md"}

        read = await _run(executor, "read_note", path="Legacy")
        assert read.success
        assert "latin-1 note" in read.data["content"]

    @pytest.mark.asyncio
    async def test_symlink_outside_vault_skipped(self, vault, vault_dir, tmp_path):
        outside = tmp_path / "elsewhere"
        outside.mkdir()
        (outside / "Secret.md").write_text("beta launch codes", encoding="utf-8")
        (vault_dir / "Link.md").symlink_to(outside / "Secret.md")
        executor = ToolExecutor(vault=vault)

        found = await _run(executor, "search_notes", query="launch codes")
        assert found.success
        assert found.data["results"] == []

        listed = await _run(executor, "list_notes")
        assert listed.success
        assert [n["path"] for n in listed.data["notes"]] == ["Inbox.md"]

        read = await _run(executor, "read_note", path="Link.md")
        assert read.error.code == TOOL_ERROR_PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_search_respects_scope_and_tags(self, vault):
        executor = ToolExecutor(vault=vault)

        everywhere = await _run(executor, "search_notes", query="beta")
        assert {r["path"] for r in everywhere.data["results"]} == {"Projects/Roadmap.md", "Private/Diary.md"}

        scoped = await _run(executor, "search_notes", _context(restrict_to_folders=["Projects"]), query="beta")
        assert [r["path"] for r in scoped.data["results"]] == ["Projects/Roadmap.md"]

        tagged = await _run(executor, "search_notes", tags=["planning"])
        assert {r["path"] for r in tagged.data["results"]} == {"Projects/Roadmap.md", "Inbox.md"}

    @pytest.mark.asyncio
    async def test_list_notes(self, vault):
        executor = ToolExecutor(vault=vault)
        top = await _run(executor, "list_notes")
        assert [n["path"] for n in top.data["notes"]] == ["Inbox.md"]

        deep = await _run(executor, "list_notes", recursive=True)
        assert deep.data["count"] == 4

    @pytest.mark.asyncio
    async def test_write_needs_dangerous_permission(self, vault, vault_dir):
        result = await _run(ToolExecutor(vault=vault), "write_note", path="New", content="hello")
        assert result.error.code == TOOL_ERROR_DANGEROUS_OPERATION
        assert not (vault_dir / "New.md").exists()

    @pytest.mark.asyncio
    async def test_write_refused_when_read_only(self, vault):
        context = _context(allow_dangerous_operations=True, read_only=True)
        result = await _run(ToolExecutor(vault=vault), "write_note", context, path="New", content="hello")
        assert result.error.code == TOOL_ERROR_PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_write_and_append(self, vault, vault_dir):
        executor = ToolExecutor(vault=vault)
        context = _context(allow_dangerous_operations=True, read_only=False)

        created = await _run(executor, "write_note", context, path="Inbox/Idea", content="first")
        assert created.data == {"path": "Inbox/Idea.md", "action": "created"}
        assert created.operation_type == "write"

        appended = await _run(executor, "write_note", context, path="Inbox/Idea.md", content="second", append=True)
        assert appended.data["action"] == "appended"
        assert (vault_dir / "Inbox" / "Idea.md").read_text(encoding="utf-8") == "first\n\nsecond"


class TestDelegation:

    @pytest.fixture
    def executor(self):
        executor = ToolExecutor()
        agents = [AgentSummary("caller", "Caller"), AgentSummary("helper", "Helper")]
        calls = []

        async def execute_agent(agent_id, query, extra_context, call_depth):
            calls.append((agent_id, query, extra_context, call_depth))
            if query == "explode":
                raise RuntimeError("helper crashed")
            if query == "slow":
                await asyncio.sleep(1)
            return {"agent": agent_id, "answer": f"re: {query}"}

        executor.set_agent_callbacks(execute_agent, lambda: agents)
        executor.update_agent_tools(agents)
        executor.calls = calls
        return executor

    @pytest.mark.asyncio
    async def test_call_increments_depth(self, executor):
        result = await _run(executor, "call_helper", _context(call_depth=1), query="hi", context="notes")
        assert result.success
        assert result.data["answer"] == "re: hi"
        assert executor.calls == [("helper", "hi", "notes", 2)]

    @pytest.mark.asyncio
    async def test_depth_limit(self, executor):
        result = await _run(executor, "call_helper", _context(call_depth=MAX_DELEGATION_DEPTH), query="hi")
        assert result.error.code == TOOL_ERROR_DELEGATION_DEPTH
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_agent_failure_wrapped(self, executor):
        result = await _run(executor, "call_helper", query="explode")
        assert result.error.code == TOOL_ERROR_AGENT_FAILED
        assert "helper crashed" in result.error.message

    @pytest.mark.asyncio
    async def test_timeout(self, executor):
        result = await _run(executor, "call_helper", timeout=0.05, query="slow")
        assert result.error.code == TOOL_ERROR_TIMEOUT

    @pytest.mark.asyncio
    async def test_list_agents_excludes_caller(self, executor):
        result = await _run(executor, "list_agents")
        assert [a["id"] for a in result.data["agents"]] == ["helper"]
        assert result.data["agents"][0]["tool"] == "call_helper"

    @pytest.mark.asyncio
    async def test_audit_log_records_everything(self, executor):
        await _run(executor, "call_helper", query="hi")
        await _run(executor, "nope")

        entries = executor.audit_log()
        assert [(e.tool_name, e.success) for e in entries] == [("call_helper", True), ("nope", False)]
        assert entries[1].error_code == TOOL_ERROR_UNKNOWN_TOOL
        assert executor.audit_log(limit=1) == entries[-1:]

        executor.clear_audit_log()
        assert executor.audit_log() == []
