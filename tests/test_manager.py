"""AgentManager -- roster lifecycle, master freshness, protection, delegation."""

import asyncio
import json

import pytest

from archon.agents.manager import AgentManager
from archon.agents.master import MASTER_AGENT_ID
from archon.agents.models import (
    TEST_STATUS_FAILED,
    TEST_STATUS_NEVER,
    TEST_STATUS_PASSED,
    PromptTemplate,
    RetrievalSettings,
)
from archon.config import ArchonSettings, SettingsStore
from archon.errors import AgentNotFoundError, SettingsError, ValidationError
from archon.llm.manager import ModelBindingConfig, ModelManager
from archon.llm.types import ROLE_FUNCTION
from archon.tools.types import TOOL_ERROR_DELEGATION_DEPTH

from conftest import BINDING_ID, StubRetriever, answer, make_agent, tool_request


def _master_prompt(manager):
    return manager.get_master_agent().system_prompt.text


def _function_payloads(client):
    payloads = []
    for request in client.requests:
        for message in request:
            if message.role == ROLE_FUNCTION:
                payloads.append(json.loads(message.content))
    return payloads


class TestInitialize:

    @pytest.mark.asyncio
    async def test_creates_single_master(self, manager, store):
        await manager.initialize()
        await manager.initialize()

        masters = [a for a in store.settings.agents if a.is_master]
        assert len(masters) == 1
        assert masters[0].id == MASTER_AGENT_ID
        assert masters[0].model_binding_id == BINDING_ID
        assert store.settings.master_agent_id == MASTER_AGENT_ID
        assert manager.get_executor(MASTER_AGENT_ID) is not None
        assert manager.is_ready()

    @pytest.mark.asyncio
    async def test_duplicate_masters_collapsed(self, binding, models, retriever):
        first = make_agent("first-master", is_master=True)
        second = make_agent("second-master", is_master=True)
        store = SettingsStore(None, ArchonSettings(agents=[first, second], model_bindings=[binding]))
        manager = AgentManager(store, models, retriever)
        await manager.initialize()

        masters = [a for a in store.settings.agents if a.is_master]
        assert [m.id for m in masters] == ["first-master"]
        assert store.settings.master_agent_id == "first-master"

    @pytest.mark.asyncio
    async def test_no_binding_means_no_master(self, retriever):
        manager = AgentManager(SettingsStore(None, ArchonSettings()), ModelManager(), retriever)
        await manager.initialize()
        assert manager.get_master_agent() is None
        assert not manager.is_ready()

    @pytest.mark.asyncio
    async def test_disabled_agents_get_no_executor(self, binding, models, retriever):
        store = SettingsStore(None, ArchonSettings(
            agents=[make_agent("live"), make_agent("parked", enabled=False)],
            model_bindings=[binding],
        ))
        manager = AgentManager(store, models, retriever)
        await manager.initialize()

        assert manager.get_executor("live") is not None
        assert manager.get_executor("parked") is None
        assert "(ID: parked)" not in _master_prompt(manager)


class TestValidation:

    @pytest.fixture
    def strict_models(self, binding, fake_client):
        off = ModelBindingConfig(id="off", name="Off", provider="openai", model="gpt", enabled=False)
        manager = ModelManager([binding, off], client_factory=lambda b: fake_client)
        manager.initialize()
        return manager

    @pytest.mark.parametrize("overrides", [
        {"name": "  "},
        {"model_binding_id": None},
        {"model_binding_id": "unknown"},
        {"model_binding_id": "off"},
        {"retrieval": RetrievalSettings(top_k=0)},
        {"retrieval": RetrievalSettings(top_k=21)},
        {"retrieval": RetrievalSettings(score_threshold=-0.1)},
        {"retrieval": RetrievalSettings(score_threshold=1.5)},
        {"retrieval": RetrievalSettings(strategy="psychic")},
    ])
    def test_invalid_configs_rejected(self, store, strict_models, overrides):
        manager = AgentManager(store, strict_models)
        config = make_agent("candidate").with_changes(**overrides)
        with pytest.raises(ValidationError):
            manager.validate_agent_config(config)

    @pytest.mark.parametrize("retrieval", [
        RetrievalSettings(top_k=1, score_threshold=0.0),
        RetrievalSettings(top_k=20, score_threshold=1.0),
    ])
    def test_boundaries_accepted(self, store, strict_models, retrieval):
        manager = AgentManager(store, strict_models)
        manager.validate_agent_config(make_agent("candidate", retrieval=retrieval))

    def test_prompt_without_context_slot_cannot_be_built(self):
        with pytest.raises(ValidationError):
            PromptTemplate("No slot here")

    @pytest.mark.asyncio
    async def test_rejected_add_leaves_roster_unchanged(self, manager, store):
        await manager.initialize()
        before = list(store.settings.agents)
        with pytest.raises(ValidationError):
            await manager.add_agent(make_agent("broken", binding_id="unknown"))
        assert store.settings.agents == before
        assert manager.get_executor("broken") is None

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, manager):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))
        with pytest.raises(ValidationError):
            await manager.add_agent(make_agent("analyst"))

    @pytest.mark.parametrize("clashing_id", ["data_analyst", "Data-Analyst"])
    @pytest.mark.asyncio
    async def test_ids_sharing_a_tool_name_rejected(self, manager, clashing_id):
        await manager.initialize()
        await manager.add_agent(make_agent("data-analyst", name="Hyphen Analyst"))

        with pytest.raises(ValidationError):
            await manager.add_agent(make_agent(clashing_id, name="Other Analyst"))

        assert manager.get_agent(clashing_id) is None
        prompt = manager.get_master_agent().system_prompt.text
        assert prompt.count("`call_data_analyst`") == 1
        assert "Other Analyst" not in prompt

    @pytest.mark.asyncio
    async def test_unsafe_id_rejected(self, manager):
        await manager.initialize()
        with pytest.raises(ValidationError):
            await manager.add_agent(make_agent("9 lives"))


class TestMasterFreshness:

    @pytest.mark.asyncio
    async def test_add_advertises_agent_to_master(self, manager):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))

        assert "**Analyst** (ID: analyst)" in _master_prompt(manager)
        assert "`call_analyst`" in _master_prompt(manager)
        master_tools = manager.get_executor(MASTER_AGENT_ID).tool_executor.registry
        assert master_tools.has("call_analyst")

    @pytest.mark.asyncio
    async def test_delete_withdraws_agent_from_master(self, manager):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))
        await manager.delete_agent("analyst")

        assert "analyst" not in _master_prompt(manager)
        assert not manager.get_executor(MASTER_AGENT_ID).tool_executor.registry.has("call_analyst")
        with pytest.raises(AgentNotFoundError):
            await manager.execute_agent("analyst", "hello")

    @pytest.mark.asyncio
    async def test_rename_reaches_master_prompt(self, manager):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))
        await manager.update_agent("analyst", {"name": "Market Analyst"})
        assert "**Market Analyst** (ID: analyst)" in _master_prompt(manager)

    @pytest.mark.asyncio
    async def test_toggle_off_and_on(self, manager):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))

        await manager.toggle_agent("analyst", False)
        assert manager.get_executor("analyst") is None
        assert "(ID: analyst)" not in _master_prompt(manager)

        await manager.toggle_agent("analyst", True)
        assert manager.get_executor("analyst") is not None
        assert "(ID: analyst)" in _master_prompt(manager)

    @pytest.mark.asyncio
    async def test_peers_see_each_other_but_not_themselves(self, manager):
        await manager.initialize()
        await manager.add_agent(make_agent("alpha", enable_tools=True))
        await manager.add_agent(make_agent("beta", enable_tools=True))

        alpha_tools = manager.get_executor("alpha").tool_executor.registry
        assert alpha_tools.has("call_beta")
        assert not alpha_tools.has(f"call_{MASTER_AGENT_ID.replace('-', '_')}")

    @pytest.mark.asyncio
    async def test_concurrent_adds_all_advertised(self, manager):
        await manager.initialize()
        await asyncio.gather(*(manager.add_agent(make_agent(f"agent-{n}")) for n in range(5)))

        prompt = _master_prompt(manager)
        for n in range(5):
            assert f"(ID: agent-{n})" in prompt
        assert len(manager.list_agents()) == 6


class TestUpdates:

    @pytest.mark.asyncio
    async def test_updated_at_strictly_increases(self, manager):
        await manager.initialize()
        config = await manager.add_agent(make_agent("analyst"))

        stamps = [config.updated_at]
        for n in range(3):
            updated = await manager.update_agent("analyst", {"description": f"v{n}"})
            stamps.append(updated.updated_at)
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)

    @pytest.mark.asyncio
    async def test_update_coerces_fields(self, manager):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))
        updated = await manager.update_agent("analyst", {
            "system_prompt": "New prompt.\n{context}",
            "retrieval": {"top_k": 9},
            "capabilities": ["a", "b", "a"],
        })

        assert updated.system_prompt.text == "New prompt.\n{context}"
        assert updated.retrieval.top_k == 9
        assert updated.retrieval.score_threshold == 0.5
        assert updated.capabilities == ("a", "b")
        assert manager.get_executor("analyst").config.retrieval.top_k == 9

    @pytest.mark.asyncio
    async def test_invalid_update_rejected(self, manager):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))
        with pytest.raises(ValidationError):
            await manager.update_agent("analyst", {"system_prompt": "no slot"})
        with pytest.raises(ValidationError):
            await manager.update_agent("analyst", {"retrieval": {"top_k": 50}})
        with pytest.raises(ValidationError):
            await manager.update_agent("analyst", {"favourite_colour": "blue"})
        assert manager.get_agent("analyst").retrieval.top_k == 5

    @pytest.mark.parametrize("field", ["id", "is_master", "created_at"])
    @pytest.mark.asyncio
    async def test_immutable_fields(self, manager, field):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))
        with pytest.raises(ValidationError):
            await manager.update_agent("analyst", {field: "x"})

    @pytest.mark.asyncio
    async def test_update_unknown_agent(self, manager):
        await manager.initialize()
        with pytest.raises(AgentNotFoundError):
            await manager.update_agent("ghost", {"name": "Boo"})


class TestProtection:

    @pytest.mark.asyncio
    async def test_master_cannot_be_deleted(self, manager):
        await manager.initialize()
        with pytest.raises(ValidationError):
            await manager.delete_agent(MASTER_AGENT_ID)
        assert manager.get_master_agent() is not None

    @pytest.mark.asyncio
    async def test_master_cannot_be_disabled(self, manager):
        await manager.initialize()
        with pytest.raises(ValidationError):
            await manager.toggle_agent(MASTER_AGENT_ID, False)
        with pytest.raises(ValidationError):
            await manager.update_agent(MASTER_AGENT_ID, {"enabled": False})
        assert manager.get_executor(MASTER_AGENT_ID) is not None

    @pytest.mark.asyncio
    async def test_permanent_agent_cannot_be_deleted(self, manager):
        await manager.initialize()
        await manager.add_agent(make_agent("keeper", is_permanent=True))
        with pytest.raises(ValidationError):
            await manager.delete_agent("keeper")

    @pytest.mark.asyncio
    async def test_second_master_rejected(self, manager):
        await manager.initialize()
        with pytest.raises(ValidationError):
            await manager.add_agent(make_agent("usurper", is_master=True))


class TestExecution:

    @pytest.mark.asyncio
    async def test_unknown_agent(self, manager):
        await manager.initialize()
        with pytest.raises(AgentNotFoundError):
            await manager.execute_agent("ghost", "hello")

    @pytest.mark.asyncio
    async def test_execute_by_name(self, manager, fake_client):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))
        fake_client.script(answer("hi"))
        response = await manager.execute_agent_by_name("analyst", "hello")
        assert response.answer == "hi"
        assert response.agent_used == "Analyst"

    @pytest.mark.asyncio
    async def test_master_delegates_end_to_end(self, manager, fake_client):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))

        fake_client.script(
            tool_request("call_analyst", {"query": "When is the beta?", "context": "user asked"}),
            answer("Specialist: Q3"),
            answer("The analyst says the beta ships in Q3."),
        )
        response = await manager.execute_agent(MASTER_AGENT_ID, "When is the beta?")

        assert response.answer == "The analyst says the beta ships in Q3."
        assert len(response.tool_results) == 1
        delegated = response.tool_results[0]
        assert delegated.success
        assert delegated.data["agent"] == "Analyst"
        assert delegated.data["answer"] == "Specialist: Q3"

        specialist_request = fake_client.requests[1]
        assert any("user asked" in m.content for m in specialist_request)

    @pytest.mark.asyncio
    async def test_mutual_delegation_stops_at_depth_limit(self, manager, fake_client):
        await manager.initialize()
        await manager.add_agent(make_agent("alpha", enable_tools=True))
        await manager.add_agent(make_agent("beta", enable_tools=True))

        fake_client.script(
            tool_request("call_beta", {"query": "q"}),   # alpha, depth 0
            tool_request("call_alpha", {"query": "q"}),  # beta, depth 1
            tool_request("call_beta", {"query": "q"}),   # alpha, depth 2
            tool_request("call_alpha", {"query": "q"}),  # beta, depth 3: refused
            answer("beta-3"),
            answer("alpha-2"),
            answer("beta-1"),
            answer("alpha-0"),
        )
        response = await manager.execute_agent("alpha", "start")

        assert response.answer == "alpha-0"
        codes = [p["error"]["code"] for p in _function_payloads(fake_client) if not p["success"]]
        assert TOOL_ERROR_DELEGATION_DEPTH in codes
        assert "call_alpha" not in fake_client.tool_names[0]
        assert "call_beta" in fake_client.tool_names[0]

    @pytest.mark.asyncio
    async def test_failed_delegate_becomes_tool_error(self, manager, fake_client):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))

        # empty query fails validation inside the delegate
        fake_client.script(tool_request("call_analyst", {"query": ""}), answer("fallback"))
        response = await manager.execute_agent(MASTER_AGENT_ID, "go")

        assert response.answer == "fallback"
        assert not response.tool_results[0].success


class TestSmokeTests:

    @pytest.mark.asyncio
    async def test_records_pass_without_touching_updated_at(self, manager):
        await manager.initialize()
        config = await manager.add_agent(make_agent("analyst"))
        assert config.test_status == TEST_STATUS_NEVER

        assert await manager.test_agent("analyst") is True
        tested = manager.get_agent("analyst")
        assert tested.test_status == TEST_STATUS_PASSED
        assert tested.last_tested_at is not None
        assert tested.updated_at == config.updated_at

    @pytest.mark.asyncio
    async def test_records_failure(self, manager, fake_client):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))
        fake_client.error = RuntimeError("down")

        assert await manager.test_agent("analyst") is False
        assert manager.get_agent("analyst").test_status == TEST_STATUS_FAILED

    @pytest.mark.asyncio
    async def test_unknown_agent_is_false(self, manager):
        await manager.initialize()
        assert await manager.test_agent("ghost") is False

    @pytest.mark.asyncio
    async def test_all_agents(self, manager):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))
        results = await manager.test_all_agents()
        assert results == {MASTER_AGENT_ID: True, "analyst": True}


class TestQueriesAndDefaults:

    @pytest.mark.asyncio
    async def test_default_agent_falls_back_to_master(self, manager):
        await manager.initialize()
        assert manager.get_default_agent().id == MASTER_AGENT_ID

        await manager.add_agent(make_agent("analyst"))
        await manager.set_default_agent("analyst")
        assert manager.get_default_agent().id == "analyst"

        await manager.delete_agent("analyst")
        assert manager.get_default_agent().id == MASTER_AGENT_ID

    @pytest.mark.asyncio
    async def test_set_default_unknown(self, manager):
        await manager.initialize()
        with pytest.raises(AgentNotFoundError):
            await manager.set_default_agent("ghost")

    @pytest.mark.asyncio
    async def test_lookups_and_stats(self, manager):
        await manager.initialize()
        await manager.add_agent(make_agent("analyst", category="research", enable_tools=True))
        await manager.add_agent(make_agent("parked", enabled=False))

        assert manager.get_agent_by_name("ANALYST").id == "analyst"
        assert [a.id for a in manager.list_callable_agents()] == ["analyst"]

        stats = manager.get_stats()
        assert stats["total_agents"] == 3
        assert stats["enabled_agents"] == 2
        assert stats["disabled_agents"] == 1
        assert stats["live_executors"] == 2
        assert stats["master_agent_id"] == MASTER_AGENT_ID
        assert stats["by_category"]["research"] == 1

    @pytest.mark.asyncio
    async def test_cleanup_and_reload(self, manager):
        await manager.initialize()
        await manager.cleanup()
        assert not manager.is_ready()

        await manager.reload_all()
        assert manager.is_ready()
        await manager.reload_agent(MASTER_AGENT_ID)
        assert manager.get_executor(MASTER_AGENT_ID) is not None


class TestPersistence:

    @pytest.mark.asyncio
    async def test_roster_survives_restart(self, tmp_path, binding, models):
        path = tmp_path / "settings.json"
        store = SettingsStore(path, ArchonSettings(model_bindings=[binding]))
        manager = AgentManager(store, models, StubRetriever())
        await manager.initialize()
        await manager.add_agent(make_agent("analyst"))

        reloaded = SettingsStore(path)
        restarted = AgentManager(reloaded, models, StubRetriever())
        await restarted.initialize()

        assert restarted.get_agent("analyst") is not None
        assert len([a for a in reloaded.settings.agents if a.is_master]) == 1
        assert "(ID: analyst)" in _master_prompt(restarted)

    def test_corrupt_settings_raise(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(SettingsError):
            SettingsStore(path).load()
