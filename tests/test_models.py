"""Agent config model, templates, master prompt, and settings persistence."""

import json

import pytest

from archon.agents.master import MASTER_AGENT_ID, create_master_config, generate_master_prompt
from archon.agents.models import AgentConfig, PromptTemplate, RetrievalSettings, normalize_set
from archon.agents.templates import config_from_template, list_templates, search_templates
from archon.config import ArchonSettings, ExecutionTimeouts, SettingsStore, bindings_from_env
from archon.errors import SettingsError, ValidationError
from archon.tools.agent_tools import AgentSummary

from conftest import make_agent


class TestPromptTemplate:

    def test_requires_context_slot(self):
        with pytest.raises(ValidationError):
            PromptTemplate("No slot")

    def test_render_leaves_other_braces(self):
        template = PromptTemplate('Reply as {"answer": ...}\n\n{context}')
        assert template.render("FACTS") == 'Reply as {"answer": ...}\n\nFACTS'


class TestAgentConfig:

    def test_round_trip(self):
        config = make_agent("planner", folder_scope=("Projects",), metadata_filters={"team": ["growth"]})
        restored = AgentConfig.from_dict(json.loads(json.dumps(config.to_dict())))
        assert restored == config

    def test_from_dict_defaults(self):
        config = AgentConfig.from_dict({"id": "bare", "name": "Bare", "system_prompt": "{context}"})
        assert config.retrieval == RetrievalSettings()
        assert config.test_status == "never"
        assert config.capabilities == ()

    def test_normalize_set(self):
        assert normalize_set(["b", " a ", "b", ""]) == ("b", "a")
        assert normalize_set(None) == ()


class TestTemplates:

    def test_every_template_builds(self):
        for template in list_templates():
            config = config_from_template(template.id, f"my-{template.id}", "binding")
            assert config.category == template.category

    def test_overrides_win(self):
        config = config_from_template("research-assistant", "research", "binding", name="Scout")
        assert config.name == "Scout"

    def test_unknown_template(self):
        with pytest.raises(ValidationError):
            config_from_template("astrologer", "x", "binding")

    def test_search(self):
        assert "research-assistant" in {t.id for t in search_templates("research")}
        assert search_templates("zzz-nothing") == []


class TestMasterPrompt:

    def test_lists_enabled_specialists(self):
        prompt = generate_master_prompt([
            AgentSummary("planner", "Planner", description="Plans work", capabilities=("planning",)),
            AgentSummary("muted", "Muted", enabled=False),
            AgentSummary(MASTER_AGENT_ID, "Master"),
        ])
        assert "(ID: planner)" in prompt.text
        assert "`call_planner`" in prompt.text
        assert "Muted" not in prompt.text
        assert f"(ID: {MASTER_AGENT_ID})" not in prompt.text
        assert "{context}" in prompt.text

    def test_context_slot_in_roster_text_is_neutralised(self):
        prompt = generate_master_prompt([
            AgentSummary("sneaky", "Sneaky {context}", description="Echoes {context} back", category="{context}"),
        ])
        assert prompt.text.count("{context}") == 1

        rendered = prompt.render("RETRIEVED")
        assert rendered.count("RETRIEVED") == 1
        assert rendered.endswith("RETRIEVED")
        assert "Echoes (context) back" in rendered

    def test_empty_roster(self):
        assert "No specialist agents" in generate_master_prompt([]).text

    def test_master_config_flags(self):
        master = create_master_config("binding")
        assert master.is_master and master.is_permanent and master.enable_tools
        assert not master.allow_dangerous_operations


class TestSettings:

    def test_save_and_reload(self, tmp_path, binding):
        path = tmp_path / "nested" / "settings.json"
        settings = ArchonSettings(
            agents=[make_agent("planner")],
            model_bindings=[binding],
            default_agent_id="planner",
            timeouts=ExecutionTimeouts(retrieval=5, model=60, tool=90),
        )
        SettingsStore(path).save(settings)

        loaded = SettingsStore(path).load()
        assert loaded.agents == settings.agents
        assert loaded.model_bindings == [binding]
        assert loaded.default_agent_id == "planner"
        assert loaded.timeouts == ExecutionTimeouts(5.0, 60.0, 90.0)

    def test_unserialisable_save_leaves_no_temp_file(self, tmp_path):
        path = tmp_path / "settings.json"
        store = SettingsStore(path)
        store.save(ArchonSettings(agents=[make_agent("good")]))

        with pytest.raises(SettingsError):
            store.save(ArchonSettings(agents=[make_agent("bad", metadata_filters={"k": [object()]})]))

        assert list(tmp_path.glob("*.tmp")) == []
        assert [a.id for a in store.settings.agents] == ["good"]
        assert [a.id for a in SettingsStore(path).load().agents] == ["good"]

    def test_invalid_agent_entry_skipped(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"agents": [
            {"id": "broken", "name": "Broken", "system_prompt": "no slot"},
            make_agent("ok").to_dict(),
        ]}), encoding="utf-8")
        assert [a.id for a in SettingsStore(path).load().agents] == ["ok"]

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[", encoding="utf-8")
        with pytest.raises(SettingsError):
            SettingsStore(path).load()

    def test_missing_file_is_empty(self, tmp_path):
        settings = SettingsStore(tmp_path / "absent.json").load()
        assert settings.agents == []
        assert settings.vector_backend == "memory"

    def test_copy_does_not_share_lists(self):
        original = ArchonSettings(agents=[make_agent("a")])
        copied = original.copy()
        copied.agents.append(make_agent("b"))
        assert len(original.agents) == 1

    def test_bindings_from_env(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("GOOGLE_API_KEY", "g-test")
        bindings = bindings_from_env()
        assert [b.id for b in bindings] == ["openai", "google"]
        assert [b.is_default for b in bindings] == [True, False]
