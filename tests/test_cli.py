"""CLI commands through typer's CliRunner, against a temporary settings file."""

import json

import pytest
from typer.testing import CliRunner

from archon.cli import app

runner = CliRunner()


@pytest.fixture
def settings_path(tmp_path, monkeypatch):
    for env_var in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GOOGLE_API_KEY", "ARCHON_SETTINGS_PATH"):
        monkeypatch.delenv(env_var, raising=False)
    return tmp_path / "settings.json"


def test_templates_lists_builtins():
    result = runner.invoke(app, ["templates"])
    assert result.exit_code == 0
    assert "Agent Templates" in result.stdout


def test_agents_with_empty_roster(settings_path):
    result = runner.invoke(app, ["--settings", str(settings_path), "agents"])
    assert result.exit_code == 0
    assert "Agents" in result.stdout


def test_corrupt_settings_fails_cleanly(settings_path):
    settings_path.write_text("{not json", encoding="utf-8")
    result = runner.invoke(app, ["--settings", str(settings_path), "agents"])
    assert result.exit_code == 1
    assert "Error" in result.stdout


def test_ask_unknown_agent(settings_path):
    result = runner.invoke(app, ["--settings", str(settings_path), "ask", "ghost", "hello"])
    assert result.exit_code == 1
    assert "ghost" in result.stdout


def test_ingest_records_chunks_dir(settings_path, tmp_path):
    chunks = tmp_path / "chunks"
    chunks.mkdir()
    (chunks / "guide.json").write_text(json.dumps([
        {"chunk_id": "g1", "content": "Onboarding steps", "metadata": {"document_title": "Guide", "section": "1"}},
    ]), encoding="utf-8")

    result = runner.invoke(app, ["--settings", str(settings_path), "ingest", str(chunks)])

    assert result.exit_code == 0
    assert "Ingested 1 chunk(s)" in result.stdout
    saved = json.loads(settings_path.read_text(encoding="utf-8"))
    assert saved["chunks_dir"] == str(chunks.resolve())


def test_ingest_missing_directory(settings_path, tmp_path):
    result = runner.invoke(app, ["--settings", str(settings_path), "ingest", str(tmp_path / "nope")])
    assert result.exit_code == 1
