"""
Settings -- the persisted roster, model bindings, and runtime options.

Stored as one JSON file (default .archon/settings.json, overridable with
ARCHON_SETTINGS_PATH). A missing file means defaults; a corrupt one is an
error, never silently replaced.

Usage:
    store = SettingsStore(Path(".archon/settings.json"))
    settings = store.load()
    settings.agents.append(config)
    store.save(settings)
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .agents.models import AgentConfig
from .errors import SettingsError, ValidationError
from .llm.client import API_KEY_ENV, DEFAULT_MODELS
from .llm.manager import ModelBindingConfig

logger = logging.getLogger(__name__)

SETTINGS_PATH_ENV = "ARCHON_SETTINGS_PATH"
DEFAULT_SETTINGS_PATH = Path(".archon/settings.json")
SETTINGS_VERSION = 1


@dataclass(frozen=True)
class ExecutionTimeouts:
    """Per-call bounds, in seconds, for each collaborator an executor awaits."""

    retrieval: float = 30.0
    model: float = 120.0
    tool: float = 300.0

    def to_dict(self) -> dict[str, float]:
        return {"retrieval": self.retrieval, "model": self.model, "tool": self.tool}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ExecutionTimeouts":
        defaults = cls()
        data = data or {}
        return cls(
            retrieval=float(data.get("retrieval", defaults.retrieval)),
            model=float(data.get("model", defaults.model)),
            tool=float(data.get("tool", defaults.tool)),
        )


@dataclass
class ArchonSettings:
    agents: list[AgentConfig] = field(default_factory=list)
    model_bindings: list[ModelBindingConfig] = field(default_factory=list)
    master_agent_id: str | None = None
    default_agent_id: str | None = None
    vault_root: str = "."
    chunks_dir: str | None = None
    vector_backend: str = "memory"
    embedding_provider: str | None = None
    timeouts: ExecutionTimeouts = field(default_factory=ExecutionTimeouts)

    def copy(self, **changes: Any) -> "ArchonSettings":
        """Shallow copy with fresh lists, so a failed save leaves the original intact."""
        base = replace(self, agents=list(self.agents), model_bindings=list(self.model_bindings))
        return replace(base, **changes) if changes else base

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": SETTINGS_VERSION,
            "agents": [a.to_dict() for a in self.agents],
            "model_bindings": [b.to_dict() for b in self.model_bindings],
            "master_agent_id": self.master_agent_id,
            "default_agent_id": self.default_agent_id,
            "vault_root": self.vault_root,
            "chunks_dir": self.chunks_dir,
            "vector_backend": self.vector_backend,
            "embedding_provider": self.embedding_provider,
            "timeouts": self.timeouts.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ArchonSettings":
        agents = []
        for entry in data.get("agents", []):
            try:
                agents.append(AgentConfig.from_dict(entry))
            except (ValidationError, KeyError, TypeError) as e:
                logger.warning(f"[Settings] Skipping invalid agent entry {entry.get('id', '?')}: {e}")
        return cls(
            agents=agents,
            model_bindings=[ModelBindingConfig.from_dict(b) for b in data.get("model_bindings", [])],
            master_agent_id=data.get("master_agent_id"),
            default_agent_id=data.get("default_agent_id"),
            vault_root=data.get("vault_root", "."),
            chunks_dir=data.get("chunks_dir"),
            vector_backend=data.get("vector_backend", "memory"),
            embedding_provider=data.get("embedding_provider"),
            timeouts=ExecutionTimeouts.from_dict(data.get("timeouts")),
        )


def bindings_from_env() -> list[ModelBindingConfig]:
    """One default binding per provider whose API key is present in the environment."""
    bindings = []
    for provider, env_var in API_KEY_ENV.items():
        if os.environ.get(env_var):
            bindings.append(ModelBindingConfig(
                id=provider,
                name=f"{provider.capitalize()} ({DEFAULT_MODELS[provider]})",
                provider=provider,
                model=DEFAULT_MODELS[provider],
                is_default=not bindings,
            ))
    return bindings


def settings_path_from_env() -> Path:
    return Path(os.environ.get(SETTINGS_PATH_ENV, "") or DEFAULT_SETTINGS_PATH)


class SettingsStore:
    """Loads and saves ArchonSettings. With path=None it only lives in memory."""

    def __init__(self, path: Path | None = None, settings: ArchonSettings | None = None):
        self._path = path
        self._settings = settings

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def settings(self) -> ArchonSettings:
        if self._settings is None:
            self._settings = self.load()
        return self._settings

    def load(self) -> ArchonSettings:
        if self._path is None or not self._path.exists():
            self._settings = self._settings or ArchonSettings()
            return self._settings
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SettingsError(f"Could not read settings from {self._path}: {e}") from e

        self._settings = ArchonSettings.from_dict(data)
        logger.info(
            f"[Settings] Loaded {len(self._settings.agents)} agents and "
            f"{len(self._settings.model_bindings)} model bindings from {self._path}"
        )
        return self._settings

    def save(self, settings: ArchonSettings) -> None:
        """Persist, then adopt. If writing fails the previous settings stay current."""
        if self._path is not None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
            except OSError as e:
                raise SettingsError(f"Could not write settings to {self._path}: {e}") from e
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(settings.to_dict(), f, indent=2)
                os.replace(tmp, self._path)
            except (OSError, TypeError, ValueError) as e:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass
                raise SettingsError(f"Could not write settings to {self._path}: {e}") from e
            logger.debug(f"[Settings] Saved {len(settings.agents)} agents to {self._path}")
        self._settings = settings
