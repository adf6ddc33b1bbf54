"""
ModelManager -- owns the configured model bindings and their live clients.

A binding is a named (provider, model, sampling defaults) pair that agents
reference by id. Agents never construct clients themselves; they ask the
manager for the client behind their model_binding_id.

Usage:
    models = ModelManager([ModelBindingConfig(id="claude", name="Claude", provider="anthropic",
                                              model="claude-sonnet-4-20250514")])
    models.initialize()
    client = models.get("claude")
"""

import logging
import os
from dataclasses import asdict, dataclass
from typing import Any, Callable

from ..errors import ModelCallError
from .client import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, DEFAULT_TIMEOUT, ModelClient, create_client
from .types import ChatOptions, ChatResult, Message

logger = logging.getLogger(__name__)


@dataclass
class ModelBindingConfig:
    """A configured model an agent can be bound to."""

    id: str
    name: str
    provider: str
    model: str
    enabled: bool = True
    is_default: bool = False
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    api_key_env: str | None = None
    timeout: float = DEFAULT_TIMEOUT

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelBindingConfig":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


ClientFactory = Callable[[ModelBindingConfig], ModelClient]


def default_client_factory(binding: ModelBindingConfig) -> ModelClient:
    """Build an LLMClient from a binding, reading the key from its env var if set."""
    api_key = os.environ.get(binding.api_key_env, "") if binding.api_key_env else None
    return create_client(
        binding.provider,
        model=binding.model,
        api_key=api_key or None,
        timeout=binding.timeout,
        temperature=binding.temperature,
        max_tokens=binding.max_tokens,
    )


class ModelManager:
    """Registry of model bindings and the clients built from them."""

    def __init__(
        self,
        bindings: list[ModelBindingConfig] | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self._bindings: dict[str, ModelBindingConfig] = {b.id: b for b in bindings or []}
        self._clients: dict[str, ModelClient] = {}
        self._client_factory = client_factory or default_client_factory

    def initialize(self) -> None:
        """Build a client for every enabled binding. A failing binding is skipped."""
        for binding in self._bindings.values():
            if not binding.enabled or binding.id in self._clients:
                continue
            try:
                self._clients[binding.id] = self._client_factory(binding)
            except Exception as e:
                logger.warning(
                    f"[ModelManager] Could not initialize binding '{binding.id}' "
                    f"({binding.provider}/{binding.model}): {e}"
                )
        logger.info(
            f"[ModelManager] {len(self._clients)}/{len(self._bindings)} model bindings ready"
        )

    def set_bindings(self, bindings: list[ModelBindingConfig]) -> None:
        """Replace the binding set, dropping clients whose binding changed or vanished."""
        new = {b.id: b for b in bindings}
        for binding_id in list(self._clients):
            if new.get(binding_id) != self._bindings.get(binding_id):
                del self._clients[binding_id]
        self._bindings = new

    def register(self, binding_id: str, client: ModelClient) -> None:
        """Attach a pre-built client to a binding id."""
        self._clients[binding_id] = client

    def binding(self, binding_id: str | None) -> ModelBindingConfig | None:
        if not binding_id:
            return None
        return self._bindings.get(binding_id)

    def bindings(self) -> list[ModelBindingConfig]:
        return list(self._bindings.values())

    def is_enabled(self, binding_id: str | None) -> bool:
        """True when the binding is known and enabled."""
        binding = self.binding(binding_id)
        return binding is not None and binding.enabled

    def enabled_bindings(self) -> list[ModelBindingConfig]:
        return [b for b in self._bindings.values() if b.enabled]

    def default_binding(self) -> ModelBindingConfig | None:
        """The default-flagged enabled binding, else the first enabled one."""
        enabled = self.enabled_bindings()
        for binding in enabled:
            if binding.is_default:
                return binding
        return enabled[0] if enabled else None

    def get(self, binding_id: str) -> ModelClient | None:
        """Live client for a binding, or None when unknown, disabled, or failed to start."""
        if not self.is_enabled(binding_id):
            return None
        return self._clients.get(binding_id)

    def is_ready(self, binding_id: str) -> bool:
        return self.get(binding_id) is not None

    async def chat(
        self,
        binding_id: str,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> ChatResult:
        """One-off plain chat against a binding."""
        client = self.get(binding_id)
        if client is None:
            binding = self.binding(binding_id)
            raise ModelCallError(
                f"Model binding not available: {binding_id}",
                provider=binding.provider if binding else "unknown",
                model=binding.model if binding else "unknown",
            )
        return await client.chat(messages, options)
