"""
Provider-agnostic model client with function calling, retries, and token tracking.

Features:
  - chat() for plain completions, chat_with_functions() for tool calling
  - Vendor payload shaping lives here and only here: messages and tool
    definitions are translated by the to_*_messages / to_*_tools functions
  - Automatic prompt caching on the Anthropic system prompt (cache_control)
  - Retry with exponential backoff on transient failures
  - Timeout enforcement, prompt size limits, no secrets in logs

Supports: Anthropic (Claude) and OpenAI (GPT) with function calling,
Google (Gemini) and local Ollama models for plain chat only. Ollama is
reached through its OpenAI-compatible endpoint (OLLAMA_HOST, default
http://localhost:11434) and needs no API key.

    client = create_client("anthropic", model="claude-sonnet-4-20250514")
    result = await client.chat_with_functions(messages, tools)
    if result.tool_call:
        ...

Any failure that survives the retries raises ModelCallError.
"""

import asyncio
import json
import logging
import os
import time
from typing import Any, Protocol, runtime_checkable

from ..errors import ModelCallError
from ..security.prompt_guard import sanitize_for_prompt
from ..tools.types import ToolDefinition
from .types import (
    ROLE_ASSISTANT,
    ROLE_FUNCTION,
    ROLE_SYSTEM,
    ROLE_USER,
    ChatOptions,
    ChatResult,
    Message,
    TokenUsage,
    ToolCall,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120
DEFAULT_MAX_RETRIES = 2
DEFAULT_MAX_PROMPT_LENGTH = 200_000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096
RETRY_BASE_DELAY = 1.0
RETRY_MAX_DELAY = 30.0

SUPPORTED_PROVIDERS = ("anthropic", "openai", "google", "ollama")
FUNCTION_CALLING_PROVIDERS = frozenset({"anthropic", "openai"})

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
    "google": "gemini-2.0-flash",
    "ollama": "llama3.1",
}

API_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "google": "GOOGLE_API_KEY",
}

OLLAMA_HOST_ENV = "OLLAMA_HOST"
DEFAULT_OLLAMA_HOST = "http://localhost:11434"


@runtime_checkable
class ModelClient(Protocol):
    """What the executor needs from a model binding."""

    @property
    def provider(self) -> str: ...

    @property
    def model(self) -> str: ...

    @property
    def supports_function_calling(self) -> bool: ...

    async def chat(
        self, messages: list[Message], options: ChatOptions | None = None
    ) -> ChatResult: ...

    async def chat_with_functions(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        options: ChatOptions | None = None,
    ) -> ChatResult: ...


# =============================================================================
# VENDOR TRANSLATION
# =============================================================================


def to_anthropic_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    """Anthropic takes a "tools" array with an input_schema per tool."""
    return [
        {"name": t.name, "description": t.description, "input_schema": t.json_schema()}
        for t in tools
    ]


def to_openai_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    """OpenAI takes "tools" entries of type function wrapping a parameters schema."""
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.json_schema(),
            },
        }
        for t in tools
    ]


def to_anthropic_messages(messages: list[Message]) -> tuple[str, list[dict[str, Any]]]:
    """
    Split out the system prompt and convert the rest to Anthropic content blocks.

    Tool calls become tool_use blocks, function results become tool_result
    blocks in a user turn. Consecutive turns with the same role are merged
    because the API requires alternation.
    """
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []
    last_call_id = ""

    for index, msg in enumerate(messages):
        if msg.role == ROLE_SYSTEM:
            system_parts.append(msg.content)
        elif msg.role == ROLE_USER:
            converted.append({"role": "user", "content": [{"type": "text", "text": msg.content}]})
        elif msg.role == ROLE_ASSISTANT:
            blocks: list[dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            if msg.tool_call:
                last_call_id = msg.tool_call.call_id or f"toolu_{index}"
                blocks.append({
                    "type": "tool_use",
                    "id": last_call_id,
                    "name": msg.tool_call.name,
                    "input": msg.tool_call.arguments,
                })
            converted.append({"role": "assistant", "content": blocks})
        elif msg.role == ROLE_FUNCTION:
            converted.append({
                "role": "user",
                "content": [{
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id or last_call_id,
                    "content": msg.content,
                }],
            })

    merged: list[dict[str, Any]] = []
    for entry in converted:
        if not entry["content"]:
            continue
        if merged and merged[-1]["role"] == entry["role"]:
            merged[-1]["content"].extend(entry["content"])
        else:
            merged.append(entry)

    return "\n\n".join(p for p in system_parts if p), merged


def to_openai_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert to OpenAI chat messages; function results become role=tool."""
    converted: list[dict[str, Any]] = []
    last_call_id = ""

    for index, msg in enumerate(messages):
        if msg.role == ROLE_ASSISTANT and msg.tool_call:
            last_call_id = msg.tool_call.call_id or f"call_{index}"
            converted.append({
                "role": "assistant",
                "content": msg.content or None,
                "tool_calls": [{
                    "id": last_call_id,
                    "type": "function",
                    "function": {
                        "name": msg.tool_call.name,
                        "arguments": json.dumps(msg.tool_call.arguments),
                    },
                }],
            })
        elif msg.role == ROLE_FUNCTION:
            converted.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id or last_call_id,
                "content": msg.content,
            })
        else:
            converted.append({"role": msg.role, "content": msg.content})

    return converted


def to_google_prompt(messages: list[Message]) -> str:
    """Gemini gets a flat transcript (no function calling on this path)."""
    labels = {ROLE_SYSTEM: "Instructions", ROLE_USER: "User", ROLE_ASSISTANT: "Assistant"}
    parts = []
    for msg in messages:
        label = labels.get(msg.role, f"Tool result ({msg.name})")
        parts.append(f"{label}:\n{msg.content}")
    return "\n\n".join(parts)


def parse_openai_arguments(raw: str | None) -> dict[str, Any]:
    """OpenAI returns tool arguments as a JSON string; tolerate junk."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"[LLM] Could not parse tool arguments: {raw[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """
    Model client over the official vendor SDKs.

    Usage:
        client = LLMClient(provider="openai", model="gpt-4o")
        result = await client.chat([Message.user("Hello")])
        result.content  # str
    """

    def __init__(
        self,
        provider: str = "anthropic",
        model: str | None = None,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        sdk_client: Any = None,
    ):
        self._provider = provider.lower()
        if self._provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported provider: {provider}")
        self._model = model or DEFAULT_MODELS[self._provider]
        self._timeout = timeout
        self._max_retries = max_retries
        self._max_prompt_length = max_prompt_length
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._total_usage = TokenUsage()

        if sdk_client is not None:
            self._client = sdk_client
        else:
            self._client = self._init_client(api_key or self._load_api_key())

        logger.info(
            f"[LLM] Initialized {self._provider} client "
            f"(model={self._model}, timeout={self._timeout}s)"
        )

    def _load_api_key(self) -> str:
        if self._provider not in API_KEY_ENV:
            return ""
        env_var = API_KEY_ENV[self._provider]
        key = os.environ.get(env_var, "")
        if not key:
            logger.warning(f"[LLM] {env_var} not set -- calls will fail")
        return key

    def _init_client(self, api_key: str) -> Any:
        """Initialize the provider-specific SDK client."""
        if self._provider == "anthropic":
            import anthropic

            return anthropic.AsyncAnthropic(api_key=api_key, timeout=self._timeout)
        if self._provider == "openai":
            import openai

            return openai.AsyncOpenAI(api_key=api_key, timeout=self._timeout)
        if self._provider == "ollama":
            import openai

            host = os.environ.get(OLLAMA_HOST_ENV, "") or DEFAULT_OLLAMA_HOST
            if not host.startswith(("http://", "https://")):
                host = f"http://{host}"
            # the key is ignored by Ollama but required by the SDK
            return openai.AsyncOpenAI(
                api_key=api_key or "ollama", base_url=f"{host.rstrip('/')}/v1", timeout=self._timeout
            )

        import google.generativeai as genai

        genai.configure(api_key=api_key)
        return genai.GenerativeModel(self._model)

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def model(self) -> str:
        return self._model

    @property
    def supports_function_calling(self) -> bool:
        return self._provider in FUNCTION_CALLING_PROVIDERS

    @property
    def total_usage(self) -> TokenUsage:
        """Cumulative token usage across all calls in this client's lifetime."""
        return self._total_usage

    async def chat(
        self, messages: list[Message], options: ChatOptions | None = None
    ) -> ChatResult:
        """Plain completion. Never sends tool schemas."""
        return await self._call_with_retries(messages, None, options or ChatOptions())

    async def chat_with_functions(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        options: ChatOptions | None = None,
    ) -> ChatResult:
        """Completion that may come back with a tool call instead of (or alongside) text."""
        if not self.supports_function_calling:
            raise ModelCallError(
                "Function calling is not supported by this provider",
                provider=self._provider,
                model=self._model,
            )
        return await self._call_with_retries(messages, tools, options or ChatOptions())

    async def _call_with_retries(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        options: ChatOptions,
    ) -> ChatResult:
        messages = self._sanitize_messages(messages)
        start = time.time()
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                result = await self._call_provider(messages, tools, options)
                result.latency_ms = (time.time() - start) * 1000
                if result.usage:
                    self._total_usage = self._total_usage + result.usage
                    logger.debug(
                        f"[LLM] {self._provider}/{self._model}: "
                        f"{result.usage.prompt_tokens}in + "
                        f"{result.usage.completion_tokens}out "
                        f"({result.latency_ms:.0f}ms)"
                        + (f" tool_call={result.tool_call.name}" if result.tool_call else "")
                    )
                return result

            except Exception as e:
                last_error = e
                if self._is_retryable(e) and attempt < self._max_retries:
                    delay = min(RETRY_BASE_DELAY * (2**attempt), RETRY_MAX_DELAY)
                    logger.warning(
                        f"[LLM] Retryable error (attempt {attempt + 1}): "
                        f"{type(e).__name__}. Retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                else:
                    break

        logger.error(
            f"[LLM] Call failed after {attempt + 1} attempt(s): {type(last_error).__name__}"
        )
        raise ModelCallError(
            f"Model call failed: {type(last_error).__name__}: {last_error}",
            provider=self._provider,
            model=self._model,
            cause=last_error,
        )

    def _sanitize_messages(self, messages: list[Message]) -> list[Message]:
        """Enforce size limits and strip null bytes on every message."""
        per_message = max(self._max_prompt_length // max(len(messages), 1), 1_000)
        return [
            Message(
                role=m.role,
                content=sanitize_for_prompt(m.content, max_length=per_message),
                name=m.name,
                tool_call=m.tool_call,
                tool_call_id=m.tool_call_id,
            )
            for m in messages
        ]

    async def _call_provider(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        options: ChatOptions,
    ) -> ChatResult:
        """Dispatch to provider-specific implementation."""
        if self._provider == "anthropic":
            return await self._call_anthropic(messages, tools, options)
        if self._provider == "openai":
            return await self._call_openai(messages, tools, options)
        if self._provider == "ollama":
            return await self._call_openai(messages, None, options)
        return await self._call_google(messages, options)

    async def _call_anthropic(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        options: ChatOptions,
    ) -> ChatResult:
        """Anthropic Claude; the system prompt is marked for caching."""
        system, converted = to_anthropic_messages(messages)
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": options.max_tokens or self._max_tokens,
            "temperature": self._temperature if options.temperature is None else options.temperature,
            "messages": converted,
        }
        if system:
            kwargs["system"] = [
                {"type": "text", "text": system, "cache_control": {"type": "ephemeral"}}
            ]
        if options.stop_sequences:
            kwargs["stop_sequences"] = options.stop_sequences
        if tools:
            kwargs["tools"] = to_anthropic_tools(tools)

        response = await self._client.messages.create(**kwargs)

        text_parts = []
        tool_call = None
        for block in response.content:
            block_type = getattr(block, "type", "")
            if block_type == "text":
                text_parts.append(block.text)
            elif block_type == "tool_use" and tool_call is None:
                tool_call = ToolCall(name=block.name, arguments=dict(block.input or {}), call_id=block.id)

        usage = getattr(response, "usage", None)
        return ChatResult(
            content="".join(text_parts),
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "input_tokens", 0) or 0,
                completion_tokens=getattr(usage, "output_tokens", 0) or 0,
            ),
            model=self._model,
            provider="anthropic",
            finish_reason=getattr(response, "stop_reason", None) or "stop",
            tool_call=tool_call,
        )

    async def _call_openai(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        options: ChatOptions,
    ) -> ChatResult:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": to_openai_messages(messages),
            "temperature": self._temperature if options.temperature is None else options.temperature,
            "max_tokens": options.max_tokens or self._max_tokens,
        }
        if options.stop_sequences:
            kwargs["stop"] = options.stop_sequences
        if tools:
            kwargs["tools"] = to_openai_tools(tools)

        response = await self._client.chat.completions.create(**kwargs)
        choice = response.choices[0]

        tool_call = None
        if getattr(choice.message, "tool_calls", None):
            first = choice.message.tool_calls[0]
            tool_call = ToolCall(
                name=first.function.name,
                arguments=parse_openai_arguments(first.function.arguments),
                call_id=first.id,
            )

        usage = response.usage
        return ChatResult(
            content=choice.message.content or "",
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
            ),
            model=self._model,
            provider=self._provider,
            finish_reason=choice.finish_reason or "stop",
            tool_call=tool_call,
        )

    async def _call_google(
        self, messages: list[Message], options: ChatOptions
    ) -> ChatResult:
        """Google Gemini via the sync SDK, off the event loop."""
        generation_config: dict[str, Any] = {
            "temperature": self._temperature if options.temperature is None else options.temperature,
            "max_output_tokens": options.max_tokens or self._max_tokens,
        }
        if options.stop_sequences:
            generation_config["stop_sequences"] = options.stop_sequences

        response = await asyncio.to_thread(
            self._client.generate_content,
            to_google_prompt(messages),
            generation_config=generation_config,
        )

        input_tok = 0
        output_tok = 0
        if hasattr(response, "usage_metadata"):
            input_tok = getattr(response.usage_metadata, "prompt_token_count", 0) or 0
            output_tok = getattr(response.usage_metadata, "candidates_token_count", 0) or 0

        return ChatResult(
            content=response.text,
            usage=TokenUsage(prompt_tokens=input_tok, completion_tokens=output_tok),
            model=self._model,
            provider="google",
        )

    def _is_retryable(self, error: Exception) -> bool:
        """Check if an error is transient and worth retrying."""
        retryable_types = {
            "RateLimitError",
            "APITimeoutError",
            "InternalServerError",
            "ServiceUnavailableError",
            "APIConnectionError",
            "Timeout",
            "ConnectError",
        }
        return type(error).__name__ in retryable_types


# =============================================================================
# FACTORY
# =============================================================================


def create_client(
    provider: str,
    model: str | None = None,
    api_key: str | None = None,
    **kwargs,
) -> LLMClient:
    """Create an LLM client for an explicit provider."""
    return LLMClient(provider=provider, model=model, api_key=api_key, **kwargs)
