"""
Model layer -- vendor-neutral chat types, SDK adapters, and the binding manager.

Supports Anthropic (Claude) and OpenAI (GPT) with function calling, and
Google (Gemini) for plain chat.

Usage:
    from archon.llm import ModelManager, ModelBindingConfig, Message

    models = ModelManager([ModelBindingConfig(id="gpt", name="GPT-4o", provider="openai", model="gpt-4o")])
    models.initialize()
    result = await models.chat("gpt", [Message.user("Hello")])
"""

from .client import LLMClient, ModelClient, create_client
from .manager import ModelBindingConfig, ModelManager
from .types import ChatOptions, ChatResult, Message, TokenUsage, ToolCall
