"""
Vendor-neutral chat types shared by the executor and the model adapters.

A Message is one of four roles. A "function" message carries a tool result
and always follows an "assistant" message whose tool_call requested it.
A ChatResult is either plain content or content plus a single tool call.
"""

from dataclasses import dataclass, field
from typing import Any

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_FUNCTION = "function"
ROLES = (ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT, ROLE_FUNCTION)


@dataclass
class ToolCall:
    """A model-issued request to invoke a named tool."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str = ""


@dataclass
class Message:
    role: str
    content: str
    name: str | None = None
    tool_call: ToolCall | None = None
    tool_call_id: str | None = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role}")

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=ROLE_SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=ROLE_USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_call: ToolCall | None = None) -> "Message":
        return cls(role=ROLE_ASSISTANT, content=content, tool_call=tool_call)

    @classmethod
    def function(cls, name: str, content: str, tool_call_id: str | None = None) -> "Message":
        return cls(role=ROLE_FUNCTION, content=content, name=name, tool_call_id=tool_call_id)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name:
            data["name"] = self.name
        if self.tool_call:
            data["tool_call"] = {
                "name": self.tool_call.name,
                "arguments": self.tool_call.arguments,
                "call_id": self.tool_call.call_id,
            }
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        call = data.get("tool_call")
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            name=data.get("name"),
            tool_call=ToolCall(**call) if call else None,
            tool_call_id=data.get("tool_call_id"),
        )


@dataclass
class ChatOptions:
    """Per-call sampling options. None means "use the binding's default"."""

    temperature: float | None = None
    max_tokens: int | None = None
    stop_sequences: list[str] = field(default_factory=list)


@dataclass
class TokenUsage:
    """Token usage for one or more model calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        if not self.total_tokens:
            self.total_tokens = self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ChatResult:
    """Response from a model call: plain content, or content plus one tool call."""

    content: str
    usage: TokenUsage | None = None
    model: str = ""
    provider: str = ""
    finish_reason: str = "stop"
    tool_call: ToolCall | None = None
    latency_ms: float = 0.0

    @property
    def requests_tool(self) -> bool:
        return self.tool_call is not None
