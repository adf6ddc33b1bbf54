"""
Error taxonomy for agent orchestration.

  ValidationError      -- bad config or empty query, raised before any side effect
  RetrievalError       -- knowledge-base lookup failed (executors degrade, never surface it)
  ModelCallError       -- model call failed after retries (fatal, carries provider/model)
  ToolExecutionError   -- a tool invocation failed (captured into ToolResult.error)
  AgentNotFoundError   -- unknown agent id at the manager boundary
  SettingsError        -- settings file unreadable or corrupt

Hitting the tool-loop iteration cap is NOT an error: the executor returns an
apology message as a normal response.
"""

from typing import Any


class ArchonError(Exception):
    """Base class for every error raised by archon."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ValidationError(ArchonError, ValueError):
    """Raised when input or configuration validation fails. Contains a user-friendly message."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class RetrievalError(ArchonError):
    """Raised by the retrieval layer when a lookup cannot be served."""


class ModelCallError(ArchonError):
    """A model call failed. Always carries the provider and model that failed."""

    def __init__(self, message: str, provider: str, model: str, cause: Exception | None = None):
        super().__init__(message, {"provider": provider, "model": model})
        self.provider = provider
        self.model = model
        self.cause = cause

    def __str__(self) -> str:
        return f"{self.message} ({self.provider}/{self.model})"


class ToolExecutionError(ArchonError):
    """A tool invocation failed. The code is one of the TOOL_ERROR_* constants in tools.types."""

    def __init__(
        self,
        message: str,
        code: str,
        tool_name: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, {"code": code, "tool_name": tool_name, **(details or {})})
        self.code = code
        self.tool_name = tool_name
        self.details = details or {}


class ToolPermissionError(ToolExecutionError):
    """The execution context does not allow this operation."""

    def __init__(self, message: str, tool_name: str, details: dict[str, Any] | None = None):
        super().__init__(message, "PERMISSION_DENIED", tool_name, details)


class ToolValidationError(ToolExecutionError):
    """Tool parameters failed validation."""

    def __init__(self, message: str, tool_name: str, details: dict[str, Any] | None = None):
        super().__init__(message, "VALIDATION_FAILED", tool_name, details)


class AgentNotFoundError(ArchonError):
    """No live executor exists for the requested agent."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent not found: {agent_id}", {"agent_id": agent_id})
        self.agent_id = agent_id


class SettingsError(ArchonError):
    """The settings file could not be read or written."""
