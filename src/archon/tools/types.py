"""
Tool data model: definitions, invocations, results, execution context, audit entries.

Tool definitions are vendor-neutral. The model adapters in llm/client.py
turn them into each provider's schema shape.
"""

import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CATEGORY_VAULT = "vault"
CATEGORY_SEARCH = "search"
CATEGORY_AGENT = "agent"

TOOL_ERROR_UNKNOWN_TOOL = "UNKNOWN_TOOL"
TOOL_ERROR_VALIDATION_FAILED = "VALIDATION_FAILED"
TOOL_ERROR_DANGEROUS_OPERATION = "DANGEROUS_OPERATION"
TOOL_ERROR_PERMISSION_DENIED = "PERMISSION_DENIED"
TOOL_ERROR_NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
TOOL_ERROR_NOTE_NOT_FOUND = "NOTE_NOT_FOUND"
TOOL_ERROR_DELEGATION_DEPTH = "DELEGATION_DEPTH_EXCEEDED"
TOOL_ERROR_AGENT_FAILED = "AGENT_CALL_FAILED"
TOOL_ERROR_TIMEOUT = "TIMEOUT"
TOOL_ERROR_UNKNOWN = "UNKNOWN_ERROR"

PARAM_TYPES = ("string", "number", "integer", "boolean", "array", "object")


@dataclass
class ToolParameter:
    name: str
    description: str
    type: str = "string"
    required: bool = False
    enum: list[str] | None = None
    items_type: str | None = None
    default: Any = None

    def json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.type == "array":
            schema["items"] = {"type": self.items_type or "string"}
        if self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass
class ToolDefinition:
    """A named operation the model may request."""

    name: str
    description: str
    category: str
    parameters: list[ToolParameter] = field(default_factory=list)
    returns: str = ""
    examples: list[str] = field(default_factory=list)
    dangerous: bool = False

    @property
    def required_parameters(self) -> list[str]:
        return [p.name for p in self.parameters if p.required]

    def json_schema(self) -> dict[str, Any]:
        """JSON Schema object describing the parameters."""
        return {
            "type": "object",
            "properties": {p.name: p.json_schema() for p in self.parameters},
            "required": self.required_parameters,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "dangerous": self.dangerous,
            "parameters": [{"name": p.name, "required": p.required} for p in self.parameters],
            "examples": list(self.examples),
        }


@dataclass
class ToolInvocation:
    tool_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    invocation_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


@dataclass
class ToolError:
    code: str
    message: str
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


@dataclass
class ToolResult:
    """Outcome of one invocation. Failures are data, not exceptions."""

    success: bool
    tool_name: str = ""
    data: Any = None
    error: ToolError | None = None
    execution_time_ms: float = 0.0
    operation_type: str = "read"

    @classmethod
    def ok(cls, tool_name: str, data: Any, operation_type: str = "read") -> "ToolResult":
        return cls(success=True, tool_name=tool_name, data=data, operation_type=operation_type)

    @classmethod
    def fail(
        cls,
        tool_name: str,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> "ToolResult":
        return cls(
            success=False,
            tool_name=tool_name,
            error=ToolError(code=code, message=message, details=details),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "operation_type": self.operation_type,
        }
        if self.success:
            data["result"] = self.data
        if self.error:
            data["error"] = self.error.to_dict()
        return data


@dataclass
class ToolExecutionContext:
    """Who is calling, and what they are allowed to touch."""

    agent_id: str
    agent_name: str
    vault_root: Path | None = None
    restrict_to_folders: list[str] = field(default_factory=list)
    read_only: bool = True
    allow_dangerous_operations: bool = False
    call_depth: int = 0


@dataclass
class ToolAuditEntry:
    invocation_id: str
    tool_name: str
    agent_id: str
    parameters: dict[str, Any]
    success: bool
    error_code: str | None = None
    execution_time_ms: float = 0.0
    timestamp: float = field(default_factory=time.time)
