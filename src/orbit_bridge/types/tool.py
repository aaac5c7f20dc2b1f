"""
Provider-neutral dataclasses for client-side tool use.

They are intentionally minimal: everything provider-specific lives in adapters.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

__all__ = ["ToolDeclaration", "ToolCall", "ToolResult", "ToolContext"]


@dataclass(frozen=True, slots=True)
class ToolDeclaration:
    """A statically declared tool: name, description and JSON-schema parameters."""
    name: str
    description: str
    parameters: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    def schema(self) -> dict[str, Any]:
        """Plain (mutable) JSON-schema copy suitable for serialization."""
        return _thaw(self.parameters)


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A model-agnostic request emitted by the LLM to call a local tool."""
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Outcome of one tool call, fed back to the model as context."""
    id: str                     # matches the ToolCall id
    name: str
    success: bool
    payload: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"tool": self.name, "success": self.success}
        if self.payload is not None:
            data["result"] = self.payload
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True, slots=True)
class ToolContext:
    """Request-scoped facts a tool may need (e.g. the caller's IP for weather)."""
    client_ip: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(v) for v in value]
    return value
