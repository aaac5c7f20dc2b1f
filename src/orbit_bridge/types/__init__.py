from .tool import ToolCall, ToolContext, ToolDeclaration, ToolResult
from .chat import (
    CompletionRequest,
    CompletionResult,
    ConversationTurn,
    DeltaCallback,
    GenerationOptions,
    Role,
    SpecialMode,
    StreamChunk,
    StreamEvent,
    Usage,
    dedupe_history,
    normalize_text,
)

__all__ = [
    "CompletionRequest",
    "CompletionResult",
    "ConversationTurn",
    "DeltaCallback",
    "GenerationOptions",
    "Role",
    "SpecialMode",
    "StreamChunk",
    "StreamEvent",
    "Usage",
    "dedupe_history",
    "normalize_text",
    "ToolCall",
    "ToolContext",
    "ToolDeclaration",
    "ToolResult",
]
