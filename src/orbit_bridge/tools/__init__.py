"""Statically declared tools and their executor."""

from .base import ProgressCallback, ToolHandler, ToolProgressEvent
from .executor import ToolExecutor
from .registry import (
    TOOL_DECLARATIONS,
    anthropic_tools,
    gemini_tools,
    get_declaration,
    openai_tools,
)

__all__ = [
    "ProgressCallback",
    "TOOL_DECLARATIONS",
    "ToolExecutor",
    "ToolHandler",
    "ToolProgressEvent",
    "anthropic_tools",
    "gemini_tools",
    "get_declaration",
    "openai_tools",
]
