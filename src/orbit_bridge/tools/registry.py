"""
Static tool declarations and their provider-native exports.

The set is fixed at import time; handlers are wired up by ``ToolExecutor``.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping

from orbit_bridge.types import ToolDeclaration

SEARCH_WIKIPEDIA = ToolDeclaration(
    name="search_wikipedia",
    description=(
        "Search Wikipedia. Use it for encyclopedic knowledge such as history, "
        "people, concepts and technology."
    ),
    parameters={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Keyword or topic to search for"},
            "language": {
                "type": "string",
                "description": "Search language (ko: Korean, en: English, ja: Japanese, zh: Chinese)",
                "enum": ["ko", "en", "ja", "zh"],
                "default": "ko",
            },
            "limit": {
                "type": "integer",
                "description": "Number of results (1-10)",
                "minimum": 1,
                "maximum": 10,
                "default": 5,
            },
        },
        "required": ["query"],
    },
)

GET_WEATHER = ToolDeclaration(
    name="get_weather",
    description=(
        "Get the current weather. Uses the given city, or the user's location "
        "derived from their IP address when no city is given."
    ),
    parameters={
        "type": "object",
        "properties": {
            "city": {"type": "string", "description": "City name, e.g. Seoul or Tokyo"},
            "units": {
                "type": "string",
                "description": "Temperature units",
                "enum": ["metric", "imperial", "kelvin"],
                "default": "metric",
            },
            "language": {
                "type": "string",
                "description": "Language of the weather description",
                "enum": ["ko", "en"],
                "default": "ko",
            },
        },
        "required": [],
    },
)

EXECUTE_CODE = ToolDeclaration(
    name="execute_code",
    description=(
        "Run a code snippet and return its output. Supports Python, JavaScript, "
        "SQL and shell. Use it for calculations, data processing and algorithms."
    ),
    parameters={
        "type": "object",
        "properties": {
            "code": {"type": "string", "description": "Code to run"},
            "language": {
                "type": "string",
                "description": "Code language",
                "enum": ["python", "javascript", "sql", "shell"],
                "default": "python",
            },
            "timeout": {
                "type": "integer",
                "description": "Time limit in seconds",
                "minimum": 1,
                "maximum": 30,
                "default": 10,
            },
        },
        "required": ["code"],
    },
)

TOOL_DECLARATIONS: Mapping[str, ToolDeclaration] = MappingProxyType(
    {d.name: d for d in (SEARCH_WIKIPEDIA, GET_WEATHER, EXECUTE_CODE)}
)


def get_declaration(name: str) -> ToolDeclaration | None:
    return TOOL_DECLARATIONS.get(name)


def openai_tools() -> list[dict[str, Any]]:
    """Declarations as chat-completions ``tools`` entries."""
    return [
        {
            "type": "function",
            "function": {
                "name": d.name,
                "description": d.description,
                "parameters": d.schema(),
            },
        }
        for d in TOOL_DECLARATIONS.values()
    ]


def anthropic_tools() -> list[dict[str, Any]]:
    return [
        {"name": d.name, "description": d.description, "input_schema": d.schema()}
        for d in TOOL_DECLARATIONS.values()
    ]


def gemini_tools() -> list[dict[str, Any]]:
    """Declarations in the native Gemini ``functionDeclarations`` shape."""
    return [
        {
            "functionDeclarations": [
                {"name": d.name, "description": d.description, "parameters": d.schema()}
                for d in TOOL_DECLARATIONS.values()
            ]
        }
    ]


__all__ = [
    "EXECUTE_CODE",
    "GET_WEATHER",
    "SEARCH_WIKIPEDIA",
    "TOOL_DECLARATIONS",
    "anthropic_tools",
    "gemini_tools",
    "get_declaration",
    "openai_tools",
]
