"""Pure request/response transformations, one adapter per wire format."""

from .anthropic import AnthropicRequestAdapter, AnthropicStreamAccumulator
from .gemini import GeminiRequestAdapter
from .ollama import OllamaRequestAdapter
from .openai import OpenAIRequestAdapter, OpenAIStreamAccumulator

__all__ = [
    "AnthropicRequestAdapter",
    "AnthropicStreamAccumulator",
    "GeminiRequestAdapter",
    "OllamaRequestAdapter",
    "OpenAIRequestAdapter",
    "OpenAIStreamAccumulator",
]
