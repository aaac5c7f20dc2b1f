from __future__ import annotations

from orbit_bridge.adapters.ollama import OllamaRequestAdapter
from orbit_bridge.provider import Provider
from orbit_bridge.providers.openai_compat import OpenAICompatibleAdapter

__all__ = ["LocalAdapter"]


class LocalAdapter(OpenAICompatibleAdapter):
    """Self-hosted Ollama server. No API key; the client gets a placeholder."""

    provider = Provider.LOCAL
    request_adapter_class = OllamaRequestAdapter
    default_base_url = "http://localhost:11434/v1"
    requires_api_key = False

    def __init__(self, model: str, *, api_key: str | None = None, **kwargs) -> None:
        super().__init__(model, api_key=api_key or "ollama", **kwargs)
