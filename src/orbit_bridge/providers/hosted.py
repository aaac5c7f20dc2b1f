from __future__ import annotations

from orbit_bridge.adapters.gemini import GeminiRequestAdapter
from orbit_bridge.provider import Provider
from orbit_bridge.providers.openai_compat import OpenAICompatibleAdapter

__all__ = ["HostedAdapter"]


class HostedAdapter(OpenAICompatibleAdapter):
    """Google Gemini through its OpenAI-compatible endpoint."""

    provider = Provider.HOSTED
    request_adapter_class = GeminiRequestAdapter
    default_base_url = "https://generativelanguage.googleapis.com/v1beta/openai/"
