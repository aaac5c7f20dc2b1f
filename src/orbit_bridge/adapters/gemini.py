"""Gemini adapter for pure request/response transformations.

Gemini is reached through its OpenAI-compatible endpoint, so this only pins
the hosted provider id and its generation defaults onto the OpenAI adapter.
"""

from __future__ import annotations

from types import MappingProxyType

from orbit_bridge.provider import Provider

from .openai import OpenAIRequestAdapter

HOSTED_DEFAULTS = MappingProxyType(
    {"temperature": 0.7, "top_p": 0.95, "top_k": 40, "max_tokens": 8192}
)


class GeminiRequestAdapter(OpenAIRequestAdapter):
    provider = Provider.HOSTED
    # top_k is kept for reference; the compatibility endpoint has no field for it.
    defaults = HOSTED_DEFAULTS
