"""Ollama adapter: the OpenAI format against a self-hosted server, server-side defaults."""

from __future__ import annotations

from orbit_bridge.provider import Provider

from .openai import OpenAIRequestAdapter


class OllamaRequestAdapter(OpenAIRequestAdapter):
    provider = Provider.LOCAL
    defaults = {}
