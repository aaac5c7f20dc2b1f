from __future__ import annotations

import os
from enum import StrEnum
from typing import Final

from dotenv import load_dotenv

from orbit_bridge._exceptions import InvalidModelConfigError

load_dotenv()


class Provider(StrEnum):
    HOSTED = "hosted"
    LOCAL = "local"
    ENTERPRISE = "enterprise"


_ENV_VARS: Final[dict[Provider, str]] = {
    Provider.HOSTED: "GEMINI_API_KEY",
    Provider.ENTERPRISE: "ANTHROPIC_API_KEY",
}


def get_api_key(provider: Provider) -> str:
    """Return the API key for *provider* or raise InvalidModelConfigError.

    The local backend needs no key; a placeholder is returned so the
    OpenAI-compatible client can still be constructed.
    """
    if provider is Provider.LOCAL:
        return os.environ.get("OLLAMA_API_KEY", "ollama")

    try:
        env_var = _ENV_VARS[provider]
    except KeyError:
        raise InvalidModelConfigError(f"No config for {provider!s}") from None

    try:
        return os.environ[env_var]
    except KeyError as exc:
        raise InvalidModelConfigError(f"{env_var} missing") from exc


def parse_provider(value: str | Provider | None, default: Provider) -> Provider | str:
    """Coerce a user-supplied provider id; unknown strings are returned as-is."""
    if value is None or value == "":
        return default
    if isinstance(value, Provider):
        return value
    try:
        return Provider(value.strip().lower())
    except ValueError:
        return value


__all__ = ["Provider", "get_api_key", "parse_provider"]
