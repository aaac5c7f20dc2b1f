"""
Environment-driven configuration.

Every setting is read once from ``os.environ`` (after ``load_dotenv()``) into
frozen dataclasses, so the values are read-only after start-up and safe to
share between concurrent requests.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

from orbit_bridge.provider import Provider

_DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
_DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434/v1"

DEFAULT_MODELS: Mapping[Provider, str] = {
    Provider.HOSTED: "gemini-2.0-flash",
    Provider.LOCAL: "gemma3:4b",
    Provider.ENTERPRISE: "claude-3-5-haiku-latest",
}


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    try:
        return int(env.get(key, ""))
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    try:
        return float(env.get(key, ""))
    except ValueError:
        return default


def _env_list(env: Mapping[str, str], key: str) -> tuple[str, ...]:
    raw = env.get(key) or ""
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class ProviderSettings:
    """Connection details for one backend."""

    default_model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 2
    # Enterprise only: route through Vertex AI when a GCP project is set.
    project_id: Optional[str] = None
    region: Optional[str] = None


@dataclass(frozen=True)
class ModelLockSettings:
    """Allow/block lists enforced by the model policy guard."""

    enabled: bool = False
    allowed_models: Mapping[Provider, tuple[str, ...]] = field(default_factory=dict)
    blocked_models: tuple[str, ...] = ()


@dataclass(frozen=True)
class SandboxSettings:
    backend: str = "docker"
    memory: str = "128m"
    cpus: float = 0.5
    pids_limit: int = 64
    scratch_dir: str = field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "orbit-sandbox")
    )
    max_output_bytes: int = 64 * 1024
    default_timeout: int = 10
    max_timeout: int = 30


@dataclass(frozen=True)
class ToolSettings:
    openweather_api_key: Optional[str] = None
    http_timeout: float = 10.0
    wikipedia_cache_ttl: int = 3600
    wikipedia_fallback_language: str = "en"


@dataclass(frozen=True)
class Settings:
    default_provider: Provider = Provider.HOSTED
    providers: Mapping[Provider, ProviderSettings] = field(
        default_factory=lambda: {p: ProviderSettings(default_model=m) for p, m in DEFAULT_MODELS.items()}
    )
    model_lock: ModelLockSettings = field(default_factory=ModelLockSettings)
    max_steps: int = 10
    parallel_tools: bool = False
    sandbox: SandboxSettings = field(default_factory=SandboxSettings)
    tools: ToolSettings = field(default_factory=ToolSettings)

    def provider(self, provider: Provider) -> ProviderSettings:
        return self.providers.get(provider) or ProviderSettings(default_model=DEFAULT_MODELS[provider])

    def default_model(self, provider: Provider) -> str:
        return self.provider(provider).default_model

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from *env* (defaults to ``os.environ`` after loading ``.env``)."""
        if env is None:
            load_dotenv()
            env = os.environ

        try:
            default_provider = Provider(env.get("ORBIT_DEFAULT_PROVIDER", "hosted").lower())
        except ValueError:
            default_provider = Provider.HOSTED

        timeout = _env_float(env, "PROVIDER_TIMEOUT", 60.0)
        retries = _env_int(env, "PROVIDER_MAX_RETRIES", 2)
        providers = {
            Provider.HOSTED: ProviderSettings(
                default_model=env.get("GEMINI_MODEL") or DEFAULT_MODELS[Provider.HOSTED],
                api_key=env.get("GEMINI_API_KEY"),
                base_url=env.get("GEMINI_BASE_URL") or _DEFAULT_GEMINI_BASE_URL,
                timeout=timeout,
                max_retries=retries,
            ),
            Provider.LOCAL: ProviderSettings(
                default_model=env.get("OLLAMA_MODEL") or DEFAULT_MODELS[Provider.LOCAL],
                api_key=env.get("OLLAMA_API_KEY") or "ollama",
                base_url=env.get("OLLAMA_BASE_URL") or _DEFAULT_OLLAMA_BASE_URL,
                timeout=timeout,
                max_retries=retries,
            ),
            Provider.ENTERPRISE: ProviderSettings(
                default_model=env.get("ENTERPRISE_MODEL") or DEFAULT_MODELS[Provider.ENTERPRISE],
                api_key=env.get("ANTHROPIC_API_KEY"),
                base_url=env.get("ANTHROPIC_BASE_URL") or None,
                timeout=timeout,
                max_retries=retries,
                project_id=env.get("ENTERPRISE_PROJECT_ID") or None,
                region=env.get("ENTERPRISE_REGION") or None,
            ),
        }

        model_lock = ModelLockSettings(
            enabled=_env_bool(env, "MODEL_LOCK_ENABLED", False),
            allowed_models={
                p: _env_list(env, f"MODEL_LOCK_ALLOWED_{p.name}") for p in Provider
            },
            blocked_models=_env_list(env, "MODEL_LOCK_BLOCKED"),
        )

        sandbox_defaults = SandboxSettings()
        sandbox = SandboxSettings(
            backend=(env.get("SANDBOX_BACKEND") or "docker").lower(),
            memory=env.get("SANDBOX_MEMORY") or sandbox_defaults.memory,
            cpus=_env_float(env, "SANDBOX_CPUS", sandbox_defaults.cpus),
            pids_limit=_env_int(env, "SANDBOX_PIDS_LIMIT", sandbox_defaults.pids_limit),
            scratch_dir=env.get("SANDBOX_SCRATCH_DIR") or sandbox_defaults.scratch_dir,
            max_output_bytes=_env_int(env, "SANDBOX_MAX_OUTPUT_BYTES", sandbox_defaults.max_output_bytes),
        )

        tools = ToolSettings(
            openweather_api_key=env.get("OPENWEATHER_API_KEY") or None,
            http_timeout=_env_float(env, "TOOL_HTTP_TIMEOUT", 10.0),
            wikipedia_cache_ttl=_env_int(env, "WIKIPEDIA_CACHE_TTL", 3600),
            wikipedia_fallback_language=env.get("WIKIPEDIA_FALLBACK_LANGUAGE") or "en",
        )

        return cls(
            default_provider=default_provider,
            providers=providers,
            model_lock=model_lock,
            max_steps=max(1, _env_int(env, "FUNCTION_CALLING_MAX_STEPS", 10)),
            parallel_tools=_env_bool(env, "FUNCTION_CALLING_PARALLEL", False),
            sandbox=sandbox,
            tools=tools,
        )


__all__ = [
    "DEFAULT_MODELS",
    "ModelLockSettings",
    "ProviderSettings",
    "SandboxSettings",
    "Settings",
    "ToolSettings",
]
