"""
Model policy guard.

Keeps callers on an approved set of models per provider. Every function here
is pure over the passed-in settings and never raises: a disallowed request is
answered with a usable substitute plus the reason.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from orbit_bridge.config import DEFAULT_MODELS, ModelLockSettings, Settings
from orbit_bridge.provider import Provider

_logger = logging.getLogger(__name__)

# Self-hosted backends are free to run: only the block-list applies to them.
ALLOW_LIST_EXEMPT: frozenset[Provider] = frozenset({Provider.LOCAL})

# Last resort for a provider id with no configured default and no allow-list.
FALLBACK_MODEL = DEFAULT_MODELS[Provider.HOSTED]


@dataclass(frozen=True, slots=True)
class ModelValidation:
    is_valid: bool
    reason: Optional[str] = None
    suggested_model: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ModelSelection:
    model_id: str
    was_overridden: bool = False
    reason: Optional[str] = None


class ModelPolicy:
    """Allow/block list enforcement bound to one configuration snapshot."""

    def __init__(self, lock: ModelLockSettings, default_models: dict[Provider, str]) -> None:
        self.lock = lock
        self.default_models = dict(default_models)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelPolicy":
        return cls(settings.model_lock, {p: settings.default_model(p) for p in Provider})

    def _allowed(self, provider: Provider) -> tuple[str, ...]:
        return tuple(self.lock.allowed_models.get(provider, ()))

    def default_model(self, provider: Provider) -> Optional[str]:
        return self.default_models.get(provider) or DEFAULT_MODELS.get(provider)

    def suggested_model(self, provider: Provider) -> Optional[str]:
        """First allowed model for *provider*, else its configured default."""
        allowed = self._allowed(provider)
        if allowed:
            return allowed[0]
        return self.default_model(provider)

    def validate(self, provider: Provider, model_id: str) -> ModelValidation:
        if not self.lock.enabled:
            return ModelValidation(True)

        if model_id in self.lock.blocked_models:
            return ModelValidation(
                False,
                f"Model '{model_id}' is blocked to keep costs down.",
                self.suggested_model(provider),
            )

        if provider in ALLOW_LIST_EXEMPT:
            return ModelValidation(True)

        allowed = self._allowed(provider)
        if not allowed or model_id in allowed:
            return ModelValidation(True)

        return ModelValidation(
            False,
            f"Model '{model_id}' is not on the allow-list for provider '{provider}'.",
            self.suggested_model(provider),
        )

    def sanitize(self, provider: Provider, requested_model: Optional[str]) -> ModelSelection:
        if not requested_model:
            requested_model = self.default_model(provider) or self.suggested_model(provider) or FALLBACK_MODEL

        validation = self.validate(provider, requested_model)
        if validation.is_valid:
            return ModelSelection(requested_model)

        safe = validation.suggested_model or requested_model
        # A default that is itself blocked must not leak through.
        if safe in self.lock.blocked_models:
            safe = next(
                (m for m in self._allowed(provider) if m not in self.lock.blocked_models),
                safe,
            )
        if safe == requested_model:
            _logger.warning(
                "Model '%s' rejected for %s: %s No substitute is configured.",
                requested_model,
                provider,
                validation.reason,
            )
            return ModelSelection(requested_model, False, validation.reason)
        _logger.warning(
            "Model '%s' rejected for %s: %s Using '%s' instead.",
            requested_model,
            provider,
            validation.reason,
            safe,
        )
        return ModelSelection(safe, True, validation.reason)

    def allowed_models(self, provider: Provider) -> list[str]:
        """Human-readable description of what *provider* may use."""
        if not self.lock.enabled:
            return ["All models allowed (model lock disabled)"]
        if provider in ALLOW_LIST_EXEMPT:
            return ["All local models allowed"]
        allowed = self._allowed(provider)
        if not allowed:
            return ["All models allowed (block-list still applies)"]
        return list(allowed)

    def lock_status(self, default_provider: Optional[Provider] = None) -> dict[str, Any]:
        return {
            "enabled": self.lock.enabled,
            "allowed_models": {str(p): list(v) for p, v in self.lock.allowed_models.items()},
            "blocked_models": list(self.lock.blocked_models),
            "default_provider": str(default_provider) if default_provider else None,
        }


def sanitize_model(
    provider: Provider,
    requested_model: Optional[str],
    policy: Optional[ModelPolicy] = None,
) -> ModelSelection:
    """Return a usable model id for *provider*; see ``ModelPolicy.sanitize``."""
    policy = policy or ModelPolicy.from_settings(Settings.from_env())
    return policy.sanitize(provider, requested_model)


__all__ = ["ModelPolicy", "ModelSelection", "ModelValidation", "sanitize_model"]
