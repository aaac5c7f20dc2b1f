"""
Translate noisy provider tracebacks into the typed `OrbitBridgeError` family,
while preserving the original exception for full tracebacks.
"""

from __future__ import annotations

import json
import logging
from typing import Final, Optional, Type

import anthropic
import httpx
import openai
import pydantic

__all__: tuple[str, ...] = (
    "OrbitBridgeError",
    "UnsupportedProviderError",
    "ProviderError",
    "ProviderAuthError",
    "ProviderQuotaError",
    "ProviderSafetyBlockError",
    "ProviderNetworkError",
    "MalformedResponseError",
    "ToolExecutionError",
    "SandboxError",
    "SandboxTimeoutError",
    "ConfigurationError",
    "InvalidModelConfigError",
    "UnsupportedLanguageError",
    "UsageLimitExceededError",
    "classify_error",
)


class OrbitBridgeError(RuntimeError):
    """Public bridge-level exception.

    Attributes:
        original_exc: The underlying exception, if any.
    """

    original_exc: Optional[BaseException]

    def __init__(self, message: str, original_exc: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.original_exc = original_exc
        if original_exc is not None:
            self.__cause__ = original_exc


class UnsupportedProviderError(OrbitBridgeError, ValueError):
    """Raised when no adapter is registered for the requested provider."""


class ProviderError(OrbitBridgeError):
    """A provider call failed. Fatal for the current call, never retried here."""

    def __init__(
        self,
        message: str,
        original_exc: Optional[BaseException] = None,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, original_exc)
        self.provider = provider
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    """Missing, invalid or unauthorized credentials."""


class ProviderQuotaError(ProviderError):
    """Rate limit or quota exhausted."""


class ProviderSafetyBlockError(ProviderError):
    """The provider refused or filtered the completion."""


class ProviderNetworkError(ProviderError):
    """The provider could not be reached or the connection dropped."""


class MalformedResponseError(ProviderError):
    """The provider answered with something we cannot parse."""


class ToolExecutionError(OrbitBridgeError):
    """A single tool failed. Recovered locally as a failed ToolResult."""


class SandboxError(OrbitBridgeError):
    """The sandbox could not run a snippet."""


class SandboxTimeoutError(SandboxError):
    """A sandboxed process exceeded its wall-clock limit and was killed."""


class ConfigurationError(OrbitBridgeError):
    """Invalid or incomplete configuration detected at call time."""


class InvalidModelConfigError(ConfigurationError):
    """A provider or model cannot be used with the current configuration."""


class UnsupportedLanguageError(ConfigurationError):
    """The sandbox has no runtime for the requested language."""


class UsageLimitExceededError(OrbitBridgeError):
    """The wrapping service refused the request because the user hit a limit."""


AUTH_ERRORS: Final[tuple[Type[BaseException], ...]] = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    anthropic.AuthenticationError,
    anthropic.PermissionDeniedError,
)

RATE_LIMIT_ERRORS: Final[tuple[Type[BaseException], ...]] = (
    openai.RateLimitError,
    anthropic.RateLimitError,
)

CONN_ERRORS: Final[tuple[Type[BaseException], ...]] = (
    openai.APIConnectionError,
    anthropic.APIConnectionError,
    httpx.TransportError,
    TimeoutError,
    ConnectionError,
)

MALFORMED_ERRORS: Final[tuple[Type[BaseException], ...]] = (
    openai.APIResponseValidationError,
    anthropic.APIResponseValidationError,
    json.JSONDecodeError,
    pydantic.ValidationError,
)

STATUS_ERRORS: Final[tuple[Type[BaseException], ...]] = (
    openai.APIStatusError,
    anthropic.APIStatusError,
)

_SAFETY_MARKERS: Final = ("safety", "content_filter", "content filter", "blocked", "refusal")


def _status_code(exc: BaseException) -> Optional[int]:
    value = getattr(exc, "status_code", None)
    if isinstance(value, int):
        return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_error(
    exc: BaseException,
    provider: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> ProviderError:
    """Wrap an SDK exception in the matching ProviderError subclass."""
    log = logger or logging.getLogger("orbit_bridge.exceptions")

    if isinstance(exc, ProviderError):
        return exc

    status = _status_code(exc)
    text = str(exc)
    lowered = text.lower()
    error_cls: Type[ProviderError]

    if isinstance(exc, AUTH_ERRORS) or status in (401, 403) or "api_key" in lowered:
        error_cls, msg = ProviderAuthError, "Authentication with the provider failed"
    elif isinstance(exc, RATE_LIMIT_ERRORS) or status == 429 or "quota" in lowered:
        error_cls, msg = ProviderQuotaError, "Rate-limit or quota exceeded, retry later"
    elif isinstance(exc, CONN_ERRORS):
        error_cls, msg = ProviderNetworkError, "Connection problem, unable to reach the provider"
    elif isinstance(exc, MALFORMED_ERRORS):
        error_cls, msg = MalformedResponseError, "Provider returned a malformed response"
    elif any(marker in lowered for marker in _SAFETY_MARKERS):
        error_cls, msg = ProviderSafetyBlockError, "Response blocked by the provider safety filter"
    elif isinstance(exc, STATUS_ERRORS) and status is not None and status >= 500:
        error_cls, msg = ProviderNetworkError, "Provider is unavailable"
    elif isinstance(exc, STATUS_ERRORS):
        error_cls, msg = ProviderError, "Provider rejected the request"
    else:
        error_cls, msg = ProviderError, exc.__class__.__name__

    log.warning(
        "Wrapping provider exception as %s", error_cls.__name__, extra={"exc": exc}
    )
    return error_cls(f"{msg}: {text}", exc, provider=provider, status_code=status)
