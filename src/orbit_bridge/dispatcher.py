"""
Provider dispatch.

``ProviderDispatcher`` owns a registry of adapters keyed by ``Provider``.
Adapters may be registered ready-made or as zero-argument factories, which
are only called on first use so a missing key for one backend does not stop
the others from working.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from orbit_bridge._exceptions import UnsupportedProviderError
from orbit_bridge.config import Settings
from orbit_bridge.model_policy import ModelPolicy
from orbit_bridge.provider import Provider, get_api_key, parse_provider
from orbit_bridge.providers import BaseProviderAdapter, EnterpriseAdapter, HostedAdapter, LocalAdapter
from orbit_bridge.types import (
    CompletionRequest,
    CompletionResult,
    ConversationTurn,
    DeltaCallback,
    GenerationOptions,
    SpecialMode,
)

__all__ = ["ADAPTER_CLASSES", "ProviderDispatcher", "create_adapter"]

AdapterFactory = Callable[[], BaseProviderAdapter]
HistoryLike = Sequence[Union[ConversationTurn, Mapping[str, Any]]]

ADAPTER_CLASSES: Mapping[Provider, type] = {
    Provider.HOSTED: HostedAdapter,
    Provider.LOCAL: LocalAdapter,
    Provider.ENTERPRISE: EnterpriseAdapter,
}


class ProviderDispatcher:
    """Selects the adapter for a request and forwards the call."""

    def __init__(
        self,
        adapters: Optional[Mapping[Provider, Union[BaseProviderAdapter, AdapterFactory]]] = None,
        *,
        default_provider: Provider = Provider.HOSTED,
        policy: Optional[ModelPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.default_provider = default_provider
        self.policy = policy or ModelPolicy.from_settings(Settings())
        self.logger = logger or logging.getLogger(__name__)
        self._adapters: dict[Provider, BaseProviderAdapter] = {}
        self._factories: dict[Provider, AdapterFactory] = {}
        for provider, adapter in (adapters or {}).items():
            self.register(provider, adapter)

    @classmethod
    def from_settings(
        cls, settings: Optional[Settings] = None, *, logger: Optional[logging.Logger] = None
    ) -> "ProviderDispatcher":
        """Dispatcher with the three built-in backends, each built lazily from *settings*."""
        settings = settings or Settings.from_env()
        dispatcher = cls(
            default_provider=settings.default_provider,
            policy=ModelPolicy.from_settings(settings),
            logger=logger,
        )
        for provider, adapter_cls in ADAPTER_CLASSES.items():
            provider_settings = settings.provider(provider)
            dispatcher.register(
                provider,
                lambda c=adapter_cls, s=provider_settings: c.from_settings(s, logger=logger),
            )
        return dispatcher

    def register(self, provider: Provider, adapter: Union[BaseProviderAdapter, AdapterFactory]) -> None:
        """Add or replace the adapter for *provider*."""
        self._adapters.pop(provider, None)
        self._factories.pop(provider, None)
        if isinstance(adapter, BaseProviderAdapter):
            self._adapters[provider] = adapter
        else:
            self._factories[provider] = adapter

    @property
    def providers(self) -> tuple[Provider, ...]:
        return tuple(sorted({*self._adapters, *self._factories}))

    def adapter(self, provider: Union[Provider, str, None]) -> BaseProviderAdapter:
        resolved = parse_provider(provider, self.default_provider)
        if resolved in self._adapters:
            return self._adapters[resolved]  # type: ignore[index]
        factory = self._factories.get(resolved)  # type: ignore[arg-type]
        if factory is None:
            raise UnsupportedProviderError(
                f"Unsupported provider '{provider}'. Registered: {', '.join(self.providers) or 'none'}"
            )
        adapter = factory()
        self._adapters[resolved] = adapter  # type: ignore[index]
        del self._factories[resolved]  # type: ignore[arg-type]
        return adapter

    async def dispatch(
        self,
        provider: Union[Provider, str, None],
        message: str,
        history: HistoryLike = (),
        system_prompt: Optional[str] = None,
        mode: Union[SpecialMode, str, None] = SpecialMode.NONE,
        stream_callback: Optional[DeltaCallback] = None,
        options: Optional[GenerationOptions] = None,
    ) -> CompletionResult:
        """
        Run one completion on *provider* (the default provider when None).

        Streams when *stream_callback* is given or *mode* is ``stream``.
        Raises UnsupportedProviderError before any network traffic when the
        provider is not registered.
        """
        adapter = self.adapter(provider)
        options = options or GenerationOptions()

        selection = self.policy.sanitize(adapter.provider, options.model_id_override or adapter.model)
        if selection.was_overridden:
            self.logger.warning(
                "Model override for %s: '%s' replaced by '%s' (%s)",
                adapter.provider,
                options.model_id_override or adapter.model,
                selection.model_id,
                selection.reason,
            )

        request = CompletionRequest(
            provider=adapter.provider,
            model=selection.model_id,
            message=message,
            history=tuple(
                t if isinstance(t, ConversationTurn) else ConversationTurn.from_dict(t) for t in history
            ),
            system_prompt=system_prompt,
            mode=SpecialMode.parse(mode),
            options=options,
            stream_callback=stream_callback,
        )

        if request.wants_stream:
            return await adapter.send_stream(request, stream_callback)
        return await adapter.send(request)

    async def aclose(self) -> None:
        """Close every adapter that was actually created."""
        for adapter in self._adapters.values():
            await adapter.aclose()

    async def __aenter__(self) -> "ProviderDispatcher":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()


def create_adapter(
    provider: Union[Provider, str],
    model: Optional[str] = None,
    *,
    api_key: Optional[str] = None,
    client: Any = None,
    logger: Optional[logging.Logger] = None,
    **provider_kwargs: Any,
) -> BaseProviderAdapter:
    """
    Factory for creating any supported adapter.

    Args:
        provider: Which backend to use (hosted, local, enterprise).
        model: Default model id; the configured default when omitted.
        api_key: Overrides automatic lookup; if omitted, pulled from env.
        client: Optional pre-configured SDK client (AsyncOpenAI for hosted and
            local, AsyncAnthropic or AsyncAnthropicVertex for enterprise).
        logger: Optional custom logger.
        **provider_kwargs: Any extra args to pass through (base_url, timeout,
            max_retries, project_id, region).
    """
    resolved = parse_provider(provider, Provider.HOSTED)
    try:
        adapter_cls = ADAPTER_CLASSES[resolved]  # type: ignore[index]
    except KeyError as exc:
        raise UnsupportedProviderError(f"Unsupported provider: {provider}") from exc

    model = model or Settings().default_model(resolved)  # type: ignore[arg-type]
    if client is not None:  # use caller-supplied client verbatim
        return adapter_cls.from_client(model, client, logger=logger)

    if api_key is None and not provider_kwargs.get("project_id"):
        api_key = get_api_key(resolved)  # type: ignore[arg-type]
    return adapter_cls(model, api_key=api_key, logger=logger, **provider_kwargs)
