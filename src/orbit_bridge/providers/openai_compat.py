from __future__ import annotations

import logging
from typing import Any, AsyncIterator, ClassVar, Optional, Self

from openai import AsyncOpenAI

from orbit_bridge._exceptions import InvalidModelConfigError
from orbit_bridge.adapters.openai import OpenAIRequestAdapter
from orbit_bridge.config import ProviderSettings
from orbit_bridge.providers.base import BaseProviderAdapter, close_stream
from orbit_bridge.types import CompletionRequest, CompletionResult, StreamEvent

__all__ = ["OpenAICompatibleAdapter"]


class OpenAICompatibleAdapter(BaseProviderAdapter):
    """
    Any backend reachable through the OpenAI chat-completions API (async-only).

    Subclasses pin the provider id, the request adapter and the default
    endpoint. Use ``from_client`` when you already have an ``AsyncOpenAI``
    instance.
    """

    request_adapter_class: ClassVar[type[OpenAIRequestAdapter]] = OpenAIRequestAdapter
    default_base_url: ClassVar[Optional[str]] = None
    requires_api_key: ClassVar[bool] = True

    def __init__(
        self,
        model: str,
        *,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        max_retries: int = 2,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(model=model, logger=logger, name=name)
        if self.requires_api_key and not api_key:
            raise InvalidModelConfigError(f"No API key configured for the {self.provider} provider")
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or self.default_base_url,
            timeout=timeout,
            max_retries=max_retries,
        )
        self._adapter = self.request_adapter_class(self.logger)

    @classmethod
    def from_settings(cls, settings: ProviderSettings, *, logger: Optional[logging.Logger] = None) -> Self:
        return cls(
            settings.default_model,
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            logger=logger,
        )

    # Alternate constructor
    @classmethod
    def from_client(
        cls,
        model: str,
        client: AsyncOpenAI,
        *,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> Self:
        """
        Build an adapter around an already-configured ``AsyncOpenAI`` client.
        """
        if not isinstance(client, AsyncOpenAI):
            raise TypeError(
                f"{cls.__name__}.from_client expects AsyncOpenAI; got {type(client).__name__}"
            )

        self = cls.__new__(cls)  # bypass __init__
        BaseProviderAdapter.__init__(self, model=model, logger=logger, name=name)
        self._client = client
        self._adapter = cls.request_adapter_class(self.logger)
        return self

    async def _send_impl(self, request: CompletionRequest) -> CompletionResult:
        args = self._adapter.to_provider(request)
        self._log_payload(args)
        raw = await self._client.chat.completions.create(**args)
        return self._adapter.from_provider(raw, request.model)

    async def _stream_impl(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        args = self._adapter.to_provider(request, stream=True)
        self._log_payload(args)
        accumulator = self._adapter.stream_accumulator()
        stream = await self._client.chat.completions.create(**args)
        try:
            async for chunk in stream:
                piece = accumulator.feed(chunk)
                if piece.text:
                    yield StreamEvent.delta(piece.text)
                if piece.tool_calls:
                    self._log(f"{len(piece.tool_calls)} tool call(s) detected, ending stream", logging.DEBUG)
                    if accumulator.usage is None:
                        await self._read_trailing_usage(stream, accumulator)
                    break
        finally:
            await close_stream(stream)
        yield StreamEvent.complete(accumulator.result(request.model))

    async def _read_trailing_usage(self, stream: AsyncIterator[Any], accumulator: Any) -> None:
        """Read at most one more chunk, keeping it only if it is the usage-only chunk."""
        try:
            chunk = await anext(stream)
        except StopAsyncIteration:
            return
        if chunk.usage is not None and not chunk.choices:
            accumulator.feed(chunk)
