from __future__ import annotations

import logging
from typing import AsyncIterator, Optional, Self, Union

from anthropic import AsyncAnthropic, AsyncAnthropicVertex

from orbit_bridge._exceptions import InvalidModelConfigError
from orbit_bridge.adapters.anthropic import AnthropicRequestAdapter
from orbit_bridge.config import ProviderSettings
from orbit_bridge.provider import Provider
from orbit_bridge.providers.base import BaseProviderAdapter, close_stream
from orbit_bridge.types import CompletionRequest, CompletionResult, StreamEvent

__all__ = ["EnterpriseAdapter"]

AnthropicClient = Union[AsyncAnthropic, AsyncAnthropicVertex]

DEFAULT_VERTEX_REGION = "us-east5"


class EnterpriseAdapter(BaseProviderAdapter):
    """
    Anthropic Messages API, either directly or through Vertex AI.

    A GCP ``project_id`` selects Vertex (credentials come from the ambient
    Google auth); otherwise an Anthropic API key is required.
    """

    provider = Provider.ENTERPRISE

    def __init__(
        self,
        model: str,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        project_id: Optional[str] = None,
        region: Optional[str] = None,
        timeout: float = 60.0,
        max_retries: int = 2,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(model=model, logger=logger, name=name)
        self._client: AnthropicClient
        if project_id:
            self._client = AsyncAnthropicVertex(
                project_id=project_id,
                region=region or DEFAULT_VERTEX_REGION,
                timeout=timeout,
                max_retries=max_retries,
            )
        elif api_key:
            self._client = AsyncAnthropic(
                api_key=api_key, base_url=base_url, timeout=timeout, max_retries=max_retries
            )
        else:
            raise InvalidModelConfigError(
                "Enterprise provider needs ANTHROPIC_API_KEY or ENTERPRISE_PROJECT_ID"
            )
        self._adapter = AnthropicRequestAdapter(self.logger)

    @classmethod
    def from_settings(cls, settings: ProviderSettings, *, logger: Optional[logging.Logger] = None) -> Self:
        return cls(
            settings.default_model,
            api_key=settings.api_key,
            base_url=settings.base_url,
            project_id=settings.project_id,
            region=settings.region,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            logger=logger,
        )

    @classmethod
    def from_client(
        cls,
        model: str,
        client: AnthropicClient,
        *,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> Self:
        """Build an adapter around an already-configured Anthropic client."""
        if not isinstance(client, (AsyncAnthropic, AsyncAnthropicVertex)):
            raise TypeError(
                f"EnterpriseAdapter.from_client expects AsyncAnthropic or AsyncAnthropicVertex; "
                f"got {type(client).__name__}"
            )
        self = cls.__new__(cls)  # bypass __init__
        BaseProviderAdapter.__init__(self, model=model, logger=logger, name=name)
        self._client = client
        self._adapter = AnthropicRequestAdapter(self.logger)
        return self

    async def _send_impl(self, request: CompletionRequest) -> CompletionResult:
        args = self._adapter.to_provider(request)
        self._log_payload(args)
        raw = await self._client.messages.create(**args)
        return self._adapter.from_provider(raw, request.model)

    async def _stream_impl(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        args = self._adapter.to_provider(request, stream=True)
        self._log_payload(args)
        accumulator = self._adapter.stream_accumulator()
        stream = await self._client.messages.create(**args)
        try:
            async for event in stream:
                piece = accumulator.feed(event)
                if piece.text:
                    yield StreamEvent.delta(piece.text)
                if piece.tool_calls:
                    self._log(f"{len(piece.tool_calls)} tool call(s) detected, ending stream", logging.DEBUG)
                    break
        finally:
            await close_stream(stream)
        yield StreamEvent.complete(accumulator.result(request.model))
