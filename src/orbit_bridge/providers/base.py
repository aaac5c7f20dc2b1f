"""Base class for provider adapters."""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, ClassVar, Optional

from orbit_bridge._exceptions import MalformedResponseError, OrbitBridgeError, classify_error
from orbit_bridge._utils import maybe_await
from orbit_bridge.provider import Provider
from orbit_bridge.stream import drive_stream
from orbit_bridge.types import CompletionRequest, CompletionResult, DeltaCallback, StreamEvent

__all__ = ["BaseProviderAdapter", "close_stream"]

_PAYLOAD_PREVIEW = 2000


async def close_stream(stream: Any) -> None:
    """Release an SDK stream (or plain async generator) that was not read to the end."""
    close = getattr(stream, "close", None) or getattr(stream, "aclose", None)
    if close is not None:
        await maybe_await(close())


class BaseProviderAdapter(ABC):
    """
    Base class for all provider adapters. All implementations are async-first.

    Subclasses implement ``_send_impl`` and ``_stream_impl``; this class adds
    error classification and the streaming callback contract on top.
    """

    provider: ClassVar[Provider]

    def __init__(
        self,
        model: str,
        *,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        """
        Args:
            model: Default model id, used when a request carries none.
            logger: Optional logger instance. If None, a logger named after
                    this module will be used.
            name: Optional name for this component, used in logging.
                  If None, defaults to the concrete class's name.
        """
        self.model = model
        self.logger = logger or logging.getLogger(__name__)
        self.name = name if name is not None else self.__class__.__name__

    @abstractmethod
    async def _send_impl(self, request: CompletionRequest) -> CompletionResult:
        """Perform one non-streaming call and return the parsed result."""
        ...

    @abstractmethod
    def _stream_impl(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """
        Yield delta events followed by exactly one ``StreamEvent.complete``.

        Stop reading the provider stream as soon as tool calls are detected.
        Exceptions may be raised freely; ``stream`` classifies them.
        """
        ...

    def _prepare(self, request: CompletionRequest) -> CompletionRequest:
        if not request.model:
            return request.with_model(self.model)
        return request

    def _classify(self, exc: Exception) -> OrbitBridgeError:
        if isinstance(exc, OrbitBridgeError):
            return exc
        return classify_error(exc, str(self.provider), self.logger)

    async def send(self, request: CompletionRequest) -> CompletionResult:
        """Non-streaming completion; SDK errors are raised as typed ProviderErrors."""
        request = self._prepare(request)
        self._log(f"Sending request to {request.model} (stream: False)")
        try:
            return await self._send_impl(request)
        except OrbitBridgeError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """
        Pull-based stream: deltas, then one success or failure terminal.

        Failures are yielded as ``StreamEvent.failure`` rather than raised.
        """
        request = self._prepare(request)
        self._log(f"Sending request to {request.model} (stream: True)")
        inner = self._stream_impl(request)
        try:
            async for event in inner:
                yield event
                if event.is_terminal:
                    return
        except Exception as exc:
            yield StreamEvent.failure(self._classify(exc))
            return
        finally:
            await maybe_await(getattr(inner, "aclose", lambda: None)())
        yield StreamEvent.failure(
            MalformedResponseError("Provider stream ended without a final result", provider=str(self.provider))
        )

    async def send_stream(self, request: CompletionRequest, on_delta: Optional[DeltaCallback]) -> CompletionResult:
        """Callback-driven streaming on top of ``stream``."""
        return await drive_stream(self.stream(request), on_delta, logger=self.logger)

    def _log(self, message: str, level: int = logging.INFO) -> None:
        self.logger.log(level, f"[{self.name}] {message}")

    def _log_payload(self, args: dict[str, Any]) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            text = json.dumps(args, ensure_ascii=False, default=str)
            self._log(f"Request payload: {text[:_PAYLOAD_PREVIEW]}", logging.DEBUG)

    # --- lifecycle ---------------------------------------------------------
    async def aclose(self) -> None:
        """
        Close the underlying SDK client. Safe to call multiple times.
        """
        client = getattr(self, "_client", None)
        close = getattr(client, "close", None) or getattr(client, "aclose", None)
        if close:
            await maybe_await(close())

    async def __aenter__(self) -> "BaseProviderAdapter":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()
