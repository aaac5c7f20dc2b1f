"""Shared fixtures and test doubles."""

from __future__ import annotations

from typing import AsyncIterator, Iterable, Optional, Union

import pytest

from orbit_bridge.dispatcher import ProviderDispatcher
from orbit_bridge.provider import Provider
from orbit_bridge.providers.base import BaseProviderAdapter
from orbit_bridge.types import CompletionRequest, CompletionResult, StreamEvent, ToolCall, Usage

Scripted = Union[CompletionResult, BaseException]


def make_result(
    content: str = "",
    *,
    tool_calls: Iterable[ToolCall] = (),
    provider: Provider = Provider.HOSTED,
    model: str = "stub-model",
    usage: Optional[Usage] = None,
) -> CompletionResult:
    calls = tuple(tool_calls)
    return CompletionResult(
        content=content,
        provider=provider,
        model=model,
        usage=usage or Usage.of(3, 2),
        finish_reason="tool_calls" if calls else "stop",
        tool_calls=calls,
    )


class StubAdapter(BaseProviderAdapter):
    """
    Adapter that replays scripted results instead of calling a provider.

    Each call consumes the next entry; the last entry repeats once the script
    is exhausted. An exception entry is raised. Streaming splits the content
    into one delta per word.
    """

    provider = Provider.HOSTED

    def __init__(self, script: Iterable[Scripted], *, model: str = "stub-model", provider: Optional[Provider] = None):
        super().__init__(model=model)
        if provider is not None:
            self.provider = provider
        self.script = list(script)
        self.requests: list[CompletionRequest] = []
        self.closed = False

    def _next(self, request: CompletionRequest) -> CompletionResult:
        self.requests.append(request)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def _send_impl(self, request: CompletionRequest) -> CompletionResult:
        return self._next(request)

    async def _stream_impl(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        result = self._next(request)
        words = result.content.split(" ")
        for i, word in enumerate(words):
            if word:
                yield StreamEvent.delta(word if i == len(words) - 1 else word + " ")
        yield StreamEvent.complete(result)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def stub_factory():
    def build(*script: Scripted, provider: Provider = Provider.HOSTED) -> StubAdapter:
        return StubAdapter(script, provider=provider)

    return build


@pytest.fixture
def dispatcher_for():
    """Dispatcher with one stub adapter registered for the hosted provider."""

    def build(adapter: StubAdapter) -> ProviderDispatcher:
        return ProviderDispatcher({adapter.provider: adapter}, default_provider=adapter.provider)

    return build
