"""
Streaming contract shared by every adapter.

A consumer sees zero or more ``(text, None)`` deltas followed by exactly one
terminal: ``(None, None)`` on success or ``(None, error)`` on failure, and
nothing afterwards. Adapters produce ``StreamEvent``s (pull side);
``drive_stream`` turns them into callback invocations (push side) and is the
only place the terminal rule is enforced.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

from orbit_bridge._exceptions import MalformedResponseError
from orbit_bridge._utils import maybe_await
from orbit_bridge.types import CompletionResult, DeltaCallback, StreamEvent

__all__ = ["TerminalGuard", "drive_stream", "null_sink"]

_logger = logging.getLogger(__name__)


def null_sink(text: Optional[str], error: Optional[BaseException]) -> None:
    """Callback used when stream mode is requested without a consumer."""


class TerminalGuard:
    """Wraps a delta callback so it can receive at most one terminal event."""

    def __init__(self, callback: Optional[DeltaCallback], logger: Optional[logging.Logger] = None) -> None:
        self.callback = callback or null_sink
        self.logger = logger or _logger
        self.done = False

    async def delta(self, text: Optional[str]) -> None:
        if self.done:
            self.logger.debug("Dropping delta after terminal event")
            return
        if not text:
            return
        await maybe_await(self.callback(text, None))

    async def finish(self, error: Optional[BaseException] = None) -> None:
        if self.done:
            return
        self.done = True
        await maybe_await(self.callback(None, error))


async def drive_stream(
    events: AsyncIterator[StreamEvent],
    on_delta: Optional[DeltaCallback],
    *,
    logger: Optional[logging.Logger] = None,
) -> CompletionResult:
    """
    Pump *events* into *on_delta* and return the final result.

    On failure the terminal ``(None, error)`` is delivered first and the
    error is then raised. Task cancellation also delivers a terminal error
    before ``CancelledError`` propagates.
    """
    guard = TerminalGuard(on_delta, logger)
    try:
        async for event in events:
            if event.text is not None:
                await guard.delta(event.text)
            elif event.error is not None:
                await guard.finish(event.error)
                raise event.error
            else:
                if event.result is None:
                    raise MalformedResponseError("Stream completed without a result")
                await guard.finish()
                return event.result
        raise MalformedResponseError("Stream ended without a terminal event")
    except asyncio.CancelledError as exc:
        await guard.finish(exc)
        raise
    except Exception as exc:
        await guard.finish(exc)
        raise
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
