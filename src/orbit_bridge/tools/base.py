"""Shared handler plumbing: the handler protocol, progress events and an httpx helper."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Optional, Protocol

import httpx

from orbit_bridge.types import ToolContext, ToolResult

ProgressKind = Literal["start", "progress", "complete", "error"]
# Handlers call this with a human-readable status line.
ProgressReporter = Callable[[str], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ToolProgressEvent:
    kind: ProgressKind
    tool_name: str
    call_id: str
    index: int
    total: int
    message: Optional[str] = None
    result: Optional[ToolResult] = None


ProgressCallback = Callable[[ToolProgressEvent], Any]


class ToolHandler(Protocol):
    """
    Runs one tool call and returns its JSON payload.

    Raising marks the call as failed. A payload may also carry
    ``"success": False`` together with an ``"error"`` message to report a
    failure while keeping the rest of the payload (e.g. partial output).
    """

    async def __call__(
        self,
        args: dict[str, Any],
        context: ToolContext,
        report: ProgressReporter,
    ) -> dict[str, Any]:
        ...


class HttpToolMixin:
    """GET-JSON helper that reuses an injected ``httpx.AsyncClient`` when given one."""

    def __init__(self, *, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.timeout = timeout
        self._client = client

    async def get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        headers = {"Accept": "application/json", "User-Agent": "orbit-bridge/0.1"}
        if self._client is not None:
            resp = await self._client.get(url, params=params, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                resp = await client.get(url, params=params, headers=headers)
        resp.raise_for_status()
        return resp.json()
