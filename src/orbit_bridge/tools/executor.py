"""
Tool execution: one call, a strictly ordered batch, or a concurrent batch.

Nothing here raises for a failing tool. Unknown names, bad arguments and
handler exceptions all come back as a failed ``ToolResult`` so the calling
loop can feed the failure to the model and keep going.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional, Sequence

import httpx

from orbit_bridge._exceptions import ToolExecutionError
from orbit_bridge._utils import maybe_await
from orbit_bridge.config import Settings
from orbit_bridge.sandbox import Sandbox
from orbit_bridge.types import ToolCall, ToolContext, ToolDeclaration, ToolResult

from .base import ProgressCallback, ToolHandler, ToolProgressEvent
from .code import CodeExecution
from .registry import TOOL_DECLARATIONS
from .weather import WeatherLookup
from .wikipedia import WikipediaSearch

__all__ = ["ToolExecutor"]


class ToolExecutor:
    """Maps tool names to handlers and runs tool calls against them."""

    def __init__(
        self,
        handlers: Optional[Mapping[str, ToolHandler]] = None,
        *,
        declarations: Mapping[str, ToolDeclaration] = TOOL_DECLARATIONS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.handlers: dict[str, ToolHandler] = dict(handlers or {})
        self.declarations = declarations
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def with_builtins(
        cls,
        settings: Optional[Settings] = None,
        *,
        sandbox: Optional[Sandbox] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "ToolExecutor":
        """Executor wired to the built-in Wikipedia, weather and code handlers."""
        settings = settings or Settings.from_env()
        tools = settings.tools
        return cls(
            {
                "search_wikipedia": WikipediaSearch(
                    cache_ttl=tools.wikipedia_cache_ttl,
                    fallback_language=tools.wikipedia_fallback_language,
                    timeout=tools.http_timeout,
                    client=http_client,
                ),
                "get_weather": WeatherLookup(
                    tools.openweather_api_key, timeout=tools.http_timeout, client=http_client
                ),
                "execute_code": CodeExecution(sandbox or Sandbox(settings.sandbox)),
            },
            logger=logger,
        )

    def register(self, name: str, handler: ToolHandler) -> None:
        self.handlers[name] = handler

    def _missing_required(self, name: str, args: Mapping[str, Any]) -> list[str]:
        declaration = self.declarations.get(name)
        if declaration is None:
            return []
        required = declaration.parameters.get("required") or ()
        return [key for key in required if args.get(key) in (None, "")]

    async def execute_one(
        self,
        name: str,
        args: Optional[Mapping[str, Any]] = None,
        context: Optional[ToolContext] = None,
        *,
        call_id: str = "",
        on_progress: Optional[ProgressCallback] = None,
        index: int = 0,
        total: int = 1,
    ) -> ToolResult:
        """Run one tool. Never raises except for task cancellation."""
        args = dict(args or {})
        context = context or ToolContext()

        async def emit(kind: str, message: Optional[str] = None, result: Optional[ToolResult] = None) -> None:
            if on_progress is None:
                return
            event = ToolProgressEvent(kind, name, call_id, index, total, message, result)  # type: ignore[arg-type]
            try:
                await maybe_await(on_progress(event))
            except Exception as exc:
                self.logger.warning("Progress callback failed on %s for %s: %s", kind, name, exc)

        async def report(message: str) -> None:
            await emit("progress", message)

        await emit("start")
        handler = self.handlers.get(name)
        try:
            if handler is None:
                raise ToolExecutionError(f"Unknown tool: {name}")
            missing = self._missing_required(name, args)
            if missing:
                raise ToolExecutionError(f"Missing required argument(s) for {name}: {', '.join(missing)}")

            self.logger.info("Executing tool %s", name)
            self.logger.debug("Tool %s arguments: %.500r", name, args)
            payload = dict(await handler(args, context, report) or {})
        except Exception as exc:
            error = exc if isinstance(exc, ToolExecutionError) else ToolExecutionError(f"{name} failed: {exc}", exc)
            self.logger.warning("Tool %s failed: %s", name, error)
            result = ToolResult(call_id, name, False, error=str(error))
            await emit("error", str(error), result)
            return result

        success = bool(payload.pop("success", True))
        error_text = None if success else str(payload.get("error") or f"{name} reported a failure")
        result = ToolResult(call_id, name, success, payload=payload, error=error_text)
        await emit("complete" if success else "error", error_text, result)
        return result

    async def execute_sequential(
        self,
        calls: Sequence[ToolCall],
        context: Optional[ToolContext] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[ToolResult]:
        """Run *calls* one after another in input order."""
        results: list[ToolResult] = []
        for i, call in enumerate(calls):
            results.append(
                await self.execute_one(
                    call.name, call.arguments, context,
                    call_id=call.id, on_progress=on_progress, index=i, total=len(calls),
                )
            )
        return results

    async def execute_parallel(
        self,
        calls: Sequence[ToolCall],
        context: Optional[ToolContext] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[ToolResult]:
        """Run *calls* concurrently; results keep the input order."""
        if not calls:
            return []
        return list(
            await asyncio.gather(
                *(
                    self.execute_one(
                        call.name, call.arguments, context,
                        call_id=call.id, on_progress=on_progress, index=i, total=len(calls),
                    )
                    for i, call in enumerate(calls)
                )
            )
        )
