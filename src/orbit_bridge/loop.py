"""
Function calling loop.

Repeatedly dispatches a request; whenever the model asks for tools, runs them,
records the exchange in the conversation and asks the model to continue.
The loop is bounded by ``max_steps`` no matter what the model does.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Literal, Optional

from orbit_bridge.config import Settings
from orbit_bridge.dispatcher import ProviderDispatcher
from orbit_bridge.prompts import CONTINUATION_MESSAGE
from orbit_bridge.stream import TerminalGuard
from orbit_bridge.tools import ProgressCallback, ToolExecutor
from orbit_bridge.types import (
    CompletionRequest,
    CompletionResult,
    ConversationTurn,
    DeltaCallback,
    ToolCall,
    ToolContext,
    ToolResult,
    Usage,
)

__all__ = ["FunctionCallingLoop", "LoopResult", "LoopState"]

StoppedReason = Literal["completed", "max_steps"]


@dataclass
class LoopState:
    """Per-run mutable state. Never shared between runs."""

    history: list[ConversationTurn]
    message: str
    step: int = 0
    tool_results: list[ToolResult] = field(default_factory=list)
    last_result: Optional[CompletionResult] = None
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class LoopResult:
    final_answer: str
    steps_taken: int
    tool_results: tuple[ToolResult, ...]
    stopped_reason: StoppedReason
    last_result: Optional[CompletionResult]
    history: tuple[ConversationTurn, ...]
    usage: Usage = field(default_factory=Usage)


def describe_tool_calls(calls: tuple[ToolCall, ...]) -> str:
    """Model-side record of the tool calls it asked for."""
    rendered = ", ".join(
        f"{call.name}({json.dumps(call.arguments, ensure_ascii=False, default=str)})" for call in calls
    )
    return f"Calling tools: {rendered}"


def summarize_tool_results(results: list[ToolResult]) -> str:
    body = json.dumps([r.as_dict() for r in results], ensure_ascii=False, default=str)
    return f"Tool results: {body}"


class FunctionCallingLoop:
    def __init__(
        self,
        dispatcher: ProviderDispatcher,
        executor: ToolExecutor,
        *,
        max_steps: int = 10,
        parallel_tools: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self.dispatcher = dispatcher
        self.executor = executor
        self.max_steps = max_steps
        self.parallel_tools = parallel_tools
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        dispatcher: Optional[ProviderDispatcher] = None,
        executor: Optional[ToolExecutor] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "FunctionCallingLoop":
        settings = settings or Settings.from_env()
        return cls(
            dispatcher or ProviderDispatcher.from_settings(settings, logger=logger),
            executor or ToolExecutor.with_builtins(settings, logger=logger),
            max_steps=settings.max_steps,
            parallel_tools=settings.parallel_tools,
            logger=logger,
        )

    async def run(
        self,
        request: CompletionRequest,
        context: Optional[ToolContext] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> LoopResult:
        """
        Drive *request* to a final answer.

        Dispatcher errors propagate unchanged; tool failures are fed back to
        the model as failed results.

        A stream callback on *request* sees the deltas of every step and one
        terminal event for the whole run.
        """
        guard: Optional[TerminalGuard] = None
        on_delta: Optional[DeltaCallback] = None
        if request.stream_callback is not None:
            guard = TerminalGuard(request.stream_callback, self.logger)
            on_delta = self._step_callback(guard)

        try:
            result = await self._run(request, context, on_progress, on_delta)
        except BaseException as exc:
            if guard is not None:
                await guard.finish(exc)
            raise
        if guard is not None:
            await guard.finish()
        return result

    @staticmethod
    def _step_callback(guard: TerminalGuard) -> DeltaCallback:
        async def forward(text: Optional[str], error: Optional[BaseException]) -> None:
            if text is not None:
                await guard.delta(text)
            elif error is not None:
                await guard.finish(error)
            # a step's success terminal is not the end of the run

        return forward

    async def _run(
        self,
        request: CompletionRequest,
        context: Optional[ToolContext],
        on_progress: Optional[ProgressCallback],
        on_delta: Optional[DeltaCallback],
    ) -> LoopResult:
        state = LoopState(history=request.deduped_history(), message=request.message)
        options = request.options
        if request.model and not options.model_id_override:
            options = options.copy(model_id_override=request.model)

        while True:
            result = await self.dispatcher.dispatch(
                request.provider,
                state.message,
                tuple(state.history),
                request.system_prompt,
                request.mode,
                on_delta,
                options,
            )
            state.step += 1
            state.last_result = result
            state.input_tokens += result.usage.input_tokens
            state.output_tokens += result.usage.output_tokens

            if not result.has_tool_calls:
                self.logger.info("Loop finished after %d step(s)", state.step)
                return self._finish(state, result.content, "completed")

            self.logger.info(
                "Step %d: model requested %s", state.step, ", ".join(c.name for c in result.tool_calls)
            )
            results = await self._execute(result.tool_calls, context, on_progress)
            state.tool_results.extend(results)

            state.history.append(ConversationTurn.user(state.message))
            intent = describe_tool_calls(result.tool_calls)
            if result.content:
                intent = f"{result.content}\n\n{intent}"
            state.history.append(ConversationTurn.model(intent))
            state.history.append(ConversationTurn.system(summarize_tool_results(results)))
            state.message = CONTINUATION_MESSAGE

            if state.step >= self.max_steps:
                self.logger.warning("Loop stopped at max_steps=%d with tools still requested", self.max_steps)
                return self._finish(state, result.content, "max_steps")

    async def _execute(
        self,
        calls: tuple[ToolCall, ...],
        context: Optional[ToolContext],
        on_progress: Optional[ProgressCallback],
    ) -> list[ToolResult]:
        if self.parallel_tools:
            return await self.executor.execute_parallel(calls, context, on_progress)
        return await self.executor.execute_sequential(calls, context, on_progress)

    def _finish(self, state: LoopState, answer: str, reason: StoppedReason) -> LoopResult:
        return LoopResult(
            final_answer=answer,
            steps_taken=state.step,
            tool_results=tuple(state.tool_results),
            stopped_reason=reason,
            last_result=state.last_result,
            history=tuple(state.history),
            usage=Usage.of(state.input_tokens, state.output_tokens),
        )

