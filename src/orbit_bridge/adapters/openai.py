"""OpenAI chat-completions adapter for pure request/response transformations.

Both the hosted (Gemini) and local (Ollama) backends speak this wire format.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from openai.types.chat import ChatCompletion, ChatCompletionChunk

from orbit_bridge._exceptions import MalformedResponseError, ProviderSafetyBlockError
from orbit_bridge.prompts import build_system_instruction
from orbit_bridge.provider import Provider
from orbit_bridge.tools.registry import openai_tools
from orbit_bridge.types import (
    CompletionRequest,
    CompletionResult,
    ConversationTurn,
    Role,
    StreamChunk,
    ToolCall,
    Usage,
)

SYSTEM_NOTE_PREFIX = "System note:"
SAFETY_FINISH_REASONS = frozenset({"content_filter", "refusal", "safety"})

_logger = logging.getLogger(__name__)


def parse_arguments(raw_args: Any, tool_name: str, logger: Optional[logging.Logger] = None) -> dict[str, Any]:
    """Decode tool-call arguments; anything that is not a JSON object becomes ``{}``."""
    if isinstance(raw_args, Mapping):
        return dict(raw_args)
    if not isinstance(raw_args, str) or not raw_args.strip():
        return {}
    try:
        decoded = json.loads(raw_args)
    except json.JSONDecodeError:
        (logger or _logger).warning(
            "Malformed arguments for tool %s, using {}: %.200s", tool_name, raw_args
        )
        return {}
    return decoded if isinstance(decoded, dict) else {}


def check_finish_reason(finish_reason: Optional[str], provider: Provider) -> None:
    if finish_reason and finish_reason.lower() in SAFETY_FINISH_REASONS:
        raise ProviderSafetyBlockError(
            f"Response blocked by the provider safety filter (finish_reason={finish_reason})",
            provider=str(provider),
        )


class OpenAIRequestAdapter:
    """Adapter for converting between the internal request and OpenAI format."""

    provider: Provider = Provider.LOCAL
    # Applied when the caller leaves an option unset.
    defaults: Mapping[str, Any] = {}

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or _logger

    # ----- request ----------------------------------------------------------

    def turn_message(self, turn: ConversationTurn) -> dict[str, Any]:
        if turn.role is Role.MODEL:
            return {"role": "assistant", "content": turn.text}
        if turn.role is Role.SYSTEM:
            # Mid-conversation system messages are not accepted everywhere.
            return {"role": "user", "content": f"{SYSTEM_NOTE_PREFIX} {turn.text}"}
        return {"role": "user", "content": turn.text}

    def build_messages(self, request: CompletionRequest) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        instruction = build_system_instruction(
            request.system_prompt, request.mode, use_tools=request.options.use_tools
        )
        if instruction:
            messages.append({"role": "system", "content": instruction})
        messages.extend(self.turn_message(turn) for turn in request.deduped_history())
        messages.append({"role": "user", "content": request.message})
        return messages

    def build_params(self, request: CompletionRequest) -> dict[str, Any]:
        """Map generation options onto chat-completions parameters."""
        opts = request.options
        params: dict[str, Any] = {}
        for key, value in (
            ("temperature", opts.temperature),
            ("top_p", opts.top_p),
            ("max_tokens", opts.max_output_tokens),
        ):
            if value is None:
                value = self.defaults.get(key)
            if value is not None:
                params[key] = value

        if opts.top_k is not None:
            self.logger.debug("top_k=%s dropped: not part of the chat-completions format", opts.top_k)

        if opts.use_tools:
            params["tools"] = openai_tools()
        return params

    def to_provider(self, request: CompletionRequest, *, stream: bool = False) -> dict[str, Any]:
        args: dict[str, Any] = {
            "model": request.model,
            "messages": self.build_messages(request),
            **self.build_params(request),
        }
        if stream:
            args["stream"] = True
            args["stream_options"] = {"include_usage": True}
        return args

    # ----- response ---------------------------------------------------------

    def from_provider(self, raw: ChatCompletion, model: Optional[str] = None) -> CompletionResult:
        """Convert an OpenAI response to the unified CompletionResult."""
        if not raw.choices:
            raise MalformedResponseError(
                "Provider returned no choices", provider=str(self.provider)
            )
        choice = raw.choices[0]
        check_finish_reason(choice.finish_reason, self.provider)

        message = choice.message
        tool_calls: list[ToolCall] = []
        for tc in message.tool_calls or ():
            function = getattr(tc, "function", None)
            if function is None or not function.name:
                continue
            tool_calls.append(
                ToolCall(
                    id=tc.id,
                    name=function.name,
                    arguments=parse_arguments(function.arguments, function.name, self.logger),
                )
            )

        usage = Usage()
        if raw.usage is not None:
            usage = Usage.of(raw.usage.prompt_tokens, raw.usage.completion_tokens, raw.usage.total_tokens)

        return CompletionResult(
            content=message.content or "",
            provider=self.provider,
            model=raw.model or model or "",
            usage=usage,
            finish_reason=choice.finish_reason,
            tool_calls=tuple(tool_calls),
            raw=raw,
        )

    def stream_accumulator(self) -> "OpenAIStreamAccumulator":
        return OpenAIStreamAccumulator(self)


class OpenAIStreamAccumulator:
    """
    Folds ``ChatCompletionChunk`` objects into StreamChunks and a final result.

    Tool-call fragments arrive spread over many chunks keyed by ``index``; they
    are only surfaced once the choice reports a finish reason.
    """

    def __init__(self, adapter: OpenAIRequestAdapter) -> None:
        self.adapter = adapter
        self.text_parts: list[str] = []
        self.tool_calls_agg: list[dict[str, str]] = []
        self.tool_calls: tuple[ToolCall, ...] = ()
        self.finish_reason: Optional[str] = None
        self.usage: Optional[Usage] = None
        self.model: Optional[str] = None

    def feed(self, chunk: ChatCompletionChunk) -> StreamChunk:
        if chunk.model and not self.model:
            self.model = chunk.model
        if chunk.usage is not None:
            self.usage = Usage.of(
                chunk.usage.prompt_tokens, chunk.usage.completion_tokens, chunk.usage.total_tokens
            )
        if not chunk.choices:
            return StreamChunk(usage=self.usage)

        choice = chunk.choices[0]
        delta = choice.delta
        text = delta.content if delta is not None else None
        if text:
            self.text_parts.append(text)

        for tc_chunk in (delta.tool_calls if delta is not None else None) or ():
            while len(self.tool_calls_agg) <= tc_chunk.index:
                self.tool_calls_agg.append({"id": "", "name": "", "arguments": ""})
            agg = self.tool_calls_agg[tc_chunk.index]
            if tc_chunk.id:
                agg["id"] = tc_chunk.id
            if tc_chunk.function:
                if tc_chunk.function.name:
                    agg["name"] += tc_chunk.function.name
                if tc_chunk.function.arguments:
                    agg["arguments"] += tc_chunk.function.arguments

        new_calls: tuple[ToolCall, ...] = ()
        if choice.finish_reason:
            self.finish_reason = choice.finish_reason
            check_finish_reason(choice.finish_reason, self.adapter.provider)
            new_calls = self._finalize_tool_calls()

        return StreamChunk(
            text=text or None,
            finish_reason=choice.finish_reason,
            usage=self.usage,
            tool_calls=new_calls,
        )

    def _finalize_tool_calls(self) -> tuple[ToolCall, ...]:
        calls = []
        for i, agg in enumerate(self.tool_calls_agg):
            if not agg["name"]:
                continue
            calls.append(
                ToolCall(
                    id=agg["id"] or f"call_{i}",
                    name=agg["name"],
                    arguments=parse_arguments(agg["arguments"], agg["name"], self.adapter.logger),
                )
            )
        self.tool_calls_agg = []
        self.tool_calls = self.tool_calls + tuple(calls)
        return tuple(calls)

    def result(self, model: str) -> CompletionResult:
        return CompletionResult(
            content="".join(self.text_parts),
            provider=self.adapter.provider,
            model=self.model or model,
            usage=self.usage or Usage(),
            finish_reason=self.finish_reason or "stop",
            tool_calls=self.tool_calls,
        )


__all__ = [
    "OpenAIRequestAdapter",
    "OpenAIStreamAccumulator",
    "SYSTEM_NOTE_PREFIX",
    "check_finish_reason",
    "parse_arguments",
]
