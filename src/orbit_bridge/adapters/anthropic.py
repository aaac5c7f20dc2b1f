"""Anthropic adapter for pure request/response transformations."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Optional

from anthropic.types import Message

from orbit_bridge._exceptions import MalformedResponseError
from orbit_bridge.prompts import build_system_instruction
from orbit_bridge.provider import Provider
from orbit_bridge.tools.registry import anthropic_tools
from orbit_bridge.types import (
    CompletionRequest,
    CompletionResult,
    ConversationTurn,
    Role,
    StreamChunk,
    ToolCall,
    Usage,
)

from .openai import SYSTEM_NOTE_PREFIX, check_finish_reason, parse_arguments

# top_p is only sent when the caller sets it: recent models reject
# temperature and top_p in the same request.
ENTERPRISE_DEFAULTS = MappingProxyType({"temperature": 0.8, "max_tokens": 8192})

_logger = logging.getLogger(__name__)


class AnthropicRequestAdapter:
    """Adapter for converting between the internal request and Anthropic format."""

    provider = Provider.ENTERPRISE
    defaults = ENTERPRISE_DEFAULTS

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or _logger

    def _role(self, turn: ConversationTurn) -> str:
        return "assistant" if turn.role is Role.MODEL else "user"

    def _content(self, turn: ConversationTurn) -> str:
        if turn.role is Role.SYSTEM:
            return f"{SYSTEM_NOTE_PREFIX} {turn.text}"
        return turn.text

    def build_messages(self, request: CompletionRequest) -> list[dict[str, Any]]:
        """History plus the new message, consecutive same-role turns merged."""
        turns = [(self._role(t), self._content(t)) for t in request.deduped_history()]
        turns.append(("user", request.message))

        messages: list[dict[str, Any]] = []
        for role, text in turns:
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"] += f"\n\n{text}"
            else:
                messages.append({"role": role, "content": text})
        return messages

    def build_params(self, request: CompletionRequest) -> dict[str, Any]:
        opts = request.options
        params: dict[str, Any] = {
            "max_tokens": opts.max_output_tokens or self.defaults["max_tokens"],
            "temperature": opts.temperature if opts.temperature is not None else self.defaults["temperature"],
        }
        if opts.top_p is not None:
            params["top_p"] = opts.top_p
        if opts.top_k is not None:
            params["top_k"] = opts.top_k
        if opts.use_tools:
            params["tools"] = anthropic_tools()
        return params

    def to_provider(self, request: CompletionRequest, *, stream: bool = False) -> dict[str, Any]:
        args: dict[str, Any] = {
            "model": request.model,
            "messages": self.build_messages(request),
            **self.build_params(request),
        }
        instruction = build_system_instruction(
            request.system_prompt, request.mode, use_tools=request.options.use_tools
        )
        if instruction:
            args["system"] = instruction
        if stream:
            args["stream"] = True
        return args

    def from_provider(self, raw: Message, model: Optional[str] = None) -> CompletionResult:
        """Convert an Anthropic response to the unified CompletionResult."""
        if raw.content is None:
            raise MalformedResponseError("Provider returned no content", provider=str(self.provider))
        check_finish_reason(raw.stop_reason, self.provider)

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in raw.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.id,
                        name=block.name,
                        arguments=parse_arguments(block.input, block.name, self.logger),
                    )
                )

        usage = Usage()
        if raw.usage is not None:
            usage = Usage.of(raw.usage.input_tokens, raw.usage.output_tokens)

        return CompletionResult(
            content="".join(text_parts),
            provider=self.provider,
            model=raw.model or model or "",
            usage=usage,
            finish_reason=raw.stop_reason,
            tool_calls=tuple(tool_calls),
            raw=raw,
        )

    def stream_accumulator(self) -> "AnthropicStreamAccumulator":
        return AnthropicStreamAccumulator(self)


class AnthropicStreamAccumulator:
    """
    Folds raw Messages-API stream events into StreamChunks and a final result.

    Events are read by attribute only, so any object with the documented
    ``type``/``delta``/``content_block`` shape is accepted.
    """

    def __init__(self, adapter: AnthropicRequestAdapter) -> None:
        self.adapter = adapter
        self.text_parts: list[str] = []
        self.pending: dict[int, dict[str, str]] = {}
        self.tool_calls: tuple[ToolCall, ...] = ()
        self.finish_reason: Optional[str] = None
        self.input_tokens = 0
        self.output_tokens = 0
        self.model: Optional[str] = None

    def feed(self, event: Any) -> StreamChunk:
        kind = getattr(event, "type", None)

        if kind == "message_start":
            message = event.message
            self.model = getattr(message, "model", None) or self.model
            usage = getattr(message, "usage", None)
            if usage is not None:
                self.input_tokens = getattr(usage, "input_tokens", 0) or 0
            return StreamChunk()

        if kind == "content_block_start":
            block = event.content_block
            if getattr(block, "type", None) == "tool_use":
                self.pending[event.index] = {"id": block.id, "name": block.name, "json": ""}
            return StreamChunk()

        if kind == "content_block_delta":
            delta = event.delta
            delta_type = getattr(delta, "type", None)
            if delta_type == "text_delta" and delta.text:
                self.text_parts.append(delta.text)
                return StreamChunk(text=delta.text)
            if delta_type == "input_json_delta" and event.index in self.pending:
                self.pending[event.index]["json"] += delta.partial_json or ""
            return StreamChunk()

        if kind == "message_delta":
            usage = getattr(event, "usage", None)
            if usage is not None:
                self.output_tokens = getattr(usage, "output_tokens", 0) or 0
            stop_reason = getattr(event.delta, "stop_reason", None)
            new_calls: tuple[ToolCall, ...] = ()
            if stop_reason:
                self.finish_reason = stop_reason
                check_finish_reason(stop_reason, self.adapter.provider)
                new_calls = self._finalize_tool_calls()
            return StreamChunk(
                finish_reason=stop_reason,
                usage=Usage.of(self.input_tokens, self.output_tokens),
                tool_calls=new_calls,
            )

        return StreamChunk()

    def _finalize_tool_calls(self) -> tuple[ToolCall, ...]:
        calls = tuple(
            ToolCall(
                id=data["id"],
                name=data["name"],
                arguments=parse_arguments(data["json"] or "{}", data["name"], self.adapter.logger),
            )
            for _, data in sorted(self.pending.items())
        )
        self.pending.clear()
        self.tool_calls = self.tool_calls + calls
        return calls

    def result(self, model: str) -> CompletionResult:
        return CompletionResult(
            content="".join(self.text_parts),
            provider=self.adapter.provider,
            model=self.model or model,
            usage=Usage.of(self.input_tokens, self.output_tokens),
            finish_reason=self.finish_reason or "end_turn",
            tool_calls=self.tool_calls,
        )


__all__ = ["AnthropicRequestAdapter", "AnthropicStreamAccumulator", "ENTERPRISE_DEFAULTS"]
