"""Chat-side types shared by adapters, the dispatcher and the loop."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, replace
from enum import StrEnum
from typing import Any, Callable, Mapping, Optional, Sequence

from orbit_bridge.provider import Provider
from orbit_bridge.types.tool import ToolCall

# Streaming delta callback: (delta_text, error). See orbit_bridge.stream.
DeltaCallback = Callable[[Optional[str], Optional[BaseException]], Any]

_WS = re.compile(r"\s+")


class Role(StrEnum):
    USER = "user"
    MODEL = "model"
    # Synthetic tool-result summaries written by the function calling loop.
    SYSTEM = "system"


class SpecialMode(StrEnum):
    NONE = "none"
    STREAM = "stream"
    CANVAS = "canvas"
    SEARCH = "search"
    ASSISTANT_SUPPORT = "assistant-support"

    @classmethod
    def parse(cls, value: "str | SpecialMode | None") -> "SpecialMode":
        if value is None or value == "":
            return cls.NONE
        if isinstance(value, SpecialMode):
            return value
        normalized = value.strip().lower().replace("_", "-")
        # Legacy clients send "chatbot" for the support mode.
        if normalized == "chatbot":
            return cls.ASSISTANT_SUPPORT
        return cls(normalized)


def normalize_text(text: str) -> str:
    """Whitespace-insensitive form used for duplicate detection."""
    return _WS.sub(" ", text).strip()


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    """One turn of conversation history."""

    role: Role
    parts: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.parts:
            raise ValueError("ConversationTurn needs at least one text part")

    @property
    def text(self) -> str:
        return "".join(self.parts)

    @classmethod
    def user(cls, text: str) -> "ConversationTurn":
        return cls(Role.USER, (text,))

    @classmethod
    def model(cls, text: str) -> "ConversationTurn":
        return cls(Role.MODEL, (text,))

    @classmethod
    def system(cls, text: str) -> "ConversationTurn":
        return cls(Role.SYSTEM, (text,))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationTurn":
        """Accept both the persisted ``parts`` shape and a plain ``content`` shape."""
        role = str(data.get("role", "user")).lower()
        if role == "assistant":
            role = "model"
        parts = data.get("parts")
        if parts:
            texts = tuple(
                p.get("text", "") if isinstance(p, Mapping) else str(p) for p in parts
            )
        else:
            texts = (str(data.get("content") or ""),)
        return cls(Role(role), texts)


def dedupe_history(
    history: Sequence[ConversationTurn], message: str
) -> list[ConversationTurn]:
    """
    Drop trailing user turns that repeat the outgoing message.

    Callers often persist the user message before fetching history, so the
    newest history entry frequently equals the message being sent.
    """
    turns = list(history)
    target = normalize_text(message)
    while turns and turns[-1].role is Role.USER and normalize_text(turns[-1].text) == target:
        turns.pop()
    return turns


@dataclass
class GenerationOptions:
    """Per-call generation options with utility methods."""

    model_id_override: Optional[str] = None
    max_output_tokens_override: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    use_tools: bool = True

    def as_dict(self, exclude_none: bool = True) -> dict[str, Any]:
        result = asdict(self)
        if exclude_none:
            return {k: v for k, v in result.items() if v is not None}
        return result

    def copy(self, **kwargs: Any) -> "GenerationOptions":
        current = self.as_dict(exclude_none=False)
        current.update(kwargs)
        return GenerationOptions(**current)

    @property
    def max_output_tokens(self) -> Optional[int]:
        """The override, when it is a usable positive integer."""
        value = self.max_output_tokens_override
        try:
            value = int(value) if value is not None else None
        except (TypeError, ValueError):
            return None
        return value if value and value > 0 else None


@dataclass(frozen=True)
class CompletionRequest:
    """A single logical chat-completion request, already resolved to one provider."""

    provider: Provider
    # None or "" selects the adapter default
    model: Optional[str]
    message: str
    history: tuple[ConversationTurn, ...] = ()
    system_prompt: Optional[str] = None
    mode: SpecialMode = SpecialMode.NONE
    options: GenerationOptions = field(default_factory=GenerationOptions)
    stream_callback: Optional[DeltaCallback] = None

    @property
    def wants_stream(self) -> bool:
        return self.stream_callback is not None or self.mode is SpecialMode.STREAM

    def deduped_history(self) -> list[ConversationTurn]:
        return dedupe_history(self.history, self.message)

    def with_model(self, model: str) -> "CompletionRequest":
        return replace(self, model=model)


@dataclass(frozen=True, slots=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, input_tokens: Optional[int], output_tokens: Optional[int], total: Optional[int] = None) -> "Usage":
        i, o = input_tokens or 0, output_tokens or 0
        return cls(i, o, total if total else i + o)


@dataclass(frozen=True, slots=True)
class StreamChunk:
    """One normalized provider increment."""

    text: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(frozen=True)
class CompletionResult:
    """Unified completion returned by every adapter, streaming or not."""

    content: str
    provider: Provider
    model: str
    usage: Usage = field(default_factory=Usage)
    finish_reason: Optional[str] = None
    tool_calls: tuple[ToolCall, ...] = ()
    raw: Any = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """
    Pull-side view of the stream contract.

    A delta carries ``text``; the success terminal carries ``result``; the
    failure terminal carries ``error``. Exactly one terminal ends a stream.
    """

    text: Optional[str] = None
    error: Optional[BaseException] = None
    result: Optional[CompletionResult] = None

    @property
    def is_terminal(self) -> bool:
        return self.text is None

    @classmethod
    def delta(cls, text: str) -> "StreamEvent":
        return cls(text=text)

    @classmethod
    def complete(cls, result: CompletionResult) -> "StreamEvent":
        return cls(result=result)

    @classmethod
    def failure(cls, error: BaseException) -> "StreamEvent":
        return cls(error=error)
