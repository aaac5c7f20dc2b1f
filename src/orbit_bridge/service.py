"""
Chat service: one user message in, one persisted model answer out.

Storage and quota accounting belong to the host application; they come in as
three callables, each of which may be sync or async.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from orbit_bridge._exceptions import MalformedResponseError, UsageLimitExceededError
from orbit_bridge._utils import maybe_await
from orbit_bridge.loop import FunctionCallingLoop, LoopResult
from orbit_bridge.prompts import extract_canvas
from orbit_bridge.provider import Provider
from orbit_bridge.tools import ProgressCallback
from orbit_bridge.types import (
    CompletionRequest,
    ConversationTurn,
    DeltaCallback,
    GenerationOptions,
    Role,
    SpecialMode,
    ToolContext,
)

__all__ = ["ChatReply", "ChatService"]

HistoryFetcher = Callable[[str], Union[Sequence[ConversationTurn], Awaitable[Sequence[ConversationTurn]]]]
MessageSaver = Callable[[str, Role, str, Optional[int]], Any]
UsageChecker = Callable[[str], Union[bool, Awaitable[bool]]]

# Stored when the model used tools but produced no closing text.
TOOLS_ONLY_PLACEHOLDER = "(answered with tool calls only)"


@dataclass(frozen=True)
class ChatReply:
    message: str
    provider: Provider
    model: str
    mode: SpecialMode
    output_tokens: int
    loop: LoopResult
    tools_used: tuple[str, ...] = ()
    canvas: dict[str, str] = field(default_factory=dict)


class ChatService:
    def __init__(
        self,
        loop: FunctionCallingLoop,
        *,
        get_history: HistoryFetcher,
        save_message: MessageSaver,
        can_make_request: UsageChecker,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.loop = loop
        self.get_history = get_history
        self.save_message = save_message
        self.can_make_request = can_make_request
        self.logger = logger or logging.getLogger(__name__)

    async def send_message(
        self,
        session_id: str,
        user_id: str,
        message: str,
        *,
        provider: Union[Provider, str, None] = None,
        system_prompt: Optional[str] = None,
        mode: Union[SpecialMode, str, None] = SpecialMode.NONE,
        options: Optional[GenerationOptions] = None,
        user_token_count: Optional[int] = None,
        client_ip: Optional[str] = None,
        stream_callback: Optional[DeltaCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ChatReply:
        """
        Check the user's quota, persist *message*, run the function calling
        loop over the session history and persist the answer.

        Raises UsageLimitExceededError before anything is stored when the
        user is over their limit.
        """
        if not await maybe_await(self.can_make_request(user_id)):
            raise UsageLimitExceededError(f"Daily request limit reached for user {user_id}")
        # Fail on an unknown provider before anything is persisted.
        resolved = self.loop.dispatcher.adapter(provider).provider

        await maybe_await(self.save_message(session_id, Role.USER, message, user_token_count))
        history = await maybe_await(self.get_history(session_id))

        special_mode = SpecialMode.parse(mode)
        request = CompletionRequest(
            provider=resolved,
            model=None,
            message=message,
            history=tuple(
                t if isinstance(t, ConversationTurn) else ConversationTurn.from_dict(t) for t in history or ()
            ),
            system_prompt=system_prompt,
            mode=special_mode,
            options=options or GenerationOptions(),
            stream_callback=stream_callback,
        )
        context = ToolContext(client_ip=client_ip, session_id=session_id, user_id=user_id)
        result = await self.loop.run(request, context, on_progress)

        answer = result.final_answer.strip()
        if not answer:
            if not result.tool_results:
                raise MalformedResponseError("The model returned an empty answer")
            answer = TOOLS_ONLY_PLACEHOLDER

        last = result.last_result
        output_tokens = result.usage.output_tokens
        await maybe_await(self.save_message(session_id, Role.MODEL, answer, output_tokens))
        self.logger.info(
            "Session %s answered in %d step(s), %d tool call(s)",
            session_id, result.steps_taken, len(result.tool_results),
        )

        return ChatReply(
            message=answer,
            provider=last.provider if last else request.provider,
            model=last.model if last else "",
            mode=special_mode,
            output_tokens=output_tokens,
            loop=result,
            tools_used=tuple(r.name for r in result.tool_results),
            canvas=extract_canvas(answer) if special_mode is SpecialMode.CANVAS else {},
        )
