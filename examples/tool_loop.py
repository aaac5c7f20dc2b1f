from __future__ import annotations

import argparse
import asyncio
import logging

from orbit_bridge import (
    ChatService,
    ConversationTurn,
    FunctionCallingLoop,
    Provider,
    Role,
    Settings,
    ToolProgressEvent,
)

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

# Stand-in for the host application's message store.
_SESSIONS: dict[str, list[ConversationTurn]] = {}


def get_history(session_id: str) -> list[ConversationTurn]:
    return list(_SESSIONS.get(session_id, []))


def save_message(session_id: str, role: Role, text: str, token_count: int | None) -> None:
    _SESSIONS.setdefault(session_id, []).append(ConversationTurn(role, (text,)))


def can_make_request(user_id: str) -> bool:
    return True


def show_progress(event: ToolProgressEvent) -> None:
    if event.kind == "start":
        logger.info("-> %s (%d/%d)", event.tool_name, event.index + 1, event.total)
    elif event.kind == "progress":
        logger.info("   %s", event.message)
    elif event.kind == "error":
        logger.warning("<- %s failed: %s", event.tool_name, event.message)
    else:
        logger.info("<- %s done", event.tool_name)


async def ask(provider: Provider, question: str) -> None:
    """
    Run one question through the full function calling loop.

    The model may call search_wikipedia, get_weather or execute_code any
    number of times (bounded by FUNCTION_CALLING_MAX_STEPS) before answering.
    Set SANDBOX_BACKEND=process to run code without Docker.
    """
    settings = Settings.from_env()
    loop = FunctionCallingLoop.from_settings(settings)
    service = ChatService(
        loop,
        get_history=get_history,
        save_message=save_message,
        can_make_request=can_make_request,
    )
    try:
        reply = await service.send_message(
            "demo-session", "demo-user", question, provider=provider, on_progress=show_progress
        )
    finally:
        await loop.dispatcher.aclose()

    logger.info(
        "%s answered in %d step(s) using %s",
        reply.model, reply.loop.steps_taken, ", ".join(reply.tools_used) or "no tools",
    )
    print(reply.message)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--provider",
        choices=[p.value for p in Provider],
        default=Provider.HOSTED.value,
    )
    parser.add_argument(
        "question",
        nargs="?",
        default="Use Python to compute the 20th Fibonacci number, then tell me the weather in Seoul.",
    )
    args = parser.parse_args()

    asyncio.run(ask(Provider(args.provider), args.question))
