"""Tests for the chat service wrapper."""

import pytest

from orbit_bridge._exceptions import MalformedResponseError, UnsupportedProviderError, UsageLimitExceededError
from orbit_bridge.loop import FunctionCallingLoop
from orbit_bridge.service import TOOLS_ONLY_PLACEHOLDER, ChatService
from orbit_bridge.tools import ToolExecutor
from orbit_bridge.types import ConversationTurn, Role, SpecialMode, ToolCall

from conftest import make_result


class FakeStore:
    """In-memory history store with an async fetch and a sync save."""

    def __init__(self, allowed=True):
        self.allowed = allowed
        self.sessions = {}
        self.saved = []

    async def get_history(self, session_id):
        return list(self.sessions.get(session_id, []))

    def save_message(self, session_id, role, text, token_count):
        self.saved.append((session_id, role, text, token_count))
        self.sessions.setdefault(session_id, []).append(
            {"role": str(role), "parts": [{"text": text}]}
        )

    def can_make_request(self, user_id):
        return self.allowed


async def weather_handler(args, context, report):
    return {"ip": context.client_ip, "temperature": 21}


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def service_for(dispatcher_for, store):
    def build(adapter):
        loop = FunctionCallingLoop(dispatcher_for(adapter), ToolExecutor({"get_weather": weather_handler}))
        return ChatService(
            loop,
            get_history=store.get_history,
            save_message=store.save_message,
            can_make_request=store.can_make_request,
        )

    return build


class TestChatService:
    @pytest.mark.asyncio
    async def test_message_is_persisted_around_the_loop(self, service_for, stub_factory, store):
        """User and model messages are saved around the loop."""
        store.sessions["s1"] = [
            {"role": "user", "parts": [{"text": "Hi"}]},
            {"role": "model", "parts": [{"text": "Hello!"}]},
        ]
        adapter = stub_factory(make_result("Paris."))

        reply = await service_for(adapter).send_message("s1", "u1", "Capital of France?", user_token_count=5)

        assert reply.message == "Paris."
        assert reply.output_tokens == 2
        assert store.saved == [
            ("s1", Role.USER, "Capital of France?", 5),
            ("s1", Role.MODEL, "Paris.", 2),
        ]
        sent = adapter.requests[0]
        assert sent.history == (ConversationTurn.user("Hi"), ConversationTurn.model("Hello!"))
        assert sent.message == "Capital of France?"

    @pytest.mark.asyncio
    async def test_usage_limit_stops_before_persisting(self, service_for, stub_factory, store):
        """An exhausted quota stops before anything is saved."""
        store.allowed = False
        adapter = stub_factory(make_result("unused"))

        with pytest.raises(UsageLimitExceededError):
            await service_for(adapter).send_message("s1", "u1", "Hi")

        assert store.saved == []
        assert adapter.requests == []

    @pytest.mark.asyncio
    async def test_unknown_provider_stops_before_persisting(self, service_for, stub_factory, store):
        """An unknown provider stops before anything is saved."""
        with pytest.raises(UnsupportedProviderError):
            await service_for(stub_factory(make_result("unused"))).send_message("s1", "u1", "Hi", provider="mainframe")

        assert store.saved == []

    @pytest.mark.asyncio
    async def test_client_ip_reaches_tools(self, service_for, stub_factory):
        """The client IP reaches tool handlers."""
        adapter = stub_factory(
            make_result(tool_calls=[ToolCall("w", "get_weather", {})]),
            make_result("It is 21 degrees."),
        )

        reply = await service_for(adapter).send_message("s1", "u1", "Weather?", client_ip="203.0.113.7")

        assert reply.tools_used == ("get_weather",)
        assert reply.loop.tool_results[0].payload["ip"] == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_empty_answer_without_tools_is_malformed(self, service_for, stub_factory, store):
        """An empty answer with no tool use is malformed."""
        with pytest.raises(MalformedResponseError):
            await service_for(stub_factory(make_result("   "))).send_message("s1", "u1", "Hi")

        assert [s[1] for s in store.saved] == [Role.USER]

    @pytest.mark.asyncio
    async def test_empty_answer_after_tools_uses_placeholder(self, service_for, stub_factory, store):
        """An empty answer after tool use is stored as a placeholder."""
        adapter = stub_factory(make_result(tool_calls=[ToolCall("w", "get_weather", {})]), make_result(""))

        reply = await service_for(adapter).send_message("s1", "u1", "Weather?")

        assert reply.message == TOOLS_ONLY_PLACEHOLDER
        assert store.saved[-1][2] == TOOLS_ONLY_PLACEHOLDER

    @pytest.mark.asyncio
    async def test_canvas_mode_extracts_blocks(self, service_for, stub_factory):
        """Canvas mode extracts code blocks from the answer."""
        answer = "```html\n<p>hi</p>\n```\n```css\np { margin: 0; }\n```"

        reply = await service_for(stub_factory(make_result(answer))).send_message(
            "s1", "u1", "Make a page", mode="canvas"
        )

        assert reply.mode is SpecialMode.CANVAS
        assert reply.canvas == {"html": "<p>hi</p>", "css": "p { margin: 0; }", "js": ""}
