"""Tests for the enterprise (Anthropic Messages API) adapter."""

from types import SimpleNamespace as NS

import pytest
from anthropic import AsyncAnthropic
from anthropic.types import Message

from orbit_bridge._exceptions import InvalidModelConfigError, ProviderSafetyBlockError
from orbit_bridge.adapters.anthropic import AnthropicRequestAdapter
from orbit_bridge.provider import Provider
from orbit_bridge.providers import EnterpriseAdapter
from orbit_bridge.types import CompletionRequest, ConversationTurn, GenerationOptions


def message(content, *, stop_reason="end_turn"):
    return Message.model_validate(
        {
            "id": "msg_1",
            "type": "message",
            "role": "assistant",
            "model": "claude-3-5-haiku-latest",
            "content": content,
            "stop_reason": stop_reason,
            "stop_sequence": None,
            "usage": {"input_tokens": 12, "output_tokens": 4},
        }
    )


def request(message_text="Hello", **kwargs):
    kwargs.setdefault("provider", Provider.ENTERPRISE)
    kwargs.setdefault("model", "claude-3-5-haiku-latest")
    return CompletionRequest(message=message_text, **kwargs)


def tool_stream_events():
    return [
        NS(type="message_start", message=NS(model="claude-3-5-haiku-latest", usage=NS(input_tokens=20))),
        NS(type="content_block_start", index=0, content_block=NS(type="text", text="")),
        NS(type="content_block_delta", index=0, delta=NS(type="text_delta", text="Let me check. ")),
        NS(type="content_block_start", index=1, content_block=NS(type="tool_use", id="toolu_1", name="get_weather")),
        NS(type="content_block_delta", index=1, delta=NS(type="input_json_delta", partial_json='{"city": ')),
        NS(type="content_block_delta", index=1, delta=NS(type="input_json_delta", partial_json='"Seoul"}')),
        NS(type="message_delta", delta=NS(stop_reason="tool_use"), usage=NS(output_tokens=9)),
        NS(type="message_stop"),
    ]


class TestRequestShaping:
    def test_defaults_and_system(self):
        """Enterprise defaults apply and the system prompt goes in the top-level field."""
        args = AnthropicRequestAdapter().to_provider(request(system_prompt="Be brief."))

        assert args["temperature"] == 0.8
        assert args["max_tokens"] == 8192
        assert "top_p" not in args
        assert args["system"].startswith("Be brief.")
        assert {t["name"] for t in args["tools"]} == {"search_wikipedia", "get_weather", "execute_code"}

    def test_top_p_and_top_k_only_when_set(self):
        """top_p and top_k are only sent when the caller sets them."""
        args = AnthropicRequestAdapter().to_provider(
            request(options=GenerationOptions(top_p=0.5, top_k=10, use_tools=False))
        )

        assert args["top_p"] == 0.5
        assert args["top_k"] == 10
        assert "tools" not in args
        assert "system" not in args

    def test_consecutive_roles_are_merged(self):
        """Adjacent turns with the same role are merged into one message."""
        history = (
            ConversationTurn.user("Weather?"),
            ConversationTurn.model("Calling tools: get_weather({})"),
            ConversationTurn.system("Tool results: []"),
        )

        messages = AnthropicRequestAdapter().build_messages(request("Continue", history=history))

        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[2]["content"] == "System note: Tool results: []\n\nContinue"


class TestResponseParsing:
    def test_text_and_tool_use(self):
        """Text blocks and tool_use blocks map onto the result."""
        raw = message(
            [
                {"type": "text", "text": "Checking."},
                {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {"city": "Seoul"}},
            ],
            stop_reason="tool_use",
        )

        result = AnthropicRequestAdapter().from_provider(raw)

        assert result.content == "Checking."
        assert result.tool_calls[0].id == "toolu_1"
        assert result.tool_calls[0].arguments == {"city": "Seoul"}
        assert result.usage.total_tokens == 16

    def test_refusal_is_a_safety_block(self):
        """A refusal stop reason raises a safety block."""
        raw = NS(content=[], stop_reason="refusal", usage=None, model="claude-3-5-haiku-latest")

        with pytest.raises(ProviderSafetyBlockError):
            AnthropicRequestAdapter().from_provider(raw)


class TestStreamAccumulator:
    def test_tool_use_events(self):
        """Streamed tool_use events accumulate into complete tool calls."""
        acc = AnthropicRequestAdapter().stream_accumulator()

        chunks = [acc.feed(e) for e in tool_stream_events()]

        assert [c.text for c in chunks if c.text] == ["Let me check. "]
        detected = [c for c in chunks if c.tool_calls]
        assert len(detected) == 1
        result = acc.result("fallback")
        assert result.tool_calls[0].arguments == {"city": "Seoul"}
        assert result.usage.input_tokens == 20
        assert result.usage.output_tokens == 9
        assert result.finish_reason == "tool_use"

    def test_bad_partial_json_becomes_empty_arguments(self):
        """Unparseable streamed tool input falls back to empty arguments."""
        acc = AnthropicRequestAdapter().stream_accumulator()
        for event in (
            NS(type="content_block_start", index=0, content_block=NS(type="tool_use", id="toolu_1", name="execute_code")),
            NS(type="content_block_delta", index=0, delta=NS(type="input_json_delta", partial_json='{"code": ')),
            NS(type="message_delta", delta=NS(stop_reason="tool_use"), usage=None),
        ):
            acc.feed(event)

        assert acc.result("m").tool_calls[0].arguments == {}


class TestEnterpriseAdapter:
    @pytest.mark.asyncio
    async def test_stream_through_client(self, monkeypatch):
        """Streaming through the SDK client honours the delta contract."""
        client = AsyncAnthropic(api_key="test", base_url="http://localhost:9")
        adapter = EnterpriseAdapter.from_client("claude-3-5-haiku-latest", client)
        read = []

        async def fake_create(**kwargs):
            assert kwargs["stream"] is True

            async def gen():
                for event in tool_stream_events():
                    read.append(event.type)
                    yield event

            return gen()

        monkeypatch.setattr(client.messages, "create", fake_create)
        events = []

        result = await adapter.send_stream(request(), lambda text, err: events.append((text, err)))

        assert events == [("Let me check. ", None), (None, None)]
        assert result.tool_calls[0].name == "get_weather"
        assert "message_stop" not in read

    @pytest.mark.asyncio
    async def test_send(self, monkeypatch):
        """Non-streaming send goes through the SDK client."""
        client = AsyncAnthropic(api_key="test", base_url="http://localhost:9")
        adapter = EnterpriseAdapter.from_client("claude-3-5-haiku-latest", client)

        async def fake_create(**kwargs):
            return message([{"type": "text", "text": "Hi there"}])

        monkeypatch.setattr(client.messages, "create", fake_create)

        result = await adapter.send(request())

        assert result.content == "Hi there"
        assert result.provider is Provider.ENTERPRISE

    def test_requires_key_or_project(self):
        """Construction needs an API key or a Vertex project id."""
        with pytest.raises(InvalidModelConfigError):
            EnterpriseAdapter("claude-3-5-haiku-latest")
