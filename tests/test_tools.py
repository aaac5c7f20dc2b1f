"""Tests for the tool registry, executor and built-in handlers."""

import asyncio

import httpx
import pytest

from orbit_bridge._exceptions import ToolExecutionError
from orbit_bridge.tools import ToolExecutor, anthropic_tools, gemini_tools, openai_tools
from orbit_bridge.tools.weather import WeatherLookup
from orbit_bridge.tools.wikipedia import WikipediaSearch
from orbit_bridge.types import ToolCall, ToolContext


async def no_report(message):
    return None


def make_handler(name, *, delay=0.0, fail=False, log=None):
    async def handler(args, context, report):
        if log is not None:
            log.append(f"{name}:start")
        await report(f"{name} working")
        if delay:
            await asyncio.sleep(delay)
        if log is not None:
            log.append(f"{name}:end")
        if fail:
            raise RuntimeError(f"{name} exploded")
        return {"tool": name, "args": args}

    return handler


@pytest.fixture
def events():
    return []


class TestRegistry:
    def test_exports_cover_every_tool(self):
        """Every export format lists all three tools."""
        names = ["search_wikipedia", "get_weather", "execute_code"]

        assert [t["function"]["name"] for t in openai_tools()] == names
        assert [t["name"] for t in anthropic_tools()] == names
        assert [d["name"] for d in gemini_tools()[0]["functionDeclarations"]] == names

    def test_exports_are_independent_copies(self):
        """Exports are fresh copies each call."""
        openai_tools()[0]["function"]["parameters"]["required"].append("mutated")

        assert openai_tools()[0]["function"]["parameters"]["required"] == ["query"]


class TestExecutor:
    @pytest.mark.asyncio
    async def test_sequential_order_and_isolated_failure(self, events):
        """Sequential runs keep order and isolate failures."""
        log = []
        executor = ToolExecutor(
            {
                "a": make_handler("a", log=log),
                "b": make_handler("b", fail=True, log=log),
                "c": make_handler("c", log=log),
            }
        )
        calls = [ToolCall("1", "a", {}), ToolCall("2", "b", {}), ToolCall("3", "c", {})]

        results = await executor.execute_sequential(calls, on_progress=events.append)

        assert [(r.name, r.success) for r in results] == [("a", True), ("b", False), ("c", True)]
        assert "b exploded" in results[1].error
        assert log == ["a:start", "a:end", "b:start", "b:end", "c:start", "c:end"]
        assert [(e.kind, e.tool_name) for e in events] == [
            ("start", "a"), ("progress", "a"), ("complete", "a"),
            ("start", "b"), ("progress", "b"), ("error", "b"),
            ("start", "c"), ("progress", "c"), ("complete", "c"),
        ]
        assert events[-1].index == 2
        assert events[-1].total == 3

    @pytest.mark.asyncio
    async def test_parallel_keeps_input_order(self):
        """Parallel results keep the input order."""
        executor = ToolExecutor(
            {
                "slow": make_handler("slow", delay=0.2),
                "fast": make_handler("fast", delay=0.01),
                "broken": make_handler("broken", fail=True),
            }
        )
        calls = [ToolCall("1", "slow", {}), ToolCall("2", "fast", {}), ToolCall("3", "broken", {})]

        results = await executor.execute_parallel(calls)

        assert [r.id for r in results] == ["1", "2", "3"]
        assert [r.success for r in results] == [True, True, False]

    @pytest.mark.asyncio
    async def test_parallel_runs_concurrently(self):
        """Parallel calls overlap in time."""
        executor = ToolExecutor({"wait": make_handler("wait", delay=0.2)})
        calls = [ToolCall(str(i), "wait", {}) for i in range(5)]

        loop = asyncio.get_running_loop()
        start = loop.time()
        await executor.execute_parallel(calls)

        assert loop.time() - start < 0.8

    @pytest.mark.asyncio
    async def test_zero_calls(self, events):
        """Zero calls give zero results and no events."""
        executor = ToolExecutor({})

        assert await executor.execute_parallel([], on_progress=events.append) == []
        assert await executor.execute_sequential([], on_progress=events.append) == []
        assert events == []

    @pytest.mark.asyncio
    async def test_unknown_tool_is_a_failed_result(self):
        """An unknown tool is a failed result."""
        result = await ToolExecutor({}).execute_one("teleport", {}, call_id="x")

        assert result.success is False
        assert result.error == "Unknown tool: teleport"

    @pytest.mark.asyncio
    async def test_missing_required_argument(self):
        """Missing required arguments fail before the handler runs."""
        called = []

        async def handler(args, context, report):
            called.append(args)
            return {}

        result = await ToolExecutor({"execute_code": handler}).execute_one("execute_code", {"language": "python"})

        assert result.success is False
        assert "code" in result.error
        assert called == []

    @pytest.mark.asyncio
    async def test_payload_reported_failure(self):
        """A handler can report failure in its payload."""
        async def handler(args, context, report):
            return {"success": False, "error": "division by zero", "output": None}

        result = await ToolExecutor({"calc": handler}).execute_one("calc", {})

        assert result.success is False
        assert result.error == "division by zero"
        assert result.payload == {"error": "division by zero", "output": None}

    @pytest.mark.asyncio
    async def test_async_progress_callback(self):
        """Async progress callbacks are awaited."""
        seen = []

        async def on_progress(event):
            seen.append(event.kind)

        await ToolExecutor({"a": make_handler("a")}).execute_one("a", {}, on_progress=on_progress)

        assert seen == ["start", "progress", "complete"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("parallel", [False, True])
    async def test_failing_progress_callback_does_not_stop_the_batch(self, parallel):
        """A progress consumer that raises is logged and the other calls still run."""
        log = []

        def on_progress(event):
            if event.kind == "complete" and event.tool_name == "a":
                raise RuntimeError("transport gone")

        executor = ToolExecutor({"a": make_handler("a", log=log), "b": make_handler("b", log=log)})
        calls = [ToolCall("1", "a", {}), ToolCall("2", "b", {})]
        run = executor.execute_parallel if parallel else executor.execute_sequential

        results = await run(calls, on_progress=on_progress)

        assert [(r.name, r.success) for r in results] == [("a", True), ("b", True)]
        assert sorted(log) == ["a:end", "a:start", "b:end", "b:start"]


def wikipedia_transport(requests, *, empty_languages=(), failing_languages=()):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        language = request.url.host.split(".")[0]
        if language in failing_languages:
            return httpx.Response(503, json={"error": "unavailable"})
        params = request.url.params
        if params.get("list") == "search":
            if language in empty_languages:
                return httpx.Response(200, json={"query": {"search": []}})
            return httpx.Response(
                200,
                json={
                    "query": {
                        "search": [
                            {"pageid": 42, "title": "Python (language)", "snippet": "<b>Python</b> is a language", "wordcount": 900},
                        ]
                    }
                },
            )
        return httpx.Response(
            200,
            json={
                "query": {
                    "pages": {
                        "42": {
                            "pageid": 42,
                            "extract": "Python is a high-level programming language.",
                            "fullurl": f"https://{language}.wikipedia.org/wiki/Python_(language)",
                        }
                    }
                }
            },
        )

    return httpx.MockTransport(handler)


class TestWikipedia:
    @pytest.mark.asyncio
    async def test_search_and_extract(self):
        """Search results are resolved to an extract."""
        requests = []
        async with httpx.AsyncClient(transport=wikipedia_transport(requests)) as client:
            tool = WikipediaSearch(client=client)

            payload = await tool({"query": "Python", "language": "en", "limit": 3}, ToolContext(), no_report)

        assert payload["language"] == "en"
        assert payload["count"] == 1
        assert payload["results"][0]["summary"] == "Python is a high-level programming language."
        assert payload["results"][0]["url"] == "https://en.wikipedia.org/wiki/Python_(language)"
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_falls_back_to_english_when_empty(self):
        """An empty local search falls back to English."""
        requests = []
        async with httpx.AsyncClient(transport=wikipedia_transport(requests, empty_languages=("ko",))) as client:
            tool = WikipediaSearch(client=client)

            payload = await tool({"query": "Python"}, ToolContext(), no_report)

        assert payload["language"] == "en"
        assert [r.url.host for r in requests] == ["ko.wikipedia.org", "en.wikipedia.org", "en.wikipedia.org"]

    @pytest.mark.asyncio
    async def test_falls_back_to_english_on_failure(self):
        """A failing local wiki falls back to English."""
        requests = []
        async with httpx.AsyncClient(transport=wikipedia_transport(requests, failing_languages=("ja",))) as client:
            tool = WikipediaSearch(client=client)

            payload = await tool({"query": "Python", "language": "ja"}, ToolContext(), no_report)

        assert payload["language"] == "en"
        assert payload["count"] == 1

    @pytest.mark.asyncio
    async def test_cache_hit_and_expiry(self):
        """Cached lookups are reused until they expire."""
        requests = []
        now = [1000.0]
        async with httpx.AsyncClient(transport=wikipedia_transport(requests)) as client:
            tool = WikipediaSearch(client=client, cache_ttl=60, clock=lambda: now[0])
            args = {"query": "Python", "language": "en"}

            await tool(args, ToolContext(), no_report)
            await tool(args, ToolContext(), no_report)
            assert len(requests) == 2

            now[0] += 61
            await tool(args, ToolContext(), no_report)
            assert len(requests) == 4

        assert tool.clear_cache() == 1

    @pytest.mark.asyncio
    async def test_english_failure_raises(self):
        """A failing English fallback raises."""
        requests = []
        async with httpx.AsyncClient(transport=wikipedia_transport(requests, failing_languages=("en",))) as client:
            tool = WikipediaSearch(client=client)

            with pytest.raises(ToolExecutionError):
                await tool({"query": "Python", "language": "en"}, ToolContext(), no_report)


class TestWeather:
    @pytest.mark.asyncio
    async def test_missing_key_is_a_failed_result(self):
        """A missing weather key is a failed result."""
        executor = ToolExecutor({"get_weather": WeatherLookup(None)})

        result = await executor.execute_one("get_weather", {"city": "Seoul"})

        assert result.success is False
        assert "API key" in result.error

    @pytest.mark.asyncio
    async def test_city_lookup(self):
        """A city lookup returns the current conditions."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            if request.url.path == "/geo/1.0/direct":
                return httpx.Response(200, json=[{"lat": 37.57, "lon": 126.98}])
            assert request.url.params["units"] == "standard"
            return httpx.Response(
                200,
                json={
                    "name": "Seoul",
                    "sys": {"country": "KR"},
                    "main": {"temp": 291.6, "feels_like": 290.2, "humidity": 60},
                    "wind": {"speed": 2.1, "deg": 180},
                    "weather": [{"description": "clear sky"}],
                },
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            tool = WeatherLookup("owm-key", client=client)

            payload = await tool({"city": "Seoul", "units": "kelvin"}, ToolContext(), no_report)

        assert seen == ["/geo/1.0/direct", "/data/2.5/weather"]
        assert payload["location"]["name"] == "Seoul"
        assert payload["current"]["temperature"] == 292
        assert payload["units"] == "kelvin"

    @pytest.mark.asyncio
    async def test_ip_lookup_failure(self):
        """A failed IP geolocation is reported."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "fail", "message": "private range"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            tool = WeatherLookup("owm-key", client=client)

            with pytest.raises(ToolExecutionError, match="private range"):
                await tool({}, ToolContext(client_ip="10.0.0.1"), no_report)
