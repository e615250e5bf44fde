"""Tests for the model gateways."""

import json

import httpx
import pytest

from devvy.config import DevvyConfig
from devvy.errors import APIError, CircuitOpenError, ConfigError, LLMError
from devvy.gemini_client import (
    GeminiClient,
    format_contents,
    format_tools,
    function_name_from_call_id,
)
from devvy.llm_client import (
    ChatResponse,
    LLMMessage,
    ModelInfo,
    ScriptedLLMClient,
    TokenUsage,
    ToolCall,
    ToolCallBatch,
    chat_retryable,
)
from devvy.openai_client import OpenAICompatibleClient
from devvy.providers import OPENROUTER_HEADERS, create_llm_client
from devvy.retry import CircuitBreaker, CircuitState

READ_FILE_TOOL = {
    "type": "function",
    "function": {
        "name": "read_file",
        "description": "Read a file",
        "parameters": {"type": "object", "properties": {"path": {"type": "string"}}},
    },
}


def sse(*events) -> bytes:
    lines = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode()


async def collect(stream) -> list:
    return [item async for item in stream]


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestToolCall:
    """ToolCall helpers."""

    def test_parse_arguments(self):
        assert ToolCall("c1", "read_file", '{"path": "a.py"}').parse_arguments() == {"path": "a.py"}
        assert ToolCall("c1", "read_file", "").parse_arguments() == {}

    def test_parse_arguments_rejects_non_object(self):
        with pytest.raises(ValueError):
            ToolCall("c1", "read_file", "[1, 2]").parse_arguments()
        with pytest.raises(ValueError):
            ToolCall("c1", "read_file", "{not json").parse_arguments()

    def test_dict_round_trip(self):
        call = ToolCall("c1", "bash", '{"command": "ls"}')
        data = call.to_dict()

        assert data["function"] == {"name": "bash", "arguments": '{"command": "ls"}'}
        assert ToolCall.from_dict(data) == call

    def test_message_to_dict(self):
        assert LLMMessage("user", "hi").to_dict() == {"role": "user", "content": "hi"}
        tool_msg = LLMMessage("tool", "ok", tool_call_id="c1").to_dict()
        assert tool_msg["tool_call_id"] == "c1"

    def test_usage_add(self):
        total = TokenUsage(1, 2, 3).add(TokenUsage(10, 20, 30))
        assert total == TokenUsage(11, 22, 33)

    def test_chat_retryable(self):
        assert chat_retryable(Exception("Model overloaded"))
        assert chat_retryable(APIError("API request failed: 503 Service Unavailable"))
        assert not chat_retryable(APIError("API request failed: 400 Bad Request"))


class TestScriptedGateway:
    """Resilience behaviour through the base class."""

    @pytest.mark.asyncio
    async def test_plain_reply(self, no_sleep):
        client = ScriptedLLMClient(["Hello"], sleep=no_sleep)
        response = await client.chat([LLMMessage("user", "hi")])

        assert response.content == "Hello"
        assert client.calls[0]["temperature"] == 0.7
        assert client.calls[0]["tools"] is None

    @pytest.mark.asyncio
    async def test_retries_rate_limit(self, no_sleep):
        """A rate-limit failure is retried and the next reply returned."""
        client = ScriptedLLMClient([RuntimeError("rate limit exceeded"), "Recovered"], sleep=no_sleep)
        response = await client.chat([LLMMessage("user", "hi")])

        assert response.content == "Recovered"
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_api_error(self, no_sleep):
        client = ScriptedLLMClient(
            [RuntimeError("connection reset")] * 3,
            sleep=no_sleep,
            breaker=CircuitBreaker(failure_threshold=10),
        )
        with pytest.raises(APIError) as exc_info:
            await client.chat([LLMMessage("user", "hi")])

        assert "LLM request failed" in str(exc_info.value)
        assert exc_info.value.context["attempts"] == 3

    @pytest.mark.asyncio
    async def test_empty_reply_is_llm_error(self, no_sleep):
        """An empty reply is not retried and surfaces as LLMError."""
        client = ScriptedLLMClient([ChatResponse(content="")], sleep=no_sleep)
        with pytest.raises(LLMError, match="No response from LLM"):
            await client.chat([LLMMessage("user", "hi")])
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_breaker_opens_and_blocks(self, no_sleep):
        """After the threshold the provider is not called at all."""
        client = ScriptedLLMClient([RuntimeError("connection refused")] * 3, sleep=no_sleep)

        with pytest.raises(APIError):
            await client.chat([LLMMessage("user", "hi")])
        assert client.breaker.state == CircuitState.OPEN

        client.responses = ["should not be used"]
        with pytest.raises(CircuitOpenError):
            await client.chat([LLMMessage("user", "hi")])
        assert len(client.calls) == 3

    @pytest.mark.asyncio
    async def test_stream_chunks_then_batch(self, no_sleep):
        """Text chunks arrive first; the tool batch is the last item."""
        call = ToolCall("c1", "read_file", '{"path": "a.py"}')
        client = ScriptedLLMClient(
            [ChatResponse(content="Hello", tool_calls=[call])],
            chunk_size=2,
            sleep=no_sleep,
        )
        items = await collect(client.chat_stream([LLMMessage("user", "hi")]))

        assert items[:-1] == ["He", "ll", "o"]
        assert isinstance(items[-1], ToolCallBatch)
        assert items[-1].tool_calls == [call]

    @pytest.mark.asyncio
    async def test_stream_retried_before_first_chunk(self, no_sleep):
        client = ScriptedLLMClient([RuntimeError("network unreachable"), "Hi"], sleep=no_sleep)
        items = await collect(client.chat_stream([LLMMessage("user", "hi")]))

        assert items == ["Hi"]
        assert client.breaker.failures == 0

    @pytest.mark.asyncio
    async def test_stream_retry_delay_has_jitter(self):
        delays = []

        async def sleep(delay):
            delays.append(delay)

        client = ScriptedLLMClient([RuntimeError("503 service unavailable"), "Hi"], sleep=sleep)
        items = await collect(client.chat_stream([LLMMessage("user", "hi")]))

        assert items == ["Hi"]
        assert len(delays) == 1
        assert 1.0 <= delays[0] <= 1.1

    @pytest.mark.asyncio
    async def test_abandoned_stream_frees_half_open_breaker(self, no_sleep):
        """Closing a half-open stream early lets the next request through."""
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30.0, clock=clock)
        client = ScriptedLLMClient(["Hello there", "Back"], chunk_size=2, sleep=no_sleep, breaker=breaker)
        breaker.record_failure()
        clock.advance(30.0)

        stream = client.chat_stream([LLMMessage("user", "hi")])
        assert await stream.__anext__() == "He"
        await stream.aclose()

        assert breaker.state == CircuitState.HALF_OPEN
        response = await client.chat([LLMMessage("user", "again")])

        assert response.content == "Back"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_stream_not_retried_after_output(self, no_sleep):
        class FailingMidStream(ScriptedLLMClient):
            async def _stream_completion(self, messages, temperature, tools):
                self.calls.append({"messages": messages})
                yield "partial"
                raise RuntimeError("connection reset")

        client = FailingMidStream(sleep=no_sleep)
        items = []
        with pytest.raises(APIError):
            async for item in client.chat_stream([LLMMessage("user", "hi")]):
                items.append(item)

        assert items == ["partial"]
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_fetch_models_sorted(self, no_sleep):
        client = ScriptedLLMClient(
            models=[ModelInfo("zeta"), ModelInfo("alpha"), ModelInfo("mid")],
            sleep=no_sleep,
        )
        models = await client.fetch_models()
        assert [m.id for m in models] == ["alpha", "mid", "zeta"]

    @pytest.mark.asyncio
    async def test_missing_key_is_config_error(self):
        """A gateway that needs a key fails before any network traffic."""
        def handler(request):
            raise AssertionError("no request expected")

        client = OpenAICompatibleClient(api_key=None, transport=httpx.MockTransport(handler))
        with pytest.raises(ConfigError):
            await client.chat([LLMMessage("user", "hi")])
        with pytest.raises(ConfigError):
            await collect(client.chat_stream([LLMMessage("user", "hi")]))
        await client.close()


class TestOpenAICompatibleClient:
    """OpenAI-style chat completions over a mock transport."""

    @pytest.mark.asyncio
    async def test_chat_payload_and_response(self, no_sleep):
        seen = []

        def handler(request: httpx.Request):
            seen.append(request)
            return httpx.Response(200, json={
                "model": "gpt-4o",
                "choices": [{"message": {"content": "Hi there"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
            })

        client = OpenAICompatibleClient(
            api_key="sk-test-123456",
            transport=httpx.MockTransport(handler),
            sleep=no_sleep,
        )
        response = await client.chat([LLMMessage("user", "hi")], tools=[READ_FILE_TOOL])
        await client.close()

        request = seen[0]
        body = json.loads(request.content)
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test-123456"
        assert body["max_tokens"] == 4000
        assert body["temperature"] == 0.7
        assert body["stream"] is False
        assert body["tools"] == [READ_FILE_TOOL]
        assert response.content == "Hi there"
        assert response.usage.total_tokens == 7

    @pytest.mark.asyncio
    async def test_tool_calls_in_reply(self, no_sleep):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {
                "content": None,
                "tool_calls": [{
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "read_file", "arguments": '{"path": "a.py"}'},
                }],
            }}]})

        client = OpenAICompatibleClient(api_key="sk-test-123456", transport=httpx.MockTransport(handler), sleep=no_sleep)
        response = await client.chat([LLMMessage("user", "hi")])
        await client.close()

        assert response.content == ""
        assert response.tool_calls[0].name == "read_file"

    @pytest.mark.asyncio
    async def test_empty_choices(self, no_sleep):
        def handler(request):
            return httpx.Response(200, json={"choices": []})

        client = OpenAICompatibleClient(api_key="sk-test-123456", transport=httpx.MockTransport(handler), sleep=no_sleep)
        with pytest.raises(LLMError):
            await client.chat([LLMMessage("user", "hi")])
        await client.close()

    @pytest.mark.asyncio
    async def test_stream_accumulates_tool_deltas(self, no_sleep):
        """Argument fragments are joined per tool-call index."""
        body = sse(
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "id": "call_1", "function": {"name": "read_file", "arguments": '{"pa'}},
            ]}}]},
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "function": {"arguments": 'th": "a.py"}'}},
            ]}}]},
            "[DONE]",
        )

        def handler(request):
            assert json.loads(request.content)["stream"] is True
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        client = OpenAICompatibleClient(api_key="sk-test-123456", transport=httpx.MockTransport(handler), sleep=no_sleep)
        items = await collect(client.chat_stream([LLMMessage("user", "hi")]))
        await client.close()

        assert items[:2] == ["Hel", "lo"]
        batch = items[2]
        assert isinstance(batch, ToolCallBatch)
        assert batch.tool_calls[0].id == "call_1"
        assert batch.tool_calls[0].parse_arguments() == {"path": "a.py"}

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, no_sleep):
        responses = [
            httpx.Response(503, text="Service Unavailable"),
            httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}),
        ]

        def handler(request):
            return responses.pop(0)

        client = OpenAICompatibleClient(api_key="sk-test-123456", transport=httpx.MockTransport(handler), sleep=no_sleep)
        response = await client.chat([LLMMessage("user", "hi")])
        await client.close()

        assert response.content == "ok"
        assert responses == []

    @pytest.mark.asyncio
    async def test_unauthorized_is_not_retried(self, no_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, text="invalid api key")

        client = OpenAICompatibleClient(api_key="sk-test-123456", transport=httpx.MockTransport(handler), sleep=no_sleep)
        with pytest.raises(APIError) as exc_info:
            await client.chat([LLMMessage("user", "hi")])
        await client.close()

        assert len(calls) == 1
        assert exc_info.value.context["status_code"] == 401
        assert "401" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_list_models(self, no_sleep):
        def handler(request):
            assert request.url.path == "/v1/models"
            return httpx.Response(200, json={"data": [
                {"id": "gpt-4o", "owned_by": "openai"},
                {"id": "gpt-3.5-turbo", "owned_by": "openai"},
            ]})

        client = OpenAICompatibleClient(api_key="sk-test-123456", transport=httpx.MockTransport(handler), sleep=no_sleep)
        models = await client.fetch_models()
        await client.close()

        assert [m.id for m in models] == ["gpt-3.5-turbo", "gpt-4o"]

    @pytest.mark.asyncio
    async def test_reset_client_rebuilds(self, no_sleep):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"content": request.headers["Authorization"]}}]})

        client = OpenAICompatibleClient(api_key="sk-old-key-0001", transport=httpx.MockTransport(handler), sleep=no_sleep)
        first = await client.chat([LLMMessage("user", "hi")])
        old_http = client._client

        client.api_key = "sk-new-key-0002"
        client.reset_client()
        assert not old_http.is_closed
        second = await client.chat([LLMMessage("user", "hi")])

        assert old_http.is_closed
        assert client._retired == []
        await client.close()

        assert first.content == "Bearer sk-old-key-0001"
        assert second.content == "Bearer sk-new-key-0002"


class TestGeminiClient:
    """Gemini REST translation."""

    def test_format_contents(self):
        messages = [
            LLMMessage("system", "You are helpful"),
            LLMMessage("user", "Read a.py"),
            LLMMessage("assistant", None, tool_calls=[ToolCall("read_file-0", "read_file", '{"path": "a.py"}')]),
            LLMMessage("tool", "print(1)", tool_call_id="read_file-0"),
        ]
        contents = format_contents(messages)

        assert [c["role"] for c in contents] == ["user", "user", "model", "user"]
        assert contents[2]["parts"] == [{"functionCall": {"name": "read_file", "args": {"path": "a.py"}}}]
        assert contents[3]["parts"][0]["functionResponse"] == {
            "name": "read_file",
            "response": {"content": "print(1)"},
        }

    def test_function_name_from_call_id(self):
        assert function_name_from_call_id("read_file-3") == "read_file"
        assert function_name_from_call_id("call_abc") == "call_abc"

    def test_format_tools(self):
        declarations = format_tools([READ_FILE_TOOL])[0]["functionDeclarations"]
        assert declarations[0]["name"] == "read_file"
        assert format_tools(None) is None

    @pytest.mark.asyncio
    async def test_chat_synthesises_call_ids(self, no_sleep):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [
                    {"functionCall": {"name": "read_file", "args": {"path": "a.py"}}},
                    {"functionCall": {"name": "read_file", "args": {"path": "b.py"}}},
                ]}, "finishReason": "STOP"}],
                "usageMetadata": {"promptTokenCount": 3, "candidatesTokenCount": 4, "totalTokenCount": 7},
            })

        client = GeminiClient(api_key="gemini-key-123", transport=httpx.MockTransport(handler), sleep=no_sleep)
        response = await client.chat([LLMMessage("user", "hi")], tools=[READ_FILE_TOOL])
        await client.close()

        assert seen[0].url.path.endswith("/models/gemini-2.0-flash-exp:generateContent")
        assert seen[0].headers["x-goog-api-key"] == "gemini-key-123"
        assert [tc.id for tc in response.tool_calls] == ["read_file-0", "read_file-1"]
        assert response.usage.total_tokens == 7

    @pytest.mark.asyncio
    async def test_stream(self, no_sleep):
        body = sse(
            {"candidates": [{"content": {"parts": [{"text": "Hello "}]}}]},
            {"candidates": [{"content": {"parts": [{"text": "world"}]}}]},
        )

        def handler(request):
            assert request.url.params["alt"] == "sse"
            assert request.url.path.endswith(":streamGenerateContent")
            return httpx.Response(200, content=body)

        client = GeminiClient(api_key="gemini-key-123", transport=httpx.MockTransport(handler), sleep=no_sleep)
        items = await collect(client.chat_stream([LLMMessage("user", "hi")]))
        await client.close()

        assert items == ["Hello ", "world"]

    @pytest.mark.asyncio
    async def test_list_models_strips_prefix(self, no_sleep):
        def handler(request):
            return httpx.Response(200, json={"models": [
                {"name": "models/gemini-pro"},
                {"name": "models/gemini-2.0-flash-exp"},
            ]})

        client = GeminiClient(api_key="gemini-key-123", transport=httpx.MockTransport(handler), sleep=no_sleep)
        models = await client.fetch_models()
        await client.close()

        assert [m.id for m in models] == ["gemini-2.0-flash-exp", "gemini-pro"]
        assert all(m.owned_by == "google" for m in models)

    @pytest.mark.asyncio
    async def test_reset_client_closes_old_client(self, no_sleep):
        def handler(request):
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [
                {"text": request.headers["x-goog-api-key"]},
            ]}}]})

        client = GeminiClient(api_key="gemini-old-key-1", transport=httpx.MockTransport(handler), sleep=no_sleep)
        await client.chat([LLMMessage("user", "hi")])
        old_http = client._client

        client.api_key = "gemini-new-key-2"
        client.reset_client()
        response = await client.chat([LLMMessage("user", "hi")])

        assert response.content == "gemini-new-key-2"
        assert old_http.is_closed
        assert client._retired == []
        await client.close()


class TestProviderFactory:
    """create_llm_client()"""

    def test_gemini(self):
        client = create_llm_client(DevvyConfig(api_provider="gemini", api_key="k" * 12, model="gemini-pro"))
        assert isinstance(client, GeminiClient)
        assert client.model == "gemini-pro"

    def test_openrouter_headers(self):
        client = create_llm_client(DevvyConfig(api_provider="openrouter", api_key="k" * 12))
        assert isinstance(client, OpenAICompatibleClient)
        assert client.base_url == "https://openrouter.ai/api/v1"
        assert client.headers["X-Title"] == OPENROUTER_HEADERS["X-Title"]

    def test_custom_base_url(self):
        client = create_llm_client(DevvyConfig(api_provider="custom", api_base_url="http://localhost:8080/v1/"))
        assert client.base_url == "http://localhost:8080/v1"

    def test_unknown_provider(self):
        with pytest.raises(ConfigError):
            create_llm_client(DevvyConfig(api_provider="nope"))
