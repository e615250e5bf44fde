"""
OpenAI-Compatible Gateway

Async client for any endpoint that speaks the OpenAI chat-completions
protocol (OpenAI, OpenRouter, Anthropic's compatibility layer, local
servers behind a custom base URL).

Features:
- Lazy httpx.AsyncClient, rebuilt after reset_client()
- SSE streaming with tool-call delta accumulation by index
- Retry + circuit breaker inherited from LLMClient
"""

import json
import logging
from typing import AsyncGenerator, Optional

import httpx

from .errors import APIError, LLMError
from .llm_client import (
    ChatResponse,
    LLMClient,
    LLMMessage,
    ModelInfo,
    StreamItem,
    TokenUsage,
    ToolCall,
    ToolCallBatch,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o"


def raise_for_status(response: httpx.Response):
    """Turn an HTTP error status into an APIError with a readable message."""
    if response.status_code < 400:
        return
    detail = response.text[:500]  # Truncate HTML garbage
    raise APIError(
        f"API request failed: {response.status_code} {response.reason_phrase} - {detail}",
        {"status_code": response.status_code},
    )


class OpenAICompatibleClient(LLMClient):
    """
    Gateway for OpenAI-style chat-completions endpoints.

    Usage:
        client = OpenAICompatibleClient(api_key="sk-...", model="gpt-4o")
        response = await client.chat([LLMMessage("user", "Hello!")])
        print(response.content)

        # Or with streaming:
        async for item in client.chat_stream([LLMMessage("user", "Hello!")]):
            if isinstance(item, str):
                print(item, end="", flush=True)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        extra_headers: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        super().__init__(api_key=api_key, model=model, **kwargs)
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.extra_headers = dict(extra_headers or {})
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._retired: list[httpx.AsyncClient] = []

    @property
    def headers(self) -> dict:
        """Get request headers."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(self.extra_headers)
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client, closing any retired by reset_client()."""
        retired, self._retired = self._retired, []
        for old in retired:
            if not old.is_closed:
                await old.aclose()
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=self.headers,
                transport=self._transport,
            )
        return self._client

    def reset_client(self):
        if self._client is not None:
            self._retired.append(self._client)
            self._client = None

    async def _close_client(self):
        clients = self._retired + ([self._client] if self._client else [])
        for client in clients:
            if not client.is_closed:
                await client.aclose()
        self._retired = []
        self._client = None

    def _build_payload(
        self,
        messages: list[LLMMessage],
        temperature: float,
        tools: Optional[list[dict]],
        stream: bool = False,
    ) -> dict:
        """Build the request payload."""
        payload = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "max_tokens": self.max_tokens,
            "temperature": temperature,
            "stream": stream,
        }
        if tools:
            payload["tools"] = tools
        return payload

    async def _complete(self, messages, temperature, tools) -> ChatResponse:
        client = await self._get_client()
        payload = self._build_payload(messages, temperature, tools)

        response = await client.post("/chat/completions", json=payload)
        raise_for_status(response)
        data = response.json()

        if "error" in data:
            raise APIError(f"API error: {data['error']}")

        choices = data.get("choices") or []
        if not choices or "message" not in choices[0]:
            raise LLMError("No response from LLM", {"model": self.model})

        choice = choices[0]
        message = choice["message"]
        tool_calls = [ToolCall.from_dict(tc) for tc in message.get("tool_calls") or []]
        content = message.get("content") or ""

        if not content and not tool_calls:
            raise LLMError("No response from LLM", {"model": self.model})

        return ChatResponse(
            content=content,
            model=data.get("model", self.model),
            tool_calls=tool_calls or None,
            usage=TokenUsage.from_dict(data["usage"]) if data.get("usage") else None,
            finish_reason=choice.get("finish_reason"),
        )

    async def _stream_completion(self, messages, temperature, tools) -> AsyncGenerator[StreamItem, None]:
        client = await self._get_client()
        payload = self._build_payload(messages, temperature, tools, stream=True)
        pending: dict[int, ToolCall] = {}

        async with client.stream("POST", "/chat/completions", json=payload) as response:
            if response.status_code >= 400:
                await response.aread()
                raise_for_status(response)

            async for line in response.aiter_lines():
                if not line or not line.startswith("data: "):
                    continue

                data_str = line[6:]  # Remove "data: " prefix

                if data_str == "[DONE]":
                    break

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.debug(f"Skipping undecodable stream line: {data_str[:100]}")
                    continue

                if "error" in data:
                    raise APIError(f"Stream error: {data['error']}")

                choices = data.get("choices") or []
                if not choices:
                    continue
                delta = choices[0].get("delta") or {}

                for tc in delta.get("tool_calls") or []:
                    index = tc.get("index", 0)
                    function = tc.get("function") or {}
                    existing = pending.get(index)
                    if existing:
                        existing.arguments += function.get("arguments") or ""
                    elif tc.get("id") and function.get("name"):
                        pending[index] = ToolCall(
                            id=tc["id"],
                            name=function["name"],
                            arguments=function.get("arguments") or "",
                        )

                content = delta.get("content")
                if content:
                    yield content

        if pending:
            yield ToolCallBatch([pending[i] for i in sorted(pending)])

    async def _list_models(self) -> list[ModelInfo]:
        client = await self._get_client()
        response = await client.get("/models")
        raise_for_status(response)
        data = response.json()
        return [
            ModelInfo(id=m["id"], owned_by=m.get("owned_by"))
            for m in data.get("data", [])
            if m.get("id")
        ]
