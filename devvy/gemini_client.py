"""
Gemini Gateway

Talks to the Gemini REST API (generativelanguage.googleapis.com) with httpx.

Gemini is function-call oriented, so this gateway translates:
- assistant messages      -> role "model"
- system messages         -> role "user"
- assistant tool calls    -> functionCall parts
- tool results            -> functionResponse parts
- functionCall responses  -> ToolCall with synthesised ids "<name>-<n>"
"""

import json
import logging
from typing import AsyncGenerator, Optional

import httpx

from .errors import APIError, LLMError, ToolError
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
from .openai_client import raise_for_status

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.0-flash-exp"


def function_name_from_call_id(call_id: str) -> str:
    """Recover the function name from a synthesised "<name>-<n>" id."""
    name, sep, counter = call_id.rpartition("-")
    if sep and counter.isdigit():
        return name
    return call_id


def format_contents(messages: list[LLMMessage]) -> list[dict]:
    """Convert provider-neutral messages into Gemini `contents`."""
    contents = []

    for message in messages:
        parts = []

        if message.role == "tool" and message.tool_call_id:
            parts.append({
                "functionResponse": {
                    "name": function_name_from_call_id(message.tool_call_id),
                    "response": {"content": message.content or ""},
                }
            })
        else:
            if message.content:
                parts.append({"text": message.content})

            for tc in message.tool_calls or []:
                try:
                    args = json.loads(tc.arguments) if tc.arguments else {}
                except json.JSONDecodeError as e:
                    raise ToolError(f"Failed to parse tool arguments: {e}", tc.name) from e
                parts.append({"functionCall": {"name": tc.name, "args": args}})

        if not parts:
            continue

        if message.role == "assistant":
            role = "model"
        else:
            role = "user"
        contents.append({"role": role, "parts": parts})

    return contents


def format_tools(tools: Optional[list[dict]]) -> Optional[list[dict]]:
    """Convert an OpenAI-style tool manifest into Gemini functionDeclarations."""
    if not tools:
        return None
    declarations = []
    for tool in tools:
        function = tool.get("function", {})
        declarations.append({
            "name": function.get("name"),
            "description": function.get("description", ""),
            "parameters": function.get("parameters", {"type": "object", "properties": {}}),
        })
    return [{"functionDeclarations": declarations}]


class GeminiClient(LLMClient):
    """
    Gateway for Google Gemini.

    Usage:
        async with GeminiClient(api_key="...", model="gemini-2.0-flash-exp") as client:
            response = await client.chat([LLMMessage("user", "Hello!")])
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        super().__init__(api_key=api_key, model=model, **kwargs)
        self.base_url = (base_url or GEMINI_BASE_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._retired: list[httpx.AsyncClient] = []

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
                headers={
                    "x-goog-api-key": self.api_key or "",
                    "Content-Type": "application/json",
                },
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

    def _build_payload(self, messages: list[LLMMessage], temperature: float, tools: Optional[list[dict]]) -> dict:
        payload = {
            "contents": format_contents(messages),
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": self.max_tokens,
            },
        }
        gemini_tools = format_tools(tools)
        if gemini_tools:
            payload["tools"] = gemini_tools
        return payload

    @staticmethod
    def _parts(data: dict) -> list[dict]:
        candidates = data.get("candidates") or []
        if not candidates:
            return []
        return (candidates[0].get("content") or {}).get("parts") or []

    async def _complete(self, messages, temperature, tools) -> ChatResponse:
        client = await self._get_client()
        response = await client.post(
            f"/models/{self.model}:generateContent",
            json=self._build_payload(messages, temperature, tools),
        )
        raise_for_status(response)
        data = response.json()

        if "error" in data:
            raise APIError(f"API error: {data['error']}")

        if not data.get("candidates"):
            raise LLMError("No response from LLM", {"model": self.model})

        text_parts = []
        tool_calls = []
        for part in self._parts(data):
            if part.get("text"):
                text_parts.append(part["text"])
            if part.get("functionCall"):
                call = part["functionCall"]
                tool_calls.append(ToolCall(
                    id=f"{call['name']}-{len(tool_calls)}",
                    name=call["name"],
                    arguments=json.dumps(call.get("args") or {}),
                ))

        content = "".join(text_parts)
        if not content and not tool_calls:
            raise LLMError("No response from LLM", {"model": self.model})

        usage = None
        metadata = data.get("usageMetadata")
        if metadata:
            usage = TokenUsage(
                prompt_tokens=metadata.get("promptTokenCount", 0),
                completion_tokens=metadata.get("candidatesTokenCount", 0),
                total_tokens=metadata.get("totalTokenCount", 0),
            )

        return ChatResponse(
            content=content,
            model=self.model,
            tool_calls=tool_calls or None,
            usage=usage,
            finish_reason=data["candidates"][0].get("finishReason"),
        )

    async def _stream_completion(self, messages, temperature, tools) -> AsyncGenerator[StreamItem, None]:
        client = await self._get_client()
        tool_calls: list[ToolCall] = []

        async with client.stream(
            "POST",
            f"/models/{self.model}:streamGenerateContent",
            params={"alt": "sse"},
            json=self._build_payload(messages, temperature, tools),
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                raise_for_status(response)

            async for line in response.aiter_lines():
                if not line or not line.startswith("data: "):
                    continue

                try:
                    data = json.loads(line[6:])
                except json.JSONDecodeError:
                    logger.debug(f"Skipping undecodable stream line: {line[:100]}")
                    continue

                if "error" in data:
                    raise APIError(f"Stream error: {data['error']}")

                for part in self._parts(data):
                    if part.get("text"):
                        yield part["text"]
                    if part.get("functionCall"):
                        call = part["functionCall"]
                        # Counter keeps ids unique for repeated calls to one function
                        tool_calls.append(ToolCall(
                            id=f"{call['name']}-{len(tool_calls)}",
                            name=call["name"],
                            arguments=json.dumps(call.get("args") or {}),
                        ))

        if tool_calls:
            yield ToolCallBatch(tool_calls)

    async def _list_models(self) -> list[ModelInfo]:
        client = await self._get_client()
        response = await client.get("/models")
        raise_for_status(response)
        data = response.json()

        models = []
        for m in data.get("models", []):
            name = m.get("name", "")
            if not name:
                continue
            models.append(ModelInfo(id=name.removeprefix("models/"), owned_by="google"))
        return models
