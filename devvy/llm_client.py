"""
Model Gateway Protocol

This module defines the interface every provider gateway implements and
the provider-neutral shapes agents work with. Providers only translate:

    list[LLMMessage] + tool manifest  ->  provider request
    provider response / stream        ->  ChatResponse / str chunks + ToolCallBatch

Resilience (retry + circuit breaker) lives here, in the base class, so
every provider gets the same behaviour.

Example of a custom gateway:

    from devvy.llm_client import LLMClient, ChatResponse

    class MyGateway(LLMClient):
        async def _complete(self, messages, temperature, tools):
            text = await my_internal_api.complete([m.to_dict() for m in messages])
            return ChatResponse(content=text, model="internal-model")

        async def _stream_completion(self, messages, temperature, tools):
            response = await self._complete(messages, temperature, tools)
            yield response.content

        async def _list_models(self):
            return [ModelInfo(id="internal-model")]
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Callable, Optional, Union

from .errors import APIError, ConfigError, DevvyError, LLMError
from .retry import CircuitBreaker, RetryOptions, default_retryable, retry

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4000

# Model-level failures that are worth another try on top of transport errors
CHAT_RETRY_PATTERNS = ("overloaded", "server error", "503", "502", "529")


def chat_retryable(error: BaseException) -> bool:
    if default_retryable(error):
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in CHAT_RETRY_PATTERNS)


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments: str  # JSON-encoded
    type: str = "function"

    def parse_arguments(self) -> dict:
        """
        Decode the JSON arguments.

        Raises:
            ValueError: if the arguments are not a JSON object
        """
        if not self.arguments or not self.arguments.strip():
            return {}
        data = json.loads(self.arguments)
        if not isinstance(data, dict):
            raise ValueError(f"Tool arguments must be a JSON object, got {type(data).__name__}")
        return data

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ToolCall':
        function = data.get("function", {})
        return cls(
            id=data.get("id", ""),
            name=function.get("name", ""),
            arguments=function.get("arguments", "") or "",
            type=data.get("type", "function"),
        )


@dataclass
class ToolCallBatch:
    """Trailing stream item carrying every tool call requested in the turn."""
    tool_calls: list[ToolCall]


StreamItem = Union[str, ToolCallBatch]


@dataclass
class LLMMessage:
    """A message as sent to the model."""
    role: str  # "system", "user", "assistant" or "tool"
    content: Optional[str]
    tool_call_id: Optional[str] = None
    tool_calls: Optional[list[ToolCall]] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return data


@dataclass
class TokenUsage:
    """Token usage statistics."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: 'TokenUsage') -> 'TokenUsage':
        """Add another TokenUsage to this one."""
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'TokenUsage':
        """Create from an OpenAI-style usage dict."""
        return cls(
            prompt_tokens=data.get('prompt_tokens', 0) or 0,
            completion_tokens=data.get('completion_tokens', 0) or 0,
            total_tokens=data.get('total_tokens', 0) or 0,
        )


@dataclass
class ChatResponse:
    """Normalized response from a chat completion."""
    content: str
    model: str = ""
    tool_calls: Optional[list[ToolCall]] = None
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None


@dataclass
class ModelInfo:
    """A model available to the configured credentials."""
    id: str
    owned_by: Optional[str] = None


class LLMClient(ABC):
    """
    Abstract base class for model gateways.

    Public contract (do not override):
    - chat(): single-shot completion, wrapped in retry + circuit breaker
    - chat_stream(): text chunks, then at most one ToolCallBatch
    - fetch_models(): available models sorted by id, wrapped in retry + breaker
    - reset_client(): drop cached HTTP handles (e.g. after a key change)

    Provider hooks (override):
    - _complete(), _stream_completion(), _list_models()
    - _close_client() if the provider holds resources
    """

    requires_api_key = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "",
        max_tokens: int = DEFAULT_MAX_TOKENS,
        breaker: Optional[CircuitBreaker] = None,
        chat_retry: Optional[RetryOptions] = None,
        models_retry: Optional[RetryOptions] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.breaker = breaker or CircuitBreaker(failure_threshold=3, recovery_timeout=30.0, name=type(self).__name__)
        self.chat_retry = chat_retry or RetryOptions(
            max_attempts=3, base_delay=1.0, max_delay=15.0, retryable_errors=chat_retryable,
        )
        self.models_retry = models_retry or RetryOptions(max_attempts=3, base_delay=2.0, max_delay=10.0)
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Provider hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _complete(
        self,
        messages: list[LLMMessage],
        temperature: float,
        tools: Optional[list[dict]],
    ) -> ChatResponse:
        """One provider round-trip. Raise on any failure."""

    @abstractmethod
    def _stream_completion(
        self,
        messages: list[LLMMessage],
        temperature: float,
        tools: Optional[list[dict]],
    ) -> AsyncGenerator[StreamItem, None]:
        """Async generator of text chunks and at most one trailing ToolCallBatch."""

    @abstractmethod
    async def _list_models(self) -> list[ModelInfo]:
        """Enumerate models for the configured credentials."""

    async def _close_client(self):
        pass

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def _require_api_key(self):
        if self.requires_api_key and not self.api_key:
            error = ConfigError(
                'API key not configured. Run "devvy --api-key <key>" or set the provider key variable.',
                {"missing_config": "api_key"},
            )
            logger.error(error.message)
            raise error

    async def chat(
        self,
        messages: list[LLMMessage],
        temperature: Optional[float] = None,
        tools: Optional[list[dict]] = None,
    ) -> ChatResponse:
        """
        Send a chat completion request (non-streaming).

        Args:
            messages: Conversation to send
            temperature: Sampling temperature (default 0.7)
            tools: Tool manifest (OpenAI function format) or None

        Returns:
            ChatResponse with content and/or tool calls

        Raises:
            ConfigError: no API key configured
            LLMError: the model returned no usable choice
            APIError: the remote call failed after retries
        """
        self._require_api_key()
        temp = DEFAULT_TEMPERATURE if temperature is None else temperature

        async def attempt() -> ChatResponse:
            return await self.breaker.execute(lambda: self._complete(messages, temp, tools))

        result = await retry(attempt, self.chat_retry, sleep=self._sleep)
        if result.success:
            return result.result

        raise self._wrap_failure(result.error, "chat.completions", result.attempts)

    async def chat_stream(
        self,
        messages: list[LLMMessage],
        temperature: Optional[float] = None,
        tools: Optional[list[dict]] = None,
    ) -> AsyncGenerator[StreamItem, None]:
        """
        Send a streaming chat completion request.

        Failures before the first item are retried with the chat retry
        options; once output has been yielded a failure propagates.

        Yields:
            Text chunks as they arrive, then at most one ToolCallBatch
        """
        self._require_api_key()
        temp = DEFAULT_TEMPERATURE if temperature is None else temperature
        opts = self.chat_retry
        attempt = 0

        while True:
            attempt += 1
            yielded = False

            if not self.breaker.allow_request():
                raise APIError(
                    "Circuit breaker is open",
                    {"circuit": self.breaker.name, "endpoint": "chat.stream"},
                )

            try:
                async for item in self._stream_completion(messages, temp, tools):
                    yielded = True
                    yield item
            except (asyncio.CancelledError, GeneratorExit):
                # Consumer stopped early: neither a success nor a failure
                self.breaker.release_trial()
                raise
            except Exception as e:
                self.breaker.record_failure(e)
                can_retry = (
                    not yielded
                    and attempt < opts.max_attempts
                    and opts.retryable_errors(e)
                )
                if not can_retry:
                    raise self._wrap_failure(e, "chat.stream", attempt) from e

                delay = opts.jittered_delay(attempt)
                logger.info(f"Retrying stream in {delay:.2f}s (attempt {attempt + 1}/{opts.max_attempts})")
                await self._sleep(delay)
                continue

            self.breaker.record_success()
            return

    async def fetch_models(self) -> list[ModelInfo]:
        """
        List models available to the configured provider.

        Raises:
            APIError: the listing failed after retries
        """
        self._require_api_key()

        async def attempt() -> list[ModelInfo]:
            return await self.breaker.execute(self._list_models)

        result = await retry(attempt, self.models_retry, sleep=self._sleep)
        if not result.success:
            error = APIError(
                f"Failed to fetch models: {result.error}",
                {
                    "original_error": type(result.error).__name__,
                    "endpoint": "models.list",
                    "attempts": result.attempts,
                },
            )
            logger.error(error.message)
            raise error

        return sorted(result.result, key=lambda m: m.id)

    def reset_client(self):
        """Invalidate cached provider handles; the next call rebuilds them."""

    async def close(self):
        """Clean up resources (close HTTP clients, etc.)"""
        await self._close_client()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _wrap_failure(self, error: Optional[BaseException], endpoint: str, attempts: int) -> DevvyError:
        context = {
            "model": self.model,
            "endpoint": endpoint,
            "attempts": attempts,
            "original_error": type(error).__name__ if error else None,
        }
        if isinstance(error, DevvyError):
            error.context.update(context)
            wrapped = error
        elif error is None:
            wrapped = LLMError("Unknown LLM error", context)
        else:
            wrapped = APIError(f"LLM request failed: {error}", context)
        logger.error(f"{endpoint} failed after {attempts} attempt(s): {wrapped.message}")
        return wrapped


# =============================================================================
# In-memory gateway
# =============================================================================

ScriptEntry = Union[str, ChatResponse, BaseException]


class ScriptedLLMClient(LLMClient):
    """
    Gateway that replays scripted responses instead of calling a provider.

    Useful for tests and offline demos. Each call consumes the next entry;
    a `responder` callable, if given, is used once the script runs out.

    Example:
        client = ScriptedLLMClient([
            ChatResponse(content="", tool_calls=[ToolCall("c1", "read_file", '{"path": "a.py"}')]),
            "The file looks fine.",
        ])
    """

    requires_api_key = False

    def __init__(
        self,
        responses: Optional[list[ScriptEntry]] = None,
        responder: Optional[Callable[[list[LLMMessage]], ScriptEntry]] = None,
        models: Optional[list[ModelInfo]] = None,
        chunk_size: int = 0,
        **kwargs,
    ):
        kwargs.setdefault("model", "scripted")
        super().__init__(**kwargs)
        self.responses = list(responses or [])
        self.responder = responder
        self.models = list(models or [ModelInfo(id="scripted", owned_by="devvy")])
        self.chunk_size = chunk_size
        self.calls: list[dict] = []

    def _next(self, messages: list[LLMMessage], temperature: float, tools: Optional[list[dict]]) -> ChatResponse:
        self.calls.append({"messages": list(messages), "temperature": temperature, "tools": tools})

        if self.responses:
            entry = self.responses.pop(0)
        elif self.responder is not None:
            entry = self.responder(messages)
        else:
            raise LLMError("No scripted response left", {"model": self.model})

        if isinstance(entry, BaseException):
            raise entry
        if isinstance(entry, str):
            return ChatResponse(content=entry, model=self.model, finish_reason="stop")
        return entry

    async def _complete(self, messages, temperature, tools) -> ChatResponse:
        response = self._next(messages, temperature, tools)
        if not response.content and not response.tool_calls:
            raise LLMError("No response from LLM", {"model": self.model})
        return response

    async def _stream_completion(self, messages, temperature, tools) -> AsyncGenerator[StreamItem, None]:
        response = self._next(messages, temperature, tools)
        content = response.content or ""
        if content:
            if self.chunk_size > 0:
                for i in range(0, len(content), self.chunk_size):
                    yield content[i:i + self.chunk_size]
            else:
                yield content
        if response.tool_calls:
            yield ToolCallBatch(list(response.tool_calls))

    async def _list_models(self) -> list[ModelInfo]:
        return list(self.models)
