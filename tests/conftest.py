"""Shared fixtures for devvy tests."""

import pytest

from devvy.conversation import ConversationStore
from devvy.llm_client import LLMMessage, ScriptedLLMClient
from devvy.personas import PERSONAS


async def _no_sleep(_delay):
    return None


@pytest.fixture
def no_sleep():
    """Awaitable sleep that returns immediately."""
    return _no_sleep


@pytest.fixture
def store():
    return ConversationStore()


def role_of(messages: list[LLMMessage]) -> str:
    """Which persona a request came from, judged by its system prompt."""
    system_prompt = messages[0].content
    for role, persona in PERSONAS.items():
        if persona.system_prompt == system_prompt:
            return role
    return "unknown"


@pytest.fixture
def persona_llm(no_sleep):
    """
    Factory for a ScriptedLLMClient that answers per persona.

    replies maps role -> reply text (or a callable taking the messages).
    Every request's role is appended to `client.roles`.
    """
    def factory(replies: dict, default: str = "OK."):
        roles = []

        def responder(messages):
            role = role_of(messages)
            roles.append(role)
            reply = replies.get(role, default)
            return reply(messages) if callable(reply) else reply

        client = ScriptedLLMClient(responder=responder, sleep=no_sleep)
        client.roles = roles
        return client

    return factory
