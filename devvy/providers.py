"""
Gateway factory.

The only place that looks at `api_provider`. Everything downstream talks
to the LLMClient contract.
"""

import logging
from typing import Optional

import httpx

from .config import DevvyConfig, PROVIDER_CONFIG, API_PROVIDERS
from .errors import ConfigError
from .gemini_client import GeminiClient
from .llm_client import LLMClient
from .openai_client import OpenAICompatibleClient

logger = logging.getLogger(__name__)

OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://github.com/devvy-cli",
    "X-Title": "Devvy",
}


def create_llm_client(
    config: DevvyConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> LLMClient:
    """
    Build the gateway for the configured provider.

    Args:
        config: Provider, credentials, model and request settings
        transport: Optional httpx transport (tests pass httpx.MockTransport)

    Raises:
        ConfigError: unknown provider
    """
    provider = config.api_provider
    if provider not in API_PROVIDERS:
        raise ConfigError(
            f"Unknown API provider: {provider}",
            {"api_provider": provider, "supported": list(API_PROVIDERS)},
        )

    api_key = config.resolved_api_key
    logger.debug(f"Creating {PROVIDER_CONFIG[provider]['display_name']} gateway for model {config.model}")

    if provider == "gemini":
        return GeminiClient(
            api_key=api_key,
            model=config.model,
            base_url=config.api_base_url,
            timeout=config.request_timeout,
            max_tokens=config.max_tokens,
            transport=transport,
        )

    extra_headers = OPENROUTER_HEADERS if provider == "openrouter" else None
    return OpenAICompatibleClient(
        api_key=api_key,
        model=config.model,
        base_url=config.resolved_base_url,
        timeout=config.request_timeout,
        max_tokens=config.max_tokens,
        extra_headers=extra_headers,
        transport=transport,
    )
