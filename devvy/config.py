"""
Devvy Configuration System

Configure via:
1. Environment variables (DEVVY_* and the provider key variables)
2. Config file (devvy.config.json or .devvy/config.json)
3. Direct code configuration

Priority: Direct code > Environment variables > Config file > Defaults

Example config file (devvy.config.json):
{
    "api_provider": "openrouter",
    "model": "anthropic/claude-3.5-sonnet",
    "max_review_cycles": 2
}

Example environment variables:
    DEVVY_PROVIDER=gemini
    GEMINI_API_KEY=...
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

load_dotenv()


API_PROVIDERS = ("openai", "anthropic", "openrouter", "gemini", "custom")

ALL_AGENT_ROLES = ("coder", "critic", "debugger", "architect", "enduser", "questioner", "asker")

# Provider defaults: base URL (None = SDK/provider default), model, key variable
PROVIDER_CONFIG: dict[str, dict] = {
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "default_model": "gpt-4o",
        "env_var": "OPENAI_API_KEY",
        "display_name": "OpenAI",
    },
    "anthropic": {
        "base_url": "https://api.anthropic.com/v1",
        "default_model": "claude-3-5-sonnet-20241022",
        "env_var": "ANTHROPIC_API_KEY",
        "display_name": "Anthropic",
    },
    "openrouter": {
        "base_url": "https://openrouter.ai/api/v1",
        "default_model": "anthropic/claude-3.5-sonnet",
        "env_var": "OPENROUTER_API_KEY",
        "display_name": "OpenRouter",
    },
    "gemini": {
        "base_url": None,
        "default_model": "gemini-2.0-flash-exp",
        "env_var": "GEMINI_API_KEY",
        "display_name": "Google Gemini",
    },
    "custom": {
        "base_url": None,
        "default_model": "gpt-4o",
        "env_var": "API_KEY",
        "display_name": "Custom Provider",
    },
}


def _env_bool(name: str) -> bool:
    return os.getenv(name, "").lower() in ("true", "1", "yes")


@dataclass
class DevvyConfig:
    """
    Configuration for Devvy.

    Attributes:
        api_provider: One of API_PROVIDERS. Selects the gateway implementation.

        api_key: Stored API key. The provider's environment variable wins
            over this value (see resolved_api_key).

        api_base_url: Override for the provider base URL.

        model: Model identifier sent to the provider.

        max_review_cycles: Upper bound for the Critic/Coder review protocol.

        enabled_agents: Roles the orchestrator is allowed to run.

        max_tool_iterations: Model calls allowed per agent turn.

        auto_answer_questions: Route detected questions to the Questioner.
    """
    # Provider / credentials
    api_provider: str = "openai"
    api_key: Optional[str] = None
    api_base_url: Optional[str] = None
    model: str = "gpt-4o"

    # Request settings
    max_tokens: int = 4000
    request_timeout: float = 120.0

    # Orchestration
    max_review_cycles: int = 3
    enabled_agents: list[str] = field(default_factory=lambda: list(ALL_AGENT_ROLES))
    max_tool_iterations: int = 10
    auto_answer_questions: bool = True

    # Tools
    shell_timeout: float = 60.0

    # Debug settings
    debug_logging: bool = False
    debug_dir: str = ".devvy"

    @property
    def resolved_api_key(self) -> Optional[str]:
        """
        API key lookup order:
        1. The selected provider's environment variable
        2. Any provider environment variable
        3. The stored api_key
        """
        provider = PROVIDER_CONFIG.get(self.api_provider)
        if provider and os.getenv(provider["env_var"]):
            return os.getenv(provider["env_var"])

        for settings in PROVIDER_CONFIG.values():
            if os.getenv(settings["env_var"]):
                return os.getenv(settings["env_var"])

        return self.api_key

    @property
    def resolved_base_url(self) -> Optional[str]:
        """Configured base URL or the provider default."""
        if self.api_base_url:
            return self.api_base_url
        provider = PROVIDER_CONFIG.get(self.api_provider)
        return provider["base_url"] if provider else None

    @property
    def provider_display_name(self) -> str:
        provider = PROVIDER_CONFIG.get(self.api_provider)
        return provider["display_name"] if provider else self.api_provider

    def has_api_key(self) -> bool:
        return bool(self.resolved_api_key)

    def validate(self) -> list[str]:
        """
        Check the configuration.

        Returns:
            List of human-readable problems (empty when valid)
        """
        errors = []

        if self.api_provider not in API_PROVIDERS:
            errors.append(f"api_provider must be one of {', '.join(API_PROVIDERS)}, got {self.api_provider!r}")

        key = self.resolved_api_key
        if not key:
            errors.append("api_key is required")
        elif len(key) < 10 or " " in key:
            errors.append("api_key looks malformed (expected at least 10 characters and no spaces)")

        if not self.model or len(self.model) > 100:
            errors.append("model must be between 1 and 100 characters long")

        if self.api_base_url:
            parsed = urlparse(self.api_base_url)
            if not parsed.scheme or not parsed.netloc:
                errors.append("api_base_url: Invalid URL format")

        unknown = [r for r in self.enabled_agents if r not in ALL_AGENT_ROLES]
        if unknown:
            errors.append(f"enabled_agents contains unknown roles: {', '.join(unknown)}")

        if self.max_review_cycles < 1:
            errors.append("max_review_cycles must be at least 1")

        if self.max_tool_iterations < 1:
            errors.append("max_tool_iterations must be at least 1")

        return errors

    @classmethod
    def from_env(cls) -> 'DevvyConfig':
        """Load configuration from environment variables."""
        config = cls()

        if os.getenv("DEVVY_PROVIDER"):
            config.api_provider = os.getenv("DEVVY_PROVIDER")
            config.model = PROVIDER_CONFIG.get(config.api_provider, {}).get("default_model", config.model)

        if os.getenv("DEVVY_MODEL"):
            config.model = os.getenv("DEVVY_MODEL")

        if os.getenv("DEVVY_BASE_URL"):
            config.api_base_url = os.getenv("DEVVY_BASE_URL")

        if os.getenv("DEVVY_MAX_REVIEW_CYCLES"):
            try:
                config.max_review_cycles = int(os.getenv("DEVVY_MAX_REVIEW_CYCLES"))
            except ValueError:
                pass

        if os.getenv("DEVVY_MAX_TOOL_ITERATIONS"):
            try:
                config.max_tool_iterations = int(os.getenv("DEVVY_MAX_TOOL_ITERATIONS"))
            except ValueError:
                pass

        if os.getenv("DEVVY_DEBUG"):
            config.debug_logging = _env_bool("DEVVY_DEBUG")

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'DevvyConfig':
        """Load configuration from a JSON file."""
        config = cls()

        if not path.exists():
            return config

        try:
            with open(path, 'r') as f:
                data = json.load(f)

            if "api_provider" in data:
                config.api_provider = str(data["api_provider"])
                config.model = PROVIDER_CONFIG.get(config.api_provider, {}).get("default_model", config.model)

            if "api_key" in data:
                config.api_key = str(data["api_key"])

            if "api_base_url" in data:
                config.api_base_url = str(data["api_base_url"])

            if "model" in data:
                config.model = str(data["model"])

            if "max_tokens" in data:
                config.max_tokens = int(data["max_tokens"])

            if "request_timeout" in data:
                config.request_timeout = float(data["request_timeout"])

            if "max_review_cycles" in data:
                config.max_review_cycles = int(data["max_review_cycles"])

            if "enabled_agents" in data:
                config.enabled_agents = [str(r) for r in data["enabled_agents"]]

            if "max_tool_iterations" in data:
                config.max_tool_iterations = int(data["max_tool_iterations"])

            if "auto_answer_questions" in data:
                config.auto_answer_questions = bool(data["auto_answer_questions"])

            if "shell_timeout" in data:
                config.shell_timeout = float(data["shell_timeout"])

            if "debug_logging" in data:
                config.debug_logging = bool(data["debug_logging"])

            if "debug_dir" in data:
                config.debug_dir = str(data["debug_dir"])

        except (json.JSONDecodeError, ValueError, TypeError):
            # Invalid config file, use defaults
            pass

        return config

    @classmethod
    def load(cls, project_path: Optional[Path] = None) -> 'DevvyConfig':
        """
        Load configuration from all sources (file, env, defaults).

        Priority: Environment variables > Config file > Defaults

        Args:
            project_path: Directory to look for config files in

        Returns:
            Merged configuration
        """
        config = cls()

        if project_path:
            config_paths = [
                project_path / "devvy.config.json",
                project_path / ".devvy" / "config.json",
            ]
            for config_path in config_paths:
                if config_path.exists():
                    config = cls.from_file(config_path)
                    break

        env_config = cls.from_env()

        if os.getenv("DEVVY_PROVIDER"):
            config.api_provider = env_config.api_provider
            config.model = env_config.model

        if os.getenv("DEVVY_MODEL"):
            config.model = env_config.model

        if os.getenv("DEVVY_BASE_URL"):
            config.api_base_url = env_config.api_base_url

        if os.getenv("DEVVY_MAX_REVIEW_CYCLES"):
            config.max_review_cycles = env_config.max_review_cycles

        if os.getenv("DEVVY_MAX_TOOL_ITERATIONS"):
            config.max_tool_iterations = env_config.max_tool_iterations

        if os.getenv("DEVVY_DEBUG"):
            config.debug_logging = env_config.debug_logging

        return config

    def to_dict(self, hide_secrets: bool = False) -> dict:
        """Convert config to dictionary."""
        api_key = self.api_key
        if hide_secrets:
            api_key = "***hidden***" if self.resolved_api_key else None
        return {
            "api_provider": self.api_provider,
            "api_key": api_key,
            "api_base_url": self.api_base_url,
            "model": self.model,
            "max_tokens": self.max_tokens,
            "request_timeout": self.request_timeout,
            "max_review_cycles": self.max_review_cycles,
            "enabled_agents": list(self.enabled_agents),
            "max_tool_iterations": self.max_tool_iterations,
            "auto_answer_questions": self.auto_answer_questions,
            "shell_timeout": self.shell_timeout,
            "debug_logging": self.debug_logging,
            "debug_dir": self.debug_dir,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


# Global config instance (can be overridden)
_global_config: Optional[DevvyConfig] = None


def get_config(project_path: Optional[Path] = None) -> DevvyConfig:
    """Get the current configuration."""
    global _global_config
    if _global_config is None:
        _global_config = DevvyConfig.load(project_path)
    return _global_config


def set_config(config: DevvyConfig):
    """Set the global configuration."""
    global _global_config
    _global_config = config


def reset_config():
    """Reset configuration to reload from sources."""
    global _global_config
    _global_config = None
