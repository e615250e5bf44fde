"""
Devvy - Multi-Agent Coding Assistant

A team of LLM-backed personas (Coder, Critic, Debugger, Architect, End User,
Questioner, Asker) collaborating over one shared conversation.

Core pieces:
- ConversationStore: the shared, append-only message log
- LLMClient: provider-neutral model gateway with retry + circuit breaker
- ToolRegistry: shell and file tools the model can call
- Agent: the streaming text / tool-call loop
- Orchestrator: review cycles, brainstorming and question hand-off

Custom providers: subclass LLMClient and pass it to Orchestrator.from_config().
"""

__version__ = "0.1.0"

from .errors import (
    DevvyError,
    ConfigError,
    LLMError,
    APIError,
    CircuitOpenError,
    AgentError,
    ToolError,
    FileSystemError,
    ValidationError,
)
from .config import DevvyConfig, get_config, set_config, reset_config
from .conversation import ConversationStore, Message, CodeBlock
from .retry import retry, RetryOptions, RetryResult, CircuitBreaker, CircuitState
from .llm_client import (
    LLMClient,
    LLMMessage,
    ChatResponse,
    TokenUsage,
    ModelInfo,
    ToolCall,
    ToolCallBatch,
    ScriptedLLMClient,
)
from .openai_client import OpenAICompatibleClient
from .gemini_client import GeminiClient
from .providers import create_llm_client
from .tools import Tool, ToolResult, ToolRegistry, create_default_registry
from .question_detector import detect_questions, has_questions
from .agent import Agent, AgentConfig, AgentLoopState
from .personas import PERSONAS, create_agents
from .orchestrator import Orchestrator, OrchestratorConfig, AgentEvent, PhaseEvent, is_approved

__all__ = [
    # Errors
    "DevvyError",
    "ConfigError",
    "LLMError",
    "APIError",
    "CircuitOpenError",
    "AgentError",
    "ToolError",
    "FileSystemError",
    "ValidationError",

    # Configuration
    "DevvyConfig",
    "get_config",
    "set_config",
    "reset_config",

    # Conversation
    "ConversationStore",
    "Message",
    "CodeBlock",

    # Resilience
    "retry",
    "RetryOptions",
    "RetryResult",
    "CircuitBreaker",
    "CircuitState",

    # Model gateway
    "LLMClient",
    "LLMMessage",
    "ChatResponse",
    "TokenUsage",
    "ModelInfo",
    "ToolCall",
    "ToolCallBatch",
    "ScriptedLLMClient",
    "OpenAICompatibleClient",
    "GeminiClient",
    "create_llm_client",

    # Tools
    "Tool",
    "ToolResult",
    "ToolRegistry",
    "create_default_registry",

    # Agents
    "detect_questions",
    "has_questions",
    "Agent",
    "AgentConfig",
    "AgentLoopState",
    "PERSONAS",
    "create_agents",

    # Orchestration
    "Orchestrator",
    "OrchestratorConfig",
    "AgentEvent",
    "PhaseEvent",
    "is_approved",
]
