"""
Devvy Error Taxonomy

Every error raised by the core derives from DevvyError and carries:
- a stable machine-readable code (CONFIG_ERROR, LLM_ERROR, ...)
- an optional context dict with details for logs

Propagation:
- Tool failures are contained and turned into ToolResult failures
- Gateway failures (ConfigError, LLMError, APIError) propagate to the caller
"""

from typing import Any, Optional


class DevvyError(Exception):
    """Base class for all Devvy errors."""

    def __init__(self, message: str, code: str = "DEVVY_ERROR", context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or {}

    def __str__(self) -> str:
        return self.message


class ConfigError(DevvyError):
    """Missing or invalid configuration (API key, provider, model)."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", context)


class LLMError(DevvyError):
    """Malformed or empty model response."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message, "LLM_ERROR", context)


class APIError(DevvyError):
    """Remote call failed after exhausting retries."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message, "API_ERROR", context)


class CircuitOpenError(APIError):
    """Raised instead of calling the remote while the circuit breaker is open."""

    def __init__(self, message: str = "Circuit breaker is open", context: Optional[dict[str, Any]] = None):
        super().__init__(message, context)


class AgentError(DevvyError):
    """An agent could not complete its turn."""

    def __init__(self, message: str, agent_role: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message, "AGENT_ERROR", context)
        self.agent_role = agent_role


class ToolError(DevvyError):
    """A specific tool invocation failed."""

    def __init__(self, message: str, tool_name: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message, "TOOL_ERROR", context)
        self.tool_name = tool_name


class FileSystemError(DevvyError):
    """Path-specific I/O failure."""

    def __init__(self, message: str, file_path: Optional[str] = None, context: Optional[dict[str, Any]] = None):
        super().__init__(message, "FILE_SYSTEM_ERROR", context)
        self.file_path = file_path


class ValidationError(DevvyError):
    """Malformed caller input."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", context)


def create_error_from_unknown(error: Any) -> DevvyError:
    """
    Wrap anything that was raised (or passed around) into a DevvyError.

    DevvyError instances are returned unchanged.
    """
    if isinstance(error, DevvyError):
        return error

    if isinstance(error, BaseException):
        return DevvyError(
            str(error) or type(error).__name__,
            "UNKNOWN_ERROR",
            {"original_error": type(error).__name__},
        )

    return DevvyError(str(error), "UNKNOWN_ERROR", {"original_error": error})
