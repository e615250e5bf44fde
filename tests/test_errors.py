"""Tests for the error taxonomy."""

import pytest

from devvy.errors import (
    AgentError,
    APIError,
    CircuitOpenError,
    ConfigError,
    DevvyError,
    FileSystemError,
    LLMError,
    ToolError,
    ValidationError,
    create_error_from_unknown,
)


@pytest.mark.parametrize("error, code", [
    (ConfigError("x"), "CONFIG_ERROR"),
    (LLMError("x"), "LLM_ERROR"),
    (APIError("x"), "API_ERROR"),
    (CircuitOpenError(), "API_ERROR"),
    (AgentError("x", "coder"), "AGENT_ERROR"),
    (ToolError("x", "bash"), "TOOL_ERROR"),
    (FileSystemError("x", "/tmp/a"), "FILE_SYSTEM_ERROR"),
    (ValidationError("x"), "VALIDATION_ERROR"),
])
def test_codes(error, code):
    assert isinstance(error, DevvyError)
    assert error.code == code


def test_context_and_message():
    error = APIError("boom", {"status_code": 500})
    assert str(error) == "boom"
    assert error.context == {"status_code": 500}
    assert ConfigError("x").context == {}


def test_specific_fields():
    assert AgentError("x", "critic").agent_role == "critic"
    assert ToolError("x", "bash").tool_name == "bash"
    assert FileSystemError("x", "/tmp/a").file_path == "/tmp/a"


class TestCreateErrorFromUnknown:
    def test_passes_devvy_errors_through(self):
        error = LLMError("x")
        assert create_error_from_unknown(error) is error

    def test_wraps_exceptions(self):
        wrapped = create_error_from_unknown(KeyError("missing"))
        assert wrapped.code == "UNKNOWN_ERROR"
        assert wrapped.context["original_error"] == "KeyError"

    def test_wraps_plain_values(self):
        wrapped = create_error_from_unknown("just a string")
        assert wrapped.message == "just a string"
