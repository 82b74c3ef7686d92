"""
Exception hierarchy of the tool-call engine.

Tool-level failures (a tool raising, bad arguments, a denied approval) are never
raised out of the engine; they are folded into a failed ``ToolCall``. The classes
below cover what does propagate: registry misuse, provider stream errors and
violations of the call state machine.
"""

from typing import Any, Optional


class ToolCallEngineError(Exception):
    """Base exception for every error raised by the engine."""

    pass


class LLMToolError(ToolCallEngineError):
    """Base exception for tool registry and tool definition errors."""

    pass


class ToolLoadError(LLMToolError):
    """Raised when a tool source (e.g. an MCP server) cannot provide its tools."""

    pass


class ToolRegistrationError(LLMToolError):
    """Raised when there is an error registering a tool."""

    pass


class ToolNotFoundError(LLMToolError):
    """Raised when a requested tool is not found in the registry."""

    pass


class ToolExecutionError(LLMToolError):
    """Raised by executors or the engine to signal a recoverable tool failure."""

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details


class ToolValidationError(LLMToolError):
    """Raised when tool parameters or definition are invalid."""

    pass


class StreamDecodeError(ToolCallEngineError):
    """Raised when a stream event does not match any known event shape."""

    pass


class ProviderStreamError(ToolCallEngineError):
    """Raised when the model transport reports an error event for the active turn."""

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details


class InvalidToolCallError(ToolCallEngineError):
    """Raised when a tool-call request is structurally unusable (e.g. missing id)."""

    pass


class InvalidStateTransitionError(ToolCallEngineError):
    """Raised when a tool call would leave a terminal state or skip approval."""

    pass
