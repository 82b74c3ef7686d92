"""Export the engine exception hierarchy."""

from .exceptions import (
    ToolCallEngineError,
    LLMToolError,
    ToolRegistrationError,
    ToolNotFoundError,
    ToolExecutionError,
    ToolValidationError,
    ToolLoadError,
    StreamDecodeError,
    ProviderStreamError,
    InvalidToolCallError,
    InvalidStateTransitionError,
)

__all__ = [
    "ToolCallEngineError",
    "LLMToolError",
    "ToolRegistrationError",
    "ToolNotFoundError",
    "ToolExecutionError",
    "ToolValidationError",
    "ToolLoadError",
    "StreamDecodeError",
    "ProviderStreamError",
    "InvalidToolCallError",
    "InvalidStateTransitionError",
]
