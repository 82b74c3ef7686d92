"""Tool-related data models."""

from .models import ToolDefinition
from .tool_call import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    ToolCall,
    ToolCallError,
    ToolCallErrorCode,
    ToolCallRequest,
    ToolCallResult,
    ToolCallState,
    ToolCallTimestamps,
)

__all__ = [
    "ToolDefinition",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATES",
    "ToolCall",
    "ToolCallError",
    "ToolCallErrorCode",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolCallState",
    "ToolCallTimestamps",
]
