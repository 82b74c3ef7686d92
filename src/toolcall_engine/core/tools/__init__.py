from .models import (
    ToolCall,
    ToolCallError,
    ToolCallErrorCode,
    ToolCallRequest,
    ToolCallResult,
    ToolCallState,
    ToolCallTimestamps,
    ToolDefinition,
)
from .registry import SimpleToolRegistry, ToolRegistry
from .schema import build_parameters, sanitize_schema

__all__ = [
    "ToolCall",
    "ToolCallError",
    "ToolCallErrorCode",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolCallState",
    "ToolCallTimestamps",
    "ToolDefinition",
    "SimpleToolRegistry",
    "ToolRegistry",
    "build_parameters",
    "sanitize_schema",
]
