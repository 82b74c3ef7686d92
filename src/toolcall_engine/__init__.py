"""Tool-call orchestration engine: streamed tool calls, approval gating and concurrent execution."""

from .core import (
    ApprovalContext,
    AssistantMessage,
    ConversationTurnController,
    ModelClient,
    ModelRequest,
    SimpleToolRegistry,
    SystemMessage,
    ToolCall,
    ToolCallManager,
    ToolCallManagerSettings,
    ToolCallRequest,
    ToolCallState,
    ToolDefinition,
    ToolMessage,
    ToolRegistry,
    TurnOutcome,
    UserMessage,
)
from .llm_impl.openai_api import OpenAIStreamClient, OpenAIToolRegistry

__all__ = [
    "ApprovalContext",
    "AssistantMessage",
    "ConversationTurnController",
    "ModelClient",
    "ModelRequest",
    "SimpleToolRegistry",
    "SystemMessage",
    "ToolCall",
    "ToolCallManager",
    "ToolCallManagerSettings",
    "ToolCallRequest",
    "ToolCallState",
    "ToolDefinition",
    "ToolMessage",
    "ToolRegistry",
    "TurnOutcome",
    "UserMessage",
    "OpenAIStreamClient",
    "OpenAIToolRegistry",
]
