"""Public exports for the engine core."""

from .approval import (
    ApprovalDecision,
    ApprovalReason,
    ToolNameParts,
    canonical_tool_key,
    decide,
    is_mutating_tool,
    is_tool_allowlisted,
    requires_user_approval,
    split_tool_name,
)
from .config import ApprovalContext, ToolCallManagerSettings
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
from .logger import get_logger, setup_logging
from .messages import AssistantMessage, BaseMessage, SystemMessage, ToolMessage, UserMessage
from .tools import (
    SimpleToolRegistry,
    ToolCall,
    ToolCallError,
    ToolCallErrorCode,
    ToolCallRequest,
    ToolCallResult,
    ToolCallState,
    ToolDefinition,
    ToolRegistry,
)
from .streaming import DecodedToolCall, StreamEventDecoder, decode_arguments, parse_stream_event
from .tools.execution import ToolCallEventType, ToolCallLifecycleEvent, ToolCallManager
from .base import ModelClient, ModelRequest, TurnOutcome
from .turn import ConversationTurnController, TurnState

__all__ = [
    "ApprovalDecision",
    "ApprovalReason",
    "ToolNameParts",
    "canonical_tool_key",
    "decide",
    "is_mutating_tool",
    "is_tool_allowlisted",
    "requires_user_approval",
    "split_tool_name",
    "ApprovalContext",
    "ToolCallManagerSettings",
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
    "get_logger",
    "setup_logging",
    "AssistantMessage",
    "BaseMessage",
    "SystemMessage",
    "ToolMessage",
    "UserMessage",
    "SimpleToolRegistry",
    "ToolCall",
    "ToolCallError",
    "ToolCallErrorCode",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolCallState",
    "ToolDefinition",
    "ToolRegistry",
    "DecodedToolCall",
    "StreamEventDecoder",
    "decode_arguments",
    "parse_stream_event",
    "ToolCallEventType",
    "ToolCallLifecycleEvent",
    "ToolCallManager",
    "ModelClient",
    "ModelRequest",
    "TurnOutcome",
    "ConversationTurnController",
    "TurnState",
]
