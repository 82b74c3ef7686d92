"""Tool call lifecycle: approval gating, concurrent execution and result bounds."""

from .events import ToolCallEventType, ToolCallLifecycleEvent, ToolCallListener
from .result_limits import TRUNCATION_INDICATOR, limit_tool_result
from .tool_call_manager import ToolCallManager, tool_call_signature

__all__ = [
    "ToolCallEventType",
    "ToolCallLifecycleEvent",
    "ToolCallListener",
    "TRUNCATION_INDICATOR",
    "limit_tool_result",
    "ToolCallManager",
    "tool_call_signature",
]
