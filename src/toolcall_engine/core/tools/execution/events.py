"""Lifecycle notifications published by the tool call manager."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..models import ToolCall, ToolCallState


class ToolCallEventType(str, Enum):
    CREATED = "tool-call:created"
    STATE_CHANGED = "tool-call:state-changed"
    APPROVED = "tool-call:approved"
    DENIED = "tool-call:denied"
    EXECUTION_STARTED = "tool-call:execution-started"
    EXECUTION_COMPLETED = "tool-call:execution-completed"
    EXECUTION_FAILED = "tool-call:execution-failed"


@dataclass(frozen=True)
class ToolCallLifecycleEvent:
    """Payload handed to observers.

    Attributes:
        type: Which lifecycle point fired.
        tool_call: Snapshot of the call at that point. Mutating it has no effect on the manager.
        previous_state: The state left behind, for ``state-changed`` events.
    """

    type: ToolCallEventType
    tool_call: ToolCall
    previous_state: Optional[ToolCallState] = None


ToolCallListener = Callable[[ToolCallLifecycleEvent], None]
