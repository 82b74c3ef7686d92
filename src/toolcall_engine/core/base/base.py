"""Seams between the turn controller and model transports."""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from ..messages import BaseMessage
from ..tools.models import ToolCall


class ModelRequest(BaseModel):
    """One request to the model.

    Attributes:
        messages: Full conversation history to send, oldest first.
        tools: Tool declarations the model may call, in the transport's format.
        turn_index: Zero for the user-initiated turn, incremented on every continuation.
    """

    messages: List[BaseMessage]
    tools: List[Dict[str, Any]] = Field(default_factory=list)
    turn_index: int = 0


@runtime_checkable
class ModelClient(Protocol):
    """Transport that streams a model response as engine stream events.

    Events may be event models or plain dicts of the same shape.
    """

    def stream(self, request: ModelRequest) -> AsyncIterator[Any]:
        """Start a streaming request and yield its events in order."""
        ...


@dataclass
class TurnOutcome:
    """Result of :meth:`ConversationTurnController.run`.

    Attributes:
        content: Assistant text of the last streamed turn.
        reasoning: Reasoning text of the last streamed turn.
        stop_reason: Stop reason that ended the run (None when aborted mid-stream).
        history: The conversation including every assistant and tool message produced.
        turns: Number of model invocations made.
        tool_calls: Snapshots of every tool call created during the run, in creation order.
        aborted: True when :meth:`ConversationTurnController.abort` ended the run.
    """

    content: str
    history: List[BaseMessage]
    turns: int
    reasoning: str = ""
    stop_reason: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    aborted: bool = False
