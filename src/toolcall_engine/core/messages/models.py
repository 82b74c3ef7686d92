"""Provider-agnostic message models for conversation history."""

from abc import ABC
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class BaseMessage(ABC, BaseModel):
    """Base model for messages exchanged with a model.

    Attributes:
        author: Role associated with the message.
        content: Text payload of the message.
    """

    author: str
    content: str


class SystemMessage(BaseMessage):
    """Message authored by the system to steer behavior."""

    author: str = "system"


class UserMessage(BaseMessage):
    """Message authored by an end user."""

    author: str = "user"


class AssistantMessage(BaseMessage):
    """Message authored by the assistant, optionally requesting tool calls.

    Attributes:
        tool_calls: OpenAI-style ``{"id", "type", "function": {"name", "arguments"}}``
            entries for every call the assistant requested in this turn.
        reasoning: Reasoning text streamed alongside the content, if any.
        message_id: Identifier the tool calls of this message are recorded under.
    """

    author: str = "assistant"
    tool_calls: Optional[List[Dict[str, Any]]] = None
    reasoning: Optional[str] = None
    message_id: Optional[str] = None


class ToolMessage(BaseMessage):
    """Result of one tool call, fed back to the model in a continuation request."""

    author: str = "tool"
    tool_call_id: str
    name: str
    is_error: bool = False
