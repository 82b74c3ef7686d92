"""Stream events produced by model transports and consumed by the decoder."""

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from ..exceptions import StreamDecodeError

STOP_REASON_KEY = "stop-reason"
STOP_REASON_TOOL_USE = "toolUse"
STOP_REASON_STOP = "stop"


class StreamToolCallFunction(BaseModel):
    """The ``function`` part of a streamed tool call."""

    model_config = ConfigDict(extra="allow")

    name: str = ""
    arguments: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("arguments", mode="before")
    @classmethod
    def _coerce_arguments(cls, value: Any) -> str:
        # Some transports hand over already-parsed arguments
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)


class StreamToolCall(BaseModel):
    """A tool call fragment (delta) or the complete call (final)."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    index: int = 0
    type: Literal["function"] = "function"
    function: StreamToolCallFunction = Field(default_factory=StreamToolCallFunction)


class ReasoningEvent(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    text: str = ""


class ContentEvent(BaseModel):
    type: Literal["content"] = "content"
    text: str = ""


class ToolCallEvent(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    phase: Literal["delta", "final"]
    call: StreamToolCall


class MetaEvent(BaseModel):
    type: Literal["meta"] = "meta"
    key: str
    value: Any = None


class ErrorEvent(BaseModel):
    """Transport/provider failure for the active turn."""

    model_config = ConfigDict(extra="allow")

    type: Literal["error"] = "error"
    message: str = "Unknown provider error"
    code: Optional[str] = None
    details: Any = None


StreamEvent = Annotated[
    Union[ReasoningEvent, ContentEvent, ToolCallEvent, MetaEvent, ErrorEvent],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(StreamEvent)
_EVENT_TYPES = (ReasoningEvent, ContentEvent, ToolCallEvent, MetaEvent, ErrorEvent)


def parse_stream_event(raw: Any) -> Union[ReasoningEvent, ContentEvent, ToolCallEvent, MetaEvent, ErrorEvent]:
    """Turn a raw provider dict (or an event model) into a typed event.

    Raises:
        StreamDecodeError: If the payload matches no event shape.
    """
    if isinstance(raw, _EVENT_TYPES):
        return raw
    try:
        return _EVENT_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise StreamDecodeError(f"Unrecognised stream event: {exc}") from exc
