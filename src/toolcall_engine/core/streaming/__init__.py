"""Stream event models and the tool-call decoder."""

from .events import (
    STOP_REASON_KEY,
    STOP_REASON_STOP,
    STOP_REASON_TOOL_USE,
    ContentEvent,
    ErrorEvent,
    MetaEvent,
    ReasoningEvent,
    StreamEvent,
    StreamToolCall,
    StreamToolCallFunction,
    ToolCallEvent,
    parse_stream_event,
)
from .decoder import DecodedToolCall, StreamEventDecoder, decode_arguments

__all__ = [
    "STOP_REASON_KEY",
    "STOP_REASON_STOP",
    "STOP_REASON_TOOL_USE",
    "ContentEvent",
    "ErrorEvent",
    "MetaEvent",
    "ReasoningEvent",
    "StreamEvent",
    "StreamToolCall",
    "StreamToolCallFunction",
    "ToolCallEvent",
    "parse_stream_event",
    "DecodedToolCall",
    "StreamEventDecoder",
    "decode_arguments",
]
