"""Incremental decoder that assembles tool-call requests from streamed fragments."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from .events import (
    STOP_REASON_KEY,
    ContentEvent,
    ErrorEvent,
    MetaEvent,
    ReasoningEvent,
    StreamToolCall,
    ToolCallEvent,
    parse_stream_event,
)
from ..logger import get_logger
from ..tools.models import ToolCallRequest

logger = get_logger(__name__)


@dataclass(frozen=True)
class DecodedToolCall:
    """A finalized request plus the outcome of decoding its arguments.

    Attributes:
        request: The immutable request.
        arguments: Parsed arguments, or None when decoding failed.
        decode_error: Human-readable reason the arguments could not be decoded.
    """

    request: ToolCallRequest
    arguments: Optional[Dict[str, Any]]
    decode_error: Optional[str] = None


@dataclass
class _ArgumentBuffer:
    call_id: str
    index: int
    name: str = ""
    chunks: List[str] = field(default_factory=list)

    @property
    def arguments(self) -> str:
        return "".join(self.chunks)


def decode_arguments(raw_arguments: Optional[str]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """Decode a finalized argument payload.

    Empty payloads mean "no arguments". Anything else must be a JSON object.

    Returns:
        ``(arguments, None)`` on success, ``(None, error message)`` otherwise.
    """
    if raw_arguments is None or not raw_arguments.strip():
        return {}, None

    try:
        parsed = json.loads(raw_arguments)
    except json.JSONDecodeError as exc:
        return None, f"Invalid tool arguments JSON: {exc}"

    if parsed is None:
        return {}, None
    if not isinstance(parsed, dict):
        return None, f"Tool arguments must decode to a JSON object, got {type(parsed).__name__}."
    return parsed, None


class StreamEventDecoder:
    """Consumes the ordered event stream of one turn.

    Argument fragments are buffered per call id and never mixed across ids. A call
    is handed out once, when its ``final`` event arrives (or on :meth:`flush` for
    calls that only ever sent deltas). Content, reasoning, the stop reason and any
    error event are collected for the turn controller.
    """

    def __init__(self) -> None:
        self._buffers: Dict[str, _ArgumentBuffer] = {}
        self._ids_by_index: Dict[int, str] = {}
        self._emitted: Set[str] = set()
        self._content: List[str] = []
        self._reasoning: List[str] = []
        self.finalized: List[DecodedToolCall] = []
        self.stop_reason: Optional[str] = None
        self.meta: Dict[str, Any] = {}
        self.error: Optional[ErrorEvent] = None

    @property
    def content(self) -> str:
        return "".join(self._content)

    @property
    def reasoning(self) -> str:
        return "".join(self._reasoning)

    def feed(self, raw_event: Any) -> Optional[DecodedToolCall]:
        """Process one event.

        Args:
            raw_event: An event model or a raw dict in the transport's event shape.

        Returns:
            The decoded call when this event finalized one, else None.

        Raises:
            StreamDecodeError: If the event matches no known shape.
        """
        event = parse_stream_event(raw_event)

        if isinstance(event, ContentEvent):
            self._content.append(event.text)
        elif isinstance(event, ReasoningEvent):
            self._reasoning.append(event.text)
        elif isinstance(event, ToolCallEvent):
            if event.phase == "delta":
                self._on_delta(event.call)
                return None
            return self._on_final(event.call)
        elif isinstance(event, MetaEvent):
            self.meta[event.key] = event.value
            if event.key == STOP_REASON_KEY:
                self.stop_reason = None if event.value is None else str(event.value)
                logger.debug("Stop reason observed: %s", self.stop_reason)
        elif isinstance(event, ErrorEvent):
            logger.warning("Provider error event: %s", event.message)
            self.error = event
        return None

    def flush(self) -> List[DecodedToolCall]:
        """Finalize calls that streamed deltas but never a ``final`` event."""
        decoded: List[DecodedToolCall] = []
        for call_id in list(self._buffers):
            buffer = self._buffers.pop(call_id)
            logger.debug("Finalizing tool call '%s' from buffered deltas.", call_id)
            decoded.append(self._emit(call_id, buffer.name, buffer.arguments))
        return decoded

    def _resolve_id(self, call: StreamToolCall) -> str:
        if call.id:
            self._ids_by_index[call.index] = call.id
            return call.id
        # Continuation deltas commonly carry only the index. Calls that never get an
        # id are named randomly so they cannot collide with calls of other turns.
        if call.index not in self._ids_by_index:
            self._ids_by_index[call.index] = f"call_{uuid.uuid4().hex[:12]}"
        return self._ids_by_index[call.index]

    def _on_delta(self, call: StreamToolCall) -> None:
        call_id = self._resolve_id(call)
        if call_id in self._emitted:
            logger.debug("Ignoring delta for already finalized tool call '%s'.", call_id)
            return
        buffer = self._buffers.get(call_id)
        if buffer is None:
            buffer = _ArgumentBuffer(call_id=call_id, index=call.index)
            self._buffers[call_id] = buffer
        if call.function.name:
            buffer.name = call.function.name
        if call.function.arguments:
            buffer.chunks.append(call.function.arguments)

    def _on_final(self, call: StreamToolCall) -> Optional[DecodedToolCall]:
        call_id = self._resolve_id(call)
        if call_id in self._emitted:
            # A finalized request is immutable: later finals for the same id are dropped.
            logger.info("Duplicate final for tool call '%s' ignored; the first final is kept.", call_id)
            return None
        buffer = self._buffers.pop(call_id, None)
        name = call.function.name or (buffer.name if buffer else "")
        return self._emit(call_id, name, call.function.arguments)

    def _emit(self, call_id: str, name: str, raw_arguments: str) -> DecodedToolCall:
        arguments, error = decode_arguments(raw_arguments)
        if error:
            logger.warning("Tool call '%s' (%s) has undecodable arguments: %s", call_id, name, error)
        decoded = DecodedToolCall(
            request=ToolCallRequest(id=call_id, name=name, raw_arguments=raw_arguments),
            arguments=arguments,
            decode_error=error,
        )
        self._emitted.add(call_id)
        self.finalized.append(decoded)
        return decoded
