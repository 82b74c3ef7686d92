"""Streaming OpenAI chat completions transport for the turn controller."""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, cast

from openai import AsyncOpenAI, OpenAIError
from openai.types.chat import ChatCompletionChunk

from ...core.base import ModelRequest
from ...core.logger import get_logger
from ...core.messages import AssistantMessage, BaseMessage, SystemMessage, ToolMessage, UserMessage
from ...core.streaming import (
    STOP_REASON_KEY,
    STOP_REASON_STOP,
    STOP_REASON_TOOL_USE,
    ContentEvent,
    ErrorEvent,
    MetaEvent,
    ReasoningEvent,
    StreamToolCall,
    StreamToolCallFunction,
    ToolCallEvent,
)

logger = get_logger(__name__)

FINISH_REASON_MAP = {
    "tool_calls": STOP_REASON_TOOL_USE,
    "function_call": STOP_REASON_TOOL_USE,
    "stop": STOP_REASON_STOP,
}


@dataclass
class _PendingCall:
    index: int
    id: Optional[str] = None
    name: str = ""
    arguments: str = ""


class OpenAIStreamClient:
    """
    ``ModelClient`` backed by ``AsyncOpenAI`` streaming chat completions.

    Chunks are translated into engine stream events: text and reasoning deltas,
    ``tool-call`` deltas per fragment, one ``final`` per call once the choice finishes,
    and a ``stop-reason`` meta event (``tool_calls`` becomes ``toolUse``). API errors
    are reported as an ``error`` event instead of being raised.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model_name: str,
        sys_instruction: Optional[str] = None,
        temp: float = 1.0,
        max_tokens: Optional[int] = None,
    ):
        """
        Initializes the OpenAI stream client.

        Args:
            client: The initialized AsyncOpenAI client.
            model_name: The identifier for the OpenAI model to use.
            sys_instruction: Optional system instruction prepended when the history has none.
            temp: The temperature for text generation.
            max_tokens: Optional cap on generated tokens per turn.
        """
        self.client = client
        self.model = model_name
        self.sys_instruction = sys_instruction
        self.temperature = temp
        self.max_tokens = max_tokens

    async def stream(self, request: ModelRequest) -> AsyncIterator[Any]:
        """Stream one model turn as engine events."""
        messages = self.convert_history(request.messages)
        if self.sys_instruction and not any(m.get("role") == "system" for m in messages):
            messages.insert(0, {"role": "system", "content": self.sys_instruction})

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": cast(Iterable[Any], messages),
            "temperature": self.temperature,
            "stream": True,
        }
        if request.tools:
            kwargs["tools"] = request.tools
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens

        logger.debug("Streaming turn %d from '%s' (%d messages).", request.turn_index, self.model, len(messages))
        pending: Dict[int, _PendingCall] = {}
        finished = False
        try:
            response = await self.client.chat.completions.create(**kwargs)
            async for chunk in response:
                for event in self._chunk_events(chunk, pending):
                    yield event
                if any(choice.finish_reason for choice in chunk.choices):
                    finished = True
        except OpenAIError as exc:
            logger.error("OpenAI stream failed: %s", exc)
            yield ErrorEvent(
                message=str(exc),
                code=getattr(exc, "code", None) or type(exc).__name__,
                details={"status_code": getattr(exc, "status_code", None)},
            )
            return

        if not finished:
            # Stream closed without a finish_reason; hand over what was accumulated
            for event in self._final_events(pending):
                yield event

    def _chunk_events(self, chunk: ChatCompletionChunk, pending: Dict[int, _PendingCall]) -> List[Any]:
        events: List[Any] = []
        for choice in chunk.choices:
            delta = choice.delta
            if delta is not None:
                reasoning = getattr(delta, "reasoning_content", None) or (delta.model_extra or {}).get("reasoning")
                if reasoning:
                    events.append(ReasoningEvent(text=str(reasoning)))
                if delta.content:
                    events.append(ContentEvent(text=delta.content))
                for fragment in delta.tool_calls or []:
                    call = pending.setdefault(fragment.index, _PendingCall(index=fragment.index))
                    if fragment.id:
                        call.id = fragment.id
                    name = fragment.function.name if fragment.function else None
                    arguments = fragment.function.arguments if fragment.function else None
                    if name:
                        call.name = name
                    if arguments:
                        call.arguments += arguments
                    events.append(
                        ToolCallEvent(
                            phase="delta",
                            call=StreamToolCall(
                                id=call.id,
                                index=fragment.index,
                                function=StreamToolCallFunction(name=name or "", arguments=arguments or ""),
                            ),
                        )
                    )

            if choice.finish_reason:
                events.extend(self._final_events(pending))
                stop_reason = FINISH_REASON_MAP.get(choice.finish_reason, choice.finish_reason)
                events.append(MetaEvent(key=STOP_REASON_KEY, value=stop_reason))
        return events

    @staticmethod
    def _final_events(pending: Dict[int, _PendingCall]) -> List[ToolCallEvent]:
        events = [
            ToolCallEvent(
                phase="final",
                call=StreamToolCall(
                    id=call.id,
                    index=index,
                    function=StreamToolCallFunction(name=call.name, arguments=call.arguments),
                ),
            )
            for index, call in sorted(pending.items())
        ]
        pending.clear()
        return events

    @staticmethod
    def convert_history(history: List[BaseMessage]) -> List[Dict[str, Any]]:
        """
        Converts generic BaseMessage history to OpenAI message dictionaries.

        Args:
            history: List of BaseMessage objects.

        Returns:
            List of OpenAI message dictionaries.
        """
        openai_history: List[Dict[str, Any]] = []
        for msg in history:
            if isinstance(msg, UserMessage):
                openai_history.append({"role": "user", "content": msg.content})
            elif isinstance(msg, AssistantMessage):
                openai_msg: Dict[str, Any] = {"role": "assistant", "content": msg.content}
                if msg.tool_calls:
                    openai_msg["tool_calls"] = msg.tool_calls
                    if not msg.content:
                        openai_msg["content"] = None
                openai_history.append(openai_msg)
            elif isinstance(msg, SystemMessage):
                openai_history.append({"role": "system", "content": msg.content})
            elif isinstance(msg, ToolMessage):
                openai_history.append(
                    {"role": "tool", "content": msg.content, "tool_call_id": msg.tool_call_id, "name": msg.name}
                )
        return openai_history

    @staticmethod
    def convert_to_generic_history(history: List[Dict[str, Any]]) -> List[BaseMessage]:
        """
        Converts OpenAI message dictionaries back to generic BaseMessage history.

        Messages without content are dropped, except assistant messages carrying
        tool calls and tool results, which keep the tool-call pairing intact.

        Args:
            history: List of OpenAI message dictionaries.

        Returns:
            List of BaseMessage objects.
        """
        generic_history: List[BaseMessage] = []
        for msg in history:
            role = msg.get("role")
            content = msg.get("content") or ""
            tool_calls = msg.get("tool_calls")

            if not content and not (role == "tool" or (role == "assistant" and tool_calls)):
                continue

            if role == "user":
                generic_history.append(UserMessage(content=content))
            elif role == "assistant":
                generic_history.append(AssistantMessage(content=content, tool_calls=tool_calls))
            elif role == "system":
                generic_history.append(SystemMessage(content=content))
            elif role == "tool":
                generic_history.append(
                    ToolMessage(content=content, tool_call_id=msg.get("tool_call_id", ""), name=msg.get("name", ""))
                )
        return generic_history
