"""Drives a conversation through streaming turns and tool-use continuations."""

from __future__ import annotations

import asyncio
import inspect
import json
import uuid
from dataclasses import replace
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, Tuple, TypeVar

from ..base import ModelClient, ModelRequest, TurnOutcome
from ..exceptions import ProviderStreamError, ToolCallEngineError
from ..logger import get_logger
from ..messages import AssistantMessage, BaseMessage, ToolMessage
from ..streaming import STOP_REASON_STOP, STOP_REASON_TOOL_USE, StreamEventDecoder
from ..tools.execution import ToolCallManager
from ..tools.models import ToolCall, ToolCallRequest

logger = get_logger(__name__)

T = TypeVar("T")


class TurnState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_TOOL_SETTLEMENT = "awaiting_tool_settlement"


def tool_result_content(call: ToolCall) -> str:
    """Text fed back to the model for a terminal call: the payload as JSON, or the error message."""
    result = call.result
    if result is None:
        return "Tool call did not produce a result."
    if result.success:
        if isinstance(result.data, str):
            return result.data
        return json.dumps(result.data, default=str)
    return result.error.message if result.error else "Tool call failed."


class ConversationTurnController:
    """
    Runs the stream → settle → continue loop for one conversation.

    Each turn streams the model response through a fresh :class:`StreamEventDecoder`.
    A ``toolUse`` stop reason hands every decoded call to the :class:`ToolCallManager`,
    waits until all of them are terminal and starts a continuation turn carrying the
    results. Any other stop reason ends the run. There is no limit on the number of
    continuations; only the model or :meth:`abort` ends the loop.
    """

    def __init__(
        self,
        client: ModelClient,
        manager: ToolCallManager,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        """
        Initialize the controller.

        Args:
            client: Streaming model transport.
            manager: Tool call manager scoped to this conversation.
            tools: Tool declarations sent with every request. Defaults to the
                manager's registry export.
        """
        self._client = client
        self._manager = manager
        self._tools = tools
        self._abort = asyncio.Event()
        self.state = TurnState.IDLE

    @property
    def manager(self) -> ToolCallManager:
        return self._manager

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def abort(self) -> None:
        """Stop the active run.

        Streaming stops at the next event, waiting for tool settlement ends and no
        further turn is started. Tool executions already running are left to finish.
        """
        if not self._abort.is_set():
            logger.info("Conversation turn aborted.")
        self._abort.set()

    def reset_abort(self) -> None:
        """Re-arm the controller after :meth:`abort` so that :meth:`run` can be used again."""
        self._abort.clear()

    def _tool_declarations(self) -> List[Dict[str, Any]]:
        if self._tools is not None:
            return list(self._tools)
        exported = self._manager.registry.tool_object
        return list(exported) if isinstance(exported, list) else []

    async def run(self, messages: List[BaseMessage]) -> TurnOutcome:
        """Run the conversation until the model stops asking for tools.

        Args:
            messages: History to send on the first turn. The list is not modified.

        Returns:
            The final content, the extended history and every tool call created.

        Raises:
            ProviderStreamError: If the transport reports an error event or fails.
            ToolCallEngineError: If a run is already in progress.
        """
        if self.state is not TurnState.IDLE:
            raise ToolCallEngineError("A conversation turn is already in progress.")

        history: List[BaseMessage] = list(messages)
        created: List[ToolCall] = []
        # one assistant message id spans the whole continuation chain of a run
        message_id = f"msg_{uuid.uuid4().hex}"
        turns = 0
        decoder: Optional[StreamEventDecoder] = None

        try:
            while True:
                if self._abort.is_set():
                    return self._aborted_outcome(decoder, history, turns, created)

                self.state = TurnState.STREAMING
                decoder = StreamEventDecoder()
                request = ModelRequest(messages=list(history), tools=self._tool_declarations(), turn_index=turns)
                turns += 1
                logger.debug("Starting model turn %d.", turns)

                if not await self._stream_turn(request, decoder):
                    return self._aborted_outcome(decoder, history, turns, created)

                if decoder.error is not None:
                    error = decoder.error
                    raise ProviderStreamError(error.message, code=error.code, details=error.details)

                decoder.flush()
                stop_reason = decoder.stop_reason or STOP_REASON_STOP

                if stop_reason != STOP_REASON_TOOL_USE:
                    if decoder.finalized:
                        logger.warning(
                            "Turn ended with stop reason '%s' but streamed %d tool call(s); they are not executed.",
                            stop_reason,
                            len(decoder.finalized),
                        )
                    history.append(
                        AssistantMessage(content=decoder.content, reasoning=decoder.reasoning or None)
                    )
                    logger.info("Conversation finished after %d turn(s) (stop reason '%s').", turns, stop_reason)
                    return TurnOutcome(
                        content=decoder.content,
                        reasoning=decoder.reasoning,
                        stop_reason=stop_reason,
                        history=history,
                        turns=turns,
                        tool_calls=created,
                    )

                calls = [
                    self._manager.create(self._fresh_request(decoded.request), message_id, decoded.decode_error)
                    for decoded in decoder.finalized
                ]
                logger.info("Model requested %d tool call(s) in turn %d.", len(calls), turns)

                self.state = TurnState.AWAITING_TOOL_SETTLEMENT
                settled_ok, settled = await self._until_aborted(self._manager.settle_all([c.id for c in calls]))
                if not settled_ok:
                    created.extend(self._latest(calls))
                    return self._aborted_outcome(decoder, history, turns, created)
                created.extend(settled)

                history.append(
                    AssistantMessage(
                        content=decoder.content,
                        reasoning=decoder.reasoning or None,
                        tool_calls=[call.request.to_openai() for call in settled],
                        message_id=message_id,
                    )
                )
                history.extend(
                    ToolMessage(
                        content=tool_result_content(call),
                        tool_call_id=call.id,
                        name=call.name,
                        is_error=not (call.result and call.result.success),
                    )
                    for call in settled
                )
        finally:
            self.state = TurnState.IDLE

    async def _stream_turn(self, request: ModelRequest, decoder: StreamEventDecoder) -> bool:
        """Feed one streamed response into ``decoder``. Returns False when aborted."""
        try:
            stream = self._client.stream(request)
        except ToolCallEngineError:
            raise
        except Exception as exc:
            raise ProviderStreamError(f"Model request failed: {exc}") from exc

        iterator = stream.__aiter__()
        try:
            while True:
                if self._abort.is_set():
                    return False
                finished, item = await self._until_aborted(self._next_event(iterator))
                if not finished:
                    return False
                has_event, event = item
                if not has_event:
                    return True
                decoder.feed(event)
                if decoder.error is not None:
                    return True
        except ToolCallEngineError:
            raise
        except Exception as exc:
            raise ProviderStreamError(f"Model stream failed: {exc}") from exc
        finally:
            if inspect.isasyncgen(iterator):
                await iterator.aclose()

    @staticmethod
    async def _next_event(iterator: AsyncIterator[Any]) -> Tuple[bool, Any]:
        try:
            return True, await iterator.__anext__()
        except StopAsyncIteration:
            return False, None

    def _fresh_request(self, request: ToolCallRequest) -> ToolCallRequest:
        """Give a request a new id when an earlier turn already used its id."""
        if self._manager.get_tool_call(request.id) is None:
            return request
        fresh_id = f"{request.id}_{uuid.uuid4().hex[:8]}"
        logger.info("Tool call id '%s' was already used in this conversation; renamed to '%s'.", request.id, fresh_id)
        return replace(request, id=fresh_id)

    async def _until_aborted(self, awaitable: Awaitable[T]) -> Tuple[bool, Optional[T]]:
        """Await ``awaitable`` unless :meth:`abort` fires first; the loser is cancelled.

        The work is also cancelled when the task awaiting this is cancelled.
        """
        work = asyncio.ensure_future(awaitable)
        abort_wait = asyncio.ensure_future(self._abort.wait())
        try:
            await asyncio.wait({work, abort_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort_wait.cancel()
            if not work.done():
                work.cancel()
                await asyncio.gather(work, return_exceptions=True)
        if work.cancelled():
            return False, None
        return True, work.result()

    def _latest(self, calls: List[ToolCall]) -> List[ToolCall]:
        return [self._manager.get_tool_call(call.id) or call for call in calls]

    @staticmethod
    def _aborted_outcome(
        decoder: Optional[StreamEventDecoder], history: List[BaseMessage], turns: int, created: List[ToolCall]
    ) -> TurnOutcome:
        return TurnOutcome(
            content=decoder.content if decoder else "",
            reasoning=decoder.reasoning if decoder else "",
            stop_reason=decoder.stop_reason if decoder else None,
            history=history,
            turns=turns,
            tool_calls=created,
            aborted=True,
        )
