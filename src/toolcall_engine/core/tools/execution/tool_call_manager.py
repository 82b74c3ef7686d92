"""Per-conversation owner of tool calls: creation, approval gating and concurrent execution."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import time
from collections import defaultdict
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Set, Union

from pydantic import ValidationError

from .events import ToolCallEventType, ToolCallLifecycleEvent, ToolCallListener
from .result_limits import limit_tool_result
from ..models import (
    ToolCall,
    ToolCallErrorCode,
    ToolCallRequest,
    ToolCallResult,
    ToolCallState,
)
from ..registry import ToolRegistry
from ...approval import ApprovalReason, canonical_tool_key, decide, split_tool_name
from ...config import ApprovalContext, ToolCallManagerSettings
from ...exceptions import InvalidToolCallError
from ...logger import get_logger
from ...streaming.decoder import decode_arguments

logger = get_logger(__name__)


def tool_call_signature(name: str, raw_arguments: Optional[str]) -> str:
    """Identity of a call for repeat detection: tool name plus canonical JSON arguments."""
    raw = (raw_arguments or "").strip()
    try:
        arguments = json.loads(raw) if raw else {}
        canonical = json.dumps(arguments, sort_keys=True, separators=(",", ":"))
    except json.JSONDecodeError:
        canonical = raw
    return f"{name}:{canonical}"


class ToolCallManager:
    """
    Owns every tool call of one conversation.

    The manager is the only component that transitions a :class:`ToolCall`. Callers
    and observers always receive snapshots. Approved calls are dispatched as their
    own asyncio task the moment they are approved, so unrelated calls never wait on
    each other. Tool failures are recorded as ``failed`` calls and never raised.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        approval_context: Optional[ApprovalContext] = None,
        settings: Optional[ToolCallManagerSettings] = None,
    ) -> None:
        """
        Initialize the manager.

        Args:
            registry: Registry the executors are looked up in.
            approval_context: Initial trust set, allowlist and destructive-approval toggle.
            settings: Deployment bounds. Defaults to :class:`ToolCallManagerSettings`.
        """
        self._registry = registry
        self._settings = settings or ToolCallManagerSettings()
        context = approval_context or ApprovalContext()
        prefixes = self._settings.namespace_prefixes
        self._trusted: Set[str] = {canonical_tool_key(name, prefixes) for name in context.trusted_tool_names}
        self._allowlist: List[str] = list(context.auto_approve_allowlist)
        self._require_destructive_approval = context.require_destructive_approval

        self._calls: Dict[str, ToolCall] = {}
        self._settled: Dict[str, asyncio.Event] = {}
        self._dispatched: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: Dict[ToolCallEventType, List[ToolCallListener]] = defaultdict(list)
        self._semaphore: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(self._settings.concurrency_limit) if self._settings.concurrency_limit else None
        )

    # -- configuration ---------------------------------------------------------------

    @property
    def settings(self) -> ToolCallManagerSettings:
        return self._settings

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def approval_context(self) -> ApprovalContext:
        """The approval inputs currently in effect."""
        return ApprovalContext(
            trusted_tool_names=set(self._trusted),
            auto_approve_allowlist=list(self._allowlist),
            require_destructive_approval=self._require_destructive_approval,
        )

    def set_auto_approve_allowlist(self, allowlist: Iterable[str]) -> None:
        self._allowlist = list(allowlist)

    def set_require_destructive_approval(self, required: bool) -> None:
        self._require_destructive_approval = required

    # -- observers ---------------------------------------------------------------------

    def on(self, event: Union[ToolCallEventType, str], handler: ToolCallListener) -> Callable[[], None]:
        """Subscribe to a lifecycle event.

        Args:
            event: A :class:`ToolCallEventType` or its string value, e.g. ``"tool-call:created"``.
            handler: Called synchronously with a :class:`ToolCallLifecycleEvent`.

        Returns:
            A function that removes the subscription.

        Raises:
            ValueError: If ``event`` is not a known lifecycle event.
        """
        event_type = ToolCallEventType(event)
        self._listeners[event_type].append(handler)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[event_type].remove(handler)

        return unsubscribe

    def _emit(
        self, event_type: ToolCallEventType, call: ToolCall, previous_state: Optional[ToolCallState] = None
    ) -> None:
        handlers = list(self._listeners.get(event_type, ()))
        if not handlers:
            return
        event = ToolCallLifecycleEvent(type=event_type, tool_call=call.snapshot(), previous_state=previous_state)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.error("Listener for '%s' failed on tool call '%s'.", event_type.value, call.id, exc_info=True)

    def _transition(self, call: ToolCall, new_state: ToolCallState) -> None:
        previous = call.transition(new_state)
        logger.debug("Tool call '%s' (%s): %s -> %s", call.id, call.name, previous.value, new_state.value)
        self._emit(ToolCallEventType.STATE_CHANGED, call, previous)

    # -- creation ----------------------------------------------------------------------

    def create(self, request: ToolCallRequest, message_id: str, decode_error: Optional[str] = None) -> ToolCall:
        """Register a finalized request and run it through the approval policy.

        Requests that cannot run (empty name, undecodable arguments, unknown tool, or a
        repeat of a call that already failed or was denied in this message) are created
        already ``failed``. Everything else ends up ``pending_approval`` or ``approved``;
        approved calls start executing right away.

        Args:
            request: The finalized request.
            message_id: The assistant message the call belongs to.
            decode_error: Decoder message when the arguments could not be parsed.

        Returns:
            A snapshot of the call. A request whose id is already known returns the
            existing call unchanged.

        Raises:
            InvalidToolCallError: If the request has no id.
        """
        if not request.id:
            raise InvalidToolCallError("Tool call request is missing an id.")

        existing = self._calls.get(request.id)
        if existing is not None:
            logger.debug("Tool call '%s' already exists; ignoring duplicate create.", request.id)
            return existing.snapshot()

        parts = split_tool_name(request.name, self._settings.namespace_prefixes)
        call = ToolCall(id=request.id, message_id=message_id, request=request, server_id=parts.server_id)
        self._calls[call.id] = call
        self._settled[call.id] = asyncio.Event()

        rejection = self._rejection_for(call, decode_error)
        if rejection is not None:
            call.result = rejection
            call.transition(ToolCallState.FAILED)
            self._settle(call)
            logger.warning(
                "Tool call '%s' (%s) rejected at creation: %s", call.id, call.name, rejection.error.message
            )
            self._emit(ToolCallEventType.CREATED, call)
            return call.snapshot()

        decision = decide(call.name, self.approval_context, self._settings.namespace_prefixes)
        call.auto_approved = decision.auto_approve
        call.approval_reason = decision.reason.value
        logger.info(
            "Created tool call '%s' (%s); auto-approve=%s (%s).",
            call.id,
            call.name,
            decision.auto_approve,
            decision.reason.value,
        )
        self._emit(ToolCallEventType.CREATED, call)

        if decision.auto_approve:
            self._approve(call)
        else:
            self._transition(call, ToolCallState.PENDING_APPROVAL)
        return call.snapshot()

    def _rejection_for(self, call: ToolCall, decode_error: Optional[str]) -> Optional[ToolCallResult]:
        name = call.name
        if not name or not name.strip():
            return ToolCallResult.fail(ToolCallErrorCode.INVALID_TOOL_NAME.value, "Tool call has no tool name.")

        if decode_error:
            return ToolCallResult.fail(
                ToolCallErrorCode.DECODE_ERROR.value,
                decode_error,
                {"raw_arguments": call.request.raw_arguments},
            )

        if not self._registry.has(name):
            return ToolCallResult.fail(ToolCallErrorCode.TOOL_NOT_FOUND.value, f"Tool not found: {name}")

        return self._repeat_block(call)

    def _repeat_block(self, call: ToolCall) -> Optional[ToolCallResult]:
        signature = tool_call_signature(call.name, call.request.raw_arguments)
        failed = denied = 0
        for other in self._calls.values():
            if other is call or other.message_id != call.message_id or other.result is None:
                continue
            if other.result.success or tool_call_signature(other.name, other.request.raw_arguments) != signature:
                continue
            code = other.result.error.code if other.result.error else None
            if code == ToolCallErrorCode.USER_DENIED.value:
                denied += 1
            elif code != ToolCallErrorCode.TOOL_LOOP_BLOCKED.value:
                failed += 1

        details = {
            "signature": signature,
            "failed_attempts": failed,
            "denied_attempts": denied,
            "max_failed_attempts": self._settings.max_failed_repeats,
            "max_denied_attempts": self._settings.max_denied_repeats,
        }
        if denied >= self._settings.max_denied_repeats:
            message = (
                f"Tool call was denied {denied} time{'' if denied == 1 else 's'} for this request. "
                "Repeating the same tool call is blocked to prevent an agent loop. "
                "Update the instructions and try again."
            )
            return ToolCallResult.fail(ToolCallErrorCode.TOOL_LOOP_BLOCKED.value, message, details)
        if failed >= self._settings.max_failed_repeats:
            message = (
                f"Tool call failed {failed} time{'' if failed == 1 else 's'} for this request "
                f"(retry limit {self._settings.max_failed_repeats}). "
                "Repeating the same tool call is blocked to prevent an agent loop. "
                "Fix the underlying issue and try again."
            )
            return ToolCallResult.fail(ToolCallErrorCode.TOOL_LOOP_BLOCKED.value, message, details)
        return None

    # -- approval ----------------------------------------------------------------------

    def approve(self, call_id: str) -> Optional[ToolCall]:
        """Approve a pending call and dispatch it.

        Already approved (or running) calls are left alone. Unknown ids and terminal
        calls are a no-op.

        Returns:
            A snapshot of the call, or None if the id is unknown.
        """
        call = self._calls.get(call_id)
        if call is None:
            logger.debug("approve(): unknown tool call '%s'.", call_id)
            return None
        if call.state in (ToolCallState.PENDING_APPROVAL, ToolCallState.CREATED):
            self._approve(call)
        else:
            logger.debug("approve(): tool call '%s' is '%s'; nothing to do.", call_id, call.state.value)
        return call.snapshot()

    def _approve(self, call: ToolCall) -> None:
        self._transition(call, ToolCallState.APPROVED)
        call.timestamps.approved = time.time()
        self._emit(ToolCallEventType.APPROVED, call)
        self._dispatch(call)

    def deny(self, call_id: str, reason: Optional[str] = None) -> Optional[ToolCall]:
        """Reject a call that is waiting for approval.

        The call becomes ``failed`` with ``USER_DENIED``. Calls that are no longer
        waiting are left alone.

        Returns:
            A snapshot of the call, or None if the id is unknown.
        """
        call = self._calls.get(call_id)
        if call is None:
            logger.debug("deny(): unknown tool call '%s'.", call_id)
            return None
        if call.state not in (ToolCallState.PENDING_APPROVAL, ToolCallState.CREATED):
            logger.debug("deny(): tool call '%s' is '%s'; nothing to do.", call_id, call.state.value)
            return call.snapshot()

        message = reason or "User denied this tool call."
        self._fail(call, ToolCallResult.fail(ToolCallErrorCode.USER_DENIED.value, message))
        logger.info("Tool call '%s' (%s) denied.", call.id, call.name)
        self._emit(ToolCallEventType.DENIED, call)
        return call.snapshot()

    def cancel(self, call_id: str, reason: Optional[str] = None) -> Optional[ToolCall]:
        """Cancel a call that has not started executing.

        Running executors are never interrupted; once a call is ``executing`` this
        is a no-op.

        Returns:
            A snapshot of the call, or None if the id is unknown.
        """
        call = self._calls.get(call_id)
        if call is None:
            logger.debug("cancel(): unknown tool call '%s'.", call_id)
            return None
        if call.state not in (ToolCallState.CREATED, ToolCallState.PENDING_APPROVAL, ToolCallState.APPROVED):
            logger.debug("cancel(): tool call '%s' is '%s'; nothing to do.", call_id, call.state.value)
            return call.snapshot()

        message = reason or "Tool call was canceled."
        self._fail(call, ToolCallResult.fail(ToolCallErrorCode.USER_CANCELED.value, message))
        logger.info("Tool call '%s' (%s) canceled.", call.id, call.name)
        return call.snapshot()

    def trust_for_session(self, tool_name: str) -> List[ToolCall]:
        """Trust a tool for the rest of the session and approve its pending calls.

        Args:
            tool_name: The tool name as emitted by the model.

        Returns:
            Snapshots of the calls that were approved as a side effect.
        """
        prefixes = self._settings.namespace_prefixes
        key = canonical_tool_key(tool_name, prefixes)
        if not key:
            return []
        self._trusted.add(key)
        logger.info("Tool '%s' trusted for this session.", key)

        approved: List[ToolCall] = []
        for call in list(self._calls.values()):
            if call.state is ToolCallState.PENDING_APPROVAL and canonical_tool_key(call.name, prefixes) == key:
                call.auto_approved = True
                call.approval_reason = ApprovalReason.TRUSTED_SESSION.value
                self._approve(call)
                approved.append(call.snapshot())
        return approved

    # -- execution ---------------------------------------------------------------------

    def _dispatch(self, call: ToolCall) -> None:
        if call.id in self._dispatched:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; tool call '%s' waits for execute()/settle_all().", call.id)
            return
        self._dispatched.add(call.id)
        task = loop.create_task(self.execute(call.id), name=f"tool-call-{call.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @contextlib.asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        if self._semaphore is None:
            yield
            return
        async with self._semaphore:
            yield

    async def execute(self, call_id: str) -> ToolCall:
        """Run an approved call to a terminal state.

        Calls that are not ``approved`` (still pending, already running, or finished)
        are returned unchanged. Executor exceptions, timeouts and argument problems
        end in ``failed``; this method does not raise for them.

        Args:
            call_id: Id of the call.

        Returns:
            A snapshot of the call after execution.

        Raises:
            InvalidToolCallError: If the id is unknown.
        """
        call = self._calls.get(call_id)
        if call is None:
            raise InvalidToolCallError(f"Unknown tool call '{call_id}'.")
        self._dispatched.add(call_id)

        async with self._slot():
            if call.state is not ToolCallState.APPROVED:
                logger.debug("execute(): tool call '%s' is '%s'; skipping.", call_id, call.state.value)
                return call.snapshot()

            self._transition(call, ToolCallState.EXECUTING)
            call.timestamps.execution_started = time.time()
            self._emit(ToolCallEventType.EXECUTION_STARTED, call)
            logger.info("Executing tool '%s' (call '%s').", call.name, call.id)

            try:
                result = await self._run(call)
            except asyncio.CancelledError:
                self._finish_execution(
                    call, ToolCallResult.fail(ToolCallErrorCode.USER_CANCELED.value, "Tool execution was cancelled.")
                )
                raise

            self._finish_execution(call, result)
        return call.snapshot()

    async def _run(self, call: ToolCall) -> ToolCallResult:
        definition = self._registry.get(call.name)
        if definition is None:
            return ToolCallResult.fail(ToolCallErrorCode.TOOL_NOT_FOUND.value, f"Tool not found: {call.name}")

        arguments, decode_error = decode_arguments(call.request.raw_arguments)
        if decode_error or arguments is None:
            return ToolCallResult.fail(
                ToolCallErrorCode.DECODE_ERROR.value,
                decode_error or "Invalid tool arguments.",
                {"raw_arguments": call.request.raw_arguments},
            )

        if definition.args_model:
            try:
                arguments = definition.args_model(**arguments).model_dump()
            except ValidationError as exc:
                return ToolCallResult.fail(
                    ToolCallErrorCode.ARGUMENT_VALIDATION_ERROR.value,
                    f"Argument validation failed: {exc}",
                    exc.errors(include_url=False, include_context=False),
                )

        timeout = self._settings.tool_timeout
        try:
            data = await self._invoke(definition.func, arguments, timeout)
        except asyncio.TimeoutError:
            return ToolCallResult.fail(
                ToolCallErrorCode.TIMEOUT.value, f"Tool execution timed out after {timeout} seconds."
            )
        except Exception as exc:
            logger.warning("Tool '%s' raised %s: %s", call.name, type(exc).__name__, exc)
            return ToolCallResult.fail(
                ToolCallErrorCode.EXECUTION_ERROR.value,
                str(exc) or type(exc).__name__,
                {"type": type(exc).__name__},
            )

        return ToolCallResult.ok(limit_tool_result(data, self._settings.max_tool_result_chars, call.name))

    @staticmethod
    async def _invoke(func: Callable, arguments: Dict[str, Any], timeout: Optional[float]) -> Any:
        if inspect.iscoroutinefunction(func):
            pending = func(**arguments)
        else:
            pending = asyncio.to_thread(func, **arguments)

        result = await (asyncio.wait_for(pending, timeout=timeout) if timeout else pending)
        # Callable objects with an async __call__ hand back a coroutine from the thread
        if inspect.isawaitable(result):
            result = await (asyncio.wait_for(result, timeout=timeout) if timeout else result)
        return result

    # -- terminal bookkeeping ------------------------------------------------------------

    def _settle(self, call: ToolCall) -> None:
        event = self._settled.get(call.id)
        if event is not None:
            event.set()

    def _fail(self, call: ToolCall, result: ToolCallResult) -> None:
        call.result = result
        self._transition(call, ToolCallState.FAILED)
        self._settle(call)

    def _finish_execution(self, call: ToolCall, result: ToolCallResult) -> None:
        call.result = result
        call.timestamps.execution_completed = time.time()
        if result.success:
            self._transition(call, ToolCallState.COMPLETED)
            logger.info("Tool '%s' (call '%s') completed.", call.name, call.id)
            self._emit(ToolCallEventType.EXECUTION_COMPLETED, call)
        else:
            self._transition(call, ToolCallState.FAILED)
            logger.warning(
                "Tool '%s' (call '%s') failed: %s",
                call.name,
                call.id,
                result.error.message if result.error else "unknown error",
            )
            self._emit(ToolCallEventType.EXECUTION_FAILED, call)
        self._settle(call)

    # -- queries -----------------------------------------------------------------------

    def get_tool_call(self, call_id: str) -> Optional[ToolCall]:
        call = self._calls.get(call_id)
        return call.snapshot() if call else None

    def get_tool_calls_for_message(self, message_id: str) -> List[ToolCall]:
        """All calls of an assistant message, in creation order."""
        return [call.snapshot() for call in self._calls.values() if call.message_id == message_id]

    def get_pending_tool_calls(self) -> List[ToolCall]:
        """Calls currently waiting for a user decision, in creation order."""
        return [call.snapshot() for call in self._calls.values() if call.state is ToolCallState.PENDING_APPROVAL]

    async def settle_all(self, call_ids: Iterable[str]) -> List[ToolCall]:
        """Wait until every listed call is terminal.

        Individual failures never short-circuit the wait. Calls still waiting for
        approval keep the wait open until someone approves, denies or cancels them.
        Unknown ids are skipped.

        Returns:
            Snapshots of the listed calls, in the order given.
        """
        ids = [call_id for call_id in call_ids if call_id in self._calls]
        for call_id in ids:
            call = self._calls[call_id]
            if call.state is ToolCallState.APPROVED:
                self._dispatch(call)
        await asyncio.gather(*(self._settled[call_id].wait() for call_id in ids))
        return [self._calls[call_id].snapshot() for call_id in ids if call_id in self._calls]

    await_all_settled = settle_all

    # -- persistence ---------------------------------------------------------------------

    def serialize_tool_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        """Plain-dict form of a call for the chat history store, or None if unknown."""
        call = self._calls.get(call_id)
        return call.to_dict() if call else None

    def restore_tool_call(self, data: Dict[str, Any], message_id: Optional[str] = None) -> ToolCall:
        """Load a call previously produced by :meth:`serialize_tool_call`.

        Calls saved while ``approved`` or ``executing`` cannot be resumed and are
        restored as ``failed``. Pending calls stay pending.

        Returns:
            A snapshot of the restored call (or of the existing call with that id).
        """
        call = ToolCall.from_dict(data, message_id)
        existing = self._calls.get(call.id)
        if existing is not None:
            return existing.snapshot()

        if call.state in (ToolCallState.APPROVED, ToolCallState.EXECUTING, ToolCallState.CREATED):
            call.state = ToolCallState.FAILED
            call.result = ToolCallResult.fail(
                ToolCallErrorCode.EXECUTION_ERROR.value, "Tool call was interrupted before it finished."
            )

        self._calls[call.id] = call
        settled = asyncio.Event()
        if call.is_terminal:
            settled.set()
        self._settled[call.id] = settled
        return call.snapshot()

    # -- teardown ------------------------------------------------------------------------

    def reset_session(self) -> None:
        """Forget every call and the session trust set.

        Anyone still waiting in :meth:`settle_all` is released. Executors already
        running finish on their own.
        """
        for event in self._settled.values():
            event.set()
        self._calls.clear()
        self._settled.clear()
        self._dispatched.clear()
        self._trusted.clear()
        logger.debug("Tool call session reset.")

    async def aclose(self) -> None:
        """Wait for in-flight executions and drop all listeners."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._listeners.clear()
