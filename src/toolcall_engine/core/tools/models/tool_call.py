"""Data models for tool-call requests, results and the per-call state machine."""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from ...exceptions import InvalidStateTransitionError


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool call as finalized by the model stream.

    Attributes:
        id: Provider-assigned identifier, unique within the conversation.
        name: Tool name exactly as emitted (may be namespaced).
        raw_arguments: Argument payload as received; JSON text.
    """

    id: str
    name: str
    raw_arguments: str = ""

    def to_openai(self) -> Dict[str, Any]:
        """Render the request in the assistant ``tool_calls`` message shape."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments or "{}"},
        }


class ToolCallState(str, Enum):
    """Lifecycle states of a tool call."""

    CREATED = "created"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[ToolCallState] = frozenset({ToolCallState.COMPLETED, ToolCallState.FAILED})

ALLOWED_TRANSITIONS: Mapping[ToolCallState, FrozenSet[ToolCallState]] = {
    ToolCallState.CREATED: frozenset(
        {ToolCallState.PENDING_APPROVAL, ToolCallState.APPROVED, ToolCallState.FAILED}
    ),
    ToolCallState.PENDING_APPROVAL: frozenset({ToolCallState.APPROVED, ToolCallState.FAILED}),
    ToolCallState.APPROVED: frozenset({ToolCallState.EXECUTING, ToolCallState.FAILED}),
    ToolCallState.EXECUTING: frozenset({ToolCallState.COMPLETED, ToolCallState.FAILED}),
    ToolCallState.COMPLETED: frozenset(),
    ToolCallState.FAILED: frozenset(),
}


class ToolCallErrorCode(str, Enum):
    """Error codes carried by failed tool-call results."""

    DECODE_ERROR = "DECODE_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    INVALID_TOOL_NAME = "INVALID_TOOL_NAME"
    ARGUMENT_VALIDATION_ERROR = "ARGUMENT_VALIDATION_ERROR"
    TIMEOUT = "TIMEOUT"
    USER_DENIED = "USER_DENIED"
    USER_CANCELED = "USER_CANCELED"
    TOOL_LOOP_BLOCKED = "TOOL_LOOP_BLOCKED"


@dataclass(frozen=True)
class ToolCallError:
    """Structured description of why a call failed."""

    code: str
    message: str
    details: Any = None


@dataclass(frozen=True)
class ToolCallResult:
    """Terminal outcome of a tool call: either ``data`` or ``error`` is meaningful."""

    success: bool
    data: Any = None
    error: Optional[ToolCallError] = None

    @classmethod
    def ok(cls, data: Any) -> "ToolCallResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: str, message: str, details: Any = None) -> "ToolCallResult":
        return cls(success=False, error=ToolCallError(code=str(code), message=message, details=details))

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        err = self.error or ToolCallError(code=ToolCallErrorCode.EXECUTION_ERROR.value, message="Unknown error")
        error: Dict[str, Any] = {"code": err.code, "message": err.message}
        if err.details is not None:
            error["details"] = err.details
        return {"success": False, "error": error}


@dataclass
class ToolCallTimestamps:
    """Wall-clock milestones of a call (epoch seconds)."""

    created: float = field(default_factory=time.time)
    approved: Optional[float] = None
    execution_started: Optional[float] = None
    execution_completed: Optional[float] = None


@dataclass
class ToolCall:
    """A tool call owned by a :class:`ToolCallManager`.

    Only the manager mutates instances; everything handed to observers is a
    :meth:`snapshot`.
    """

    id: str
    message_id: str
    request: ToolCallRequest
    state: ToolCallState = ToolCallState.CREATED
    timestamps: ToolCallTimestamps = field(default_factory=ToolCallTimestamps)
    auto_approved: bool = False
    approval_reason: Optional[str] = None
    server_id: Optional[str] = None
    result: Optional[ToolCallResult] = None

    @property
    def name(self) -> str:
        return self.request.name

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(self, new_state: ToolCallState) -> ToolCallState:
        """Move to ``new_state`` and return the previous state.

        Raises:
            InvalidStateTransitionError: If the move is not allowed by the state machine.
        """
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(
                f"Tool call '{self.id}' cannot move from '{self.state.value}' to '{new_state.value}'."
            )
        previous = self.state
        self.state = new_state
        return previous

    def snapshot(self) -> "ToolCall":
        """Return an independent copy safe to hand to observers."""
        return replace(self, timestamps=copy.copy(self.timestamps))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for embedding in chat history."""
        return {
            "id": self.id,
            "message_id": self.message_id,
            "request": {"id": self.request.id, "name": self.request.name, "arguments": self.request.raw_arguments},
            "state": self.state.value,
            "timestamps": {
                "created": self.timestamps.created,
                "approved": self.timestamps.approved,
                "execution_started": self.timestamps.execution_started,
                "execution_completed": self.timestamps.execution_completed,
            },
            "auto_approved": self.auto_approved,
            "approval_reason": self.approval_reason,
            "server_id": self.server_id,
            "result": self.result.to_dict() if self.result else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], message_id: Optional[str] = None) -> "ToolCall":
        """Rebuild a call from :meth:`to_dict` output."""
        request_data = data.get("request") or {}
        request = ToolCallRequest(
            id=str(request_data.get("id") or data["id"]),
            name=str(request_data.get("name") or ""),
            raw_arguments=str(request_data.get("arguments") or ""),
        )
        ts = data.get("timestamps") or {}
        result_data = data.get("result")
        result: Optional[ToolCallResult] = None
        if result_data:
            if result_data.get("success"):
                result = ToolCallResult.ok(result_data.get("data"))
            else:
                err = result_data.get("error") or {}
                result = ToolCallResult.fail(
                    err.get("code", ToolCallErrorCode.EXECUTION_ERROR.value),
                    err.get("message", ""),
                    err.get("details"),
                )
        return cls(
            id=str(data["id"]),
            message_id=str(message_id or data.get("message_id") or ""),
            request=request,
            state=ToolCallState(data.get("state", ToolCallState.CREATED.value)),
            timestamps=ToolCallTimestamps(
                created=ts.get("created") or time.time(),
                approved=ts.get("approved"),
                execution_started=ts.get("execution_started"),
                execution_completed=ts.get("execution_completed"),
            ),
            auto_approved=bool(data.get("auto_approved", False)),
            approval_reason=data.get("approval_reason"),
            server_id=data.get("server_id"),
            result=result,
        )
