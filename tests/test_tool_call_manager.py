import asyncio
import json
import time
from typing import Any, Annotated, Dict, List

import pytest
from pydantic import Field

from toolcall_engine import SimpleToolRegistry, ToolCallManager, ToolCallRequest, ToolCallState
from toolcall_engine.core import ApprovalContext, ToolCallManagerSettings
from toolcall_engine.core.exceptions import InvalidStateTransitionError, InvalidToolCallError
from toolcall_engine.core.tools.execution import ToolCallEventType, ToolCallLifecycleEvent
from toolcall_engine.core.tools.models import ToolCallErrorCode


def request(call_id: str, name: str, arguments: Any = None) -> ToolCallRequest:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments or {})
    return ToolCallRequest(id=call_id, name=name, raw_arguments=raw)


@pytest.fixture
def file_registry(registry: SimpleToolRegistry) -> SimpleToolRegistry:
    @registry.tool
    async def read_file(path: Annotated[str, Field(description="Vault path")]) -> Dict[str, Any]:
        """Read a file from the vault."""
        await asyncio.sleep(0)
        if path == "FAIL":
            raise FileNotFoundError(f"No such file: {path}")
        return {"path": path, "content": f"contents of {path}"}

    @registry.tool
    async def write_file(path: str, content: str = "") -> Dict[str, Any]:
        """Write a file to the vault."""
        await asyncio.sleep(0)
        return {"path": path, "written": len(content)}

    return registry


@pytest.fixture
def file_manager(file_registry: SimpleToolRegistry) -> ToolCallManager:
    return ToolCallManager(file_registry)


@pytest.mark.asyncio
async def test_read_only_call_is_auto_approved_and_completes(file_manager: ToolCallManager) -> None:
    call = file_manager.create(request("c1", "read_file", {"path": "A"}), "m1")
    assert call.state is ToolCallState.APPROVED
    assert call.auto_approved is True
    assert call.approval_reason == "non-mutating"

    [settled] = await file_manager.settle_all(["c1"])
    assert settled.state is ToolCallState.COMPLETED
    assert settled.result is not None and settled.result.success
    assert settled.result.data == {"path": "A", "content": "contents of A"}
    assert settled.timestamps.approved is not None
    assert settled.timestamps.execution_started is not None
    assert settled.timestamps.execution_completed is not None


@pytest.mark.asyncio
async def test_mutating_call_waits_for_approval(file_manager: ToolCallManager) -> None:
    call = file_manager.create(request("w1", "write_file", {"path": "A", "content": "hi"}), "m1")
    assert call.state is ToolCallState.PENDING_APPROVAL
    assert call.approval_reason == "mutating-default"
    assert [c.id for c in file_manager.get_pending_tool_calls()] == ["w1"]

    waiter = asyncio.create_task(file_manager.settle_all(["w1"]))
    await asyncio.sleep(0.01)
    assert not waiter.done()

    approved = file_manager.approve("w1")
    assert approved is not None and approved.state is ToolCallState.APPROVED
    # approving again is a no-op
    assert file_manager.approve("w1") is not None

    [settled] = await asyncio.wait_for(waiter, timeout=1)
    assert settled.state is ToolCallState.COMPLETED
    assert settled.result is not None and settled.result.data == {"path": "A", "written": 2}
    assert file_manager.get_pending_tool_calls() == []


@pytest.mark.asyncio
async def test_approve_unknown_or_terminal_call_is_noop(file_manager: ToolCallManager) -> None:
    assert file_manager.approve("missing") is None

    file_manager.create(request("c1", "read_file", {"path": "A"}), "m1")
    await file_manager.settle_all(["c1"])
    after = file_manager.approve("c1")
    assert after is not None and after.state is ToolCallState.COMPLETED


@pytest.mark.asyncio
async def test_allowlist_and_disabled_toggle_auto_approve(file_registry: SimpleToolRegistry) -> None:
    allowlisted = ToolCallManager(file_registry, ApprovalContext(auto_approve_allowlist=["write_file"]))
    call = allowlisted.create(request("w1", "write_file", {"path": "A"}), "m1")
    assert call.approval_reason == "allowlisted"

    permissive = ToolCallManager(file_registry, ApprovalContext(require_destructive_approval=False))
    call = permissive.create(request("w1", "write_file", {"path": "A"}), "m1")
    assert call.approval_reason == "policy-disabled"

    await allowlisted.settle_all(["w1"])
    await permissive.settle_all(["w1"])


@pytest.mark.asyncio
async def test_deny_fails_call_with_user_denied(file_manager: ToolCallManager) -> None:
    denied_events: List[ToolCallLifecycleEvent] = []
    file_manager.on("tool-call:denied", denied_events.append)

    file_manager.create(request("w1", "write_file", {"path": "A"}), "m1")
    call = file_manager.deny("w1")

    assert call is not None
    assert call.state is ToolCallState.FAILED
    assert call.result is not None and call.result.error is not None
    assert call.result.error.code == ToolCallErrorCode.USER_DENIED.value
    assert [e.tool_call.id for e in denied_events] == ["w1"]
    await asyncio.wait_for(file_manager.settle_all(["w1"]), timeout=1)


@pytest.mark.asyncio
async def test_cancel_fails_call_with_user_canceled(file_manager: ToolCallManager) -> None:
    file_manager.create(request("w1", "write_file", {"path": "A"}), "m1")
    call = file_manager.cancel("w1", "Session closed.")
    assert call is not None and call.result is not None and call.result.error is not None
    assert call.result.error.code == ToolCallErrorCode.USER_CANCELED.value
    assert call.result.error.message == "Session closed."


@pytest.mark.asyncio
async def test_trust_for_session_approves_matching_pending_calls(file_registry: SimpleToolRegistry) -> None:
    @file_registry.tool
    def delete_file(path: str) -> str:
        """Delete a file."""
        return f"deleted {path}"

    manager = ToolCallManager(file_registry)
    manager.create(request("w1", "write_file", {"path": "A"}), "m1")
    manager.create(request("w2", "write_file", {"path": "B"}), "m1")
    manager.create(request("d1", "delete_file", {"path": "C"}), "m1")

    approved = manager.trust_for_session("write_file")
    assert sorted(c.id for c in approved) == ["w1", "w2"]
    assert [c.id for c in manager.get_pending_tool_calls()] == ["d1"]
    assert "write_file" in manager.approval_context.trusted_tool_names

    later = manager.create(request("w3", "write_file", {"path": "D"}), "m1")
    assert later.approval_reason == "trusted-session"

    settled = await manager.settle_all(["w1", "w2", "w3"])
    assert all(c.state is ToolCallState.COMPLETED for c in settled)
    manager.deny("d1")


@pytest.mark.asyncio
async def test_failing_executor_is_contained(file_manager: ToolCallManager) -> None:
    file_manager.create(request("a", "read_file", {"path": "A"}), "m1")
    file_manager.create(request("fail", "read_file", {"path": "FAIL"}), "m1")
    file_manager.create(request("b", "read_file", {"path": "B"}), "m1")

    settled = await file_manager.settle_all(["a", "fail", "b"])
    states = {c.id: c.state for c in settled}
    assert states == {"a": ToolCallState.COMPLETED, "fail": ToolCallState.FAILED, "b": ToolCallState.COMPLETED}

    failed = file_manager.get_tool_call("fail")
    assert failed is not None and failed.result is not None and failed.result.error is not None
    assert failed.result.error.code == ToolCallErrorCode.EXECUTION_ERROR.value
    assert "No such file: FAIL" in failed.result.error.message


@pytest.mark.asyncio
async def test_independent_calls_run_concurrently(registry: SimpleToolRegistry) -> None:
    started: List[str] = []
    all_started = asyncio.Event()

    async def gate(name: str) -> str:
        started.append(name)
        if len(started) == 3:
            all_started.set()
        await all_started.wait()
        return name

    registry.register("gate", "Wait for the others.", gate, {"type": "object", "properties": {"name": {"type": "string"}}})
    manager = ToolCallManager(registry)
    for name in ("x", "y", "z"):
        manager.create(request(name, "gate", {"name": name}), "m1")

    settled = await asyncio.wait_for(manager.settle_all(["x", "y", "z"]), timeout=1)
    assert sorted(started) == ["x", "y", "z"]
    assert [c.result.data for c in settled if c.result] == ["x", "y", "z"]


@pytest.mark.asyncio
async def test_concurrency_limit_bounds_running_executors(registry: SimpleToolRegistry) -> None:
    running = 0
    peak = 0

    async def slow(n: int) -> int:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return n

    registry.register("slow", "Sleep a bit.", slow, {"type": "object", "properties": {"n": {"type": "integer"}}})
    manager = ToolCallManager(registry, settings=ToolCallManagerSettings(concurrency_limit=2))
    ids = [f"s{i}" for i in range(5)]
    for i, call_id in enumerate(ids):
        manager.create(request(call_id, "slow", {"n": i}), "m1")

    settled = await manager.settle_all(ids)
    assert all(c.state is ToolCallState.COMPLETED for c in settled)
    assert peak == 2


@pytest.mark.asyncio
async def test_tool_timeout(registry: SimpleToolRegistry) -> None:
    async def sleepy() -> str:
        await asyncio.sleep(1)
        return "late"

    registry.register("sleepy", "Sleeps.", sleepy, {"type": "object", "properties": {}})
    manager = ToolCallManager(registry, settings=ToolCallManagerSettings(tool_timeout=0.05))
    manager.create(request("t1", "sleepy"), "m1")

    [call] = await manager.settle_all(["t1"])
    assert call.state is ToolCallState.FAILED
    assert call.result is not None and call.result.error is not None
    assert call.result.error.code == ToolCallErrorCode.TIMEOUT.value


@pytest.mark.asyncio
async def test_sync_executor_runs_in_thread(registry: SimpleToolRegistry) -> None:
    @registry.tool
    def list_files(folder: str = "/") -> List[str]:
        """List files in a folder."""
        time.sleep(0.01)
        return [f"{folder}a.md", f"{folder}b.md"]

    manager = ToolCallManager(registry)
    manager.create(request("l1", "list_files", {"folder": "/notes/"}), "m1")
    [call] = await manager.settle_all(["l1"])
    assert call.result is not None and call.result.data == ["/notes/a.md", "/notes/b.md"]


@pytest.mark.asyncio
async def test_argument_validation_error(file_manager: ToolCallManager) -> None:
    file_manager.create(request("c1", "read_file", {}), "m1")
    [call] = await file_manager.settle_all(["c1"])
    assert call.state is ToolCallState.FAILED
    assert call.result is not None and call.result.error is not None
    assert call.result.error.code == ToolCallErrorCode.ARGUMENT_VALIDATION_ERROR.value


@pytest.mark.asyncio
async def test_calls_rejected_at_creation(file_manager: ToolCallManager) -> None:
    decode = file_manager.create(request("d", "read_file", '{"path": "A"'), "m1", decode_error="Invalid JSON")
    unknown = file_manager.create(request("u", "launch_rocket", {}), "m1")
    unnamed = file_manager.create(request("n", "", {}), "m1")

    expected = {
        "d": ToolCallErrorCode.DECODE_ERROR,
        "u": ToolCallErrorCode.TOOL_NOT_FOUND,
        "n": ToolCallErrorCode.INVALID_TOOL_NAME,
    }
    for call in (decode, unknown, unnamed):
        assert call.state is ToolCallState.FAILED
        assert call.result is not None and call.result.error is not None
        assert call.result.error.code == expected[call.id].value

    # already settled
    await asyncio.wait_for(file_manager.settle_all(["d", "u", "n"]), timeout=1)


def test_create_requires_an_id(file_manager: ToolCallManager) -> None:
    with pytest.raises(InvalidToolCallError):
        file_manager.create(ToolCallRequest(id="", name="read_file"), "m1")


@pytest.mark.asyncio
async def test_duplicate_create_returns_existing_call(file_manager: ToolCallManager) -> None:
    first = file_manager.create(request("c1", "write_file", {"path": "A"}), "m1")
    second = file_manager.create(request("c1", "write_file", {"path": "B"}), "m1")
    assert second.request.raw_arguments == first.request.raw_arguments
    assert len(file_manager.get_tool_calls_for_message("m1")) == 1
    file_manager.deny("c1")


@pytest.mark.asyncio
async def test_repeat_failures_are_blocked(file_manager: ToolCallManager) -> None:
    for call_id in ("f1", "f2"):
        file_manager.create(request(call_id, "read_file", {"path": "FAIL"}), "m1")
        await file_manager.settle_all([call_id])

    blocked = file_manager.create(request("f3", "read_file", {"path": "FAIL"}), "m1")
    assert blocked.state is ToolCallState.FAILED
    assert blocked.result is not None and blocked.result.error is not None
    assert blocked.result.error.code == ToolCallErrorCode.TOOL_LOOP_BLOCKED.value
    assert blocked.result.error.details["failed_attempts"] == 2

    # a different message starts fresh
    other = file_manager.create(request("f4", "read_file", {"path": "FAIL"}), "m2")
    assert other.state is ToolCallState.APPROVED
    await file_manager.settle_all(["f4"])


@pytest.mark.asyncio
async def test_repeat_after_denial_is_blocked(file_manager: ToolCallManager) -> None:
    file_manager.create(request("w1", "write_file", {"path": "A"}), "m1")
    file_manager.deny("w1")

    # key order does not matter for the signature
    blocked = file_manager.create(request("w2", "write_file", '{ "path" : "A" }'), "m1")
    assert blocked.result is not None and blocked.result.error is not None
    assert blocked.result.error.code == ToolCallErrorCode.TOOL_LOOP_BLOCKED.value


@pytest.mark.asyncio
async def test_large_results_are_truncated(registry: SimpleToolRegistry) -> None:
    async def read_big() -> Dict[str, Any]:
        return {"path": "big.md", "content": "x" * 50_000}

    registry.register("read_big", "Read a big file.", read_big, {"type": "object", "properties": {}})
    manager = ToolCallManager(registry)
    manager.create(request("b1", "read_big"), "m1")
    [call] = await manager.settle_all(["b1"])

    assert call.result is not None and call.result.success
    data = call.result.data
    assert len(json.dumps(data)) <= 10_000
    assert data["truncated"] is True
    assert data["original_length"] == 50_000
    assert data["path"] == "big.md"


@pytest.mark.asyncio
async def test_lifecycle_events_in_order(file_manager: ToolCallManager) -> None:
    seen: List[tuple] = []
    for event_type in ToolCallEventType:
        file_manager.on(event_type, lambda e: seen.append((e.type.value, e.tool_call.state.value)))

    file_manager.create(request("c1", "read_file", {"path": "A"}), "m1")
    await file_manager.settle_all(["c1"])

    assert seen == [
        ("tool-call:created", "created"),
        ("tool-call:state-changed", "approved"),
        ("tool-call:approved", "approved"),
        ("tool-call:state-changed", "executing"),
        ("tool-call:execution-started", "executing"),
        ("tool-call:state-changed", "completed"),
        ("tool-call:execution-completed", "completed"),
    ]


@pytest.mark.asyncio
async def test_failed_execution_emits_execution_failed(file_manager: ToolCallManager) -> None:
    failed: List[ToolCallLifecycleEvent] = []
    file_manager.on(ToolCallEventType.EXECUTION_FAILED, failed.append)
    file_manager.create(request("c1", "read_file", {"path": "FAIL"}), "m1")
    await file_manager.settle_all(["c1"])
    assert [e.tool_call.id for e in failed] == ["c1"]
    assert failed[0].tool_call.result is not None


@pytest.mark.asyncio
async def test_listener_errors_and_unsubscribe(file_manager: ToolCallManager) -> None:
    received: List[str] = []

    def broken(event: ToolCallLifecycleEvent) -> None:
        raise RuntimeError("listener bug")

    file_manager.on("tool-call:created", broken)
    unsubscribe = file_manager.on("tool-call:created", lambda e: received.append(e.tool_call.id))

    file_manager.create(request("c1", "read_file", {"path": "A"}), "m1")
    unsubscribe()
    file_manager.create(request("c2", "read_file", {"path": "B"}), "m1")

    assert received == ["c1"]
    settled = await file_manager.settle_all(["c1", "c2"])
    assert all(c.state is ToolCallState.COMPLETED for c in settled)


def test_unknown_event_name_is_rejected(file_manager: ToolCallManager) -> None:
    with pytest.raises(ValueError):
        file_manager.on("tool-call:exploded", lambda e: None)


@pytest.mark.asyncio
async def test_snapshots_are_isolated(file_manager: ToolCallManager) -> None:
    snapshot = file_manager.create(request("w1", "write_file", {"path": "A"}), "m1")
    snapshot.state = ToolCallState.COMPLETED
    snapshot.timestamps.approved = 1.0

    current = file_manager.get_tool_call("w1")
    assert current is not None
    assert current.state is ToolCallState.PENDING_APPROVAL
    assert current.timestamps.approved is None
    file_manager.deny("w1")


@pytest.mark.asyncio
async def test_terminal_result_is_never_overwritten(file_manager: ToolCallManager) -> None:
    file_manager.create(request("c1", "read_file", {"path": "A"}), "m1")
    [done] = await file_manager.settle_all(["c1"])

    file_manager.deny("c1")
    file_manager.cancel("c1")
    file_manager.approve("c1")
    await file_manager.execute("c1")

    again = file_manager.get_tool_call("c1")
    assert again is not None
    assert again.state is ToolCallState.COMPLETED
    assert again.result == done.result

    with pytest.raises(InvalidStateTransitionError):
        again.transition(ToolCallState.EXECUTING)


@pytest.mark.asyncio
async def test_execute_unknown_call_raises(file_manager: ToolCallManager) -> None:
    with pytest.raises(InvalidToolCallError):
        await file_manager.execute("nope")


def test_calls_created_without_loop_run_on_settle(file_registry: SimpleToolRegistry) -> None:
    manager = ToolCallManager(file_registry)
    call = manager.create(request("c1", "read_file", {"path": "A"}), "m1")
    assert call.state is ToolCallState.APPROVED

    [settled] = asyncio.run(manager.settle_all(["c1"]))
    assert settled.state is ToolCallState.COMPLETED


@pytest.mark.asyncio
async def test_serialize_and_restore(file_manager: ToolCallManager, file_registry: SimpleToolRegistry) -> None:
    file_manager.create(request("c1", "read_file", {"path": "A"}), "m1")
    await file_manager.settle_all(["c1"])
    file_manager.create(request("w1", "write_file", {"path": "B"}), "m1")

    done = file_manager.serialize_tool_call("c1")
    pending = file_manager.serialize_tool_call("w1")
    assert file_manager.serialize_tool_call("missing") is None
    assert done is not None and pending is not None
    assert done["state"] == "completed"
    assert done["result"] == {"success": True, "data": {"path": "A", "content": "contents of A"}}

    restored_manager = ToolCallManager(file_registry)
    restored = restored_manager.restore_tool_call(done, "m9")
    assert restored.message_id == "m9"
    assert restored.state is ToolCallState.COMPLETED
    assert restored.result is not None and restored.result.data == {"path": "A", "content": "contents of A"}

    waiting = restored_manager.restore_tool_call(pending)
    assert waiting.state is ToolCallState.PENDING_APPROVAL
    restored_manager.approve("w1")
    [finished] = await restored_manager.settle_all(["w1"])
    assert finished.state is ToolCallState.COMPLETED


def test_restore_interrupted_call_marks_it_failed(file_manager: ToolCallManager) -> None:
    restored = file_manager.restore_tool_call(
        {"id": "x1", "request": {"id": "x1", "name": "read_file", "arguments": "{}"}, "state": "executing"}, "m1"
    )
    assert restored.state is ToolCallState.FAILED
    assert restored.result is not None and not restored.result.success


@pytest.mark.asyncio
async def test_reset_session_releases_waiters(file_manager: ToolCallManager) -> None:
    file_manager.create(request("w1", "write_file", {"path": "A"}), "m1")
    file_manager.trust_for_session("delete_file")
    waiter = asyncio.create_task(file_manager.settle_all(["w1"]))
    await asyncio.sleep(0)

    file_manager.reset_session()
    await asyncio.wait_for(waiter, timeout=1)
    assert file_manager.get_tool_call("w1") is None
    assert file_manager.approval_context.trusted_tool_names == set()


@pytest.mark.asyncio
async def test_aclose_waits_for_in_flight_calls(file_manager: ToolCallManager) -> None:
    file_manager.create(request("c1", "read_file", {"path": "A"}), "m1")
    await file_manager.aclose()
    call = file_manager.get_tool_call("c1")
    assert call is not None and call.state is ToolCallState.COMPLETED
