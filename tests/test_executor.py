import asyncio

import pytest

from orchestration_service.catalog import FunctionHandler, OperationRegistry
from orchestration_service.errors import ErrorKind, UpstreamError
from orchestration_service.executor import ResilientCallExecutor
from orchestration_service.outcomes import CallFailure, CallSuccess, RetryPolicy
from orchestration_service.schemas import CallSpec


class ScriptedOperation:
    """Raises the queued errors in order, then returns ``data``."""

    def __init__(self, errors=(), data=None):
        self.errors = list(errors)
        self.data = data if data is not None else {"Success": True, "Data": []}
        self.calls = 0

    async def __call__(self, params):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.data


def make_executor(sleep, **handlers):
    registry = OperationRegistry(FunctionHandler(op_id, fn) for op_id, fn in handlers.items())
    return ResilientCallExecutor(registry, policy=RetryPolicy(max_attempts=3, base_delay_ms=100), sleep=sleep,
                                 timeout_s=5)


@pytest.mark.asyncio
async def test_success_first_try(recording_sleep):
    op = ScriptedOperation(data={"rows": [1, 2]})
    ex = make_executor(recording_sleep, get_items=op)
    outcome = await ex.execute(CallSpec(operation_id="get_items"))
    assert isinstance(outcome, CallSuccess)
    assert outcome.data == {"rows": [1, 2]}
    assert outcome.attempts == 1
    assert recording_sleep.calls == []


@pytest.mark.asyncio
async def test_retriable_failure_is_attempted_max_attempts_times(recording_sleep):
    op = ScriptedOperation(errors=[UpstreamError("connection reset", code="ECONNRESET") for _ in range(10)])
    ex = make_executor(recording_sleep, get_items=op)
    outcome = await ex.execute(CallSpec(operation_id="get_items"))
    assert isinstance(outcome, CallFailure)
    assert outcome.kind == ErrorKind.RETRIABLE
    assert op.calls == 3
    assert outcome.attempts == 3
    # no sleep after the final attempt
    assert recording_sleep.calls == [0.1, 0.2]


@pytest.mark.asyncio
async def test_fatal_failure_is_attempted_once(recording_sleep):
    op = ScriptedOperation(errors=[UpstreamError("Invalid filter expression", status=400)])
    ex = make_executor(recording_sleep, get_items=op)
    outcome = await ex.execute(CallSpec(operation_id="get_items"))
    assert isinstance(outcome, CallFailure)
    assert outcome.kind == ErrorKind.FATAL
    assert op.calls == 1
    assert recording_sleep.calls == []


@pytest.mark.asyncio
async def test_success_after_two_retries_observes_two_backoffs(recording_sleep):
    op = ScriptedOperation(errors=[asyncio.TimeoutError(), UpstreamError("request timeout", code="ETIMEDOUT")],
                           data={"ok": 1})
    ex = make_executor(recording_sleep, get_items=op)
    outcome = await ex.execute(CallSpec(operation_id="get_items", parameters={"filter": "category=X"}))
    assert isinstance(outcome, CallSuccess)
    assert outcome.data == {"ok": 1}
    assert outcome.attempts == 3
    assert recording_sleep.calls == [0.1, 0.2]


@pytest.mark.asyncio
async def test_unknown_operation_is_fatal_without_invocation(recording_sleep):
    op = ScriptedOperation()
    ex = make_executor(recording_sleep, get_items=op)
    outcome = await ex.execute(CallSpec(operation_id="drop_everything"))
    assert isinstance(outcome, CallFailure)
    assert outcome.kind == ErrorKind.FATAL
    assert outcome.attempts == 1
    assert "unknown operation" in outcome.message
    assert op.calls == 0


@pytest.mark.asyncio
async def test_injection_is_rejected_before_contacting_upstream(recording_sleep):
    op = ScriptedOperation()
    ex = make_executor(recording_sleep, get_items=op)
    spec = CallSpec(operation_id="get_items", parameters={"filter": "1=1; DROP TABLE Items"})
    outcome = await ex.execute(spec)
    assert isinstance(outcome, CallFailure)
    assert outcome.kind == ErrorKind.FATAL
    assert op.calls == 0


@pytest.mark.asyncio
async def test_policy_argument_overrides_default(recording_sleep):
    op = ScriptedOperation(errors=[ConnectionResetError("reset")] * 5)
    ex = make_executor(recording_sleep, get_items=op)
    outcome = await ex.execute(CallSpec(operation_id="get_items"), RetryPolicy(max_attempts=5, base_delay_ms=10))
    assert outcome.attempts == 5
    assert recording_sleep.calls == [0.01, 0.02, 0.04, 0.08]


@pytest.mark.asyncio
async def test_slow_operation_counts_as_timed_out_attempt(recording_sleep):
    calls = {"n": 0}

    async def slow(params):
        calls["n"] += 1
        if calls["n"] == 1:
            await asyncio.sleep(1)
        return "done"

    registry = OperationRegistry([FunctionHandler("slow_op", slow)])
    ex = ResilientCallExecutor(registry, policy=RetryPolicy(max_attempts=2, base_delay_ms=1),
                               sleep=recording_sleep, timeout_s=0.05)
    outcome = await ex.execute(CallSpec(operation_id="slow_op"))
    assert isinstance(outcome, CallSuccess)
    assert outcome.attempts == 2
    assert len(recording_sleep.calls) == 1


@pytest.mark.asyncio
async def test_cancellation_propagates(recording_sleep):
    started = asyncio.Event()

    async def hang(params):
        started.set()
        await asyncio.sleep(10)

    registry = OperationRegistry([FunctionHandler("hang", hang)])
    ex = ResilientCallExecutor(registry, sleep=recording_sleep, timeout_s=30)
    task = asyncio.create_task(ex.execute(CallSpec(operation_id="hang")))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_retry_policy_delay_formula():
    p = RetryPolicy(max_attempts=4, base_delay_ms=1000)
    assert [p.delay_ms(n) for n in (1, 2, 3)] == [1000, 2000, 4000]
    capped = RetryPolicy(max_attempts=10, base_delay_ms=1000, max_delay_ms=5000)
    assert capped.delay_ms(6) == 5000
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


@pytest.mark.asyncio
async def test_unconfirmed_write_is_fatal_and_never_invoked(recording_sleep):
    op = ScriptedOperation()
    registry = OperationRegistry([FunctionHandler("import_items", op, requires_confirmation=True)])
    ex = ResilientCallExecutor(registry, policy=RetryPolicy(max_attempts=3, base_delay_ms=100),
                               sleep=recording_sleep, timeout_s=5)
    outcome = await ex.execute(CallSpec(operation_id="import_items", parameters={"data": []}))
    assert isinstance(outcome, CallFailure)
    assert outcome.kind == ErrorKind.FATAL
    assert outcome.attempts == 1
    assert op.calls == 0
    assert recording_sleep.calls == []

    confirmed = await ex.execute(CallSpec(operation_id="import_items", parameters={"data": []}, confirmed=True))
    assert isinstance(confirmed, CallSuccess)
    assert op.calls == 1
