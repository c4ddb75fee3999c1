import asyncio
import traceback

import pytest

from callgate.circuit_breaker import (
    CallGate,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
)
from tests.callgate.support.fakes import (
    ExplodingListener,
    FakeClock,
    RecordingListener,
)

pytestmark = pytest.mark.asyncio


class _UpstreamError(RuntimeError):
    pass


def _gate(
    clock: FakeClock,
    *,
    listeners: list[object] | None = None,
    **config: object,
) -> CallGate:
    options: dict[str, object] = {
        "failure_threshold": 1,
        "success_threshold": 1,
        "open_duration": 10.0,
    }
    options.update(config)
    breaker = CircuitBreaker(
        "svc",
        config=CircuitBreakerConfig(**options),  # type: ignore[arg-type]
        clock=clock,
    )
    return CallGate(breaker, listeners=listeners)  # type: ignore[arg-type]


async def _fail() -> None:
    raise _UpstreamError("upstream down")


async def test_async_and_sync_operations_return_values(fake_clock: FakeClock) -> None:
    gate = _gate(fake_clock)

    async def _async_ok(value: int, *, scale: int) -> int:
        return value * scale

    def _sync_ok() -> str:
        return "sync"

    assert await gate.execute(_async_ok, 2, scale=3) == 6
    assert await gate.execute(_sync_ok) == "sync"
    assert gate.breaker.state == CircuitState.CLOSED


async def test_operation_error_propagates_unchanged(fake_clock: FakeClock) -> None:
    gate = _gate(fake_clock, failure_threshold=2)
    error = _UpstreamError("exact")

    def _raise() -> None:
        raise error

    with pytest.raises(_UpstreamError) as excinfo:
        await gate.execute(_raise)

    assert excinfo.value is error
    assert gate.breaker.failure_count == 1


async def test_rejection_raises_error_that_opened_the_circuit(
    fake_clock: FakeClock,
) -> None:
    gate = _gate(fake_clock)
    calls = 0

    async def _counted() -> None:
        nonlocal calls
        calls += 1
        raise _UpstreamError("upstream down")

    with pytest.raises(_UpstreamError) as first:
        await gate.execute(_counted)
    with pytest.raises(_UpstreamError) as rejected:
        await gate.execute(_counted)

    assert rejected.value is first.value
    assert calls == 1


async def test_rejection_does_not_chain_callers_active_exception(
    fake_clock: FakeClock,
) -> None:
    gate = _gate(fake_clock)
    with pytest.raises(_UpstreamError) as opener:
        await gate.execute(_fail)

    try:
        raise KeyError("caller side")
    except KeyError:
        with pytest.raises(_UpstreamError) as rejected:
            await gate.execute(_fail)

    assert rejected.value is opener.value
    assert rejected.value.__cause__ is None
    assert rejected.value.__suppress_context__ is True
    rendered = "".join(traceback.format_exception(rejected.value))
    assert "caller side" not in rendered


async def test_repeated_rejections_do_not_grow_traceback(
    fake_clock: FakeClock,
) -> None:
    gate = _gate(fake_clock)
    with pytest.raises(_UpstreamError):
        await gate.execute(_fail)

    depths = []
    for _ in range(3):
        with pytest.raises(_UpstreamError) as excinfo:
            await gate.execute(_fail)
        depths.append(len(traceback.extract_tb(excinfo.value.__traceback__)))

    assert depths[0] == depths[1] == depths[2]


async def test_force_open_without_error_raises_circuit_open_error(
    fake_clock: FakeClock,
) -> None:
    gate = _gate(fake_clock)
    gate.breaker.force_open()

    async def _ok() -> str:
        return "ok"

    with pytest.raises(CircuitOpenError) as excinfo:
        await gate.execute(_ok)

    assert excinfo.value.breaker_name == "svc"
    assert excinfo.value.retry_after == pytest.approx(10.0)


async def test_probe_success_closes_after_wait(fake_clock: FakeClock) -> None:
    listener = RecordingListener()
    gate = _gate(fake_clock, listeners=[listener])

    with pytest.raises(_UpstreamError):
        await gate.execute(_fail)
    fake_clock.advance(10.0)

    async def _ok() -> str:
        return "ok"

    assert await gate.execute(_ok) == "ok"
    assert gate.breaker.state == CircuitState.CLOSED
    assert [event for event in listener.events if event[0] == "state"] == [
        ("state", ("svc", CircuitState.CLOSED, CircuitState.OPEN)),
        ("state", ("svc", CircuitState.OPEN, CircuitState.HALF_OPEN)),
        ("state", ("svc", CircuitState.HALF_OPEN, CircuitState.CLOSED)),
    ]


async def test_half_open_allows_single_probe_and_rejects_concurrent(
    fake_clock: FakeClock,
) -> None:
    gate = _gate(fake_clock)
    with pytest.raises(_UpstreamError) as opener:
        await gate.execute(_fail)
    fake_clock.advance(10.0)

    started = asyncio.Event()
    release = asyncio.Event()

    async def _probe() -> str:
        started.set()
        await release.wait()
        return "ok"

    task = asyncio.create_task(gate.execute(_probe))
    await started.wait()

    async def _ok() -> str:
        return "ok"

    with pytest.raises(_UpstreamError) as rejected:
        await gate.execute(_ok)
    assert rejected.value is opener.value

    release.set()
    assert await task == "ok"
    assert await gate.execute(_ok) == "ok"
    assert gate.breaker.state == CircuitState.CLOSED


async def test_cancelled_probe_records_nothing_and_frees_slot(
    fake_clock: FakeClock,
) -> None:
    gate = _gate(fake_clock, success_threshold=2)
    with pytest.raises(_UpstreamError):
        await gate.execute(_fail)
    fake_clock.advance(10.0)

    started = asyncio.Event()

    async def _hang() -> None:
        started.set()
        await asyncio.Event().wait()

    task = asyncio.create_task(gate.execute(_hang))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    snapshot = gate.breaker.snapshot()
    assert snapshot.state == CircuitState.HALF_OPEN
    assert snapshot.success_count == 0
    assert snapshot.failure_count == 1

    async def _ok() -> str:
        return "ok"

    assert await gate.execute(_ok) == "ok"


async def test_excluded_exception_is_neutral(fake_clock: FakeClock) -> None:
    class _Excluded(Exception):
        pass

    listener = RecordingListener()
    gate = _gate(
        fake_clock,
        listeners=[listener],
        excluded_exceptions=(_Excluded,),
    )

    async def _excluded() -> None:
        raise _Excluded("not a dependency failure")

    with pytest.raises(_Excluded):
        await gate.execute(_excluded)

    assert gate.breaker.state == CircuitState.CLOSED
    assert gate.breaker.failure_count == 0
    assert listener.events == []


async def test_unexpected_exception_type_is_not_counted(
    fake_clock: FakeClock,
) -> None:
    gate = _gate(fake_clock, expected_exceptions=(_UpstreamError,))

    async def _bug() -> None:
        raise KeyError("missing")

    with pytest.raises(KeyError):
        await gate.execute(_bug)

    assert gate.breaker.failure_count == 0
    assert gate.breaker.state == CircuitState.CLOSED


async def test_call_timeout_counts_as_failure(fake_clock: FakeClock) -> None:
    gate = _gate(fake_clock, call_timeout=0.01)

    async def _slow() -> None:
        await asyncio.sleep(1.0)

    with pytest.raises(TimeoutError):
        await gate.execute(_slow)

    assert gate.breaker.state == CircuitState.OPEN
    assert isinstance(gate.breaker.last_error, TimeoutError)


async def test_listener_exceptions_are_suppressed(fake_clock: FakeClock) -> None:
    recording = RecordingListener()
    gate = _gate(fake_clock, listeners=[ExplodingListener(), recording])

    with pytest.raises(_UpstreamError):
        await gate.execute(_fail)
    with pytest.raises(_UpstreamError):
        await gate.execute(_fail)

    assert recording.events == [
        ("failed", ("svc", "_UpstreamError")),
        ("state", ("svc", CircuitState.CLOSED, CircuitState.OPEN)),
        ("rejected", "svc"),
    ]


async def test_protect_wraps_operation(fake_clock: FakeClock) -> None:
    gate = _gate(fake_clock)

    @gate.protect
    async def lookup(key: str) -> str:
        """Look up one key."""
        return key.upper()

    assert await lookup("abc") == "ABC"
    assert lookup.__name__ == "lookup"
    assert lookup.__doc__ == "Look up one key."


async def test_late_success_from_closed_call_keeps_half_open_slot(
    fake_clock: FakeClock,
) -> None:
    gate = _gate(fake_clock, success_threshold=2)
    running: list[str] = []
    slow_started = asyncio.Event()
    slow_release = asyncio.Event()
    first_started = asyncio.Event()
    first_release = asyncio.Event()

    async def _slow() -> str:
        slow_started.set()
        await slow_release.wait()
        return "slow"

    async def _first() -> str:
        running.append("first")
        first_started.set()
        await first_release.wait()
        return "first"

    async def _second() -> str:
        running.append("second")
        return "second"

    slow = asyncio.create_task(gate.execute(_slow))
    await slow_started.wait()
    with pytest.raises(_UpstreamError) as opener:
        await gate.execute(_fail)
    fake_clock.advance(10.0)

    first = asyncio.create_task(gate.execute(_first))
    await first_started.wait()
    slow_release.set()
    assert await slow == "slow"
    assert gate.breaker.success_count == 0

    with pytest.raises(_UpstreamError) as rejected:
        await gate.execute(_second)
    assert rejected.value is opener.value
    assert running == ["first"]

    first_release.set()
    assert await first == "first"
    assert gate.breaker.state == CircuitState.HALF_OPEN
    assert gate.breaker.success_count == 1


async def test_late_failure_from_closed_call_does_not_reopen_half_open(
    fake_clock: FakeClock,
) -> None:
    gate = _gate(fake_clock)
    slow_started = asyncio.Event()
    slow_release = asyncio.Event()
    first_started = asyncio.Event()
    first_release = asyncio.Event()

    async def _slow_fail() -> None:
        slow_started.set()
        await slow_release.wait()
        raise _UpstreamError("late")

    async def _first() -> str:
        first_started.set()
        await first_release.wait()
        return "first"

    slow = asyncio.create_task(gate.execute(_slow_fail))
    await slow_started.wait()
    with pytest.raises(_UpstreamError) as opener:
        await gate.execute(_fail)
    fake_clock.advance(10.0)

    first = asyncio.create_task(gate.execute(_first))
    await first_started.wait()
    slow_release.set()
    with pytest.raises(_UpstreamError, match="late"):
        await slow

    assert gate.breaker.state == CircuitState.HALF_OPEN
    assert gate.breaker.last_error is opener.value

    first_release.set()
    assert await first == "first"
    assert gate.breaker.state == CircuitState.CLOSED
