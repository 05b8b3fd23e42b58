import asyncio

import pytest

from breakwater.circuit_breaker import (
    BrokenCircuitError,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerManualControl,
    CircuitBreakerStateProvider,
    CircuitState,
    ConsecutiveFailureConfig,
    InvalidConfigurationError,
    IsolatedCircuitError,
    SampledRatioConfig,
)
from tests.breakwater.support.fakes import (
    ExplodingListener,
    FakeClock,
    FakeLogger,
    RecordingListener,
)

pytestmark = pytest.mark.asyncio


async def _fail() -> None:
    raise RuntimeError("nope")


async def _ok() -> str:
    return "ok"


async def test_closed_call_succeeds_and_stays_closed(fake_clock: FakeClock) -> None:
    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(failure_threshold=1, break_duration=1.0),
        clock=fake_clock,
    )

    assert await breaker.call(_ok) == "ok"
    snapshot = breaker.snapshot()
    assert snapshot.state == CircuitState.CLOSED
    assert snapshot.failure_count == 0


async def test_call_with_async_callable_instance_succeeds_and_stays_closed() -> None:
    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(failure_threshold=1, break_duration=1.0),
    )

    class _AsyncCallable:
        async def __call__(self) -> str:
            return "ok"

    assert await breaker.call(_AsyncCallable()) == "ok"
    assert breaker.circuit_state == CircuitState.CLOSED


async def test_call_forwards_arguments(fake_clock: FakeClock) -> None:
    breaker = CircuitBreaker("svc", clock=fake_clock)

    async def _add(left: int, right: int, *, scale: int = 1) -> int:
        return (left + right) * scale

    assert await breaker.call(_add, 1, 2, scale=10) == 30


async def test_failure_threshold_opens_and_rejects_calls(
    fake_clock: FakeClock,
) -> None:
    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(failure_threshold=1, break_duration=10.0),
        clock=fake_clock,
    )

    with pytest.raises(RuntimeError):
        await breaker.call(_fail)

    with pytest.raises(BrokenCircuitError) as excinfo:
        await breaker.call(_fail)

    assert excinfo.value.retry_after == pytest.approx(10.0)
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert breaker.circuit_state == CircuitState.OPEN


async def test_three_consecutive_failures_open_on_the_third(
    fake_clock: FakeClock,
) -> None:
    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(failure_threshold=3, break_duration=5.0),
        clock=fake_clock,
    )

    for expected_state in (CircuitState.CLOSED, CircuitState.CLOSED):
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)
        assert breaker.circuit_state == expected_state

    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    assert breaker.circuit_state == CircuitState.OPEN

    ran = False

    async def _tracked() -> str:
        nonlocal ran
        ran = True
        return "ok"

    with pytest.raises(BrokenCircuitError):
        await breaker.call(_tracked)
    assert ran is False


async def test_half_open_allows_single_probe_and_rejects_concurrent() -> None:
    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(failure_threshold=1, break_duration=0.0),
    )

    with pytest.raises(RuntimeError):
        await breaker.call(_fail)

    started = asyncio.Event()
    release = asyncio.Event()

    async def _probe() -> str:
        started.set()
        await release.wait()
        return "ok"

    task = asyncio.create_task(breaker.call(_probe))
    await started.wait()
    assert breaker.circuit_state == CircuitState.HALF_OPEN

    with pytest.raises(BrokenCircuitError) as excinfo:
        await breaker.call(_ok)
    assert excinfo.value.retry_after == 0.0

    release.set()
    assert await task == "ok"

    assert await breaker.call(_ok) == "ok"
    assert breaker.circuit_state == CircuitState.CLOSED


async def test_probe_failure_reopens_and_restarts_timeout(
    fake_clock: FakeClock,
) -> None:
    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(failure_threshold=1, break_duration=5.0),
        clock=fake_clock,
    )

    with pytest.raises(RuntimeError):
        await breaker.call(_fail)

    fake_clock.advance(5.0)
    with pytest.raises(RuntimeError):
        await breaker.call(_fail)

    with pytest.raises(BrokenCircuitError) as excinfo:
        await breaker.call(_fail)
    assert excinfo.value.retry_after == pytest.approx(5.0)
    assert breaker.snapshot().half_open_attempts == 1


async def test_excluded_exception_counts_as_success(fake_clock: FakeClock) -> None:
    class _Excluded(Exception):
        pass

    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(
            failure_threshold=2,
            break_duration=5.0,
            excluded_exceptions=(_Excluded,),
        ),
        clock=fake_clock,
    )

    async def _excluded() -> None:
        raise _Excluded("ignored")

    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    with pytest.raises(_Excluded):
        await breaker.call(_excluded)
    with pytest.raises(RuntimeError):
        await breaker.call(_fail)

    assert breaker.circuit_state == CircuitState.CLOSED
    assert breaker.snapshot().failure_count == 1


async def test_unlisted_exception_is_not_handled(fake_clock: FakeClock) -> None:
    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(
            failure_threshold=1,
            handled_exceptions=(ConnectionError,),
        ),
        clock=fake_clock,
    )

    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    assert breaker.circuit_state == CircuitState.CLOSED

    async def _disconnect() -> None:
        raise ConnectionError("reset")

    with pytest.raises(ConnectionError):
        await breaker.call(_disconnect)
    assert breaker.circuit_state == CircuitState.OPEN


async def test_handled_result_breaks_but_is_returned(fake_clock: FakeClock) -> None:
    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(
            failure_threshold=2,
            handled_result=lambda result: result == 503,
        ),
        clock=fake_clock,
    )

    async def _unavailable() -> int:
        return 503

    assert await breaker.call(_unavailable) == 503
    assert await breaker.call(_unavailable) == 503

    assert breaker.circuit_state == CircuitState.OPEN
    outcome = breaker.snapshot().last_handled_outcome
    assert outcome is not None
    assert outcome.result == 503

    with pytest.raises(BrokenCircuitError) as excinfo:
        await breaker.call(_unavailable)
    assert excinfo.value.__cause__ is None


async def test_cancelled_probe_is_neutral_and_frees_the_slot(
    fake_clock: FakeClock,
    recording_listener: RecordingListener,
) -> None:
    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(failure_threshold=1, break_duration=5.0),
        listeners=[recording_listener],
        clock=fake_clock,
    )

    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    fake_clock.advance(5.0)

    started = asyncio.Event()

    async def _hang() -> None:
        started.set()
        await asyncio.Event().wait()

    task = asyncio.create_task(breaker.call(_hang))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert breaker.circuit_state == CircuitState.HALF_OPEN
    assert breaker.snapshot().half_open_attempts == 0
    assert recording_listener.transitions() == ["opened", "half_opened"]

    assert await breaker.call(_ok) == "ok"
    assert breaker.circuit_state == CircuitState.CLOSED
    assert recording_listener.transitions() == ["opened", "half_opened", "closed"]


async def test_sampled_ratio_breaker_opens_at_minimum_throughput(
    fake_clock: FakeClock,
) -> None:
    breaker = CircuitBreaker(
        "svc",
        config=SampledRatioConfig(
            failure_ratio=0.5,
            minimum_throughput=10,
            sampling_duration=30.0,
            break_duration=5.0,
        ),
        clock=fake_clock,
    )

    for _ in range(9):
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)
    assert breaker.circuit_state == CircuitState.CLOSED

    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    assert breaker.circuit_state == CircuitState.OPEN


async def test_manual_control_isolates_and_closes(
    fake_clock: FakeClock,
    recording_listener: RecordingListener,
) -> None:
    control = CircuitBreakerManualControl()
    provider = CircuitBreakerStateProvider()
    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(
            manual_control=control, state_provider=provider
        ),
        listeners=[recording_listener],
        clock=fake_clock,
    )

    await control.isolate()
    assert provider.circuit_state == CircuitState.ISOLATED

    with pytest.raises(IsolatedCircuitError):
        await breaker.call(_ok)
    fake_clock.advance(3600.0)
    with pytest.raises(IsolatedCircuitError):
        await breaker.call(_ok)

    await control.close()
    assert await breaker.call(_ok) == "ok"
    assert provider.circuit_state == CircuitState.CLOSED
    assert recording_listener.kinds() == [
        "opened",
        "rejected",
        "rejected",
        "closed",
    ]
    opened = recording_listener.events[0][1]
    closed = recording_listener.events[-1][1]
    assert getattr(opened, "is_manual") is True
    assert getattr(closed, "is_manual") is True


async def test_listener_exceptions_are_logged_and_swallowed(
    fake_logger: FakeLogger,
    recording_listener: RecordingListener,
) -> None:
    breaker = CircuitBreaker(
        "svc",
        config=ConsecutiveFailureConfig(failure_threshold=1, break_duration=10.0),
        listeners=[ExplodingListener(), recording_listener],
        logger=fake_logger,
    )

    with pytest.raises(RuntimeError):
        await breaker.call(_fail)

    with pytest.raises(BrokenCircuitError):
        await breaker.call(_fail)

    assert recording_listener.kinds() == ["opened", "rejected"]
    failures = [
        fields["hook"]
        for level, event, fields in fake_logger.calls
        if event == "circuit_listener_failed"
    ]
    assert failures == ["on_opened", "on_call_rejected"]
    assert ("error", "circuit_opened") in [
        (level, event) for level, event, _ in fake_logger.calls
    ]


async def test_call_names_the_running_task() -> None:
    breaker = CircuitBreaker("svc")
    seen: list[str] = []

    async def _named() -> None:
        task = asyncio.current_task()
        assert task is not None
        seen.append(task.get_name())

    await asyncio.create_task(breaker.call(_named))

    assert seen == [
        "circuit_breaker:svc:test_call_names_the_running_task.<locals>._named"
    ]


async def test_config_rejects_invalid_values() -> None:
    with pytest.raises(ValueError, match="failure_threshold"):
        ConsecutiveFailureConfig(failure_threshold=0)
    with pytest.raises(InvalidConfigurationError, match="break_duration"):
        ConsecutiveFailureConfig(break_duration=-1.0)
    with pytest.raises(InvalidConfigurationError, match="lock_timeout"):
        ConsecutiveFailureConfig(lock_timeout=0.0)
    with pytest.raises(InvalidConfigurationError, match="failure_ratio"):
        SampledRatioConfig(failure_ratio=0.0)
    with pytest.raises(InvalidConfigurationError, match="failure_ratio"):
        SampledRatioConfig(failure_ratio=1.5)
    with pytest.raises(InvalidConfigurationError, match="minimum_throughput"):
        SampledRatioConfig(minimum_throughput=1)
    with pytest.raises(InvalidConfigurationError, match="sampling_duration"):
        SampledRatioConfig(sampling_duration=0.0)


async def test_base_config_cannot_be_instantiated() -> None:
    with pytest.raises(TypeError, match="build_behavior"):
        CircuitBreakerConfig()  # type: ignore[abstract]
