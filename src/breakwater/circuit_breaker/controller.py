"""Thread-safe circuit state machine.

All state lives on ``CircuitStateController`` and is only read or mutated
while holding its ``StateLock``. The lock is never held while the protected
call runs or while listeners are notified; transitions enqueue their
notification under the lock and the ``NotificationDispatcher`` delivers them
afterwards, in order.
"""

from __future__ import annotations

import itertools
import math
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from types import TracebackType

from breakwater.circuit_breaker.behavior import CircuitBehavior
from breakwater.circuit_breaker.clock import Clock
from breakwater.circuit_breaker.events import (
    NotificationDispatcher,
    OnCircuitClosedArguments,
    OnCircuitHalfOpenedArguments,
    OnCircuitOpenedArguments,
)
from breakwater.circuit_breaker.exceptions import (
    BrokenCircuitError,
    IsolatedCircuitError,
    LockTimeoutError,
)
from breakwater.circuit_breaker.outcome import Outcome, OutcomeKind
from breakwater.circuit_breaker.state import BreakerSnapshot, CircuitState
from breakwater.logging import AnyLogger, log_exception


@dataclass(frozen=True, slots=True)
class BreakDurationGeneratorArguments:
    """Inputs available to a dynamic break duration generator.

    Attributes:
        failure_rate: Failure ratio reported by the behavior.
        failure_count: Failure count reported by the behavior.
        half_open_attempts: Failed probes since the circuit last closed,
            already including the probe that is reopening the circuit.
    """

    failure_rate: float
    failure_count: int
    half_open_attempts: int


BreakDurationGenerator = Callable[[BreakDurationGeneratorArguments], float]


@dataclass(frozen=True, slots=True)
class CallPermit:
    """Admission ticket returned by ``before_call``.

    Attributes:
        probe_id: Identifier of the half-open probe slot held by this call, or
            ``None`` for an ordinary call.
    """

    probe_id: int | None = None

    @property
    def is_probe(self) -> bool:
        return self.probe_id is not None


class StateLock:
    """Exclusive lock with optional bounded acquisition.

    With ``timeout=None`` acquisition blocks indefinitely. A bounded timeout
    turns a suspected deadlock into ``LockTimeoutError`` for the calling
    operation only; it is intended for debug and test environments.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout
        self._lock = threading.Lock()

    def locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def blocking(self) -> Iterator[StateLock]:
        """Acquire without the bounded timeout.

        Reserved for releasing resources that must not leak when a bounded
        acquisition has already failed.
        """
        with self._lock:
            yield self

    def __enter__(self) -> StateLock:
        if self.timeout is None:
            self._lock.acquire()
            return self
        if not self._lock.acquire(timeout=self.timeout):
            raise LockTimeoutError(
                f"circuit state lock not acquired within {self.timeout:g}s"
            )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._lock.release()


class CircuitStateController:
    """Holds circuit state and applies the transition rules."""

    def __init__(
        self,
        name: str,
        *,
        behavior: CircuitBehavior,
        break_duration: float,
        clock: Clock,
        dispatcher: NotificationDispatcher,
        logger: AnyLogger,
        break_duration_generator: BreakDurationGenerator | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        """Create a closed circuit.

        Args:
            name: Breaker name used in errors, events and logs.
            behavior: Failure-accounting policy; owned by this controller.
            break_duration: Seconds to stay open when no generator is set.
            clock: Time source for break windows.
            dispatcher: Ordered delivery path for transition notifications.
            logger: Logger for generator failures.
            break_duration_generator: Optional callable computing the break
                duration for each opening.
            lock_timeout: Bounded lock wait in seconds, or ``None`` to block.
        """
        self.name = name
        self._behavior = behavior
        self._break_duration = break_duration
        self._break_duration_generator = break_duration_generator
        self._clock = clock
        self._dispatcher = dispatcher
        self._logger = logger
        self._lock = StateLock(lock_timeout)
        self._probe_ids = itertools.count(1)

        self._state = CircuitState.CLOSED
        self._break_until: float | None = None
        self._half_open_attempts = 0
        self._last_outcome: Outcome[object] | None = None
        self._is_isolated = False
        self._probe_id: int | None = None

    @property
    def circuit_state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def last_handled_outcome(self) -> Outcome[object] | None:
        with self._lock:
            return self._last_outcome

    @property
    def last_exception(self) -> BaseException | None:
        with self._lock:
            if self._last_outcome is None:
                return None
            return self._last_outcome.exception

    @property
    def half_open_attempts(self) -> int:
        with self._lock:
            return self._half_open_attempts

    @property
    def is_isolated(self) -> bool:
        with self._lock:
            return self._is_isolated

    def snapshot(self) -> BreakerSnapshot:
        """Return a consistent view of the controller state."""
        with self._lock:
            retry_after: float | None = None
            until = self._break_until
            if self._state == CircuitState.OPEN and until is not None:
                if not math.isinf(until):
                    retry_after = max(until - self._clock.monotonic(), 0.0)
            return BreakerSnapshot(
                name=self.name,
                state=self._state,
                failure_count=self._behavior.failure_count,
                failure_rate=self._behavior.failure_rate,
                half_open_attempts=self._half_open_attempts,
                retry_after=retry_after,
                last_handled_outcome=self._last_outcome,
            )

    async def before_call(self) -> CallPermit:
        """Admit or reject one call.

        Returns:
            The permit to hand back to ``after_call`` or ``on_cancelled``.

        Raises:
            IsolatedCircuitError: The circuit is manually isolated.
            BrokenCircuitError: The circuit is open, or a probe is in flight.
            LockTimeoutError: A bounded lock wait expired.
        """
        rejection: BrokenCircuitError | None = None
        cause: BaseException | None = None
        permit = CallPermit()

        with self._lock:
            if self._is_isolated:
                rejection = IsolatedCircuitError(self.name)
            elif self._state == CircuitState.OPEN:
                now = self._clock.monotonic()
                until = math.inf if self._break_until is None else self._break_until
                if now < until:
                    retry_after = None if math.isinf(until) else until - now
                    rejection = BrokenCircuitError(self.name, retry_after)
                    cause = self._breaking_exception_needs_lock()
                else:
                    self._state = CircuitState.HALF_OPEN
                    permit = self._reserve_probe_needs_lock()
                    self._dispatcher.enqueue(OnCircuitHalfOpenedArguments(self.name))
            elif self._state == CircuitState.HALF_OPEN:
                if self._probe_id is not None:
                    rejection = BrokenCircuitError(self.name, 0.0)
                    cause = self._breaking_exception_needs_lock()
                else:
                    permit = self._reserve_probe_needs_lock()

        await self._dispatcher.drain()

        if rejection is not None:
            await self._dispatcher.emit_call_rejected(self.name)
            raise rejection from cause
        return permit

    async def after_call(
        self,
        outcome: Outcome[object],
        kind: OutcomeKind,
        permit: CallPermit | None = None,
    ) -> None:
        """Account for a finished call and apply any resulting transition.

        Outcomes of calls admitted before the circuit broke can arrive while
        it is open or isolated; they are accounted but never transition the
        circuit or extend the break. While half-open, only the outcome of the
        current probe decides whether the circuit closes or reopens.

        Raises:
            LockTimeoutError: A bounded lock wait expired. The outcome is
                dropped as if the call had been cancelled, and a held probe
                slot is still released.
        """
        try:
            with self._lock:
                self._record_outcome_needs_lock(outcome, kind, permit)
        except LockTimeoutError:
            self.on_cancelled(permit)
            raise

        await self._dispatcher.drain()

    def on_cancelled(self, permit: CallPermit | None) -> None:
        """Release the probe slot of a call that produced no outcome.

        The call counts as neither success nor failure. The circuit stays
        half-open so the next caller may probe. The lock is acquired without
        the bounded timeout so the slot is never left reserved.
        """
        if permit is None or permit.probe_id is None:
            return
        with self._lock.blocking():
            if (
                self._state == CircuitState.HALF_OPEN
                and self._probe_id == permit.probe_id
            ):
                self._probe_id = None

    def isolate_circuit(self) -> None:
        """Force the circuit open until ``close_circuit`` is called.

        The notification is queued; call ``flush_notifications`` to deliver.
        """
        with self._lock:
            if self._is_isolated:
                return
            isolated_error = IsolatedCircuitError(self.name)
            self._last_outcome = Outcome.from_exception(isolated_error)
            self._is_isolated = True
            self._probe_id = None
            self._break_until = None
            self._state = CircuitState.ISOLATED
            self._dispatcher.enqueue(
                OnCircuitOpenedArguments(
                    name=self.name,
                    outcome=None,
                    break_duration=math.inf,
                    is_manual=True,
                )
            )

    def close_circuit(self) -> None:
        """Close the circuit and reset all failure accounting.

        The notification is queued; call ``flush_notifications`` to deliver.
        """
        with self._lock:
            self._close_circuit_needs_lock(None, manual=True)

    async def flush_notifications(self) -> None:
        """Deliver queued transition notifications."""
        await self._dispatcher.drain()

    def _record_outcome_needs_lock(
        self,
        outcome: Outcome[object],
        kind: OutcomeKind,
        permit: CallPermit | None,
    ) -> None:
        state = self._state
        is_current_probe = (
            state == CircuitState.HALF_OPEN
            and permit is not None
            and permit.probe_id is not None
            and permit.probe_id == self._probe_id
        )
        if is_current_probe:
            self._probe_id = None

        if kind == OutcomeKind.UNHANDLED:
            self._behavior.on_success(state)
            if is_current_probe:
                self._close_circuit_needs_lock(outcome, manual=False)
            return

        self._last_outcome = outcome
        should_break = self._behavior.on_failure(state)
        if is_current_probe:
            self._half_open_attempts += 1
            self._open_circuit_needs_lock(outcome)
        elif state == CircuitState.CLOSED and should_break:
            self._open_circuit_needs_lock(outcome)

    def _reserve_probe_needs_lock(self) -> CallPermit:
        self._probe_id = next(self._probe_ids)
        return CallPermit(probe_id=self._probe_id)

    def _breaking_exception_needs_lock(self) -> BaseException | None:
        if self._last_outcome is None:
            return None
        return self._last_outcome.exception

    def _compute_break_duration_needs_lock(self) -> float:
        generator = self._break_duration_generator
        if generator is None:
            return self._break_duration
        args = BreakDurationGeneratorArguments(
            failure_rate=self._behavior.failure_rate,
            failure_count=self._behavior.failure_count,
            half_open_attempts=self._half_open_attempts,
        )
        try:
            duration = float(generator(args))
        except Exception:
            log_exception(
                self._logger,
                "circuit_break_duration_generator_failed",
                breaker=self.name,
                fallback=self._break_duration,
            )
            return self._break_duration
        if math.isnan(duration):
            return self._break_duration
        return max(duration, 0.0)

    def _open_circuit_needs_lock(self, outcome: Outcome[object]) -> None:
        duration = self._compute_break_duration_needs_lock()
        self._break_until = self._clock.monotonic() + duration
        self._state = CircuitState.OPEN
        self._dispatcher.enqueue(
            OnCircuitOpenedArguments(
                name=self.name,
                outcome=outcome,
                break_duration=duration,
                is_manual=False,
            )
        )

    def _close_circuit_needs_lock(
        self, outcome: Outcome[object] | None, *, manual: bool
    ) -> None:
        prior_state = self._state
        self._break_until = None
        self._last_outcome = None
        self._half_open_attempts = 0
        self._is_isolated = False
        self._probe_id = None
        self._state = CircuitState.CLOSED
        self._behavior.on_circuit_closed()

        if prior_state != CircuitState.CLOSED:
            self._dispatcher.enqueue(
                OnCircuitClosedArguments(
                    name=self.name,
                    outcome=outcome,
                    is_manual=manual,
                )
            )
