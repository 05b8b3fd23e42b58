"""Circuit breaker facade and configuration."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import ParamSpec, TypeVar

from breakwater.circuit_breaker.behavior import (
    CircuitBehavior,
    ConsecutiveFailureBehavior,
    SampledRatioBehavior,
)
from breakwater.circuit_breaker.clock import Clock, SystemClock
from breakwater.circuit_breaker.controller import (
    BreakDurationGenerator,
    CallPermit,
    CircuitStateController,
)
from breakwater.circuit_breaker.events import BreakerListener, NotificationDispatcher
from breakwater.circuit_breaker.exceptions import InvalidConfigurationError
from breakwater.circuit_breaker.health import HealthMetrics
from breakwater.circuit_breaker.manual import (
    CircuitBreakerManualControl,
    CircuitBreakerStateProvider,
)
from breakwater.circuit_breaker.outcome import Outcome, OutcomeKind
from breakwater.circuit_breaker.state import BreakerSnapshot, CircuitState
from breakwater.logging import AnyLogger, get_logger

T = TypeVar("T")
P = ParamSpec("P")


@dataclass(slots=True, kw_only=True)
class CircuitBreakerConfig(ABC):
    """Settings shared by every failure-accounting mode.

    Attributes:
        break_duration: Seconds to stay ``OPEN`` before allowing a probe.
        break_duration_generator: Computes the break duration per opening;
            overrides ``break_duration`` when set.
        handled_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
        handled_result: Predicate marking returned values as failures.
        manual_control: Handle bound to the breaker for isolate/close.
        state_provider: Handle bound to the breaker for state reads.
        lock_timeout: Bounded state-lock wait in seconds; ``None`` blocks.
    """

    break_duration: float = 5.0
    break_duration_generator: BreakDurationGenerator | None = None
    handled_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()
    handled_result: Callable[[object], bool] | None = None
    manual_control: CircuitBreakerManualControl | None = None
    state_provider: CircuitBreakerStateProvider | None = None
    lock_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.break_duration < 0:
            raise InvalidConfigurationError("break_duration must be >= 0")
        if self.lock_timeout is not None and self.lock_timeout <= 0:
            raise InvalidConfigurationError("lock_timeout must be > 0 when provided")

    @abstractmethod
    def build_behavior(self, clock: Clock) -> CircuitBehavior:
        """Create the failure-accounting behavior for one breaker."""


@dataclass(slots=True, kw_only=True)
class ConsecutiveFailureConfig(CircuitBreakerConfig):
    """Break after ``failure_threshold`` handled failures in a row."""

    failure_threshold: int = 5

    def __post_init__(self) -> None:
        CircuitBreakerConfig.__post_init__(self)
        if self.failure_threshold < 1:
            raise InvalidConfigurationError("failure_threshold must be >= 1")

    def build_behavior(self, clock: Clock) -> CircuitBehavior:
        return ConsecutiveFailureBehavior(self.failure_threshold)


@dataclass(slots=True, kw_only=True)
class SampledRatioConfig(CircuitBreakerConfig):
    """Break when the failure ratio over ``sampling_duration`` is too high.

    Attributes:
        failure_ratio: Ratio in ``(0, 1]`` at or above which the circuit breaks.
        minimum_throughput: Samples required in the window before breaking.
        sampling_duration: Sliding window length in seconds.
    """

    failure_ratio: float = 0.1
    minimum_throughput: int = 100
    sampling_duration: float = 30.0

    def __post_init__(self) -> None:
        CircuitBreakerConfig.__post_init__(self)
        if not 0.0 < self.failure_ratio <= 1.0:
            raise InvalidConfigurationError("failure_ratio must be > 0 and <= 1")
        if self.minimum_throughput < 2:
            raise InvalidConfigurationError("minimum_throughput must be >= 2")
        if self.sampling_duration <= 0:
            raise InvalidConfigurationError("sampling_duration must be > 0")

    def build_behavior(self, clock: Clock) -> CircuitBehavior:
        metrics = HealthMetrics.create(self.sampling_duration, clock)
        return SampledRatioBehavior(
            self.failure_ratio, self.minimum_throughput, metrics
        )


class CircuitBreaker:
    """Stateful proxy around a dangerous async operation."""

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        clock: Clock | None = None,
        logger: AnyLogger | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            name: Breaker name used in errors, events and logs.
            config: Breaker behavior configuration. Defaults to
                ``ConsecutiveFailureConfig()``.
            listeners: Optional listener hooks for breaker events.
            clock: Time source. Defaults to ``SystemClock()``.
            logger: Logger for transitions and listener failures.

        Raises:
            AlreadyBoundError: A configured manual control or state provider
                already serves another breaker.
        """
        self.name = name
        self.config = ConsecutiveFailureConfig() if config is None else config
        self._clock = SystemClock() if clock is None else clock
        self._logger = (
            get_logger("breakwater.circuit_breaker") if logger is None else logger
        )
        dispatcher = NotificationDispatcher(
            () if listeners is None else listeners, self._logger
        )
        self._controller = CircuitStateController(
            name,
            behavior=self.config.build_behavior(self._clock),
            break_duration=self.config.break_duration,
            break_duration_generator=self.config.break_duration_generator,
            clock=self._clock,
            dispatcher=dispatcher,
            logger=self._logger,
            lock_timeout=self.config.lock_timeout,
        )
        if self.config.state_provider is not None:
            self.config.state_provider.bind(self._controller)
        if self.config.manual_control is not None:
            self.config.manual_control.bind(self._controller)

    @property
    def controller(self) -> CircuitStateController:
        return self._controller

    @property
    def circuit_state(self) -> CircuitState:
        return self._controller.circuit_state

    def snapshot(self) -> BreakerSnapshot:
        return self._controller.snapshot()

    async def flush_notifications(self) -> None:
        """Deliver transition notifications queued outside a call.

        Construction cannot await, so an isolation applied when a manual
        control is bound is only queued.
        """
        await self._controller.flush_notifications()

    def _classify_exception(self, exc: Exception) -> OutcomeKind:
        if isinstance(exc, self.config.excluded_exceptions):
            return OutcomeKind.UNHANDLED
        if isinstance(exc, self.config.handled_exceptions):
            return OutcomeKind.HANDLED
        return OutcomeKind.UNHANDLED

    def _classify_result(self, result: object) -> OutcomeKind:
        predicate = self.config.handled_result
        if predicate is not None and predicate(result):
            return OutcomeKind.HANDLED
        return OutcomeKind.UNHANDLED

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            func: Dangerous async callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when allowed. A result marked as handled by
            ``handled_result`` is still returned to the caller.

        Raises:
            BrokenCircuitError: When the circuit is open and the call is
                rejected.
            IsolatedCircuitError: When the circuit is manually isolated.
            Exception: The original exception from ``func`` when it is
                attempted and fails.
        """
        task = asyncio.current_task()
        if task is not None:
            callable_name = getattr(func, "__qualname__", None)
            if callable_name is None:
                callable_name = getattr(func, "__name__", None)
            if callable_name is None:
                callable_name = func.__class__.__qualname__
            task.set_name(f"circuit_breaker:{self.name}:{str(callable_name)}")

        permit = await self._controller.before_call()
        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            await self._controller.after_call(
                Outcome.from_exception(exc), self._classify_exception(exc), permit
            )
            raise
        except BaseException:
            # Cancellation and interpreter exits produce no outcome.
            self._controller.on_cancelled(permit)
            raise

        await self._report_result(result, permit)
        return result

    async def _report_result(self, result: object, permit: CallPermit) -> None:
        try:
            kind = self._classify_result(result)
        except BaseException:
            self._controller.on_cancelled(permit)
            raise
        await self._controller.after_call(Outcome.from_result(result), kind, permit)
