"""Failure-accounting policies deciding when a closed circuit should break."""

from __future__ import annotations

from abc import ABC, abstractmethod

from breakwater.circuit_breaker.exceptions import InvalidConfigurationError
from breakwater.circuit_breaker.health import HealthMetrics
from breakwater.circuit_breaker.state import CircuitState


class CircuitBehavior(ABC):
    """Decision policy shared by all failure-accounting strategies.

    The controller calls these methods while holding its state lock and passes
    the state the circuit was in when the outcome arrived.
    """

    @abstractmethod
    def on_success(self, state: CircuitState) -> None:
        """Account for a call that was not a handled failure."""

    @abstractmethod
    def on_failure(self, state: CircuitState) -> bool:
        """Account for a handled failure and return whether to break."""

    @abstractmethod
    def on_circuit_closed(self) -> None:
        """Reset failure accounting after the circuit closes."""

    @property
    @abstractmethod
    def failure_rate(self) -> float:
        """Failure ratio passed to break duration generators."""

    @property
    @abstractmethod
    def failure_count(self) -> int:
        """Failure count passed to break duration generators."""


class ConsecutiveFailureBehavior(CircuitBehavior):
    """Break after ``failure_threshold`` handled failures in a row."""

    def __init__(self, failure_threshold: int) -> None:
        if failure_threshold < 1:
            raise InvalidConfigurationError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self._consecutive_failures = 0

    def on_success(self, state: CircuitState) -> None:
        if state == CircuitState.CLOSED:
            self._consecutive_failures = 0

    def on_failure(self, state: CircuitState) -> bool:
        if state != CircuitState.CLOSED:
            return False
        self._consecutive_failures += 1
        return self._consecutive_failures >= self.failure_threshold

    def on_circuit_closed(self) -> None:
        self._consecutive_failures = 0

    @property
    def failure_rate(self) -> float:
        # Not tracked in consecutive mode.
        return 0.0

    @property
    def failure_count(self) -> int:
        return self._consecutive_failures


class SampledRatioBehavior(CircuitBehavior):
    """Break when the sampled failure ratio reaches ``failure_ratio``.

    The circuit never breaks while fewer than ``minimum_throughput`` samples
    are in the window, whatever the ratio.
    """

    def __init__(
        self,
        failure_ratio: float,
        minimum_throughput: int,
        metrics: HealthMetrics,
    ) -> None:
        if not 0.0 < failure_ratio <= 1.0:
            raise InvalidConfigurationError("failure_ratio must be > 0 and <= 1")
        if minimum_throughput < 2:
            raise InvalidConfigurationError("minimum_throughput must be >= 2")
        self.failure_ratio = failure_ratio
        self.minimum_throughput = minimum_throughput
        self._metrics = metrics

    def on_success(self, state: CircuitState) -> None:
        if state in (CircuitState.CLOSED, CircuitState.OPEN, CircuitState.ISOLATED):
            self._metrics.increment_success()

    def on_failure(self, state: CircuitState) -> bool:
        if state not in (CircuitState.CLOSED, CircuitState.OPEN, CircuitState.ISOLATED):
            return False
        self._metrics.increment_failure()
        if state != CircuitState.CLOSED:
            return False
        info = self._metrics.health_info()
        return (
            info.throughput >= self.minimum_throughput
            and info.failure_rate >= self.failure_ratio
        )

    def on_circuit_closed(self) -> None:
        self._metrics.reset()

    @property
    def failure_rate(self) -> float:
        return self._metrics.health_info().failure_rate

    @property
    def failure_count(self) -> int:
        return self._metrics.health_info().failure_count
