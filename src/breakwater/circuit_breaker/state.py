"""Circuit breaker state primitives."""

from dataclasses import dataclass
from enum import StrEnum

from breakwater.circuit_breaker.outcome import Outcome


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"
    ISOLATED = "isolated"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_count: Failures currently counted by the behavior.
        failure_rate: Failure ratio currently reported by the behavior.
        half_open_attempts: Failed probes since the circuit last closed.
        retry_after: Seconds until a probe may be attempted while ``OPEN``.
        last_handled_outcome: Last outcome classified as a handled failure.
    """

    name: str
    state: CircuitState
    failure_count: int
    failure_rate: float
    half_open_attempts: int
    retry_after: float | None
    last_handled_outcome: Outcome[object] | None
