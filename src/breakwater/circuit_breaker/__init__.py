"""Framework-agnostic async circuit breaker.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - ``CircuitStateController`` owns all state behind one lock. The lock is
    never held while the protected call or a listener runs.
  - Half-open probing admits at most one in-flight probe call per breaker.
    Other callers are rejected until it finishes.
  - If a probe is cancelled, it is treated as if it never happened: nothing is
    counted, the circuit stays ``HALF_OPEN`` and a later call may probe again.
  - Transition callbacks are delivered after the fact, but always in the order
    the transitions happened.
  - Failure accounting is pluggable: consecutive failures, or a failure ratio
    over a sliding time window with a minimum throughput guard.
"""

from breakwater.circuit_breaker.behavior import (
    CircuitBehavior,
    ConsecutiveFailureBehavior,
    SampledRatioBehavior,
)
from breakwater.circuit_breaker.breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    ConsecutiveFailureConfig,
    SampledRatioConfig,
)
from breakwater.circuit_breaker.clock import Clock, SystemClock
from breakwater.circuit_breaker.controller import (
    BreakDurationGenerator,
    BreakDurationGeneratorArguments,
    CallPermit,
    CircuitStateController,
    StateLock,
)
from breakwater.circuit_breaker.events import (
    BreakerListener,
    NotificationDispatcher,
    OnCircuitClosedArguments,
    OnCircuitHalfOpenedArguments,
    OnCircuitOpenedArguments,
)
from breakwater.circuit_breaker.exceptions import (
    AlreadyBoundError,
    BrokenCircuitError,
    CircuitBreakerError,
    InvalidConfigurationError,
    IsolatedCircuitError,
    LockTimeoutError,
)
from breakwater.circuit_breaker.health import (
    HealthInfo,
    HealthMetrics,
    RollingHealthMetrics,
    SingleHealthMetrics,
)
from breakwater.circuit_breaker.manual import (
    CircuitBreakerManualControl,
    CircuitBreakerStateProvider,
)
from breakwater.circuit_breaker.outcome import Outcome, OutcomeKind
from breakwater.circuit_breaker.state import BreakerSnapshot, CircuitState

__all__ = [
    "AlreadyBoundError",
    "BreakDurationGenerator",
    "BreakDurationGeneratorArguments",
    "BreakerListener",
    "BreakerSnapshot",
    "BrokenCircuitError",
    "CallPermit",
    "CircuitBehavior",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitBreakerManualControl",
    "CircuitBreakerStateProvider",
    "CircuitState",
    "CircuitStateController",
    "Clock",
    "ConsecutiveFailureBehavior",
    "ConsecutiveFailureConfig",
    "HealthInfo",
    "HealthMetrics",
    "InvalidConfigurationError",
    "IsolatedCircuitError",
    "LockTimeoutError",
    "NotificationDispatcher",
    "OnCircuitClosedArguments",
    "OnCircuitHalfOpenedArguments",
    "OnCircuitOpenedArguments",
    "Outcome",
    "OutcomeKind",
    "RollingHealthMetrics",
    "SampledRatioBehavior",
    "SampledRatioConfig",
    "SingleHealthMetrics",
    "StateLock",
    "SystemClock",
]
