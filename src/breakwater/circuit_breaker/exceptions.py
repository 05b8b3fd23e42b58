"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open (``BrokenCircuitError``).
  - A call being rejected because the circuit was manually isolated
    (``IsolatedCircuitError``).
  - Programmer errors detected while wiring a breaker (``AlreadyBoundError``,
    ``InvalidConfigurationError``).
"""


class CircuitBreakerError(Exception):
    """Base exception for the circuit breaker package."""


class BrokenCircuitError(CircuitBreakerError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        retry_after: Seconds until a half-open probe may be attempted, or
            ``None`` when unknown.
    """

    def __init__(self, breaker_name: str, retry_after: float | None) -> None:
        """Initialize a broken-circuit exception payload.

        Args:
            breaker_name: Breaker rejecting the call.
            retry_after: Seconds until the next probe window opens.
        """
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        if retry_after is None:
            message = f"circuit_broken: {breaker_name}"
        else:
            message = f"circuit_broken: {breaker_name} retry_after={retry_after:g}s"
        super().__init__(message)


class IsolatedCircuitError(BrokenCircuitError):
    """Raised when a call is rejected because the circuit is manually isolated."""

    def __init__(self, breaker_name: str) -> None:
        super().__init__(breaker_name, retry_after=None)
        self.args = (f"circuit_isolated: {breaker_name}",)


class AlreadyBoundError(CircuitBreakerError):
    """Raised when a manual control or state provider is bound twice."""


class InvalidConfigurationError(CircuitBreakerError, ValueError):
    """Raised when breaker configuration values are out of range."""


class LockTimeoutError(CircuitBreakerError, TimeoutError):
    """Raised when the breaker state lock cannot be acquired in time.

    Only raised when a bounded ``lock_timeout`` is configured, which is meant
    for debug and test environments.
    """
