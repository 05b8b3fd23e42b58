"""Operator handles for forcing and observing a breaker's state.

Both handles are created by application code, passed in the breaker config,
and bound to that breaker's controller when the breaker is built. A handle
serves exactly one breaker for its lifetime.
"""

from __future__ import annotations

import threading

from breakwater.circuit_breaker.controller import CircuitStateController
from breakwater.circuit_breaker.exceptions import AlreadyBoundError
from breakwater.circuit_breaker.outcome import Outcome
from breakwater.circuit_breaker.state import CircuitState


class _BindOnce:
    def __init__(self, kind: str) -> None:
        self._kind = kind
        self._lock = threading.Lock()
        self._controller: CircuitStateController | None = None

    @property
    def controller(self) -> CircuitStateController | None:
        return self._controller

    def bind(self, controller: CircuitStateController) -> None:
        with self._lock:
            if self._controller is not None:
                raise AlreadyBoundError(
                    f"{self._kind} is already bound to circuit breaker "
                    f"{self._controller.name!r}"
                )
            self._controller = controller


class CircuitBreakerManualControl:
    """Isolate or close a circuit independently of call outcomes."""

    def __init__(self, *, is_isolated: bool = False) -> None:
        """Create an unbound control.

        Args:
            is_isolated: Start the breaker isolated once this control is bound.
        """
        self._binding = _BindOnce("manual control")
        self._isolate_on_bind = is_isolated

    @property
    def is_bound(self) -> bool:
        return self._binding.controller is not None

    def bind(self, controller: CircuitStateController) -> None:
        """Attach this control to ``controller``.

        A pending isolation is applied immediately, but its ``on_opened``
        notification stays queued until the breaker next admits or rejects a
        call, or until ``CircuitBreaker.flush_notifications`` is awaited.

        Raises:
            AlreadyBoundError: The control already serves another breaker.
        """
        self._binding.bind(controller)
        if self._isolate_on_bind:
            controller.isolate_circuit()

    async def isolate(self) -> None:
        """Hold the circuit open until ``close`` is called.

        Before binding, the request is remembered and applied on bind.
        """
        controller = self._binding.controller
        if controller is None:
            self._isolate_on_bind = True
            return
        controller.isolate_circuit()
        await controller.flush_notifications()

    async def close(self) -> None:
        """Close the circuit and reset its failure accounting."""
        controller = self._binding.controller
        if controller is None:
            self._isolate_on_bind = False
            return
        controller.close_circuit()
        await controller.flush_notifications()


class CircuitBreakerStateProvider:
    """Read-only view of one breaker's state."""

    def __init__(self) -> None:
        self._binding = _BindOnce("state provider")

    @property
    def is_bound(self) -> bool:
        return self._binding.controller is not None

    def bind(self, controller: CircuitStateController) -> None:
        """Attach this provider to ``controller``.

        Raises:
            AlreadyBoundError: The provider already serves another breaker.
        """
        self._binding.bind(controller)

    @property
    def circuit_state(self) -> CircuitState:
        """Current state; ``CLOSED`` while unbound."""
        controller = self._binding.controller
        if controller is None:
            return CircuitState.CLOSED
        return controller.circuit_state

    @property
    def last_handled_outcome(self) -> Outcome[object] | None:
        """Last outcome that counted as a failure, if any."""
        controller = self._binding.controller
        if controller is None:
            return None
        return controller.last_handled_outcome
