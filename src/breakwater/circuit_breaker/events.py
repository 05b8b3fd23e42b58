"""Transition notifications and their ordered delivery to listeners."""

from __future__ import annotations

import math
import threading
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from breakwater.circuit_breaker.outcome import Outcome
from breakwater.logging import (
    AnyLogger,
    log_error,
    log_exception,
    log_info,
    log_warning,
)


@dataclass(frozen=True, slots=True)
class OnCircuitOpenedArguments:
    """Payload for a transition into ``OPEN`` or ``ISOLATED``.

    Attributes:
        name: Breaker name.
        outcome: Outcome that broke the circuit; ``None`` for manual isolation.
        break_duration: Seconds the circuit stays open; ``math.inf`` when
            isolated.
        is_manual: Whether the transition came from manual control.
    """

    name: str
    outcome: Outcome[object] | None
    break_duration: float
    is_manual: bool


@dataclass(frozen=True, slots=True)
class OnCircuitClosedArguments:
    """Payload for a transition into ``CLOSED``."""

    name: str
    outcome: Outcome[object] | None
    is_manual: bool


@dataclass(frozen=True, slots=True)
class OnCircuitHalfOpenedArguments:
    """Payload for a transition into ``HALF_OPEN``."""

    name: str


CircuitEvent = (
    OnCircuitOpenedArguments | OnCircuitClosedArguments | OnCircuitHalfOpenedArguments
)


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Transition callbacks run after the state change is visible and are
        delivered in the order the transitions happened. The breaker may
        already be in a later state by the time a callback runs.
    """

    async def on_opened(self, args: OnCircuitOpenedArguments) -> None:
        """Handle the circuit opening (or being isolated)."""

    async def on_closed(self, args: OnCircuitClosedArguments) -> None:
        """Handle the circuit closing."""

    async def on_half_opened(self, args: OnCircuitHalfOpenedArguments) -> None:
        """Handle the circuit admitting a probe call."""

    async def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while the circuit is open or isolated."""


class NotificationDispatcher:
    """Single-consumer FIFO delivery of transition notifications.

    ``enqueue`` is called by the controller while it holds its state lock, so
    queue order is transition order. ``drain`` is called with no lock held;
    the first caller to find the queue idle becomes the consumer and delivers
    everything queued, including items enqueued while it is delivering.
    Concurrent callers return immediately.
    """

    def __init__(
        self, listeners: Sequence[BreakerListener], logger: AnyLogger
    ) -> None:
        self._listeners = tuple(listeners)
        self._logger = logger
        self._queue: deque[CircuitEvent] = deque()
        self._lock = threading.Lock()
        self._draining = False

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def enqueue(self, event: CircuitEvent) -> None:
        with self._lock:
            self._queue.append(event)

    async def drain(self) -> None:
        with self._lock:
            if self._draining or not self._queue:
                return
            self._draining = True

        try:
            while True:
                with self._lock:
                    if not self._queue:
                        self._draining = False
                        return
                    event = self._queue.popleft()
                await self._deliver(event)
        except BaseException:
            with self._lock:
                self._draining = False
            raise

    async def emit_call_rejected(self, name: str) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_rejected(name)
            except Exception:
                log_exception(
                    self._logger,
                    "circuit_listener_failed",
                    breaker=name,
                    hook="on_call_rejected",
                )

    def _log_event(self, event: CircuitEvent) -> str:
        if isinstance(event, OnCircuitOpenedArguments):
            duration = event.break_duration
            log_error(
                self._logger,
                "circuit_opened",
                breaker=event.name,
                break_duration=None if math.isinf(duration) else duration,
                manual=event.is_manual,
            )
            return "on_opened"
        if isinstance(event, OnCircuitClosedArguments):
            log_info(
                self._logger,
                "circuit_closed",
                breaker=event.name,
                manual=event.is_manual,
            )
            return "on_closed"
        log_warning(self._logger, "circuit_half_opened", breaker=event.name)
        return "on_half_opened"

    async def _deliver(self, event: CircuitEvent) -> None:
        hook = self._log_event(event)
        for listener in self._listeners:
            try:
                await getattr(listener, hook)(event)
            except Exception:
                log_exception(
                    self._logger,
                    "circuit_listener_failed",
                    breaker=event.name,
                    hook=hook,
                )
