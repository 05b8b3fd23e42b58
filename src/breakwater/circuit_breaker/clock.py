"""Time sources used for all breaker duration math."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    """Monotonic and wall-clock time provider."""

    def monotonic(self) -> float:
        """Return a monotonic timestamp in seconds."""

    def utcnow(self) -> datetime:
        """Return the current wall-clock time in UTC."""


class SystemClock:
    """Clock backed by the running interpreter's time functions."""

    def monotonic(self) -> float:
        return time.monotonic()

    def utcnow(self) -> datetime:
        return datetime.now(UTC)
