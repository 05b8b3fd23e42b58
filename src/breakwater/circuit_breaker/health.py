"""Sliding-window success/failure accounting for ratio-based breakers.

Samples are counted in a fixed ring of equal-width time buckets covering the
sampling duration. The bucket for a sample is selected from the clock, so
rotation is lazy: a bucket is zeroed when it is reused for a newer slice of
time, and buckets older than the window are skipped when summing. Precision
is therefore ``sampling_duration / bucket_count``.

None of these classes lock. They are only touched while the owning
controller holds its state lock.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from breakwater.circuit_breaker.clock import Clock

DEFAULT_BUCKET_COUNT = 10
MIN_BUCKET_WIDTH = 0.02


@dataclass(frozen=True, slots=True)
class HealthInfo:
    """Aggregated window sample.

    Attributes:
        throughput: Total number of samples in the window.
        failure_rate: ``failure_count / throughput``, or ``0.0`` when empty.
        failure_count: Number of failure samples in the window.
    """

    throughput: int
    failure_rate: float
    failure_count: int

    @classmethod
    def create(cls, successes: int, failures: int) -> HealthInfo:
        total = successes + failures
        if total == 0:
            return cls(throughput=0, failure_rate=0.0, failure_count=0)
        return cls(
            throughput=total,
            failure_rate=failures / total,
            failure_count=failures,
        )


class HealthMetrics(ABC):
    """Sliding-window sample counter."""

    def __init__(self, sampling_duration: float, clock: Clock) -> None:
        self.sampling_duration = sampling_duration
        self._clock = clock

    @staticmethod
    def create(
        sampling_duration: float,
        clock: Clock,
        bucket_count: int = DEFAULT_BUCKET_COUNT,
    ) -> HealthMetrics:
        """Build the metrics variant suited to ``sampling_duration``.

        Windows too short to split into buckets of at least ``MIN_BUCKET_WIDTH``
        seconds are tracked as a single resetting window.
        """
        if sampling_duration < bucket_count * MIN_BUCKET_WIDTH:
            return SingleHealthMetrics(sampling_duration, clock)
        return RollingHealthMetrics(sampling_duration, clock, bucket_count)

    @abstractmethod
    def increment_success(self) -> None:
        """Record one success sample at the current time."""

    @abstractmethod
    def increment_failure(self) -> None:
        """Record one failure sample at the current time."""

    @abstractmethod
    def health_info(self) -> HealthInfo:
        """Return the sum of all samples still inside the window."""

    @abstractmethod
    def reset(self) -> None:
        """Drop all samples."""


class SingleHealthMetrics(HealthMetrics):
    """One window that restarts once it is older than the sampling duration."""

    def __init__(self, sampling_duration: float, clock: Clock) -> None:
        super().__init__(sampling_duration, clock)
        self._started_at = clock.monotonic()
        self._successes = 0
        self._failures = 0

    def _roll(self) -> None:
        now = self._clock.monotonic()
        if now - self._started_at >= self.sampling_duration:
            self._started_at = now
            self._successes = 0
            self._failures = 0

    def increment_success(self) -> None:
        self._roll()
        self._successes += 1

    def increment_failure(self) -> None:
        self._roll()
        self._failures += 1

    def health_info(self) -> HealthInfo:
        self._roll()
        return HealthInfo.create(self._successes, self._failures)

    def reset(self) -> None:
        self._started_at = self._clock.monotonic()
        self._successes = 0
        self._failures = 0


@dataclass(slots=True)
class _Bucket:
    slot: int = -1
    successes: int = 0
    failures: int = 0


class RollingHealthMetrics(HealthMetrics):
    """Ring of ``bucket_count`` time buckets spanning the sampling duration."""

    def __init__(
        self,
        sampling_duration: float,
        clock: Clock,
        bucket_count: int = DEFAULT_BUCKET_COUNT,
    ) -> None:
        super().__init__(sampling_duration, clock)
        if bucket_count < 1:
            raise ValueError("bucket_count must be >= 1")
        self.bucket_count = bucket_count
        self.bucket_width = sampling_duration / bucket_count
        self._buckets = [_Bucket() for _ in range(bucket_count)]

    def _current_slot(self) -> int:
        return math.floor(self._clock.monotonic() / self.bucket_width)

    def _current_bucket(self) -> _Bucket:
        slot = self._current_slot()
        bucket = self._buckets[slot % self.bucket_count]
        if bucket.slot != slot:
            # Reused for a newer time slice; old counts have aged out.
            bucket.slot = slot
            bucket.successes = 0
            bucket.failures = 0
        return bucket

    def increment_success(self) -> None:
        self._current_bucket().successes += 1

    def increment_failure(self) -> None:
        self._current_bucket().failures += 1

    def health_info(self) -> HealthInfo:
        newest = self._current_slot()
        oldest = newest - self.bucket_count + 1
        successes = 0
        failures = 0
        for bucket in self._buckets:
            if oldest <= bucket.slot <= newest:
                successes += bucket.successes
                failures += bucket.failures
        return HealthInfo.create(successes, failures)

    def reset(self) -> None:
        for bucket in self._buckets:
            bucket.slot = -1
            bucket.successes = 0
            bucket.failures = 0
