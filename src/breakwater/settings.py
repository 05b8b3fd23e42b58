from __future__ import annotations

from typing import Literal

import structlog
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from breakwater.circuit_breaker import (
    CircuitBreakerConfig,
    ConsecutiveFailureConfig,
    SampledRatioConfig,
)
from breakwater.logging import configure_structlog, get_log_level_value, get_logger

BreakerMode = Literal["consecutive", "sampled_ratio"]


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class CircuitBreakerSettings(BaseSettings):
    """Environment-driven circuit breaker settings.

    Read from ``BREAKWATER_*`` variables, for example
    ``BREAKWATER_MODE=sampled_ratio`` and ``BREAKWATER_FAILURE_RATIO=0.5``.
    ``lock_timeout`` should stay unset in production.
    """

    model_config = prefixed_settings_config("BREAKWATER_")

    mode: BreakerMode = "consecutive"
    failure_threshold: int = 5
    failure_ratio: float = 0.1
    minimum_throughput: int = 100
    sampling_duration: float = 30.0
    break_duration: float = 5.0
    lock_timeout: float | None = None
    log_level: str = "INFO"

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        get_log_level_value(value)
        return value.strip().upper()

    @model_validator(mode="after")
    def _validate_breaker_settings(self) -> CircuitBreakerSettings:
        if self.break_duration < 0:
            raise ValueError("break_duration must be >= 0")
        if self.lock_timeout is not None and self.lock_timeout <= 0:
            raise ValueError("lock_timeout must be > 0 when provided")

        if self.mode == "consecutive":
            if self.failure_threshold < 1:
                raise ValueError("failure_threshold must be >= 1")
            return self

        if not 0.0 < self.failure_ratio <= 1.0:
            raise ValueError("failure_ratio must be > 0 and <= 1")
        if self.minimum_throughput < 2:
            raise ValueError("minimum_throughput must be >= 2")
        if self.sampling_duration <= 0:
            raise ValueError("sampling_duration must be > 0")
        return self

    def to_config(self, **overrides: object) -> CircuitBreakerConfig:
        """Build the breaker config for the selected mode.

        Args:
            **overrides: Extra config fields that cannot come from the
                environment, such as ``manual_control`` or
                ``break_duration_generator``.
        """
        common: dict[str, object] = {
            "break_duration": self.break_duration,
            "lock_timeout": self.lock_timeout,
        }
        common.update(overrides)
        if self.mode == "consecutive":
            return ConsecutiveFailureConfig(
                failure_threshold=self.failure_threshold,
                **common,  # type: ignore[arg-type]
            )
        return SampledRatioConfig(
            failure_ratio=self.failure_ratio,
            minimum_throughput=self.minimum_throughput,
            sampling_duration=self.sampling_duration,
            **common,  # type: ignore[arg-type]
        )

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Configure structlog at ``log_level`` and return the breaker logger.

        Breakers built without an explicit logger pick up this configuration
        through ``breakwater.logging.get_logger``.
        """
        configure_structlog(log_level=self.log_level)
        return get_logger("breakwater.circuit_breaker")
