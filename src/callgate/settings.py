from __future__ import annotations

import structlog
from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from callgate.circuit_breaker.breaker import CircuitBreakerConfig
from callgate.logging import configure_structlog, get_log_level_value


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerSettings(BaseSettings):
    """Environment-driven circuit breaker settings (``CALLGATE_*``)."""

    model_config = prefixed_settings_config("CALLGATE_")

    failure_threshold: int = 3
    success_threshold: int = 3
    open_duration_seconds: float = 60.0
    call_timeout_seconds: float | None = None
    log_level: str = "INFO"

    @field_validator("failure_threshold", "success_threshold")
    @classmethod
    def _validate_threshold(cls, value: int, info: ValidationInfo) -> int:
        if value < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return value

    @field_validator("open_duration_seconds")
    @classmethod
    def _validate_open_duration(cls, value: float) -> float:
        if value < 0:
            raise ValueError("open_duration_seconds must be >= 0")
        return value

    @field_validator("call_timeout_seconds")
    @classmethod
    def _validate_call_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("call_timeout_seconds must be > 0")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip().upper()
        get_log_level_value(normalized)
        return normalized

    def to_config(
        self,
        *,
        expected_exceptions: tuple[type[BaseException], ...] = (Exception,),
        excluded_exceptions: tuple[type[BaseException], ...] = (),
    ) -> CircuitBreakerConfig:
        """Build a ``CircuitBreakerConfig`` from these settings.

        Exception classification cannot come from the environment, so it is
        passed in by the caller.
        """
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            success_threshold=self.success_threshold,
            open_duration=self.open_duration_seconds,
            expected_exceptions=expected_exceptions,
            excluded_exceptions=excluded_exceptions,
            call_timeout=self.call_timeout_seconds,
        )

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Apply ``log_level`` to the process-wide structlog setup."""
        return configure_structlog(log_level=self.log_level)
