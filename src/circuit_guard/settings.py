from __future__ import annotations

import math
from datetime import timedelta

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from circuit_guard.guard import GuardConfig
from circuit_guard.logging import get_log_level_value


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class CircuitGuardSettings(BaseSettings):
    """Environment-driven settings for one circuit guard.

    Services guarding several dependencies subclass this with
    ``model_config = prefixed_settings_config("BILLING_GUARD_")`` and friends.
    """

    model_config = prefixed_settings_config("CIRCUIT_GUARD_")

    name: str = "circuit_guard"
    threshold: int = 5
    timeout_seconds: float = 30.0
    log_level: str = "INFO"

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be non-empty")
        return normalized

    @field_validator("threshold")
    @classmethod
    def _validate_threshold(cls, value: int) -> int:
        if value < 1:
            raise ValueError("threshold must be >= 1")
        return value

    @field_validator("timeout_seconds")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError("timeout_seconds must be a finite number > 0")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip().upper()
        get_log_level_value(normalized)
        return normalized

    def to_config(self) -> GuardConfig:
        """Build the immutable guard configuration from these settings."""
        return GuardConfig(
            threshold=self.threshold,
            timeout=timedelta(seconds=self.timeout_seconds),
        )
