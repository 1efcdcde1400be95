from __future__ import annotations

from typing import Literal

import structlog
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pgtx.backoff import (
    DEFAULT_BASE_DELAY,
    DEFAULT_INCREMENT,
    DEFAULT_MAX_DELAY,
    DEFAULT_MULTIPLIER,
    BackoffDelayFunc,
    ExponentialConfig,
    JitterKind,
    LinearConfig,
    new_exponential,
    new_linear,
)
from pgtx.logging import configure_structlog, get_log_level_value
from pgtx.transaction import DEFAULT_MAX_ATTEMPTS, IsolationLevel, TxOptions

BackoffStrategy = Literal[
    "exponential",
    "exponential_full_jitter",
    "exponential_equal_jitter",
    "linear",
]

_EXPONENTIAL_JITTER: dict[str, JitterKind] = {
    "exponential": JitterKind.NONE,
    "exponential_full_jitter": JitterKind.FULL,
    "exponential_equal_jitter": JitterKind.EQUAL,
}


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class TxRetrySettings(BaseSettings):
    """Environment settings for retryable transactions (``PGTX_`` prefix)."""

    model_config = prefixed_settings_config("PGTX_")

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    isolation_level: IsolationLevel = IsolationLevel.SERIALIZABLE
    read_only: bool = False
    backoff_strategy: BackoffStrategy = "exponential_full_jitter"
    backoff_base_delay_seconds: float = DEFAULT_BASE_DELAY
    backoff_max_delay_seconds: float = DEFAULT_MAX_DELAY
    backoff_multiplier: float = DEFAULT_MULTIPLIER
    backoff_increment_seconds: float = DEFAULT_INCREMENT
    log_level: str = "INFO"

    @field_validator("backoff_strategy", "isolation_level", mode="before")
    @classmethod
    def _normalize_choice(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        get_log_level_value(value)
        return value.strip().upper()

    @model_validator(mode="after")
    def _validate_retry_settings(self) -> TxRetrySettings:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_base_delay_seconds < 0:
            raise ValueError("backoff_base_delay_seconds must be >= 0")
        if self.backoff_max_delay_seconds < 0:
            raise ValueError("backoff_max_delay_seconds must be >= 0")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")
        if self.backoff_increment_seconds < 0:
            raise ValueError("backoff_increment_seconds must be >= 0")
        return self

    def build_backoff(self) -> BackoffDelayFunc:
        """Build the configured backoff delay function."""
        if self.backoff_strategy == "linear":
            return new_linear(
                LinearConfig(
                    base_delay=self.backoff_base_delay_seconds,
                    max_delay=self.backoff_max_delay_seconds,
                    increment=self.backoff_increment_seconds,
                )
            )
        return new_exponential(
            ExponentialConfig(
                base_delay=self.backoff_base_delay_seconds,
                max_delay=self.backoff_max_delay_seconds,
                multiplier=self.backoff_multiplier,
                jitter=_EXPONENTIAL_JITTER[self.backoff_strategy],
            )
        )

    def tx_options(self) -> TxOptions:
        """Build transaction options from these settings."""
        return TxOptions(
            isolation=self.isolation_level,
            read_only=self.read_only,
            max_attempts=self.max_attempts,
            backoff=self.build_backoff(),
        )

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Configure structlog and stdlib logging at the configured level."""
        return configure_structlog(log_level=self.log_level)
