"""Backoff delay strategies for spacing out transaction retries.

A strategy is a plain ``attempt -> delay`` callable. Attempts are zero-based and
delays are in seconds. Negative attempts are clamped to zero.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

BackoffDelayFunc = Callable[[int], float]

DEFAULT_BASE_DELAY = 0.1
DEFAULT_MAX_DELAY = 5.0
DEFAULT_MULTIPLIER = 2.0
DEFAULT_INCREMENT = 0.1


class JitterKind(StrEnum):
    """How randomness is layered onto the deterministic delay."""

    NONE = "none"
    FULL = "full"
    EQUAL = "equal"


@dataclass(frozen=True)
class BackoffConfig:
    """Delay bounds shared by every strategy.

    A ``max_delay`` below ``base_delay`` is accepted and caps every delay at
    ``max_delay``.
    """

    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY

    def __post_init__(self) -> None:
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < 0:
            raise ValueError("max_delay must be >= 0")


@dataclass(frozen=True)
class ExponentialConfig(BackoffConfig):
    """Configuration for exponential backoff."""

    multiplier: float = DEFAULT_MULTIPLIER
    jitter: JitterKind = JitterKind.NONE

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        object.__setattr__(self, "jitter", JitterKind(self.jitter))


@dataclass(frozen=True)
class LinearConfig(BackoffConfig):
    """Configuration for linear backoff."""

    increment: float = DEFAULT_INCREMENT

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.increment < 0:
            raise ValueError("increment must be >= 0")


def _capped_exponential(config: ExponentialConfig, attempt: int) -> float:
    try:
        raw = config.base_delay * config.multiplier ** max(attempt, 0)
    except OverflowError:
        return config.max_delay if config.base_delay > 0 else 0.0
    return min(raw, config.max_delay)


def apply_jitter(
    delay: float,
    jitter: JitterKind,
    *,
    rng: random.Random | None = None,
) -> float:
    """Layer ``jitter`` onto ``delay`` without ever exceeding it."""
    source = random if rng is None else rng
    if jitter is JitterKind.FULL:
        if delay <= 0:
            return delay
        return source.random() * delay
    if jitter is JitterKind.EQUAL:
        half = delay / 2
        if half <= 0:
            return delay
        return half + source.random() * half
    return delay


def new_exponential(
    config: ExponentialConfig,
    *,
    rng: random.Random | None = None,
) -> BackoffDelayFunc:
    """Build an exponential backoff function.

    The delay for ``attempt`` is ``base_delay * multiplier ** attempt`` capped at
    ``max_delay``, with jitter applied to the capped value.

    Args:
        config: Exponential backoff settings.
        rng: Optional random source for jitter. Defaults to the module-level
            generator, which is safe to share between threads.
    """

    def _exponential(attempt: int) -> float:
        return apply_jitter(
            _capped_exponential(config, attempt),
            config.jitter,
            rng=rng,
        )

    return _exponential


def new_linear(config: LinearConfig) -> BackoffDelayFunc:
    """Build a linear backoff function: ``base_delay + attempt * increment``, capped."""

    def _linear(attempt: int) -> float:
        delay = config.base_delay + max(attempt, 0) * config.increment
        return min(delay, config.max_delay)

    return _linear


def default_exponential() -> BackoffDelayFunc:
    return new_exponential(ExponentialConfig())


def default_exponential_with_full_jitter() -> BackoffDelayFunc:
    return new_exponential(ExponentialConfig(jitter=JitterKind.FULL))


def default_exponential_with_equal_jitter() -> BackoffDelayFunc:
    return new_exponential(ExponentialConfig(jitter=JitterKind.EQUAL))


def default_linear() -> BackoffDelayFunc:
    return new_linear(LinearConfig())
