from __future__ import annotations

import random

import pytest

from pgtx.backoff import (
    BackoffConfig,
    ExponentialConfig,
    JitterKind,
    LinearConfig,
    apply_jitter,
    default_exponential,
    default_exponential_with_equal_jitter,
    default_exponential_with_full_jitter,
    default_linear,
    new_exponential,
    new_linear,
)


@pytest.mark.parametrize(
    ("factory", "message"),
    [
        (lambda: BackoffConfig(base_delay=-0.1), "base_delay must be >= 0"),
        (lambda: BackoffConfig(max_delay=-1.0), "max_delay must be >= 0"),
        (lambda: ExponentialConfig(multiplier=0.5), "multiplier must be >= 1.0"),
        (lambda: LinearConfig(increment=-0.1), "increment must be >= 0"),
    ],
)
def test_backoff_config_validation(factory, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        factory()


def test_exponential_config_coerces_jitter_string() -> None:
    config = ExponentialConfig(jitter="full")  # type: ignore[arg-type]

    assert config.jitter is JitterKind.FULL


def test_exponential_without_jitter_grows_and_caps() -> None:
    delay = new_exponential(
        ExponentialConfig(base_delay=0.1, max_delay=1.0, multiplier=2.0)
    )

    assert delay(0) == pytest.approx(0.1)
    assert delay(1) == pytest.approx(0.2)
    assert delay(2) == pytest.approx(0.4)
    assert delay(3) == pytest.approx(0.8)
    assert delay(4) == pytest.approx(1.0)
    assert delay(50) == pytest.approx(1.0)


def test_exponential_is_monotonic_and_bounded() -> None:
    delay = new_exponential(
        ExponentialConfig(base_delay=0.05, max_delay=3.0, multiplier=1.7)
    )

    delays = [delay(attempt) for attempt in range(40)]

    assert delays == sorted(delays)
    assert all(0.0 <= value <= 3.0 for value in delays)


def test_exponential_overflow_is_capped() -> None:
    delay = new_exponential(
        ExponentialConfig(base_delay=0.1, max_delay=5.0, multiplier=10.0)
    )

    assert delay(100_000) == 5.0


def test_exponential_overflow_with_zero_base_stays_zero() -> None:
    delay = new_exponential(ExponentialConfig(base_delay=0.0, max_delay=5.0))

    assert delay(5000) == 0.0


def test_negative_attempt_is_clamped_to_zero() -> None:
    exponential = new_exponential(ExponentialConfig(base_delay=0.3, max_delay=5.0))
    linear = new_linear(LinearConfig(base_delay=0.3, max_delay=5.0, increment=1.0))

    assert exponential(-3) == pytest.approx(0.3)
    assert linear(-3) == pytest.approx(0.3)


def test_max_delay_below_base_delay_caps_immediately() -> None:
    exponential = new_exponential(ExponentialConfig(base_delay=2.0, max_delay=0.5))
    linear = new_linear(LinearConfig(base_delay=2.0, max_delay=0.5, increment=1.0))

    assert exponential(0) == 0.5
    assert linear(0) == 0.5


@pytest.mark.parametrize("attempt", range(0, 60, 7))
def test_linear_is_exact(attempt: int) -> None:
    config = LinearConfig(base_delay=0.1, max_delay=2.5, increment=0.25)
    delay = new_linear(config)

    assert delay(attempt) == min(0.1 + attempt * 0.25, 2.5)


def test_full_jitter_stays_within_zero_and_raw() -> None:
    rng = random.Random(7)
    delay = new_exponential(
        ExponentialConfig(base_delay=0.1, max_delay=2.0, jitter=JitterKind.FULL),
        rng=rng,
    )
    for attempt in range(10):
        raw = min(0.1 * 2.0**attempt, 2.0)
        for _ in range(50):
            assert 0.0 <= delay(attempt) < raw


def test_equal_jitter_stays_within_half_and_raw() -> None:
    rng = random.Random(11)
    delay = new_exponential(
        ExponentialConfig(base_delay=0.1, max_delay=2.0, jitter=JitterKind.EQUAL),
        rng=rng,
    )
    for attempt in range(10):
        raw = min(0.1 * 2.0**attempt, 2.0)
        for _ in range(50):
            assert raw / 2 <= delay(attempt) < raw


@pytest.mark.parametrize("jitter", [JitterKind.FULL, JitterKind.EQUAL])
def test_jitter_on_zero_delay_returns_zero(jitter: JitterKind) -> None:
    assert apply_jitter(0.0, jitter) == 0.0


def test_jitter_uses_supplied_random_source() -> None:
    class _FixedRandom(random.Random):
        def random(self) -> float:
            return 0.5

    rng = _FixedRandom()

    assert apply_jitter(4.0, JitterKind.NONE, rng=rng) == 4.0
    assert apply_jitter(4.0, JitterKind.FULL, rng=rng) == 2.0
    assert apply_jitter(4.0, JitterKind.EQUAL, rng=rng) == 3.0


def test_default_presets() -> None:
    assert default_exponential()(0) == pytest.approx(0.1)
    assert default_exponential()(3) == pytest.approx(0.8)
    assert default_exponential()(20) == pytest.approx(5.0)
    assert default_linear()(0) == pytest.approx(0.1)
    assert default_linear()(4) == pytest.approx(0.5)
    assert default_linear()(100) == pytest.approx(5.0)
    assert 0.0 <= default_exponential_with_full_jitter()(0) < 0.1
    assert 0.05 <= default_exponential_with_equal_jitter()(0) < 0.1
