from __future__ import annotations

import pytest

from pgtx.backoff import BackoffDelayFunc
from tests.pgtx.support.fakes import FakeLogger


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def no_backoff() -> BackoffDelayFunc:
    """Backoff that retries immediately, keeping executor tests fast."""

    def _no_delay(attempt: int) -> float:
        del attempt
        return 0.0

    return _no_delay
