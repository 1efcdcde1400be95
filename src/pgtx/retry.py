from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.retry import retry_base
from tenacity.wait import wait_base

from pgtx.backoff import BackoffDelayFunc
from pgtx.errors import TransactionError
from pgtx.sqlstate import is_serialization_failure


class wait_backoff(wait_base):
    """Tenacity wait strategy backed by a zero-based backoff delay function."""

    def __init__(self, delay: BackoffDelayFunc) -> None:
        self._delay = delay

    def __call__(self, retry_state: RetryCallState) -> float:
        return max(self._delay(retry_state.attempt_number - 1), 0.0)


def is_retryable_transaction_error(error: BaseException) -> bool:
    """Return whether a failed attempt may be retried.

    Only a confident serialization_failure match qualifies. Errors raised by pgtx
    itself, such as begin failures, never do.
    """
    if isinstance(error, TransactionError):
        return False
    return is_serialization_failure(error)


retry_if_serialization_failure = retry_if_exception(is_retryable_transaction_error)


def build_cancellable_sleep(
    stop_event: asyncio.Event,
    *,
    on_cancel: Callable[[], BaseException],
) -> Callable[[float], Awaitable[None]]:
    """Build an async sleep that raises ``on_cancel()`` once cancellation is requested."""

    async def _cancellable_sleep(delay: float) -> None:
        if not stop_event.is_set():
            bounded_delay = max(delay, 0.0)
            with suppress(TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=bounded_delay)
        if stop_event.is_set():
            raise on_cancel()

    return _cancellable_sleep


def build_cancellable_sleep_sync(
    stop_event: threading.Event,
    *,
    on_cancel: Callable[[], BaseException],
) -> Callable[[float], None]:
    """Blocking counterpart of :func:`build_cancellable_sleep`."""

    def _cancellable_sleep(delay: float) -> None:
        if stop_event.wait(timeout=max(delay, 0.0)):
            raise on_cancel()

    return _cancellable_sleep


def _retrying_kwargs(
    *,
    retry: retry_base,
    max_attempts: int,
    backoff: BackoffDelayFunc,
    sleep: Callable[[float], Any],
    before_sleep: Callable[[RetryCallState], None] | None,
) -> dict[str, Any]:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    kwargs: dict[str, Any] = {
        "retry": retry,
        "wait": wait_backoff(backoff),
        "stop": stop_after_attempt(max_attempts),
        "reraise": True,
        "sleep": sleep,
    }
    if before_sleep is not None:
        kwargs["before_sleep"] = before_sleep
    return kwargs


def build_transaction_retrying(
    *,
    max_attempts: int,
    backoff: BackoffDelayFunc,
    retry: retry_base = retry_if_serialization_failure,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` that retries serialization failures with backoff.

    The last error is re-raised once ``max_attempts`` is spent.
    """
    return AsyncRetrying(
        **_retrying_kwargs(
            retry=retry,
            max_attempts=max_attempts,
            backoff=backoff,
            sleep=sleep if sleep is not None else asyncio.sleep,
            before_sleep=before_sleep,
        )
    )


def build_transaction_retrying_sync(
    *,
    max_attempts: int,
    backoff: BackoffDelayFunc,
    retry: retry_base = retry_if_serialization_failure,
    sleep: Callable[[float], None] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> Retrying:
    """Blocking counterpart of :func:`build_transaction_retrying`."""
    return Retrying(
        **_retrying_kwargs(
            retry=retry,
            max_attempts=max_attempts,
            backoff=backoff,
            sleep=sleep if sleep is not None else time.sleep,
            before_sleep=before_sleep,
        )
    )
