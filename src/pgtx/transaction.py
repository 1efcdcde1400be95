"""Retryable transactions under serializable isolation.

Each attempt runs ``begin -> fn -> commit``. A transaction that did not commit is
rolled back on every exit path, including cancellation. Failed attempts are
retried only for serialization_failure (SQLSTATE ``40001``), with the configured
backoff awaited between attempts. Once attempts are exhausted the last error is
re-raised unchanged.

Typical use::

    async def transfer(tx: AsyncpgTransaction) -> None:
        await tx.connection.execute("update ...")

    await run_in_transaction(asyncpg_begin(conn), transfer, TxOptions(max_attempts=5))
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Protocol, TypeVar

from tenacity import RetryCallState

from pgtx.backoff import BackoffDelayFunc, default_exponential_with_full_jitter
from pgtx.errors import (
    AbortTransaction,
    BeginTransactionError,
    TransactionCancelledError,
)
from pgtx.logging import AnyLogger, get_logger, log_error, log_info, log_warning
from pgtx.retry import (
    build_cancellable_sleep,
    build_cancellable_sleep_sync,
    build_transaction_retrying,
    build_transaction_retrying_sync,
    is_retryable_transaction_error,
)
from pgtx.sqlstate import iter_error_chain, sqlstate_code

DEFAULT_MAX_ATTEMPTS = 10

T = TypeVar("T")


class IsolationLevel(StrEnum):
    """Transaction isolation levels a transaction source may be asked for."""

    DEFAULT = "default"
    READ_UNCOMMITTED = "read_uncommitted"
    READ_COMMITTED = "read_committed"
    WRITE_COMMITTED = "write_committed"
    REPEATABLE_READ = "repeatable_read"
    SNAPSHOT = "snapshot"
    SERIALIZABLE = "serializable"
    LINEARIZABLE = "linearizable"


@dataclass(frozen=True)
class TxOptions:
    """Options for one retryable transaction run.

    Attributes:
        isolation: Requested isolation level. ``DEFAULT`` becomes ``SERIALIZABLE``.
        read_only: Whether to begin a read-only transaction.
        max_attempts: Total attempts, including the first one.
        backoff: Delay function between attempts. ``None`` selects exponential
            backoff with full jitter.
    """

    isolation: IsolationLevel = IsolationLevel.DEFAULT
    read_only: bool = False
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff: BackoffDelayFunc | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        object.__setattr__(self, "isolation", IsolationLevel(self.isolation))

    def normalized(self) -> TxOptions:
        """Return a copy with the serializable and backoff defaults filled in."""
        isolation = self.isolation
        if isolation is IsolationLevel.DEFAULT:
            isolation = IsolationLevel.SERIALIZABLE
        backoff = self.backoff
        if backoff is None:
            backoff = default_exponential_with_full_jitter()
        return replace(self, isolation=isolation, backoff=backoff)


class AsyncTransaction(Protocol):
    """Open transaction handle of an async driver."""

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class SyncTransaction(Protocol):
    """Open transaction handle of a blocking driver."""

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


AsyncTxT = TypeVar("AsyncTxT", bound=AsyncTransaction)
SyncTxT = TypeVar("SyncTxT", bound=SyncTransaction)

AsyncBeginTx = Callable[[TxOptions], Awaitable[AsyncTxT]]
SyncBeginTx = Callable[[TxOptions], SyncTxT]


def _is_abort(error: BaseException) -> bool:
    return any(isinstance(item, AbortTransaction) for item in iter_error_chain(error))


class _RetryObserver:
    """Log retry decisions and build cancellation errors for one run."""

    def __init__(self, logger: AnyLogger, max_attempts: int) -> None:
        self._logger = logger
        self._max_attempts = max_attempts
        self._last_state: RetryCallState | None = None

    def before_sleep(self, retry_state: RetryCallState) -> None:
        self._last_state = retry_state
        outcome = retry_state.outcome
        error = None if outcome is None else outcome.exception()
        next_action = retry_state.next_action
        log_warning(
            self._logger,
            "transaction_retry_scheduled",
            attempt=retry_state.attempt_number,
            max_attempts=self._max_attempts,
            delay_seconds=0.0 if next_action is None else next_action.sleep,
            sqlstate=sqlstate_code(error),
        )

    def cancelled(self) -> TransactionCancelledError:
        state = self._last_state
        attempt = 0 if state is None else state.attempt_number
        error = TransactionCancelledError(attempt)
        if state is not None and state.outcome is not None:
            error.__cause__ = state.outcome.exception()
        return error

    def finished_with(self, error: BaseException) -> None:
        if is_retryable_transaction_error(error):
            log_error(
                self._logger,
                "transaction_retries_exhausted",
                max_attempts=self._max_attempts,
                sqlstate=sqlstate_code(error),
            )


async def _rollback(tx: AsyncTransaction, logger: AnyLogger) -> None:
    try:
        await tx.rollback()
    except Exception as error:
        log_warning(logger, "transaction_rollback_failed", error=repr(error))


async def _attempt(
    begin: AsyncBeginTx[AsyncTxT],
    fn: Callable[[AsyncTxT], Awaitable[T]],
    options: TxOptions,
    logger: AnyLogger,
) -> T | None:
    try:
        tx = await begin(options)
    except Exception as error:
        raise BeginTransactionError(f"begin transaction: {error}") from error

    committed = False
    try:
        try:
            result = await fn(tx)
        except Exception as error:
            if not _is_abort(error):
                raise
            log_info(logger, "transaction_aborted")
            return None
        await tx.commit()
        committed = True
        return result
    finally:
        if not committed:
            await _rollback(tx, logger)


async def run_in_transaction(
    begin: AsyncBeginTx[AsyncTxT],
    fn: Callable[[AsyncTxT], Awaitable[T]],
    options: TxOptions | None = None,
    *,
    stop_event: asyncio.Event | None = None,
    logger: AnyLogger | None = None,
) -> T | None:
    """Run ``fn`` inside a retryable transaction.

    Args:
        begin: Transaction source; called once per attempt with the normalized
            options.
        fn: Transaction body. Raise :class:`AbortTransaction` to roll back and
            return ``None``.
        options: Run options. Defaults to ``TxOptions()``.
        stop_event: Cancellation signal checked while waiting between attempts.
        logger: structlog or stdlib logger. Defaults to the ``pgtx`` logger.

    Returns:
        The result of ``fn`` once committed, or ``None`` when the body aborted.

    Raises:
        BeginTransactionError: When ``begin`` fails. Never retried.
        TransactionCancelledError: When ``stop_event`` is set before or during
            a backoff wait.
        Exception: The error from ``fn`` or commit when it is not a serialization
            failure, or the last serialization failure once attempts run out.
    """
    opts = (TxOptions() if options is None else options).normalized()
    log = get_logger() if logger is None else logger
    observer = _RetryObserver(log, opts.max_attempts)
    sleep = None
    if stop_event is not None:
        sleep = build_cancellable_sleep(stop_event, on_cancel=observer.cancelled)
    retrying = build_transaction_retrying(
        max_attempts=opts.max_attempts,
        backoff=opts.backoff or default_exponential_with_full_jitter(),
        sleep=sleep,
        before_sleep=observer.before_sleep,
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await _attempt(begin, fn, opts, log)
    except Exception as error:
        observer.finished_with(error)
        raise
    raise RuntimeError("Retrying loop exited unexpectedly")


def _rollback_sync(tx: SyncTransaction, logger: AnyLogger) -> None:
    try:
        tx.rollback()
    except Exception as error:
        log_warning(logger, "transaction_rollback_failed", error=repr(error))


def _attempt_sync(
    begin: SyncBeginTx[SyncTxT],
    fn: Callable[[SyncTxT], T],
    options: TxOptions,
    logger: AnyLogger,
) -> T | None:
    try:
        tx = begin(options)
    except Exception as error:
        raise BeginTransactionError(f"begin transaction: {error}") from error

    committed = False
    try:
        try:
            result = fn(tx)
        except Exception as error:
            if not _is_abort(error):
                raise
            log_info(logger, "transaction_aborted")
            return None
        tx.commit()
        committed = True
        return result
    finally:
        if not committed:
            _rollback_sync(tx, logger)


def run_in_transaction_sync(
    begin: SyncBeginTx[SyncTxT],
    fn: Callable[[SyncTxT], T],
    options: TxOptions | None = None,
    *,
    stop_event: threading.Event | None = None,
    logger: AnyLogger | None = None,
) -> T | None:
    """Blocking counterpart of :func:`run_in_transaction` for DB-API style drivers."""
    opts = (TxOptions() if options is None else options).normalized()
    log = get_logger() if logger is None else logger
    observer = _RetryObserver(log, opts.max_attempts)
    sleep = None
    if stop_event is not None:
        sleep = build_cancellable_sleep_sync(stop_event, on_cancel=observer.cancelled)
    retrying = build_transaction_retrying_sync(
        max_attempts=opts.max_attempts,
        backoff=opts.backoff or default_exponential_with_full_jitter(),
        sleep=sleep,
        before_sleep=observer.before_sleep,
    )

    try:
        for attempt in retrying:
            with attempt:
                return _attempt_sync(begin, fn, opts, log)
    except Exception as error:
        observer.finished_with(error)
        raise
    raise RuntimeError("Retrying loop exited unexpectedly")
