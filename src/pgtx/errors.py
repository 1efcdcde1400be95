"""Shared error types for pgtx.

Callers can distinguish between:
  - The transaction body asking for a clean rollback (``AbortTransaction``).
  - A transaction that could not be started (``BeginTransactionError``).
  - A retry loop stopped by the caller's cancellation signal
    (``TransactionCancelledError``).

Database errors raised by the body or by commit are never wrapped.
"""


class AbortTransaction(Exception):
    """Raise inside a transaction body to roll back and report success."""


class TransactionError(Exception):
    """Base exception for errors raised by pgtx itself."""


class BeginTransactionError(TransactionError):
    """Raised when the transaction source fails to begin a transaction.

    The driver error is chained as ``__cause__``. Begin failures are never retried.
    """


class TransactionCancelledError(TransactionError):
    """Raised when the cancellation signal fires while waiting to retry.

    Attributes:
        attempt: One-based number of the attempt that failed before the wait.
    """

    def __init__(self, attempt: int) -> None:
        """Initialize a cancellation payload.

        Args:
            attempt: Attempt that failed before the wait was cancelled.
        """
        self.attempt = attempt
        super().__init__(f"transaction_cancelled: after attempt {attempt}")
