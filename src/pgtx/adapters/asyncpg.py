"""asyncpg transaction source."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pgtx.transaction import IsolationLevel, TxOptions

if TYPE_CHECKING:
    from asyncpg import Connection
    from asyncpg.transaction import Transaction

_ASYNCPG_ISOLATION: dict[IsolationLevel, str] = {
    IsolationLevel.SERIALIZABLE: "serializable",
    IsolationLevel.REPEATABLE_READ: "repeatable_read",
    IsolationLevel.READ_COMMITTED: "read_committed",
    IsolationLevel.READ_UNCOMMITTED: "read_uncommitted",
}


@dataclass(frozen=True)
class AsyncpgTransaction:
    """Started asyncpg transaction plus the connection queries should run on.

    Attributes:
        connection: Connection owning the transaction.
        transaction: The started ``asyncpg`` transaction.
    """

    connection: Connection
    transaction: Transaction

    async def commit(self) -> None:
        await self.transaction.commit()

    async def rollback(self) -> None:
        await self.transaction.rollback()


def asyncpg_isolation(level: IsolationLevel) -> str:
    """Map an isolation level to the name ``Connection.transaction`` accepts."""
    try:
        return _ASYNCPG_ISOLATION[level]
    except KeyError as error:
        choices = ", ".join(sorted(str(item) for item in _ASYNCPG_ISOLATION))
        raise ValueError(
            f"asyncpg does not support isolation {level!s}; use one of: {choices}"
        ) from error


def asyncpg_begin(
    connection: Connection,
) -> Callable[[TxOptions], Awaitable[AsyncpgTransaction]]:
    """Build a ``begin`` callable that starts transactions on ``connection``."""

    async def _begin(options: TxOptions) -> AsyncpgTransaction:
        transaction = connection.transaction(
            isolation=asyncpg_isolation(options.isolation),
            readonly=options.read_only,
        )
        await transaction.start()
        return AsyncpgTransaction(connection=connection, transaction=transaction)

    return _begin
