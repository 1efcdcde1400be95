"""Transaction sources for concrete database drivers.

Adapters turn a driver connection into the ``begin`` callable expected by
:func:`pgtx.transaction.run_in_transaction`. Drivers are optional extras and are
not imported at runtime.
"""

from pgtx.adapters.asyncpg import AsyncpgTransaction, asyncpg_begin

__all__ = [
    "AsyncpgTransaction",
    "asyncpg_begin",
]
