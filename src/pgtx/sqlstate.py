"""Classify driver errors by SQLSTATE code and violated constraint.

Drivers disagree on how they expose error details, so every lookup here is
capability based:

  - asyncpg and psycopg 3 errors carry ``sqlstate``; the constraint name sits on
    ``constraint_name`` or ``diag.constraint_name``.
  - psycopg2 errors carry ``pgcode``, ``pgerror`` and ``diag.constraint_name``.
  - SQLAlchemy wraps the driver error in ``DBAPIError.orig``.

The error is walked through explicit wrapping only, ``__cause__`` and ``orig``,
until a five-character code turns up. An error raised while another was being
handled (``__context__``) is unrelated to it. None of the functions in this module
raise.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from enum import StrEnum
from typing import Protocol, runtime_checkable

_SQLSTATE_LENGTH = 5

_CRDB_KEY_PATTERN = re.compile(r"(\w+@\w+)[^@]*$")
_LAST_QUOTE_PATTERN = re.compile(r'"([^"]*)"[^"]*$')


class SQLState(StrEnum):
    """SQLSTATE codes this module has named predicates for."""

    UNIQUE_VIOLATION = "23505"
    FOREIGN_KEY_VIOLATION = "23503"
    INVALID_TEXT_REPRESENTATION = "22P02"
    CHARACTER_NOT_IN_REPERTOIRE = "22021"
    QUERY_CANCELED = "57014"
    SERIALIZATION_FAILURE = "40001"


@runtime_checkable
class DatabaseErrorInfo(Protocol):
    """Error that reports its own SQLSTATE code and constraint name."""

    @property
    def sqlstate(self) -> str | None: ...

    @property
    def constraint_name(self) -> str | None: ...


def iter_error_chain(error: BaseException | None) -> Iterator[BaseException]:
    """Yield ``error`` and every error it explicitly wraps, each exactly once."""
    pending: list[BaseException] = [] if error is None else [error]
    seen: set[int] = set()
    while pending:
        current = pending.pop(0)
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current

        if current.__cause__ is not None:
            pending.append(current.__cause__)
        orig = getattr(current, "orig", None)
        if isinstance(orig, BaseException):
            pending.append(orig)


def _as_sqlstate(value: object) -> str:
    if isinstance(value, str) and len(value) == _SQLSTATE_LENGTH:
        return value
    return ""


def _own_sqlstate(error: BaseException) -> str:
    code = _as_sqlstate(getattr(error, "sqlstate", None))
    if code:
        return code
    return _as_sqlstate(getattr(error, "pgcode", None))


def _find_coded_error(error: BaseException | None) -> BaseException | None:
    for current in iter_error_chain(error):
        if _own_sqlstate(current):
            return current
    return None


def sqlstate_code(error: BaseException | None) -> str:
    """Return the first SQLSTATE code found in the error chain, or ``""``."""
    coded = _find_coded_error(error)
    if coded is None:
        return ""
    return _own_sqlstate(coded)


def error_class(error: BaseException | None) -> str:
    """Return the two-character class of the error's SQLSTATE code, or ``""``."""
    return sqlstate_code(error)[:2]


def is_error_code(error: BaseException | None, code: str) -> bool:
    code_found = sqlstate_code(error)
    return bool(code_found) and code_found == code


def is_error_class(error: BaseException | None, class_: str) -> bool:
    class_found = error_class(error)
    return bool(class_found) and class_found == class_


def _text(value: object) -> str:
    return value if isinstance(value, str) else ""


def _structured_constraint(error: BaseException) -> str:
    if isinstance(error, DatabaseErrorInfo):
        name = _text(error.constraint_name)
        if name:
            return name
    diag = getattr(error, "diag", None)
    return _text(getattr(diag, "constraint_name", None))


def _error_message(error: BaseException) -> str:
    for candidate in (
        getattr(error, "message", None),
        getattr(getattr(error, "diag", None), "message_primary", None),
        getattr(error, "pgerror", None),
    ):
        message = _text(candidate)
        if message:
            return message
    return str(error)


def extract_crdb_key(message: str) -> str:
    """Extract a CockroachDB ``table@index`` key from an error message.

    ``foreign key violation: value ['b'] not found in a@primary [id]`` yields
    ``a@primary``.
    """
    match = _CRDB_KEY_PATTERN.search(message)
    return "" if match is None else match.group(1)


def extract_last_quote(message: str) -> str:
    """Extract the last double-quoted string in a message.

    ``insert or update on table "b" violates foreign key constraint "a_id_fkey"``
    yields ``a_id_fkey``.
    """
    match = _LAST_QUOTE_PATTERN.search(message)
    return "" if match is None else match.group(1)


def constraint_name(error: BaseException | None) -> str:
    """Best-effort name of the constraint the error reports, or ``""``."""
    coded = _find_coded_error(error)
    if coded is None:
        return ""
    name = _structured_constraint(coded)
    if name:
        return name
    message = _error_message(coded)
    if not message:
        return ""
    return extract_crdb_key(message) or extract_last_quote(message)


def _matches_constraint(error: BaseException | None, constraints: tuple[str, ...]) -> bool:
    if not constraints:
        return True
    return constraint_name(error) in constraints


def is_unique_violation(error: BaseException | None, *constraints: str) -> bool:
    """Check for unique_violation, optionally limited to the given constraints."""
    if not is_error_code(error, SQLState.UNIQUE_VIOLATION):
        return False
    return _matches_constraint(error, constraints)


def is_foreign_key_violation(error: BaseException | None, *constraints: str) -> bool:
    """Check for foreign_key_violation, optionally limited to the given constraints."""
    if not is_error_code(error, SQLState.FOREIGN_KEY_VIOLATION):
        return False
    return _matches_constraint(error, constraints)


def is_invalid_text_representation(error: BaseException | None) -> bool:
    return is_error_code(error, SQLState.INVALID_TEXT_REPRESENTATION)


def is_character_not_in_repertoire(error: BaseException | None) -> bool:
    return is_error_code(error, SQLState.CHARACTER_NOT_IN_REPERTOIRE)


def is_query_canceled(error: BaseException | None) -> bool:
    """Check for query_canceled (canceling statement due to user request)."""
    return is_error_code(error, SQLState.QUERY_CANCELED)


def is_serialization_failure(error: BaseException | None) -> bool:
    """Check for serialization_failure.

    This is the only error class a serializable transaction should be retried on.
    """
    return is_error_code(error, SQLState.SERIALIZATION_FAILURE)
