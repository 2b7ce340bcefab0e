"""Typed storage errors decoded from driver-specific integrity failures."""

from __future__ import annotations

import re
from typing import Iterable

from sqlalchemy.exc import IntegrityError

_PG_UNIQUE_VIOLATION = "23505"
_SQLITE_UNIQUE_PATTERN = re.compile(r"UNIQUE constraint failed: (?P<columns>.+)$")
_PG_KEY_PATTERN = re.compile(r"Key \((?P<columns>[^)]+)\)=")


class StorageError(Exception):
    """Integrity failure raised at the storage boundary."""

    def __init__(self, message: str, *, original: BaseException | None = None) -> None:
        super().__init__(message)
        self.original = original


class UniqueConstraintViolation(StorageError):
    """A uniqueness constraint rejected the write.

    ``constraint`` is populated by PostgreSQL; ``columns`` by both backends
    whenever the driver reports the conflicting key.
    """

    def __init__(
        self,
        message: str,
        *,
        constraint: str | None = None,
        columns: tuple[str, ...] = (),
        original: BaseException | None = None,
    ) -> None:
        super().__init__(message, original=original)
        self.constraint = constraint
        self.columns = columns


def translate_integrity_error(exc: IntegrityError) -> StorageError:
    """Map a SQLAlchemy ``IntegrityError`` onto the typed taxonomy."""

    orig = exc.orig
    cause = getattr(orig, "__cause__", None)
    message = str(orig) if orig is not None else str(exc)

    sqlstate = _first_attr((orig, cause), "sqlstate", "pgcode")
    if sqlstate == _PG_UNIQUE_VIOLATION:
        constraint = _first_attr((orig, cause), "constraint_name")
        if constraint is None:
            diag = getattr(orig, "diag", None)
            constraint = getattr(diag, "constraint_name", None)
        columns: tuple[str, ...] = ()
        detail = _first_attr((orig, cause), "detail") or message
        key_match = _PG_KEY_PATTERN.search(str(detail))
        if key_match:
            columns = tuple(part.strip() for part in key_match.group("columns").split(","))
        return UniqueConstraintViolation(message, constraint=constraint, columns=columns, original=exc)

    sqlite_match = _SQLITE_UNIQUE_PATTERN.search(message)
    if sqlite_match:
        qualified = [part.strip() for part in sqlite_match.group("columns").split(",")]
        columns = tuple(name.split(".", 1)[-1] for name in qualified)
        return UniqueConstraintViolation(message, columns=columns, original=exc)

    return StorageError(message, original=exc)


def is_unique_constraint_violation(
    error: BaseException,
    *,
    constraint: str | None = None,
    columns: Iterable[str] | None = None,
) -> bool:
    """Return True when ``error`` is a uniqueness violation on the given target.

    Without a target any uniqueness violation matches. With a target, either
    the constraint name or the exact column set must line up.
    """

    if isinstance(error, IntegrityError):
        error = translate_integrity_error(error)
    if not isinstance(error, UniqueConstraintViolation):
        return False
    if constraint is None and columns is None:
        return True
    if constraint is not None and error.constraint == constraint:
        return True
    if columns is not None and error.columns:
        return set(error.columns) == set(columns)
    return False


def _first_attr(candidates: Iterable[object], *names: str) -> str | None:
    for candidate in candidates:
        if candidate is None:
            continue
        for name in names:
            value = getattr(candidate, name, None)
            if value:
                return str(value)
    return None


__all__ = [
    "StorageError",
    "UniqueConstraintViolation",
    "is_unique_constraint_violation",
    "translate_integrity_error",
]
