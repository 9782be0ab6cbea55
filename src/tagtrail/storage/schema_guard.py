"""
Schema compatibility guard

Decides whether a failed insert was caused by the database lacking a column
the code expects (schema mismatch) or by something else. Only schema
mismatches may be retried without telemetry columns; connectivity,
constraint and not-found errors must reach the caller untouched.
"""

import re
from typing import Optional

from sqlalchemy.exc import IntegrityError

# SQLSTATE 42703 = undefined_column (PostgreSQL)
_UNDEFINED_COLUMN_SQLSTATE = "42703"
# MySQL ER_BAD_FIELD_ERROR
_MYSQL_BAD_FIELD = 1054

_SCHEMA_MISMATCH_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"has no column named",                       # SQLite insert
        r"no such column",                            # SQLite select/update
        r"column \"?[\w.]+\"? (of relation \"?\w+\"? )?does not exist",  # PostgreSQL
        r"undefinedcolumn",                           # asyncpg / psycopg class name
        r"unknown column",                            # MySQL
        r"unconsumed column names",                   # SQLAlchemy compile
        r"unknown field",
        r"unknown argument",
    )
]


def _error_code(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, exc):
        if candidate is None:
            continue
        for attr in ("sqlstate", "pgcode"):
            value = getattr(candidate, attr, None)
            if value:
                return str(value)
    return None


def _mysql_errno(exc: BaseException) -> Optional[int]:
    orig = getattr(exc, "orig", None)
    args = getattr(orig, "args", None) or ()
    if args and isinstance(args[0], int):
        return args[0]
    return None


def is_schema_mismatch_error(exc: Optional[BaseException]) -> bool:
    """
    Whether an insert failure is a missing/unknown column error

    Args:
        exc: The exception raised by the insert

    Returns:
        True only for the missing-column family of errors
    """
    if exc is None:
        return False

    # Constraint violations are data errors even when the message mentions a column
    if isinstance(exc, IntegrityError):
        return False

    if _error_code(exc) == _UNDEFINED_COLUMN_SQLSTATE:
        return True
    if _mysql_errno(exc) == _MYSQL_BAD_FIELD:
        return True

    message = f"{type(exc).__name__}: {exc}"
    orig = getattr(exc, "orig", None)
    if orig is not None:
        message = f"{message} {orig!r}"
    return any(pattern.search(message) for pattern in _SCHEMA_MISMATCH_PATTERNS)
