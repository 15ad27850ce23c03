"""
Exception classes for record mapping.

Errors raised by this package derive from DatabaseError. Driver errors are
grouped into tuples so callers can catch the same failure across sqlite3,
psycopg and SQLAlchemy with one except clause.
"""
import re
import sqlite3

import psycopg
import sqlalchemy as sa

RETRYABLE_PATTERNS = [
    # SSL/TLS errors
    r'ssl',
    r'tls',
    # Connection drops
    r'connection.*(closed|reset|refused|lost|terminated|broken)',
    r'server closed',
    r'eof detected',
    r'broken pipe',
    # Timeouts
    r'timeout',
    r'timed out',
    # Network issues
    r'could not connect',
    r'no route to host',
    r'network.*(unreachable|error)',
    r'host.*(unreachable|down)',
    # Database unavailable
    r'database.*unavailable',
    r'too many connections',
]

_RETRYABLE_REGEX = re.compile('|'.join(RETRYABLE_PATTERNS), re.IGNORECASE)


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception represents a transient error worth retrying.

    Only consulted when opening connections. Query and commit failures are
    surfaced to the caller without retry.

    :param exc: The exception to check.
    :returns: True if the error is likely transient and worth retrying.
    """
    return bool(_RETRYABLE_REGEX.search(str(exc).lower()))


class DatabaseError(Exception):
    """Base class for all recordmap errors.
    """


class ConnectionFailure(DatabaseError):
    """Error establishing or maintaining database connection.
    """


class SchemaLoadError(DatabaseError):
    """Table is missing or its metadata could not be read.
    """

    def __init__(self, table: str, reason: str = '') -> None:
        self.table = table
        message = f'Cannot load schema for table {table!r}'
        if reason:
            message = f'{message}: {reason}'
        super().__init__(message)


class FieldError(DatabaseError):
    """Caller referenced a field incorrectly.
    """


class UnknownFieldError(FieldError, KeyError):
    """Field is not a column of the bound table.
    """

    def __init__(self, table: str, field: str) -> None:
        self.table = table
        self.field = field
        super().__init__(f'{field!r} is not a column of {table!r}')

    def __str__(self) -> str:
        return self.args[0]


class AmbiguousFieldError(FieldError):
    """Field name omitted but the table has no single natural data column.
    """

    def __init__(self, table: str, candidates: list[str]) -> None:
        self.table = table
        self.candidates = candidates
        super().__init__(
            f'Table {table!r} has {len(candidates)} data columns '
            f'({", ".join(candidates) or "none"}); a field name is required')


class QueryExecutionError(DatabaseError):
    """Storage failure while running a read query.
    """


class FilterError(QueryExecutionError):
    """Filter could not be compiled into a query.
    """


class CommitError(DatabaseError):
    """Write failed; the record keeps its pending changes.
    """


class RecordStateError(DatabaseError):
    """Operation is not valid in the record's current state.
    """


DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    ConnectionFailure,
    )

IntegrityError = (
    psycopg.IntegrityError,
    sqlite3.IntegrityError,
    sa.exc.IntegrityError,
    )

ProgrammingError = (
    psycopg.ProgrammingError,
    psycopg.DatabaseError,
    sqlite3.ProgrammingError,
    sqlite3.DatabaseError,
    )

OperationalError = (
    psycopg.OperationalError,
    sqlite3.OperationalError,
    )

# Anything the driver or SQLAlchemy can raise while talking to storage
StorageError = (
    psycopg.Error,
    sqlite3.Error,
    sa.exc.SQLAlchemyError,
    )
