"""
Database cursor wrapper for PostgreSQL and SQLite.

Implements the subset of Python DB-API 2.0 (PEP-249) used by record mapping,
adding SQL logging, timing and placeholder conversion.
"""
import logging
import time
from collections.abc import Iterator
from functools import wraps
from typing import Any

from recordmap.types import TypeConverter

logger = logging.getLogger(__name__)


def dumpsql(func):
    """Decorator for logging SQL queries and parameters."""
    @wraps(func)
    def wrapper(self, operation: str, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{operation}\nargs: {args}')
        try:
            result = func(self, operation, *args, **kwargs)
            if hasattr(self.dbapi_cursor, 'statusmessage'):
                logger.debug(f'Query result: {self.dbapi_cursor.statusmessage}')
            return result
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{operation}\nargs: {args}')
            raise
        finally:
            elapsed = time.time() - start
            self.connwrapper.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class Cursor:
    """Cursor wrapper used for every statement issued by record mapping.

    Uses the strategy pattern to handle dialect-specific behaviors like
    placeholder conversion (%s vs ?) automatically.
    """

    def __init__(self, cursor: Any, connection_wrapper: Any, strategy: Any = None) -> None:
        """Initialize cursor wrapper.

        Args:
            cursor: The underlying database cursor
            connection_wrapper: The connection wrapper that created this cursor
            strategy: Optional database strategy (auto-detected from connection if not provided)
        """
        self.dbapi_cursor = cursor
        self.connwrapper = connection_wrapper
        self._strategy = strategy
        self.closed = False

    @property
    def strategy(self) -> Any:
        """Get the database strategy, lazily initializing if needed."""
        if self._strategy is None:
            self._strategy = self.connwrapper.strategy
        return self._strategy

    def __getattr__(self, name: str) -> Any:
        """Delegate members to underlying cursor."""
        return getattr(self.dbapi_cursor, name)

    def close(self) -> None:
        """Close cursor. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self.dbapi_cursor.close()

    def fetchone(self) -> Any | None:
        """Fetch next row."""
        return self.dbapi_cursor.fetchone()

    def fetchmany(self, size: int = 1) -> list[Any]:
        """Fetch next set of rows."""
        return self.dbapi_cursor.fetchmany(size)

    def fetchall(self) -> list[Any]:
        """Fetch all remaining rows."""
        return self.dbapi_cursor.fetchall()

    @dumpsql
    def execute(self, operation: str, params: tuple | list = ()) -> int:
        """Execute a database operation written with %s placeholders."""
        operation = self.strategy.standardize_sql(operation)
        params = TypeConverter.convert_params(tuple(params))
        if params:
            self.dbapi_cursor.execute(operation, params)
        else:
            self.dbapi_cursor.execute(operation)
        return self.dbapi_cursor.rowcount


def IterChunk(cursor: Any, size: int = 5000) -> Iterator[Any]:
    """Iterate through cursor results in chunks."""
    while True:
        chunked = cursor.fetchmany(size)
        if not chunked:
            break
        yield from chunked


def get_dict_cursor(cn: Any) -> Cursor:
    """Get cursor that returns rows as dictionaries."""
    strategy = cn.strategy
    cursor = strategy.create_dict_cursor(cn.dbapi_connection)
    return Cursor(cursor, cn, strategy)
