"""
Database connection handling with SQLAlchemy.

This module provides:
1. The `connect()` function for creating new database connections
2. The `ConnectionWrapper` class that wraps SQLAlchemy connections
3. Engine creation and management through a thread-safe registry

SQLAlchemy is used for connection management, pooling and schema
introspection. Statements issued by records and tables run on the raw DBAPI
connection through `recordmap.cursor.Cursor`.
"""
import atexit
import itertools
import logging
import threading
import time
from collections.abc import Callable, Mapping
from functools import wraps
from typing import TYPE_CHECKING, Any, Self, TypeVar

import sqlalchemy as sa
from recordmap.cursor import Cursor, get_dict_cursor
from recordmap.exceptions import ConnectionFailure, is_retryable_error
from recordmap.options import DatabaseOptions
from recordmap.strategy import get_strategy
from recordmap.utils import ensure_commit
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

if TYPE_CHECKING:
    from recordmap.table import Table

__all__ = [
    'ConnectionWrapper',
    'connect',
    'configure_connection',
    'check_connection',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()
_connection_serial = itertools.count(1)


def check_connection(func: Callable[..., T] | None = None, *, max_retries: int = 3,
                     retry_delay: float = 1, retry_backoff: float = 1.5,
                     sleep_func: Callable[[float], None] = time.sleep) -> Callable[..., T]:
    """Connection retry decorator with backoff.

    Retries the wrapped call while it fails with a transient connection error
    (see `is_retryable_error`); anything else propagates immediately.

    Supports both @check_connection and @check_connection() syntax.
    """
    def decorator(f: Callable[..., T]) -> Callable[..., T]:
        @wraps(f)
        def inner(*args: Any, **kwargs: Any) -> T:
            tries = 0
            delay = retry_delay
            while True:
                try:
                    return f(*args, **kwargs)
                except (sa.exc.OperationalError, sa.exc.InterfaceError) as err:
                    tries += 1
                    if not is_retryable_error(err):
                        raise
                    if tries >= max_retries:
                        logger.error(f'Maximum retries ({max_retries}) exceeded: {err}')
                        raise
                    logger.warning(f'Connection error (attempt {tries}/{max_retries}): {err}')
                    sleep_func(delay)
                    delay *= retry_backoff

        return inner

    if func is None:
        return decorator
    return decorator(func)


def get_engine_for_options(options: DatabaseOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.
    """
    key = str(options)

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        strategy = get_strategy(options.drivername)
        url = strategy.build_connection_url(options)

        engine_kwargs: dict[str, Any] = {'echo': False}
        engine_kwargs.update(strategy.get_engine_kwargs(options))

        if not options.use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = options.pool_max_connections
            engine_kwargs['pool_recycle'] = options.pool_max_idle_time
            engine_kwargs['pool_timeout'] = options.pool_wait_timeout
            engine_kwargs['max_overflow'] = 10
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'

        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


class ConnectionWrapper:
    """Wraps a SQLAlchemy connection object to track calls and execution time

    This class provides a thin wrapper around SQLAlchemy connection objects that:
    1. Tracks query execution counts and timing
    2. Knows the identity of the database it is connected to
    3. Supports context manager protocol for explicit resource management
    4. Provides access to the underlying DBAPI connection via dbapi_connection
    5. Binds tables for record mapping via `table()`
    """

    def __init__(self, sa_connection: sa.engine.Connection | None = None,
                 options: DatabaseOptions | None = None) -> None:
        """Initialize a connection wrapper

        Args:
            sa_connection: SQLAlchemy connection object to wrap
            options: The DatabaseOptions used to create this connection
        """
        self.sa_connection = sa_connection
        self.engine = sa_connection.engine if sa_connection else None
        self.options = options
        self.dbapi_connection = sa_connection.connection if sa_connection else None
        self.strategy = get_strategy(options.drivername) if options else None
        self.calls = 0
        self.time = 0
        self.serial = next(_connection_serial)

    def __enter__(self) -> Self:
        """Support for context manager protocol
        """
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        """Close the connection when exiting the context manager
        """
        self.close()
        logger.debug('Closed connection via context manager')

    def __repr__(self) -> str:
        return f'<{type(self).__name__} {self.identity}>'

    @property
    def dialect(self) -> str:
        """Return the dialect name ('postgresql' or 'sqlite')."""
        return self.strategy.dialect_name

    @property
    def is_ephemeral(self) -> bool:
        """True for databases that vanish with the connection (SQLite :memory:)."""
        return self.strategy.is_ephemeral(self.options)

    @property
    def identity(self) -> str:
        """Identity of the connected database, used to key cached schemas.

        Ephemeral databases are private to one connection, so the connection
        itself becomes part of their identity.
        """
        identity = self.strategy.database_identity(self.options)
        if self.is_ephemeral:
            identity = f'{identity}@{self.serial}'
        return identity

    @property
    def closed(self) -> bool:
        return self.sa_connection is None or self.sa_connection.closed

    def cursor(self) -> Cursor:
        """Get a wrapped cursor for this connection

        Rows come back dict-like for both dialects. The cursor tracks
        execution statistics for this connection.
        """
        if self.closed:
            raise ConnectionFailure(f'Connection to {self.identity} is closed')
        return get_dict_cursor(self)

    def inspector(self) -> sa.Inspector:
        """SQLAlchemy Inspector bound to this connection.

        Bound to the connection rather than the engine so uncommitted schema
        changes are visible.
        """
        return sa.inspect(self.sa_connection)

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics

        Args:
            elapsed: Time in seconds that the query took to execute
        """
        self.time += elapsed
        self.calls += 1

    def close(self) -> None:
        """Close the SQLAlchemy connection, committing first
        """
        if self.closed:
            return

        ensure_commit(self.sa_connection)
        self.sa_connection.close()

        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s '
                     f'(avg: {self.time/max(1, self.calls):.3f}s per query)')

    def execute(self, sql: str, *args: Any) -> int:
        """Execute a statement written with %s placeholders and return the row count.

        Meant for DDL and housekeeping; row access goes through `table()`.
        """
        cursor = self.cursor()
        try:
            return cursor.execute(sql, args)
        finally:
            cursor.close()

    def table(self, name: str, **kwargs: Any) -> 'Table':
        """Bind a table on this connection. See `recordmap.table.Table`."""
        from recordmap.table import Table
        return Table(self, name, **kwargs)


def configure_connection(sa_connection: sa.engine.Connection) -> None:
    """Configure a SQLAlchemy connection with database-specific settings.
    """
    strategy = get_strategy(sa_connection.engine.dialect.name)
    strategy.configure_connection(sa_connection.connection)


@check_connection
def _open(engine: Engine) -> sa.engine.Connection:
    return engine.connect()


def connect(options: DatabaseOptions | Mapping[str, Any] | None = None,
            **kw: Any) -> ConnectionWrapper:
    """Connect to a database using SQLAlchemy for connection management

    Args:
        options: Can be:
                - DatabaseOptions object
                - Dictionary of options
                - None, with options specified as keyword arguments
        **kw: Additional keyword arguments to override options

    Returns
        ConnectionWrapper object for connecting to the database

    Raises
        ConnectionFailure: If the database cannot be reached
    """
    options = DatabaseOptions.load(options, **kw)
    engine = get_engine_for_options(options)

    try:
        sa_connection = _open(engine)
    except sa.exc.SQLAlchemyError as exc:
        raise ConnectionFailure(f'Cannot connect to {options.drivername} '
                                f'database {options.database!r}: {exc}') from exc

    configure_connection(sa_connection)
    return ConnectionWrapper(sa_connection, options)
