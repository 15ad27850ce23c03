"""
SQLite-specific strategy implementation.

This module implements the DatabaseStrategy interface with SQLite-specific operations.
It handles SQLite's unique features and limitations such as:
- File paths (or :memory:) as the whole connection target
- Rowid aliasing of INTEGER PRIMARY KEY columns for generated identities
- Enum-like columns expressed as CHECK (col IN (...)) constraints
"""
import logging
import pathlib
import re
import sqlite3
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from recordmap.strategy.base import DatabaseStrategy, register_strategy
from recordmap.types import register_sqlite_converters

if TYPE_CHECKING:
    from recordmap.connection import ConnectionWrapper
    from recordmap.options import DatabaseOptions

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ':memory:'

# lang IN ('en', 'ja') or "lang" in ('en','ja')
_CHECK_IN_LIST = re.compile(
    r"""(?:"(?P<quoted>(?:[^"]|"")+)"|`(?P<tick>[^`]+)`|\[(?P<bracket>[^\]]+)\]|(?P<bare>\w+))
        \s+IN\s*\(\s*(?P<values>'(?:[^']|'')*'(?:\s*,\s*'(?:[^']|'')*')*)\s*\)""",
    re.IGNORECASE | re.VERBOSE)
_STRING_LITERAL = re.compile(r"'((?:[^']|'')*)'")


def parse_check_enums(sqltext: str) -> dict[str, tuple[str, ...]]:
    """Extract ``column IN ('a', 'b')`` lists from a CHECK constraint body.

    >>> parse_check_enums("lang IN ('en', 'ja', 'es')")
    {'lang': ('en', 'ja', 'es')}
    >>> parse_check_enums('value > 0')
    {}
    """
    enums = {}
    for match in _CHECK_IN_LIST.finditer(sqltext):
        name = (match.group('quoted') or match.group('tick')
                or match.group('bracket') or match.group('bare'))
        name = name.replace('""', '"')
        values = tuple(v.replace("''", "'") for v in _STRING_LITERAL.findall(match.group('values')))
        enums[name] = values
    return enums


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        return sa.URL.create(drivername='sqlite', database=options.database)

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite."""
        connect_args: dict[str, Any] = {
            'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        }
        if options.timeout:
            connect_args['timeout'] = options.timeout
        return {'connect_args': connect_args}

    def database_identity(self, options: 'DatabaseOptions') -> str:
        """Absolute path of the database file."""
        if self.is_ephemeral(options):
            return f'sqlite://{MEMORY_DATABASE}'
        path = pathlib.Path(options.database).expanduser().resolve()
        return f'sqlite:///{path.as_posix()}'

    def is_ephemeral(self, options: 'DatabaseOptions') -> bool:
        """In-memory databases live only as long as their connection."""
        return options.database in {MEMORY_DATABASE, ''}

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['database']

    def configure_connection(self, conn: Any) -> None:
        """Configure connection settings for SQLite.
        """
        sqlite_conn = conn
        if hasattr(conn, 'dbapi_connection'):
            sqlite_conn = conn.dbapi_connection

        register_sqlite_converters()
        sqlite_conn.execute('PRAGMA foreign_keys = ON')
        self.enable_autocommit(sqlite_conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for SQLite.
        """
        raw_conn.isolation_level = None

    def create_dict_cursor(self, raw_conn: Any) -> Any:
        """Create a cursor that returns rows as dictionaries.

        Sets sqlite3.Row on the cursor only; SQLAlchemy shares the connection
        and expects plain tuples.
        """
        sqlite_conn = raw_conn
        if hasattr(raw_conn, 'dbapi_connection'):
            sqlite_conn = raw_conn.dbapi_connection
        cursor = sqlite_conn.cursor()
        cursor.row_factory = sqlite3.Row
        return cursor

    def is_autoincrement(self, column: dict[str, Any], primary_keys: Sequence[str]) -> bool:
        """A single INTEGER PRIMARY KEY column is an alias for the rowid.
        """
        if len(primary_keys) != 1 or column['name'] != primary_keys[0]:
            return False
        return str(column['type']).upper() == 'INTEGER'

    def get_enum_values(self, cn: 'ConnectionWrapper', table: str,
                        inspector: sa.Inspector) -> dict[str, tuple[str, ...]]:
        """Read enum value lists from CHECK constraints in the table definition.
        """
        sql = "select sql from sqlite_master where type = 'table' and name = %s"
        enums = {}
        for row in self._select_raw(cn, sql, (table,)):
            enums.update(parse_check_enums(row['sql'] or ''))
        if enums:
            logger.debug(f'Found CHECK enum columns on {table}: {sorted(enums)}')
        return enums
