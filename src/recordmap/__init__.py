"""
Schema-driven record mapping for PostgreSQL and SQLite.

Bind a table and work with its rows as records:

    cn = recordmap.connect(drivername='sqlite', database='app.db')
    greeting = recordmap.bind(cn, 'greeting')
    record = greeting.new(data='hello')
    record.commit()

Table schemas are read once through SQLAlchemy and cached per database, in
memory and in a cache directory (see `recordmap.cache.SchemaCache`).
"""
__version__ = '0.1.0'

from typing import Any

from recordmap.cache import SchemaCache
from recordmap.connection import ConnectionWrapper, connect
from recordmap.exceptions import AmbiguousFieldError, CommitError
from recordmap.exceptions import ConnectionFailure, DatabaseError
from recordmap.exceptions import DbConnectionError, FieldError, FilterError
from recordmap.exceptions import IntegrityError, OperationalError
from recordmap.exceptions import ProgrammingError, QueryExecutionError
from recordmap.exceptions import RecordStateError, SchemaLoadError
from recordmap.exceptions import UnknownFieldError
from recordmap.filters import CompiledQuery, Mode
from recordmap.iterator import END, RecordIterator
from recordmap.options import DatabaseOptions
from recordmap.record import Record, RecordState
from recordmap.schema import ColumnSpec, SqlType, TableSchema
from recordmap.table import Table, bind


def execute(cn: ConnectionWrapper, sql: str, *args: Any) -> int:
    """Execute a SQL statement and return affected row count.
    """
    return cn.execute(sql, *args)


__all__ = [
    'connect',
    'bind',
    'execute',
    'ConnectionWrapper',
    'DatabaseOptions',
    'Table',
    'Record',
    'RecordState',
    'RecordIterator',
    'END',
    'Mode',
    'CompiledQuery',
    'SchemaCache',
    'TableSchema',
    'ColumnSpec',
    'SqlType',
    'DatabaseError',
    'ConnectionFailure',
    'SchemaLoadError',
    'FieldError',
    'UnknownFieldError',
    'AmbiguousFieldError',
    'QueryExecutionError',
    'FilterError',
    'CommitError',
    'RecordStateError',
    'DbConnectionError',
    'IntegrityError',
    'ProgrammingError',
    'OperationalError',
]
