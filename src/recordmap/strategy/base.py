"""
Base strategy interface for database operations.

Defines the abstract base class that all database-specific strategy implementations
must inherit from. The strategy pattern keeps dialect differences (connection URLs,
placeholder style, identity generation on insert, enum discovery) out of the
record mapping layer, which works with any database through this interface.
"""
from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from recordmap.sql import quote_identifier as sql_quote_identifier
from recordmap.sql import standardize_placeholders
from recordmap.types import RowAdapter

if TYPE_CHECKING:
    from recordmap.connection import ConnectionWrapper
    from recordmap.cursor import Cursor
    from recordmap.options import DatabaseOptions

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('postgresql')
        class PostgresStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for database-specific operations.
    """

    @contextmanager
    def _cursor(self, cn: 'ConnectionWrapper', sql: str, params: tuple | None = None):
        """Context manager for cursor lifecycle with SQL standardization.

        Handles cursor creation, SQL execution, and cleanup.
        """
        sql = self.standardize_sql(sql)
        cursor = cn.dbapi_connection.cursor()
        try:
            cursor.execute(sql, params or ())
            yield cursor
        finally:
            cursor.close()

    def _select_raw(self, cn: 'ConnectionWrapper', sql: str,
                    params: tuple | None = None) -> list[dict]:
        """Execute SQL and return results as list of dicts.

        Used internally by strategy methods for metadata queries.
        """
        with self._cursor(cn, sql, params) as cursor:
            if cursor.description is None:
                return []
            columns = [desc[0] for desc in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'postgresql', 'sqlite')."""

    @abstractmethod
    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the database connection URL for this dialect.

        Args:
            options: DatabaseOptions containing connection parameters

        Returns
            SQLAlchemy URL object
        """

    @abstractmethod
    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect.
        """

    @abstractmethod
    def database_identity(self, options: 'DatabaseOptions') -> str:
        """Return a string naming the database the options point at.

        Two option sets that reach the same database must produce the same
        identity; different databases must never share one.
        """

    def is_ephemeral(self, options: 'DatabaseOptions') -> bool:
        """Whether the database disappears with its connection.
        """
        return False

    @abstractmethod
    def configure_connection(self, conn: Any) -> None:
        """Configure connection settings.

        Args:
            conn: Database connection to configure with database-specific settings
        """

    @abstractmethod
    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode on a raw database connection.

        Args:
            raw_conn: The raw DBAPI connection (not wrapped)
        """

    @abstractmethod
    def create_dict_cursor(self, raw_conn: Any) -> Any:
        """Create a cursor that returns rows as dictionaries.

        Args:
            raw_conn: Raw DBAPI connection

        Returns
            Cursor configured to return dict-like rows
        """

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.
        """

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Validate options for this dialect.

        Args:
            options: DatabaseOptions to validate

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    def quote_identifier(self, identifier: str) -> str:
        """Quote a database identifier.

        Default implementation uses standard SQL double-quote escaping.
        """
        return sql_quote_identifier(identifier, self.dialect_name)

    def standardize_sql(self, sql: str) -> str:
        """Convert placeholders to this dialect's style.
        """
        return standardize_placeholders(sql, self.dialect_name)

    def is_autoincrement(self, column: dict[str, Any], primary_keys: Sequence[str]) -> bool:
        """Decide whether the storage engine generates values for a column.

        Args:
            column: One entry from SQLAlchemy ``Inspector.get_columns``
            primary_keys: Primary key column names of the table
        """
        return column.get('autoincrement') is True or 'identity' in column

    def get_enum_values(self, cn: 'ConnectionWrapper', table: str,
                        inspector: sa.Inspector) -> dict[str, tuple[str, ...]]:
        """Discover enum-like columns that the column type alone does not reveal.

        Returns
            Mapping of column name to its allowed string values
        """
        return {}

    def build_insert_sql(self, table: str, columns: Sequence[str]) -> str:
        """Generate an INSERT statement with %s placeholders.

        An empty column list inserts a row made only of defaults.
        """
        quoted_table = self.quote_identifier(table)
        if not columns:
            return f'insert into {quoted_table} default values'
        quoted_columns = ', '.join(self.quote_identifier(col) for col in columns)
        placeholders = ', '.join(['%s'] * len(columns))
        return f'insert into {quoted_table} ({quoted_columns}) values ({placeholders})'

    def insert_row(self, cursor: 'Cursor', table: str, values: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and read the stored row back in the same statement.

        Args:
            cursor: Wrapped cursor to execute on
            table: Target table name
            values: Column values to insert; omitted columns take their defaults

        Returns
            The stored row including generated keys and defaults
        """
        sql = f'{self.build_insert_sql(table, list(values))} returning *'
        cursor.execute(sql, tuple(values.values()))
        return RowAdapter(cursor.fetchall()[0]).to_dict()

    def update_row(self, cursor: 'Cursor', table: str, values: dict[str, Any],
                   key: str, key_value: Any) -> dict[str, Any] | None:
        """Update one row by key and read the stored row back.

        Returns
            The stored row after the update, or None when no row has that key
        """
        assignments = ', '.join(f'{self.quote_identifier(name)} = %s' for name in values)
        sql = (f'update {self.quote_identifier(table)} set {assignments} '
               f'where {self.quote_identifier(key)} = %s returning *')
        cursor.execute(sql, (*values.values(), key_value))
        rows = cursor.fetchall()
        return RowAdapter(rows[0]).to_dict() if rows else None
