"""
PostgreSQL-specific strategy implementation.

This module implements the DatabaseStrategy interface with PostgreSQL-specific operations.
It handles PostgreSQL's unique features such as:
- psycopg (v3) connections through SQLAlchemy
- serial/identity columns reported by the catalog
- Native enum types
"""
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from recordmap.row import DictRowFactory
from recordmap.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from recordmap.connection import ConnectionWrapper
    from recordmap.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for PostgreSQL."""
        return 'postgresql'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for PostgreSQL."""
        query = {}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)
        if options.appname:
            query['application_name'] = options.appname

        return sa.URL.create(
            drivername='postgresql+psycopg',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port,
            database=options.database,
            query=query,
        )

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for PostgreSQL."""
        return {}

    def database_identity(self, options: 'DatabaseOptions') -> str:
        """Server address and database name."""
        host = (options.hostname or 'localhost').lower()
        return f'postgresql://{host}:{options.port or 5432}/{options.database}'

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for PostgreSQL connections."""
        return ['hostname', 'username', 'password', 'database', 'port']

    def configure_connection(self, conn: Any) -> None:
        """Configure connection settings for PostgreSQL.
        """
        raw_conn = conn
        if hasattr(conn, 'driver_connection'):
            raw_conn = conn.driver_connection
        self.enable_autocommit(raw_conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for PostgreSQL.
        """
        raw_conn.autocommit = True

    def create_dict_cursor(self, raw_conn: Any) -> Any:
        """Create a cursor that returns rows as dictionaries.

        Uses DictRowFactory for PostgreSQL connections.
        """
        if hasattr(raw_conn, 'driver_connection'):
            raw_conn = raw_conn.driver_connection
        return raw_conn.cursor(row_factory=DictRowFactory)

    def is_autoincrement(self, column: dict[str, Any], primary_keys: Sequence[str]) -> bool:
        """Serial columns default to nextval(); identity columns carry an identity entry.
        """
        default = column.get('default') or ''
        if default.lower().startswith('nextval('):
            return True
        return super().is_autoincrement(column, primary_keys)
