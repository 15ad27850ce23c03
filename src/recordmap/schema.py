"""
Table schema metadata for record mapping.

This module provides:
- `SqlType`: Coarse column type categories used by records and data loaders
- `ColumnSpec` / `TableSchema`: Immutable column and table metadata
- `load_table_schema()`: Read metadata for one table through SQLAlchemy Inspector

Schemas are loaded once per (database, table) and served by
`recordmap.cache.SchemaCache`; the serialized form produced by `to_dict()` is
what the cache persists.
"""
import enum
import logging
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Self

import sqlalchemy as sa
from recordmap.exceptions import SchemaLoadError, StorageError

if TYPE_CHECKING:
    from recordmap.connection import ConnectionWrapper

__all__ = [
    'SqlType',
    'ColumnSpec',
    'TableSchema',
    'sql_type_for',
    'parse_default',
    'load_table_schema',
]

logger = logging.getLogger(__name__)


class SqlType(str, enum.Enum):
    """Type category of a column."""

    INT = 'int'
    VARCHAR = 'varchar'
    TEXT = 'text'
    ENUM = 'enum'
    TIMESTAMP = 'timestamp'
    DATE = 'date'
    TIME = 'time'
    BOOLEAN = 'boolean'
    FLOAT = 'float'
    NUMERIC = 'numeric'
    BINARY = 'binary'
    JSON = 'json'
    OTHER = 'other'


# Checked in order: subclasses before their bases (Enum and Text are Strings,
# Float is Numeric)
_TYPE_CATEGORIES: tuple[tuple[type, SqlType], ...] = (
    (sa.Enum, SqlType.ENUM),
    (sa.Boolean, SqlType.BOOLEAN),
    (sa.Integer, SqlType.INT),
    (sa.Float, SqlType.FLOAT),
    (sa.Numeric, SqlType.NUMERIC),
    (sa.DateTime, SqlType.TIMESTAMP),
    (sa.Date, SqlType.DATE),
    (sa.Time, SqlType.TIME),
    (sa.Text, SqlType.TEXT),
    (sa.String, SqlType.VARCHAR),
    (sa.LargeBinary, SqlType.BINARY),
    (sa.JSON, SqlType.JSON),
)


def sql_type_for(type_: sa.types.TypeEngine) -> SqlType:
    """Map a reflected SQLAlchemy type to its category.

    >>> sql_type_for(sa.VARCHAR(255))
    <SqlType.VARCHAR: 'varchar'>
    >>> sql_type_for(sa.BigInteger())
    <SqlType.INT: 'int'>
    """
    for base, category in _TYPE_CATEGORIES:
        if isinstance(type_, base):
            return category
    return SqlType.OTHER


_CAST_SUFFIX = re.compile(r'^(?P<value>.*?)::[\w\s."\[\]()]+$', re.DOTALL)
_NUMBER = re.compile(r'^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$')


def _strip_parens(text: str) -> str:
    while text.startswith('(') and text.endswith(')'):
        text = text[1:-1].strip()
    return text


def parse_default(text: str | None) -> Any:
    """Turn a reflected column default into a Python literal.

    Returns None when there is no default, when the default is NULL, or when it
    is an expression evaluated by the database (``CURRENT_TIMESTAMP``,
    ``nextval(...)``).

    >>> parse_default("'en'")
    'en'
    >>> parse_default("'en'::character varying")
    'en'
    >>> parse_default('(-1)')
    -1
    >>> parse_default('0.5')
    0.5
    >>> parse_default('true')
    True
    >>> parse_default('CURRENT_TIMESTAMP') is None
    True
    """
    if text is None:
        return None
    value = _strip_parens(str(text).strip())
    match = _CAST_SUFFIX.match(value)
    if match and not (value.startswith("'") and value.endswith("'")):
        value = _strip_parens(match.group('value').strip())

    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1].replace("''", "'")

    lowered = value.lower()
    if lowered in {'true', 'false'}:
        return lowered == 'true'
    if _NUMBER.match(value):
        if re.fullmatch(r'[+-]?\d+', value):
            return int(value)
        return float(value)
    return None


@dataclass(frozen=True)
class ColumnSpec:
    """Metadata for one column. Immutable once loaded."""

    name: str
    sql_type: SqlType
    type_name: str = ''
    nullable: bool = True
    is_primary_key: bool = False
    default: str | None = None
    default_value: Any = None
    autoincrement: bool = False
    enum_values: tuple[str, ...] = ()

    @property
    def has_default(self) -> bool:
        return self.default is not None or self.autoincrement

    def to_dict(self) -> dict[str, Any]:
        return {
            'name': self.name,
            'sql_type': self.sql_type.value,
            'type_name': self.type_name,
            'nullable': self.nullable,
            'is_primary_key': self.is_primary_key,
            'default': self.default,
            'default_value': self.default_value,
            'autoincrement': self.autoincrement,
            'enum_values': list(self.enum_values),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            name=data['name'],
            sql_type=SqlType(data['sql_type']),
            type_name=data.get('type_name', ''),
            nullable=bool(data.get('nullable', True)),
            is_primary_key=bool(data.get('is_primary_key', False)),
            default=data.get('default'),
            default_value=data.get('default_value'),
            autoincrement=bool(data.get('autoincrement', False)),
            enum_values=tuple(data.get('enum_values') or ()),
        )


@dataclass(frozen=True)
class TableSchema:
    """Ordered, immutable column metadata for one table.

    `primary_key` is the primary key column when the table has exactly one;
    tables with composite or missing keys have no record identity.
    """

    table_name: str
    columns: tuple[ColumnSpec, ...]
    _by_name: dict[str, ColumnSpec] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, 'columns', tuple(self.columns))
        by_name = {}
        for column in self.columns:
            if column.name in by_name:
                raise ValueError(f'Duplicate column {column.name!r} in {self.table_name!r}')
            by_name[column.name] = column
        object.__setattr__(self, '_by_name', by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[ColumnSpec]:
        return iter(self.columns)

    def __len__(self) -> int:
        return len(self.columns)

    def column(self, name: str) -> ColumnSpec:
        """Return the column named `name`; KeyError when absent."""
        return self._by_name[name]

    @property
    def names(self) -> list[str]:
        return [column.name for column in self.columns]

    @property
    def primary_keys(self) -> list[ColumnSpec]:
        return [column for column in self.columns if column.is_primary_key]

    @property
    def primary_key(self) -> ColumnSpec | None:
        keys = self.primary_keys
        return keys[0] if len(keys) == 1 else None

    @property
    def data_columns(self) -> list[ColumnSpec]:
        """Columns other than the primary key, in table order."""
        return [column for column in self.columns if not column.is_primary_key]

    def to_dict(self) -> dict[str, Any]:
        return {
            'table_name': self.table_name,
            'columns': [column.to_dict() for column in self.columns],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            table_name=data['table_name'],
            columns=tuple(ColumnSpec.from_dict(column) for column in data['columns']),
        )


def _type_name(type_: sa.types.TypeEngine, dialect: sa.engine.Dialect) -> str:
    try:
        return type_.compile(dialect=dialect)
    except sa.exc.CompileError:
        return type(type_).__name__


def load_table_schema(cn: 'ConnectionWrapper', table: str) -> TableSchema:
    """Read column metadata for `table` through SQLAlchemy Inspector.

    Enum values come from the column type where the database has native enums
    (PostgreSQL) and from the dialect strategy otherwise (SQLite CHECK lists).

    Raises
        SchemaLoadError: The table does not exist or its metadata cannot be read
    """
    strategy = cn.strategy
    try:
        inspector = cn.inspector()
        if not inspector.has_table(table):
            raise SchemaLoadError(table, f'no such table in {cn.identity}')
        reflected = inspector.get_columns(table)
        primary_keys = inspector.get_pk_constraint(table).get('constrained_columns') or []
        enums = strategy.get_enum_values(cn, table, inspector)
    except sa.exc.NoSuchTableError as exc:
        raise SchemaLoadError(table, f'no such table in {cn.identity}') from exc
    except StorageError as exc:
        raise SchemaLoadError(table, str(exc)) from exc

    if not reflected:
        raise SchemaLoadError(table, 'table has no columns')

    columns = []
    for col in reflected:
        sql_type = sql_type_for(col['type'])
        enum_values = ()
        if isinstance(col['type'], sa.Enum):
            enum_values = tuple(col['type'].enums)
        elif col['name'] in enums:
            sql_type = SqlType.ENUM
            enum_values = tuple(enums[col['name']])
        default = col.get('default')
        columns.append(ColumnSpec(
            name=col['name'],
            sql_type=sql_type,
            type_name=_type_name(col['type'], inspector.dialect),
            nullable=bool(col.get('nullable', True)),
            is_primary_key=col['name'] in primary_keys,
            default=None if default is None else str(default),
            default_value=parse_default(default),
            autoincrement=strategy.is_autoincrement(col, primary_keys),
            enum_values=enum_values,
        ))

    schema = TableSchema(table_name=table, columns=tuple(columns))
    logger.debug(f'Loaded schema for {table} from {cn.identity}: {schema.names}')
    return schema
