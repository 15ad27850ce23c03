"""
Table binding: the entry point application code uses for one table.

    import recordmap

    cn = recordmap.connect(drivername='sqlite', database='app.db')
    greeting = cn.table('greeting')
    record = greeting()                   # new record
    record.set({'data': 'hello', 'lang': 'en'})
    record.commit()                       # identity of the inserted row
    greeting({'data': 'hello'}).lang      # 'en', or None unless exactly one match
    greeting({'lang': 'en'}, mode='count')

`find_one`, `find_all`, `find_iter` and `count` are the explicit forms of the
single, multiple, iterator and count modes of `Table.__call__`.
"""
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from recordmap.cache import SchemaCache, get_schema_cache
from recordmap.exceptions import FilterError
from recordmap.filters import CompiledQuery, Mode, compile_filter
from recordmap.iterator import DEFAULT_BATCH_SIZE, RecordIterator
from recordmap.materialize import execute, fetch_rows
from recordmap.record import Record, make_record_class
from recordmap.schema import ColumnSpec, TableSchema
from recordmap.types import RowAdapter

if TYPE_CHECKING:
    from recordmap.connection import ConnectionWrapper

__all__ = ['Table', 'bind']

logger = logging.getLogger(__name__)

Filter = Mapping[str, Any]
OrderBy = str | Sequence[str] | None


class Table:
    """Schema-aware binding of one table on one connection.

    The schema is resolved through a `SchemaCache` when the table is bound;
    records created by this binding share that schema.
    """

    def __init__(self, cn: 'ConnectionWrapper', name: str,
                 cache: SchemaCache | None = None, refresh: bool = False) -> None:
        """Bind `name` on `cn`.

        Args:
            cn: Open connection
            name: Table name
            cache: Schema cache to use; defaults to the cache for the connection's
                `schema_cache_dir` option, else the process default
            refresh: Reload the schema from the database instead of the cache

        Raises
            SchemaLoadError: The table does not exist or its metadata cannot be read
        """
        self.cn = cn
        self.name = name
        if cache is None:
            cache = get_schema_cache(cn.options.schema_cache_dir if cn.options else None)
        self.cache = cache
        self._bind(cache.resolve(cn, name, refresh=refresh))

    def _bind(self, schema: TableSchema) -> None:
        self._schema = schema
        self.record_class = make_record_class(schema)
        logger.debug(f'Bound {self.name} on {self.cn.identity} as {self.record_class.__name__}')

    def __repr__(self) -> str:
        return f'<Table {self.name} on {self.cn.identity}>'

    @property
    def schema(self) -> TableSchema:
        return self._schema

    @property
    def columns(self) -> list[str]:
        return self._schema.names

    @property
    def primary_key(self) -> ColumnSpec | None:
        return self._schema.primary_key

    @property
    def identity(self) -> tuple[str, str]:
        """(database identity, table name); unique across connected databases."""
        return self.cn.identity, self.name

    def refresh_schema(self) -> TableSchema:
        """Reload the schema from the database.

        Records created earlier keep the schema they were created with.
        """
        self._bind(self.cache.refresh(self.cn, self.name))
        return self._schema

    def wrap(self, row: Any) -> Record:
        """Build a stored record from a fetched row."""
        return self.record_class(self, RowAdapter(row).to_dict())

    def new(self, values: Mapping[str, Any] | None = None, **kw: Any) -> Record:
        """Create a new, unsaved record with optional pending values."""
        record = self.record_class(self)
        if values or kw:
            record.set({**(values or {}), **kw})
        return record

    def _normalize_filter(self, filter: Any) -> Filter | None:
        """Accept a mapping, or a bare primary key value."""
        if filter is None or isinstance(filter, Mapping):
            return filter
        primary_key = self._schema.primary_key
        if primary_key is None:
            raise FilterError(f'Table {self.name!r} has no single-column primary key '
                              f'to look up {filter!r}; pass a mapping')
        return {primary_key.name: filter}

    def query(self, filter: Any = None, mode: Mode | str = Mode.MULTIPLE,
              order_by: OrderBy = None, limit: int | None = None,
              offset: int | None = None) -> CompiledQuery:
        """Compile a filter for this table without running it."""
        return compile_filter(self.cn.dialect, self._schema, self._normalize_filter(filter),
                              mode=mode, order_by=order_by, limit=limit, offset=offset)

    def __call__(self, filter: Any = None, mode: Mode | str = Mode.SINGLE, *,
                 order_by: OrderBy = None, limit: int | None = None,
                 offset: int | None = None, batch_size: int = DEFAULT_BATCH_SIZE) -> Any:
        """Create or look up records, depending on `filter` and `mode`.

        Without a filter in single mode a new record is returned. Otherwise the
        filter runs in the requested mode; an absent filter matches every row.

        Args:
            filter: Mapping of column to condition, or a primary key value
            mode: 'single', 'multiple', 'iterator' or 'count'

        Returns
            single: Record for exactly one match, None for zero or several
            multiple: list of Records
            iterator: RecordIterator
            count: int
        """
        try:
            mode = Mode(mode)
        except ValueError as exc:
            raise FilterError(f'Unknown mode {mode!r}') from exc
        if filter is None and mode is Mode.SINGLE:
            return self.new()
        compiled = self.query(filter, mode, order_by=order_by, limit=limit, offset=offset)
        return execute(self, compiled, batch_size=batch_size)

    def find_one(self, filter: Any = None, order_by: OrderBy = None) -> Record | None:
        """Return the only matching record, or None for zero or several matches."""
        return execute(self, self.query(filter, Mode.SINGLE, order_by=order_by))

    def find_all(self, filter: Any = None, order_by: OrderBy = None,
                 limit: int | None = None, offset: int | None = None) -> list[Record]:
        """Return every matching record, in storage order unless `order_by` is given."""
        return execute(self, self.query(filter, Mode.MULTIPLE, order_by=order_by,
                                        limit=limit, offset=offset))

    def find_iter(self, filter: Any = None, order_by: OrderBy = None,
                  limit: int | None = None, offset: int | None = None,
                  batch_size: int = DEFAULT_BATCH_SIZE) -> RecordIterator:
        """Open an iterator over matching records."""
        compiled = self.query(filter, Mode.ITERATOR, order_by=order_by, limit=limit, offset=offset)
        return execute(self, compiled, batch_size=batch_size)

    def count(self, filter: Any = None) -> int:
        """Count matching rows without fetching them."""
        return execute(self, self.query(filter, Mode.COUNT))

    def frame(self, filter: Any = None, order_by: OrderBy = None,
              limit: int | None = None, offset: int | None = None) -> Any:
        """Matching rows through the connection's data loader.

        A pandas DataFrame by default, with column metadata in
        ``DataFrame.attrs['column_types']``.
        """
        compiled = self.query(filter, Mode.MULTIPLE, order_by=order_by, limit=limit, offset=offset)
        rows = fetch_rows(self, compiled)
        return self.cn.options.data_loader(rows, self._schema.columns, table_name=self.name)


def bind(cn: 'ConnectionWrapper', name: str, **kwargs: Any) -> Table:
    """Bind table `name` on `cn`. Same as ``cn.table(name)``."""
    return Table(cn, name, **kwargs)
