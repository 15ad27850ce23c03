"""
Records: one table row plus its uncommitted changes.

A record moves through these states:

- NEW: not stored yet; `commit()` inserts it
- CLEAN: matches the last known stored row
- DIRTY: has pending values or a pending delete
- DELETED: the row was deleted; the record can no longer be used

Changes stay in memory until `commit()`, and `discard()` drops them without
touching the database. A record garbage collected with pending changes logs a
warning, because those changes are lost.

Each `Table` builds a subclass of `Record` (see `make_record_class`) with one
property per column, so ``record.lang`` reads and writes the ``lang`` field.
"""
import enum
import keyword
import logging
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from recordmap.exceptions import AmbiguousFieldError, CommitError
from recordmap.exceptions import ConnectionFailure, RecordStateError
from recordmap.exceptions import StorageError, UnknownFieldError

if TYPE_CHECKING:
    from recordmap.cursor import Cursor
    from recordmap.schema import TableSchema
    from recordmap.table import Table

__all__ = [
    'Record',
    'RecordState',
    'make_record_class',
]

logger = logging.getLogger(__name__)

_MISSING = object()

_WRITE_ERRORS = StorageError + (ConnectionFailure,)


class RecordState(str, enum.Enum):
    """Lifecycle state of a record."""

    NEW = 'new'
    CLEAN = 'clean'
    DIRTY = 'dirty'
    DELETED = 'deleted'


class Record:
    """Live representation of one row of a bound table.

    Records are not safe for concurrent mutation; share them across threads
    only by handing over ownership.
    """

    __slots__ = ('_table', '_schema', '_stored', '_pending', '_pending_delete',
                 '_persisted', '_deleted', '__weakref__')

    def __init__(self, table: 'Table', stored: Mapping[str, Any] | None = None) -> None:
        """Initialize a record.

        Args:
            table: Table the record belongs to
            stored: Row as fetched from the database; None for a new record
        """
        self._table = table
        self._schema = table.schema
        self._pending: dict[str, Any] = {}
        self._pending_delete = False
        self._deleted = False
        self._persisted = stored is not None
        self._stored: dict[str, Any] = {}
        if stored is not None:
            self._stored = {name: stored[name] for name in self._schema.names if name in stored}

    def __del__(self) -> None:
        try:
            dirty = self.is_dirty
        except AttributeError:
            return
        if dirty:
            logger.warning(f'{self!r} was discarded with uncommitted changes: '
                           f'pending={self._pending!r} delete={self._pending_delete}')

    def __repr__(self) -> str:
        identity = self.identity if self._persisted else None
        key = f' {identity!r}' if identity is not None else ''
        return f'<{type(self).__name__} {self._schema.table_name}{key} {self.state.value}>'

    def __getitem__(self, field: str) -> Any:
        return self.get(field)

    def __setitem__(self, field: str, value: Any) -> None:
        self.set(field, value)

    def __contains__(self, field: object) -> bool:
        return field in self._schema

    @property
    def table(self) -> 'Table':
        return self._table

    @property
    def schema(self) -> 'TableSchema':
        return self._schema

    @property
    def state(self) -> RecordState:
        if self._deleted:
            return RecordState.DELETED
        if self._pending or self._pending_delete:
            return RecordState.DIRTY
        if self._persisted:
            return RecordState.CLEAN
        return RecordState.NEW

    @property
    def persisted(self) -> bool:
        """True while a stored row exists for this record."""
        return self._persisted and not self._deleted

    @property
    def is_dirty(self) -> bool:
        return bool(self._pending) or self._pending_delete

    @property
    def pending(self) -> dict[str, Any]:
        """Copy of the uncommitted values."""
        return dict(self._pending)

    @property
    def pending_delete(self) -> bool:
        return self._pending_delete

    @property
    def identity(self) -> Any:
        """Primary key value of the stored row, None before the first commit."""
        primary_key = self._schema.primary_key
        if primary_key is None or not self._persisted:
            return None
        return self._stored.get(primary_key.name)

    def _check_usable(self) -> None:
        if self._deleted:
            raise RecordStateError(f'{self!r} has been deleted')

    def _check_field(self, field: Any) -> str:
        if field not in self._schema:
            raise UnknownFieldError(self._schema.table_name, field)
        return field

    def _natural_field(self) -> str:
        """The only non-key column, used when a field name is omitted."""
        candidates = self._schema.data_columns
        if len(candidates) != 1:
            raise AmbiguousFieldError(self._schema.table_name, [c.name for c in candidates])
        return candidates[0].name

    def get(self, field: str | None = None) -> Any:
        """Return the pending value of `field`, else its stored value.

        A new record reports the column's literal default for fields that were
        never set. Without a field name the table's only non-key column is read.

        Raises
            UnknownFieldError: `field` is not a column of the table
            AmbiguousFieldError: No field given and the table has no single data column
        """
        self._check_usable()
        name = self._natural_field() if field is None else self._check_field(field)
        if name in self._pending:
            return self._pending[name]
        if name in self._stored:
            return self._stored[name]
        if not self._persisted:
            return self._schema.column(name).default_value
        return None

    def set(self, field: Any = _MISSING, value: Any = _MISSING) -> 'Record':
        """Stage new values; nothing is written until `commit()`.

        Accepts ``set(field, value)``, ``set({field: value, ...})`` or
        ``set(value)`` for tables with a single data column. All fields are
        validated before any is staged.

        Raises
            UnknownFieldError: A field is not a column of the table
            AmbiguousFieldError: Bare value given and the table has no single data column
            RecordStateError: The record has been deleted
        """
        self._check_usable()
        if value is not _MISSING:
            changes = {field: value}
        elif field is _MISSING:
            raise TypeError('set() needs a field and value, a mapping, or a value')
        elif isinstance(field, Mapping):
            changes = dict(field)
        else:
            changes = {self._natural_field(): field}

        for name in changes:
            self._check_field(name)
        self._pending.update(changes)
        return self

    def update(self, values: Mapping[str, Any] | None = None, **kw: Any) -> 'Record':
        """Stage several values, ``record.update(data='x', lang='ja')``."""
        return self.set({**(values or {}), **kw})

    def delete(self) -> 'Record':
        """Mark the row for deletion on the next `commit()`."""
        self._check_usable()
        self._pending_delete = True
        return self

    def discard(self) -> 'Record':
        """Drop pending values and a pending delete without any database I/O."""
        self._check_usable()
        self._pending = {}
        self._pending_delete = False
        return self

    def to_dict(self) -> dict[str, Any]:
        """Current view of every column, pending values applied."""
        return {name: self.get(name) for name in self._schema.names}

    def commit(self) -> Any:
        """Write pending changes to the database.

        A pending delete deletes the row, a new record is inserted, and a dirty
        record updates only its changed columns. Each commit is one statement
        on an autocommit connection. Inserts and updates read the stored row
        back, so committed values carry the database defaults and conversions.

        Returns
            The record identity (primary key value), None for tables without one

        Raises
            CommitError: The write failed; pending changes are left untouched
            RecordStateError: The record has been deleted
        """
        self._check_usable()
        if self._pending_delete:
            if self._persisted:
                self._write('delete', self._delete_row)
            identity = self.identity
            self._pending = {}
            self._pending_delete = False
            self._deleted = True
            return identity

        if not self._persisted:
            self._stored = self._write('insert', self._insert_row)
            self._persisted = True
            self._pending = {}
            return self.identity

        if self._pending:
            self._stored = self._write('update', self._update_row)
            self._pending = {}
        return self.identity

    def _write(self, action: str, func: Any) -> Any:
        cursor = None
        try:
            cursor = self._table.cn.cursor()
            return func(cursor)
        except _WRITE_ERRORS as exc:
            raise CommitError(f'Could not {action} {self!r}: {exc}') from exc
        finally:
            if cursor is not None:
                cursor.close()

    def _key_column(self, action: str) -> str:
        primary_key = self._schema.primary_key
        if primary_key is None:
            raise CommitError(f'Cannot {action} a row of {self._schema.table_name!r}: '
                              f'table has no single-column primary key')
        return primary_key.name

    def _insert_row(self, cursor: 'Cursor') -> dict[str, Any]:
        strategy = self._table.cn.strategy
        row = strategy.insert_row(cursor, self._schema.table_name, dict(self._pending))
        return self._schema_values(row)

    def _update_row(self, cursor: 'Cursor') -> dict[str, Any]:
        key = self._key_column('update')
        strategy = self._table.cn.strategy
        row = strategy.update_row(cursor, self._schema.table_name, dict(self._pending),
                                  key, self._stored.get(key))
        if row is None:
            raise CommitError(f'{self!r} no longer exists in {self._schema.table_name!r}')
        return self._schema_values(row)

    def _schema_values(self, row: dict[str, Any]) -> dict[str, Any]:
        return {name: row[name] for name in self._schema.names if name in row}

    def _delete_row(self, cursor: 'Cursor') -> None:
        key = self._key_column('delete')
        strategy = self._table.cn.strategy
        sql = (f'delete from {strategy.quote_identifier(self._schema.table_name)} '
               f'where {strategy.quote_identifier(key)} = %s')
        rowcount = cursor.execute(sql, (self._stored.get(key),))
        if rowcount == 0:
            logger.warning(f'{self!r} was already deleted from {self._schema.table_name!r}')


def _column_property(name: str) -> property:
    def getter(self: Record) -> Any:
        return self.get(name)

    def setter(self: Record, value: Any) -> None:
        self.set(name, value)

    return property(getter, setter, doc=f'Value of column {name!r}.')


def _class_name(table_name: str) -> str:
    parts = [part for part in re.split(r'[^0-9A-Za-z]+', table_name) if part]
    return ''.join(part[:1].upper() + part[1:] for part in parts) + 'Record'


def make_record_class(schema: 'TableSchema') -> type[Record]:
    """Build a Record subclass with one property per column of `schema`.

    Columns whose names are not identifiers, are keywords, start with an
    underscore, or collide with Record attributes are reachable through
    `get`/`set` and item access only.
    """
    namespace: dict[str, Any] = {'__slots__': (), '__module__': __name__}
    for column in schema.columns:
        name = column.name
        if (not name.isidentifier() or keyword.iskeyword(name)
                or name.startswith('_') or hasattr(Record, name)):
            logger.debug(f'No attribute accessor for column {schema.table_name}.{name}')
            continue
        namespace[name] = _column_property(name)
    return type(_class_name(schema.table_name), (Record,), namespace)
