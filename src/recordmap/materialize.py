"""
Run compiled queries and shape their results for the requested mode.

| mode     | result                                        |
|----------|-----------------------------------------------|
| single   | Record when exactly one row matches, else None |
| multiple | list of Records                               |
| iterator | open RecordIterator                           |
| count    | int                                           |

Storage failures are raised as QueryExecutionError. Nothing here retries;
connect-time retry lives in `recordmap.connection`.
"""
import logging
from typing import TYPE_CHECKING, Any

from recordmap.exceptions import ConnectionFailure, QueryExecutionError
from recordmap.exceptions import StorageError
from recordmap.filters import CompiledQuery, Mode
from recordmap.iterator import DEFAULT_BATCH_SIZE, RecordIterator
from recordmap.types import RowAdapter

if TYPE_CHECKING:
    from recordmap.cursor import Cursor
    from recordmap.record import Record
    from recordmap.table import Table

__all__ = ['execute', 'fetch_rows']

logger = logging.getLogger(__name__)


def _open_cursor(table: 'Table', compiled: CompiledQuery) -> 'Cursor':
    """Execute `compiled` on a new cursor, closing the cursor if that fails."""
    try:
        cursor = table.cn.cursor()
    except ConnectionFailure as exc:
        raise QueryExecutionError(f'Cannot query {compiled.table!r}: {exc}') from exc
    try:
        cursor.execute(compiled.sql, compiled.params)
    except StorageError as exc:
        cursor.close()
        raise QueryExecutionError(f'Query on {compiled.table!r} failed: {exc}') from exc
    return cursor


def fetch_rows(table: 'Table', compiled: CompiledQuery) -> list[dict[str, Any]]:
    """Execute `compiled` and return every row as a dict."""
    cursor = _open_cursor(table, compiled)
    try:
        return [RowAdapter(row).to_dict() for row in cursor.fetchall()]
    except StorageError as exc:
        raise QueryExecutionError(f'Fetching rows from {compiled.table!r} failed: {exc}') from exc
    finally:
        cursor.close()


def _single(table: 'Table', cursor: 'Cursor', compiled: CompiledQuery) -> 'Record | None':
    rows = cursor.fetchmany(2)
    if len(rows) != 1:
        logger.debug(f'No unique match in {compiled.table}: {"several" if rows else "no"} rows')
        return None
    return table.wrap(rows[0])


def execute(table: 'Table', compiled: CompiledQuery,
            batch_size: int = DEFAULT_BATCH_SIZE) -> 'Record | list[Record] | RecordIterator | int | None':
    """Run `compiled` against the table's connection and materialize the result.

    Args:
        table: Table binding supplying the connection and record class
        compiled: Statement from `recordmap.filters.compile_filter`
        batch_size: Rows fetched per round trip in iterator mode

    Raises
        QueryExecutionError: The statement or a fetch failed
    """
    cursor = _open_cursor(table, compiled)
    if compiled.mode is Mode.ITERATOR:
        return RecordIterator(table, cursor, batch_size=batch_size)

    try:
        if compiled.mode is Mode.COUNT:
            row = cursor.fetchone()
            return int(RowAdapter(row).get_value()) if row is not None else 0
        if compiled.mode is Mode.SINGLE:
            return _single(table, cursor, compiled)
        return [table.wrap(row) for row in cursor.fetchall()]
    except StorageError as exc:
        raise QueryExecutionError(f'Fetching rows from {compiled.table!r} failed: {exc}') from exc
    finally:
        cursor.close()
