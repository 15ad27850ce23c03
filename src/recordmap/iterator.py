"""
Lazy record iteration over an open cursor.
"""
import logging
from typing import TYPE_CHECKING, Any, Self

from more_itertools import peekable
from recordmap.cursor import IterChunk
from recordmap.exceptions import QueryExecutionError, StorageError

if TYPE_CHECKING:
    from recordmap.cursor import Cursor
    from recordmap.record import Record
    from recordmap.table import Table

__all__ = ['RecordIterator', 'END', 'DEFAULT_BATCH_SIZE']

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000


class _End:
    """End-of-sequence marker returned by `RecordIterator.next()`."""

    __slots__ = ()

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return 'END'


END = _End()


class RecordIterator:
    """Single forward pass over matching rows, one Record at a time.

    The iterator owns its cursor. The cursor is closed when the rows run out,
    on `close()`, or when leaving a ``with`` block.

    >>> with table.find_iter({'lang': 'en'}) as it:   # doctest: +SKIP
    ...     while it.has_next():
    ...         record = it.next()
    """

    def __init__(self, table: 'Table', cursor: 'Cursor',
                 batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._table = table
        self._cursor = cursor
        self._rows = peekable(IterChunk(cursor, batch_size))
        self._exhausted = False
        self.count = 0

    def __repr__(self) -> str:
        status = 'exhausted' if self._exhausted else 'closed' if self.closed else 'open'
        return f'<RecordIterator {self._table.name} {status} yielded={self.count}>'

    def __del__(self) -> None:
        if getattr(self, '_cursor', None) is not None:
            logger.warning(f'{self!r} was garbage collected with an open cursor; closing it')
            self.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __iter__(self) -> Self:
        return self

    def __next__(self) -> 'Record':
        record = self.next()
        if record is END:
            raise StopIteration
        return record

    @property
    def closed(self) -> bool:
        return self._cursor is None

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def has_next(self) -> bool:
        """True when another record is available. Fetches ahead as needed.

        Raises
            QueryExecutionError: Fetching from the cursor failed; the iterator is closed
        """
        if self._cursor is None:
            return False
        try:
            self._rows.peek()
        except StopIteration:
            self._exhausted = True
            self.close()
            return False
        except StorageError as exc:
            self.close()
            raise QueryExecutionError(f'Fetching rows from {self._table.name!r} failed: {exc}') from exc
        return True

    def next(self) -> 'Record | _End':
        """Return the next record, or `END` once the rows run out (repeatedly)."""
        if not self.has_next():
            return END
        row = next(self._rows)
        self.count += 1
        return self._table.wrap(row)

    def close(self) -> None:
        """Release the cursor. Safe to call more than once."""
        cursor, self._cursor = self._cursor, None
        if cursor is not None:
            cursor.close()
            logger.debug(f'Closed cursor for {self._table.name} after {self.count} records')
