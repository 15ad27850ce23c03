"""Row factory implementations for dictionary-like cursor results."""
from typing import Any


class DictRowFactory:
    """Row factory for psycopg that returns dictionary rows.

    psycopg calls the factory once per result set with the cursor, then calls
    the returned object for every fetched row.
    """

    def __init__(self, cursor: Any) -> None:
        """Initialize with cursor to extract column names.

        Args:
            cursor: Database cursor with description attribute
        """
        self.fields = [c.name for c in (cursor.description or [])]

    def __call__(self, values: tuple) -> dict:
        """Convert a row tuple to a dictionary.

        Args:
            values: Tuple of column values from cursor

        Returns
            Dictionary mapping column names to values
        """
        return dict(zip(self.fields, values))
