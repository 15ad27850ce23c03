"""
Value handling between Python and the database.

This module provides:
- TypeConverter: Convert record values and filter operands to driver-compatible values
- RowAdapter: Convert driver rows (sqlite3.Row, dict rows) to plain dictionaries
- SQLite converters for date/datetime columns
"""
import datetime
import logging
import math
import sqlite3
from typing import Any

import dateutil.parser
import numpy as np
import pandas as pd
import pyarrow as pa

logger = logging.getLogger(__name__)

NUMPY_FLOAT_TYPES = (np.floating,)
NUMPY_INT_TYPES = (np.integer, np.unsignedinteger)


def _convert_numpy_value(val: Any) -> float | int | bool | datetime.datetime | None:
    """Convert NumPy scalar to Python type."""
    if isinstance(val, np.floating) and np.isnan(val):
        return None

    if isinstance(val, np.datetime64):
        if np.isnat(val):
            return None
        return pd.Timestamp(val).to_pydatetime()

    return val.item()


def _convert_pyarrow_value(value: Any) -> Any:
    """Convert PyArrow scalar to Python type."""
    if not value.is_valid:
        return None
    return value.as_py()


class TypeConverter:
    """Conversion of values bound as statement parameters.

    Values set on records frequently come from DataFrames, so NumPy, pandas
    and PyArrow scalars are unwrapped and their missing markers become NULL.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a database-compatible format."""
        if value is None:
            return None

        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None

        if value is pd.NaT or value is pd.NA:
            return None

        if isinstance(value, (np.bool_, *NUMPY_FLOAT_TYPES, *NUMPY_INT_TYPES, np.datetime64)):
            return _convert_numpy_value(value)

        if isinstance(value, pd.Timestamp):
            return value.to_pydatetime()

        if isinstance(value, pa.Scalar):
            return _convert_pyarrow_value(value)

        return value

    @staticmethod
    def convert_params(params: Any) -> Any:
        """Convert a collection of parameters for database operations."""
        if params is None:
            return None

        if isinstance(params, dict):
            return {k: TypeConverter.convert_value(v) for k, v in params.items()}

        if isinstance(params, list | tuple):
            return type(params)(TypeConverter.convert_value(v) for v in params)

        return TypeConverter.convert_value(params)


class RowAdapter:
    """Simple row adapter for converting database rows to dictionaries."""

    def __init__(self, row: Any):
        self.row = row

    def to_dict(self) -> dict[str, Any]:
        """Convert row to dictionary."""
        if isinstance(self.row, dict):
            return dict(self.row)
        # sqlite3.Row
        if hasattr(self.row, 'keys') and callable(self.row.keys):
            return {key: self.row[key] for key in self.row.keys()}  # noqa: SIM118
        # Namedtuple
        if hasattr(self.row, '_asdict'):
            return self.row._asdict()
        raise TypeError(f'Cannot convert {type(self.row).__name__} row to a dict')

    def get_value(self, key: str | None = None) -> Any:
        """Get a value from the row, the first column when no key is given."""
        if key is not None:
            return self.to_dict()[key]
        if isinstance(self.row, dict):
            return next(iter(self.row.values()))
        return self.row[0]


def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


def register_sqlite_converters() -> None:
    """Register SQLite converters for declared date/datetime/timestamp columns.

    Converters are process-wide in sqlite3 and only apply to connections opened
    with ``detect_types``.
    """
    sqlite3.register_converter('date', convert_date)
    sqlite3.register_converter('datetime', convert_datetime)
    sqlite3.register_converter('timestamp', convert_datetime)
