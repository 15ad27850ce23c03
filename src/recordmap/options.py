import pathlib
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, fields, replace
from typing import Any, Self

import pandas as pd
import pyarrow as pa
from recordmap.strategy import get_available_dialects, get_strategy_class
from recordmap.strategy import is_supported_dialect

__all__ = [
    'DatabaseOptions',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'iterdict_data_loader',
]


def _scriptname() -> str | None:
    """Name of the running script, used as the default application name."""
    argv0 = sys.argv[0] if sys.argv else ''
    return pathlib.Path(argv0).stem or None


def _column_names(columns: Sequence[Any]) -> list[str]:
    return [col.name for col in columns]


def _column_types(columns: Sequence[Any]) -> dict[str, dict]:
    return {col.name: col.to_dict() for col in columns}


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Minimal data loader.

    Accepts additional keyword arguments (like table_name) for compatibility
    with other data loaders, but doesn't use them.
    """
    if not data:
        return []
    return list(data)


def _empty_dataframe(columns) -> pd.DataFrame:
    """Create empty DataFrame with column metadata."""
    df = pd.DataFrame(columns=_column_names(columns))
    df.attrs['column_types'] = _column_types(columns)
    return df


def pandas_numpy_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Standard pandas DataFrame loader using NumPy.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    Includes the table's column specs in the DataFrame.attrs attribute.
    """
    if not data:
        return _empty_dataframe(columns)

    df = pd.DataFrame.from_records(list(data), columns=_column_names(columns))
    df.attrs['column_types'] = _column_types(columns)
    return df


def pandas_pyarrow_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """PyArrow-based pandas DataFrame loader.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """
    if not data:
        return _empty_dataframe(columns)

    column_names = _column_names(columns)
    columns_data = [[row[col] for row in data] for col in column_names]
    df = pa.table(columns_data, names=column_names).to_pandas(types_mapper=pd.ArrowDtype)
    df.attrs['column_types'] = _column_types(columns)
    return df


@dataclass
class DatabaseOptions:
    """Options

    supported driver names: `postgresql`, `sqlite`

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)

    Record mapping options:
    - schema_cache_dir: Directory for persisted table schemas used by tables
      bound on this connection (default: the process-wide schema cache)
    - data_loader: Callable turning fetched rows into the result of `Table.frame`
    """
    drivername: str = 'postgresql'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    appname: str = None
    data_loader: Callable[..., Any] | None = None
    schema_cache_dir: str | None = None
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        self.appname = self.appname or _scriptname() or 'python_console'
        strategy_cls = get_strategy_class(self.drivername)
        strategy_cls.validate_options(self)
        if self.data_loader is None:
            self.data_loader = pandas_numpy_data_loader

    def __str__(self) -> str:
        return '|'.join(f'{f.name}={getattr(self, f.name)!r}' for f in fields(self)
                        if f.name != 'data_loader')

    @classmethod
    def load(cls, options: Self | Mapping[str, Any] | None = None, **kw: Any) -> Self:
        """Build options from an instance, a mapping, keyword arguments, or a mix.

        Keyword arguments override values taken from ``options``.

        >>> DatabaseOptions.load({'drivername': 'sqlite'}, database=':memory:').database
        ':memory:'
        """
        if isinstance(options, cls):
            return replace(options, **kw) if kw else options
        values = dict(options or {})
        values.update(kw)
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f'Unknown database options: {sorted(unknown)}')
        return cls(**values)
