"""
Filter compiler for bound tables.

Translates a filter mapping into a parameterized SELECT for one of the
materialization modes:

- ``{'lang': 'en'}``: equality
- ``{'data': None}``: IS NULL
- ``{'lang': ['en', 'ja']}``: IN list
- ``{'id': {'>=': 10, '<': 20}}``: operator expressions, AND-ed
- ``{'id': {'between': (10, 20)}}``

SQL is written with %s placeholders; `recordmap.cursor.Cursor` converts them
to the connection's style when the statement runs.
"""
import enum
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from recordmap.exceptions import FilterError, UnknownFieldError
from recordmap.schema import TableSchema
from recordmap.sql import make_placeholders, quote_identifier

__all__ = [
    'Mode',
    'CompiledQuery',
    'OPERATORS',
    'compile_filter',
]

logger = logging.getLogger(__name__)


class Mode(str, enum.Enum):
    """Materialization mode of a query."""

    SINGLE = 'single'
    MULTIPLE = 'multiple'
    ITERATOR = 'iterator'
    COUNT = 'count'


@dataclass(frozen=True)
class CompiledQuery:
    """Executable statement for one table and mode."""

    sql: str
    params: tuple
    mode: Mode
    table: str


OPERATORS = {
    '=': '=',
    '!=': '<>',
    '<>': '<>',
    '<': '<',
    '<=': '<=',
    '>': '>',
    '>=': '>=',
    'like': 'like',
    'not like': 'not like',
    'in': 'in',
    'not in': 'not in',
    'is': 'is',
    'is not': 'is not',
    'between': 'between',
}

_LIST_TYPES = (list, tuple, set, frozenset)


def _normalize_operator(op: Any) -> str:
    key = ' '.join(str(op).lower().split())
    if key not in OPERATORS:
        raise FilterError(f'Unsupported filter operator {op!r}; expected one of {sorted(OPERATORS)}')
    return OPERATORS[key]


def _in_clause(column: str, values: Iterable[Any], negate: bool = False) -> tuple[str, list[Any]]:
    values = list(values)
    if not values:
        # x IN () matches nothing, x NOT IN () matches everything
        return ('1 = 1' if negate else '1 = 0'), []
    keyword = 'not in' if negate else 'in'
    return f'{column} {keyword} ({make_placeholders(len(values))})', values


def _compile_value(column: str, value: Any) -> tuple[str, list[Any]]:
    if value is None:
        return f'{column} is null', []
    if isinstance(value, _LIST_TYPES):
        return _in_clause(column, value)
    return f'{column} = %s', [value]


def _compile_operator(column: str, op: Any, operand: Any) -> tuple[str, list[Any]]:
    sql_op = _normalize_operator(op)

    if sql_op in {'in', 'not in'}:
        if isinstance(operand, (str, bytes)) or not isinstance(operand, Iterable):
            raise FilterError(f'Operator {op!r} needs a list of values, got {operand!r}')
        return _in_clause(column, operand, negate=sql_op == 'not in')

    if sql_op == 'between':
        if not isinstance(operand, Sequence) or isinstance(operand, str) or len(operand) != 2:
            raise FilterError(f'Operator {op!r} needs a (low, high) pair, got {operand!r}')
        return f'{column} between %s and %s', list(operand)

    if sql_op in {'is', 'is not'}:
        if operand is None:
            return f'{column} {sql_op} null', []
        if isinstance(operand, bool):
            return f'{column} {sql_op} {"true" if operand else "false"}', []
        raise FilterError(f'Operator {op!r} accepts None, True or False, got {operand!r}')

    if operand is None:
        if sql_op == '=':
            return f'{column} is null', []
        if sql_op == '<>':
            return f'{column} is not null', []
        raise FilterError(f'Operator {op!r} cannot compare with None')

    return f'{column} {sql_op} %s', [operand]


def _where_clause(schema: TableSchema, filter: Mapping[str, Any] | None,
                  dialect: str) -> tuple[str, list[Any]]:
    if filter is None:
        return '', []
    if not isinstance(filter, Mapping):
        raise FilterError(f'Filter must be a mapping of column to condition, got {filter!r}')

    predicates: list[str] = []
    params: list[Any] = []
    for field, condition in filter.items():
        if field not in schema:
            raise UnknownFieldError(schema.table_name, field)
        column = quote_identifier(field, dialect)
        if isinstance(condition, Mapping):
            if not condition:
                raise FilterError(f'Empty operator expression for {field!r}')
            for op, operand in condition.items():
                sql, values = _compile_operator(column, op, operand)
                predicates.append(sql)
                params.extend(values)
        else:
            sql, values = _compile_value(column, condition)
            predicates.append(sql)
            params.extend(values)

    if not predicates:
        return '', []
    return ' where ' + ' and '.join(predicates), params


def _order_clause(schema: TableSchema, order_by: str | Sequence[str] | None,
                  dialect: str) -> str:
    """Build ORDER BY from 'name', '-name' (descending) or a sequence of them.
    """
    if not order_by:
        return ''
    items = [order_by] if isinstance(order_by, str) else list(order_by)
    terms = []
    for item in items:
        descending = item.startswith('-')
        name = item[1:] if descending else item
        if name not in schema:
            raise UnknownFieldError(schema.table_name, name)
        direction = 'desc' if descending else 'asc'
        terms.append(f'{quote_identifier(name, dialect)} {direction}')
    return ' order by ' + ', '.join(terms)


def _check_count(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise FilterError(f'{name} must be a non-negative integer, got {value!r}')
    return value


def _limit_clause(limit: int | None, offset: int | None, dialect: str) -> str:
    clause = ''
    if limit is not None:
        clause += f' limit {_check_count("limit", limit)}'
    if offset:
        if limit is None and dialect == 'sqlite':
            # SQLite only accepts OFFSET after a LIMIT
            clause += ' limit -1'
        clause += f' offset {_check_count("offset", offset)}'
    return clause


def compile_filter(dialect: str, schema: TableSchema, filter: Mapping[str, Any] | None = None,
                   mode: Mode | str = Mode.MULTIPLE, order_by: str | Sequence[str] | None = None,
                   limit: int | None = None, offset: int | None = None) -> CompiledQuery:
    """Compile a filter into a statement for `mode`.

    Args:
        dialect: 'postgresql' or 'sqlite', selects identifier quoting
        schema: Schema of the queried table; every referenced column must be in it
        filter: Mapping of column to value, list of values or operator expression
        mode: Materialization mode that decides the statement shape
        order_by: Column name, '-name' for descending, or a sequence of them
        limit: Maximum rows (multiple and iterator modes)
        offset: Rows to skip (multiple and iterator modes)

    Returns
        CompiledQuery with %s placeholders

    Raises
        UnknownFieldError: Filter or ordering references a column not in the schema
        FilterError: Unsupported operator, bad operand, or unknown mode
    """
    try:
        mode = Mode(mode)
    except ValueError as exc:
        raise FilterError(f'Unknown mode {mode!r}; expected one of {[m.value for m in Mode]}') from exc

    table = quote_identifier(schema.table_name, dialect)
    where, params = _where_clause(schema, filter, dialect)

    if mode is Mode.COUNT:
        sql = f'select count(*) as count from {table}{where}'
    else:
        columns = ', '.join(quote_identifier(name, dialect) for name in schema.names)
        sql = f'select {columns} from {table}{where}{_order_clause(schema, order_by, dialect)}'
        if mode is Mode.SINGLE:
            # second row only detects ambiguity
            sql += ' limit 2'
        else:
            sql += _limit_clause(limit, offset, dialect)

    logger.debug(f'Compiled {mode.value} query for {schema.table_name}: {sql}')
    return CompiledQuery(sql=sql, params=tuple(params), mode=mode, table=schema.table_name)
