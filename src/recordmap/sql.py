"""
SQL text helpers shared by the filter compiler and record writes.

Statements are written with PostgreSQL-style ``%s`` placeholders and
converted to the connection's placeholder style just before execution:

- `quote_identifier()` - Quote table/column names
- `make_placeholders()` - Build a placeholder list for a dialect
- `standardize_placeholders()` - Convert %s <-> ? for a dialect
- `has_placeholders()` - Check if SQL has placeholders
"""
import re

# String literals and quoted identifiers are skipped when rewriting placeholders
_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*'|"(?:[^"]|"")*")
    |(?P<percent_s>%s)
    |(?P<qmark>\?)
""", re.VERBOSE)

_HAS_PLACEHOLDER = re.compile(r'%s|\?|%\([^)]+\)s')

_DIALECT_PLACEHOLDERS = {
    'postgresql': '%s',
    'sqlite': '?',
}


def quote_identifier(identifier: str, dialect: str = 'postgresql') -> str:
    """Safely quote database identifiers.

    Parameters
        identifier: Table or column name
        dialect: Database dialect

    Returns
        Quoted identifier

    Raises
        ValueError: If dialect is unsupported

    >>> quote_identifier('my"table')
    '"my""table"'
    """
    if dialect in _DIALECT_PLACEHOLDERS:
        return '"' + identifier.replace('"', '""') + '"'

    raise ValueError(f'Unknown dialect: {dialect}')


def placeholder(dialect: str) -> str:
    """Return the positional placeholder marker for a dialect.
    """
    try:
        return _DIALECT_PLACEHOLDERS[dialect]
    except KeyError:
        raise ValueError(f'Unknown dialect: {dialect}') from None


def make_placeholders(count: int, dialect: str = 'postgresql') -> str:
    """Build a comma separated list of placeholders.

    >>> make_placeholders(3, 'sqlite')
    '?, ?, ?'
    """
    return ', '.join([placeholder(dialect)] * count)


def has_placeholders(sql: str | None) -> bool:
    """Check if SQL has any parameter placeholders.
    """
    if not sql:
        return False

    if '%' not in sql and '?' not in sql:
        return False

    return bool(_HAS_PLACEHOLDER.search(sql))


def standardize_placeholders(sql: str, dialect: str = 'postgresql') -> str:
    """Convert placeholders between %s and ? based on dialect.

    Placeholders inside string literals and quoted identifiers are left alone.

    >>> standardize_placeholders("select * from t where a = %s and b = '%s'", 'sqlite')
    "select * from t where a = ? and b = '%s'"
    >>> standardize_placeholders('select * from t where a = ?', 'postgresql')
    'select * from t where a = %s'
    """
    if not has_placeholders(sql):
        return sql

    target = placeholder(dialect)

    def replace(match: re.Match) -> str:
        if match.group('string'):
            return match.group(0)
        return target

    return _TOKENIZE.sub(replace, sql)
