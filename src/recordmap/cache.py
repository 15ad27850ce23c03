"""
Schema cache for bound tables.

Resolves `TableSchema` metadata per (database identity, table) and keeps it in
two layers:

- an in-process cachetools LRUCache shared by every table bound in the process
- versioned JSON documents in a cache directory, so new processes skip the
  metadata queries

Schemas for ephemeral databases (SQLite :memory:) are only kept in memory.
"""
import hashlib
import json
import logging
import os
import pathlib
import tempfile
import threading
from collections import defaultdict
from typing import TYPE_CHECKING, Any

import cachetools
from recordmap.schema import TableSchema, load_table_schema

if TYPE_CHECKING:
    from recordmap.connection import ConnectionWrapper

__all__ = [
    'CACHE_FORMAT_VERSION',
    'CACHE_DIR_ENV',
    'SchemaCache',
    'default_cache_dir',
    'get_schema_cache',
]

logger = logging.getLogger(__name__)

# Bump when the persisted document layout or ColumnSpec fields change
CACHE_FORMAT_VERSION = 1
CACHE_DIR_ENV = 'RECORDMAP_SCHEMA_CACHE'

CacheKey = tuple[str, str]


def default_cache_dir() -> pathlib.Path:
    """Cache directory from the environment, else ~/.cache/recordmap."""
    configured = os.environ.get(CACHE_DIR_ENV)
    if configured:
        return pathlib.Path(configured).expanduser()
    return pathlib.Path('~/.cache/recordmap').expanduser()


class SchemaCache:
    """Process-level cache of table schemas.

    Reads take a short lock on the in-memory layer. Population of a missing
    key holds a lock for that key, so concurrent first resolutions of the same
    table query metadata and write the cache file once.
    """

    _instance = None
    _instance_lock = threading.RLock()

    def __init__(self, cache_dir: str | os.PathLike | None = None,
                 persist: bool = True, maxsize: int = 128) -> None:
        """Initialize the cache.

        Args:
            cache_dir: Directory for persisted schemas (default: `default_cache_dir()`)
            persist: Write and read schema files; memory only when False
            maxsize: Number of schemas kept in memory
        """
        self.cache_dir = pathlib.Path(cache_dir).expanduser() if cache_dir else default_cache_dir()
        self.persist = persist
        self._memory: cachetools.LRUCache = cachetools.LRUCache(maxsize=maxsize)
        self._lock = threading.RLock()
        self._population_locks: defaultdict[CacheKey, threading.Lock] = defaultdict(threading.Lock)

    def __repr__(self) -> str:
        return f'<SchemaCache {self.cache_dir} persist={self.persist} size={len(self._memory)}>'

    @classmethod
    def get_instance(cls) -> 'SchemaCache':
        """Get the process default cache, creating it on first use."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def set_instance(cls, cache: 'SchemaCache | None') -> None:
        """Replace the process default cache; None resets it to a fresh default."""
        with cls._instance_lock:
            cls._instance = cache

    def path_for(self, identity: str, table: str) -> pathlib.Path:
        """Location of the persisted schema for a database table."""
        digest = hashlib.sha1(f'{identity}\n{table}'.encode()).hexdigest()
        return self.cache_dir / f'{digest}.json'

    def resolve(self, cn: 'ConnectionWrapper', table: str, refresh: bool = False) -> TableSchema:
        """Return the schema of `table` on the database `cn` is connected to.

        Args:
            cn: Connection used when the schema has to be loaded
            table: Table name
            refresh: Ignore cached copies and reload from the database

        Raises
            SchemaLoadError: The table does not exist or its metadata cannot be read
        """
        key = (cn.identity, table)
        if not refresh:
            schema = self._memory_get(key)
            if schema is not None:
                logger.debug(f'Schema cache hit for {table} on {key[0]}')
                return schema

        durable = self.persist and not cn.is_ephemeral
        with self._population_lock(key):
            schema = None
            if not refresh:
                # populated by another thread while we waited
                schema = self._memory_get(key)
                if schema is None and durable:
                    schema = self._read(key)
            if schema is None:
                logger.debug(f'Schema cache miss for {table} on {key[0]}')
                schema = load_table_schema(cn, table)
                if durable:
                    self._write(key, schema)
            with self._lock:
                self._memory[key] = schema
        return schema

    def refresh(self, cn: 'ConnectionWrapper', table: str) -> TableSchema:
        """Reload the schema of `table` from the database and replace cached copies."""
        return self.resolve(cn, table, refresh=True)

    def invalidate(self, cn: 'ConnectionWrapper | None' = None, table: str | None = None) -> int:
        """Drop cached schemas from memory and disk.

        Args:
            cn: Limit to the database this connection points at
            table: Limit to this table name

        Returns
            Number of in-memory entries dropped
        """
        identity = cn.identity if cn is not None else None

        def matches(key_identity: str, key_table: str) -> bool:
            return ((identity is None or key_identity == identity)
                    and (table is None or key_table == table))

        with self._lock:
            stale = [key for key in list(self._memory.keys()) if matches(*key)]
            for key in stale:
                del self._memory[key]

        if identity is not None and table is not None:
            self._unlink(self.path_for(identity, table))
        else:
            for path, document in self._documents():
                if matches(document.get('database'), document.get('table')):
                    self._unlink(path)

        logger.debug(f'Invalidated {len(stale)} cached schemas (database={identity}, table={table})')
        return len(stale)

    def clear(self) -> None:
        """Drop every cached schema, in memory and on disk."""
        with self._lock:
            self._memory.clear()
        for path, _ in self._documents():
            self._unlink(path)

    def _memory_get(self, key: CacheKey) -> TableSchema | None:
        with self._lock:
            return self._memory.get(key)

    def _population_lock(self, key: CacheKey) -> threading.Lock:
        with self._lock:
            return self._population_locks[key]

    def _documents(self) -> list[tuple[pathlib.Path, dict[str, Any]]]:
        if not self.cache_dir.is_dir():
            return []
        documents = []
        for path in sorted(self.cache_dir.glob('*.json')):
            try:
                document = json.loads(path.read_text(encoding='utf-8'))
            except (OSError, ValueError) as exc:
                logger.warning(f'Unreadable schema cache file {path}: {exc}')
                documents.append((path, {}))
                continue
            if isinstance(document, dict):
                documents.append((path, document))
        return documents

    def _read(self, key: CacheKey) -> TableSchema | None:
        identity, table = key
        path = self.path_for(identity, table)
        if not path.exists():
            return None
        try:
            document = json.loads(path.read_text(encoding='utf-8'))
        except (OSError, ValueError) as exc:
            logger.warning(f'Ignoring unreadable schema cache file {path}: {exc}')
            return None

        if not isinstance(document, dict) or document.get('version') != CACHE_FORMAT_VERSION:
            version = document.get('version') if isinstance(document, dict) else None
            logger.info(f'Ignoring schema cache file {path} with format version {version!r}')
            return None
        if document.get('database') != identity or document.get('table') != table:
            logger.warning(f'Ignoring schema cache file {path}: it describes '
                           f'{document.get("table")!r} on {document.get("database")!r}')
            return None

        try:
            schema = TableSchema.from_dict(document['schema'])
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f'Ignoring malformed schema cache file {path}: {exc}')
            return None
        if schema.table_name != table:
            logger.warning(f'Ignoring schema cache file {path}: schema is for {schema.table_name!r}')
            return None

        logger.debug(f'Loaded schema for {table} from {path}')
        return schema

    def _write(self, key: CacheKey, schema: TableSchema) -> None:
        identity, table = key
        path = self.path_for(identity, table)
        document = {
            'version': CACHE_FORMAT_VERSION,
            'database': identity,
            'table': table,
            'schema': schema.to_dict(),
        }
        tmp_name = None
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile('w', encoding='utf-8', dir=self.cache_dir,
                                             suffix='.tmp', delete=False) as f:
                tmp_name = f.name
                json.dump(document, f, indent=2, default=str)
            os.replace(tmp_name, path)
            logger.debug(f'Wrote schema for {table} to {path}')
        except (OSError, TypeError, ValueError) as exc:
            logger.warning(f'Could not write schema cache file {path}: {exc}')
            if tmp_name is not None:
                pathlib.Path(tmp_name).unlink(missing_ok=True)

    def _unlink(self, path: pathlib.Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(f'Could not remove schema cache file {path}: {exc}')


_directory_caches: dict[pathlib.Path, SchemaCache] = {}
_directory_caches_lock = threading.Lock()


def get_schema_cache(cache_dir: str | os.PathLike | None = None) -> SchemaCache:
    """Return the cache for `cache_dir`, or the process default when None.

    Caches for explicit directories are created once and shared.
    """
    if not cache_dir:
        return SchemaCache.get_instance()
    path = pathlib.Path(cache_dir).expanduser()
    with _directory_caches_lock:
        if path not in _directory_caches:
            _directory_caches[path] = SchemaCache(path)
        return _directory_caches[path]
