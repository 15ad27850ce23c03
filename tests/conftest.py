import pytest
from recordmap.cache import CACHE_DIR_ENV, SchemaCache


@pytest.fixture(autouse=True)
def schema_cache(tmp_path, monkeypatch):
    """Point the default schema cache at a per-test directory."""
    cache_dir = tmp_path / 'schema-cache'
    monkeypatch.setenv(CACHE_DIR_ENV, str(cache_dir))
    cache = SchemaCache(cache_dir)
    SchemaCache.set_instance(cache)
    yield cache
    SchemaCache.set_instance(None)


pytest_plugins = [
    'tests.fixtures.schemas',
    'tests.fixtures.sqlite',
    'tests.fixtures.postgres',
]
