"""
Schema loading and caching against SQLite.
"""
import json

import pytest
import recordmap
from recordmap import SchemaCache, SchemaLoadError, SqlType
from recordmap.schema import load_table_schema

from tests.fixtures.sqlite import GREETING_DDL

pytestmark = pytest.mark.sqlite


class TestLoadSchema:
    """Test metadata read through SQLAlchemy Inspector."""

    def test_greeting_columns(self, sl_conn):
        """Test types, keys, defaults and CHECK enums"""
        schema = load_table_schema(sl_conn, 'greeting')

        assert schema.table_name == 'greeting'
        assert schema.names == ['id', 'data', 'lang']

        id_col = schema.column('id')
        assert id_col.is_primary_key
        assert id_col.autoincrement
        assert id_col.sql_type is SqlType.INT

        data = schema.column('data')
        assert data.sql_type is SqlType.VARCHAR
        assert data.nullable
        assert not data.has_default

        lang = schema.column('lang')
        assert lang.sql_type is SqlType.ENUM
        assert lang.enum_values == ('en', 'ja', 'es')
        assert not lang.nullable
        assert lang.default_value == 'en'

    def test_other_types(self, sl_conn):
        """Test common declared types map to their categories"""
        sl_conn.execute("""
create table sample (
    code text primary key,
    amount numeric(10, 2),
    ratio real,
    active boolean default 1,
    born date,
    seen timestamp default current_timestamp,
    payload blob
)""")
        schema = load_table_schema(sl_conn, 'sample')

        assert [c.sql_type for c in schema] == [
            SqlType.TEXT, SqlType.NUMERIC, SqlType.FLOAT, SqlType.BOOLEAN,
            SqlType.DATE, SqlType.TIMESTAMP, SqlType.BINARY]
        assert not schema.column('code').autoincrement
        assert schema.column('active').default_value == 1
        assert schema.column('seen').has_default
        assert schema.column('seen').default_value is None

    def test_missing_table(self, sl_conn):
        """Test binding a missing table raises SchemaLoadError"""
        with pytest.raises(SchemaLoadError) as exc_info:
            sl_conn.table('missing')
        assert exc_info.value.table == 'missing'


class TestSchemaCache:
    """Test schemas cached per database."""

    def test_file_database_persisted(self, sl_file_conn, schema_cache):
        """Test a file database's schema is written to the cache directory"""
        sl_file_conn.table('greeting')
        path = schema_cache.path_for(sl_file_conn.identity, 'greeting')
        document = json.loads(path.read_text())
        assert document['database'] == sl_file_conn.identity
        assert document['schema']['table_name'] == 'greeting'

    def test_memory_database_not_persisted(self, sl_conn, schema_cache):
        """Test in-memory schemas stay in memory"""
        sl_conn.table('greeting')
        assert not schema_cache.cache_dir.exists() or \
            list(schema_cache.cache_dir.glob('*.json')) == []

    def test_cache_survives_new_process(self, sl_file_path, sl_file_conn, tmp_path, mocker):
        """Test a fresh cache over the same directory skips metadata queries"""
        cache_dir = tmp_path / 'shared'
        sl_file_conn.table('greeting', cache=SchemaCache(cache_dir))

        loader = mocker.patch('recordmap.cache.load_table_schema')
        with recordmap.connect(drivername='sqlite', database=str(sl_file_path)) as cn:
            table = cn.table('greeting', cache=SchemaCache(cache_dir))
        loader.assert_not_called()
        assert table.columns == ['id', 'data', 'lang']

    def test_two_databases_same_table_name(self, tmp_path):
        """Test equally named tables in two databases keep their own schemas"""
        with recordmap.connect(drivername='sqlite', database=str(tmp_path / 'one.db')) as one, \
                recordmap.connect(drivername='sqlite', database=str(tmp_path / 'two.db')) as two:
            one.execute(GREETING_DDL)
            two.execute('create table greeting (id integer primary key, body text)')

            assert one.table('greeting').columns == ['id', 'data', 'lang']
            assert two.table('greeting').columns == ['id', 'body']
            assert one.table('greeting').identity != two.table('greeting').identity

    def test_refresh_after_alter(self, sl_file_conn):
        """Test refresh picks up a changed table"""
        table = sl_file_conn.table('greeting')
        sl_file_conn.execute('alter table greeting add column note text')

        assert sl_file_conn.table('greeting').columns == ['id', 'data', 'lang']
        assert table.refresh_schema().names == ['id', 'data', 'lang', 'note']
        assert sl_file_conn.table('greeting').columns == ['id', 'data', 'lang', 'note']

    def test_refresh_on_bind(self, sl_file_conn):
        """Test refresh=True bypasses a stale cached schema"""
        sl_file_conn.table('greeting')
        sl_file_conn.execute('alter table greeting add column note text')
        assert 'note' in sl_file_conn.table('greeting', refresh=True).columns

    def test_invalidate(self, sl_file_conn, schema_cache):
        """Test invalidation forces the next bind to reload"""
        sl_file_conn.table('greeting')
        sl_file_conn.execute('alter table greeting add column note text')

        assert schema_cache.invalidate(sl_file_conn, 'greeting') == 1
        assert 'note' in sl_file_conn.table('greeting').columns

    def test_records_keep_their_schema(self, sl_file_conn):
        """Test existing records are unaffected by a refresh"""
        table = sl_file_conn.table('greeting')
        record = table.new(data='hello')
        sl_file_conn.execute('alter table greeting add column note text')
        table.refresh_schema()

        assert 'note' not in record
        assert 'note' in table.new()
        record.commit()
        assert record.data == 'hello'

    def test_schema_cache_dir_option(self, tmp_path, sl_file_path):
        """Test the schema_cache_dir option selects the cache directory"""
        cache_dir = tmp_path / 'per-connection'
        with recordmap.connect(drivername='sqlite', database=str(sl_file_path),
                               schema_cache_dir=str(cache_dir)) as cn:
            cn.execute(GREETING_DDL)
            cn.table('greeting')
            assert len(list(cache_dir.glob('*.json'))) == 1


if __name__ == '__main__':
    __import__('pytest').main([__file__])
