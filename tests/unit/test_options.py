"""
Unit tests for DatabaseOptions and the data loaders used by `Table.frame`.
"""
import pandas as pd
import pytest
from recordmap.options import DatabaseOptions, iterdict_data_loader
from recordmap.options import pandas_numpy_data_loader
from recordmap.options import pandas_pyarrow_data_loader

from tests.fixtures.schemas import greeting_schema

ROWS = [
    {'id': 1, 'data': 'hello', 'lang': 'en'},
    {'id': 2, 'data': 'hola', 'lang': 'es'},
]


class TestDatabaseOptions:
    """Test option validation and loading."""

    def test_sqlite_options(self):
        """Test SQLite needs only a database"""
        options = DatabaseOptions(drivername='sqlite', database=':memory:')
        assert options.appname
        assert options.data_loader is pandas_numpy_data_loader
        assert options.schema_cache_dir is None

    def test_unknown_driver(self):
        """Test unsupported drivers are rejected"""
        with pytest.raises(ValueError, match='drivername must be one of'):
            DatabaseOptions(drivername='oracle', database='x')

    def test_missing_required_field(self):
        """Test PostgreSQL requires server settings"""
        with pytest.raises(ValueError, match='hostname'):
            DatabaseOptions(drivername='postgresql', database='db', username='u',
                            password='p', port=5432)
        with pytest.raises(ValueError, match='database'):
            DatabaseOptions(drivername='sqlite')

    def test_load_from_mapping_and_keywords(self):
        """Test keywords override mapping values"""
        options = DatabaseOptions.load({'drivername': 'sqlite', 'database': 'a.db'},
                                       database='b.db', schema_cache_dir='/tmp/schemas')
        assert options.database == 'b.db'
        assert options.schema_cache_dir == '/tmp/schemas'

    def test_load_existing_instance(self):
        """Test an instance passes through unless overridden"""
        options = DatabaseOptions(drivername='sqlite', database='a.db')
        assert DatabaseOptions.load(options) is options
        changed = DatabaseOptions.load(options, database='b.db')
        assert changed.database == 'b.db'
        assert options.database == 'a.db'

    def test_load_unknown_option(self):
        """Test misspelled options are reported"""
        with pytest.raises(ValueError, match='hostnme'):
            DatabaseOptions.load(drivername='sqlite', database='a.db', hostnme='x')

    def test_str_is_stable_key(self):
        """Test equal options render the same text, without the loader"""
        one = DatabaseOptions(drivername='sqlite', database='a.db', appname='app')
        two = DatabaseOptions(drivername='sqlite', database='a.db', appname='app',
                              data_loader=iterdict_data_loader)
        assert str(one) == str(two)
        assert 'data_loader' not in str(one)
        assert str(one) != str(DatabaseOptions(drivername='sqlite', database='b.db', appname='app'))


class TestDataLoaders:
    """Test conversion of fetched rows to result objects."""

    def test_iterdict(self):
        """Test the minimal loader returns the rows"""
        columns = greeting_schema().columns
        assert iterdict_data_loader(ROWS, columns, table_name='greeting') == ROWS
        assert iterdict_data_loader([], columns) == []

    @pytest.mark.parametrize('loader', [pandas_numpy_data_loader, pandas_pyarrow_data_loader])
    def test_pandas_loaders(self, loader):
        """Test DataFrames keep schema column order and metadata"""
        df = loader(ROWS, greeting_schema().columns, table_name='greeting')

        assert isinstance(df, pd.DataFrame)
        assert list(df.columns) == ['id', 'data', 'lang']
        assert df['data'].tolist() == ['hello', 'hola']
        assert df.attrs['column_types']['lang']['enum_values'] == ['en', 'ja', 'es']
        assert df.attrs['column_types']['id']['is_primary_key'] is True

    @pytest.mark.parametrize('loader', [pandas_numpy_data_loader, pandas_pyarrow_data_loader])
    def test_pandas_loaders_empty(self, loader):
        """Test empty results keep their columns"""
        df = loader([], greeting_schema().columns)
        assert df.empty
        assert list(df.columns) == ['id', 'data', 'lang']


if __name__ == '__main__':
    __import__('pytest').main([__file__])
