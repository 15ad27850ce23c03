"""
Record lifecycle against SQLite: insert, update, delete, discard and failed
commits.
"""
import pytest
from recordmap import CommitError, DbConnectionError, IntegrityError, RecordState
from recordmap import RecordStateError

from tests.fixtures.sqlite import stage_greetings

pytestmark = pytest.mark.sqlite


def stored_row(cn, id):
    cursor = cn.cursor()
    try:
        cursor.execute('select id, data, lang from greeting where id = %s', (id,))
        row = cursor.fetchone()
        return dict(row) if row is not None else None
    finally:
        cursor.close()


class TestInsert:
    """Test committing new records."""

    def test_defaults_filled_in(self, sl_conn, greeting):
        """Test the stored row supplies generated keys and defaults"""
        record = greeting.new(data='hello')
        identity = record.commit()

        assert record.identity == identity
        assert record.lang == 'en'
        assert record.to_dict() == {'id': identity, 'data': 'hello', 'lang': 'en'}
        assert stored_row(sl_conn, identity) == record.to_dict()

    def test_identities_increase(self, greeting):
        """Test each insert gets its own identity"""
        first = greeting.new(data='a').commit()
        second = greeting.new(data='b').commit()
        assert second > first

    def test_insert_defaults_only(self, sl_conn, greeting):
        """Test a record with nothing set inserts a row of defaults"""
        record = greeting()
        identity = record.commit()
        assert stored_row(sl_conn, identity) == {'id': identity, 'data': None, 'lang': 'en'}

    def test_explicit_primary_key(self, greeting):
        """Test a caller-chosen key is kept"""
        record = greeting.new(id=42, data='answer')
        assert record.commit() == 42
        assert greeting(42).data == 'answer'

    def test_null_primary_key_generated(self, sl_conn, greeting):
        """Test an explicit None key is replaced by the generated one"""
        record = greeting.new(id=None, data='hello')
        identity = record.commit()

        assert isinstance(identity, int)
        assert record.to_dict() == {'id': identity, 'data': 'hello', 'lang': 'en'}
        assert stored_row(sl_conn, identity) == record.to_dict()

        record.set('data', 'hi').commit()
        assert stored_row(sl_conn, identity)['data'] == 'hi'

    def test_commit_clean_record_is_noop(self, sl_conn, staged_greeting):
        """Test committing without changes issues no statement"""
        record = staged_greeting({'data': 'hola'})
        calls = sl_conn.calls
        assert record.commit() == record.identity
        assert sl_conn.calls == calls


class TestUpdate:
    """Test committing changes to stored records."""

    def test_update_changed_columns(self, sl_conn, staged_greeting):
        """Test only pending columns are written"""
        record = staged_greeting({'data': 'hola'})
        other = staged_greeting(record.identity)

        other.set('lang', 'en').commit()
        record.set('data', 'buenos dias')
        record.commit()

        assert stored_row(sl_conn, record.identity) == \
            {'id': record.identity, 'data': 'buenos dias', 'lang': 'en'}
        assert record.state is RecordState.CLEAN
        assert record.data == 'buenos dias'

    def test_update_visible_to_queries(self, staged_greeting):
        """Test a committed update is seen by later lookups"""
        record = staged_greeting({'data': 'hello'})
        record.lang = 'ja'
        record.commit()
        assert staged_greeting.count({'lang': 'ja'}) == 3

    def test_update_reads_back_stored_values(self, sl_conn):
        """Test committed values are the stored ones after column affinity"""
        sl_conn.execute('create table counter (id integer primary key, n integer)')
        counter = sl_conn.table('counter')
        record = counter.new(n=1)
        record.commit()

        record.set('n', '7').commit()
        assert record.n == 7
        assert counter(record.identity).n == 7

    def test_update_missing_row(self, sl_conn, staged_greeting):
        """Test updating a row deleted elsewhere fails and keeps changes"""
        record = staged_greeting({'data': 'hello'})
        sl_conn.execute('delete from greeting where id = %s', record.identity)
        record.set('data', 'gone')

        with pytest.raises(CommitError, match='no longer exists'):
            record.commit()
        assert record.pending == {'data': 'gone'}
        record.discard()


class TestDelete:
    """Test deleting records."""

    def test_delete(self, sl_conn, staged_greeting):
        """Test delete removes the row and retires the record"""
        record = staged_greeting({'data': 'hola'})
        identity = record.identity
        record.delete()
        assert record.state is RecordState.DIRTY
        assert stored_row(sl_conn, identity) is not None

        assert record.commit() == identity

        assert record.state is RecordState.DELETED
        assert not record.persisted
        assert stored_row(sl_conn, identity) is None
        assert staged_greeting.count() == 4

    def test_deleted_record_unusable(self, staged_greeting):
        """Test every operation on a deleted record raises"""
        record = staged_greeting({'data': 'hola'})
        record.delete().commit()

        for operation in (lambda: record.get('data'), lambda: record.set('data', 'x'),
                          record.commit, record.discard, record.delete):
            with pytest.raises(RecordStateError):
                operation()

    def test_delete_discarded(self, sl_conn, staged_greeting):
        """Test discard cancels a pending delete"""
        record = staged_greeting({'data': 'hola'})
        record.delete()
        record.discard()
        assert record.commit() == record.identity
        assert stored_row(sl_conn, record.identity) is not None

    def test_delete_new_record(self, sl_conn, greeting):
        """Test deleting a never-stored record touches nothing"""
        record = greeting.new(data='draft')
        calls = sl_conn.calls
        record.delete()
        assert record.commit() is None
        assert record.state is RecordState.DELETED
        assert sl_conn.calls == calls

    def test_delete_already_gone(self, sl_conn, staged_greeting, caplog):
        """Test deleting a row removed elsewhere logs a warning"""
        record = staged_greeting({'data': 'hola'})
        sl_conn.execute('delete from greeting where id = %s', record.identity)
        record.delete().commit()
        assert record.state is RecordState.DELETED
        assert 'already deleted' in caplog.text


class TestFailedCommit:
    """Test records stay usable when a write fails."""

    def test_constraint_violation_then_discard(self, sl_conn, greeting):
        """Test a rejected insert leaves the record dirty until discarded"""
        record = greeting.new(data='hallo', lang='de')

        with pytest.raises(CommitError) as exc_info:
            record.commit()

        assert isinstance(exc_info.value.__cause__, IntegrityError)

        assert record.state is RecordState.DIRTY
        assert record.pending == {'data': 'hallo', 'lang': 'de'}
        assert greeting.count() == 0

        record.discard()
        assert record.state is RecordState.NEW
        assert record.pending == {}

    def test_constraint_violation_on_update(self, sl_conn, staged_greeting):
        """Test a rejected update keeps stored values and pending changes"""
        record = staged_greeting({'data': 'hola'})
        record.set('lang', None)

        with pytest.raises(CommitError):
            record.commit()

        assert record.state is RecordState.DIRTY
        record.discard()
        assert record.lang == 'es'
        assert stored_row(sl_conn, record.identity)['lang'] == 'es'

    def test_retry_after_fix(self, greeting):
        """Test fixing a pending value lets the next commit succeed"""
        record = greeting.new(data='hallo', lang='de')
        with pytest.raises(CommitError):
            record.commit()
        record.set('lang', 'en')
        assert record.commit() is not None
        assert record.state is RecordState.CLEAN

    def test_closed_connection(self, sl_conn, staged_greeting):
        """Test commits on a closed connection raise CommitError"""
        record = staged_greeting({'data': 'hola'})
        record.set('data', 'adios')
        sl_conn.close()
        with pytest.raises(CommitError) as exc_info:
            record.commit()
        assert isinstance(exc_info.value.__cause__, DbConnectionError)
        record.discard()


class TestKeylessTable:
    """Test tables without a single-column primary key."""

    @pytest.fixture
    def log_table(self, sl_conn):
        sl_conn.execute("create table log (line text, level text default 'info')")
        return sl_conn.table('log')

    def test_insert_and_read(self, log_table):
        """Test rows can be inserted and queried"""
        record = log_table.new(line='started')
        assert record.commit() is None
        assert record.to_dict() == {'line': 'started', 'level': 'info'}
        assert log_table({'line': 'started'}).level == 'info'

    def test_update_and_delete_rejected(self, log_table):
        """Test writes that need a key raise CommitError"""
        log_table.new(line='started').commit()
        record = log_table({'line': 'started'})

        record.set('level', 'debug')
        with pytest.raises(CommitError, match='primary key'):
            record.commit()
        record.discard()

        record.delete()
        with pytest.raises(CommitError, match='primary key'):
            record.commit()
        record.discard()

    def test_primary_key_lookup_rejected(self, log_table):
        """Test bare-value lookups need a primary key"""
        from recordmap import FilterError
        with pytest.raises(FilterError):
            log_table('started')


class TestCompositeKeyTable:
    """Test tables keyed on several columns without a rowid."""

    @pytest.fixture
    def pair(self, sl_conn):
        sl_conn.execute('create table pair (a text, b text, v text, primary key (a, b)) without rowid')
        return sl_conn.table('pair')

    def test_insert(self, pair):
        """Test an insert stores the row once and leaves the record clean"""
        record = pair.new(a='x', b='y', v='1')
        assert record.commit() is None
        assert record.state is RecordState.CLEAN
        assert record.to_dict() == {'a': 'x', 'b': 'y', 'v': '1'}
        assert pair.count() == 1

    def test_failed_insert_stores_nothing(self, pair):
        """Test a duplicate key leaves the record dirty and the table unchanged"""
        pair.new(a='x', b='y', v='1').commit()
        record = pair.new(a='x', b='y', v='2')
        with pytest.raises(CommitError):
            record.commit()
        assert record.state is RecordState.DIRTY
        assert pair.count() == 1
        record.discard()


def test_records_from_staged_rows(sl_conn, greeting):
    """Test records fetched after staging reflect stored values"""
    stage_greetings(sl_conn, [('hey', 'en')])
    record = greeting({'data': 'hey'})
    assert record.state is RecordState.CLEAN
    assert record.to_dict()['lang'] == 'en'


if __name__ == '__main__':
    __import__('pytest').main([__file__])
