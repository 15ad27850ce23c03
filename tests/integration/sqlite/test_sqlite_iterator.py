"""
RecordIterator over real SQLite cursors.
"""
import pytest
from recordmap import END, RecordState

from tests.fixtures.sqlite import GREETINGS, stage_greetings

pytestmark = pytest.mark.sqlite


def test_iterate_all(staged_greeting):
    """Test every row is yielded once, in order"""
    with staged_greeting.find_iter(order_by='id', batch_size=2) as it:
        data = [record.data for record in it]
    assert data == [data for data, _ in GREETINGS]
    assert it.exhausted


def test_has_next_and_end(staged_greeting):
    """Test the explicit has_next/next protocol"""
    it = staged_greeting.find_iter({'lang': 'es'})
    assert it.has_next()
    record = it.next()
    assert record.data == 'hola'
    assert record.state is RecordState.CLEAN
    assert not it.has_next()
    assert it.next() is END
    assert it.next() is END


def test_empty(staged_greeting):
    """Test no matches gives END straight away"""
    it = staged_greeting.find_iter({'lang': 'de'})
    assert it.next() is END
    assert it.closed


def test_large_result_in_batches(sl_conn, greeting):
    """Test more rows than one batch"""
    stage_greetings(sl_conn, [(f'row {i}', 'en') for i in range(250)])
    it = greeting.find_iter(order_by='id', batch_size=64)
    count = 0
    while it.has_next():
        it.next()
        count += 1
    assert count == 250 == it.count


def test_records_writable_during_iteration(sl_conn, staged_greeting):
    """Test records from an open iterator can be committed"""
    with staged_greeting.find_iter({'lang': 'ja'}, order_by='id') as it:
        for record in it:
            record.set('lang', 'en').commit()
    assert staged_greeting.count({'lang': 'en'}) == 4


def test_limit_offset(staged_greeting):
    """Test paging applies to iterators too"""
    it = staged_greeting.find_iter(order_by='-id', limit=2, offset=1)
    assert [record.data for record in it] == ['good morning', 'hola']


def test_close_early(staged_greeting):
    """Test an iterator closed part way"""
    it = staged_greeting.find_iter(order_by='id', batch_size=1)
    it.next()
    it.close()
    assert it.closed
    assert not it.exhausted
    assert it.next() is END


if __name__ == '__main__':
    __import__('pytest').main([__file__])
