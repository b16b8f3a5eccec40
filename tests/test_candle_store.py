from chart_sentinel.candle_store import CandleStore
from chart_sentinel.models import Candle


def _c(t: int, c: float) -> Candle:
    return Candle(time=t, open=c, high=c, low=c, close=c)


def test_upsert_same_time_replaces_forming_bar():
    store = CandleStore()
    store.replace_all([_c(1, 10), _c(2, 12)])
    assert store.upsert_last(_c(2, 13)) is True
    assert store.snapshot() == (_c(1, 10), _c(2, 13))


def test_upsert_newer_time_appends():
    store = CandleStore()
    store.replace_all([_c(1, 10), _c(2, 12)])
    store.upsert_last(_c(3, 11))
    assert [c.time for c in store.snapshot()] == [1, 2, 3]
    assert store.last.close == 11


def test_stale_or_duplicate_updates_leave_store_unchanged():
    store = CandleStore()
    store.replace_all([_c(10, 1), _c(20, 2), _c(30, 3)])
    before = store.snapshot()
    version = store.version
    for t in (5, 10, 19, 20, 29):
        assert store.upsert_last(_c(t, 99)) is False
    assert store.snapshot() == before
    assert store.version == version


def test_upsert_into_empty_store():
    store = CandleStore()
    assert store.upsert_last(_c(5, 1)) is True
    assert len(store) == 1


def test_replace_all_sorts_and_dedupes():
    store = CandleStore()
    store.upsert_last(_c(100, 1))
    store.replace_all([_c(3, 3), _c(1, 1), _c(2, 2), _c(3, 4)])
    assert [c.time for c in store.snapshot()] == [1, 2, 3]
    assert store.last.close == 4


def test_tail_and_clear():
    store = CandleStore()
    store.replace_all([_c(i, i) for i in range(1, 11)])
    assert [c.time for c in store.tail(3)] == [8, 9, 10]
    assert store.tail(0) == []
    assert len(store.tail(50)) == 10
    store.clear()
    assert len(store) == 0
    assert store.last is None
