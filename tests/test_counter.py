"""Tests for the persisted per-stream counters."""

import pytest

from tsbuf.counter import KeyedCounter
from tsbuf.kv_store import InMemoryKeyValueStore
from tsbuf.models import StreamId


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


class TestKeyedCounter:

    @pytest.mark.storage
    def test_missing_counter_reads_zero(self, store) -> None:
        counter = KeyedCounter(store)
        assert counter.count(StreamId.EVENTS) == 0
        assert counter.count(StreamId.TSVALS) == 0

    @pytest.mark.storage
    def test_increment_persists_under_well_known_key(self, store) -> None:
        counter = KeyedCounter(store)

        assert counter.increment(StreamId.EVENTS) == 1
        assert counter.increment(StreamId.EVENTS) == 2
        counter.increment(StreamId.TSVALS)

        assert store.get("eventCount") == "2"
        assert store.get("tsValCount") == "1"

    @pytest.mark.storage
    def test_counts_survive_a_new_counter_instance(self, store) -> None:
        KeyedCounter(store).increment(StreamId.TSVALS)
        assert KeyedCounter(store).count(StreamId.TSVALS) == 1

    @pytest.mark.storage
    @pytest.mark.parametrize("raw", ["garbage", "", "1.5", "NaN", "-3", "5abc", "3.0"])
    def test_corrupted_counter_reads_zero_and_increments_to_one(self, store, raw) -> None:
        store.set("eventCount", raw)
        counter = KeyedCounter(store)

        assert counter.count(StreamId.EVENTS) == 0
        assert counter.increment(StreamId.EVENTS) == 1
        assert store.get("eventCount") == "1"

    @pytest.mark.storage
    def test_reset_sets_zero(self, store) -> None:
        counter = KeyedCounter(store)
        for _ in range(3):
            counter.increment(StreamId.EVENTS)

        counter.reset(StreamId.EVENTS)

        assert counter.count(StreamId.EVENTS) == 0
        assert store.get("eventCount") == "0"

    @pytest.mark.storage
    def test_set_overwrites_and_rejects_negative(self, store) -> None:
        counter = KeyedCounter(store)
        counter.set(StreamId.TSVALS, 4)

        assert counter.count(StreamId.TSVALS) == 4
        with pytest.raises(ValueError):
            counter.set(StreamId.TSVALS, -1)

    @pytest.mark.storage
    def test_combined_sums_both_streams(self, store) -> None:
        counter = KeyedCounter(store)
        counter.increment(StreamId.EVENTS)
        counter.increment(StreamId.TSVALS)
        counter.increment(StreamId.TSVALS)

        assert counter.combined() == 3
