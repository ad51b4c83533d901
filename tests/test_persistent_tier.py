"""Tests for the namespaced, densely indexed persistent tier."""

import pytest

from tsbuf.errors import StoreReadFailure, StoreWriteFailure
from tsbuf.kv_store import InMemoryKeyValueStore
from tsbuf.models import StreamId
from tsbuf.persistent_tier import PersistentTierStore, entry_key


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def tier(store) -> PersistentTierStore:
    return PersistentTierStore(store)


class TestKeys:

    def test_entry_key_format(self) -> None:
        assert entry_key("event", 0) == "event-0"
        assert entry_key("ts", 12) == "ts-12"

    def test_negative_index_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            entry_key("ts", -1)


class TestStreamOperations:

    @pytest.mark.storage
    def test_store_entry_uses_pre_increment_index(self, tier, store) -> None:
        assert tier.store_entry(StreamId.EVENTS, "a") == 0
        assert tier.store_entry(StreamId.EVENTS, "b") == 1
        assert tier.store_entry(StreamId.TSVALS, "c") == 0

        assert store.get("event-0") == "a"
        assert store.get("event-1") == "b"
        assert store.get("ts-0") == "c"
        assert tier.count(StreamId.EVENTS) == 2
        assert tier.count(StreamId.TSVALS) == 1

    @pytest.mark.storage
    def test_read_stream_returns_entries_in_index_order(self, tier) -> None:
        for value in ["first", "second", "third"]:
            tier.store_entry(StreamId.EVENTS, value)

        assert tier.read_stream(StreamId.EVENTS) == ["first", "second", "third"]
        assert tier.read_stream(StreamId.TSVALS) == []

    @pytest.mark.storage
    def test_read_stream_raises_on_gap(self, tier, store) -> None:
        tier.store_entry(StreamId.TSVALS, "a")
        tier.store_entry(StreamId.TSVALS, "b")
        store.remove("ts-0")

        with pytest.raises(StoreReadFailure) as exc_info:
            tier.read_stream(StreamId.TSVALS)
        assert exc_info.value.key == "ts-0"

    @pytest.mark.storage
    def test_rejected_write_does_not_increment(self) -> None:
        store = InMemoryKeyValueStore(max_bytes=40)
        tier = PersistentTierStore(store)

        with pytest.raises(StoreWriteFailure):
            tier.store_entry(StreamId.TSVALS, "x" * 100)

        assert tier.count(StreamId.TSVALS) == 0
        assert store.get("ts-0") is None

    @pytest.mark.storage
    def test_capacity_probe_refuses_before_writing(self, store) -> None:
        class FullStore(InMemoryKeyValueStore):
            def has_capacity(self, nbytes: int) -> bool:
                return False

        tier = PersistentTierStore(FullStore())
        with pytest.raises(StoreWriteFailure, match="capacity probe"):
            tier.store_entry(StreamId.EVENTS, "a")
        assert tier.count(StreamId.EVENTS) == 0

    @pytest.mark.storage
    def test_os_error_from_store_becomes_store_write_failure(self) -> None:
        class BrokenStore(InMemoryKeyValueStore):
            def set(self, key: str, value: str) -> None:
                raise OSError(28, "No space left on device")

        tier = PersistentTierStore(BrokenStore())
        with pytest.raises(StoreWriteFailure):
            tier.store_entry(StreamId.EVENTS, "a")

    @pytest.mark.storage
    def test_clear_stream_removes_entries_and_resets(self, tier, store) -> None:
        for value in "abc":
            tier.store_entry(StreamId.EVENTS, value)
        tier.store_entry(StreamId.TSVALS, "keep")

        assert tier.clear_stream(StreamId.EVENTS) == 3

        assert tier.count(StreamId.EVENTS) == 0
        assert [k for k in store.keys() if k.startswith("event-")] == []
        assert tier.read_stream(StreamId.TSVALS) == ["keep"]


class TestAudit:

    @pytest.mark.storage
    def test_dense_after_writes_and_clears(self, tier) -> None:
        for i in range(5):
            tier.store_entry(StreamId.EVENTS, str(i))
            tier.store_entry(StreamId.TSVALS, str(i))
        tier.clear_stream(StreamId.TSVALS)
        tier.store_entry(StreamId.TSVALS, "again")

        assert tier.is_dense(StreamId.EVENTS)
        assert tier.is_dense(StreamId.TSVALS)

    @pytest.mark.storage
    def test_orphan_from_interrupted_increment_is_reported_then_overwritten(self, tier, store) -> None:
        # Entry written but the counter update never happened
        store.set("event-0", "stray")

        report = tier.audit(StreamId.EVENTS)
        assert report["orphans"] == [0]
        assert report["missing"] == []

        tier.store_entry(StreamId.EVENTS, "real")
        assert store.get("event-0") == "real"
        assert tier.is_dense(StreamId.EVENTS)

    @pytest.mark.storage
    def test_missing_entries_are_reported(self, tier, store) -> None:
        tier.store_entry(StreamId.TSVALS, "a")
        tier.store_entry(StreamId.TSVALS, "b")
        store.remove("ts-1")

        assert tier.audit(StreamId.TSVALS)["missing"] == [1]
        assert not tier.is_dense(StreamId.TSVALS)

    @pytest.mark.storage
    def test_counter_keys_are_not_counted_as_entries(self, tier) -> None:
        tier.store_entry(StreamId.EVENTS, "a")
        assert tier.audit(StreamId.EVENTS) == {
            "stream": "events", "count": 1, "orphans": [], "missing": [],
        }


class FlakyRemoveStore(InMemoryKeyValueStore):
    """Raises OSError on the n-th remove call."""

    def __init__(self, fail_on: int):
        super().__init__()
        self.fail_on = fail_on
        self.removes = 0

    def remove(self, key: str) -> None:
        self.removes += 1
        if self.removes == self.fail_on:
            raise OSError(5, "Input/output error")
        super().remove(key)


class TestInterruptedClear:

    @pytest.mark.storage
    def test_failed_remove_leaves_stream_dense_and_readable(self) -> None:
        store = FlakyRemoveStore(fail_on=2)
        tier = PersistentTierStore(store)
        for value in "abc":
            tier.store_entry(StreamId.EVENTS, value)

        with pytest.raises(StoreWriteFailure):
            tier.clear_stream(StreamId.EVENTS)

        assert tier.count(StreamId.EVENTS) == 1
        assert tier.read_stream(StreamId.EVENTS) == ["a"]
        assert tier.audit(StreamId.EVENTS)["missing"] == []

    @pytest.mark.storage
    def test_stray_entry_after_interrupted_clear_is_overwritten(self) -> None:
        store = FlakyRemoveStore(fail_on=2)
        tier = PersistentTierStore(store)
        for value in "abc":
            tier.store_entry(StreamId.EVENTS, value)
        with pytest.raises(StoreWriteFailure):
            tier.clear_stream(StreamId.EVENTS)

        assert tier.store_entry(StreamId.EVENTS, "d") == 1

        assert tier.read_stream(StreamId.EVENTS) == ["a", "d"]
        assert tier.is_dense(StreamId.EVENTS)

    @pytest.mark.storage
    def test_clearing_empty_stream_resets_corrupted_counter(self, tier, store) -> None:
        store.set("tsValCount", "garbage")

        assert tier.clear_stream(StreamId.TSVALS) == 0
        assert store.get("tsValCount") == "0"
