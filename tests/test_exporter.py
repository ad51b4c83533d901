"""Tests for the export-and-clear sequence."""

import asyncio
import json

import pytest

from tsbuf.errors import ExportFailure, StoreReadFailure, StoreWriteFailure
from tsbuf.exporter import Exporter
from tsbuf.interfaces import ExportSink
from tsbuf.kv_store import InMemoryKeyValueStore
from tsbuf.models import Event, Sample, StreamId, serialize_batch
from tsbuf.persistent_tier import PersistentTierStore
from tsbuf.sinks import InMemoryExportSink


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def tier(store) -> PersistentTierStore:
    return PersistentTierStore(store)


@pytest.fixture
def sink() -> InMemoryExportSink:
    return InMemoryExportSink()


def fill(tier: PersistentTierStore, events: int, batches: int):
    for i in range(events):
        tier.store_entry(StreamId.EVENTS, Event(timestamp=100 + i, value=f"e{i}").serialize())
    for i in range(batches):
        tier.store_entry(StreamId.TSVALS, serialize_batch([Sample(timestamp=200 + i, value=0.5)]))


class GatedSink(ExportSink):
    """Holds every export until the gate opens."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.names = []

    async def export(self, name: str, payload: bytes) -> bool:
        await self.gate.wait()
        self.names.append(name)
        return True


class TestExportAndClear:

    @pytest.mark.asyncio
    async def test_empty_tier_still_exports(self, tier, sink) -> None:
        exporter = Exporter(tier, sink)

        manifest = await exporter.export_and_clear(123)

        name, payload = sink.snapshot()[0]
        assert name == "dump_0_events_0_tsVals_0_ts_123.json"
        assert json.loads(payload) == {"events": [], "tsVals": []}
        assert manifest.event_count == 0
        assert exporter.sequence_number == 1

    @pytest.mark.asyncio
    async def test_payload_holds_stored_strings_and_tier_is_cleared(self, tier, sink, store) -> None:
        fill(tier, events=2, batches=3)
        stored_events = tier.read_stream(StreamId.EVENTS)
        stored_batches = tier.read_stream(StreamId.TSVALS)

        await Exporter(tier, sink).export_and_clear(555)

        name, payload = sink.snapshot()[0]
        assert name == "dump_0_events_2_tsVals_3_ts_555.json"
        decoded = json.loads(payload)
        assert list(decoded) == ["events", "tsVals"]
        assert decoded["events"] == stored_events
        assert decoded["tsVals"] == stored_batches
        assert json.loads(decoded["events"][0]) == {"ts": 100, "value": "e0"}

        assert tier.count(StreamId.EVENTS) == 0
        assert tier.count(StreamId.TSVALS) == 0
        assert sorted(store.keys()) == ["eventCount", "tsValCount"]

    @pytest.mark.asyncio
    async def test_structured_payload_embeds_objects(self, tier, sink) -> None:
        fill(tier, events=1, batches=1)

        await Exporter(tier, sink, payload_format="structured").export_and_clear(1)

        decoded = json.loads(sink.snapshot()[0][1])
        assert decoded["events"] == [{"ts": 100, "value": "e0"}]
        assert decoded["tsVals"] == [{"value": [{"ts": 200, "value": 0.5}]}]

    @pytest.mark.asyncio
    async def test_sequence_number_names_successive_dumps(self, tier, sink) -> None:
        exporter = Exporter(tier, sink)
        await exporter.export_and_clear(1)
        fill(tier, events=1, batches=0)
        await exporter.export_and_clear(2)

        names = [name for name, _ in sink.snapshot()]
        assert names == [
            "dump_0_events_0_tsVals_0_ts_1.json",
            "dump_1_events_1_tsVals_0_ts_2.json",
        ]


class TestExportFailures:

    @pytest.mark.asyncio
    async def test_unacknowledged_export_leaves_everything_untouched(self, tier, sink) -> None:
        fill(tier, events=2, batches=1)
        exporter = Exporter(tier, sink)
        sink.fail_next(1)

        with pytest.raises(ExportFailure):
            await exporter.export_and_clear(10)

        assert tier.count(StreamId.EVENTS) == 2
        assert tier.count(StreamId.TSVALS) == 1
        assert exporter.sequence_number == 0
        assert exporter.degraded_status()["export_failures"] == 1

    @pytest.mark.asyncio
    async def test_retries_after_failures_export_each_entry_exactly_once(self, tier, sink) -> None:
        exporter = Exporter(tier, sink)
        sink.fail_next(3)
        fill(tier, events=1, batches=1)

        for attempt in range(3):
            with pytest.raises(ExportFailure):
                await exporter.export_and_clear(attempt)
            # More data arrives between attempts
            tier.store_entry(StreamId.EVENTS, Event(timestamp=900 + attempt, value=f"late{attempt}").serialize())

        manifest = await exporter.export_and_clear(99)

        assert sink.attempts == 4
        assert manifest.name == "dump_0_events_4_tsVals_1_ts_99.json"
        values = [json.loads(e)["value"] for e in json.loads(sink.snapshot()[0][1])["events"]]
        assert values == ["e0", "late0", "late1", "late2"]

    @pytest.mark.asyncio
    async def test_sink_exception_becomes_export_failure(self, tier) -> None:
        class ExplodingSink(ExportSink):
            async def export(self, name: str, payload: bytes) -> bool:
                raise ConnectionError("endpoint down")

        fill(tier, events=1, batches=0)
        exporter = Exporter(tier, ExplodingSink())

        with pytest.raises(ExportFailure, match="ConnectionError"):
            await exporter.export_and_clear(1)

        assert tier.count(StreamId.EVENTS) == 1
        assert not exporter.in_flight

    @pytest.mark.asyncio
    async def test_partial_read_aborts_before_export(self, tier, sink, store) -> None:
        fill(tier, events=3, batches=0)
        store.remove("event-1")

        with pytest.raises(StoreReadFailure):
            await Exporter(tier, sink).export_and_clear(1)

        assert sink.attempts == 0
        assert tier.count(StreamId.EVENTS) == 3


class TestSerialization:

    @pytest.mark.asyncio
    async def test_concurrent_exports_do_not_interleave(self, tier) -> None:
        sink = GatedSink()
        exporter = Exporter(tier, sink)
        fill(tier, events=2, batches=0)

        first = asyncio.create_task(exporter.export_and_clear(1))
        second = asyncio.create_task(exporter.export_and_clear(2))
        await asyncio.sleep(0)
        assert exporter.in_flight

        sink.gate.set()
        manifests = await asyncio.gather(first, second)

        assert [m.event_count for m in manifests] == [2, 0]
        assert sink.names == [
            "dump_0_events_2_tsVals_0_ts_1.json",
            "dump_1_events_0_tsVals_0_ts_2.json",
        ]


class TestInterruptedClear:

    @pytest.mark.asyncio
    async def test_entries_left_by_failed_clear_are_exported_next_time(self, sink) -> None:
        class FailingSecondRemove(InMemoryKeyValueStore):
            removes = 0

            def remove(self, key: str) -> None:
                self.removes += 1
                if self.removes == 2:
                    raise OSError(5, "Input/output error")
                super().remove(key)

        tier = PersistentTierStore(FailingSecondRemove())
        fill(tier, events=3, batches=0)
        exporter = Exporter(tier, sink)

        with pytest.raises(StoreWriteFailure):
            await exporter.export_and_clear(1)
        assert exporter.sequence_number == 1

        manifest = await exporter.export_and_clear(2)

        assert manifest.name == "dump_1_events_1_tsVals_0_ts_2.json"
        names = [name for name, _ in sink.snapshot()]
        assert names == ["dump_0_events_3_tsVals_0_ts_1.json", "dump_1_events_1_tsVals_0_ts_2.json"]
        events = [json.loads(e)["value"] for e in json.loads(sink.snapshot()[1][1])["events"]]
        assert events == ["e0"]
        assert tier.count(StreamId.EVENTS) == 0
        assert tier.audit(StreamId.EVENTS)["missing"] == []
