"""
Session wiring: the Memory -> Persistent -> Export tier chain and every
piece of pipeline state, held in one object instead of module globals.
"""

from pathlib import Path
from typing import Optional

from .config import BufferConfig, get_config
from .counter import KeyedCounter
from .exporter import Exporter
from .interfaces import ExportSink, KeyValueStore
from .kv_store import FileKeyValueStore, InMemoryKeyValueStore
from .logger import get_logger
from .memory_buffer import MemoryBuffer
from .models import PipelineState, StreamId
from .persistent_tier import PersistentTierStore
from .sinks import FileExportSink, HttpExportSink, InMemoryExportSink


class BufferSession:
    """
    Owns the memory buffer, the persistent tier with its counters, and the
    exporter. The scheduler passes this object to every operation.
    """

    def __init__(self, store: KeyValueStore, sink: ExportSink, config: Optional[BufferConfig] = None,
                 wal_dir: Optional[str] = None, debug: Optional[bool] = None):
        self.config = config if config is not None else get_config()
        self.debug = debug if debug is not None else self.config.debug.enabled
        self.logger = get_logger("BufferSession")

        self.store = store
        self.sink = sink
        self.counter = KeyedCounter(store)
        self.tier = PersistentTierStore(store, self.counter, debug=self.debug)
        self.buffer = MemoryBuffer(wal_dir=wal_dir, debug=self.debug, config=self.config)
        self.exporter = Exporter(
            self.tier, sink,
            payload_format=self.config.export.payload_format,
            debug=self.debug
        )

        self.logger.info("Initialized Memory -> Persistent -> Export tier chain")
        self._audit_on_startup()

    @classmethod
    def from_config(cls, config: Optional[BufferConfig] = None, sink: Optional[ExportSink] = None,
                    store: Optional[KeyValueStore] = None) -> "BufferSession":
        """Build store, sink and WAL locations from configuration; explicit arguments win."""
        config = config if config is not None else get_config()
        base_path = config.get_storage_path()
        base_path.mkdir(parents=True, exist_ok=True)

        if store is None:
            if config.persistent_tier.backend == "memory":
                store = InMemoryKeyValueStore(max_bytes=config.persistent_tier.max_store_bytes)
            else:
                store = FileKeyValueStore(
                    str(config.get_store_path()),
                    max_bytes=config.persistent_tier.max_store_bytes,
                    min_free_disk_mb=config.persistent_tier.min_free_disk_mb,
                    debug=config.debug.enabled
                )

        if sink is None:
            if config.export.sink == "http":
                sink = HttpExportSink(config.export.http_url, timeout_s=config.export.http_timeout_s)
            elif config.export.sink == "memory":
                sink = InMemoryExportSink()
            else:
                sink = FileExportSink(str(config.get_export_path()), debug=config.debug.enabled)

        wal_dir = str(config.get_wal_path()) if config.memory_buffer.wal_enabled else None
        return cls(store, sink, config=config, wal_dir=wal_dir)

    def _audit_on_startup(self):
        """Report entries left behind by an interrupted write or clear."""
        for stream in StreamId:
            report = self.tier.audit(stream)
            if report["orphans"]:
                self.logger.warning(
                    f"Stream {stream.value}: {len(report['orphans'])} uncounted entries at indices "
                    f"{report['orphans']} will be overwritten"
                )
            if report["missing"]:
                self.logger.error(
                    f"Stream {stream.value}: entries missing at indices {report['missing']} "
                    f"(count={report['count']}); exports will fail until repaired"
                )

    @property
    def state(self) -> PipelineState:
        if self.exporter.in_flight:
            return PipelineState.EXPORT_PENDING
        if self.counter.combined() > 0:
            return PipelineState.PERSISTED_PARTIAL
        if self.buffer.size() > 0:
            return PipelineState.ACCUMULATING
        return PipelineState.IDLE

    def discard_all(self) -> dict:
        """Start over: drop buffered samples and every persistent-tier entry without exporting."""
        dropped_samples = self.buffer.discard()
        dropped_events = self.tier.clear_stream(StreamId.EVENTS)
        dropped_tsvals = self.tier.clear_stream(StreamId.TSVALS)
        self.logger.warning(
            f"Discarded {dropped_samples} buffered samples, {dropped_events} events, {dropped_tsvals} ts batches"
        )
        return {"samples": dropped_samples, "events": dropped_events, "tsvals": dropped_tsvals}

    def snapshot(self) -> dict:
        """Counters shown to an operator: stored events, buffered and stored values, dumps."""
        return {
            "events_stored": self.counter.count(StreamId.EVENTS),
            "values_buffered": self.buffer.size(),
            "value_batches_stored": self.counter.count(StreamId.TSVALS),
            "dumps": self.exporter.sequence_number,
            "state": self.state.value,
        }

    async def close(self):
        self.buffer.close()
        self.store.close()
        await self.sink.close()
        self.logger.info("Session closed")
