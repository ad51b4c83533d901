"""
tsbuf: two-tier event buffering

Samples accumulate in memory, are promoted in batches to a local key-value
store, and the store is exported to an external sink and cleared once it
holds enough entries:

- Memory buffer: bounded, optionally WAL-protected (tier 0)
- Persistent tier: densely indexed entries plus persisted counters (tier 1)
- Export sink: file, HTTP endpoint or in-memory (tier 2)

Data flows: Memory -> Persistent -> Export, clearing only on acknowledgment.
"""

from .config import BufferConfig, get_config, reset_config
from .counter import KeyedCounter
from .errors import ExportFailure, StoreReadFailure, StoreWriteFailure, TierError
from .exporter import Exporter
from .interfaces import ExportSink, KeyValueStore
from .kv_store import FileKeyValueStore, InMemoryKeyValueStore
from .memory_buffer import MemoryBuffer
from .models import Event, ExportManifest, PipelineState, Sample, StreamId, TickOutcome
from .persistent_tier import PersistentTierStore, entry_key
from .scheduler import PromotionScheduler, random_value_source
from .session import BufferSession
from .sinks import FileExportSink, HttpExportSink, InMemoryExportSink

__all__ = [
    'BufferConfig',
    'get_config',
    'reset_config',
    'KeyedCounter',
    'TierError',
    'StoreWriteFailure',
    'StoreReadFailure',
    'ExportFailure',
    'Exporter',
    'ExportSink',
    'KeyValueStore',
    'InMemoryKeyValueStore',
    'FileKeyValueStore',
    'MemoryBuffer',
    'Sample',
    'Event',
    'ExportManifest',
    'PipelineState',
    'StreamId',
    'TickOutcome',
    'PersistentTierStore',
    'entry_key',
    'PromotionScheduler',
    'random_value_source',
    'BufferSession',
    'FileExportSink',
    'HttpExportSink',
    'InMemoryExportSink',
]
