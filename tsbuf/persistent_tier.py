"""
Persistent tier (tier 1): namespaced, densely indexed entries in a local
key-value store.

Entry keys are "<namespace>-<index>" where index is the stream count before
the write, so for each stream the live keys are exactly 0..count-1.
"""

from typing import List, Optional

from .counter import KeyedCounter
from .errors import StoreReadFailure, StoreWriteFailure
from .interfaces import KeyValueStore
from .logger import get_logger
from .models import StreamId


def entry_key(namespace: str, index: int) -> str:
    """Key of one stored entry, e.g. entry_key("ts", 3) == "ts-3"."""
    if index < 0:
        raise ValueError(f"Entry index must be non-negative, got {index}")
    return f"{namespace}-{index}"


class PersistentTierStore:
    """Adapter that maps (namespace, index) onto a raw key-value store."""

    def __init__(self, store: KeyValueStore, counter: Optional[KeyedCounter] = None, debug: bool = False):
        self.store = store
        self.counter = counter or KeyedCounter(store)
        self.debug = debug
        self.logger = get_logger("PersistentTierStore")

    # -- raw capability -------------------------------------------------------

    def set(self, namespace: str, index: int, value: str) -> None:
        """Write one entry after probing capacity. Raises StoreWriteFailure on rejection."""
        key = entry_key(namespace, index)
        nbytes = len(key) + len(value.encode("utf-8"))
        if not self.store.has_capacity(nbytes):
            raise StoreWriteFailure(key, f"capacity probe refused {nbytes} bytes")
        try:
            self.store.set(key, value)
        except StoreWriteFailure:
            raise
        except OSError as e:
            raise StoreWriteFailure(key, str(e)) from e

    def get(self, namespace: str, index: int) -> Optional[str]:
        key = entry_key(namespace, index)
        try:
            return self.store.get(key)
        except (OSError, UnicodeDecodeError) as e:
            raise StoreReadFailure(key, str(e)) from e

    def remove(self, namespace: str, index: int) -> None:
        key = entry_key(namespace, index)
        try:
            self.store.remove(key)
        except OSError as e:
            raise StoreWriteFailure(key, f"remove failed: {e}") from e

    # -- stream operations ----------------------------------------------------

    def count(self, stream: StreamId) -> int:
        return self.counter.count(stream)

    def store_entry(self, stream: StreamId, value: str) -> int:
        """
        Append one entry to a stream and return its index.

        The counter is incremented only after the entry write succeeded, so a
        failure in between under-counts and the stray entry is overwritten by
        the next write at the same index.
        """
        index = self.counter.count(stream)
        self.set(stream.namespace, index, value)
        try:
            self.counter.increment(stream)
        except OSError as e:
            raise StoreWriteFailure(stream.counter_key, str(e)) from e
        self.logger.debug(f"Stored {entry_key(stream.namespace, index)} ({len(value)} chars)")
        return index

    def read_stream(self, stream: StreamId) -> List[str]:
        """All entries of a stream in index order. Any gap raises StoreReadFailure."""
        entries = []
        for index in range(self.counter.count(stream)):
            value = self.get(stream.namespace, index)
            if value is None:
                raise StoreReadFailure(entry_key(stream.namespace, index))
            entries.append(value)
        return entries

    def clear_stream(self, stream: StreamId, count: Optional[int] = None) -> int:
        """
        Remove entries count-1 down to 0, leaving the stream counter at 0.

        count defaults to the current counter; the exporter passes the number it
        actually read so exactly the exported entries are removed.

        The counter is lowered to each index before that entry is removed, so
        if a step fails the stream is still dense at 0..index: the survivors are
        readable (and exported again) and a stray entry at the counter is
        overwritten by the next write.
        """
        if count is None:
            count = self.counter.count(stream)
        for index in reversed(range(count)):
            try:
                self.counter.set(stream, index)
            except OSError as e:
                raise StoreWriteFailure(stream.counter_key, str(e)) from e
            self.remove(stream.namespace, index)
        if count == 0:
            try:
                self.counter.reset(stream)
            except OSError as e:
                raise StoreWriteFailure(stream.counter_key, str(e)) from e
        self.logger.debug(f"Cleared {count} entries from namespace '{stream.namespace}'")
        return count

    def audit(self, stream: StreamId) -> dict:
        """
        Compare stored keys of a stream with its counter.

        ``orphans`` are indices at or beyond the count (a write whose increment
        never happened); ``missing`` are indices below the count with no entry.
        """
        count = self.counter.count(stream)
        prefix = f"{stream.namespace}-"
        present = set()
        for key in self.store.keys():
            if key.startswith(prefix) and key[len(prefix):].isdigit():
                present.add(int(key[len(prefix):]))
        return {
            "stream": stream.value,
            "count": count,
            "orphans": sorted(i for i in present if i >= count),
            "missing": sorted(i for i in range(count) if i not in present),
        }

    def is_dense(self, stream: StreamId) -> bool:
        """True when stored keys are exactly 0..count-1."""
        report = self.audit(stream)
        return not report["orphans"] and not report["missing"]

    def get_stats(self) -> dict:
        return {
            "tier_name": "persistent",
            "event_count": self.counter.count(StreamId.EVENTS),
            "tsval_count": self.counter.count(StreamId.TSVALS),
            "store": self.store.get_stats(),
        }
