"""
Per-stream counts of entries held in the persistent tier.

The counts live in the key-value store itself under fixed keys, so they
survive restarts together with the entries they index.
"""

from .interfaces import KeyValueStore
from .logger import get_logger
from .models import StreamId


class KeyedCounter:
    """Persisted entry count per stream. Callers write the entry first, then increment."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.logger = get_logger("KeyedCounter")

    def count(self, stream: StreamId) -> int:
        """
        Stored count; a missing or corrupted value reads as 0.

        Parsing is strict on purpose: only a whole decimal integer is a count,
        so "5abc" or "3.0" read as 0 rather than a numeric prefix.        """
        raw = self.store.get(stream.counter_key)
        if raw is None:
            return 0
        try:
            value = int(raw)
        except (TypeError, ValueError):
            self.logger.debug(f"Counter {stream.counter_key} holds non-numeric {raw!r}, reading as 0")
            return 0
        if value < 0:
            self.logger.debug(f"Counter {stream.counter_key} holds negative {value}, reading as 0")
            return 0
        return value

    def increment(self, stream: StreamId) -> int:
        """Add one to the stream count and return the new value."""
        value = self.count(stream) + 1
        self.store.set(stream.counter_key, str(value))
        return value

    def set(self, stream: StreamId, value: int) -> None:
        """Overwrite the stream count; used to shrink it while entries are removed."""
        if value < 0:
            raise ValueError(f"Counter value must be non-negative, got {value}")
        self.store.set(stream.counter_key, str(value))

    def reset(self, stream: StreamId) -> None:
        self.set(stream, 0)

    def combined(self) -> int:
        """Entries across both streams."""
        return self.count(StreamId.EVENTS) + self.count(StreamId.TSVALS)
