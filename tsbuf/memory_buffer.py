"""
Memory buffer (tier 0): samples waiting to be promoted as one batch.
When size reaches capacity the owner drains it and promotes the batch.
"""

from collections import deque
from pathlib import Path
from typing import Deque, List, Optional

from .logger import get_logger
from .models import Sample
from .wal_manager import WALManager


class MemoryBuffer:
    """Ordered in-process sample buffer with a fixed capacity and an optional WAL."""

    def __init__(self, capacity: int = 30, wal_dir: Optional[str] = None, debug: bool = False, config=None):
        # Use config values if available, otherwise use parameters
        if config is not None:
            self.capacity = config.scheduler.memory_buffer_capacity
            self.wal_enabled = config.memory_buffer.wal_enabled and wal_dir is not None
        else:
            self.capacity = capacity
            self.wal_enabled = wal_dir is not None
        if self.capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {self.capacity}")

        self._samples: Deque[Sample] = deque()
        self._pending_segments: List[int] = []
        self.debug = debug
        self.logger = get_logger("MemoryBuffer")

        self.wal_manager = WALManager(Path(wal_dir), "buffer") if self.wal_enabled else None
        self._recover_from_wal()

    def _recover_from_wal(self):
        """Reload samples that were buffered but never promoted before the last shutdown."""
        if not self.wal_manager:
            return
        recovered = list(self.wal_manager.recover_samples())
        if recovered:
            self._samples.extend(recovered)
            self.logger.info(f"Recovered {len(recovered)} buffered samples from WAL")
            if self.debug:
                print(f"MemoryBuffer: Recovered {len(recovered)} samples")

    def append(self, sample: Sample):
        """Buffer one sample, writing it to the WAL first when enabled."""
        if self.wal_manager:
            self.wal_manager.write_samples([sample])
        self._samples.append(sample)

    def size(self) -> int:
        return len(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def is_full(self) -> bool:
        return len(self._samples) >= self.capacity

    def drain(self) -> List[Sample]:
        """
        Hand over every buffered sample and empty the buffer.

        WAL segments stay on disk until confirm_promoted(); if promotion fails
        call restore() with the same list.
        """
        drained = list(self._samples)
        self._samples.clear()
        if self.wal_manager:
            self._pending_segments = self.wal_manager.seal()
        return drained

    def restore(self, samples: List[Sample]):
        """Put a drained batch back in front of anything buffered since."""
        self._samples.extendleft(reversed(samples))
        self._pending_segments = []
        self.logger.warning(f"Re-buffered {len(samples)} samples after failed promotion")

    def confirm_promoted(self):
        """The drained batch is durable in the next tier; release its WAL segments."""
        if self.wal_manager and self._pending_segments:
            self.wal_manager.confirm_segments_safe_to_delete(self._pending_segments)
            self.wal_manager.cleanup_confirmed_segments()
        self._pending_segments = []

    def discard(self) -> int:
        """Drop every buffered sample, including WAL copies."""
        dropped = len(self._samples)
        self.drain()
        self.confirm_promoted()
        return dropped

    def get_stats(self) -> dict:
        stats = {
            "tier_name": "memory",
            "buffered_samples": len(self._samples),
            "capacity": self.capacity,
            "capacity_used_pct": (len(self._samples) / self.capacity) * 100,
        }
        if self.wal_manager:
            wal_stats = self.wal_manager.get_stats()
            stats["wal_segments"] = wal_stats["segment_count"]
            stats["wal_size_mb"] = wal_stats["total_size_mb"]
        return stats

    def close(self):
        if self.wal_manager:
            self.wal_manager.close()
