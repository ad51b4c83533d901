"""
WAL (Write-Ahead Log) manager for the memory buffer using Arrow IPC streams.
Buffered samples are fsync'd to segment files so a restart does not lose them.
"""

import os
from pathlib import Path
from typing import List, Optional, Iterator
import pyarrow as pa
import pyarrow.ipc as ipc

from .logger import get_logger
from .models import Sample


SAMPLE_SCHEMA = pa.schema([
    ('timestamp', pa.int64()),
    ('value', pa.float64()),
])


def samples_to_batch(samples: List[Sample]) -> pa.RecordBatch:
    """Columnar form of a list of samples."""
    return pa.RecordBatch.from_pydict({
        'timestamp': [s.timestamp for s in samples],
        'value': [float(s.value) for s in samples],
    }, schema=SAMPLE_SCHEMA)


def batch_to_samples(batch: pa.RecordBatch) -> List[Sample]:
    return [Sample(timestamp=row['timestamp'], value=row['value']) for row in batch.to_pylist()]


class WALSegment:
    """A single WAL segment file using Arrow IPC stream format."""

    def __init__(self, file_path: Path):
        self.file_path = file_path
        self.file_handle = None
        self.writer = None
        self.reader = None
        self.is_open = False
        self.logger = get_logger("WALSegment")

    def open_for_write(self, schema: pa.Schema):
        """Open WAL segment for writing."""
        self.file_handle = open(self.file_path, 'ab')
        self.writer = ipc.new_stream(self.file_handle, schema)
        self.is_open = True

    def write_batch(self, batch: pa.RecordBatch):
        """Write a batch to the WAL segment and fsync."""
        if not self.is_open or not self.writer:
            raise RuntimeError("WAL segment not open for writing")

        self.writer.write_batch(batch)

        # Force sync to disk (durability guarantee)
        self.file_handle.flush()
        os.fsync(self.file_handle.fileno())

    def open_for_read(self):
        """Open WAL segment for reading."""
        if not self.file_path.exists():
            return

        self.file_handle = open(self.file_path, 'rb')
        try:
            self.reader = ipc.open_stream(self.file_handle)
        except pa.ArrowInvalid as e:
            # Crash before the schema message was flushed
            self.logger.warning(f"WAL segment {self.file_path.name} has no readable header: {e}")
            self.reader = None
        self.is_open = True

    def read_batches(self) -> Iterator[pa.RecordBatch]:
        """Read all batches from the WAL segment."""
        if not self.is_open or not self.reader:
            return

        try:
            for batch in self.reader:
                yield batch
        except (pa.ArrowInvalid, OSError) as e:
            # A torn trailing write loses at most the sample being appended
            self.logger.warning(f"WAL segment {self.file_path.name} read stopped early: {e}")
            return

    def close(self):
        """Close WAL segment and cleanup resources."""
        if self.writer:
            self.writer.close()
            self.writer = None

        self.reader = None

        if self.file_handle:
            self.file_handle.close()
            self.file_handle = None

        self.is_open = False

    def delete(self):
        """Delete the WAL segment file."""
        self.close()
        if self.file_path.exists():
            self.file_path.unlink()


class WALManager:
    """Manages the WAL segments of one memory buffer."""

    def __init__(self, wal_dir: Path, buffer_name: str):
        self.wal_dir = Path(wal_dir)
        self.buffer_name = buffer_name
        self.wal_dir.mkdir(parents=True, exist_ok=True)

        self.active_segment: Optional[WALSegment] = None
        self.segment_counter = 0
        self.logger = get_logger("WALManager")

        # Transactional cleanup: segments are deleted only once promotion is confirmed
        self.segments_pending_disposal: List[int] = []
        self.confirmed_safe_segments: List[int] = []

    def _get_segment_path(self, segment_id: int) -> Path:
        """Get path for a WAL segment."""
        return self.wal_dir / f"{self.buffer_name}_wal_{segment_id:06d}.arrow"

    def _discover_existing_segments(self) -> List[int]:
        """Find existing WAL segments."""
        segment_ids = []
        for file_path in self.wal_dir.glob(f"{self.buffer_name}_wal_*.arrow"):
            try:
                segment_ids.append(int(file_path.stem.split('_')[-1]))
            except ValueError:
                continue
        return sorted(segment_ids)

    def create_new_segment(self):
        """Create a new active WAL segment."""
        if self.active_segment:
            self.active_segment.close()

        existing_segments = self._discover_existing_segments()
        if existing_segments:
            self.segment_counter = max(existing_segments) + 1
        else:
            self.segment_counter = 0

        segment_path = self._get_segment_path(self.segment_counter)
        self.active_segment = WALSegment(segment_path)
        self.active_segment.open_for_write(SAMPLE_SCHEMA)

    def write_samples(self, samples: List[Sample]):
        """Write samples to the active WAL segment."""
        if not self.active_segment:
            self.create_new_segment()
        self.active_segment.write_batch(samples_to_batch(samples))

    def recover_samples(self) -> Iterator[Sample]:
        """Recover all samples from existing WAL segments, oldest first."""
        for segment_id in self._discover_existing_segments():
            segment = WALSegment(self._get_segment_path(segment_id))
            try:
                segment.open_for_read()
                for batch in segment.read_batches():
                    yield from batch_to_samples(batch)
            finally:
                segment.close()

    def seal(self) -> List[int]:
        """
        Close the active segment and mark every existing segment for disposal
        (transactional step 1). Later writes start a fresh segment.
        """
        if self.active_segment:
            self.active_segment.close()
            self.active_segment = None
        segment_ids = self._discover_existing_segments()
        for segment_id in segment_ids:
            if segment_id not in self.segments_pending_disposal:
                self.segments_pending_disposal.append(segment_id)
        return segment_ids

    def confirm_segments_safe_to_delete(self, segment_ids: List[int]):
        """Confirm segments are safe to delete (transactional step 2)."""
        for segment_id in segment_ids:
            if segment_id not in self.confirmed_safe_segments:
                self.confirmed_safe_segments.append(segment_id)

    def cleanup_confirmed_segments(self) -> int:
        """Remove only confirmed safe segments (transactional step 3)."""
        segments_to_remove = [
            seg_id for seg_id in self.segments_pending_disposal
            if seg_id in self.confirmed_safe_segments
        ]

        for segment_id in segments_to_remove:
            WALSegment(self._get_segment_path(segment_id)).delete()
            self.segments_pending_disposal.remove(segment_id)
            self.confirmed_safe_segments.remove(segment_id)

        if segments_to_remove:
            self.logger.debug(f"Removed {len(segments_to_remove)} confirmed WAL segments")
        return len(segments_to_remove)

    def close(self):
        """Close WAL manager and active segment."""
        if self.active_segment:
            self.active_segment.close()
            self.active_segment = None

    def get_stats(self) -> dict:
        """Get WAL statistics."""
        existing_segments = self._discover_existing_segments()
        total_size_mb = 0

        for segment_id in existing_segments:
            segment_path = self._get_segment_path(segment_id)
            if segment_path.exists():
                total_size_mb += segment_path.stat().st_size / (1024 * 1024)

        return {
            "segment_count": len(existing_segments),
            "total_size_mb": total_size_mb,
            "active_segment": self.segment_counter if self.active_segment else None,
            "pending_disposal": len(self.segments_pending_disposal),
            "confirmed_safe": len(self.confirmed_safe_segments)
        }
