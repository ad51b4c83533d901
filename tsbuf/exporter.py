"""
Export-and-clear: promote the whole persistent tier to the export sink.

The tier is cleared only after the sink acknowledged the dump. A failed or
refused export leaves every entry, both counters and the sequence number as
they were, so the next attempt exports the same entries plus anything added
since.
"""

import asyncio
import time
from typing import Optional

from .errors import ExportFailure, StoreWriteFailure
from .interfaces import ExportSink
from .logger import get_logger
from .models import ExportManifest, StreamId
from .persistent_tier import PersistentTierStore


class Exporter:
    """Runs export-and-clear sequences one at a time against a single sink."""

    def __init__(self, tier: PersistentTierStore, sink: ExportSink,
                 payload_format: str = "double_encoded", debug: bool = False):
        self.tier = tier
        self.sink = sink
        self.payload_format = payload_format
        self.debug = debug
        self.logger = get_logger("Exporter")

        # Process-lifetime only; restarts begin at 0 again
        self.sequence_number = 0

        self._lock = asyncio.Lock()
        self._in_flight = False

        self._export_failures = 0
        self._last_failure: Optional[str] = None
        self._last_failure_at: Optional[float] = None

    @property
    def in_flight(self) -> bool:
        """True while an export is awaiting the sink."""
        return self._in_flight

    def build_manifest(self, timestamp: int) -> ExportManifest:
        """Read every stored entry of both streams. Raises StoreReadFailure on any gap."""
        return ExportManifest(
            sequence_number=self.sequence_number,
            timestamp=timestamp,
            events=self.tier.read_stream(StreamId.EVENTS),
            ts_vals=self.tier.read_stream(StreamId.TSVALS),
        )

    async def export_and_clear(self, timestamp: int) -> ExportManifest:
        """
        Export the persistent tier and clear it once the sink acknowledges.

        Concurrent callers queue on the lock; each one exports whatever the tier
        holds when its turn comes (possibly nothing).

        Raises:
            StoreReadFailure: an entry below a stream count could not be read.
            ExportFailure: the sink refused or raised.
            StoreWriteFailure: the dump was delivered but clearing stopped
                partway. The streams stay dense over the entries not yet
                removed, so they are exported again (duplicated, never lost)
                under the next sequence number.
        """
        async with self._lock:
            manifest = self.build_manifest(timestamp)
            payload = manifest.to_payload(self.payload_format)
            name = manifest.name
            self.logger.info(
                f"Dumping {manifest.event_count} events and {manifest.tsval_count} ts batches as {name}"
            )

            self._in_flight = True
            try:
                acknowledged = await self.sink.export(name, payload)
            except Exception as e:
                self._record_failure(name, f"{type(e).__name__}: {e}")
                raise ExportFailure(name, f"sink raised {type(e).__name__}: {e}") from e
            finally:
                self._in_flight = False

            if not acknowledged:
                self._record_failure(name, "not acknowledged")
                raise ExportFailure(name)

            self.sequence_number += 1

            # The delivered name is used up even if clearing fails below
            try:
                self.tier.clear_stream(StreamId.TSVALS, manifest.tsval_count)
                self.tier.clear_stream(StreamId.EVENTS, manifest.event_count)
            except StoreWriteFailure as e:
                self.logger.error(f"Export {name} delivered but clearing failed: {e}")
                raise

            self.logger.info(f"Export {name} acknowledged ({len(payload):,} bytes); persistent tier cleared")
            if self.debug:
                print(f"Exporter: {name} done, next sequence number {self.sequence_number}")
            return manifest

    def _record_failure(self, name: str, reason: str):
        self._export_failures += 1
        self._last_failure = f"{name}: {reason}"
        self._last_failure_at = time.time()
        self.logger.error(f"Export {name} failed ({reason}); persistent tier left untouched")

    def degraded_status(self) -> dict:
        """Return a minimal export failure snapshot."""
        return {
            "export_failures": self._export_failures,
            "last_failure": self._last_failure,
            "last_failure_at": self._last_failure_at,
        }
