"""
Promotion scheduler: periodic ticks drive samples through the tiers.

Each tick samples a value into the memory buffer; a full buffer is promoted
to the persistent tier as one batch; a persistent tier holding at least
``combined_persistent_threshold`` entries is exported and cleared. User
actions (log_event, dump_now) run between ticks under the same lock.
"""

import asyncio
import time
from typing import Callable, Optional

import numpy as np

from .errors import ExportFailure, StoreWriteFailure
from .logger import get_logger
from .models import Event, ExportManifest, PipelineState, Sample, StreamId, TickOutcome, serialize_batch
from .session import BufferSession


ValueSource = Callable[[], float]
Clock = Callable[[], int]


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def random_value_source(seed: Optional[int] = None) -> ValueSource:
    """Mock measurement: uniform floats in [0, 1)."""
    rng = np.random.default_rng(seed)
    return lambda: float(rng.random())


class PromotionScheduler:
    """Drives ticks and user actions against one BufferSession."""

    def __init__(self, session: BufferSession, value_source: Optional[ValueSource] = None,
                 clock: Optional[Clock] = None):
        self.session = session
        self.value_source = value_source or random_value_source()
        self.clock = clock or epoch_ms
        self.logger = get_logger("PromotionScheduler")

        settings = session.config.scheduler
        self.tick_interval_ms = settings.tick_interval_ms
        self.event_threshold = settings.event_threshold
        self.combined_threshold = settings.combined_persistent_threshold
        self.auto_export_enabled = settings.auto_export_enabled
        self.unify_export_triggers = settings.unify_export_triggers
        self.rebuffer_on_store_failure = session.config.persistent_tier.rebuffer_on_store_failure

        # Serializes ticks, events and dumps; export awaits happen while it is held
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

        self.ticks = 0
        self.tick_faults = 0
        self.dropped_batches = 0
        self._auto_export_failures = 0

    @property
    def state(self) -> PipelineState:
        return self.session.state

    # -- periodic path ----------------------------------------------------------

    async def tick(self, now_ms: Optional[int] = None) -> TickOutcome:
        """
        Run one tick of the threshold cascade.

        Raises StoreWriteFailure when promotion is rejected (the batch is
        re-buffered unless configured otherwise) and ExportFailure when an
        automatic export is not acknowledged.
        """
        async with self._lock:
            now = now_ms if now_ms is not None else self.clock()
            self.ticks += 1
            buffer = self.session.buffer

            buffer.append(Sample(timestamp=now, value=self.value_source()))
            if buffer.size() < buffer.capacity:
                return TickOutcome.BUFFERED

            self._promote_buffer()

            if self.session.counter.combined() < self.combined_threshold:
                return TickOutcome.PROMOTED
            if not self.auto_export_enabled:
                self.logger.debug("Persistent tier at threshold but auto-export is disabled")
                return TickOutcome.PROMOTED

            await self.session.exporter.export_and_clear(now)
            return TickOutcome.EXPORTED

    def _promote_buffer(self):
        """Drain the memory buffer into one ts entry; undo the drain if the write is rejected."""
        buffer = self.session.buffer
        samples = buffer.drain()
        self.logger.info(f"Flushing {len(samples)} ts val entries to persistent tier")
        try:
            self.session.tier.store_entry(StreamId.TSVALS, serialize_batch(samples))
        except StoreWriteFailure as e:
            if self.rebuffer_on_store_failure:
                buffer.restore(samples)
            else:
                buffer.confirm_promoted()
                self.dropped_batches += 1
                self.logger.error(f"Dropped batch of {len(samples)} samples: {e}")
            raise
        buffer.confirm_promoted()

    # -- user actions -----------------------------------------------------------

    async def log_event(self, value: str, now_ms: Optional[int] = None) -> int:
        """
        Store one event and return its index.

        An automatic export attempted afterwards never raises here: the event is
        already stored, so failures are logged and counted instead.
        """
        async with self._lock:
            now = now_ms if now_ms is not None else self.clock()
            self.logger.info("Logging event to persistent tier")
            index = self.session.tier.store_entry(StreamId.EVENTS, Event(timestamp=now, value=value).serialize())

            event_count = self.session.counter.count(StreamId.EVENTS)
            events_over = event_count >= self.event_threshold
            if events_over:
                self.logger.warning(f"Events exceed max threshold ({event_count} >= {self.event_threshold})")

            combined_over = self.session.counter.combined() >= self.combined_threshold
            if self.auto_export_enabled and (combined_over or (events_over and self.unify_export_triggers)):
                try:
                    await self.session.exporter.export_and_clear(now)
                except ExportFailure as e:
                    self._auto_export_failures += 1
                    self.logger.error(f"Automatic export after event failed: {e}")
            return index

    async def dump_now(self, now_ms: Optional[int] = None) -> ExportManifest:
        """Export and clear the persistent tier regardless of thresholds."""
        async with self._lock:
            now = now_ms if now_ms is not None else self.clock()
            self.logger.info("User triggered dump")
            return await self.session.exporter.export_and_clear(now)

    # -- loop -------------------------------------------------------------------

    async def run(self, max_ticks: Optional[int] = None):
        """
        Tick every tick_interval_ms until stopped (or max_ticks ticks ran).
        A tick that raises is logged and the loop carries on. Once stop() was
        called the loop does not tick again until start() re-arms it.
        """
        loop = asyncio.get_running_loop()
        interval = self.tick_interval_ms / 1000
        next_deadline = loop.time()
        completed = 0

        self.logger.info(f"Scheduler running every {self.tick_interval_ms}ms")
        while not self._stopping and (max_ticks is None or completed < max_ticks):
            try:
                await self.tick()
            except (StoreWriteFailure, ExportFailure) as e:
                self.tick_faults += 1
                self.logger.error(f"Tick {self.ticks} failed: {e}")
            except Exception as e:
                self.tick_faults += 1
                self.logger.error(f"Unexpected fault in tick {self.ticks}: {e}", exc_info=True)
            completed += 1

            # Fixed-rate schedule; a slow tick shortens the following sleep
            next_deadline += interval
            await asyncio.sleep(max(0.0, next_deadline - loop.time()))

        self.logger.info(f"Scheduler stopped after {completed} ticks")

    def start(self) -> asyncio.Task:
        """Run the tick loop in a background task."""
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self.run(), name="tsbuf-scheduler")
        return self._task

    async def stop(self):
        """Stop ticking after the current tick (an in-flight export runs to completion)."""
        self._stopping = True
        if self._task is not None:
            await self._task
            self._task = None

    async def get_stats(self) -> dict:
        """Get statistics across all tiers."""
        return {
            "ticks": self.ticks,
            "tick_faults": self.tick_faults,
            "dropped_batches": self.dropped_batches,
            "state": self.state.value,
            "memory_tier": self.session.buffer.get_stats(),
            "persistent_tier": self.session.tier.get_stats(),
            "dumps": self.session.exporter.sequence_number,
        }

    def degraded_status(self) -> dict:
        status = self.session.exporter.degraded_status()
        status["auto_export_failures_after_event"] = self._auto_export_failures
        status["tick_faults"] = self.tick_faults
        status["dropped_batches"] = self.dropped_batches
        return status

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        await self.session.close()
