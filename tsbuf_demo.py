#!/usr/bin/env python3
"""
tsbuf Demo
Drives the Memory -> Persistent -> Export pipeline with mock measurements
and periodic user events, then reports what ended up where.

Usage:
    python tsbuf_demo.py 200                      # 200 ticks at the configured interval
    python tsbuf_demo.py 5000 --fast              # Tick back-to-back on a simulated clock
    python tsbuf_demo.py 300 --events-every 7     # Log a user event every 7th tick
    python tsbuf_demo.py 300 --sink memory        # Keep dumps in memory instead of files
    python tsbuf_demo.py 100 --no-final-dump      # Leave the persistent tier as-is at exit
"""

import asyncio
import argparse
import itertools
import shutil
import time
from pathlib import Path

import psutil

from tsbuf.config import BufferConfig
from tsbuf.errors import ExportFailure, StoreWriteFailure
from tsbuf.logger import BufferLogger, get_logger
from tsbuf.scheduler import PromotionScheduler, epoch_ms, random_value_source
from tsbuf.session import BufferSession


def get_memory_usage():
    """Get current process and system memory usage."""
    process = psutil.Process()
    memory_info = process.memory_info()
    return {
        'rss_mb': memory_info.rss / (1024 * 1024),
        'system_available_mb': psutil.virtual_memory().available / (1024 * 1024)
    }


def print_progress(tick: int, total: int, session: BufferSession, started: float):
    snap = session.snapshot()
    memory = get_memory_usage()
    elapsed = time.time() - started
    rate = tick / elapsed if elapsed > 0 else 0
    print(f"  Tick {tick:5d}/{total} "
          f"| {rate:7.0f} ticks/s "
          f"| Buffered: {snap['values_buffered']:3d} "
          f"| Batches: {snap['value_batches_stored']:3d} "
          f"| Events: {snap['events_stored']:3d} "
          f"| Dumps: {snap['dumps']:4d} "
          f"| {snap['state']:<17} "
          f"| RAM: {memory['rss_mb']:5.0f}MB")


async def demo_tsbuf(ticks: int, events_every: int, fast: bool, sink: str, final_dump: bool,
                     storage_dir: str, seed: int):
    """Main demonstration function."""
    storage_path = Path(storage_dir)
    if storage_path.exists():
        print(f"🧹 Cleaning previous storage: {storage_path}")
        shutil.rmtree(storage_path)
    storage_path.mkdir(parents=True, exist_ok=True)

    config = BufferConfig(overrides={"storage": {"base_path": str(storage_path)}, "export": {"sink": sink}})
    log_dir = config.get_logs_path()
    BufferLogger.setup(log_dir=str(log_dir), log_level=config.logging.level,
                       console_output=config.logging.console_output)
    logger = get_logger("BufferDemo")

    print("🚀 TSBUF DEMO")
    print("=" * 50)
    print(f"📊 Ticks: {ticks:,} ({'simulated clock' if fast else f'every {config.scheduler.tick_interval_ms}ms'})")
    print(f"📁 Storage: {storage_path}")
    print(f"📝 Logs: {BufferLogger.get_log_file()}")
    print(f"📊 Configuration:")
    print(f"   - Memory buffer: {config.scheduler.memory_buffer_capacity} samples")
    print(f"   - Export threshold: {config.scheduler.combined_persistent_threshold} entries")
    print(f"   - Event warning threshold: {config.scheduler.event_threshold}")
    print(f"   - Persistent backend: {config.persistent_tier.backend}, sink: {config.export.sink}")
    print()

    logger.info(f"=== Starting tsbuf demo: {ticks:,} ticks ===")

    session = BufferSession.from_config(config)
    clock = itertools.count(epoch_ms(), config.scheduler.tick_interval_ms).__next__ if fast else None
    report_every = max(1, ticks // 20)

    async with PromotionScheduler(session, value_source=random_value_source(seed), clock=clock) as scheduler:
        print("📥 TICKING")
        print("-" * 25)
        started = time.time()
        loop = asyncio.get_running_loop()
        next_deadline = loop.time()

        for tick in range(1, ticks + 1):
            try:
                await scheduler.tick()
            except (StoreWriteFailure, ExportFailure) as e:
                logger.error(f"Tick {tick} failed: {e}")

            if events_every and tick % events_every == 0:
                await scheduler.log_event(f"demo event at tick {tick}")

            if tick % report_every == 0 or tick == ticks:
                print_progress(tick, ticks, session, started)

            if not fast:
                next_deadline += scheduler.tick_interval_ms / 1000
                await asyncio.sleep(max(0.0, next_deadline - loop.time()))

        if final_dump:
            print(f"\n📤 FINAL DUMP")
            print("-" * 25)
            manifest = await scheduler.dump_now()
            print(f"  {manifest.name}")

        stats = await scheduler.get_stats()
        degraded = scheduler.degraded_status()

        print(f"\n📈 FINAL STATE")
        print("-" * 35)
        print(f"  Buffered samples: {stats['memory_tier']['buffered_samples']:6,}")
        print(f"  Stored batches:   {stats['persistent_tier']['tsval_count']:6,}")
        print(f"  Stored events:    {stats['persistent_tier']['event_count']:6,}")
        print(f"  Dumps exported:   {stats['dumps']:6,}")
        print(f"  Export failures:  {degraded['export_failures']:6,}")
        print(f"  Tick faults:      {degraded['tick_faults']:6,}")

        if hasattr(session.sink, "list_exports"):
            exports = session.sink.list_exports()
            total_bytes = sum(p.stat().st_size for p in exports)
            print(f"  Dump files:       {len(exports):6,} ({total_bytes:,} bytes in {config.get_export_path()})")

        final_memory = get_memory_usage()
        print(f"\n💾 MEMORY USAGE")
        print("-" * 20)
        print(f"  Process RAM: {final_memory['rss_mb']:.1f}MB")
        print(f"  System available: {final_memory['system_available_mb']:.1f}MB")

    logger.info("=== tsbuf demo completed ===")
    print(f"\n🎉 DEMO COMPLETED")


def main():
    """Parse arguments and run the demo."""
    parser = argparse.ArgumentParser(
        description="tsbuf demo - drive the buffering pipeline with mock data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("ticks", type=int, help="Number of ticks to run")
    parser.add_argument("--events-every", type=int, default=10,
                        help="Log a user event every N ticks (0 disables)")
    parser.add_argument("--fast", action="store_true", help="Tick back-to-back on a simulated clock")
    parser.add_argument("--sink", choices=["file", "memory"], default="file", help="Export sink")
    parser.add_argument("--no-final-dump", action="store_true", help="Skip the dump at exit")
    parser.add_argument("--storage", type=str, default="./tsbuf_demo_storage", help="Storage directory")
    parser.add_argument("--seed", type=int, help="Seed for the mock value source")

    args = parser.parse_args()

    if args.ticks <= 0:
        print("Error: Number of ticks must be positive")
        return
    if args.events_every < 0:
        print("Error: --events-every must not be negative")
        return

    try:
        asyncio.run(demo_tsbuf(
            ticks=args.ticks,
            events_every=args.events_every,
            fast=args.fast,
            sink=args.sink,
            final_dump=not args.no_final_dump,
            storage_dir=args.storage,
            seed=args.seed,
        ))
    except KeyboardInterrupt:
        print("\n⚠️  Demo interrupted by user")


if __name__ == "__main__":
    main()
