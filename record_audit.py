#!/usr/bin/env python3
"""
Record Audit - Track Sequential Values Through All Tiers
========================================================

Feeds sequentially numbered samples and events through
memory -> persistent -> export while the sink refuses exports at random,
then checks that every value was exported exactly once or is still
held by a tier.

Usage:
    python3 record_audit.py
    python3 record_audit.py --ticks 20000 --failure-rate 0.3
"""

import argparse
import asyncio
import itertools
import json
import shutil
import time
from collections import Counter
from pathlib import Path
from typing import Dict, List, Set

import numpy as np

from tsbuf.config import BufferConfig
from tsbuf.errors import ExportFailure
from tsbuf.logger import BufferLogger, get_logger
from tsbuf.models import StreamId, deserialize_batch
from tsbuf.scheduler import PromotionScheduler
from tsbuf.session import BufferSession
from tsbuf.sinks import InMemoryExportSink


class RecordAuditor:
    def __init__(self, seed: int):
        self.logger = get_logger("RecordAuditor")
        self.rng = np.random.default_rng(seed)
        self.sample_ids = itertools.count()
        self.sent_samples: Set[int] = set()
        self.sent_events: Set[int] = set()

    def next_value(self) -> float:
        """Sample value == its sequence number, so every value is traceable."""
        value = next(self.sample_ids)
        self.sent_samples.add(value)
        return float(value)

    def collect(self, session: BufferSession, sink: InMemoryExportSink) -> Dict[str, List[int]]:
        """Every sample id and event id found in exports and in the live tiers."""
        found = {"exported_samples": [], "exported_events": [], "held_samples": [], "held_events": []}

        for _, payload in sink.snapshot():
            dump = json.loads(payload)
            for raw in dump["tsVals"]:
                found["exported_samples"].extend(int(s.value) for s in deserialize_batch(raw))
            for raw in dump["events"]:
                found["exported_events"].append(int(json.loads(raw)["value"].split("#")[1]))

        for raw in session.tier.read_stream(StreamId.TSVALS):
            found["held_samples"].extend(int(s.value) for s in deserialize_batch(raw))
        for raw in session.tier.read_stream(StreamId.EVENTS):
            found["held_events"].append(int(json.loads(raw)["value"].split("#")[1]))
        found["held_samples"].extend(int(s.value) for s in session.buffer.drain())
        return found

    def analyze(self, found: Dict[str, List[int]]) -> Dict:
        """Compare what was sent with what was found."""
        samples = Counter(found["exported_samples"] + found["held_samples"])
        events = Counter(found["exported_events"] + found["held_events"])
        return {
            "sent_samples": len(self.sent_samples),
            "sent_events": len(self.sent_events),
            "missing_samples": sorted(self.sent_samples - set(samples))[:20],
            "missing_events": sorted(self.sent_events - set(events))[:20],
            "duplicated_samples": sorted(k for k, n in samples.items() if n > 1)[:20],
            "duplicated_events": sorted(k for k, n in events.items() if n > 1)[:20],
            "breakdown": {name: len(ids) for name, ids in found.items()},
        }

    def print_report(self, analysis: Dict, degraded: Dict):
        print("\n" + "=" * 80)
        print("📊 RECORD AUDIT REPORT")
        print("=" * 80)
        print(f"📤 Samples sent: {analysis['sent_samples']:,}")
        print(f"📤 Events sent:  {analysis['sent_events']:,}")

        print(f"\n📈 WHERE THEY ARE:")
        for name, count in analysis["breakdown"].items():
            print(f"   {name.replace('_', ' ').title()}: {count:,}")

        print(f"\n⚠️  Export failures absorbed: {degraded['export_failures']:,}")

        ok = True
        for kind in ("missing_samples", "missing_events", "duplicated_samples", "duplicated_events"):
            if analysis[kind]:
                ok = False
                print(f"❌ {kind.replace('_', ' ')}: {analysis[kind]}")

        if ok:
            print(f"\n✅ AUDIT PASSED: every value accounted for exactly once")
        else:
            print(f"\n❌ AUDIT FAILED: data integrity issues detected!")
        return ok


async def run_audit(ticks: int, failure_rate: float, events_every: int, storage_dir: str, seed: int) -> bool:
    """Run the record audit and return whether it passed."""
    storage_path = Path(storage_dir)
    if storage_path.exists():
        print(f"🧹 Cleaning previous audit storage: {storage_path}")
        shutil.rmtree(storage_path)

    config = BufferConfig(overrides={
        "storage": {"base_path": str(storage_path)},
        "persistent_tier": {"min_free_disk_mb": 0},
        "scheduler": {"memory_buffer_capacity": 7, "combined_persistent_threshold": 5},
    })
    BufferLogger.setup(log_dir=str(config.get_logs_path()), log_level="WARNING")

    auditor = RecordAuditor(seed)
    sink = InMemoryExportSink()
    session = BufferSession.from_config(config, sink=sink)
    clock = itertools.count(1_700_000_000_000, config.scheduler.tick_interval_ms).__next__
    scheduler = PromotionScheduler(session, value_source=auditor.next_value, clock=clock)

    print(f"🚀 STARTING RECORD AUDIT")
    print(f"📊 Ticks: {ticks:,}, export failure rate: {failure_rate:.0%}")
    print(f"📁 Storage: {storage_path}")

    started = time.time()
    event_ids = itertools.count()
    for tick in range(1, ticks + 1):
        if auditor.rng.random() < failure_rate:
            sink.fail_next(1)
        try:
            await scheduler.tick()
        except ExportFailure as e:
            auditor.logger.warning(f"Tick {tick}: {e}")

        if events_every and tick % events_every == 0:
            event_id = next(event_ids)
            auditor.sent_events.add(event_id)
            await scheduler.log_event(f"audit#{event_id}")

        if tick % max(1, ticks // 10) == 0:
            snap = session.snapshot()
            print(f"  Tick {tick:6,}/{ticks:,} | Dumps: {snap['dumps']:5,} "
                  f"| Batches: {snap['value_batches_stored']:3} | Events: {snap['events_stored']:3}")

    print(f"\n✅ TICKING COMPLETE in {time.time() - started:.1f}s")

    found = auditor.collect(session, sink)
    ok = auditor.print_report(auditor.analyze(found), scheduler.degraded_status())
    await session.close()
    return ok


def main():
    parser = argparse.ArgumentParser(description="Audit sequential values through all tiers")
    parser.add_argument("--ticks", type=int, default=5000)
    parser.add_argument("--failure-rate", type=float, default=0.2, help="Chance that the sink refuses an export")
    parser.add_argument("--events-every", type=int, default=3)
    parser.add_argument("--storage", type=str, default="./audit_storage")
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()

    passed = asyncio.run(run_audit(args.ticks, args.failure_rate, args.events_every, args.storage, args.seed))
    raise SystemExit(0 if passed else 1)


if __name__ == "__main__":
    main()
