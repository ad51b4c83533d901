"""
Records, stream identifiers and the transient export manifest.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Union


# Stored entries use compact separators so exports match the browser-era format byte for byte
_SEPARATORS = (",", ":")


class StreamId(str, Enum):
    """Logical stream; each owns one key namespace and one persisted counter."""
    EVENTS = "events"
    TSVALS = "tsvals"

    @property
    def namespace(self) -> str:
        return "event" if self is StreamId.EVENTS else "ts"

    @property
    def counter_key(self) -> str:
        return "eventCount" if self is StreamId.EVENTS else "tsValCount"


class PipelineState(str, Enum):
    """Where the session sits in the Idle -> Accumulating -> PersistedPartial -> ExportPending cycle."""
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    PERSISTED_PARTIAL = "persisted_partial"
    EXPORT_PENDING = "export_pending"


class TickOutcome(str, Enum):
    """Furthest step of the threshold cascade a tick reached."""
    BUFFERED = "buffered"
    PROMOTED = "promoted"
    EXPORTED = "exported"


@dataclass(frozen=True)
class Sample:
    """A timestamped numeric measurement (epoch milliseconds)."""
    timestamp: int
    value: float

    def to_dict(self) -> dict:
        return {"ts": self.timestamp, "value": self.value}


@dataclass(frozen=True)
class Event:
    """A timestamped user-supplied string."""
    timestamp: int
    value: str

    def to_dict(self) -> dict:
        return {"ts": self.timestamp, "value": self.value}

    def serialize(self) -> str:
        """JSON text stored as one persistent-tier entry."""
        return json.dumps(self.to_dict(), separators=_SEPARATORS)


Record = Union[Sample, Event]


def serialize_batch(samples: List[Sample]) -> str:
    """Group samples into one persistent-tier entry: {"value": [...]}."""
    return json.dumps({"value": [s.to_dict() for s in samples]}, separators=_SEPARATORS)


def deserialize_batch(raw: str) -> List[Sample]:
    """Inverse of serialize_batch."""
    data = json.loads(raw)
    return [Sample(timestamp=item["ts"], value=item["value"]) for item in data["value"]]


@dataclass
class ExportManifest:
    """
    Snapshot of the persistent tier handed to the sink in one export.

    ``events`` and ``ts_vals`` hold the raw stored JSON strings in index order.
    """
    sequence_number: int
    timestamp: int
    events: List[str] = field(default_factory=list)
    ts_vals: List[str] = field(default_factory=list)

    @property
    def event_count(self) -> int:
        return len(self.events)

    @property
    def tsval_count(self) -> int:
        return len(self.ts_vals)

    @property
    def name(self) -> str:
        """Destination name, e.g. dump_0_events_4_tsVals_2_ts_1700000000000.json"""
        return (
            f"dump_{self.sequence_number}"
            f"_events_{self.event_count}"
            f"_tsVals_{self.tsval_count}"
            f"_ts_{self.timestamp}.json"
        )

    def to_payload(self, payload_format: str = "double_encoded") -> bytes:
        """
        Encode the manifest as the bytes handed to the sink.

        ``double_encoded`` keeps each element as the JSON string that was stored;
        ``structured`` embeds the parsed objects instead.
        """
        if payload_format == "double_encoded":
            events, ts_vals = self.events, self.ts_vals
        elif payload_format == "structured":
            events = [json.loads(e) for e in self.events]
            ts_vals = [json.loads(t) for t in self.ts_vals]
        else:
            raise ValueError(f"Unknown payload format: {payload_format!r}")
        return json.dumps({"events": events, "tsVals": ts_vals}, separators=_SEPARATORS).encode("utf-8")
