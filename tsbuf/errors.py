"""
Failure kinds surfaced by the tiers.

A corrupted counter is not listed here: it is read as zero.
"""


class TierError(Exception):
    """Base class for tier failures."""


class StoreWriteFailure(TierError):
    """The persistent tier rejected a write (quota, disk space, capacity probe)."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Write of {key!r} rejected: {reason}")
        self.key = key
        self.reason = reason


class StoreReadFailure(TierError):
    """An entry is missing or unreadable at an index below the stream count."""

    def __init__(self, key: str, reason: str = "entry missing"):
        super().__init__(f"Read of {key!r} failed: {reason}")
        self.key = key
        self.reason = reason


class ExportFailure(TierError):
    """The sink did not acknowledge an export; the persistent tier was left untouched."""

    def __init__(self, name: str, reason: str = "sink did not acknowledge"):
        super().__init__(f"Export {name!r} failed: {reason}")
        self.name = name
        self.reason = reason
