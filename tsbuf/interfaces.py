"""
Capabilities the pipeline consumes: a local key-value store (tier 1) and an
external export sink (tier 2).
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional


class KeyValueStore(ABC):
    """Local persistent key-value store. Capacity is not known up front."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """
        Store a value under key, replacing any previous one.
        Raises StoreWriteFailure (or OSError) when the store rejects the write.
        """
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove key. Removing an absent key is not an error."""
        pass

    @abstractmethod
    def keys(self) -> Iterable[str]:
        """Enumerate every stored key."""
        pass

    def has_capacity(self, nbytes: int) -> bool:
        """
        Probe whether a write of roughly nbytes would fit.
        Stores that cannot tell return True and let the write itself fail.
        """
        return True

    def get_stats(self) -> dict:
        """Get store statistics (key count, size, etc.)."""
        return {}

    def close(self) -> None:
        """Release any underlying resources."""
        pass


class ExportSink(ABC):
    """Called when the persistent tier needs to be promoted to external storage."""

    @abstractmethod
    async def export(self, name: str, payload: bytes) -> bool:
        """
        Deliver payload under the destination name.
        Returns True only once the destination has durably accepted it.
        """
        pass

    async def close(self) -> None:
        """Release any underlying resources."""
        pass
