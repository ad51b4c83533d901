"""
Key-value store adapters for the persistent tier.

InMemoryKeyValueStore is session-scoped (lost on restart, useful for tests);
FileKeyValueStore keeps one file per key and replaces values atomically.
"""

import os
import re
from pathlib import Path
from typing import Dict, Iterable, Optional

import psutil

from .errors import StoreWriteFailure
from .interfaces import KeyValueStore
from .logger import get_logger


_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store with an optional byte quota, similar to a browser storage quota."""

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self._data: Dict[str, str] = {}
        self._used_bytes = 0

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        previous = self._data.get(key)
        freed = _entry_size(key, previous) if previous is not None else 0
        needed = _entry_size(key, value)
        if self.max_bytes is not None and self._used_bytes - freed + needed > self.max_bytes:
            raise StoreWriteFailure(key, f"quota of {self.max_bytes} bytes exceeded")
        self._data[key] = value
        self._used_bytes += needed - freed

    def remove(self, key: str) -> None:
        previous = self._data.pop(key, None)
        if previous is not None:
            self._used_bytes -= _entry_size(key, previous)

    def keys(self) -> Iterable[str]:
        return list(self._data.keys())

    def has_capacity(self, nbytes: int) -> bool:
        if self.max_bytes is None:
            return True
        return self._used_bytes + nbytes <= self.max_bytes

    def get_stats(self) -> dict:
        return {
            "backend": "memory",
            "key_count": len(self._data),
            "used_bytes": self._used_bytes,
            "max_bytes": self.max_bytes,
        }


class FileKeyValueStore(KeyValueStore):
    """
    Directory-backed store: each key is a ``<key>.val`` file.

    Writes go to a staging file that is fsync'd and then renamed over the
    target, so a reader never sees a half-written value.
    """

    SUFFIX = ".val"

    def __init__(self, storage_path: str, max_bytes: Optional[int] = None,
                 min_free_disk_mb: int = 16, debug: bool = False):
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.staging_path = self.storage_path / "staging"
        self.staging_path.mkdir(exist_ok=True)
        self.max_bytes = max_bytes
        self.min_free_disk_mb = min_free_disk_mb
        self.debug = debug
        self.logger = get_logger("FileKeyValueStore")

        # Leftover staging files belong to writes that never completed
        for leftover in self.staging_path.glob(f"*{self.SUFFIX}"):
            self.logger.warning(f"Discarding incomplete staged write: {leftover.name}")
            leftover.unlink()

        self._used_bytes = sum(p.stat().st_size + len(p.stem) for p in self._value_files())

        if self.debug:
            print(f"FileKeyValueStore: {len(list(self._value_files()))} keys at {self.storage_path}")

    def _value_files(self):
        return self.storage_path.glob(f"*{self.SUFFIX}")

    def _path_for(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Unsupported key {key!r}: only letters, digits, '_', '.' and '-' are allowed")
        return self.storage_path / f"{key}{self.SUFFIX}"

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        final_file = self._path_for(key)
        data = value.encode("utf-8")
        needed = len(data) + len(key)
        freed = final_file.stat().st_size + len(key) if final_file.exists() else 0

        if self.max_bytes is not None and self._used_bytes - freed + needed > self.max_bytes:
            raise StoreWriteFailure(key, f"quota of {self.max_bytes} bytes exceeded")

        staging_file = self.staging_path / final_file.name
        try:
            # Step 1: write and fsync the staged copy
            with open(staging_file, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            # Step 2: atomic replace of the live value
            os.replace(staging_file, final_file)
        except OSError:
            if staging_file.exists():
                staging_file.unlink()
            raise

        self._used_bytes += needed - freed
        self.logger.debug(f"Stored {key} ({len(data)} bytes)")

    def remove(self, key: str) -> None:
        path = self._path_for(key)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return
        path.unlink(missing_ok=True)
        self._used_bytes -= size + len(key)

    def keys(self) -> Iterable[str]:
        return sorted(p.stem for p in self._value_files())

    def has_capacity(self, nbytes: int) -> bool:
        """Check the byte quota and the free space left on the volume."""
        if self.max_bytes is not None and self._used_bytes + nbytes > self.max_bytes:
            return False
        free_mb = (psutil.disk_usage(str(self.storage_path)).free - nbytes) / (1024 * 1024)
        if free_mb < self.min_free_disk_mb:
            self.logger.warning(f"Free disk space {free_mb:.1f}MB below floor of {self.min_free_disk_mb}MB")
            return False
        return True

    def get_stats(self) -> dict:
        return {
            "backend": "file",
            "key_count": len(list(self._value_files())),
            "used_bytes": self._used_bytes,
            "max_bytes": self.max_bytes,
            "disk_free_mb": psutil.disk_usage(str(self.storage_path)).free / (1024 * 1024),
            "storage_path": str(self.storage_path),
        }
