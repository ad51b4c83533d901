"""
Export sinks (tier 2): where persistent-tier dumps end up.
"""

import asyncio
import os
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import requests

from .interfaces import ExportSink
from .logger import get_logger


class FileExportSink(ExportSink):
    """
    Writes each dump to a directory using an atomic transaction:
    1. Write payload to the staging directory (fsync'd)
    2. Atomic move to the final location
    """

    def __init__(self, export_path: str, debug: bool = False):
        self.export_path = Path(export_path)
        self.export_path.mkdir(parents=True, exist_ok=True)
        self.staging_path = self.export_path / "staging"
        self.staging_path.mkdir(exist_ok=True)
        self.debug = debug
        self.logger = get_logger("FileExportSink")

        if self.debug:
            print(f"FileExportSink: Export path: {self.export_path}")

    @staticmethod
    def _write_synced(path: Path, payload: bytes):
        with open(path, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())

    async def export(self, name: str, payload: bytes) -> bool:
        staging_file = self.staging_path / name
        final_file = self.export_path / name
        loop = asyncio.get_running_loop()
        try:
            self.logger.debug(f"Writing {len(payload):,} bytes to staging file {staging_file}")
            await loop.run_in_executor(None, self._write_synced, staging_file, payload)

            self.logger.debug(f"Moving from staging to final location: {final_file}")
            await loop.run_in_executor(None, shutil.move, str(staging_file), str(final_file))

            self.logger.info(f"Atomically exported {len(payload):,} bytes to {final_file.name}")
            return True

        except OSError as e:
            if staging_file.exists():
                staging_file.unlink()
            self.logger.error(f"Export to {final_file} failed: {e}")
            return False

    def list_exports(self) -> List[Path]:
        """Completed dump files, oldest first."""
        return sorted(self.export_path.glob("dump_*.json"), key=lambda p: p.stat().st_mtime)


class HttpExportSink(ExportSink):
    """
    POSTs each dump to an HTTP endpoint. Any 2xx response is an acknowledgment.

    requests is blocking, so the call runs in a worker thread to keep the
    event loop responsive.
    """

    def __init__(self, url: str, timeout_s: float = 10.0, headers: Optional[Dict[str, str]] = None,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.timeout_s = timeout_s
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.session = session or requests.Session()
        self.logger = get_logger("HttpExportSink")

    def _post(self, name: str, payload: bytes) -> requests.Response:
        return self.session.post(
            self.url,
            data=payload,
            headers={**self.headers, "X-Dump-Name": name},
            params={"name": name},
            timeout=self.timeout_s,
        )

    async def export(self, name: str, payload: bytes) -> bool:
        try:
            response = await asyncio.to_thread(self._post, name, payload)
        except requests.RequestException as e:
            self.logger.error(f"POST of {name} to {self.url} failed: {e}")
            return False

        if 200 <= response.status_code < 300:
            self.logger.info(f"Exported {name} ({len(payload):,} bytes) to {self.url}")
            return True

        self.logger.error(f"POST of {name} rejected with HTTP {response.status_code}: {response.text[:200]}")
        return False

    async def close(self) -> None:
        await asyncio.to_thread(self.session.close)


class InMemoryExportSink(ExportSink):
    """In-memory sink for tests and local debugging. Can be told to fail the next N exports."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._exports: List[Tuple[str, bytes]] = []
        self._failures_remaining = 0
        self.attempts = 0

    def fail_next(self, count: int = 1) -> None:
        """Refuse to acknowledge the next ``count`` exports."""
        with self._lock:
            self._failures_remaining = count

    async def export(self, name: str, payload: bytes) -> bool:
        with self._lock:
            self.attempts += 1
            if self._failures_remaining > 0:
                self._failures_remaining -= 1
                return False
            self._exports.append((name, payload))
            return True

    def snapshot(self) -> List[Tuple[str, bytes]]:
        """Return a point-in-time copy of all acknowledged exports."""
        with self._lock:
            return list(self._exports)
