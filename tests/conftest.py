"""Shared test fixtures for all test modules."""

import itertools
import os
from pathlib import Path

import pytest

from tsbuf.config import BufferConfig, reset_config
from tsbuf.kv_store import InMemoryKeyValueStore
from tsbuf.logger import BufferLogger
from tsbuf.scheduler import PromotionScheduler
from tsbuf.session import BufferSession
from tsbuf.sinks import InMemoryExportSink


START_MS = 1_700_000_000_000


@pytest.fixture(scope="session", autouse=True)
def _log_to_tmp(tmp_path_factory: pytest.TempPathFactory):
    """Send component logs to a temporary directory instead of ./logs."""
    BufferLogger.setup(log_dir=str(tmp_path_factory.mktemp("logs")), log_level="DEBUG")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    """Keep TSBUF_* variables of the calling shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("TSBUF_"):
            monkeypatch.delenv(name)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def make_config(tmp_path: Path):
    """Build an in-memory, WAL-less config rooted at tmp_path with scheduler overrides."""

    def _make(**scheduler) -> BufferConfig:
        return BufferConfig(overrides={
            "storage": {"base_path": str(tmp_path)},
            "persistent_tier": {"backend": "memory"},
            "memory_buffer": {"wal_enabled": False},
            "export": {"sink": "memory"},
            "scheduler": scheduler,
        })

    return _make


@pytest.fixture
def clock():
    """Deterministic epoch-ms clock advancing 500ms per call."""
    return itertools.count(START_MS, 500).__next__


@pytest.fixture
def make_scheduler(make_config, clock):
    """Scheduler over an InMemoryKeyValueStore and an InMemoryExportSink."""

    def _make(store=None, sink=None, value_source=None, **scheduler):
        config = make_config(**scheduler)
        store = store if store is not None else InMemoryKeyValueStore()
        sink = sink if sink is not None else InMemoryExportSink()
        session = BufferSession(store, sink, config=config)
        values = value_source or itertools.count(1).__next__
        return PromotionScheduler(session, value_source=lambda: float(values()), clock=clock)

    return _make
