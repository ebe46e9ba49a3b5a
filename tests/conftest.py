"""
Pytest configuration and fixtures for OdoLedger tests.
"""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from odoledger.config import RegistryConfig
from odoledger.ledger.models import ProofBundle
from odoledger.registry import LedgerRegistry, MemoryStore


# Low difficulty keeps mining fast in tests
TEST_DIFFICULTY = 1


class FakeClock:
    """Manually advanced clock for time-dependent checks."""

    def __init__(self, start: datetime):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, **kwargs) -> datetime:
        with self._lock:
            self.now = self.now + timedelta(**kwargs)
            return self.now


@pytest.fixture(autouse=True)
def temp_ledger(tmp_path, monkeypatch):
    """Route receipts to a temporary ledger file for every test."""
    ledger_path = tmp_path / "receipts.jsonl"
    monkeypatch.setenv("ODOLEDGER_RECEIPTS_PATH", str(ledger_path))
    yield str(ledger_path)


@pytest.fixture
def clock():
    """Fake clock starting 2024-01-15 10:00 UTC."""
    return FakeClock(datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    """Registry config with low proof-of-work difficulty."""
    return RegistryConfig(difficulty=TEST_DIFFICULTY)


@pytest.fixture
def registry(config, clock):
    """Open in-memory registry driven by the fake clock."""
    with LedgerRegistry(store=MemoryStore(), config=config, clock=clock) as reg:
        yield reg


@pytest.fixture
def sample_proof():
    """Proof bundle from a clean phone capture."""
    return ProofBundle(
        ocr_confidence=0.95,
        location_accuracy=10.0,
        device_fingerprint="device-abc",
        captured_at="2024-01-15T10:00:00+00:00",
        image_metadata=json.dumps({"software": "iOS Camera"})
    )


@pytest.fixture
def edited_proof():
    """Proof bundle whose metadata declares an image editor."""
    return ProofBundle(
        ocr_confidence=0.95,
        location_accuracy=10.0,
        device_fingerprint="device-abc",
        image_metadata=json.dumps({"software": "Adobe Photoshop 2024"})
    )
