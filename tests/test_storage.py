"""
Tests for chain stores.
"""

import os

import pytest
from odoledger.core import StopRule
from odoledger.ledger import (
    create_chain,
    mine_and_append,
    odometer_reading_payload,
    verify_chain
)
from odoledger.registry import MemoryStore, JsonFileStore


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path):
    """Each store implementation, opened."""
    if request.param == "memory":
        s = MemoryStore()
    else:
        s = JsonFileStore(str(tmp_path / "data"))
    s.open()
    yield s
    s.close()


class TestChainStore:
    """Behavior shared by every store."""

    def test_put_get(self, store):
        """Test a stored chain comes back equal."""
        chain = create_chain("DEMO1", "owner-1", difficulty=1)
        store.put_chain(chain)

        loaded = store.get_chain("DEMO1")

        assert loaded == chain
        assert verify_chain(loaded, difficulty=1)["valid"]

    def test_missing(self, store):
        """Test unknown vehicles."""
        assert store.get_chain("NOPE") is None
        assert store.has_chain("NOPE") is False

    def test_returns_copies(self, store, sample_proof):
        """Test mutating a loaded chain does not touch the store."""
        chain = create_chain("DEMO1", "owner-1", difficulty=1)
        mine_and_append(chain, odometer_reading_payload("DEMO1", 1000, sample_proof, "app-1"), difficulty=1)
        store.put_chain(chain)

        loaded = store.get_chain("DEMO1")
        loaded.fraud_score = 99
        loaded.blocks[0].payload["owner_id"] = "mallory"
        loaded.blocks[1].payload["proof"]["ocr_confidence"] = 0.01

        stored = store.get_chain("DEMO1")
        assert stored.fraud_score == 0
        assert stored.blocks[0].payload["owner_id"] == "owner-1"
        assert verify_chain(stored, difficulty=1)["valid"]

    def test_put_snapshots_chain(self, store, sample_proof):
        """Test mutating a chain after put does not touch the store."""
        chain = create_chain("DEMO1", "owner-1", difficulty=1)
        mine_and_append(chain, odometer_reading_payload("DEMO1", 1000, sample_proof, "app-1"), difficulty=1)
        store.put_chain(chain)

        chain.blocks[0].payload["owner_id"] = "mallory"
        chain.blocks[1].payload["proof"]["ocr_confidence"] = 0.01

        stored = store.get_chain("DEMO1")
        assert stored.blocks[0].payload["owner_id"] == "owner-1"
        assert verify_chain(stored, difficulty=1)["valid"]

    def test_list_vehicles(self, store):
        """Test vehicles are listed sorted."""
        for vehicle_id in ("DEMO2", "DEMO1"):
            store.put_chain(create_chain(vehicle_id, "owner", difficulty=1))

        assert store.list_vehicles() == ["DEMO1", "DEMO2"]

    def test_index_entries(self, store):
        """Test index entries round trip."""
        entries = [{"vehicle_id": "DEMO1", "reading": 5, "submitter_id": "a",
                    "seal_hash": "s", "submitted_at": "2024-01-15T10:00:00+00:00"}]
        store.put_index_entries("DEMO1", entries)

        assert store.index_entries("DEMO1") == entries
        assert store.index_entries("DEMO2") == []

    def test_closed_store_refuses(self, store):
        """Test operations after close raise."""
        store.close()
        with pytest.raises(StopRule) as exc_info:
            store.get_chain("DEMO1")
        assert exc_info.value.rule_name == "store_closed"
        store.open()


class TestJsonFileStore:
    """File-specific behavior."""

    def test_documents_single_process(self):
        """Test the store states it must not be shared across processes."""
        assert "Single-process only" in JsonFileStore.__doc__

    def test_survives_reopen(self, tmp_path):
        """Test chains and index persist across instances."""
        root = str(tmp_path / "data")
        first = JsonFileStore(root)
        first.open()
        first.put_chain(create_chain("DEMO1", "owner-1", difficulty=1))
        first.put_index_entries("DEMO1", [{"reading": 1}])
        first.close()

        second = JsonFileStore(root)
        second.open()

        assert second.has_chain("DEMO1")
        assert second.get_chain("DEMO1").owner_id == "owner-1"
        assert second.index_entries("DEMO1") == [{"reading": 1}]

    def test_no_temp_files_left(self, tmp_path):
        """Test atomic writes clean up."""
        root = tmp_path / "data"
        store = JsonFileStore(str(root))
        store.open()
        store.put_chain(create_chain("DEMO1", "owner-1", difficulty=1))

        leftovers = [n for n in os.listdir(root / "chains") if n.endswith(".tmp")]
        assert leftovers == []
