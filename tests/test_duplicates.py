"""
Tests for the global duplicate index.
"""

import threading
from datetime import datetime, timedelta, timezone

from odoledger.fraud import DuplicateIndex
from odoledger.registry import MemoryStore


T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class TestLookup:
    """Tests for index lookups."""

    def test_lookup_hit(self):
        """Test recorded reading is found."""
        index = DuplicateIndex()
        index.record("DEMO4774", 15200, "app-a", "seal-1", T0.isoformat())

        entry = index.lookup("DEMO4774", 15200, now=T0 + timedelta(days=1))

        assert entry["submitter_id"] == "app-a"
        assert entry["seal_hash"] == "seal-1"

    def test_lookup_other_vehicle(self):
        """Test readings are keyed per vehicle."""
        index = DuplicateIndex()
        index.record("DEMO4774", 15200, "app-a", "seal-1", T0.isoformat())

        assert index.lookup("DEMO0001", 15200, now=T0) is None

    def test_lookup_outside_window(self):
        """Test entries older than the window do not match."""
        index = DuplicateIndex(window_days=30)
        index.record("DEMO4774", 15200, "app-a", "seal-1", T0.isoformat())

        assert index.lookup("DEMO4774", 15200, now=T0 + timedelta(days=31)) is None
        assert index.size("DEMO4774") == 1

    def test_lookup_excludes_submitter(self):
        """Test a submitter's own entries can be skipped."""
        index = DuplicateIndex()
        index.record("DEMO4774", 15200, "app-a", "seal-1", T0.isoformat())

        assert index.lookup("DEMO4774", 15200, now=T0, exclude_submitter="app-a") is None
        assert index.lookup("DEMO4774", 15200, now=T0, exclude_submitter="app-b") is not None

    def test_lookup_most_recent(self):
        """Test the newest matching entry wins."""
        index = DuplicateIndex()
        index.record("DEMO4774", 15200, "app-a", "seal-1", T0.isoformat())
        index.record("DEMO4774", 15200, "app-c", "seal-2", (T0 + timedelta(hours=1)).isoformat())

        assert index.lookup("DEMO4774", 15200, now=T0 + timedelta(hours=2))["submitter_id"] == "app-c"


class TestRetention:
    """Tests for the per-vehicle FIFO cap."""

    def test_fifo_cap(self):
        """Test the oldest entries are evicted past the cap."""
        index = DuplicateIndex(cap=100)
        for reading in range(101):
            index.record("DEMO1", reading, "app-a", f"seal-{reading}", T0.isoformat())

        entries = index.entries("DEMO1")
        assert len(entries) == 100
        assert entries[0]["reading"] == 1
        assert entries[-1]["reading"] == 100
        assert index.lookup("DEMO1", 0, now=T0) is None

    def test_cap_under_concurrency(self):
        """Test concurrent writers cannot exceed the cap."""
        index = DuplicateIndex(cap=10)

        def writer(offset):
            for i in range(25):
                index.record("DEMO1", offset * 100 + i, f"app-{offset}", "seal", T0.isoformat())

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert index.size("DEMO1") == 10


class TestStoreBacking:
    """Tests for write-through persistence."""

    def test_write_through_and_reload(self):
        """Test entries survive a fresh index over the same store."""
        store = MemoryStore()
        store.open()
        index = DuplicateIndex(store=store)
        index.record("DEMO4774", 15200, "app-a", "seal-1", T0.isoformat())

        assert store.index_entries("DEMO4774")[0]["reading"] == 15200

        reloaded = DuplicateIndex(store=store)
        assert reloaded.lookup("DEMO4774", 15200, now=T0)["submitter_id"] == "app-a"
