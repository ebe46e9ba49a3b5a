"""
Global Duplicate Index Module

Cross-submitter table of accepted readings keyed by (vehicle_id, reading).

Retention is a FIFO cap per vehicle (oldest evicted first). The 30-day
window only limits matching; entries inside the cap are kept regardless
of age.
"""

import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..core import (
    utc_now,
    parse_ts,
    DUPLICATE_WINDOW_DAYS,
    INDEX_CAP_PER_VEHICLE
)


class DuplicateIndex:
    """
    Per-vehicle lists of accepted readings, optionally written through to a store.

    Insert and eviction happen under one lock so concurrent writers cannot
    grow a vehicle's list past the cap.
    """

    def __init__(
        self,
        store=None,
        cap: int = INDEX_CAP_PER_VEHICLE,
        window_days: int = DUPLICATE_WINDOW_DAYS
    ):
        self._store = store
        self.cap = cap
        self.window_days = window_days
        self._entries: Dict[str, List[Dict]] = {}
        self._lock = threading.RLock()

    def _entries_for(self, vehicle_id: str) -> List[Dict]:
        if vehicle_id not in self._entries:
            loaded = self._store.index_entries(vehicle_id) if self._store is not None else []
            self._entries[vehicle_id] = [dict(e) for e in loaded]
        return self._entries[vehicle_id]

    def lookup(
        self,
        vehicle_id: str,
        reading: float,
        now: Optional[datetime] = None,
        exclude_submitter: Optional[str] = None
    ) -> Optional[Dict]:
        """
        Most recent entry for (vehicle_id, reading) inside the matching window.

        Args:
            vehicle_id: Vehicle to search
            reading: Odometer value to match exactly
            now: Reference time (default: now)
            exclude_submitter: Skip entries recorded by this submitter

        Returns:
            Copy of the entry, or None
        """
        cutoff = (now or utc_now()) - timedelta(days=self.window_days)

        with self._lock:
            for entry in reversed(self._entries_for(vehicle_id)):
                if entry["reading"] != reading:
                    continue
                if exclude_submitter is not None and entry["submitter_id"] == exclude_submitter:
                    continue
                if parse_ts(entry["submitted_at"]) >= cutoff:
                    return dict(entry)

        return None

    def record(
        self,
        vehicle_id: str,
        reading: float,
        submitter_id: str,
        seal_hash: str,
        submitted_at: Optional[str] = None
    ) -> Dict:
        """
        Append an accepted reading, evicting the oldest entries past the cap.

        Returns:
            The stored entry
        """
        entry = {
            "vehicle_id": vehicle_id,
            "reading": reading,
            "submitter_id": submitter_id,
            "seal_hash": seal_hash,
            "submitted_at": submitted_at or utc_now().isoformat()
        }

        with self._lock:
            entries = self._entries_for(vehicle_id)
            entries.append(entry)
            while len(entries) > self.cap:
                entries.pop(0)
            if self._store is not None:
                self._store.put_index_entries(vehicle_id, [dict(e) for e in entries])

        return dict(entry)

    def entries(self, vehicle_id: str) -> List[Dict]:
        """Copies of a vehicle's entries, oldest first."""
        with self._lock:
            return [dict(e) for e in self._entries_for(vehicle_id)]

    def size(self, vehicle_id: str) -> int:
        with self._lock:
            return len(self._entries_for(vehicle_id))
