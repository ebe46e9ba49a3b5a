"""
Per-Vehicle Locks

One mutual-exclusion scope per vehicle. Different vehicles never contend.

Entries are reference counted: a vehicle's lock exists only while some
caller holds or waits on it, so lookups of unknown vehicles leave nothing
behind.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class VehicleLocks:
    def __init__(self):
        # vehicle_id -> [lock, users]
        self._locks: Dict[str, List] = {}
        self._guard = threading.Lock()

    def _acquire_entry(self, vehicle_id: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(vehicle_id)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[vehicle_id] = entry
            entry[1] += 1
            return entry[0]

    def _release_entry(self, vehicle_id: str) -> None:
        with self._guard:
            entry = self._locks[vehicle_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[vehicle_id]

    @contextmanager
    def hold(self, vehicle_id: str) -> Iterator[None]:
        """Hold the vehicle's lock for the duration of the block."""
        lock = self._acquire_entry(vehicle_id)
        try:
            with lock:
                yield
        finally:
            self._release_entry(vehicle_id)

    def is_held(self, vehicle_id: str) -> bool:
        with self._guard:
            entry = self._locks.get(vehicle_id)
            return entry is not None and entry[0].locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
