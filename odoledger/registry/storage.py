"""
Chain Storage Module

Persistence for chains and duplicate-index entries behind one small
interface. Stores have an explicit lifecycle: open() before use,
close() at shutdown.
"""

import copy
import json
import os
import tempfile
import threading
from typing import Dict, List, Optional

from ..core import digest, StopRule
from ..ledger.models import Chain


class ChainStore:
    """Abstract store. Chains are returned as copies; callers put them back."""

    def __init__(self):
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    def open(self) -> None:
        self._opened = True

    def close(self) -> None:
        self._opened = False

    def _require_open(self) -> None:
        if not self._opened:
            raise StopRule("store_closed", f"{type(self).__name__} is not open")

    def get_chain(self, vehicle_id: str) -> Optional[Chain]:
        raise NotImplementedError

    def put_chain(self, chain: Chain) -> None:
        raise NotImplementedError

    def has_chain(self, vehicle_id: str) -> bool:
        return self.get_chain(vehicle_id) is not None

    def list_vehicles(self) -> List[str]:
        raise NotImplementedError

    def index_entries(self, vehicle_id: str) -> List[Dict]:
        raise NotImplementedError

    def put_index_entries(self, vehicle_id: str, entries: List[Dict]) -> None:
        raise NotImplementedError


# ---------- In-Memory Implementation (tests / dev) ----------


class MemoryStore(ChainStore):
    def __init__(self):
        super().__init__()
        self._chains: Dict[str, Dict] = {}
        self._index: Dict[str, List[Dict]] = {}
        self._lock = threading.RLock()

    def get_chain(self, vehicle_id: str) -> Optional[Chain]:
        self._require_open()
        with self._lock:
            data = self._chains.get(vehicle_id)
            data = copy.deepcopy(data) if data is not None else None
        return Chain.from_dict(data) if data is not None else None

    def put_chain(self, chain: Chain) -> None:
        self._require_open()
        # Snapshot so callers never share payload dicts with the store
        data = copy.deepcopy(chain.to_dict())
        with self._lock:
            self._chains[chain.vehicle_id] = data

    def has_chain(self, vehicle_id: str) -> bool:
        self._require_open()
        with self._lock:
            return vehicle_id in self._chains

    def list_vehicles(self) -> List[str]:
        self._require_open()
        with self._lock:
            return sorted(self._chains)

    def index_entries(self, vehicle_id: str) -> List[Dict]:
        self._require_open()
        with self._lock:
            return [dict(e) for e in self._index.get(vehicle_id, [])]

    def put_index_entries(self, vehicle_id: str, entries: List[Dict]) -> None:
        self._require_open()
        with self._lock:
            self._index[vehicle_id] = [dict(e) for e in entries]


# ---------- JSON File Implementation ----------


class JsonFileStore(ChainStore):
    """
    One JSON document per chain under <root>/chains, the duplicate index
    in <root>/duplicate_index.json. Writes go to a temp file then rename.

    Single-process only: the index is read once at open() and rewritten
    whole on every put, and per-vehicle locks live in the owning registry.
    Two processes sharing one root overwrite each other's index entries
    and can interleave chain writes.
    """

    CHAINS_DIR = "chains"
    INDEX_FILE = "duplicate_index.json"

    def __init__(self, root: str):
        super().__init__()
        self.root = root
        self.chains_dir = os.path.join(root, self.CHAINS_DIR)
        self.index_path = os.path.join(root, self.INDEX_FILE)
        self._index: Dict[str, List[Dict]] = {}
        self._lock = threading.RLock()

    def open(self) -> None:
        os.makedirs(self.chains_dir, exist_ok=True)
        if os.path.exists(self.index_path):
            with open(self.index_path, 'r', encoding='utf-8') as f:
                self._index = json.load(f)
        else:
            self._index = {}
        super().open()

    def _chain_path(self, vehicle_id: str) -> str:
        return os.path.join(self.chains_dir, f"{digest(vehicle_id)[:32]}.json")

    def _write_json(self, path: str, data) -> None:
        directory = os.path.dirname(path)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, sort_keys=True, default=str)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get_chain(self, vehicle_id: str) -> Optional[Chain]:
        self._require_open()
        path = self._chain_path(vehicle_id)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return Chain.from_dict(json.load(f))
        except FileNotFoundError:
            return None

    def put_chain(self, chain: Chain) -> None:
        self._require_open()
        self._write_json(self._chain_path(chain.vehicle_id), chain.to_dict())

    def has_chain(self, vehicle_id: str) -> bool:
        self._require_open()
        return os.path.exists(self._chain_path(vehicle_id))

    def list_vehicles(self) -> List[str]:
        self._require_open()
        vehicles = []
        for name in os.listdir(self.chains_dir):
            if not name.endswith(".json"):
                continue
            with open(os.path.join(self.chains_dir, name), 'r', encoding='utf-8') as f:
                vehicles.append(json.load(f)["vehicle_id"])
        return sorted(vehicles)

    def index_entries(self, vehicle_id: str) -> List[Dict]:
        self._require_open()
        with self._lock:
            return [dict(e) for e in self._index.get(vehicle_id, [])]

    def put_index_entries(self, vehicle_id: str, entries: List[Dict]) -> None:
        self._require_open()
        with self._lock:
            self._index[vehicle_id] = [dict(e) for e in entries]
            self._write_json(self.index_path, self._index)
