"""
OdoLedger Registry Module

Facade over per-vehicle chains: storage, per-vehicle locking, mining
workers and best-effort publication to an external ledger.
"""

from .facade import LedgerRegistry
from .storage import ChainStore, MemoryStore, JsonFileStore
from .locks import VehicleLocks
from .publisher import LedgerPublisher, NullPublisher, SimulatedPublicLedger

__all__ = [
    # facade
    'LedgerRegistry',
    # storage
    'ChainStore', 'MemoryStore', 'JsonFileStore',
    # locks
    'VehicleLocks',
    # publisher
    'LedgerPublisher', 'NullPublisher', 'SimulatedPublicLedger'
]
