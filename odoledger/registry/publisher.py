"""
External Ledger Publisher Module

Best-effort publication of accepted readings to a public ledger, used by
other applications as a cross-app duplicate signal. Publication never
blocks or rolls back a local acceptance; the facade runs it off-lock and
records failures as receipts.
"""

import threading
from typing import Any, Dict, Optional

from ..core import digest, canonical_encode, utc_now, APP_SIGNATURE


class LedgerPublisher:
    """Narrow interface to an external ledger."""

    def publish(
        self,
        vehicle_id: str,
        reading: float,
        seal_hash: str,
        submitted_at: str,
        submitter_id: str
    ) -> Dict[str, Any]:
        """
        Register a reading.

        Returns:
            Dict with success (bool) and tx_hash or error
        """
        raise NotImplementedError


class NullPublisher(LedgerPublisher):
    """Publishes nowhere. Default when no external ledger is configured."""

    def publish(self, vehicle_id, reading, seal_hash, submitted_at, submitter_id):
        return {"success": True, "tx_hash": None, "skipped": True}


class SimulatedPublicLedger(LedgerPublisher):
    """
    In-process stand-in for a public testnet contract.

    Keeps a registry of (vehicle, reading) pairs and refuses a pair already
    registered by a different application.
    """

    def __init__(self, network: str = "simulated-testnet", chain_id: int = 80001,
                 app_signature: str = APP_SIGNATURE):
        self.network = network
        self.chain_id = chain_id
        self.app_signature = app_signature
        self._registered: Dict[str, Dict] = {}
        self._lock = threading.Lock()

    @staticmethod
    def reading_key(vehicle_id: str, reading: float) -> str:
        return digest(f"{vehicle_id}-{reading}")

    def reading_hash(self, vehicle_id: str, reading: float, submitted_at: str) -> str:
        return digest(f"{vehicle_id}-{reading}-{submitted_at}-{self.app_signature}")

    def lookup(self, vehicle_id: str, reading: float) -> Optional[Dict]:
        """Registered record for (vehicle, reading), if any."""
        with self._lock:
            record = self._registered.get(self.reading_key(vehicle_id, reading))
            return dict(record) if record else None

    def publish(self, vehicle_id, reading, seal_hash, submitted_at, submitter_id):
        key = self.reading_key(vehicle_id, reading)
        reading_hash = self.reading_hash(vehicle_id, reading, submitted_at)

        with self._lock:
            existing = self._registered.get(key)
            if existing and existing["app_source"] != submitter_id:
                return {
                    "success": False,
                    "error": f"Reading already used by {existing['app_source']} at {existing['timestamp']}"
                }

            transaction = {
                "to": self.network,
                "chain_id": self.chain_id,
                "reading_hash": reading_hash,
                "seal_hash": seal_hash,
                "app_signature": self.app_signature,
                "sent_at": utc_now().isoformat()
            }
            tx_hash = "0x" + digest(canonical_encode(transaction))

            self._registered[key] = {
                "vehicle_id": vehicle_id,
                "reading": reading,
                "reading_hash": reading_hash,
                "app_source": submitter_id,
                "timestamp": submitted_at,
                "tx_hash": tx_hash
            }

        return {"success": True, "tx_hash": tx_hash, "reading_hash": reading_hash}

    def network_status(self) -> Dict[str, Any]:
        with self._lock:
            registered = len(self._registered)
        return {
            "network": self.network,
            "connected": True,
            "chain_id": self.chain_id,
            "registered_readings": registered
        }
