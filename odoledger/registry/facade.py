"""
Ledger Registry Facade

Orchestrates one submission end to end:
lock vehicle -> load chain -> evaluate -> mine + append -> index -> persist,
then publishes accepted readings off-lock.

Vehicle states: Uninitialized -> Active -> Suspended. A suspended chain
refuses submissions without appending; only reactivate_chain() restores it.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..config import RegistryConfig
from ..core import (
    emit_receipt,
    parse_ts,
    utc_now,
    stoprule_integrity_violation,
    stoprule_mining_timeout,
    StopRule,
    AlreadyExists,
    NotFound,
    Suspended,
    MiningTimeout
)
from ..fraud.duplicates import DuplicateIndex
from ..fraud.evaluator import evaluate_submission, validate_submission
from ..ledger.chain import create_chain, mine_and_append, verify_chain
from ..ledger.models import (
    Block,
    Chain,
    ProofBundle,
    odometer_reading_payload,
    fraud_alert_payload
)
from .locks import VehicleLocks
from .publisher import LedgerPublisher, NullPublisher
from .storage import ChainStore, MemoryStore


class LedgerRegistry:
    """
    Registry of per-vehicle chains over an injected store.

    Use as a context manager, or call open() / close() explicitly.
    """

    def __init__(
        self,
        store: Optional[ChainStore] = None,
        config: Optional[RegistryConfig] = None,
        publisher: Optional[LedgerPublisher] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or RegistryConfig()
        self.store = store if store is not None else MemoryStore()
        self.publisher = publisher or NullPublisher()
        self.index = DuplicateIndex(
            store=self.store,
            cap=self.config.index_cap,
            window_days=self.config.duplicate_window_days
        )
        self._clock = clock or utc_now
        self._locks = VehicleLocks()
        self._miner: Optional[ThreadPoolExecutor] = None
        self._publish_pool: Optional[ThreadPoolExecutor] = None
        self._pending = []
        self._pending_lock = threading.Lock()
        # Guards the executor handles against a concurrent close()
        self._state_lock = threading.Lock()

    # === LIFECYCLE ===

    @property
    def is_open(self) -> bool:
        return self._miner is not None

    def open(self) -> "LedgerRegistry":
        with self._state_lock:
            if self._miner is not None:
                return self
            self.store.open()
            self._miner = ThreadPoolExecutor(
                max_workers=self.config.mining_workers,
                thread_name_prefix="odoledger-miner"
            )
            self._publish_pool = ThreadPoolExecutor(
                max_workers=self.config.publish_workers,
                thread_name_prefix="odoledger-publish"
            )
        return self

    def close(self) -> None:
        with self._state_lock:
            miner, publish_pool = self._miner, self._publish_pool
            if miner is None:
                return
            self._miner = None
            self._publish_pool = None
        # Work submitted before the handles were cleared still drains
        publish_pool.shutdown(wait=True)
        miner.shutdown(wait=True)
        self.store.close()

    def __enter__(self) -> "LedgerRegistry":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> None:
        if not self.is_open:
            raise StopRule("registry_closed", "LedgerRegistry is not open")

    def _now(self) -> datetime:
        return parse_ts(self._clock())

    def _submit_mining(self, fn: Callable, *args) -> Future:
        with self._state_lock:
            if self._miner is None:
                raise StopRule("registry_closed", "LedgerRegistry is not open")
            return self._miner.submit(fn, *args)

    def _mine(self, chain: Chain, payload: Dict[str, Any], timestamp: str) -> Block:
        future = self._submit_mining(
            mine_and_append,
            chain,
            payload,
            self.config.difficulty,
            timestamp,
            self.config.max_attempts,
            self.config.mining_timeout_sec
        )
        return future.result()

    # === OPERATIONS ===

    def create_chain(self, vehicle_id: str, owner_id: str) -> Chain:
        """
        Register a vehicle: mine its genesis block and store the chain.

        Raises:
            AlreadyExists: If the vehicle already has a chain
            MiningTimeout: If the genesis seal could not be found in budget
        """
        self._require_open()
        if not vehicle_id:
            raise ValueError("vehicle_id cannot be empty")

        with self._locks.hold(vehicle_id):
            if self.store.has_chain(vehicle_id):
                raise AlreadyExists(vehicle_id)

            future = self._submit_mining(
                create_chain,
                vehicle_id,
                owner_id,
                self.config.difficulty,
                self._now().isoformat(),
                self.config.max_attempts,
                self.config.mining_timeout_sec
            )
            try:
                chain = future.result()
            except MiningTimeout as exc:
                stoprule_mining_timeout(vehicle_id, exc)
            self.store.put_chain(chain)

        emit_receipt("chain_created", {
            "vehicle_id": vehicle_id,
            "owner_id": owner_id,
            "genesis_seal_hash": chain.last_block.seal_hash,
            "difficulty": self.config.difficulty
        })

        return chain

    def submit_reading(
        self,
        vehicle_id: str,
        reading: float,
        proof: ProofBundle,
        submitter_id: Optional[str] = None,
        location: str = "",
        image_digest: str = ""
    ) -> Dict[str, Any]:
        """
        Evaluate a reading and append the outcome to the vehicle's chain.

        Args:
            vehicle_id: Vehicle the reading belongs to
            reading: Odometer value in km
            proof: Proof bundle captured with the reading
            submitter_id: Application presenting the reading
            location: Free-form capture location
            image_digest: Digest of the captured image

        Returns:
            {"accepted": True, "seal_hash", ...} on acceptance, otherwise
            {"accepted": False, "error", "reason", ...} where error is one of
            validation_rejected, not_found, suspended, invalid_submission,
            mining_timeout
        """
        self._require_open()
        submitter_id = submitter_id or self.config.submitter_id

        valid, reason = validate_submission(reading, proof)
        if not valid:
            return self._refusal(vehicle_id, "invalid_submission", reason)

        with self._locks.hold(vehicle_id):
            chain = self.store.get_chain(vehicle_id)
            if chain is None:
                return self._refusal(vehicle_id, "not_found", NotFound(vehicle_id).message)
            if not chain.is_active:
                return self._refusal(
                    vehicle_id,
                    "suspended",
                    Suspended(vehicle_id, chain.fraud_score).message,
                    strikes=chain.fraud_score
                )

            now = self._now()
            timestamp = now.isoformat()
            evaluation = evaluate_submission(
                chain,
                reading,
                proof,
                submitter_id,
                duplicate_index=self.index,
                now=now,
                config=self.config
            )

            try:
                if evaluation["is_fraud"]:
                    result = self._reject(chain, reading, proof, submitter_id, evaluation, timestamp)
                else:
                    result = self._accept(
                        chain, reading, proof, submitter_id, evaluation, timestamp,
                        location, image_digest
                    )
            except MiningTimeout as exc:
                emit_receipt("mining_timeout", {"vehicle_id": vehicle_id, **exc.context})
                return self._refusal(vehicle_id, "mining_timeout", exc.message)

        if result["accepted"]:
            self._publish_async(vehicle_id, reading, result["seal_hash"], timestamp, submitter_id)

        return result

    def _accept(
        self,
        chain: Chain,
        reading: float,
        proof: ProofBundle,
        submitter_id: str,
        evaluation: Dict,
        timestamp: str,
        location: str,
        image_digest: str
    ) -> Dict[str, Any]:
        payload = odometer_reading_payload(
            chain.vehicle_id, reading, proof, submitter_id,
            location=location, image_digest=image_digest
        )
        block = self._mine(chain, payload, timestamp)
        chain.last_accepted_reading = reading
        self.store.put_chain(chain)
        self.index.record(chain.vehicle_id, reading, submitter_id, block.seal_hash, block.timestamp)

        emit_receipt("reading_accepted", {
            "vehicle_id": chain.vehicle_id,
            "reading": reading,
            "submitter_id": submitter_id,
            "seal_hash": block.seal_hash,
            "block_index": block.index,
            "fraud_score": evaluation["score"],
            "risk_level": evaluation["risk_level"]
        })

        return {
            "accepted": True,
            "status": "accepted",
            "seal_hash": block.seal_hash,
            "block_index": block.index,
            "score": evaluation["score"],
            "risk_level": evaluation["risk_level"],
            "reasons": evaluation["reasons"]
        }

    def _reject(
        self,
        chain: Chain,
        reading: float,
        proof: ProofBundle,
        submitter_id: str,
        evaluation: Dict,
        timestamp: str
    ) -> Dict[str, Any]:
        payload = fraud_alert_payload(
            chain.vehicle_id, evaluation["reasons"], evaluation["score"], proof,
            submitter_id, reading=reading
        )
        block = self._mine(chain, payload, timestamp)

        chain.fraud_score += 1
        suspended_now = chain.is_active and chain.fraud_score >= self.config.suspension_strikes
        if suspended_now:
            chain.is_active = False
        self.store.put_chain(chain)

        emit_receipt("fraud_alert", {
            "vehicle_id": chain.vehicle_id,
            "reading": reading,
            "submitter_id": submitter_id,
            "reasons": evaluation["reasons"],
            "fraud_score": evaluation["score"],
            "risk_level": evaluation["risk_level"],
            "strikes": chain.fraud_score,
            "seal_hash": block.seal_hash
        })
        if suspended_now:
            emit_receipt("chain_suspended", {
                "vehicle_id": chain.vehicle_id,
                "strikes": chain.fraud_score,
                "threshold": self.config.suspension_strikes
            })

        return {
            "accepted": False,
            "status": "rejected",
            "error": "validation_rejected",
            "reason": payload["reason"],
            "reasons": evaluation["reasons"],
            "score": evaluation["score"],
            "risk_level": evaluation["risk_level"],
            "alert_seal_hash": block.seal_hash,
            "block_index": block.index,
            "strikes": chain.fraud_score,
            "is_active": chain.is_active
        }

    def _refusal(self, vehicle_id: str, error: str, reason: str, **extra) -> Dict[str, Any]:
        emit_receipt("submission_refused", {
            "vehicle_id": vehicle_id,
            "error": error,
            "reason": reason
        })
        return {"accepted": False, "status": error, "error": error, "reason": reason, **extra}

    # === PUBLICATION ===

    def _publish_async(self, vehicle_id: str, reading: float, seal_hash: str,
                       submitted_at: str, submitter_id: str) -> None:
        if isinstance(self.publisher, NullPublisher):
            return
        with self._state_lock:
            if self._publish_pool is None:
                future = None
            else:
                future = self._publish_pool.submit(
                    self._publish, vehicle_id, reading, seal_hash, submitted_at, submitter_id
                )
        if future is None:
            emit_receipt("publish_failure", {
                "vehicle_id": vehicle_id,
                "reading": reading,
                "seal_hash": seal_hash,
                "error": "registry closed"
            })
            return
        with self._pending_lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def _publish(self, vehicle_id: str, reading: float, seal_hash: str,
                 submitted_at: str, submitter_id: str) -> Dict[str, Any]:
        receipt_data = {
            "vehicle_id": vehicle_id,
            "reading": reading,
            "seal_hash": seal_hash
        }
        try:
            outcome = self.publisher.publish(vehicle_id, reading, seal_hash, submitted_at, submitter_id)
        except Exception as exc:
            # Publication is advisory; the local acceptance stands
            emit_receipt("publish_failure", {**receipt_data, "error": str(exc)})
            return {"success": False, "error": str(exc)}

        if outcome.get("success"):
            emit_receipt("publish_success", {**receipt_data, "tx_hash": outcome.get("tx_hash")})
        else:
            emit_receipt("publish_failure", {**receipt_data, "error": outcome.get("error")})
        return outcome

    def wait_for_publications(self, timeout: Optional[float] = None) -> List[Dict]:
        """Block until in-flight publications finish; return their outcomes."""
        with self._pending_lock:
            futures = list(self._pending)
        done, _ = wait(futures, timeout=timeout)
        return [f.result() for f in futures if f in done]

    # === QUERIES ===

    def get_chain_summary(self, vehicle_id: str) -> Optional[Dict[str, Any]]:
        """
        Counts, strike state and integrity of a chain; None if unknown.
        """
        self._require_open()
        with self._locks.hold(vehicle_id):
            chain = self.store.get_chain(vehicle_id)
        if chain is None:
            return None

        return {
            "vehicle_id": chain.vehicle_id,
            "owner_id": chain.owner_id,
            "total_blocks": len(chain.blocks),
            "reading_count": len(chain.reading_blocks()),
            "alert_count": len(chain.blocks_of_type("fraud_alert")),
            "fraud_score": chain.fraud_score,
            "is_active": chain.is_active,
            "status": "active" if chain.is_active else "suspended",
            "last_accepted_reading": chain.last_accepted_reading,
            "integrity": verify_chain(chain, self.config.difficulty)
        }

    def verify_chain(self, vehicle_id: str) -> Dict[str, Any]:
        """
        Verify a stored chain. Mismatches are reported, never repaired.
        """
        self._require_open()
        with self._locks.hold(vehicle_id):
            chain = self.store.get_chain(vehicle_id)
        if chain is None:
            return {"valid": False, "errors": ["Chain not found"]}

        result = verify_chain(chain, self.config.difficulty)
        if not result["valid"]:
            emit_receipt("anomaly", {
                "anomaly_type": "integrity_violation",
                "vehicle_id": vehicle_id,
                "errors": result["errors"]
            })
        return result

    def assert_chain_integrity(self, vehicle_id: str) -> None:
        """
        Audit hook: raise IntegrityViolation if the chain fails verification.

        Raises:
            NotFound: If the vehicle has no chain
        """
        self._require_open()
        with self._locks.hold(vehicle_id):
            chain = self.store.get_chain(vehicle_id)
        if chain is None:
            raise NotFound(vehicle_id)

        result = verify_chain(chain, self.config.difficulty)
        if not result["valid"]:
            stoprule_integrity_violation(vehicle_id, result["errors"])

    def export_chain(self, vehicle_id: str) -> Optional[Chain]:
        """Full copy of a chain for audit, None if unknown."""
        self._require_open()
        with self._locks.hold(vehicle_id):
            return self.store.get_chain(vehicle_id)

    def list_vehicles(self) -> List[str]:
        self._require_open()
        return self.store.list_vehicles()

    def reactivate_chain(self, vehicle_id: str, actor: str = "admin") -> Dict[str, Any]:
        """
        Administrative action: lift a suspension. Strikes are kept, so the
        next rejection suspends the chain again.

        Raises:
            NotFound: If the vehicle has no chain
        """
        self._require_open()
        with self._locks.hold(vehicle_id):
            chain = self.store.get_chain(vehicle_id)
            if chain is None:
                raise NotFound(vehicle_id)
            was_active = chain.is_active
            chain.is_active = True
            self.store.put_chain(chain)

        if not was_active:
            emit_receipt("chain_reactivated", {
                "vehicle_id": vehicle_id,
                "actor": actor,
                "strikes": chain.fraud_score
            })

        return {"vehicle_id": vehicle_id, "is_active": True,
                "was_active": was_active, "strikes": chain.fraud_score}
