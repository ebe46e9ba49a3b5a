"""
OdoLedger Core Module

Foundation module providing:
- digest / canonical_encode: SHA256 content hashing over canonical JSON
- dual_hash: SHA256:BLAKE3 dual hashing for receipts
- merkle_root: Merkle root computation over payloads
- emit_receipt: Receipt creation with timestamps and hashes
- StopRule and the typed registry errors
- Constants and configuration
"""

import hashlib
import json
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

import blake3


# === TENANT CONFIGURATION ===
TENANT_ID = "odoledger"
DEFAULT_SUBMITTER_ID = "odoledger"
APP_SIGNATURE = "OdoLedger-v1.0"

# === LEDGER CONSTANTS ===
DIFFICULTY = 4                        # Leading zero hex digits in a seal hash
GENESIS_SENTINEL = "0"                # previous_seal_hash of block 0
MINING_ATTEMPT_FACTOR = 64            # max attempts = 16**difficulty * factor
MINING_DEADLINE_CHECK_EVERY = 1024    # Attempts between wall-clock checks

# Payload types
PAYLOAD_USER_REGISTRY = "user_registry"
PAYLOAD_ODOMETER_READING = "odometer_reading"
PAYLOAD_FRAUD_ALERT = "fraud_alert"
PAYLOAD_TYPES = (PAYLOAD_USER_REGISTRY, PAYLOAD_ODOMETER_READING, PAYLOAD_FRAUD_ALERT)

# === FRAUD POLICY ===
FRAUD_THRESHOLD = 0.6                 # score > threshold = reject
MAX_PLAUSIBLE_SPEED_KMH = 200
SPEED_WEIGHT = 0.8
ROLLBACK_WEIGHT = 0.9
NO_INCREASE_WEIGHT = 0.9
MIN_OCR_CONFIDENCE = 0.7
LOW_OCR_WEIGHT = 0.3
MAX_LOCATION_ACCURACY_M = 100
LOCATION_WEIGHT = 0.2
DUPLICATE_WEIGHT = 0.9
IMAGE_EDIT_WEIGHT = 0.7
FINGERPRINT_WEIGHT = 0.4
FINGERPRINT_LOOKBACK = 3
FINGERPRINT_MIN_CONSISTENT = 2
EDITING_SOFTWARE = [
    "photoshop", "gimp", "pixelmator", "canva",
    "lightroom", "snapseed", "picsart"
]

# Strikes (integer) gate suspension, the continuous score gates one decision
SUSPENSION_STRIKES = 3

# === DUPLICATE INDEX ===
DUPLICATE_WINDOW_DAYS = 30
INDEX_CAP_PER_VEHICLE = 100

# === WORKERS ===
MINING_WORKERS = 4
PUBLISH_WORKERS = 2

# Receipts ledger path
RECEIPTS_LEDGER_ENV = "ODOLEDGER_RECEIPTS_PATH"
RECEIPTS_LEDGER_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "receipts.jsonl")

# Receipt schema for autodocumentation
RECEIPT_SCHEMA = {
    "base_fields": ["receipt_type", "ts", "tenant_id", "payload_hash"],
    "hash_format": "sha256:blake3",
    "tenant_id": TENANT_ID
}

_ledger_lock = threading.Lock()


class StopRule(Exception):
    """
    Exception raised when a stoprule triggers.

    Stoprules indicate failures that must halt the current operation.
    Never catch silently - always log and re-raise or handle explicitly.
    """

    def __init__(self, rule_name: str, message: str, context: Optional[Dict] = None):
        self.rule_name = rule_name
        self.message = message
        self.context = context or {}
        super().__init__(f"STOPRULE [{rule_name}]: {message}")


class AlreadyExists(StopRule):
    """A chain already exists for the vehicle."""

    def __init__(self, vehicle_id: str):
        super().__init__(
            "already_exists",
            f"Chain already exists for vehicle {vehicle_id}",
            {"vehicle_id": vehicle_id}
        )


class NotFound(StopRule):
    """No chain exists for the vehicle."""

    def __init__(self, vehicle_id: str):
        super().__init__(
            "not_found",
            f"No chain found for vehicle {vehicle_id}",
            {"vehicle_id": vehicle_id}
        )


class Suspended(StopRule):
    """The vehicle's chain is suspended and refuses submissions."""

    def __init__(self, vehicle_id: str, strikes: int = 0):
        super().__init__(
            "suspended",
            f"Chain suspended for vehicle {vehicle_id}",
            {"vehicle_id": vehicle_id, "strikes": strikes}
        )


class MiningTimeout(StopRule):
    """Proof-of-work search exhausted its attempt or time budget."""

    def __init__(self, index: int, attempts: int, difficulty: int, elapsed_sec: float):
        self.attempts = attempts
        super().__init__(
            "mining_timeout",
            f"No seal found for block {index} after {attempts} attempts ({elapsed_sec:.2f}s)",
            {"index": index, "attempts": attempts, "difficulty": difficulty,
             "elapsed_sec": elapsed_sec}
        )


class IntegrityViolation(StopRule):
    """Chain verification found one or more mismatches."""

    def __init__(self, vehicle_id: str, errors: List[str]):
        self.errors = list(errors)
        super().__init__(
            "integrity_violation",
            f"Chain for vehicle {vehicle_id} failed verification: {len(errors)} error(s)",
            {"vehicle_id": vehicle_id, "errors": list(errors)}
        )


def digest(data: Union[bytes, str]) -> str:
    """
    SHA256 hex digest (64 chars).

    Pure function - no side effects.
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def canonical_encode(obj: Any) -> bytes:
    """
    Deterministic JSON encoding: sorted keys, no whitespace, UTF-8.

    Non-JSON values (datetimes) are stringified.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str).encode('utf-8')


def dual_hash(data: Union[bytes, str]) -> str:
    """
    Compute dual hash in SHA256:BLAKE3 format.

    Args:
        data: Input data as bytes or string

    Returns:
        Hash string in format "sha256_hex:blake3_hex"
    """
    if isinstance(data, str):
        data = data.encode('utf-8')

    sha256_hash = hashlib.sha256(data).hexdigest()
    blake3_hash = blake3.blake3(data).hexdigest()

    return f"{sha256_hash}:{blake3_hash}"


def merkle_root(payloads: Sequence[Any]) -> str:
    """
    Compute Merkle root over an ordered sequence of payloads.

    Args:
        payloads: Items to seal (dicts, strings or bytes)

    Returns:
        "" for an empty sequence, digest of the single encoded element for
        one element, otherwise the root of the pairwise digest tree.

    Odd levels duplicate their last digest. Order-sensitive.
    """
    if not payloads:
        return ""

    hashes = []
    for item in payloads:
        if isinstance(item, bytes):
            hashes.append(digest(item))
        else:
            hashes.append(digest(canonical_encode(item)))

    while len(hashes) > 1:
        if len(hashes) % 2 == 1:
            hashes.append(hashes[-1])

        new_level = []
        for i in range(0, len(hashes), 2):
            new_level.append(digest(hashes[i] + hashes[i + 1]))
        hashes = new_level

    return hashes[0]


def utc_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def parse_ts(ts: Union[str, datetime]) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are taken as UTC.
    """
    if isinstance(ts, datetime):
        dt = ts
    else:
        dt = datetime.fromisoformat(ts.replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def get_ledger_path() -> str:
    """Receipts ledger path, overridable by environment."""
    return os.environ.get(RECEIPTS_LEDGER_ENV) or RECEIPTS_LEDGER_PATH


def emit_receipt(receipt_type: str, data: Dict[str, Any], tenant_id: str = TENANT_ID) -> Dict[str, Any]:
    """
    Create a receipt with timestamp, tenant_id, and payload hash.

    Args:
        receipt_type: Type of receipt (e.g., "reading_accepted")
        data: Payload data to include in receipt
        tenant_id: Tenant identifier (default: "odoledger")

    Returns:
        Complete receipt dict with ts, tenant_id, and payload_hash
    """
    ts = utc_now().isoformat()

    payload_json = json.dumps(data, sort_keys=True, default=str)
    payload_hash = dual_hash(payload_json)

    receipt = {
        "receipt_type": receipt_type,
        "ts": ts,
        "tenant_id": tenant_id,
        **data,
        "payload_hash": payload_hash
    }

    append_to_ledger(receipt)

    return receipt


def append_to_ledger(receipt: Dict[str, Any]) -> None:
    """
    Append a receipt to the receipts.jsonl ledger.

    Args:
        receipt: Receipt dict to append
    """
    line = json.dumps(receipt, default=str) + '\n'
    try:
        with _ledger_lock:
            with open(get_ledger_path(), 'a') as f:
                f.write(line)
    except OSError:
        # Receipt trail is best-effort; chain state lives in the store
        pass


def load_receipts(ledger_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Load all receipts from the ledger.

    Args:
        ledger_path: Path to ledger file (default: get_ledger_path())

    Returns:
        List of receipt dicts
    """
    path = ledger_path or get_ledger_path()
    receipts = []

    try:
        with open(path, 'r') as f:
            for line in f:
                line = line.strip()
                if line:
                    receipts.append(json.loads(line))
    except FileNotFoundError:
        pass

    return receipts


def stoprule_integrity_violation(vehicle_id: str, errors: List[str]) -> None:
    """
    Stoprule: chain verification failed.

    Emits anomaly receipt and raises IntegrityViolation.
    """
    emit_receipt("anomaly", {
        "anomaly_type": "integrity_violation",
        "vehicle_id": vehicle_id,
        "errors": errors
    })
    raise IntegrityViolation(vehicle_id, errors)


def stoprule_mining_timeout(vehicle_id: str, exc: MiningTimeout) -> None:
    """
    Stoprule: proof-of-work budget exhausted.

    Emits violation receipt and re-raises.
    """
    emit_receipt("mining_timeout", {
        "vehicle_id": vehicle_id,
        **exc.context
    })
    raise exc


def validate_receipt(receipt: Dict[str, Any]) -> tuple:
    """
    Validate a receipt has required fields and valid structure.

    Args:
        receipt: Receipt dict to validate

    Returns:
        Tuple of (is_valid: bool, reason: str)
    """
    required_fields = RECEIPT_SCHEMA["base_fields"]

    for field in required_fields:
        if field not in receipt:
            return False, f"Missing required field: {field}"

    if receipt["tenant_id"] != TENANT_ID:
        return False, f"Invalid tenant_id: {receipt['tenant_id']}"

    payload_hash = receipt.get("payload_hash", "")
    if ":" not in payload_hash:
        return False, f"Invalid hash format: {payload_hash}"

    parts = payload_hash.split(":")
    if len(parts) != 2 or len(parts[0]) != 64 or len(parts[1]) != 64:
        return False, f"Invalid hash lengths in: {payload_hash}"

    return True, "valid"


def get_risk_level(score: float) -> str:
    """
    Convert numeric fraud score to level.

    Args:
        score: Fraud score between 0 and 1

    Returns:
        Risk level: "low", "medium", "high", or "critical"
    """
    if score < 0.2:
        return "low"
    elif score < 0.5:
        return "medium"
    elif score < 0.8:
        return "high"
    else:
        return "critical"
