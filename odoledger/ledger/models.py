"""
Ledger Data Model

Block, Chain and ProofBundle records plus the tagged payload builders.
Payloads are plain dicts tagged by their "type" key so they encode
canonically for sealing.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core import (
    digest,
    canonical_encode,
    PAYLOAD_USER_REGISTRY,
    PAYLOAD_ODOMETER_READING,
    PAYLOAD_FRAUD_ALERT,
    PAYLOAD_TYPES
)


@dataclass(frozen=True)
class ProofBundle:
    """Evidence captured with a reading."""
    ocr_confidence: float
    location_accuracy: float
    device_fingerprint: str = ""
    captured_at: Optional[str] = None
    image_metadata: Any = None

    @property
    def image_metadata_digest(self) -> str:
        if self.image_metadata is None:
            return ""
        if isinstance(self.image_metadata, str):
            return digest(self.image_metadata)
        return digest(canonical_encode(self.image_metadata))

    def metadata_dict(self) -> Optional[Dict]:
        """Image metadata as a dict, None when absent or unparsable."""
        meta = self.image_metadata
        if isinstance(meta, dict):
            return meta
        if isinstance(meta, str) and meta:
            try:
                parsed = json.loads(meta)
            except ValueError:
                return None
            return parsed if isinstance(parsed, dict) else None
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ocr_confidence": self.ocr_confidence,
            "location_accuracy": self.location_accuracy,
            "device_fingerprint": self.device_fingerprint,
            "captured_at": self.captured_at,
            "image_metadata": self.image_metadata,
            "image_metadata_digest": self.image_metadata_digest
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProofBundle":
        return cls(
            ocr_confidence=float(data.get("ocr_confidence", 0.0)),
            location_accuracy=float(data.get("location_accuracy", 0.0)),
            device_fingerprint=data.get("device_fingerprint") or "",
            captured_at=data.get("captured_at"),
            image_metadata=data.get("image_metadata")
        )


@dataclass(frozen=True)
class Block:
    """One immutable, hash-sealed record in a vehicle's chain."""
    index: int
    timestamp: str
    payload: Dict[str, Any]
    seal_hash: str
    previous_seal_hash: str
    nonce: int
    merkle_root: str

    @property
    def payload_type(self) -> str:
        return self.payload.get("type", "")

    def seal_fields(self) -> Dict[str, Any]:
        """Fields covered by the seal hash."""
        return {
            "index": self.index,
            "timestamp": self.timestamp,
            "payload": self.payload,
            "previous_seal_hash": self.previous_seal_hash,
            "nonce": self.nonce,
            "merkle_root": self.merkle_root
        }

    def to_dict(self) -> Dict[str, Any]:
        return {**self.seal_fields(), "seal_hash": self.seal_hash}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Block":
        return cls(
            index=int(data["index"]),
            timestamp=data["timestamp"],
            payload=dict(data["payload"]),
            seal_hash=data["seal_hash"],
            previous_seal_hash=data["previous_seal_hash"],
            nonce=int(data["nonce"]),
            merkle_root=data["merkle_root"]
        )


@dataclass
class Chain:
    """
    Append-only block sequence for one vehicle.

    fraud_score counts integer strikes (rejected submissions); it only grows.
    """
    vehicle_id: str
    owner_id: str
    blocks: List[Block] = field(default_factory=list)
    fraud_score: int = 0
    is_active: bool = True
    last_accepted_reading: float = 0

    @property
    def last_block(self) -> Block:
        return self.blocks[-1]

    def blocks_of_type(self, payload_type: str) -> List[Block]:
        return [b for b in self.blocks if b.payload_type == payload_type]

    def reading_blocks(self) -> List[Block]:
        return self.blocks_of_type(PAYLOAD_ODOMETER_READING)

    def last_reading_block(self) -> Optional[Block]:
        for block in reversed(self.blocks):
            if block.payload_type == PAYLOAD_ODOMETER_READING:
                return block
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vehicle_id": self.vehicle_id,
            "owner_id": self.owner_id,
            "blocks": [b.to_dict() for b in self.blocks],
            "fraud_score": self.fraud_score,
            "is_active": self.is_active,
            "last_accepted_reading": self.last_accepted_reading
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chain":
        return cls(
            vehicle_id=data["vehicle_id"],
            owner_id=data.get("owner_id", ""),
            blocks=[Block.from_dict(b) for b in data.get("blocks", [])],
            fraud_score=int(data.get("fraud_score", 0)),
            is_active=bool(data.get("is_active", True)),
            last_accepted_reading=data.get("last_accepted_reading", 0)
        )


def user_registry_payload(vehicle_id: str, owner_id: str) -> Dict[str, Any]:
    """Genesis payload binding a vehicle to its owner."""
    return {
        "type": PAYLOAD_USER_REGISTRY,
        "vehicle_id": vehicle_id,
        "owner_id": owner_id
    }


def odometer_reading_payload(
    vehicle_id: str,
    reading: float,
    proof: ProofBundle,
    submitter_id: str,
    location: str = "",
    image_digest: str = ""
) -> Dict[str, Any]:
    """Payload of an accepted reading."""
    return {
        "type": PAYLOAD_ODOMETER_READING,
        "vehicle_id": vehicle_id,
        "reading": reading,
        "location": location,
        "image_digest": image_digest,
        "submitter_id": submitter_id,
        "proof": proof.to_dict()
    }


def fraud_alert_payload(
    vehicle_id: str,
    reasons: List[str],
    score: float,
    proof: ProofBundle,
    submitter_id: str,
    reading: Optional[float] = None
) -> Dict[str, Any]:
    """Payload recording a rejected submission."""
    return {
        "type": PAYLOAD_FRAUD_ALERT,
        "vehicle_id": vehicle_id,
        "reason": "; ".join(reasons),
        "reasons": list(reasons),
        "score": score,
        "rejected_reading": reading,
        "submitter_id": submitter_id,
        "proof": proof.to_dict()
    }


def validate_payload(payload: Dict[str, Any]) -> tuple:
    """
    Check a payload carries a known type and a vehicle_id.

    Returns:
        Tuple of (valid: bool, reason: str)
    """
    if not isinstance(payload, dict):
        return False, "payload must be a dict"
    if payload.get("type") not in PAYLOAD_TYPES:
        return False, f"Unknown payload type: {payload.get('type')}"
    if not payload.get("vehicle_id"):
        return False, "vehicle_id cannot be empty"
    return True, "valid"
