"""
Fraud Heuristics Module

Independent checks over a submission context. Each check is a pure
function returning (score_delta, reason or None); the evaluator folds them.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from ..config import RegistryConfig
from ..core import (
    parse_ts,
    SPEED_WEIGHT,
    ROLLBACK_WEIGHT,
    NO_INCREASE_WEIGHT,
    LOW_OCR_WEIGHT,
    LOCATION_WEIGHT,
    DUPLICATE_WEIGHT,
    IMAGE_EDIT_WEIGHT,
    FINGERPRINT_WEIGHT,
    FINGERPRINT_LOOKBACK,
    FINGERPRINT_MIN_CONSISTENT
)
from ..ledger.models import Block, Chain, ProofBundle


CheckResult = Tuple[float, Optional[str]]


@dataclass(frozen=True)
class SubmissionContext:
    """Read-only view of a candidate reading and the chain tail it lands on."""
    vehicle_id: str
    reading: float
    proof: ProofBundle
    submitter_id: str
    now: datetime
    last_accepted_reading: float
    last_reading_block: Optional[Block]
    recent_fingerprints: Tuple[str, ...]
    duplicate: Optional[Dict]
    config: RegistryConfig

    @property
    def has_prior_reading(self) -> bool:
        return self.last_reading_block is not None

    @property
    def km_delta(self) -> float:
        return self.reading - self.last_accepted_reading


def build_context(
    chain: Chain,
    reading: float,
    proof: ProofBundle,
    submitter_id: str,
    now: datetime,
    config: RegistryConfig,
    duplicate_index=None
) -> SubmissionContext:
    """
    Gather everything the checks need from the chain tail and the index.

    Args:
        chain: Vehicle chain (not modified)
        reading: Candidate odometer value
        proof: Proof bundle captured with the reading
        submitter_id: Application presenting the reading
        now: Evaluation time
        config: Registry configuration
        duplicate_index: Optional DuplicateIndex to consult

    Returns:
        SubmissionContext
    """
    reading_blocks = chain.reading_blocks()
    recent = reading_blocks[-FINGERPRINT_LOOKBACK:]
    fingerprints = tuple(
        b.payload.get("proof", {}).get("device_fingerprint")
        for b in recent
        if b.payload.get("proof", {}).get("device_fingerprint")
    )

    duplicate = None
    if duplicate_index is not None:
        duplicate = duplicate_index.lookup(
            chain.vehicle_id, reading, now=now, exclude_submitter=submitter_id
        )

    return SubmissionContext(
        vehicle_id=chain.vehicle_id,
        reading=reading,
        proof=proof,
        submitter_id=submitter_id,
        now=now,
        last_accepted_reading=chain.last_accepted_reading,
        last_reading_block=reading_blocks[-1] if reading_blocks else None,
        recent_fingerprints=fingerprints,
        duplicate=duplicate,
        config=config
    )


def check_speed(ctx: SubmissionContext) -> CheckResult:
    """Average speed since the last accepted reading above the plausible limit."""
    if not ctx.has_prior_reading or ctx.km_delta <= 0:
        return 0.0, None

    elapsed = ctx.now - parse_ts(ctx.last_reading_block.timestamp)
    hours = elapsed.total_seconds() / 3600

    if hours <= 0:
        return SPEED_WEIGHT, f"Impossible speed detected: {ctx.km_delta:g} km in no elapsed time"

    speed = ctx.km_delta / hours
    if speed > ctx.config.max_speed_kmh:
        return SPEED_WEIGHT, f"Impossible speed detected: {speed:.0f} km/h"

    return 0.0, None


def check_rollback(ctx: SubmissionContext) -> CheckResult:
    """Reading below, or equal to, the last accepted reading."""
    if not ctx.has_prior_reading:
        return 0.0, None

    if ctx.km_delta < 0:
        return ROLLBACK_WEIGHT, (
            f"Odometer rollback detected: {ctx.reading:g} < {ctx.last_accepted_reading:g}"
        )
    if ctx.km_delta == 0:
        return NO_INCREASE_WEIGHT, (
            f"No odometer increase since last reading ({ctx.last_accepted_reading:g})"
        )

    return 0.0, None


def check_ocr_confidence(ctx: SubmissionContext) -> CheckResult:
    if ctx.proof.ocr_confidence < ctx.config.min_ocr_confidence:
        return LOW_OCR_WEIGHT, f"Low OCR confidence: {ctx.proof.ocr_confidence:.2f}"
    return 0.0, None


def check_location_accuracy(ctx: SubmissionContext) -> CheckResult:
    if ctx.proof.location_accuracy > ctx.config.max_location_accuracy_m:
        return LOCATION_WEIGHT, f"Poor location accuracy: {ctx.proof.location_accuracy:g}m"
    return 0.0, None


def check_duplicate(ctx: SubmissionContext) -> CheckResult:
    """Same (vehicle, reading) accepted from another submitter inside the window."""
    if ctx.duplicate is None:
        return 0.0, None

    return DUPLICATE_WEIGHT, (
        f"Reading already used by {ctx.duplicate['submitter_id']} "
        f"at {ctx.duplicate['submitted_at']}"
    )


def check_image_manipulation(ctx: SubmissionContext) -> CheckResult:
    """
    Metadata declaring known editing software.

    Unparsable or missing metadata passes.
    """
    meta = ctx.proof.metadata_dict()
    if not meta:
        return 0.0, None

    software = str(meta.get("software") or "").lower()
    if software and any(editor in software for editor in ctx.config.editing_software):
        return IMAGE_EDIT_WEIGHT, f"Image manipulation detected: {software}"

    return 0.0, None


def check_device_fingerprint(ctx: SubmissionContext) -> CheckResult:
    """
    Device differs from a fingerprint that has been consistent recently.

    Fewer than FINGERPRINT_MIN_CONSISTENT fingerprinted readings always pass.
    """
    fingerprints = ctx.recent_fingerprints
    if len(fingerprints) < FINGERPRINT_MIN_CONSISTENT:
        return 0.0, None

    most_recent = fingerprints[-1]
    consistent = sum(1 for fp in fingerprints if fp == most_recent)

    if consistent >= FINGERPRINT_MIN_CONSISTENT and ctx.proof.device_fingerprint != most_recent:
        return FINGERPRINT_WEIGHT, "Suspicious device change"

    return 0.0, None


DEFAULT_HEURISTICS: List[Tuple[str, Callable[[SubmissionContext], CheckResult]]] = [
    ("speed", check_speed),
    ("rollback", check_rollback),
    ("ocr_confidence", check_ocr_confidence),
    ("location_accuracy", check_location_accuracy),
    ("duplicate", check_duplicate),
    ("image_manipulation", check_image_manipulation),
    ("device_fingerprint", check_device_fingerprint)
]
