"""
Fraud Evaluator Module

Scores a candidate reading against the chain tail and the duplicate index.
Pure with respect to the chain: nothing is appended or recorded here.
"""

import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import RegistryConfig
from ..core import utc_now, get_risk_level
from ..ledger.models import Chain, ProofBundle
from .heuristics import (
    DEFAULT_HEURISTICS,
    SubmissionContext,
    CheckResult,
    build_context
)


def validate_submission(reading: Any, proof: Any) -> Tuple[bool, str]:
    """
    Check the shape of a submission before it is scored.

    Args:
        reading: Candidate odometer value
        proof: Proof bundle

    Returns:
        Tuple of (valid: bool, reason: str)
    """
    if isinstance(reading, bool) or not isinstance(reading, (int, float)):
        return False, "reading must be numeric"
    if not math.isfinite(reading):
        return False, "reading must be finite"
    if reading < 0:
        return False, "reading cannot be negative"

    if not isinstance(proof, ProofBundle):
        return False, "proof must be a ProofBundle"
    if not 0 <= proof.ocr_confidence <= 1:
        return False, f"ocr_confidence out of range: {proof.ocr_confidence}"
    if not math.isfinite(proof.location_accuracy):
        return False, "location_accuracy must be finite"
    if proof.location_accuracy < 0:
        return False, "location_accuracy cannot be negative"

    return True, "valid"


def fold_checks(
    ctx: SubmissionContext,
    heuristics: List[Tuple[str, Callable[[SubmissionContext], CheckResult]]]
) -> Tuple[float, List[str], Dict[str, float]]:
    """Run every check; sum deltas, keep reasons in check order."""
    score = 0.0
    reasons = []
    checks = {}

    for name, check in heuristics:
        delta, reason = check(ctx)
        checks[name] = delta
        if delta > 0:
            score += delta
            if reason:
                reasons.append(reason)

    return min(score, 1.0), reasons, checks


def evaluate_submission(
    chain: Chain,
    reading: float,
    proof: ProofBundle,
    submitter_id: str,
    duplicate_index=None,
    now: Optional[datetime] = None,
    config: Optional[RegistryConfig] = None,
    heuristics: Optional[List[Tuple[str, Callable]]] = None
) -> Dict[str, Any]:
    """
    Accept/reject decision for one candidate reading.

    Args:
        chain: Vehicle chain (read only)
        reading: Candidate odometer value
        proof: Proof bundle
        submitter_id: Application presenting the reading
        duplicate_index: Optional DuplicateIndex
        now: Evaluation time (default: now)
        config: Registry configuration
        heuristics: Checks to fold (default: DEFAULT_HEURISTICS)

    Returns:
        Dict with is_fraud, score (0..1), reasons, checks, risk_level
    """
    config = config or RegistryConfig()
    ctx = build_context(
        chain,
        reading,
        proof,
        submitter_id,
        now or utc_now(),
        config,
        duplicate_index=duplicate_index
    )

    score, reasons, checks = fold_checks(ctx, heuristics or DEFAULT_HEURISTICS)

    return {
        "is_fraud": score > config.fraud_threshold,
        "score": score,
        "reasons": reasons,
        "checks": checks,
        "risk_level": get_risk_level(score),
        "duplicate": ctx.duplicate
    }
