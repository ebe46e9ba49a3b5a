"""
OdoLedger Fraud Module

Scores odometer submissions before they reach a chain.

Signals:
- Impossible speed since the last accepted reading
- Odometer rollback or no increase
- Low OCR confidence, poor location accuracy
- Same reading already used by another submitter (duplicate index)
- Image metadata naming editing software
- Device fingerprint drift
"""

from .duplicates import DuplicateIndex
from .heuristics import (
    SubmissionContext,
    build_context,
    check_speed,
    check_rollback,
    check_ocr_confidence,
    check_location_accuracy,
    check_duplicate,
    check_image_manipulation,
    check_device_fingerprint,
    DEFAULT_HEURISTICS
)
from .evaluator import evaluate_submission, validate_submission, fold_checks

__all__ = [
    # duplicates
    'DuplicateIndex',
    # heuristics
    'SubmissionContext', 'build_context',
    'check_speed', 'check_rollback', 'check_ocr_confidence',
    'check_location_accuracy', 'check_duplicate', 'check_image_manipulation',
    'check_device_fingerprint', 'DEFAULT_HEURISTICS',
    # evaluator
    'evaluate_submission', 'validate_submission', 'fold_checks'
]
