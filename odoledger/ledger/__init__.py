"""
OdoLedger Ledger Module

Per-vehicle append-only chains sealed by proof-of-work.

- Genesis: one user_registry block per vehicle, previous seal "0"
- Readings and fraud alerts are mined on top of the tail
- Verification reports every broken seal, prefix and link; it never repairs
"""

from .models import (
    Block,
    Chain,
    ProofBundle,
    user_registry_payload,
    odometer_reading_payload,
    fraud_alert_payload,
    validate_payload
)
from .chain import (
    compute_seal,
    meets_difficulty,
    mine_block,
    create_chain,
    append_block,
    mine_and_append,
    verify_chain,
    error_indexes
)

__all__ = [
    # models
    'Block', 'Chain', 'ProofBundle',
    'user_registry_payload', 'odometer_reading_payload', 'fraud_alert_payload',
    'validate_payload',
    # chain
    'compute_seal', 'meets_difficulty', 'mine_block', 'create_chain',
    'append_block', 'mine_and_append', 'verify_chain', 'error_indexes'
]
