"""
OdoLedger - Tamper-Evident Odometer Registry

Per-vehicle hash-chained ledger of odometer submissions:
- Proof-of-work sealed, append-only chains (one per vehicle)
- Additive fraud scoring before every append
- Cross-submitter duplicate-reading index
- Receipts-native audit trail
"""

__version__ = "1.0.0"
__author__ = "OdoLedger Team"
