"""
Registry Configuration

Every tunable of the registry in one dataclass. Defaults come from the
constants in core; from_env() overlays ODOLEDGER_* environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from .core import (
    DIFFICULTY,
    DEFAULT_SUBMITTER_ID,
    DUPLICATE_WINDOW_DAYS,
    EDITING_SOFTWARE,
    FRAUD_THRESHOLD,
    INDEX_CAP_PER_VEHICLE,
    MAX_LOCATION_ACCURACY_M,
    MAX_PLAUSIBLE_SPEED_KMH,
    MINING_ATTEMPT_FACTOR,
    MINING_WORKERS,
    MIN_OCR_CONFIDENCE,
    PUBLISH_WORKERS,
    SUSPENSION_STRIKES
)


ENV_PREFIX = "ODOLEDGER_"


@dataclass
class RegistryConfig:
    """Registry configuration."""
    difficulty: int = DIFFICULTY
    fraud_threshold: float = FRAUD_THRESHOLD
    max_speed_kmh: float = MAX_PLAUSIBLE_SPEED_KMH
    min_ocr_confidence: float = MIN_OCR_CONFIDENCE
    max_location_accuracy_m: float = MAX_LOCATION_ACCURACY_M
    editing_software: List[str] = field(default_factory=lambda: list(EDITING_SOFTWARE))
    duplicate_window_days: int = DUPLICATE_WINDOW_DAYS
    index_cap: int = INDEX_CAP_PER_VEHICLE
    suspension_strikes: int = SUSPENSION_STRIKES
    mining_max_attempts: Optional[int] = None
    mining_timeout_sec: Optional[float] = None
    mining_workers: int = MINING_WORKERS
    publish_workers: int = PUBLISH_WORKERS
    submitter_id: str = DEFAULT_SUBMITTER_ID

    def __post_init__(self):
        if self.difficulty < 0 or self.difficulty > 64:
            raise ValueError(f"difficulty must be within 0..64, got {self.difficulty}")
        if self.suspension_strikes < 1:
            raise ValueError("suspension_strikes must be >= 1")
        if self.index_cap < 1:
            raise ValueError("index_cap must be >= 1")
        if self.mining_workers < 1 or self.publish_workers < 1:
            raise ValueError("worker counts must be >= 1")

    @property
    def max_attempts(self) -> int:
        """Proof-of-work attempt budget per block."""
        if self.mining_max_attempts is not None:
            return self.mining_max_attempts
        return (16 ** self.difficulty) * MINING_ATTEMPT_FACTOR

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "RegistryConfig":
        """
        Build a config from ODOLEDGER_* environment variables.

        Args:
            environ: Mapping to read (default: os.environ)

        Returns:
            RegistryConfig with overrides applied
        """
        env = os.environ if environ is None else environ
        overrides = {}

        int_fields = {
            "DIFFICULTY": "difficulty",
            "DUPLICATE_WINDOW_DAYS": "duplicate_window_days",
            "INDEX_CAP": "index_cap",
            "SUSPENSION_STRIKES": "suspension_strikes",
            "MINING_MAX_ATTEMPTS": "mining_max_attempts",
            "MINING_WORKERS": "mining_workers",
            "PUBLISH_WORKERS": "publish_workers"
        }
        float_fields = {
            "FRAUD_THRESHOLD": "fraud_threshold",
            "MAX_SPEED_KMH": "max_speed_kmh",
            "MIN_OCR_CONFIDENCE": "min_ocr_confidence",
            "MAX_LOCATION_ACCURACY_M": "max_location_accuracy_m",
            "MINING_TIMEOUT_SEC": "mining_timeout_sec"
        }

        for suffix, name in int_fields.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw:
                overrides[name] = int(raw)

        for suffix, name in float_fields.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw:
                overrides[name] = float(raw)

        submitter = env.get(ENV_PREFIX + "SUBMITTER_ID")
        if submitter:
            overrides["submitter_id"] = submitter

        software = env.get(ENV_PREFIX + "EDITING_SOFTWARE")
        if software:
            overrides["editing_software"] = [
                s.strip().lower() for s in software.split(",") if s.strip()
            ]

        return cls(**overrides)
