"""
Tests for core module.
"""

from datetime import datetime, timezone

import pytest
from odoledger.core import (
    dual_hash,
    digest,
    canonical_encode,
    merkle_root,
    emit_receipt,
    load_receipts,
    parse_ts,
    StopRule,
    AlreadyExists,
    MiningTimeout,
    IntegrityViolation,
    stoprule_integrity_violation,
    validate_receipt,
    get_risk_level,
    TENANT_ID
)


class TestDualHash:
    """Tests for dual_hash function."""

    def test_dual_hash_string(self):
        """Test dual_hash with string input."""
        result = dual_hash("test")
        parts = result.split(":")
        assert len(parts) == 2
        assert len(parts[0]) == 64  # SHA256 hex
        assert len(parts[1]) == 64  # BLAKE3 hex

    def test_dual_hash_bytes_matches_string(self):
        """Test bytes and str inputs hash the same."""
        assert dual_hash(b"test") == dual_hash("test")

    def test_dual_hash_sha_half(self):
        """Test first half is the plain SHA256 digest."""
        assert dual_hash("test").split(":")[0] == digest("test")


class TestCanonicalEncode:
    """Tests for canonical_encode function."""

    def test_key_order_irrelevant(self):
        """Test dicts with the same items encode identically."""
        assert canonical_encode({"a": 1, "b": 2}) == canonical_encode({"b": 2, "a": 1})

    def test_compact(self):
        """Test no whitespace in output."""
        assert canonical_encode({"a": [1, 2]}) == b'{"a":[1,2]}'


class TestMerkleRoot:
    """Tests for merkle_root function."""

    def test_empty(self):
        """Test empty sequence gives empty root."""
        assert merkle_root([]) == ""

    def test_single_element(self):
        """Test single element root is the digest of its encoding."""
        payload = {"type": "odometer_reading", "reading": 15000}
        assert merkle_root([payload]) == digest(canonical_encode(payload))

    def test_single_bytes_element(self):
        """Test bytes are hashed directly."""
        assert merkle_root([b"abc"]) == digest(b"abc")

    def test_two_elements(self):
        """Test two elements combine pairwise."""
        left = digest(canonical_encode("a"))
        right = digest(canonical_encode("b"))
        assert merkle_root(["a", "b"]) == digest(left + right)

    def test_odd_level_duplicates_last(self):
        """Test three elements pair the last with itself."""
        assert merkle_root(["a", "b", "c"]) == merkle_root(["a", "b", "c", "c"])

    def test_order_matters(self):
        """Test that order affects merkle root."""
        assert merkle_root(["a", "b"]) != merkle_root(["b", "a"])

    def test_deterministic(self):
        """Test repeat calls agree."""
        items = [{"k": 1}, {"k": 2}, {"k": 3}]
        assert merkle_root(items) == merkle_root(items)


class TestParseTs:
    """Tests for parse_ts function."""

    def test_z_suffix(self):
        """Test trailing Z is UTC."""
        assert parse_ts("2024-01-15T10:00:00Z") == datetime(2024, 1, 15, 10, tzinfo=timezone.utc)

    def test_naive_taken_as_utc(self):
        """Test naive datetimes become aware."""
        assert parse_ts(datetime(2024, 1, 15, 10)).tzinfo is not None


class TestEmitReceipt:
    """Tests for emit_receipt function."""

    def test_emit_receipt_basic(self):
        """Test basic receipt emission."""
        receipt = emit_receipt("test", {"key": "value"})

        assert receipt["receipt_type"] == "test"
        assert receipt["tenant_id"] == TENANT_ID
        assert "ts" in receipt
        assert "payload_hash" in receipt
        assert receipt["key"] == "value"

    def test_emit_receipt_appends_to_ledger(self, temp_ledger):
        """Test receipts land in the configured ledger file."""
        emit_receipt("first", {"n": 1})
        emit_receipt("second", {"n": 2})

        receipts = load_receipts(temp_ledger)
        assert [r["receipt_type"] for r in receipts] == ["first", "second"]

    def test_emit_receipt_custom_tenant(self):
        """Test receipt with custom tenant."""
        receipt = emit_receipt("test", {"key": "value"}, tenant_id="custom")
        assert receipt["tenant_id"] == "custom"

    def test_load_missing_ledger(self, tmp_path):
        """Test missing ledger loads as empty."""
        assert load_receipts(str(tmp_path / "absent.jsonl")) == []


class TestStopRule:
    """Tests for StopRule exceptions."""

    def test_stoprule_creation(self):
        """Test StopRule exception creation."""
        exc = StopRule("test_rule", "Test message", {"extra": "data"})
        assert exc.rule_name == "test_rule"
        assert exc.message == "Test message"
        assert exc.context == {"extra": "data"}
        assert "STOPRULE" in str(exc)

    def test_subclasses(self):
        """Test domain errors are stoprules with their own rule names."""
        assert AlreadyExists("DEMO1").rule_name == "already_exists"
        timeout = MiningTimeout(3, 100, 8, 0.5)
        assert isinstance(timeout, StopRule)
        assert timeout.attempts == 100
        assert timeout.context["index"] == 3

    def test_integrity_stoprule_emits_anomaly(self, temp_ledger):
        """Test integrity stoprule records an anomaly then raises."""
        with pytest.raises(IntegrityViolation) as exc_info:
            stoprule_integrity_violation("DEMO1", ["Invalid hash at block 2"])

        assert exc_info.value.errors == ["Invalid hash at block 2"]
        receipts = load_receipts(temp_ledger)
        assert receipts[-1]["receipt_type"] == "anomaly"
        assert receipts[-1]["vehicle_id"] == "DEMO1"


class TestValidateReceipt:
    """Tests for validate_receipt function."""

    def test_validate_valid_receipt(self):
        """Test validation of valid receipt."""
        receipt = emit_receipt("test", {"key": "value"})
        valid, reason = validate_receipt(receipt)
        assert valid is True
        assert reason == "valid"

    def test_validate_missing_field(self):
        """Test validation with missing field."""
        receipt = {"receipt_type": "test", "ts": "2024-01-01T00:00:00Z"}
        valid, reason = validate_receipt(receipt)
        assert valid is False
        assert "Missing" in reason

    def test_validate_invalid_tenant(self):
        """Test validation with invalid tenant."""
        receipt = {
            "receipt_type": "test",
            "ts": "2024-01-01T00:00:00Z",
            "tenant_id": "wrong",
            "payload_hash": "a" * 64 + ":" + "b" * 64
        }
        valid, reason = validate_receipt(receipt)
        assert valid is False
        assert "tenant_id" in reason


class TestGetRiskLevel:
    """Tests for get_risk_level function."""

    def test_risk_levels(self):
        """Test level boundaries."""
        assert get_risk_level(0.1) == "low"
        assert get_risk_level(0.3) == "medium"
        assert get_risk_level(0.6) == "high"
        assert get_risk_level(0.8) == "critical"
        assert get_risk_level(1.0) == "critical"
