"""
Audit integrity tests.

Verifies:
- A freshly written entry verifies
- Any change to a stored line is detected
- Sweeps record an INTEGRITY_CHECK entry and can be made fatal
"""

import json

import pytest

from count_kernel.domain.audit import AuditLogEntry, compute_checksum
from count_kernel.exceptions import LogIntegrityError


def _rewrite(trail, clock, mutate):
    """Apply ``mutate`` to every stored record of today's segment."""
    path = trail.segment_path(clock.today_utc())
    records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    for record in records:
        mutate(record)
    path.write_text("".join(json.dumps(r) + "\n" for r in records), encoding="utf-8")


class TestChecksum:
    """Checksum computation."""

    def test_checksum_ignores_checksum_field(self):
        record = {"id": "A", "data": {"x": 1}}
        assert compute_checksum(record) == compute_checksum(dict(record, checksum="zzz"))

    def test_checksum_is_key_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_sealed_entry_round_trips(self, audit_trail):
        log_id = audit_trail.log_operation("COUNT_START", {"userId": "u1", "n": 1.5})
        entry = audit_trail.query_logs()[0]
        assert entry.id == log_id
        assert AuditLogEntry.from_record(entry.to_record()).recompute_checksum() == entry.checksum


class TestVerifyLogIntegrity:
    """Single-entry verification."""

    def test_fresh_entry_is_valid(self, audit_trail):
        log_id = audit_trail.log_operation("COUNT_START", {"userId": "u1"})

        result = audit_trail.verify_log_integrity(log_id)

        assert result.valid
        assert result.stored_checksum == result.calculated_checksum
        assert result.error is None

    def test_altered_data_is_detected(self, audit_trail, clock, captured_logs):
        log_id = audit_trail.log_operation("ITEM_ADD", {"userId": "u1", "quantity": "4"})
        _rewrite(audit_trail, clock, lambda r: r["data"].update(quantity="40"))

        result = audit_trail.verify_log_integrity(log_id)

        assert not result.valid
        assert result.stored_checksum != result.calculated_checksum
        assert any(r["message"] == "audit_checksum_mismatch" for r in captured_logs())

    def test_altered_metadata_is_detected(self, audit_trail, clock):
        log_id = audit_trail.log_operation("ITEM_ADD", {"userId": "u1"})
        _rewrite(audit_trail, clock, lambda r: r["metadata"].update(severity="NONE"))

        assert not audit_trail.verify_log_integrity(log_id).valid

    def test_nulled_data_is_detected(self, audit_trail, clock):
        log_id = audit_trail.log_operation("COUNT_START", {})
        _rewrite(audit_trail, clock, lambda r: r.update(data=None))

        assert not audit_trail.verify_log_integrity(log_id).valid

    @pytest.mark.parametrize("field", ["category", "data", "metadata"])
    def test_removed_field_is_detected(self, audit_trail, clock, field):
        log_id = audit_trail.log_operation("COUNT_START", {})
        _rewrite(audit_trail, clock, lambda r: r.pop(field))

        assert not audit_trail.verify_log_integrity(log_id).valid

    def test_unknown_id(self, audit_trail):
        result = audit_trail.verify_log_integrity("AUDIT-missing")

        assert not result.valid
        assert result.error == "Log entry not found"
        assert result.stored_checksum is None


class TestIntegritySweep:
    """Sweeps over a date range."""

    def test_clean_sweep(self, audit_trail):
        for i in range(3):
            audit_trail.log_operation("ITEM_ADD", {"userId": "u1", "i": i})

        result = audit_trail.run_integrity_sweep()

        assert result.passed
        assert result.checked == 3
        result.require_intact()
        entry = audit_trail.query_logs(operation="INTEGRITY_CHECK")[0]
        assert entry.id == result.audit_entry_id
        assert entry.data["passed"] is True
        assert entry.data["checksPerformed"] == 3
        assert entry.metadata["severity"] == "LOW"

    def test_tampered_sweep(self, audit_trail, clock):
        ids = [audit_trail.log_operation("ITEM_ADD", {"userId": "u1", "i": i}) for i in range(3)]

        def tamper(record):
            if record["id"] == ids[1]:
                record["data"]["i"] = 99

        _rewrite(audit_trail, clock, tamper)

        result = audit_trail.run_integrity_sweep()

        assert not result.passed
        assert result.failed_ids == (ids[1],)
        with pytest.raises(LogIntegrityError) as exc_info:
            result.require_intact()
        assert exc_info.value.failed_ids == [ids[1]]

        entry = audit_trail.query_logs(operation="INTEGRITY_CHECK")[0]
        assert entry.metadata["severity"] == "CRITICAL"
        assert entry.data["issues"] == [f"checksum mismatch: {ids[1]}"]

    def test_sweep_counts_its_own_earlier_entries(self, audit_trail):
        audit_trail.run_integrity_sweep()
        result = audit_trail.run_integrity_sweep()
        assert result.checked == 1
        assert result.passed
