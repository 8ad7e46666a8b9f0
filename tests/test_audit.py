"""Tests for the append-only Audit Ledger."""
from datetime import datetime, timedelta, timezone

import pytest

from firewall_reconciler.audit import AuditEntry, AuditKind, AuditLedger
from firewall_reconciler.errors import DuplicateAuditEntryError


@pytest.fixture
def ledger(tmp_path):
    return AuditLedger(tmp_path / "audit" / "ledger.jsonl")


def _entry(entry_id, timestamp, kind="deployment", device_id="fw-01", reference_id=None, outcome="succeeded", **kw):
    return AuditEntry(
        entry_id=entry_id,
        timestamp=timestamp,
        kind=kind,
        device_id=device_id,
        reference_id=reference_id or entry_id,
        outcome=outcome,
        **kw,
    )


class TestAppend:
    """Tests for appending entries."""

    def test_record_appends_line(self, ledger):
        """Test record() writes one JSON line per entry."""
        entry = ledger.record(AuditKind.BACKUP, "fw-01", "bkp-1", "verified", details={"checksum": "sha256:x"})

        lines = ledger.path.read_text().splitlines()
        assert len(lines) == 1
        assert AuditEntry.from_json(lines[0]) == entry
        assert entry.kind == "backup"

    def test_one_deployment_entry_per_attempt(self, ledger):
        """Test a second deployment entry for an attempt is refused."""
        ledger.record(AuditKind.DEPLOYMENT, "fw-01", "att-1", "succeeded")

        with pytest.raises(DuplicateAuditEntryError):
            ledger.record(AuditKind.DEPLOYMENT, "fw-01", "att-1", "failed")
        assert len(list(ledger.entries())) == 1

    def test_duplicates_detected_after_reopen(self, ledger):
        """Test the uniqueness check survives reopening the ledger."""
        ledger.record(AuditKind.DEPLOYMENT, "fw-01", "att-1", "succeeded")

        reopened = AuditLedger(ledger.path)
        with pytest.raises(DuplicateAuditEntryError):
            reopened.record(AuditKind.DEPLOYMENT, "fw-01", "att-1", "succeeded")

    def test_other_kinds_may_repeat_reference(self, ledger):
        """Test only deployment entries are unique per reference."""
        ledger.record(AuditKind.BACKUP, "fw-01", "bkp-1", "verified")
        ledger.record(AuditKind.BACKUP, "fw-01", "bkp-1", "verified")
        assert len(ledger.query(kind="backup")) == 2

    def test_unknown_kind_rejected(self, ledger):
        """Test record() only accepts known kinds."""
        with pytest.raises(ValueError):
            ledger.record("gossip", "fw-01", "x", "ok")

    def test_existing_lines_untouched(self, ledger):
        """Test appends never rewrite earlier lines."""
        ledger.record(AuditKind.DRIFT, "fw-01", "drift-1", "none")
        first = ledger.path.read_text()
        ledger.record(AuditKind.DRIFT, "fw-01", "drift-2", "info")

        assert ledger.path.read_text().startswith(first)


class TestQuery:
    """Tests for reading entries back."""

    def test_time_range_bounds(self, ledger):
        """Test since is inclusive and until is exclusive."""
        base = datetime(2026, 3, 1, tzinfo=timezone.utc)
        for i in range(3):
            ledger.append(_entry(f"e{i}", (base + timedelta(hours=i)).isoformat()))

        result = ledger.query(since=base + timedelta(hours=1), until=base + timedelta(hours=2))
        assert [e.entry_id for e in result] == ["e1"]

        result = ledger.query(since=base)
        assert [e.entry_id for e in result] == ["e0", "e1", "e2"]

    def test_filters(self, ledger):
        """Test device, kind and reference filters combine."""
        ledger.record(AuditKind.DEPLOYMENT, "fw-01", "att-1", "succeeded")
        ledger.record(AuditKind.DEPLOYMENT, "fw-02", "att-2", "failed")
        ledger.record(AuditKind.DRIFT, "fw-01", "drift-1", "warn")

        assert [e.reference_id for e in ledger.query(device_id="fw-01")] == ["att-1", "drift-1"]
        assert [e.reference_id for e in ledger.query(kind=AuditKind.DEPLOYMENT)] == ["att-1", "att-2"]
        assert [e.device_id for e in ledger.query(reference_id="att-2")] == ["fw-02"]

    def test_malformed_lines_skipped(self, ledger):
        """Test unreadable lines are skipped, not fatal."""
        ledger.record(AuditKind.BACKUP, "fw-01", "bkp-1", "verified")
        with open(ledger.path, "a") as f:
            f.write("{not json\n\n")
        ledger.record(AuditKind.BACKUP, "fw-01", "bkp-2", "verified")

        assert [e.reference_id for e in ledger.entries()] == ["bkp-1", "bkp-2"]

    def test_empty_ledger(self, ledger):
        """Test a ledger with no file yields nothing."""
        assert ledger.query() == []


class TestComplianceEvidence:
    """Tests for compliance evidence computed from entries."""

    def test_latest_of_each_kind(self, ledger):
        """Test evidence picks the last entry of each kind for the device."""
        ledger.record(AuditKind.BACKUP, "fw-01", "bkp-1", "verified")
        ledger.record(AuditKind.BACKUP, "fw-01", "bkp-2", "integrity_error")
        ledger.record(
            AuditKind.DEPLOYMENT, "fw-01", "att-1", "succeeded",
            details={"post_validation": {"passed": True}},
        )
        ledger.record(AuditKind.DEPLOYMENT, "fw-01", "att-2", "rolled_back")
        ledger.record(AuditKind.DRIFT, "fw-01", "drift-1", "none")
        ledger.record(AuditKind.RESTORE_DRILL, "fw-01", "bkp-1", "passed")
        ledger.record(AuditKind.BACKUP, "fw-02", "bkp-3", "verified")

        evidence = ledger.compliance_evidence("fw-01")

        assert evidence.last_backup.reference_id == "bkp-1"
        assert evidence.last_successful_deployment.reference_id == "att-1"
        assert evidence.last_post_validation.reference_id == "att-1"
        assert evidence.last_drift_report.reference_id == "drift-1"
        assert evidence.last_restore_drill.outcome == "passed"
        assert evidence.entry_count == 6
        assert not evidence.locked

    def test_lock_and_clear(self, ledger):
        """Test a lock is reported until a lock_cleared entry follows it."""
        ledger.record(AuditKind.DEPLOYMENT, "fw-01", "att-1", "deployment_locked")
        assert ledger.compliance_evidence("fw-01").locked

        ledger.record(AuditKind.LOCK_CLEARED, "fw-01", "att-1", "cleared", actor="oncall")
        assert not ledger.compliance_evidence("fw-01").locked

    def test_to_dict(self, ledger):
        """Test the serialized form summarizes entries."""
        ledger.record(AuditKind.BACKUP, "fw-01", "bkp-1", "verified")
        data = ledger.compliance_evidence("fw-01").to_dict()

        assert data["last_backup"]["reference_id"] == "bkp-1"
        assert data["last_successful_deployment"] is None
        assert data["entry_count"] == 1
