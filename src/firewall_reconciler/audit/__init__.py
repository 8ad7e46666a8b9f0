"""Audit Ledger - append-only change records and compliance evidence."""

from .ledger import AuditEntry, AuditKind, AuditLedger, ComplianceEvidence

__all__ = [
    "AuditEntry",
    "AuditKind",
    "AuditLedger",
    "ComplianceEvidence",
]
