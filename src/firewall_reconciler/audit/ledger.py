"""Audit Ledger - append-only record of every attempted and completed change.

Entries are JSON lines in audit/ledger.jsonl; append() is the only mutation.
Compliance evidence (last backup, last successful deployment, last drift
report, last restore drill) is computed by scanning entries; no separate
summary state is authoritative.
"""
import json
import logging
import os
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional

from ..errors import DuplicateAuditEntryError
from ..utils.logging_config import audit_logger

logger = logging.getLogger(__name__)


class AuditKind(str, Enum):
    """What an audit entry records."""
    DEPLOYMENT = "deployment"
    DRIFT = "drift"
    BACKUP = "backup"
    RESTORE_DRILL = "restore_drill"
    LOCK_CLEARED = "lock_cleared"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable ledger entry."""
    entry_id: str
    timestamp: str
    kind: str
    device_id: str
    reference_id: str
    outcome: str
    actor: str = "system"
    ticket: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def at(self) -> datetime:
        return datetime.fromisoformat(self.timestamp)

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True, default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "AuditEntry":
        return cls(**json.loads(json_str))


@dataclass
class ComplianceEvidence:
    """Point-in-time compliance summary for one device."""
    device_id: str
    last_backup: Optional[AuditEntry] = None
    last_successful_deployment: Optional[AuditEntry] = None
    last_post_validation: Optional[AuditEntry] = None
    last_drift_report: Optional[AuditEntry] = None
    last_restore_drill: Optional[AuditEntry] = None
    locked: bool = False
    entry_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        def summary(entry: Optional[AuditEntry]) -> Optional[dict[str, Any]]:
            if entry is None:
                return None
            return {
                "timestamp": entry.timestamp,
                "reference_id": entry.reference_id,
                "outcome": entry.outcome,
            }

        return {
            "device_id": self.device_id,
            "last_backup": summary(self.last_backup),
            "last_successful_deployment": summary(self.last_successful_deployment),
            "last_post_validation": summary(self.last_post_validation),
            "last_drift_report": summary(self.last_drift_report),
            "last_restore_drill": summary(self.last_restore_drill),
            "locked": self.locked,
            "entry_count": self.entry_count,
        }


class AuditLedger:
    """Append-only JSON-lines ledger."""

    def __init__(self, path: Path):
        """
        Args:
            path: Ledger file (created on first append)
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._deployment_refs = {
            e.reference_id for e in self.entries() if e.kind == AuditKind.DEPLOYMENT.value
        }

    def append(self, entry: AuditEntry) -> AuditEntry:
        """
        Append an entry.

        Raises:
            DuplicateAuditEntryError: If a deployment entry for the same
                attempt was already written
        """
        with self._lock:
            if entry.kind == AuditKind.DEPLOYMENT.value:
                if entry.reference_id in self._deployment_refs:
                    raise DuplicateAuditEntryError(
                        f"Audit entry for attempt {entry.reference_id} already exists",
                        details={"reference_id": entry.reference_id},
                    )
                self._deployment_refs.add(entry.reference_id)

            line = entry.to_json()
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())

        audit_logger.info(line)
        return entry

    def record(
        self,
        kind: AuditKind,
        device_id: str,
        reference_id: str,
        outcome: str,
        actor: str = "system",
        ticket: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        """Build and append an entry."""
        return self.append(AuditEntry(
            entry_id=f"aud-{uuid.uuid4().hex[:12]}",
            timestamp=datetime.now(timezone.utc).isoformat(),
            kind=AuditKind(kind).value,
            device_id=device_id,
            reference_id=reference_id,
            outcome=outcome,
            actor=actor,
            ticket=ticket,
            details=details or {},
        ))

    def entries(self) -> Iterator[AuditEntry]:
        """All entries, oldest first."""
        if not self.path.exists():
            return
        with open(self.path, encoding="utf-8") as f:
            for number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield AuditEntry.from_json(line)
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning(f"Skipping malformed ledger line {number}: {e}")

    def query(
        self,
        device_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        kind: Optional[AuditKind | str] = None,
        reference_id: Optional[str] = None,
    ) -> list[AuditEntry]:
        """
        Read entries by device and time range.

        Args:
            device_id: Restrict to one device
            since: Inclusive lower bound (timezone-aware)
            until: Exclusive upper bound (timezone-aware)
            kind: Restrict to one entry kind
            reference_id: Restrict to one attempt/report/backup id

        Returns:
            Matching entries, oldest first
        """
        kind_value = AuditKind(kind).value if kind else None
        result = []
        for entry in self.entries():
            if device_id and entry.device_id != device_id:
                continue
            if kind_value and entry.kind != kind_value:
                continue
            if reference_id and entry.reference_id != reference_id:
                continue
            if since and entry.at < since:
                continue
            if until and entry.at >= until:
                continue
            result.append(entry)
        return result

    def compliance_evidence(self, device_id: str) -> ComplianceEvidence:
        """Compute compliance evidence for a device by scanning its entries."""
        evidence = ComplianceEvidence(device_id=device_id)
        for entry in self.query(device_id=device_id):
            evidence.entry_count += 1
            if entry.kind == AuditKind.BACKUP.value and entry.outcome == "verified":
                evidence.last_backup = entry
            elif entry.kind == AuditKind.DEPLOYMENT.value:
                if entry.outcome == "succeeded":
                    evidence.last_successful_deployment = entry
                if entry.details.get("post_validation", {}).get("passed"):
                    evidence.last_post_validation = entry
                if entry.outcome == "deployment_locked":
                    evidence.locked = True
            elif entry.kind == AuditKind.DRIFT.value:
                evidence.last_drift_report = entry
            elif entry.kind == AuditKind.RESTORE_DRILL.value:
                evidence.last_restore_drill = entry
            elif entry.kind == AuditKind.LOCK_CLEARED.value:
                evidence.locked = False
        return evidence
