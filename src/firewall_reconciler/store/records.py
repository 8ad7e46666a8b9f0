"""Durable JSON records for diffs, deployment attempts, drift reports and locks.

Directory structure managed:
    <base_dir>/state/
    ├── diffs/<diff_id>.json
    ├── attempts/<attempt_id>.json          # immutable once terminal
    ├── drift_reports/<timestamp>_<device_id>.json
    └── locks/<device_id>.json              # deployment locks
"""
import json
import logging
from pathlib import Path
from typing import Any, Optional

from ..diff.records import DiffRecord
from ..errors import RecordImmutableError

logger = logging.getLogger(__name__)


def _write_json(path: Path, data: dict[str, Any]) -> None:
    """Write via a temp file so readers never see a partial record."""
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, indent=2, sort_keys=True, default=str))
    tmp.replace(path)


def _read_json(path: Path) -> Optional[dict[str, Any]]:
    if not path.exists():
        return None
    return json.loads(path.read_text())


class RecordStore:
    """Persists engine records with stable identifiers."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        for d in (self.diffs_dir, self.attempts_dir, self.drift_reports_dir, self.locks_dir):
            d.mkdir(parents=True, exist_ok=True)

    @property
    def diffs_dir(self) -> Path:
        return self.base_dir / "state" / "diffs"

    @property
    def attempts_dir(self) -> Path:
        return self.base_dir / "state" / "attempts"

    @property
    def drift_reports_dir(self) -> Path:
        return self.base_dir / "state" / "drift_reports"

    @property
    def locks_dir(self) -> Path:
        return self.base_dir / "state" / "locks"

    # === Diffs ===

    def save_diff(self, diff: DiffRecord) -> None:
        """Persist a diff. Diff ids are content-derived, so rewrites are no-ops."""
        path = self.diffs_dir / f"{diff.diff_id}.json"
        if not path.exists():
            _write_json(path, diff.to_dict())

    def load_diff(self, diff_id: str) -> Optional[DiffRecord]:
        data = _read_json(self.diffs_dir / f"{diff_id}.json")
        return DiffRecord.from_dict(data) if data else None

    # === Deployment Attempts ===

    def save_attempt(self, record: dict[str, Any]) -> None:
        """
        Persist a deployment attempt record.

        Raises:
            RecordImmutableError: If the stored record is already terminal
        """
        path = self.attempts_dir / f"{record['attempt_id']}.json"
        existing = _read_json(path)
        if existing and existing.get("terminal"):
            raise RecordImmutableError(
                f"Attempt {record['attempt_id']} is terminal ({existing.get('state')}) and cannot be rewritten"
            )
        _write_json(path, record)

    def load_attempt(self, attempt_id: str) -> Optional[dict[str, Any]]:
        return _read_json(self.attempts_dir / f"{attempt_id}.json")

    def list_attempts(self, device_id: Optional[str] = None) -> list[dict[str, Any]]:
        """Attempt records, oldest first."""
        records = [json.loads(p.read_text()) for p in self.attempts_dir.glob("*.json")]
        if device_id:
            records = [r for r in records if r.get("device_id") == device_id]
        return sorted(records, key=lambda r: r.get("created_at", ""))

    # === Drift Reports ===

    def save_drift_report(self, report: dict[str, Any]) -> Path:
        stamp = report["checked_at"].replace(":", "").replace("-", "")
        path = self.drift_reports_dir / f"{stamp}_{report['device_id']}.json"
        if path.exists():
            raise RecordImmutableError(f"Drift report {path.name} already exists")
        _write_json(path, report)
        return path

    def list_drift_reports(self, device_id: Optional[str] = None) -> list[dict[str, Any]]:
        """Drift reports, oldest first."""
        reports = []
        for path in sorted(self.drift_reports_dir.glob("*.json")):
            if device_id and not path.stem.endswith(f"_{device_id}"):
                continue
            reports.append(json.loads(path.read_text()))
        return reports

    # === Deployment Locks ===

    def set_lock(self, device_id: str, info: dict[str, Any]) -> None:
        _write_json(self.locks_dir / f"{device_id}.json", {"device_id": device_id, **info})

    def get_lock(self, device_id: str) -> Optional[dict[str, Any]]:
        return _read_json(self.locks_dir / f"{device_id}.json")

    def clear_lock(self, device_id: str) -> bool:
        path = self.locks_dir / f"{device_id}.json"
        if path.exists():
            path.unlink()
            return True
        return False

    def list_locks(self) -> list[dict[str, Any]]:
        return [json.loads(p.read_text()) for p in sorted(self.locks_dir.glob("*.json"))]
