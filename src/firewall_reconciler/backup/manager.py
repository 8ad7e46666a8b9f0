"""Backup/Snapshot Manager.

Exports a device's full live configuration, checks it is non-empty and
parseable, checksums it and stores it as a Backup Record:

    <base_dir>/backups/<device_id>/<backup_id>.json   # metadata
    <base_dir>/backups/<device_id>/<backup_id>.cfg    # exported payload

Retention pruning removes records older than their class allows but never
the most recent record of a device. Restore drills replay a record against
a non-production target to prove it is recoverable, holding the target's
device lease so a drill never overlaps a deployment or drift run there.
"""
import hashlib
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from ..audit.ledger import AuditKind, AuditLedger
from ..devices.base import ConfigPayload, DeviceAdapter
from ..diff.engine import DiffEngine
from ..errors import AdapterError, ConfigurationError, IntegrityError, ParseError
from ..intent.schema import IntentSnapshot
from ..settings import RETENTION_CLASSES, RetentionPolicy
from ..utils.logging_config import timed, timed_section, timed_section_sync
from ..utils.retry import RetryPolicy, with_timeout

logger = logging.getLogger(__name__)


def checksum(content: str) -> str:
    return "sha256:" + hashlib.sha256(content.encode()).hexdigest()


@dataclass
class BackupRecord:
    """Metadata of one stored export."""
    backup_id: str
    device_id: str
    created_at: str
    checksum: str
    retention_class: str = "daily"
    verified: bool = False
    size: int = 0
    format: str = "yaml"
    environment: Optional[str] = None
    device_group: Optional[str] = None

    @property
    def created(self) -> datetime:
        return datetime.fromisoformat(self.created_at)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackupRecord":
        return cls(**data)


@dataclass
class DrillResult:
    """Outcome of a restore drill."""
    backup_id: str
    source_device_id: str
    target_device_id: str
    success: bool
    message: str = ""
    diff_id: Optional[str] = None
    started_at: str = ""
    finished_at: str = ""
    steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class BackupManager:
    """Creates, verifies, prunes and drills Backup Records."""

    def __init__(
        self,
        base_dir: Path,
        adapter: DeviceAdapter,
        ledger: AuditLedger,
        retention: Optional[RetentionPolicy] = None,
        is_production: Optional[Callable[[str], bool]] = None,
        retry: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        engine: Optional[DiffEngine] = None,
        leases=None,
    ):
        """
        Args:
            base_dir: Engine base directory
            adapter: Device Adapter used for exports and drills
            ledger: Audit Ledger receiving backup and drill entries
            retention: Max age per retention class
            is_production: Predicate deciding which devices drills must refuse
            retry: Backoff policy for adapter calls
            timeout: Per-call timeout in seconds
            engine: Diff engine (parsing and drill confirmation)
            leases: Device LeaseManager held by restore drills on their target
        """
        self.backups_dir = Path(base_dir) / "backups"
        self.backups_dir.mkdir(parents=True, exist_ok=True)
        self.adapter = adapter
        self.ledger = ledger
        self.retention = retention or RetentionPolicy()
        self.is_production = is_production or (lambda device_id: False)
        self.retry = retry or RetryPolicy()
        self.timeout = timeout
        self.engine = engine or DiffEngine()
        if leases is None:
            from ..orchestrator.leases import LeaseManager
            leases = LeaseManager()
        self.leases = leases

    def _device_dir(self, device_id: str) -> Path:
        return self.backups_dir / device_id

    def _paths(self, record: BackupRecord) -> tuple[Path, Path]:
        base = self._device_dir(record.device_id) / record.backup_id
        return base.with_suffix(".json"), base.with_suffix(".cfg")

    async def _adapter_call(self, device_id: str, operation: str, *args: Any) -> Any:
        method = getattr(self.adapter, operation)

        async def attempt() -> Any:
            return await with_timeout(method(device_id, *args), self.timeout, device_id, operation)

        return await self.retry.call(attempt)

    def _parse(
        self,
        payload: ConfigPayload,
        environment: Optional[str],
        device_group: Optional[str],
    ) -> IntentSnapshot:
        """Structural check. Exports without scope metadata are checked under the device id."""
        return self.engine.parser.parse_payload(
            payload,
            environment=environment or "backup",
            device_group=device_group or payload.device_id,
        )

    # === Backups ===

    @timed("backup")
    async def backup(
        self,
        device_id: str,
        retention_class: str = "daily",
        environment: Optional[str] = None,
        device_group: Optional[str] = None,
    ) -> BackupRecord:
        """
        Export and store a device's live configuration.

        Args:
            device_id: Device to back up
            retention_class: daily, weekly or monthly
            environment: Scope used for the structural check
            device_group: Scope used for the structural check

        Returns:
            Verified BackupRecord

        Raises:
            IntegrityError: If the export is empty or unparseable
            AdapterError: If the export could not be fetched
        """
        if retention_class not in RETENTION_CLASSES:
            raise ConfigurationError(f"Unknown retention class '{retention_class}'")

        async with timed_section("backup_export", device_id):
            payload = await self._adapter_call(device_id, "fetch_live_config")

        backup_id = f"bkp-{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:6]}"
        try:
            if payload.is_empty:
                raise IntegrityError(
                    f"Backup export for {device_id} is empty",
                    details={"device_id": device_id, "backup_id": backup_id},
                )
            try:
                self._parse(payload, environment, device_group)
            except ParseError as e:
                raise IntegrityError(
                    f"Backup export for {device_id} is not parseable: {e.message}",
                    details={"device_id": device_id, "backup_id": backup_id},
                )
        except IntegrityError as e:
            logger.error(e.message)
            self.ledger.record(
                AuditKind.BACKUP, device_id, backup_id, "integrity_error",
                details=e.to_dict(),
            )
            raise

        record = BackupRecord(
            backup_id=backup_id,
            device_id=device_id,
            created_at=datetime.now(timezone.utc).isoformat(),
            checksum=checksum(payload.content),
            retention_class=retention_class,
            verified=True,
            size=len(payload.content.encode()),
            format=payload.format,
            environment=environment,
            device_group=device_group,
        )
        meta_path, cfg_path = self._paths(record)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        cfg_path.write_text(payload.content)
        meta_path.write_text(json.dumps(record.to_dict(), indent=2, sort_keys=True))

        self.ledger.record(
            AuditKind.BACKUP, device_id, backup_id, "verified",
            details={"checksum": record.checksum, "size": record.size, "retention_class": retention_class},
        )
        logger.info(f"Backup {backup_id} of {device_id} stored ({record.size} bytes, {retention_class})")
        return record

    def verify(self, record: BackupRecord) -> bool:
        """
        Re-check a stored backup.

        Raises:
            IntegrityError: If the payload is missing, altered or unparseable
        """
        _, cfg_path = self._paths(record)
        if not cfg_path.exists():
            raise IntegrityError(f"Backup payload {record.backup_id} is missing")
        content = cfg_path.read_text()
        if checksum(content) != record.checksum:
            raise IntegrityError(
                f"Checksum mismatch for backup {record.backup_id}",
                details={"expected": record.checksum, "actual": checksum(content)},
            )
        payload = ConfigPayload(device_id=record.device_id, content=content, format=record.format)
        if payload.is_empty:
            raise IntegrityError(f"Backup payload {record.backup_id} is empty")
        try:
            self._parse(payload, record.environment, record.device_group)
        except ParseError as e:
            raise IntegrityError(f"Backup {record.backup_id} is not parseable: {e.message}")
        return True

    def load_payload(self, record: BackupRecord) -> ConfigPayload:
        """Verified payload of a backup."""
        self.verify(record)
        _, cfg_path = self._paths(record)
        return ConfigPayload(device_id=record.device_id, content=cfg_path.read_text(), format=record.format)

    def list_records(self, device_id: Optional[str] = None) -> list[BackupRecord]:
        """Backup records, oldest first."""
        pattern = f"{device_id}/*.json" if device_id else "*/*.json"
        records = [
            BackupRecord.from_dict(json.loads(p.read_text()))
            for p in self.backups_dir.glob(pattern)
        ]
        return sorted(records, key=lambda r: (r.created_at, r.backup_id))

    def latest(self, device_id: str) -> Optional[BackupRecord]:
        records = self.list_records(device_id)
        return records[-1] if records else None

    def get(self, device_id: str, backup_id: str) -> BackupRecord:
        path = self._device_dir(device_id) / f"{backup_id}.json"
        if not path.exists():
            raise KeyError(f"Unknown backup {device_id}/{backup_id}")
        return BackupRecord.from_dict(json.loads(path.read_text()))

    # === Retention ===

    def prune(self, now: Optional[datetime] = None) -> list[BackupRecord]:
        """
        Remove records outside their retention class.

        The most recent record of every device is always kept.

        Returns:
            Removed records
        """
        now = now or datetime.now(timezone.utc)
        with timed_section_sync("backup_prune"):
            return self._prune(now)

    def _prune(self, now: datetime) -> list[BackupRecord]:
        by_device: dict[str, list[BackupRecord]] = {}
        for record in self.list_records():
            by_device.setdefault(record.device_id, []).append(record)

        removed = []
        for device_id, records in by_device.items():
            for record in records[:-1]:
                max_age = timedelta(days=self.retention.max_age_days(record.retention_class))
                if now - record.created > max_age:
                    for path in self._paths(record):
                        path.unlink(missing_ok=True)
                    removed.append(record)
                    logger.info(f"Pruned backup {record.backup_id} of {device_id} ({record.retention_class})")
        return removed

    # === Restore drills ===

    async def restore_drill(
        self,
        record: BackupRecord,
        target_device_id: str,
        target_adapter: Optional[DeviceAdapter] = None,
    ) -> DrillResult:
        """
        Replay a backup against a non-production device.

        The target is brought to the backup's content through a staged
        push/validate/commit, then re-fetched to confirm zero drift.

        Args:
            record: Backup to replay
            target_device_id: Lab device receiving the replay
            target_adapter: Adapter for the lab device (default: this manager's)

        Returns:
            DrillResult reporting success or the failing step

        Raises:
            ConfigurationError: If the target is a production device
        """
        if self.is_production(target_device_id):
            raise ConfigurationError(
                f"Restore drills may not target production device {target_device_id}"
            )

        adapter = target_adapter or self.adapter
        result = DrillResult(
            backup_id=record.backup_id,
            source_device_id=record.device_id,
            target_device_id=target_device_id,
            success=False,
            started_at=datetime.now(timezone.utc).isoformat(),
        )

        async def call(operation: str, *args: Any) -> Any:
            method = getattr(adapter, operation)

            async def attempt() -> Any:
                return await with_timeout(method(target_device_id, *args), self.timeout, target_device_id, operation)

            result.steps.append(operation)
            return await self.retry.call(attempt)

        async with self.leases.hold(target_device_id, f"drill-{record.backup_id}"):
            try:
                desired = self._parse(self.load_payload(record), record.environment, record.device_group)
                live = self.engine.parse_live(
                    await call("fetch_live_config"), desired.environment, desired.device_group
                )
                change = self.engine.diff(live, desired)
                result.diff_id = change.diff_id

                if not change.is_empty:
                    handle = await call("push_candidate", change)
                    validation = await call("validate_candidate", handle)
                    if not validation.valid:
                        await adapter.discard_candidate(target_device_id, handle)
                        raise IntegrityError(f"Target rejected backup replay: {'; '.join(validation.errors)}")
                    commit = await call("commit", handle, f"restore drill {record.backup_id}")
                    if not commit.success:
                        raise IntegrityError(f"Commit of backup replay failed: {commit.message}")

                residual = self.engine.diff_live(desired, await call("fetch_live_config"))
                if not residual.is_empty:
                    raise IntegrityError(f"Target differs from backup after replay ({residual.total_changes} changes)")

                result.success = True
                result.message = "Backup restored and confirmed"
            except (AdapterError, IntegrityError, ParseError) as e:
                result.message = e.message
                logger.error(f"Restore drill of {record.backup_id} on {target_device_id} failed: {e.message}")

        result.finished_at = datetime.now(timezone.utc).isoformat()
        self.ledger.record(
            AuditKind.RESTORE_DRILL,
            record.device_id,
            record.backup_id,
            "passed" if result.success else "failed",
            details=result.to_dict(),
        )
        return result
