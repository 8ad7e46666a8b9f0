"""Drift Detector.

Compares a device's live configuration with its baseline (the snapshot of
its most recent Completed deployment) and classifies the difference by
running the guardrail evaluator over the drift diff:

    none  - live matches the baseline
    info  - drift without guardrail findings
    warn  - drift with Warn-severity findings
    block - drift with Block-severity findings (alerting path)

A run holds the device lease, so it never overlaps a Deployment Attempt on
the same device, and it never mutates the device.
"""
import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from ..audit.ledger import AuditKind, AuditLedger
from ..devices.base import DeviceAdapter
from ..diff.engine import DiffEngine, summarize_diff
from ..events import DriftDetected, EventBus
from ..guardrails.evaluator import GuardrailEvaluator
from ..guardrails.loader import default_guardrails, load_guardrails
from ..orchestrator.leases import DevicePool, LeaseManager
from ..settings import Settings
from ..store.intent_store import IntentStore
from ..store.records import RecordStore
from ..utils.logging_config import timed, timed_section
from ..utils.retry import RetryPolicy, with_timeout

logger = logging.getLogger(__name__)


class DriftSeverity(str, Enum):
    NONE = "none"
    INFO = "info"
    WARN = "warn"
    BLOCK = "block"


@dataclass
class DriftReport:
    """Result of one drift run."""
    report_id: str
    device_id: str
    checked_at: str
    severity: DriftSeverity
    baseline_version: Optional[str] = None
    baseline_hash: Optional[str] = None
    baseline_attempt_id: Optional[str] = None
    live_hash: Optional[str] = None
    diff_id: Optional[str] = None
    total_changes: int = 0
    summary: str = ""
    changes: dict[str, Any] = field(default_factory=dict)
    violations: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.total_changes == 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


class DriftDetector:
    """Scheduled comparison of live configuration against baselines."""

    def __init__(
        self,
        adapter: DeviceAdapter,
        intent_store: IntentStore,
        records: RecordStore,
        ledger: AuditLedger,
        evaluator: Optional[GuardrailEvaluator] = None,
        leases: Optional[LeaseManager] = None,
        pool: Optional[DevicePool] = None,
        events: Optional[EventBus] = None,
        engine: Optional[DiffEngine] = None,
        retry: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        interval: float = 3600,
    ):
        """
        Args:
            adapter: Device Adapter (read-only use)
            intent_store: Source of device baselines
            records: Drift report persistence
            ledger: Audit Ledger
            evaluator: Guardrails used for severity classification
            leases: Device leases shared with the orchestrator
            pool: Bounded pool for in-flight device calls
            events: Event bus for DriftDetected
            engine: Diff engine
            retry: Backoff policy for live config fetches
            timeout: Fetch timeout in seconds
            interval: Seconds between scheduled rounds
        """
        self.adapter = adapter
        self.intent_store = intent_store
        self.records = records
        self.ledger = ledger
        self.evaluator = evaluator or GuardrailEvaluator(default_guardrails())
        self.leases = leases or LeaseManager()
        self.pool = pool or DevicePool()
        self.events = events or EventBus()
        self.engine = engine or DiffEngine()
        self.retry = retry or RetryPolicy()
        self.timeout = timeout
        self.interval = interval

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        adapter: DeviceAdapter,
        intent_store: Optional[IntentStore] = None,
        records: Optional[RecordStore] = None,
        ledger: Optional[AuditLedger] = None,
        evaluator: Optional[GuardrailEvaluator] = None,
        leases: Optional[LeaseManager] = None,
        pool: Optional[DevicePool] = None,
        events: Optional[EventBus] = None,
        engine: Optional[DiffEngine] = None,
    ) -> "DriftDetector":
        """Wire a detector under settings.base_dir.

        Pass the orchestrator's leases so drift runs and deployments on the
        same device never overlap.
        """
        base_dir = settings.base_dir
        return cls(
            adapter=adapter,
            intent_store=intent_store or IntentStore(base_dir, git_enabled=settings.git_enabled),
            records=records or RecordStore(base_dir),
            ledger=ledger or AuditLedger(base_dir / "audit" / "ledger.jsonl"),
            evaluator=evaluator or GuardrailEvaluator(load_guardrails(
                settings.guardrails,
                high_risk_zones=settings.high_risk_zones,
                shadow_scope=settings.shadow_scope,
            )),
            leases=leases,
            pool=pool or DevicePool(settings.max_concurrency),
            events=events,
            engine=engine,
            retry=settings.retry,
            timeout=settings.timeouts.fetch,
            interval=settings.drift_interval,
        )

    @timed("drift_run")
    async def run(self, device_id: str) -> DriftReport:
        """
        Run one drift check.

        Raises:
            KeyError: If the device has no baseline yet
            AdapterError: If the live configuration cannot be fetched
            ParseError: If the live configuration is malformed
        """
        report_id = f"drift-{uuid.uuid4().hex[:12]}"
        async with self.leases.hold(device_id, report_id):
            # Baseline reference is fixed for the whole run
            baseline_info = self.intent_store.baseline_info(device_id)
            if baseline_info is None:
                raise KeyError(f"No baseline recorded for {device_id}")
            baseline = self.intent_store.baseline(device_id)

            payload = await self._fetch(device_id, report_id)
            live = self.engine.parse_live(payload, baseline.environment, baseline.device_group)
            diff = self.engine.diff(baseline, live)

            violations: list[dict[str, Any]] = []
            if diff.is_empty:
                severity = DriftSeverity.NONE
            else:
                verdict = self.evaluator.evaluate(diff, live)
                violations = [v.to_dict() for v in verdict.violations]
                if verdict.blocked:
                    severity = DriftSeverity.BLOCK
                elif verdict.warnings:
                    severity = DriftSeverity.WARN
                else:
                    severity = DriftSeverity.INFO

            report = DriftReport(
                report_id=report_id,
                device_id=device_id,
                checked_at=datetime.now(timezone.utc).isoformat(),
                severity=severity,
                baseline_version=baseline.version,
                baseline_hash=baseline.content_hash,
                baseline_attempt_id=baseline_info.get("attempt_id"),
                live_hash=live.content_hash,
                diff_id=diff.diff_id,
                total_changes=diff.total_changes,
                summary=summarize_diff(diff),
                changes=diff.to_dict() if not diff.is_empty else {},
                violations=violations,
            )
            self.records.save_drift_report(report.to_dict())

        self.ledger.record(
            AuditKind.DRIFT,
            device_id,
            report_id,
            severity.value,
            details={
                "baseline_version": report.baseline_version,
                "baseline_attempt_id": report.baseline_attempt_id,
                "diff_id": report.diff_id,
                "total_changes": report.total_changes,
            },
        )
        level = logging.WARNING if severity in (DriftSeverity.WARN, DriftSeverity.BLOCK) else logging.INFO
        logger.log(level, f"Drift on {device_id}: {severity.value} ({report.total_changes} changes)")

        if not report.is_empty:
            await self.events.publish(DriftDetected(
                device_id=device_id,
                report_id=report_id,
                severity=severity.value,
                total_changes=report.total_changes,
            ))
        return report

    async def _fetch(self, device_id: str, report_id: str):
        async def once():
            async with self.pool.slot():
                async with timed_section("drift_fetch", device_id, report=report_id):
                    return await with_timeout(
                        self.adapter.fetch_live_config(device_id), self.timeout, device_id, "fetch_live_config"
                    )

        return await self.retry.call(once)

    async def run_many(self, device_ids: Iterable[str]) -> dict[str, DriftReport | BaseException]:
        """
        Check several devices in parallel.

        Returns:
            Report, or the error that stopped the run, per device
        """
        device_ids = list(device_ids)
        results = await asyncio.gather(
            *(self.run(device_id) for device_id in device_ids),
            return_exceptions=True,
        )
        outcome: dict[str, DriftReport | BaseException] = {}
        for device_id, result in zip(device_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Drift run for {device_id} failed: {result}")
            outcome[device_id] = result
        return outcome

    async def run_periodically(
        self,
        device_ids: Iterable[str],
        interval: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> int:
        """
        Run drift checks every interval seconds until stop_event is set.

        Args:
            device_ids: Devices checked each round
            interval: Seconds between rounds (default: self.interval)
            stop_event: Ends the schedule once set; without one it runs until cancelled

        Returns:
            Number of completed rounds
        """
        device_ids = list(device_ids)
        interval = self.interval if interval is None else interval
        stop_event = stop_event or asyncio.Event()
        rounds = 0
        while not stop_event.is_set():
            await self.run_many(device_ids)
            rounds += 1
            try:
                await asyncio.wait_for(stop_event.wait(), interval)
            except asyncio.TimeoutError:
                pass
        logger.info(f"Drift schedule stopped after {rounds} round(s)")
        return rounds
