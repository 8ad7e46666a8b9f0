"""Deployment Orchestrator.

Drives one Deployment Attempt per (device, Diff Record) through the staged
pipeline:

1. PENDING           - fetch live config, diff against intent, run guardrails,
                       take the pre-change backup
2. GUARDRAIL_CHECKED - push the diff as a candidate
3. STAGED            - device commit-check (HA active members wait here for
                       their passive peer to commit)
4. VALIDATED         - commit with an audit comment (ticket + diff id)
5. COMMITTED         - external post-change checks
6. POST_VALIDATED    - record the new baseline
7. COMPLETED

Failures after a candidate was pushed go through the rollback branch, which
re-applies the device's prior baseline and confirms it by re-fetching the
live configuration. An unconfirmed rollback locks the device until an
operator clears it.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from ..audit.ledger import AuditKind, AuditLedger
from ..backup.manager import BackupManager
from ..devices.base import CandidateHandle, DeviceAdapter, HARole, HAStatus, ValidationRunner
from ..diff.engine import DiffEngine
from ..diff.records import DiffRecord
from ..errors import (
    AdapterError,
    DeviceLockedError,
    DiffConflictError,
    FirecraftError,
    IntegrityError,
    ParseError,
    RollbackFailedError,
    ValidationFailedError,
)
from ..events import (
    DeploymentCompleted,
    DeploymentFailed,
    DeploymentLocked,
    EventBus,
    GuardrailBlocked,
)
from ..guardrails.evaluator import GuardrailEvaluator
from ..guardrails.loader import load_guardrails
from ..intent.schema import IntentSnapshot
from ..inventory import DeviceInventory
from ..settings import Settings
from ..store.intent_store import IntentStore
from ..store.records import RecordStore
from ..utils.logging_config import timed_section
from ..utils.retry import with_timeout
from .barrier import HABarrier
from .leases import CancellationToken, DevicePool, LeaseManager
from .state import AttemptState, DeploymentAttempt

logger = logging.getLogger(__name__)

S = AttemptState


@dataclass
class _Plan:
    """Per-attempt coordination decided before the attempt starts."""
    role: HARole = HARole.STANDALONE
    barrier: Optional[HABarrier] = None
    abort_reason: Optional[str] = None


class _AttemptFailed(Exception):
    """Internal signal: move the attempt to failed with this reason."""

    def __init__(self, reason: str, error: Optional[FirecraftError] = None):
        super().__init__(reason)
        self.reason = reason
        self.error = error


class DeploymentOrchestrator:
    """Runs Deployment Attempts across a fleet."""

    def __init__(
        self,
        adapter: DeviceAdapter,
        validator: ValidationRunner,
        intent_store: IntentStore,
        records: RecordStore,
        ledger: AuditLedger,
        settings: Optional[Settings] = None,
        evaluator: Optional[GuardrailEvaluator] = None,
        backups: Optional[BackupManager] = None,
        inventory: Optional[DeviceInventory] = None,
        events: Optional[EventBus] = None,
        leases: Optional[LeaseManager] = None,
        pool: Optional[DevicePool] = None,
        engine: Optional[DiffEngine] = None,
    ):
        """
        Args:
            adapter: Device Adapter for all device calls
            validator: Post-commit Validation Runner
            intent_store: Intent snapshots and device baselines
            records: Persisted diffs, attempts and locks
            ledger: Audit Ledger
            settings: Engine settings (retry, timeouts, backup gate)
            evaluator: Guardrail evaluator (default: rules from settings)
            backups: Backup Manager used by the backup gate
            inventory: Device inventory (production flags, HA pairs)
            events: Event bus for subscribers
            leases: Device leases, shared with the Drift Detector
            pool: Bounded pool for in-flight device calls
            engine: Diff engine
        """
        self.settings = settings or Settings()
        self.adapter = adapter
        self.validator = validator
        self.intent_store = intent_store
        self.records = records
        self.ledger = ledger
        self.evaluator = evaluator or GuardrailEvaluator(load_guardrails(
            self.settings.guardrails,
            high_risk_zones=self.settings.high_risk_zones,
            shadow_scope=self.settings.shadow_scope,
        ))
        self.engine = engine or DiffEngine()
        self.backups = backups
        self.inventory = inventory
        self.events = events or EventBus()
        self.leases = leases or LeaseManager()
        self.pool = pool or DevicePool(self.settings.max_concurrency)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        adapter: DeviceAdapter,
        validator: ValidationRunner,
        inventory: Optional[DeviceInventory] = None,
        events: Optional[EventBus] = None,
        leases: Optional[LeaseManager] = None,
        pool: Optional[DevicePool] = None,
    ) -> "DeploymentOrchestrator":
        """Wire an orchestrator and its stores under settings.base_dir.

        Leases and the device pool are shared with the backup manager's
        restore drills and with detectors built by drift_detector().
        """
        base_dir = settings.base_dir
        ledger = AuditLedger(base_dir / "audit" / "ledger.jsonl")
        engine = DiffEngine()
        leases = leases or LeaseManager()
        pool = pool or DevicePool(settings.max_concurrency)

        def is_production(device_id: str) -> bool:
            # An explicit inventory flag wins over the environment name
            if inventory is None or device_id not in inventory.get_device_ids():
                return False
            device = inventory.get_device(device_id)
            if device.production is not None:
                return bool(device.production)
            return settings.is_production(device.environment)

        backups = BackupManager(
            base_dir,
            adapter,
            ledger,
            retention=settings.retention,
            is_production=is_production,
            retry=settings.retry,
            timeout=settings.timeouts.fetch,
            engine=engine,
            leases=leases,
        )
        return cls(
            adapter=adapter,
            validator=validator,
            intent_store=IntentStore(base_dir, git_enabled=settings.git_enabled),
            records=RecordStore(base_dir),
            ledger=ledger,
            settings=settings,
            backups=backups,
            inventory=inventory,
            events=events,
            leases=leases,
            pool=pool,
            engine=engine,
        )

    def drift_detector(self):
        """A Drift Detector sharing this orchestrator's stores, leases and pool."""
        from ..drift.detector import DriftDetector

        return DriftDetector.from_settings(
            self.settings,
            self.adapter,
            intent_store=self.intent_store,
            records=self.records,
            ledger=self.ledger,
            evaluator=self.evaluator,
            leases=self.leases,
            pool=self.pool,
            events=self.events,
            engine=self.engine,
        )

    # === Locks ===

    def is_locked(self, device_id: str) -> bool:
        return self.records.get_lock(device_id) is not None

    def clear_lock(
        self,
        device_id: str,
        actor: str,
        ticket: Optional[str] = None,
        note: str = "",
    ) -> bool:
        """
        Clear a deployment lock after manual intervention.

        Returns:
            True if a lock was cleared
        """
        lock = self.records.get_lock(device_id)
        if lock is None:
            return False
        self.records.clear_lock(device_id)
        self.ledger.record(
            AuditKind.LOCK_CLEARED,
            device_id,
            lock.get("attempt_id", "unknown"),
            "cleared",
            actor=actor,
            ticket=ticket,
            details={"lock": lock, "note": note},
        )
        logger.warning(f"Deployment lock on {device_id} cleared by {actor}")
        return True

    # === Entry points ===

    async def deploy(
        self,
        device_id: str,
        target: IntentSnapshot,
        ticket: Optional[str] = None,
        actor: str = "system",
        cancel: Optional[CancellationToken] = None,
    ) -> DeploymentAttempt:
        """
        Deploy intent to one device.

        Raises:
            DeviceLockedError: If the device is deployment-locked
        """
        attempts = await self.deploy_many({device_id: target}, ticket=ticket, actor=actor, cancel=cancel)
        return attempts[device_id]

    async def deploy_many(
        self,
        targets: dict[str, IntentSnapshot],
        ticket: Optional[str] = None,
        actor: str = "system",
        cancel: Optional[CancellationToken] = None,
    ) -> dict[str, DeploymentAttempt]:
        """
        Deploy intent to several devices in parallel.

        HA pairs whose members are both targeted are sequenced through an
        HA barrier: the passive member commits first.

        Args:
            targets: Device id to intent snapshot
            ticket: Change ticket embedded in commit comments and audit entries
            actor: Who requested the deployment
            cancel: Token checked at each transition

        Returns:
            Attempts by device id

        Raises:
            DeviceLockedError: If any targeted device is deployment-locked
        """
        for device_id in targets:
            lock = self.records.get_lock(device_id)
            if lock is not None:
                raise DeviceLockedError(device_id, lock.get("reason", ""))

        plans = await self._plan(list(targets))
        tasks = {
            device_id: asyncio.create_task(
                self._run_attempt(device_id, target, plans[device_id], ticket, actor, cancel)
            )
            for device_id, target in targets.items()
        }
        # Every attempt runs to a terminal state before an error is raised
        results = await asyncio.gather(*tasks.values(), return_exceptions=True)
        for device_id, result in zip(tasks, results):
            if isinstance(result, BaseException):
                logger.error(f"Attempt on {device_id} raised: {result!r}")
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return dict(zip(tasks, results))

    async def _plan(self, device_ids: list[str]) -> dict[str, _Plan]:
        """Read HA roles and build barriers for pairs targeted together.

        A pair whose members are both targeted is only deployed when both
        report usable HA status; otherwise both members abort.
        """
        plans = {device_id: _Plan() for device_id in device_ids}
        statuses: dict[str, HAStatus] = {}

        for device_id in device_ids:
            try:
                statuses[device_id] = await self._device_call(
                    device_id, "fetch_ha_status", timeout=self.settings.timeouts.fetch
                )
                plans[device_id].role = statuses[device_id].role
            except AdapterError as e:
                plans[device_id].abort_reason = f"ha_status_unavailable: {e.message}"

        peers: dict[str, str] = {}
        for device_id in device_ids:
            peer_id = self._ha_peer(device_id, statuses.get(device_id))
            if peer_id is not None and peer_id in plans and peer_id != device_id:
                peers.setdefault(device_id, peer_id)
                peers.setdefault(peer_id, device_id)

        seen: set[str] = set()
        for device_id, peer_id in peers.items():
            if device_id in seen:
                continue
            seen.update((device_id, peer_id))

            missing = [m for m in (device_id, peer_id) if m not in statuses]
            if missing:
                for member in (device_id, peer_id):
                    if plans[member].abort_reason is None:
                        plans[member].abort_reason = f"ha_status_unavailable: peer {', '.join(missing)}"
                logger.warning(f"HA pair {device_id}/{peer_id} not deployed: no HA status from {', '.join(missing)}")
                continue

            status, peer = statuses[device_id], statuses[peer_id]
            if status.degraded or peer.degraded:
                for member in (device_id, peer_id):
                    plans[member].abort_reason = "ha_degraded"
                continue

            roles = {status.role: device_id, peer.role: peer_id}
            if set(roles) != {HARole.ACTIVE, HARole.PASSIVE}:
                for member in (device_id, peer_id):
                    plans[member].abort_reason = "ha_roles_ambiguous"
                continue

            barrier = HABarrier(active_id=roles[HARole.ACTIVE], passive_id=roles[HARole.PASSIVE])
            plans[device_id].barrier = barrier
            plans[peer_id].barrier = barrier
            logger.info(f"HA pair {barrier.passive_id} (passive) -> {barrier.active_id} (active) sequenced")
        return plans

    def _ha_peer(self, device_id: str, status: Optional[HAStatus]) -> Optional[str]:
        """Peer reported by the device, else the inventory's."""
        if status is not None and status.peer_id is not None:
            return status.peer_id
        if self.inventory is not None and device_id in self.inventory.get_device_ids():
            return self.inventory.ha_peer(device_id)
        return None

    # === Attempt pipeline ===

    async def _run_attempt(
        self,
        device_id: str,
        target: IntentSnapshot,
        plan: _Plan,
        ticket: Optional[str],
        actor: str,
        cancel: Optional[CancellationToken],
    ) -> DeploymentAttempt:
        attempt_id = f"att-{uuid.uuid4().hex[:12]}"
        attempt: Optional[DeploymentAttempt] = None
        try:
            async with self.leases.hold(device_id, attempt_id):
                attempt = await self._attempt(attempt_id, device_id, target, plan, ticket, actor, cancel)
                return attempt
        finally:
            if plan.barrier is not None and plan.role == HARole.PASSIVE:
                plan.barrier.passive_finished(attempt is not None and attempt.has_committed)

    async def _attempt(
        self,
        attempt_id: str,
        device_id: str,
        target: IntentSnapshot,
        plan: _Plan,
        ticket: Optional[str],
        actor: str,
        cancel: Optional[CancellationToken],
    ) -> DeploymentAttempt:
        attempt = DeploymentAttempt(
            attempt_id=attempt_id,
            device_id=device_id,
            diff_id="",
            environment=target.environment,
            device_group=target.device_group,
            target_version=target.version,
            ticket=ticket,
            actor=actor,
            ha_role=plan.role.value,
        )
        logger.info(f"Attempt {attempt_id} started for {device_id} -> {target.version or target.content_hash[:19]}")

        # Baseline reference taken once; rollback re-applies it
        rollback_target = self.intent_store.baseline(device_id)

        # === PENDING ===
        if plan.abort_reason:
            return await self._abort(attempt, plan.abort_reason)

        # A lock set by an attempt that held the lease before us
        lock = self.records.get_lock(device_id)
        if lock is not None:
            logger.warning(f"Attempt {attempt_id} on {device_id} refused: device is deployment-locked")
            return await self._abort(attempt, f"deployment_locked: {lock.get('reason', '')}")

        try:
            try:
                payload = await self._call(attempt, "fetch_live_config", timeout=self.settings.timeouts.fetch)
                live = self.engine.parse_live(payload, target.environment, target.device_group)
            except (AdapterError, ParseError) as e:
                attempt.error = e.to_dict()
                return await self._abort(attempt, "live_config_unavailable")
            if rollback_target is None:
                rollback_target = live

            diff = self.engine.diff(live, target)
            attempt.diff_id = diff.diff_id
            self.records.save_diff(diff)
            self._persist(attempt)

            if cancel is not None and cancel.cancelled:
                return await self._cancel(attempt, cancel)

            verdict = self.evaluator.evaluate(diff, target, peers=self._peers(target))
            attempt.verdict = verdict.to_dict()
            if verdict.blocked:
                await self._abort(attempt, "guardrail_blocked", notify=False)
                await self.events.publish(GuardrailBlocked(
                    device_id=device_id,
                    attempt_id=attempt_id,
                    diff_id=diff.diff_id,
                    violations=[v.to_dict() for v in verdict.blocking],
                ))
                return attempt

            if self.settings.require_backup:
                if self.backups is None:
                    return await self._abort(attempt, "backup_failed: no backup manager configured")
                try:
                    async with self.pool.slot():
                        record = await self.backups.backup(
                            device_id,
                            self.settings.backup_retention_class,
                            environment=target.environment,
                            device_group=target.device_group,
                        )
                    attempt.backup_id = record.backup_id
                except (IntegrityError, AdapterError, ParseError) as e:
                    attempt.error = e.to_dict()
                    return await self._abort(attempt, "backup_failed")

            if cancel is not None and cancel.cancelled:
                return await self._cancel(attempt, cancel)
            self._advance(attempt, S.GUARDRAIL_CHECKED, verdict.status.value)
        except Exception as e:
            if attempt.terminal:
                raise
            logger.exception(f"Attempt {attempt_id} on {device_id} raised before staging: {e}")
            attempt.error = {"code": "INTERNAL_ERROR", "message": str(e), "details": {}}
            if attempt.state == S.PENDING:
                return await self._abort(attempt, "internal_error")
            return await self._fail(attempt, "internal_error", rollback_target)

        if cancel is not None and cancel.cancelled:
            return await self._cancel(attempt, cancel)

        handle: Optional[CandidateHandle] = None
        try:
            # === GUARDRAIL_CHECKED -> STAGED ===
            try:
                handle = await self._call(attempt, "push_candidate", diff, timeout=self.settings.timeouts.stage)
            except AdapterError as e:
                raise _AttemptFailed("stage_failed", e)
            attempt.candidate_id = handle.candidate_id
            attempt.candidate_outstanding = True
            self._advance(attempt, S.STAGED)
            self._check_cancel(cancel)

            if plan.barrier is not None and plan.role == HARole.ACTIVE:
                logger.info(f"Attempt {attempt_id} waiting for HA peer {plan.barrier.passive_id} to commit")
                if not await plan.barrier.wait():
                    await self._discard(attempt, handle)
                    raise _AttemptFailed("ha_peer_not_committed")
                self._check_cancel(cancel)

            # === STAGED -> VALIDATED ===
            try:
                validation = await self._call(
                    attempt, "validate_candidate", handle, timeout=self.settings.timeouts.validate
                )
            except AdapterError as e:
                await self._discard(attempt, handle)
                raise _AttemptFailed("validate_failed", e)
            if not validation.valid:
                await self._discard(attempt, handle)
                raise _AttemptFailed(
                    "validation_rejected",
                    ValidationFailedError(
                        f"Commit-check rejected candidate on {device_id}",
                        details={"errors": validation.errors},
                    ),
                )
            self._advance(attempt, S.VALIDATED)
            self._check_cancel(cancel)

            # === VALIDATED -> COMMITTED ===
            attempt.commit_attempted = True
            try:
                result = await self._call(
                    attempt, "commit", handle, self._commit_comment(attempt), timeout=self.settings.timeouts.commit
                )
            except AdapterError as e:
                raise _AttemptFailed("commit_failed", e)
            if not result.success:
                raise _AttemptFailed(f"commit_failed: {result.message}")
            attempt.candidate_outstanding = False
            attempt.commit_id = result.commit_id
            self._advance(attempt, S.COMMITTED, result.commit_id or "")
            if plan.barrier is not None and plan.role == HARole.PASSIVE:
                plan.barrier.passive_committed()
            self._check_cancel(cancel)

            # === COMMITTED -> POST_VALIDATED ===
            try:
                report = await self._run_checks(attempt)
            except AdapterError as e:
                raise _AttemptFailed("post_validation_error", e)
            attempt.post_validation = {"passed": report.passed, "report": report.report}
            if not report.passed:
                raise _AttemptFailed(
                    "post_validation_failed",
                    ValidationFailedError(f"Post-change checks failed on {device_id}", details=report.report),
                )
            self._advance(attempt, S.POST_VALIDATED)

            # === POST_VALIDATED -> COMPLETED ===
            self.intent_store.record_deployment(device_id, target, attempt_id)

        except _AttemptFailed as failure:
            if failure.error is not None:
                attempt.error = failure.error.to_dict()
            return await self._fail(attempt, failure.reason, rollback_target)
        except Exception as e:
            logger.exception(f"Attempt {attempt_id} on {device_id} raised unexpectedly: {e}")
            attempt.error = {"code": "INTERNAL_ERROR", "message": str(e), "details": {}}
            return await self._fail(attempt, "internal_error", rollback_target)

        self._advance(attempt, S.COMPLETED)
        self._finish(attempt)
        await self.events.publish(DeploymentCompleted(
            device_id=device_id,
            attempt_id=attempt_id,
            diff_id=attempt.diff_id,
            target_version=target.version,
        ))
        return attempt

    # === Transitions ===

    def _advance(self, attempt: DeploymentAttempt, state: AttemptState, reason: str = "") -> None:
        attempt.transition(state, reason)
        logger.info(f"Attempt {attempt.attempt_id} on {attempt.device_id}: {state.value}" + (f" ({reason})" if reason else ""))
        self._persist(attempt)

    def _persist(self, attempt: DeploymentAttempt) -> None:
        self.records.save_attempt(attempt.to_dict())

    def _finish(self, attempt: DeploymentAttempt) -> None:
        """Write the single audit entry for a terminal attempt."""
        self.ledger.record(
            AuditKind.DEPLOYMENT,
            attempt.device_id,
            attempt.attempt_id,
            attempt.outcome.value,
            actor=attempt.actor,
            ticket=attempt.ticket,
            details={
                "state": attempt.state.value,
                "reason": attempt.reason,
                "diff_id": attempt.diff_id,
                "target_version": attempt.target_version,
                "backup_id": attempt.backup_id,
                "commit_id": attempt.commit_id,
                "verdict_status": (attempt.verdict or {}).get("status"),
                "post_validation": attempt.post_validation,
                "rollback": attempt.rollback,
                "error": attempt.error,
                "states": [s.value for s in attempt.states()],
            },
        )
        logger.info(f"Attempt {attempt.attempt_id} on {attempt.device_id} finished: {attempt.outcome.value}")

    async def _abort(self, attempt: DeploymentAttempt, reason: str, notify: bool = True) -> DeploymentAttempt:
        self._advance(attempt, S.ABORTED, reason)
        self._finish(attempt)
        if notify:
            await self.events.publish(DeploymentFailed(
                device_id=attempt.device_id,
                attempt_id=attempt.attempt_id,
                diff_id=attempt.diff_id,
                outcome=attempt.outcome.value,
                reason=reason,
            ))
        return attempt

    async def _cancel(self, attempt: DeploymentAttempt, cancel: CancellationToken) -> DeploymentAttempt:
        self._advance(attempt, S.CANCELLED, cancel.reason or "cancelled")
        self._finish(attempt)
        return attempt

    @staticmethod
    def _check_cancel(cancel: Optional[CancellationToken]) -> None:
        """After a candidate exists, cancellation becomes a failure."""
        if cancel is not None and cancel.cancelled:
            raise _AttemptFailed("cancelled")

    async def _fail(
        self,
        attempt: DeploymentAttempt,
        reason: str,
        rollback_target: IntentSnapshot,
    ) -> DeploymentAttempt:
        self._advance(attempt, S.FAILED, reason)
        if not attempt.requires_rollback:
            self._finish(attempt)
            await self.events.publish(DeploymentFailed(
                device_id=attempt.device_id,
                attempt_id=attempt.attempt_id,
                diff_id=attempt.diff_id,
                outcome=attempt.outcome.value,
                reason=reason,
            ))
            return attempt

        try:
            attempt.rollback = await self._rollback(attempt, rollback_target)
        except (AdapterError, RollbackFailedError, ValidationFailedError, ParseError, DiffConflictError) as e:
            return await self._lock(attempt, e)
        except Exception as e:
            logger.exception(f"Rollback of {attempt.attempt_id} on {attempt.device_id} raised: {e}")
            return await self._lock(attempt, RollbackFailedError(f"Rollback raised {type(e).__name__}: {e}"))

        self._advance(attempt, S.ROLLED_BACK, reason)
        self._finish(attempt)
        await self.events.publish(DeploymentFailed(
            device_id=attempt.device_id,
            attempt_id=attempt.attempt_id,
            diff_id=attempt.diff_id,
            outcome=attempt.outcome.value,
            reason=reason,
        ))
        return attempt

    async def _lock(self, attempt: DeploymentAttempt, error: FirecraftError) -> DeploymentAttempt:
        """Rollback could not be confirmed: lock the device and page an operator."""
        attempt.rollback = {"confirmed": False, "error": error.to_dict()}
        failure_reason = attempt.reason
        self.records.set_lock(attempt.device_id, {
            "attempt_id": attempt.attempt_id,
            "reason": f"rollback failed: {error.message}",
            "locked_at": datetime.now(timezone.utc).isoformat(),
        })
        self._advance(attempt, S.DEPLOYMENT_LOCKED, f"rollback failed after {failure_reason}")
        logger.critical(
            f"Device {attempt.device_id} is deployment-locked: rollback of {attempt.attempt_id} "
            f"could not be confirmed ({error.message})"
        )
        self._finish(attempt)
        await self.events.publish(DeploymentLocked(
            device_id=attempt.device_id,
            attempt_id=attempt.attempt_id,
            reason=error.message,
        ))
        return attempt

    # === Rollback ===

    async def _rollback(self, attempt: DeploymentAttempt, baseline: IntentSnapshot) -> dict[str, Any]:
        """
        Re-apply the prior baseline as a new committed change and confirm it.

        Raises:
            RollbackFailedError: If the device does not match the baseline afterwards
            AdapterError: If a device call keeps failing after retries
        """
        device_id = attempt.device_id
        logger.warning(f"Rolling back {device_id} after {attempt.attempt_id} ({attempt.reason})")
        timeouts = self.settings.timeouts

        if attempt.candidate_outstanding and attempt.candidate_id and not attempt.commit_attempted:
            await self._discard(attempt, CandidateHandle(device_id, attempt.candidate_id, attempt.diff_id))

        live = self.engine.parse_live(
            await self._call(attempt, "fetch_live_config", timeout=timeouts.fetch),
            baseline.environment,
            baseline.device_group,
        )
        restore = self.engine.diff(live, baseline)
        commit_id = None
        if not restore.is_empty:
            handle = await self._call(attempt, "push_candidate", restore, timeout=timeouts.stage)
            validation = await self._call(attempt, "validate_candidate", handle, timeout=timeouts.validate)
            if not validation.valid:
                raise ValidationFailedError(
                    f"Rollback candidate rejected on {device_id}",
                    details={"errors": validation.errors},
                )
            result = await self._call(
                attempt, "commit", handle,
                f"{self._commit_comment(attempt)} rollback",
                timeout=timeouts.commit,
            )
            if not result.success:
                raise RollbackFailedError(f"Rollback commit failed on {device_id}: {result.message}")
            commit_id = result.commit_id

        residual = self.engine.diff_live(
            baseline, await self._call(attempt, "fetch_live_config", timeout=timeouts.fetch)
        )
        if not residual.is_empty:
            raise RollbackFailedError(
                f"{device_id} still differs from its baseline after rollback "
                f"({residual.total_changes} changes)",
                details={"diff_id": residual.diff_id},
            )

        attempt.candidate_outstanding = False
        logger.info(f"Rollback of {device_id} confirmed")
        return {
            "confirmed": True,
            "diff_id": restore.diff_id,
            "commit_id": commit_id,
            "baseline_version": baseline.version,
            "baseline_hash": baseline.content_hash,
        }

    # === Device calls ===

    async def _device_call(
        self,
        device_id: str,
        operation: str,
        *args: Any,
        timeout: Optional[float] = None,
        holder: str = "",
    ) -> Any:
        """Adapter call with pool slot, timeout and retry."""
        method: Callable[..., Awaitable[Any]] = getattr(self.adapter, operation)

        async def once() -> Any:
            async with self.pool.slot():
                async with timed_section(operation, device_id, attempt=holder):
                    return await with_timeout(method(device_id, *args), timeout, device_id, operation)

        return await self.settings.retry.call(once)

    async def _call(self, attempt: DeploymentAttempt, operation: str, *args: Any, timeout: Optional[float] = None) -> Any:
        return await self._device_call(attempt.device_id, operation, *args, timeout=timeout, holder=attempt.attempt_id)

    async def _run_checks(self, attempt: DeploymentAttempt):
        device_id = attempt.device_id

        async def once():
            async with self.pool.slot():
                async with timed_section("post_validate", device_id, attempt=attempt.attempt_id):
                    return await with_timeout(
                        self.validator.run_checks(device_id, list(self.settings.post_validation_checks)),
                        self.settings.timeouts.post_validate,
                        device_id,
                        "post_validate",
                    )

        return await self.settings.retry.call(once)

    async def _discard(self, attempt: DeploymentAttempt, handle: CandidateHandle) -> None:
        """Drop a staged candidate. A failed discard leaves it outstanding for rollback."""
        try:
            await self._call(attempt, "discard_candidate", handle, timeout=self.settings.timeouts.stage)
            attempt.candidate_outstanding = False
        except AdapterError as e:
            logger.warning(f"Could not discard candidate {handle.candidate_id} on {attempt.device_id}: {e.message}")

    # === Helpers ===

    @staticmethod
    def _commit_comment(attempt: DeploymentAttempt) -> str:
        ticket = f"[{attempt.ticket}] " if attempt.ticket else ""
        return f"{ticket}firecraft {attempt.diff_id} attempt {attempt.attempt_id}"

    def _peers(self, target: IntentSnapshot) -> list[IntentSnapshot]:
        """Other device groups' latest intent, for shared-zone shadow detection."""
        if self.settings.shadow_scope != "shared_zone":
            return []
        peers = []
        for environment, group in self.intent_store.list_scopes():
            if environment == target.environment and group != target.device_group:
                snapshot = self.intent_store.latest(environment, group)
                if snapshot is not None:
                    peers.append(snapshot)
        return peers

    def attempt_diff(self, attempt: DeploymentAttempt) -> Optional[DiffRecord]:
        return self.records.load_diff(attempt.diff_id) if attempt.diff_id else None
