"""In-memory reference adapter.

SimulatedDevice keeps each device's live configuration as an IntentSnapshot,
stages candidates as diffs and applies them on commit. Faults, delays,
validation rejections and out-of-band edits can be injected per device and
operation, and every call is recorded so callers can assert what the engine
did to the device.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from ..diff.engine import apply_diff
from ..diff.records import DiffRecord
from ..errors import DiffConflictError, PermanentAdapterError, TransientAdapterError
from ..intent.render import render_snapshot
from ..intent.schema import IntentSnapshot
from .base import (
    CandidateHandle,
    CandidateValidation,
    CheckReport,
    CommitResult,
    ConfigPayload,
    DeviceAdapter,
    HARole,
    HAStatus,
    ValidationRunner,
)

logger = logging.getLogger(__name__)

OPERATIONS = (
    "fetch_live_config",
    "push_candidate",
    "validate_candidate",
    "commit",
    "fetch_ha_status",
    "discard_candidate",
)


@dataclass
class _Fault:
    error: Exception
    times: int
    after: int


class SimulatedDevice(DeviceAdapter):
    """Device Adapter backed by in-memory snapshots."""

    def __init__(self, devices: Optional[dict[str, IntentSnapshot]] = None):
        self.live: dict[str, IntentSnapshot] = {}
        self.candidates: dict[str, tuple[CandidateHandle, DiffRecord]] = {}
        self.calls: list[tuple[str, str]] = []
        self.commits: dict[str, list[str]] = {}
        self.in_flight = 0
        self.peak_in_flight = 0

        self._ha: dict[str, HAStatus] = {}
        self._faults: dict[tuple[str, str], list[_Fault]] = {}
        self._delays: dict[tuple[str, str], float] = {}
        self._rejections: dict[str, list[list[str]]] = {}
        self._exports: dict[str, list] = {}

        for device_id, snapshot in (devices or {}).items():
            self.add_device(device_id, snapshot)

    # === Setup ===

    def add_device(
        self,
        device_id: str,
        snapshot: IntentSnapshot,
        role: HARole = HARole.STANDALONE,
        peer_id: Optional[str] = None,
    ) -> None:
        self.live[device_id] = snapshot
        self._ha[device_id] = HAStatus(device_id=device_id, role=role, peer_id=peer_id)

    def set_ha(
        self,
        device_id: str,
        role: HARole,
        peer_id: Optional[str] = None,
        degraded: bool = False,
    ) -> None:
        self._ha[device_id] = HAStatus(device_id=device_id, role=role, peer_id=peer_id, degraded=degraded)

    def inject_fault(
        self,
        device_id: str,
        operation: str,
        error: Optional[Exception] = None,
        times: int = 1,
        after: int = 0,
    ) -> None:
        """
        Make an operation fail.

        Args:
            device_id: Target device
            operation: One of OPERATIONS
            error: Exception to raise (default: a TransientAdapterError)
            times: How many calls fail
            after: Number of calls that succeed before the first failure
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation '{operation}'")
        if error is None:
            error = TransientAdapterError(
                f"simulated {operation} failure", device_id=device_id, operation=operation
            )
        self._faults.setdefault((device_id, operation), []).append(_Fault(error, times, after))

    def set_delay(self, device_id: str, operation: str, seconds: float) -> None:
        self._delays[(device_id, operation)] = seconds

    def reject_validation(self, device_id: str, errors: Optional[list[str]] = None) -> None:
        """Make the next commit-check report the candidate invalid."""
        self._rejections.setdefault(device_id, []).append(errors or ["simulated commit-check rejection"])

    def set_export(self, device_id: str, content: str, after: int = 0) -> None:
        """Override what fetch_live_config returns (e.g. an empty export).

        The first `after` fetches still return the live configuration.
        """
        self._exports[device_id] = [content, after]

    def clear_export(self, device_id: str) -> None:
        self._exports.pop(device_id, None)

    def mutate(self, device_id: str, snapshot: IntentSnapshot) -> None:
        """Out-of-band change to the live configuration."""
        self.live[device_id] = snapshot

    def calls_for(self, device_id: str, operation: Optional[str] = None) -> list[str]:
        return [op for dev, op in self.calls if dev == device_id and (operation is None or op == operation)]

    # === Adapter operations ===

    async def _enter(self, device_id: str, operation: str) -> None:
        self.calls.append((device_id, operation))
        if device_id not in self.live:
            raise PermanentAdapterError(f"Unknown device {device_id}", device_id=device_id, operation=operation)

        delay = self._delays.get((device_id, operation))
        if delay:
            await asyncio.sleep(delay)

        for fault in self._faults.get((device_id, operation), []):
            if fault.after > 0:
                fault.after -= 1
                continue
            if fault.times > 0:
                fault.times -= 1
                logger.debug(f"Injecting {type(fault.error).__name__} into {operation} on {device_id}")
                raise fault.error

    async def _call(self, device_id: str, operation: str):
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await self._enter(device_id, operation)
        finally:
            self.in_flight -= 1

    async def fetch_live_config(self, device_id: str) -> ConfigPayload:
        await self._call(device_id, "fetch_live_config")
        override = self._exports.get(device_id)
        if override is not None and override[1] > 0:
            override[1] -= 1
            override = None
        if override is not None:
            content = override[0]
        else:
            content = render_snapshot(self.live[device_id])
        return ConfigPayload(device_id=device_id, content=content)

    async def push_candidate(self, device_id: str, diff: DiffRecord) -> CandidateHandle:
        await self._call(device_id, "push_candidate")
        handle = CandidateHandle(
            device_id=device_id,
            candidate_id=f"cand-{uuid.uuid4().hex[:8]}",
            diff_id=diff.diff_id,
        )
        self.candidates[device_id] = (handle, diff)
        return handle

    async def validate_candidate(self, device_id: str, handle: CandidateHandle) -> CandidateValidation:
        await self._call(device_id, "validate_candidate")
        staged = self.candidates.get(device_id)
        if staged is None or staged[0].candidate_id != handle.candidate_id:
            return CandidateValidation(valid=False, errors=["no such candidate"])
        if self._rejections.get(device_id):
            return CandidateValidation(valid=False, errors=self._rejections[device_id].pop(0))
        try:
            apply_diff(staged[1], self.live[device_id])
        except DiffConflictError as e:
            return CandidateValidation(valid=False, errors=[e.message])
        return CandidateValidation(valid=True)

    async def commit(self, device_id: str, handle: CandidateHandle, comment: str) -> CommitResult:
        await self._call(device_id, "commit")
        staged = self.candidates.get(device_id)
        if staged is None or staged[0].candidate_id != handle.candidate_id:
            raise PermanentAdapterError(
                f"Candidate {handle.candidate_id} is not staged", device_id=device_id, operation="commit"
            )
        try:
            self.live[device_id] = apply_diff(staged[1], self.live[device_id])
        except DiffConflictError as e:
            raise PermanentAdapterError(str(e), device_id=device_id, operation="commit")

        del self.candidates[device_id]
        commit_id = f"commit-{uuid.uuid4().hex[:8]}"
        self.commits.setdefault(device_id, []).append(comment)
        return CommitResult(success=True, commit_id=commit_id, message=comment)

    async def fetch_ha_status(self, device_id: str) -> HAStatus:
        await self._call(device_id, "fetch_ha_status")
        return self._ha[device_id]

    async def discard_candidate(self, device_id: str, handle: CandidateHandle) -> None:
        await self._call(device_id, "discard_candidate")
        staged = self.candidates.get(device_id)
        if staged is not None and staged[0].candidate_id == handle.candidate_id:
            del self.candidates[device_id]


class SimulatedValidationRunner(ValidationRunner):
    """Post-commit checks that pass unless told otherwise."""

    def __init__(self):
        self.calls: list[tuple[str, tuple[str, ...]]] = []
        self._failures: dict[str, list[str]] = {}

    def fail_check(self, device_id: str, check: str) -> None:
        """Make the next run against device_id fail the named check."""
        self._failures.setdefault(device_id, []).append(check)

    async def run_checks(self, device_id: str, check_set: list[str]) -> CheckReport:
        self.calls.append((device_id, tuple(check_set)))
        failing = self._failures.pop(device_id, [])
        results = {check: check not in failing for check in check_set}
        for check in failing:
            results.setdefault(check, False)
        return CheckReport(
            passed=all(results.values()),
            report={"checks": results, "device_id": device_id},
        )
