"""Deployment Orchestrator - staged, validated, auditable device changes.

Usage:
    from firewall_reconciler.orchestrator import DeploymentOrchestrator

    orchestrator = DeploymentOrchestrator.from_settings(settings, adapter, validator, inventory=inventory)
    attempt = await orchestrator.deploy("fw-edge-01", target, ticket="CHG-1234")
    print(attempt.outcome.value)

    drift = orchestrator.drift_detector()
    await drift.run_periodically(inventory.get_device_ids(), stop_event=stop)
"""

from .barrier import HABarrier
from .leases import CancellationToken, DevicePool, LeaseManager
from .orchestrator import DeploymentOrchestrator
from .state import TERMINAL_STATES, TRANSITIONS, AttemptState, DeploymentAttempt, Outcome, StateChange

__all__ = [
    "AttemptState",
    "CancellationToken",
    "DeploymentAttempt",
    "DeploymentOrchestrator",
    "DevicePool",
    "HABarrier",
    "LeaseManager",
    "Outcome",
    "StateChange",
    "TERMINAL_STATES",
    "TRANSITIONS",
]
