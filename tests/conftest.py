"""Shared fixtures: intent builders and a simulated fleet."""
import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from firewall_reconciler.audit import AuditLedger
from firewall_reconciler.backup import BackupManager
from firewall_reconciler.devices.simulated import SimulatedDevice, SimulatedValidationRunner
from firewall_reconciler.diff import DiffEngine
from firewall_reconciler.drift import DriftDetector
from firewall_reconciler.events import Event, EventBus
from firewall_reconciler.intent import ConfigParser, IntentSnapshot
from firewall_reconciler.orchestrator import DeploymentOrchestrator, DevicePool, LeaseManager
from firewall_reconciler.settings import Settings, Timeouts
from firewall_reconciler.store import IntentStore, RecordStore
from firewall_reconciler.utils.retry import RetryPolicy


BASE_INTENT: dict[str, Any] = {
    "environment": "lab",
    "device_group": "dc-edge",
    "addresses": {
        "web-servers": {"addresses": ["10.1.0.0/24"]},
        "db-servers": {"addresses": ["10.2.0.0/24"]},
    },
    "services": {
        "https": {"protocol": "tcp", "ports": [443]},
        "postgres": {"protocol": "tcp", "ports": [5432]},
    },
    "zones": {
        "untrust": {"interfaces": ["ethernet1/1"]},
        "dmz": {"interfaces": ["ethernet1/2"]},
        "trust": {"interfaces": ["ethernet1/3"]},
    },
    "settings": {"hostname": "fw-edge-01"},
    "security_rules": [
        {
            "name": "allow-web",
            "source_zones": ["untrust"],
            "destination_zones": ["dmz"],
            "source": ["any"],
            "destination": ["web-servers"],
            "service": ["https"],
            "action": "allow",
            "logging": True,
            "owner": "netsec",
            "created": "2026-01-01",
            "expires": "2099-12-31",
        },
        {
            "name": "deny-all",
            "action": "deny",
            "logging": True,
            "owner": "netsec",
            "created": "2026-01-01",
            "expires": "2099-12-31",
        },
    ],
}


def rule(name: str, **fields: Any) -> dict[str, Any]:
    """A security rule dict with complete metadata."""
    body = {
        "name": name,
        "action": "allow",
        "logging": True,
        "owner": "netsec",
        "created": "2026-01-01",
        "expires": "2099-12-31",
    }
    body.update(fields)
    return body


def intent(**overrides: Any) -> dict[str, Any]:
    """Deep copy of the base intent with top-level sections replaced."""
    data = copy.deepcopy(BASE_INTENT)
    data.update(copy.deepcopy(overrides))
    return data


def with_rule(data: dict[str, Any], new_rule: dict[str, Any], before: str = "deny-all") -> dict[str, Any]:
    """Insert a rule ahead of another rule."""
    data = copy.deepcopy(data)
    rules = data["security_rules"]
    index = next(i for i, r in enumerate(rules) if r["name"] == before)
    rules.insert(index, new_rule)
    return data


def snapshot(data: dict[str, Any]) -> IntentSnapshot:
    return ConfigParser().parse(data)


FAST_RETRY = RetryPolicy(max_attempts=3, min_wait=0, max_wait=0)


@pytest.fixture
def parser():
    return ConfigParser()


@pytest.fixture
def engine():
    return DiffEngine()


@pytest.fixture
def base_snapshot():
    return snapshot(intent())


@pytest.fixture
def web_rule_target():
    """Base intent plus one well-formed allow rule."""
    return snapshot(with_rule(intent(), rule(
        "allow-db",
        source_zones=["dmz"],
        destination_zones=["trust"],
        source=["web-servers"],
        destination=["db-servers"],
        service=["postgres"],
    )))


@dataclass
class Fleet:
    """Simulated devices wired to a full engine."""
    base_dir: Path
    settings: Settings
    device: SimulatedDevice
    validator: SimulatedValidationRunner
    intent_store: IntentStore
    records: RecordStore
    ledger: AuditLedger
    backups: BackupManager
    events: EventBus
    leases: LeaseManager
    pool: DevicePool
    orchestrator: DeploymentOrchestrator
    drift: DriftDetector
    received: list[Event] = field(default_factory=list)


def build_fleet(base_dir: Path, devices: dict[str, IntentSnapshot], **settings: Any) -> Fleet:
    settings.setdefault("timeouts", Timeouts(stage=5, validate=5, commit=5, post_validate=5, fetch=5))
    config = Settings(base_dir=base_dir, retry=FAST_RETRY, git_enabled=False, **settings)

    device = SimulatedDevice(devices)
    validator = SimulatedValidationRunner()
    engine = DiffEngine()
    ledger = AuditLedger(base_dir / "audit" / "ledger.jsonl")
    intent_store = IntentStore(base_dir, git_enabled=False)
    records = RecordStore(base_dir)
    events = EventBus()
    leases = LeaseManager()
    backups = BackupManager(base_dir, device, ledger, retry=FAST_RETRY, timeout=5, engine=engine, leases=leases)
    pool = DevicePool(config.max_concurrency)

    orchestrator = DeploymentOrchestrator(
        adapter=device,
        validator=validator,
        intent_store=intent_store,
        records=records,
        ledger=ledger,
        settings=config,
        backups=backups,
        events=events,
        leases=leases,
        pool=pool,
        engine=engine,
    )
    drift = DriftDetector(
        adapter=device,
        intent_store=intent_store,
        records=records,
        ledger=ledger,
        leases=leases,
        pool=pool,
        events=events,
        engine=engine,
        retry=FAST_RETRY,
        timeout=5,
    )
    fleet = Fleet(
        base_dir=base_dir,
        settings=config,
        device=device,
        validator=validator,
        intent_store=intent_store,
        records=records,
        ledger=ledger,
        backups=backups,
        events=events,
        leases=leases,
        pool=pool,
        orchestrator=orchestrator,
        drift=drift,
    )
    events.subscribe(fleet.received.append)
    return fleet


@pytest.fixture
def fleet(tmp_path, base_snapshot):
    """One standalone device fw-01 running the base intent."""
    return build_fleet(tmp_path, {"fw-01": base_snapshot})
