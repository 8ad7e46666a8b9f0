"""Intent Store - versioned intent snapshots and per-device baselines.

Directory structure managed:
    <base_dir>/
    ├── intents/                          # git repository
    │   └── <environment>/<device_group>/<version>.yaml
    └── state/
        └── baselines/<device_id>.yaml    # last Completed snapshot per device

Snapshots form a linear history per (environment, device group): each new
version records its predecessor as parent. A device's baseline changes only
through record_deployment(), called when a Deployment Attempt completes.
"""
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import yaml

from ..intent.parser import ConfigParser
from ..intent.render import snapshot_to_dict
from ..intent.schema import IntentSnapshot
from .git_manager import IntentRepository

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"^v(\d+)$")


class IntentStore:
    """Owns Intent Snapshots and device baselines."""

    def __init__(
        self,
        base_dir: Path,
        git_enabled: bool = True,
        parser: Optional[ConfigParser] = None,
    ):
        """
        Args:
            base_dir: Engine base directory
            git_enabled: Commit every saved version to git when git is installed
            parser: Parser used to load stored snapshots
        """
        self.base_dir = Path(base_dir)
        self.parser = parser or ConfigParser()
        self.intents_dir.mkdir(parents=True, exist_ok=True)
        self.baselines_dir.mkdir(parents=True, exist_ok=True)

        self._repo: Optional[IntentRepository] = None
        if git_enabled:
            if IntentRepository.available():
                self._repo = IntentRepository(self.intents_dir)
                self._repo.ensure()
            else:
                logger.warning("git not found on PATH, intent versioning falls back to files only")

    @property
    def intents_dir(self) -> Path:
        return self.base_dir / "intents"

    @property
    def baselines_dir(self) -> Path:
        return self.base_dir / "state" / "baselines"

    @property
    def repository(self) -> Optional[IntentRepository]:
        return self._repo

    def _scope_dir(self, environment: str, device_group: str) -> Path:
        return self.intents_dir / environment / device_group

    # === Snapshots ===

    def history(self, environment: str, device_group: str) -> list[str]:
        """Versions of a device group, oldest first."""
        scope_dir = self._scope_dir(environment, device_group)
        if not scope_dir.exists():
            return []
        versions = []
        for path in scope_dir.glob("v*.yaml"):
            match = _VERSION_RE.match(path.stem)
            if match:
                versions.append((int(match.group(1)), path.stem))
        return [v for _, v in sorted(versions)]

    def list_scopes(self) -> list[tuple[str, str]]:
        """All (environment, device_group) pairs with at least one version."""
        scopes = []
        for env_dir in sorted(p for p in self.intents_dir.iterdir() if p.is_dir() and p.name != ".git"):
            for group_dir in sorted(p for p in env_dir.iterdir() if p.is_dir()):
                if self.history(env_dir.name, group_dir.name):
                    scopes.append((env_dir.name, group_dir.name))
        return scopes

    def get(self, environment: str, device_group: str, version: str) -> IntentSnapshot:
        """
        Load a stored snapshot.

        Raises:
            KeyError: If the version does not exist
        """
        path = self._scope_dir(environment, device_group) / f"{version}.yaml"
        if not path.exists():
            raise KeyError(f"Unknown intent version: {environment}/{device_group}@{version}")
        return self._load_version(path.read_text())

    def latest(self, environment: str, device_group: str) -> Optional[IntentSnapshot]:
        versions = self.history(environment, device_group)
        if not versions:
            return None
        return self.get(environment, device_group, versions[-1])

    def save(
        self,
        snapshot: IntentSnapshot | dict[str, Any],
        created_by: Optional[str] = None,
        message: Optional[str] = None,
    ) -> IntentSnapshot:
        """
        Store a new version of a device group's intent.

        Saving content identical to the latest version returns the latest
        version unchanged.

        Args:
            snapshot: Snapshot or raw intent dict
            created_by: Author recorded with the version
            message: Note added to the commit body

        Returns:
            The stored snapshot with version metadata
        """
        if isinstance(snapshot, dict):
            snapshot = self.parser.parse(snapshot)

        environment, device_group = snapshot.environment, snapshot.device_group
        previous = self.latest(environment, device_group)
        if previous is not None and previous.content_hash == snapshot.content_hash:
            logger.info(f"Intent for {environment}/{device_group} unchanged at {previous.version}")
            return previous

        versions = self.history(environment, device_group)
        number = int(_VERSION_RE.match(versions[-1]).group(1)) + 1 if versions else 1
        version = f"v{number}"
        stored = snapshot.with_version(
            version,
            parent_version=previous.version if previous else None,
            created_at=datetime.now(timezone.utc),
            created_by=created_by,
        )

        scope_dir = self._scope_dir(environment, device_group)
        scope_dir.mkdir(parents=True, exist_ok=True)
        path = scope_dir / f"{version}.yaml"
        path.write_text(self._dump_version(stored))
        logger.info(f"Saved intent {environment}/{device_group}@{version} ({len(stored)} objects)")

        if self._repo is not None:
            self._repo.commit_version(
                path, f"{environment}/{device_group}", version,
                saved_by=created_by, note=message,
            )
        return stored

    def version_commit(self, environment: str, device_group: str, version: str) -> Optional[str]:
        """Git commit hash that introduced a version, if git is enabled."""
        if self._repo is None:
            return None
        entry = self._repo.version_commit(f"{environment}/{device_group}", version)
        return entry.commit if entry else None

    def _dump_version(self, snapshot: IntentSnapshot) -> str:
        data = snapshot_to_dict(snapshot)
        data["created_at"] = snapshot.created_at.isoformat() if snapshot.created_at else None
        data["created_by"] = snapshot.created_by
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)

    def _load_version(self, text: str) -> IntentSnapshot:
        data = yaml.safe_load(text) or {}
        snapshot = self.parser.parse(data)
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        return snapshot.with_version(
            snapshot.version,
            parent_version=snapshot.parent_version,
            created_at=created_at,
            created_by=data.get("created_by"),
        )

    # === Baselines ===

    def baseline(self, device_id: str) -> Optional[IntentSnapshot]:
        """The device's most recently Completed snapshot, if any."""
        info = self.baseline_info(device_id)
        if info is None:
            return None
        return self.parser.parse(info["snapshot"])

    def baseline_info(self, device_id: str) -> Optional[dict[str, Any]]:
        """Raw baseline record: snapshot, attempt id and recording time."""
        path = self.baselines_dir / f"{device_id}.yaml"
        if not path.exists():
            return None
        return yaml.safe_load(path.read_text())

    def record_deployment(self, device_id: str, snapshot: IntentSnapshot, attempt_id: str) -> None:
        """Make snapshot the device's baseline after a Completed attempt."""
        record = {
            "device_id": device_id,
            "attempt_id": attempt_id,
            "version": snapshot.version,
            "content_hash": snapshot.content_hash,
            "recorded_at": datetime.now(timezone.utc).isoformat(),
            "snapshot": snapshot_to_dict(snapshot),
        }
        path = self.baselines_dir / f"{device_id}.yaml"
        tmp = path.with_suffix(".tmp")
        tmp.write_text(yaml.safe_dump(record, default_flow_style=False, sort_keys=False))
        tmp.replace(path)
        logger.info(f"Baseline for {device_id} is now {snapshot.version or snapshot.content_hash[:19]} ({attempt_id})")
