"""Device inventory loaded from YAML configuration.

The engine only needs a stable device identifier, its device-group tag, its
environment and its HA peer; credentials and connection details are the
adapter's concern.

```yaml
defaults:
  environment: prod
devices:
  fw-edge-01:
    group: dc-edge
  fw-edge-02:
    group: dc-edge
  fw-lab-01:
    group: lab-edge
    environment: lab
ha_pairs:
  - [fw-edge-01, fw-edge-02]
```
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceRecord:
    """Inventory entry for one managed firewall."""
    device_id: str
    group: str
    environment: str
    ha_peer: Optional[str] = None
    production: Optional[bool] = None


class DeviceInventory:
    """Device ids, device groups and HA pairs."""

    def __init__(
        self,
        config_path: Optional[Path | str] = None,
        data: Optional[dict[str, Any]] = None,
        production_environments: tuple[str, ...] = ("prod", "production"),
    ):
        if data is None:
            if config_path is None:
                raise ConfigurationError("Inventory requires a config path or data")
            data = self._load(Path(config_path))
        self.production_environments = {e.lower() for e in production_environments}
        self._devices: dict[str, DeviceRecord] = {}
        self._groups: dict[str, list[str]] = {}
        self._build(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any], **kwargs: Any) -> "DeviceInventory":
        return cls(data=data, **kwargs)

    @staticmethod
    def _load(path: Path) -> dict[str, Any]:
        try:
            with open(path) as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot load inventory {path}: {e}")

    def _build(self, data: dict[str, Any]) -> None:
        defaults = data.get("defaults", {}) or {}
        peers: dict[str, str] = {}

        for pair in data.get("ha_pairs", []) or []:
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                raise ConfigurationError(f"HA pair must list exactly two devices: {pair!r}")
            first, second = pair
            for device_id, peer in ((first, second), (second, first)):
                if device_id in peers and peers[device_id] != peer:
                    raise ConfigurationError(f"Device {device_id} is in more than one HA pair")
                peers[device_id] = peer

        for device_id, config in (data.get("devices", {}) or {}).items():
            config = {**defaults, **(config or {})}
            group = config.get("group")
            environment = config.get("environment")
            if not group or not environment:
                raise ConfigurationError(f"Device {device_id} needs a group and an environment")
            peer = config.get("ha_peer") or peers.get(device_id)
            self._devices[device_id] = DeviceRecord(
                device_id=device_id,
                group=str(group),
                environment=str(environment),
                ha_peer=peer,
                production=config.get("production"),
            )
            self._groups.setdefault(str(group), []).append(device_id)

        for device_id, peer in peers.items():
            if device_id not in self._devices or peer not in self._devices:
                raise ConfigurationError(f"HA pair references unknown device: {device_id}/{peer}")

        # Explicit groups may add members without a group tag of their own
        for group_name, members in (data.get("groups", {}) or {}).items():
            if not isinstance(members, list):
                logger.warning(f"Group '{group_name}' should be a list of device IDs")
                continue
            for device_id in members:
                if device_id not in self._devices:
                    logger.warning(f"Group '{group_name}' references unknown device: {device_id}")
                elif device_id not in self._groups.setdefault(group_name, []):
                    self._groups[group_name].append(device_id)

    def get_device_ids(self) -> list[str]:
        """Get all device IDs."""
        return list(self._devices)

    def get_device(self, device_id: str) -> DeviceRecord:
        """Get a device record.

        Raises:
            KeyError: If the device is unknown
        """
        if device_id not in self._devices:
            raise KeyError(f"Unknown device: {device_id}")
        return self._devices[device_id]

    def is_production(self, device_id: str) -> bool:
        """Production flag, explicit or derived from the environment name."""
        device = self.get_device(device_id)
        if device.production is not None:
            return bool(device.production)
        return device.environment.lower() in self.production_environments

    def ha_peer(self, device_id: str) -> Optional[str]:
        return self.get_device(device_id).ha_peer

    def ha_pairs(self) -> list[tuple[str, str]]:
        """Each HA pair once, in inventory order."""
        pairs = []
        seen: set[str] = set()
        for device in self._devices.values():
            if device.ha_peer and device.device_id not in seen:
                pairs.append((device.device_id, device.ha_peer))
                seen.update((device.device_id, device.ha_peer))
        return pairs

    # === Group Management ===

    def get_groups(self) -> dict[str, list[str]]:
        """Get all groups and their members."""
        return {name: list(members) for name, members in self._groups.items()}

    def get_group_names(self) -> list[str]:
        return list(self._groups)

    def get_group_members(self, group_name: str) -> list[str]:
        """Get device IDs in a group.

        Raises:
            KeyError: If group doesn't exist
        """
        if group_name not in self._groups:
            raise KeyError(f"Unknown group: {group_name}")
        return list(self._groups[group_name])

    def get_device_groups(self, device_id: str) -> list[str]:
        """Get all groups a device belongs to."""
        return [name for name, members in self._groups.items() if device_id in members]
