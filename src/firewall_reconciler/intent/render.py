"""Render Intent Snapshots back to the configuration format.

The rendered document is accepted by ConfigParser, and parsing it yields a
snapshot with the same content hash.
"""
from typing import Any

import yaml

from .schema import IntentSnapshot, ObjectKind

# Sections keyed by object name
_MAPPING_SECTIONS = {
    ObjectKind.ADDRESS: "addresses",
    ObjectKind.SERVICE: "services",
    ObjectKind.ZONE: "zones",
}

# Sections whose list order is precedence
_LIST_SECTIONS = {
    ObjectKind.SECURITY_RULE: "security_rules",
    ObjectKind.NAT_RULE: "nat_rules",
}


def snapshot_to_dict(snapshot: IntentSnapshot) -> dict[str, Any]:
    """Convert a snapshot to the plain dict format read by ConfigParser."""
    data: dict[str, Any] = {
        "environment": snapshot.environment,
        "device_group": snapshot.device_group,
    }
    if snapshot.version is not None:
        data["version"] = snapshot.version
    if snapshot.parent_version is not None:
        data["parent_version"] = snapshot.parent_version

    for kind, section in _MAPPING_SECTIONS.items():
        objects = snapshot.of_kind(kind)
        if objects:
            data[section] = {}
            for obj in objects:
                body = obj.to_dict()
                body.pop("name")
                data[section][obj.name] = body

    settings = snapshot.of_kind(ObjectKind.SETTING)
    if settings:
        data["settings"] = {s.name: s.value for s in settings}  # type: ignore[attr-defined]

    for kind, section in _LIST_SECTIONS.items():
        objects = snapshot.of_kind(kind)
        if objects:
            data[section] = [
                {k: v for k, v in obj.to_dict().items() if v is not None}
                for obj in objects
            ]

    return data


def render_snapshot(snapshot: IntentSnapshot) -> str:
    """Render a snapshot as YAML text."""
    return yaml.safe_dump(
        snapshot_to_dict(snapshot),
        sort_keys=False,
        default_flow_style=False,
    )
