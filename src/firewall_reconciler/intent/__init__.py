"""Intent model - typed, canonical firewall configuration.

Usage:
    from firewall_reconciler.intent import ConfigParser

    snapshot = ConfigParser().parse({
        "environment": "prod",
        "device_group": "dc-edge",
        "addresses": {"web": {"addresses": ["10.1.0.0/24"]}},
        "security_rules": [
            {"name": "allow-web", "destination": ["web"],
             "service": ["tcp/443"], "action": "allow", "logging": True},
        ],
    })
"""

from .schema import (
    ANY,
    AddressObject,
    DeviceSetting,
    IntentObject,
    IntentSnapshot,
    NATRule,
    ObjectKind,
    ORDERED_KINDS,
    SecurityRule,
    ServiceObject,
    ZoneBinding,
    hash_content,
    object_from_dict,
)
from .canonical import canonicalize
from .parser import ConfigParser
from .render import render_snapshot, snapshot_to_dict

__all__ = [
    "ANY",
    "AddressObject",
    "DeviceSetting",
    "IntentObject",
    "IntentSnapshot",
    "NATRule",
    "ObjectKind",
    "ORDERED_KINDS",
    "SecurityRule",
    "ServiceObject",
    "ZoneBinding",
    "hash_content",
    "object_from_dict",
    "canonicalize",
    "ConfigParser",
    "render_snapshot",
    "snapshot_to_dict",
]
