"""Parser for intent and live configuration.

Converts dict/YAML input to strongly-typed IntentSnapshot objects. Malformed
input raises ParseError; a partial snapshot is never returned.

Input format:

    environment: prod
    device_group: dc-edge
    addresses:
      web-servers: {addresses: [10.1.0.0/24]}
    services:
      https: {protocol: tcp, ports: [443]}
    zones:
      untrust: {interfaces: [ethernet1/1]}
    settings:
      hostname: fw-edge-01
    security_rules:            # ordered, first match wins
      - name: allow-web
        source_zones: [untrust]
        destination_zones: [dmz]
        source: [any]
        destination: [web-servers]
        service: [https]
        action: allow
        logging: true
        owner: netsec
    nat_rules: []
"""
from typing import TYPE_CHECKING, Any, Optional

import yaml

from ..errors import ParseError
from .canonical import (
    is_ip_literal,
    parse_address_literal,
    parse_port_ranges,
    normalize_service_refs,
)
from .schema import (
    ACTIONS,
    AddressObject,
    DeviceSetting,
    IntentObject,
    IntentSnapshot,
    NATRule,
    ObjectKind,
    SecurityRule,
    ServiceObject,
    ZoneBinding,
)

if TYPE_CHECKING:
    from ..devices.base import ConfigPayload

# Top-level section -> object kind
SECTIONS = {
    "addresses": ObjectKind.ADDRESS,
    "services": ObjectKind.SERVICE,
    "zones": ObjectKind.ZONE,
    "settings": ObjectKind.SETTING,
    "security_rules": ObjectKind.SECURITY_RULE,
    "nat_rules": ObjectKind.NAT_RULE,
}

METADATA_KEYS = {
    "environment", "device_group", "version", "parent_version",
    "created_at", "created_by",
}

# Accepted field aliases for rule zones
FIELD_ALIASES = {
    "from": "source_zones",
    "to": "destination_zones",
    "from_zone": "source_zones",
    "to_zone": "destination_zones",
    "log": "logging",
}

LIST_FIELDS = {
    "addresses", "ports", "interfaces", "source_zones", "destination_zones",
    "source", "destination", "application", "service",
}

ALLOWED_FIELDS = {
    ObjectKind.ADDRESS: {"name", "addresses", "description"},
    ObjectKind.SERVICE: {"name", "protocol", "ports", "description"},
    ObjectKind.ZONE: {"name", "interfaces", "description"},
    ObjectKind.SECURITY_RULE: {
        "name", "source_zones", "destination_zones", "source", "destination",
        "application", "service", "action", "logging", "owner", "created",
        "expires", "safety_critical", "disabled", "description",
    },
    ObjectKind.NAT_RULE: {
        "name", "source_zones", "destination_zones", "source", "destination",
        "service", "translated_source", "translated_destination", "description",
    },
}

PROTOCOLS = ("tcp", "udp", "sctp", "icmp", "icmpv6", "ip")


class ConfigParser:
    """Parse intent snapshots from dict/YAML format."""

    def parse(
        self,
        config: Any,
        environment: Optional[str] = None,
        device_group: Optional[str] = None,
    ) -> IntentSnapshot:
        """
        Parse a configuration dict into an IntentSnapshot.

        Args:
            config: Dict with environment, device_group and object sections
            environment: Overrides/supplies the environment
            device_group: Overrides/supplies the device group

        Returns:
            Canonical IntentSnapshot

        Raises:
            ParseError: If config is invalid
        """
        if not isinstance(config, dict):
            raise ParseError(
                f"Configuration must be a mapping, got {type(config).__name__}"
            )

        unknown = set(config) - set(SECTIONS) - METADATA_KEYS
        if unknown:
            raise ParseError(f"Unknown configuration sections: {', '.join(sorted(map(str, unknown)))}")

        environment = environment or config.get("environment")
        device_group = device_group or config.get("device_group")
        if not environment:
            raise ParseError("Missing required field: environment")
        if not device_group:
            raise ParseError("Missing required field: device_group")

        objects: list[IntentObject] = []
        objects.extend(self._parse_section(config, "addresses", self._parse_address))
        objects.extend(self._parse_section(config, "services", self._parse_service))
        objects.extend(self._parse_section(config, "zones", self._parse_zone))
        objects.extend(self._parse_settings(config.get("settings") or {}))
        objects.extend(self._parse_ordered(config, "security_rules", self._parse_security_rule))
        objects.extend(self._parse_ordered(config, "nat_rules", self._parse_nat_rule))

        version = config.get("version")
        try:
            return IntentSnapshot.build(
                str(environment),
                str(device_group),
                objects,
                version=str(version) if version is not None else None,
                parent_version=config.get("parent_version"),
                created_by=config.get("created_by"),
            )
        except ValueError as e:
            raise ParseError(f"Invalid value in {environment}/{device_group}: {e}")

    def parse_text(
        self,
        text: str,
        environment: Optional[str] = None,
        device_group: Optional[str] = None,
    ) -> IntentSnapshot:
        """Parse YAML (or JSON) text into an IntentSnapshot."""
        if not text or not text.strip():
            raise ParseError("Configuration is empty")
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ParseError(f"Unparseable configuration: {e}")
        return self.parse(data, environment=environment, device_group=device_group)

    def parse_payload(
        self,
        payload: "ConfigPayload",
        environment: Optional[str] = None,
        device_group: Optional[str] = None,
    ) -> IntentSnapshot:
        """Parse a live configuration exported by a Device Adapter."""
        if payload.format not in ("yaml", "json"):
            raise ParseError(
                f"Unsupported payload format '{payload.format}' from {payload.device_id}"
            )
        return self.parse_text(
            payload.content, environment=environment, device_group=device_group
        )

    # --- Sections ---

    def _parse_section(self, config: dict, section: str, parse_one) -> list[IntentObject]:
        """Parse an unordered section given as a mapping or a list."""
        raw = config.get(section)
        if raw is None:
            return []

        if isinstance(raw, dict):
            items = []
            for name, body in raw.items():
                if body is not None and not isinstance(body, dict):
                    raise ParseError(f"{section}: entry '{name}' must be a mapping")
                body = dict(body or {})
                if "name" in body and body["name"] != name:
                    raise ParseError(
                        f"{section}: entry '{name}' declares conflicting name '{body['name']}'"
                    )
                body["name"] = str(name)
                items.append(body)
        elif isinstance(raw, list):
            items = raw
        else:
            raise ParseError(f"Section '{section}' must be a mapping or a list")

        return [parse_one(self._normalize_body(section, item)) for item in items]

    def _parse_ordered(self, config: dict, section: str, parse_one) -> list[IntentObject]:
        """Parse an ordered section; only a list preserves precedence."""
        raw = config.get(section)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise ParseError(f"Section '{section}' must be an ordered list")
        return [parse_one(self._normalize_body(section, item)) for item in raw]

    def _parse_settings(self, settings: Any) -> list[IntentObject]:
        if not isinstance(settings, dict):
            raise ParseError("Section 'settings' must be a mapping")
        return [
            DeviceSetting(name=str(name), value=value)
            for name, value in settings.items()
        ]

    def _normalize_body(self, section: str, item: Any) -> dict[str, Any]:
        """Validate the basic shape of one entry and resolve field aliases."""
        if not isinstance(item, dict):
            raise ParseError(f"Entry in '{section}' must be a mapping, got {item!r}")

        body: dict[str, Any] = {}
        for key, value in item.items():
            key = FIELD_ALIASES.get(key, key)
            if key in LIST_FIELDS and isinstance(value, (str, int)):
                value = [value]
            body[key] = value

        name = body.get("name")
        if not name or not isinstance(name, str) or not name.strip():
            raise ParseError(f"Entry in '{section}' is missing a name")

        kind = SECTIONS[section]
        unknown = set(body) - ALLOWED_FIELDS[kind]
        if unknown:
            raise ParseError(
                f"{kind.value} '{name}': unknown fields {', '.join(sorted(unknown))}"
            )

        for key in LIST_FIELDS & set(body):
            if body[key] is None:
                body[key] = []
            elif not isinstance(body[key], list):
                raise ParseError(f"{kind.value} '{name}': '{key}' must be a list")
            body[key] = tuple(body[key])

        return body

    # --- Objects ---

    def _parse_address(self, body: dict[str, Any]) -> AddressObject:
        for value in body.get("addresses", ()):
            self._check_address(body["name"], value)
        return AddressObject(**body)

    def _parse_service(self, body: dict[str, Any]) -> ServiceObject:
        protocol = str(body.get("protocol", "tcp")).lower()
        if protocol not in PROTOCOLS:
            raise ParseError(f"service '{body['name']}': unknown protocol '{protocol}'")
        body["protocol"] = protocol
        self._check_ports(body["name"], body.get("ports", ("any",)))
        return ServiceObject(**body)

    def _parse_zone(self, body: dict[str, Any]) -> ZoneBinding:
        return ZoneBinding(**body)

    def _parse_security_rule(self, body: dict[str, Any]) -> SecurityRule:
        name = body["name"]
        action = str(body.get("action", "")).strip().lower()
        if action not in ACTIONS:
            raise ParseError(
                f"security_rule '{name}': invalid action '{body.get('action')}'. "
                f"Must be one of: {', '.join(ACTIONS)}"
            )
        for field_name in ("source", "destination"):
            for value in body.get(field_name, ()):
                self._check_address(name, value)
        self._check_services(name, body.get("service", ()))
        for flag in ("logging", "safety_critical", "disabled"):
            if flag in body and not isinstance(body[flag], bool):
                raise ParseError(f"security_rule '{name}': '{flag}' must be true or false")
        return SecurityRule(**body)

    def _parse_nat_rule(self, body: dict[str, Any]) -> NATRule:
        name = body["name"]
        for field_name in ("source", "destination"):
            for value in body.get(field_name, ()):
                self._check_address(name, value)
        for field_name in ("translated_source", "translated_destination"):
            if body.get(field_name):
                body[field_name] = str(body[field_name])
                for value in body[field_name].split(","):
                    self._check_address(name, value)
        self._check_services(name, body.get("service", ()))
        return NATRule(**body)

    # --- Value checks ---

    def _check_address(self, owner: str, value: Any) -> None:
        try:
            parse_address_literal(str(value))
        except ValueError as e:
            raise ParseError(f"'{owner}': {e}")

    def _check_ports(self, owner: str, ports: Any) -> None:
        try:
            parse_port_ranges(ports)
        except ValueError as e:
            raise ParseError(f"'{owner}': invalid ports {list(ports)}: {e}")

    def _check_services(self, owner: str, services: Any) -> None:
        for value in services:
            text = str(value)
            if "/" in text and not is_ip_literal(text):
                protocol, _, ports = text.partition("/")
                if protocol.strip().lower() not in PROTOCOLS:
                    raise ParseError(f"'{owner}': unknown protocol in service '{text}'")
                self._check_ports(owner, [ports])
        try:
            normalize_service_refs(services)
        except ValueError as e:
            raise ParseError(f"'{owner}': {e}")
