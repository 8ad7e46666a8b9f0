"""Canonicalization of intent objects.

Strips representation-only variance (whitespace, list ordering, letter case
of categorical values) and normalizes value formats so that semantically
identical objects hash identically. canonicalize() is idempotent.
"""
import re
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Callable, Iterable, Optional

from netaddr import AddrFormatError, IPNetwork, IPRange, IPSet

from .schema import (
    ANY,
    AddressObject,
    DeviceSetting,
    IntentObject,
    NATRule,
    SecurityRule,
    ServiceObject,
    ZoneBinding,
)

# IPv4/IPv6 literals, optionally with a prefix length
_IPV4_LITERAL = re.compile(r"^\d{1,3}(\.\d{1,3}){3}(/\d{1,2})?$")
_IPV6_LITERAL = re.compile(r"^[0-9a-fA-F:]*:[0-9a-fA-F:.]*(/\d{1,3})?$")

ANY_ALIASES = {"any", "all", "*"}

PORT_MIN = 0
PORT_MAX = 65535

APPLICATION_DEFAULT = "application-default"


def _text(value: Any) -> str:
    """Collapse whitespace runs in free text."""
    if value is None:
        return ""
    return " ".join(str(value).split())


def _as_list(values: Any) -> list:
    if values is None:
        return []
    if isinstance(values, (str, int)):
        return [values]
    return list(values)


def is_ip_literal(value: str) -> bool:
    """True if the value looks like an address literal rather than an object name."""
    return bool(_IPV4_LITERAL.match(value) or _IPV6_LITERAL.match(value))


def parse_address_literal(value: str) -> Optional[IPSet]:
    """Parse a CIDR, host or 'a-b' range literal.

    Returns None for object-name references.

    Raises:
        ValueError: If the value looks like an address but is invalid
    """
    value = value.strip()
    if "-" in value:
        start, _, end = value.partition("-")
        start, end = start.strip(), end.strip()
        if not (is_ip_literal(start) and is_ip_literal(end)):
            return None
        try:
            return IPSet(IPRange(start, end).cidrs())
        except (AddrFormatError, ValueError, TypeError) as e:
            raise ValueError(f"Invalid address range '{value}': {e}")

    if not is_ip_literal(value):
        return None
    try:
        return IPSet([IPNetwork(value).cidr])
    except (AddrFormatError, ValueError, TypeError) as e:
        raise ValueError(f"Invalid address '{value}': {e}")


def normalize_addresses(values: Iterable[Any]) -> tuple[str, ...]:
    """Normalize an address list.

    Literals are merged into their minimal CIDR cover; object names are
    kept and sorted after the literals; any entry meaning 'any' collapses
    the whole list to ('any',).
    """
    literals = IPSet()
    names: set[str] = set()
    for raw in _as_list(values):
        value = str(raw).strip()
        if not value:
            continue
        if value.lower() in ANY_ALIASES:
            return (ANY,)
        parsed = parse_address_literal(value)
        if parsed is None:
            names.add(value)
        else:
            literals.update(parsed)

    cidrs = sorted(
        literals.iter_cidrs(),
        key=lambda n: (n.version, n.first, n.prefixlen),
    )
    return tuple(str(c) for c in cidrs) + tuple(sorted(names))


def parse_port_ranges(values: Iterable[Any]) -> Optional[list[tuple[int, int]]]:
    """Parse port lists into merged (low, high) intervals.

    Returns None when the values mean any port.

    Raises:
        ValueError: On malformed or out-of-range ports
    """
    intervals: list[tuple[int, int]] = []
    for raw in _as_list(values):
        for part in str(raw).split(","):
            part = part.strip().lower()
            if not part:
                continue
            if part in ANY_ALIASES:
                return None
            if "-" in part:
                low_str, _, high_str = part.partition("-")
                low, high = int(low_str), int(high_str)
            else:
                low = high = int(part)
            if low > high or low < PORT_MIN or high > PORT_MAX:
                raise ValueError(f"Invalid port range '{part}'")
            intervals.append((low, high))

    return merge_intervals(intervals)


def merge_intervals(intervals: Iterable[tuple[int, int]]) -> list[tuple[int, int]]:
    """Merge overlapping and adjacent integer intervals."""
    merged: list[tuple[int, int]] = []
    for low, high in sorted(intervals):
        if merged and low <= merged[-1][1] + 1:
            merged[-1] = (merged[-1][0], max(merged[-1][1], high))
        else:
            merged.append((low, high))
    return merged


def format_intervals(intervals: Iterable[tuple[int, int]]) -> tuple[str, ...]:
    return tuple(
        str(low) if low == high else f"{low}-{high}"
        for low, high in intervals
    )


def normalize_ports(values: Iterable[Any]) -> tuple[str, ...]:
    intervals = parse_port_ranges(values)
    if intervals is None:
        return (ANY,)
    return format_intervals(intervals)


def normalize_service_refs(values: Iterable[Any]) -> tuple[str, ...]:
    """Normalize rule service entries.

    Entries are 'any', 'application-default', service object names, or
    literals 'proto/ports' such as 'tcp/443' or 'udp/53,123'.
    """
    entries: set[str] = set()
    for raw in _as_list(values):
        value = str(raw).strip()
        if not value:
            continue
        lowered = value.lower()
        if lowered in ANY_ALIASES:
            return (ANY,)
        if lowered == APPLICATION_DEFAULT:
            entries.add(APPLICATION_DEFAULT)
        elif "/" in value:
            protocol, _, ports = value.partition("/")
            protocol = protocol.strip().lower()
            for port in normalize_ports([ports]):
                entries.add(f"{protocol}/{port}")
        else:
            entries.add(value)
    return tuple(sorted(entries))


def normalize_categories(values: Iterable[Any], lowercase: bool = True) -> tuple[str, ...]:
    """Normalize a categorical set (zones, applications, interfaces)."""
    items: set[str] = set()
    for raw in _as_list(values):
        value = str(raw).strip()
        if not value:
            continue
        if lowercase:
            value = value.lower()
        if value.lower() in ANY_ALIASES:
            return (ANY,)
        items.add(value)
    return tuple(sorted(items))


def normalize_date(value: Any) -> Optional[str]:
    """Normalize a date to ISO format; unparseable text is kept for guardrails."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10]).isoformat() if len(text) >= 10 else text
    except ValueError:
        return text


def _normalize_setting(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return {str(k).strip(): _normalize_setting(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_setting(v) for v in value]
    return value


def _canonical_address(obj: AddressObject) -> AddressObject:
    return replace(
        obj,
        name=obj.name.strip(),
        addresses=normalize_addresses(obj.addresses),
        description=_text(obj.description),
    )


def _canonical_service(obj: ServiceObject) -> ServiceObject:
    return replace(
        obj,
        name=obj.name.strip(),
        protocol=(obj.protocol or "tcp").strip().lower(),
        ports=normalize_ports(obj.ports),
        description=_text(obj.description),
    )


def _canonical_zone(obj: ZoneBinding) -> ZoneBinding:
    return replace(
        obj,
        name=obj.name.strip().lower(),
        interfaces=normalize_categories(obj.interfaces, lowercase=False),
        description=_text(obj.description),
    )


def _canonical_setting(obj: DeviceSetting) -> DeviceSetting:
    return replace(obj, name=obj.name.strip(), value=_normalize_setting(obj.value))


def _canonical_security_rule(obj: SecurityRule) -> SecurityRule:
    return replace(
        obj,
        name=obj.name.strip(),
        source_zones=normalize_categories(obj.source_zones),
        destination_zones=normalize_categories(obj.destination_zones),
        source=normalize_addresses(obj.source),
        destination=normalize_addresses(obj.destination),
        application=normalize_categories(obj.application),
        service=normalize_service_refs(obj.service),
        action=(obj.action or "").strip().lower(),
        logging=bool(obj.logging),
        owner=_text(obj.owner) or None,
        created=normalize_date(obj.created),
        expires=normalize_date(obj.expires),
        safety_critical=bool(obj.safety_critical),
        disabled=bool(obj.disabled),
        description=_text(obj.description),
    )


def _canonical_nat_rule(obj: NATRule) -> NATRule:
    translated_source = (
        normalize_addresses(obj.translated_source.split(",")) if obj.translated_source else ()
    )
    translated_destination = (
        normalize_addresses(obj.translated_destination.split(",")) if obj.translated_destination else ()
    )
    return replace(
        obj,
        name=obj.name.strip(),
        source_zones=normalize_categories(obj.source_zones),
        destination_zones=normalize_categories(obj.destination_zones),
        source=normalize_addresses(obj.source),
        destination=normalize_addresses(obj.destination),
        service=normalize_service_refs(obj.service),
        translated_source=",".join(translated_source) or None,
        translated_destination=",".join(translated_destination) or None,
        description=_text(obj.description),
    )


_CANONICALIZERS: dict[type, Callable[[Any], IntentObject]] = {
    AddressObject: _canonical_address,
    ServiceObject: _canonical_service,
    ZoneBinding: _canonical_zone,
    DeviceSetting: _canonical_setting,
    SecurityRule: _canonical_security_rule,
    NATRule: _canonical_nat_rule,
}


def canonicalize(obj: IntentObject) -> IntentObject:
    """Return the canonical form of an intent object.

    Raises:
        ValueError: If an address or port value is malformed
    """
    return _CANONICALIZERS[type(obj)](obj)
