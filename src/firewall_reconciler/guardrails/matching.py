"""Match-space resolution and containment for security rules.

A rule's match space is the cross product of its zones, source and
destination address sets, applications and services. Containment is
decided per dimension: CIDR sets via netaddr IPSet, ports as merged
intervals per protocol, zones and applications as categorical sets.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional

from netaddr import IPSet

from ..intent.canonical import (
    APPLICATION_DEFAULT,
    merge_intervals,
    parse_address_literal,
    parse_port_ranges,
)
from ..intent.schema import ANY, AddressObject, IntentSnapshot, SecurityRule, ServiceObject

# Every IPv4 and IPv6 address
UNIVERSE = IPSet(["0.0.0.0/0", "::/0"])

# A set covering either whole family matches every peer of that family
ADDRESS_FAMILIES = (IPSet(["0.0.0.0/0"]), IPSet(["::/0"]))

FULL_PORT_RANGE = [(0, 65535)]

# Protocol that covers every other protocol
ANY_PROTOCOL = "ip"


class UnresolvedReference(Exception):
    """A rule references an object name that cannot be resolved."""


@dataclass(frozen=True)
class ServiceSpace:
    """Set of (protocol, port) pairs, plus symbolic entries like application-default."""
    any: bool = False
    ports: dict[str, tuple[tuple[int, int], ...]] = field(default_factory=dict)
    symbols: frozenset[str] = frozenset()

    def contains(self, other: "ServiceSpace") -> bool:
        if self.any:
            return True
        if other.any:
            return False
        if not other.symbols <= self.symbols:
            return False
        if ANY_PROTOCOL in self.ports and _intervals_within(
            [i for spans in other.ports.values() for i in spans], self.ports[ANY_PROTOCOL]
        ):
            return True
        for protocol, intervals in other.ports.items():
            if not _intervals_within(intervals, self.ports.get(protocol, ())):
                return False
        return True


def _intervals_within(inner: Iterable[tuple[int, int]], outer: Iterable[tuple[int, int]]) -> bool:
    """True if every inner interval lies within one outer interval.

    Outer intervals are merged, so a covered inner interval fits in one of them.
    """
    outer = list(outer)
    for low, high in inner:
        if not any(o_low <= low and high <= o_high for o_low, o_high in outer):
            return False
    return True


def _categorical_contains(outer: Optional[frozenset[str]], inner: Optional[frozenset[str]]) -> bool:
    """None means any."""
    if outer is None:
        return True
    if inner is None:
        return False
    return inner <= outer


def _categories(values: tuple[str, ...]) -> Optional[frozenset[str]]:
    if ANY in values:
        return None
    return frozenset(values)


@dataclass(frozen=True)
class MatchSpace:
    """Resolved match criteria of one security rule."""
    source_zones: Optional[frozenset[str]]
    destination_zones: Optional[frozenset[str]]
    source: IPSet
    destination: IPSet
    application: Optional[frozenset[str]]
    service: ServiceSpace

    def contains(self, other: "MatchSpace") -> bool:
        """True if every flow matched by other is also matched by self."""
        return (
            _categorical_contains(self.source_zones, other.source_zones)
            and _categorical_contains(self.destination_zones, other.destination_zones)
            and other.source.issubset(self.source)
            and other.destination.issubset(self.destination)
            and _categorical_contains(self.application, other.application)
            and self.service.contains(other.service)
        )

    @property
    def any_source(self) -> bool:
        return covers_address_family(self.source)

    @property
    def any_destination(self) -> bool:
        return covers_address_family(self.destination)

    @property
    def any_service(self) -> bool:
        return self.service.any

    def zones_overlap(self, other: "MatchSpace") -> bool:
        return _overlaps(self.source_zones, other.source_zones) and _overlaps(
            self.destination_zones, other.destination_zones
        )


def covers_address_family(addresses: IPSet) -> bool:
    """True if the set holds every IPv4 or every IPv6 address."""
    return any(family.issubset(addresses) for family in ADDRESS_FAMILIES)


def _overlaps(a: Optional[frozenset[str]], b: Optional[frozenset[str]]) -> bool:
    if a is None or b is None:
        return True
    return bool(a & b)


class MatchResolver:
    """Resolve rule references against the address and service objects of a snapshot."""

    def __init__(
        self,
        addresses: Optional[dict[str, AddressObject]] = None,
        services: Optional[dict[str, ServiceObject]] = None,
    ):
        self.addresses = addresses or {}
        self.services = services or {}
        self._address_cache: dict[str, IPSet] = {}

    @classmethod
    def for_snapshots(cls, *snapshots: IntentSnapshot) -> "MatchResolver":
        """Resolver over the objects of several snapshots; earlier snapshots win."""
        addresses: dict[str, AddressObject] = {}
        services: dict[str, ServiceObject] = {}
        for snapshot in reversed(snapshots):
            addresses.update(snapshot.addresses)
            services.update(snapshot.services)
        return cls(addresses, services)

    def resolve(self, rule: SecurityRule) -> MatchSpace:
        """
        Resolve a rule to its match space.

        Raises:
            UnresolvedReference: If an address or service name is unknown
        """
        return MatchSpace(
            source_zones=_categories(rule.source_zones),
            destination_zones=_categories(rule.destination_zones),
            source=self.resolve_addresses(rule.source),
            destination=self.resolve_addresses(rule.destination),
            application=_categories(rule.application),
            service=self.resolve_services(rule.service),
        )

    def try_resolve(self, rule: SecurityRule) -> Optional[MatchSpace]:
        try:
            return self.resolve(rule)
        except UnresolvedReference:
            return None

    def resolve_addresses(self, values: Iterable[str], _seen: Optional[set[str]] = None) -> IPSet:
        result = IPSet()
        for value in values:
            if value == ANY:
                return UNIVERSE.copy()
            literal = parse_address_literal(value)
            if literal is not None:
                result.update(literal)
            else:
                result.update(self._resolve_address_name(value, _seen or set()))
        return result

    def _resolve_address_name(self, name: str, seen: set[str]) -> IPSet:
        if name in self._address_cache:
            return self._address_cache[name]
        if name in seen or name not in self.addresses:
            raise UnresolvedReference(name)
        resolved = self.resolve_addresses(self.addresses[name].addresses, seen | {name})
        self._address_cache[name] = resolved
        return resolved

    def resolve_services(self, values: Iterable[str]) -> ServiceSpace:
        ports: dict[str, list[tuple[int, int]]] = {}
        symbols: set[str] = set()
        for value in values:
            if value == ANY:
                return ServiceSpace(any=True)
            if value == APPLICATION_DEFAULT:
                symbols.add(value)
                continue
            if "/" in value:
                protocol, _, port_list = value.partition("/")
            elif value in self.services:
                service = self.services[value]
                protocol, port_list = service.protocol, ",".join(service.ports)
            else:
                raise UnresolvedReference(value)
            intervals = parse_port_ranges([port_list]) or FULL_PORT_RANGE
            ports.setdefault(protocol, []).extend(intervals)

        if ANY_PROTOCOL in ports and ports[ANY_PROTOCOL] == FULL_PORT_RANGE and not symbols:
            return ServiceSpace(any=True)
        return ServiceSpace(
            ports={p: tuple(merge_intervals(spans)) for p, spans in ports.items()},
            symbols=frozenset(symbols),
        )

