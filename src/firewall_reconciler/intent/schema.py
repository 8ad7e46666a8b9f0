"""Schema definitions for firewall intent.

Defines the typed Intent Objects and the immutable Intent Snapshot that
groups them for one (environment, device-group) pair.
"""
import hashlib
import json
from dataclasses import dataclass, fields, replace
from datetime import datetime
from enum import Enum
from functools import cached_property
from typing import Any, ClassVar, Iterable, Optional

from ..errors import ParseError


class ObjectKind(str, Enum):
    """Intent object variants."""
    ADDRESS = "address"
    SERVICE = "service"
    ZONE = "zone"
    SETTING = "setting"
    SECURITY_RULE = "security_rule"
    NAT_RULE = "nat_rule"


# Kinds whose position in the snapshot changes effective policy
ORDERED_KINDS = (ObjectKind.SECURITY_RULE, ObjectKind.NAT_RULE)

KIND_ORDER = {kind: index for index, kind in enumerate(ObjectKind)}

ANY = "any"

ACTIONS = ("allow", "deny", "drop", "reject")
DENY_ACTIONS = ("deny", "drop", "reject")


def hash_content(data: Any) -> str:
    """SHA256 over a deterministic JSON serialization."""
    payload = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return f"sha256:{hashlib.sha256(payload.encode()).hexdigest()}"


@dataclass(frozen=True)
class IntentObject:
    """Base class for a typed configuration unit."""
    name: str

    kind: ClassVar[ObjectKind]

    @property
    def key(self) -> tuple[ObjectKind, str]:
        """Stable identity within a snapshot."""
        return (self.kind, self.name)

    @property
    def is_ordered(self) -> bool:
        return self.kind in ORDERED_KINDS

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict (tuples become lists)."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = list(value) if isinstance(value, tuple) else value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IntentObject":
        """Build from a plain dict produced by to_dict()."""
        known = {f.name for f in fields(cls)}
        values = {
            k: tuple(v) if isinstance(v, list) else v
            for k, v in data.items()
            if k in known
        }
        return cls(**values)

    @cached_property
    def content_hash(self) -> str:
        """Hash of the canonical form, independent of representation order."""
        from .canonical import canonicalize

        canonical = canonicalize(self)
        return hash_content({"kind": self.kind.value, **canonical.to_dict()})


@dataclass(frozen=True)
class AddressObject(IntentObject):
    """Named set of addresses (CIDRs, hosts, ranges or nested object names)."""
    addresses: tuple[str, ...] = ()
    description: str = ""

    kind: ClassVar[ObjectKind] = ObjectKind.ADDRESS


@dataclass(frozen=True)
class ServiceObject(IntentObject):
    """Named protocol/port set."""
    protocol: str = "tcp"
    ports: tuple[str, ...] = (ANY,)
    description: str = ""

    kind: ClassVar[ObjectKind] = ObjectKind.SERVICE


@dataclass(frozen=True)
class ZoneBinding(IntentObject):
    """Security zone and the interfaces bound to it."""
    interfaces: tuple[str, ...] = ()
    description: str = ""

    kind: ClassVar[ObjectKind] = ObjectKind.ZONE


@dataclass(frozen=True)
class DeviceSetting(IntentObject):
    """Scalar or structured device-level setting (hostname, NTP, ...)."""
    value: Any = None

    kind: ClassVar[ObjectKind] = ObjectKind.SETTING


@dataclass(frozen=True)
class SecurityRule(IntentObject):
    """Ordered security policy rule.

    Match criteria are source/destination zones, source, destination,
    application and service. Position within the snapshot determines
    match precedence.
    """
    source_zones: tuple[str, ...] = (ANY,)
    destination_zones: tuple[str, ...] = (ANY,)
    source: tuple[str, ...] = (ANY,)
    destination: tuple[str, ...] = (ANY,)
    application: tuple[str, ...] = (ANY,)
    service: tuple[str, ...] = (ANY,)
    action: str = "deny"
    logging: bool = False
    owner: Optional[str] = None
    created: Optional[str] = None
    expires: Optional[str] = None
    safety_critical: bool = False
    disabled: bool = False
    description: str = ""

    kind: ClassVar[ObjectKind] = ObjectKind.SECURITY_RULE

    @property
    def is_deny(self) -> bool:
        return self.action in DENY_ACTIONS


@dataclass(frozen=True)
class NATRule(IntentObject):
    """Ordered NAT rule."""
    source_zones: tuple[str, ...] = (ANY,)
    destination_zones: tuple[str, ...] = (ANY,)
    source: tuple[str, ...] = (ANY,)
    destination: tuple[str, ...] = (ANY,)
    service: tuple[str, ...] = (ANY,)
    translated_source: Optional[str] = None
    translated_destination: Optional[str] = None
    description: str = ""

    kind: ClassVar[ObjectKind] = ObjectKind.NAT_RULE


OBJECT_TYPES: dict[ObjectKind, type[IntentObject]] = {
    ObjectKind.ADDRESS: AddressObject,
    ObjectKind.SERVICE: ServiceObject,
    ObjectKind.ZONE: ZoneBinding,
    ObjectKind.SETTING: DeviceSetting,
    ObjectKind.SECURITY_RULE: SecurityRule,
    ObjectKind.NAT_RULE: NATRule,
}


def object_from_dict(kind: ObjectKind | str, data: dict[str, Any]) -> IntentObject:
    """Build an intent object of the given kind from a plain dict."""
    return OBJECT_TYPES[ObjectKind(kind)].from_dict(data)


def order_objects(objects: Iterable[IntentObject]) -> tuple[IntentObject, ...]:
    """Arrange objects in canonical snapshot sequence.

    Unordered kinds are sorted by (kind, name); ordered kinds keep their
    relative order and follow the unordered ones.
    """
    objects = list(objects)
    unordered = sorted(
        (o for o in objects if not o.is_ordered),
        key=lambda o: (KIND_ORDER[o.kind], o.name),
    )
    ordered = sorted(
        (o for o in objects if o.is_ordered),
        key=lambda o: KIND_ORDER[o.kind],  # stable: keeps precedence within a kind
    )
    return tuple(unordered + ordered)


@dataclass(frozen=True)
class IntentSnapshot:
    """Immutable, ordered collection of intent for one device group."""
    environment: str
    device_group: str
    objects: tuple[IntentObject, ...] = ()
    version: Optional[str] = None
    parent_version: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    @classmethod
    def build(
        cls,
        environment: str,
        device_group: str,
        objects: Iterable[IntentObject],
        **metadata: Any,
    ) -> "IntentSnapshot":
        """Build a snapshot from objects, canonicalizing and ordering them.

        Raises:
            ParseError: If two objects share the same (kind, name) identity
        """
        from .canonical import canonicalize

        seen: set[tuple[ObjectKind, str]] = set()
        canonical = []
        for obj in objects:
            if obj.key in seen:
                raise ParseError(
                    f"Duplicate {obj.kind.value} '{obj.name}' in {environment}/{device_group}"
                )
            seen.add(obj.key)
            canonical.append(canonicalize(obj))

        return cls(
            environment=environment,
            device_group=device_group,
            objects=order_objects(canonical),
            **metadata,
        )

    @cached_property
    def by_key(self) -> dict[tuple[ObjectKind, str], IntentObject]:
        return {o.key: o for o in self.objects}

    def get(self, kind: ObjectKind, name: str) -> Optional[IntentObject]:
        return self.by_key.get((kind, name))

    def of_kind(self, kind: ObjectKind) -> list[IntentObject]:
        """Objects of one kind, in snapshot order."""
        return [o for o in self.objects if o.kind == kind]

    def order_of(self, kind: ObjectKind) -> tuple[str, ...]:
        """Identifier sequence for an ordered kind."""
        return tuple(o.name for o in self.objects if o.kind == kind)

    @property
    def security_rules(self) -> list[SecurityRule]:
        return self.of_kind(ObjectKind.SECURITY_RULE)  # type: ignore[return-value]

    @property
    def addresses(self) -> dict[str, AddressObject]:
        return {o.name: o for o in self.of_kind(ObjectKind.ADDRESS)}  # type: ignore[misc]

    @property
    def services(self) -> dict[str, ServiceObject]:
        return {o.name: o for o in self.of_kind(ObjectKind.SERVICE)}  # type: ignore[misc]

    @cached_property
    def content_hash(self) -> str:
        """Hash over the object sequence; independent of version metadata."""
        return hash_content([
            [o.kind.value, o.name, o.content_hash] for o in self.objects
        ])

    def with_version(
        self,
        version: str,
        parent_version: Optional[str] = None,
        created_at: Optional[datetime] = None,
        created_by: Optional[str] = None,
    ) -> "IntentSnapshot":
        """Copy with new version metadata."""
        return replace(
            self,
            version=version,
            parent_version=parent_version,
            created_at=created_at,
            created_by=created_by,
        )

    def __len__(self) -> int:
        return len(self.objects)
