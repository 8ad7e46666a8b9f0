"""Diff Record definitions.

A DiffRecord holds three disjoint sets of object changes (added, modified,
removed) plus positional deltas for ordered kinds.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..intent.schema import IntentObject, ObjectKind, object_from_dict


class ChangeType(str, Enum):
    """Type of change in a diff."""
    ADD = "add"
    MODIFY = "modify"
    REMOVE = "remove"


@dataclass(frozen=True)
class DiffEntry:
    """A single object-level change with before/after content hashes."""
    kind: ObjectKind
    name: str
    before_hash: Optional[str] = None
    after_hash: Optional[str] = None
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None

    @property
    def key(self) -> tuple[ObjectKind, str]:
        return (self.kind, self.name)

    @property
    def change_type(self) -> ChangeType:
        if self.before_hash is None:
            return ChangeType.ADD
        if self.after_hash is None:
            return ChangeType.REMOVE
        return ChangeType.MODIFY

    def object_before(self) -> Optional[IntentObject]:
        return object_from_dict(self.kind, self.before) if self.before is not None else None

    def object_after(self) -> Optional[IntentObject]:
        return object_from_dict(self.kind, self.after) if self.after is not None else None

    def inverted(self) -> "DiffEntry":
        return DiffEntry(
            kind=self.kind,
            name=self.name,
            before_hash=self.after_hash,
            after_hash=self.before_hash,
            before=self.after,
            after=self.before,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "before_hash": self.before_hash,
            "after_hash": self.after_hash,
            "before": self.before,
            "after": self.after,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiffEntry":
        return cls(
            kind=ObjectKind(data["kind"]),
            name=data["name"],
            before_hash=data.get("before_hash"),
            after_hash=data.get("after_hash"),
            before=data.get("before"),
            after=data.get("after"),
        )


@dataclass(frozen=True)
class RuleMove:
    """An ordered object whose position changed relative to its peers."""
    name: str
    from_index: int
    to_index: int


@dataclass(frozen=True)
class SequenceChange:
    """Positional delta for one ordered kind.

    moves lists identifiers present in both sequences that fall outside
    their longest common subsequence, i.e. objects that were reordered.
    """
    kind: ObjectKind
    before_order: tuple[str, ...]
    after_order: tuple[str, ...]
    moves: tuple[RuleMove, ...] = ()

    @property
    def is_reorder(self) -> bool:
        return bool(self.moves)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "before_order": list(self.before_order),
            "after_order": list(self.after_order),
            "moves": [
                {"name": m.name, "from_index": m.from_index, "to_index": m.to_index}
                for m in self.moves
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SequenceChange":
        return cls(
            kind=ObjectKind(data["kind"]),
            before_order=tuple(data.get("before_order", [])),
            after_order=tuple(data.get("after_order", [])),
            moves=tuple(RuleMove(**m) for m in data.get("moves", [])),
        )


@dataclass(frozen=True)
class DiffRecord:
    """Result of comparing a source snapshot against a target snapshot."""
    diff_id: str
    environment: str
    device_group: str
    source_version: Optional[str]
    target_version: Optional[str]
    source_hash: str
    target_hash: str
    added: tuple[DiffEntry, ...] = ()
    modified: tuple[DiffEntry, ...] = ()
    removed: tuple[DiffEntry, ...] = ()
    sequences: tuple[SequenceChange, ...] = field(default_factory=tuple)

    @property
    def entries(self) -> tuple[DiffEntry, ...]:
        return self.added + self.modified + self.removed

    @property
    def reordered(self) -> tuple[SequenceChange, ...]:
        """Sequence changes that move existing objects (the Reordered delta)."""
        return tuple(s for s in self.sequences if s.is_reorder)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.removed or self.sequences)

    @property
    def total_changes(self) -> int:
        moves = sum(len(s.moves) for s in self.sequences)
        return len(self.added) + len(self.modified) + len(self.removed) + moves

    @property
    def changed_keys(self) -> set[tuple[ObjectKind, str]]:
        """Keys of objects whose content or relative position changed."""
        keys = {e.key for e in self.entries}
        for seq in self.sequences:
            keys.update((seq.kind, m.name) for m in seq.moves)
        return keys

    def sequence_for(self, kind: ObjectKind) -> Optional[SequenceChange]:
        for seq in self.sequences:
            if seq.kind == kind:
                return seq
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "diff_id": self.diff_id,
            "environment": self.environment,
            "device_group": self.device_group,
            "source_version": self.source_version,
            "target_version": self.target_version,
            "source_hash": self.source_hash,
            "target_hash": self.target_hash,
            "added": [e.to_dict() for e in self.added],
            "modified": [e.to_dict() for e in self.modified],
            "removed": [e.to_dict() for e in self.removed],
            "sequences": [s.to_dict() for s in self.sequences],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiffRecord":
        return cls(
            diff_id=data["diff_id"],
            environment=data.get("environment", ""),
            device_group=data.get("device_group", ""),
            source_version=data.get("source_version"),
            target_version=data.get("target_version"),
            source_hash=data["source_hash"],
            target_hash=data["target_hash"],
            added=tuple(DiffEntry.from_dict(e) for e in data.get("added", [])),
            modified=tuple(DiffEntry.from_dict(e) for e in data.get("modified", [])),
            removed=tuple(DiffEntry.from_dict(e) for e in data.get("removed", [])),
            sequences=tuple(SequenceChange.from_dict(s) for s in data.get("sequences", [])),
        )
