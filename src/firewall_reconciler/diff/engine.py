"""Diff engine for calculating changes between intent snapshots.

Objects are compared by identity (kind, name): present in both with a
differing content hash is Modified, only in the target is Added, only in the
source is Removed. Ordered kinds get a separate positional pass using the
longest common subsequence over identifiers.
"""
import logging
from typing import Iterable, Optional

from ..errors import DiffConflictError
from ..intent.parser import ConfigParser
from ..intent.schema import (
    ORDERED_KINDS,
    IntentObject,
    IntentSnapshot,
    ObjectKind,
    hash_content,
)
from ..utils.logging_config import timed
from .records import ChangeType, DiffEntry, DiffRecord, RuleMove, SequenceChange

logger = logging.getLogger(__name__)


def lcs_indices(before: Iterable[str], after: Iterable[str]) -> list[tuple[int, int]]:
    """
    Longest common subsequence of two identifier sequences.

    Returns:
        Matched (before_index, after_index) pairs in increasing order
    """
    a, b = list(before), list(after)
    n, m = len(a), len(b)
    # lengths[i][j] = LCS length of a[i:] and b[j:]
    lengths = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(n - 1, -1, -1):
        for j in range(m - 1, -1, -1):
            if a[i] == b[j]:
                lengths[i][j] = lengths[i + 1][j + 1] + 1
            else:
                lengths[i][j] = max(lengths[i + 1][j], lengths[i][j + 1])

    pairs = []
    i = j = 0
    while i < n and j < m:
        if a[i] == b[j]:
            pairs.append((i, j))
            i += 1
            j += 1
        elif lengths[i + 1][j] >= lengths[i][j + 1]:
            i += 1
        else:
            j += 1
    return pairs


def compute_moves(before_order: tuple[str, ...], after_order: tuple[str, ...]) -> tuple[RuleMove, ...]:
    """Identifiers present in both orders that lie outside their LCS."""
    after_set = set(after_order)
    before_set = set(before_order)
    common_before = [name for name in before_order if name in after_set]
    common_after = [name for name in after_order if name in before_set]

    stable = {common_before[i] for i, _ in lcs_indices(common_before, common_after)}
    before_index = {name: i for i, name in enumerate(before_order)}
    after_index = {name: i for i, name in enumerate(after_order)}

    return tuple(
        RuleMove(name=name, from_index=before_index[name], to_index=after_index[name])
        for name in common_after
        if name not in stable
    )


def make_diff_id(source_hash: str, target_hash: str) -> str:
    """Deterministic identifier for a (source, target) content pair."""
    digest = hash_content({"source": source_hash, "target": target_hash})
    return f"diff-{digest.split(':', 1)[1][:16]}"


class DiffEngine:
    """Calculate differences between snapshots, or a snapshot and live config."""

    def __init__(self, parser: Optional[ConfigParser] = None):
        self.parser = parser or ConfigParser()

    @timed("diff")
    def diff(self, source: IntentSnapshot, target: IntentSnapshot) -> DiffRecord:
        """
        Calculate the diff that turns source into target.

        Args:
            source: Snapshot representing the current/before state
            target: Snapshot representing the desired/after state

        Returns:
            DiffRecord with added, modified, removed and sequence changes
        """
        source_map = source.by_key
        target_map = target.by_key

        added: list[DiffEntry] = []
        modified: list[DiffEntry] = []
        removed: list[DiffEntry] = []

        for obj in target.objects:
            before = source_map.get(obj.key)
            if before is None:
                added.append(self._entry(None, obj))
            elif before.content_hash != obj.content_hash:
                modified.append(self._entry(before, obj))

        for obj in source.objects:
            if obj.key not in target_map:
                removed.append(self._entry(obj, None))

        sequences = []
        for kind in ORDERED_KINDS:
            before_order = source.order_of(kind)
            after_order = target.order_of(kind)
            if before_order != after_order:
                sequences.append(SequenceChange(
                    kind=kind,
                    before_order=before_order,
                    after_order=after_order,
                    moves=compute_moves(before_order, after_order),
                ))

        record = DiffRecord(
            diff_id=make_diff_id(source.content_hash, target.content_hash),
            environment=target.environment,
            device_group=target.device_group,
            source_version=source.version,
            target_version=target.version,
            source_hash=source.content_hash,
            target_hash=target.content_hash,
            added=tuple(added),
            modified=tuple(modified),
            removed=tuple(removed),
            sequences=tuple(sequences),
        )
        logger.debug(
            f"Diff {record.diff_id} {source.version} -> {target.version}: "
            f"+{len(added)} ~{len(modified)} -{len(removed)} "
            f"reordered={sum(len(s.moves) for s in sequences)}"
        )
        return record

    def parse_live(self, payload, environment: str, device_group: str) -> IntentSnapshot:
        """Parse a live ConfigPayload in the scope of a baseline.

        Raises:
            ParseError: If the payload is malformed
        """
        return self.parser.parse_payload(
            payload, environment=environment, device_group=device_group
        )

    def diff_live(self, baseline: IntentSnapshot, payload) -> DiffRecord:
        """
        Diff a device's live configuration against its baseline.

        Malformed payloads raise ParseError; a partial diff is never produced.
        """
        live = self.parse_live(payload, baseline.environment, baseline.device_group)
        return self.diff(baseline, live)

    @staticmethod
    def _entry(before: Optional[IntentObject], after: Optional[IntentObject]) -> DiffEntry:
        obj = after if after is not None else before
        return DiffEntry(
            kind=obj.kind,
            name=obj.name,
            before_hash=before.content_hash if before is not None else None,
            after_hash=after.content_hash if after is not None else None,
            before=before.to_dict() if before is not None else None,
            after=after.to_dict() if after is not None else None,
        )


def invert(diff: DiffRecord) -> DiffRecord:
    """Build the diff that undoes the given diff."""
    sequences = tuple(
        SequenceChange(
            kind=s.kind,
            before_order=s.after_order,
            after_order=s.before_order,
            moves=compute_moves(s.after_order, s.before_order),
        )
        for s in diff.sequences
    )
    return DiffRecord(
        diff_id=make_diff_id(diff.target_hash, diff.source_hash),
        environment=diff.environment,
        device_group=diff.device_group,
        source_version=diff.target_version,
        target_version=diff.source_version,
        source_hash=diff.target_hash,
        target_hash=diff.source_hash,
        added=tuple(e.inverted() for e in diff.removed),
        modified=tuple(e.inverted() for e in diff.modified),
        removed=tuple(e.inverted() for e in diff.added),
        sequences=sequences,
    )


def apply_diff(
    diff: DiffRecord,
    snapshot: IntentSnapshot,
    version: Optional[str] = None,
) -> IntentSnapshot:
    """
    Apply a diff to a snapshot.

    Args:
        diff: Diff to apply
        snapshot: Snapshot matching the diff's before-state for every entry
        version: Version for the resulting snapshot

    Returns:
        New snapshot with the diff applied

    Raises:
        DiffConflictError: If the snapshot does not match the diff's before-state
    """
    objects: dict[tuple[ObjectKind, str], IntentObject] = dict(snapshot.by_key)

    for entry in diff.entries:
        current = objects.get(entry.key)
        if entry.change_type == ChangeType.ADD:
            if current is not None:
                raise DiffConflictError(
                    f"Cannot add {entry.kind.value} '{entry.name}': already present",
                    details={"diff_id": diff.diff_id},
                )
        elif current is None or current.content_hash != entry.before_hash:
            raise DiffConflictError(
                f"Cannot {entry.change_type.value} {entry.kind.value} '{entry.name}': "
                f"content does not match diff before-state",
                details={"diff_id": diff.diff_id},
            )

    for entry in diff.removed:
        del objects[entry.key]
    for entry in diff.modified + diff.added:
        objects[entry.key] = entry.object_after()

    ordered: list[IntentObject] = []
    for kind in ORDERED_KINDS:
        sequence = diff.sequence_for(kind)
        if sequence is None:
            order = snapshot.order_of(kind)
        else:
            if snapshot.order_of(kind) != sequence.before_order:
                raise DiffConflictError(
                    f"Cannot reorder {kind.value}: snapshot order does not match diff before-state",
                    details={"diff_id": diff.diff_id},
                )
            order = sequence.after_order
        for name in order:
            if (kind, name) not in objects:
                raise DiffConflictError(
                    f"Ordered {kind.value} '{name}' missing after applying diff",
                    details={"diff_id": diff.diff_id},
                )
            ordered.append(objects[(kind, name)])

    unordered = [o for o in objects.values() if not o.is_ordered]
    expected_ordered = sum(1 for o in objects.values() if o.is_ordered)
    if len(ordered) != expected_ordered:
        raise DiffConflictError(
            "Ordered objects changed without a matching sequence change",
            details={"diff_id": diff.diff_id},
        )

    return IntentSnapshot.build(
        snapshot.environment,
        snapshot.device_group,
        unordered + ordered,
        version=version,
        parent_version=snapshot.version,
    )


def summarize_diff(diff: DiffRecord) -> str:
    """
    Create a human-readable summary of a diff.

    Useful for dry-run output, commit comments and logging.
    """
    if diff.is_empty:
        return "No changes - snapshots are equivalent"

    lines = [f"Changes in {diff.diff_id} ({diff.total_changes} total):", ""]

    for entry in diff.added:
        lines.append(f"  [+] Add {entry.kind.value} {entry.name}")
    for entry in diff.modified:
        lines.append(f"  [~] Modify {entry.kind.value} {entry.name}")
        before, after = entry.before or {}, entry.after or {}
        for key in after:
            if before.get(key) != after.get(key):
                lines.append(f"      {key}: {before.get(key)} -> {after.get(key)}")
    for entry in diff.removed:
        lines.append(f"  [-] Remove {entry.kind.value} {entry.name}")

    for sequence in diff.reordered:
        lines.append(f"  [^] Reorder {sequence.kind.value}")
        for move in sequence.moves:
            lines.append(f"      {move.name}: position {move.from_index} -> {move.to_index}")

    return "\n".join(lines)
