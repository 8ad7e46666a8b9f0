"""Diff Engine - structural comparison of intent snapshots.

Usage:
    from firewall_reconciler.diff import DiffEngine, summarize_diff

    diff = DiffEngine().diff(baseline, target)
    print(summarize_diff(diff))
"""

from .records import ChangeType, DiffEntry, DiffRecord, RuleMove, SequenceChange
from .engine import (
    DiffEngine,
    apply_diff,
    compute_moves,
    invert,
    lcs_indices,
    make_diff_id,
    summarize_diff,
)

__all__ = [
    "ChangeType",
    "DiffEntry",
    "DiffRecord",
    "RuleMove",
    "SequenceChange",
    "DiffEngine",
    "apply_diff",
    "compute_moves",
    "invert",
    "lcs_indices",
    "make_diff_id",
    "summarize_diff",
]
