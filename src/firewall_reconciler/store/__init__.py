"""Persistence for intents, baselines and engine records.

This package provides:
- IntentStore: git-versioned Intent Snapshots and per-device baselines
- RecordStore: diffs, deployment attempts, drift reports and device locks

Directory structure managed:
    ~/.firecraft/
    ├── intents/<environment>/<device_group>/<version>.yaml
    └── state/
        ├── baselines/
        ├── diffs/
        ├── attempts/
        ├── drift_reports/
        └── locks/
"""

from .intent_store import IntentStore
from .records import RecordStore
from .git_manager import GitError, IntentRepository, VersionCommit

__all__ = [
    "IntentStore",
    "RecordStore",
    "GitError",
    "IntentRepository",
    "VersionCommit",
]
