"""Backup/Snapshot Manager - verified exports, retention and restore drills."""

from .manager import BackupManager, BackupRecord, DrillResult, checksum

__all__ = [
    "BackupManager",
    "BackupRecord",
    "DrillResult",
    "checksum",
]
