"""Device Adapter and Validation Runner interfaces.

Concrete adapters live outside the core. The in-memory reference adapter
used for lab restore drills and tests is in devices.simulated.
"""
from .base import (
    CandidateHandle,
    CandidateValidation,
    CheckReport,
    CommitResult,
    ConfigPayload,
    DeviceAdapter,
    HARole,
    HAStatus,
    ValidationRunner,
)

__all__ = [
    "CandidateHandle",
    "CandidateValidation",
    "CheckReport",
    "CommitResult",
    "ConfigPayload",
    "DeviceAdapter",
    "HARole",
    "HAStatus",
    "ValidationRunner",
]
