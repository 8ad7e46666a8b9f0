"""Device Adapter abstraction for managed firewalls.

The core is vendor-agnostic: concrete adapters translate these calls into a
vendor's management API. Every call may block on network I/O and may fail
with a TransientAdapterError or PermanentAdapterError.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class HARole(str, Enum):
    """HA membership role reported by a device."""
    ACTIVE = "active"
    PASSIVE = "passive"
    STANDALONE = "standalone"


@dataclass
class ConfigPayload:
    """Raw configuration exported from a device."""
    device_id: str
    content: str
    format: str = "yaml"
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_empty(self) -> bool:
        return not self.content or not self.content.strip()


@dataclass
class CandidateHandle:
    """Reference to a staged, uncommitted candidate on a device."""
    device_id: str
    candidate_id: str
    diff_id: str
    staged_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CandidateValidation:
    """Result of a device-side commit-check."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class CommitResult:
    """Result of committing a candidate."""
    success: bool
    commit_id: Optional[str] = None
    message: str = ""


@dataclass
class HAStatus:
    """HA state of a device."""
    device_id: str
    role: HARole = HARole.STANDALONE
    peer_id: Optional[str] = None
    degraded: bool = False


@dataclass
class CheckReport:
    """Outcome of post-commit validation checks."""
    passed: bool
    report: dict[str, Any] = field(default_factory=dict)


class DeviceAdapter(ABC):
    """Abstract base class for device management adapters."""

    @abstractmethod
    async def fetch_live_config(self, device_id: str) -> ConfigPayload:
        """Export the device's full live configuration."""
        pass

    @abstractmethod
    async def push_candidate(self, device_id: str, diff: Any) -> CandidateHandle:
        """Stage a diff as a candidate (non-committed) configuration."""
        pass

    @abstractmethod
    async def validate_candidate(
        self, device_id: str, handle: CandidateHandle
    ) -> CandidateValidation:
        """Run the device's commit-check against a staged candidate."""
        pass

    @abstractmethod
    async def commit(
        self, device_id: str, handle: CandidateHandle, comment: str
    ) -> CommitResult:
        """Commit a staged candidate with an audit comment."""
        pass

    @abstractmethod
    async def fetch_ha_status(self, device_id: str) -> HAStatus:
        """Get HA role and health for a device."""
        pass

    # Optional capability
    async def discard_candidate(self, device_id: str, handle: CandidateHandle) -> None:
        """Drop a staged candidate. Devices that expire candidates may ignore this."""
        logger.debug(f"discard_candidate not supported for {device_id}, ignoring")


class ValidationRunner(ABC):
    """Runs post-commit checks (control-plane health, HA state, synthetic traffic)."""

    @abstractmethod
    async def run_checks(self, device_id: str, check_set: list[str]) -> CheckReport:
        """Run the named checks against a device."""
        pass
