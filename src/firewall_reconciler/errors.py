"""Error taxonomy for the reconciliation engine.

Every failure the engine can surface derives from FirecraftError so callers
can catch the whole family, and each carries a stable code for reporting:

- ParseError:            malformed config input (fatal, no partial diff)
- AdapterError:          device API failure, transient or permanent
- GuardrailBlockedError: policy violation, not a system fault
- ValidationFailedError: commit-check or post-change checks rejected a change
- RollbackFailedError:   rollback could not be confirmed (manual clearing)
- IntegrityError:        backup checksum/parse failure
"""
from typing import Any, Optional


class FirecraftError(Exception):
    """Base exception for the reconciliation engine."""

    code = "FIRECRAFT_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to dictionary for audit records and events."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ParseError(FirecraftError):
    """Error parsing intent or live configuration."""

    code = "PARSE_ERROR"


class ConfigurationError(FirecraftError):
    """Invalid engine settings, inventory or guardrail definitions."""

    code = "CONFIG_ERROR"


class AdapterError(FirecraftError):
    """A Device Adapter call failed.

    The transient flag decides retry behaviour: transient errors are retried
    with backoff inside the current transition, permanent ones are not.
    """

    code = "ADAPTER_ERROR"

    def __init__(
        self,
        message: str,
        transient: bool = False,
        device_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(
            message,
            details={"device_id": device_id, "operation": operation, "transient": transient},
        )
        self.transient = transient
        self.device_id = device_id
        self.operation = operation


class TransientAdapterError(AdapterError):
    """Retryable device failure (timeouts, connection resets, busy API)."""

    def __init__(self, message: str, device_id: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message, transient=True, device_id=device_id, operation=operation)


class PermanentAdapterError(AdapterError):
    """Non-retryable device failure (rejected request, auth failure)."""

    def __init__(self, message: str, device_id: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message, transient=False, device_id=device_id, operation=operation)


class GuardrailBlockedError(FirecraftError):
    """A change was blocked by one or more Block-severity guardrails."""

    code = "GUARDRAIL_BLOCKED"

    def __init__(self, verdict: Any):
        violations = [v.rule_id for v in verdict.blocking]
        super().__init__(
            f"Blocked by guardrails: {', '.join(violations)}",
            details={"violations": [v.to_dict() for v in verdict.violations]},
        )
        self.verdict = verdict


class ValidationFailedError(FirecraftError):
    """Device commit-check or post-change checks rejected the change."""

    code = "VALIDATION_FAILED"


class RollbackFailedError(FirecraftError):
    """Rollback could not be confirmed; device requires manual intervention."""

    code = "ROLLBACK_FAILED"


class IntegrityError(FirecraftError):
    """A backup export was empty, unparseable or failed checksum verification."""

    code = "INTEGRITY_ERROR"


class DiffConflictError(FirecraftError):
    """A diff could not be applied because the snapshot does not match its before-state."""

    code = "DIFF_CONFLICT"


class InvalidTransitionError(FirecraftError):
    """A Deployment Attempt was asked to make a transition the state machine forbids."""

    code = "INVALID_TRANSITION"


class DeviceLockedError(FirecraftError):
    """The device is deployment-locked after a failed rollback."""

    code = "DEVICE_LOCKED"

    def __init__(self, device_id: str, reason: str = ""):
        super().__init__(
            f"Device {device_id} is deployment-locked"
            + (f": {reason}" if reason else ""),
            details={"device_id": device_id, "reason": reason},
        )
        self.device_id = device_id


class DuplicateAuditEntryError(FirecraftError):
    """An audit entry for this deployment attempt was already written."""

    code = "DUPLICATE_AUDIT_ENTRY"


class RecordImmutableError(FirecraftError):
    """A persisted record in a terminal state cannot be rewritten."""

    code = "RECORD_IMMUTABLE"
