"""Deployment Attempt state machine.

    pending -> guardrail_checked -> staged -> validated -> committed
            -> post_validated -> completed

Failure branches end in failed, then rolled_back or deployment_locked.
pending may end early in aborted (guardrails blocked, backup gate failed)
or cancelled (cancellation honoured before staging).
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..errors import InvalidTransitionError


class AttemptState(str, Enum):
    PENDING = "pending"
    GUARDRAIL_CHECKED = "guardrail_checked"
    STAGED = "staged"
    VALIDATED = "validated"
    COMMITTED = "committed"
    POST_VALIDATED = "post_validated"
    COMPLETED = "completed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    DEPLOYMENT_LOCKED = "deployment_locked"


class Outcome(str, Enum):
    """Reported result of an attempt. Only completed attempts succeed."""
    SUCCEEDED = "succeeded"
    ABORTED = "aborted"
    CANCELLED = "cancelled"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    DEPLOYMENT_LOCKED = "deployment_locked"
    IN_PROGRESS = "in_progress"


S = AttemptState

TRANSITIONS: dict[AttemptState, frozenset[AttemptState]] = {
    S.PENDING: frozenset({S.GUARDRAIL_CHECKED, S.ABORTED, S.CANCELLED}),
    S.GUARDRAIL_CHECKED: frozenset({S.STAGED, S.FAILED, S.CANCELLED}),
    S.STAGED: frozenset({S.VALIDATED, S.FAILED}),
    S.VALIDATED: frozenset({S.COMMITTED, S.FAILED}),
    S.COMMITTED: frozenset({S.POST_VALIDATED, S.FAILED}),
    S.POST_VALIDATED: frozenset({S.COMPLETED, S.FAILED}),
    S.FAILED: frozenset({S.ROLLED_BACK, S.DEPLOYMENT_LOCKED}),
}

TERMINAL_STATES = frozenset({
    S.COMPLETED, S.ABORTED, S.CANCELLED, S.ROLLED_BACK, S.DEPLOYMENT_LOCKED,
})

_OUTCOMES = {
    S.COMPLETED: Outcome.SUCCEEDED,
    S.ABORTED: Outcome.ABORTED,
    S.CANCELLED: Outcome.CANCELLED,
    S.FAILED: Outcome.FAILED,
    S.ROLLED_BACK: Outcome.ROLLED_BACK,
    S.DEPLOYMENT_LOCKED: Outcome.DEPLOYMENT_LOCKED,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StateChange:
    """One timestamped transition."""
    state: AttemptState
    at: datetime
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state.value, "at": self.at.isoformat(), "reason": self.reason}


@dataclass
class DeploymentAttempt:
    """One (device, Diff Record) deployment and its transition history."""
    attempt_id: str
    device_id: str
    diff_id: str
    environment: str
    device_group: str
    target_version: Optional[str] = None
    ticket: Optional[str] = None
    actor: str = "system"
    state: AttemptState = AttemptState.PENDING
    created_at: datetime = field(default_factory=_now)
    history: list[StateChange] = field(default_factory=list)
    reason: str = ""
    error: Optional[dict[str, Any]] = None

    # Device-side bookkeeping; decides whether a failure needs rollback
    candidate_id: Optional[str] = None
    candidate_outstanding: bool = False
    commit_attempted: bool = False
    commit_id: Optional[str] = None

    verdict: Optional[dict[str, Any]] = None
    backup_id: Optional[str] = None
    post_validation: Optional[dict[str, Any]] = None
    rollback: Optional[dict[str, Any]] = None
    ha_role: Optional[str] = None

    def __post_init__(self):
        if not self.history:
            self.history.append(StateChange(self.state, self.created_at))

    def transition(self, new_state: AttemptState, reason: str = "") -> None:
        """
        Move to new_state.

        Raises:
            InvalidTransitionError: If the state machine forbids the move
        """
        new_state = AttemptState(new_state)
        if new_state not in TRANSITIONS.get(self.state, frozenset()):
            raise InvalidTransitionError(
                f"Attempt {self.attempt_id}: {self.state.value} -> {new_state.value} is not allowed",
                details={"attempt_id": self.attempt_id, "from": self.state.value, "to": new_state.value},
            )
        if new_state == AttemptState.COMMITTED and self.has_committed:
            raise InvalidTransitionError(f"Attempt {self.attempt_id} was already committed")

        self.state = new_state
        self.history.append(StateChange(new_state, _now(), reason))
        if reason:
            self.reason = reason

    @property
    def has_committed(self) -> bool:
        return any(c.state == AttemptState.COMMITTED for c in self.history)

    @property
    def requires_rollback(self) -> bool:
        """True when a failure may have left device-side changes behind."""
        return self.has_committed or self.commit_attempted or self.candidate_outstanding

    @property
    def terminal(self) -> bool:
        if self.state in TERMINAL_STATES:
            return True
        return self.state == AttemptState.FAILED and not self.requires_rollback

    @property
    def outcome(self) -> Outcome:
        if not self.terminal:
            return Outcome.IN_PROGRESS
        return _OUTCOMES[self.state]

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCEEDED

    def states(self) -> list[AttemptState]:
        return [c.state for c in self.history]

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "device_id": self.device_id,
            "diff_id": self.diff_id,
            "environment": self.environment,
            "device_group": self.device_group,
            "target_version": self.target_version,
            "ticket": self.ticket,
            "actor": self.actor,
            "state": self.state.value,
            "outcome": self.outcome.value,
            "terminal": self.terminal,
            "created_at": self.created_at.isoformat(),
            "history": [c.to_dict() for c in self.history],
            "reason": self.reason,
            "error": self.error,
            "candidate_id": self.candidate_id,
            "commit_id": self.commit_id,
            "verdict": self.verdict,
            "backup_id": self.backup_id,
            "post_validation": self.post_validation,
            "rollback": self.rollback,
            "ha_role": self.ha_role,
        }
