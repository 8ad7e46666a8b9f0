"""Guardrail verdict and violation types."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    """Guardrail severity. Block prevents any device mutation."""
    BLOCK = "block"
    WARN = "warn"


class VerdictStatus(str, Enum):
    """Overall outcome of evaluating a rule set against a diff."""
    APPROVED = "approved"
    APPROVED_WITH_WARNINGS = "approved_with_warnings"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class Violation:
    """A single guardrail finding against one intent object."""
    rule_id: str
    severity: Severity
    object_kind: str
    object_name: str
    message: str
    related: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "object_kind": self.object_kind,
            "object_name": self.object_name,
            "message": self.message,
        }
        if self.related:
            data["related"] = self.related
        return data


@dataclass
class Verdict:
    """Guardrail evaluation result with the complete violation list."""
    status: VerdictStatus
    violations: list[Violation] = field(default_factory=list)
    rules_evaluated: list[str] = field(default_factory=list)

    @classmethod
    def from_violations(
        cls, violations: list[Violation], rules_evaluated: Optional[list[str]] = None
    ) -> "Verdict":
        if any(v.severity == Severity.BLOCK for v in violations):
            status = VerdictStatus.BLOCKED
        elif violations:
            status = VerdictStatus.APPROVED_WITH_WARNINGS
        else:
            status = VerdictStatus.APPROVED
        return cls(status=status, violations=list(violations), rules_evaluated=rules_evaluated or [])

    @property
    def blocked(self) -> bool:
        return self.status == VerdictStatus.BLOCKED

    @property
    def blocking(self) -> list[Violation]:
        return [v for v in self.violations if v.severity == Severity.BLOCK]

    @property
    def warnings(self) -> list[Violation]:
        return [v for v in self.violations if v.severity == Severity.WARN]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "violations": [v.to_dict() for v in self.violations],
            "rules_evaluated": list(self.rules_evaluated),
        }
