"""Built-in guardrail rule families.

Each rule is a predicate over the changed objects of a diff (or over the
resulting rule list) with a severity and a human-readable explanation.
Rules are pure: they never touch a device.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from ..diff.records import DiffRecord
from ..intent.schema import IntentSnapshot, ObjectKind, SecurityRule
from .matching import MatchResolver, MatchSpace
from .models import Severity, Violation

logger = logging.getLogger(__name__)

DEFAULT_HIGH_RISK_ZONES = ("untrust", "internet")

# Address literals that match every peer of at least one family
WILDCARD_ADDRESSES = frozenset({"any", "0.0.0.0/0", "::/0"})


class ShadowScope:
    """Which rules shadow detection compares."""
    DEVICE_GROUP = "device_group"
    SHARED_ZONE = "shared_zone"

    ALL = (DEVICE_GROUP, SHARED_ZONE)


@dataclass
class EvaluationContext:
    """Everything a guardrail may look at.

    snapshot is the state the diff produces (the target for deployments,
    the live config for drift). peers are other device groups' snapshots,
    consulted only by shared-zone shadow detection.
    """
    diff: DiffRecord
    snapshot: IntentSnapshot
    peers: list[IntentSnapshot] = field(default_factory=list)
    today: date = field(default_factory=lambda: datetime.now(timezone.utc).date())

    _resolver: Optional[MatchResolver] = field(default=None, init=False, repr=False)

    @property
    def resolver(self) -> MatchResolver:
        if self._resolver is None:
            self._resolver = MatchResolver.for_snapshots(self.snapshot, *self.peers)
        return self._resolver

    def changed_rules(self) -> list[SecurityRule]:
        """Security rules added or modified by the diff, in snapshot order."""
        changed = {
            e.name for e in self.diff.added + self.diff.modified
            if e.kind == ObjectKind.SECURITY_RULE
        }
        return [r for r in self.snapshot.security_rules if r.name in changed]


class GuardrailRule(ABC):
    """Base class for guardrail rules."""

    rule_type = "guardrail"
    default_severity = Severity.WARN
    explanation = ""

    def __init__(self, rule_id: Optional[str] = None, severity: Optional[Severity | str] = None):
        self.rule_id = rule_id or self.rule_type
        self.severity = Severity(severity) if severity else self.default_severity

    @abstractmethod
    def evaluate(self, context: EvaluationContext) -> list[Violation]:
        """Return every violation of this rule, in deterministic order."""
        pass

    def violation(
        self,
        rule: SecurityRule,
        message: str,
        severity: Optional[Severity] = None,
        related: Optional[str] = None,
    ) -> Violation:
        return Violation(
            rule_id=self.rule_id,
            severity=severity or self.severity,
            object_kind=rule.kind.value,
            object_name=rule.name,
            message=message,
            related=related,
        )

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.rule_id,
            "type": self.rule_type,
            "severity": self.severity.value,
            "explanation": self.explanation,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(rule_id={self.rule_id!r}, severity={self.severity.value!r})"


class OverlyBroadRule(GuardrailRule):
    """Allow rules matching any source, any destination and any service in a high-risk zone."""

    rule_type = "overly_broad"
    default_severity = Severity.BLOCK
    explanation = "Allow rules must not match any:any:any traffic in a high-risk zone"

    def __init__(
        self,
        rule_id: Optional[str] = None,
        severity: Optional[Severity | str] = None,
        high_risk_zones: Iterable[str] = DEFAULT_HIGH_RISK_ZONES,
    ):
        super().__init__(rule_id, severity)
        self.high_risk_zones = frozenset(z.lower() for z in high_risk_zones)

    def evaluate(self, context: EvaluationContext) -> list[Violation]:
        violations = []
        for rule in context.changed_rules():
            if rule.disabled or rule.action != "allow":
                continue
            space = context.resolver.try_resolve(rule)
            if space is None:
                broad = (
                    bool(WILDCARD_ADDRESSES & set(rule.source))
                    and bool(WILDCARD_ADDRESSES & set(rule.destination))
                    and "any" in rule.service
                )
            else:
                broad = space.any_source and space.any_destination and space.any_service
            if not broad:
                continue
            zones = self._risky_zones(rule)
            if zones:
                violations.append(self.violation(
                    rule,
                    f"Rule '{rule.name}' allows any source to any destination on any "
                    f"service in high-risk zone(s): {', '.join(zones)}",
                ))
        return violations

    def _risky_zones(self, rule: SecurityRule) -> list[str]:
        """High-risk zones touched by the rule; 'any' touches all of them."""
        touched: set[str] = set()
        for zones in (rule.source_zones, rule.destination_zones):
            if "any" in zones:
                touched.update(self.high_risk_zones)
            else:
                touched.update(self.high_risk_zones & set(zones))
        return sorted(touched)


class MandatoryLoggingRule(GuardrailRule):
    """Deny-action rules must have logging enabled."""

    rule_type = "mandatory_logging"
    default_severity = Severity.BLOCK
    explanation = "Deny, drop and reject rules must log matches"

    def evaluate(self, context: EvaluationContext) -> list[Violation]:
        return [
            self.violation(rule, f"Deny rule '{rule.name}' ({rule.action}) has logging disabled")
            for rule in context.changed_rules()
            if rule.is_deny and not rule.logging
        ]


class MetadataCompletenessRule(GuardrailRule):
    """Owner, created and expiry metadata must be present and well-formed."""

    rule_type = "metadata_completeness"
    default_severity = Severity.WARN
    explanation = "Rules must declare an owner and valid created/expires dates"

    def __init__(
        self,
        rule_id: Optional[str] = None,
        severity: Optional[Severity | str] = None,
        required: Iterable[str] = ("owner", "created", "expires"),
    ):
        super().__init__(rule_id, severity)
        self.required = tuple(required)

    def evaluate(self, context: EvaluationContext) -> list[Violation]:
        violations = []
        for rule in context.changed_rules():
            problems = self._problems(rule, context.today)
            if problems:
                violations.append(self.violation(
                    rule, f"Rule '{rule.name}' metadata: {'; '.join(problems)}"
                ))
        return violations

    def _problems(self, rule: SecurityRule, today: date) -> list[str]:
        problems = []
        if "owner" in self.required and not rule.owner:
            problems.append("missing owner")

        dates: dict[str, Optional[date]] = {}
        for name in ("created", "expires"):
            value = getattr(rule, name)
            if not value:
                if name in self.required:
                    problems.append(f"missing {name} date")
                dates[name] = None
                continue
            try:
                dates[name] = date.fromisoformat(value)
            except ValueError:
                problems.append(f"malformed {name} date '{value}'")
                dates[name] = None

        created, expires = dates["created"], dates["expires"]
        if created and expires and expires < created:
            problems.append(f"expires {expires} is before created {created}")
        if expires and expires < today:
            problems.append(f"expired on {expires}")
        return problems


class ShadowRule(GuardrailRule):
    """Flag rules made unreachable by an earlier rule covering their match space.

    For each pair (earlier, later) where the earlier rule contains the later
    one across zones, source, destination, application and service, the later
    rule is shadowed. Only pairs involving a changed rule are reported, so
    pre-existing shadowing does not block unrelated changes. A safety-critical
    later rule escalates to Block.
    """

    rule_type = "shadow"
    default_severity = Severity.WARN
    explanation = "Rules must be reachable: no earlier rule may cover their whole match space"

    def __init__(
        self,
        rule_id: Optional[str] = None,
        severity: Optional[Severity | str] = None,
        scope: str = ShadowScope.DEVICE_GROUP,
    ):
        super().__init__(rule_id, severity)
        if scope not in ShadowScope.ALL:
            raise ValueError(f"Unknown shadow scope '{scope}'. Must be one of: {', '.join(ShadowScope.ALL)}")
        self.scope = scope

    def evaluate(self, context: EvaluationContext) -> list[Violation]:
        changed = {
            name for kind, name in context.diff.changed_keys
            if kind == ObjectKind.SECURITY_RULE
        }
        if not changed:
            return []

        rules = [r for r in context.snapshot.security_rules if not r.disabled]
        spaces = [(r, context.resolver.try_resolve(r)) for r in rules]
        pre_rules = self._pre_rules(context)

        violations = []
        for index, (later, later_space) in enumerate(spaces):
            if later_space is None:
                logger.debug(f"Shadow check skipped for '{later.name}': unresolved reference")
                continue
            earlier_candidates = pre_rules + [(None, r, s) for r, s in spaces[:index]]
            for peer_group, earlier, earlier_space in earlier_candidates:
                if earlier_space is None:
                    continue
                local_pair = peer_group is None and earlier.name in changed
                if later.name not in changed and not local_pair:
                    continue
                if earlier_space.contains(later_space):
                    label = f"{peer_group}/{earlier.name}" if peer_group else earlier.name
                    violations.append(self._shadowed(later, earlier, label))
                    break
        return violations

    def _pre_rules(
        self, context: EvaluationContext
    ) -> list[tuple[Optional[str], SecurityRule, Optional[MatchSpace]]]:
        """Peer device-group rules bound to the same zones, evaluated ahead of local rules."""
        if self.scope != ShadowScope.SHARED_ZONE:
            return []
        local_spaces = [
            s for s in (context.resolver.try_resolve(r) for r in context.snapshot.security_rules)
            if s is not None
        ]
        pre_rules = []
        for peer in context.peers:
            if peer.device_group == context.snapshot.device_group:
                continue
            for rule in peer.security_rules:
                if rule.disabled:
                    continue
                space = context.resolver.try_resolve(rule)
                if space is not None and any(space.zones_overlap(s) for s in local_spaces):
                    pre_rules.append((peer.device_group, rule, space))
        return pre_rules

    def _shadowed(self, later: SecurityRule, earlier: SecurityRule, label: str) -> Violation:
        severity = Severity.BLOCK if later.safety_critical else self.severity
        if earlier.action == later.action:
            kind = "redundant"
        else:
            kind = "conflicting"
        return self.violation(
            later,
            f"Rule '{later.name}' is shadowed by earlier rule '{label}' "
            f"({kind}: {earlier.action} precedes {later.action}) and is unreachable",
            severity=severity,
            related=label,
        )
