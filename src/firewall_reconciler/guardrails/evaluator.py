"""Guardrail Evaluator.

Scores a Diff Record against an ordered rule list. Every rule is evaluated
regardless of earlier Block results so the report is complete, and the
same rule set and diff always produce the same verdict.
"""
import logging
from datetime import date
from typing import Iterable, Optional

from ..diff.records import DiffRecord
from ..intent.schema import IntentSnapshot
from ..utils.logging_config import timed
from .models import Verdict, Violation
from .rules import EvaluationContext, GuardrailRule

logger = logging.getLogger(__name__)


class GuardrailEvaluator:
    """Evaluate a configurable set of guardrail rules."""

    def __init__(self, rules: Iterable[GuardrailRule]):
        self.rules = list(rules)

    @timed("guardrail_evaluate")
    def evaluate(
        self,
        diff: DiffRecord,
        snapshot: IntentSnapshot,
        peers: Optional[list[IntentSnapshot]] = None,
        today: Optional[date] = None,
    ) -> Verdict:
        """
        Evaluate all rules against a diff.

        Args:
            diff: The change under review
            snapshot: Snapshot the diff produces
            peers: Other device groups' snapshots (shared-zone shadow scope)
            today: Reference date for expiry checks

        Returns:
            Verdict with violations in rule-list order
        """
        context = EvaluationContext(diff=diff, snapshot=snapshot, peers=list(peers or []))
        if today is not None:
            context.today = today

        violations: list[Violation] = []
        for rule in self.rules:
            found = rule.evaluate(context)
            if found:
                logger.debug(f"Guardrail {rule.rule_id}: {len(found)} violation(s) on {diff.diff_id}")
            violations.extend(found)

        verdict = Verdict.from_violations(violations, [r.rule_id for r in self.rules])
        logger.info(
            f"Guardrail verdict for {diff.diff_id}: {verdict.status.value} "
            f"({len(verdict.blocking)} blocking, {len(verdict.warnings)} warnings)"
        )
        return verdict
