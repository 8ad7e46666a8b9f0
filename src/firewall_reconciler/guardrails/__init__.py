"""Guardrail Evaluator - declarative policy checks on proposed changes.

Usage:
    from firewall_reconciler.guardrails import GuardrailEvaluator, default_guardrails

    verdict = GuardrailEvaluator(default_guardrails()).evaluate(diff, target)
    if verdict.blocked:
        ...
"""

from .models import Severity, Verdict, VerdictStatus, Violation
from .matching import MatchResolver, MatchSpace, ServiceSpace, UnresolvedReference
from .rules import (
    EvaluationContext,
    GuardrailRule,
    MandatoryLoggingRule,
    MetadataCompletenessRule,
    OverlyBroadRule,
    ShadowRule,
    ShadowScope,
)
from .evaluator import GuardrailEvaluator
from .loader import RULE_TYPES, build_rule, default_guardrails, load_guardrails, load_guardrails_file

__all__ = [
    "Severity",
    "Verdict",
    "VerdictStatus",
    "Violation",
    "MatchResolver",
    "MatchSpace",
    "ServiceSpace",
    "UnresolvedReference",
    "EvaluationContext",
    "GuardrailRule",
    "MandatoryLoggingRule",
    "MetadataCompletenessRule",
    "OverlyBroadRule",
    "ShadowRule",
    "ShadowScope",
    "GuardrailEvaluator",
    "RULE_TYPES",
    "build_rule",
    "default_guardrails",
    "load_guardrails",
    "load_guardrails_file",
]
