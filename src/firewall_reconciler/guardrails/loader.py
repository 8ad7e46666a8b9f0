"""Load guardrail rule sets from configuration.

Rule sets are YAML lists of rule definitions:

    guardrails:
      - type: overly_broad
        severity: block
        high_risk_zones: [untrust]
      - type: mandatory_logging
      - type: metadata_completeness
        severity: warn
      - type: shadow
        scope: device_group
"""
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from ..errors import ConfigurationError
from .models import Severity
from .rules import (
    DEFAULT_HIGH_RISK_ZONES,
    GuardrailRule,
    MandatoryLoggingRule,
    MetadataCompletenessRule,
    OverlyBroadRule,
    ShadowRule,
    ShadowScope,
)

RULE_TYPES: dict[str, type[GuardrailRule]] = {
    OverlyBroadRule.rule_type: OverlyBroadRule,
    MandatoryLoggingRule.rule_type: MandatoryLoggingRule,
    MetadataCompletenessRule.rule_type: MetadataCompletenessRule,
    ShadowRule.rule_type: ShadowRule,
}


def default_guardrails(
    high_risk_zones: Iterable[str] = DEFAULT_HIGH_RISK_ZONES,
    shadow_scope: str = ShadowScope.DEVICE_GROUP,
) -> list[GuardrailRule]:
    """The built-in rule families with their default severities."""
    return [
        OverlyBroadRule(high_risk_zones=high_risk_zones),
        MandatoryLoggingRule(),
        MetadataCompletenessRule(),
        ShadowRule(scope=shadow_scope),
    ]


def build_rule(definition: dict[str, Any], defaults: Optional[dict[str, Any]] = None) -> GuardrailRule:
    """
    Build one rule from its definition.

    Raises:
        ConfigurationError: On unknown types, severities or options
    """
    if not isinstance(definition, dict) or "type" not in definition:
        raise ConfigurationError(f"Guardrail definition must be a mapping with a 'type': {definition!r}")

    options = dict(definition)
    rule_type = options.pop("type")
    rule_class = RULE_TYPES.get(rule_type)
    if rule_class is None:
        raise ConfigurationError(
            f"Unknown guardrail type '{rule_type}'. Must be one of: {', '.join(RULE_TYPES)}"
        )

    kwargs: dict[str, Any] = {"rule_id": options.pop("id", None)}
    severity = options.pop("severity", None)
    if severity is not None:
        try:
            kwargs["severity"] = Severity(str(severity).lower())
        except ValueError:
            raise ConfigurationError(f"Invalid severity '{severity}' for guardrail '{rule_type}'")

    defaults = defaults or {}
    if rule_class is OverlyBroadRule:
        kwargs["high_risk_zones"] = options.pop(
            "high_risk_zones", defaults.get("high_risk_zones", DEFAULT_HIGH_RISK_ZONES)
        )
    elif rule_class is MetadataCompletenessRule and "required" in options:
        kwargs["required"] = options.pop("required")
    elif rule_class is ShadowRule:
        kwargs["scope"] = options.pop("scope", defaults.get("shadow_scope", ShadowScope.DEVICE_GROUP))

    if options:
        raise ConfigurationError(
            f"Unknown options for guardrail '{rule_type}': {', '.join(sorted(options))}"
        )
    try:
        return rule_class(**kwargs)
    except ValueError as e:
        raise ConfigurationError(str(e))


def load_guardrails(
    definitions: Optional[list[dict[str, Any]]] = None,
    high_risk_zones: Iterable[str] = DEFAULT_HIGH_RISK_ZONES,
    shadow_scope: str = ShadowScope.DEVICE_GROUP,
) -> list[GuardrailRule]:
    """Build a rule list from definitions, or the defaults when none are given."""
    if not definitions:
        return default_guardrails(high_risk_zones, shadow_scope)
    defaults = {"high_risk_zones": list(high_risk_zones), "shadow_scope": shadow_scope}
    return [build_rule(d, defaults) for d in definitions]


def load_guardrails_file(path: Path | str, **defaults: Any) -> list[GuardrailRule]:
    """Load a rule set from a YAML file (a list, or a mapping with a 'guardrails' key)."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot load guardrails from {path}: {e}")

    if isinstance(data, dict):
        data = data.get("guardrails")
    if data is not None and not isinstance(data, list):
        raise ConfigurationError(f"Guardrails in {path} must be a list")
    return load_guardrails(data, **defaults)
