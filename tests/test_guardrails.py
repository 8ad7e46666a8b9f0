"""Tests for guardrail rules, the evaluator and rule-set loading."""
from datetime import date

import pytest

from firewall_reconciler.diff import DiffEngine
from firewall_reconciler.errors import ConfigurationError
from firewall_reconciler.guardrails import (
    GuardrailEvaluator,
    MandatoryLoggingRule,
    MetadataCompletenessRule,
    OverlyBroadRule,
    Severity,
    ShadowRule,
    ShadowScope,
    VerdictStatus,
    build_rule,
    default_guardrails,
    load_guardrails,
    load_guardrails_file,
)

from conftest import intent, rule, snapshot, with_rule


def evaluate(source_data, target_data, rules=None, peers=None, today=None):
    source, target = snapshot(source_data), snapshot(target_data)
    diff = DiffEngine().diff(source, target)
    evaluator = GuardrailEvaluator(rules if rules is not None else default_guardrails())
    return evaluator.evaluate(diff, target, peers=peers, today=today)


class TestOverlyBroad:
    """Tests for the overly-broad allow rule family."""

    def test_any_any_any_in_untrust_blocks(self):
        """Test an allow-all rule touching untrust is blocked."""
        verdict = evaluate(intent(), with_rule(intent(), rule("allow-all", source_zones=["untrust"])))

        assert verdict.blocked
        assert [v.rule_id for v in verdict.blocking] == ["overly_broad"]
        assert verdict.blocking[0].object_name == "allow-all"

    def test_any_zone_touches_high_risk(self):
        """Test an allow-all rule with any zones counts as touching untrust."""
        verdict = evaluate(intent(), with_rule(intent(), rule("allow-all")), rules=[OverlyBroadRule()])
        assert verdict.blocked

    def test_internal_zones_allowed(self):
        """Test an allow-all rule between internal zones is not flagged."""
        verdict = evaluate(
            intent(),
            with_rule(intent(), rule("allow-all", source_zones=["trust"], destination_zones=["dmz"])),
            rules=[OverlyBroadRule()],
        )
        assert verdict.status == VerdictStatus.APPROVED

    def test_deny_all_not_flagged(self):
        """Test deny rules are never overly broad."""
        verdict = evaluate(intent(security_rules=[]), intent(), rules=[OverlyBroadRule()])
        assert not verdict.blocked

    def test_broad_address_object_resolved(self):
        """Test a named object covering everything is still broad."""
        data = intent()
        data["addresses"]["everything"] = {"addresses": ["0.0.0.0/0", "::/0"]}
        target = with_rule(data, rule("sneaky", source_zones=["untrust"], source=["everything"]))
        verdict = evaluate(data, target, rules=[OverlyBroadRule()])
        assert verdict.blocked

    @pytest.mark.parametrize("everything", ["0.0.0.0/0", "::/0"])
    def test_single_family_wildcard_blocks(self, everything):
        """Test a rule covering all of one address family counts as any."""
        target = with_rule(intent(), rule(
            "allow-all-one-family",
            source_zones=["untrust"],
            source=[everything],
            destination=[everything],
        ))

        verdict = evaluate(intent(), target)

        assert verdict.status == VerdictStatus.BLOCKED
        assert "overly_broad" in [v.rule_id for v in verdict.blocking]

    def test_wildcard_cidr_with_unresolved_reference(self):
        """Test wildcard CIDRs are caught even when another field cannot be resolved."""
        target = with_rule(intent(), rule(
            "allow-all-typo",
            source_zones=["untrust"],
            source=["0.0.0.0/0", "no-such-object"],
            destination=["0.0.0.0/0"],
        ))
        verdict = evaluate(intent(), target, rules=[OverlyBroadRule()])
        assert verdict.blocked

    def test_partial_range_not_broad(self):
        """Test half of the IPv4 space is not treated as any."""
        target = with_rule(intent(), rule(
            "allow-half", source_zones=["untrust"], source=["0.0.0.0/1"], destination=["0.0.0.0/0"],
        ))
        verdict = evaluate(intent(), target, rules=[OverlyBroadRule()])
        assert not verdict.blocked


class TestMandatoryLogging:
    """Tests for mandatory logging on deny rules."""

    def test_deny_without_logging_blocks(self):
        """Test a deny rule with logging disabled is blocked."""
        target = with_rule(intent(), rule("deny-ssh", action="deny", service=["tcp/22"], logging=False))
        verdict = evaluate(intent(), target)

        assert verdict.blocked
        assert [v.rule_id for v in verdict.blocking] == ["mandatory_logging"]

    def test_drop_and_reject_count_as_deny(self):
        """Test drop and reject rules need logging too."""
        target = with_rule(intent(), rule("drop-x", action="drop", service=["tcp/23"], logging=False))
        target = with_rule(target, rule("reject-y", action="reject", service=["tcp/24"], logging=False))
        verdict = evaluate(intent(), target, rules=[MandatoryLoggingRule()])

        assert sorted(v.object_name for v in verdict.violations) == ["drop-x", "reject-y"]

    def test_unchanged_rules_ignored(self):
        """Test pre-existing violations do not block unrelated changes."""
        data = with_rule(intent(), rule("legacy", action="deny", service=["tcp/25"], logging=False))
        changed = dict(data, settings={"hostname": "renamed"})
        verdict = evaluate(data, changed, rules=[MandatoryLoggingRule()])
        assert verdict.status == VerdictStatus.APPROVED


class TestMetadata:
    """Tests for metadata completeness."""

    def test_missing_owner_warns(self):
        """Test a rule without owner is a warning, not a block."""
        target = with_rule(intent(), rule("no-owner", service=["tcp/8080"], owner=None))
        verdict = evaluate(intent(), target)

        assert verdict.status == VerdictStatus.APPROVED_WITH_WARNINGS
        assert verdict.warnings[0].rule_id == "metadata_completeness"
        assert "missing owner" in verdict.warnings[0].message

    def test_malformed_and_expired_dates(self):
        """Test malformed dates and past expiry are reported."""
        target = with_rule(intent(), rule("odd", service=["tcp/81"], created="someday", expires="2020-01-01"))
        verdict = evaluate(intent(), target, rules=[MetadataCompletenessRule()], today=date(2026, 6, 1))
        message = verdict.violations[0].message

        assert "malformed created date" in message
        assert "expired on 2020-01-01" in message

    def test_expiry_before_creation(self):
        """Test expiry earlier than creation is reported."""
        target = with_rule(intent(), rule("backwards", service=["tcp/82"], created="2026-05-01", expires="2026-04-01"))
        verdict = evaluate(intent(), target, rules=[MetadataCompletenessRule()], today=date(2026, 1, 1))
        assert "before created" in verdict.violations[0].message

    def test_severity_override(self):
        """Test metadata problems can be configured to block."""
        target = with_rule(intent(), rule("no-owner", service=["tcp/8080"], owner=None))
        verdict = evaluate(intent(), target, rules=[MetadataCompletenessRule(severity="block")])
        assert verdict.blocked


class TestShadow:
    """Tests for shadow (unreachable rule) detection."""

    def _r1_r2(self, **r2_fields):
        data = intent(security_rules=[
            rule("R1", source=["10.0.0.0/8"]),
            rule("R2", source=["10.1.0.0/16"], action="deny", **r2_fields),
        ])
        return data

    def test_allow_shadows_narrower_deny(self):
        """Test R1 allow 10.0.0.0/8 shadows a later R2 deny 10.1.0.0/16."""
        verdict = evaluate(intent(security_rules=[]), self._r1_r2(), rules=[ShadowRule()])

        assert verdict.status == VerdictStatus.APPROVED_WITH_WARNINGS
        violation = verdict.violations[0]
        assert violation.object_name == "R2"
        assert violation.related == "R1"
        assert "conflicting" in violation.message

    def test_safety_critical_escalates(self):
        """Test a shadowed safety-critical rule is blocked."""
        verdict = evaluate(intent(security_rules=[]), self._r1_r2(safety_critical=True), rules=[ShadowRule()])

        assert verdict.blocked
        assert verdict.blocking[0].severity == Severity.BLOCK

    def test_reverse_order_is_clean(self):
        """Test the narrower rule first shadows nothing."""
        data = self._r1_r2()
        data["security_rules"].reverse()
        verdict = evaluate(intent(security_rules=[]), data, rules=[ShadowRule()])
        assert verdict.status == VerdictStatus.APPROVED

    def test_reorder_that_shadows(self):
        """Test moving a broad rule ahead of a narrower one is flagged."""
        before = self._r1_r2()
        before["security_rules"].reverse()
        verdict = evaluate(before, self._r1_r2(), rules=[ShadowRule()])
        assert [v.object_name for v in verdict.violations] == ["R2"]

    def test_preexisting_shadow_not_reported(self):
        """Test shadowing between unchanged rules does not block other changes."""
        data = self._r1_r2()
        changed = dict(data, settings={"hostname": "renamed"})
        verdict = evaluate(data, changed, rules=[ShadowRule()])
        assert verdict.violations == []

    def test_disabled_rules_ignored(self):
        """Test a disabled earlier rule shadows nothing."""
        data = intent(security_rules=[
            rule("R1", source=["10.0.0.0/8"], disabled=True),
            rule("R2", source=["10.1.0.0/16"], action="deny"),
        ])
        verdict = evaluate(intent(security_rules=[]), data, rules=[ShadowRule()])
        assert verdict.violations == []

    def test_shared_zone_peer_rules(self):
        """Test shared-zone scope checks peer device groups' rules first."""
        peer = snapshot(intent(device_group="dc-core", security_rules=[
            rule("core-allow", source_zones=["trust"], source=["10.0.0.0/8"]),
        ]))
        target = intent(security_rules=[
            rule("edge-deny", source_zones=["trust"], source=["10.5.0.0/16"], action="deny"),
        ])
        source = intent(security_rules=[])

        local = evaluate(source, target, rules=[ShadowRule()], peers=[peer])
        shared = evaluate(source, target, rules=[ShadowRule(scope=ShadowScope.SHARED_ZONE)], peers=[peer])

        assert local.violations == []
        assert shared.violations[0].related == "dc-core/core-allow"

    def test_unknown_scope(self):
        """Test an unknown scope is rejected."""
        with pytest.raises(ValueError):
            ShadowRule(scope="galaxy")


class TestEvaluator:
    """Tests for GuardrailEvaluator."""

    def test_all_rules_reported(self):
        """Test evaluation continues past the first Block finding."""
        target = with_rule(intent(), rule("allow-all", source_zones=["untrust"], owner=None))
        target = with_rule(target, rule("deny-quiet", action="deny", service=["tcp/23"], logging=False))
        verdict = evaluate(intent(), target)

        rule_ids = [v.rule_id for v in verdict.violations]
        assert "overly_broad" in rule_ids
        assert "mandatory_logging" in rule_ids
        assert "metadata_completeness" in rule_ids
        assert verdict.rules_evaluated == ["overly_broad", "mandatory_logging", "metadata_completeness", "shadow"]

    def test_deterministic(self):
        """Test the same rules and diff always give the same verdict."""
        target = with_rule(intent(), rule("allow-all", source_zones=["untrust"], owner=None))
        first = evaluate(intent(), target, today=date(2026, 6, 1))
        second = evaluate(intent(), target, today=date(2026, 6, 1))
        assert first.to_dict() == second.to_dict()

    def test_clean_change_approved(self, base_snapshot, web_rule_target):
        """Test a well-formed change is approved."""
        diff = DiffEngine().diff(base_snapshot, web_rule_target)
        verdict = GuardrailEvaluator(default_guardrails()).evaluate(diff, web_rule_target)
        assert verdict.status == VerdictStatus.APPROVED
        assert verdict.to_dict()["violations"] == []


class TestLoader:
    """Tests for building rule sets from configuration."""

    def test_defaults_when_empty(self):
        """Test no definitions yields the four built-in families."""
        rules = load_guardrails(None)
        assert [r.rule_type for r in rules] == ["overly_broad", "mandatory_logging", "metadata_completeness", "shadow"]

    def test_build_with_options(self):
        """Test ids, severities and options are applied."""
        built = build_rule({"type": "overly_broad", "id": "OB-1", "severity": "WARN", "high_risk_zones": ["dmz"]})

        assert built.rule_id == "OB-1"
        assert built.severity == Severity.WARN
        assert built.high_risk_zones == frozenset({"dmz"})

    def test_defaults_propagate(self):
        """Test shared defaults reach the rules that take them."""
        rules = load_guardrails([{"type": "shadow"}], shadow_scope="shared_zone")
        assert rules[0].scope == "shared_zone"

    @pytest.mark.parametrize("definition", [
        {"type": "nonsense"},
        {"type": "shadow", "severity": "critical"},
        {"type": "mandatory_logging", "colour": "red"},
        {"type": "shadow", "scope": "galaxy"},
        "shadow",
    ])
    def test_invalid_definitions(self, definition):
        """Test invalid definitions raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            build_rule(definition)

    def test_load_file(self, tmp_path):
        """Test a YAML rule set file is loaded."""
        path = tmp_path / "guardrails.yaml"
        path.write_text("guardrails:\n  - type: mandatory_logging\n  - type: metadata_completeness\n    severity: block\n")
        rules = load_guardrails_file(path)

        assert [r.rule_type for r in rules] == ["mandatory_logging", "metadata_completeness"]
        assert rules[1].severity == Severity.BLOCK

    def test_load_missing_file(self, tmp_path):
        """Test a missing file raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            load_guardrails_file(tmp_path / "missing.yaml")
