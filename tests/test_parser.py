"""Tests for the intent parser and renderer."""
import pytest

from firewall_reconciler.errors import ParseError
from firewall_reconciler.intent import ObjectKind, render_snapshot
from firewall_reconciler.devices.base import ConfigPayload

from conftest import intent, rule


class TestConfigParser:
    """Tests for ConfigParser.parse."""

    def test_parse_base_intent(self, parser):
        """Test the base intent parses into typed objects."""
        snap = parser.parse(intent())

        assert snap.environment == "lab"
        assert snap.device_group == "dc-edge"
        assert set(snap.addresses) == {"web-servers", "db-servers"}
        assert snap.order_of(ObjectKind.SECURITY_RULE) == ("allow-web", "deny-all")
        assert snap.get(ObjectKind.SETTING, "hostname").value == "fw-edge-01"

    def test_unordered_sections_sorted(self, parser):
        """Test unordered kinds are sorted by name and precede rules."""
        snap = parser.parse(intent())
        kinds = [o.kind for o in snap.objects]

        assert kinds.index(ObjectKind.SECURITY_RULE) > kinds.index(ObjectKind.ZONE)
        assert [a for a in snap.addresses] == ["db-servers", "web-servers"]

    def test_scope_overrides(self, parser):
        """Test environment and device group arguments override the document."""
        snap = parser.parse(intent(), environment="prod", device_group="branch")
        assert (snap.environment, snap.device_group) == ("prod", "branch")

    def test_missing_environment(self, parser):
        """Test a missing environment is rejected."""
        data = intent()
        del data["environment"]
        with pytest.raises(ParseError, match="environment"):
            parser.parse(data)

    def test_not_a_mapping(self, parser):
        """Test non-mapping input is rejected."""
        with pytest.raises(ParseError):
            parser.parse(["not", "a", "mapping"])

    def test_unknown_section(self, parser):
        """Test unknown top-level sections are rejected."""
        with pytest.raises(ParseError, match="vlans"):
            parser.parse(intent(vlans={}))

    def test_invalid_action(self, parser):
        """Test an unknown rule action is rejected."""
        with pytest.raises(ParseError, match="invalid action"):
            parser.parse(intent(security_rules=[rule("r1", action="permit")]))

    def test_rules_must_be_a_list(self, parser):
        """Test rule sections given as a mapping are rejected (order would be lost)."""
        with pytest.raises(ParseError, match="ordered list"):
            parser.parse(intent(security_rules={"r1": rule("r1")}))

    def test_duplicate_rule_name(self, parser):
        """Test two rules with the same name are rejected."""
        with pytest.raises(ParseError, match="Duplicate"):
            parser.parse(intent(security_rules=[rule("r1"), rule("r1", action="deny")]))

    def test_invalid_port(self, parser):
        """Test out-of-range service ports are rejected."""
        with pytest.raises(ParseError, match="invalid ports"):
            parser.parse(intent(services={"bad": {"protocol": "tcp", "ports": [70000]}}))

    def test_unknown_protocol(self, parser):
        """Test unknown protocols are rejected."""
        with pytest.raises(ParseError, match="protocol"):
            parser.parse(intent(services={"bad": {"protocol": "gre-ish", "ports": [1]}}))

    def test_invalid_address(self, parser):
        """Test malformed address literals are rejected."""
        with pytest.raises(ParseError):
            parser.parse(intent(addresses={"bad": {"addresses": ["10.0.0.999"]}}))

    def test_unknown_rule_field(self, parser):
        """Test unknown rule fields are rejected."""
        with pytest.raises(ParseError, match="unknown fields"):
            parser.parse(intent(security_rules=[rule("r1", colour="blue")]))

    def test_logging_must_be_boolean(self, parser):
        """Test the logging flag must be a boolean."""
        with pytest.raises(ParseError, match="logging"):
            parser.parse(intent(security_rules=[rule("r1", logging="yes please")]))

    def test_field_aliases(self, parser):
        """Test from/to/log aliases map to canonical fields."""
        snap = parser.parse(intent(security_rules=[
            {"name": "r1", "from": "trust", "to": "untrust", "action": "deny", "log": True},
        ]))
        r1 = snap.security_rules[0]

        assert r1.source_zones == ("trust",)
        assert r1.destination_zones == ("untrust",)
        assert r1.logging is True

    def test_conflicting_entry_name(self, parser):
        """Test a mapping entry may not declare a different name."""
        with pytest.raises(ParseError, match="conflicting name"):
            parser.parse(intent(addresses={"web": {"name": "other", "addresses": ["10.0.0.1"]}}))


class TestParseText:
    """Tests for text and payload parsing."""

    def test_empty_text(self, parser):
        """Test empty documents are rejected."""
        with pytest.raises(ParseError, match="empty"):
            parser.parse_text("   \n")

    def test_unparseable_text(self, parser):
        """Test invalid YAML is rejected."""
        with pytest.raises(ParseError, match="Unparseable"):
            parser.parse_text("environment: [unclosed")

    def test_unsupported_payload_format(self, parser):
        """Test payload formats other than yaml/json are rejected."""
        payload = ConfigPayload(device_id="fw-01", content="set foo", format="set")
        with pytest.raises(ParseError, match="Unsupported"):
            parser.parse_payload(payload)

    def test_json_text(self, parser):
        """Test JSON documents are accepted."""
        snap = parser.parse_text('{"environment": "lab", "device_group": "g", "settings": {"ntp": "pool"}}')
        assert snap.get(ObjectKind.SETTING, "ntp").value == "pool"


class TestRender:
    """Tests for rendering snapshots back to YAML."""

    def test_render_roundtrip_hash(self, parser, base_snapshot):
        """Test a rendered snapshot parses back to the same content."""
        reparsed = parser.parse_text(render_snapshot(base_snapshot))

        assert reparsed.content_hash == base_snapshot.content_hash
        assert reparsed.order_of(ObjectKind.SECURITY_RULE) == base_snapshot.order_of(ObjectKind.SECURITY_RULE)

    def test_content_hash_ignores_version(self, base_snapshot):
        """Test version metadata does not affect the content hash."""
        versioned = base_snapshot.with_version("v7", parent_version="v6")
        assert versioned.content_hash == base_snapshot.content_hash
