"""Tests for canonicalization of intent objects."""
import pytest

from firewall_reconciler.intent import AddressObject, SecurityRule, ServiceObject, ZoneBinding, canonicalize
from firewall_reconciler.intent.canonical import (
    is_ip_literal,
    merge_intervals,
    normalize_addresses,
    normalize_categories,
    normalize_date,
    normalize_ports,
    normalize_service_refs,
    parse_address_literal,
)


class TestAddresses:
    """Tests for address normalization."""

    def test_adjacent_cidrs_merge(self):
        """Test two halves of a /24 collapse into the /24."""
        assert normalize_addresses(["10.0.0.128/25", "10.0.0.0/25"]) == ("10.0.0.0/24",)

    def test_host_and_range(self):
        """Test a range literal becomes its CIDR cover."""
        assert normalize_addresses(["192.168.1.0-192.168.1.3"]) == ("192.168.1.0/30",)
        assert normalize_addresses(["192.168.1.10"]) == ("192.168.1.10/32",)

    def test_any_collapses_list(self):
        """Test any entry meaning 'any' absorbs the whole list."""
        assert normalize_addresses(["10.0.0.0/8", "ANY"]) == ("any",)
        assert normalize_addresses(["*"]) == ("any",)

    def test_names_follow_literals_sorted(self):
        """Test object names are kept, sorted, after literals."""
        result = normalize_addresses(["web", "10.0.0.1", "app"])
        assert result == ("10.0.0.1/32", "app", "web")

    def test_invalid_literal_raises(self):
        """Test a malformed address literal raises ValueError."""
        with pytest.raises(ValueError):
            parse_address_literal("10.0.0.300/24")

    def test_name_is_not_literal(self):
        """Test object names are not mistaken for literals."""
        assert parse_address_literal("web-servers") is None
        assert is_ip_literal("2001:db8::/32")
        assert not is_ip_literal("web-servers")


class TestPorts:
    """Tests for port and service normalization."""

    def test_merge_overlapping_and_adjacent(self):
        """Test port lists merge into minimal ranges."""
        assert normalize_ports(["80", "81-90", 8080, "85"]) == ("80-90", "8080")

    def test_comma_separated(self):
        """Test comma-separated specs are split."""
        assert normalize_ports(["443,80"]) == ("80", "443")

    def test_any_port(self):
        """Test 'any' means every port."""
        assert normalize_ports(["any"]) == ("any",)

    @pytest.mark.parametrize("ports", ["70000", "90-80", "-1"])
    def test_invalid_ports(self, ports):
        """Test out-of-range and inverted ranges raise ValueError."""
        with pytest.raises(ValueError):
            normalize_ports([ports])

    def test_service_literals_lowercased(self):
        """Test protocol literals are lowercased and ports merged."""
        assert normalize_service_refs(["TCP/443", "udp/53,54"]) == ("tcp/443", "udp/53-54")

    def test_application_default_kept(self):
        """Test application-default is a symbolic entry."""
        assert normalize_service_refs(["Application-Default", "https"]) == ("application-default", "https")

    def test_merge_intervals(self):
        """Test interval merging helper."""
        assert merge_intervals([(5, 6), (1, 3), (4, 4)]) == [(1, 6)]


class TestCategoriesAndDates:
    """Tests for categorical sets and dates."""

    def test_zones_lowercased_and_sorted(self):
        """Test zone names are case-folded and deduplicated."""
        assert normalize_categories(["DMZ", "trust", "dmz"]) == ("dmz", "trust")

    def test_date_formats(self):
        """Test dates normalize to ISO and bad text is kept."""
        assert normalize_date("2026-03-01T10:00:00") == "2026-03-01"
        assert normalize_date("") is None
        assert normalize_date("soon") == "soon"


class TestCanonicalize:
    """Tests for whole-object canonicalization."""

    def test_idempotent(self):
        """Test canonicalize(canonicalize(x)) == canonicalize(x)."""
        obj = SecurityRule(
            name=" allow-web ",
            source_zones=("Untrust",),
            destination=("10.1.0.128/25", "10.1.0.0/25"),
            service=("TCP/443",),
            action="ALLOW",
            description="  web   traffic ",
        )
        once = canonicalize(obj)
        assert canonicalize(once) == once
        assert once.name == "allow-web"
        assert once.action == "allow"
        assert once.description == "web traffic"

    def test_representation_variance_hashes_equal(self):
        """Test objects differing only in representation share a content hash."""
        a = AddressObject(name="web", addresses=("10.0.0.2", "10.0.0.1"))
        b = AddressObject(name="web", addresses=("10.0.0.1/32", "10.0.0.2/32"), description=" ")
        assert a.content_hash == b.content_hash

    def test_semantic_change_changes_hash(self):
        """Test a real change produces a different hash."""
        a = ServiceObject(name="web", protocol="tcp", ports=("443",))
        b = ServiceObject(name="web", protocol="tcp", ports=("8443",))
        assert a.content_hash != b.content_hash

    def test_zone_interfaces_keep_case(self):
        """Test interface names are sorted but not case-folded."""
        zone = canonicalize(ZoneBinding(name="DMZ", interfaces=("ethernet1/2", "Ae1")))
        assert zone.name == "dmz"
        assert zone.interfaces == ("Ae1", "ethernet1/2")
