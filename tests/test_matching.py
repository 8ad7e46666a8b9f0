"""Tests for match-space resolution and containment."""
import pytest

from firewall_reconciler.guardrails import MatchResolver, UnresolvedReference
from firewall_reconciler.intent import AddressObject, SecurityRule, ServiceObject, canonicalize


def _rule(**fields) -> SecurityRule:
    return canonicalize(SecurityRule(name=fields.pop("name", "r"), **fields))


@pytest.fixture
def resolver():
    return MatchResolver(
        addresses={
            "corp": AddressObject(name="corp", addresses=("10.0.0.0/8",)),
            "web": AddressObject(name="web", addresses=("10.1.0.0/24",)),
            "nested": AddressObject(name="nested", addresses=("web", "192.168.0.0/16")),
            "loop": AddressObject(name="loop", addresses=("loop",)),
        },
        services={
            "https": ServiceObject(name="https", protocol="tcp", ports=("443",)),
            "low": ServiceObject(name="low", protocol="tcp", ports=("1-1024",)),
        },
    )


class TestMatchResolver:
    """Tests for resolving rule references."""

    def test_nested_address_names(self, resolver):
        """Test address objects may reference other address objects."""
        space = resolver.resolve_addresses(["nested"])
        assert "10.1.0.5" in space
        assert "192.168.4.4" in space
        assert "10.2.0.1" not in space

    def test_unknown_name(self, resolver):
        """Test unknown names raise UnresolvedReference."""
        with pytest.raises(UnresolvedReference):
            resolver.resolve(_rule(destination=("nowhere",)))
        assert resolver.try_resolve(_rule(destination=("nowhere",))) is None

    def test_reference_cycle(self, resolver):
        """Test self-referencing address objects do not recurse forever."""
        with pytest.raises(UnresolvedReference):
            resolver.resolve_addresses(["loop"])

    def test_any_service(self, resolver):
        """Test 'any' and ip/any resolve to the full service space."""
        assert resolver.resolve_services(["any"]).any
        assert resolver.resolve_services(["ip/any"]).any


class TestContainment:
    """Tests for MatchSpace.contains."""

    def test_cidr_containment(self, resolver):
        """Test a /8 source contains a /16 inside it."""
        wide = resolver.resolve(_rule(source=("corp",)))
        narrow = resolver.resolve(_rule(source=("10.1.0.0/16",)))

        assert wide.contains(narrow)
        assert not narrow.contains(wide)

    def test_port_containment(self, resolver):
        """Test tcp/1-1024 contains tcp/443 but not udp/443."""
        low = resolver.resolve(_rule(service=("low",)))

        assert low.contains(resolver.resolve(_rule(service=("https",))))
        assert not low.contains(resolver.resolve(_rule(service=("udp/443",))))

    def test_zone_containment(self, resolver):
        """Test 'any' zone contains named zones, not the other way round."""
        anywhere = resolver.resolve(_rule())
        dmz = resolver.resolve(_rule(source_zones=("dmz",)))

        assert anywhere.contains(dmz)
        assert not dmz.contains(anywhere)

    def test_application_containment(self, resolver):
        """Test application sets are compared as sets."""
        two = resolver.resolve(_rule(application=("ssl", "web-browsing")))
        one = resolver.resolve(_rule(application=("ssl",)))

        assert two.contains(one)
        assert not one.contains(two)

    def test_ip_protocol_covers_all(self, resolver):
        """Test an ip/any-port rule covers tcp and udp ports."""
        ip_all = resolver.resolve(_rule(service=("ip/0-65535", "application-default")))
        assert ip_all.contains(resolver.resolve(_rule(service=("tcp/22", "application-default"))))

    def test_any_flags(self, resolver):
        """Test any-source/destination/service flags of a permissive rule."""
        space = resolver.resolve(_rule())
        assert space.any_source and space.any_destination and space.any_service

    def test_one_family_counts_as_any(self, resolver):
        """Test all of IPv4 or all of IPv6 is an any-address match."""
        v4 = resolver.resolve(_rule(source=("0.0.0.0/0",), destination=("::/0",)))
        assert v4.any_source and v4.any_destination

        narrow = resolver.resolve(_rule(source=("10.0.0.0/8",)))
        assert not narrow.any_source
