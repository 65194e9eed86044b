"""Tests for the Mikrotik isolation script generator."""

from datetime import datetime, timezone

import pytest

from billing_admin.mikrotik import ADDRESS_LIST, ISOLATION_METHODS, generate_isolation_script

GENERATED_AT = datetime(2025, 1, 15, 8, 30, 0, 250000, tzinfo=timezone.utc)


class TestGenerateIsolationScript:
    """RouterOS script content per isolation method."""

    def test_header(self):
        """Header carries the generation time and upper-cased method."""
        result = generate_isolation_script("address_list", now=GENERATED_AT)
        assert result.timestamp == "2025-01-15T08:30:00.250Z"
        assert result.method == "address_list"
        assert "# Date: 2025-01-15T08:30:00.250Z" in result.script
        assert "# Method: ADDRESS_LIST" in result.script

    @pytest.mark.parametrize("method", ISOLATION_METHODS)
    def test_common_sections(self, method):
        """Every method has the address list, firewall rules and the footer."""
        script = generate_isolation_script(method, now=GENERATED_AT).script
        assert "# 1. SETUP ADDRESS LIST" in script
        assert "# 2. FIREWALL RULES" in script
        assert f"src-address-list={ADDRESS_LIST}" in script
        assert "# 7. TROUBLESHOOTING" in script
        assert "# END OF SCRIPT" in script
        assert script.endswith("\n")

    def test_address_list_has_no_method_section(self):
        """The plain method adds no DHCP, queue or per-IP rule section."""
        script = generate_isolation_script("address_list").script
        assert "# 3. DHCP SERVER CONFIGURATION" not in script
        assert "# 3. QUEUE CONFIGURATION" not in script
        assert "# 3. INDIVIDUAL FIREWALL RULES" not in script
        assert "# 3. Test in a non-production environment first" in script

    def test_dhcp_block(self):
        """DHCP network uses the range's .1 gateway and the DNS list."""
        script = generate_isolation_script(
            "dhcp_block",
            network_range="10.20.0.0/16",
            dns_servers="1.1.1.1, 9.9.9.9",
        ).script
        assert "# 3. DHCP SERVER CONFIGURATION" in script
        assert (
            "/ip dhcp-server network add address=10.20.0.0/16 "
            "gateway=10.20.0.1 dns=1.1.1.1,9.9.9.9"
        ) in script
        assert "# Blocked DHCP leases:" in script

    def test_bandwidth_limit(self):
        """Queue uses the configured max-limit."""
        script = generate_isolation_script("bandwidth_limit", bandwidth_limit="512k/256k").script
        assert "# 3. QUEUE CONFIGURATION" in script
        assert "target=192.168.1.0/24 max-limit=512k/256k" in script
        assert "# Suspended queue:" in script

    def test_firewall_rule(self):
        """Per-IP rule notes are included."""
        script = generate_isolation_script("firewall_rule").script
        assert "# 3. INDIVIDUAL FIREWALL RULES" in script
        assert "# Blocked DHCP leases:" not in script

    @pytest.mark.parametrize(
        "kwargs,match",
        [
            ({"method": "teleport"}, "Unknown isolation method"),
            ({"bandwidth_limit": "fast"}, "Invalid bandwidth limit"),
            ({"network_range": "192.168.1.0/99"}, ""),
            ({"dns_servers": " , "}, "At least one DNS server"),
            ({"dns_servers": "8.8.8.8,dns.google"}, ""),
        ],
    )
    def test_invalid_input(self, kwargs, match):
        """Malformed parameters raise ValueError."""
        with pytest.raises(ValueError, match=match):
            generate_isolation_script(**kwargs)
