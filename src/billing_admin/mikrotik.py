"""Mikrotik RouterOS script for isolating suspended static-IP customers.

Every method blocks addresses in the ``blocked_customers`` address list;
the method adds one extra router section:

- ``address_list``: nothing extra
- ``dhcp_block``: a DHCP network for the customer range
- ``bandwidth_limit``: a parent queue throttling the range
- ``firewall_rule``: notes for per-IP firewall rules

Usage:
    from billing_admin.mikrotik import generate_isolation_script

    result = generate_isolation_script("bandwidth_limit", bandwidth_limit="512k/512k")
    Path("isolation.rsc").write_text(result.script)
"""

import ipaddress
import re
from datetime import datetime, timezone

from pydantic import BaseModel

ISOLATION_METHODS: tuple[str, ...] = (
    "address_list",
    "dhcp_block",
    "bandwidth_limit",
    "firewall_rule",
)

ADDRESS_LIST = "blocked_customers"

_RATE_RE = re.compile(r"^\d+[kKmMgG]?/\d+[kKmMgG]?$")
_RULE = "# " + "=" * 40


class IsolationScript(BaseModel):
    """Generated script plus what it was generated for."""

    script: str
    method: str
    timestamp: str


def _banner(title: str) -> str:
    return f"{_RULE}\n# {title}\n{_RULE}\n\n"


def _gateway_for(network_range: str) -> str:
    """``192.168.1.0/24`` -> ``192.168.1.1``."""
    address = network_range.split("/")[0]
    return re.sub(r"\d+$", "1", address)


def _method_section(method: str, bandwidth_limit: str, network_range: str, dns: list[str]) -> str:
    if method == "dhcp_block":
        return _banner("3. DHCP SERVER CONFIGURATION") + (
            "# DHCP server setup for the block method\n"
            "/ip dhcp-server setup\n"
            f"/ip dhcp-server network add address={network_range} "
            f"gateway={_gateway_for(network_range)} dns={','.join(dns)}\n\n"
        )
    if method == "bandwidth_limit":
        return _banner("3. QUEUE CONFIGURATION") + (
            "# Parent queue for suspended customers\n"
            f'/queue simple add name="suspended_customers" target={network_range} '
            f'max-limit={bandwidth_limit} comment="Suspended customers queue"\n\n'
        )
    if method == "firewall_rule":
        return _banner("3. INDIVIDUAL FIREWALL RULES") + (
            "# Individual firewall rules are created per IP at isolation time\n"
            "# Use the commands in the manual section to create them\n\n"
        )
    return ""


def _validate(method: str, bandwidth_limit: str, network_range: str, dns: list[str]) -> None:
    if method not in ISOLATION_METHODS:
        raise ValueError(
            f"Unknown isolation method: {method!r}. "
            f"Available: {', '.join(ISOLATION_METHODS)}"
        )
    if not _RATE_RE.match(bandwidth_limit):
        raise ValueError(f"Invalid bandwidth limit: {bandwidth_limit!r} (expected e.g. 1k/1k)")
    ipaddress.ip_network(network_range, strict=False)
    if not dns:
        raise ValueError("At least one DNS server is required")
    for server in dns:
        ipaddress.ip_address(server)


def generate_isolation_script(
    method: str = "address_list",
    bandwidth_limit: str = "1k/1k",
    network_range: str = "192.168.1.0/24",
    dns_servers: str = "8.8.8.8,8.8.4.4",
    now: datetime | None = None,
) -> IsolationScript:
    """Render the isolation script for ``method``.

    Args:
        method: One of ``ISOLATION_METHODS``.
        bandwidth_limit: Queue ``max-limit`` (``bandwidth_limit`` method).
        network_range: Customer network in CIDR form.
        dns_servers: Comma-separated DNS servers (``dhcp_block`` method).
        now: Generation time written into the header.

    Raises:
        ValueError: For an unknown method or a malformed rate, range or
            DNS address.
    """
    dns = [d.strip() for d in dns_servers.split(",") if d.strip()]
    _validate(method, bandwidth_limit, network_range, dns)

    generated = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    timestamp = generated.strftime("%Y-%m-%dT%H:%M:%S.") + f"{generated.microsecond // 1000:03d}Z"

    parts: list[str] = [
        f"{_RULE}\n"
        "# MIKROTIK ISOLATION SYSTEM SCRIPT\n"
        "# Generated by billing-admin\n"
        f"# Date: {timestamp}\n"
        f"# Method: {method.upper()}\n"
        f"{_RULE}\n\n"
        "# Configuration for isolating static-IP customers\n"
        "# Run this script on the Mikrotik RouterOS\n\n",
        _banner("1. SETUP ADDRESS LIST"),
        "# Address list for blocked customers\n"
        f"/ip firewall address-list add list={ADDRESS_LIST} address=0.0.0.0 "
        'comment="Placeholder - Auto managed by billing-admin"\n\n',
        _banner("2. FIREWALL RULES"),
        "# Rule 1: Drop traffic from blocked customers (FORWARD chain)\n"
        f"/ip firewall filter add chain=forward src-address-list={ADDRESS_LIST} "
        'action=drop comment="Block suspended customers (static IP) - billing-admin" '
        "place-before=0\n\n"
        "# Rule 2: Block router access from blocked customers (INPUT chain)\n"
        f"/ip firewall filter add chain=input src-address-list={ADDRESS_LIST} "
        'action=drop comment="Block suspended customers from accessing router '
        '(static IP) - billing-admin"\n\n',
        _method_section(method, bandwidth_limit, network_range, dns),
        _banner("4. MONITORING COMMANDS"),
        "# Blocked customers address list:\n"
        f"# /ip firewall address-list print where list={ADDRESS_LIST}\n\n"
        "# Firewall rules:\n"
        '# /ip firewall filter print where comment~"Block suspended customers"\n\n',
    ]

    if method == "dhcp_block":
        parts.append("# Blocked DHCP leases:\n# /ip dhcp-server lease print where blocked=yes\n\n")
    if method == "bandwidth_limit":
        parts.append('# Suspended queue:\n# /queue simple print where name~"suspended"\n\n')

    parts += [
        _banner("5. MANUAL ISOLATION COMMANDS"),
        "# Isolate a customer (replace IP_ADDRESS with the customer's IP):\n"
        f"# /ip firewall address-list add list={ADDRESS_LIST} address=IP_ADDRESS "
        'comment="SUSPENDED - [REASON] - [DATE]"\n\n'
        "# Example:\n"
        f"# /ip firewall address-list add list={ADDRESS_LIST} address=192.168.1.100 "
        'comment="SUSPENDED - Late payment - 2024-01-15"\n\n'
        "# Restore a customer (remove from the address list):\n"
        f"# /ip firewall address-list remove [find where address=IP_ADDRESS and list={ADDRESS_LIST}]\n\n"
        "# Example:\n"
        f"# /ip firewall address-list remove [find where address=192.168.1.100 and list={ADDRESS_LIST}]\n\n",
        _banner("6. BULK OPERATIONS"),
        "# Isolate several IPs at once:\n"
        "# :foreach i in={192.168.1.100;192.168.1.101;192.168.1.102} "
        f'do={{/ip firewall address-list add list={ADDRESS_LIST} address=$i '
        'comment="BULK SUSPEND - [DATE]"}\n\n'
        "# Restore every isolated customer:\n"
        f'# /ip firewall address-list remove [find where list={ADDRESS_LIST} and comment~"SUSPENDED"]\n\n',
        _banner("7. TROUBLESHOOTING"),
        "# Is the firewall rule active:\n"
        '# /ip firewall filter print where disabled=no and comment~"Block suspended customers"\n\n'
        "# Address list entries:\n"
        f"# /ip firewall address-list print where list={ADDRESS_LIST}\n\n"
        "# Connectivity from an isolated IP:\n"
        "# /ping 8.8.8.8 src-address=ISOLATED_IP\n\n"
        "# Firewall log:\n"
        '# /log print where topics~"firewall"\n\n',
        _banner("END OF SCRIPT"),
        "# Notes:\n"
        "# 1. Run this script with full admin access\n"
        "# 2. Adjust the IP range to your network\n"
        "# 3. Test in a non-production environment first\n"
        "# 4. Back up the Mikrotik configuration before running the script\n"
        "# 5. Watch the log after deploying to confirm it works\n",
    ]

    return IsolationScript(script="".join(parts), method=method, timestamp=timestamp)
