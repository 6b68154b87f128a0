"""
Data models for network management.

Value types for the LAN/NAT configuration, DHCP settings, firewall rules and
WiFi state, plus the structured results of the diagnostic tools. Validation
predicates raise piwifi.errors.ValidationError and never touch the system.
"""

import ipaddress
import re
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ValidationError

_DOMAIN_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,62})(\.[A-Za-z0-9]([A-Za-z0-9-]{0,62}))*$")
_INTERFACE_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,15}$")


def parse_ipv4(value: str, name: str = "address") -> ipaddress.IPv4Address:
    """Parse a dotted-quad IPv4 literal or raise ValidationError."""
    try:
        return ipaddress.IPv4Address(str(value).strip())
    except (ipaddress.AddressValueError, ValueError) as e:
        raise ValidationError(f"Invalid {name}: {value!r}") from e


def validate_domain(value: str, name: str = "domain") -> None:
    if not value or not _DOMAIN_RE.match(value):
        raise ValidationError(f"Invalid {name}: {value!r}")


def validate_interface(value: str) -> None:
    if not value or not _INTERFACE_RE.match(value):
        raise ValidationError(f"Invalid interface name: {value!r}")


def validate_port(value: int, name: str = "port") -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 65535:
        raise ValidationError(f"Invalid {name}: {value!r}")


def _check_pool(start: str, end: str) -> Tuple[ipaddress.IPv4Address, ipaddress.IPv4Address]:
    start_ip = parse_ipv4(start, "DHCP pool start")
    end_ip = parse_ipv4(end, "DHCP pool end")
    if start_ip >= end_ip:
        raise ValidationError(f"DHCP pool start {start} must precede pool end {end}")
    return start_ip, end_ip


def _check_dns_list(servers: Tuple[str, ...], name: str) -> None:
    if not servers:
        raise ValidationError(f"At least one {name} is required")
    for server in servers:
        parse_ipv4(server, name)


class Protocol(str, Enum):
    """Transport protocols accepted by point rules."""

    TCP = "tcp"
    UDP = "udp"


class RuleAction(str, Enum):
    """Firewall point-rule actions."""

    ALLOW = "allow"
    BLOCK = "block"
    FORWARD = "forward"


def parse_protocol(value: str) -> "Protocol":
    try:
        return Protocol(str(value).lower())
    except ValueError as e:
        raise ValidationError(f"Unsupported protocol: {value!r}") from e


@dataclass(frozen=True)
class NetworkConfig:
    """Active LAN, NAT and DNS configuration. Replaced wholesale, never patched."""

    lan_ip: str = "192.168.100.1"
    lan_netmask: str = "255.255.255.0"
    lan_prefix: int = 24
    dhcp_start: str = "192.168.100.50"
    dhcp_end: str = "192.168.100.200"
    dns_upstream: Tuple[str, ...] = ("8.8.8.8", "8.8.4.4")
    dns_domain: str = "piwifi.local"
    nat_enabled: bool = True
    firewall_enabled: bool = True
    dhcp_vendor_class: Optional[str] = "PiWifi-EdgeRouter"  # DHCP option 60
    dhcp_client_id: Optional[str] = None  # DHCP option 61
    vendor_name: str = "PiWifi"

    @property
    def lan_network(self) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Interface(f"{self.lan_ip}/{self.lan_prefix}").network

    def validate(self) -> None:
        """Raise ValidationError if the configuration is inconsistent."""
        parse_ipv4(self.lan_ip, "LAN address")
        parse_ipv4(self.lan_netmask, "netmask")
        if isinstance(self.lan_prefix, bool) or not isinstance(self.lan_prefix, int) or not 0 <= self.lan_prefix <= 32:
            raise ValidationError(f"Invalid prefix length: {self.lan_prefix!r}")
        try:
            mask_prefix = ipaddress.IPv4Network(f"0.0.0.0/{self.lan_netmask}").prefixlen
        except ValueError as e:
            raise ValidationError(f"Invalid netmask: {self.lan_netmask!r}") from e
        if mask_prefix != self.lan_prefix:
            raise ValidationError(f"Netmask {self.lan_netmask} does not match prefix /{self.lan_prefix}")

        start_ip, end_ip = _check_pool(self.dhcp_start, self.dhcp_end)
        network = self.lan_network
        if start_ip not in network or end_ip not in network:
            raise ValidationError(f"DHCP pool {self.dhcp_start}-{self.dhcp_end} is outside {network}")

        _check_dns_list(self.dns_upstream, "upstream DNS server")
        validate_domain(self.dns_domain, "DNS domain")
        for option in (self.dhcp_vendor_class, self.dhcp_client_id):
            if option is not None and (not option or any(c in option for c in "\n\r,")):
                raise ValidationError(f"Invalid DHCP option value: {option!r}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["dns_upstream"] = list(self.dns_upstream)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkConfig":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        if "dns_upstream" in values:
            values["dns_upstream"] = tuple(values["dns_upstream"])
        return cls(**values)


@dataclass(frozen=True)
class DhcpConfig:
    """Settings the DHCP/DNS service controls."""

    dhcp_start: str
    dhcp_end: str
    lease_time: int
    dns_servers: Tuple[str, ...]
    local_domain: str

    def validate(self) -> None:
        _check_pool(self.dhcp_start, self.dhcp_end)
        if isinstance(self.lease_time, bool) or not isinstance(self.lease_time, int) or self.lease_time <= 0:
            raise ValidationError(f"Lease time must be a positive number of seconds, got {self.lease_time!r}")
        _check_dns_list(self.dns_servers, "DNS server")
        validate_domain(self.local_domain, "local domain")

    @classmethod
    def from_network_config(cls, config: NetworkConfig, lease_time: int) -> "DhcpConfig":
        return cls(
            dhcp_start=config.dhcp_start,
            dhcp_end=config.dhcp_end,
            lease_time=lease_time,
            dns_servers=tuple(config.dns_upstream),
            local_domain=config.dns_domain,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["dns_servers"] = list(self.dns_servers)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DhcpConfig":
        return cls(
            dhcp_start=data["dhcp_start"],
            dhcp_end=data["dhcp_end"],
            lease_time=data["lease_time"],
            dns_servers=tuple(data["dns_servers"]),
            local_domain=data["local_domain"],
        )


@dataclass
class DhcpStatus:
    """DHCP configuration as read back from disk plus live lease count."""

    enabled: bool
    config: Optional[DhcpConfig]
    active_leases: int = 0


@dataclass(frozen=True)
class FirewallRule:
    """A single point rule to append to the live ruleset."""

    action: RuleAction
    interface: str
    protocol: Protocol
    port: int
    target_ip: Optional[str] = None
    target_port: Optional[int] = None

    def validate(self) -> None:
        validate_interface(self.interface)
        validate_port(self.port)
        if self.action == RuleAction.FORWARD:
            if not self.target_ip or self.target_port is None:
                raise ValidationError("Forward rules require a target IP and port")
            parse_ipv4(self.target_ip, "forward target")
            validate_port(self.target_port, "target port")


@dataclass
class WifiNetwork:
    """A WiFi network from scan results."""

    ssid: str
    signal: int  # dBm, more negative is weaker
    security: str
    bssid: Optional[str] = None
    active: bool = False


@dataclass
class WifiStatus:
    """Current uplink association."""

    connected: bool
    ssid: Optional[str] = None
    ip: Optional[str] = None
    signal: Optional[int] = None  # dBm


@dataclass(frozen=True)
class WifiCredentials:
    """Uplink credentials. The passphrase is kept out of repr and logs."""

    ssid: str
    passphrase: str = field(default="", repr=False)

    def validate(self) -> None:
        if not self.ssid or len(self.ssid.encode()) > 32:
            raise ValidationError("SSID must be 1-32 bytes")
        if self.passphrase and not 8 <= len(self.passphrase) <= 63:
            raise ValidationError("Passphrase must be 8-63 characters")


@dataclass
class Lease:
    """One binding from the dnsmasq lease database."""

    expires: int
    mac: str
    ip: str
    hostname: Optional[str] = None
    client_id: Optional[str] = None


@dataclass
class ArpEntry:
    ip: str
    mac: str
    interface: Optional[str] = None


@dataclass
class LanStatus:
    """LAN interface addresses and the kernel forwarding flag."""

    interface: str
    addresses: List[str]
    ip_forwarding: bool


@dataclass
class PingResult:
    host: str
    reachable: bool
    packets_sent: int = 0
    packets_received: int = 0
    packet_loss: float = 100.0
    rtt_min_ms: Optional[float] = None
    rtt_avg_ms: Optional[float] = None
    rtt_max_ms: Optional[float] = None


@dataclass
class DnsResult:
    domain: str
    server: str
    addresses: List[str]

    @property
    def resolved(self) -> bool:
        return bool(self.addresses)


@dataclass
class RouteHop:
    number: int
    host: Optional[str]
    rtt_ms: Optional[float] = None


@dataclass
class RouteResult:
    host: str
    hops: List[RouteHop]


@dataclass
class InterfaceInfo:
    name: str
    state: str
    mac: Optional[str] = None
    addresses: List[str] = field(default_factory=list)


@dataclass
class SpeedTestResult:
    download_mbps: float
    upload_mbps: float
    ping_ms: float


@dataclass
class LogEntry:
    """One line from the system journal or the dnsmasq log."""

    timestamp: str
    level: str  # error, warn, info or debug
    message: str


@dataclass
class TrafficCounter:
    """Connection-tracking byte and packet totals for one source address."""

    ip: str
    bytes_sent: int = 0
    bytes_recv: int = 0
    packets_sent: int = 0
    packets_recv: int = 0


@dataclass
class BandwidthStat:
    ip: str
    mac: Optional[str]
    name: str
    bytes_sent: int
    bytes_recv: int
    packets_sent: int = 0
    packets_recv: int = 0

    @property
    def total_bytes(self) -> int:
        return self.bytes_sent + self.bytes_recv
