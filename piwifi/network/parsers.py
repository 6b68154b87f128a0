"""
Parsers for the text output of the networking tools.

All scraping of nmcli, ip, arp, ping, dig, traceroute, speedtest-cli, journalctl,
conntrack, the dnsmasq log and the lease database lives here. Lines that do not
match the expected shape are skipped, never treated as fatal, since tool output
drifts across versions.
"""

import ipaddress
import logging
import re
from typing import Dict, List, Optional

from .models import (
    ArpEntry,
    InterfaceInfo,
    LogEntry,
    Lease,
    PingResult,
    RouteHop,
    RouteResult,
    SpeedTestResult,
    TrafficCounter,
    WifiNetwork,
    WifiStatus,
)

logger = logging.getLogger(__name__)

_IP_LINK_RE = re.compile(r"^\d+:\s+([^:@\s]+)(?:@\S+)?:\s+<[^>]*>(?:.*?\bstate\s+(\S+))?")
_ARP_RE = re.compile(r"\((\d{1,3}(?:\.\d{1,3}){3})\)\s+at\s+([0-9A-Fa-f:]{17})(?:\s+\[\w+\])?(?:\s+on\s+(\S+))?")
_PING_PACKETS_RE = re.compile(r"(\d+)\s+packets transmitted,\s+(\d+)\s+(?:packets\s+)?received")
_PING_LOSS_RE = re.compile(r"([\d.]+)%\s+packet loss")
_PING_RTT_RE = re.compile(r"(?:rtt|round-trip)\s+min/avg/max(?:/\w+)?\s*=\s*([\d.]+)/([\d.]+)/([\d.]+)")
_SPEEDTEST_RE = re.compile(r"^(Ping|Download|Upload):\s+([\d.]+)", re.MULTILINE)
_DNSMASQ_LOG_RE = re.compile(r"^([A-Z][a-z]{2}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2})\s+(\S+\[\d+\]:\s.*)$")


def split_terse(line: str) -> List[str]:
    """Split one line of ``nmcli --terse`` output, honouring ``\\:`` escapes."""
    parts: List[str] = []
    current = []
    escaped = False
    for char in line:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ":":
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def percent_to_dbm(percent: int) -> int:
    """Convert the nmcli 0-100 signal quality to an approximate dBm value."""
    percent = max(0, min(100, percent))
    return percent // 2 - 100


def parse_wifi_scan(output: str) -> List[WifiNetwork]:
    """Parse ``nmcli --terse --fields SSID,BSSID,SIGNAL,SECURITY,ACTIVE device wifi list``.

    Hidden networks are dropped and each SSID is reported once, with its
    strongest access point. Results are sorted strongest first.
    """
    best: Dict[str, WifiNetwork] = {}
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = split_terse(line)
        if len(parts) < 5:
            logger.debug(f"Skipping short scan line: {line!r}")
            continue

        ssid = parts[0].strip()
        if not ssid:
            continue
        signal_str = parts[2].strip()
        if not signal_str.isdigit():
            logger.debug(f"Skipping scan line without signal: {line!r}")
            continue

        security = parts[3].strip()
        network = WifiNetwork(
            ssid=ssid,
            signal=percent_to_dbm(int(signal_str)),
            security="open" if security in ("", "--") else security,
            bssid=parts[1].strip() or None,
            active=parts[4].strip().lower() == "yes",
        )
        existing = best.get(ssid)
        if existing is None:
            best[ssid] = network
        elif network.signal > existing.signal:
            network.active = network.active or existing.active
            best[ssid] = network
        elif network.active:
            existing.active = True

    return sorted(best.values(), key=lambda n: (-n.signal, n.ssid))


def parse_device_show(output: str) -> WifiStatus:
    """Parse ``nmcli --terse device show <iface>`` into a WifiStatus.

    Connected means GENERAL.STATE reports state 100 ("connected"); substrings
    such as "disconnected" or "connecting" do not count.
    """
    connected = False
    ssid = None
    ip = None
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if key == "GENERAL.STATE":
            code = value.split(" ", 1)[0]
            connected = code == "100" or value.endswith("(connected)")
        elif key == "GENERAL.CONNECTION":
            ssid = value if value and value != "--" else None
        elif key.startswith("IP4.ADDRESS") and ip is None and value:
            ip = value.split("/", 1)[0]

    if not connected:
        return WifiStatus(connected=False)
    return WifiStatus(connected=True, ssid=ssid, ip=ip)


def parse_active_signal(output: str) -> Optional[int]:
    """Return the dBm signal of the active network from a wifi list, if any."""
    for network in parse_wifi_scan(output):
        if network.active:
            return network.signal
    return None


def parse_ip_addr(output: str) -> List[InterfaceInfo]:
    """Parse ``ip addr show`` output into one entry per interface."""
    interfaces: List[InterfaceInfo] = []
    current: Optional[InterfaceInfo] = None
    for line in output.splitlines():
        match = _IP_LINK_RE.match(line)
        if match:
            current = InterfaceInfo(name=match.group(1), state=match.group(2) or "UNKNOWN")
            interfaces.append(current)
            continue
        if current is None:
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        if parts[0].startswith("link/") and parts[0] != "link/loopback" and parts[0] != "link/none":
            current.mac = parts[1].upper()
        elif parts[0] in ("inet", "inet6"):
            current.addresses.append(parts[1])
    return interfaces


def parse_inet_addresses(output: str) -> List[str]:
    """Return the IPv4 CIDR addresses listed in ``ip -4 addr show`` output."""
    addresses = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "inet":
            addresses.append(parts[1])
    return addresses


def parse_ip_neigh(output: str) -> List[ArpEntry]:
    """Parse ``ip -4 neigh show``; entries without a link-layer address are skipped."""
    entries = []
    for line in output.splitlines():
        parts = line.split()
        if "lladdr" not in parts:
            continue
        index = parts.index("lladdr")
        if index + 1 >= len(parts) or "FAILED" in parts:
            continue
        interface = parts[parts.index("dev") + 1] if "dev" in parts[:-1] else None
        entries.append(ArpEntry(ip=parts[0], mac=parts[index + 1].upper(), interface=interface))
    return entries


def parse_arp(output: str) -> List[ArpEntry]:
    """Parse ``arp -an``; incomplete entries are skipped."""
    entries = []
    for line in output.splitlines():
        match = _ARP_RE.search(line)
        if not match:
            continue
        entries.append(ArpEntry(ip=match.group(1), mac=match.group(2).upper(), interface=match.group(3)))
    return entries


def parse_leases(text: str) -> List[Lease]:
    """Parse the dnsmasq lease database.

    Each line reads ``<expiry> <mac> <ip> <hostname> [client-id]`` where ``*``
    marks an unknown hostname or client id.
    """
    leases = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 4:
            continue
        try:
            expires = int(parts[0])
        except ValueError:
            logger.debug(f"Skipping lease line with bad expiry: {line!r}")
            continue
        hostname = parts[3] if parts[3] != "*" else None
        client_id = parts[4] if len(parts) > 4 and parts[4] != "*" else None
        leases.append(Lease(expires=expires, mac=parts[1].upper(), ip=parts[2], hostname=hostname, client_id=client_id))
    return leases


def parse_ping(host: str, output: str) -> PingResult:
    """Parse iputils or busybox ping summary lines."""
    result = PingResult(host=host, reachable=False)

    packets = _PING_PACKETS_RE.search(output)
    if packets:
        result.packets_sent = int(packets.group(1))
        result.packets_received = int(packets.group(2))
        result.reachable = result.packets_received > 0

    loss = _PING_LOSS_RE.search(output)
    if loss:
        result.packet_loss = float(loss.group(1))
    elif result.packets_sent:
        result.packet_loss = 100.0 * (result.packets_sent - result.packets_received) / result.packets_sent

    rtt = _PING_RTT_RE.search(output)
    if rtt:
        result.rtt_min_ms, result.rtt_avg_ms, result.rtt_max_ms = (float(v) for v in rtt.groups())

    return result


def parse_dig_short(output: str) -> List[str]:
    """Keep only address lines from ``dig +short``; CNAME targets are dropped."""
    addresses = []
    for line in output.splitlines():
        value = line.strip()
        try:
            ipaddress.ip_address(value)
        except ValueError:
            continue
        addresses.append(value)
    return addresses


def parse_traceroute(host: str, output: str) -> RouteResult:
    """Parse ``traceroute -n`` hop lines; the header and odd lines are skipped."""
    hops = []
    for line in output.splitlines():
        parts = line.split()
        if not parts or not parts[0].isdigit():
            continue
        number = int(parts[0])
        hop_host = parts[1] if len(parts) > 1 and parts[1] != "*" else None
        rtt = None
        for index in range(2, len(parts) - 1):
            if parts[index + 1] == "ms":
                try:
                    rtt = float(parts[index])
                except ValueError:
                    continue
                break
        hops.append(RouteHop(number=number, host=hop_host, rtt_ms=rtt))
    return RouteResult(host=host, hops=hops)


def parse_speedtest(output: str) -> Optional[SpeedTestResult]:
    """Parse ``speedtest-cli --simple`` output. Returns None if incomplete."""
    values = {name.lower(): float(value) for name, value in _SPEEDTEST_RE.findall(output)}
    if not {"ping", "download", "upload"} <= values.keys():
        return None
    return SpeedTestResult(download_mbps=values["download"], upload_mbps=values["upload"], ping_ms=values["ping"])


# =============================================================================
# Logs and connection tracking
# =============================================================================


def classify_log_level(message: str) -> str:
    """Guess a level from keywords in a free-form journal message."""
    if "ERROR" in message or "error" in message:
        return "error"
    if "WARN" in message or "warning" in message:
        return "warn"
    if "DEBUG" in message:
        return "debug"
    return "info"


def _matches(message: str, filter_text: Optional[str]) -> bool:
    return not filter_text or filter_text.lower() in message.lower()


def parse_journal_line(line: str, filter_text: Optional[str] = None) -> Optional[LogEntry]:
    """Parse one ``journalctl -o short-iso`` line: ``<timestamp> <host> <unit>[pid]: <text>``.

    The message keeps the unit tag. Returns None for journal markers, short
    lines and lines not containing ``filter_text`` (case-insensitive).
    """
    if line.startswith("-- "):
        return None
    parts = line.split(maxsplit=2)
    if len(parts) < 3:
        return None
    message = parts[2]
    if not _matches(message, filter_text):
        return None
    return LogEntry(timestamp=parts[0], level=classify_log_level(message), message=message)


def parse_dnsmasq_log_line(line: str, filter_text: Optional[str] = None) -> Optional[LogEntry]:
    """Parse one dnsmasq ``log-facility`` line: ``Mon DD HH:MM:SS dnsmasq[pid]: <text>``."""
    match = _DNSMASQ_LOG_RE.match(line)
    if not match:
        return None
    timestamp = " ".join(match.group(1).split())
    message = match.group(2)
    if not _matches(message, filter_text):
        return None
    if "DHCP" in message:
        level = "info"
    elif "error" in message or "ERROR" in message:
        level = "error"
    elif "query" in message or "reply" in message:
        level = "debug"
    else:
        level = "info"
    return LogEntry(timestamp=timestamp, level=level, message=message)


def parse_conntrack(text: str) -> List[TrafficCounter]:
    """Sum ``/proc/net/nf_conntrack`` counters per originating address.

    The first ``src=``/``bytes=``/``packets=`` triple of a line is the original
    direction (sent by the source), the second the reply direction. Lines
    without byte counters (accounting disabled) are skipped.
    """
    totals: Dict[str, TrafficCounter] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 5:
            continue
        src = None
        byte_counts: List[int] = []
        packet_counts: List[int] = []
        for part in parts:
            key, sep, value = part.partition("=")
            if not sep:
                continue
            if key == "src" and src is None:
                src = value
            elif key == "bytes" and value.isdigit():
                byte_counts.append(int(value))
            elif key == "packets" and value.isdigit():
                packet_counts.append(int(value))
        if src is None or not byte_counts or sum(byte_counts) == 0:
            continue

        counter = totals.setdefault(src, TrafficCounter(ip=src))
        counter.bytes_sent += byte_counts[0]
        counter.bytes_recv += byte_counts[1] if len(byte_counts) > 1 else 0
        if packet_counts:
            counter.packets_sent += packet_counts[0]
            counter.packets_recv += packet_counts[1] if len(packet_counts) > 1 else 0
    return list(totals.values())
