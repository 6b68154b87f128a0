"""
Network diagnostics: ping, DNS lookup, traceroute, interface listing, ARP
neighbours, a throughput test, and the log and traffic readers behind the
status pages.

The slow tools run under a wall-clock bound; exceeding it raises
CommandTimeoutError instead of hanging the caller.
"""

import logging
from pathlib import Path
from typing import List, Optional

from .. import const
from ..errors import CommandTimeoutError, ConfigIOError, ExternalToolError, ValidationError
from ..paths import CONNTRACK_FILE, DNSMASQ_LOG_FILE
from ..utils.files import read_text
from .executor import CommandExecutor
from .models import (
    ArpEntry,
    DnsResult,
    InterfaceInfo,
    LogEntry,
    PingResult,
    RouteResult,
    SpeedTestResult,
    TrafficCounter,
    parse_ipv4,
)
from .parsers import (
    parse_arp,
    parse_conntrack,
    parse_dig_short,
    parse_dnsmasq_log_line,
    parse_ip_addr,
    parse_ip_neigh,
    parse_journal_line,
    parse_ping,
    parse_speedtest,
    parse_traceroute,
)

logger = logging.getLogger(__name__)

_FORBIDDEN_CHARS = set(";|&$`'\"<>\n\r\t ")


def sanitize_target(target: str) -> str:
    """Validate a host name or address passed to a diagnostic tool."""
    target = target.strip()
    if not 1 <= len(target) <= 255 or target.startswith("-") or _FORBIDDEN_CHARS & set(target):
        raise ValidationError(f"Invalid host: {target!r}")
    return target


def clamp_log_lines(lines: int) -> int:
    return max(1, min(const.LOG_LINES_MAX, lines))


class DiagnosticsRunner:
    """Runs diagnostic tools through the command executor."""

    def __init__(
        self,
        executor: CommandExecutor,
        dnsmasq_log_file: Path = DNSMASQ_LOG_FILE,
        conntrack_file: Path = CONNTRACK_FILE,
    ):
        self.executor = executor
        self.dnsmasq_log_file = Path(dnsmasq_log_file)
        self.conntrack_file = Path(conntrack_file)

    async def ping(self, host: str) -> PingResult:
        host = sanitize_target(host)
        # ping exits non-zero for unreachable hosts; the summary is still parsed
        result = await self.executor.run(
            "ping", ["-c", str(const.PING_COUNT), "-W", "5", host], check=False, timeout=const.PING_TIMEOUT
        )
        ping = parse_ping(host, result.stdout)
        logger.debug(f"Ping {host}: {ping.packets_received}/{ping.packets_sent} received")
        return ping

    async def dns_lookup(self, domain: str, server: str = const.DNS_LOOKUP_SERVER) -> DnsResult:
        domain = sanitize_target(domain)
        parse_ipv4(server, "DNS server")
        result = await self.executor.run("dig", ["+short", domain, f"@{server}"], timeout=const.DNS_LOOKUP_TIMEOUT)
        return DnsResult(domain=domain, server=server, addresses=parse_dig_short(result.stdout))

    async def traceroute(self, host: str) -> RouteResult:
        host = sanitize_target(host)
        result = await self.executor.run(
            "traceroute", ["-n", "-m", str(const.TRACEROUTE_MAX_HOPS), host], timeout=const.TRACEROUTE_TIMEOUT
        )
        return parse_traceroute(host, result.stdout)

    async def interfaces(self) -> List[InterfaceInfo]:
        result = await self.executor.run("ip", ["addr", "show"])
        return parse_ip_addr(result.stdout)

    async def arp_table(self) -> List[ArpEntry]:
        """Neighbour table from ``ip neigh``, falling back to net-tools ``arp``.

        Raises:
            ExternalToolError: neither tool could be run
        """
        try:
            result = await self.executor.run("ip", ["-4", "neigh", "show"])
            return parse_ip_neigh(result.stdout)
        except ExternalToolError as e:
            logger.debug(f"ip neigh unavailable, trying arp: {e}")
        result = await self.executor.run("arp", ["-an"], check=False)
        return parse_arp(result.stdout)

    async def speed_test(self) -> SpeedTestResult:
        """Measure uplink throughput with speedtest-cli.

        Raises:
            CommandTimeoutError: the test exceeded its time bound
            ExternalToolError: the tool is missing, failed or printed nothing usable
        """
        last_error: ExternalToolError = ExternalToolError("speedtest-cli", None, message="No speed test tool available")
        for program in ("speedtest-cli", "speedtest"):
            try:
                result = await self.executor.run(program, ["--simple"], timeout=const.SPEEDTEST_TIMEOUT)
            except CommandTimeoutError:
                raise
            except ExternalToolError as e:
                logger.debug(f"{program} unavailable: {e}")
                last_error = e
                continue
            parsed = parse_speedtest(result.stdout)
            if parsed is None:
                raise ExternalToolError(program, result.returncode, message=f"Unrecognised {program} output")
            logger.info(
                f"Speed test: {parsed.download_mbps:.1f} Mbit/s down, {parsed.upload_mbps:.1f} Mbit/s up, "
                f"{parsed.ping_ms:.1f} ms"
            )
            return parsed
        raise last_error

    # =========================================================================
    # Logs and traffic
    # =========================================================================

    async def system_logs(
        self, lines: int = const.LOG_LINES_DEFAULT, filter_text: Optional[str] = None
    ) -> List[LogEntry]:
        """Tail of the system journal, newest first. Empty when journalctl fails."""
        lines = clamp_log_lines(lines)
        try:
            result = await self.executor.run(
                "journalctl", ["-n", str(lines), "--no-pager", "-o", "short-iso"], timeout=const.LOG_READ_TIMEOUT
            )
        except ExternalToolError as e:
            logger.warning(f"Could not read the system journal: {e}")
            return []
        entries = [parse_journal_line(line, filter_text) for line in result.stdout.splitlines()]
        return [entry for entry in reversed(entries) if entry is not None]

    def dnsmasq_logs(self, lines: int = const.LOG_LINES_DEFAULT, filter_text: Optional[str] = None) -> List[LogEntry]:
        """Last ``lines`` lines of the dnsmasq log, newest first.

        The file only exists when dnsmasq was configured with ``log-facility``;
        a missing or unreadable file yields an empty list.
        """
        lines = clamp_log_lines(lines)
        try:
            text = read_text(self.dnsmasq_log_file, missing_ok=True)
        except ConfigIOError as e:
            logger.warning(f"Could not read the dnsmasq log: {e}")
            return []
        if text is None:
            return []
        entries = [parse_dnsmasq_log_line(line, filter_text) for line in text.splitlines()[-lines:]]
        return [entry for entry in reversed(entries) if entry is not None]

    def traffic_counters(self) -> List[TrafficCounter]:
        """Per-address byte and packet totals from the connection tracking table."""
        try:
            text = read_text(self.conntrack_file, missing_ok=True)
        except ConfigIOError as e:
            logger.warning(f"Could not read connection tracking table: {e}")
            return []
        if text is None:
            logger.debug(f"{self.conntrack_file} not present, no traffic counters")
            return []
        return parse_conntrack(text)
