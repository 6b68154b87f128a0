"""
dnsmasq configuration management.

DhcpConfigManager renders the DHCP/DNS settings into the dnsmasq drop-in file,
parses them back, tracks static leases and drives the service lifecycle.
Every write is followed by a service restart so the file on disk and the
running daemon never drift apart.
"""

import logging
import re
import time
from pathlib import Path
from typing import List, Optional, Tuple

from .. import const
from ..core.devices import normalize_mac
from ..errors import ValidationError
from ..paths import DNSMASQ_CONF_FILE, DNSMASQ_LEASE_FILE, STATIC_HOSTS_FILE
from ..utils.files import read_text
from .executor import CommandExecutor
from .models import DhcpConfig, DhcpStatus, Lease, NetworkConfig, parse_ipv4
from .parsers import parse_leases

logger = logging.getLogger(__name__)

SERVICE_NAME = "dnsmasq"
HEADER = "# PiWifi DHCP Configuration"

_LEASE_UNITS = (("d", 86400), ("h", 3600), ("m", 60))
_LEASE_RE = re.compile(r"^(\d+)([smhd]?)$")
_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]*[A-Za-z0-9])?$")


def format_lease_time(seconds: int) -> str:
    """Render seconds with the largest unit that divides them exactly.

    3600 -> "1h", 5400 -> "90m", 90 -> "90s". The value always parses back
    to the same number of seconds.
    """
    for suffix, size in _LEASE_UNITS:
        if seconds % size == 0:
            return f"{seconds // size}{suffix}"
    return f"{seconds}s"


def parse_lease_time(value: str) -> int:
    """Parse a dnsmasq lease duration ("45s", "30m", "12h", "1d" or bare seconds)."""
    match = _LEASE_RE.match(value.strip().lower())
    if not match:
        raise ValidationError(f"Unrecognised lease time: {value!r}")
    number, suffix = int(match.group(1)), match.group(2)
    multiplier = dict(_LEASE_UNITS).get(suffix, 1)
    return number * multiplier


def validate_hostname(hostname: str) -> None:
    if not hostname or len(hostname) > const.HOSTNAME_MAX_LENGTH or not _HOSTNAME_RE.match(hostname):
        raise ValidationError(f"Invalid hostname: {hostname!r}")


def render(config: DhcpConfig, network: Optional[NetworkConfig] = None) -> str:
    """Render the dnsmasq drop-in for ``config``.

    Output is deterministic. With ``network`` the interface binding, gateway
    and vendor options for the LAN are included as well.
    """
    lines = [HEADER]
    if network is not None:
        lines += [
            f"interface={const.LAN_INTERFACE}",
            "bind-interfaces",
            f"listen-address={network.lan_ip}",
        ]
    lines.append(f"dhcp-range={config.dhcp_start},{config.dhcp_end},{format_lease_time(config.lease_time)}")
    if network is not None:
        lines += [
            f"dhcp-lease-max={const.DHCP_LEASE_MAX}",
            f"dhcp-option=option:router,{network.lan_ip}",
            f"dhcp-option=option:dns-server,{network.lan_ip}",
        ]
        if network.dhcp_vendor_class:
            lines.append(f"dhcp-option=60,{network.dhcp_vendor_class}")
        if network.dhcp_client_id:
            lines.append(f"dhcp-option=61,{network.dhcp_client_id}")
    lines.extend(f"server={server}" for server in config.dns_servers)
    lines.append(f"domain={config.local_domain}")
    if network is not None:
        lines += [
            f"local=/{config.local_domain}/",
            "expand-hosts",
            f"cache-size={const.DNS_CACHE_SIZE}",
            "no-hosts",
            "no-resolv",
        ]
    return "\n".join(lines) + "\n"


def parse(content: str) -> Optional[DhcpConfig]:
    """Parse a rendered drop-in. Returns None when no dhcp-range is present.

    Raises:
        ValidationError: a dhcp-range exists but the settings are malformed
    """
    pool: Optional[Tuple[str, str, int]] = None
    servers: List[str] = []
    domain: Optional[str] = None

    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        if key == "dhcp-range":
            parts = [p.strip() for p in value.split(",")]
            if len(parts) < 3:
                raise ValidationError(f"Malformed dhcp-range: {line!r}")
            pool = (parts[0], parts[1], parse_lease_time(parts[-1]))
        elif key == "server" and not value.startswith("/"):
            servers.append(value.strip())
        elif key in ("domain", "local-domain"):
            domain = value.split(",", 1)[0].strip()

    if pool is None:
        return None
    if domain is None:
        raise ValidationError("DHCP configuration has no domain directive")

    config = DhcpConfig(
        dhcp_start=pool[0],
        dhcp_end=pool[1],
        lease_time=pool[2],
        dns_servers=tuple(servers),
        local_domain=domain,
    )
    config.validate()
    return config


class DhcpConfigManager:
    """Reads and writes the dnsmasq drop-in and controls the dnsmasq service."""

    def __init__(
        self,
        executor: CommandExecutor,
        config_file: Path = DNSMASQ_CONF_FILE,
        lease_file: Path = DNSMASQ_LEASE_FILE,
        static_hosts_file: Path = STATIC_HOSTS_FILE,
    ):
        self.executor = executor
        self.config_file = Path(config_file)
        self.lease_file = Path(lease_file)
        self.static_hosts_file = Path(static_hosts_file)

    @staticmethod
    def validate(config: DhcpConfig) -> None:
        config.validate()

    async def write(self, config: DhcpConfig, network: Optional[NetworkConfig] = None) -> None:
        """Validate, write the drop-in, then restart dnsmasq."""
        config.validate()
        if network is not None:
            network.validate()
        await self.executor.write_file(self.config_file, render(config, network))
        logger.info(f"DHCP config written to {self.config_file}")
        await self.restart()

    def read(self) -> DhcpStatus:
        """Parse the drop-in back and count active leases.

        Raises:
            ConfigIOError: the drop-in is missing or unreadable
            ValidationError: the drop-in is malformed
        """
        config = parse(read_text(self.config_file))
        return DhcpStatus(enabled=config is not None, config=config, active_leases=self.active_lease_count())

    def leases(self) -> List[Lease]:
        """Current lease database. A missing database means no leases yet."""
        text = read_text(self.lease_file, missing_ok=True)
        if text is None:
            logger.debug(f"No lease database at {self.lease_file}")
            return []
        return parse_leases(text)

    def active_lease_count(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return sum(1 for lease in self.leases() if lease.expires == 0 or lease.expires > now)

    # =========================================================================
    # Service lifecycle
    # =========================================================================

    async def restart(self) -> None:
        await self.executor.run("systemctl", ["restart", SERVICE_NAME], privileged=True)
        logger.info("dnsmasq restarted")

    async def stop(self) -> None:
        await self.executor.run("systemctl", ["stop", SERVICE_NAME], privileged=True)
        logger.info("dnsmasq stopped")

    async def start(self, network: NetworkConfig, lease_time: int = const.DEFAULT_LEASE_TIME) -> DhcpConfig:
        """Render the full LAN configuration, enable dnsmasq at boot and (re)start it."""
        config = DhcpConfig.from_network_config(network, lease_time)
        await self.write(config, network)
        await self.executor.run("systemctl", ["enable", SERVICE_NAME], privileged=True)
        logger.info(f"DHCP serving {config.dhcp_start}-{config.dhcp_end} on {const.LAN_INTERFACE}")
        return config

    # =========================================================================
    # Static leases
    # =========================================================================

    def static_leases(self) -> List[Tuple[str, str, str]]:
        """Return ``(mac, ip, hostname)`` for each static lease."""
        text = read_text(self.static_hosts_file, missing_ok=True) or ""
        entries = []
        for line in text.splitlines():
            key, sep, value = line.strip().partition("=")
            if key != "dhcp-host" or not sep:
                continue
            parts = value.split(",")
            if len(parts) < 3:
                continue
            entries.append((parts[0].upper(), parts[1], parts[2]))
        return entries

    async def set_static_lease(self, mac: str, ip: str, hostname: str) -> None:
        """Pin ``ip`` and ``hostname`` to ``mac``, replacing any prior entry for it."""
        mac = normalize_mac(mac)
        parse_ipv4(ip, "static lease address")
        validate_hostname(hostname)

        existing = read_text(self.static_hosts_file, missing_ok=True) or ""
        kept = []
        for line in existing.splitlines():
            key, _, value = line.strip().partition("=")
            if key == "dhcp-host" and value.split(",", 1)[0].upper() == mac:
                continue
            kept.append(line)
        kept.append(f"dhcp-host={mac},{ip},{hostname}")

        await self.executor.write_file(self.static_hosts_file, "\n".join(kept) + "\n")
        logger.info(f"Static lease set: {mac} -> {ip} ({hostname})")
        await self.restart()
