"""
Router service container.

RouterServices is built once at startup and owns the shared state (credential
cell, connection history, device registry, active network config) together
with the managers that act on the system. The web layer and the CLI both work
through it; nothing in the package keeps module-level state.
"""

import dataclasses
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__, const
from .core.devices import Device, DeviceRegistry
from .core.history import ConnectionEntry, ConnectionHistory
from .errors import ConfigIOError, ExternalToolError, ValidationError
from .network.diagnostics import DiagnosticsRunner
from .network.dhcp import DhcpConfigManager
from .network.executor import CommandExecutor
from .network.models import (
    BandwidthStat,
    DhcpConfig,
    FirewallRule,
    Lease,
    NetworkConfig,
    WifiCredentials,
)
from .network.monitor import ConnectivityMonitor, CredentialStore
from .network.orchestrator import NetworkOrchestrator
from .network.wifi import WifiManager
from .paths import DEVICE_ALIASES_FILE, IPTABLES_RULES_FILE, NETWORK_CONFIG_FILE
from .utils.files import atomic_write_text, read_text

logger = logging.getLogger(__name__)

BACKUP_KEYS = ("wifi_history", "dhcp_config", "network_config")


class RouterServices:
    """Owns the router's shared state and the managers that act on the system."""

    def __init__(
        self,
        executor: Optional[CommandExecutor] = None,
        config_file: Path = NETWORK_CONFIG_FILE,
        alias_file: Path = DEVICE_ALIASES_FILE,
        rules_file: Path = IPTABLES_RULES_FILE,
        dhcp: Optional[DhcpConfigManager] = None,
        diagnostics: Optional[DiagnosticsRunner] = None,
    ):
        self.executor = executor or CommandExecutor()
        self.config_file = Path(config_file)

        self.orchestrator = NetworkOrchestrator(self.executor, rules_file=rules_file)
        self.dhcp = dhcp or DhcpConfigManager(self.executor)
        self.wifi = WifiManager(self.executor)
        self.diagnostics = diagnostics or DiagnosticsRunner(self.executor)

        self.history = ConnectionHistory()
        self.devices = DeviceRegistry(alias_file)
        self.credentials = CredentialStore()
        self.monitor = ConnectivityMonitor(self.wifi, self.credentials, self.history)

        self.network_config = self._load_config()

    def _load_config(self) -> NetworkConfig:
        """Load the saved network config, falling back to defaults."""
        try:
            text = read_text(self.config_file, missing_ok=True)
            if text is not None:
                config = NetworkConfig.from_dict(json.loads(text))
                config.validate()
                return config
        except (ConfigIOError, ValidationError, ValueError, TypeError) as e:
            logger.warning(f"Failed to load network config: {e}, using defaults")
        return NetworkConfig()

    def _save_config(self) -> None:
        atomic_write_text(self.config_file, json.dumps(self.network_config.to_dict(), indent=2) + "\n")

    def load_state(self) -> None:
        """Load persisted device aliases. A corrupt file is logged and ignored."""
        try:
            self.devices.load_from_file()
        except ConfigIOError as e:
            logger.warning(f"Failed to load device aliases: {e}")

    async def start(self) -> None:
        self.load_state()
        self.monitor.start()

    async def stop(self) -> None:
        await self.monitor.stop()

    # =========================================================================
    # WiFi
    # =========================================================================

    async def connect_wifi(self, ssid: str, passphrase: str = "") -> None:
        """Join a network and store the credentials for automatic reconnection.

        Raises:
            ValidationError: malformed SSID or passphrase
            ExternalToolError: association failed; the attempt is still logged
        """
        credentials = WifiCredentials(ssid=ssid, passphrase=passphrase)
        credentials.validate()
        try:
            await self.wifi.connect(credentials)
        except ExternalToolError as e:
            self.history.record_failure(ssid, str(e))
            raise
        self.credentials.set(credentials)
        self.history.record_success(ssid)

    async def disconnect_wifi(self) -> None:
        """Leave the uplink. Stored credentials are dropped so the monitor stays idle."""
        self.credentials.clear()
        await self.wifi.disconnect()

    # =========================================================================
    # Network, firewall and DHCP
    # =========================================================================

    async def apply_network_config(self, config: NetworkConfig) -> None:
        """Reset the router to ``config``: posture, NAT, DHCP, saved ruleset.

        The config becomes active and is saved only once every step succeeded.
        """
        config.validate()
        if config.nat_enabled:
            await self.orchestrator.enable_nat(config)
        else:
            await self.orchestrator.apply_base_network_posture(config)
            await self.orchestrator.save_rules()
        await self.dhcp.start(config)

        if config.dhcp_vendor_class:
            logger.info(f"DHCP option 60 (vendor class): {config.dhcp_vendor_class}")
        if config.dhcp_client_id:
            logger.info(f"DHCP option 61 (client id): {config.dhcp_client_id}")

        self.network_config = config
        self._save_config()
        logger.info("Network configuration applied")

    async def apply_firewall_rule(self, rule: FirewallRule) -> None:
        await self.orchestrator.apply_rule(rule)

    async def set_dhcp_config(self, config: DhcpConfig) -> None:
        """Write new DHCP settings and carry the pool and DNS fields into the active config.

        Raises:
            ValidationError: malformed settings, or a pool outside the LAN subnet
        """
        config.validate()
        synced = dataclasses.replace(
            self.network_config,
            dhcp_start=config.dhcp_start,
            dhcp_end=config.dhcp_end,
            dns_upstream=tuple(config.dns_servers),
            dns_domain=config.local_domain,
        )
        synced.validate()
        await self.dhcp.write(config, synced)
        self.network_config = synced
        self._save_config()

    async def set_static_lease(self, mac: str, ip: str, hostname: str) -> Device:
        await self.dhcp.set_static_lease(mac, ip, hostname)
        return self.devices.mark_static(mac, ip, hostname)

    # =========================================================================
    # Devices
    # =========================================================================

    def clients(self) -> List[Lease]:
        return self.dhcp.leases()

    async def refresh_devices(self) -> List[Device]:
        """Merge DHCP leases and ARP neighbours into the registry.

        When no neighbour tool can be run the lease-derived devices are
        still returned.
        """
        self.devices.update_from_leases(self.dhcp.leases())
        try:
            self.devices.update_from_arp(await self.diagnostics.arp_table())
        except ExternalToolError as e:
            logger.warning(f"Neighbour table unavailable, listing leased devices only: {e}")
        return self.devices.all()

    async def bandwidth(self) -> List[BandwidthStat]:
        """Busiest LAN addresses by total bytes, named from the device registry."""
        counters = self.diagnostics.traffic_counters()
        if not counters:
            return []
        await self.refresh_devices()
        by_ip = {device.ip: device for device in self.devices.all() if device.ip}

        stats = []
        for counter in counters:
            device = by_ip.get(counter.ip)
            stats.append(
                BandwidthStat(
                    ip=counter.ip,
                    mac=device.mac if device else None,
                    name=device.display_name if device else counter.ip,
                    bytes_sent=counter.bytes_sent,
                    bytes_recv=counter.bytes_recv,
                    packets_sent=counter.packets_sent,
                    packets_recv=counter.packets_recv,
                )
            )
        stats.sort(key=lambda stat: stat.total_bytes, reverse=True)
        return stats[: const.BANDWIDTH_TOP_N]

    # =========================================================================
    # Backup and restore
    # =========================================================================

    def backup(self) -> Dict[str, Any]:
        """Snapshot of history, DHCP settings and network config as JSON-ready data."""
        try:
            dhcp_config = self.dhcp.read().config
        except (ConfigIOError, ValidationError) as e:
            logger.warning(f"DHCP config not included in backup: {e}")
            dhcp_config = None
        return {
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "wifi_history": [entry.to_dict() for entry in self.history.all()],
            "dhcp_config": dhcp_config.to_dict() if dhcp_config else None,
            "network_config": self.network_config.to_dict(),
        }

    async def restore(self, backup: Dict[str, Any]) -> None:
        """Restore a backup. Everything is validated before anything is written.

        The DHCP settings are written (and dnsmasq restarted) and the network
        config is saved as the active config; the firewall posture is applied
        on the next configure.
        """
        missing = [key for key in BACKUP_KEYS if key not in backup]
        if missing:
            raise ValidationError(f"Backup is missing fields: {', '.join(missing)}")
        try:
            network_config = NetworkConfig.from_dict(backup["network_config"])
            dhcp_config = DhcpConfig.from_dict(backup["dhcp_config"]) if backup["dhcp_config"] else None
            entries = [ConnectionEntry.from_dict(item) for item in backup["wifi_history"]]
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed backup: {e}") from e
        network_config.validate()
        if dhcp_config is not None:
            dhcp_config.validate()

        if dhcp_config is not None:
            await self.dhcp.write(dhcp_config, network_config)
        self.network_config = network_config
        self._save_config()
        self.history.restore(entries)
        logger.warning("Configuration restored from backup")
