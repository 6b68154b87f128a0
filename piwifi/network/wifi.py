"""
WiFi uplink management through NetworkManager's nmcli.
"""

import logging
from typing import List

from .. import const
from ..errors import ExternalToolError
from .executor import CommandExecutor
from .models import WifiCredentials, WifiNetwork, WifiStatus
from .parsers import parse_active_signal, parse_device_show, parse_wifi_scan

logger = logging.getLogger(__name__)

SCAN_FIELDS = "SSID,BSSID,SIGNAL,SECURITY,ACTIVE"


class WifiManager:
    """Scans, joins and leaves networks on the uplink interface."""

    def __init__(self, executor: CommandExecutor, interface: str = const.UPLINK_INTERFACE):
        self.executor = executor
        self.interface = interface

    async def _list_networks(self, rescan: str = "auto") -> str:
        result = await self.executor.run(
            "nmcli",
            [
                "--terse", "--fields", SCAN_FIELDS,
                "device", "wifi", "list", "ifname", self.interface, "--rescan", rescan,
            ],
        )
        return result.stdout

    async def scan(self) -> List[WifiNetwork]:
        """Scan for networks, strongest first, one entry per SSID."""
        # Rescan may be refused without privileges; cached results are still useful
        rescan = await self.executor.run(
            "nmcli", ["device", "wifi", "rescan", "ifname", self.interface], privileged=True, check=False
        )
        if not rescan.ok:
            logger.debug(f"WiFi rescan not available (using cached results): {rescan.stderr.strip()}")

        networks = parse_wifi_scan(await self._list_networks(rescan="no"))
        logger.debug(f"WiFi scan found {len(networks)} networks")
        return networks

    async def connect(self, credentials: WifiCredentials) -> None:
        """Associate with ``credentials.ssid``, replacing any saved profile of that name.

        Raises:
            ValidationError: credentials are malformed
            ExternalToolError: nmcli could not associate
        """
        credentials.validate()
        ssid = credentials.ssid

        # Stale profiles keep old passphrases around; drop it before reconnecting
        await self.executor.run("nmcli", ["connection", "delete", "id", ssid], privileged=True, check=False)

        args = ["device", "wifi", "connect", ssid]
        if credentials.passphrase:
            args += ["password", credentials.passphrase]
        args += ["ifname", self.interface]

        logger.info(f"Connecting {self.interface} to '{ssid}'")
        await self.executor.run("nmcli", args, privileged=True, redact=(credentials.passphrase,))
        logger.info(f"Connected to '{ssid}'")

    async def status(self) -> WifiStatus:
        """Current association. Signal is looked up only while connected."""
        result = await self.executor.run("nmcli", ["--terse", "device", "show", self.interface])
        status = parse_device_show(result.stdout)
        if status.connected:
            try:
                status.signal = parse_active_signal(await self._list_networks(rescan="no"))
            except ExternalToolError as e:
                logger.debug(f"Signal lookup failed: {e}")
        return status

    async def disconnect(self) -> None:
        await self.executor.run("nmcli", ["device", "disconnect", self.interface], privileged=True)
        logger.info(f"Disconnected {self.interface}")
