"""
Network control plane for the PiWifi router: command execution, firewall and
NAT orchestration, dnsmasq management and the WiFi uplink.
"""

from .dhcp import DhcpConfigManager
from .executor import CommandExecutor, CommandResult
from .models import DhcpConfig, DhcpStatus, FirewallRule, NetworkConfig, WifiCredentials, WifiNetwork, WifiStatus
from .monitor import ConnectivityMonitor, CredentialStore, LinkState
from .orchestrator import NetworkOrchestrator
from .wifi import WifiManager

__all__ = [
    "CommandExecutor",
    "CommandResult",
    "ConnectivityMonitor",
    "CredentialStore",
    "DhcpConfig",
    "DhcpConfigManager",
    "DhcpStatus",
    "FirewallRule",
    "LinkState",
    "NetworkConfig",
    "NetworkOrchestrator",
    "WifiCredentials",
    "WifiManager",
    "WifiNetwork",
    "WifiStatus",
]
