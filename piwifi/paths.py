"""
PiWifi Path Configuration.

Centralized path management for runtime data and the system files the router
owns. Runtime data (aliases, saved network config, logs) is stored outside the
source tree under a data root; system files live at fixed paths that other
services (dnsmasq, iptables-persistent) read.

Directory structure with PIWIFI_ROOT=/var/lib/piwifi:
    /var/lib/piwifi/config/       - Device aliases and saved network config
    /var/lib/piwifi/logs/         - Log files

Environment variables:
    PIWIFI_ROOT            - Base directory for runtime data (default: ~/.local/share/piwifi)
    PIWIFI_DNSMASQ_CONF    - dnsmasq configuration file
    PIWIFI_STATIC_HOSTS    - dnsmasq static lease file
    PIWIFI_LEASE_FILE      - dnsmasq lease database
    PIWIFI_RULES_FILE      - Saved iptables ruleset
    PIWIFI_DNSMASQ_LOG     - dnsmasq log file (when log-facility is enabled)
"""

import os
from pathlib import Path

APP_NAME = "piwifi"

# Get root directory from environment or use default
_root_override = os.environ.get("PIWIFI_ROOT")
if _root_override:
    ROOT_DIR = Path(_root_override)
else:
    _xdg_data_home = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    ROOT_DIR = _xdg_data_home / APP_NAME

CONFIG_DIR = ROOT_DIR / "config"
LOGS_DIR = ROOT_DIR / "logs"

# Runtime data files
DEVICE_ALIASES_FILE = CONFIG_DIR / "devices.json"
NETWORK_CONFIG_FILE = CONFIG_DIR / "network-config.json"

# System files
DNSMASQ_CONF_FILE = Path(os.environ.get("PIWIFI_DNSMASQ_CONF", "/etc/dnsmasq.d/piwifi.conf"))
STATIC_HOSTS_FILE = Path(os.environ.get("PIWIFI_STATIC_HOSTS", "/etc/dnsmasq.d/static_hosts.conf"))
DNSMASQ_LEASE_FILE = Path(os.environ.get("PIWIFI_LEASE_FILE", "/var/lib/dnsmasq/dnsmasq.leases"))
IPTABLES_RULES_FILE = Path(os.environ.get("PIWIFI_RULES_FILE", "/etc/iptables/rules.v4"))
DNSMASQ_LOG_FILE = Path(os.environ.get("PIWIFI_DNSMASQ_LOG", "/var/log/dnsmasq.log"))

# Kernel state read for status reporting
IP_FORWARD_FILE = Path("/proc/sys/net/ipv4/ip_forward")
THERMAL_ZONE_FILE = Path("/sys/class/thermal/thermal_zone0/temp")
CONNTRACK_FILE = Path("/proc/net/nf_conntrack")

_ALL_DIRS = [
    CONFIG_DIR,
    LOGS_DIR,
]


def ensure_directories() -> None:
    """Create all required directories if they don't exist."""
    for dir_path in _ALL_DIRS:
        dir_path.mkdir(parents=True, exist_ok=True)


def get_log_file_path(filename: str = "piwifi.log") -> Path:
    """Get the full path for a log file."""
    return LOGS_DIR / filename
