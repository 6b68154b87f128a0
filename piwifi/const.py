"""
Global constants for the PiWifi router.

This module contains the interface names, port numbers, timing values and
capacity limits shared across the network, core and web packages.
"""

# Interfaces
LAN_INTERFACE = "eth0"  # Wired interface serving downstream clients
UPLINK_INTERFACE = "wlan0"  # WiFi interface carrying the upstream association

# Management ports opened on the LAN interface by the base posture
SSH_PORT = 22
HTTP_PORT = 80
HTTPS_PORT = 443
WEB_UI_PORT = 8080
MANAGEMENT_PORTS = (SSH_PORT, HTTP_PORT, HTTPS_PORT, WEB_UI_PORT)

# DHCP server side and DNS
DHCP_SERVER_PORT = "67"
DNS_PORT = 53

# Connectivity monitor timing (seconds)
WIFI_POLL_INTERVAL = 30.0
RECONNECT_BACKOFF = (5, 10, 20, 30)

# Connection history
HISTORY_CAPACITY = 100
DEFAULT_FAVORITES_LIMIT = 10

# dnsmasq rendering
DHCP_LEASE_MAX = 250
DNS_CACHE_SIZE = 1000
DEFAULT_LEASE_TIME = 12 * 3600

# Firewall rate limiting and drop logging
RATE_LIMIT = "25/minute"
RATE_LIMIT_BURST = 100
DROP_LOG_PREFIX = "FIREWALL_DROP: "

# Diagnostics wall-clock bounds (seconds)
PING_COUNT = 4
PING_TIMEOUT = 20.0
DNS_LOOKUP_TIMEOUT = 10.0
TRACEROUTE_MAX_HOPS = 10
TRACEROUTE_TIMEOUT = 30.0
SPEEDTEST_TIMEOUT = 60.0
DNS_LOOKUP_SERVER = "8.8.8.8"

# Log and traffic views
LOG_LINES_DEFAULT = 100
LOG_LINES_MAX = 500
LOG_READ_TIMEOUT = 10.0
BANDWIDTH_TOP_N = 20

# Device aliases
ALIAS_MAX_LENGTH = 64
HOSTNAME_MAX_LENGTH = 63

# Wake-on-LAN
WOL_BROADCAST = "255.255.255.255"
WOL_PORT = 9

# Web server
DEFAULT_WEB_HOST = "0.0.0.0"
DEFAULT_WEB_PORT = WEB_UI_PORT
API_TOKEN_ENV = "PIWIFI_API_TOKEN"
