#!/usr/bin/env python3
"""
PiWifi router entry point.

Without flags, applies the saved network configuration (interface address,
firewall posture, NAT and DHCP) and prints a short status report. With
``--web`` it serves the HTTP API and runs the WiFi connectivity monitor
until interrupted.
"""

import argparse
import asyncio
import logging
import sys

from . import __version__
from .const import DEFAULT_WEB_HOST, DEFAULT_WEB_PORT
from .errors import PiWifiError
from .paths import ensure_directories, get_log_file_path
from .router import RouterServices
from .utils.logging_utils import setup_logging

logger = logging.getLogger(__name__)


async def run_setup(services: RouterServices) -> None:
    """Apply the active configuration and log what the router looks like afterwards."""
    config = services.network_config
    logger.info(f"Configuring LAN {config.lan_ip}/{config.lan_prefix} (NAT {'on' if config.nat_enabled else 'off'})")
    await services.apply_network_config(config)

    networks = await services.wifi.scan()
    logger.info(f"Found {len(networks)} WiFi networks")
    for network in networks[:5]:
        logger.info(f"  {network.ssid:32} {network.signal:4d} dBm  {network.security}")

    lan = await services.orchestrator.lan_status()
    logger.info(f"LAN {lan.interface}: {', '.join(lan.addresses) or 'no address'}")
    logger.info(f"IP forwarding: {'enabled' if lan.ip_forwarding else 'disabled'}")

    logger.debug(f"Firewall rules:\n{await services.orchestrator.show_rules()}")
    logger.info("Router setup complete")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="PiWifi WiFi-to-Ethernet router")
    parser.add_argument("--web", action="store_true", help="Serve the HTTP API and run the WiFi monitor")
    parser.add_argument("--host", default=DEFAULT_WEB_HOST, help="Web server host")
    parser.add_argument("--port", type=int, default=DEFAULT_WEB_PORT, help="Web server port")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args()

    ensure_directories()
    setup_logging(args.debug, get_log_file_path())
    logger.info(f"Starting PiWifi {__version__}")

    services = RouterServices()

    if args.web:
        from .web.api_server import run_server

        logger.info(f"Web interface available at http://{args.host}:{args.port}")
        run_server(host=args.host, port=args.port, services=services)
        return

    try:
        asyncio.run(run_setup(services))
    except PiWifiError as e:
        logger.error(f"Router setup failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
