"""
Wake-on-LAN magic packets for LAN devices.
"""

import logging
import socket

from .. import const
from ..core.devices import normalize_mac

logger = logging.getLogger(__name__)


def build_magic_packet(mac: str) -> bytes:
    """Six 0xFF bytes followed by the MAC address repeated sixteen times."""
    mac_bytes = bytes.fromhex(normalize_mac(mac).replace(":", ""))
    return b"\xff" * 6 + mac_bytes * 16


def send_magic_packet(mac: str, broadcast: str = const.WOL_BROADCAST, port: int = const.WOL_PORT) -> None:
    packet = build_magic_packet(mac)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.sendto(packet, (broadcast, port))
    logger.info(f"Sent Wake-on-LAN packet to {normalize_mac(mac)} via {broadcast}:{port}")
