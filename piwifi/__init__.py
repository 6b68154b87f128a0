"""
PiWifi - WiFi-to-Ethernet router control plane for single-board computers.
"""

__version__ = "1.0.0"
