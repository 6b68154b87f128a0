"""
Host health reporting: uptime, CPU temperature, memory and disk usage.

Each metric is collected independently and falls back to a placeholder, so
one unavailable sensor never fails the whole status report.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import psutil

from ..paths import THERMAL_ZONE_FILE

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


@dataclass
class SystemStatus:
    uptime: str
    cpu_temperature: Optional[float]  # Celsius
    cpu_percent: float
    memory_percent: float
    disk_percent: float


def format_uptime(seconds: float) -> str:
    """Format seconds as ``"Xd Yh Zm"``."""
    seconds = max(0, int(seconds))
    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    return f"{days}d {hours}h {remainder // 60}m"


def get_uptime() -> str:
    try:
        return format_uptime(time.time() - psutil.boot_time())
    except Exception as e:
        logger.warning(f"Failed to read uptime: {e}")
        return UNKNOWN


def get_cpu_temperature(thermal_file: Path = THERMAL_ZONE_FILE) -> Optional[float]:
    """CPU temperature in Celsius from the first thermal zone, or None."""
    try:
        return int(thermal_file.read_text().strip()) / 1000.0
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to read CPU temperature: {e}")
        return None


def get_system_status(thermal_file: Path = THERMAL_ZONE_FILE) -> SystemStatus:
    try:
        cpu_percent = psutil.cpu_percent(interval=0.1)
    except Exception as e:
        logger.warning(f"Failed to read CPU usage: {e}")
        cpu_percent = 0.0

    try:
        memory_percent = psutil.virtual_memory().percent
    except Exception as e:
        logger.warning(f"Failed to read memory usage: {e}")
        memory_percent = 0.0

    try:
        disk_percent = psutil.disk_usage("/").percent
    except Exception as e:
        logger.warning(f"Failed to read disk usage: {e}")
        disk_percent = 0.0

    return SystemStatus(
        uptime=get_uptime(),
        cpu_temperature=get_cpu_temperature(thermal_file),
        cpu_percent=cpu_percent,
        memory_percent=memory_percent,
        disk_percent=disk_percent,
    )
