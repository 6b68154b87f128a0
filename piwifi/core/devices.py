"""
Registry of LAN devices keyed by MAC address.

Devices are discovered from DHCP leases and the ARP table. User aliases and
static-lease flags are the only fields persisted; addresses and timestamps are
rebuilt from live data after a restart.
"""

import json
import logging
import re
import threading
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..const import ALIAS_MAX_LENGTH
from ..errors import ConfigIOError, NotFoundError, ValidationError
from ..paths import DEVICE_ALIASES_FILE
from ..utils.files import atomic_write_text, read_text
from .oui import lookup_vendor

logger = logging.getLogger(__name__)

_MAC_RE = re.compile(r"^(?:[0-9A-Fa-f]{2}([:-])(?:[0-9A-Fa-f]{2}\1){4}[0-9A-Fa-f]{2}|[0-9A-Fa-f]{12})$")
_ALIAS_RE = re.compile(r"^[A-Za-z0-9 _-]+$")


def normalize_mac(mac: str) -> str:
    """Normalize a MAC address to upper-case colon form.

    Accepts colon-separated, dash-separated and bare 12-digit hex forms.

    Raises:
        ValidationError: anything else
    """
    value = str(mac).strip()
    if not _MAC_RE.match(value):
        raise ValidationError(f"Invalid MAC address: {mac!r}")
    digits = re.sub(r"[:-]", "", value).upper()
    return ":".join(digits[i : i + 2] for i in range(0, 12, 2))


def validate_alias(alias: str) -> str:
    alias = alias.strip()
    if not alias or len(alias) > ALIAS_MAX_LENGTH or not _ALIAS_RE.match(alias):
        raise ValidationError(
            f"Alias must be 1-{ALIAS_MAX_LENGTH} characters of letters, digits, spaces, dashes or underscores"
        )
    return alias


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Device:
    """A device seen on the LAN. ``None`` fields mean "not supplied" when merging."""

    mac: str
    ip: Optional[str] = None
    hostname: Optional[str] = None
    alias: Optional[str] = None
    vendor: Optional[str] = None
    is_static: Optional[bool] = None
    first_seen: datetime = field(default_factory=_now)
    last_seen: datetime = field(default_factory=_now)

    @property
    def display_name(self) -> str:
        return self.alias or self.hostname or self.ip or self.mac

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["is_static"] = bool(self.is_static)
        data["first_seen"] = self.first_seen.isoformat()
        data["last_seen"] = self.last_seen.isoformat()
        return data


class DeviceRegistry:
    """Thread-safe device table with alias persistence."""

    def __init__(self, alias_file: Path = DEVICE_ALIASES_FILE):
        self.alias_file = Path(alias_file)
        self._devices: Dict[str, Device] = {}
        self._saved: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def upsert(self, device: Device) -> Device:
        """Insert or merge ``device``; returns a copy of the stored record.

        Alias, vendor and static flag are kept from the existing record when
        the update leaves them unset. Saved aliases apply to new devices.
        """
        mac = normalize_mac(device.mac)
        with self._lock:
            existing = self._devices.get(mac)
            saved = self._saved.get(mac, {})
            if existing is None:
                merged = replace(device, mac=mac)
                if merged.alias is None:
                    merged.alias = saved.get("alias")
                if merged.is_static is None and "is_static" in saved:
                    merged.is_static = saved["is_static"]
            else:
                merged = Device(
                    mac=mac,
                    ip=device.ip if device.ip is not None else existing.ip,
                    hostname=device.hostname if device.hostname is not None else existing.hostname,
                    alias=device.alias if device.alias is not None else existing.alias,
                    vendor=device.vendor if device.vendor is not None else existing.vendor,
                    is_static=device.is_static if device.is_static is not None else existing.is_static,
                    first_seen=existing.first_seen,
                    last_seen=device.last_seen,
                )
            if merged.vendor is None:
                merged.vendor = lookup_vendor(mac)
            self._devices[mac] = merged
            return replace(merged)

    def get(self, mac: str) -> Optional[Device]:
        mac = normalize_mac(mac)
        with self._lock:
            device = self._devices.get(mac)
            return replace(device) if device else None

    def all(self) -> List[Device]:
        """All devices sorted by MAC."""
        with self._lock:
            return [replace(self._devices[mac]) for mac in sorted(self._devices)]

    def set_alias(self, mac: str, alias: str) -> Device:
        """Name a known device and persist the alias table.

        Raises:
            ValidationError: malformed MAC or alias
            NotFoundError: the device has not been seen
            ConfigIOError: the alias file could not be written
        """
        mac = normalize_mac(mac)
        alias = validate_alias(alias)
        with self._lock:
            device = self._devices.get(mac)
            if device is None:
                raise NotFoundError(f"Device {mac} not found")
            device.alias = alias
            self._saved.setdefault(mac, {})["alias"] = alias
            result = replace(device)
        self.save_to_file()
        logger.info(f"Alias for {mac} set to '{alias}'")
        return result

    def mark_static(self, mac: str, ip: str, hostname: Optional[str] = None) -> Device:
        """Record a static lease for ``mac`` and persist the flag."""
        device = self.upsert(Device(mac=mac, ip=ip, hostname=hostname, is_static=True))
        with self._lock:
            self._saved.setdefault(device.mac, {})["is_static"] = True
        self.save_to_file()
        return device

    def update_from_leases(self, leases: Iterable[Any]) -> int:
        """Upsert a device per DHCP lease (objects with mac, ip, hostname)."""
        count = 0
        for lease in leases:
            try:
                self.upsert(Device(mac=lease.mac, ip=lease.ip, hostname=lease.hostname))
                count += 1
            except ValidationError as e:
                logger.debug(f"Skipping lease: {e}")
        return count

    def update_from_arp(self, entries: Iterable[Any]) -> int:
        """Upsert a device per ARP entry (objects with mac, ip)."""
        count = 0
        for entry in entries:
            try:
                self.upsert(Device(mac=entry.mac, ip=entry.ip))
                count += 1
            except ValidationError as e:
                logger.debug(f"Skipping ARP entry: {e}")
        return count

    # =========================================================================
    # Persistence
    # =========================================================================

    def load_from_file(self) -> int:
        """Load saved aliases. A missing file leaves the table empty.

        Raises:
            ConfigIOError: the file exists but cannot be read or parsed
        """
        text = read_text(self.alias_file, missing_ok=True)
        if text is None:
            logger.debug(f"No alias file at {self.alias_file}")
            return 0
        try:
            records = json.loads(text).get("devices", [])
            saved = {}
            for record in records:
                saved[normalize_mac(record["mac"])] = {
                    "alias": record.get("alias"),
                    "is_static": bool(record.get("is_static", False)),
                }
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ConfigIOError(f"Malformed alias file {self.alias_file}: {e}") from e

        with self._lock:
            self._saved = saved
            for mac, values in saved.items():
                device = self._devices.get(mac)
                if device is not None:
                    device.alias = values["alias"]
                    device.is_static = values["is_static"]
        logger.info(f"Loaded {len(saved)} device aliases from {self.alias_file}")
        return len(saved)

    def save_to_file(self) -> None:
        with self._lock:
            records = [
                {"mac": mac, "alias": values.get("alias"), "is_static": bool(values.get("is_static", False))}
                for mac, values in sorted(self._saved.items())
            ]
        atomic_write_text(self.alias_file, json.dumps({"devices": records}, indent=2) + "\n")
