"""
Unit tests for the DeviceRegistry, MAC normalization and vendor lookup.
"""

import json
import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from piwifi.core.devices import Device, DeviceRegistry, normalize_mac, validate_alias
from piwifi.core.oui import lookup_vendor
from piwifi.errors import ConfigIOError, NotFoundError, ValidationError
from piwifi.network.models import ArpEntry, Lease


@pytest.fixture
def registry(tmp_path):
    return DeviceRegistry(tmp_path / "devices.json")


# =============================================================================
# MAC normalization
# =============================================================================


class TestNormalizeMac:
    """Test MAC address normalization."""

    @pytest.mark.parametrize(
        "mac",
        ["aa-bb-cc-dd-ee-ff", "AA:BB:CC:DD:EE:FF", "aabbccddeeff", "aA:bB:cC:dD:eE:fF", " aa:bb:cc:dd:ee:ff "],
    )
    def test_accepted_forms(self, mac):
        """Test that colon, dash and bare forms normalise to upper-case colon form."""
        assert normalize_mac(mac) == "AA:BB:CC:DD:EE:FF"

    def test_idempotent(self):
        """Test that normalising twice gives the same result."""
        once = normalize_mac("b8-27-eb-01-02-03")
        assert normalize_mac(once) == once

    @pytest.mark.parametrize(
        "mac",
        [
            "ZZ:11:22:33:44:55",
            "aa:bb:cc:dd:ee",
            "aa:bb:cc:dd:ee:ff:00",
            "aabbccddeef",
            "aa:bb-cc:dd:ee:ff",
            "",
        ],
    )
    def test_rejected_forms(self, mac):
        """Test that malformed MAC addresses are rejected."""
        with pytest.raises(ValidationError):
            normalize_mac(mac)


class TestAliasAndVendor:
    """Test alias validation and the OUI table."""

    def test_alias_trimmed(self):
        """Test that surrounding whitespace is stripped from aliases."""
        assert validate_alias("  Living Room TV ") == "Living Room TV"

    @pytest.mark.parametrize("alias", ["", "   ", "x" * 65, "tv<script>", "name;drop"])
    def test_bad_alias(self, alias):
        """Test that empty, overlong or control-character aliases are rejected."""
        with pytest.raises(ValidationError):
            validate_alias(alias)

    def test_lookup_vendor(self):
        """Test vendor lookup by OUI prefix."""
        assert lookup_vendor("B8:27:EB:12:34:56") == "Raspberry Pi"
        assert lookup_vendor("dc:a6:32:00:00:01") == "Raspberry Pi"
        assert lookup_vendor("02:00:00:00:00:01") is None


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    """Test upsert and lookup."""

    def test_upsert_normalizes_and_looks_up_vendor(self, registry):
        """Test that upsert normalises the MAC and fills in the vendor."""
        device = registry.upsert(Device(mac="b8-27-eb-12-34-56", ip="192.168.100.57"))

        assert device.mac == "B8:27:EB:12:34:56"
        assert device.vendor == "Raspberry Pi"
        assert registry.get("b827eb123456").ip == "192.168.100.57"

    def test_upsert_preserves_alias(self, registry):
        """Test that an update does not drop a user alias."""
        registry.upsert(Device(mac="AA:BB:CC:DD:EE:01", ip="192.168.100.10"))
        registry.set_alias("AA:BB:CC:DD:EE:01", "Printer")

        device = registry.upsert(Device(mac="aa:bb:cc:dd:ee:01", ip="192.168.100.11", hostname="hp"))

        assert device.alias == "Printer"
        assert device.ip == "192.168.100.11"
        assert device.hostname == "hp"

    def test_upsert_keeps_first_seen(self, registry):
        """Test that first_seen stays fixed while last_seen moves."""
        first = registry.upsert(Device(mac="AA:BB:CC:DD:EE:01"))
        second = registry.upsert(Device(mac="AA:BB:CC:DD:EE:01", ip="192.168.100.10"))

        assert second.first_seen == first.first_seen
        assert second.last_seen >= first.last_seen

    def test_upsert_keeps_known_fields(self, registry):
        """Test that missing fields in an update keep their previous values."""
        registry.upsert(Device(mac="AA:BB:CC:DD:EE:01", ip="192.168.100.10", hostname="laptop"))
        device = registry.upsert(Device(mac="AA:BB:CC:DD:EE:01", ip="192.168.100.12"))

        assert device.hostname == "laptop"

    def test_all_sorted_by_mac(self, registry):
        """Test that devices are listed in MAC order."""
        for mac in ("CC:00:00:00:00:01", "AA:00:00:00:00:01", "BB:00:00:00:00:01"):
            registry.upsert(Device(mac=mac))
        assert [device.mac for device in registry.all()] == [
            "AA:00:00:00:00:01",
            "BB:00:00:00:00:01",
            "CC:00:00:00:00:01",
        ]

    def test_get_unknown(self, registry):
        """Test that an unknown MAC returns None."""
        assert registry.get("AA:BB:CC:DD:EE:FF") is None

    def test_set_alias_unknown_device(self, registry):
        """Test that naming an unseen device raises NotFoundError."""
        with pytest.raises(NotFoundError):
            registry.set_alias("AA:BB:CC:DD:EE:FF", "Ghost")

    def test_set_alias_invalid(self, registry):
        """Test that an invalid alias leaves the device unchanged."""
        registry.upsert(Device(mac="AA:BB:CC:DD:EE:01"))
        with pytest.raises(ValidationError):
            registry.set_alias("AA:BB:CC:DD:EE:01", "")

    def test_update_from_leases_and_arp(self, registry):
        """Test merging lease and neighbour entries into one registry."""
        leases = [
            Lease(expires=0, mac="AA:BB:CC:DD:EE:01", ip="192.168.100.51", hostname="phone"),
            Lease(expires=0, mac="garbage", ip="192.168.100.99"),
        ]
        arp = [
            ArpEntry(ip="192.168.100.51", mac="AA:BB:CC:DD:EE:01"),
            ArpEntry(ip="192.168.100.60", mac="AA:BB:CC:DD:EE:02"),
        ]

        assert registry.update_from_leases(leases) == 1
        assert registry.update_from_arp(arp) == 2

        devices = registry.all()
        assert len(devices) == 2
        assert devices[0].hostname == "phone"

    def test_display_name(self):
        """Test the alias, hostname, address, MAC precedence of display names."""
        assert Device(mac="AA:BB:CC:DD:EE:01", ip="10.0.0.2", hostname="laptop", alias="Work").display_name == "Work"
        assert Device(mac="AA:BB:CC:DD:EE:01", ip="10.0.0.2").display_name == "10.0.0.2"
        assert Device(mac="AA:BB:CC:DD:EE:01").display_name == "AA:BB:CC:DD:EE:01"


# =============================================================================
# Persistence
# =============================================================================


class TestPersistence:
    """Test the alias file."""

    def test_missing_file_loads_nothing(self, registry):
        """Test that a missing alias file is not an error."""
        assert registry.load_from_file() == 0
        assert registry.all() == []

    def test_alias_survives_restart(self, tmp_path):
        """Test that aliases are reloaded by a fresh registry."""
        alias_file = tmp_path / "devices.json"
        registry = DeviceRegistry(alias_file)
        registry.upsert(Device(mac="AA:BB:CC:DD:EE:01", ip="192.168.100.10"))
        registry.set_alias("AA:BB:CC:DD:EE:01", "Printer")

        data = json.loads(alias_file.read_text())
        assert data == {"devices": [{"mac": "AA:BB:CC:DD:EE:01", "alias": "Printer", "is_static": False}]}

        restarted = DeviceRegistry(alias_file)
        assert restarted.load_from_file() == 1
        device = restarted.upsert(Device(mac="aa:bb:cc:dd:ee:01", ip="192.168.100.10"))
        assert device.alias == "Printer"

    def test_static_flag_persisted(self, tmp_path):
        """Test that the static lease flag is saved with the alias."""
        alias_file = tmp_path / "devices.json"
        registry = DeviceRegistry(alias_file)
        device = registry.mark_static("aa:bb:cc:dd:ee:09", "192.168.100.20", "nas")

        assert device.is_static

        restarted = DeviceRegistry(alias_file)
        restarted.load_from_file()
        assert restarted.upsert(Device(mac="AA:BB:CC:DD:EE:09")).is_static

    def test_load_applies_to_known_devices(self, tmp_path):
        """Test that loaded aliases apply to devices already in the registry."""
        alias_file = tmp_path / "devices.json"
        alias_file.write_text(json.dumps({"devices": [{"mac": "aa-bb-cc-dd-ee-01", "alias": "TV"}]}))
        registry = DeviceRegistry(alias_file)
        registry.upsert(Device(mac="AA:BB:CC:DD:EE:01"))

        registry.load_from_file()

        assert registry.get("AA:BB:CC:DD:EE:01").alias == "TV"

    @pytest.mark.parametrize("content", ["{not json", '{"devices": [{"alias": "no mac"}]}', "[1, 2]"])
    def test_malformed_file(self, tmp_path, content):
        """Test that a corrupt alias file raises ConfigIOError."""
        alias_file = tmp_path / "devices.json"
        alias_file.write_text(content)

        with pytest.raises(ConfigIOError):
            DeviceRegistry(alias_file).load_from_file()

    def test_unwritable_alias_file(self, tmp_path):
        """Test that a failed alias save raises ConfigIOError."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        registry = DeviceRegistry(blocker / "devices.json")
        registry.upsert(Device(mac="AA:BB:CC:DD:EE:01"))

        with pytest.raises(ConfigIOError):
            registry.set_alias("AA:BB:CC:DD:EE:01", "Printer")
