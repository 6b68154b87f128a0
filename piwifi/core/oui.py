"""
Static OUI (vendor prefix) table for common consumer and network hardware.

Keys are the first three octets of a MAC address in normalized form.
"""

from typing import Dict, Optional

OUI_VENDORS: Dict[str, str] = {
    "00:1A:2B": "Apple",
    "00:3E:E0": "Apple",
    "00:50:F4": "Apple",
    "00:62:6E": "Apple",
    "00:A0:D2": "Apple",
    "00:B0:D0": "Apple",
    "00:D0:B7": "Apple",
    "00:E0:4C": "Apple",
    "00:F4:B9": "Apple",
    "08:00:07": "Apple",
    "10:93:E9": "Apple",
    "14:CC:20": "Apple",
    "1C:52:16": "Apple",
    "34:15:9E": "Apple",
    "38:C0:86": "Apple",
    "3C:07:54": "Apple",
    "40:6C:8F": "Apple",
    "44:2A:60": "Apple",
    "48:D7:05": "Apple",
    "4C:B1:99": "Apple",
    "50:EA:D6": "Apple",
    "5C:5A:92": "Apple",
    "60:A4:B7": "Apple",
    "64:1C:41": "Apple",
    "68:A8:6D": "Apple",
    "6C:40:08": "Apple",
    "70:73:CB": "Apple",
    "74:E5:0B": "Apple",
    "78:31:C1": "Apple",
    "7C:6D:62": "Apple",
    "80:E6:50": "Apple",
    "84:B1:53": "Apple",
    "88:63:DF": "Apple",
    "8C:85:90": "Apple",
    "90:84:2B": "Apple",
    "94:E9:79": "Apple",
    "98:03:47": "Apple",
    "9C:29:19": "Apple",
    "A0:88:B4": "Apple",
    "A4:12:69": "Apple",
    "A8:5B:78": "Apple",
    "AC:BC:32": "Apple",
    "B0:34:95": "Apple",
    "B4:0B:44": "Apple",
    "B8:09:8A": "Apple",
    "BC:52:B3": "Apple",
    "C0:25:06": "Apple",
    "C4:2C:03": "Apple",
    "C8:27:8D": "Apple",
    "CC:2D:E0": "Apple",
    "D0:23:BE": "Apple",
    "D4:61:9D": "Apple",
    "D8:96:95": "Apple",
    "DC:2B:61": "Apple",
    "E0:AC:CB": "Apple",
    "E4:8B:F5": "Apple",
    "E8:8D:28": "Apple",
    "EC:22:80": "Apple",
    "F0:18:98": "Apple",
    "F4:0F:24": "Apple",
    "F8:FF:C2": "Apple",
    "FC:3F:DB": "Apple",
    "B8:27:EB": "Raspberry Pi",
    "DC:A6:32": "Raspberry Pi",
    "2C:CF:67": "Raspberry Pi",
    "E4:5F:01": "Raspberry Pi",
    "00:1F:CC": "Google",
    "00:34:C7": "Google",
    "00:56:2F": "Google",
    "00:1A:11": "Google",
    "AC:DE:48": "Google",
    "00:19:B9": "Intel",
    "00:1F:3C": "Intel",
    "00:25:86": "Intel",
    "08:60:6E": "Intel",
    "00:07:AB": "Samsung",
    "00:0F:B5": "Samsung",
    "00:12:FB": "Samsung",
    "00:16:6B": "Samsung",
    "00:19:A0": "Samsung",
    "00:1E:74": "Samsung",
    "00:21:4C": "Samsung",
    "00:23:D8": "Samsung",
    "00:25:D3": "Samsung",
    "00:26:C6": "Samsung",
    "00:E0:64": "Samsung",
    "08:08:C2": "Samsung",
    "A0:21:95": "Samsung",
    "00:05:B3": "LG Electronics",
    "00:1E:8E": "LG Electronics",
    "00:23:FA": "LG Electronics",
    "00:3F:0E": "LG Electronics",
    "00:48:CA": "LG Electronics",
    "00:02:B3": "Sony",
    "00:0C:6E": "Sony",
    "00:12:6D": "Sony",
    "00:1A:80": "Sony",
    "00:1F:A7": "Sony",
    "00:0B:85": "Qualcomm",
    "00:1F:CA": "Qualcomm",
    "00:22:6B": "Qualcomm",
    "00:24:2B": "Qualcomm",
    "00:10:BD": "Broadcom",
    "00:13:10": "Broadcom",
    "00:14:85": "Broadcom",
    "00:19:E3": "Broadcom",
    "00:04:C1": "Motorola",
    "00:12:2F": "Motorola",
    "00:1E:67": "Motorola",
    "00:25:43": "Motorola",
    "00:1C:73": "Arista Networks",
    "00:01:E6": "HP",
    "00:04:EA": "HP",
    "00:07:01": "HP",
    "00:09:6B": "HP",
    "00:0C:02": "HP",
    "00:0F:1F": "Dell",
    "00:0F:8F": "Dell",
    "00:12:3F": "Dell",
    "00:14:4F": "Dell",
    "00:00:0C": "Cisco",
    "00:01:42": "Cisco",
    "00:01:63": "Cisco",
    "00:01:96": "Cisco",
    "00:01:CA": "Cisco",
}


def lookup_vendor(mac: str) -> Optional[str]:
    """Vendor for a normalized MAC address, or None if the prefix is unknown."""
    return OUI_VENDORS.get(mac[:8].upper())
