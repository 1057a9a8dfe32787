"""Pure classification helpers for access points and Bluetooth devices.

Every function in this module is total: malformed input falls back to the
least specific classification instead of raising.
"""

from __future__ import annotations

from enum import Enum

# NM80211ApFlags / NM80211ApSecurityFlags
AP_FLAGS_PRIVACY = 0x1
AP_SEC_KEY_MGMT_PSK = 0x100
AP_SEC_KEY_MGMT_802_1X = 0x200
AP_SEC_KEY_MGMT_SAE = 0x400

FIVE_GHZ_THRESHOLD_MHZ = 4900


class SecurityType(str, Enum):
    """Security classification of an access point."""

    OPEN = "open"
    WPA2 = "wpa2"
    WPA3 = "wpa3"
    ENTERPRISE = "enterprise"

    @property
    def label(self) -> str:
        return _SECURITY_LABELS[self]

    @property
    def requires_credential(self) -> bool:
        return self in (SecurityType.WPA2, SecurityType.WPA3)


_SECURITY_LABELS = {
    SecurityType.OPEN: "Open",
    SecurityType.WPA2: "WPA2",
    SecurityType.WPA3: "WPA3",
    SecurityType.ENTERPRISE: "Enterprise",
}


class Band(str, Enum):
    """Frequency band of an access point or hotspot."""

    GHZ_2_4 = "2.4GHz"
    GHZ_5 = "5GHz"

    @property
    def setting(self) -> str:
        """NetworkManager ``802-11-wireless.band`` value."""

        return "a" if self is Band.GHZ_5 else "bg"

    @classmethod
    def from_setting(cls, value: object) -> "Band":
        if isinstance(value, Band):
            return value
        if isinstance(value, str) and value.strip().lower() in {"a", "5", "5ghz"}:
            return cls.GHZ_5
        return cls.GHZ_2_4


class DeviceCategory(str, Enum):
    """Coarse category derived from the BlueZ icon name."""

    AUDIO = "audio"
    INPUT = "input"
    COMPUTER = "computer"
    PHONE = "phone"
    PERIPHERAL = "peripheral"
    OTHER = "other"

    @property
    def label(self) -> str:
        if self is DeviceCategory.OTHER:
            return "Device"
        return self.value.capitalize()


_PERIPHERAL_PREFIXES = ("modem", "network", "printer", "camera", "video")


def _as_flags(value: object) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0


def security_from_flags(flags: object, wpa_flags: object, rsn_flags: object) -> SecurityType:
    """Classify an access point from its NetworkManager flag words.

    WPA and RSN words are combined; the strongest key management wins in
    the order 802.1X, SAE, PSK. A privacy bit without key management is
    reported as WPA2 since NetworkManager would still ask for a key.
    """

    combined = _as_flags(wpa_flags) | _as_flags(rsn_flags)
    if combined & AP_SEC_KEY_MGMT_802_1X:
        return SecurityType.ENTERPRISE
    if combined & AP_SEC_KEY_MGMT_SAE:
        return SecurityType.WPA3
    if combined & AP_SEC_KEY_MGMT_PSK:
        return SecurityType.WPA2
    if _as_flags(flags) & AP_FLAGS_PRIVACY:
        return SecurityType.WPA2
    return SecurityType.OPEN


def band_from_frequency(freq_mhz: object) -> Band:
    value = _as_flags(freq_mhz)
    return Band.GHZ_5 if value >= FIVE_GHZ_THRESHOLD_MHZ else Band.GHZ_2_4


def channel_from_frequency(freq_mhz: object) -> int | None:
    """Convert a centre frequency in MHz to an IEEE channel number."""

    value = _as_flags(freq_mhz)
    if 2412 <= value <= 2472 and (value - 2412) % 5 == 0:
        return (value - 2407) // 5
    if value == 2484:
        return 14
    if 5170 <= value <= 5925 and value % 5 == 0:
        return (value - 5000) // 5
    return None


def category_from_icon(icon: object) -> DeviceCategory:
    if not isinstance(icon, str) or not icon:
        return DeviceCategory.OTHER
    name = icon.strip().lower()
    for category in (
        DeviceCategory.AUDIO,
        DeviceCategory.INPUT,
        DeviceCategory.COMPUTER,
        DeviceCategory.PHONE,
    ):
        if name.startswith(category.value):
            return category
    if name.startswith(_PERIPHERAL_PREFIXES):
        return DeviceCategory.PERIPHERAL
    return DeviceCategory.OTHER


def resolve_display_name(alias: object, name: object, address: object) -> str:
    """Return the first non-empty of alias, name and address."""

    for candidate in (alias, name, address):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def decode_ssid(raw: object) -> str:
    """Decode an SSID byte array, replacing invalid UTF-8 sequences."""

    if isinstance(raw, str):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8", errors="replace")
    if isinstance(raw, (list, tuple)):
        try:
            return bytes(int(item) & 0xFF for item in raw).decode("utf-8", errors="replace")
        except (TypeError, ValueError):
            return ""
    return ""


__all__ = [
    "AP_FLAGS_PRIVACY",
    "AP_SEC_KEY_MGMT_802_1X",
    "AP_SEC_KEY_MGMT_PSK",
    "AP_SEC_KEY_MGMT_SAE",
    "Band",
    "DeviceCategory",
    "SecurityType",
    "band_from_frequency",
    "category_from_icon",
    "channel_from_frequency",
    "decode_ssid",
    "resolve_display_name",
    "security_from_flags",
]
