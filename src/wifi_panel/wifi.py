"""Wi-Fi discovery and connection management on top of NetworkManager."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, TypeVar

from .backends import NM_DEVICE_TYPE_WIFI, NetworkBackend, Settings
from .classification import (
    Band,
    SecurityType,
    band_from_frequency,
    channel_from_frequency,
    decode_ssid,
    security_from_flags,
)
from .errors import (
    CredentialRequired,
    DaemonUnavailable,
    DeviceNotFound,
    NoSavedProfile,
    NotConnected,
    PanelError,
    UnsupportedSecurity,
)
from .system_log import SystemLog


logger = logging.getLogger(__name__)

_T = TypeVar("_T")

WIRELESS_CONNECTION_TYPE = "802-11-wireless"


@dataclass(slots=True)
class WiFiNetwork:
    """One SSID as shown in the network list.

    ``ap_path`` and ``frequency`` belong to the strongest access point seen
    for the SSID. ``connection_path`` is the saved profile, when one exists.
    """

    ssid: str
    strength: int
    security: SecurityType
    band: Band
    connected: bool = False
    saved: bool = False
    ap_path: str | None = None
    connection_path: str | None = None
    frequency: int | None = None

    @property
    def channel(self) -> int | None:
        return channel_from_frequency(self.frequency)

    @property
    def signal_level(self) -> str:
        if self.strength >= 75:
            return "strong"
        if self.strength >= 50:
            return "good"
        if self.strength >= 25:
            return "fair"
        return "weak"

    def to_dict(self) -> dict[str, object | None]:
        return {
            "ssid": self.ssid,
            "strength": self.strength,
            "signal_level": self.signal_level,
            "security": self.security.value,
            "security_label": self.security.label,
            "band": self.band.value,
            "frequency": self.frequency,
            "channel": self.channel,
            "connected": self.connected,
            "saved": self.saved,
        }


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    DISCONNECTING = "disconnecting"


def build_secured_settings(ssid: str, credential: str, security: SecurityType) -> Settings:
    """Settings for ``AddAndActivateConnection`` on a WPA2/WPA3 personal network."""

    key_mgmt = "sae" if security is SecurityType.WPA3 else "wpa-psk"
    return {
        "connection": {"type": WIRELESS_CONNECTION_TYPE},
        WIRELESS_CONNECTION_TYPE: {"ssid": ssid.encode("utf-8")},
        "802-11-wireless-security": {"key-mgmt": key_mgmt, "psk": credential},
    }


def _as_int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def network_from_access_point(
    path: str,
    props: dict[str, object],
    *,
    active_ap: str | None,
    saved: dict[str, str],
) -> WiFiNetwork | None:
    """Build a list entry for one access point; hidden SSIDs yield ``None``."""

    ssid = decode_ssid(props.get("Ssid"))
    if not ssid:
        return None
    frequency = _as_int(props.get("Frequency"))
    strength = max(0, min(100, _as_int(props.get("Strength"))))
    return WiFiNetwork(
        ssid=ssid,
        strength=strength,
        security=security_from_flags(
            props.get("Flags"), props.get("WpaFlags"), props.get("RsnFlags")
        ),
        band=band_from_frequency(frequency),
        connected=active_ap is not None and path == active_ap,
        saved=ssid in saved,
        ap_path=path,
        connection_path=saved.get(ssid),
        frequency=frequency or None,
    )


def reconcile_networks(candidates: Iterable[WiFiNetwork]) -> list[WiFiNetwork]:
    """Collapse access points to one entry per SSID and rank them.

    The strongest access point survives; a weaker one only replaces it on a
    strictly higher strength. The connected flag is kept when any access
    point of the SSID is the associated one.
    """

    best: dict[str, WiFiNetwork] = {}
    for network in candidates:
        current = best.get(network.ssid)
        if current is None:
            best[network.ssid] = network
            continue
        connected = current.connected or network.connected
        if network.strength > current.strength:
            current = network
            best[network.ssid] = current
        current.connected = connected
    return sorted(
        best.values(),
        key=lambda item: (not item.connected, not item.saved, -item.strength),
    )


class WiFiManager:
    """Discovery and connection orchestration for a single Wi-Fi device."""

    def __init__(
        self,
        backend: NetworkBackend,
        device: str,
        *,
        system_log: SystemLog | None = None,
    ) -> None:
        self._backend = backend
        self._device = device
        self._system_log = system_log
        self._state = ConnectionState.IDLE

    @classmethod
    async def locate(
        cls,
        backend: NetworkBackend,
        *,
        system_log: SystemLog | None = None,
    ) -> "WiFiManager":
        """Bind to the first Wi-Fi device NetworkManager reports."""

        devices = await asyncio.to_thread(backend.list_devices)
        for path in devices:
            device_type = await asyncio.to_thread(backend.get_device_type, path)
            if device_type == NM_DEVICE_TYPE_WIFI:
                logger.info("Using Wi-Fi device %s", path)
                return cls(backend, path, system_log=system_log)
        raise DeviceNotFound("No Wi-Fi device found")

    @property
    def device(self) -> str:
        return self._device

    @property
    def backend(self) -> NetworkBackend:
        return self._backend

    @property
    def state(self) -> ConnectionState:
        return self._state

    # ------------------------------ discovery ------------------------------
    async def request_scan(self) -> None:
        await self._call(self._backend.request_scan, self._device)

    async def discover_networks(self) -> list[WiFiNetwork]:
        ap_paths = await self._call(self._backend.list_access_points, self._device)
        active_ap = await self.active_access_point()
        saved = await self.saved_profiles()
        candidates: list[WiFiNetwork] = []
        for path in ap_paths:
            try:
                props = await self._call(self._backend.get_access_point, path)
            except DaemonUnavailable:
                raise
            except PanelError as exc:
                # Access points can disappear between listing and reading.
                logger.debug("Skipping access point %s: %s", path, exc)
                continue
            network = network_from_access_point(
                path, props, active_ap=active_ap, saved=saved
            )
            if network is not None:
                candidates.append(network)
        return reconcile_networks(candidates)

    async def active_access_point(self) -> str | None:
        try:
            active = await self._call(self._backend.get_active_connection, self._device)
            if active is None:
                return None
            return await self._call(self._backend.get_specific_object, active)
        except PanelError as exc:
            logger.debug("Unable to read the active access point: %s", exc)
            return None

    async def saved_profiles(self) -> dict[str, str]:
        """Map SSID to saved profile path for station-mode wireless profiles."""

        try:
            paths = await self._call(self._backend.list_connections)
        except PanelError as exc:
            logger.warning("Unable to list saved connections: %s", exc)
            return {}
        saved: dict[str, str] = {}
        for path in paths:
            try:
                settings = await self._call(self._backend.get_connection_settings, path)
            except PanelError as exc:
                logger.debug("Skipping profile %s: %s", path, exc)
                continue
            connection = settings.get("connection") or {}
            if connection.get("type") != WIRELESS_CONNECTION_TYPE:
                continue
            wireless = settings.get(WIRELESS_CONNECTION_TYPE) or {}
            if wireless.get("mode") == "ap":
                continue
            ssid = decode_ssid(wireless.get("ssid"))
            if ssid and ssid not in saved:
                saved[ssid] = path
        return saved

    async def get_active_frequency(self) -> int | None:
        """Frequency of the associated access point, ``None`` when not associated."""

        active_ap = await self.active_access_point()
        if active_ap is None:
            return None
        try:
            props = await self._call(self._backend.get_access_point, active_ap)
        except PanelError as exc:
            logger.debug("Unable to read active access point %s: %s", active_ap, exc)
            return None
        frequency = _as_int(props.get("Frequency"))
        return frequency or None

    # ----------------------------- connections -----------------------------
    async def connect(self, network: WiFiNetwork, credential: str | None = None) -> str:
        """Join ``network`` and return the active connection path.

        A saved profile is always reactivated as-is; any credential passed is
        ignored in that case.
        """

        specific_object = network.ap_path or "/"
        if network.connection_path:
            method = "saved"
            call: Callable[[], object] = lambda: self._backend.activate_connection(
                network.connection_path, self._device, specific_object
            )
        elif network.security is SecurityType.ENTERPRISE:
            raise UnsupportedSecurity(
                f"Enterprise network '{network.ssid}' is not supported"
            )
        elif network.security is SecurityType.OPEN:
            method = "open"
            call = lambda: self._backend.add_and_activate_connection(
                {}, self._device, specific_object
            )
        else:
            if not credential:
                raise CredentialRequired(f"A password is required for '{network.ssid}'")
            method = network.security.value
            settings = build_secured_settings(network.ssid, credential, network.security)
            call = lambda: self._backend.add_and_activate_connection(
                settings, self._device, specific_object
            )

        self._state = ConnectionState.CONNECTING
        self._record_log(
            "connect_attempt",
            f"Connecting to {network.ssid}.",
            metadata={"ssid": network.ssid, "method": method},
        )
        try:
            result = await asyncio.to_thread(call)
        except PanelError as exc:
            self._state = ConnectionState.FAILED
            self._record_log(
                "connect_failed",
                f"Failed to connect to {network.ssid}: {exc}",
                metadata={"ssid": network.ssid, "method": method},
            )
            raise
        self._state = ConnectionState.CONNECTED
        active = result[1] if isinstance(result, tuple) else result
        self._record_log(
            "connect_success",
            f"Activation of {network.ssid} accepted.",
            metadata={"ssid": network.ssid, "active_connection": str(active)},
        )
        return str(active)

    async def disconnect(self) -> None:
        active = await self._call(self._backend.get_active_connection, self._device)
        if active is None:
            raise NotConnected("Not connected")
        self._state = ConnectionState.DISCONNECTING
        try:
            await self._call(self._backend.deactivate_connection, active)
        except PanelError:
            self._state = ConnectionState.FAILED
            raise
        self._state = ConnectionState.IDLE
        self._record_log("disconnect", "Disconnected from the active network.")

    async def forget(self, ssid: str) -> None:
        saved = await self.saved_profiles()
        path = saved.get(ssid)
        if path is None:
            raise NoSavedProfile(f"No saved connection for '{ssid}'")
        await self._call(self._backend.delete_connection, path)
        self._record_log("forget", f"Forgot network {ssid}.", metadata={"ssid": ssid})

    # -------------------------------- radio --------------------------------
    async def is_radio_enabled(self) -> bool:
        return await self._call(self._backend.get_wireless_enabled)

    async def set_radio_enabled(self, enabled: bool) -> None:
        await self._call(self._backend.set_wireless_enabled, bool(enabled))
        self._record_log(
            "radio",
            "Wi-Fi radio enabled." if enabled else "Wi-Fi radio disabled.",
        )

    # ----------------------------- implementation --------------------------
    async def _call(self, func: Callable[..., _T], *args: object) -> _T:
        return await asyncio.to_thread(func, *args)

    def _record_log(
        self,
        event: str,
        message: str,
        *,
        metadata: dict[str, object | None] | None = None,
    ) -> None:
        if self._system_log is not None:
            self._system_log.record("wifi", event, message, metadata=metadata)
        if metadata:
            logger.info("Wi-Fi event %s: %s | metadata=%s", event, message, metadata)
        else:
            logger.info("Wi-Fi event %s: %s", event, message)


__all__ = [
    "ConnectionState",
    "WiFiManager",
    "WiFiNetwork",
    "build_secured_settings",
    "network_from_access_point",
    "reconcile_networks",
]
