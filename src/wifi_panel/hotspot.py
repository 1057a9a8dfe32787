"""Lifecycle of the self-managed access point profile."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, TypeVar

from .backends import NetworkBackend, Settings
from .classification import Band, band_from_frequency, channel_from_frequency
from .errors import DaemonUnavailable, InvalidCredential, PanelError
from .system_log import SystemLog


logger = logging.getLogger(__name__)

_T = TypeVar("_T")

HOTSPOT_UUID = "4a370f8b-a666-4c84-b9d8-d97710ffdaa8"
HOTSPOT_CONNECTION_ID = "Hotspot"
MAX_SSID_BYTES = 32


@dataclass(frozen=True, slots=True)
class HotspotProfile:
    """Requested hotspot parameters. An empty password means an open AP."""

    ssid: str
    password: str = ""
    band: Band = Band.GHZ_2_4
    channel: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.ssid, str) or not self.ssid.strip():
            raise ValueError("Hotspot name must not be empty")
        if len(self.ssid.encode("utf-8")) > MAX_SSID_BYTES:
            raise ValueError("Hotspot name must be at most 32 bytes")
        if self.channel is not None and self.channel <= 0:
            raise ValueError("Hotspot channel must be positive")

    @property
    def secured(self) -> bool:
        return bool(self.password)

    def to_dict(self) -> dict[str, object | None]:
        return {
            "ssid": self.ssid,
            "secured": self.secured,
            "band": self.band.value,
            "channel": self.channel,
        }


def validate_hotspot_password(password: str | None) -> str:
    """Return the password when usable for WPA-PSK; empty input means open."""

    value = password or ""
    if not value:
        return ""
    if not 8 <= len(value) <= 63:
        raise InvalidCredential("Hotspot password must be 8 to 63 characters")
    if any(not 32 <= ord(char) <= 126 for char in value):
        raise InvalidCredential("Hotspot password must use printable ASCII characters")
    return value


def select_hotspot_channel(
    station_frequency: int | None,
    band: Band,
    channel: int | None = None,
) -> tuple[Band, int | None]:
    """Pick the hotspot band and channel.

    A single radio can only serve the AP on the channel the station is
    associated on, so an associated station overrides the request.
    """

    if station_frequency:
        station_channel = channel_from_frequency(station_frequency)
        if station_channel is not None:
            return band_from_frequency(station_frequency), station_channel
    return band, channel


def build_hotspot_settings(profile: HotspotProfile) -> Settings:
    wireless: dict[str, object] = {
        "mode": "ap",
        "ssid": profile.ssid.encode("utf-8"),
        "band": profile.band.setting,
    }
    if profile.channel is not None:
        wireless["channel"] = int(profile.channel)
    settings: Settings = {
        "connection": {
            "type": "802-11-wireless",
            "uuid": HOTSPOT_UUID,
            "id": HOTSPOT_CONNECTION_ID,
            "autoconnect": False,
        },
        "802-11-wireless": wireless,
        "ipv4": {"method": "shared"},
        "ipv6": {"method": "ignore"},
    }
    if profile.password:
        settings["802-11-wireless-security"] = {
            "key-mgmt": "wpa-psk",
            "psk": profile.password,
        }
    return settings


class HotspotManager:
    """Create, update, activate and deactivate the single hotspot profile."""

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

    async def start(
        self,
        profile: HotspotProfile,
        *,
        station_frequency: int | None = None,
    ) -> HotspotProfile:
        """Write the hotspot profile and activate it.

        Returns the profile as applied, after channel selection.
        """

        band, channel = select_hotspot_channel(station_frequency, profile.band, profile.channel)
        applied = HotspotProfile(
            ssid=profile.ssid,
            password=profile.password,
            band=band,
            channel=channel,
        )
        settings = build_hotspot_settings(applied)
        existing = await self.find_profiles()
        if existing:
            path = existing[0]
            await self._call(self._backend.update_connection, path, settings)
            for duplicate in existing[1:]:
                logger.info("Removing duplicate hotspot profile %s", duplicate)
                await self._call(self._backend.delete_connection, duplicate)
        else:
            path = await self._call(self._backend.add_connection, settings)
        try:
            await self._call(self._backend.activate_connection, path, self._device, "/")
        except PanelError as exc:
            self._record_log(
                "hotspot_failed",
                f"Failed to start hotspot {applied.ssid}: {exc}",
                metadata=applied.to_dict(),
            )
            raise
        self._record_log(
            "hotspot_started",
            f"Hotspot {applied.ssid} started.",
            metadata=applied.to_dict(),
        )
        return applied

    async def stop(self) -> bool:
        """Deactivate the hotspot; returns ``False`` when it was not running."""

        active = await self._active_hotspot()
        if active is None:
            return False
        await self._call(self._backend.deactivate_connection, active)
        self._record_log("hotspot_stopped", "Hotspot stopped.")
        return True

    async def is_active(self) -> bool:
        return await self._active_hotspot() is not None

    async def find_profiles(self) -> list[str]:
        """Return every saved profile carrying the hotspot UUID."""

        paths = await self._call(self._backend.list_connections)
        matches: list[str] = []
        for path in paths:
            if await self._profile_uuid(path) == HOTSPOT_UUID:
                matches.append(path)
        return matches

    async def _active_hotspot(self) -> str | None:
        for active in await self._call(self._backend.list_active_connections):
            try:
                profile = await self._call(self._backend.get_active_profile, active)
            except DaemonUnavailable:
                raise
            except PanelError as exc:
                logger.debug("Skipping active connection %s: %s", active, exc)
                continue
            if profile is not None and await self._profile_uuid(profile) == HOTSPOT_UUID:
                return active
        return None

    async def _profile_uuid(self, path: str) -> str | None:
        try:
            settings = await self._call(self._backend.get_connection_settings, path)
        except DaemonUnavailable:
            raise
        except PanelError as exc:
            logger.debug("Skipping profile %s: %s", path, exc)
            return None
        uuid = (settings.get("connection") or {}).get("uuid")
        return uuid if isinstance(uuid, str) else None

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
            self._system_log.record("hotspot", event, message, metadata=metadata)
        logger.info("Hotspot event %s: %s", event, message)


__all__ = [
    "HOTSPOT_UUID",
    "HotspotManager",
    "HotspotProfile",
    "build_hotspot_settings",
    "select_hotspot_channel",
    "validate_hotspot_password",
]
