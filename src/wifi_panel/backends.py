"""Abstract daemon boundaries used by the Wi-Fi, hotspot and Bluetooth managers.

Backends are synchronous and map one method to one daemon round trip. Values
are returned as plain Python types (``str`` object paths, ``bytes`` SSIDs,
nested ``dict`` settings). Failures are raised as :mod:`wifi_panel.errors`
exceptions, never as transport-specific ones.
"""

from __future__ import annotations

from typing import Callable, Mapping

Settings = dict[str, dict[str, object]]
Unsubscribe = Callable[[], None]

NM_DEVICE_TYPE_WIFI = 2


class NetworkBackend:
    """Interface to NetworkManager."""

    # ------------------------------- devices -------------------------------
    def list_devices(self) -> list[str]:  # pragma: no cover - interface only
        raise NotImplementedError

    def get_device_type(self, device: str) -> int:  # pragma: no cover - interface only
        raise NotImplementedError

    def get_active_connection(self, device: str) -> str | None:  # pragma: no cover - interface only
        """Return the device's active connection path, ``None`` when idle."""

        raise NotImplementedError

    # -------------------------- active connections -------------------------
    def list_active_connections(self) -> list[str]:  # pragma: no cover - interface only
        raise NotImplementedError

    def get_specific_object(self, active: str) -> str | None:  # pragma: no cover - interface only
        """Return the access point an active connection is bound to."""

        raise NotImplementedError

    def get_active_profile(self, active: str) -> str | None:  # pragma: no cover - interface only
        """Return the settings profile behind an active connection."""

        raise NotImplementedError

    # ---------------------------- access points ----------------------------
    def request_scan(self, device: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def list_access_points(self, device: str) -> list[str]:  # pragma: no cover - interface only
        raise NotImplementedError

    def get_access_point(self, path: str) -> dict[str, object]:  # pragma: no cover - interface only
        """Return the ``AccessPoint`` properties (Ssid, Strength, Frequency, flags)."""

        raise NotImplementedError

    # ------------------------------ profiles -------------------------------
    def list_connections(self) -> list[str]:  # pragma: no cover - interface only
        raise NotImplementedError

    def get_connection_settings(self, path: str) -> Settings:  # pragma: no cover - interface only
        raise NotImplementedError

    def add_connection(self, settings: Settings) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    def update_connection(self, path: str, settings: Settings) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def delete_connection(self, path: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    # ----------------------------- activation ------------------------------
    def activate_connection(
        self, connection: str, device: str, specific_object: str
    ) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    def add_and_activate_connection(
        self, settings: Settings, device: str, specific_object: str
    ) -> tuple[str, str]:  # pragma: no cover - interface only
        raise NotImplementedError

    def deactivate_connection(self, active: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    # -------------------------------- radio --------------------------------
    def get_wireless_enabled(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def set_wireless_enabled(self, enabled: bool) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    # ------------------------------- signals -------------------------------
    def subscribe_state_changed(
        self, device: str, callback: Callable[[int, int, int], None]
    ) -> Unsubscribe:  # pragma: no cover - interface only
        """Invoke ``callback(new_state, old_state, reason)`` on device state changes.

        Callbacks may arrive on a foreign thread.
        """

        raise NotImplementedError

    def subscribe_access_point_added(
        self, device: str, callback: Callable[[str], None]
    ) -> Unsubscribe:  # pragma: no cover - interface only
        raise NotImplementedError

    def close(self) -> None:
        return None


class BluetoothBackend:
    """Interface to BlueZ."""

    def get_managed_objects(
        self,
    ) -> dict[str, dict[str, Mapping[str, object]]]:  # pragma: no cover - interface only
        raise NotImplementedError

    def get_powered(self, adapter: str) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def set_powered(self, adapter: str, powered: bool) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def start_discovery(self, adapter: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def stop_discovery(self, adapter: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def remove_device(self, adapter: str, device: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def connect_device(self, device: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def disconnect_device(self, device: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def pair_device(self, device: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def set_trusted(self, device: str, trusted: bool) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def subscribe_interfaces_added(
        self, callback: Callable[[str, dict[str, Mapping[str, object]]], None]
    ) -> Unsubscribe:  # pragma: no cover - interface only
        raise NotImplementedError

    def close(self) -> None:
        return None


__all__ = [
    "BluetoothBackend",
    "NM_DEVICE_TYPE_WIFI",
    "NetworkBackend",
    "Settings",
    "Unsubscribe",
]
