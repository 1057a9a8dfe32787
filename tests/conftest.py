from __future__ import annotations

import copy
import itertools
from pathlib import Path
from typing import Callable

import pytest

from wifi_panel.backends import BluetoothBackend, NetworkBackend
from wifi_panel.config import ConfigManager
from wifi_panel.errors import OperationFailed

WIFI_DEVICE = "/org/freedesktop/NetworkManager/Devices/3"
ETHERNET_DEVICE = "/org/freedesktop/NetworkManager/Devices/2"
ADAPTER = "/org/bluez/hci0"

RSN_PSK = 0x188
RSN_SAE = 0x488
RSN_8021X = 0x288


class FakeNetworkBackend(NetworkBackend):
    """In-memory NetworkManager with a single Wi-Fi device."""

    def __init__(self) -> None:
        self.devices: dict[str, int] = {ETHERNET_DEVICE: 1, WIFI_DEVICE: 2}
        self.access_points: dict[str, dict[str, object]] = {}
        self.connections: dict[str, dict[str, dict[str, object]]] = {}
        self.active: dict[str, dict[str, str | None]] = {}
        self.device_active: dict[str, str | None] = {}
        self.wireless_enabled = True
        self.calls: list[tuple] = []
        self.failures: dict[str, Exception] = {}
        self.state_callbacks: list[Callable[[int, int, int], None]] = []
        self.ap_callbacks: list[Callable[[str], None]] = []
        self.closed = False
        self._ids = itertools.count(1)

    # ------------------------------- helpers -------------------------------
    def _record(self, name: str, *args: object) -> None:
        self.calls.append((name, *args))
        error = self.failures.get(name)
        if error is not None:
            raise error

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def add_access_point(
        self,
        ssid: str | bytes,
        strength: int,
        *,
        frequency: int = 2437,
        flags: int = 0,
        wpa_flags: int = 0,
        rsn_flags: int = 0,
    ) -> str:
        path = f"/org/freedesktop/NetworkManager/AccessPoint/{next(self._ids)}"
        self.access_points[path] = {
            "Ssid": ssid.encode("utf-8") if isinstance(ssid, str) else ssid,
            "Strength": strength,
            "Frequency": frequency,
            "Flags": flags,
            "WpaFlags": wpa_flags,
            "RsnFlags": rsn_flags,
        }
        return path

    def add_saved_profile(self, ssid: str, *, key_mgmt: str | None = None) -> str:
        settings: dict[str, dict[str, object]] = {
            "connection": {"type": "802-11-wireless", "id": ssid},
            "802-11-wireless": {"ssid": ssid.encode("utf-8"), "mode": "infrastructure"},
        }
        if key_mgmt:
            settings["802-11-wireless-security"] = {"key-mgmt": key_mgmt}
        return self.add_connection(settings)

    def associate(self, ap_path: str, profile: str | None = None) -> str:
        return self.activate_connection(profile or "/", WIFI_DEVICE, ap_path)

    def emit_state_changed(self, new: int = 100, old: int = 30, reason: int = 0) -> None:
        for callback in list(self.state_callbacks):
            callback(new, old, reason)

    def emit_access_point_added(self, path: str) -> None:
        for callback in list(self.ap_callbacks):
            callback(path)

    # ------------------------------- devices -------------------------------
    def list_devices(self) -> list[str]:
        self._record("list_devices")
        return list(self.devices)

    def get_device_type(self, device: str) -> int:
        self._record("get_device_type", device)
        return self.devices[device]

    def get_active_connection(self, device: str) -> str | None:
        self._record("get_active_connection", device)
        return self.device_active.get(device)

    def list_active_connections(self) -> list[str]:
        self._record("list_active_connections")
        return list(self.active)

    def get_specific_object(self, active: str) -> str | None:
        self._record("get_specific_object", active)
        return self.active[active]["specific"]

    def get_active_profile(self, active: str) -> str | None:
        self._record("get_active_profile", active)
        return self.active[active]["profile"]

    # ---------------------------- access points ----------------------------
    def request_scan(self, device: str) -> None:
        self._record("request_scan", device)

    def list_access_points(self, device: str) -> list[str]:
        self._record("list_access_points", device)
        return list(self.access_points)

    def get_access_point(self, path: str) -> dict[str, object]:
        self._record("get_access_point", path)
        if path not in self.access_points:
            raise OperationFailed(
                "Object does not exist",
                error_name="org.freedesktop.DBus.Error.UnknownObject",
            )
        return dict(self.access_points[path])

    # ------------------------------ profiles -------------------------------
    def list_connections(self) -> list[str]:
        self._record("list_connections")
        return list(self.connections)

    def get_connection_settings(self, path: str) -> dict[str, dict[str, object]]:
        self._record("get_connection_settings", path)
        return copy.deepcopy(self.connections[path])

    def add_connection(self, settings: dict[str, dict[str, object]]) -> str:
        self._record("add_connection", settings)
        path = f"/org/freedesktop/NetworkManager/Settings/{next(self._ids)}"
        self.connections[path] = copy.deepcopy(settings)
        return path

    def update_connection(self, path: str, settings: dict[str, dict[str, object]]) -> None:
        self._record("update_connection", path, settings)
        self.connections[path] = copy.deepcopy(settings)

    def delete_connection(self, path: str) -> None:
        self._record("delete_connection", path)
        self.connections.pop(path)

    # ----------------------------- activation ------------------------------
    def activate_connection(self, connection: str, device: str, specific_object: str) -> str:
        self._record("activate_connection", connection, device, specific_object)
        previous = self.device_active.get(device)
        if previous is not None:
            self.active.pop(previous, None)
        active = f"/org/freedesktop/NetworkManager/ActiveConnection/{next(self._ids)}"
        self.active[active] = {
            "profile": connection if connection != "/" else None,
            "specific": specific_object if specific_object != "/" else None,
        }
        self.device_active[device] = active
        return active

    def add_and_activate_connection(
        self, settings: dict[str, dict[str, object]], device: str, specific_object: str
    ) -> tuple[str, str]:
        self._record("add_and_activate_connection", settings, device, specific_object)
        profile = copy.deepcopy(settings)
        profile.setdefault("connection", {})["type"] = "802-11-wireless"
        ap = self.access_points.get(specific_object, {})
        profile.setdefault("802-11-wireless", {}).setdefault("ssid", ap.get("Ssid", b""))
        path = f"/org/freedesktop/NetworkManager/Settings/{next(self._ids)}"
        self.connections[path] = profile
        active = f"/org/freedesktop/NetworkManager/ActiveConnection/{next(self._ids)}"
        self.active[active] = {"profile": path, "specific": specific_object}
        self.device_active[device] = active
        return path, active

    def deactivate_connection(self, active: str) -> None:
        self._record("deactivate_connection", active)
        self.active.pop(active, None)
        for device, current in list(self.device_active.items()):
            if current == active:
                self.device_active[device] = None

    # -------------------------------- radio --------------------------------
    def get_wireless_enabled(self) -> bool:
        self._record("get_wireless_enabled")
        return self.wireless_enabled

    def set_wireless_enabled(self, enabled: bool) -> None:
        self._record("set_wireless_enabled", enabled)
        self.wireless_enabled = enabled

    # ------------------------------- signals -------------------------------
    def subscribe_state_changed(self, device, callback):
        self._record("subscribe_state_changed", device)
        self.state_callbacks.append(callback)
        return lambda: self.state_callbacks.remove(callback)

    def subscribe_access_point_added(self, device, callback):
        self._record("subscribe_access_point_added", device)
        self.ap_callbacks.append(callback)
        return lambda: self.ap_callbacks.remove(callback)

    def close(self) -> None:
        self.closed = True


class FakeBluetoothBackend(BluetoothBackend):
    """In-memory BlueZ object tree with one adapter."""

    def __init__(self, *, adapter: bool = True) -> None:
        self.objects: dict[str, dict[str, dict[str, object]]] = {}
        if adapter:
            self.objects[ADAPTER] = {"org.bluez.Adapter1": {"Powered": True}}
        self.calls: list[tuple] = []
        self.failures: dict[str, Exception] = {}
        self.interface_callbacks: list[Callable] = []
        self.closed = False

    def _record(self, name: str, *args: object) -> None:
        self.calls.append((name, *args))
        error = self.failures.get(name)
        if error is not None:
            raise error

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def add_device(self, address: str, **props: object) -> str:
        path = f"{ADAPTER}/dev_{address.replace(':', '_')}"
        properties: dict[str, object] = {"Address": address}
        properties.update(props)
        self.objects[path] = {"org.bluez.Device1": properties}
        return path

    def device_props(self, path: str) -> dict[str, object]:
        return self.objects[path]["org.bluez.Device1"]

    def emit_interfaces_added(self, path: str) -> None:
        for callback in list(self.interface_callbacks):
            callback(path, self.objects.get(path, {}))

    def get_managed_objects(self):
        self._record("get_managed_objects")
        return copy.deepcopy(self.objects)

    def get_powered(self, adapter: str) -> bool:
        self._record("get_powered", adapter)
        return bool(self.objects[adapter]["org.bluez.Adapter1"]["Powered"])

    def set_powered(self, adapter: str, powered: bool) -> None:
        self._record("set_powered", adapter, powered)
        self.objects[adapter]["org.bluez.Adapter1"]["Powered"] = powered

    def start_discovery(self, adapter: str) -> None:
        self._record("start_discovery", adapter)

    def stop_discovery(self, adapter: str) -> None:
        self._record("stop_discovery", adapter)

    def remove_device(self, adapter: str, device: str) -> None:
        self._record("remove_device", adapter, device)
        self.objects.pop(device, None)

    def connect_device(self, device: str) -> None:
        self._record("connect_device", device)
        self.device_props(device)["Connected"] = True

    def disconnect_device(self, device: str) -> None:
        self._record("disconnect_device", device)
        self.device_props(device)["Connected"] = False

    def pair_device(self, device: str) -> None:
        self._record("pair_device", device)
        self.device_props(device)["Paired"] = True

    def set_trusted(self, device: str, trusted: bool) -> None:
        self._record("set_trusted", device, trusted)
        self.device_props(device)["Trusted"] = trusted

    def subscribe_interfaces_added(self, callback):
        self._record("subscribe_interfaces_added")
        self.interface_callbacks.append(callback)
        return lambda: self.interface_callbacks.remove(callback)

    def close(self) -> None:
        self.closed = True


FAST_TIMINGS = {
    "scan_settle": 0,
    "discovery_settle": 0,
    "radio_settle": 0,
    "device_settle": 0,
    "connect_settle": 0,
    "hotspot_restart_delay": 0,
    "state_debounce": 0.02,
    "access_point_debounce": 0.02,
    "bluetooth_debounce": 0.02,
    "poll_interval": 0.01,
}


@pytest.fixture
def network_backend() -> FakeNetworkBackend:
    return FakeNetworkBackend()


@pytest.fixture
def bluetooth_backend() -> FakeBluetoothBackend:
    return FakeBluetoothBackend()


@pytest.fixture
def config_manager(tmp_path: Path) -> ConfigManager:
    manager = ConfigManager(tmp_path / "config.json")
    manager.update(FAST_TIMINGS)
    return manager
