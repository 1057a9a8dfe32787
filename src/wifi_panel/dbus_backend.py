"""System-bus implementations of the NetworkManager and BlueZ backends."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Mapping

from .backends import BluetoothBackend, NetworkBackend, Settings, Unsubscribe
from .errors import DaemonUnavailable, OperationFailed, PanelError

try:  # pragma: no cover - import guard for optional dependency failures
    import dbus
    import dbus.exceptions
    import dbus.mainloop.glib
except Exception as exc:  # pragma: no cover - dependency import failure
    dbus = None  # type: ignore[assignment]
    _dbus_error: Exception | None = exc
else:
    _dbus_error = None

try:  # pragma: no cover - import guard for optional dependency failures
    from gi.repository import GLib
except Exception as exc:  # pragma: no cover - dependency import failure
    GLib = None  # type: ignore[assignment]
    _glib_error: Exception | None = exc
else:
    _glib_error = None


logger = logging.getLogger(__name__)

NM_BUS_NAME = "org.freedesktop.NetworkManager"
NM_PATH = "/org/freedesktop/NetworkManager"
NM_SETTINGS_PATH = "/org/freedesktop/NetworkManager/Settings"
NM_IFACE = "org.freedesktop.NetworkManager"
NM_SETTINGS_IFACE = "org.freedesktop.NetworkManager.Settings"
NM_CONNECTION_IFACE = "org.freedesktop.NetworkManager.Settings.Connection"
NM_DEVICE_IFACE = "org.freedesktop.NetworkManager.Device"
NM_WIRELESS_IFACE = "org.freedesktop.NetworkManager.Device.Wireless"
NM_ACTIVE_IFACE = "org.freedesktop.NetworkManager.Connection.Active"
NM_AP_IFACE = "org.freedesktop.NetworkManager.AccessPoint"

BLUEZ_BUS_NAME = "org.bluez"
BLUEZ_ADAPTER_IFACE = "org.bluez.Adapter1"
BLUEZ_DEVICE_IFACE = "org.bluez.Device1"

DBUS_PROPERTIES_IFACE = "org.freedesktop.DBus.Properties"
DBUS_OBJECT_MANAGER_IFACE = "org.freedesktop.DBus.ObjectManager"

_UNAVAILABLE_ERRORS = {
    "org.freedesktop.DBus.Error.ServiceUnknown",
    "org.freedesktop.DBus.Error.NameHasNoOwner",
    "org.freedesktop.DBus.Error.NoServer",
    "org.freedesktop.DBus.Error.Disconnected",
    "org.freedesktop.DBus.Error.Spawn.ServiceNotFound",
}

# Pairing waits on the remote side accepting.
_PAIR_TIMEOUT = 60.0
_CONNECT_TIMEOUT = 30.0

_main_loop_lock = threading.Lock()
_main_loop_thread: threading.Thread | None = None


def _ensure_main_loop() -> None:
    """Run a GLib main loop in a daemon thread so bus signals are dispatched."""

    global _main_loop_thread
    with _main_loop_lock:
        if _main_loop_thread is not None and _main_loop_thread.is_alive():
            return
        if GLib is None:
            raise DaemonUnavailable(f"GLib main loop unavailable: {_glib_error}")
        loop = GLib.MainLoop()
        thread = threading.Thread(target=loop.run, name="dbus-glib-loop", daemon=True)
        thread.start()
        _main_loop_thread = thread


def _translate(exc: Exception) -> PanelError:
    name = None
    message = str(exc)
    get_name = getattr(exc, "get_dbus_name", None)
    if callable(get_name):
        name = get_name()
    get_message = getattr(exc, "get_dbus_message", None)
    if callable(get_message):
        message = get_message() or message
    if name in _UNAVAILABLE_ERRORS:
        return DaemonUnavailable(message)
    return OperationFailed(message, error_name=name)


@contextmanager
def _dbus_errors() -> Iterator[None]:
    try:
        yield
    except PanelError:
        raise
    except Exception as exc:
        if dbus is not None and isinstance(exc, dbus.exceptions.DBusException):
            raise _translate(exc) from exc
        raise


def _unwrap(value: object) -> object:
    """Convert dbus-python wrapper types into plain Python values."""

    if isinstance(value, dbus.Boolean):
        return bool(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return str(value)
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return float(value)
    if isinstance(value, dict):
        return {_unwrap(key): _unwrap(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return tuple(_unwrap(item) for item in value)
    if isinstance(value, list):
        return [_unwrap(item) for item in value]
    return value


def _to_variant(value: object) -> object:
    if isinstance(value, bool):
        return dbus.Boolean(value)
    if isinstance(value, (bytes, bytearray)):
        return dbus.ByteArray(bytes(value))
    if isinstance(value, int):
        return dbus.UInt32(value)
    if isinstance(value, str):
        return dbus.String(value)
    return value


def _to_dbus_settings(settings: Settings) -> object:
    return dbus.Dictionary(
        {
            section: dbus.Dictionary(
                {key: _to_variant(item) for key, item in values.items()},
                signature="sv",
            )
            for section, values in settings.items()
        },
        signature="sa{sv}",
    )


def _object_path(path: str | None) -> object:
    return dbus.ObjectPath(path or "/")


def _optional_path(value: object) -> str | None:
    path = str(value) if value is not None else ""
    if not path or path == "/":
        return None
    return path


class _SystemBusClient:
    """Shared system-bus plumbing for the concrete backends."""

    def __init__(self, bus_name: str, *, bus: object | None = None) -> None:
        self._bus_name = bus_name
        self._bus = bus
        self._lock = threading.Lock()
        self._matches: list[object] = []

    @property
    def bus(self):
        if dbus is None:
            raise DaemonUnavailable(f"dbus-python unavailable: {_dbus_error}")
        with self._lock:
            if self._bus is None:
                if GLib is not None:
                    dbus.mainloop.glib.DBusGMainLoop(set_as_default=True)
                try:
                    self._bus = dbus.SystemBus()
                except dbus.exceptions.DBusException as exc:
                    raise DaemonUnavailable(f"System bus unavailable: {exc}") from exc
            return self._bus

    def _interface(self, path: str, interface: str):
        with _dbus_errors():
            return dbus.Interface(self.bus.get_object(self._bus_name, path), interface)

    def _get_property(self, path: str, interface: str, name: str) -> object:
        props = self._interface(path, DBUS_PROPERTIES_IFACE)
        with _dbus_errors():
            return _unwrap(props.Get(interface, name, byte_arrays=True))

    def _get_all(self, path: str, interface: str) -> dict[str, object]:
        props = self._interface(path, DBUS_PROPERTIES_IFACE)
        with _dbus_errors():
            result = _unwrap(props.GetAll(interface, byte_arrays=True))
        return result if isinstance(result, dict) else {}

    def _set_property(self, path: str, interface: str, name: str, value: object) -> None:
        props = self._interface(path, DBUS_PROPERTIES_IFACE)
        with _dbus_errors():
            props.Set(interface, name, value)

    def _add_receiver(self, handler: Callable[..., None], **match: object) -> Unsubscribe:
        _ensure_main_loop()
        with _dbus_errors():
            receiver = self.bus.add_signal_receiver(
                handler, bus_name=self._bus_name, byte_arrays=True, **match
            )
        self._matches.append(receiver)

        def _remove() -> None:
            try:
                receiver.remove()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to remove signal receiver", exc_info=True)
            if receiver in self._matches:
                self._matches.remove(receiver)

        return _remove

    def close(self) -> None:
        for receiver in list(self._matches):
            try:
                receiver.remove()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to remove signal receiver", exc_info=True)
        self._matches.clear()


class DBusNetworkBackend(_SystemBusClient, NetworkBackend):
    """NetworkManager over the system bus."""

    def __init__(self, *, bus: object | None = None) -> None:
        super().__init__(NM_BUS_NAME, bus=bus)

    # ------------------------------- devices -------------------------------
    def list_devices(self) -> list[str]:
        manager = self._interface(NM_PATH, NM_IFACE)
        with _dbus_errors():
            return [str(path) for path in manager.GetDevices()]

    def get_device_type(self, device: str) -> int:
        value = self._get_property(device, NM_DEVICE_IFACE, "DeviceType")
        return int(value) if isinstance(value, int) else 0

    def get_active_connection(self, device: str) -> str | None:
        return _optional_path(self._get_property(device, NM_DEVICE_IFACE, "ActiveConnection"))

    # -------------------------- active connections -------------------------
    def list_active_connections(self) -> list[str]:
        paths = self._get_property(NM_PATH, NM_IFACE, "ActiveConnections")
        if not isinstance(paths, list):
            return []
        return [str(path) for path in paths]

    def get_specific_object(self, active: str) -> str | None:
        return _optional_path(self._get_property(active, NM_ACTIVE_IFACE, "SpecificObject"))

    def get_active_profile(self, active: str) -> str | None:
        return _optional_path(self._get_property(active, NM_ACTIVE_IFACE, "Connection"))

    # ---------------------------- access points ----------------------------
    def request_scan(self, device: str) -> None:
        wireless = self._interface(device, NM_WIRELESS_IFACE)
        with _dbus_errors():
            wireless.RequestScan(dbus.Dictionary({}, signature="sv"))

    def list_access_points(self, device: str) -> list[str]:
        wireless = self._interface(device, NM_WIRELESS_IFACE)
        with _dbus_errors():
            return [str(path) for path in wireless.GetAllAccessPoints()]

    def get_access_point(self, path: str) -> dict[str, object]:
        return self._get_all(path, NM_AP_IFACE)

    # ------------------------------ profiles -------------------------------
    def list_connections(self) -> list[str]:
        settings = self._interface(NM_SETTINGS_PATH, NM_SETTINGS_IFACE)
        with _dbus_errors():
            return [str(path) for path in settings.ListConnections()]

    def get_connection_settings(self, path: str) -> Settings:
        connection = self._interface(path, NM_CONNECTION_IFACE)
        with _dbus_errors():
            result = _unwrap(connection.GetSettings(byte_arrays=True))
        return result if isinstance(result, dict) else {}

    def add_connection(self, settings: Settings) -> str:
        iface = self._interface(NM_SETTINGS_PATH, NM_SETTINGS_IFACE)
        with _dbus_errors():
            return str(iface.AddConnection(_to_dbus_settings(settings)))

    def update_connection(self, path: str, settings: Settings) -> None:
        connection = self._interface(path, NM_CONNECTION_IFACE)
        with _dbus_errors():
            connection.Update(_to_dbus_settings(settings))

    def delete_connection(self, path: str) -> None:
        connection = self._interface(path, NM_CONNECTION_IFACE)
        with _dbus_errors():
            connection.Delete()

    # ----------------------------- activation ------------------------------
    def activate_connection(self, connection: str, device: str, specific_object: str) -> str:
        manager = self._interface(NM_PATH, NM_IFACE)
        with _dbus_errors():
            active = manager.ActivateConnection(
                _object_path(connection),
                _object_path(device),
                _object_path(specific_object),
            )
        return str(active)

    def add_and_activate_connection(
        self, settings: Settings, device: str, specific_object: str
    ) -> tuple[str, str]:
        manager = self._interface(NM_PATH, NM_IFACE)
        with _dbus_errors():
            path, active = manager.AddAndActivateConnection(
                _to_dbus_settings(settings),
                _object_path(device),
                _object_path(specific_object),
            )
        return str(path), str(active)

    def deactivate_connection(self, active: str) -> None:
        manager = self._interface(NM_PATH, NM_IFACE)
        with _dbus_errors():
            manager.DeactivateConnection(_object_path(active))

    # -------------------------------- radio --------------------------------
    def get_wireless_enabled(self) -> bool:
        return bool(self._get_property(NM_PATH, NM_IFACE, "WirelessEnabled"))

    def set_wireless_enabled(self, enabled: bool) -> None:
        self._set_property(NM_PATH, NM_IFACE, "WirelessEnabled", dbus.Boolean(enabled))

    # ------------------------------- signals -------------------------------
    def subscribe_state_changed(
        self, device: str, callback: Callable[[int, int, int], None]
    ) -> Unsubscribe:
        def _handler(new_state, old_state, reason) -> None:
            callback(int(new_state), int(old_state), int(reason))

        return self._add_receiver(
            _handler,
            signal_name="StateChanged",
            dbus_interface=NM_DEVICE_IFACE,
            path=device,
        )

    def subscribe_access_point_added(
        self, device: str, callback: Callable[[str], None]
    ) -> Unsubscribe:
        def _handler(path) -> None:
            callback(str(path))

        return self._add_receiver(
            _handler,
            signal_name="AccessPointAdded",
            dbus_interface=NM_WIRELESS_IFACE,
            path=device,
        )


class DBusBluetoothBackend(_SystemBusClient, BluetoothBackend):
    """BlueZ over the system bus."""

    def __init__(self, *, bus: object | None = None) -> None:
        super().__init__(BLUEZ_BUS_NAME, bus=bus)

    def get_managed_objects(self) -> dict[str, dict[str, Mapping[str, object]]]:
        manager = self._interface("/", DBUS_OBJECT_MANAGER_IFACE)
        with _dbus_errors():
            result = _unwrap(manager.GetManagedObjects(byte_arrays=True))
        return result if isinstance(result, dict) else {}

    def get_powered(self, adapter: str) -> bool:
        return bool(self._get_property(adapter, BLUEZ_ADAPTER_IFACE, "Powered"))

    def set_powered(self, adapter: str, powered: bool) -> None:
        self._set_property(adapter, BLUEZ_ADAPTER_IFACE, "Powered", dbus.Boolean(powered))

    def start_discovery(self, adapter: str) -> None:
        iface = self._interface(adapter, BLUEZ_ADAPTER_IFACE)
        with _dbus_errors():
            iface.StartDiscovery()

    def stop_discovery(self, adapter: str) -> None:
        iface = self._interface(adapter, BLUEZ_ADAPTER_IFACE)
        with _dbus_errors():
            iface.StopDiscovery()

    def remove_device(self, adapter: str, device: str) -> None:
        iface = self._interface(adapter, BLUEZ_ADAPTER_IFACE)
        with _dbus_errors():
            iface.RemoveDevice(_object_path(device))

    def connect_device(self, device: str) -> None:
        iface = self._interface(device, BLUEZ_DEVICE_IFACE)
        with _dbus_errors():
            iface.Connect(timeout=_CONNECT_TIMEOUT)

    def disconnect_device(self, device: str) -> None:
        iface = self._interface(device, BLUEZ_DEVICE_IFACE)
        with _dbus_errors():
            iface.Disconnect()

    def pair_device(self, device: str) -> None:
        iface = self._interface(device, BLUEZ_DEVICE_IFACE)
        with _dbus_errors():
            iface.Pair(timeout=_PAIR_TIMEOUT)

    def set_trusted(self, device: str, trusted: bool) -> None:
        self._set_property(device, BLUEZ_DEVICE_IFACE, "Trusted", dbus.Boolean(trusted))

    def subscribe_interfaces_added(
        self, callback: Callable[[str, dict[str, Mapping[str, object]]], None]
    ) -> Unsubscribe:
        def _handler(path, interfaces) -> None:
            payload = _unwrap(interfaces)
            callback(str(path), payload if isinstance(payload, dict) else {})

        return self._add_receiver(
            _handler,
            signal_name="InterfacesAdded",
            dbus_interface=DBUS_OBJECT_MANAGER_IFACE,
        )


__all__ = ["DBusBluetoothBackend", "DBusNetworkBackend"]
