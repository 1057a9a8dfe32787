import pytest

from wifi_panel import dbus_backend
from wifi_panel.errors import DaemonUnavailable, OperationFailed


class FakeDBusError(Exception):
    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self._name = name
        self._message = message

    def get_dbus_name(self) -> str:
        return self._name

    def get_dbus_message(self) -> str:
        return self._message


@pytest.mark.parametrize(
    "name",
    [
        "org.freedesktop.DBus.Error.ServiceUnknown",
        "org.freedesktop.DBus.Error.NameHasNoOwner",
    ],
)
def test_missing_service_maps_to_daemon_unavailable(name: str) -> None:
    error = dbus_backend._translate(FakeDBusError(name, "The name is not activatable"))
    assert isinstance(error, DaemonUnavailable)
    assert str(error) == "The name is not activatable"


def test_other_errors_keep_their_name() -> None:
    error = dbus_backend._translate(
        FakeDBusError("org.bluez.Error.AuthenticationFailed", "Authentication Failed")
    )
    assert type(error) is OperationFailed
    assert error.error_name == "org.bluez.Error.AuthenticationFailed"


def test_error_context_passes_through_unrelated_errors() -> None:
    with pytest.raises(KeyError):
        with dbus_backend._dbus_errors():
            raise KeyError("missing")
    with pytest.raises(DaemonUnavailable):
        with dbus_backend._dbus_errors():
            raise DaemonUnavailable("gone")


def test_optional_path() -> None:
    assert dbus_backend._optional_path("/") is None
    assert dbus_backend._optional_path(None) is None
    assert dbus_backend._optional_path("/org/freedesktop/NetworkManager/AccessPoint/4") == (
        "/org/freedesktop/NetworkManager/AccessPoint/4"
    )


def test_backend_without_dbus_reports_unavailable(monkeypatch) -> None:
    monkeypatch.setattr(dbus_backend, "dbus", None)
    backend = dbus_backend.DBusNetworkBackend()
    with pytest.raises(DaemonUnavailable):
        backend.list_devices()
    with pytest.raises(DaemonUnavailable):
        dbus_backend.DBusBluetoothBackend().get_managed_objects()


def test_settings_are_wrapped_for_the_bus() -> None:
    dbus = pytest.importorskip("dbus")
    wrapped = dbus_backend._to_dbus_settings(
        {
            "connection": {"type": "802-11-wireless", "autoconnect": False},
            "802-11-wireless": {"ssid": b"Panel", "channel": 6},
        }
    )
    assert wrapped.signature == "sa{sv}"
    assert isinstance(wrapped["connection"]["autoconnect"], dbus.Boolean)
    assert isinstance(wrapped["802-11-wireless"]["ssid"], dbus.ByteArray)
    assert isinstance(wrapped["802-11-wireless"]["channel"], dbus.UInt32)
