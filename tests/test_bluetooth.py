import asyncio

import pytest

from wifi_panel.bluetooth import (
    BluetoothManager,
    PairingState,
    parse_device_properties,
)
from wifi_panel.classification import DeviceCategory
from wifi_panel.errors import DaemonUnavailable, OperationFailed, PairingFailed

ADAPTER = "/org/bluez/hci0"


def _manager(backend) -> BluetoothManager:
    return BluetoothManager(backend, ADAPTER)


def test_locate_returns_none_without_adapter(bluetooth_backend) -> None:
    bluetooth_backend.objects.clear()
    assert asyncio.run(BluetoothManager.locate(bluetooth_backend)) is None


def test_locate_returns_none_without_bluez(bluetooth_backend) -> None:
    bluetooth_backend.failures["get_managed_objects"] = DaemonUnavailable("org.bluez not provided")
    assert asyncio.run(BluetoothManager.locate(bluetooth_backend)) is None


def test_locate_binds_first_adapter(bluetooth_backend) -> None:
    manager = asyncio.run(BluetoothManager.locate(bluetooth_backend))
    assert manager is not None
    assert manager.adapter == ADAPTER


def test_connected_unpaired_sorts_before_paired_disconnected(bluetooth_backend) -> None:
    bluetooth_backend.add_device("00:00:00:00:00:01", Name="alpha", Paired=True)
    bluetooth_backend.add_device("00:00:00:00:00:02", Name="Zulu", Connected=True)
    bluetooth_backend.add_device("00:00:00:00:00:03", Name="beta")
    bluetooth_backend.add_device("00:00:00:00:00:04", Name="Bravo", Paired=True)

    devices = asyncio.run(_manager(bluetooth_backend).discover_devices())

    assert [device.display_name for device in devices] == ["Zulu", "alpha", "Bravo", "beta"]


def test_devices_of_other_adapters_are_ignored(bluetooth_backend) -> None:
    bluetooth_backend.add_device("00:00:00:00:00:01", Name="Mine")
    bluetooth_backend.objects["/org/bluez/hci1/dev_00_00_00_00_00_02"] = {
        "org.bluez.Device1": {"Address": "00:00:00:00:00:02", "Name": "Other"}
    }
    bluetooth_backend.objects["/org/bluez/hci0x/dev_X"] = {
        "org.bluez.Device1": {"Address": "00:00:00:00:00:03"}
    }
    devices = asyncio.run(_manager(bluetooth_backend).discover_devices())
    assert [device.display_name for device in devices] == ["Mine"]


def test_parse_device_properties_defaults() -> None:
    device = parse_device_properties(
        "/org/bluez/hci0/dev_X",
        {"Address": "AA:BB:CC:DD:EE:FF", "Paired": "yes", "RSSI": True, "Icon": 7},
    )
    assert device.display_name == "AA:BB:CC:DD:EE:FF"
    assert device.paired is False
    assert device.connected is False
    assert device.rssi == 0
    assert device.category is DeviceCategory.OTHER


def test_parse_device_properties_full() -> None:
    device = parse_device_properties(
        "/org/bluez/hci0/dev_X",
        {
            "Address": "AA:BB:CC:DD:EE:FF",
            "Name": "WH-1000XM4",
            "Alias": "Headphones",
            "Icon": "audio-headset",
            "Paired": True,
            "Connected": True,
            "Trusted": True,
            "RSSI": -48,
        },
    )
    assert device.display_name == "Headphones"
    assert device.category is DeviceCategory.AUDIO
    assert device.rssi == -48
    assert device.to_dict()["category_label"] == "Audio"


def test_unpaired_device_is_paired_trusted_then_connected(bluetooth_backend) -> None:
    path = bluetooth_backend.add_device("00:11:22:33:44:55", Name="Speaker")

    async def _exercise() -> tuple[str, PairingState]:
        manager = _manager(bluetooth_backend)
        device = (await manager.discover_devices())[0]
        action = await manager.activate(device)
        return action, manager.pairing_state(device)

    action, state = asyncio.run(_exercise())

    assert action == "paired"
    assert state is PairingState.PAIRED
    assert bluetooth_backend.calls[-3:] == [
        ("pair_device", path),
        ("set_trusted", path, True),
        ("connect_device", path),
    ]


def test_pair_failure_stops_the_flow(bluetooth_backend) -> None:
    path = bluetooth_backend.add_device("00:11:22:33:44:55", Name="Keyboard")
    bluetooth_backend.failures["pair_device"] = OperationFailed(
        "Authentication Failed", error_name="org.bluez.Error.AuthenticationFailed"
    )

    async def _exercise() -> PairingState:
        manager = _manager(bluetooth_backend)
        device = (await manager.discover_devices())[0]
        with pytest.raises(PairingFailed, match="bluetoothctl") as info:
            await manager.activate(device)
        assert info.value.error_name == "org.bluez.Error.AuthenticationFailed"
        return manager.pairing_state(device)

    assert asyncio.run(_exercise()) is PairingState.PAIR_FAILED
    assert "set_trusted" not in bluetooth_backend.call_names()
    assert "connect_device" not in bluetooth_backend.call_names()
    assert bluetooth_backend.device_props(path).get("Paired") is None


def test_already_paired_error_continues(bluetooth_backend) -> None:
    bluetooth_backend.add_device("00:11:22:33:44:55", Name="Mouse")
    bluetooth_backend.failures["pair_device"] = OperationFailed(
        "Already Exists", error_name="org.bluez.Error.AlreadyExists"
    )

    async def _exercise() -> str:
        manager = _manager(bluetooth_backend)
        device = (await manager.discover_devices())[0]
        return await manager.activate(device)

    assert asyncio.run(_exercise()) == "paired"
    assert "connect_device" in bluetooth_backend.call_names()
    assert "set_trusted" in bluetooth_backend.call_names()


@pytest.mark.parametrize(
    ("props", "action", "call"),
    [
        ({"Paired": True, "Connected": True}, "disconnected", "disconnect_device"),
        ({"Paired": True}, "connected", "connect_device"),
    ],
)
def test_activate_toggles_known_devices(bluetooth_backend, props, action, call) -> None:
    path = bluetooth_backend.add_device("00:11:22:33:44:55", Name="Phone", **props)

    async def _exercise() -> str:
        manager = _manager(bluetooth_backend)
        device = (await manager.discover_devices())[0]
        return await manager.activate(device)

    assert asyncio.run(_exercise()) == action
    assert bluetooth_backend.calls[-1] == (call, path)
    assert "pair_device" not in bluetooth_backend.call_names()


def test_start_discovery_ignores_in_progress(bluetooth_backend) -> None:
    bluetooth_backend.failures["start_discovery"] = OperationFailed(
        "Operation already in progress", error_name="org.bluez.Error.InProgress"
    )
    asyncio.run(_manager(bluetooth_backend).start_discovery())


def test_start_discovery_raises_other_errors(bluetooth_backend) -> None:
    bluetooth_backend.failures["start_discovery"] = OperationFailed(
        "Resource Not Ready", error_name="org.bluez.Error.NotReady"
    )
    with pytest.raises(OperationFailed):
        asyncio.run(_manager(bluetooth_backend).start_discovery())


def test_stop_discovery_ignores_not_ready(bluetooth_backend) -> None:
    bluetooth_backend.failures["stop_discovery"] = OperationFailed(
        "Resource Not Ready", error_name="org.bluez.Error.NotReady"
    )
    asyncio.run(_manager(bluetooth_backend).stop_discovery())


def test_remove_and_power(bluetooth_backend) -> None:
    path = bluetooth_backend.add_device("00:11:22:33:44:55", Name="Old")

    async def _exercise() -> bool:
        manager = _manager(bluetooth_backend)
        device = (await manager.discover_devices())[0]
        await manager.remove_device(device)
        await manager.set_powered(False)
        return await manager.is_powered()

    assert asyncio.run(_exercise()) is False
    assert ("remove_device", ADAPTER, path) in bluetooth_backend.calls
    assert path not in bluetooth_backend.objects


def test_pairing_alone_marks_device_trusted(bluetooth_backend) -> None:
    path = bluetooth_backend.add_device("00:11:22:33:44:55", Name="Headset")

    async def _exercise() -> None:
        manager = _manager(bluetooth_backend)
        device = (await manager.discover_devices())[0]
        await manager.pair_device(device)

    asyncio.run(_exercise())

    assert bluetooth_backend.device_props(path)["Trusted"] is True
    assert bluetooth_backend.calls[-2:] == [("pair_device", path), ("set_trusted", path, True)]
    assert "connect_device" not in bluetooth_backend.call_names()


def test_trust_failure_after_pair_is_not_fatal(bluetooth_backend) -> None:
    path = bluetooth_backend.add_device("00:11:22:33:44:55", Name="Headset")
    bluetooth_backend.failures["set_trusted"] = OperationFailed("Not ready")

    async def _exercise() -> str:
        manager = _manager(bluetooth_backend)
        device = (await manager.discover_devices())[0]
        return await manager.activate(device)

    assert asyncio.run(_exercise()) == "paired"
    assert bluetooth_backend.device_props(path)["Connected"] is True
