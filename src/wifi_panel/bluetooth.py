"""Bluetooth device discovery and the pair, trust, connect flow over BlueZ."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, TypeVar

from .backends import BluetoothBackend
from .classification import DeviceCategory, category_from_icon, resolve_display_name
from .errors import DaemonUnavailable, OperationFailed, PairingFailed, PanelError
from .system_log import SystemLog


logger = logging.getLogger(__name__)

_T = TypeVar("_T")

ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"

_START_DISCOVERY_IGNORED = ("InProgress", "Already")
_STOP_DISCOVERY_IGNORED = ("NotReady", "NotAuthorized")


@dataclass(slots=True)
class BluetoothDevice:
    address: str
    display_name: str
    category: DeviceCategory = DeviceCategory.OTHER
    paired: bool = False
    connected: bool = False
    trusted: bool = False
    rssi: int = 0
    device_path: str = ""

    def sort_key(self) -> tuple[int, int, str]:
        return (
            0 if self.connected else 1,
            0 if self.paired else 1,
            self.display_name.lower(),
        )

    def to_dict(self) -> dict[str, object | None]:
        return {
            "address": self.address,
            "name": self.display_name,
            "category": self.category.value,
            "category_label": self.category.label,
            "paired": self.paired,
            "connected": self.connected,
            "trusted": self.trusted,
            "rssi": self.rssi,
            "path": self.device_path,
        }


class PairingState(str, Enum):
    UNPAIRED = "unpaired"
    PAIRING = "pairing"
    PAIRED = "paired"
    PAIR_FAILED = "pair_failed"


def _flag(value: object) -> bool:
    return value if isinstance(value, bool) else False


def _text(value: object) -> str:
    return value if isinstance(value, str) else ""


def parse_device_properties(path: str, props: Mapping[str, object]) -> BluetoothDevice:
    """Build a device record from ``org.bluez.Device1`` properties.

    Missing or mistyped properties fall back to empty or false values.
    """

    address = _text(props.get("Address"))
    rssi = props.get("RSSI")
    return BluetoothDevice(
        address=address,
        display_name=resolve_display_name(props.get("Alias"), props.get("Name"), address),
        category=category_from_icon(props.get("Icon")),
        paired=_flag(props.get("Paired")),
        connected=_flag(props.get("Connected")),
        trusted=_flag(props.get("Trusted")),
        rssi=rssi if isinstance(rssi, int) and not isinstance(rssi, bool) else 0,
        device_path=path,
    )


def find_adapter(objects: Mapping[str, Mapping[str, object]]) -> str | None:
    for path in sorted(objects):
        if ADAPTER_INTERFACE in objects[path]:
            return path
    return None


def devices_for_adapter(
    objects: Mapping[str, Mapping[str, Mapping[str, object]]],
    adapter: str,
) -> list[BluetoothDevice]:
    prefix = adapter.rstrip("/") + "/"
    devices = [
        parse_device_properties(path, interfaces[DEVICE_INTERFACE])
        for path, interfaces in objects.items()
        if path.startswith(prefix) and DEVICE_INTERFACE in interfaces
    ]
    devices.sort(key=BluetoothDevice.sort_key)
    return devices


def _error_matches(exc: OperationFailed, markers: tuple[str, ...]) -> bool:
    haystack = f"{exc.error_name or ''} {exc}"
    return any(marker in haystack for marker in markers)


class BluetoothManager:
    """Operations on a single BlueZ adapter and its devices."""

    def __init__(
        self,
        backend: BluetoothBackend,
        adapter: str,
        *,
        system_log: SystemLog | None = None,
    ) -> None:
        self._backend = backend
        self._adapter = adapter
        self._system_log = system_log
        self._pairing: dict[str, PairingState] = {}

    @classmethod
    async def locate(
        cls,
        backend: BluetoothBackend,
        *,
        system_log: SystemLog | None = None,
    ) -> "BluetoothManager | None":
        """Bind to the first adapter, or return ``None`` when Bluetooth is absent."""

        try:
            objects = await asyncio.to_thread(backend.get_managed_objects)
        except DaemonUnavailable as exc:
            logger.info("Bluetooth unavailable: %s", exc)
            return None
        except PanelError as exc:
            logger.warning("Unable to enumerate Bluetooth objects: %s", exc)
            return None
        adapter = find_adapter(objects)
        if adapter is None:
            logger.info("No Bluetooth adapter present")
            return None
        logger.info("Using Bluetooth adapter %s", adapter)
        return cls(backend, adapter, system_log=system_log)

    @property
    def adapter(self) -> str:
        return self._adapter

    @property
    def backend(self) -> BluetoothBackend:
        return self._backend

    def pairing_state(self, device: BluetoothDevice) -> PairingState:
        state = self._pairing.get(device.device_path)
        if state is not None:
            return state
        return PairingState.PAIRED if device.paired else PairingState.UNPAIRED

    # ------------------------------ discovery ------------------------------
    async def discover_devices(self) -> list[BluetoothDevice]:
        objects = await self._call(self._backend.get_managed_objects)
        return devices_for_adapter(objects, self._adapter)

    async def start_discovery(self) -> None:
        try:
            await self._call(self._backend.start_discovery, self._adapter)
        except OperationFailed as exc:
            if not _error_matches(exc, _START_DISCOVERY_IGNORED):
                raise
            logger.debug("Discovery already running: %s", exc)

    async def stop_discovery(self) -> None:
        try:
            await self._call(self._backend.stop_discovery, self._adapter)
        except OperationFailed as exc:
            if not _error_matches(exc, _STOP_DISCOVERY_IGNORED):
                raise
            logger.debug("Discovery was not running: %s", exc)

    # -------------------------------- power --------------------------------
    async def is_powered(self) -> bool:
        return await self._call(self._backend.get_powered, self._adapter)

    async def set_powered(self, powered: bool) -> None:
        await self._call(self._backend.set_powered, self._adapter, bool(powered))
        self._record_log(
            "power",
            "Bluetooth powered on." if powered else "Bluetooth powered off.",
        )

    # ------------------------------- devices -------------------------------
    async def connect_device(self, device: BluetoothDevice) -> None:
        await self._call(self._backend.connect_device, device.device_path)
        self._record_log("connect", f"Connected {device.display_name}.", device=device)

    async def disconnect_device(self, device: BluetoothDevice) -> None:
        await self._call(self._backend.disconnect_device, device.device_path)
        self._record_log("disconnect", f"Disconnected {device.display_name}.", device=device)

    async def pair_device(self, device: BluetoothDevice) -> None:
        self._pairing[device.device_path] = PairingState.PAIRING
        try:
            await self._call(self._backend.pair_device, device.device_path)
        except OperationFailed as exc:
            if exc.error_name and exc.error_name.endswith("AlreadyExists"):
                self._pairing[device.device_path] = PairingState.PAIRED
                await self._trust_after_pair(device)
                return
            self._pairing[device.device_path] = PairingState.PAIR_FAILED
            self._record_log("pair_failed", f"Pairing {device.display_name} failed: {exc}", device=device)
            raise PairingFailed(
                f"Pairing with {device.display_name} failed ({exc}). "
                "Pair from bluetoothctl to enter a PIN.",
                error_name=exc.error_name,
            ) from exc
        except PanelError:
            self._pairing.pop(device.device_path, None)
            raise
        self._pairing[device.device_path] = PairingState.PAIRED
        self._record_log("paired", f"Paired {device.display_name}.", device=device)
        await self._trust_after_pair(device)

    async def trust_device(self, device: BluetoothDevice, trusted: bool = True) -> None:
        await self._call(self._backend.set_trusted, device.device_path, bool(trusted))

    async def remove_device(self, device: BluetoothDevice) -> None:
        await self._call(self._backend.remove_device, self._adapter, device.device_path)
        self._pairing.pop(device.device_path, None)
        self._record_log("removed", f"Removed {device.display_name}.", device=device)

    async def activate(self, device: BluetoothDevice) -> str:
        """Toggle a device: disconnect, connect, or pair (which trusts) then connect.

        Returns the action performed.
        """

        if device.connected:
            await self.disconnect_device(device)
            return "disconnected"
        if device.paired:
            await self.connect_device(device)
            return "connected"
        await self.pair_device(device)
        await self.connect_device(device)
        return "paired"

    async def _trust_after_pair(self, device: BluetoothDevice) -> None:
        # Every successful pair leaves the device trusted.
        try:
            await self.trust_device(device, True)
        except OperationFailed as exc:
            logger.warning("Unable to trust %s: %s", device.display_name, exc)

    # ----------------------------- implementation --------------------------
    async def _call(self, func: Callable[..., _T], *args: object) -> _T:
        return await asyncio.to_thread(func, *args)

    def _record_log(
        self,
        event: str,
        message: str,
        *,
        device: BluetoothDevice | None = None,
    ) -> None:
        metadata = {"address": device.address} if device is not None else None
        if self._system_log is not None:
            self._system_log.record("bluetooth", event, message, metadata=metadata)
        logger.info("Bluetooth event %s: %s", event, message)


__all__ = [
    "BluetoothDevice",
    "BluetoothManager",
    "PairingState",
    "devices_for_adapter",
    "find_adapter",
    "parse_device_properties",
]
