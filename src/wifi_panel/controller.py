"""Panel state and the orchestration entry points used by the presentation layer."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable

from .backends import BluetoothBackend, NetworkBackend
from .bluetooth import BluetoothDevice, BluetoothManager
from .classification import Band
from .config import ConfigManager, PanelConfig
from .errors import (
    CredentialRequired,
    DaemonUnavailable,
    DeviceNotFound,
    OperationFailed,
    PairingFailed,
    PanelError,
    RadioBusy,
)
from .hotspot import HotspotManager, HotspotProfile, validate_hotspot_password
from .system_log import SystemLog
from .wifi import WiFiManager, WiFiNetwork


logger = logging.getLogger(__name__)

WIFI_RADIO = "wifi"
BLUETOOTH_RADIO = "bluetooth"


class PanelView(str, Enum):
    WIFI = "wifi"
    BLUETOOTH = "bluetooth"


@dataclass(slots=True)
class PendingTarget:
    """A secured network waiting for the user to enter its password."""

    network: WiFiNetwork
    token: int


@dataclass(slots=True)
class PanelState:
    networks: list[WiFiNetwork] = field(default_factory=list)
    devices: list[BluetoothDevice] = field(default_factory=list)
    pending: PendingTarget | None = None
    status_message: str = ""
    active_view: PanelView = PanelView.WIFI
    wifi_enabled: bool = True
    bluetooth_available: bool = False
    bluetooth_powered: bool = False
    hotspot_active: bool = False
    hotspot: HotspotProfile | None = None
    fatal_error: str | None = None

    def to_dict(self) -> dict[str, object | None]:
        return {
            "networks": [network.to_dict() for network in self.networks],
            "devices": [device.to_dict() for device in self.devices],
            "pending_ssid": self.pending.network.ssid if self.pending else None,
            "status_message": self.status_message,
            "active_view": self.active_view.value,
            "wifi_enabled": self.wifi_enabled,
            "bluetooth_available": self.bluetooth_available,
            "bluetooth_powered": self.bluetooth_powered,
            "hotspot_active": self.hotspot_active,
            "hotspot": self.hotspot.to_dict() if self.hotspot else None,
            "fatal_error": self.fatal_error,
        }


class PanelController:
    """Owns :class:`PanelState` and sequences every daemon operation.

    State is only written on the event loop between awaits. Each radio runs
    one orchestration at a time; refresh passes are not serialized and the
    last one to complete wins.
    """

    def __init__(
        self,
        network_backend: NetworkBackend,
        bluetooth_backend: BluetoothBackend | None = None,
        *,
        config_manager: ConfigManager,
        system_log: SystemLog | None = None,
    ) -> None:
        self._network_backend = network_backend
        self._bluetooth_backend = bluetooth_backend
        self._config_manager = config_manager
        self._system_log = system_log
        self.state = PanelState()
        self._wifi: WiFiManager | None = None
        self._hotspot: HotspotManager | None = None
        self._bluetooth: BluetoothManager | None = None
        self._bluetooth_ready: asyncio.Future[BluetoothManager | None] | None = None
        self._bluetooth_task: asyncio.Task[None] | None = None
        self._busy: set[str] = set()
        self._pending_seq = 0
        self._listeners: list[Callable[[PanelState], None]] = []

    # ------------------------------ properties -----------------------------
    @property
    def config(self) -> PanelConfig:
        return self._config_manager.get_config()

    @property
    def config_manager(self) -> ConfigManager:
        return self._config_manager

    @property
    def wifi(self) -> WiFiManager | None:
        return self._wifi

    @property
    def bluetooth(self) -> BluetoothManager | None:
        return self._bluetooth

    @property
    def bluetooth_ready(self) -> asyncio.Future[BluetoothManager | None]:
        """Resolves once Bluetooth discovery finished, to a manager or ``None``."""

        if self._bluetooth_ready is None:
            self._bluetooth_ready = asyncio.get_running_loop().create_future()
        return self._bluetooth_ready

    @property
    def bluetooth_view_active(self) -> bool:
        return self.state.active_view is PanelView.BLUETOOTH

    # ------------------------------ lifecycle ------------------------------
    async def start(self) -> None:
        """Locate the Wi-Fi device and begin locating the Bluetooth adapter."""

        ready = self.bluetooth_ready
        try:
            self._wifi = await WiFiManager.locate(
                self._network_backend, system_log=self._system_log
            )
        except (DaemonUnavailable, DeviceNotFound) as exc:
            logger.error("Wi-Fi unavailable: %s", exc)
            self.state.fatal_error = str(exc)
            self.state.status_message = str(exc)
        else:
            self._hotspot = HotspotManager(
                self._network_backend, self._wifi.device, system_log=self._system_log
            )
            await self.sync_radio_state()
            await self._sync_hotspot_state()
            await self.refresh_networks()
        if not ready.done():
            self._bluetooth_task = asyncio.get_running_loop().create_task(
                self._locate_bluetooth(), name="locate-bluetooth"
            )
        self._notify()

    async def aclose(self) -> None:
        task = self._bluetooth_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._bluetooth_task = None
        await asyncio.to_thread(self._network_backend.close)
        if self._bluetooth_backend is not None:
            await asyncio.to_thread(self._bluetooth_backend.close)

    async def _locate_bluetooth(self) -> None:
        manager: BluetoothManager | None = None
        try:
            if self._bluetooth_backend is not None:
                manager = await BluetoothManager.locate(
                    self._bluetooth_backend, system_log=self._system_log
                )
            self._bluetooth = manager
            self.state.bluetooth_available = manager is not None
            if manager is not None:
                try:
                    self.state.bluetooth_powered = await manager.is_powered()
                except PanelError as exc:
                    logger.warning("Unable to read Bluetooth power state: %s", exc)
            self._notify()
        finally:
            ready = self.bluetooth_ready
            if not ready.done():
                ready.set_result(manager)

    # ------------------------------ listeners ------------------------------
    def add_listener(self, listener: Callable[[PanelState], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[PanelState], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception:  # pragma: no cover - listener bugs are only logged
                logger.debug("Panel state listener failed", exc_info=True)

    # ------------------------------- Wi-Fi ---------------------------------
    async def discover_networks(self) -> list[WiFiNetwork]:
        return await self.refresh_networks()

    async def refresh_networks(self) -> list[WiFiNetwork]:
        """Rebuild the network list; on failure the previous list is kept."""

        wifi = self._require_wifi()
        if not self.state.wifi_enabled:
            self.state.networks = []
            self.state.status_message = "Wi-Fi disabled"
            self._notify()
            return []
        try:
            networks = await wifi.discover_networks()
        except PanelError as exc:
            logger.warning("Failed to load networks: %s", exc)
            self._set_status("Failed to load networks")
            return list(self.state.networks)
        self.state.networks = networks
        self.state.status_message = self._connection_status()
        self._notify()
        return networks

    async def scan(self) -> list[WiFiNetwork]:
        """Ask for a fresh scan, let results settle, then refresh."""

        wifi = self._require_wifi()
        try:
            await wifi.request_scan()
        except PanelError as exc:
            # NetworkManager rate-limits scans; the cached list is still useful.
            logger.debug("Scan request rejected: %s", exc)
        await asyncio.sleep(self.config.scan_settle)
        return await self.refresh_networks()

    async def on_panel_shown(self) -> None:
        if self._wifi is None:
            return
        await self.sync_radio_state()
        if self.state.wifi_enabled:
            await self.scan()

    async def handle_device_state_changed(self) -> None:
        if self._wifi is None:
            return
        await self.sync_radio_state()
        await self._sync_hotspot_state()
        await self.refresh_networks()

    async def sync_radio_state(self) -> bool:
        wifi = self._require_wifi()
        try:
            self.state.wifi_enabled = await wifi.is_radio_enabled()
        except PanelError as exc:
            logger.warning("Unable to read Wi-Fi radio state: %s", exc)
        return self.state.wifi_enabled

    async def select_network(self, ssid: str) -> str:
        """Act on a click on a network row.

        Returns ``"disconnected"``, ``"connected"`` or ``"credential_required"``.
        """

        network = self._find_network(ssid)
        if network.connected:
            await self.disconnect()
            return "disconnected"
        if network.saved or not network.security.requires_credential:
            self.state.pending = None
            await self.connect(network)
            return "connected"
        self._pending_seq += 1
        self.state.pending = PendingTarget(network=network, token=self._pending_seq)
        self.state.status_message = f"Enter the password for {network.ssid}"
        self._notify()
        return "credential_required"

    async def submit_credential(self, credential: str) -> str:
        pending = self.state.pending
        if pending is None:
            raise ValueError("No network is waiting for a password")
        if not credential:
            raise CredentialRequired("Password must not be empty")
        return await self.connect(pending.network, credential)

    def cancel_pending(self) -> None:
        """Drop the pending target; an in-flight attempt's outcome is then ignored."""

        self.state.pending = None
        self.state.status_message = self._connection_status()
        self._notify()

    async def connect(self, network: WiFiNetwork, credential: str | None = None) -> str:
        wifi = self._require_wifi()
        pending = self.state.pending
        token = pending.token if pending is not None and pending.network.ssid == network.ssid else None
        async with self._exclusive(WIFI_RADIO):
            self.state.status_message = f"Connecting to {network.ssid}..."
            self._notify()
            try:
                active = await wifi.connect(network, credential)
            except PanelError as exc:
                if not self._superseded(token):
                    self.state.status_message = self._connect_failure_message(exc, credential)
                    self._notify()
                raise
            if not self._superseded(token):
                if token is not None:
                    self.state.pending = None
                self.state.status_message = f"Connected to {network.ssid}"
                self._notify()
        # NetworkManager reports the associated access point shortly after activation.
        await asyncio.sleep(self.config.connect_settle)
        await self.refresh_networks()
        return active

    async def disconnect(self) -> None:
        wifi = self._require_wifi()
        async with self._exclusive(WIFI_RADIO):
            try:
                await wifi.disconnect()
            except PanelError as exc:
                self._set_status(str(exc))
                raise
        await self.refresh_networks()

    async def forget(self, ssid: str) -> None:
        wifi = self._require_wifi()
        async with self._exclusive(WIFI_RADIO):
            try:
                await wifi.forget(ssid)
            except PanelError as exc:
                self._set_status(str(exc))
                raise
        await self.refresh_networks()
        self._set_status(f"Forgot {ssid}")

    async def set_radio_enabled(self, enabled: bool) -> None:
        wifi = self._require_wifi()
        async with self._exclusive(WIFI_RADIO):
            await wifi.set_radio_enabled(enabled)
            self.state.wifi_enabled = bool(enabled)
        if not enabled:
            await self.refresh_networks()
            return
        await asyncio.sleep(self.config.radio_settle)
        await self.scan()

    # ----------------------------- Bluetooth -------------------------------
    async def set_view(self, view: PanelView | str) -> None:
        self.state.active_view = PanelView(view)
        self._notify()
        if self.state.active_view is PanelView.BLUETOOTH and self._bluetooth is not None:
            await self.scan_devices()

    async def discover_devices(self) -> list[BluetoothDevice]:
        return await self.refresh_devices()

    async def refresh_devices(self) -> list[BluetoothDevice]:
        manager = self._bluetooth
        if manager is None:
            return []
        try:
            devices = await manager.discover_devices()
        except PanelError as exc:
            logger.warning("Failed to load Bluetooth devices: %s", exc)
            self._set_status("Failed to load devices")
            return list(self.state.devices)
        self.state.devices = devices
        self._notify()
        return devices

    async def scan_devices(self) -> list[BluetoothDevice]:
        manager = self._require_bluetooth()
        try:
            await manager.start_discovery()
        except PanelError as exc:
            logger.warning("Unable to start Bluetooth discovery: %s", exc)
        await asyncio.sleep(self.config.discovery_settle)
        return await self.refresh_devices()

    async def set_bluetooth_powered(self, powered: bool) -> None:
        manager = self._require_bluetooth()
        async with self._exclusive(BLUETOOTH_RADIO):
            await manager.set_powered(powered)
            self.state.bluetooth_powered = bool(powered)
        if powered:
            await self.scan_devices()
        else:
            self.state.devices = []
            self._notify()

    async def activate_device(self, address: str) -> str:
        manager = self._require_bluetooth()
        device = self._find_device(address)
        async with self._exclusive(BLUETOOTH_RADIO):
            try:
                action = await manager.activate(device)
            except PairingFailed:
                self._set_status("Pairing failed, try bluetoothctl")
                raise
            except PanelError as exc:
                self._set_status(f"{device.display_name}: {exc}")
                raise
        self._set_status(f"{device.display_name} {action}")
        await asyncio.sleep(self.config.device_settle)
        await self.refresh_devices()
        return action

    async def connect_device(self, address: str) -> None:
        await self._device_operation(address, "connect_device", "connected")

    async def disconnect_device(self, address: str) -> None:
        await self._device_operation(address, "disconnect_device", "disconnected")

    async def pair_device(self, address: str) -> None:
        await self._device_operation(address, "pair_device", "paired")

    async def trust_device(self, address: str, trusted: bool = True) -> None:
        manager = self._require_bluetooth()
        device = self._find_device(address)
        async with self._exclusive(BLUETOOTH_RADIO):
            await manager.trust_device(device, trusted)
        await self.refresh_devices()

    async def remove_device(self, address: str) -> None:
        await self._device_operation(address, "remove_device", "removed")

    async def _device_operation(self, address: str, method: str, outcome: str) -> None:
        manager = self._require_bluetooth()
        device = self._find_device(address)
        async with self._exclusive(BLUETOOTH_RADIO):
            try:
                await getattr(manager, method)(device)
            except PanelError as exc:
                self._set_status(f"{device.display_name}: {exc}")
                raise
        self._set_status(f"{device.display_name} {outcome}")
        await self.refresh_devices()

    # ------------------------------ hotspot --------------------------------
    async def start_hotspot(
        self,
        *,
        ssid: str | None = None,
        password: str | None = None,
        band: Band | str | None = None,
        channel: int | None = None,
    ) -> HotspotProfile:
        """Start the hotspot.

        Arguments left as ``None`` fall back to the saved settings. A channel is
        only honoured while the station is not associated.
        """

        wifi = self._require_wifi()
        hotspot = self._require_hotspot()
        config = self.config
        profile = HotspotProfile(
            ssid=config.hotspot_ssid if ssid is None else ssid,
            password=validate_hotspot_password(
                config.hotspot_password if password is None else password
            ),
            band=config.band if band is None else Band.from_setting(band),
            channel=channel,
        )
        async with self._exclusive(WIFI_RADIO):
            station_frequency = await wifi.get_active_frequency()
            try:
                applied = await hotspot.start(profile, station_frequency=station_frequency)
            except PanelError as exc:
                self.state.hotspot_active = False
                self.state.hotspot = None
                self._set_status(f"Hotspot failed: {exc}")
                raise
            self.state.hotspot_active = True
            self.state.hotspot = applied
            self._set_status("Hotspot active, Wi-Fi paused")
        return applied

    async def stop_hotspot(self) -> bool:
        hotspot = self._require_hotspot()
        async with self._exclusive(WIFI_RADIO):
            stopped = await hotspot.stop()
            self.state.hotspot_active = False
            self.state.hotspot = None
            self._notify()
        await self.scan()
        return stopped

    async def is_hotspot_active(self) -> bool:
        hotspot = self._require_hotspot()
        active = await hotspot.is_active()
        if active != self.state.hotspot_active:
            self.state.hotspot_active = active
            if not active:
                self.state.hotspot = None
            self._notify()
        return active

    async def update_hotspot_settings(
        self,
        *,
        ssid: str | None = None,
        password: str | None = None,
        band: str | None = None,
    ) -> PanelConfig:
        """Persist new hotspot settings and restart the hotspot if it is running."""

        if ssid is not None and not ssid.strip():
            raise ValueError("Hotspot name must not be empty")
        if password is not None:
            validate_hotspot_password(password)
        config = await asyncio.to_thread(
            self._config_manager.set_hotspot, ssid=ssid, password=password, band=band
        )
        self._set_status("Hotspot settings saved")
        if self._hotspot is not None and await self.is_hotspot_active():
            self._set_status("Restarting hotspot...")
            async with self._exclusive(WIFI_RADIO):
                await self._hotspot.stop()
            await asyncio.sleep(self.config.hotspot_restart_delay)
            await self.start_hotspot()
        return config

    async def _sync_hotspot_state(self) -> None:
        if self._hotspot is None:
            return
        try:
            await self.is_hotspot_active()
        except PanelError as exc:
            logger.warning("Unable to read hotspot state: %s", exc)

    # ----------------------------- configuration ---------------------------
    async def reload_config(self) -> PanelConfig:
        config = await asyncio.to_thread(self._config_manager.reload)
        if self._wifi is not None:
            await self.refresh_networks()
        return config

    # ----------------------------- implementation --------------------------
    @asynccontextmanager
    async def _exclusive(self, radio: str) -> AsyncIterator[None]:
        if radio in self._busy:
            raise RadioBusy(f"Another {radio} operation is in progress")
        self._busy.add(radio)
        try:
            yield
        finally:
            self._busy.discard(radio)

    def _require_wifi(self) -> WiFiManager:
        if self._wifi is None:
            raise DaemonUnavailable(self.state.fatal_error or "Wi-Fi is not available")
        return self._wifi

    def _require_hotspot(self) -> HotspotManager:
        self._require_wifi()
        assert self._hotspot is not None
        return self._hotspot

    def _require_bluetooth(self) -> BluetoothManager:
        if self._bluetooth is None:
            raise DeviceNotFound("Bluetooth adapter not available")
        return self._bluetooth

    def _find_network(self, ssid: str) -> WiFiNetwork:
        for network in self.state.networks:
            if network.ssid == ssid:
                return network
        raise ValueError(f"Unknown network '{ssid}'")

    def _find_device(self, address: str) -> BluetoothDevice:
        for device in self.state.devices:
            if device.address == address:
                return device
        raise ValueError(f"Unknown device '{address}'")

    def _superseded(self, token: int | None) -> bool:
        if token is None:
            return False
        pending = self.state.pending
        return pending is None or pending.token != token

    def _connection_status(self) -> str:
        if self.state.hotspot_active:
            return "Hotspot active, Wi-Fi paused"
        for network in self.state.networks:
            if network.connected:
                return f"Connected to {network.ssid}"
        return "Not connected"

    @staticmethod
    def _connect_failure_message(exc: PanelError, credential: str | None) -> str:
        if credential and type(exc) is OperationFailed:
            return "Connection failed, check password"
        return str(exc)

    def _set_status(self, message: str) -> None:
        self.state.status_message = message
        self._notify()


__all__ = ["PanelController", "PanelState", "PanelView", "PendingTarget"]
