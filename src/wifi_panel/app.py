"""FastAPI application exposing the connectivity panel to a presentation layer."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Literal

from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .backends import BluetoothBackend, NetworkBackend
from .config import ConfigManager
from .controller import PanelController, PanelView
from .errors import (
    CredentialRequired,
    DaemonUnavailable,
    DeviceNotFound,
    InvalidCredential,
    NoSavedProfile,
    NotConnected,
    OperationFailed,
    PanelError,
    RadioBusy,
    UnsupportedSecurity,
)
from .live_updates import LiveUpdateDispatcher
from .panel import PanelVisibility
from .system_log import SystemLog
from .version import APP_VERSION


logger = logging.getLogger(__name__)


class WiFiConnectPayload(BaseModel):
    ssid: str = Field(min_length=1)
    password: str | None = None


class WiFiSelectPayload(BaseModel):
    ssid: str = Field(min_length=1)


class WiFiCredentialPayload(BaseModel):
    password: str = ""


class WiFiForgetPayload(BaseModel):
    ssid: str = Field(min_length=1)


class RadioPayload(BaseModel):
    enabled: bool


class ViewPayload(BaseModel):
    view: PanelView


class DevicePayload(BaseModel):
    address: str = Field(min_length=1)
    trusted: bool = True


class HotspotTogglePayload(BaseModel):
    enabled: bool
    ssid: str | None = Field(default=None, max_length=32)
    password: str | None = Field(default=None, max_length=63)
    band: Literal["a", "bg"] | None = None
    channel: int | None = Field(default=None, gt=0)


class HotspotSettingsPayload(BaseModel):
    ssid: str | None = Field(default=None, max_length=32)
    password: str | None = Field(default=None, max_length=63)
    band: Literal["a", "bg"] | None = None


_HTTP_STATUS: tuple[tuple[type[PanelError], int], ...] = (
    (RadioBusy, 409),
    (DaemonUnavailable, 503),
    (DeviceNotFound, 503),
    (OperationFailed, 502),
    (CredentialRequired, 400),
    (InvalidCredential, 400),
    (UnsupportedSecurity, 400),
    (NotConnected, 400),
    (NoSavedProfile, 404),
)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    for error_type, status_code in _HTTP_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def create_app(
    config_path: Path | str | None = None,
    *,
    network_backend: NetworkBackend | None = None,
    bluetooth_backend: BluetoothBackend | None = None,
    system_log: SystemLog | None = None,
    live_updates: bool = True,
) -> FastAPI:
    """Build the panel application.

    Backends default to the system-bus implementations; tests pass fakes.
    """

    if network_backend is None or bluetooth_backend is None:
        from .dbus_backend import DBusBluetoothBackend, DBusNetworkBackend

        network_backend = network_backend or DBusNetworkBackend()
        bluetooth_backend = bluetooth_backend or DBusBluetoothBackend()

    config_manager = ConfigManager(config_path)
    shared_system_log = system_log if system_log is not None else SystemLog()
    controller = PanelController(
        network_backend,
        bluetooth_backend,
        config_manager=config_manager,
        system_log=shared_system_log,
    )
    visibility = PanelVisibility()
    dispatcher = LiveUpdateDispatcher(controller, visibility, config_manager.get_config())

    app = FastAPI(title="Connectivity Panel", version=APP_VERSION)
    app.state.controller = controller
    app.state.visibility = visibility
    app.state.dispatcher = dispatcher
    app.state.system_log = shared_system_log

    @app.on_event("startup")
    async def startup() -> None:  # pragma: no cover - framework hook
        shared_system_log.record("system", "startup", "Connectivity panel starting up.")
        await controller.start()
        if live_updates:
            await dispatcher.start()

    @app.on_event("shutdown")
    async def shutdown() -> None:  # pragma: no cover - framework hook
        if live_updates:
            await dispatcher.aclose()
        await controller.aclose()
        shared_system_log.record("system", "shutdown", "Connectivity panel shut down.")

    @app.get("/api/status")
    async def get_status() -> dict[str, object]:
        payload = controller.state.to_dict()
        payload["panel"] = visibility.to_dict()
        payload["version"] = APP_VERSION
        return payload

    @app.get("/api/logs")
    async def get_logs(limit: int = 100, category: str | None = None) -> dict[str, object]:
        entries = await run_in_threadpool(shared_system_log.tail, limit, category=category)
        return {"entries": [entry.to_dict() for entry in reversed(entries)]}

    # ------------------------------- Wi-Fi ---------------------------------
    @app.get("/api/wifi/networks")
    async def list_networks() -> dict[str, object]:
        try:
            networks = await controller.discover_networks()
        except PanelError as exc:
            raise _http_error(exc) from exc
        return {
            "networks": [network.to_dict() for network in networks],
            "status": controller.state.status_message,
        }

    @app.post("/api/wifi/scan")
    async def scan_networks() -> dict[str, object]:
        try:
            networks = await controller.scan()
        except PanelError as exc:
            raise _http_error(exc) from exc
        return {"networks": [network.to_dict() for network in networks]}

    @app.post("/api/wifi/select")
    async def select_network(payload: WiFiSelectPayload) -> dict[str, object]:
        try:
            outcome = await controller.select_network(payload.ssid)
        except (PanelError, ValueError) as exc:
            raise _http_error(exc) from exc
        return {"outcome": outcome, "status": controller.state.status_message}

    @app.post("/api/wifi/credential")
    async def submit_credential(payload: WiFiCredentialPayload) -> dict[str, object]:
        try:
            active = await controller.submit_credential(payload.password)
        except (PanelError, ValueError) as exc:
            raise _http_error(exc) from exc
        return {"active_connection": active, "status": controller.state.status_message}

    @app.post("/api/wifi/cancel")
    async def cancel_pending() -> dict[str, object]:
        controller.cancel_pending()
        return {"status": controller.state.status_message}

    @app.post("/api/wifi/connect")
    async def connect_network(payload: WiFiConnectPayload) -> dict[str, object]:
        try:
            network = next(
                (item for item in controller.state.networks if item.ssid == payload.ssid),
                None,
            )
            if network is None:
                raise ValueError(f"Unknown network '{payload.ssid}'")
            active = await controller.connect(network, payload.password)
        except (PanelError, ValueError) as exc:
            raise _http_error(exc) from exc
        return {"active_connection": active, "status": controller.state.status_message}

    @app.post("/api/wifi/disconnect")
    async def disconnect_network() -> dict[str, object]:
        try:
            await controller.disconnect()
        except PanelError as exc:
            raise _http_error(exc) from exc
        return {"status": controller.state.status_message}

    @app.post("/api/wifi/forget")
    async def forget_network(payload: WiFiForgetPayload) -> dict[str, object]:
        try:
            await controller.forget(payload.ssid)
        except PanelError as exc:
            raise _http_error(exc) from exc
        return {"status": controller.state.status_message}

    @app.post("/api/wifi/radio")
    async def set_wifi_radio(payload: RadioPayload) -> dict[str, object]:
        try:
            await controller.set_radio_enabled(payload.enabled)
        except PanelError as exc:
            raise _http_error(exc) from exc
        return {"enabled": controller.state.wifi_enabled}

    # ----------------------------- Bluetooth -------------------------------
    @app.get("/api/bluetooth/devices")
    async def list_devices() -> dict[str, object]:
        await asyncio.shield(controller.bluetooth_ready)
        devices = await controller.discover_devices()
        return {
            "available": controller.state.bluetooth_available,
            "powered": controller.state.bluetooth_powered,
            "devices": [device.to_dict() for device in devices],
        }

    @app.post("/api/bluetooth/scan")
    async def scan_devices() -> dict[str, object]:
        try:
            devices = await controller.scan_devices()
        except PanelError as exc:
            raise _http_error(exc) from exc
        return {"devices": [device.to_dict() for device in devices]}

    @app.post("/api/bluetooth/power")
    async def set_bluetooth_power(payload: RadioPayload) -> dict[str, object]:
        try:
            await controller.set_bluetooth_powered(payload.enabled)
        except PanelError as exc:
            raise _http_error(exc) from exc
        return {"powered": controller.state.bluetooth_powered}

    @app.post("/api/bluetooth/devices/{action}")
    async def device_action(
        action: Literal["activate", "connect", "disconnect", "pair", "trust", "remove"],
        payload: DevicePayload,
    ) -> dict[str, object]:
        try:
            if action == "activate":
                await controller.activate_device(payload.address)
            elif action == "trust":
                await controller.trust_device(payload.address, payload.trusted)
            else:
                await getattr(controller, f"{action}_device")(payload.address)
        except (PanelError, ValueError) as exc:
            raise _http_error(exc) from exc
        return {
            "status": controller.state.status_message,
            "devices": [device.to_dict() for device in controller.state.devices],
        }

    # ------------------------------ hotspot --------------------------------
    @app.get("/api/hotspot")
    async def get_hotspot() -> dict[str, object]:
        try:
            active = await controller.is_hotspot_active()
        except PanelError as exc:
            raise _http_error(exc) from exc
        config = controller.config
        return {
            "active": active,
            "ssid": config.hotspot_ssid,
            "secured": bool(config.hotspot_password),
            "band": config.hotspot_band,
            "applied": controller.state.hotspot.to_dict() if controller.state.hotspot else None,
        }

    @app.post("/api/hotspot")
    async def toggle_hotspot(payload: HotspotTogglePayload) -> dict[str, object]:
        try:
            if payload.enabled:
                applied = await controller.start_hotspot(
                    ssid=payload.ssid,
                    password=payload.password,
                    band=payload.band,
                    channel=payload.channel,
                )
                return {"active": True, "hotspot": applied.to_dict()}
            stopped = await controller.stop_hotspot()
        except (PanelError, ValueError) as exc:
            raise _http_error(exc) from exc
        return {"active": False, "stopped": stopped}

    @app.post("/api/hotspot/settings")
    async def update_hotspot(payload: HotspotSettingsPayload) -> dict[str, object]:
        try:
            config = await controller.update_hotspot_settings(
                ssid=payload.ssid, password=payload.password, band=payload.band
            )
        except (PanelError, ValueError) as exc:
            raise _http_error(exc) from exc
        return {
            "ssid": config.hotspot_ssid,
            "secured": bool(config.hotspot_password),
            "band": config.hotspot_band,
            "status": controller.state.status_message,
        }

    # ------------------------------- panel ---------------------------------
    @app.post("/api/view")
    async def set_view(payload: ViewPayload) -> dict[str, object]:
        try:
            await controller.set_view(payload.view)
        except PanelError as exc:
            raise _http_error(exc) from exc
        return {"view": controller.state.active_view.value}

    @app.post("/api/panel/{command}")
    async def panel_command(
        command: Literal["show", "hide", "toggle", "reload"],
    ) -> dict[str, object]:
        if command == "show":
            visibility.show()
        elif command == "hide":
            visibility.hide()
        elif command == "toggle":
            visibility.toggle()
        else:
            visibility.request_reload()
        return visibility.to_dict()

    return app


__all__ = ["create_app"]
