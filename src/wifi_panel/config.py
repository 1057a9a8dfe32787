"""Persistent panel settings."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from threading import Lock
from typing import Any, Mapping

from .classification import Band


logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "WIFI_PANEL_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "wifi-panel" / "config.json"


@dataclass(frozen=True, slots=True)
class PanelConfig:
    """Hotspot defaults and live-update timings (seconds)."""

    hotspot_ssid: str = "Hotspot"
    hotspot_password: str = ""
    hotspot_band: str = "bg"
    scan_settle: float = 1.5
    discovery_settle: float = 2.0
    radio_settle: float = 2.0
    device_settle: float = 1.0
    connect_settle: float = 1.0
    hotspot_restart_delay: float = 0.5
    state_debounce: float = 0.5
    access_point_debounce: float = 0.3
    bluetooth_debounce: float = 0.3
    poll_interval: float = 0.2

    def __post_init__(self) -> None:
        if not isinstance(self.hotspot_ssid, str) or not self.hotspot_ssid.strip():
            raise ValueError("Hotspot name must not be empty")
        if not isinstance(self.hotspot_password, str):
            raise ValueError("Hotspot password must be a string")
        if self.hotspot_password and len(self.hotspot_password) < 8:
            raise ValueError("Hotspot password must be empty or at least 8 characters")
        if self.hotspot_band not in {"a", "bg"}:
            raise ValueError("Hotspot band must be 'a' or 'bg'")
        for name in (
            "scan_settle",
            "discovery_settle",
            "radio_settle",
            "device_settle",
            "connect_settle",
            "hotspot_restart_delay",
            "state_debounce",
            "access_point_debounce",
            "bluetooth_debounce",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")

    @property
    def band(self) -> Band:
        return Band.from_setting(self.hotspot_band)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


DEFAULT_PANEL_CONFIG = PanelConfig()

_TIMING_FIELDS = (
    "scan_settle",
    "discovery_settle",
    "radio_settle",
    "device_settle",
    "connect_settle",
    "hotspot_restart_delay",
    "state_debounce",
    "access_point_debounce",
    "bluetooth_debounce",
    "poll_interval",
)


def _parse_config(payload: Mapping[str, Any], *, default: PanelConfig) -> PanelConfig:
    values: dict[str, Any] = {}
    ssid = payload.get("hotspot_ssid")
    if isinstance(ssid, str) and ssid.strip():
        values["hotspot_ssid"] = ssid.strip()
    password = payload.get("hotspot_password")
    if isinstance(password, str):
        values["hotspot_password"] = password
    band = payload.get("hotspot_band")
    if isinstance(band, str):
        values["hotspot_band"] = band.strip().lower()
    for name in _TIMING_FIELDS:
        raw = payload.get(name)
        if raw is None or isinstance(raw, bool):
            continue
        try:
            values[name] = float(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{name} must be a number") from exc
    return replace(default, **values)


def resolve_config_path(path: Path | str | None = None) -> Path:
    if path is not None:
        return Path(path)
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return DEFAULT_CONFIG_PATH


class ConfigManager:
    """Stores :class:`PanelConfig` as JSON with thread-safety.

    A missing or unreadable file yields the defaults; the file is only
    written when settings change.
    """

    def __init__(self, config_path: Path | str | None = None) -> None:
        self._path = resolve_config_path(config_path)
        self._lock = Lock()
        self._config = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> PanelConfig:
        if not self._path.exists():
            logger.info("No configuration at %s, using defaults", self._path)
            return DEFAULT_PANEL_CONFIG
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("Configuration file must contain a JSON object")
            config = _parse_config(payload, default=DEFAULT_PANEL_CONFIG)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load configuration %s: %s, using defaults", self._path, exc)
            return DEFAULT_PANEL_CONFIG
        logger.info("Configuration loaded from %s", self._path)
        return config

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._config.to_dict(), indent=2), encoding="utf-8")

    def get_config(self) -> PanelConfig:
        with self._lock:
            return self._config

    def reload(self) -> PanelConfig:
        config = self._load()
        with self._lock:
            self._config = config
        return config

    def update(self, data: Mapping[str, Any]) -> PanelConfig:
        """Merge ``data`` into the current settings and persist them."""

        with self._lock:
            config = _parse_config(data, default=self._config)
            self._config = config
            self._save()
        return config

    def set_hotspot(
        self,
        *,
        ssid: str | None = None,
        password: str | None = None,
        band: str | None = None,
    ) -> PanelConfig:
        data: dict[str, Any] = {}
        if ssid is not None:
            if not ssid.strip():
                raise ValueError("Hotspot name must not be empty")
            data["hotspot_ssid"] = ssid
        if password is not None:
            data["hotspot_password"] = password
        if band is not None:
            data["hotspot_band"] = band
        return self.update(data)


__all__ = [
    "CONFIG_ENV_VAR",
    "ConfigManager",
    "DEFAULT_PANEL_CONFIG",
    "PanelConfig",
    "resolve_config_path",
]
