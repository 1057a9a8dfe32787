import json
from pathlib import Path

import pytest

from wifi_panel.classification import Band
from wifi_panel.config import (
    CONFIG_ENV_VAR,
    DEFAULT_PANEL_CONFIG,
    ConfigManager,
    PanelConfig,
    resolve_config_path,
)


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    manager = ConfigManager(path)
    assert manager.get_config() == DEFAULT_PANEL_CONFIG
    assert manager.get_config().band is Band.GHZ_2_4
    assert not path.exists()


def test_loads_values_from_disk(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "hotspot_ssid": "  Panel  ",
                "hotspot_password": "password123",
                "hotspot_band": "A",
                "scan_settle": "3",
                "poll_interval": 0.5,
            }
        ),
        encoding="utf-8",
    )
    config = ConfigManager(path).get_config()
    assert config.hotspot_ssid == "Panel"
    assert config.hotspot_password == "password123"
    assert config.band is Band.GHZ_5
    assert config.scan_settle == 3.0
    assert config.poll_interval == 0.5


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        "[1, 2, 3]",
        json.dumps({"hotspot_password": "short"}),
        json.dumps({"hotspot_band": "6ghz"}),
        json.dumps({"scan_settle": "soon"}),
        json.dumps({"poll_interval": 0}),
    ],
)
def test_invalid_file_falls_back_to_defaults(tmp_path: Path, content: str) -> None:
    path = tmp_path / "config.json"
    path.write_text(content, encoding="utf-8")
    assert ConfigManager(path).get_config() == DEFAULT_PANEL_CONFIG


def test_update_persists_and_reloads(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.json"
    manager = ConfigManager(path)
    manager.update({"state_debounce": 0.1})
    manager.set_hotspot(ssid="Garage", password="password123", band="a")

    stored = json.loads(path.read_text(encoding="utf-8"))
    assert stored["hotspot_ssid"] == "Garage"
    assert stored["state_debounce"] == 0.1

    reloaded = ConfigManager(path).get_config()
    assert reloaded.hotspot_band == "a"
    assert reloaded.hotspot_password == "password123"


def test_reload_picks_up_external_edits(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    manager = ConfigManager(path)
    path.write_text(json.dumps({"hotspot_ssid": "Edited"}), encoding="utf-8")
    assert manager.get_config().hotspot_ssid == "Hotspot"
    assert manager.reload().hotspot_ssid == "Edited"
    assert manager.get_config().hotspot_ssid == "Edited"


def test_invalid_update_leaves_settings_untouched(tmp_path: Path) -> None:
    manager = ConfigManager(tmp_path / "config.json")
    with pytest.raises(ValueError):
        manager.set_hotspot(password="short")
    with pytest.raises(ValueError):
        manager.set_hotspot(ssid="   ")
    assert manager.get_config() == DEFAULT_PANEL_CONFIG


def test_panel_config_validation() -> None:
    with pytest.raises(ValueError):
        PanelConfig(hotspot_ssid="")
    with pytest.raises(ValueError):
        PanelConfig(radio_settle=-1)
    assert PanelConfig(hotspot_password="").hotspot_password == ""


def test_resolve_config_path_prefers_explicit_then_env(tmp_path: Path, monkeypatch) -> None:
    explicit = tmp_path / "explicit.json"
    override = tmp_path / "override.json"
    monkeypatch.setenv(CONFIG_ENV_VAR, str(override))
    assert resolve_config_path(explicit) == explicit
    assert resolve_config_path() == override
    monkeypatch.delenv(CONFIG_ENV_VAR)
    assert resolve_config_path().name == "config.json"
