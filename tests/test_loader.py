from __future__ import annotations

from pathlib import Path

import pytest

from stationctl.core.errors import ConfigLoadError, ConfigValidationError
from stationctl.core.loader import load_config, load_profiles
from stationctl.core.model import CharacteristicRole, StationConfig

BASE_UUID = "-0000-1000-8000-00805f9b34fb"


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


@pytest.fixture
def xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    return tmp_path


def test_load_packaged_profile(xdg: Path) -> None:
    loaded = load_profiles()
    assert loaded.warnings == ()
    profile = loaded.profiles["weather_station"]
    assert profile.company_id == 0x4842
    assert profile.service_uuid == "0000fff0" + BASE_UUID
    assert profile.characteristics[CharacteristicRole.DATA_NOTIFY] == "0000fff4" + BASE_UUID
    temperature = profile.readings[0]
    assert (temperature.name, temperature.type_id, temperature.size) == ("temperature", 1, 2)
    assert temperature.signed is True
    assert temperature.scale == 0.1


def test_invalid_uuid_in_user_profile_rejected(xdg: Path) -> None:
    _write(
        xdg / "cfg" / "stationctl" / "profiles" / "bad.yaml",
        """
id: bad_uuid
name: Bad UUID
company_id: 0x1234
service_uuid: "not-a-uuid"
characteristics:
  settings_write: "fff1"
  settings_notify: "fff2"
  data_write: "fff3"
  data_notify: "fff4"
readings:
  temperature: {type: 1, size: 2}
""",
    )

    with pytest.raises(ConfigValidationError):
        load_profiles()


def test_missing_required_keys_rejected(xdg: Path) -> None:
    _write(
        xdg / "data" / "stationctl" / "profiles" / "missing.yaml",
        """
id: missing
name: Missing
company_id: 0x1234
service_uuid: "fff0"
readings:
  temperature: {type: 1, size: 2}
""",
    )

    with pytest.raises(ConfigValidationError):
        load_profiles()


def test_reused_type_id_rejected(xdg: Path) -> None:
    _write(
        xdg / "cfg" / "stationctl" / "profiles" / "reused.yaml",
        """
id: reused
name: Reused
company_id: "0x1234"
service_uuid: "fff0"
characteristics:
  settings_write: "fff1"
  settings_notify: "fff2"
  data_write: "fff3"
  data_notify: "fff4"
readings:
  temperature: {type: 0x01, size: 2}
  humidity: {type: 1, size: 1}
""",
    )

    with pytest.raises(ConfigValidationError, match="reuses type 0x01"):
        load_profiles()


def test_user_profile_overrides_packaged(xdg: Path) -> None:
    _write(
        xdg / "cfg" / "stationctl" / "profiles" / "override.yaml",
        """
id: weather_station
name: Garden Station
company_id: 0x4842
service_uuid: "0000fff0-0000-1000-8000-00805F9B34FB"
characteristics:
  settings_write: "fff1"
  settings_notify: "fff2"
  data_write: "fff3"
  data_notify: "fff4"
readings:
  rain:
    type: 0x10
    size: 2
    scale: 0.5
""",
    )

    loaded = load_profiles()
    profile = loaded.profiles["weather_station"]
    assert profile.name == "Garden Station"
    assert profile.service_uuid == "0000fff0" + BASE_UUID
    assert [r.name for r in profile.readings] == ["rain"]
    assert any("overrides" in warning for warning in loaded.warnings)


def test_duplicate_yaml_keys_rejected(xdg: Path) -> None:
    _write(
        xdg / "cfg" / "stationctl" / "profiles" / "dup.yaml",
        """
id: dup
name: Duplicate
company_id: 0x1234
service_uuid: "fff0"
characteristics:
  settings_write: "fff1"
  settings_notify: "fff2"
  data_write: "fff3"
  data_notify: "fff4"
readings:
  temperature: {type: 1, size: 2}
  temperature: {type: 2, size: 2}
""",
    )

    with pytest.raises(ConfigValidationError, match="Duplicate key"):
        load_profiles()


def test_config_defaults_without_file(xdg: Path) -> None:
    assert load_config() == StationConfig()


def test_config_file_in_config_home(xdg: Path) -> None:
    _write(
        xdg / "cfg" / "stationctl" / "config.yaml",
        """
addresses: ["AA:BB:CC:DD:EE:FF"]
readings: [temperature, pressure]
record_timeout_s: 3
""",
    )

    config = load_config()
    assert config.profile == "weather_station"
    assert config.addresses == ("AA:BB:CC:DD:EE:FF",)
    assert config.readings == ("temperature", "pressure")
    assert config.record_timeout_s == 3.0
    assert config.power_on_timeout_s == 5.0


def test_config_unknown_key_rejected(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    _write(path, "record_timeout: 3\n")

    with pytest.raises(ConfigValidationError):
        load_config(path)


def test_config_non_positive_timeout_rejected(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    _write(path, "record_timeout_s: 0\n")

    with pytest.raises(ConfigValidationError, match="record_timeout_s"):
        load_config(path)


def test_explicit_config_path_must_exist(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError):
        load_config(tmp_path / "absent.yaml")
