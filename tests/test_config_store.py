from __future__ import annotations

from pathlib import Path

import pytest

from stagemix.core.config_store import YamlConfigStore, default_config_path, load_settings, save_connection
from stagemix.core.errors import ConfigValidationError
from stagemix.core.model import ConnectionConfig


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def test_packaged_defaults_load_without_user_file() -> None:
    loaded = load_settings()
    settings = loaded.settings

    assert len(loaded.sources) == 1
    assert settings.connection.simulated is True
    assert settings.connection.host == "192.168.2.1"
    assert settings.connection.port == 3000
    assert settings.connection.command_timeout_s == 2.0
    assert settings.telemetry.poll_interval_ms == 100
    assert settings.telemetry.poll_channels == 8
    assert settings.server.port == 8765


def test_default_path_follows_xdg_config_home(isolated_config_home) -> None:
    assert default_config_path() == isolated_config_home / "stagemix" / "mixer.yaml"


def test_user_file_overrides_individual_keys(tmp_path) -> None:
    path = _write(
        tmp_path / "mixer.yaml",
        """
connection:
  host: 10.0.0.9
  simulated: "false"
telemetry:
  poll_channels: 4
""",
    )

    loaded = load_settings(path)
    settings = loaded.settings

    assert loaded.sources[-1] == str(path)
    assert settings.connection.host == "10.0.0.9"
    assert settings.connection.simulated is False
    assert settings.connection.port == 3000
    assert settings.telemetry.poll_channels == 4
    assert settings.telemetry.poll_interval_ms == 100


def test_duplicate_keys_are_rejected(tmp_path) -> None:
    path = _write(
        tmp_path / "mixer.yaml",
        """
connection:
  host: 10.0.0.9
  host: 10.0.0.10
""",
    )
    with pytest.raises(ConfigValidationError, match="Duplicate key 'host'"):
        load_settings(path)


def test_schema_errors_name_the_offending_key(tmp_path) -> None:
    path = _write(
        tmp_path / "mixer.yaml",
        """
connection:
  port: 70000
""",
    )
    with pytest.raises(ConfigValidationError, match=r"connection\.port"):
        load_settings(path)


def test_yes_is_not_a_boolean(tmp_path) -> None:
    path = _write(tmp_path / "mixer.yaml", "connection:\n  simulated: yes\n")
    with pytest.raises(ConfigValidationError):
        load_settings(path)


def test_root_must_be_a_mapping(tmp_path) -> None:
    path = _write(tmp_path / "mixer.yaml", "- just\n- a list\n")
    with pytest.raises(ConfigValidationError, match="mapping at root"):
        load_settings(path)


def test_save_connection_keeps_other_sections(tmp_path) -> None:
    path = _write(tmp_path / "conf" / "mixer.yaml", "server:\n  port: 9001\n")
    config = ConnectionConfig(host="10.1.2.3", port=3001, transport="udp", simulated=False)

    save_connection(config, path)
    settings = load_settings(path).settings

    assert settings.connection == config
    assert settings.server.port == 9001


def test_store_saves_to_default_path(isolated_config_home) -> None:
    store = YamlConfigStore()
    store.save_connection(ConnectionConfig(host="10.9.9.9"))

    assert (isolated_config_home / "stagemix" / "mixer.yaml").is_file()
    assert store.load().connection.host == "10.9.9.9"
