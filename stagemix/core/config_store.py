"""YAML-backed mixer configuration, validated against a packaged JSON schema."""

from __future__ import annotations

import functools
import json
import logging
import os
from dataclasses import asdict, dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any, Protocol

import yaml
from jsonschema import Draft202012Validator, ValidationError

from stagemix.core.errors import ConfigLoadError, ConfigValidationError
from stagemix.core.model import (
    ConnectionConfig,
    MixerSettings,
    ServerSettings,
    TelemetrySettings,
)

LOGGER = logging.getLogger(__name__)
CONFIG_FILENAME = "mixer.yaml"


_BOOL_TAG = "tag:yaml.org,2002:bool"


class _SettingsLoader(yaml.SafeLoader):
    """Safe loader that rejects duplicate keys and leaves yes/no/on/off as strings."""

    yaml_implicit_resolvers = {
        first: [(tag, regexp) for tag, regexp in resolvers if tag != _BOOL_TAG]
        for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
    }

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        mapping = super().construct_mapping(node, deep=deep)
        if len(mapping) < len(node.value):
            seen: set[Any] = set()
            for key_node, _ in node.value:
                key = self.construct_object(key_node, deep=deep)
                if key in seen:
                    raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
                seen.add(key)
        return mapping


class ConfigStore(Protocol):
    def load(self) -> MixerSettings:
        """Return the effective settings."""

    def save_connection(self, config: ConnectionConfig) -> None:
        """Persist connection parameters for the next start."""


@dataclass(frozen=True)
class LoadedSettings:
    settings: MixerSettings
    sources: tuple[str, ...]


@functools.cache
def _schema_validator() -> Draft202012Validator:
    schema = resources.files("stagemix").joinpath("schemas/config.schema.json").read_text(encoding="utf-8")
    return Draft202012Validator(json.loads(schema))


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "stagemix" / CONFIG_FILENAME


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=_SettingsLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _validate(doc: dict[str, Any], source: Path | Traversable) -> None:
    try:
        _schema_validator().validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def _flag(value: bool | str) -> bool:
    # The schema admits only true, false and their quoted forms.
    return value is True or value == "true"


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = {section: dict(values) for section, values in base.items()}
    for section, values in override.items():
        merged.setdefault(section, {}).update(values)
    return merged


def _build_settings(doc: dict[str, Any]) -> MixerSettings:
    conn = doc.get("connection", {})
    defaults = ConnectionConfig()
    connection = ConnectionConfig(
        host=str(conn.get("host", defaults.host)),
        port=int(conn.get("port", defaults.port)),
        transport=conn.get("transport", defaults.transport),
        simulated=_flag(conn.get("simulated", defaults.simulated)),
        reconnect_interval_s=float(conn.get("reconnect_interval_s", defaults.reconnect_interval_s)),
        command_timeout_s=float(conn.get("command_timeout_s", defaults.command_timeout_s)),
        connect_timeout_s=float(conn.get("connect_timeout_s", defaults.connect_timeout_s)),
        auto_reconnect=_flag(conn.get("auto_reconnect", defaults.auto_reconnect)),
    )
    telemetry = doc.get("telemetry", {})
    server = doc.get("server", {})
    return MixerSettings(
        connection=connection,
        telemetry=TelemetrySettings(
            poll_interval_ms=int(telemetry.get("poll_interval_ms", TelemetrySettings.poll_interval_ms)),
            poll_channels=int(telemetry.get("poll_channels", TelemetrySettings.poll_channels)),
        ),
        server=ServerSettings(
            host=str(server.get("host", ServerSettings.host)),
            port=int(server.get("port", ServerSettings.port)),
        ),
    )


def load_settings(path: Path | None = None) -> LoadedSettings:
    packaged = resources.files("stagemix").joinpath(f"defaults/{CONFIG_FILENAME}")
    doc = _read_yaml(packaged)
    _validate(doc, packaged)
    sources = [str(packaged)]

    user_path = path or default_config_path()
    if user_path.is_file():
        user_doc = _read_yaml(user_path)
        _validate(user_doc, user_path)
        doc = _merge(doc, user_doc)
        sources.append(str(user_path))
        LOGGER.debug("Loaded user config from %s", user_path)

    return LoadedSettings(settings=_build_settings(doc), sources=tuple(sources))


def save_connection(config: ConnectionConfig, path: Path | None = None) -> Path:
    target = path or default_config_path()
    doc = _read_yaml(target) if target.is_file() else {}
    doc["connection"] = asdict(config)
    _validate(doc, target)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(yaml.safe_dump(doc, sort_keys=False), encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not write config file {target}: {exc}") from exc
    LOGGER.info("Saved connection settings to %s", target)
    return target


class YamlConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self.path = path

    def load(self) -> MixerSettings:
        return load_settings(self.path).settings

    def save_connection(self, config: ConnectionConfig) -> None:
        save_connection(config, self.path)
