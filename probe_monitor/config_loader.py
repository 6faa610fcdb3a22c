# probe_monitor/config_loader.py
import argparse
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .config import AppSettings
from .error import ConfigError, format_validation_error

CLI_TO_CONFIG_MAP = {
    "debug": "debug",
    "prometheus_exporter_enabled": "prometheus_exporter.enabled",
    "prometheus_exporter_port": "prometheus_exporter.port",
    "mqtt_host": "mqtt.host",
    "mqtt_port": "mqtt.port",
    "mqtt_username": "mqtt.username",
    "mqtt_password": "mqtt.password",
    "mqtt_reconnect_interval": "mqtt.reconnect_interval",
    "stale_after": "tracker.stale_after",
    "log_level": "logging.level",
}


def _set_nested_value(d: dict, key_path: str, value: Any):
    keys = key_path.split(".")
    for key in keys[:-1]:
        d = d.setdefault(key, {})
    d[keys[-1]] = value


def load_config_data(config_path: Path) -> dict:
    """Reads the YAML file; a missing file yields an empty configuration."""
    yaml = YAML(typ="rt")
    try:
        with open(config_path, "r") as f:
            return yaml.load(f) or {}
    except FileNotFoundError:
        print(
            f"Configuration file not found at {config_path}, using defaults.",
            file=sys.stderr,
        )
        return {}
    except YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        if mark:
            raise ConfigError(
                f"Error parsing YAML file: {e}\n"
                f"  in {config_path}, line: {mark.line + 1}, column: {mark.column + 1}"
            ) from e
        raise ConfigError(f"Error parsing YAML file: {e}") from e


def load_settings_from_cli(args: argparse.Namespace) -> AppSettings:
    config_path = Path(args.config)
    config_data = load_config_data(config_path)
    if not isinstance(config_data, dict):
        raise ConfigError(
            f"Configuration in {config_path} must be a mapping, "
            f"got {type(config_data).__name__}"
        )

    for arg_key, key_path in CLI_TO_CONFIG_MAP.items():
        value = getattr(args, arg_key, None)
        if value is not None:
            _set_nested_value(config_data, key_path, value)

    try:
        return AppSettings.model_validate(config_data)
    except ValidationError as e:
        raise ConfigError(format_validation_error(e, config_path, config_data)) from e
