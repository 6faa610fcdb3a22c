import argparse

import pytest

from probe_monitor.config import AppSettings, TrackerSettings, parse_duration_seconds
from probe_monitor.config_loader import load_settings_from_cli
from probe_monitor.error import ConfigError


def make_args(config_path, **kwargs):
    return argparse.Namespace(config=str(config_path), **kwargs)


def test_defaults_when_file_missing(tmp_path, capsys):
    settings = load_settings_from_cli(make_args(tmp_path / "missing.yaml"))
    assert settings == AppSettings()
    assert settings.tracker.history_size == 100
    assert settings.tracker.eta_window == 10
    assert settings.tracker.stale_after == 30.0
    assert settings.mqtt is None
    assert "using defaults" in capsys.readouterr().err


def test_load_yaml(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text(
        "tracker:\n"
        "  stale_after: 1m\n"
        "validation:\n"
        "  core_max_f: 212\n"
        "safety:\n"
        "  warning_threshold_percent: 85\n"
        "targets:\n"
        "  \"aa:bb:cc:dd:ee:01\": 203\n"
        "mqtt:\n"
        "  host: broker.local\n"
        "prometheus_exporter:\n"
        "  enabled: true\n"
        "  port: 9100\n"
    )
    settings = load_settings_from_cli(make_args(config))
    assert settings.tracker.stale_after == 60.0
    assert settings.validation.core_max_f == 212.0
    assert settings.safety.warning_threshold_percent == 85.0
    assert settings.targets == {"AA:BB:CC:DD:EE:01": 203.0}
    assert settings.mqtt.host == "broker.local"
    assert settings.mqtt.notify_topic == "probes/+/notify"
    assert settings.prometheus_exporter.port == 9100


def test_cli_args_override_file(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text(
        "mqtt:\n  host: broker.local\n  port: 1883\nlogging:\n  level: INFO\n"
    )
    settings = load_settings_from_cli(
        make_args(
            config,
            mqtt_port=8883,
            log_level="DEBUG",
            stale_after="45s",
            prometheus_exporter_enabled=True,
        )
    )
    assert settings.mqtt.host == "broker.local"
    assert settings.mqtt.port == 8883
    assert settings.logging.level == "DEBUG"
    assert settings.tracker.stale_after == 45.0
    assert settings.prometheus_exporter.enabled is True


def test_invalid_value_raises_config_error(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("tracker:\n  history_size: 500\n")
    with pytest.raises(ConfigError) as e:
        load_settings_from_cli(make_args(config))
    message = str(e.value)
    assert "tracker.history_size" in message
    assert "line 2" in message


def test_unknown_key_raises_config_error(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("scanner:\n  cycle: 10\n")
    with pytest.raises(ConfigError, match="scanner"):
        load_settings_from_cli(make_args(config))


def test_yaml_syntax_error(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("tracker: [{\n")
    with pytest.raises(ConfigError, match="Error parsing YAML file"):
        load_settings_from_cli(make_args(config))


def test_inverted_bounds_are_rejected():
    with pytest.raises(ValueError):
        AppSettings.model_validate({"validation": {"core_min_f": 700}})


@pytest.mark.parametrize(
    "value, expected", [(30, 30.0), ("30s", 30.0), ("2m", 120.0), ("1h", 3600.0)]
)
def test_parse_duration_seconds(value, expected):
    assert parse_duration_seconds(value) == expected


@pytest.mark.parametrize("value", ["soon", True, "0s"])
def test_invalid_stale_after(value):
    with pytest.raises(ValueError):
        TrackerSettings(stale_after=value)


def test_top_level_list_is_rejected(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("- tracker\n- mqtt\n")
    with pytest.raises(ConfigError, match="must be a mapping"):
        load_settings_from_cli(make_args(config))


@pytest.mark.parametrize("value", [0, -5, 101])
def test_invalid_warning_threshold(value):
    with pytest.raises(ValueError):
        AppSettings.model_validate({"safety": {"warning_threshold_percent": value}})
