# probe_monitor/config.py
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pytimeparse2 import parse


def parse_duration_seconds(value) -> float:
    """Accepts seconds as a number or a duration string such as '30s' or '1m'."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    duration = parse(str(value))
    if duration is None:
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(duration, (int, float)):
        return float(duration)
    return duration.total_seconds()


class BaseConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TrackerSettings(BaseConfigModel):
    history_size: int = Field(100, ge=2, le=100)
    eta_window: int = Field(10, ge=2)
    stale_after: float = 30.0

    @field_validator("stale_after", mode="before")
    @classmethod
    def _parse_stale_after(cls, value):
        seconds = parse_duration_seconds(value)
        if seconds <= 0:
            raise ValueError("stale_after must be positive")
        return seconds


class ValidationSettings(BaseConfigModel):
    core_min_f: float = -40.0
    core_max_f: float = 600.0
    ambient_min_f: float = -40.0
    ambient_max_f: float = 1100.0

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.core_min_f > self.core_max_f:
            raise ValueError("core_min_f must not exceed core_max_f")
        if self.ambient_min_f > self.ambient_max_f:
            raise ValueError("ambient_min_f must not exceed ambient_max_f")
        return self


class MqttSettings(BaseConfigModel):
    host: str
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    reconnect_interval: float = 10
    notify_topic: str = "probes/+/notify"
    target_topic: str = "probes/+/target/set"
    state_topic: str = "probes/{address}/state"
    qos: int = Field(0, ge=0, le=2)
    retain: bool = False


class PrometheusExporterSettings(BaseConfigModel):
    enabled: bool = False
    port: int = 8000


class SafetySettings(BaseConfigModel):
    warning_threshold_percent: float = Field(90.0, gt=0, le=100)


class LoggingSettings(BaseConfigModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    loggers: Dict[str, str] = Field(default_factory=dict)


class AppSettings(BaseConfigModel):
    debug: bool = False
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    safety: SafetySettings = Field(default_factory=SafetySettings)
    targets: Dict[str, float] = Field(default_factory=dict)
    mqtt: Optional[MqttSettings] = None
    prometheus_exporter: PrometheusExporterSettings = Field(
        default_factory=PrometheusExporterSettings
    )
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("targets")
    @classmethod
    def _normalize_target_addresses(cls, value: Dict[str, float]):
        return {address.upper(): target for address, target in value.items()}
