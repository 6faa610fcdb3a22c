# probe_monitor/models.py
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple


def celsius_to_fahrenheit(celsius: float) -> float:
    return celsius * 9 / 5 + 32


def fahrenheit_to_celsius(fahrenheit: float) -> float:
    return (fahrenheit - 32) * 5 / 9


class SensorRole(str, Enum):
    CORE = "core"
    AMBIENT = "ambient"
    UNUSED = "unused"


class Brand(str, Enum):
    MEATSTICK = "MeatStick"
    MEATER = "MEATER"
    INKBIRD = "Inkbird"
    THERMOWORKS = "ThermoWorks"
    WEBER = "Weber"
    TRAEGER = "Traeger"


class PayloadFormat(str, Enum):
    PACKED_13BIT = "packed_13bit"
    DUAL_LE16 = "dual_le16"


@dataclass(frozen=True)
class DeviceIdentity:
    """Identity of a probe as seen by the transport layer."""

    address: str
    name: str = ""
    service_uuids: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def key(self) -> Tuple[str, str]:
        # A renamed device is tracked as a distinct logical device.
        return (self.address, self.name)


@dataclass(frozen=True)
class Capability:
    brand: Brand
    model: str
    sensor_count: int
    sensor_layout: Tuple[SensorRole, ...] = ()
    ambient_max_temperature_f: float = 0.0
    internal_max_temperature_f: float = 0.0
    payload_format: Optional[PayloadFormat] = None
    is_repeater: bool = False

    def role_of(self, sensor_index: int) -> SensorRole:
        if 0 <= sensor_index < len(self.sensor_layout):
            return self.sensor_layout[sensor_index]
        return SensorRole.UNUSED


@dataclass(frozen=True)
class SensorReading:
    sensor_index: int
    temperature_c: float
    role: SensorRole = SensorRole.CORE

    @property
    def temperature_f(self) -> float:
        return celsius_to_fahrenheit(self.temperature_c)


@dataclass(frozen=True)
class TemperatureSample:
    temperature_f: float
    timestamp: datetime
    ambient_temperature_f: Optional[float] = None
    sensor_index: int = 0


class EtaStatus(str, Enum):
    CALCULATING = "calculating"
    NOT_APPLICABLE = "not_applicable"
    REACHED = "reached"
    ESTIMATED = "estimated"


@dataclass(frozen=True)
class TimeRemaining:
    status: EtaStatus
    seconds: Optional[int] = None

    def __str__(self) -> str:
        if self.status == EtaStatus.CALCULATING:
            return "Calculating..."
        if self.status == EtaStatus.NOT_APPLICABLE:
            return "N/A"
        if self.status == EtaStatus.REACHED or self.seconds is None:
            return "--"
        hours, remainder = divmod(self.seconds, 3600)
        minutes = remainder // 60
        if hours > 0:
            return f"{hours}h {minutes}min"
        return f"{minutes}min"


CALCULATING = TimeRemaining(EtaStatus.CALCULATING)
NOT_APPLICABLE = TimeRemaining(EtaStatus.NOT_APPLICABLE)
REACHED = TimeRemaining(EtaStatus.REACHED)


class SafetyStatus(str, Enum):
    SAFE = "safe"
    WARNING_AMBIENT_HIGH = "warning_ambient_high"
    WARNING_INTERNAL_HIGH = "warning_internal_high"
    DANGEROUS_AMBIENT = "dangerous_ambient"
    DANGEROUS_INTERNAL = "dangerous_internal"
    DEVICE_OFFLINE = "device_offline"


class DataFreshness(str, Enum):
    LIVE = "live"
    RECENT = "recent"
    STALE = "stale"
    DEAD = "dead"


# (max age in seconds, freshness, confidence), checked in order.
FRESHNESS_TIERS = (
    (30, DataFreshness.LIVE, 1.0),
    (120, DataFreshness.RECENT, 0.8),
    (300, DataFreshness.RECENT, 0.5),
    (600, DataFreshness.STALE, 0.2),
)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class DeviceSnapshot:
    """
    Read-only view of one tracked device.

    Every field is captured in a single swap, so a snapshot never mixes
    values from two different updates.
    """

    identity: DeviceIdentity
    capability: Optional[Capability] = None
    current_temperature_f: Optional[float] = None
    target_temperature_f: Optional[float] = None
    ambient_temperature_f: Optional[float] = None
    last_update: Optional[datetime] = None
    history: Tuple[TemperatureSample, ...] = ()

    def is_stale(self, now: datetime, stale_after: float = 30.0) -> bool:
        if self.last_update is None:
            return True
        return (now - self.last_update).total_seconds() > stale_after

    def progress(self) -> float:
        current = self.current_temperature_f
        target = self.target_temperature_f
        if current is None or target is None or target == 0:
            return 0.0
        return min(max(current / target, 0.0), 1.0)

    def estimated_time_remaining(self, window: int = 10) -> TimeRemaining:
        if len(self.history) < 2:
            return CALCULATING

        recent = self.history[-window:]
        first, last = recent[0], recent[-1]
        elapsed = int((last.timestamp - first.timestamp).total_seconds())
        if elapsed == 0:
            return CALCULATING

        rate = (last.temperature_f - first.temperature_f) / elapsed
        if rate <= 0:
            return NOT_APPLICABLE

        current = self.current_temperature_f
        target = self.target_temperature_f
        if current is None or target is None:
            return NOT_APPLICABLE
        if current >= target:
            return REACHED

        return TimeRemaining(
            EtaStatus.ESTIMATED, _round_half_up((target - current) / rate)
        )

    def _freshness_tier(self, now: datetime) -> Tuple[DataFreshness, float]:
        if self.last_update is None:
            return DataFreshness.DEAD, 0.0
        age = int((now - self.last_update).total_seconds())
        for max_age, freshness, confidence in FRESHNESS_TIERS:
            if age <= max_age:
                return freshness, confidence
        return DataFreshness.DEAD, 0.0

    def freshness(self, now: datetime) -> DataFreshness:
        return self._freshness_tier(now)[0]

    def confidence(self, now: datetime) -> float:
        """1.0 for live data, decaying in steps to 0.0 after ten minutes."""
        return self._freshness_tier(now)[1]

    def safety_status(
        self, now: datetime, warning_threshold_percent: float = 90.0
    ) -> SafetyStatus:
        """
        Compares the latest temperatures against the capability's limits.

        A value above the limit is dangerous, and a value above
        warning_threshold_percent of it is a warning. Dangerous readings are
        reported even when the data has aged out; otherwise a device whose
        data is dead is reported offline. Devices without known limits are
        only ever safe or offline.
        """
        if self.last_update is None:
            return SafetyStatus.DEVICE_OFFLINE

        capability = self.capability
        ambient_max = capability.ambient_max_temperature_f if capability else 0.0
        internal_max = capability.internal_max_temperature_f if capability else 0.0
        ratio = warning_threshold_percent / 100.0
        ambient = self.ambient_temperature_f
        internal = self.current_temperature_f

        ambient_checked = ambient is not None and ambient_max > 0
        internal_checked = internal is not None and internal_max > 0
        if ambient_checked and ambient > ambient_max:
            return SafetyStatus.DANGEROUS_AMBIENT
        if internal_checked and internal > internal_max:
            return SafetyStatus.DANGEROUS_INTERNAL

        if self.confidence(now) <= 0.1:
            return SafetyStatus.DEVICE_OFFLINE

        if internal_checked and internal > internal_max * ratio:
            return SafetyStatus.WARNING_INTERNAL_HIGH
        if ambient_checked and ambient > ambient_max * ratio:
            return SafetyStatus.WARNING_AMBIENT_HIGH
        return SafetyStatus.SAFE


@dataclass(frozen=True)
class DeviceRecord:
    """Device row handed to the persistence collaborator."""

    address: str
    name: str
    brand: str
    model: str
    sensor_count: int
    first_seen: datetime
    last_seen: datetime


@dataclass(frozen=True)
class ReadingRecord:
    """Reading row handed to the persistence collaborator."""

    device_address: str
    timestamp: datetime
    sensor_index: int
    temperature_f: float
    ambient_temperature_f: Optional[float] = None
    battery_level: Optional[int] = None
    signal_strength: Optional[int] = None


def snapshot_to_dict(
    snapshot: DeviceSnapshot,
    now: datetime,
    stale_after: float = 30.0,
    window: int = 10,
    warning_threshold_percent: float = 90.0,
) -> dict:
    """Serializes a snapshot into a JSON-friendly dict for UI consumers."""
    capability = snapshot.capability
    eta = snapshot.estimated_time_remaining(window)
    return {
        "address": snapshot.identity.address,
        "name": snapshot.identity.name,
        "brand": capability.brand.value if capability else None,
        "model": capability.model if capability else None,
        "current_temperature_f": snapshot.current_temperature_f,
        "target_temperature_f": snapshot.target_temperature_f,
        "ambient_temperature_f": snapshot.ambient_temperature_f,
        "last_update": (
            snapshot.last_update.isoformat() if snapshot.last_update else None
        ),
        "progress": snapshot.progress(),
        "eta_status": eta.status.value,
        "eta_seconds": eta.seconds,
        "eta": str(eta),
        "stale": snapshot.is_stale(now, stale_after),
        "freshness": snapshot.freshness(now).value,
        "confidence": snapshot.confidence(now),
        "safety_status": snapshot.safety_status(
            now, warning_threshold_percent
        ).value,
        "history_size": len(snapshot.history),
    }
