# probe_monitor/tracker.py
import logging
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock
from typing import Iterable, Optional, Tuple

from .config import TrackerSettings, ValidationSettings
from .models import (
    CALCULATING,
    Capability,
    DeviceIdentity,
    DeviceSnapshot,
    SensorReading,
    SensorRole,
    TemperatureSample,
    TimeRemaining,
)
from .signals import no_usable_reading, reading_rejected
from .validator import validate_reading

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _DeviceEntry:
    """Mutable per-device state, only touched while holding its lock."""

    def __init__(self, snapshot: DeviceSnapshot, history_size: int):
        self.lock = Lock()
        self.history: deque[TemperatureSample] = deque(maxlen=history_size)
        self.snapshot = snapshot


class DeviceStateTracker:
    """
    Owns the rolling state of every tracked probe.

    Each device has its own lock; an update builds a new immutable
    DeviceSnapshot and swaps it in, so readers always see a consistent
    combination of temperatures, timestamp and history.
    """

    def __init__(
        self,
        settings: TrackerSettings | None = None,
        limits: ValidationSettings | None = None,
    ):
        self.settings = settings or TrackerSettings()
        self.limits = limits or ValidationSettings()
        self._entries: dict[Tuple[str, str], _DeviceEntry] = {}
        self._lock = Lock()

    def apply_settings(
        self, settings: TrackerSettings, limits: ValidationSettings
    ) -> None:
        """
        Swaps in reloaded settings. Histories are resized to the new
        history_size, keeping the newest samples.
        """
        with self._lock:
            self.settings = settings
            self.limits = limits
            entries = list(self._entries.values())

        for entry in entries:
            with entry.lock:
                if entry.history.maxlen == settings.history_size:
                    continue
                entry.history = deque(entry.history, maxlen=settings.history_size)
                entry.snapshot = replace(entry.snapshot, history=tuple(entry.history))

    def _get_entry(self, identity: DeviceIdentity) -> Optional[_DeviceEntry]:
        with self._lock:
            return self._entries.get(identity.key)

    def _entry_for(
        self, identity: DeviceIdentity, capability: Capability | None = None
    ) -> _DeviceEntry:
        with self._lock:
            entry = self._entries.get(identity.key)
            if entry is None:
                entry = _DeviceEntry(
                    DeviceSnapshot(identity=identity, capability=capability),
                    self.settings.history_size,
                )
                self._entries[identity.key] = entry
                logger.debug(f"Tracking device {identity.address} ({identity.name})")
            return entry

    def track(
        self, identity: DeviceIdentity, capability: Capability | None = None
    ) -> DeviceSnapshot:
        """Starts tracking a device, or returns its snapshot if already tracked."""
        return self._entry_for(identity, capability).snapshot

    def forget(self, identity: DeviceIdentity) -> bool:
        with self._lock:
            return self._entries.pop(identity.key, None) is not None

    def is_tracked(self, identity: DeviceIdentity) -> bool:
        return self._get_entry(identity) is not None

    def set_target(
        self, identity: DeviceIdentity, target_temperature_f: float | None
    ) -> DeviceSnapshot:
        entry = self._entry_for(identity)
        with entry.lock:
            entry.snapshot = replace(
                entry.snapshot, target_temperature_f=target_temperature_f
            )
            logger.info(
                f"Target for {identity.address} set to {target_temperature_f}°F"
            )
            return entry.snapshot

    def _select(
        self,
        identity: DeviceIdentity,
        readings: Iterable[SensorReading],
        role: SensorRole,
    ) -> Optional[SensorReading]:
        """
        Picks the first plausible reading for a role. Candidates are tried
        from the highest sensor index down: the deepest core sensor, or the
        sensor closest to the surface for ambient.
        """
        candidates = sorted(
            (r for r in readings if r.role == role),
            key=lambda r: r.sensor_index,
            reverse=True,
        )
        for reading in candidates:
            temperature_f = reading.temperature_f
            if validate_reading(temperature_f, role, self.limits):
                return reading
            logger.debug(
                f"Rejected {role.value} reading from {identity.address} "
                f"sensor {reading.sensor_index}: {temperature_f:.2f}°F"
            )
            reading_rejected.send(self, identity=identity, reading=reading, role=role)
        return None

    def ingest(
        self,
        identity: DeviceIdentity,
        readings: Iterable[SensorReading],
        now: datetime | None = None,
    ) -> Optional[TemperatureSample]:
        """
        Appends a sample built from the decoded readings.

        Returns the new sample, or None when no core reading passed
        validation, in which case the state is left untouched.
        """
        readings = list(readings)
        now = now or utcnow()

        core = self._select(identity, readings, SensorRole.CORE)
        if core is None:
            logger.debug(f"No usable reading from {identity.address} this cycle")
            no_usable_reading.send(self, identity=identity)
            return None
        ambient = self._select(identity, readings, SensorRole.AMBIENT)
        ambient_f = ambient.temperature_f if ambient is not None else None

        sample = TemperatureSample(
            temperature_f=core.temperature_f,
            timestamp=now,
            ambient_temperature_f=ambient_f,
            sensor_index=core.sensor_index,
        )

        entry = self._entry_for(identity)
        with entry.lock:
            entry.history.append(sample)
            previous = entry.snapshot
            if ambient_f is None:
                ambient_f = previous.ambient_temperature_f
            entry.snapshot = replace(
                previous,
                current_temperature_f=sample.temperature_f,
                ambient_temperature_f=ambient_f,
                last_update=now,
                history=tuple(entry.history),
            )
        return sample

    def snapshot(self, identity: DeviceIdentity) -> Optional[DeviceSnapshot]:
        entry = self._get_entry(identity)
        return entry.snapshot if entry else None

    def snapshots(self) -> list[DeviceSnapshot]:
        with self._lock:
            entries = list(self._entries.values())
        return [entry.snapshot for entry in entries]

    def is_stale(self, identity: DeviceIdentity, now: datetime | None = None) -> bool:
        snapshot = self.snapshot(identity)
        if snapshot is None:
            return True
        return snapshot.is_stale(now or utcnow(), self.settings.stale_after)

    def progress(self, identity: DeviceIdentity) -> float:
        snapshot = self.snapshot(identity)
        return snapshot.progress() if snapshot else 0.0

    def estimated_time_remaining(self, identity: DeviceIdentity) -> TimeRemaining:
        snapshot = self.snapshot(identity)
        if snapshot is None:
            return CALCULATING
        return snapshot.estimated_time_remaining(self.settings.eta_window)
