# probe_monitor/pipeline.py
import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Dict, List, Optional, Tuple

from .capabilities import is_trackable, resolve_capability
from .error import DecodeError
from .models import (
    Capability,
    DeviceIdentity,
    DeviceRecord,
    ReadingRecord,
    SensorReading,
    SensorRole,
    TemperatureSample,
)
from .notification import Notification
from .protocol import decode_payload
from .signals import decode_failed, device_discovered, reading_recorded, state_changed
from .tracker import DeviceStateTracker, utcnow
from .validator import validate_reading

logger = logging.getLogger(__name__)


@dataclass
class _KnownDevice:
    capability: Optional[Capability]
    first_seen: datetime
    last_seen: datetime
    trackable: bool


class ProbePipeline:
    """
    Runs every notification through decode, validation and state update.

    The capability of a device is resolved once, on the first notification
    seen for its identity; later payloads go straight to the decoder.
    """

    def __init__(
        self,
        tracker: DeviceStateTracker,
        targets: Dict[str, float] | None = None,
    ):
        self.tracker = tracker
        self._targets: Dict[str, float] = {}
        self._configured_targets: set[str] = set()
        self._devices: Dict[Tuple[str, str], _KnownDevice] = {}
        self._lock = Lock()
        self.apply_targets(targets or {})

    def _first_sighting(
        self, identity: DeviceIdentity, now: datetime
    ) -> Tuple[_KnownDevice, bool]:
        with self._lock:
            known = self._devices.get(identity.key)
            if known is not None:
                return known, False
            capability = resolve_capability(identity)
            known = _KnownDevice(
                capability=capability,
                first_seen=now,
                last_seen=now,
                trackable=is_trackable(identity, capability),
            )
            # Unnamed devices without a brand signal are re-checked on every
            # notification instead of being remembered.
            if known.trackable:
                self._devices[identity.key] = known
            return known, True

    def _on_new_device(self, identity: DeviceIdentity, known: _KnownDevice) -> None:
        capability = known.capability
        if not known.trackable:
            logger.debug(
                f"Ignoring unnamed device {identity.address} with no brand signal"
            )
            return

        if capability:
            logger.info(
                f"New device {identity.address} ({identity.name}) classified as "
                f"{capability.brand.value} {capability.model}"
            )
        else:
            logger.info(
                f"New device {identity.address} ({identity.name}) is unclassified, "
                "using the generic payload format"
            )
        self.tracker.track(identity, capability)

        target = self._targets.get(identity.address.upper())
        if target is not None:
            self.tracker.set_target(identity, target)

        device_discovered.send(self, record=self._device_record(identity, known))

    def _device_record(
        self, identity: DeviceIdentity, known: _KnownDevice
    ) -> DeviceRecord:
        capability = known.capability
        return DeviceRecord(
            address=identity.address,
            name=identity.name or "Unknown Device",
            brand=capability.brand.value if capability else "Unknown",
            model=capability.model if capability else (identity.name or "Unknown"),
            sensor_count=capability.sensor_count if capability else 1,
            first_seen=known.first_seen,
            last_seen=known.last_seen,
        )

    def _reading_records(
        self,
        notification: Notification,
        sample: TemperatureSample,
        readings: List[SensorReading],
    ) -> List[ReadingRecord]:
        """
        One record per plausible sensor reading, all sharing the sample's
        ambient temperature. The sensor that produced the sample comes first.
        """
        rows = [(sample.sensor_index, sample.temperature_f)]
        for reading in sorted(readings, key=lambda r: r.sensor_index):
            if reading.sensor_index == sample.sensor_index:
                continue
            if reading.role != SensorRole.UNUSED and validate_reading(
                reading.temperature_f, reading.role, self.tracker.limits
            ):
                rows.append((reading.sensor_index, reading.temperature_f))
        return [
            ReadingRecord(
                device_address=notification.identity.address,
                timestamp=sample.timestamp,
                sensor_index=sensor_index,
                temperature_f=temperature_f,
                ambient_temperature_f=sample.ambient_temperature_f,
                battery_level=notification.battery_level,
                signal_strength=notification.signal_strength,
            )
            for sensor_index, temperature_f in rows
        ]

    def handle_notification(
        self, notification: Notification
    ) -> Optional[TemperatureSample]:
        """
        Processes one payload. Returns the recorded sample, or None when the
        payload produced no state change.
        """
        identity = notification.identity
        now = notification.timestamp or utcnow()

        known, is_new = self._first_sighting(identity, now)
        if is_new:
            self._on_new_device(identity, known)
        if not known.trackable:
            return None

        try:
            readings = decode_payload(known.capability, notification.payload)
        except DecodeError as e:
            logger.warning(f"Could not decode payload from {identity.address}: {e}")
            decode_failed.send(self, identity=identity, error=e)
            return None

        sample = self.tracker.ingest(identity, readings, now)
        if sample is None:
            return None

        with self._lock:
            known.last_seen = now

        for record in self._reading_records(notification, sample, readings):
            reading_recorded.send(self, record=record)
        snapshot = self.tracker.snapshot(identity)
        if snapshot is not None:
            state_changed.send(self, snapshot=snapshot)
        return sample

    def handle_signal(self, sender, **kwargs) -> None:
        """Receives notifications from the notification_received signal."""
        notification: Notification | None = kwargs.get("notification")
        if notification is None:
            return
        self.handle_notification(notification)

    def handle_target_request(self, sender, **kwargs) -> None:
        """Applies target temperatures requested by the target_requested signal."""
        address: str | None = kwargs.get("address")
        if not address:
            return
        self._apply_target(address.upper(), kwargs.get("target_temperature_f"))

    def apply_targets(self, targets: Dict[str, float]) -> None:
        """
        Applies the configured targets. Addresses dropped from the
        configuration since the last call have their target cleared.
        """
        targets = {address.upper(): target for address, target in targets.items()}
        for address in sorted(self._configured_targets - targets.keys()):
            logger.info(f"Target for {address} removed from configuration")
            self._apply_target(address, None)
        for address, target in targets.items():
            self._apply_target(address, target)
        self._configured_targets = set(targets)

    def _apply_target(self, address: str, target: float | None) -> None:
        if target is None:
            self._targets.pop(address, None)
        else:
            self._targets[address] = target
        updated = 0
        for snapshot in self.tracker.snapshots():
            if snapshot.identity.address.upper() == address:
                new_snapshot = self.tracker.set_target(snapshot.identity, target)
                state_changed.send(self, snapshot=new_snapshot)
                updated += 1
        if not updated:
            logger.debug(f"Target stored for {address}, device not seen yet")
