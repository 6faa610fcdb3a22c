# tests/helpers.py
import struct
from datetime import datetime, timedelta, timezone

from probe_monitor.models import SensorReading, SensorRole, fahrenheit_to_celsius

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def core(temperature_f: float, index: int = 0) -> SensorReading:
    return SensorReading(index, fahrenheit_to_celsius(temperature_f), SensorRole.CORE)


def ambient(temperature_f: float, index: int = 1) -> SensorReading:
    return SensorReading(
        index, fahrenheit_to_celsius(temperature_f), SensorRole.AMBIENT
    )


def pack_13bit(raw_values: list[int]) -> bytes:
    """Packs eight 13-bit values into the 13-byte little-endian bit stream."""
    stream = 0
    for index, raw in enumerate(raw_values):
        stream |= (raw & 0x1FFF) << (13 * index)
    return stream.to_bytes(13, "little")


def pack_dual(tip: int, ra: int = 0, oa: int = 0, reserved: int = 0) -> bytes:
    return struct.pack("<4H", tip, ra, oa, reserved)
