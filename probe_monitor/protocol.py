# probe_monitor/protocol.py
"""
Wire formats of the supported thermometer probes.

Packed 13-bit format (MeatStick / Combustion Inc), 13 bytes:
    Eight 13-bit unsigned fields in a little-endian bit stream. Sensor i
    occupies bits [13*i, 13*i + 13), bit 0 being the least significant bit
    of byte 0. Celsius = raw * 0.05 - 20.0.

Dual little-endian format (MEATER), 8 bytes:
    u16 tip, u16 RA, u16 OA, u16 reserved. Tip Celsius = tip / 10.
    Ambient raw = tip + max(0, ((RA - min(48, OA)) * 16 * 589) / 1487),
    ambient Celsius = ambient raw / 10.

Generic fallback, only for unclassified devices, 2 or 4 bytes:
    u16 core [, u16 ambient], Celsius = raw / 10.
"""

import struct

from .error import DecodeError, UnrecognizedFormatError, WrongLengthError
from .models import Capability, PayloadFormat, SensorReading, SensorRole

PACKED_PAYLOAD_LENGTH = 13
PACKED_SENSOR_COUNT = 8
PACKED_FIELD_BITS = 13
PACKED_FIELD_MASK = (1 << PACKED_FIELD_BITS) - 1

DUAL_PAYLOAD_LENGTH = 8
GENERIC_PAYLOAD_LENGTHS = (2, 4)
KNOWN_PAYLOAD_LENGTHS = frozenset(
    (*GENERIC_PAYLOAD_LENGTHS, DUAL_PAYLOAD_LENGTH, PACKED_PAYLOAD_LENGTH)
)

__all__ = [
    "DecodeError",
    "UnrecognizedFormatError",
    "WrongLengthError",
    "decode_payload",
    "decode_packed_payload",
    "decode_dual_payload",
    "decode_generic_payload",
    "unpack_13bit_fields",
]


def unpack_13bit_fields(payload: bytes, count: int = PACKED_SENSOR_COUNT) -> list[int]:
    stream = int.from_bytes(payload, "little")
    return [
        (stream >> (PACKED_FIELD_BITS * index)) & PACKED_FIELD_MASK
        for index in range(count)
    ]


def packed_raw_to_celsius(raw: int) -> float:
    return raw * 0.05 - 20.0


def decode_packed_payload(
    payload: bytes, capability: Capability | None = None
) -> list[SensorReading]:
    if len(payload) != PACKED_PAYLOAD_LENGTH:
        raise WrongLengthError(PACKED_PAYLOAD_LENGTH, len(payload))

    readings = []
    for index, raw in enumerate(unpack_13bit_fields(payload)):
        role = capability.role_of(index) if capability else SensorRole.CORE
        readings.append(
            SensorReading(
                sensor_index=index,
                temperature_c=packed_raw_to_celsius(raw),
                role=role,
            )
        )
    return readings


def meater_ambient_raw(tip_raw: int, ra_raw: int, oa_raw: int) -> int:
    offset = (ra_raw - min(48, oa_raw)) * 16 * 589
    # Floor and truncating division agree once negatives are clamped to 0.
    return tip_raw + max(0, offset // 1487)


def decode_dual_payload(payload: bytes) -> list[SensorReading]:
    if len(payload) != DUAL_PAYLOAD_LENGTH:
        raise WrongLengthError(DUAL_PAYLOAD_LENGTH, len(payload))

    tip_raw, ra_raw, oa_raw, _reserved = struct.unpack("<4H", payload)
    ambient_raw = meater_ambient_raw(tip_raw, ra_raw, oa_raw)
    return [
        SensorReading(0, tip_raw / 10.0, SensorRole.CORE),
        SensorReading(1, ambient_raw / 10.0, SensorRole.AMBIENT),
    ]


def decode_generic_payload(payload: bytes) -> list[SensorReading]:
    if len(payload) not in GENERIC_PAYLOAD_LENGTHS:
        raise UnrecognizedFormatError(
            f"Unrecognized payload of {len(payload)} bytes from unclassified device"
        )

    values = struct.unpack(f"<{len(payload) // 2}H", payload)
    roles = (SensorRole.CORE, SensorRole.AMBIENT)
    return [
        SensorReading(index, raw / 10.0, roles[index])
        for index, raw in enumerate(values)
    ]


def decode_payload(
    capability: Capability | None, payload: bytes
) -> list[SensorReading]:
    """
    Decodes a notification payload into calibrated per-sensor readings.

    A resolved capability always selects its own format; the generic
    fallback is only used when the device could not be classified.
    Raises a DecodeError subclass for any payload that does not fit: a
    length no supported format uses is unrecognized, while a known length
    sent by the wrong kind of device is a wrong length.
    """
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise UnrecognizedFormatError(
            f"Payload is not a byte sequence: {type(payload).__name__}"
        )
    payload = bytes(payload)
    if len(payload) not in KNOWN_PAYLOAD_LENGTHS:
        raise UnrecognizedFormatError(
            f"Unrecognized payload of {len(payload)} bytes"
        )

    if capability is None:
        return decode_generic_payload(payload)

    if capability.payload_format == PayloadFormat.PACKED_13BIT:
        return decode_packed_payload(payload, capability)
    if capability.payload_format == PayloadFormat.DUAL_LE16:
        return decode_dual_payload(payload)

    raise UnrecognizedFormatError(
        f"No known payload format for {capability.brand.value} {capability.model}"
    )
