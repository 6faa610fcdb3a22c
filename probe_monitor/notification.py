# probe_monitor/notification.py
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .models import DeviceIdentity


@dataclass(frozen=True)
class Notification:
    """One BLE notification as delivered by the transport layer."""

    identity: DeviceIdentity
    payload: bytes
    timestamp: Optional[datetime] = None
    battery_level: Optional[int] = None
    signal_strength: Optional[int] = None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    timestamp = datetime.fromisoformat(str(value))
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp


def _parse_optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def parse_notification(
    data: Union[str, bytes, Dict[str, Any]], address: Optional[str] = None
) -> Notification:
    """
    Builds a Notification from a JSON message such as
    {"address": "...", "name": "cA00...", "services": [...],
     "payload": "<hex>", "timestamp": "...", "battery": 90, "rssi": -60}.

    The address may come from the MQTT topic instead of the body.
    Raises ValueError if the message is malformed.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Notification is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Notification must be a JSON object")

    address = data.get("address") or address
    if not address:
        raise ValueError("Notification has no device address")

    payload_hex = data.get("payload")
    if not isinstance(payload_hex, str):
        raise ValueError("Notification payload must be a hex string")
    try:
        payload = bytes.fromhex(payload_hex)
    except ValueError as e:
        raise ValueError(f"Notification payload is not valid hex: {e}") from e

    services = data.get("services") or []
    if isinstance(services, str):
        services = [services]

    try:
        return Notification(
            identity=DeviceIdentity(
                address=str(address).upper(),
                name=str(data.get("name") or ""),
                service_uuids=frozenset(str(s).lower() for s in services),
            ),
            payload=payload,
            timestamp=_parse_timestamp(data.get("timestamp")),
            battery_level=_parse_optional_int(data.get("battery")),
            signal_strength=_parse_optional_int(data.get("rssi")),
        )
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise ValueError(f"Invalid notification field: {e}") from e
