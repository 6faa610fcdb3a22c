# probe_monitor/capabilities.py
import logging

from .models import Brand, Capability, DeviceIdentity, PayloadFormat, SensorRole

logger = logging.getLogger(__name__)

# Combustion Inc (MeatStick) services
COMBUSTION_PROBE_STATUS_SERVICE = "00000100-caab-3792-3d44-97ae51c1407a"
COMBUSTION_UART_SERVICE = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"
# Legacy MeatStick firmware
MEATSTICK_SERVICE = "8d53dc1d-1db7-4cd3-868b-8a527460aa84"
MEATER_SERVICE = "a75cc7fc-c956-488f-ac2a-2dbc08b63a04"

MEATSTICK_SERVICES = frozenset(
    {COMBUSTION_PROBE_STATUS_SERVICE, COMBUSTION_UART_SERVICE, MEATSTICK_SERVICE}
)

MEATSTICK_PROBE_PREFIXES = ("ca00", "y0c")
MEATSTICK_BASE_PREFIX = "ca02"

# T1-T4 sit in the meat, T5-T7 along the shaft, T8 at the handle surface.
MEATSTICK_LAYOUT = (
    SensorRole.CORE,
    SensorRole.CORE,
    SensorRole.CORE,
    SensorRole.CORE,
    SensorRole.UNUSED,
    SensorRole.UNUSED,
    SensorRole.UNUSED,
    SensorRole.AMBIENT,
)
MEATER_LAYOUT = (SensorRole.CORE, SensorRole.AMBIENT)

# Brands recognized by name whose wire format is not documented.
OTHER_BRANDS = {
    "inkbird": Brand.INKBIRD,
    "thermoworks": Brand.THERMOWORKS,
    "weber": Brand.WEBER,
    "traeger": Brand.TRAEGER,
}


def _meatstick_probe(model: str) -> Capability:
    return Capability(
        brand=Brand.MEATSTICK,
        model=model,
        sensor_count=len(MEATSTICK_LAYOUT),
        sensor_layout=MEATSTICK_LAYOUT,
        ambient_max_temperature_f=1000.0,
        internal_max_temperature_f=200.0,
        payload_format=PayloadFormat.PACKED_13BIT,
    )


def _meater_probe(model: str) -> Capability:
    return Capability(
        brand=Brand.MEATER,
        model=model,
        sensor_count=len(MEATER_LAYOUT),
        sensor_layout=MEATER_LAYOUT,
        ambient_max_temperature_f=527.0,
        internal_max_temperature_f=212.0,
        payload_format=PayloadFormat.DUAL_LE16,
    )


def _normalized_services(identity: DeviceIdentity) -> set[str]:
    return {uuid.lower() for uuid in identity.service_uuids}


def resolve_capability(identity: DeviceIdentity) -> Capability | None:
    """
    Classifies a device by its advertised name and services.
    Returns None when the device matches no known brand.
    """
    name = (identity.name or "").strip()
    lowered = name.lower()
    services = _normalized_services(identity)
    has_meatstick_service = bool(services & MEATSTICK_SERVICES)

    if lowered.startswith(MEATSTICK_BASE_PREFIX):
        return Capability(
            brand=Brand.MEATSTICK,
            model=f"{name}_BASE",
            sensor_count=0,
            is_repeater=True,
        )
    if lowered.startswith(MEATSTICK_PROBE_PREFIXES) or "meatstick" in lowered:
        return _meatstick_probe("MeatStick V" if has_meatstick_service else "MeatStick")

    if "meater" in lowered:
        if "block" in lowered:
            return Capability(
                brand=Brand.MEATER,
                model="MEATER Block",
                sensor_count=0,
                is_repeater=True,
            )
        if "plus" in lowered:
            return _meater_probe("MEATER Plus")
        return _meater_probe("MEATER")

    for token, brand in OTHER_BRANDS.items():
        if token in lowered:
            return Capability(
                brand=brand,
                model=name,
                sensor_count=1,
                sensor_layout=(SensorRole.CORE,),
                ambient_max_temperature_f=500.0,
                internal_max_temperature_f=200.0,
            )

    if has_meatstick_service:
        return _meatstick_probe("MeatStick V")
    if MEATER_SERVICE in services:
        return _meater_probe("MEATER")

    logger.debug(f"No capability match for {identity.address} (name={name!r})")
    return None


def is_trackable(identity: DeviceIdentity, capability: Capability | None) -> bool:
    """Nameless devices without any brand signal are not tracked."""
    return capability is not None or bool((identity.name or "").strip())
