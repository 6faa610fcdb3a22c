# probe_monitor/validator.py
from .config import ValidationSettings
from .models import SensorRole

DEFAULT_LIMITS = ValidationSettings()

# 0°F is what the probes report for a sensor that is not present.
NOT_PRESENT_SENTINEL_F = 0.0


def validate_reading(
    temperature_f: float,
    role: SensorRole,
    limits: ValidationSettings = DEFAULT_LIMITS,
) -> bool:
    """Returns True if the temperature is plausible for a sensor in this role."""
    if temperature_f == NOT_PRESENT_SENTINEL_F:
        return False
    if role == SensorRole.AMBIENT:
        return limits.ambient_min_f <= temperature_f <= limits.ambient_max_f
    return limits.core_min_f <= temperature_f <= limits.core_max_f
