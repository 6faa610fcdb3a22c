# probe_monitor/error.py
from pathlib import Path
from typing import Any

from pydantic import ValidationError


class ConfigError(Exception):
    """Raised when the configuration cannot be loaded or is invalid."""


class DecodeError(Exception):
    """Base class for payloads that cannot be turned into readings."""

    reason = "decode_error"


class WrongLengthError(DecodeError):
    """The payload length does not match the capability's wire format."""

    reason = "wrong_length"

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Expected a {expected}-byte payload, got {actual} bytes")
        self.expected = expected
        self.actual = actual


class UnrecognizedFormatError(DecodeError):
    """The payload shape matches no known or fallback format."""

    reason = "unrecognized_format"


def _get_value_at(config_data: Any, loc: tuple) -> Any:
    value = config_data
    for part in loc:
        try:
            value = value[part]
        except (KeyError, IndexError, TypeError):
            return None
    return value


def _get_line_number(config_data: Any, loc: tuple) -> int | None:
    """Returns the 1-based line of a ruamel.yaml node, if it carries one."""
    if not loc:
        return None
    parent = _get_value_at(config_data, loc[:-1])
    lc = getattr(parent, "lc", None)
    if lc is None:
        return None
    try:
        line, _ = lc.key(loc[-1]) if isinstance(parent, dict) else lc.item(loc[-1])
    except (KeyError, IndexError, TypeError):
        return None
    return line + 1


def format_validation_error(
    error: ValidationError, config_path: Path, config_data: Any
) -> str:
    lines = [f"Invalid configuration in {config_path}:"]
    for detail in error.errors():
        loc = tuple(detail.get("loc", ()))
        location = ".".join(str(part) for part in loc) or "(root)"
        line = _get_line_number(config_data, loc)
        where = f" (line {line})" if line else ""
        lines.append(f"  - {location}{where}: {detail.get('msg')}")
        value = _get_value_at(config_data, loc)
        if value is not None:
            lines.append(f"    got: {value!r}")
    return "\n".join(lines)
