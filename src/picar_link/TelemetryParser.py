"""Status response parser, turns raw JSON payloads into StatusUpdates."""
import json
from typing import Any, Dict, Optional, Union

from picar_helper.exceptions import StatusParseError
from picar_link.dataclasses import StatusUpdate

SUBSYSTEMS = ("gpio", "i2c", "adc", "camera")


def _number(values: Dict[str, Any], key: str) -> Optional[float]:
    if key not in values:
        return None

    value = values[key]

    # Robot reports null for sensors that are not available
    if value is None:
        return 0.0

    # bool is a subclass of int, but never a valid reading
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise StatusParseError(f"'{key}' is not a number: {value!r}")

    return float(value)


def _flag(values: Dict[str, Any], key: str) -> Optional[bool]:
    if key not in values:
        return None

    value = values[key]
    if value is None:
        return False

    if not isinstance(value, bool):
        raise StatusParseError(f"'mock_status.{key}' is not a boolean: {value!r}")

    return value


def parse_status(payload: Union[bytes, str]) -> StatusUpdate:
    """
    Parse a status response.

    The whole payload is validated before anything is returned, so a caller
    either gets a complete update or a StatusParseError, never a partial one.
    Unknown keys are ignored.
    """
    try:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        values = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StatusParseError(f"Invalid status payload: {e}") from e

    if not isinstance(values, dict):
        raise StatusParseError(f"Status payload is not an object: {type(values).__name__}")

    voltage = _number(values, "Vb")
    if voltage is None:
        raise StatusParseError("Status payload is missing 'Vb'")

    flags: Dict[str, Optional[bool]] = {name: None for name in SUBSYSTEMS}
    has_mock_status = "mock_status" in values
    if has_mock_status:
        mock_status = values["mock_status"]
        if not isinstance(mock_status, dict):
            raise StatusParseError(f"'mock_status' is not an object: {mock_status!r}")

        for name in SUBSYSTEMS:
            flags[name] = _flag(mock_status, name)

    return StatusUpdate(
        battery_voltage=voltage,
        distance=_number(values, "distance"),
        position=_number(values, "pos"),
        has_mock_status=has_mock_status,
        **flags
    )
