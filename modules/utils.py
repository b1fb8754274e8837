"""
Helpers shared by the capability extensions.
"""
import logging
from typing import Any, Dict, Mapping, Optional, Union

from error_handler import DecodeAnomaly, EncodeRejected
from modules.scaling import is_number

logger = logging.getLogger("modules.utils")

# Linear ranges in millivolts for voltage -> percentage conversion
BATTERY_VOLTAGE_RANGES = {
    "3V_2100": (2100, 3000),
    "3V_2500": (2500, 3000),
    "3V_2500_3200": (2500, 3200),
    "3V_2850_3000": (2850, 3000),
    "4LR6AA1_5v": (3000, 4200),
}


def get_from_lookup(value: Any, lookup: Mapping[str, Any]) -> Any:
    """Capability value -> wire value. Strings match case-insensitively."""
    if value in lookup:
        return lookup[value]
    if isinstance(value, str):
        lowered = value.lower()
        for key, wire in lookup.items():
            if isinstance(key, str) and key.lower() == lowered:
                return wire
    raise EncodeRejected(f"Value '{value}' is not allowed, expected one of {', '.join(map(str, lookup))}")


def get_from_lookup_by_value(value: Any, lookup: Mapping[str, Any]) -> str:
    """Wire value -> capability value."""
    for key, wire in lookup.items():
        if wire == value:
            return key
    raise DecodeAnomaly(f"Raw value {value!r} not found in lookup {dict(lookup)}")


def attribute_key(attribute: Any) -> Union[str, int]:
    """Key under which an attribute shows up in message data."""
    if isinstance(attribute, (str, int)):
        return attribute
    return attribute.id


def attribute_payload(attribute: Any, value: Any) -> Dict[Union[str, int], Any]:
    """Write payload for a named attribute or an {id, type} reference."""
    if isinstance(attribute, (str, int)):
        return {attribute: value}
    return {attribute.id: {"value": value, "type": attribute.type}}


def get_endpoint_name(msg, model, meta=None) -> str:
    """Endpoint name of a message: mapped through the definition if it has a map."""
    mapping = model.endpoint(msg.device) if model is not None and model.endpoint else None
    if mapping:
        for name, endpoint_id in mapping.items():
            if endpoint_id == msg.endpoint.id:
                return name
    return str(msg.endpoint.id)


def postfix_with_endpoint_name(value: str, msg, model, meta=None) -> str:
    """Append the endpoint name on multi-endpoint definitions."""
    if model is None or not model.meta.get("multi_endpoint"):
        return value
    if value in model.meta.get("multi_endpoint_skip", ()):
        return value
    return f"{value}_{get_endpoint_name(msg, model, meta)}"


def assert_number(value: Any, name: str = "value") -> None:
    if not is_number(value):
        raise DecodeAnomaly(f"{name}: expected a number, got {value!r}")


def as_number(value: Any, name: str = "value") -> float:
    """Numeric option value, numeric strings ("30") included."""
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError as e:
            raise DecodeAnomaly(f"{name}: expected a number, got {value!r}") from e
    assert_number(value, name)
    return value


def to_percentage(value: float, minimum: float, maximum: float) -> int:
    if value > maximum:
        return 100
    if value < minimum:
        return 0
    return round((value - minimum) / (maximum - minimum) * 100)


def battery_voltage_to_percentage(voltage: float, option: Union[str, Mapping[str, float]]) -> int:
    """Estimate remaining battery from a millivolt reading."""
    if isinstance(option, Mapping):
        return to_percentage(voltage, option["min"], option["max"])

    if option == "3V_1500_2800":
        percentage = 235 - 370000 / (voltage + 1)
        return max(0, min(100, round(percentage)))

    if option not in BATTERY_VOLTAGE_RANGES:
        raise DecodeAnomaly(f"Unknown battery voltage profile '{option}'")
    minimum, maximum = BATTERY_VOLTAGE_RANGES[option]
    return to_percentage(voltage, minimum, maximum)


def option_value(options: Optional[Mapping[str, Any]], key: str, default: Any = None) -> Any:
    if options and key in options and options[key] is not None:
        return options[key]
    return default


def property_for_endpoint(name: str, msg, model, meta=None, endpoint_names=None) -> Optional[str]:
    """
    Published property of `name` for the message endpoint.

    With explicit endpoint names the property is always postfixed and messages
    from other endpoints map to None; otherwise the definition decides.
    """
    if endpoint_names:
        endpoint = get_endpoint_name(msg, model, meta)
        if endpoint not in endpoint_names:
            return None
        return f"{name}_{endpoint}"
    return postfix_with_endpoint_name(name, msg, model, meta)
