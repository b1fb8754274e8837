"""
Scale / precision pipeline between raw device units and capability units.

A scale is either a constant divisor (decode raw / scale, encode value * scale)
or a direction aware function `(value, "from" | "to") -> value` for transforms
that are not symmetric.
"""
import math
from typing import Callable, Optional, Union

from error_handler import DecodeAnomaly, EncodeRejected

FROM_DEVICE = "from"
TO_DEVICE = "to"

ScaleFunction = Callable[[float, str], float]
Scale = Union[int, float, ScaleFunction]


def is_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


def precision_round(value: float, precision: int) -> float:
    """Round half up to `precision` digits."""
    factor = 10 ** precision
    return math.floor(value * factor + 0.5) / factor


def decode_value(raw, scale: Optional[Scale] = None, precision: Optional[int] = None,
                 name: str = "value"):
    """Raw device value -> capability value."""
    if not is_number(raw):
        raise DecodeAnomaly(f"{name}: expected a number, got {raw!r}")

    value = raw
    if scale is not None:
        value = raw / scale if is_number(scale) else scale(raw, FROM_DEVICE)
    if not is_number(value):
        raise DecodeAnomaly(f"{name}: scaling {raw!r} produced {value!r}")

    if precision is not None:
        value = precision_round(value, precision)
    return value


def encode_value(value, scale: Optional[Scale] = None, precision: Optional[int] = None,
                 name: str = "value", integral: bool = False):
    """
    Capability value -> raw device value.

    With `integral` the scaled value is rounded half up to an int, the wire
    type would otherwise truncate it.
    """
    if not is_number(value):
        raise EncodeRejected(f"{name}: expected a number, got {value!r}")

    payload = value
    if scale is not None:
        payload = value * scale if is_number(scale) else scale(value, TO_DEVICE)
    if not is_number(payload):
        raise EncodeRejected(f"{name}: scaling {value!r} produced {payload!r}")

    if precision is not None:
        payload = precision_round(payload, precision)
    if integral:
        payload = int(math.floor(payload + 0.5))
    return payload


def lux_scale(value: float, direction: str) -> float:
    """MeasuredValue = 10000 * log10(lux) + 1, only decoded."""
    if direction == FROM_DEVICE:
        return math.pow(10, (value - 1) / 10000)
    return value
