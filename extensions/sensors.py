"""
Measurement sensor presets built on the generic numeric and binary builders.
"""
import dataclasses
import logging
from typing import Any, Dict

from extensions.base import REPORT_TYPES, Bundle, Decoder, merge_bundles, register_extension
from extensions.generic import binary, numeric
from modules.clusters import CLUSTER_IDS
from modules.scaling import lux_scale
from modules.store import StateStore
from modules.utils import get_endpoint_name

logger = logging.getLogger("extensions.sensors")

OCCUPANCY = CLUSTER_IDS["occupancy"]
NO_OCCUPANCY_SINCE = "no_occupancy_since"


def _preset(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    return {**defaults, **overrides}


@register_extension("temperature")
def temperature(**kwargs) -> Bundle:
    return numeric(**_preset({
        "name": "temperature",
        "cluster": "temperature",
        "attribute": "measured_value",
        "reporting": {"min": "10_SECONDS", "max": "1_HOUR", "change": 100},
        "description": "Measured temperature value",
        "unit": "°C",
        "scale": 100,
        "access": "STATE_GET",
    }, kwargs))


@register_extension("humidity")
def humidity(**kwargs) -> Bundle:
    return numeric(**_preset({
        "name": "humidity",
        "cluster": "humidity",
        "attribute": "measured_value",
        "reporting": {"min": "10_SECONDS", "max": "1_HOUR", "change": 100},
        "description": "Measured relative humidity",
        "unit": "%",
        "scale": 100,
        "access": "STATE_GET",
    }, kwargs))


@register_extension("co2")
def co2(**kwargs) -> Bundle:
    return numeric(**_preset({
        "name": "co2",
        "cluster": "carbon_dioxide_concentration",
        "label": "CO2",
        "attribute": "measured_value",
        # 50 ppm
        "reporting": {"min": "10_SECONDS", "max": "1_HOUR", "change": 0.00005},
        "description": "Measured value",
        "unit": "ppm",
        "scale": 0.000001,
        "access": "STATE_GET",
    }, kwargs))


@register_extension("pressure")
def pressure(**kwargs) -> Bundle:
    return numeric(**_preset({
        "name": "pressure",
        "cluster": "pressure",
        "attribute": "measured_value",
        # 5 kPa
        "reporting": {"min": "10_SECONDS", "max": "1_HOUR", "change": 50},
        "description": "The measured atmospheric pressure",
        "unit": "kPa",
        "scale": 10,
        "access": "STATE_GET",
    }, kwargs))


@register_extension("illuminance")
def illuminance(**kwargs) -> Bundle:
    """Raw illuminance plus illuminance_lux; only the lux capability reports."""
    raw = numeric(**_preset({
        "name": "illuminance",
        "cluster": "illuminance",
        "attribute": "measured_value",
        "description": "Raw measured illuminance",
        "access": "STATE_GET",
    }, kwargs))
    lux = numeric(**_preset({
        "name": "illuminance_lux",
        "cluster": "illuminance",
        "attribute": "measured_value",
        # 5 lux
        "reporting": {"min": "10_SECONDS", "max": "1_HOUR", "change": 5},
        "description": "Measured illuminance in lux",
        "unit": "lx",
        "scale": lux_scale,
        "access": "STATE_GET",
    }, kwargs))
    return merge_bundles([lux, raw])


def no_occupancy_since(store: StateStore, endpoint, options, publish, action: str) -> None:
    """
    Publish no_occupancy_since after each configured number of idle seconds.

    action "start" (occupancy cleared) schedules one timer per interval,
    "stop" (occupancy detected) cancels them.
    """
    intervals = (options or {}).get(NO_OCCUPANCY_SINCE) or []
    for seconds in intervals:
        key = f"{NO_OCCUPANCY_SINCE}_{seconds}"
        if action == "stop":
            store.cancel(endpoint, key)
        else:
            store.schedule(endpoint, key, seconds, lambda s=seconds: publish({NO_OCCUPANCY_SINCE: s}))


@register_extension("occupancy")
def occupancy(**kwargs) -> Bundle:
    endpoint_name = kwargs.get("endpoint_name")
    result = binary(**_preset({
        "name": "occupancy",
        "cluster": "occupancy",
        "attribute": "occupancy",
        "reporting": {"attribute": "occupancy", "min": "10_SECONDS", "max": "1_MINUTE", "change": 0},
        "description": "Indicates whether the device detected occupancy",
        "access": "STATE_GET",
        "value_on": (True, True),
        "value_off": (False, False),
    }, kwargs))
    prop = result.exposes[0].property

    def convert(model, msg, publish, options, meta):
        if "occupancy" not in msg.data:
            return None
        if endpoint_name and get_endpoint_name(msg, model, meta) != endpoint_name:
            return None
        # Bit 0 is occupied, the other bits are reserved
        occupied = int(msg.data["occupancy"]) % 2 > 0
        no_occupancy_since(meta["store"], msg.endpoint, options, publish, "stop" if occupied else "start")
        return {prop: occupied}

    return dataclasses.replace(result, decoders=(Decoder(OCCUPANCY, REPORT_TYPES, convert, (NO_OCCUPANCY_SINCE,)),))
