"""
IAS security extensions: zone alarms (contact, smoke, water leak, ...) and
warning devices (sirens).
"""
import logging
from typing import Any, Dict, List, Literal

import exposes as e
from error_handler import EncodeRejected
from exposes import access as ea
from extensions.base import (
    REPORT_TYPES, Bundle, Decoder, Encoder, ExtendArgs, command_type, make_bundle,
    parse_args, register_extension,
)
from modules.clusters import CLUSTER_IDS
from modules.scaling import is_number
from modules.utils import as_number, assert_number, get_from_lookup, option_value

logger = logging.getLogger("extensions.security")

IAS_ZONE = CLUSTER_IDS["ias_zone"]
IAS_WD = CLUSTER_IDS["ias_wd"]

DEFAULT_ALARM_TIMEOUT = 90
TIMER_KEY = "timer"

ZoneType = Literal[
    "occupancy", "contact", "smoke", "water_leak", "carbon_monoxide",
    "sos", "vibration", "alarm", "gas", "generic",
]
ZoneAttribute = Literal[
    "alarm_1", "alarm_2", "tamper", "battery_low", "supervision_reports",
    "restore_reports", "trouble", "ac_status", "test", "battery_defect",
]

# Zone status bit of every zone attribute
ZONE_STATUS_BITS = {
    "alarm_1": 0,
    "alarm_2": 1,
    "tamper": 2,
    "battery_low": 3,
    "supervision_reports": 4,
    "restore_reports": 5,
    "trouble": 6,
    "ac_status": 7,
    "test": 8,
    "battery_defect": 9,
}

ZONE_DESCRIPTIONS = {
    "occupancy": "Indicates whether the device detected occupancy",
    "contact": "Indicates whether the device is opened or closed",
    "smoke": "Indicates whether the device detected smoke",
    "water_leak": "Indicates whether the device detected a water leak",
    "carbon_monoxide": "Indicates whether the device detected carbon monoxide",
    "sos": "Indicates whether the SOS alarm is triggered",
    "vibration": "Indicates whether the device detected vibration",
    "alarm": "Indicates whether the alarm is triggered",
    "gas": "Indicates whether the device detected gas",
}

ATTRIBUTE_DESCRIPTIONS = {
    "alarm_1": "Indicates whether IAS Zone alarm 1 is active",
    "alarm_2": "Indicates whether IAS Zone alarm 2 is active",
    "tamper": "Indicates whether the device is tampered",
    "battery_low": "Indicates whether the battery of the device is almost empty",
    "supervision_reports": "Indicates whether the device issues reports on zone operational status",
    "restore_reports": "Indicates whether the device issues reports on alarm no longer being present",
    "trouble": "Indicates whether the device is in trouble or failure state",
    "ac_status": "Indicates whether the device mains voltage supply is at fault",
    "test": "Indicates whether the device is currently performing a test",
    "battery_defect": "Indicates whether the device battery is defective",
}


def _zone_expose(zone_type: str, name: str, description: str):
    if zone_type == "contact":
        expose = e.binary(name, ea.STATE, False, True)
    else:
        expose = e.binary(name, ea.STATE, True, False)
    if zone_type == "sos":
        expose.with_label("SOS")
    return expose.with_description(description)


def _attribute_expose(name: str):
    expose = e.binary(name, ea.STATE, True, False).with_description(ATTRIBUTE_DESCRIPTIONS[name])
    if name not in ("alarm_1", "alarm_2"):
        expose.with_category("diagnostic")
    return expose


class IasZoneAlarmArgs(ExtendArgs):
    zone_type: ZoneType
    zone_attributes: List[ZoneAttribute]
    alarm_timeout: bool = False


@register_extension("ias_zone_alarm")
def ias_zone_alarm(**kwargs) -> Bundle:
    args = parse_args(IasZoneAlarmArgs, kwargs)
    zone = args.zone_type
    attributes = list(dict.fromkeys(args.zone_attributes))
    both_alarms = "alarm_1" in attributes and "alarm_2" in attributes

    # Capability name -> zone status bit
    names: Dict[str, int] = {}
    descriptors = []
    if zone == "generic":
        for attr in attributes:
            names[attr] = ZONE_STATUS_BITS[attr]
            descriptors.append(_attribute_expose(attr))
    else:
        if both_alarms:
            for alarm in ("alarm_1", "alarm_2"):
                name = f"{zone}_{alarm}"
                names[name] = ZONE_STATUS_BITS[alarm]
                descriptors.append(_zone_expose(zone, name, f"{ZONE_DESCRIPTIONS[zone]} ({alarm})"))
        else:
            alarm = "alarm_2" if "alarm_2" in attributes else "alarm_1"
            names[zone] = ZONE_STATUS_BITS[alarm]
            descriptors.append(_zone_expose(zone, zone, ZONE_DESCRIPTIONS[zone]))
        for attr in attributes:
            if attr not in ("alarm_1", "alarm_2"):
                names[attr] = ZONE_STATUS_BITS[attr]
                descriptors.append(_attribute_expose(attr))

    alarm_names = [n for n, bit in names.items() if bit in (0, 1)]
    # contact reports true while closed, i.e. while the alarm bit is clear
    inverted = set(alarm_names) if zone == "contact" else set()
    timeout_property = f"{zone}_timeout"
    decoder_options = ()
    if args.alarm_timeout:
        decoder_options = (
            e.numeric(timeout_property, ea.SET).with_value_min(0).with_description(
                f"Time in seconds after which {zone} is cleared after detecting it "
                f"(default {DEFAULT_ALARM_TIMEOUT} seconds)."
            ),
        )

    def convert(model, msg, publish, options, meta):
        if "zone_status" not in msg.data:
            return None
        zone_status = msg.data["zone_status"]
        assert_number(zone_status, "zone_status")
        zone_status = int(zone_status)

        if args.alarm_timeout:
            store = meta["store"]
            timeout = option_value(options, timeout_property, DEFAULT_ALARM_TIMEOUT)
            store.cancel(msg.endpoint, TIMER_KEY)
            timeout = as_number(timeout, timeout_property)
            if timeout != 0:
                cleared = {name: name in inverted for name in alarm_names}
                store.schedule(msg.endpoint, TIMER_KEY, timeout, lambda: publish(cleared))

        return {
            name: bool(zone_status & (1 << bit)) != (name in inverted)
            for name, bit in names.items()
        }

    types = (command_type("status_change_notification"),) + REPORT_TYPES
    return make_bundle(exposes=descriptors, decoders=[Decoder(IAS_ZONE, types, convert, decoder_options)])


# ============================================================
# WARNING DEVICE
# ============================================================

WARNING_MODE_LOOKUP = {
    "stop": 0, "burglar": 1, "fire": 2, "emergency": 3,
    "police_panic": 4, "fire_panic": 5, "emergency_panic": 6,
}
# Siren, strobe and squawk levels are identical
LEVEL_LOOKUP = {"low": 0, "medium": 1, "high": 2, "very_high": 3}


class IasWarningArgs(ExtendArgs):
    reverse_payload: bool = False


def pack_warning_info(mode: int, strobe: bool, level: int, reverse: bool = False) -> int:
    """Pack the start_warning bitmap, most devices use the standard order."""
    if reverse:
        return mode | (int(strobe) << 4) | (level << 6)
    return (mode << 4) | (int(strobe) << 2) | level


@register_extension("ias_warning")
def ias_warning(**kwargs) -> Bundle:
    args = parse_args(IasWarningArgs, kwargs)

    descriptor = (
        e.composite("warning", "warning", ea.SET)
        .with_feature(e.enum("mode", ea.SET, list(WARNING_MODE_LOOKUP)).with_description("Mode of the warning (sound effect)"))
        .with_feature(e.enum("level", ea.SET, list(LEVEL_LOOKUP)).with_description("Sound level"))
        .with_feature(e.enum("strobe_level", ea.SET, list(LEVEL_LOOKUP)).with_description("Intensity of the strobe"))
        .with_feature(e.binary("strobe", ea.SET, True, False).with_description("Turn on/off the strobe (light) during warning"))
        .with_feature(e.numeric("strobe_duty_cycle", ea.SET).with_value_min(0).with_value_max(10)
                      .with_description("Length of the flash cycle"))
        .with_feature(e.numeric("duration", ea.SET).with_unit("s").with_description("Duration in seconds of the alarm"))
    )

    async def convert_set(endpoint, key, value: Dict[str, Any], meta):
        if not isinstance(value, dict):
            raise EncodeRejected(f"{key}: expected an object, got {value!r}")
        mode = get_from_lookup(value.get("mode") or "emergency", WARNING_MODE_LOOKUP)
        level = get_from_lookup(value.get("level") or "medium", LEVEL_LOOKUP)
        strobe = bool(value.get("strobe", True))
        duration = value.get("duration", 10)
        duty_cycle = value.get("strobe_duty_cycle")
        if duty_cycle is not None and not is_number(duty_cycle):
            raise EncodeRejected(f"{key}: strobe_duty_cycle {duty_cycle!r} is not a number")
        if not is_number(duration):
            raise EncodeRejected(f"{key}: duration {duration!r} is not a number")
        strobe_level = get_from_lookup(value["strobe_level"], LEVEL_LOOKUP) if "strobe_level" in value else 1

        # start_warning arguments in command field order
        payload = {
            "warning": pack_warning_info(mode, strobe, level, args.reverse_payload),
            "warning_duration": int(duration),
            "strobe_duty_cycle": int(duty_cycle * 10) if duty_cycle is not None else 0,
            "strobe_level": strobe_level,
        }
        await endpoint.command(IAS_WD, "start_warning", payload)
        return None

    return make_bundle(exposes=[descriptor], encoders=[Encoder(("warning",), convert_set=convert_set)])
