"""
Light extension: on/off, brightness, color temperature, color, effects and
level configuration on top of the OnOff, LevelControl and Color clusters.
"""
import logging
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, Union

import exposes as e
from error_handler import EncodeRejected, ProtocolFault
from extensions.base import (
    REPORT_TYPES, Bundle, Decoder, Encoder, ExtendArgs, make_bundle,
    parse_args, register_extension,
)
from extensions.general import (
    ON_OFF, POWER_ON_BEHAVIOR_LOOKUP, on_off_decoder, power_on_behavior_converters,
)
from modules.clusters import CLUSTER_IDS
from modules.reporting import ReportingConfig, setup_attributes
from modules.scaling import is_number, precision_round
from modules.utils import get_from_lookup, property_for_endpoint

logger = logging.getLogger("extensions.lighting")

LEVEL = CLUSTER_IDS["level"]
COLOR = CLUSTER_IDS["light_color"]
IDENTIFY = CLUSTER_IDS["identify"]

COLOR_MODES = {0: "hs", 1: "xy", 2: "color_temp"}
# Enhanced color mode 3 is enhanced hue
ENHANCED_COLOR_MODES = {0: "hs", 1: "xy", 2: "color_temp", 3: "hs"}

EFFECT_LOOKUP = {
    "blink": 0, "breathe": 1, "okay": 2, "channel_change": 11,
    "finish_effect": 254, "stop_effect": 255,
}

# Level config sentinels
LEVEL_PREVIOUS = 255
LEVEL_MINIMUM = 0
COLOR_TEMP_PREVIOUS = 65535


class ColorTempArgs(ExtendArgs):
    range: Tuple[int, int]
    startup: bool = True


class ColorArgs(ExtendArgs):
    modes: List[Literal["xy", "hs"]] = ["xy"]
    apply_red_fix: bool = False
    enhanced_hue: bool = True


class LevelConfigArgs(ExtendArgs):
    disabled_features: List[str] = []


class LightArgs(ExtendArgs):
    effect: bool = True
    power_on_behavior: bool = True
    configure_reporting: bool = False
    color_temp: Optional[ColorTempArgs] = None
    color: Union[bool, ColorArgs] = False
    level_config: Optional[LevelConfigArgs] = None
    turns_off_at_brightness_1: Optional[bool] = None
    endpoint_names: Optional[List[str]] = None
    warmup: Optional[Callable] = None


async def read_color_capabilities(device, coordinator_endpoint):
    """
    Default warm-up before configuring a light.

    Reads color capabilities and physical color temperature bounds first;
    some bulbs only report color correctly once these were read.
    """
    for endpoint in device.endpoints:
        if not endpoint.supports_input_cluster(COLOR):
            continue
        try:
            result = await endpoint.read(
                COLOR, ["color_capabilities", "color_temp_physical_min", "color_temp_physical_max"]
            )
            logger.info(f"[{device.ieee}] EP{endpoint.id} Color capabilities: {result}")
        except ProtocolFault as err:
            logger.warning(f"[{device.ieee}] EP{endpoint.id} ⚠️ Failed to read color attributes: {err}")


def _transition(meta) -> int:
    """Transition from the set payload or options, in tenths of a second."""
    message = meta.get("message", {})
    transition = message.get("transition", meta.get("options", {}).get("transition", 0))
    if not is_number(transition):
        raise EncodeRejected(f"transition: expected a number, got {transition!r}")
    return round(transition * 10)


def _level_config_decoder(endpoint_names) -> Decoder:
    def convert(model, msg, publish, options, meta):
        config = {}
        if "on_off_transition_time" in msg.data:
            config["on_off_transition_time"] = msg.data["on_off_transition_time"]
        if "on_level" in msg.data:
            value = msg.data["on_level"]
            config["on_level"] = "previous" if value == LEVEL_PREVIOUS else value
        if "start_up_current_level" in msg.data:
            value = msg.data["start_up_current_level"]
            if value == LEVEL_PREVIOUS:
                value = "previous"
            elif value == LEVEL_MINIMUM:
                value = "minimum"
            config["current_level_startup"] = value
        if not config:
            return None
        prop = property_for_endpoint("level_config", msg, model, meta, endpoint_names)
        if prop is None:
            return None
        current = dict(meta.get("state", {}).get(prop) or {})
        current.update(config)
        return {prop: current}

    return Decoder(LEVEL, REPORT_TYPES, convert)


def _level_config_encoder(disabled_features) -> Encoder:
    async def convert_set(endpoint, key, value, meta):
        if not isinstance(value, dict):
            raise EncodeRejected(f"level_config: expected an object, got {value!r}")
        payload = {}
        for feature, setting in value.items():
            if feature in disabled_features:
                raise EncodeRejected(f"level_config: feature '{feature}' is disabled")
            if feature == "on_off_transition_time":
                payload["on_off_transition_time"] = setting
            elif feature == "on_level":
                payload["on_level"] = LEVEL_PREVIOUS if setting == "previous" else setting
            elif feature == "current_level_startup":
                payload["start_up_current_level"] = get_from_lookup(
                    setting, {"previous": LEVEL_PREVIOUS, "minimum": LEVEL_MINIMUM}
                ) if isinstance(setting, str) else setting
            else:
                raise EncodeRejected(f"level_config: unknown feature '{feature}'")
        await endpoint.write(LEVEL, payload)
        return {"state": {key: dict(value)}}

    async def convert_get(endpoint, key, meta):
        await endpoint.read(LEVEL, ["on_off_transition_time", "on_level", "start_up_current_level"])

    return Encoder(("level_config",), convert_set, convert_get)


def _color_decoder(endpoint_names, enhanced_hue: bool) -> Decoder:
    def convert(model, msg, publish, options, meta):
        data = msg.data
        result = {}
        color = {}
        if "color_temperature" in data:
            result["color_temp"] = data["color_temperature"]
        if "start_up_color_temperature" in data:
            value = data["start_up_color_temperature"]
            result["color_temp_startup"] = "previous" if value == COLOR_TEMP_PREVIOUS else value
        if "color_mode" in data:
            result["color_mode"] = COLOR_MODES.get(data["color_mode"], data["color_mode"])
        if "enhanced_color_mode" in data:
            result["color_mode"] = ENHANCED_COLOR_MODES.get(data["enhanced_color_mode"], data["enhanced_color_mode"])
        if "current_x" in data:
            color["x"] = precision_round(data["current_x"] / 65535, 4)
        if "current_y" in data:
            color["y"] = precision_round(data["current_y"] / 65535, 4)
        if "enhanced_current_hue" in data and enhanced_hue:
            color["hue"] = precision_round(data["enhanced_current_hue"] * 360 / 65535, 0)
        elif "current_hue" in data:
            color["hue"] = precision_round(data["current_hue"] * 360 / 254, 0)
        if "current_saturation" in data:
            color["saturation"] = precision_round(data["current_saturation"] * 100 / 254, 0)
        if color:
            result["color"] = color
        if not result:
            return None

        published = {}
        for name, value in result.items():
            prop = property_for_endpoint(name, msg, model, meta, endpoint_names)
            if prop is None:
                return None
            if name == "color":
                merged = dict(meta.get("state", {}).get(prop) or {})
                merged.update(value)
                value = merged
            published[prop] = value
        return published

    return Decoder(COLOR, REPORT_TYPES, convert)


@register_extension("light")
def light(**kwargs) -> Bundle:
    args = parse_args(LightArgs, kwargs)
    color = args.color
    if color is True:
        color = ColorArgs()
    endpoint_names = args.endpoint_names
    color_temp_range = args.color_temp.range if args.color_temp else None

    if endpoint_names:
        lights = [e.light().with_brightness().with_endpoint(ep) for ep in endpoint_names]
    else:
        lights = [e.light().with_brightness()]
    meta: Dict[str, Any] = {}

    decoders = [on_off_decoder(endpoint_names)]

    def convert_brightness(model, msg, publish, options, meta):
        if "current_level" not in msg.data:
            return None
        prop = property_for_endpoint("brightness", msg, model, meta, endpoint_names)
        if prop is None:
            return None
        return {prop: msg.data["current_level"]}

    decoders.append(Decoder(LEVEL, REPORT_TYPES, convert_brightness))

    async def set_on_off_brightness(endpoint, key, value, meta):
        message = meta.get("message", {key: value})
        state = message.get("state")
        state = state.lower() if isinstance(state, str) else state
        brightness = message.get("brightness")
        transition = _transition(meta)
        if state is not None and state not in ("on", "off", "toggle"):
            raise EncodeRejected(f"state: value {state!r} is not one of ON, OFF, TOGGLE")

        if state == "toggle":
            await endpoint.command(ON_OFF, "toggle", {})
            endpoint_name = meta.get("endpoint_name")
            current = meta.get("state", {}).get(f"state_{endpoint_name}" if endpoint_name else "state")
            if current is None:
                return None
            return {"state": {"state": "OFF" if current == "ON" else "ON"}}

        if state == "off":
            if transition:
                await endpoint.command(LEVEL, "move_to_level_with_on_off", {"level": 0, "transition_time": transition})
            else:
                await endpoint.command(ON_OFF, "off", {})
            return {"state": {"state": "OFF"}}

        if brightness is not None:
            if not is_number(brightness) or not 0 <= brightness <= 254:
                raise EncodeRejected(f"brightness: value {brightness!r} is outside 0..254")
            level = round(brightness)
            mapped = meta.get("mapped")
            if level == 1 and mapped is not None and mapped.meta.get("turns_off_at_brightness_1"):
                level = 2
            await endpoint.command(LEVEL, "move_to_level_with_on_off", {"level": level, "transition_time": transition})
            return {"state": {"state": "ON" if level > 0 else "OFF", "brightness": level}}

        await endpoint.command(ON_OFF, "on", {})
        return {"state": {"state": "ON"}}

    async def get_on_off_brightness(endpoint, key, meta):
        if key == "brightness":
            await endpoint.read(LEVEL, ["current_level"])
        else:
            await endpoint.read(ON_OFF, ["on_off"])

    async def ignore_transition(endpoint, key, value, meta):
        return None

    encoders = [
        Encoder(("state", "brightness"), set_on_off_brightness, get_on_off_brightness),
        Encoder(("transition",), convert_set=ignore_transition),
    ]

    if args.color_temp or color:
        decoders.append(_color_decoder(endpoint_names, color.enhanced_hue if color else True))

    if args.color_temp:
        low, high = color_temp_range
        for item in lights:
            item.with_color_temp(color_temp_range)

        async def set_color_temp(endpoint, key, value, meta):
            if not is_number(value):
                raise EncodeRejected(f"color_temp: expected a number, got {value!r}")
            mireds = max(low, min(high, round(value)))
            await endpoint.command(COLOR, "move_to_color_temp",
                                   {"color_temp_mireds": mireds, "transition_time": _transition(meta)})
            return {"state": {"color_temp": mireds, "color_mode": "color_temp"}}

        async def get_color_temp(endpoint, key, meta):
            await endpoint.read(COLOR, ["color_mode", "color_temperature"])

        encoders.append(Encoder(("color_temp",), set_color_temp, get_color_temp))

        if args.color_temp.startup:
            for item in lights:
                item.with_color_temp_startup(color_temp_range)

            async def set_color_temp_startup(endpoint, key, value, meta):
                if value == "previous":
                    payload = COLOR_TEMP_PREVIOUS
                elif is_number(value):
                    payload = max(low, min(high, round(value)))
                else:
                    raise EncodeRejected(f"color_temp_startup: value {value!r} is not a number or 'previous'")
                await endpoint.write(COLOR, {"start_up_color_temperature": payload})
                return {"state": {key: value}}

            async def get_color_temp_startup(endpoint, key, meta):
                await endpoint.read(COLOR, ["start_up_color_temperature"])

            encoders.append(Encoder(("color_temp_startup",), set_color_temp_startup, get_color_temp_startup))

    if color:
        for item in lights:
            item.with_color(color.modes)
        if "hs" in color.modes:
            meta["supports_hue_and_saturation"] = True
        if color.apply_red_fix:
            meta["apply_red_fix"] = True
        if not color.enhanced_hue:
            meta["supports_enhanced_hue"] = False

        async def set_color(endpoint, key, value, meta):
            if not isinstance(value, dict):
                raise EncodeRejected(f"color: expected an object, got {value!r}")
            transition = _transition(meta)
            if "x" in value and "y" in value:
                if "xy" not in color.modes:
                    raise EncodeRejected("color: xy is not supported by this light")
                x, y = value["x"], value["y"]
                if not (is_number(x) and is_number(y)):
                    raise EncodeRejected(f"color: invalid xy value {value!r}")
                await endpoint.command(COLOR, "move_to_color", {
                    "color_x": round(x * 65535), "color_y": round(y * 65535), "transition_time": transition,
                })
                return {"state": {"color": {"x": x, "y": y}, "color_mode": "xy"}}

            if "hue" in value and "saturation" in value:
                if "hs" not in color.modes:
                    raise EncodeRejected("color: hue/saturation is not supported by this light")
                hue, saturation = value["hue"], value["saturation"]
                if not (is_number(hue) and is_number(saturation)):
                    raise EncodeRejected(f"color: invalid hue/saturation value {value!r}")
                wire_saturation = round(max(0, min(100, saturation)) * 254 / 100)
                if color.enhanced_hue:
                    await endpoint.command(COLOR, "enhanced_move_to_hue_and_saturation", {
                        "enhanced_hue": round((hue % 360) * 65535 / 360),
                        "saturation": wire_saturation, "transition_time": transition,
                    })
                else:
                    await endpoint.command(COLOR, "move_to_hue_and_saturation", {
                        "hue": round((hue % 360) * 254 / 360),
                        "saturation": wire_saturation, "transition_time": transition,
                    })
                return {"state": {"color": {"hue": hue, "saturation": saturation}, "color_mode": "hs"}}

            raise EncodeRejected(f"color: value {value!r} has neither x/y nor hue/saturation")

        async def get_color(endpoint, key, meta):
            attributes = ["color_mode"]
            if "xy" in color.modes:
                attributes += ["current_x", "current_y"]
            if "hs" in color.modes:
                attributes += ["enhanced_current_hue" if color.enhanced_hue else "current_hue", "current_saturation"]
            await endpoint.read(COLOR, attributes)

        encoders.append(Encoder(("color",), set_color, get_color))

    if args.level_config:
        for item in lights:
            item.with_level_config()
        decoders.append(_level_config_decoder(endpoint_names))
        encoders.append(_level_config_encoder(set(args.level_config.disabled_features)))

    descriptors: List[Any] = list(lights)

    if args.effect:
        descriptors.append(e.effect())

        async def set_effect(endpoint, key, value, meta):
            effect_id = get_from_lookup(value, EFFECT_LOOKUP)
            await endpoint.command(IDENTIFY, "trigger_effect", {"effect_id": effect_id, "effect_variant": 0})
            return None

        encoders.append(Encoder(("effect",), convert_set=set_effect))

    if args.power_on_behavior:
        if endpoint_names:
            descriptors.extend(e.power_on_behavior(list(POWER_ON_BEHAVIOR_LOOKUP)).with_endpoint(ep) for ep in endpoint_names)
        else:
            descriptors.append(e.power_on_behavior(list(POWER_ON_BEHAVIOR_LOOKUP)))
        decoder, encoder = power_on_behavior_converters(endpoint_names)
        decoders.append(decoder)
        encoders.append(encoder)

    if args.turns_off_at_brightness_1 is not None:
        meta["turns_off_at_brightness_1"] = args.turns_off_at_brightness_1

    warmup = args.warmup or read_color_capabilities
    reporting_10s = dict(min="10_SECONDS", max="MAX", change=1)

    async def configure(device, coordinator_endpoint):
        await warmup(device, coordinator_endpoint)
        if not args.configure_reporting:
            return
        await setup_attributes(device, coordinator_endpoint, ON_OFF,
                               [ReportingConfig(attribute="on_off", min="MIN", max="MAX", change=1)])
        await setup_attributes(device, coordinator_endpoint, LEVEL,
                               [ReportingConfig(attribute="current_level", **reporting_10s)])
        attributes = []
        if args.color_temp:
            attributes.append(ReportingConfig(attribute="color_temperature", **reporting_10s))
        if color:
            if "xy" in color.modes:
                attributes += [ReportingConfig(attribute="current_x", **reporting_10s),
                               ReportingConfig(attribute="current_y", **reporting_10s)]
            if "hs" in color.modes:
                hue = "enhanced_current_hue" if color.enhanced_hue else "current_hue"
                attributes += [ReportingConfig(attribute=hue, **reporting_10s),
                               ReportingConfig(attribute="current_saturation", **reporting_10s)]
        if attributes:
            attributes.append(ReportingConfig(attribute="color_mode", **reporting_10s))
            await setup_attributes(device, coordinator_endpoint, COLOR, attributes)

    return make_bundle(exposes=descriptors, decoders=decoders, encoders=encoders, configure=[configure], meta=meta)
