"""
Capability Descriptors
======================
Fluent builders describing device capabilities to downstream consumers.

    numeric("temperature", access.STATE_GET).with_unit("°C").with_endpoint("l1")

Every descriptor has a kind, a name, an access bitmask and an optional
endpoint qualifier; the published property becomes `<name>_<endpoint>`.
"""
from typing import Any, Dict, List, Optional, Sequence


class access:
    """Access bitmask: published in state, settable, readable on demand."""
    STATE = 0b001
    SET = 0b010
    GET = 0b100
    STATE_SET = STATE | SET
    STATE_GET = STATE | GET
    ALL = STATE | SET | GET


class Base:
    type: str = ""

    def __init__(self, name: str, access_mode: int = access.STATE):
        self.name = name
        self.label = name.replace("_", " ").capitalize()
        self.property = name
        self.access = access_mode
        self.endpoint: Optional[str] = None
        self.description: Optional[str] = None
        self.category: Optional[str] = None

    def with_endpoint(self, endpoint: str):
        self.endpoint = endpoint
        self.property = f"{self.name}_{endpoint}"
        return self

    def with_access(self, access_mode: int):
        self.access = access_mode
        return self

    def with_description(self, description: str):
        self.description = description
        return self

    def with_label(self, label: str):
        self.label = label
        return self

    def with_property(self, prop: str):
        self.property = prop
        return self

    def with_category(self, category: str):
        if category not in ("config", "diagnostic"):
            raise ValueError(f"Unknown entity category '{category}'")
        self.category = category
        return self

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "type": self.type,
            "name": self.name,
            "label": self.label,
            "property": self.property,
            "access": self.access,
        }
        for key in ("endpoint", "description", "category"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.property} access={self.access}>"


class Numeric(Base):
    type = "numeric"

    def __init__(self, name: str, access_mode: int = access.STATE):
        super().__init__(name, access_mode)
        self.unit: Optional[str] = None
        self.value_min: Optional[float] = None
        self.value_max: Optional[float] = None
        self.value_step: Optional[float] = None
        self.presets: List[Dict[str, Any]] = []

    def with_unit(self, unit: str):
        self.unit = unit
        return self

    def with_value_min(self, value: float):
        self.value_min = value
        return self

    def with_value_max(self, value: float):
        self.value_max = value
        return self

    def with_value_step(self, value: float):
        self.value_step = value
        return self

    def with_preset(self, name: str, value: Any, description: str):
        self.presets.append({"name": name, "value": value, "description": description})
        return self

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        for key in ("unit", "value_min", "value_max", "value_step"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.presets:
            result["presets"] = list(self.presets)
        return result


class Binary(Base):
    type = "binary"

    def __init__(self, name: str, access_mode: int, value_on: Any, value_off: Any):
        super().__init__(name, access_mode)
        self.value_on = value_on
        self.value_off = value_off
        self.value_toggle: Optional[Any] = None

    def with_value_toggle(self, value: Any):
        self.value_toggle = value
        return self

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["value_on"] = self.value_on
        result["value_off"] = self.value_off
        if self.value_toggle is not None:
            result["value_toggle"] = self.value_toggle
        return result


class Enum(Base):
    type = "enum"

    def __init__(self, name: str, access_mode: int, values: Sequence[Any]):
        super().__init__(name, access_mode)
        self.values = list(values)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["values"] = list(self.values)
        return result


class Text(Base):
    type = "text"


class Composite(Base):
    type = "composite"

    def __init__(self, name: str, prop: str, access_mode: int):
        super().__init__(name, access_mode)
        self.property = prop
        self.features: List[Base] = []

    def with_feature(self, feature: Base):
        self.features.append(feature)
        return self

    def with_endpoint(self, endpoint: str):
        self.endpoint = endpoint
        self.property = f"{self.property}_{endpoint}"
        return self

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["features"] = [f.to_dict() for f in self.features]
        return result


class _Preset(Base):
    """Composite preset (light, switch, lock): a bag of features sharing an endpoint."""

    def __init__(self):
        super().__init__(self.type, access.STATE)
        self.features: List[Base] = []

    def with_endpoint(self, endpoint: str):
        self.endpoint = endpoint
        for feature in self.features:
            feature.with_endpoint(endpoint)
        return self

    def _add(self, feature: Base):
        if self.endpoint is not None:
            feature.with_endpoint(self.endpoint)
        self.features.append(feature)
        return self

    def to_dict(self) -> Dict[str, Any]:
        result = {"type": self.type, "features": [f.to_dict() for f in self.features]}
        if self.endpoint is not None:
            result["endpoint"] = self.endpoint
        return result


class Switch(_Preset):
    type = "switch"

    def with_state(self, prop: str = "state", on: str = "ON", off: str = "OFF",
                   toggle: Optional[str] = "TOGGLE", access_mode: int = access.ALL,
                   description: str = "On/off state of the switch"):
        state = Binary("state", access_mode, on, off).with_property(prop).with_description(description)
        if toggle:
            state.with_value_toggle(toggle)
        return self._add(state)


class Light(_Preset):
    type = "light"

    def __init__(self):
        super().__init__()
        self._add(
            Binary("state", access.ALL, "ON", "OFF")
            .with_value_toggle("TOGGLE")
            .with_description("On/off state of this light")
        )

    def with_brightness(self):
        return self._add(
            Numeric("brightness", access.ALL)
            .with_value_min(0).with_value_max(254)
            .with_description("Brightness of this light")
        )

    def with_color_temp(self, color_temp_range: Sequence[int]):
        low, high = color_temp_range
        feature = (
            Numeric("color_temp", access.ALL).with_unit("mired")
            .with_value_min(low).with_value_max(high)
            .with_description("Color temperature of this light")
        )
        for name, mired in (("coolest", low), ("cool", 250), ("neutral", 370), ("warm", 454), ("warmest", high)):
            if low <= mired <= high:
                feature.with_preset(name, mired, f"{name.capitalize()} temperature")
        return self._add(feature)

    def with_color_temp_startup(self, color_temp_range: Sequence[int]):
        low, high = color_temp_range
        return self._add(
            Numeric("color_temp_startup", access.ALL).with_unit("mired")
            .with_value_min(low).with_value_max(high)
            .with_preset("previous", 65535, "Restore previous color_temp on cold power on")
            .with_description("Color temperature after cold power on of this light")
        )

    def with_color(self, modes: Sequence[str]):
        for mode in modes:
            if mode == "xy":
                self._add(
                    Composite("color_xy", "color", access.ALL)
                    .with_feature(Numeric("x", access.ALL))
                    .with_feature(Numeric("y", access.ALL))
                    .with_description("Color of this light in the CIE 1931 color space (x/y)")
                )
            elif mode == "hs":
                self._add(
                    Composite("color_hs", "color", access.ALL)
                    .with_feature(Numeric("hue", access.ALL))
                    .with_feature(Numeric("saturation", access.ALL))
                    .with_description("Color of this light expressed as hue/saturation")
                )
            else:
                raise ValueError(f"Unsupported color mode '{mode}'")
        return self

    def with_level_config(self):
        return self._add(
            Composite("level_config", "level_config", access.ALL)
            .with_feature(
                Binary("on_off_transition_time", access.ALL, True, False)
                .with_description("Apply transition time to on/off commands")
            )
            .with_feature(
                Numeric("on_level", access.ALL).with_value_min(1).with_value_max(254)
                .with_preset("previous", 255, "Use previous value")
                .with_description("Level used when the light is turned on")
            )
            .with_feature(
                Numeric("current_level_startup", access.ALL).with_value_min(1).with_value_max(254)
                .with_preset("minimum", 0, "Use minimum permitted value")
                .with_preset("previous", 255, "Use previous value")
                .with_description("Level used after a cold power on")
            )
            .with_description("Configure genLevelCtrl")
            .with_category("config")
        )


class Lock(_Preset):
    type = "lock"

    def with_state(self, prop: str, lock: str, unlock: str, description: str,
                   access_mode: int = access.ALL):
        return self._add(
            Binary("state", access_mode, lock, unlock).with_property(prop).with_description(description)
        )

    def with_lock_state(self, prop: str, description: str):
        return self._add(
            Enum("lock_state", access.STATE, ["not_fully_locked", "locked", "unlocked"])
            .with_property(prop).with_description(description)
        )


# Factory shorthands
def numeric(name: str, access_mode: int) -> Numeric:
    return Numeric(name, access_mode)


def binary(name: str, access_mode: int, value_on: Any, value_off: Any) -> Binary:
    return Binary(name, access_mode, value_on, value_off)


def enum(name: str, access_mode: int, values: Sequence[Any]) -> Enum:
    return Enum(name, access_mode, values)


def text(name: str, access_mode: int) -> Text:
    return Text(name, access_mode)


def composite(name: str, prop: str, access_mode: int) -> Composite:
    return Composite(name, prop, access_mode)


# Presets
def switch() -> Switch:
    return Switch().with_state()


def light() -> Light:
    return Light()


def lock() -> Lock:
    return Lock()


def power_on_behavior(values: Sequence[str] = ("off", "on", "toggle", "previous")) -> Enum:
    return enum("power_on_behavior", access.ALL, values).with_label("Power-on behavior").with_description(
        "Controls the behavior when the device is powered on after power loss"
    ).with_category("config")


def effect() -> Enum:
    return enum("effect", access.SET, ["blink", "breathe", "okay", "channel_change", "finish_effect", "stop_effect"]) \
        .with_description("Triggers an effect on the light (e.g. make light blink for a few seconds)")


def identify() -> Enum:
    return enum("identify", access.SET, ["identify"]).with_description(
        "Initiate device identification"
    ).with_category("config")


def battery() -> Numeric:
    return numeric("battery", access.STATE_GET).with_unit("%").with_value_min(0).with_value_max(100) \
        .with_description("Remaining battery in %").with_category("diagnostic")


def battery_voltage() -> Numeric:
    return numeric("voltage", access.STATE_GET).with_unit("mV") \
        .with_description("Reported battery voltage in millivolts").with_category("diagnostic")


def battery_low() -> Binary:
    return binary("battery_low", access.STATE, True, False) \
        .with_description("Empty battery indicator").with_category("diagnostic")


def power() -> Numeric:
    return numeric("power", access.STATE_GET).with_unit("W").with_description("Instantaneous measured power")


def voltage() -> Numeric:
    return numeric("voltage", access.STATE_GET).with_unit("V").with_description("Measured electrical potential value")


def current() -> Numeric:
    return numeric("current", access.STATE_GET).with_unit("A").with_description("Instantaneous measured electrical current")


def energy() -> Numeric:
    return numeric("energy", access.STATE_GET).with_unit("kWh").with_description("Sum of consumed energy")


def pincode() -> Composite:
    return (
        composite("pin_code", "pin_code", access.ALL)
        .with_feature(numeric("user", access.SET).with_description("User ID to set or clear the pincode for"))
        .with_feature(enum("user_type", access.SET, ["unrestricted", "year_day_schedule", "week_day_schedule",
                                                     "master", "non_access"]).with_description("Type of user"))
        .with_feature(binary("user_enabled", access.SET, True, False).with_description("Whether the user is enabled"))
        .with_feature(numeric("pin_code", access.SET).with_description("Pincode to set, set pincode to null to clear"))
        .with_description("Set or clear the pin code of a user")
    )


def lock_action() -> Enum:
    return enum("action", access.STATE, ["unknown", "lock", "unlock", "lock_failure_invalid_pin_or_id",
                                         "lock_failure_invalid_schedule", "unlock_failure_invalid_pin_or_id",
                                         "unlock_failure_invalid_schedule", "one_touch_lock", "key_lock",
                                         "key_unlock", "auto_lock", "schedule_lock", "schedule_unlock",
                                         "manual_lock", "manual_unlock", "non_access_user_operational_event",
                                         "master_code_changed", "pin_code_added", "pin_code_deleted",
                                         "pin_code_changed", "rfid_code_added", "rfid_code_deleted"]) \
        .with_description("Triggered action on the lock")


def lock_action_source_name() -> Enum:
    return enum("action_source_name", access.STATE, ["keypad", "rfid", "manual", "rf"]) \
        .with_description("Source of the triggered action on the lock")


def lock_action_user() -> Numeric:
    return numeric("action_user", access.STATE).with_description("ID of user that triggered the action on the lock")
