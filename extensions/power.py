"""
Power related extensions: electricity meter and battery.
"""
import logging
from typing import Any, Dict, List, Literal, NamedTuple, Optional, Union

import exposes as e
from error_handler import ConfigurationError
from exposes import access as ea
from extensions.base import (
    REPORT_TYPES, Bundle, Decoder, Encoder, ExtendArgs, make_bundle,
    parse_args, register_extension,
)
from modules.clusters import CLUSTER_IDS
from modules.reporting import ReportingConfig, Uint48Change, get_endpoints_with_input_cluster, setup_attributes
from modules.scaling import is_number, precision_round
from modules.utils import assert_number, battery_voltage_to_percentage, postfix_with_endpoint_name

logger = logging.getLogger("extensions.power")

ELECTRICAL = CLUSTER_IDS["electrical_measurement"]
METERING = CLUSTER_IDS["smartenergy_metering"]
POWER_CONFIGURATION = CLUSTER_IDS["power"]

DEFAULT_PRECISION = 2


class MultiplierDivisor(ExtendArgs):
    multiplier: Optional[int] = None
    divisor: Optional[int] = None

    def resolved(self):
        return (self.multiplier or 1, self.divisor or 1)


Quantity = Union[Literal[False], MultiplierDivisor, None]


class ElectricityMeterArgs(ExtendArgs):
    cluster: Literal["both", "metering", "electrical"] = "both"
    current: Quantity = None
    power: Quantity = None
    voltage: Quantity = None
    energy: Quantity = None


class MeterProperty(NamedTuple):
    """One measured quantity: attribute, its scaling attributes and nominal change."""
    name: str
    attribute: str
    divisor: str
    multiplier: str
    forced: Optional[MultiplierDivisor]
    change: float


def _meter_properties(args: ElectricityMeterArgs) -> Dict[int, List[MeterProperty]]:
    def forced(value):
        return value if isinstance(value, MultiplierDivisor) else None

    electrical = []
    if args.power is not False:
        # Report change with every 5W change
        electrical.append(MeterProperty("power", "active_power", "ac_power_divisor", "ac_power_multiplier",
                                        forced(args.power), 5))
    if args.current is not False:
        # Report change with every 0.05A change
        electrical.append(MeterProperty("current", "rms_current", "ac_current_divisor", "ac_current_multiplier",
                                        forced(args.current), 0.05))
    if args.voltage is not False:
        # Report change with every 5V change
        electrical.append(MeterProperty("voltage", "rms_voltage", "ac_voltage_divisor", "ac_voltage_multiplier",
                                        forced(args.voltage), 5))

    metering = []
    if args.power is not False and args.cluster == "metering":
        metering.append(MeterProperty("power", "instantaneous_demand", "divisor", "multiplier",
                                      forced(args.power), 5))
    if args.energy is not False and args.cluster != "electrical":
        # Report change with every 0.1kWh change
        metering.append(MeterProperty("energy", "current_summ_delivered", "divisor", "multiplier",
                                      forced(args.energy), 0.1))

    lookup = {}
    if args.cluster in ("both", "electrical"):
        lookup[ELECTRICAL] = electrical
    if args.cluster in ("both", "metering"):
        lookup[METERING] = metering
    return lookup


def _factor(endpoint, cluster: int, prop: MeterProperty) -> float:
    """multiplier / divisor from the endpoint cache, 1 when unknown."""
    multiplier = endpoint.get_cluster_attribute_value(cluster, prop.multiplier, 1)
    divisor = endpoint.get_cluster_attribute_value(cluster, prop.divisor, 1)
    if not (is_number(multiplier) and is_number(divisor)) or divisor == 0:
        logger.debug(f"[{endpoint.device_ieee}] EP{endpoint.id} No usable {prop.multiplier}/{prop.divisor}, using 1")
        return 1
    return multiplier / divisor


@register_extension("electricity_meter")
def electricity_meter(**kwargs) -> Bundle:
    args = parse_args(ElectricityMeterArgs, kwargs)
    if (args.cluster == "metering" and isinstance(args.power, MultiplierDivisor)
            and isinstance(args.energy, MultiplierDivisor)
            and args.power.resolved() != args.energy.resolved()):
        raise ConfigurationError("When cluster is metering, power and energy divisor/multiplier should be equal")

    lookup = _meter_properties(args)
    descriptors = []
    decoders = []
    encoders = []
    factories = {"power": e.power, "voltage": e.voltage, "current": e.current, "energy": e.energy}

    for cluster, properties in lookup.items():
        for prop in properties:
            descriptors.append(factories[prop.name]().with_access(ea.STATE_GET))

        def convert(model, msg, publish, options, meta, cluster=cluster, properties=properties):
            payload = {}
            for prop in properties:
                if prop.attribute not in msg.data:
                    continue
                raw = msg.data[prop.attribute]
                assert_number(raw, prop.attribute)
                value = raw * _factor(msg.endpoint, cluster, prop)
                if prop.attribute == "instantaneous_demand":
                    # kW -> W
                    value *= 1000
                payload[postfix_with_endpoint_name(prop.name, msg, model, meta)] = precision_round(
                    value, options.get(f"{prop.name}_precision", DEFAULT_PRECISION)
                )
            return payload or None

        decoders.append(Decoder(cluster, REPORT_TYPES, convert))

        for prop in properties:
            async def convert_get(endpoint, key, meta, cluster=cluster, prop=prop):
                await endpoint.read(cluster, [prop.attribute])

            encoders.append(Encoder((prop.name,), convert_get=convert_get))

    async def configure(device, coordinator_endpoint):
        for cluster, properties in lookup.items():
            if not properties:
                continue
            for endpoint in get_endpoints_with_input_cluster(device, cluster):
                items = []
                for prop in properties:
                    # A forced multiplier or divisor replaces the value read from the device
                    if prop.forced is not None:
                        multiplier, divisor = prop.forced.resolved()
                        endpoint.save_cluster_attribute_key_value(cluster, {
                            prop.divisor: divisor, prop.multiplier: multiplier,
                        })
                        endpoint.save()
                    else:
                        await endpoint.read(cluster, [prop.divisor, prop.multiplier])

                    divisor = endpoint.get_cluster_attribute_value(cluster, prop.divisor)
                    multiplier = endpoint.get_cluster_attribute_value(cluster, prop.multiplier)
                    if not is_number(divisor) or not is_number(multiplier) or multiplier == 0:
                        raise ConfigurationError(
                            f"[{device.ieee}] EP{endpoint.id} Invalid {prop.divisor}={divisor!r} "
                            f"or {prop.multiplier}={multiplier!r}"
                        )
                    change: Any = prop.change * (divisor / multiplier)
                    # current_summ_delivered is uint48, so is its reportable change
                    if prop.attribute == "current_summ_delivered":
                        change = Uint48Change(low=change)
                    items.append(ReportingConfig(attribute=prop.attribute, min="10_SECONDS", max="MAX", change=change))
                await setup_attributes(endpoint, coordinator_endpoint, cluster, items)

    return make_bundle(exposes=descriptors, decoders=decoders, encoders=encoders, configure=[configure])


# ============================================================
# BATTERY
# ============================================================

class VoltageRange(ExtendArgs):
    min: int
    max: int


class BatteryArgs(ExtendArgs):
    voltage_to_percentage: Optional[Union[str, VoltageRange]] = None
    dont_divide_percentage: bool = False
    percentage: bool = True
    voltage: bool = False
    low_status: bool = False
    percentage_reporting: bool = True
    percentage_reporting_config: Optional[ReportingConfig] = None
    voltage_reporting: bool = False
    voltage_reporting_config: Optional[ReportingConfig] = None


# Battery alarm state slots: battery source 1, 2 and 3
BATTERY_ALARM_MASKS = (0x0000000F, 0x00003C00, 0x00F00000)
NOT_REPORTED = 255


def battery_low(alarm_state: int) -> bool:
    return any(alarm_state & mask for mask in BATTERY_ALARM_MASKS)


@register_extension("battery")
def battery(**kwargs) -> Bundle:
    args = parse_args(BatteryArgs, kwargs)
    battery_meta: Dict[str, Any] = {}
    if args.voltage_to_percentage:
        option = args.voltage_to_percentage
        battery_meta["voltage_to_percentage"] = option if isinstance(option, str) else option.model_dump()
    if args.dont_divide_percentage:
        battery_meta["dont_divide_percentage"] = True

    descriptors = []
    if args.percentage:
        descriptors.append(e.battery().with_access(ea.STATE))
    if args.voltage:
        descriptors.append(e.battery_voltage().with_access(ea.STATE))
    if args.low_status:
        descriptors.append(e.battery_low())

    def convert(model, msg, publish, options, meta):
        data = msg.data
        model_battery = model.meta.get("battery", {}) if model is not None else battery_meta
        payload = {}

        percentage = data.get("battery_percentage_remaining")
        if percentage is not None:
            assert_number(percentage, "battery_percentage_remaining")
        if percentage is not None and percentage < NOT_REPORTED:
            # Per ZCL a full battery is 200; some devices report 100
            if not model_battery.get("dont_divide_percentage"):
                percentage = percentage / 2
            if args.percentage:
                payload["battery"] = precision_round(percentage, 2)

        voltage = data.get("battery_voltage")
        if voltage is not None:
            assert_number(voltage, "battery_voltage")
        if voltage is not None and voltage < NOT_REPORTED:
            millivolts = voltage * 100
            if args.voltage:
                payload["voltage"] = millivolts
            if model_battery.get("voltage_to_percentage"):
                payload["battery"] = battery_voltage_to_percentage(millivolts, model_battery["voltage_to_percentage"])

        if "battery_alarm_state" in data and args.low_status:
            payload["battery_low"] = battery_low(int(data["battery_alarm_state"]))

        return payload or None

    default_reporting = ReportingConfig(min="1_HOUR", max="MAX", change=10)

    async def configure(device, coordinator_endpoint):
        if args.percentage_reporting:
            config = args.percentage_reporting_config or default_reporting
            await setup_attributes(device, coordinator_endpoint, POWER_CONFIGURATION, [
                config.model_copy(update={"attribute": "battery_percentage_remaining"}),
            ])
        if args.voltage_reporting:
            config = args.voltage_reporting_config or default_reporting
            await setup_attributes(device, coordinator_endpoint, POWER_CONFIGURATION, [
                config.model_copy(update={"attribute": "battery_voltage"}),
            ])

    return make_bundle(
        exposes=descriptors,
        decoders=[Decoder(POWER_CONFIGURATION, REPORT_TYPES, convert)],
        configure=[configure],
        meta={"battery": battery_meta},
    )
