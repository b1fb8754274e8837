"""
General cluster extensions: identify, on/off and device level quirks.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Union

import exposes as e
from error_handler import ConfigurationError, EncodeRejected, ProtocolFault
from extensions.base import (
    READ, REPORT_TYPES, Bundle, Decoder, Encoder, ExtendArgs, NoArgs, make_bundle,
    parse_args, register_extension,
)
from modules.clusters import CLUSTER_IDS, ClusterKey, cluster_label, resolve_cluster_id
from modules.reporting import ReportingConfig, convert_reporting_config_time, setup_attributes
from modules.utils import get_from_lookup, get_from_lookup_by_value, property_for_endpoint

logger = logging.getLogger("extensions.general")

ON_OFF = CLUSTER_IDS["on_off"]
IDENTIFY = CLUSTER_IDS["identify"]
TIME = CLUSTER_IDS["time"]

POWER_ON_BEHAVIOR_LOOKUP = {"off": 0, "on": 1, "toggle": 2, "previous": 255}
SEQUENCE_KEY = "last_transaction_sequence_number"

# Seconds between the Unix epoch and 2000-01-01T00:00:00Z
EPOCH_2000 = 946684800


# ============================================================
# IDENTIFY
# ============================================================

@register_extension("identify")
def identify(**kwargs) -> Bundle:
    parse_args(NoArgs, kwargs)

    async def convert_set(endpoint, key, value, meta):
        identify_time = meta.get("options", {}).get("identify_timeout", 3)
        await endpoint.command(IDENTIFY, "identify", {"identify_time": identify_time})
        return None

    return make_bundle(exposes=[e.identify()], encoders=[Encoder(("identify",), convert_set=convert_set)])


# ============================================================
# ON/OFF
# ============================================================

class OnOffArgs(ExtendArgs):
    power_on_behavior: bool = True
    skip_duplicate_transaction: bool = False
    endpoint_names: Optional[List[str]] = None
    configure_reporting: bool = True


def on_off_decoder(endpoint_names=None, skip_duplicate_transaction: bool = False) -> Decoder:
    def convert(model, msg, publish, options, meta):
        if "on_off" not in msg.data:
            return None
        if skip_duplicate_transaction:
            tsn = msg.meta.get("zcl_transaction_sequence_number")
            store = meta["store"]
            if tsn is not None:
                if store.get_value(msg.endpoint, SEQUENCE_KEY) == tsn:
                    logger.debug(f"[{msg.endpoint.device_ieee}] Skipping duplicate transaction {tsn}")
                    return None
                store.put_value(msg.endpoint, SEQUENCE_KEY, tsn)
        prop = property_for_endpoint("state", msg, model, meta, endpoint_names)
        if prop is None:
            return None
        return {prop: "ON" if msg.data["on_off"] else "OFF"}

    return Decoder(ON_OFF, REPORT_TYPES, convert)


def power_on_behavior_converters(endpoint_names=None):
    """Decoder and encoder for the start_up_on_off attribute."""

    def convert(model, msg, publish, options, meta):
        if "start_up_on_off" not in msg.data:
            return None
        prop = property_for_endpoint("power_on_behavior", msg, model, meta, endpoint_names)
        if prop is None:
            return None
        return {prop: get_from_lookup_by_value(msg.data["start_up_on_off"], POWER_ON_BEHAVIOR_LOOKUP)}

    async def convert_set(endpoint, key, value, meta):
        await endpoint.write(ON_OFF, {"start_up_on_off": get_from_lookup(value, POWER_ON_BEHAVIOR_LOOKUP)})
        return {"state": {key: str(value).lower()}}

    async def convert_get(endpoint, key, meta):
        await endpoint.read(ON_OFF, ["start_up_on_off"])

    return (
        Decoder(ON_OFF, REPORT_TYPES, convert),
        Encoder(("power_on_behavior",), convert_set, convert_get),
    )


@register_extension("on_off")
def on_off(**kwargs) -> Bundle:
    args = parse_args(OnOffArgs, kwargs)
    endpoint_names = args.endpoint_names

    if endpoint_names:
        descriptors = [e.switch().with_endpoint(ep) for ep in endpoint_names]
    else:
        descriptors = [e.switch()]

    async def set_state(endpoint, key, value, meta):
        command = str(value).lower() if isinstance(value, str) else value
        if command not in ("on", "off", "toggle"):
            raise EncodeRejected(f"state: value {value!r} is not one of ON, OFF, TOGGLE")
        await endpoint.command(ON_OFF, command, {})
        if command == "toggle":
            current = meta.get("state", {}).get(meta.get("property", key))
            if current is None:
                return None
            return {"state": {key: "OFF" if current == "ON" else "ON"}}
        return {"state": {key: command.upper()}}

    async def get_state(endpoint, key, meta):
        await endpoint.read(ON_OFF, ["on_off"])

    decoders = [on_off_decoder(endpoint_names, args.skip_duplicate_transaction)]
    encoders = [Encoder(("state",), set_state, get_state)]

    if args.power_on_behavior:
        if endpoint_names:
            descriptors.extend(e.power_on_behavior(list(POWER_ON_BEHAVIOR_LOOKUP)).with_endpoint(ep) for ep in endpoint_names)
        else:
            descriptors.append(e.power_on_behavior(list(POWER_ON_BEHAVIOR_LOOKUP)))
        decoder, encoder = power_on_behavior_converters(endpoint_names)
        decoders.append(decoder)
        encoders.append(encoder)

    configure = []
    if args.configure_reporting:
        reporting = ReportingConfig(attribute="on_off", min="MIN", max="MAX", change=1)

        async def configure_on_off(device, coordinator_endpoint):
            await setup_attributes(device, coordinator_endpoint, ON_OFF, [reporting])
            if not args.power_on_behavior:
                return
            for endpoint in device.endpoints:
                if not endpoint.supports_input_cluster(ON_OFF):
                    continue
                try:
                    await endpoint.read(ON_OFF, ["start_up_on_off"])
                except ProtocolFault as err:
                    if not err.is_unsupported_attribute:
                        raise
                    logger.debug(
                        f"[{device.ieee}] EP{endpoint.id} Reading start_up_on_off failed, feature unsupported"
                    )

        configure.append(configure_on_off)

    return make_bundle(exposes=descriptors, decoders=decoders, encoders=encoders, configure=configure)


# ============================================================
# DEVICE QUIRKS
# ============================================================

class ForcePowerSourceArgs(ExtendArgs):
    power_source: Literal["Mains (single phase)", "Battery"]


@register_extension("force_power_source")
def force_power_source(**kwargs) -> Bundle:
    args = parse_args(ForcePowerSourceArgs, kwargs)

    async def configure(device, coordinator_endpoint):
        device.power_source = args.power_source
        device.save()

    return make_bundle(configure=[configure])


class ForceDeviceTypeArgs(ExtendArgs):
    type: Literal["EndDevice", "Router"]


@register_extension("force_device_type")
def force_device_type(**kwargs) -> Bundle:
    args = parse_args(ForceDeviceTypeArgs, kwargs)

    async def configure(device, coordinator_endpoint):
        device.type = args.type
        device.save()

    return make_bundle(configure=[configure])


class QuirkCheckinIntervalArgs(ExtendArgs):
    timeout: Union[int, str]


@register_extension("quirk_checkin_interval")
def quirk_checkin_interval(**kwargs) -> Bundle:
    args = parse_args(QuirkCheckinIntervalArgs, kwargs)
    interval = convert_reporting_config_time(args.timeout)

    async def configure(device, coordinator_endpoint):
        device.checkin_interval = interval
        device.save()

    return make_bundle(configure=[configure])


class QuirkAddEndpointClusterArgs(ExtendArgs):
    endpoint_id: int
    input_clusters: List[ClusterKey] = []
    output_clusters: List[ClusterKey] = []


@register_extension("quirk_add_endpoint_cluster")
def quirk_add_endpoint_cluster(**kwargs) -> Bundle:
    args = parse_args(QuirkAddEndpointClusterArgs, kwargs)
    input_ids = [resolve_cluster_id(c) for c in args.input_clusters]
    output_ids = [resolve_cluster_id(c) for c in args.output_clusters]

    async def configure(device, coordinator_endpoint):
        endpoint = device.get_endpoint(args.endpoint_id)
        if endpoint is None:
            raise ConfigurationError(
                f"[{device.ieee}] Cannot add clusters to endpoint {args.endpoint_id}, endpoint does not exist"
            )
        for cluster in input_ids:
            if cluster not in endpoint.input_clusters:
                logger.debug(f"[{device.ieee}] Quirk: adding input cluster {cluster_label(cluster)} to EP{endpoint.id}")
                endpoint.input_clusters.add(cluster)
        for cluster in output_ids:
            if cluster not in endpoint.output_clusters:
                logger.debug(f"[{device.ieee}] Quirk: adding output cluster {cluster_label(cluster)} to EP{endpoint.id}")
                endpoint.output_clusters.add(cluster)
        device.save()

    return make_bundle(configure=[configure])


@register_extension("reconfigure_reportings_on_device_announce")
def reconfigure_reportings_on_device_announce(**kwargs) -> Bundle:
    parse_args(NoArgs, kwargs)

    async def on_event(event_type, data, device, options, state):
        if event_type != "device_announce":
            return
        for endpoint in device.endpoints:
            for configured in list(endpoint.configured_reportings):
                await endpoint.configure_reporting(configured.cluster, [configured.item])
                logger.info(
                    f"[{device.ieee}] EP{endpoint.id} Re-configured reporting of "
                    f"{cluster_label(configured.cluster)} after device announce"
                )

    return make_bundle(on_event=[on_event])


class CustomTimeResponseArgs(ExtendArgs):
    start: Literal["1970_UTC", "2000_LOCAL"]


@register_extension("custom_time_response")
def custom_time_response(**kwargs) -> Bundle:
    """
    Answer time cluster reads ourselves.

    1970_UTC: seconds since the Unix epoch, local_time shifted by the UTC offset
    2000_LOCAL: seconds since 2000-01-01 in the local time zone

    The device is flagged skip_time_response so the transport drops its own answer.
    """
    start = parse_args(CustomTimeResponseArgs, kwargs).start

    async def configure(device, coordinator_endpoint):
        device.skip_time_response = True
        device.save()

    async def on_event(event_type, data, device, options, state):
        device.skip_time_response = True
        if event_type != "message" or data.type != READ or data.cluster != TIME:
            return
        now = time.time()
        offset = datetime.now(timezone.utc).astimezone().utcoffset().total_seconds()
        if start == "1970_UTC":
            seconds = round(now)
            payload = {"time": seconds, "local_time": seconds + int(offset)}
        else:
            payload = {"time": round(now - EPOCH_2000) + int(offset)}
        await data.endpoint.read_response(TIME, data.meta.get("zcl_transaction_sequence_number"), payload)

    return make_bundle(configure=[configure], on_event=[on_event])


class DeviceEndpointsArgs(ExtendArgs):
    endpoints: Dict[str, int]
    multi_endpoint_skip: Optional[List[str]] = None


@register_extension("device_endpoints")
def device_endpoints(**kwargs) -> Bundle:
    args = parse_args(DeviceEndpointsArgs, kwargs)
    meta = {"multi_endpoint": True}
    if args.multi_endpoint_skip:
        meta["multi_endpoint_skip"] = tuple(args.multi_endpoint_skip)
    endpoints = dict(args.endpoints)
    return make_bundle(meta=meta, endpoint=lambda device: endpoints)


class IgnoreClusterReportArgs(ExtendArgs):
    cluster: ClusterKey


@register_extension("ignore_cluster_report")
def ignore_cluster_report(**kwargs) -> Bundle:
    cluster = resolve_cluster_id(parse_args(IgnoreClusterReportArgs, kwargs).cluster)

    def convert(model, msg, publish, options, meta):
        return None

    return make_bundle(decoders=[Decoder(cluster, REPORT_TYPES, convert)])
