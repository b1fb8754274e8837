"""
Generic capability builders.

Each builder turns a declarative attribute description into a bundle:
descriptor, decoder, encoder and (when needed) a reporting configurator.
"""
import logging
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import field_validator

import exposes as e
from error_handler import EncodeRejected
from exposes import access as ea
from extensions.base import (
    REPORT_TYPES, Bundle, Decoder, Encoder, ExtendArgs, ZigbeeCommandOptions,
    command_options, make_bundle, parse_args, register_extension,
)
from modules.clusters import ClusterKey, attribute_type, is_integral, resolve_cluster_id
from modules.reporting import ReportingConfig, setup_configure_for_reporting
from modules.scaling import Scale, decode_value, encode_value
from modules.transport import AttributeRef
from modules.utils import (
    attribute_key, attribute_payload, get_endpoint_name, get_from_lookup,
    get_from_lookup_by_value,
)

logger = logging.getLogger("extensions.generic")

AccessName = Literal["STATE", "STATE_GET", "ALL"]
EntityCategory = Literal["config", "diagnostic"]

ACCESS = {"STATE": ea.STATE, "STATE_GET": ea.STATE_GET, "ALL": ea.ALL}


class AttributeArgs(ExtendArgs):
    cluster: ClusterKey
    attribute: Union[str, int, AttributeRef]
    description: str = ""
    zigbee_command_options: Optional[ZigbeeCommandOptions] = None
    access: AccessName = "ALL"
    reporting: Optional[ReportingConfig] = None
    entity_category: Optional[EntityCategory] = None


class EnumLookupArgs(AttributeArgs):
    name: str
    lookup: Dict[str, Any]
    endpoint_name: Optional[str] = None


class NumericArgs(AttributeArgs):
    name: str
    unit: Optional[str] = None
    endpoint_names: Optional[List[str]] = None
    value_min: Optional[float] = None
    value_max: Optional[float] = None
    value_step: Optional[float] = None
    scale: Optional[Scale] = None
    label: Optional[str] = None
    precision: Optional[int] = None


class BinaryArgs(AttributeArgs):
    name: str
    value_on: Tuple[Any, Any]
    value_off: Tuple[Any, Any]
    endpoint_name: Optional[str] = None


class ActionEnumLookupArgs(ExtendArgs):
    action_lookup: Dict[str, Any]
    cluster: ClusterKey
    attribute: Union[str, int, AttributeRef]
    endpoint_names: Optional[List[str]] = None
    button_lookup: Optional[Dict[str, int]] = None
    extra_actions: Optional[List[str]] = None
    commands: Optional[List[str]] = None

    @field_validator("action_lookup")
    @classmethod
    def _not_empty(cls, value):
        if not value:
            raise ValueError("action_lookup must not be empty")
        return value


def _attribute_encoder(name: str, args: AttributeArgs, access: int, to_wire) -> Encoder:
    """Encoder writing one attribute; set/get paths follow the access bitmask."""
    cluster = resolve_cluster_id(args.cluster)
    key = attribute_key(args.attribute)
    options = command_options(args.zigbee_command_options)

    async def convert_set(endpoint, key_name, value, meta):
        payload_value = to_wire(value)
        await endpoint.write(cluster, attribute_payload(args.attribute, payload_value), options)
        return {"state": {key_name: value}}

    async def convert_get(endpoint, key_name, meta):
        await endpoint.read(cluster, [key], options)

    return Encoder(
        keys=(name,),
        convert_set=convert_set if access & ea.SET else None,
        convert_get=convert_get if access & ea.GET else None,
    )


@register_extension("enum_lookup")
def enum_lookup(**kwargs) -> Bundle:
    args = parse_args(EnumLookupArgs, kwargs)
    cluster = resolve_cluster_id(args.cluster)
    key = attribute_key(args.attribute)
    access = ACCESS[args.access]

    expose = e.enum(args.name, access, list(args.lookup)).with_description(args.description)
    if args.endpoint_name:
        expose.with_endpoint(args.endpoint_name)
    if args.entity_category:
        expose.with_category(args.entity_category)

    def convert(model, msg, publish, options, meta):
        if key not in msg.data:
            return None
        if args.endpoint_name and get_endpoint_name(msg, model, meta) != args.endpoint_name:
            return None
        return {expose.property: get_from_lookup_by_value(msg.data[key], args.lookup)}

    return make_bundle(
        exposes=[expose],
        decoders=[Decoder(cluster, REPORT_TYPES, convert)],
        encoders=[_attribute_encoder(args.name, args, access, lambda value: get_from_lookup(value, args.lookup))],
        configure=[setup_configure_for_reporting(cluster, args.attribute, args.reporting, access,
                                                 options=command_options(args.zigbee_command_options))],
    )


@register_extension("numeric")
def numeric(**kwargs) -> Bundle:
    args = parse_args(NumericArgs, kwargs)
    cluster = resolve_cluster_id(args.cluster)
    key = attribute_key(args.attribute)
    access = ACCESS[args.access]
    endpoints = args.endpoint_names

    def create_expose(endpoint: Optional[str] = None):
        expose = e.numeric(args.name, access).with_description(args.description)
        if endpoint:
            expose.with_endpoint(endpoint)
        if args.unit:
            expose.with_unit(args.unit)
        if args.value_min is not None:
            expose.with_value_min(args.value_min)
        if args.value_max is not None:
            expose.with_value_max(args.value_max)
        if args.value_step is not None:
            expose.with_value_step(args.value_step)
        if args.label is not None:
            expose.with_label(args.label)
        if args.entity_category:
            expose.with_category(args.entity_category)
        return expose

    # A lone "1" endpoint is the same as no endpoint at all
    if not endpoints or endpoints == ["1"]:
        descriptors = [create_expose()]
    else:
        descriptors = [create_expose(ep) for ep in endpoints]

    def convert(model, msg, publish, options, meta):
        if key not in msg.data:
            return None
        endpoint = None
        if endpoints:
            endpoint = get_endpoint_name(msg, model, meta)
            if endpoint not in endpoints:
                return None

        value = decode_value(msg.data[key], args.scale, args.precision, name=args.name)
        if len(descriptors) == 1:
            expose = descriptors[0]
        else:
            expose = next(d for d in descriptors if d.endpoint == endpoint)
        return {expose.property: value}

    integral = is_integral(attribute_type(cluster, args.attribute))

    def to_wire(value):
        return encode_value(value, args.scale, args.precision, name=args.name, integral=integral)

    return make_bundle(
        exposes=descriptors,
        decoders=[Decoder(cluster, REPORT_TYPES, convert)],
        encoders=[_attribute_encoder(args.name, args, access, to_wire)],
        configure=[setup_configure_for_reporting(cluster, args.attribute, args.reporting, access, endpoints,
                                                 options=command_options(args.zigbee_command_options))],
    )


@register_extension("binary")
def binary(**kwargs) -> Bundle:
    args = parse_args(BinaryArgs, kwargs)
    cluster = resolve_cluster_id(args.cluster)
    key = attribute_key(args.attribute)
    access = ACCESS[args.access]
    (state_on, wire_on), (state_off, wire_off) = args.value_on, args.value_off

    expose = e.binary(args.name, access, state_on, state_off).with_description(args.description)
    if args.endpoint_name:
        expose.with_endpoint(args.endpoint_name)
    if args.entity_category:
        expose.with_category(args.entity_category)

    def convert(model, msg, publish, options, meta):
        if key not in msg.data:
            return None
        if args.endpoint_name and get_endpoint_name(msg, model, meta) != args.endpoint_name:
            return None
        return {expose.property: state_on if msg.data[key] == wire_on else state_off}

    def to_wire(value):
        if value == state_on:
            return wire_on
        if value == state_off:
            return wire_off
        raise EncodeRejected(f"{args.name}: value {value!r} is not one of {state_on!r}, {state_off!r}")

    return make_bundle(
        exposes=[expose],
        decoders=[Decoder(cluster, REPORT_TYPES, convert)],
        encoders=[_attribute_encoder(args.name, args, access, to_wire)],
        configure=[setup_configure_for_reporting(cluster, args.attribute, args.reporting, access,
                                                 options=command_options(args.zigbee_command_options))],
    )


@register_extension("action_enum_lookup")
def action_enum_lookup(**kwargs) -> Bundle:
    args = parse_args(ActionEnumLookupArgs, kwargs)
    cluster = resolve_cluster_id(args.cluster)
    key = attribute_key(args.attribute)
    types = tuple(args.commands) if args.commands else REPORT_TYPES

    if args.endpoint_names:
        actions = [f"{action}_{ep}" for action in args.action_lookup for ep in args.endpoint_names]
    else:
        actions = list(args.action_lookup)
    if args.extra_actions:
        actions.extend(args.extra_actions)
    expose = e.enum("action", ea.STATE, actions).with_description("Triggered action (e.g. a button click)")

    def convert(model, msg, publish, options, meta):
        if key not in msg.data:
            return None
        value = get_from_lookup_by_value(msg.data[key], args.action_lookup)
        if args.endpoint_names:
            value = f"{value}_{get_endpoint_name(msg, model, meta)}"
        if args.button_lookup:
            value = f"{value}_{get_from_lookup_by_value(msg.endpoint.id, args.button_lookup)}"
        return {expose.property: value}

    return make_bundle(exposes=[expose], decoders=[Decoder(cluster, types, convert)])

