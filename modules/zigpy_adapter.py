"""
zigpy Transport Adapter
Binds the transport interface to zigpy devices, endpoints and clusters,
and turns zigpy listener callbacks into Messages for a device session.
"""
import asyncio
import inspect
import logging
import math
from typing import Any, Callable, Dict, List, Optional, Set

from zigpy.zcl import foundation
from zigpy.zdo import types as zdo_t

from error_handler import ConfigurationError, ProtocolFault, as_protocol_fault
from extensions.base import ATTRIBUTE_REPORT, READ, READ_RESPONSE, command_type
from modules.clusters import CLUSTER_IDS, attribute_type, cluster_label, is_integral
from modules.reporting import Uint48Change
from modules.transport import (
    AttributeKey, CommandOptions, ConfiguredReporting, Device, Endpoint, Message, ReportingItem,
)
from modules.utils import attribute_key

logger = logging.getLogger("modules.zigpy_adapter")

# Seconds to wait for a device answer
DEFAULT_TIMEOUT = 5.0

MessageCallback = Callable[[Message], Any]

TIME = CLUSTER_IDS["time"]


def _manufacturer(options: Optional[CommandOptions]) -> Optional[int]:
    return options.manufacturer_code if options is not None else None


def _command_kwargs(options: Optional[CommandOptions]) -> Dict[str, Any]:
    """zigpy request arguments for a cluster command."""
    kwargs = {"manufacturer": _manufacturer(options)}
    # No default response to wait for
    if options is not None and options.disable_default_response:
        kwargs["expect_reply"] = False
    return kwargs


def _attribute_type(zigpy_cluster, attribute: Any) -> Optional[type]:
    if not isinstance(attribute, (str, int)):
        return attribute_type(zigpy_cluster.cluster_id, attribute)
    try:
        return zigpy_cluster.find_attribute(attribute).type
    except KeyError:
        return None


def _check_status(records, context: str):
    """Raise ProtocolFault for the first non-success record of a ZCL response."""
    if not isinstance(records, list):
        # Default response instead of a record list
        status = getattr(records, "status", records)
        if status != foundation.Status.SUCCESS:
            raise ProtocolFault(f"{context} failed: {status!r}", status=foundation.Status(status))
        return
    for record in records:
        if record.status != foundation.Status.SUCCESS:
            raise ProtocolFault(f"{context} failed: {record.status!r}", status=foundation.Status(record.status))


def wire_number(value: Any, attr_type: Optional[type]) -> Any:
    """Floats headed for an integer attribute are rounded half up, anything else is left alone."""
    if isinstance(value, float) and is_integral(attr_type):
        return int(math.floor(value + 0.5))
    return value


def reportable_change(value: Any, attr_type: Optional[type] = None) -> Any:
    """
    Reportable change as zigpy expects it.

    48-bit pairs are combined into one int. Floats keep their fraction for
    Single/Double attributes and are rounded for integer ones.
    """
    if isinstance(value, Uint48Change):
        return (int(value.high) << 32) | int(round(value.low))
    return wire_number(value, attr_type)


class ClusterListener:
    """zigpy cluster listener forwarding frames of one cluster as Messages."""

    def __init__(self, endpoint: "ZigpyEndpoint", cluster):
        self.endpoint = endpoint
        self.cluster = cluster

    def _attribute_name(self, attrid: int) -> AttributeKey:
        try:
            return self.cluster.find_attribute(attrid).name
        except KeyError:
            return attrid

    def attribute_updated(self, attrid: int, value: Any, timestamp: Optional[float] = None):
        # Reports arrive through general_command with all records at once
        pass

    def general_command(self, hdr, args):
        command_id = hdr.command_id
        meta = {"zcl_transaction_sequence_number": hdr.tsn, "manufacturer_code": hdr.manufacturer}

        if command_id == foundation.GeneralCommand.Report_Attributes:
            data = {self._attribute_name(r.attrid): r.value.value for r in args.attribute_reports}
            self.endpoint.emit(ATTRIBUTE_REPORT, self.cluster.cluster_id, data, meta)
        elif command_id == foundation.GeneralCommand.Read_Attributes:
            data = {self._attribute_name(attrid): None for attrid in args.attribute_ids}
            self.endpoint.emit(READ, self.cluster.cluster_id, data, meta)
        else:
            logger.debug(
                f"[{self.endpoint.device_ieee}] EP{self.endpoint.id} {cluster_label(self.cluster.cluster_id)} "
                f"general command 0x{int(command_id):02X} ignored"
            )

    def cluster_command(self, tsn: int, command_id: int, args):
        # Server clusters receive client commands (notifications), client clusters server commands
        commands = self.cluster.client_commands if self.cluster.is_server else self.cluster.server_commands
        command = commands.get(command_id)
        if command is None:
            logger.debug(
                f"[{self.endpoint.device_ieee}] EP{self.endpoint.id} Unknown command 0x{int(command_id):02X} "
                f"on {cluster_label(self.cluster.cluster_id)}"
            )
            return
        data = args.as_dict() if hasattr(args, "as_dict") else {"args": list(args or [])}
        self.endpoint.emit(command_type(command.name), self.cluster.cluster_id, data,
                           {"zcl_transaction_sequence_number": tsn})


class ZigpyEndpoint(Endpoint):
    """Transport endpoint backed by a zigpy Endpoint."""

    def __init__(self, device: "ZigpyDevice", zigpy_endpoint, timeout: float = DEFAULT_TIMEOUT):
        self._device = device
        self._ep = zigpy_endpoint
        self.timeout = timeout
        self.id = zigpy_endpoint.endpoint_id
        self.device_ieee = device.ieee
        self.input_clusters = set(zigpy_endpoint.in_clusters)
        self.output_clusters = set(zigpy_endpoint.out_clusters)
        self.configured_reportings: List[ConfiguredReporting] = []
        # Values saved locally, written to the zigpy attribute cache on save()
        self._pending: Dict[int, Dict[AttributeKey, Any]] = {}
        self._listeners: List[ClusterListener] = []

    def _cluster(self, cluster_id: int):
        if cluster_id in self._ep.in_clusters:
            return self._ep.in_clusters[cluster_id]
        if cluster_id in self._ep.out_clusters:
            return self._ep.out_clusters[cluster_id]
        raise ProtocolFault(f"[{self.device_ieee}] EP{self.id} has no cluster {cluster_label(cluster_id)}")

    def attach_listeners(self):
        for clusters in (self._ep.in_clusters, self._ep.out_clusters):
            for cluster in clusters.values():
                listener = ClusterListener(self, cluster)
                cluster.add_listener(listener)
                self._listeners.append(listener)
                if cluster.cluster_id == TIME:
                    self._guard_time_reads(cluster)
        logger.debug(f"[{self.device_ieee}] EP{self.id} Listening on {len(self._listeners)} clusters")

    def _guard_time_reads(self, cluster):
        """
        zigpy answers Time reads on its own after the listeners ran. Devices
        with skip_time_response get their answer from a capability instead.
        """
        default_handler = cluster.handle_cluster_general_request

        def handle_cluster_general_request(hdr, args, *, dst_addressing=None):
            if hdr.command_id == foundation.GeneralCommand.Read_Attributes and self._device.skip_time_response:
                logger.debug(f"[{self.device_ieee}] EP{self.id} Default time response skipped")
                return
            default_handler(hdr, args, dst_addressing=dst_addressing)

        cluster.handle_cluster_general_request = handle_cluster_general_request

    def emit(self, msg_type: str, cluster_id: int, data: Dict[AttributeKey, Any], meta: Dict[str, Any]):
        self._device.emit(Message(
            type=msg_type, cluster=cluster_id, data=data, endpoint=self,
            device=self._device, meta=meta, linkquality=self._device.linkquality,
        ))

    # ============================================================
    # TRANSPORT VERBS
    # ============================================================

    @as_protocol_fault("bind")
    async def bind(self, cluster: int, target: Any) -> None:
        async with asyncio.timeout(self.timeout):
            result = await self._cluster(cluster).bind()
        status = result[0] if isinstance(result, (list, tuple)) else result
        if status != zdo_t.Status.SUCCESS:
            raise ProtocolFault(f"[{self.device_ieee}] EP{self.id} Bind of {cluster_label(cluster)} failed: {status!r}")
        logger.debug(f"[{self.device_ieee}] EP{self.id} Bound {cluster_label(cluster)}")

    @as_protocol_fault("read")
    async def read(self, cluster: int, attributes: List[AttributeKey],
                   options: Optional[CommandOptions] = None) -> Dict[AttributeKey, Any]:
        async with asyncio.timeout(self.timeout):
            success, failure = await self._cluster(cluster).read_attributes(
                list(attributes), manufacturer=_manufacturer(options)
            )
        if success:
            self.emit(READ_RESPONSE, cluster, dict(success), {"manufacturer_code": _manufacturer(options)})
        if failure:
            attribute, status = next(iter(failure.items()))
            raise ProtocolFault(
                f"[{self.device_ieee}] EP{self.id} Read of {cluster_label(cluster)}.{attribute} failed: {status!r}",
                status=foundation.Status(status),
            )
        return dict(success)

    @as_protocol_fault("write")
    async def write(self, cluster: int, payload: Dict[AttributeKey, Any],
                    options: Optional[CommandOptions] = None) -> None:
        zigpy_cluster = self._cluster(cluster)
        named = {}
        raw = []
        for key, value in payload.items():
            if isinstance(value, dict) and "type" in value:
                data_type = foundation.DataType.from_type_id(value["type"])
                raw.append(foundation.Attribute(key, foundation.TypeValue(
                    type=value["type"], value=data_type.python_type(value["value"]),
                )))
            else:
                named[key] = wire_number(value, _attribute_type(zigpy_cluster, key))

        async with asyncio.timeout(self.timeout):
            if named:
                result = await zigpy_cluster.write_attributes(named, manufacturer=_manufacturer(options))
                _check_status(result[0], f"Write of {cluster_label(cluster)}")
            if raw:
                result = await zigpy_cluster.write_attributes_raw(raw, manufacturer=_manufacturer(options))
                _check_status(result[0], f"Write of {cluster_label(cluster)}")

    @as_protocol_fault("command")
    async def command(self, cluster: int, command: str, payload: Dict[str, Any],
                      options: Optional[CommandOptions] = None) -> None:
        func = getattr(self._cluster(cluster), command)
        # Payload values are ordered like the command schema fields
        async with asyncio.timeout(self.timeout):
            result = await func(*payload.values(), **_command_kwargs(options))
        status = getattr(result, "status", None)
        if status is not None and status != foundation.Status.SUCCESS:
            raise ProtocolFault(f"[{self.device_ieee}] EP{self.id} Command {command} failed: {status!r}",
                                status=foundation.Status(status))

    @as_protocol_fault("configure reporting")
    async def configure_reporting(self, cluster: int, items: List[ReportingItem],
                                  options: Optional[CommandOptions] = None) -> None:
        zigpy_cluster = self._cluster(cluster)
        attributes = {}
        for item in items:
            key = attribute_key(item.attribute)
            attributes[key] = (
                item.minimum_report_interval,
                item.maximum_report_interval,
                reportable_change(item.reportable_change, _attribute_type(zigpy_cluster, item.attribute)),
            )
        try:
            async with asyncio.timeout(self.timeout):
                result = await zigpy_cluster.configure_reporting_multiple(
                    attributes, manufacturer=_manufacturer(options)
                )
        except ValueError as e:
            raise ConfigurationError(f"[{self.device_ieee}] EP{self.id} {e}") from e
        _check_status(result[0], f"Configure reporting of {cluster_label(cluster)}")

        for item in items:
            key = attribute_key(item.attribute)
            self.configured_reportings = [
                c for c in self.configured_reportings
                if not (c.cluster == cluster and attribute_key(c.item.attribute) == key)
            ]
            self.configured_reportings.append(ConfiguredReporting(cluster, item))

    @as_protocol_fault("read response")
    async def read_response(self, cluster: int, tsn: int, payload: Dict[AttributeKey, Any]) -> None:
        zigpy_cluster = self._cluster(cluster)
        records = []
        for key, value in payload.items():
            attr_def = zigpy_cluster.find_attribute(key)
            records.append(foundation.ReadAttributeRecord(
                attrid=attr_def.id,
                status=foundation.Status.SUCCESS,
                value=foundation.TypeValue(type=attr_def.zcl_type, value=attr_def.type(value)),
            ))
        await zigpy_cluster.read_attributes_rsp(records, tsn=tsn)

    # ============================================================
    # ATTRIBUTE CACHE
    # ============================================================

    def get_cluster_attribute_value(self, cluster: int, attribute: AttributeKey, default: Any = None) -> Any:
        pending = self._pending.get(cluster, {})
        if attribute in pending:
            return pending[attribute]
        try:
            value = self._cluster(cluster).get(attribute)
        except (KeyError, ProtocolFault):
            return default
        return default if value is None else value

    def save_cluster_attribute_key_value(self, cluster: int, values: Dict[AttributeKey, Any]) -> None:
        self._pending.setdefault(cluster, {}).update(values)

    def save(self) -> None:
        """Write locally saved values to the zigpy attribute cache, which persists them."""
        for cluster_id, values in self._pending.items():
            zigpy_cluster = self._cluster(cluster_id)
            for key, value in values.items():
                zigpy_cluster.update_attribute(zigpy_cluster.find_attribute(key).id, value)
        self._pending.clear()
        logger.debug(f"[{self.device_ieee}] EP{self.id} Attribute cache saved")


class ZigpyDevice(Device):
    """
    Transport device backed by a zigpy Device.

    on_message receives every decoded frame; on_save is called with the
    device when its metadata must be persisted.
    """

    def __init__(self, zigpy_device, on_message: Optional[MessageCallback] = None,
                 on_save: Optional[Callable[["ZigpyDevice"], None]] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self._device = zigpy_device
        self.ieee = str(zigpy_device.ieee)
        self.manufacturer_id = getattr(zigpy_device, "manufacturer_id", None)
        self._on_message = on_message
        self._on_save = on_save
        self.power_source = None
        self.type = None
        self.checkin_interval = None
        self.skip_time_response = False
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        # Endpoint 0 is the ZDO endpoint
        self.endpoints = [
            ZigpyEndpoint(self, ep, timeout)
            for ep_id, ep in sorted(zigpy_device.endpoints.items())
            if ep_id != 0
        ]

    @property
    def linkquality(self) -> Optional[int]:
        return getattr(self._device, "lqi", None)

    def attach(self, on_message: Optional[MessageCallback] = None):
        """Register cluster listeners on every endpoint."""
        if on_message is not None:
            self._on_message = on_message
        for endpoint in self.endpoints:
            endpoint.attach_listeners()
        logger.info(f"[{self.ieee}] ✅ Listeners attached to {len(self.endpoints)} endpoints")

    def emit(self, msg: Message):
        """
        Hand msg to the message callback. A coroutine callback (such as
        DeviceSession.handle_message) runs as a tracked task, one message
        at a time and in arrival order.
        """
        if self._on_message is None:
            logger.debug(f"[{self.ieee}] Dropping {msg.type}, no message callback")
            return
        result = self._on_message(msg)
        if inspect.isawaitable(result):
            task = asyncio.create_task(self._handle_in_order(result, msg))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _handle_in_order(self, handling, msg: Message):
        async with self._lock:
            try:
                await handling
            except Exception as e:
                logger.error(f"[{self.ieee}] EP{msg.endpoint.id} ❌ Handling {msg.type} failed: {e}", exc_info=True)

    async def flush(self) -> None:
        """Wait until every emitted message has been handled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def save(self) -> None:
        if self._on_save is not None:
            self._on_save(self)
        logger.debug(
            f"[{self.ieee}] Saved metadata: power_source={self.power_source}, type={self.type}, "
            f"checkin_interval={self.checkin_interval}, skip_time_response={self.skip_time_response}"
        )
