"""
Attribute Reporting Configuration
Binds endpoints to the coordinator and subscribes to attribute change reports,
followed by a best-effort read of the same attributes.
"""
import logging
from typing import Any, Iterable, List, NamedTuple, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict

from error_handler import ConfigurationError, ProtocolFault
from exposes import access as ea
from modules.clusters import ClusterKey, cluster_label, resolve_cluster_id
from modules.transport import AttributeRef, CommandOptions, Device, ReportingItem
from modules.utils import attribute_key

logger = logging.getLogger("modules.reporting")

# Symbolic reporting times in seconds.
# MAX disables periodic reports (changes still report), MIN reports every change.
TIME_LOOKUP = {
    "MAX": 65000,
    "1_HOUR": 3600,
    "30_MINUTES": 1800,
    "1_MINUTE": 60,
    "10_SECONDS": 10,
    "MIN": 0,
}

ReportingTime = Union[str, int]


class Uint48Change(NamedTuple):
    """Reportable change for 48-bit attributes, split in two 32-bit halves."""
    low: int
    high: int = 0


class ReportingConfig(BaseModel):
    """Reporting window of one attribute, times may be symbolic."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    min: ReportingTime
    max: ReportingTime
    change: Any
    attribute: Optional[Union[str, int, AttributeRef]] = None


def convert_reporting_config_time(value: ReportingTime) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"Reporting time {value!r} is invalid")
    if isinstance(value, int):
        if value < 0:
            raise ConfigurationError(f"Reporting time {value} must not be negative")
        return value
    if value not in TIME_LOOKUP:
        raise ConfigurationError(f"Reporting time '{value}' is unknown")
    return TIME_LOOKUP[value]


def resolve_reporting(config: ReportingConfig, attribute: Any = None) -> ReportingItem:
    """Resolve symbolic times of a config, failing fast on unknown names."""
    attribute = attribute if attribute is not None else config.attribute
    if attribute is None:
        raise ConfigurationError("Reporting config has no attribute")
    return ReportingItem(
        attribute=attribute,
        minimum_report_interval=convert_reporting_config_time(config.min),
        maximum_report_interval=convert_reporting_config_time(config.max),
        reportable_change=config.change,
    )


def get_endpoints_with_input_cluster(device: Device, cluster: ClusterKey) -> List:
    cluster_id = resolve_cluster_id(cluster)
    endpoints = [ep for ep in device.endpoints if ep.supports_input_cluster(cluster_id)]
    if not endpoints:
        raise ConfigurationError(
            f"[{device.ieee}] Device has no endpoint with input cluster {cluster_label(cluster)}"
        )
    return endpoints


async def setup_attributes(
    target,
    coordinator_endpoint,
    cluster: ClusterKey,
    configs: Sequence[Union[ReportingConfig, ReportingItem]],
    configure_reporting: bool = True,
    read: bool = True,
    options: Optional[CommandOptions] = None,
):
    """
    Subscribe `configs` on every endpoint of target exposing `cluster`.

    target is a Device (all endpoints with the input cluster) or one Endpoint.
    Bind and reporting failures propagate; read failures are only logged.
    """
    cluster_id = resolve_cluster_id(cluster)
    items = [c if isinstance(c, ReportingItem) else resolve_reporting(c) for c in configs]
    if isinstance(target, Device):
        endpoints = get_endpoints_with_input_cluster(target, cluster_id)
    else:
        endpoints = [target]

    label = cluster_label(cluster_id)
    for endpoint in endpoints:
        if configure_reporting:
            await endpoint.bind(cluster_id, coordinator_endpoint)
            await endpoint.configure_reporting(cluster_id, items, options)
            logger.info(
                f"[{endpoint.device_ieee}] EP{endpoint.id} ✅ Configured reporting for {label}: "
                + ", ".join(
                    f"{attribute_key(i.attribute)}(min={i.minimum_report_interval}s, "
                    f"max={i.maximum_report_interval}s, change={i.reportable_change})"
                    for i in items
                )
            )
        if read:
            try:
                await endpoint.read(cluster_id, [attribute_key(i.attribute) for i in items], options)
            except ProtocolFault as e:
                logger.debug(f"[{endpoint.device_ieee}] EP{endpoint.id} Read of {label} failed: {e}")


def setup_configure_for_reporting(
    cluster: ClusterKey,
    attribute: Any,
    reporting: Optional[ReportingConfig],
    access: int,
    endpoint_names: Optional[Iterable[str]] = None,
    options: Optional[CommandOptions] = None,
):
    """
    Return a configurator for one attribute, or None when there is nothing
    to configure (no reporting and not individually readable).
    """
    readable = bool(access & ea.GET)
    if reporting is None and not readable:
        return None

    cluster_id = resolve_cluster_id(cluster)
    if reporting is not None:
        item = resolve_reporting(reporting, attribute)
    else:
        item = ReportingItem(attribute, 0, 0, 0)
    names = set(endpoint_names) if endpoint_names else None

    async def configure(device, coordinator_endpoint):
        for endpoint in get_endpoints_with_input_cluster(device, cluster_id):
            if names is not None and str(endpoint.id) not in names:
                continue
            await setup_attributes(
                endpoint, coordinator_endpoint, cluster_id, [item],
                configure_reporting=reporting is not None, read=readable, options=options,
            )

    return configure
