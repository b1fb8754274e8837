"""
Transport interface consumed by the capability extensions.

Endpoint and Device describe the I/O verbs an already-joined device offers.
modules.zigpy_adapter binds them to zigpy; tests use in-memory doubles.
Every coroutine may raise error_handler.ProtocolFault.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict

AttributeKey = Union[str, int]


class AttributeRef(BaseModel):
    """Attribute unknown to the cluster definition: numeric ID plus ZCL type tag."""
    model_config = ConfigDict(frozen=True)

    id: int
    type: int


class ReportingItem(NamedTuple):
    """One resolved attribute reporting configuration."""
    attribute: Any
    minimum_report_interval: int
    maximum_report_interval: int
    reportable_change: Any


class ConfiguredReporting(NamedTuple):
    """A reporting configuration an endpoint has written, kept for replay."""
    cluster: int
    item: ReportingItem


@dataclass
class CommandOptions:
    """ZCL frame options passed with reads, writes and commands."""
    manufacturer_code: Optional[int] = None
    disable_default_response: bool = False


class Endpoint:
    """One endpoint of a joined device."""

    id: int = 0
    device_ieee: str = ""
    input_clusters: set
    output_clusters: set
    configured_reportings: List[ConfiguredReporting]

    def supports_input_cluster(self, cluster_id: int) -> bool:
        return cluster_id in self.input_clusters

    def supports_output_cluster(self, cluster_id: int) -> bool:
        return cluster_id in self.output_clusters

    async def bind(self, cluster: int, target: Any) -> None:
        raise NotImplementedError

    async def read(self, cluster: int, attributes: List[AttributeKey],
                   options: Optional[CommandOptions] = None) -> Dict[AttributeKey, Any]:
        raise NotImplementedError

    async def write(self, cluster: int, payload: Dict[AttributeKey, Any],
                    options: Optional[CommandOptions] = None) -> None:
        raise NotImplementedError

    async def command(self, cluster: int, command: str, payload: Dict[str, Any],
                      options: Optional[CommandOptions] = None) -> None:
        raise NotImplementedError

    async def configure_reporting(self, cluster: int, items: List[ReportingItem],
                                  options: Optional[CommandOptions] = None) -> None:
        raise NotImplementedError

    async def read_response(self, cluster: int, tsn: int, payload: Dict[AttributeKey, Any]) -> None:
        raise NotImplementedError

    def get_cluster_attribute_value(self, cluster: int, attribute: AttributeKey,
                                    default: Any = None) -> Any:
        raise NotImplementedError

    def save_cluster_attribute_key_value(self, cluster: int, values: Dict[AttributeKey, Any]) -> None:
        raise NotImplementedError

    def save(self) -> None:
        raise NotImplementedError


class Device:
    """A joined device: identity, endpoints and persisted metadata."""

    ieee: str = ""
    manufacturer_id: Optional[int] = None
    endpoints: List[Endpoint]
    power_source: Optional[str] = None
    type: Optional[str] = None
    checkin_interval: Optional[int] = None
    skip_time_response: bool = False

    def get_endpoint(self, endpoint_id: int) -> Optional[Endpoint]:
        for endpoint in self.endpoints:
            if endpoint.id == endpoint_id:
                return endpoint
        return None

    def save(self) -> None:
        raise NotImplementedError


@dataclass
class Message:
    """
    One inbound ZCL frame, already parsed.

    type is "attribute_report", "read_response", "read" or
    "command_<zigpy command name>"; data maps attribute (or command field)
    names, or numeric IDs for unknown attributes, to raw values.
    """
    type: str
    cluster: int
    data: Dict[AttributeKey, Any]
    endpoint: Endpoint
    device: Optional[Device] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    linkquality: Optional[int] = None
