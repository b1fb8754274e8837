"""
Cluster name resolution.
Capability specs may name a cluster by its zigpy endpoint attribute
("on_off", "level", "ias_zone", ...) or by its numeric ID.
"""
import logging
from typing import Any, Dict, Optional, Union

from zigpy.zcl import foundation
from zigpy.zcl.clusters.closures import DoorLock
from zigpy.zcl.clusters.general import (
    AnalogInput, Basic, BinaryInput, Identify, LevelControl,
    MultistateInput, OnOff, PowerConfiguration, Time,
)
from zigpy.zcl.clusters.homeautomation import ElectricalMeasurement
from zigpy.zcl.clusters.lighting import Color
from zigpy.zcl.clusters.measurement import (
    CarbonDioxideConcentration, IlluminanceMeasurement, OccupancySensing,
    PressureMeasurement, RelativeHumidity, TemperatureMeasurement,
)
from zigpy.zcl.clusters.security import IasWd, IasZone
from zigpy.zcl.clusters.smartenergy import Metering

from error_handler import ConfigurationError

logger = logging.getLogger("modules.clusters")

ClusterKey = Union[str, int]

KNOWN_CLUSTERS = (
    Basic, PowerConfiguration, Identify, OnOff, LevelControl, Time,
    AnalogInput, BinaryInput, MultistateInput,
    DoorLock, Color,
    IlluminanceMeasurement, TemperatureMeasurement, PressureMeasurement,
    RelativeHumidity, OccupancySensing, CarbonDioxideConcentration,
    IasZone, IasWd, Metering, ElectricalMeasurement,
)

CLUSTER_IDS: Dict[str, int] = {cls.ep_attribute: cls.cluster_id for cls in KNOWN_CLUSTERS}
CLUSTER_NAMES: Dict[int, str] = {cid: name for name, cid in CLUSTER_IDS.items()}
CLUSTER_CLASSES = {cls.cluster_id: cls for cls in KNOWN_CLUSTERS}


def resolve_cluster_id(cluster: ClusterKey) -> int:
    """Return the numeric cluster ID for a name or ID."""
    if isinstance(cluster, bool):
        raise ConfigurationError(f"Invalid cluster {cluster!r}")
    if isinstance(cluster, int):
        return cluster
    if cluster not in CLUSTER_IDS:
        raise ConfigurationError(f"Cluster '{cluster}' is unknown")
    return CLUSTER_IDS[cluster]


def cluster_label(cluster: ClusterKey) -> str:
    """Human readable cluster name for logs."""
    cluster_id = resolve_cluster_id(cluster)
    return CLUSTER_NAMES.get(cluster_id, f"0x{cluster_id:04X}")


def attribute_type(cluster: ClusterKey, attribute: Any) -> Optional[type]:
    """
    zigpy python type of an attribute, or None when it cannot be told.

    `attribute` is a name, an ID, or an {id, type} reference carrying its
    own ZCL type tag.
    """
    if not isinstance(attribute, (str, int)):
        try:
            return foundation.DataType.from_type_id(attribute.type).python_type
        except (KeyError, ValueError):
            return None

    cluster_class = CLUSTER_CLASSES.get(resolve_cluster_id(cluster))
    if cluster_class is None:
        return None
    if isinstance(attribute, str):
        attr_def = cluster_class.attributes_by_name.get(attribute)
    else:
        attr_def = cluster_class.attributes.get(attribute)
    return attr_def.type if attr_def is not None else None


def is_integral(attr_type: Optional[type]) -> bool:
    """True for integer wire types (uintN, intN, enums, bitmaps)."""
    return attr_type is not None and issubclass(attr_type, int)
