"""
Zigbee Capability Extensions Package
"""
import logging

logger = logging.getLogger("extensions")

# Import base infrastructure FIRST
from .base import (
    Bundle,
    Decoder,
    Encoder,
    EXTENSION_REGISTRY,
    make_bundle,
    merge_bundles,
    register_extension,
)

# Import all extension modules to trigger registration decorators
from .generic import action_enum_lookup, binary, enum_lookup, numeric
from .general import (
    custom_time_response,
    device_endpoints,
    force_device_type,
    force_power_source,
    identify,
    ignore_cluster_report,
    on_off,
    quirk_add_endpoint_cluster,
    quirk_checkin_interval,
    reconfigure_reportings_on_device_announce,
)
from .lighting import light
from .power import battery, electricity_meter
from .closures import lock
from .security import ias_warning, ias_zone_alarm
from .sensors import co2, humidity, illuminance, occupancy, pressure, temperature

logger.debug(f"Loaded {len(EXTENSION_REGISTRY)} extensions")
