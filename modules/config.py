"""
Runtime configuration: log level, per-device options and device definitions,
validated with pydantic after loading from YAML.
"""
import logging
from types import MappingProxyType
from typing import Any, Dict, List, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from error_handler import ConfigurationError

logger = logging.getLogger("modules.config")


class OptionsConfig(BaseModel):
    """Runtime options: defaults merged with per-device overrides keyed by IEEE."""
    model_config = ConfigDict(extra="forbid")

    defaults: Dict[str, Any] = {}
    devices: Dict[str, Dict[str, Any]] = {}

    @field_validator("devices")
    @classmethod
    def _normalise_ieee(cls, value):
        return {ieee.lower(): options for ieee, options in value.items()}


class DefinitionConfig(BaseModel):
    """One device model as written in YAML; extend entries map an extension name to its arguments."""
    model_config = ConfigDict(extra="forbid")

    zigbee_model: List[str]
    model: str
    vendor: str
    description: str = ""
    extend: List[Union[str, Dict[str, Any]]] = []

    @field_validator("extend")
    @classmethod
    def _single_key(cls, value):
        for entry in value:
            if isinstance(entry, dict) and len(entry) != 1:
                raise ValueError(f"extend entry must name exactly one extension, got {list(entry)}")
        return value


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: Union[str, None] = "logs"
    options: OptionsConfig = Field(default_factory=OptionsConfig)
    definitions: List[DefinitionConfig] = []


def parse_config(data: Mapping[str, Any]) -> AppConfig:
    try:
        return AppConfig(**dict(data))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def get_device_options(config: AppConfig, ieee: str) -> Mapping[str, Any]:
    """Read-only options of one device: defaults overridden by its own entry."""
    options = dict(config.options.defaults)
    options.update(config.options.devices.get(str(ieee).lower(), {}))
    return MappingProxyType(options)
