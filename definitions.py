"""
Device definitions built from configuration through the extension registry.
"""
import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

import extensions  # noqa: F401  registers every extension
from device import Definition, define
from error_handler import ConfigurationError
from extensions.base import EXTENSION_REGISTRY, Bundle
from modules.config import DefinitionConfig

logger = logging.getLogger("definitions")


def _entry(entry: Union[str, Mapping[str, Any]]) -> Tuple[str, Dict[str, Any]]:
    if isinstance(entry, str):
        return entry, {}
    (name, args), = entry.items()
    return name, dict(args or {})


def build_extension(entry: Union[str, Mapping[str, Any]]) -> Bundle:
    """Build one extend entry: a bare name or {name: {arguments}}."""
    name, args = _entry(entry)
    builder = EXTENSION_REGISTRY.get(name)
    if builder is None:
        raise ConfigurationError(f"Unknown extension '{name}'")
    # Builders validate their arguments through their ExtendArgs model
    return builder(**args)


def build_definition(config: DefinitionConfig) -> Definition:
    try:
        bundles = [build_extension(entry) for entry in config.extend]
        return define(config.zigbee_model, config.model, config.vendor, config.description, bundles)
    except ConfigurationError as e:
        raise ConfigurationError(f"{config.vendor} {config.model}: {e}") from e


class DefinitionIndex:
    """Definitions keyed by the zigbee model string devices report."""

    def __init__(self, definitions: Iterable[Definition] = ()):
        self._by_zigbee_model: Dict[str, Definition] = {}
        for definition in definitions:
            self.add(definition)

    def add(self, definition: Definition):
        for zigbee_model in definition.zigbee_model:
            if zigbee_model in self._by_zigbee_model:
                raise ConfigurationError(f"Zigbee model '{zigbee_model}' is defined twice")
            self._by_zigbee_model[zigbee_model] = definition

    def find(self, zigbee_model: Optional[str]) -> Optional[Definition]:
        if zigbee_model is None:
            return None
        return self._by_zigbee_model.get(zigbee_model)

    def __iter__(self):
        seen = set()
        for definition in self._by_zigbee_model.values():
            if id(definition) not in seen:
                seen.add(id(definition))
                yield definition

    def __len__(self):
        return len(list(iter(self)))


def load_definitions(configs: Iterable[DefinitionConfig]) -> DefinitionIndex:
    index = DefinitionIndex(build_definition(c) for c in configs)
    logger.info(f"Loaded {len(index)} device definitions")
    return index
