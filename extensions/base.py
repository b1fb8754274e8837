"""
Capability bundle infrastructure: decoder/encoder records, the bundle shape
every extension returns, bundle merging and the extension registry.
"""
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from error_handler import ConfigurationError
from modules.transport import CommandOptions

logger = logging.getLogger("extensions.base")

ATTRIBUTE_REPORT = "attribute_report"
READ_RESPONSE = "read_response"
READ = "read"
REPORT_TYPES = (ATTRIBUTE_REPORT, READ_RESPONSE)


def command_type(command: str) -> str:
    """Message type of a cluster command, e.g. command_type("on") -> "command_on"."""
    return f"command_{command}"


@dataclass(frozen=True)
class Decoder:
    """Inbound converter: `convert(model, msg, publish, options, meta)` -> state update or None."""
    cluster: int
    types: Tuple[str, ...]
    convert: Callable
    options: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class Encoder:
    """
    Outbound converter for capability keys.

    convert_set(endpoint, key, value, meta) -> {"state": {...}} or None
    convert_get(endpoint, key, meta) -> None
    """
    keys: Tuple[str, ...]
    convert_set: Optional[Callable] = None
    convert_get: Optional[Callable] = None


@dataclass(frozen=True)
class Bundle:
    exposes: Tuple[Any, ...] = ()
    decoders: Tuple[Decoder, ...] = ()
    encoders: Tuple[Encoder, ...] = ()
    configure: Tuple[Callable, ...] = ()
    meta: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    on_event: Tuple[Callable, ...] = ()
    endpoint: Optional[Callable] = None


def make_bundle(exposes: Iterable = (), decoders: Iterable = (), encoders: Iterable = (),
                configure: Iterable = (), meta: Optional[Mapping] = None, on_event: Iterable = (),
                endpoint: Optional[Callable] = None) -> Bundle:
    """Build an immutable bundle, dropping configurators that resolved to None."""
    return Bundle(
        exposes=tuple(exposes),
        decoders=tuple(decoders),
        encoders=tuple(encoders),
        configure=tuple(c for c in configure if c is not None),
        meta=MappingProxyType(dict(meta or {})),
        on_event=tuple(on_event),
        endpoint=endpoint,
    )


def _claims(expose) -> Iterable[Tuple[str, Optional[str]]]:
    features = getattr(expose, "features", None)
    if features is not None and expose.type in ("light", "switch", "lock"):
        for feature in features:
            yield (feature.name, feature.endpoint)
    else:
        yield (expose.name, expose.endpoint)


def merge_bundles(bundles: Sequence[Bundle]) -> Bundle:
    """Concatenate bundles; two bundles may not describe the same name and endpoint."""
    claimed: Dict[Tuple[str, Optional[str]], int] = {}
    meta: Dict[str, Any] = {}
    endpoint = None
    for index, bundle in enumerate(bundles):
        for expose in bundle.exposes:
            for claim in _claims(expose):
                owner = claimed.setdefault(claim, index)
                if owner != index:
                    name, ep = claim
                    qualifier = f" on endpoint '{ep}'" if ep else ""
                    raise ConfigurationError(f"Capability '{name}'{qualifier} is defined by more than one extension")
        meta.update(bundle.meta)
        if bundle.endpoint is not None:
            endpoint = bundle.endpoint

    return make_bundle(
        exposes=[x for b in bundles for x in b.exposes],
        decoders=[x for b in bundles for x in b.decoders],
        encoders=[x for b in bundles for x in b.encoders],
        configure=[x for b in bundles for x in b.configure],
        meta=meta,
        on_event=[x for b in bundles for x in b.on_event],
        endpoint=endpoint,
    )


# ============================================================
# ARGUMENTS
# ============================================================

class ExtendArgs(BaseModel):
    """Base for extension argument models."""
    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)


class NoArgs(ExtendArgs):
    """Extensions that take no arguments."""


class ZigbeeCommandOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    manufacturer_code: Optional[int] = None
    disable_default_response: bool = False

    def to_options(self) -> CommandOptions:
        return CommandOptions(self.manufacturer_code, self.disable_default_response)


def command_options(value: Optional[ZigbeeCommandOptions]) -> Optional[CommandOptions]:
    return value.to_options() if value is not None else None


ArgsT = TypeVar("ArgsT", bound=BaseModel)


def parse_args(model_cls: Type[ArgsT], kwargs: Mapping[str, Any]) -> ArgsT:
    """Validate extension arguments, reporting failures as ConfigurationError."""
    try:
        return model_cls(**kwargs)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid arguments for {model_cls.__name__}: {e}") from e


# ============================================================
# REGISTRY
# ============================================================

# Maps extension names used in YAML definitions to builder functions
EXTENSION_REGISTRY: Dict[str, Callable[..., Bundle]] = {}


def register_extension(name: str):
    """Decorator to register an extension builder under a definition name."""
    def decorator(func):
        if name in EXTENSION_REGISTRY:
            raise ConfigurationError(f"Extension '{name}' is registered twice")
        EXTENSION_REGISTRY[name] = func
        logger.debug(f"📋 Registered extension {func.__name__} as '{name}'")
        return func
    return decorator
