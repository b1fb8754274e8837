"""
Device definitions and the per-device session driving them.

A Definition is the merge of the bundles one device model is built from.
A DeviceSession applies a Definition to one joined device: it feeds inbound
messages to decoders, routes capability writes to encoders, runs the
configurators on interview and dispatches lifecycle events.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from error_handler import DecodeAnomaly, EncodeRejected
from extensions.base import Bundle, Decoder, Encoder, merge_bundles
from modules.store import StateStore
from modules.transport import Device, Endpoint, Message

logger = logging.getLogger("device")


@dataclass(frozen=True)
class Definition:
    """A device model and the capabilities it is built from."""
    zigbee_model: Tuple[str, ...]
    model: str
    vendor: str
    description: str
    exposes: Tuple[Any, ...] = ()
    decoders: Tuple[Decoder, ...] = ()
    encoders: Tuple[Encoder, ...] = ()
    configure: Tuple[Callable, ...] = ()
    meta: Mapping[str, Any] = field(default_factory=dict)
    on_event: Tuple[Callable, ...] = ()
    endpoint: Optional[Callable] = None

    @property
    def options(self) -> Tuple[Any, ...]:
        """Runtime options the decoders consult, de-duplicated."""
        seen = []
        for decoder in self.decoders:
            for option in decoder.options:
                if option not in seen:
                    seen.append(option)
        return tuple(seen)

    def find_encoder(self, key: str) -> Optional[Encoder]:
        for encoder in self.encoders:
            if key in encoder.keys:
                return encoder
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zigbee_model": list(self.zigbee_model),
            "model": self.model,
            "vendor": self.vendor,
            "description": self.description,
            "exposes": [expose.to_dict() for expose in self.exposes],
            "options": [o.to_dict() if hasattr(o, "to_dict") else o for o in self.options],
            "meta": {k: v for k, v in self.meta.items() if v is not None},
            "supports_ota": False,
        }


def define(zigbee_model: Sequence[str], model: str, vendor: str, description: str,
           extend: Sequence[Bundle]) -> Definition:
    """Merge the bundles of one device model into a Definition."""
    merged = merge_bundles(list(extend))
    definition = Definition(
        zigbee_model=tuple(zigbee_model),
        model=model,
        vendor=vendor,
        description=description,
        exposes=merged.exposes,
        decoders=merged.decoders,
        encoders=merged.encoders,
        configure=merged.configure,
        meta=merged.meta,
        on_event=merged.on_event,
        endpoint=merged.endpoint,
    )
    logger.debug(
        f"Defined {vendor} {model}: {len(definition.exposes)} exposes, "
        f"{len(definition.decoders)} decoders, {len(definition.encoders)} encoders"
    )
    return definition


class DeviceSession:
    """
    Runtime glue between one joined device and its definition.

    Owns the device state (last published values) and the StateStore the
    decoders use for timers and per-endpoint values.
    """

    def __init__(self, definition: Definition, device: Device,
                 options: Optional[Mapping[str, Any]] = None,
                 on_publish: Optional[Callable[[Dict[str, Any]], None]] = None,
                 store: Optional[StateStore] = None):
        self.definition = definition
        self.device = device
        self.ieee = str(device.ieee)
        self.options: Mapping[str, Any] = options or {}
        self.state: Dict[str, Any] = {}
        self.store = store or StateStore()
        self._on_publish = on_publish

        logger.info(f"[{self.ieee}] Session created for {definition.vendor} {definition.model}")

    # ============================================================
    # STATE
    # ============================================================

    def publish(self, update: Dict[str, Any]):
        """Merge a partial state update and forward it to the listener."""
        if not update:
            return
        self.state.update(update)
        if self._on_publish:
            self._on_publish(dict(update))

    def endpoint_map(self) -> Dict[str, int]:
        if self.definition.endpoint is None:
            return {}
        return dict(self.definition.endpoint(self.device) or {})

    def _endpoint_names(self) -> List[str]:
        mapping = self.endpoint_map()
        if mapping:
            return list(mapping)
        return [str(ep.id) for ep in self.device.endpoints]

    def _resolve_endpoint(self, endpoint_name: Optional[str]) -> Endpoint:
        mapping = self.endpoint_map()
        if endpoint_name is None:
            if "default" in mapping:
                endpoint_name = "default"
            else:
                if not self.device.endpoints:
                    raise EncodeRejected(f"[{self.ieee}] Device has no endpoints")
                return self.device.endpoints[0]

        endpoint_id = mapping.get(endpoint_name)
        if endpoint_id is None and endpoint_name.isdigit():
            endpoint_id = int(endpoint_name)
        endpoint = self.device.get_endpoint(endpoint_id) if endpoint_id is not None else None
        if endpoint is None:
            raise EncodeRejected(f"[{self.ieee}] Endpoint '{endpoint_name}' does not exist")
        return endpoint

    def _split_key(self, key: str) -> Tuple[str, Optional[str]]:
        """'state_l1' -> ('state', 'l1') when l1 is an endpoint name."""
        for name in self._endpoint_names():
            suffix = f"_{name}"
            if key.endswith(suffix) and len(key) > len(suffix):
                base = key[:-len(suffix)]
                if self.definition.find_encoder(base) is not None:
                    return base, name
        return key, None

    # ============================================================
    # INBOUND
    # ============================================================

    async def handle_message(self, msg: Message) -> Dict[str, Any]:
        """
        Run every matching decoder on msg and publish the merged result.

        A DecodeAnomaly is logged and skips only the decoder that raised it.
        """
        if msg.device is None:
            msg.device = self.device

        update: Dict[str, Any] = {}
        meta = {"store": self.store, "state": self.state, "device": self.device}
        for decoder in self.definition.decoders:
            if decoder.cluster != msg.cluster or msg.type not in decoder.types:
                continue
            try:
                result = decoder.convert(self.definition, msg, self.publish, self.options, meta)
            except DecodeAnomaly as e:
                logger.warning(f"[{self.ieee}] EP{msg.endpoint.id} ⚠️ Failed to decode {msg.type}: {e}")
                continue
            if result:
                update.update(result)

        if msg.linkquality is not None and update:
            update["linkquality"] = msg.linkquality

        self.publish(update)
        await self.on_event("message", msg)
        return update

    # ============================================================
    # OUTBOUND
    # ============================================================

    def _encoder_meta(self, payload: Dict[str, Any], key: str, endpoint_name: Optional[str]) -> Dict[str, Any]:
        return {
            "state": self.state,
            "options": self.options,
            "message": payload,
            "property": key,
            "endpoint_name": endpoint_name,
            "mapped": self.definition,
            "device": self.device,
            "store": self.store,
        }

    async def set(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Write capability values to the device.

        Every encoder runs at most once per call, even if it owns several
        keys of the payload. Returns the optimistic state published.
        """
        used = set()
        update: Dict[str, Any] = {}
        for key, value in payload.items():
            base, endpoint_name = self._split_key(key)
            encoder = self.definition.find_encoder(base)
            if encoder is None:
                raise EncodeRejected(f"[{self.ieee}] No converter available for '{key}'")
            if encoder.convert_set is None:
                raise EncodeRejected(f"[{self.ieee}] '{key}' is not writable")
            if (id(encoder), endpoint_name) in used:
                continue
            used.add((id(encoder), endpoint_name))

            endpoint = self._resolve_endpoint(endpoint_name)
            message = {}
            for other_key, other_value in payload.items():
                other_base, other_endpoint = self._split_key(other_key)
                if other_endpoint == endpoint_name:
                    message[other_base] = other_value
                elif other_endpoint is None:
                    message.setdefault(other_key, other_value)
            meta = self._encoder_meta(message, key, endpoint_name)
            logger.debug(f"[{self.ieee}] EP{endpoint.id} Set {base}={value!r}")
            result = await encoder.convert_set(endpoint, base, value, meta)
            if result and "state" in result:
                for state_key, state_value in result["state"].items():
                    if endpoint_name:
                        state_key = f"{state_key}_{endpoint_name}"
                    update[state_key] = state_value

        self.publish(update)
        return update

    async def get(self, key: str, value: Any = None):
        """
        Ask the device to report the current value of a capability.

        value carries arguments some reads need, e.g. {"user": 1} for pin_code.
        """
        base, endpoint_name = self._split_key(key)
        encoder = self.definition.find_encoder(base)
        if encoder is None:
            raise EncodeRejected(f"[{self.ieee}] No converter available for '{key}'")
        if encoder.convert_get is None:
            raise EncodeRejected(f"[{self.ieee}] '{key}' is not readable")
        endpoint = self._resolve_endpoint(endpoint_name)
        await encoder.convert_get(endpoint, base, self._encoder_meta({base: value}, key, endpoint_name))

    # ============================================================
    # LIFECYCLE
    # ============================================================

    async def interview(self, coordinator_endpoint) -> None:
        """
        Run every configurator of the definition.

        A failing configurator does not stop its siblings; the first
        failure is re-raised once all of them ran.
        """
        first_error: Optional[BaseException] = None
        for configure in self.definition.configure:
            try:
                await configure(self.device, coordinator_endpoint)
            except Exception as e:
                logger.error(f"[{self.ieee}] ❌ Configuration step {getattr(configure, '__qualname__', configure)} failed: {e}")
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
        logger.info(f"[{self.ieee}] ✅ Configured {self.definition.vendor} {self.definition.model}")

    async def on_event(self, event_type: str, data: Any = None) -> None:
        for handler in self.definition.on_event:
            await handler(event_type, data, self.device, self.options, self.state)

    async def device_announce(self) -> None:
        logger.info(f"[{self.ieee}] Device announced")
        await self.on_event("device_announce", {})

    def close(self) -> None:
        """Cancel pending timers, e.g. when the device leaves."""
        self.store.clear()
