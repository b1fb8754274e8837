"""
Shared test doubles: in-memory endpoint and device recording every call,
and a manual scheduler for timer driven behavior.
"""
from typing import Any, Dict, List, Optional

import pytest

from modules.store import StateStore
from modules.transport import ConfiguredReporting, Device, Endpoint, Message


class FakeEndpoint(Endpoint):
    def __init__(self, endpoint_id: int = 1, input_clusters=(), output_clusters=(),
                 attributes: Optional[Dict[int, Dict[Any, Any]]] = None, device_ieee: str = "00:11:22:33:44:55:66:77"):
        self.id = endpoint_id
        self.device_ieee = device_ieee
        self.input_clusters = set(input_clusters)
        self.output_clusters = set(output_clusters)
        self.configured_reportings = []
        self.attributes = {cluster: dict(values) for cluster, values in (attributes or {}).items()}
        self.calls: List[tuple] = []
        # verb -> exception raised on the next calls of that verb
        self.failures: Dict[str, Exception] = {}
        self.saved = 0

    def _record(self, verb: str, *args):
        self.calls.append((verb, *args))
        if verb in self.failures:
            raise self.failures[verb]

    def calls_of(self, verb: str) -> List[tuple]:
        return [call[1:] for call in self.calls if call[0] == verb]

    async def bind(self, cluster, target):
        self._record("bind", cluster)

    async def read(self, cluster, attributes, options=None):
        self._record("read", cluster, list(attributes))
        values = self.attributes.get(cluster, {})
        return {a: values[a] for a in attributes if a in values}

    async def write(self, cluster, payload, options=None):
        self._record("write", cluster, dict(payload))

    async def command(self, cluster, command, payload, options=None):
        self._record("command", cluster, command, dict(payload))

    async def configure_reporting(self, cluster, items, options=None):
        self._record("configure_reporting", cluster, list(items))
        for item in items:
            self.configured_reportings.append(ConfiguredReporting(cluster, item))

    async def read_response(self, cluster, tsn, payload):
        self._record("read_response", cluster, tsn, dict(payload))

    def get_cluster_attribute_value(self, cluster, attribute, default=None):
        return self.attributes.get(cluster, {}).get(attribute, default)

    def save_cluster_attribute_key_value(self, cluster, values):
        self.attributes.setdefault(cluster, {}).update(values)

    def save(self):
        self.saved += 1


class FakeDevice(Device):
    def __init__(self, endpoints: List[FakeEndpoint], ieee: str = "00:11:22:33:44:55:66:77"):
        self.ieee = ieee
        self.manufacturer_id = None
        self.endpoints = endpoints
        self.power_source = None
        self.type = None
        self.checkin_interval = None
        self.skip_time_response = False
        self.saved = 0
        for endpoint in endpoints:
            endpoint.device_ieee = ieee

    def save(self):
        self.saved += 1


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Collects timers instead of scheduling them on a loop."""

    def __init__(self):
        self.timers: List[FakeTimer] = []

    def __call__(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def fire_all(self):
        for timer in self.active:
            timer.callback()


def make_message(endpoint, cluster, data, msg_type="attribute_report", device=None, meta=None, linkquality=None):
    return Message(type=msg_type, cluster=cluster, data=data, endpoint=endpoint,
                   device=device, meta=meta or {}, linkquality=linkquality)


class DecodeHarness:
    """Runs the decoders of a bundle the way a session would, without a definition."""

    def __init__(self, bundle, model=None, options=None, store=None):
        self.bundle = bundle
        self.model = model
        self.options = options or {}
        self.store = store or StateStore(FakeScheduler())
        self.state: Dict[str, Any] = {}
        self.published: List[Dict[str, Any]] = []

    def publish(self, update):
        self.published.append(update)

    def decode(self, msg) -> Dict[str, Any]:
        result = {}
        meta = {"store": self.store, "state": self.state, "device": msg.device}
        for decoder in self.bundle.decoders:
            if decoder.cluster == msg.cluster and msg.type in decoder.types:
                result.update(decoder.convert(self.model, msg, self.publish, self.options, meta) or {})
        self.state.update(result)
        return result


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def store(scheduler):
    return StateStore(scheduler)
