import pytest

from conftest import FakeDevice, FakeEndpoint, make_message
from device import DeviceSession, define
from error_handler import ConfigurationError, EncodeRejected, ProtocolFault
from extensions.base import Decoder, Encoder, make_bundle
from extensions.general import ON_OFF, device_endpoints, on_off, reconfigure_reportings_on_device_announce
from extensions.generic import enum_lookup
from extensions.lighting import LEVEL, light
from extensions.power import POWER_CONFIGURATION, battery
from extensions.security import ias_zone_alarm
from extensions.sensors import temperature

TEMPERATURE = 0x0402


def switch_definition():
    return define(["TS0002"], "TS0002", "Tuya", "2 gang switch", [
        device_endpoints(endpoints={"l1": 1, "l2": 2}),
        on_off(endpoint_names=["l1", "l2"], power_on_behavior=False),
    ])


def two_gang():
    ep1 = FakeEndpoint(1, input_clusters=[ON_OFF])
    ep2 = FakeEndpoint(2, input_clusters=[ON_OFF])
    return FakeDevice([ep1, ep2]), ep1, ep2


class TestDefine:
    def test_merges_bundles(self):
        definition = define(["TH01"], "TH01", "Acme", "Climate sensor", [temperature(), battery()])
        assert [d.name for d in definition.exposes] == ["temperature", "battery"]
        assert len(definition.decoders) == 2
        assert definition.meta["battery"] == {}

    def test_duplicate_capability_fails(self):
        with pytest.raises(ConfigurationError):
            define(["X"], "X", "Acme", "", [temperature(), temperature()])

    def test_same_capability_on_other_endpoints_is_allowed(self):
        define(["X"], "X", "Acme", "", [
            on_off(endpoint_names=["l1"], power_on_behavior=False),
            on_off(endpoint_names=["l2"], power_on_behavior=False),
        ])

    def test_descriptor(self):
        definition = define(["TH01"], "TH01", "Acme", "Climate sensor", [
            ias_zone_alarm(zone_type="occupancy", zone_attributes=["alarm_1"], alarm_timeout=True),
        ])
        descriptor = definition.to_dict()
        assert descriptor["model"] == "TH01"
        assert descriptor["zigbee_model"] == ["TH01"]
        assert descriptor["exposes"][0]["name"] == "occupancy"
        assert descriptor["options"][0]["name"] == "occupancy_timeout"
        assert descriptor["supports_ota"] is False


class TestSessionInbound:
    async def test_publishes_decoded_state_with_linkquality(self):
        definition = define(["TH01"], "TH01", "Acme", "", [temperature()])
        device = FakeDevice([FakeEndpoint(1, input_clusters=[TEMPERATURE])])
        published = []
        session = DeviceSession(definition, device, on_publish=published.append)

        update = await session.handle_message(
            make_message(device.endpoints[0], TEMPERATURE, {"measured_value": 2000}, linkquality=120),
        )
        assert update == {"temperature": 20.0, "linkquality": 120}
        assert published == [update]
        assert session.state["temperature"] == 20.0

    async def test_anomaly_skips_only_that_decoder(self):
        definition = define(["X"], "X", "Acme", "", [
            enum_lookup(name="mode", cluster="temperature", attribute="measured_value", lookup={"a": 1}),
            temperature(),
        ])
        device = FakeDevice([FakeEndpoint(1)])
        session = DeviceSession(definition, device)
        update = await session.handle_message(make_message(device.endpoints[0], TEMPERATURE, {"measured_value": 500}))
        assert update == {"temperature": 5.0}

    async def test_nothing_published_for_unmatched_message(self):
        published = []
        session = DeviceSession(switch_definition(), two_gang()[0], on_publish=published.append)
        await session.handle_message(make_message(session.device.endpoints[0], POWER_CONFIGURATION, {"x": 1}))
        assert published == []

    async def test_endpoint_names_from_definition(self):
        device, ep1, ep2 = two_gang()
        session = DeviceSession(switch_definition(), device)
        update = await session.handle_message(make_message(ep2, ON_OFF, {"on_off": 1}))
        assert update == {"state_l2": "ON"}

    async def test_message_event_reaches_handlers(self):
        seen = []

        async def handler(event_type, data, device, options, state):
            seen.append((event_type, data.type))

        definition = define(["X"], "X", "Acme", "", [make_bundle(on_event=[handler])])
        device = FakeDevice([FakeEndpoint(1)])
        session = DeviceSession(definition, device)
        await session.handle_message(make_message(device.endpoints[0], ON_OFF, {}, msg_type="read"))
        assert seen == [("message", "read")]


class TestSessionSet:
    async def test_routes_endpoint_key_to_endpoint(self):
        device, ep1, ep2 = two_gang()
        session = DeviceSession(switch_definition(), device)
        update = await session.set({"state_l2": "ON"})
        assert ep1.calls == []
        assert ep2.calls_of("command") == [(ON_OFF, "on", {})]
        assert update == {"state_l2": "ON"}
        assert session.state["state_l2"] == "ON"

    async def test_unqualified_key_uses_first_endpoint(self):
        definition = define(["X"], "X", "Acme", "", [on_off(power_on_behavior=False)])
        device, ep1, ep2 = two_gang()
        session = DeviceSession(definition, device)
        await session.set({"state": "OFF"})
        assert ep1.calls_of("command") == [(ON_OFF, "off", {})]

    async def test_default_endpoint_from_map(self):
        definition = define(["X"], "X", "Acme", "", [
            device_endpoints(endpoints={"default": 2, "other": 1}),
            on_off(power_on_behavior=False),
        ])
        device, ep1, ep2 = two_gang()
        await DeviceSession(definition, device).set({"state": "ON"})
        assert ep2.calls_of("command") == [(ON_OFF, "on", {})]

    async def test_encoder_with_several_keys_runs_once(self):
        device = FakeDevice([FakeEndpoint(1, input_clusters=[ON_OFF, LEVEL])])
        session = DeviceSession(define(["L"], "L", "Acme", "", [light()]), device)
        update = await session.set({"state": "ON", "brightness": 50})
        assert device.endpoints[0].calls_of("command") == [
            (LEVEL, "move_to_level_with_on_off", {"level": 50, "transition_time": 0}),
        ]
        assert update == {"state": "ON", "brightness": 50}

    async def test_unknown_key_is_rejected(self):
        session = DeviceSession(switch_definition(), two_gang()[0])
        with pytest.raises(EncodeRejected):
            await session.set({"colour": "red"})

    async def test_read_only_key_is_rejected(self):
        definition = define(["TH01"], "TH01", "Acme", "", [temperature()])
        session = DeviceSession(definition, FakeDevice([FakeEndpoint(1)]))
        with pytest.raises(EncodeRejected):
            await session.set({"temperature": 20})

    async def test_missing_endpoint_is_rejected(self):
        definition = define(["X"], "X", "Acme", "", [
            device_endpoints(endpoints={"l1": 1, "l2": 2, "l3": 3}),
            on_off(endpoint_names=["l1", "l2", "l3"], power_on_behavior=False),
        ])
        session = DeviceSession(definition, two_gang()[0])
        with pytest.raises(EncodeRejected):
            await session.set({"state_l3": "ON"})

    async def test_get_reads_attribute(self):
        device, ep1, ep2 = two_gang()
        session = DeviceSession(switch_definition(), device)
        await session.get("state_l1")
        assert ep1.calls_of("read") == [(ON_OFF, ["on_off"])]


class TestSessionLifecycle:
    async def test_interview_runs_every_configurator_and_reraises_first_failure(self):
        ran = []

        async def failing(device, coordinator_endpoint):
            ran.append("failing")
            raise ProtocolFault("bind failed")

        async def succeeding(device, coordinator_endpoint):
            ran.append("succeeding")

        definition = define(["X"], "X", "Acme", "", [
            make_bundle(configure=[failing]), make_bundle(configure=[succeeding]),
        ])
        session = DeviceSession(definition, FakeDevice([FakeEndpoint(1)]))
        with pytest.raises(ProtocolFault):
            await session.interview(None)
        assert ran == ["failing", "succeeding"]

    async def test_interview_configures_reporting(self):
        device, ep1, ep2 = two_gang()
        await DeviceSession(switch_definition(), device).interview(None)
        assert len(ep1.calls_of("configure_reporting")) == 1
        assert len(ep2.calls_of("configure_reporting")) == 1

    async def test_device_announce_replays_reporting(self):
        device, ep1, ep2 = two_gang()
        definition = define(["X"], "X", "Acme", "", [
            on_off(power_on_behavior=False), reconfigure_reportings_on_device_announce(),
        ])
        session = DeviceSession(definition, device)
        await session.interview(None)
        await session.device_announce()
        assert len(ep1.calls_of("configure_reporting")) == 2

    async def test_close_cancels_timers(self, store, scheduler):
        definition = define(["X"], "X", "Acme", "", [
            ias_zone_alarm(zone_type="occupancy", zone_attributes=["alarm_1"], alarm_timeout=True),
        ])
        device = FakeDevice([FakeEndpoint(1)])
        session = DeviceSession(definition, device, store=store)
        await session.handle_message(make_message(device.endpoints[0], 0x0500, {"zone_status": 1},
                                                  msg_type="command_status_change_notification"))
        assert len(scheduler.active) == 1
        session.close()
        assert scheduler.active == []

    async def test_timer_publish_goes_through_session(self, store, scheduler):
        definition = define(["X"], "X", "Acme", "", [
            ias_zone_alarm(zone_type="occupancy", zone_attributes=["alarm_1"], alarm_timeout=True),
        ])
        device = FakeDevice([FakeEndpoint(1)])
        published = []
        session = DeviceSession(definition, device, on_publish=published.append, store=store)
        await session.handle_message(make_message(device.endpoints[0], 0x0500, {"zone_status": 1},
                                                  msg_type="command_status_change_notification"))
        scheduler.fire_all()
        assert published[-1] == {"occupancy": False}
        assert session.state["occupancy"] is False


def test_custom_decoder_and_encoder_records():
    async def convert_set(endpoint, key, value, meta):
        return {"state": {key: value}}

    bundle = make_bundle(
        decoders=[Decoder(ON_OFF, ("attribute_report",), lambda *args: None)],
        encoders=[Encoder(("mode",), convert_set=convert_set)],
    )
    definition = define(["X"], "X", "Acme", "", [bundle])
    assert definition.find_encoder("mode") is bundle.encoders[0]
    assert definition.find_encoder("other") is None
