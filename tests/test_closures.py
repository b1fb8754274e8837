import pytest

from conftest import DecodeHarness, FakeDevice, FakeEndpoint, make_message
from error_handler import DecodeAnomaly, EncodeRejected
from extensions.closures import DOOR_LOCK, lock
from modules.transport import ReportingItem


def encoder_for(bundle, key):
    return next(enc for enc in bundle.encoders if key in enc.keys)


class TestLockDecoding:
    def test_lock_state_report(self):
        harness = DecodeHarness(lock())
        result = harness.decode(make_message(FakeEndpoint(1), DOOR_LOCK, {"lock_state": 1}))
        assert result == {"state": "LOCK", "lock_state": "locked"}

    def test_not_fully_locked_reports_unlock(self):
        harness = DecodeHarness(lock())
        result = harness.decode(make_message(FakeEndpoint(1), DOOR_LOCK, {"lock_state": 0}))
        assert result == {"state": "UNLOCK", "lock_state": "not_fully_locked"}

    def test_unknown_lock_state_is_an_anomaly(self):
        msg = make_message(FakeEndpoint(1), DOOR_LOCK, {"lock_state": 9})
        with pytest.raises(DecodeAnomaly):
            lock().decoders[0].convert(None, msg, lambda update: None, {}, {})

    def test_settings_report(self):
        harness = DecodeHarness(lock())
        result = harness.decode(make_message(FakeEndpoint(1), DOOR_LOCK, {"auto_relock_time": 30, "sound_volume": 2}))
        assert result == {"auto_relock_time": 30, "sound_volume": "high_volume"}

    def test_operation_event(self):
        harness = DecodeHarness(lock())
        msg = make_message(FakeEndpoint(1), DOOR_LOCK, {
            "operation_event_source": 0, "operation_event_code": 2, "user_id": 3,
        }, msg_type="command_operation_event_notification")
        assert harness.decode(msg) == {
            "action": "unlock", "action_source": 0, "action_source_name": "keypad", "action_user": 3,
        }

    def test_programming_event(self):
        harness = DecodeHarness(lock())
        msg = make_message(FakeEndpoint(1), DOOR_LOCK, {
            "program_event_source": 0, "program_event_code": 2, "user_id": 7,
        }, msg_type="command_programming_event_notification")
        assert harness.decode(msg)["action"] == "pin_code_added"

    def test_pin_code_responses_merge_into_users(self):
        harness = DecodeHarness(lock(), options={"expose_pin": True})
        endpoint = FakeEndpoint(1)
        harness.decode(make_message(endpoint, DOOR_LOCK, {"user_id": 1, "user_status": 1, "user_type": 0, "code": b"1234"},
                                    msg_type="command_get_pin_code_response"))
        result = harness.decode(make_message(endpoint, DOOR_LOCK, {"user_id": 2, "user_status": 0},
                                             msg_type="command_get_user_status_response"))
        assert result == {"users": {
            "1": {"status": "enabled", "pin_code": "1234"},
            "2": {"status": "available"},
        }}

    def test_pin_code_hidden_by_default(self):
        harness = DecodeHarness(lock())
        result = harness.decode(make_message(FakeEndpoint(1), DOOR_LOCK, {"user_id": 1, "user_status": 1, "code": b"1234"},
                                             msg_type="command_get_pin_code_response"))
        assert result == {"users": {"1": {"status": "enabled"}}}


class TestLockEncoding:
    async def test_lock_with_pin_then_reads_state(self):
        endpoint = FakeEndpoint(1)
        result = await encoder_for(lock(), "state").convert_set(
            endpoint, "state", "lock", {"message": {"state": "lock", "pin_code": 1234}},
        )
        assert endpoint.calls == [
            ("command", DOOR_LOCK, "lock_door", {"pin_code": "1234"}),
            ("read", DOOR_LOCK, ["lock_state"]),
        ]
        assert result is None

    async def test_invalid_lock_value(self):
        with pytest.raises(EncodeRejected):
            await encoder_for(lock(), "state").convert_set(FakeEndpoint(1), "state", "OPEN", {})

    async def test_set_pin_code(self):
        endpoint = FakeEndpoint(1)
        await encoder_for(lock(), "pin_code").convert_set(
            endpoint, "pin_code", {"user": 2, "user_type": "master", "user_enabled": False, "pin_code": 4321}, {},
        )
        assert endpoint.calls_of("command") == [
            (DOOR_LOCK, "set_pin_code", {"user_id": 2, "user_status": 3, "user_type": 3, "code": "4321"}),
            (DOOR_LOCK, "get_pin_code", {"user_id": 2}),
        ]

    async def test_clear_pin_code_without_read_back(self):
        endpoint = FakeEndpoint(1)
        await encoder_for(lock(), "pin_code").convert_set(
            endpoint, "pin_code", {"user": 2, "pin_code": None}, {"options": {"read_pin_code_after_set": False}},
        )
        assert endpoint.calls_of("command") == [(DOOR_LOCK, "clear_pin_code", {"user_id": 2})]

    async def test_pin_code_requires_user(self):
        with pytest.raises(EncodeRejected):
            await encoder_for(lock(), "pin_code").convert_set(FakeEndpoint(1), "pin_code", {"pin_code": 1}, {})

    async def test_get_pin_code(self):
        endpoint = FakeEndpoint(1)
        await encoder_for(lock(), "pin_code").convert_get(endpoint, "pin_code", {"message": {"pin_code": {"user": 4}}})
        assert endpoint.calls_of("command") == [(DOOR_LOCK, "get_pin_code", {"user_id": 4})]

    async def test_get_pin_code_without_user_is_rejected(self):
        with pytest.raises(EncodeRejected):
            await encoder_for(lock(), "pin_code").convert_get(FakeEndpoint(1), "pin_code", {"message": {"pin_code": None}})

    async def test_user_status(self):
        endpoint = FakeEndpoint(1)
        await encoder_for(lock(), "user_status").convert_set(endpoint, "user_status", {"user": 1, "status": "disabled"}, {})
        assert endpoint.calls_of("command") == [
            (DOOR_LOCK, "set_user_status", {"user_id": 1, "user_status": 3}),
            (DOOR_LOCK, "get_user_status", {"user_id": 1}),
        ]

    async def test_auto_relock_time_range(self):
        endpoint = FakeEndpoint(1)
        encoder = encoder_for(lock(), "auto_relock_time")
        assert await encoder.convert_set(endpoint, "auto_relock_time", 60, {}) == {"state": {"auto_relock_time": 60}}
        assert endpoint.calls_of("write") == [(DOOR_LOCK, {"auto_relock_time": 60})]
        with pytest.raises(EncodeRejected):
            await encoder.convert_set(endpoint, "auto_relock_time", 3601, {})

    async def test_sound_volume(self):
        endpoint = FakeEndpoint(1)
        await encoder_for(lock(), "sound_volume").convert_set(endpoint, "sound_volume", "silent_mode", {})
        assert endpoint.calls_of("write") == [(DOOR_LOCK, {"sound_volume": 0})]


class TestLockConfigure:
    async def test_reports_lock_state(self):
        endpoint = FakeEndpoint(1, input_clusters=[DOOR_LOCK])
        await lock().configure[0](FakeDevice([endpoint]), None)
        assert endpoint.calls_of("configure_reporting") == [
            (DOOR_LOCK, [ReportingItem("lock_state", 0, 3600, 0)]),
        ]

    def test_pin_code_count_meta(self):
        assert lock(pin_code_count=50).meta["pin_code_count"] == 50
