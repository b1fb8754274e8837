"""
Door lock extension.

Covers the lock state, pin codes and user status, auto relock time, sound
volume and the operation/programming event notifications of DoorLock.
"""
import logging
from typing import Any, Dict, Optional

import exposes as e
from error_handler import EncodeRejected
from exposes import access as ea
from extensions.base import (
    REPORT_TYPES, Bundle, Decoder, Encoder, ExtendArgs, command_type, make_bundle,
    parse_args, register_extension,
)
from modules.clusters import CLUSTER_IDS
from modules.reporting import ReportingConfig, setup_attributes
from modules.scaling import is_number
from modules.utils import get_from_lookup, get_from_lookup_by_value, postfix_with_endpoint_name

logger = logging.getLogger("extensions.closures")

DOOR_LOCK = CLUSTER_IDS["door_lock"]

LOCK_STATE_LOOKUP = {"not_fully_locked": 0, "locked": 1, "unlocked": 2}
SOUND_VOLUME_LOOKUP = {"silent_mode": 0, "low_volume": 1, "high_volume": 2}
USER_TYPE_LOOKUP = {
    "unrestricted": 0, "year_day_schedule": 1, "week_day_schedule": 2,
    "master": 3, "non_access": 4,
}
USER_STATUS_LOOKUP = {"available": 0, "enabled": 1, "disabled": 3}

OPERATION_EVENT_SOURCE = {0: "keypad", 1: "rf", 2: "manual", 3: "rfid"}
OPERATION_EVENT_CODE = {
    0: "unknown", 1: "lock", 2: "unlock", 3: "lock_failure_invalid_pin_or_id",
    4: "lock_failure_invalid_schedule", 5: "unlock_failure_invalid_pin_or_id",
    6: "unlock_failure_invalid_schedule", 7: "one_touch_lock", 8: "key_lock",
    9: "key_unlock", 10: "auto_lock", 11: "schedule_lock", 12: "schedule_unlock",
    13: "manual_lock", 14: "manual_unlock", 15: "non_access_user_operational_event",
}
PROGRAMMING_EVENT_CODE = {
    0: "unknown", 1: "master_code_changed", 2: "pin_code_added", 3: "pin_code_deleted",
    4: "pin_code_changed", 5: "rfid_code_added", 6: "rfid_code_deleted",
}

AUTO_RELOCK_TIME_MAX = 3600


class LockArgs(ExtendArgs):
    pin_code_count: Optional[int] = None


# ============================================================
# DECODERS
# ============================================================

def _lock_report(model, msg, publish, options, meta):
    data = msg.data
    result = {}
    if "lock_state" in data:
        lock_state = get_from_lookup_by_value(data["lock_state"], LOCK_STATE_LOOKUP)
        result[postfix_with_endpoint_name("state", msg, model, meta)] = "LOCK" if lock_state == "locked" else "UNLOCK"
        result[postfix_with_endpoint_name("lock_state", msg, model, meta)] = lock_state
    if "auto_relock_time" in data:
        result["auto_relock_time"] = data["auto_relock_time"]
    if "sound_volume" in data:
        result["sound_volume"] = get_from_lookup_by_value(data["sound_volume"], SOUND_VOLUME_LOOKUP)
    return result or None


def _event(codes: Dict[int, str], code: Any, source: Any, user: Any) -> Dict[str, Any]:
    return {
        "action": codes.get(code, "unknown"),
        "action_source": source,
        "action_source_name": OPERATION_EVENT_SOURCE.get(source, "unknown"),
        "action_user": user,
    }


def _operation_event(model, msg, publish, options, meta):
    data = msg.data
    return _event(OPERATION_EVENT_CODE, data.get("operation_event_code"),
                  data.get("operation_event_source"), data.get("user_id"))


def _programming_event(model, msg, publish, options, meta):
    data = msg.data
    return _event(PROGRAMMING_EVENT_CODE, data.get("program_event_code"),
                  data.get("program_event_source"), data.get("user_id"))


def _merge_user(meta, user_id, update: Dict[str, Any]) -> Dict[str, Any]:
    users = dict(meta.get("state", {}).get("users") or {})
    key = str(user_id)
    users[key] = {**users.get(key, {}), **update}
    return {"users": users}


def _pin_code_response(model, msg, publish, options, meta):
    data = msg.data
    status = get_from_lookup_by_value(data.get("user_status"), USER_STATUS_LOOKUP)
    code = data.get("code")
    if isinstance(code, (bytes, bytearray)):
        code = code.decode("ascii", errors="replace")
    update: Dict[str, Any] = {"status": status}
    if options.get("expose_pin"):
        update["pin_code"] = code or None
    return _merge_user(meta, data.get("user_id"), update)


def _user_status_response(model, msg, publish, options, meta):
    data = msg.data
    status = get_from_lookup_by_value(data.get("user_status"), USER_STATUS_LOOKUP)
    return _merge_user(meta, data.get("user_id"), {"status": status})


# ============================================================
# ENCODERS
# ============================================================

async def _set_lock(endpoint, key, value, meta):
    command = str(value).upper()
    if command not in ("LOCK", "UNLOCK"):
        raise EncodeRejected(f"{key}: value {value!r} is not one of LOCK, UNLOCK")
    pin_code = meta.get("message", {}).get("pin_code")
    payload = {"pin_code": str(pin_code)} if pin_code is not None else {}
    await endpoint.command(DOOR_LOCK, "lock_door" if command == "LOCK" else "unlock_door", payload)
    await endpoint.read(DOOR_LOCK, ["lock_state"])
    return None


async def _get_lock(endpoint, key, meta):
    await endpoint.read(DOOR_LOCK, ["lock_state"])


def _user_id(value: Dict[str, Any], key: str) -> int:
    user = value.get("user")
    if not is_number(user):
        raise EncodeRejected(f"{key}: user {user!r} is not a number")
    return int(user)


async def _set_pin_code(endpoint, key, value, meta):
    if not isinstance(value, dict):
        raise EncodeRejected(f"{key}: expected an object, got {value!r}")
    user = _user_id(value, key)
    pin_code = value.get("pin_code")
    if pin_code is None:
        await endpoint.command(DOOR_LOCK, "clear_pin_code", {"user_id": user})
    else:
        user_type = get_from_lookup(value.get("user_type", "unrestricted"), USER_TYPE_LOOKUP)
        user_status = USER_STATUS_LOOKUP["enabled" if value.get("user_enabled", True) else "disabled"]
        await endpoint.command(DOOR_LOCK, "set_pin_code", {
            "user_id": user, "user_status": user_status, "user_type": user_type, "code": str(pin_code),
        })
    if meta.get("options", {}).get("read_pin_code_after_set", True):
        await endpoint.command(DOOR_LOCK, "get_pin_code", {"user_id": user})
    return None


async def _get_pin_code(endpoint, key, meta):
    user = (meta.get("message", {}).get(key) or {}).get("user")
    if not is_number(user):
        raise EncodeRejected(f"{key}: user {user!r} is not a number")
    await endpoint.command(DOOR_LOCK, "get_pin_code", {"user_id": int(user)})


async def _set_user_status(endpoint, key, value, meta):
    if not isinstance(value, dict):
        raise EncodeRejected(f"{key}: expected an object, got {value!r}")
    user = _user_id(value, key)
    status = get_from_lookup(value.get("status"), USER_STATUS_LOOKUP)
    await endpoint.command(DOOR_LOCK, "set_user_status", {"user_id": user, "user_status": status})
    await endpoint.command(DOOR_LOCK, "get_user_status", {"user_id": user})
    return None


async def _set_auto_relock_time(endpoint, key, value, meta):
    if not is_number(value) or not 0 <= value <= AUTO_RELOCK_TIME_MAX:
        raise EncodeRejected(f"{key}: value {value!r} is not between 0 and {AUTO_RELOCK_TIME_MAX}")
    await endpoint.write(DOOR_LOCK, {"auto_relock_time": int(value)})
    return {"state": {key: value}}


async def _get_auto_relock_time(endpoint, key, meta):
    await endpoint.read(DOOR_LOCK, ["auto_relock_time"])


async def _set_sound_volume(endpoint, key, value, meta):
    await endpoint.write(DOOR_LOCK, {"sound_volume": get_from_lookup(value, SOUND_VOLUME_LOOKUP)})
    return {"state": {key: value}}


async def _get_sound_volume(endpoint, key, meta):
    await endpoint.read(DOOR_LOCK, ["sound_volume"])


@register_extension("lock")
def lock(**kwargs) -> Bundle:
    args = parse_args(LockArgs, kwargs)

    descriptors = [
        e.lock()
        .with_state("state", "LOCK", "UNLOCK", "State of the lock")
        .with_lock_state("lock_state", "Actual state of the lock"),
        e.pincode(),
        e.lock_action(),
        e.lock_action_source_name(),
        e.lock_action_user(),
        e.numeric("auto_relock_time", ea.ALL).with_unit("s")
        .with_value_min(0).with_value_max(AUTO_RELOCK_TIME_MAX)
        .with_description("The number of seconds to wait after unlocking a lock before it automatically locks again"),
        e.enum("sound_volume", ea.ALL, list(SOUND_VOLUME_LOOKUP)).with_description("Sound volume of the lock"),
    ]

    decoders = [
        Decoder(DOOR_LOCK, REPORT_TYPES, _lock_report),
        Decoder(DOOR_LOCK, (command_type("operation_event_notification"),), _operation_event),
        Decoder(DOOR_LOCK, (command_type("programming_event_notification"),), _programming_event),
        Decoder(DOOR_LOCK, (command_type("get_pin_code_response"),), _pin_code_response),
        Decoder(DOOR_LOCK, (command_type("get_user_status_response"),), _user_status_response),
    ]

    encoders = [
        Encoder(("state",), _set_lock, _get_lock),
        Encoder(("pin_code",), _set_pin_code, _get_pin_code),
        Encoder(("user_status",), _set_user_status),
        Encoder(("auto_relock_time",), _set_auto_relock_time, _get_auto_relock_time),
        Encoder(("sound_volume",), _set_sound_volume, _get_sound_volume),
    ]

    reporting = ReportingConfig(attribute="lock_state", min="MIN", max="1_HOUR", change=0)

    async def configure(device, coordinator_endpoint):
        await setup_attributes(device, coordinator_endpoint, DOOR_LOCK, [reporting])

    return make_bundle(
        exposes=descriptors,
        decoders=decoders,
        encoders=encoders,
        configure=[configure],
        meta={"pin_code_count": args.pin_code_count},
    )
