"""
Per-endpoint transient state owned by a device session.

Holds small values decoders need between messages (last transaction number,
pending clear timers). At most one timer per (endpoint, key): scheduling a new
one cancels the previous, last scheduled wins.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger("modules.store")

Scheduler = Callable[[float, Callable[[], None]], Any]


def _loop_scheduler(delay: float, callback: Callable[[], None]):
    return asyncio.get_running_loop().call_later(delay, callback)


class StateStore:
    def __init__(self, scheduler: Optional[Scheduler] = None):
        self._scheduler = scheduler or _loop_scheduler
        self._values: Dict[Tuple[str, int], Dict[str, Any]] = {}
        self._timers: Dict[Tuple[str, int, str], Any] = {}

    @staticmethod
    def _key(endpoint) -> Tuple[str, int]:
        return (str(endpoint.device_ieee), endpoint.id)

    def get_value(self, endpoint, key: str, default: Any = None) -> Any:
        return self._values.get(self._key(endpoint), {}).get(key, default)

    def put_value(self, endpoint, key: str, value: Any) -> None:
        self._values.setdefault(self._key(endpoint), {})[key] = value

    def clear_value(self, endpoint, key: str) -> None:
        self._values.get(self._key(endpoint), {}).pop(key, None)

    def has_value(self, endpoint, key: str) -> bool:
        return key in self._values.get(self._key(endpoint), {})

    def pending(self, endpoint, key: str) -> bool:
        return (*self._key(endpoint), key) in self._timers

    def cancel(self, endpoint, key: str) -> None:
        """Cancel the pending timer stored under key, if any."""
        handle = self._timers.pop((*self._key(endpoint), key), None)
        if handle is not None:
            handle.cancel()

    def schedule(self, endpoint, key: str, delay: float, callback: Callable[[], None]) -> None:
        """Run callback after delay seconds, replacing any pending timer under key."""
        self.cancel(endpoint, key)
        timer_key = (*self._key(endpoint), key)

        def fire():
            self._timers.pop(timer_key, None)
            callback()

        self._timers[timer_key] = self._scheduler(delay, fire)
        logger.debug(f"[{endpoint.device_ieee}] EP{endpoint.id} timer '{key}' scheduled in {delay}s")

    def clear(self) -> None:
        """Cancel every pending timer and drop all values."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._values.clear()
