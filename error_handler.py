"""
Capability Error Types
======================
Typed failures raised while building, configuring, decoding and encoding
device capabilities.

- ConfigurationError: bad definition or device layout, always fatal
- ProtocolFault: transport failure, carries the ZCL status when there is one
- DecodeAnomaly: inbound value we refuse to guess about
- EncodeRejected: outbound value that cannot be translated, nothing is sent
"""
import asyncio
import logging
import functools
from typing import Any, Callable, Optional

from zigpy.exceptions import ZigbeeException
from zigpy.zcl import foundation

logger = logging.getLogger("error_handler")


class ConfigurationError(Exception):
    """Raised when a definition or the device layout cannot be configured."""
    pass


class ProtocolFault(Exception):
    """
    Raised when a transport verb (bind, read, write, command, reporting) fails.

    `status` is the ZCL status returned by the device, or None when the
    failure happened below ZCL (delivery error, timeout).
    """

    def __init__(self, message: str, status: Optional[foundation.Status] = None):
        super().__init__(message)
        self.status = status

    @property
    def is_unsupported_attribute(self) -> bool:
        return self.status == foundation.Status.UNSUPPORTED_ATTRIBUTE


class DecodeAnomaly(Exception):
    """Raised when an inbound value cannot be mapped to a capability value."""
    pass


class EncodeRejected(Exception):
    """Raised when a capability write cannot be translated to the wire."""
    pass


def is_unsupported_attribute(error: Exception) -> bool:
    """True if the error is a ProtocolFault carrying UNSUPPORTED_ATTRIBUTE."""
    return isinstance(error, ProtocolFault) and error.is_unsupported_attribute


def as_protocol_fault(context: str):
    """
    Decorator for transport coroutines: zigpy and timeout errors leave
    as ProtocolFault, everything else propagates untouched.

    Usage:
        @as_protocol_fault("read")
        async def read(self, cluster, attributes, options=None):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            try:
                return await func(*args, **kwargs)
            except ProtocolFault:
                raise
            except asyncio.TimeoutError as e:
                raise ProtocolFault(f"{context} timed out") from e
            except ZigbeeException as e:
                raise ProtocolFault(f"{context} failed: {e}") from e

        return wrapper

    return decorator
