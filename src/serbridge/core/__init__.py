"""
Core components for the serial bridge.

Provides configuration and the error taxonomy shared by all layers.
"""

from serbridge.core.config import Config, load_config
from serbridge.core.exceptions import (
    BridgeError,
    DeviceNotFound,
    DeviceUnavailable,
    InvalidPayload,
    TransportError,
    WriteConflict,
)

__all__ = [
    "Config",
    "load_config",
    "BridgeError",
    "DeviceNotFound",
    "DeviceUnavailable",
    "InvalidPayload",
    "TransportError",
    "WriteConflict",
]
