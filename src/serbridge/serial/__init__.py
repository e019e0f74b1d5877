"""
Serial device management for the bridge.

Handles device enumeration, transports and per-device session state.
"""

from serbridge.serial.registry import DeviceRegistry, create_device_id
from serbridge.serial.session import (
    ConnectionState,
    DeviceSessionManager,
    DeviceState,
    LockToken,
    Session,
    Sink,
    StreamEvent,
)
from serbridge.serial.transport import PortInfo, SerialTransport, Transport

__all__ = [
    "create_device_id",
    "DeviceRegistry",
    "DeviceSessionManager",
    "DeviceState",
    "ConnectionState",
    "LockToken",
    "Session",
    "Sink",
    "StreamEvent",
    "PortInfo",
    "SerialTransport",
    "Transport",
]
